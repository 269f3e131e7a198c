from .asr import ALL_ASR_IDS, AsrId, AsrSamples
from .records import CalibratedRecords, RecordSequence
from .settings import ProcessingSettings

__all__ = [
    "ALL_ASR_IDS",
    "AsrId",
    "AsrSamples",
    "CalibratedRecords",
    "RecordSequence",
    "ProcessingSettings",
]
