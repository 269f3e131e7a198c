from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

import numpy as np

from bias_processing.errors import ShapeMismatchError


class AsrId(Enum):
    """Antenna Signal Representation (ASR) identifiers.

    Three single-ended DC signals, three differential DC signals and three
    differential AC signals. Values are the field names in :class:`AsrSamples`.
    """

    DC_V1 = "dc_v1"
    DC_V2 = "dc_v2"
    DC_V3 = "dc_v3"
    DC_V12 = "dc_v12"
    DC_V13 = "dc_v13"
    DC_V23 = "dc_v23"
    AC_V12 = "ac_v12"
    AC_V13 = "ac_v13"
    AC_V23 = "ac_v23"

    @property
    def is_ac(self) -> bool:
        return self.value.startswith("ac_")

    @property
    def is_diff(self) -> bool:
        return len(self.value) == 6


ALL_ASR_IDS: Tuple[AsrId, ...] = tuple(AsrId)


@dataclass(frozen=True)
class AsrSamples:
    """Samples for all nine ASRs.

    A field set to ``None`` means the ASR is undefined (neither measured nor
    derivable), which is distinct from an array full of NaN.

    All non-None arrays share one shape, normally ``(n_records, spr)``.
    """

    dc_v1: Optional[np.ndarray] = None
    dc_v2: Optional[np.ndarray] = None
    dc_v3: Optional[np.ndarray] = None
    dc_v12: Optional[np.ndarray] = None
    dc_v13: Optional[np.ndarray] = None
    dc_v23: Optional[np.ndarray] = None
    ac_v12: Optional[np.ndarray] = None
    ac_v13: Optional[np.ndarray] = None
    ac_v23: Optional[np.ndarray] = None

    @classmethod
    def from_mapping(cls, m: Mapping[AsrId, Optional[np.ndarray]]) -> "AsrSamples":
        return cls(**{asr.value: m.get(asr) for asr in ALL_ASR_IDS})

    def get(self, asr: AsrId) -> Optional[np.ndarray]:
        return getattr(self, asr.value)

    def defined(self) -> Tuple[AsrId, ...]:
        """ASRs that are measured or derived."""
        return tuple(asr for asr in ALL_ASR_IDS if self.get(asr) is not None)

    def filled(self, shape: Tuple[int, ...]) -> Dict[AsrId, np.ndarray]:
        """Return float arrays for all ASRs, NaN where the ASR is undefined."""
        out: Dict[AsrId, np.ndarray] = {}
        for f in fields(self):
            asr = AsrId(f.name)
            x = getattr(self, f.name)
            if x is None:
                out[asr] = np.full(shape, np.nan, dtype=float)
            else:
                x = np.asarray(x, dtype=float)
                if x.shape != tuple(shape):
                    raise ShapeMismatchError(f"ASR {asr.name} has shape {x.shape}, expected {tuple(shape)}")
                out[asr] = x
        return out
