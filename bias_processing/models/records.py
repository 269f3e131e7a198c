from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from bias_processing.errors import ShapeMismatchError
from bias_processing.models.asr import AsrId

N_BLTS = 5
N_ANTENNAS = 3


def demultiplexer_latching_relay(epoch: np.ndarray) -> np.ndarray:
    """Latching relay state per record (True = V12 is used).

    The relay is not telecommanded in normal operations and is only expected to
    change after a probe failure, so the state is constant.
    """
    epoch = np.asarray(epoch)
    if epoch.ndim != 1:
        raise ShapeMismatchError(f"Expected 1D epoch, got shape {epoch.shape}")
    return np.ones(epoch.shape, dtype=bool)


def widen_quality_bitmask(bitmask: np.ndarray) -> np.ndarray:
    """Return an upstream QUALITY_BITMASK as uint16.

    Some upstream products store QUALITY_BITMASK as uint8 although it is a
    16-bit field. uint8 and uint16 are accepted; anything else raises
    ``TypeError`` rather than being cast.
    """
    b = np.asarray(bitmask)
    if b.dtype not in (np.uint8, np.uint16):
        raise TypeError(f"QUALITY_BITMASK must be uint8 or uint16, got {b.dtype}")
    return b.astype(np.uint16)


def _as_column(x: np.ndarray, name: str, n: int) -> np.ndarray:
    x = np.asarray(x)
    if x.ndim != 1 or x.shape[0] != n:
        raise ShapeMismatchError(f"{name}: expected shape ({n},), got {x.shape}")
    return x


@dataclass(frozen=True)
class RecordSequence:
    """Raw, time-tagged records before demultiplexing and calibration.

    One row per record. ``epoch`` is TT2000 (int64 nanoseconds) and strictly
    increasing.

    Notes
    -----
    - ``samples_tm`` holds the five BLTS channels in telemetry units, each
      shaped ``(n_records, spr)``. ``spr == 1`` for continuous waveforms,
      ``spr > 1`` when every record is a snapshot.
    - ``n_valid_samples_per_record`` may be shorter than ``spr`` for snapshots;
      samples beyond it are ignored.
    - ``quality_flag`` is float so that NaN can represent fill values.
    - ``quality_bitmask`` is always uint16 (else ``TypeError``). Upstream data
      which carry it as uint8 are widened by :meth:`create`; other dtypes are
      rejected, never cast.
    """

    epoch: np.ndarray  # (N,) int64
    samples_tm: Tuple[np.ndarray, ...]  # 5 x (N, spr)
    n_valid_samples_per_record: np.ndarray  # (N,) int
    freq_hz: np.ndarray  # (N,) float
    lsf_index: np.ndarray  # (N,) float, NaN if not applicable
    diff_gain: np.ndarray  # (N,) float
    mux_set: np.ndarray  # (N,) float, NaN = unknown
    dlr_using12: np.ndarray  # (N,) bool
    calibration_table_index: np.ndarray  # (N, 2) float
    use_fill_values: np.ndarray  # (N,) bool
    quality_flag: np.ndarray  # (N,) float
    quality_bitmask: np.ndarray  # (N,) uint16

    has_snapshot_format: bool = False
    is_lfr: bool = True
    is_tds_cwf: bool = False

    def __post_init__(self) -> None:
        epoch = np.asarray(self.epoch)
        if epoch.ndim != 1:
            raise ShapeMismatchError(f"epoch: expected 1D array, got shape {epoch.shape}")
        n = int(epoch.shape[0])
        if n > 1 and not np.all(np.diff(epoch.astype(np.int64)) > 0):
            raise ValueError("epoch does not increase strictly")

        if len(self.samples_tm) != N_BLTS:
            raise ShapeMismatchError(f"Expected {N_BLTS} BLTS sample arrays, got {len(self.samples_tm)}")
        shape0 = np.shape(self.samples_tm[0])
        for i, s in enumerate(self.samples_tm):
            sh = np.shape(s)
            if len(sh) != 2 or sh[0] != n:
                raise ShapeMismatchError(f"samples_tm[{i}]: expected shape ({n}, spr), got {sh}")
            if sh != shape0:
                raise ShapeMismatchError(f"samples_tm[{i}] shape {sh} differs from samples_tm[0] shape {shape0}")

        for name in (
            "n_valid_samples_per_record",
            "freq_hz",
            "lsf_index",
            "diff_gain",
            "mux_set",
            "dlr_using12",
            "use_fill_values",
            "quality_flag",
            "quality_bitmask",
        ):
            _as_column(getattr(self, name), name, n)

        if np.asarray(self.quality_bitmask).dtype != np.uint16:
            raise TypeError(f"quality_bitmask must be uint16, got {np.asarray(self.quality_bitmask).dtype}")

        cti = np.asarray(self.calibration_table_index)
        if cti.shape != (n, 2):
            raise ShapeMismatchError(f"calibration_table_index: expected shape ({n}, 2), got {cti.shape}")

        nv = np.asarray(self.n_valid_samples_per_record)
        if n > 0 and (np.any(nv < 0) or np.any(nv > shape0[1])):
            raise ValueError(f"n_valid_samples_per_record outside [0, {shape0[1]}]")
        if not self.has_snapshot_format and shape0[1] != 1:
            raise ShapeMismatchError(f"Non-snapshot data must have 1 sample per record, got {shape0[1]}")

    @property
    def n_records(self) -> int:
        return int(np.asarray(self.epoch).shape[0])

    @property
    def samples_per_record(self) -> int:
        return int(np.shape(self.samples_tm[0])[1])

    @classmethod
    def create(
        cls,
        epoch: np.ndarray,
        samples_tm: Sequence[np.ndarray],
        *,
        mux_set: np.ndarray,
        diff_gain: np.ndarray,
        freq_hz: np.ndarray,
        n_valid_samples_per_record: Optional[np.ndarray] = None,
        lsf_index: Optional[np.ndarray] = None,
        dlr_using12: Optional[np.ndarray] = None,
        calibration_table_index: Optional[np.ndarray] = None,
        use_fill_values: Optional[np.ndarray] = None,
        quality_flag: Optional[np.ndarray] = None,
        quality_bitmask: Optional[np.ndarray] = None,
        has_snapshot_format: Optional[bool] = None,
        is_lfr: bool = True,
        is_tds_cwf: bool = False,
    ) -> "RecordSequence":
        """Build a record sequence, filling optional arrays with neutral values.

        1D sample arrays are treated as one sample per record. Snapshot format
        is inferred from the sample width unless given.
        """
        epoch = np.asarray(epoch, dtype=np.int64)
        n = int(epoch.shape[0]) if epoch.ndim == 1 else -1

        samples = []
        for s in samples_tm:
            a = np.asarray(s, dtype=float)
            if a.ndim == 1:
                a = a[:, None]
            samples.append(a)
        spr = samples[0].shape[1] if samples and samples[0].ndim == 2 else 1
        if has_snapshot_format is None:
            has_snapshot_format = spr > 1

        def _default(x: Optional[np.ndarray], value, dtype) -> np.ndarray:
            if x is None:
                return np.full(max(n, 0), value, dtype=dtype)
            return np.asarray(x, dtype=dtype)

        if calibration_table_index is None:
            calibration_table_index = np.full((max(n, 0), 2), np.nan)
        if quality_bitmask is None:
            qbm = np.zeros(max(n, 0), dtype=np.uint16)
        else:
            qbm = widen_quality_bitmask(quality_bitmask)

        return cls(
            epoch=epoch,
            samples_tm=tuple(samples),
            n_valid_samples_per_record=_default(n_valid_samples_per_record, spr, np.int64),
            freq_hz=np.asarray(freq_hz, dtype=float),
            lsf_index=_default(lsf_index, np.nan, float),
            diff_gain=np.asarray(diff_gain, dtype=float),
            mux_set=np.asarray(mux_set, dtype=float),
            dlr_using12=demultiplexer_latching_relay(epoch) if dlr_using12 is None else np.asarray(dlr_using12, dtype=bool),
            calibration_table_index=np.asarray(calibration_table_index, dtype=float),
            use_fill_values=_default(use_fill_values, False, bool),
            quality_flag=_default(quality_flag, np.nan, float),
            quality_bitmask=qbm,
            has_snapshot_format=bool(has_snapshot_format),
            is_lfr=bool(is_lfr),
            is_tds_cwf=bool(is_tds_cwf),
        )


@dataclass(frozen=True)
class CalibratedRecords:
    """Demultiplexed and calibrated records.

    Attributes
    ----------
    asr_avolt:
        Voltage per ASR in volt, every array shaped ``(n_records, spr)``.
        ASRs that could not be measured or derived are NaN.
    current_aampere:
        Calibrated bias current in ampere, shape ``(n_records, 3)``.
    """

    asr_avolt: Dict[AsrId, np.ndarray]
    current_aampere: np.ndarray

    @property
    def n_records(self) -> int:
        return int(self.current_aampere.shape[0])

    def with_fill_values(self, ufv: np.ndarray) -> "CalibratedRecords":
        """Return a copy where every voltage and current in the ``ufv`` records is NaN."""
        ufv = np.asarray(ufv, dtype=bool)
        if ufv.shape != (self.n_records,):
            raise ShapeMismatchError(f"ufv: expected shape ({self.n_records},), got {ufv.shape}")
        asr = {}
        for k, v in self.asr_avolt.items():
            v = np.array(v, dtype=float, copy=True)
            v[ufv, ...] = np.nan
            asr[k] = v
        cur = np.array(self.current_aampere, dtype=float, copy=True)
        cur[ufv, :] = np.nan
        return CalibratedRecords(asr_avolt=asr, current_aampere=cur)
