"""Quality overlay: NSO events, configuration-driven UFV and the final L2 filter.

Quality variables per record:

- ``quality_flag``: ordinal, lower is worse, NaN = fill value.
- ``l2_quality_bitmask``: uint16 bit flags set by this processing
  (``L2QBM_*`` constants). Starts at zero.
- ``ufv``: use-fill-value; all voltages and currents of the record are NaN.

NSO ("non-standard operations") events are externally supplied half-open
intervals ``[start, stop)`` with an identifier. Every identifier has a fixed
effect (see :data:`NSO_EFFECTS`). Identifiers not in the table are fatal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from bias_processing.errors import ShapeMismatchError, UnknownConfigurationValueError
from bias_processing.models.records import CalibratedRecords, RecordSequence
from bias_processing.models.settings import ProcessingSettings
from bias_processing.processing.segments import split_by_false, true_with_margin
from bias_processing.processing.tt2000 import NS_PER_SECOND, tt2000_to_utc_str, utc_str_to_tt2000

logger = logging.getLogger(__name__)

L2QBM_PARTIAL_SATURATION = np.uint16(0x0001)
L2QBM_FULL_SATURATION = np.uint16(0x0002)


class NsoId(Enum):
    PARTIAL_SATURATION = "partial_saturation"
    FULL_SATURATION = "full_saturation"
    THRUSTER_FIRING = "thruster_firing"
    # Only take effect when test identifiers are enabled.
    TEST_THRUSTER_FIRING = "TEST_thruster_firing"
    TEST_QF0 = "TEST_QF0"
    TEST_UFV = "TEST_UFV"

    @property
    def is_test(self) -> bool:
        return self.value.startswith("TEST_")

    @classmethod
    def parse(cls, s: str) -> NsoId:
        if isinstance(s, NsoId):
            return s
        try:
            return cls(s)
        except ValueError:
            raise UnknownConfigurationValueError(f"Can not interpret NSO ID '{s}'") from None


@dataclass(frozen=True)
class NsoEffect:
    """What an NSO event does to the records it covers.

    ``quality_flag_max`` caps the quality flag (None = unchanged; NaN stays NaN).
    """

    quality_flag_max: Optional[float] = None
    l2_quality_bitmask: int = 0
    force_ufv: bool = False


NSO_EFFECTS: Dict[NsoId, NsoEffect] = {
    NsoId.PARTIAL_SATURATION: NsoEffect(quality_flag_max=1, l2_quality_bitmask=int(L2QBM_PARTIAL_SATURATION)),
    # Full saturation also sets the partial saturation bit.
    NsoId.FULL_SATURATION: NsoEffect(
        quality_flag_max=0,
        l2_quality_bitmask=int(L2QBM_FULL_SATURATION | L2QBM_PARTIAL_SATURATION),
    ),
    NsoId.THRUSTER_FIRING: NsoEffect(quality_flag_max=1),
    NsoId.TEST_THRUSTER_FIRING: NsoEffect(quality_flag_max=1),
    NsoId.TEST_QF0: NsoEffect(quality_flag_max=0),
    NsoId.TEST_UFV: NsoEffect(force_ufv=True),
}


def nso_effect(nso_id: NsoId, test_ids_enabled: bool) -> NsoEffect:
    """Effect of an identifier. Test identifiers do nothing unless enabled."""
    nso_id = NsoId.parse(nso_id)
    if nso_id.is_test and not test_ids_enabled:
        return NsoEffect()
    return NSO_EFFECTS[nso_id]


# ---------------------------------------------------------------------------
# NSO table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NsoEvent:
    """An NSO event that covers at least one record."""

    record_mask: np.ndarray  # (N,) bool
    nso_id: NsoId
    i_global: int


@dataclass(frozen=True)
class NsoTable:
    """Globally ordered table of NSO events.

    All identifiers are validated on construction, not only those that
    overlap the data being processed.
    """

    start_tt2000: np.ndarray  # (n_events,) int64
    stop_tt2000: np.ndarray  # (n_events,) int64
    nso_id: Tuple[NsoId, ...]

    def __post_init__(self) -> None:
        start = np.asarray(self.start_tt2000, dtype=np.int64)
        stop = np.asarray(self.stop_tt2000, dtype=np.int64)
        if start.ndim != 1 or start.shape != stop.shape or len(self.nso_id) != start.shape[0]:
            raise ShapeMismatchError(
                f"NSO table columns differ in length: {start.shape}, {stop.shape}, {len(self.nso_id)}"
            )
        if np.any(stop < start):
            raise ValueError("NSO event stops before it starts")
        object.__setattr__(self, "start_tt2000", start)
        object.__setattr__(self, "stop_tt2000", stop)
        object.__setattr__(self, "nso_id", tuple(NsoId.parse(s) for s in self.nso_id))

    @property
    def n_events(self) -> int:
        return len(self.nso_id)

    @classmethod
    def empty(cls) -> NsoTable:
        return cls(np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64), ())

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        start_col: str = "start",
        stop_col: str = "stop",
        id_col: str = "nso_id",
    ) -> NsoTable:
        """Build a table from a DataFrame.

        Start/stop columns may hold TT2000 integers or UTC strings.
        """
        for c in (start_col, stop_col, id_col):
            if c not in df.columns:
                raise KeyError(f"Missing column '{c}'. Available: {list(df.columns)}")

        def _tt2000(col: pd.Series) -> np.ndarray:
            if pd.api.types.is_integer_dtype(col):
                return col.to_numpy(dtype=np.int64)
            return np.array([utc_str_to_tt2000(str(s)) for s in col], dtype=np.int64)

        return cls(
            start_tt2000=_tt2000(df[start_col]),
            stop_tt2000=_tt2000(df[stop_col]),
            nso_id=tuple(str(s) for s in df[id_col]),
        )

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "start": self.start_tt2000,
                "stop": self.stop_tt2000,
                "nso_id": [s.value for s in self.nso_id],
            }
        )

    def get_nso_timestamps(self, epoch: np.ndarray) -> List[NsoEvent]:
        """Events (in table order) that contain at least one of the timestamps."""
        epoch = np.asarray(epoch, dtype=np.int64)
        events: List[NsoEvent] = []
        for i in range(self.n_events):
            mask = (epoch >= self.start_tt2000[i]) & (epoch < self.stop_tt2000[i])
            if np.any(mask):
                events.append(NsoEvent(record_mask=mask, nso_id=self.nso_id[i], i_global=i))
        return events


def apply_nso_events(
    events: Sequence[NsoEvent],
    quality_flag: np.ndarray,
    l2_quality_bitmask: np.ndarray,
    ufv: np.ndarray,
    test_ids_enabled: bool,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Apply NSO events to quality variables. Returns new arrays."""
    qf = np.array(quality_flag, dtype=float, copy=True)
    qbm = np.array(l2_quality_bitmask, dtype=np.uint16, copy=True)
    ufv = np.array(ufv, dtype=bool, copy=True)
    n = qf.shape[0]
    if qbm.shape != (n,) or ufv.shape != (n,):
        raise ShapeMismatchError(f"Quality arrays differ in shape: {qf.shape}, {qbm.shape}, {ufv.shape}")

    for ev in events:
        mask = np.asarray(ev.record_mask, dtype=bool)
        if mask.shape != (n,):
            raise ShapeMismatchError(f"NSO event {ev.i_global}: mask shape {mask.shape}, expected ({n},)")
        effect = nso_effect(ev.nso_id, test_ids_enabled)
        if effect.quality_flag_max is not None:
            # np.minimum keeps NaN.
            qf[mask] = np.minimum(qf[mask], effect.quality_flag_max)
        if effect.l2_quality_bitmask:
            qbm[mask] |= np.uint16(effect.l2_quality_bitmask)
        if effect.force_ufv:
            ufv |= mask
    return qf, qbm, ufv


# ---------------------------------------------------------------------------
# UFV
# ---------------------------------------------------------------------------


def log_ufv_records(epoch: np.ndarray, ufv: np.ndarray, header: str) -> None:
    """Log every interval of UFV records. Logs nothing if there are none."""
    i1, i2 = split_by_false(ufv)
    if i1.size == 0:
        return
    logger.info(header)
    for a, b in zip(i1, i2):
        logger.info(
            "    Records %7i-%7i, %s -- %s",
            a,
            b,
            tt2000_to_utc_str(epoch[a]),
            tt2000_to_utc_str(epoch[b]),
        )


def ufv_records_from_settings(
    epoch: np.ndarray,
    mux_set: np.ndarray,
    is_lfr: bool,
    settings: ProcessingSettings,
) -> np.ndarray:
    """Records to remove because of their mux mode, widened by a time margin."""
    epoch = np.asarray(epoch, dtype=np.int64)
    mux_set = np.asarray(mux_set, dtype=float)
    if mux_set.shape != epoch.shape:
        raise ShapeMismatchError(f"mux_set {mux_set.shape} and epoch {epoch.shape} differ")

    margin_s = settings.remove_margin_s(is_lfr)
    remove = np.isin(mux_set, np.asarray(settings.mux_modes_remove, dtype=float))
    ufv = true_with_margin(epoch, remove, margin_s * NS_PER_SECOND)

    log_ufv_records(
        epoch,
        ufv,
        f"Records to remove based on settings: mux_modes_remove={list(settings.mux_modes_remove)}, "
        f"margin={margin_s:g} s ({'LFR' if is_lfr else 'TDS'})",
    )
    return ufv


# ---------------------------------------------------------------------------
# L2 quality filter
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QualityFilterResult:
    quality_flag: np.ndarray  # (N,) float
    l2_quality_bitmask: np.ndarray  # (N,) uint16
    ufv: np.ndarray  # (N,) bool
    calibrated: CalibratedRecords


def quality_filter_l2(
    records: RecordSequence,
    calibrated: CalibratedRecords,
    nso_table: NsoTable,
    settings: ProcessingSettings,
) -> QualityFilterResult:
    """Update quality variables from NSO events and blank all UFV records.

    The final UFV mask is the union of the upstream UFV flags, the mux modes
    configured for removal and any NSO event forcing UFV.
    """
    n = records.n_records
    if calibrated.n_records != n:
        raise ShapeMismatchError(f"{calibrated.n_records} calibrated records, expected {n}")

    ufv = np.asarray(records.use_fill_values, dtype=bool) | ufv_records_from_settings(
        records.epoch, records.mux_set, records.is_lfr, settings
    )

    events = nso_table.get_nso_timestamps(records.epoch)
    logger.info(
        "Searched NSO table. Found %d relevant NSO events out of a total of %d.",
        len(events),
        nso_table.n_events,
    )
    for ev in events:
        logger.info(
            "    %s -- %s %s",
            tt2000_to_utc_str(nso_table.start_tt2000[ev.i_global]),
            tt2000_to_utc_str(nso_table.stop_tt2000[ev.i_global]),
            ev.nso_id.value,
        )

    qf, l2qbm, ufv = apply_nso_events(
        events,
        records.quality_flag,
        np.zeros(n, dtype=np.uint16),
        ufv,
        settings.test_nso_ids_enabled,
    )

    log_ufv_records(records.epoch, ufv, "Records set to fill values, regardless of reason:")
    return QualityFilterResult(
        quality_flag=qf,
        l2_quality_bitmask=l2qbm,
        ufv=ufv,
        calibrated=calibrated.with_fill_values(ufv),
    )
