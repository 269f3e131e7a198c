"""Demultiplexer: routing of BLTS channels to ASRs, and derivation of missing ASRs.

The BIAS front end feeds five physical channels (BLTS 1-5) to the receivers.
Which antenna signal each BLTS carries depends on

- the mux mode (``MUX_SET``), and
- the demultiplexer latching relay (DLR), which selects whether the
  differential signal on BLTS 2/4 is V12 or V13.

Routing
-------
BLTS 4 and 5 always carry AC differential signals. BLTS 1-3 depend on mode::

    mode  name                 BLTS 1   BLTS 2     BLTS 3   BLTS 4       BLTS 5
    0     standard operation   V1 DC    V12/13 DC  V23 DC   V12/13 AC    V23 AC
    1     probe 1 fails        V2 DC    V3 DC      V23 DC   V12/13 AC    V23 AC
    2     probe 2 fails        V1 DC    V3 DC      V13 DC   V12/13 AC    V23 AC
    3     probe 3 fails        V1 DC    V2 DC      V12 DC   V12/13 AC    V23 AC
    4     calibration mode 0   V1 DC    V2 DC      V3 DC    V12/13 AC    V23 AC
    5     calibration mode 1   2.5V ref 2.5V ref   2.5V ref V12/13 AC    V23 AC
    6     calibration mode 2   GND      GND        GND      V12/13 AC    V23 AC
    7     calibration mode 3   GND      GND        GND      V12/13 AC    V23 AC

Routing is recomputed for every segment; no state is carried between segments.

Derivation
----------
ASRs that are not routed are derived from the fixed linear relations::

    V12 = V1 - V2    V13 = V1 - V3    V23 = V2 - V3    (DC)
    V13 = V12 + V23                                    (AC)

applied repeatedly until nothing more can be derived.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from bias_processing.errors import ShapeMismatchError, UnknownConfigurationValueError
from bias_processing.models.asr import AsrId, AsrSamples
from bias_processing.models.records import N_BLTS


class MuxMode(IntEnum):
    STANDARD_OPERATION = 0
    PROBE_1_FAILS = 1
    PROBE_2_FAILS = 2
    PROBE_3_FAILS = 3
    CALIBRATION_MODE_0 = 4
    CALIBRATION_MODE_1 = 5
    CALIBRATION_MODE_2 = 6
    CALIBRATION_MODE_3 = 7


class BltsCategory(Enum):
    UNKNOWN = "unknown"
    GND = "gnd"
    REF_2_5V = "2.5V ref"
    ASR = "asr"


@dataclass(frozen=True)
class BltsSource:
    """What one BLTS channel carries."""

    category: BltsCategory
    asr: Optional[AsrId] = None

    def __post_init__(self) -> None:
        if (self.category is BltsCategory.ASR) != (self.asr is not None):
            raise ValueError("asr must be set if and only if category is ASR")

    @property
    def is_asr(self) -> bool:
        return self.category is BltsCategory.ASR


UNKNOWN = BltsSource(BltsCategory.UNKNOWN)
GND = BltsSource(BltsCategory.GND)
REF_2_5V = BltsSource(BltsCategory.REF_2_5V)


def _asr(asr: AsrId) -> BltsSource:
    return BltsSource(BltsCategory.ASR, asr)


@dataclass(frozen=True)
class RoutingTable:
    """Routing of the five BLTS channels for one (mux mode, latching relay) pair.

    ``mux_mode`` is None when the mux mode is unknown (NaN), in which case every
    BLTS is UNKNOWN.
    """

    mux_mode: Optional[MuxMode]
    dlr_using12: bool
    blts: Tuple[BltsSource, ...]

    def __post_init__(self) -> None:
        if len(self.blts) != N_BLTS:
            raise ValueError(f"Expected {N_BLTS} BLTS sources, got {len(self.blts)}")

    def routed_asrs(self) -> Dict[AsrId, int]:
        """ASR -> 0-based BLTS index, for BLTS channels that carry an ASR."""
        return {src.asr: i for i, src in enumerate(self.blts) if src.is_asr}


def _parse_mux_set(mux_set: float) -> Optional[MuxMode]:
    try:
        v = float(mux_set)
    except (TypeError, ValueError):
        raise UnknownConfigurationValueError(f"Illegal mux set {mux_set!r}") from None
    if math.isnan(v):
        return None
    if not math.isfinite(v) or v != int(v) or int(v) not in MuxMode._value2member_map_:
        raise UnknownConfigurationValueError(f"Illegal mux set {mux_set!r}")
    return MuxMode(int(v))


def route(mux_set: float, dlr_using12: bool) -> RoutingTable:
    """Return the BLTS routing for a mux mode and latching relay state.

    Parameters
    ----------
    mux_set:
        Mux mode 0-7. NaN means "unknown" and routes every BLTS to UNKNOWN.
    dlr_using12:
        True if the latching relay makes the differential BLTS carry V12,
        False for V13.

    Raises
    ------
    UnknownConfigurationValueError
        For any other mux set value.
    """
    mode = _parse_mux_set(mux_set)
    dlr_using12 = bool(dlr_using12)

    if mode is None:
        return RoutingTable(None, dlr_using12, (UNKNOWN,) * N_BLTS)

    dc_v1x = _asr(AsrId.DC_V12 if dlr_using12 else AsrId.DC_V13)
    ac_v1x = _asr(AsrId.AC_V12 if dlr_using12 else AsrId.AC_V13)
    ac_v23 = _asr(AsrId.AC_V23)

    if mode is MuxMode.STANDARD_OPERATION:
        dc = (_asr(AsrId.DC_V1), dc_v1x, _asr(AsrId.DC_V23))
    elif mode is MuxMode.PROBE_1_FAILS:
        dc = (_asr(AsrId.DC_V2), _asr(AsrId.DC_V3), _asr(AsrId.DC_V23))
    elif mode is MuxMode.PROBE_2_FAILS:
        dc = (_asr(AsrId.DC_V1), _asr(AsrId.DC_V3), _asr(AsrId.DC_V13))
    elif mode is MuxMode.PROBE_3_FAILS:
        dc = (_asr(AsrId.DC_V1), _asr(AsrId.DC_V2), _asr(AsrId.DC_V12))
    elif mode is MuxMode.CALIBRATION_MODE_0:
        dc = (_asr(AsrId.DC_V1), _asr(AsrId.DC_V2), _asr(AsrId.DC_V3))
    elif mode is MuxMode.CALIBRATION_MODE_1:
        dc = (REF_2_5V,) * 3
    else:
        # Calibration modes 2 and 3.
        dc = (GND,) * 3

    return RoutingTable(mode, dlr_using12, dc + (ac_v1x, ac_v23))


# Each relation is sum(coeff * ASR) == 0.
_RELATIONS: Tuple[Tuple[Tuple[AsrId, float], ...], ...] = (
    ((AsrId.DC_V1, 1.0), (AsrId.DC_V2, -1.0), (AsrId.DC_V12, -1.0)),
    ((AsrId.DC_V1, 1.0), (AsrId.DC_V3, -1.0), (AsrId.DC_V13, -1.0)),
    ((AsrId.DC_V2, 1.0), (AsrId.DC_V3, -1.0), (AsrId.DC_V23, -1.0)),
    ((AsrId.AC_V12, 1.0), (AsrId.AC_V23, 1.0), (AsrId.AC_V13, -1.0)),
)


def _derive_fixed_point(known: Dict[AsrId, np.ndarray]) -> Dict[AsrId, np.ndarray]:
    known = dict(known)
    changed = True
    while changed:
        changed = False
        for rel in _RELATIONS:
            missing = [(a, c) for a, c in rel if a not in known]
            if len(missing) != 1:
                continue
            target, c_target = missing[0]
            acc = None
            for a, c in rel:
                if a is target:
                    continue
                term = c * known[a]
                acc = term if acc is None else acc + term
            known[target] = -acc / c_target
            changed = True
    return known


def derive_missing(routing: RoutingTable, blts_samples: Sequence[np.ndarray]) -> AsrSamples:
    """Assign BLTS samples to ASRs and derive the ASRs that were not routed.

    Parameters
    ----------
    routing:
        Output of :func:`route`.
    blts_samples:
        Five arrays of equal shape (calibrated, or passed through for GND and
        reference channels). Only BLTS channels routed to an ASR are used.

    Returns
    -------
    AsrSamples
        Undefined ASRs are None.
    """
    if len(blts_samples) != N_BLTS:
        raise ShapeMismatchError(f"Expected {N_BLTS} BLTS sample arrays, got {len(blts_samples)}")
    arrays: List[np.ndarray] = [np.asarray(s, dtype=float) for s in blts_samples]
    shape0 = arrays[0].shape
    for i, a in enumerate(arrays):
        if a.shape != shape0:
            raise ShapeMismatchError(f"BLTS {i + 1} shape {a.shape} differs from BLTS 1 shape {shape0}")

    known = {asr: arrays[i] for asr, i in routing.routed_asrs().items()}
    return AsrSamples.from_mapping(_derive_fixed_point(known))

