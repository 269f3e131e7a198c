"""Calibration engine interface and a scalar reference engine.

The processing core never applies transfer functions itself. It hands raw
samples of one BLTS channel and the configuration of one segment to an
object implementing :class:`CalibrationEngine` and gets back samples in volt
(or ampere for bias currents).

:class:`ScalarCalibration` implements the interface with a plain offset and
gain per calibration epoch, which is enough to run and test the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol, Sequence, Union

import numpy as np

from bias_processing.errors import InsufficientReferenceDataError, ShapeMismatchError
from bias_processing.models.records import N_ANTENNAS, N_BLTS
from bias_processing.processing.demux import BltsSource


@dataclass(frozen=True)
class VoltageCalibrationSettings:
    """Scalar configuration of one segment, for one BLTS channel.

    ``i_blts`` is 0-based (0..4). Calibration-time indices are 0-based indices
    into the engine's own calibration-epoch tables.
    """

    i_blts: int
    blts_source: BltsSource
    bias_high_gain: float
    i_calib_time_low: int
    i_calib_time_high: int
    i_lsf: float


class CalibrationEngine(Protocol):
    """What the orchestrator needs from a calibration engine.

    Implementations must be deterministic functions of their arguments.
    """

    def calibration_time_index_low(self, epoch: np.ndarray) -> np.ndarray:
        ...

    def calibration_time_index_high(self, epoch: np.ndarray) -> np.ndarray:
        ...

    def calibrate_voltage(
        self,
        dt_sec: Union[float, np.ndarray],
        samples_ca_tm: Sequence[np.ndarray],
        settings: VoltageCalibrationSettings,
        calibration_table_index: np.ndarray,
        is_lfr: bool,
        is_tds_cwf: bool,
        use_fill_values: bool,
    ) -> List[np.ndarray]:
        """Calibrate a list of sample vectors (one per snapshot, or one for CWF).

        Must return a list of the same length with vectors of the same lengths.
        """
        ...

    def calibrate_current(self, current_tm: np.ndarray, i_antenna: int, i_calib_low: np.ndarray) -> np.ndarray:
        ...


def calibration_time_indices(epoch: np.ndarray, calibration_epochs: np.ndarray) -> np.ndarray:
    """Index of the latest calibration epoch at or before each timestamp.

    Raises
    ------
    InsufficientReferenceDataError
        If any timestamp precedes the first calibration epoch.
    """
    epoch = np.asarray(epoch, dtype=np.int64)
    cal = np.asarray(calibration_epochs, dtype=np.int64)
    if cal.ndim != 1 or cal.size == 0:
        raise InsufficientReferenceDataError("No calibration epochs")
    if cal.size > 1 and not np.all(np.diff(cal) > 0):
        raise ValueError("Calibration epochs do not increase strictly")

    idx = np.searchsorted(cal, epoch, side="right") - 1
    if np.any(idx < 0):
        raise InsufficientReferenceDataError(
            f"{int(np.sum(idx < 0))} timestamp(s) precede the first calibration epoch"
        )
    return idx.astype(np.int64)


@dataclass(frozen=True)
class ScalarCalibration:
    """Offset + gain calibration, one set of coefficients per calibration epoch.

    Voltage in volt is ``(tm - offset) * gain`` using the coefficients of the
    BLTS channel at the segment's low-cadence calibration time. AC channels in
    high-gain mode are further divided by ``ac_high_gain``.

    Parameters
    ----------
    calibration_epoch_low, calibration_epoch_high:
        TT2000 start of every calibration period.
    voltage_offset_tm, voltage_gain_avolt_per_tm:
        Shape ``(n_low, 5)``.
    current_offset_tm, current_gain_aampere_per_tm:
        Shape ``(n_low, 3)``.
    """

    calibration_epoch_low: np.ndarray
    calibration_epoch_high: np.ndarray
    voltage_offset_tm: np.ndarray
    voltage_gain_avolt_per_tm: np.ndarray
    current_offset_tm: np.ndarray
    current_gain_aampere_per_tm: np.ndarray
    ac_high_gain: float = 1.0

    def __post_init__(self) -> None:
        n_low = np.asarray(self.calibration_epoch_low).shape[0]
        for name, width in (
            ("voltage_offset_tm", N_BLTS),
            ("voltage_gain_avolt_per_tm", N_BLTS),
            ("current_offset_tm", N_ANTENNAS),
            ("current_gain_aampere_per_tm", N_ANTENNAS),
        ):
            shape = np.shape(getattr(self, name))
            if shape != (n_low, width):
                raise ShapeMismatchError(f"{name}: expected shape ({n_low}, {width}), got {shape}")
        if self.ac_high_gain == 0:
            raise ValueError("ac_high_gain must be non-zero")

    @classmethod
    def constant(
        cls,
        first_epoch: int,
        *,
        voltage_offset_tm: float = 0.0,
        voltage_gain_avolt_per_tm: float = 1.0,
        current_offset_tm: float = 0.0,
        current_gain_aampere_per_tm: float = 1.0,
        ac_high_gain: float = 1.0,
    ) -> "ScalarCalibration":
        """Single calibration period starting at ``first_epoch``, same coefficients for all channels."""
        ep = np.array([first_epoch], dtype=np.int64)
        return cls(
            calibration_epoch_low=ep,
            calibration_epoch_high=ep.copy(),
            voltage_offset_tm=np.full((1, N_BLTS), voltage_offset_tm),
            voltage_gain_avolt_per_tm=np.full((1, N_BLTS), voltage_gain_avolt_per_tm),
            current_offset_tm=np.full((1, N_ANTENNAS), current_offset_tm),
            current_gain_aampere_per_tm=np.full((1, N_ANTENNAS), current_gain_aampere_per_tm),
            ac_high_gain=ac_high_gain,
        )

    def calibration_time_index_low(self, epoch: np.ndarray) -> np.ndarray:
        return calibration_time_indices(epoch, self.calibration_epoch_low)

    def calibration_time_index_high(self, epoch: np.ndarray) -> np.ndarray:
        return calibration_time_indices(epoch, self.calibration_epoch_high)

    def calibrate_voltage(
        self,
        dt_sec: Union[float, np.ndarray],
        samples_ca_tm: Sequence[np.ndarray],
        settings: VoltageCalibrationSettings,
        calibration_table_index: np.ndarray,
        is_lfr: bool,
        is_tds_cwf: bool,
        use_fill_values: bool,
    ) -> List[np.ndarray]:
        if use_fill_values:
            return [np.full(np.shape(v), np.nan) for v in samples_ca_tm]

        i_cal = int(settings.i_calib_time_low)
        offset = float(self.voltage_offset_tm[i_cal, settings.i_blts])
        gain = float(self.voltage_gain_avolt_per_tm[i_cal, settings.i_blts])
        src = settings.blts_source
        if src.is_asr and src.asr.is_ac and settings.bias_high_gain == 1:
            gain /= self.ac_high_gain

        return [(np.asarray(v, dtype=float) - offset) * gain for v in samples_ca_tm]

    def calibrate_current(self, current_tm: np.ndarray, i_antenna: int, i_calib_low: np.ndarray) -> np.ndarray:
        current_tm = np.asarray(current_tm, dtype=float)
        i_cal = np.asarray(i_calib_low, dtype=np.int64)
        if i_cal.shape != current_tm.shape:
            raise ShapeMismatchError(f"current {current_tm.shape} and calibration index {i_cal.shape} differ")
        offset = np.asarray(self.current_offset_tm, dtype=float)[i_cal, i_antenna]
        gain = np.asarray(self.current_gain_aampere_per_tm, dtype=float)[i_cal, i_antenna]
        return (current_tm - offset) * gain
