"""Demultiplex and calibrate voltages and currents, one segment at a time.

Records are split into maximal segments where every configuration value that
affects calibration or routing is constant. Each segment is routed,
calibrated and demultiplexed on its own and written back into full-length
arrays. Segments share no state, so running the same input twice gives
identical output.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional, Union

import numpy as np

from bias_processing.errors import ShapeMismatchError
from bias_processing.models.asr import ALL_ASR_IDS, AsrId, AsrSamples
from bias_processing.models.records import N_ANTENNAS, N_BLTS, CalibratedRecords, RecordSequence
from bias_processing.processing.calibration import CalibrationEngine, VoltageCalibrationSettings
from bias_processing.processing.demux import BltsCategory, derive_missing, route
from bias_processing.processing.segments import Segment, iter_segments, segments_to_frame
from bias_processing.processing.snapshots import matrix_to_vectors, vectors_to_matrix
from bias_processing.processing.tt2000 import tt2000_to_utc_str

logger = logging.getLogger(__name__)


def _segment_dt_sec(records: RecordSequence, seg: Segment) -> Union[float, np.ndarray]:
    """Sample spacing: per record for snapshots, one value for continuous waveforms."""
    freq = np.asarray(records.freq_hz, dtype=float)[seg.slice]
    if records.has_snapshot_format:
        return 1.0 / freq
    if seg.n_records >= 2:
        epoch = np.asarray(records.epoch, dtype=np.int64)
        return float(epoch[seg.i_last] - epoch[seg.i_first]) / (seg.n_records - 1) * 1e-9
    return float(1.0 / freq[0])


def calibrate_demux_segment(
    records: RecordSequence,
    seg: Segment,
    engine: CalibrationEngine,
    *,
    dlr_using12: bool,
    i_calib_low: int,
    i_calib_high: int,
) -> AsrSamples:
    """Calibrate and demultiplex one segment.

    Returns ASR arrays covering only the segment's records, shaped
    ``(seg.n_records, spr)``. Undefined ASRs are None.
    """
    i0 = seg.i_first
    mux_set = float(records.mux_set[i0])
    diff_gain = float(records.diff_gain[i0])
    i_lsf = float(records.lsf_index[i0])
    ufv = bool(records.use_fill_values[i0])
    cti = np.asarray(records.calibration_table_index, dtype=float)[i0, :]

    routing = route(mux_set, dlr_using12)
    spr = records.samples_per_record
    n_valid = np.asarray(records.n_valid_samples_per_record)[seg.slice]
    dt_sec = _segment_dt_sec(records, seg)

    blts_avolt: List[np.ndarray] = []
    for i_blts in range(N_BLTS):
        src = routing.blts[i_blts]
        samples_tm = np.asarray(records.samples_tm[i_blts], dtype=float)[seg.slice, :]

        if src.category is BltsCategory.UNKNOWN:
            blts_avolt.append(np.full(samples_tm.shape, np.nan))
            continue
        if src.category in (BltsCategory.GND, BltsCategory.REF_2_5V):
            blts_avolt.append(samples_tm.copy())
            continue

        if records.has_snapshot_format:
            samples_ca_tm = matrix_to_vectors(samples_tm, n_valid)
        else:
            if not np.all(n_valid == 1):
                raise ShapeMismatchError("Continuous waveform records must have exactly one valid sample")
            samples_ca_tm = [samples_tm[:, 0]]

        settings = VoltageCalibrationSettings(
            i_blts=i_blts,
            blts_source=src,
            bias_high_gain=diff_gain,
            i_calib_time_low=int(i_calib_low),
            i_calib_time_high=int(i_calib_high),
            i_lsf=i_lsf,
        )
        samples_ca_avolt = engine.calibrate_voltage(
            dt_sec, samples_ca_tm, settings, cti, records.is_lfr, records.is_tds_cwf, ufv
        )

        if len(samples_ca_avolt) != len(samples_ca_tm):
            raise ShapeMismatchError(
                f"BLTS {i_blts + 1}: engine returned {len(samples_ca_avolt)} vectors, expected {len(samples_ca_tm)}"
            )
        for k, (a, b) in enumerate(zip(samples_ca_avolt, samples_ca_tm)):
            if np.shape(a) != np.shape(b):
                raise ShapeMismatchError(
                    f"BLTS {i_blts + 1}, vector {k}: calibrated shape {np.shape(a)} differs from {np.shape(b)}"
                )

        if records.has_snapshot_format:
            avolt = vectors_to_matrix(samples_ca_avolt, spr)
        else:
            avolt = np.asarray(samples_ca_avolt[0], dtype=float)[:, None]
        if ufv:
            # The calibration table index of a UFV segment may be invalid.
            avolt = np.full(samples_tm.shape, np.nan)
        blts_avolt.append(avolt)

    return derive_missing(routing, blts_avolt)


def calibrate_demux_voltages(
    records: RecordSequence,
    engine: CalibrationEngine,
    dlr_using12: Optional[np.ndarray] = None,
) -> Dict[AsrId, np.ndarray]:
    """Calibrate and demultiplex all records.

    Returns
    -------
    dict
        ASR -> ``(n_records, spr)`` voltages in volt, NaN where undefined.
    """
    t0 = time.perf_counter()
    n = records.n_records
    spr = records.samples_per_record
    epoch = np.asarray(records.epoch, dtype=np.int64)
    if dlr_using12 is None:
        dlr_using12 = records.dlr_using12
    dlr_using12 = np.asarray(dlr_using12, dtype=bool)
    if dlr_using12.shape != (n,):
        raise ShapeMismatchError(f"dlr_using12: expected shape ({n},), got {dlr_using12.shape}")

    i_cal_low = np.asarray(engine.calibration_time_index_low(epoch))
    i_cal_high = np.asarray(engine.calibration_time_index_high(epoch))
    for name, a in (("calibration_time_index_low", i_cal_low), ("calibration_time_index_high", i_cal_high)):
        if a.shape != (n,):
            raise ShapeMismatchError(f"{name}: expected shape ({n},), got {a.shape}")

    out = {asr: np.full((n, spr), np.nan) for asr in ALL_ASR_IDS}

    segments = iter_segments(
        records.mux_set,
        records.diff_gain,
        dlr_using12,
        records.freq_hz,
        i_cal_low,
        i_cal_high,
        records.lsf_index,
        records.use_fill_values,
        records.calibration_table_index,
    )
    logger.info("Calibrating voltages - one sequence of records with identical settings at a time.")
    for seg in segments:
        i0 = seg.i_first
        cti = records.calibration_table_index[i0]
        logger.info(
            "Records %8i-%8i : %s -- %s MUX_SET=%g; DIFF_GAIN=%g; dlrUsing12=%i; freqHz=%g; "
            "iCalibL=%i; iCalibH=%i; ufv=%i CALIBRATION_TABLE_INDEX=[%g, %g]",
            seg.i_first,
            seg.i_last,
            tt2000_to_utc_str(epoch[seg.i_first]),
            tt2000_to_utc_str(epoch[seg.i_last]),
            records.mux_set[i0],
            records.diff_gain[i0],
            int(dlr_using12[i0]),
            records.freq_hz[i0],
            i_cal_low[i0],
            i_cal_high[i0],
            int(records.use_fill_values[i0]),
            cti[0],
            cti[1],
        )
        asr_samples = calibrate_demux_segment(
            records,
            seg,
            engine,
            dlr_using12=bool(dlr_using12[i0]),
            i_calib_low=int(i_cal_low[i0]),
            i_calib_high=int(i_cal_high[i0]),
        )
        for asr, v in asr_samples.filled((seg.n_records, spr)).items():
            out[asr][seg.slice, :] = v

    logger.debug(
        "Calibrated %d records in %d segments in %.3f s", n, len(segments), time.perf_counter() - t0
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("Segments:\n%s", segments_to_frame(segments, epoch).to_string(index=False))
    return out


def calibrate_currents(epoch: np.ndarray, current_tm: np.ndarray, engine: CalibrationEngine) -> np.ndarray:
    """Calibrate bias currents ``(n_records, 3)``, segmented by calibration time."""
    epoch = np.asarray(epoch, dtype=np.int64)
    current_tm = np.asarray(current_tm, dtype=float)
    n = epoch.shape[0]
    if current_tm.shape != (n, N_ANTENNAS):
        raise ShapeMismatchError(f"current_tm: expected shape ({n}, {N_ANTENNAS}), got {current_tm.shape}")

    out = np.full((n, N_ANTENNAS), np.nan)
    i_cal_low = np.asarray(engine.calibration_time_index_low(epoch))
    logger.info("Calibrating currents - one sequence of records with identical settings at a time.")
    for seg in iter_segments(i_cal_low):
        logger.info(
            "Records %7i-%7i : %s -- %s",
            seg.i_first,
            seg.i_last,
            tt2000_to_utc_str(epoch[seg.i_first]),
            tt2000_to_utc_str(epoch[seg.i_last]),
        )
        for i_ant in range(N_ANTENNAS):
            out[seg.slice, i_ant] = engine.calibrate_current(
                current_tm[seg.slice, i_ant], i_ant, i_cal_low[seg.slice]
            )
    return out


def process_calibrate_demux(
    records: RecordSequence,
    current_tm: np.ndarray,
    engine: CalibrationEngine,
) -> CalibratedRecords:
    """Calibrated and demultiplexed voltages plus calibrated currents."""
    t0 = time.perf_counter()
    asr_avolt = calibrate_demux_voltages(records, engine)
    current_aampere = calibrate_currents(records.epoch, current_tm, engine)
    logger.info(
        "process_calibrate_demux: %d records in %.3f s", records.n_records, time.perf_counter() - t0
    )
    return CalibratedRecords(asr_avolt=asr_avolt, current_aampere=current_aampere)
