"""End-to-end processing: raw records -> calibrated L2 -> downsampled.

Sequential and single-threaded. Nothing here performs I/O; record arrays,
the NSO table and the calibration engine are supplied by the caller.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Tuple

import numpy as np

from bias_processing.models.records import CalibratedRecords, RecordSequence
from bias_processing.models.settings import ProcessingSettings
from bias_processing.processing.calibrate_demux import process_calibrate_demux
from bias_processing.processing.calibration import CalibrationEngine
from bias_processing.processing.downsample import DownsampledRecords, downsample_records
from bias_processing.processing.hk_time import bias_current_on_sci_time, hk_on_sci_time
from bias_processing.processing.quality import NsoTable, quality_filter_l2
from bias_processing.processing.tt2000 import bin_boundary_reference

logger = logging.getLogger(__name__)


def records_from_science_and_hk(
    sci_epoch: np.ndarray,
    samples_tm: Sequence[np.ndarray],
    freq_hz: np.ndarray,
    hk_epoch: np.ndarray,
    hk_mux_set: np.ndarray,
    hk_diff_gain: np.ndarray,
    cur_epoch: np.ndarray,
    cur_values: np.ndarray,
    **kwargs: Any,
) -> Tuple[RecordSequence, np.ndarray]:
    """Assemble science records with mux set and diff gain taken from HK.

    Bias current settings are moved onto the science timestamps as well.
    Remaining keyword arguments go to :meth:`RecordSequence.create`.

    Returns
    -------
    records, current_tm
        ``current_tm`` is ``(n_records, 3)``, NaN before the first setting.
    """
    hk = hk_on_sci_time(hk_epoch, hk_mux_set, hk_diff_gain, sci_epoch)
    current_tm = bias_current_on_sci_time(cur_epoch, cur_values, sci_epoch)
    records = RecordSequence.create(
        sci_epoch,
        samples_tm,
        mux_set=hk.mux_set,
        diff_gain=hk.diff_gain,
        freq_hz=freq_hz,
        **kwargs,
    )
    return records, current_tm


@dataclass(frozen=True)
class L2Result:
    """Calibrated, quality-filtered records."""

    epoch: np.ndarray  # (N,) TT2000
    calibrated: CalibratedRecords
    quality_flag: np.ndarray  # (N,) float
    quality_bitmask: np.ndarray  # (N,) uint16, from upstream
    l2_quality_bitmask: np.ndarray  # (N,) uint16
    ufv: np.ndarray  # (N,) bool

    @property
    def n_records(self) -> int:
        return int(self.epoch.shape[0])


def process_l1_to_l2(
    records: RecordSequence,
    current_tm: np.ndarray,
    engine: CalibrationEngine,
    nso_table: Optional[NsoTable] = None,
    settings: Optional[ProcessingSettings] = None,
) -> L2Result:
    """Demultiplex, calibrate and quality-filter raw records."""
    if settings is None:
        settings = ProcessingSettings()
    if nso_table is None:
        nso_table = NsoTable.empty()

    t0 = time.perf_counter()
    calibrated = process_calibrate_demux(records, current_tm, engine)
    qr = quality_filter_l2(records, calibrated, nso_table, settings)
    logger.info("L1 -> L2: %d records in %.3f s", records.n_records, time.perf_counter() - t0)

    return L2Result(
        epoch=np.asarray(records.epoch, dtype=np.int64),
        calibrated=qr.calibrated,
        quality_flag=qr.quality_flag,
        quality_bitmask=np.asarray(records.quality_bitmask, dtype=np.uint16),
        l2_quality_bitmask=qr.l2_quality_bitmask,
        ufv=qr.ufv,
    )


def process_l2_to_downsampled(
    epoch: np.ndarray,
    sci_values: Mapping[str, np.ndarray],
    quality_flag: np.ndarray,
    quality_bitmask: np.ndarray,
    l2_quality_bitmask: np.ndarray,
    settings: Optional[ProcessingSettings] = None,
    boundary_ref: Optional[int] = None,
) -> DownsampledRecords:
    """Downsample L2-derived science quantities using the binning in ``settings``.

    ``boundary_ref`` defaults to the configured second of the UTC minute of
    the first record.
    """
    if settings is None:
        settings = ProcessingSettings()
    epoch = np.asarray(epoch, dtype=np.int64)
    if boundary_ref is None:
        boundary_ref = bin_boundary_reference(epoch[0], settings.boundary_ref_second) if epoch.size else 0

    return downsample_records(
        epoch,
        sci_values,
        quality_flag,
        quality_bitmask,
        l2_quality_bitmask,
        boundary_ref=boundary_ref,
        bin_length_wols_ns=settings.bin_length_wols_ns,
        bin_timestamp_pos_wols_ns=settings.bin_timestamp_pos_wols_ns,
        n_min_samples_per_bin=settings.n_min_samples_per_bin,
        quality_flag_min_for_use=settings.quality_flag_min_for_use,
    )
