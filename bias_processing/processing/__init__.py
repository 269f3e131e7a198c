"""Processing package.

Data flow:
  - Raw :class:`~bias_processing.models.records.RecordSequence` objects are
    split into segments, routed, calibrated and demultiplexed.
  - The quality overlay then blanks use-fill-value records.
  - Downsampling aggregates the result into fixed UTC time bins.
"""

from .segments import Segment, iter_segments, split_by_change
from .demux import MuxMode, RoutingTable, derive_missing, route
from .calibration import CalibrationEngine, ScalarCalibration
from .calibrate_demux import calibrate_demux_voltages, process_calibrate_demux
from .quality import NsoTable, quality_filter_l2
from .downsample import downsample_bin_sci_values, downsample_epoch, downsample_records
from .hk_time import bias_current_on_sci_time, hk_on_sci_time
from .pipeline import L2Result, process_l1_to_l2, process_l2_to_downsampled, records_from_science_and_hk

__all__ = [
    "Segment",
    "iter_segments",
    "split_by_change",
    "MuxMode",
    "RoutingTable",
    "derive_missing",
    "route",
    "CalibrationEngine",
    "ScalarCalibration",
    "calibrate_demux_voltages",
    "process_calibrate_demux",
    "NsoTable",
    "quality_filter_l2",
    "downsample_bin_sci_values",
    "downsample_epoch",
    "downsample_records",
    "bias_current_on_sci_time",
    "hk_on_sci_time",
    "L2Result",
    "process_l1_to_l2",
    "process_l2_to_downsampled",
    "records_from_science_and_hk",
]
