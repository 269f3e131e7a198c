"""Time binning and per-bin aggregation of records.

Bins are regular in UTC: boundaries are ``ref + k * L`` in WOLS nanoseconds
(UTC without leap seconds), converted to TT2000 for record assignment. A bin
that contains a positive leap second is therefore one second longer in
TT2000 than the nominal length. Empty bins are kept so that the output
timestamps form a regular series.

Aggregation policy for degenerate bins (never an error):

- science values: NaN when the bin has fewer records than the minimum
- quality flag: :data:`EMPTY_BIN_QUALITY_FLAG` for empty bins, NaN when
  every record is a fill value
- bitmasks: 0 for empty bins
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from bias_processing.errors import ShapeMismatchError
from bias_processing.models.records import widen_quality_bitmask
from bias_processing.processing.tt2000 import tt2000_to_wols, wols_to_tt2000

logger = logging.getLogger(__name__)

EMPTY_BIN_QUALITY_FLAG = 0
EMPTY_BIN_QUALITY_BITMASK = 0


# ---------------------------------------------------------------------------
# Binning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DownsampledEpoch:
    """Bins covering a timestamp sequence.

    Attributes
    ----------
    epoch:
        TT2000 bin timestamps, ``(n_bins,)``.
    i_records:
        Indices of the input records in every bin (possibly empty).
    bin_size_ns:
        Physical (TT2000) length of every bin, ``(n_bins,)``.
    """

    epoch: np.ndarray
    i_records: Tuple[np.ndarray, ...]
    bin_size_ns: np.ndarray

    @property
    def n_bins(self) -> int:
        return int(self.epoch.shape[0])

    def n_records_per_bin(self) -> np.ndarray:
        return np.array([r.size for r in self.i_records], dtype=np.int64)


def downsample_epoch(
    epoch: np.ndarray,
    boundary_ref: int,
    bin_length_wols_ns: int,
    bin_timestamp_pos_wols_ns: int,
) -> DownsampledEpoch:
    """Assign records to fixed-length UTC bins.

    Parameters
    ----------
    epoch:
        TT2000, non-decreasing.
    boundary_ref:
        TT2000 of any bin boundary. Need not be inside the data range.
    bin_length_wols_ns:
        Nominal bin length L (UTC nanoseconds, no leap seconds).
    bin_timestamp_pos_wols_ns:
        Offset of the bin timestamp from the bin start, in the same units.

    Returns
    -------
    DownsampledEpoch
        Bins tile ``[first boundary <= epoch[0], last boundary > epoch[-1])``.
        Every record lies in exactly one bin (half-open intervals).
    """
    epoch = np.asarray(epoch, dtype=np.int64)
    if epoch.ndim != 1:
        raise ShapeMismatchError(f"epoch: expected 1D array, got shape {epoch.shape}")
    if epoch.size > 1 and np.any(np.diff(epoch) < 0):
        raise ValueError("epoch is not sorted")
    L = int(bin_length_wols_ns)
    pos = int(bin_timestamp_pos_wols_ns)
    if L <= 0:
        raise ValueError(f"bin_length_wols_ns must be > 0, got {L}")

    if epoch.size == 0:
        empty = np.zeros(0, dtype=np.int64)
        return DownsampledEpoch(epoch=empty, i_records=(), bin_size_ns=empty.copy())

    ref_w = int(tt2000_to_wols(boundary_ref))
    first_w = int(tt2000_to_wols(epoch[0]))
    last_w = int(tt2000_to_wols(epoch[-1]))

    k_min = (first_w - ref_w) // L
    k_max = (last_w - ref_w) // L + 1
    edges_w = ref_w + np.arange(k_min, k_max + 1, dtype=np.int64) * L
    edges_tt = wols_to_tt2000(edges_w)

    # Leap seconds map to the following day in WOLS; make sure the edges cover the data.
    while edges_tt[0] > epoch[0]:
        edges_w = np.concatenate(([edges_w[0] - L], edges_w))
        edges_tt = wols_to_tt2000(edges_w)
    while edges_tt[-1] <= epoch[-1]:
        edges_w = np.concatenate((edges_w, [edges_w[-1] + L]))
        edges_tt = wols_to_tt2000(edges_w)

    i_start = np.searchsorted(epoch, edges_tt[:-1], side="left")
    i_stop = np.searchsorted(epoch, edges_tt[1:], side="left")
    i_records = tuple(np.arange(a, b, dtype=np.int64) for a, b in zip(i_start, i_stop))

    bin_epoch = wols_to_tt2000(edges_w[:-1] + pos)
    bin_size_ns = np.diff(edges_tt)

    logger.debug(
        "Downsampled %d records into %d bins (%d empty)",
        epoch.size,
        bin_epoch.size,
        int(np.sum(i_stop == i_start)),
    )
    return DownsampledEpoch(epoch=bin_epoch, i_records=i_records, bin_size_ns=bin_size_ns)


# ---------------------------------------------------------------------------
# Per-bin aggregation
# ---------------------------------------------------------------------------


def modified_std_deviation(x: np.ndarray, ref: np.ndarray) -> np.ndarray:
    """Spread of ``x`` (n, m) around ``ref`` (m,), per column.

    ``sqrt(sum((x - ref)**2) / (n - 1))``. Measured from ``ref`` (normally the
    median), not from the mean. NaN for ``n <= 1``.
    """
    x = np.asarray(x, dtype=float)
    ref = np.asarray(ref, dtype=float)
    if x.ndim != 2 or ref.shape != (x.shape[1],):
        raise ShapeMismatchError(f"x {x.shape} and ref {ref.shape} are inconsistent")
    n = x.shape[0]
    if n <= 1:
        return np.full(x.shape[1], np.nan)
    return np.sqrt(np.sum((x - ref[None, :]) ** 2, axis=0) / (n - 1))


def downsample_bin_sci_values(values: np.ndarray, n_min: int) -> Tuple[np.ndarray, np.ndarray]:
    """Median and modified standard deviation of the records of one bin.

    Parameters
    ----------
    values:
        ``(n_records_in_bin, n_columns)``. NaN propagates to the column result.
    n_min:
        Minimum number of records. Below it both outputs are NaN.

    Returns
    -------
    median, mstd
        Each ``(n_columns,)``.
    """
    values = np.asarray(values, dtype=float)
    if values.ndim != 2:
        raise ShapeMismatchError(f"values: expected 2D array, got shape {values.shape}")
    n, m = values.shape
    if n < n_min or n == 0:
        return np.full(m, np.nan), np.full(m, np.nan)

    med = np.median(values, axis=0)
    return med, modified_std_deviation(values, med)


def downsample_bin_quality_flag(quality_flag: np.ndarray) -> float:
    """Lowest quality flag in the bin, ignoring fill values (NaN).

    :data:`EMPTY_BIN_QUALITY_FLAG` if the bin is empty, NaN if every record
    has a fill value.
    """
    qf = np.asarray(quality_flag, dtype=float)
    if qf.size == 0:
        return float(EMPTY_BIN_QUALITY_FLAG)
    if np.all(np.isnan(qf)):
        return float("nan")
    return float(np.nanmin(qf))


def downsample_bin_quality_bitmask(bitmask: np.ndarray) -> np.uint16:
    """Bitwise OR of the bitmasks in the bin; 0 if empty."""
    b = np.asarray(bitmask)
    if b.dtype != np.uint16:
        raise TypeError(f"Bitmask must be uint16, got {b.dtype}")
    if b.size == 0:
        return np.uint16(EMPTY_BIN_QUALITY_BITMASK)
    return np.bitwise_or.reduce(b)


# ---------------------------------------------------------------------------
# Downsampled product
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DownsampledRecords:
    """Downsampled records: one row per bin.

    ``sci_median`` and ``sci_mstd`` map a science quantity name to an array
    ``(n_bins, n_columns)``.
    """

    epoch: np.ndarray  # (n_bins,) TT2000
    delta_plus_minus_ns: np.ndarray  # (n_bins,) float
    n_records: np.ndarray  # (n_bins,)
    quality_flag: np.ndarray  # (n_bins,) float
    quality_bitmask: np.ndarray  # (n_bins,) uint16
    l2_quality_bitmask: np.ndarray  # (n_bins,) uint16
    sci_median: Dict[str, np.ndarray]
    sci_mstd: Dict[str, np.ndarray]

    @property
    def n_bins(self) -> int:
        return int(self.epoch.shape[0])

    def to_frame(self) -> pd.DataFrame:
        """Tabular view, one row per bin, one column per science component.

        Multi-column quantities ``X`` become ``X_0``, ``X_1``, ...; the spread
        columns are suffixed ``_mstd``.
        """
        cols: Dict[str, np.ndarray] = {
            "epoch": self.epoch,
            "delta_plus_minus_ns": self.delta_plus_minus_ns,
            "n_records": self.n_records,
            "quality_flag": self.quality_flag,
            "quality_bitmask": self.quality_bitmask,
            "l2_quality_bitmask": self.l2_quality_bitmask,
        }
        for name, med in self.sci_median.items():
            mstd = self.sci_mstd[name]
            if med.shape[1] == 1:
                cols[name] = med[:, 0]
                cols[f"{name}_mstd"] = mstd[:, 0]
            else:
                for j in range(med.shape[1]):
                    cols[f"{name}_{j}"] = med[:, j]
                    cols[f"{name}_{j}_mstd"] = mstd[:, j]
        return pd.DataFrame(cols)


def downsample_records(
    epoch: np.ndarray,
    sci_values: Mapping[str, np.ndarray],
    quality_flag: np.ndarray,
    quality_bitmask: np.ndarray,
    l2_quality_bitmask: np.ndarray,
    *,
    boundary_ref: int,
    bin_length_wols_ns: int,
    bin_timestamp_pos_wols_ns: int,
    n_min_samples_per_bin: int,
    quality_flag_min_for_use: Optional[float] = None,
) -> DownsampledRecords:
    """Downsample science quantities and their quality variables.

    Records with ``quality_flag < quality_flag_min_for_use`` are set to NaN
    before aggregation (they still count towards the record number of the
    bin). Quality variables are aggregated from all records.
    """
    t0 = time.perf_counter()
    epoch = np.asarray(epoch, dtype=np.int64)
    n = epoch.shape[0] if epoch.ndim == 1 else -1
    qf = np.asarray(quality_flag, dtype=float)
    qbm = widen_quality_bitmask(quality_bitmask)
    l2qbm = np.asarray(l2_quality_bitmask)
    for name, a in (("quality_flag", qf), ("quality_bitmask", qbm), ("l2_quality_bitmask", l2qbm)):
        if a.shape != (n,):
            raise ShapeMismatchError(f"{name}: expected shape ({n},), got {a.shape}")

    values: Dict[str, np.ndarray] = {}
    for name, v in sci_values.items():
        v = np.array(v, dtype=float, copy=True)
        if v.ndim == 1:
            v = v[:, None]
        if v.ndim != 2 or v.shape[0] != n:
            raise ShapeMismatchError(f"{name}: expected {n} records, got shape {v.shape}")
        if quality_flag_min_for_use is not None:
            # NaN quality flags compare False and are kept.
            v[qf < quality_flag_min_for_use, :] = np.nan
        values[name] = v

    de = downsample_epoch(epoch, boundary_ref, bin_length_wols_ns, bin_timestamp_pos_wols_ns)
    nb = de.n_bins

    qf_d = np.empty(nb, dtype=float)
    qbm_d = np.empty(nb, dtype=np.uint16)
    l2qbm_d = np.empty(nb, dtype=np.uint16)
    med_d = {name: np.empty((nb, v.shape[1])) for name, v in values.items()}
    mstd_d = {name: np.empty((nb, v.shape[1])) for name, v in values.items()}

    for i, k in enumerate(de.i_records):
        qf_d[i] = downsample_bin_quality_flag(qf[k])
        qbm_d[i] = downsample_bin_quality_bitmask(qbm[k])
        l2qbm_d[i] = downsample_bin_quality_bitmask(l2qbm[k])
        for name, v in values.items():
            med_d[name][i, :], mstd_d[name][i, :] = downsample_bin_sci_values(v[k, :], n_min_samples_per_bin)

    logger.info("Downsampled %d records to %d bins in %.3f s", n, nb, time.perf_counter() - t0)
    return DownsampledRecords(
        epoch=de.epoch,
        delta_plus_minus_ns=de.bin_size_ns.astype(float) / 2,
        n_records=de.n_records_per_bin(),
        quality_flag=qf_d,
        quality_bitmask=qbm_d,
        l2_quality_bitmask=l2qbm_d,
        sci_median=med_d,
        sci_mstd=mstd_d,
    )
