"""Housekeeping and bias current values on science timestamps.

Mux mode and diff gain are only telemetered in housekeeping (HK) records, and
bias currents only as a list of commanded settings. Both have to be moved to
the timestamps of the science records before segmentation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from bias_processing.errors import InsufficientReferenceDataError, ShapeMismatchError
from bias_processing.models.records import N_ANTENNAS

logger = logging.getLogger(__name__)


def interpolate_nearest(margin: float, x: np.ndarray, y: np.ndarray, xi: np.ndarray) -> np.ndarray:
    """Nearest-neighbour interpolation, NaN further than ``margin`` outside ``x``.

    ``x`` must increase strictly. Ties between two neighbours go to the later one.
    """
    x = np.asarray(x)
    y = np.asarray(y, dtype=float)
    xi = np.asarray(xi)
    if x.ndim != 1 or y.shape != x.shape:
        raise ShapeMismatchError(f"x {x.shape} and y {y.shape} must be 1D with equal shape")
    if x.size == 0:
        return np.full(xi.shape, np.nan)

    j = np.clip(np.searchsorted(x, xi, side="left"), 1, max(x.size - 1, 1))
    if x.size == 1:
        i = np.zeros(xi.shape, dtype=np.int64)
    else:
        left = x[j - 1]
        right = x[j]
        i = np.where((xi - left) < (right - xi), j - 1, j)

    out = y[i]
    outside = (xi < x[0] - margin) | (xi > x[-1] + margin)
    out[outside] = np.nan
    return out


def _most_common_spacing(t: np.ndarray) -> float:
    """Most common difference between consecutive values; the smallest on ties."""
    d = np.diff(t)
    values, counts = np.unique(d, return_counts=True)
    return float(values[np.argmax(counts)])


@dataclass(frozen=True)
class HkOnSciTime:
    mux_set: np.ndarray  # (n_sci,) float, NaN where HK does not cover
    diff_gain: np.ndarray  # (n_sci,) float


def hk_on_sci_time(
    hk_epoch: np.ndarray,
    hk_mux_set: np.ndarray,
    hk_diff_gain: np.ndarray,
    sci_epoch: np.ndarray,
) -> HkOnSciTime:
    """Mux set and diff gain of the nearest HK record for every science timestamp.

    Science timestamps more than half the most common HK spacing outside the
    HK time range get NaN (unknown).

    Raises
    ------
    InsufficientReferenceDataError
        If there are fewer than two HK records, or the HK and science time
        ranges do not overlap.
    """
    hk_epoch = np.asarray(hk_epoch, dtype=np.int64)
    sci_epoch = np.asarray(sci_epoch, dtype=np.int64)
    for name, a in (("hk_mux_set", hk_mux_set), ("hk_diff_gain", hk_diff_gain)):
        if np.shape(a) != hk_epoch.shape:
            raise ShapeMismatchError(f"{name}: expected shape {hk_epoch.shape}, got {np.shape(a)}")
    if hk_epoch.size < 2:
        raise InsufficientReferenceDataError(
            f"Need at least 2 HK records to derive the HK time spacing, got {hk_epoch.size}"
        )
    if not np.all(np.diff(hk_epoch) > 0):
        raise ValueError("HK timestamps do not increase monotonically")

    if sci_epoch.size:
        if sci_epoch[-1] < hk_epoch[0] or sci_epoch[0] > hk_epoch[-1]:
            raise InsufficientReferenceDataError("Science and HK time ranges do not overlap")
        if sci_epoch[0] < hk_epoch[0] or sci_epoch[-1] > hk_epoch[-1]:
            logger.warning(
                "HK time range is not a superset of the science time range. "
                "HK begins %g s after science begins. HK ends %g s before science ends.",
                1e-9 * (hk_epoch[0] - sci_epoch[0]),
                1e-9 * (sci_epoch[-1] - hk_epoch[-1]),
            )

    margin = _most_common_spacing(hk_epoch) / 2
    return HkOnSciTime(
        mux_set=interpolate_nearest(margin, hk_epoch, hk_mux_set, sci_epoch),
        diff_gain=interpolate_nearest(margin, hk_epoch, hk_diff_gain, sci_epoch),
    )


def _setting_on_time(epoch: np.ndarray, value: np.ndarray, sci_epoch: np.ndarray, i_antenna: int) -> np.ndarray:
    keep = ~np.isnan(value)
    e = epoch[keep]
    v = value[keep]

    if e.size > 1:
        same = np.diff(e) == 0
        if np.any(same):
            if np.any(v[1:][same] != v[:-1][same]):
                raise ValueError(
                    f"Antenna {i_antenna + 1}: conflicting bias current settings with identical timestamps"
                )
            logger.warning(
                "Antenna %d: removed %d duplicate bias current setting(s) with identical timestamps",
                i_antenna + 1,
                int(np.sum(same)),
            )
            first = np.concatenate(([True], ~same))
            e = e[first]
            v = v[first]

    out = np.full(sci_epoch.shape, np.nan)
    if e.size == 0:
        return out
    i = np.searchsorted(e, sci_epoch, side="right") - 1
    ok = i >= 0
    out[ok] = v[i[ok]]
    return out


def bias_current_on_sci_time(cur_epoch: np.ndarray, cur_values: np.ndarray, sci_epoch: np.ndarray) -> np.ndarray:
    """Bias current per antenna in effect at every science timestamp.

    Parameters
    ----------
    cur_epoch:
        ``(n,)`` timestamps of commanded settings (all antennas combined).
    cur_values:
        ``(n, 3)``; NaN where a record holds no setting for that antenna.
    sci_epoch:
        ``(n_sci,)``.

    Returns
    -------
    np.ndarray
        ``(n_sci, 3)``. The latest setting at or before each timestamp, NaN
        before the first setting of an antenna.
    """
    cur_epoch = np.asarray(cur_epoch, dtype=np.int64)
    cur_values = np.asarray(cur_values, dtype=float)
    sci_epoch = np.asarray(sci_epoch, dtype=np.int64)
    if cur_epoch.ndim != 1 or cur_values.shape != (cur_epoch.size, N_ANTENNAS):
        raise ShapeMismatchError(
            f"cur_epoch {cur_epoch.shape} and cur_values {cur_values.shape} are inconsistent"
        )
    if cur_epoch.size > 1 and np.any(np.diff(cur_epoch) < 0):
        raise ValueError("Bias current timestamps do not increase (all antennas combined)")
    if cur_epoch.size and sci_epoch.size and cur_epoch[0] > sci_epoch[0]:
        logger.warning(
            "Bias current data begins %g s after science data begins. "
            "Currents are unknown before that.",
            1e-9 * (cur_epoch[0] - sci_epoch[0]),
        )

    out = np.empty((sci_epoch.size, N_ANTENNAS))
    for i_ant in range(N_ANTENNAS):
        out[:, i_ant] = _setting_on_time(cur_epoch, cur_values[:, i_ant], sci_epoch, i_ant)
    return out
