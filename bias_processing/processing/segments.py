from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
import pandas as pd

from bias_processing.errors import ShapeMismatchError


@dataclass(frozen=True)
class Segment:
    """Maximal run of records ``[i_first, i_last]`` (inclusive) with constant configuration."""

    i_first: int
    i_last: int

    @property
    def n_records(self) -> int:
        return self.i_last - self.i_first + 1

    @property
    def slice(self) -> slice:
        return slice(self.i_first, self.i_last + 1)


def _rows_equal_to_next(a: np.ndarray) -> np.ndarray:
    """Boolean (N-1,): whether row i equals row i+1. NaN equals NaN."""
    a2 = a.reshape(a.shape[0], -1)
    x0 = a2[:-1]
    x1 = a2[1:]
    eq = x0 == x1
    if np.issubdtype(a2.dtype, np.floating):
        eq |= np.isnan(x0) & np.isnan(x1)
    return np.all(eq, axis=1)


def split_by_change(*arrays: np.ndarray) -> Tuple[np.ndarray, np.ndarray, int]:
    """Split records into maximal runs where every array is constant.

    Parameters
    ----------
    *arrays:
        K >= 1 arrays with the same first dimension N (records). Arrays with
        more dimensions (e.g. an index pair per record) are compared row-wise.
        Comparison is exact; NaN is treated as equal to NaN.

    Returns
    -------
    i_first, i_last, n
        Inclusive first and last index of every run, and the number of runs.
        ``N == 0`` gives zero runs.
    """
    if not arrays:
        raise ValueError("No arrays provided")

    arrs = [np.asarray(a) for a in arrays]
    for i, a in enumerate(arrs):
        if a.ndim == 0:
            raise ShapeMismatchError(f"Array {i} is a scalar, expected at least 1D")
    n = int(arrs[0].shape[0])
    for i, a in enumerate(arrs[1:], start=1):
        if a.shape[0] != n:
            raise ShapeMismatchError(f"Array {i} has {a.shape[0]} records, expected {n}")

    if n == 0:
        empty = np.zeros(0, dtype=np.int64)
        return empty, empty.copy(), 0

    change = np.zeros(n - 1, dtype=bool)
    for a in arrs:
        change |= ~_rows_equal_to_next(a)

    i_change = np.flatnonzero(change)
    i_first = np.concatenate(([0], i_change + 1)).astype(np.int64)
    i_last = np.concatenate((i_change, [n - 1])).astype(np.int64)
    return i_first, i_last, int(i_first.size)


def iter_segments(*arrays: np.ndarray) -> List[Segment]:
    """Same as :func:`split_by_change` but returns :class:`Segment` objects."""
    i_first, i_last, _ = split_by_change(*arrays)
    return [Segment(int(a), int(b)) for a, b in zip(i_first, i_last)]


def split_by_false(mask: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Return inclusive (first, last) indices of every run of True in a 1D boolean array."""
    b = np.asarray(mask, dtype=bool)
    if b.ndim != 1:
        raise ShapeMismatchError(f"Expected 1D boolean array, got shape {b.shape}")
    padded = np.concatenate(([False], b, [False])).astype(np.int8)
    d = np.diff(padded)
    i1 = np.flatnonzero(d == 1)
    i2 = np.flatnonzero(d == -1) - 1
    return i1.astype(np.int64), i2.astype(np.int64)


def true_with_margin(x: np.ndarray, mask: np.ndarray, margin: float) -> np.ndarray:
    """Widen every run of True in ``mask`` by ``margin`` in the units of ``x``.

    A record is True in the result if its ``x`` lies within ``margin`` of the
    ``x`` range of any True run (closed interval). ``x`` must be sorted; no
    uniform spacing is assumed.
    """
    x = np.asarray(x)
    b = np.asarray(mask, dtype=bool)
    if x.ndim != 1 or b.shape != x.shape:
        raise ShapeMismatchError(f"x and mask must be 1D with equal shape, got {x.shape} and {b.shape}")
    if margin < 0:
        raise ValueError(f"margin must be >= 0, got {margin}")

    if np.issubdtype(x.dtype, np.integer):
        # Keep integer arithmetic for nanosecond timestamps.
        margin = int(round(margin))

    out = np.zeros(x.shape, dtype=bool)
    i1, i2 = split_by_false(b)
    for a, c in zip(i1, i2):
        lo = np.searchsorted(x, x[a] - margin, side="left")
        hi = np.searchsorted(x, x[c] + margin, side="right")
        out[lo:hi] = True
    return out


def segments_to_frame(segments: Sequence[Segment], epoch: np.ndarray) -> pd.DataFrame:
    """One row per segment: index range, record count and TT2000 start/stop."""
    epoch = np.asarray(epoch, dtype=np.int64)
    return pd.DataFrame(
        {
            "i_first": [s.i_first for s in segments],
            "i_last": [s.i_last for s in segments],
            "n_records": [s.n_records for s in segments],
            "start_tt2000": [int(epoch[s.i_first]) for s in segments],
            "stop_tt2000": [int(epoch[s.i_last]) for s in segments],
        },
        columns=["i_first", "i_last", "n_records", "start_tt2000", "stop_tt2000"],
    )
