from __future__ import annotations

from typing import List, Sequence

import numpy as np

from bias_processing.errors import ShapeMismatchError


def matrix_to_vectors(samples: np.ndarray, n_valid_per_record: np.ndarray) -> List[np.ndarray]:
    """Split a snapshot matrix into one vector per record, truncated to its valid length."""
    a = np.asarray(samples)
    nv = np.asarray(n_valid_per_record)
    if a.ndim != 2 or nv.shape != (a.shape[0],):
        raise ShapeMismatchError(f"samples {a.shape} and n_valid {nv.shape} are inconsistent")
    return [a[i, : int(nv[i])] for i in range(a.shape[0])]


def vectors_to_matrix(vectors: Sequence[np.ndarray], n_columns: int) -> np.ndarray:
    """Pack per-record vectors into a (n_records, n_columns) matrix, padding with NaN.

    A vector longer than ``n_columns`` raises :class:`ShapeMismatchError`.
    """
    out = np.full((len(vectors), int(n_columns)), np.nan, dtype=float)
    for i, v in enumerate(vectors):
        v = np.asarray(v, dtype=float).ravel()
        if v.size > n_columns:
            raise ShapeMismatchError(f"Record {i}: {v.size} samples do not fit in {n_columns} columns")
        out[i, : v.size] = v
    return out
