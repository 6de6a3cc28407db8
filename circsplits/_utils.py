"""
_utils.py
=========
Validation and indexing helpers for circsplits.

These are standalone functions that don't depend on the main classes and
are shared by the operator wrappers, the block model and the driver.  All
taxa are 0-based positions in the circular order.
"""

import math
from typing import Optional, Sequence, Tuple

import numpy as np


def n_pairs(n: int) -> int:
    """
    Number of taxon pairs (and of circular splits) for *n* taxa.

    Examples
    --------
    >>> n_pairs(4)
    6
    >>> n_pairs(1)
    0
    """
    return n * (n - 1) // 2


def pair_index(i: int, j: int, n: int) -> int:
    """
    Flat index of the taxon pair {i, j}.

    Pairs are enumerated with i outer and j inner:
    (0,1), (0,2), ..., (0,n-1), (1,2), ..., (n-2,n-1).  The order of the
    two arguments does not matter.

    Parameters
    ----------
    i, j : int
        Distinct taxa in [0, n).
    n : int
        Number of taxa.

    Returns
    -------
    int
        Index in [0, n(n-1)/2).

    Raises
    ------
    ValueError
        If i == j or either taxon is out of range.

    Examples
    --------
    >>> pair_index(0, 1, 4)
    0
    >>> pair_index(1, 2, 4)
    3
    >>> pair_index(3, 2, 4)
    5
    """
    if i == j:
        raise ValueError(f"Pair must contain two distinct taxa, got ({i}, {j})")
    if i > j:
        i, j = j, i
    if i < 0 or j >= n:
        raise ValueError(f"Pair ({i}, {j}) out of range for n={n}")
    return i * n - i * (i + 1) // 2 + (j - i - 1)


def pair_from_index(k: int, n: int) -> Tuple[int, int]:
    """
    Inverse of :func:`pair_index`.

    Examples
    --------
    >>> pair_from_index(0, 4)
    (0, 1)
    >>> pair_from_index(5, 4)
    (2, 3)
    """
    total = n_pairs(n)
    if k < 0 or k >= total:
        raise ValueError(f"Pair index {k} out of range for n={n}")
    i = 0
    # pairs starting at i occupy n-1-i consecutive slots
    while k >= n - 1 - i:
        k -= n - 1 - i
        i += 1
    return i, i + 1 + k


def n_taxa_from_pairs(n_pair: int) -> int:
    """
    Recover n from a pair-vector length n(n-1)/2.

    Raises
    ------
    ValueError
        If *n_pair* is not a triangular number.

    Examples
    --------
    >>> n_taxa_from_pairs(6)
    4
    """
    n = int(round((1.0 + math.sqrt(1.0 + 8.0 * n_pair)) / 2.0))
    if n_pairs(n) != n_pair:
        raise ValueError(f"Length {n_pair} is not n(n-1)/2 for any n")
    return n


def check_n_taxa(n: int, minimum: int = 3) -> int:
    """Reject non-integer or too-small taxon counts."""
    if isinstance(n, bool) or not isinstance(n, (int, np.integer)):
        raise TypeError(f"n must be an integer, got {type(n).__name__}")
    if n < minimum:
        raise ValueError(f"n must be at least {minimum}, got {n}")
    return int(n)


def as_pair_vector(x, n: int, name: str = "x") -> np.ndarray:
    """
    Convert *x* to a contiguous float64 vector of length n(n-1)/2.

    Raises
    ------
    ValueError
        If *x* is not one-dimensional, has the wrong length or contains
        non-finite values.
    """
    arr = np.ascontiguousarray(x, dtype=np.float64)
    if arr.ndim != 1:
        raise ValueError(f"{name} must be one-dimensional, got shape {arr.shape}")
    expected = n_pairs(n)
    if arr.size != expected:
        raise ValueError(
            f"{name} must have length n(n-1)/2 = {expected} for n={n}, "
            f"got {arr.size}"
        )
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} contains non-finite values")
    return arr


def as_mask(mask, n: int, name: str = "active") -> np.ndarray:
    """Convert *mask* to a boolean vector of length n(n-1)/2."""
    arr = np.asarray(mask)
    if arr.dtype != np.bool_:
        raise TypeError(f"{name} must be a boolean array, got dtype {arr.dtype}")
    if arr.shape != (n_pairs(n),):
        raise ValueError(
            f"{name} must have shape ({n_pairs(n)},) for n={n}, got {arr.shape}"
        )
    return np.ascontiguousarray(arr)


def validate_distance_matrix(distances) -> np.ndarray:
    """
    Check that *distances* is a square, symmetric, non-negative matrix.

    Returns
    -------
    np.ndarray
        float64 copy of the matrix.

    Examples
    --------
    >>> validate_distance_matrix([[0, 1], [1, 0]]).shape
    (2, 2)
    """
    D = np.array(distances, dtype=np.float64)
    if D.ndim != 2 or D.shape[0] != D.shape[1]:
        raise ValueError(f"Distance matrix must be square, got shape {D.shape}")
    if not np.all(np.isfinite(D)):
        raise ValueError("Distance matrix contains non-finite values")
    if np.any(D < 0):
        raise ValueError("Distance matrix contains negative entries")
    if not np.allclose(D, D.T, rtol=0.0, atol=1e-12):
        raise ValueError("Distance matrix is not symmetric")
    return D


def validate_ordering(ordering: Optional[Sequence[int]], n: int) -> np.ndarray:
    """
    Check that *ordering* is a permutation of 0..n-1 (identity if None).

    Examples
    --------
    >>> validate_ordering([2, 0, 1], 3).tolist()
    [2, 0, 1]
    >>> validate_ordering(None, 3).tolist()
    [0, 1, 2]
    """
    if ordering is None:
        return np.arange(n, dtype=np.int64)
    order = np.asarray(ordering)
    if order.shape != (n,):
        raise ValueError(f"Ordering must list all {n} taxa, got shape {order.shape}")
    if not np.issubdtype(order.dtype, np.integer):
        raise TypeError(f"Ordering must contain integers, got dtype {order.dtype}")
    if not np.array_equal(np.sort(order), np.arange(n)):
        raise ValueError("Ordering is not a permutation of 0..n-1")
    return order.astype(np.int64)
