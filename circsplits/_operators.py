"""
_operators.py
=============
Implicit evaluation of the circular split design matrix.

For n taxa in a fixed circular order there are n(n-1)/2 circular splits,
one per pair (i, j) with i < j: the arc {i, ..., j-1} against the rest.
The design matrix A maps split weights to the pairwise distances they
induce, A[(a,b),(i,j)] = 1 iff the split separates a from b.  A is square,
dense and invertible for every n >= 3, but it is never stored; the four
operators below apply A, A', inv(A) and inv(A)' in O(n^2).

Public API
----------
  circular_ax(n, x)      -> A x
  circular_atx(n, x)     -> A' x
  circular_solve(n, y)   -> inv(A) y
  circular_ainv_t(n, x)  -> inv(A)' x
  design_matrix(n)       -> dense A (for verification only)
  CircularOperator(n)    -> the four operators bound to one n

All functions are pure: they allocate a fresh output vector and never keep
state between calls, so concurrent solves on separate threads are safe.
"""

import numpy as np

from circsplits._cpu_kernels import (
    _circular_ax,
    _circular_atx,
    _circular_solve,
    _circular_ainv_t,
)
from circsplits._utils import n_pairs, check_n_taxa, as_pair_vector


def circular_ax(n: int, x) -> np.ndarray:
    """
    Distances induced by split weights *x*: d = A x.

    Parameters
    ----------
    n : int
        Number of taxa (n >= 3).
    x : array_like, shape (n(n-1)/2,)
        Split weights in canonical pair order.

    Returns
    -------
    np.ndarray[float64]
        Pairwise distances in canonical pair order.
    """
    n = check_n_taxa(n)
    x = as_pair_vector(x, n)
    d = np.empty(n_pairs(n))
    _circular_ax(n, x, d)
    return d


def circular_atx(n: int, x) -> np.ndarray:
    """Transpose product p = A' x."""
    n = check_n_taxa(n)
    x = as_pair_vector(x, n)
    p = np.empty(n_pairs(n))
    _circular_atx(n, x, p)
    return p


def circular_solve(n: int, y) -> np.ndarray:
    """
    Exact inverse x = inv(A) y.

    Recovers the unique split weights whose induced distances are *y*.  The
    weights may be negative; this is the unconstrained least-squares
    solution of A x = y.
    """
    n = check_n_taxa(n)
    y = as_pair_vector(y, n, "y")
    x = np.empty(n_pairs(n))
    _circular_solve(n, y, x)
    return x


def circular_ainv_t(n: int, x) -> np.ndarray:
    """Inverse transpose y = inv(A)' x."""
    n = check_n_taxa(n)
    x = as_pair_vector(x, n)
    y = np.empty(n_pairs(n))
    _circular_ainv_t(n, x, y)
    return y


def design_matrix(n: int) -> np.ndarray:
    """
    Dense circular split design matrix A, shape (n(n-1)/2, n(n-1)/2).

    Only intended for tests and small examples; memory grows as n^4.

    Examples
    --------
    >>> design_matrix(3).astype(int).tolist()
    [[1, 0, 1], [1, 1, 0], [0, 1, 1]]
    """
    n = check_n_taxa(n)
    m = n_pairs(n)
    pairs = [(i, j) for i in range(n - 1) for j in range(i + 1, n)]
    A = np.zeros((m, m))
    for col, (i, j) in enumerate(pairs):
        for row, (a, b) in enumerate(pairs):
            if (i <= a < j) != (i <= b < j):
                A[row, col] = 1.0
    return A


class CircularOperator:
    """
    The four circular split operators bound to a fixed number of taxa.

    Holds no working buffers; each call allocates its own output, so one
    instance may be shared freely.

    Parameters
    ----------
    n : int
        Number of taxa (n >= 3).

    Examples
    --------
    >>> op = CircularOperator(4)
    >>> op.n_pairs
    6
    >>> bool(np.allclose(op.solve(op.matvec(np.ones(6))), 1.0))
    True
    """

    def __init__(self, n: int):
        self.n = check_n_taxa(n)
        self.n_pairs = n_pairs(self.n)

    def matvec(self, x) -> np.ndarray:
        return circular_ax(self.n, x)

    def rmatvec(self, x) -> np.ndarray:
        return circular_atx(self.n, x)

    def solve(self, y) -> np.ndarray:
        return circular_solve(self.n, y)

    def solve_transpose(self, x) -> np.ndarray:
        return circular_ainv_t(self.n, x)

    def __repr__(self) -> str:
        return f"CircularOperator(n={self.n})"
