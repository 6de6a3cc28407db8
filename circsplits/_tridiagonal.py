"""
_tridiagonal.py
===============
Small tridiagonal matrix type used by the block Gram matrix and the block
preconditioner.

A TridiagonalMatrix stores its diagonal ``a`` (length m), sub-diagonal ``b``
(length m-1) and super-diagonal ``c`` (length m-1).  A missing ``b`` makes
it upper bidiagonal and a missing ``c`` lower bidiagonal; LU factors are
returned in that form.  The heavy loops (LU, bidiagonal substitution and
the inverse-entry tables) are numba kernels in ``_cpu_kernels``.
"""

from typing import Optional, Tuple

import numpy as np

from circsplits._cpu_kernels import (
    _tridiagonal_lu,
    _solve_lower_bidiagonal,
    _solve_upper_bidiagonal,
    _tridiagonal_inverse_data,
    _tinv_entry,
)


def _as_band(values, length: int, name: str) -> Optional[np.ndarray]:
    if values is None:
        return None
    arr = np.ascontiguousarray(values, dtype=np.float64)
    if arr.shape != (length,):
        raise ValueError(f"{name} must have shape ({length},), got {arr.shape}")
    return arr


class TridiagonalMatrix:
    """
    Tridiagonal (or bidiagonal) matrix of size m x m.

    Parameters
    ----------
    a : array_like, shape (m,)
        Main diagonal.
    b : array_like, shape (m-1,), optional
        Sub-diagonal, b[i] = T[i+1, i].  None for an upper bidiagonal matrix.
    c : array_like, shape (m-1,), optional
        Super-diagonal, c[i] = T[i, i+1].  None for a lower bidiagonal matrix.

    Examples
    --------
    >>> T = TridiagonalMatrix([2.0, 2.0], [-1.0], [-1.0])
    >>> T.multiply(np.array([1.0, 1.0])).tolist()
    [1.0, 1.0]
    """

    def __init__(self, a, b=None, c=None):
        self.a = np.ascontiguousarray(a, dtype=np.float64)
        if self.a.ndim != 1:
            raise ValueError(f"Diagonal must be one-dimensional, got shape {self.a.shape}")
        off = max(self.a.size - 1, 0)
        self.b = _as_band(b, off, "Sub-diagonal")
        self.c = _as_band(c, off, "Super-diagonal")
        self._inverse = None

    @property
    def size(self) -> int:
        return self.a.size

    def _sub(self) -> np.ndarray:
        return self.b if self.b is not None else np.zeros(max(self.size - 1, 0))

    def _super(self) -> np.ndarray:
        return self.c if self.c is not None else np.zeros(max(self.size - 1, 0))

    # ------------------------------------------------------------------ #
    # Construction                                                        #
    # ------------------------------------------------------------------ #

    def submatrix(self, mask) -> "TridiagonalMatrix":
        """
        Principal submatrix on the rows/columns where *mask* is true.

        Off-diagonal entries survive only between indices that were already
        adjacent; everything else in a principal submatrix of a tridiagonal
        matrix is zero.
        """
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (self.size,):
            raise ValueError(f"Mask must have shape ({self.size},), got {mask.shape}")
        idx = np.flatnonzero(mask)
        a = self.a[idx]
        adjacent = np.diff(idx) == 1
        lo = idx[:-1]
        b = c = None
        if self.b is not None:
            b = np.zeros(max(idx.size - 1, 0))
            b[adjacent] = self.b[lo[adjacent]]
        if self.c is not None:
            c = np.zeros(max(idx.size - 1, 0))
            c[adjacent] = self.c[lo[adjacent]]
        return TridiagonalMatrix(a, b, c)

    def __sub__(self, other: "TridiagonalMatrix") -> "TridiagonalMatrix":
        if other.size != self.size:
            raise ValueError(f"Size mismatch: {self.size} vs {other.size}")
        b = c = None
        if self.b is not None or other.b is not None:
            b = self._sub() - other._sub()
        if self.c is not None or other.c is not None:
            c = self._super() - other._super()
        return TridiagonalMatrix(self.a - other.a, b, c)

    def lu(self) -> Tuple["TridiagonalMatrix", "TridiagonalMatrix"]:
        """
        Unpivoted LU factorization T = L U.

        L is unit lower bidiagonal and U upper bidiagonal sharing the
        super-diagonal of T.  No pivoting is done: T is expected to be
        diagonally dominant.
        """
        lower, upper = _tridiagonal_lu(self.a, self._sub(), self._super())
        L = TridiagonalMatrix(np.ones(self.size), lower, None)
        U = TridiagonalMatrix(upper, None, self._super().copy())
        return L, U

    @staticmethod
    def multiply_lu(L: "TridiagonalMatrix", U: "TridiagonalMatrix") -> "TridiagonalMatrix":
        """Product of a lower and an upper bidiagonal matrix."""
        if L.size != U.size:
            raise ValueError(f"Size mismatch: {L.size} vs {U.size}")
        lb = L._sub()
        uc = U._super()
        a = L.a * U.a
        a[1:] += lb * uc
        return TridiagonalMatrix(a, lb * U.a[:-1], L.a[:-1] * uc)

    # ------------------------------------------------------------------ #
    # Products and solves                                                 #
    # ------------------------------------------------------------------ #

    def multiply(self, x) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        y = self.a * x
        if self.b is not None:
            y[1:] += self.b * x[:-1]
        if self.c is not None:
            y[:-1] += self.c * x[1:]
        return y

    def solve_lower(self, y) -> np.ndarray:
        """Forward substitution, ignoring any super-diagonal."""
        return _solve_lower_bidiagonal(self.a, self._sub(),
                                       np.ascontiguousarray(y, dtype=np.float64))

    def solve_upper(self, y) -> np.ndarray:
        """Back substitution, ignoring any sub-diagonal."""
        return _solve_upper_bidiagonal(self.a, self._super(),
                                       np.ascontiguousarray(y, dtype=np.float64))

    # ------------------------------------------------------------------ #
    # Entries of the inverse                                              #
    # ------------------------------------------------------------------ #

    def preprocess_inverse(self) -> "TridiagonalMatrix":
        """
        Precompute the tables for O(1) access to entries of inv(T).

        Uses Usmani's ratio formulation of the inverse of a tridiagonal
        matrix.  For very large, strongly dominant blocks the ratios can
        underflow; the blocks arising here stay well within range.
        """
        self._inverse = _tridiagonal_inverse_data(self.a, self._sub(), self._super())
        return self

    @property
    def inverse_data(self) -> Tuple[np.ndarray, ...]:
        if self._inverse is None:
            self.preprocess_inverse()
        return self._inverse

    def inverse_entry(self, i: int, j: int) -> float:
        """Entry (i, j) of inv(T)."""
        if not (0 <= i < self.size and 0 <= j < self.size):
            raise IndexError(f"Entry ({i}, {j}) out of range for size {self.size}")
        dinv, s, t, v, w = self.inverse_data
        return float(_tinv_entry(dinv, s, t, v, w, i, j))

    def to_dense(self) -> np.ndarray:
        T = np.diag(self.a)
        if self.b is not None and self.size > 1:
            T += np.diag(self.b, -1)
        if self.c is not None and self.size > 1:
            T += np.diag(self.c, 1)
        return T

    def __repr__(self) -> str:
        kind = "Tridiagonal"
        if self.b is None and self.c is None:
            kind = "Diagonal"
        elif self.b is None:
            kind = "UpperBidiagonal"
        elif self.c is None:
            kind = "LowerBidiagonal"
        return f"{kind}Matrix(size={self.size})"
