"""
_preconditioner.py
==================
Approximate block LU factorization of the restricted Gram matrix.

The factorization M = LL * UU follows the block structure of
:class:`~circsplits._blocks.BlockGramMatrix`:

  * interior blocks are eliminated in order; the Schur complement of block
    i-1 is truncated to its tridiagonal part before block i is factored;
  * the fill-in coupling interior blocks to the wrap block (Y for the lower
    factor, Z for the upper) is kept only near the two streams where the
    coupling lives, ``bands`` positions to either side;
  * the wrap block absorbs the tridiagonal part of every interior
    contribution before its own LU.

Wrap position l holds the pair (l, n-1) and position p of interior block i
the pair (i, i+1+p).  The coupling of block 0 to the wrap block pairs
(0, l) with (l, n-1), and elimination carries it forward as p = l - i - 1.
The coupling of block i > 0 sits in its last position, the pair (i, n-2),
and stays there under elimination.  Fill-in outside both windows is
dropped.

With the truncations M is not X, but it is cheap (linear in the number of
active pairs for fixed ``bands``) and good enough that preconditioned CG
converges in a handful of iterations.  M is symmetric, and every pivot
block is checked: an interior block whose truncated pivot is not positive
definite is factored on its own, and a failing wrap pivot drops the wrap
coupling, so M is always positive definite.

Public API
----------
  BlockPreconditioner(gram, bands=10)
      .solve(blocks) / .multiply(blocks)
      .solve_vector(v) / .multiply_vector(v)
      .to_dense()
"""

import logging
import time
from typing import List, Optional, Tuple

import numpy as np
import scipy.sparse as sp

from circsplits._blocks import BlockGramMatrix
from circsplits._cpu_kernels import _pattern_x_tinv_yt
from circsplits._logging import log_preconditioner_built
from circsplits._tridiagonal import TridiagonalMatrix


logger = logging.getLogger(__name__)


# ======================================================================== #
# Products on a sparsity pattern                                            #
# ======================================================================== #


def _csr_arrays(M: sp.csr_matrix):
    M = M.tocsr()
    return (
        M.indptr.astype(np.int64),
        M.indices.astype(np.int64),
        M.data.astype(np.float64),
    )


def window_pattern(starts, stops) -> Tuple[np.ndarray, np.ndarray]:
    """
    CSR pattern (indptr, indices) covering per-row column windows.

    Parameters
    ----------
    starts, stops : int ndarray (rows, k)
        Row r covers columns ``starts[r, w] <= c < stops[r, w]`` for each of
        its k windows.  The windows of a row must be increasing and disjoint.

    Examples
    --------
    >>> indptr, indices = window_pattern([[0, 4], [1, 5]], [[2, 5], [3, 5]])
    >>> indptr.tolist(), indices.tolist()
    ([0, 3, 5], [0, 1, 4, 1, 2])
    """
    starts = np.atleast_2d(np.asarray(starts, dtype=np.int64))
    stops = np.atleast_2d(np.asarray(stops, dtype=np.int64))
    lengths = np.maximum(stops - starts, 0)
    flat_starts = starts.ravel()
    flat_lengths = lengths.ravel()
    offsets = np.cumsum(flat_lengths) - flat_lengths
    indices = (np.repeat(flat_starts - offsets, flat_lengths)
               + np.arange(flat_lengths.sum(), dtype=np.int64))
    indptr = np.concatenate([[0], np.cumsum(lengths.sum(axis=1))]).astype(np.int64)
    return indptr, indices.astype(np.int64)


def _product_on_pattern(X: sp.csr_matrix, T: TridiagonalMatrix, Y: sp.csr_matrix,
                        indptr: np.ndarray, indices: np.ndarray,
                        transpose: bool = False) -> np.ndarray:
    """Entries of X inv(T) Y' (or X inv(T)' Y') at the pattern positions."""
    xi, xj, xv = _csr_arrays(X)
    yi, yj, yv = _csr_arrays(Y)
    dinv, s, t, v, w = T.inverse_data
    return _pattern_x_tinv_yt(xi, xj, xv, yi, yj, yv, indptr, indices,
                              dinv, s, t, v, w, transpose)


def tridiagonal_part(X: sp.csr_matrix, T: TridiagonalMatrix,
                     Y: sp.csr_matrix) -> TridiagonalMatrix:
    """Tridiagonal part of X inv(T) Y' for square results."""
    m = X.shape[0]
    r = np.arange(m)
    indptr, cols = window_pattern(np.maximum(r - 1, 0)[:, None],
                                  np.minimum(r + 2, Y.shape[0])[:, None])
    vals = _product_on_pattern(X, T, Y, indptr, cols)
    rows = np.repeat(r, np.diff(indptr))
    a = np.zeros(m)
    b = np.zeros(max(m - 1, 0))
    c = np.zeros(max(m - 1, 0))
    diag = rows == cols
    a[rows[diag]] = vals[diag]
    below = rows == cols + 1
    b[cols[below]] = vals[below]
    above = cols == rows + 1
    c[rows[above]] = vals[above]
    return TridiagonalMatrix(a, b, c)


def wrap_fill(X: sp.csr_matrix, T: TridiagonalMatrix, Y: sp.csr_matrix,
              wrap_positions: np.ndarray, block_positions: np.ndarray,
              block: int, n: int, bands: int,
              transpose: bool = False) -> sp.csr_matrix:
    """
    Fill-in X inv(T) Y' of the wrap coupling of interior block *block*.

    Rows are wrap positions, columns positions of *block*, both restricted
    to the active set and given by their unrestricted positions.  Row l
    keeps the columns within *bands* of p = l - block - 1 and the last
    *bands* + 1 positions of the unrestricted block.

    Returns
    -------
    scipy.sparse.csr_matrix (X.shape[0], Y.shape[0])
    """
    wrap_positions = np.asarray(wrap_positions, dtype=np.int64)
    centre = wrap_positions - block - 1
    lo = np.searchsorted(block_positions, centre - bands, side="left")
    hi = np.searchsorted(block_positions, centre + bands, side="right")
    tail = np.searchsorted(block_positions, n - block - 3 - bands, side="left")
    tail_lo = np.maximum(tail, hi)
    tail_hi = np.full_like(hi, block_positions.size)
    indptr, cols = window_pattern(np.column_stack([lo, tail_lo]),
                                  np.column_stack([hi, tail_hi]))
    vals = _product_on_pattern(X, T, Y, indptr, cols, transpose)
    rows = np.repeat(np.arange(wrap_positions.size), np.diff(indptr))
    return sp.csr_matrix((vals, (rows, cols)), shape=(X.shape[0], Y.shape[0]))


def _positive_pivots(U: TridiagonalMatrix) -> bool:
    """True if the LU pivots of a symmetric tridiagonal matrix are all positive."""
    return bool(np.all(U.a > 0))


# ======================================================================== #
# Preconditioner                                                            #
# ======================================================================== #


class BlockPreconditioner:
    """
    Banded block LU preconditioner for a :class:`BlockGramMatrix`.

    Parameters
    ----------
    gram : BlockGramMatrix
        Restricted Gram matrix to approximate.
    bands : int, default 10
        Half-width of the windows kept in the wrap-coupling factors.  Larger
        values give a closer approximation at proportionally higher cost.

    Attributes
    ----------
    L, U : list of TridiagonalMatrix or None
        Bidiagonal factors of every block (None for empty blocks); the last
        entry belongs to the wrap block.
    Y, Z : list of scipy.sparse.csr_matrix or None
        Lower and upper wrap-coupling factors of the interior blocks.
    linked : list of bool
        Whether interior block i was eliminated against block i-1.  A block
        whose truncated pivot is not positive definite is factored on its
        own instead.
    """

    def __init__(self, gram: BlockGramMatrix, bands: int = 10):
        if bands < 0:
            raise ValueError(f"bands must be non-negative, got {bands}")
        t0 = time.perf_counter()
        self.gram = gram
        self.bands = int(bands)
        blocks = gram.interior
        n_interior = len(blocks)
        position_of = gram.layout.position_of
        wrap_positions = position_of[gram.wrap.pairs]

        self.L: List[Optional[TridiagonalMatrix]] = [None] * (n_interior + 1)
        self.U: List[Optional[TridiagonalMatrix]] = [None] * (n_interior + 1)
        self.Y: List[Optional[sp.csr_matrix]] = [None] * n_interior
        self.Z: List[Optional[sp.csr_matrix]] = [None] * n_interior
        self.linked = [False] * n_interior

        for i, block in enumerate(blocks):
            if block.size == 0:
                continue
            if i > 0 and blocks[i - 1].size > 0:
                T = TridiagonalMatrix.multiply_lu(self.L[i - 1], self.U[i - 1])
                T.preprocess_inverse()
                S = block.diagonal - tridiagonal_part(block.previous, T, block.previous)
                L, U = S.lu()
                if _positive_pivots(U):
                    self.L[i], self.U[i] = L, U
                    self.linked[i] = True
                    block_positions = position_of[block.pairs]
                    self.Y[i] = (block.wrap - wrap_fill(
                        self.Y[i - 1], T, block.previous, wrap_positions,
                        block_positions, i, gram.n, self.bands)).tocsr()
                    self.Z[i] = (block.wrap - wrap_fill(
                        self.Z[i - 1], T, block.previous, wrap_positions,
                        block_positions, i, gram.n, self.bands, transpose=True)).tocsr()
                    continue
                logger.debug("Pivot of block %d of n=%d is not positive definite; "
                             "factoring the block on its own", i, gram.n)
            self.L[i], self.U[i] = block.diagonal.lu()
            self.Y[i] = block.wrap
            self.Z[i] = block.wrap

        wrap = gram.wrap
        if wrap.size > 0:
            S = wrap.diagonal
            for i, block in enumerate(blocks):
                if block.size == 0:
                    continue
                T = TridiagonalMatrix.multiply_lu(self.L[i], self.U[i])
                T.preprocess_inverse()
                S = S - tridiagonal_part(self.Y[i], T, self.Z[i])
            self.L[-1], self.U[-1] = S.lu()
            if not _positive_pivots(self.U[-1]):
                logger.debug(
                    "Wrap pivot of n=%d is not positive definite with bands=%d; "
                    "dropping the wrap coupling", gram.n, self.bands,
                )
                self._drop_wrap_coupling()

        log_preconditioner_built(gram.n, gram.sizes, self.bands,
                                 self.nnz, time.perf_counter() - t0)

    def _drop_wrap_coupling(self) -> None:
        """Factor the wrap block on its own, leaving M block diagonal there."""
        for i, block in enumerate(self.gram.interior):
            if block.size > 0:
                self.Y[i] = self.Z[i] = sp.csr_matrix(block.wrap.shape)
        self.L[-1], self.U[-1] = self.gram.wrap.diagonal.lu()

    @property
    def nnz(self) -> int:
        """Stored non-zeros in the wrap-coupling factors."""
        return sum(M.nnz for M in self.Y + self.Z if M is not None)

    def _check_blocks(self, x: List[np.ndarray]) -> None:
        sizes = self.gram.sizes
        if len(x) != len(sizes):
            raise ValueError(f"Expected {len(sizes)} blocks, got {len(x)}")
        for k, (xb, size) in enumerate(zip(x, sizes)):
            if np.shape(xb) != (size,):
                raise ValueError(f"Block {k} must have shape ({size},), got {np.shape(xb)}")

    # ------------------------------------------------------------------ #
    # Block forms                                                         #
    # ------------------------------------------------------------------ #

    def solve(self, y: List[np.ndarray]) -> List[np.ndarray]:
        """
        Solve M z = y by block forward and back substitution.

        Parameters
        ----------
        y : list of ndarray
            Right-hand side, one vector per block (interior then wrap).

        Returns
        -------
        list of ndarray
        """
        self._check_blocks(y)
        blocks = self.gram.interior
        n_interior = len(blocks)
        sizes = self.gram.sizes

        eta: List[np.ndarray] = [np.zeros(0)] * (n_interior + 1)
        for i in range(n_interior):
            if sizes[i] == 0:
                continue
            rhs = np.asarray(y[i], dtype=np.float64)
            if self.linked[i]:
                rhs = rhs - blocks[i].previous @ self.U[i - 1].solve_upper(eta[i - 1])
            eta[i] = self.L[i].solve_lower(rhs)
        if sizes[-1] > 0:
            rhs = np.array(y[-1], dtype=np.float64)
            for i in range(n_interior):
                if sizes[i] > 0:
                    rhs -= self.Y[i] @ self.U[i].solve_upper(eta[i])
            eta[-1] = self.L[-1].solve_lower(rhs)

        z: List[np.ndarray] = [np.zeros(0)] * (n_interior + 1)
        if sizes[-1] > 0:
            z[-1] = self.U[-1].solve_upper(eta[-1])
        for i in range(n_interior - 1, -1, -1):
            if sizes[i] == 0:
                continue
            rhs = eta[i].copy()
            if i + 1 < n_interior and self.linked[i + 1]:
                rhs -= self.L[i].solve_lower(blocks[i + 1].previous.T @ z[i + 1])
            if sizes[-1] > 0:
                rhs -= self.L[i].solve_lower(self.Z[i].T @ z[-1])
            z[i] = self.U[i].solve_upper(rhs)
        return z

    def multiply(self, x: List[np.ndarray]) -> List[np.ndarray]:
        """y = M x, the exact inverse of :meth:`solve`."""
        self._check_blocks(x)
        blocks = self.gram.interior
        n_interior = len(blocks)
        sizes = self.gram.sizes

        # w = UU x
        w: List[np.ndarray] = [np.zeros(0)] * (n_interior + 1)
        for i in range(n_interior):
            if sizes[i] == 0:
                continue
            coupled = np.zeros(sizes[i])
            if i + 1 < n_interior and self.linked[i + 1]:
                coupled += blocks[i + 1].previous.T @ x[i + 1]
            if sizes[-1] > 0:
                coupled += self.Z[i].T @ x[-1]
            w[i] = self.U[i].multiply(x[i]) + self.L[i].solve_lower(coupled)
        if sizes[-1] > 0:
            w[-1] = self.U[-1].multiply(x[-1])

        # y = LL w
        y: List[np.ndarray] = [np.zeros(0)] * (n_interior + 1)
        for i in range(n_interior):
            if sizes[i] == 0:
                continue
            y[i] = self.L[i].multiply(w[i])
            if self.linked[i]:
                y[i] += blocks[i].previous @ self.U[i - 1].solve_upper(w[i - 1])
        if sizes[-1] > 0:
            y[-1] = self.L[-1].multiply(w[-1])
            for i in range(n_interior):
                if sizes[i] > 0:
                    y[-1] += self.Y[i] @ self.U[i].solve_upper(w[i])
        return y

    # ------------------------------------------------------------------ #
    # Full-length vector forms                                            #
    # ------------------------------------------------------------------ #

    def solve_vector(self, v) -> np.ndarray:
        layout, active = self.gram.layout, self.gram.active
        return layout.from_blocks(self.solve(layout.to_blocks(v, active)), active)

    def multiply_vector(self, v) -> np.ndarray:
        layout, active = self.gram.layout, self.gram.active
        return layout.from_blocks(self.multiply(layout.to_blocks(v, active)), active)

    def to_dense(self) -> np.ndarray:
        """Dense M, rows and columns in the order of ``gram.order``."""
        sizes = self.gram.sizes
        offsets = np.concatenate([[0], np.cumsum(sizes)]).astype(int)
        total = offsets[-1]
        M = np.zeros((total, total))
        for col in range(total):
            e = np.zeros(total)
            e[col] = 1.0
            blocks = [e[offsets[k]:offsets[k + 1]] for k in range(len(sizes))]
            M[:, col] = np.concatenate(self.multiply(blocks))
        return M

    def __repr__(self) -> str:
        return f"BlockPreconditioner(n={self.gram.n}, bands={self.bands})"
