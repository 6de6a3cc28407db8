"""
_blocks.py
==========
Block structure of the constrained normal-equations matrix.

For an active set G (the splits forced to zero) the dual problem works with

    X = R' inv(A) inv(A)' R

where R selects the columns in G.  In a suitable ordering of the pairs X is
block tridiagonal with one extra block row/column for the circular wrap:

  * interior block i (0 <= i <= n-3) holds pairs (i, j), j <= n-2,
    at position j-i-1;
  * the wrap block holds pairs (l, n-1) at position l.

Every diagonal block is tridiagonal with a fixed analytic pattern (0.75 at
the ends of the interior run, 1.0 inside, -0.5 off the diagonal).  Interior
block i couples only to blocks i-1 and i+1 and to the wrap block; the wrap
block additionally carries a corner weight between its first and last
positions.  All couplings are scipy.sparse CSR matrices with O(1) entries
per column, so the whole model is built in O(n^2) time without ever
materializing X.

Public API
----------
  BlockLayout(n)              pair <-> (block, position) map
  InteriorBlock, WrapBlock    tagged block records
  BlockGramMatrix(n, active)  X restricted to G
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

import numpy as np
import scipy.sparse as sp

from circsplits._tridiagonal import TridiagonalMatrix
from circsplits._utils import n_pairs, check_n_taxa, as_mask


logger = logging.getLogger(__name__)


# ======================================================================== #
# Layout                                                                    #
# ======================================================================== #


class BlockLayout:
    """
    Canonical assignment of pair indices to blocks.

    Blocks 0..n-3 are interior blocks and block n-2 is the wrap block.

    Parameters
    ----------
    n : int
        Number of taxa (n >= 3).

    Attributes
    ----------
    n_blocks : int
        n - 1 (interior blocks plus the wrap block).
    block_of, position_of : int64 ndarray (n(n-1)/2,)
        Block and in-block position of every pair index.

    Examples
    --------
    >>> layout = BlockLayout(4)
    >>> layout.pairs(0).tolist(), layout.pairs(1).tolist(), layout.pairs(2).tolist()
    ([0, 1], [3], [2, 4, 5])
    """

    def __init__(self, n: int):
        self.n = check_n_taxa(n)
        self.n_blocks = self.n - 1
        self.wrap = self.n - 2
        self.block_of = np.empty(n_pairs(self.n), dtype=np.int64)
        self.position_of = np.empty(n_pairs(self.n), dtype=np.int64)
        self._pairs = [np.empty(self.block_size(b), dtype=np.int64)
                       for b in range(self.n_blocks)]
        k = 0
        for i in range(self.n - 1):
            for j in range(i + 1, self.n):
                if j <= self.n - 2:
                    block, pos = i, j - i - 1
                else:
                    block, pos = self.wrap, i
                self.block_of[k] = block
                self.position_of[k] = pos
                self._pairs[block][pos] = k
                k += 1

    def block_size(self, block: int) -> int:
        """Unrestricted size of *block*."""
        if block == self.n - 2:
            return self.n - 1
        return self.n - block - 2

    def pairs(self, block: int) -> np.ndarray:
        """Flat pair indices of *block* in position order."""
        return self._pairs[block]

    def order(self, mask) -> np.ndarray:
        """Flat indices of the pairs in *mask*, block by block."""
        mask = as_mask(mask, self.n, "mask")
        return np.concatenate([p[mask[p]] for p in self._pairs])

    def to_blocks(self, v, mask) -> List[np.ndarray]:
        """Split a full-length vector into per-block vectors over *mask*."""
        v = np.asarray(v, dtype=np.float64)
        mask = as_mask(mask, self.n, "mask")
        return [v[p[mask[p]]].copy() for p in self._pairs]

    def from_blocks(self, blocks: List[np.ndarray], mask) -> np.ndarray:
        """Scatter per-block vectors back into a full-length vector, zero off *mask*."""
        mask = as_mask(mask, self.n, "mask")
        if len(blocks) != self.n_blocks:
            raise ValueError(f"Expected {self.n_blocks} blocks, got {len(blocks)}")
        v = np.zeros(n_pairs(self.n))
        for p, values in zip(self._pairs, blocks):
            v[p[mask[p]]] = values
        return v


# ======================================================================== #
# Closed-form entries of the unrestricted blocks                           #
# ======================================================================== #


def _diagonal_block(size: int, wrap: bool) -> TridiagonalMatrix:
    a = np.ones(size)
    a[0] = 0.75
    if wrap:
        a[-1] = 0.75
    off = np.full(max(size - 1, 0), -0.5)
    return TridiagonalMatrix(a, off, off.copy())


def _previous_coupling(i: int, n: int) -> sp.csr_matrix:
    """Coupling of interior block i (rows) to interior block i-1 (cols)."""
    rows_n, cols_n = n - i - 2, n - i - 1
    rows, cols, vals = [], [], []
    for q in range(rows_n):
        for offset, value in ((0, 0.25), (1, -0.5), (2, 0.25)):
            if q + offset < cols_n:
                rows.append(q)
                cols.append(q + offset)
                vals.append(value)
    return sp.csr_matrix((vals, (rows, cols)), shape=(rows_n, cols_n))


def _wrap_coupling(i: int, n: int) -> sp.csr_matrix:
    """Coupling of the wrap block (rows) to interior block i (cols)."""
    wrap_n, cols_n = n - 1, n - i - 2
    rows, cols, vals = [], [], []

    def add(r, c, value):
        if 0 <= r < wrap_n:
            rows.append(r)
            cols.append(c)
            vals.append(value)

    if i == 0:
        for p in range(cols_n):
            add(p, p, 0.25)
            add(p + 1, p, -0.5)
            add(p + 2, p, 0.25)
        # pair (0, n-2) also meets both ends of the wrap block
        add(0, n - 3, -0.5)
        add(1, n - 3, 0.25)
    else:
        last = cols_n - 1
        add(i - 1, last, 0.25)
        add(i, last, -0.5)
        add(i + 1, last, 0.25)
    # duplicates are summed on conversion
    return sp.coo_matrix((vals, (rows, cols)), shape=(wrap_n, cols_n)).tocsr()


def _restrict(matrix: sp.csr_matrix, rows: np.ndarray, cols: np.ndarray) -> sp.csr_matrix:
    return matrix[rows][:, cols].tocsr()


# ======================================================================== #
# Tagged blocks                                                             #
# ======================================================================== #


@dataclass
class InteriorBlock:
    """
    Interior block i of the restricted Gram matrix.

    Attributes
    ----------
    index : int
        Block number i in 0..n-3.
    pairs : int64 ndarray
        Flat pair indices kept in this block, in position order.
    diagonal : TridiagonalMatrix
        Diagonal block.
    previous : scipy.sparse.csr_matrix or None
        Coupling to block i-1 (rows: this block, cols: block i-1); None for
        block 0.
    wrap : scipy.sparse.csr_matrix
        Coupling from the wrap block (rows: wrap block, cols: this block).
    """

    index: int
    pairs: np.ndarray
    diagonal: TridiagonalMatrix
    previous: Optional[sp.csr_matrix]
    wrap: sp.csr_matrix

    @property
    def size(self) -> int:
        return self.pairs.size


@dataclass
class WrapBlock:
    """
    The wrap-around block (pairs (l, n-1)).

    ``corner`` is the weight coupling the first and last wrap positions; it
    is None when either endpoint is outside the active set.
    """

    pairs: np.ndarray
    diagonal: TridiagonalMatrix
    corner: Optional[float]

    @property
    def size(self) -> int:
        return self.pairs.size


Block = Union[InteriorBlock, WrapBlock]


# ======================================================================== #
# Restricted Gram matrix                                                    #
# ======================================================================== #


class BlockGramMatrix:
    """
    X = R' inv(A) inv(A)' R restricted to the active set, in block form.

    Parameters
    ----------
    n : int
        Number of taxa (n >= 3).
    active : bool ndarray (n(n-1)/2,)
        Active set G.  Only pairs in G appear in X.

    Attributes
    ----------
    layout : BlockLayout
    interior : list of InteriorBlock
        Blocks 0..n-3 (possibly empty).
    wrap : WrapBlock

    Examples
    --------
    >>> X = BlockGramMatrix(3, np.ones(3, dtype=bool))
    >>> X.to_dense().tolist()
    [[0.75, -0.25, -0.25], [-0.25, 0.75, -0.25], [-0.25, -0.25, 0.75]]
    """

    def __init__(self, n: int, active):
        self.n = check_n_taxa(n)
        self.active = as_mask(active, self.n)
        self.layout = BlockLayout(self.n)

        keep = []
        for b in range(self.layout.n_blocks):
            full = self.layout.pairs(b)
            keep.append(np.flatnonzero(self.active[full]))
        wrap_keep = keep[-1]

        self.interior = []
        for i in range(self.n - 2):
            pairs = self.layout.pairs(i)[keep[i]]
            diagonal = _diagonal_block(self.layout.block_size(i), False).submatrix(
                np.isin(np.arange(self.layout.block_size(i)), keep[i])
            )
            previous = None
            if i > 0:
                previous = _restrict(_previous_coupling(i, self.n), keep[i], keep[i - 1])
            wrap = _restrict(_wrap_coupling(i, self.n), wrap_keep, keep[i])
            self.interior.append(InteriorBlock(i, pairs, diagonal, previous, wrap))

        wrap_size = self.layout.block_size(self.layout.wrap)
        wrap_mask = np.zeros(wrap_size, dtype=bool)
        wrap_mask[wrap_keep] = True
        corner = None
        if wrap_mask[0] and wrap_mask[self.n - 2]:
            corner = 0.25
        self.wrap = WrapBlock(
            self.layout.pairs(self.layout.wrap)[wrap_keep],
            _diagonal_block(wrap_size, True).submatrix(wrap_mask),
            corner,
        )
        logger.debug(
            "Gram matrix n=%d: %d active pairs, block sizes %s, corner=%s",
            self.n,
            int(self.active.sum()),
            self.sizes,
            corner is not None,
        )

    @property
    def blocks(self) -> List[Block]:
        return list(self.interior) + [self.wrap]

    @property
    def sizes(self) -> List[int]:
        return [block.size for block in self.blocks]

    @property
    def order(self) -> np.ndarray:
        """Flat pair indices of the rows of :meth:`to_dense`."""
        return np.concatenate([block.pairs for block in self.blocks])

    def multiply(self, x: List[np.ndarray]) -> List[np.ndarray]:
        """
        y = X x for a block-structured vector.

        Parameters
        ----------
        x : list of ndarray
            One vector per block (interior blocks then the wrap block).

        Returns
        -------
        list of ndarray
        """
        if len(x) != len(self.interior) + 1:
            raise ValueError(f"Expected {len(self.interior) + 1} blocks, got {len(x)}")
        xw = x[-1]
        y = []
        for i, block in enumerate(self.interior):
            if block.size == 0:
                y.append(np.zeros(0))
                continue
            yi = block.diagonal.multiply(x[i])
            if block.previous is not None:
                yi += block.previous @ x[i - 1]
            if i + 1 < len(self.interior):
                yi += self.interior[i + 1].previous.T @ x[i + 1]
            yi += block.wrap.T @ xw
            y.append(yi)

        yw = self.wrap.diagonal.multiply(xw)
        if self.wrap.corner is not None:
            yw[0] += self.wrap.corner * xw[-1]
            yw[-1] += self.wrap.corner * xw[0]
        for i, block in enumerate(self.interior):
            yw += block.wrap @ x[i]
        y.append(yw)
        return y

    def multiply_vector(self, v) -> np.ndarray:
        """X applied to a full-length vector; entries outside G are ignored."""
        blocks = self.layout.to_blocks(v, self.active)
        return self.layout.from_blocks(self.multiply(blocks), self.active)

    def to_dense(self) -> np.ndarray:
        """Dense X with rows and columns in :attr:`order`."""
        sizes = self.sizes
        offsets = np.concatenate([[0], np.cumsum(sizes)])
        total = int(offsets[-1])
        M = np.zeros((total, total))
        w0, w1 = offsets[-2], offsets[-1]
        for i, block in enumerate(self.interior):
            r0, r1 = offsets[i], offsets[i + 1]
            M[r0:r1, r0:r1] = block.diagonal.to_dense()
            if block.previous is not None:
                p0, p1 = offsets[i - 1], offsets[i]
                dense = block.previous.toarray()
                M[r0:r1, p0:p1] = dense
                M[p0:p1, r0:r1] = dense.T
            dense = block.wrap.toarray()
            M[w0:w1, r0:r1] = dense
            M[r0:r1, w0:w1] = dense.T
        M[w0:w1, w0:w1] = self.wrap.diagonal.to_dense()
        if self.wrap.corner is not None:
            M[w0, w1 - 1] += self.wrap.corner
            M[w1 - 1, w0] += self.wrap.corner
        return M

    def __repr__(self) -> str:
        return f"BlockGramMatrix(n={self.n}, active={int(self.active.sum())})"
