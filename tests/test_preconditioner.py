"""
tests/test_preconditioner.py
============================
Pytest test suite for BlockPreconditioner.

The preconditioner M is an approximate block LU factorization of the
restricted Gram matrix X.  Tests check that

  * solve() and multiply() are exact inverses of each other;
  * M equals X exactly when no truncation can happen (a single non-empty
    block without a wrap corner);
  * M is symmetric positive definite, and a useful approximation: the
    spectrum of inv(M) X is better clustered than that of X;
  * the wrap-coupling fill-in is kept on the windows where it lives and
    equals the full product when the windows cover every column.
"""

import logging
import os
import sys

import numpy as np
import pytest
import scipy.sparse as sp

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from circsplits._blocks import BlockGramMatrix, BlockLayout
from circsplits._preconditioner import BlockPreconditioner, window_pattern, wrap_fill
from circsplits._utils import n_pairs, pair_index


def random_mask(n, density, seed):
    rng = np.random.default_rng(seed)
    return rng.uniform(size=n_pairs(n)) < density


# ======================================================================== #
# solve / multiply                                                          #
# ======================================================================== #


class TestInverseConsistency:

    @pytest.mark.parametrize("density", [0.3, 0.7, 1.0])
    @pytest.mark.parametrize("n", [3, 5, 9, 16])
    def test_solve_undoes_multiply(self, n, density):
        mask = random_mask(n, density, n)
        M = BlockPreconditioner(BlockGramMatrix(n, mask))
        rng = np.random.default_rng(1)
        v = np.where(mask, rng.normal(size=n_pairs(n)), 0.0)
        np.testing.assert_allclose(M.solve_vector(M.multiply_vector(v)), v, atol=1e-9)
        np.testing.assert_allclose(M.multiply_vector(M.solve_vector(v)), v, atol=1e-9)

    def test_to_dense_matches_multiply(self):
        n = 7
        mask = random_mask(n, 0.6, 3)
        gram = BlockGramMatrix(n, mask)
        M = BlockPreconditioner(gram, bands=2)
        rng = np.random.default_rng(4)
        v = np.where(mask, rng.normal(size=n_pairs(n)), 0.0)
        dense = M.to_dense()
        np.testing.assert_allclose(
            M.multiply_vector(v)[gram.order], dense @ v[gram.order], atol=1e-12
        )

    def test_empty_blocks_pass_through(self):
        """Blocks emptied by the mask contribute nothing and are skipped."""
        n = 8
        layout = BlockLayout(n)
        mask = np.ones(n_pairs(n), dtype=bool)
        mask[layout.pairs(2)] = False
        mask[layout.pairs(4)] = False
        M = BlockPreconditioner(BlockGramMatrix(n, mask))
        assert M.L[2] is None and M.U[4] is None
        v = np.where(mask, 1.0, 0.0)
        np.testing.assert_allclose(M.solve_vector(M.multiply_vector(v)), v, atol=1e-10)

    def test_empty_active_set(self):
        M = BlockPreconditioner(BlockGramMatrix(5, np.zeros(10, dtype=bool)))
        assert M.nnz == 0
        assert M.to_dense().shape == (0, 0)

    def test_wrong_block_shapes(self):
        M = BlockPreconditioner(BlockGramMatrix(4, np.ones(6, dtype=bool)))
        with pytest.raises(ValueError):
            M.solve([np.zeros(2), np.zeros(1)])
        with pytest.raises(ValueError):
            M.multiply([np.zeros(2), np.zeros(2), np.zeros(3)])


# ======================================================================== #
# Approximation quality                                                     #
# ======================================================================== #


class TestApproximation:

    def test_exact_on_single_interior_block(self):
        n = 7
        layout = BlockLayout(n)
        mask = np.zeros(n_pairs(n), dtype=bool)
        mask[layout.pairs(0)] = True
        gram = BlockGramMatrix(n, mask)
        np.testing.assert_allclose(
            BlockPreconditioner(gram).to_dense(), gram.to_dense(), atol=1e-12
        )

    def test_exact_on_wrap_block_without_corner(self):
        n = 7
        layout = BlockLayout(n)
        mask = np.zeros(n_pairs(n), dtype=bool)
        mask[layout.pairs(layout.wrap)] = True
        mask[pair_index(0, n - 1, n)] = False
        gram = BlockGramMatrix(n, mask)
        assert gram.wrap.corner is None
        np.testing.assert_allclose(
            BlockPreconditioner(gram).to_dense(), gram.to_dense(), atol=1e-12
        )

    @pytest.mark.parametrize("n", [10, 20, 30])
    def test_preconditioned_spectrum_is_clustered(self, n):
        mask = np.ones(n_pairs(n), dtype=bool)
        gram = BlockGramMatrix(n, mask)
        X = gram.to_dense()
        M = BlockPreconditioner(gram).to_dense()
        plain = np.linalg.cond(X)
        eig = np.linalg.eigvals(np.linalg.solve(M, X)).real
        assert eig.min() > 0
        assert eig.max() / eig.min() < plain

    @pytest.mark.parametrize("bands", [0, 2, 10])
    @pytest.mark.parametrize("density", [0.5, 0.8, 1.0])
    @pytest.mark.parametrize("n", [12, 25])
    def test_symmetric_positive_definite(self, n, density, bands):
        M = BlockPreconditioner(BlockGramMatrix(n, random_mask(n, density, n)), bands).to_dense()
        np.testing.assert_allclose(M, M.T, atol=1e-10)
        assert np.linalg.eigvalsh(M).min() > 0

    def test_negative_bands(self):
        gram = BlockGramMatrix(4, np.ones(6, dtype=bool))
        with pytest.raises(ValueError):
            BlockPreconditioner(gram, bands=-1)

    def test_bands_control_fill(self):
        n = 14
        gram = BlockGramMatrix(n, np.ones(n_pairs(n), dtype=bool))
        narrow = BlockPreconditioner(gram, bands=0)
        wide = BlockPreconditioner(gram, bands=10)
        assert narrow.nnz <= wide.nnz
        assert "bands=0" in repr(narrow)

    def test_wrap_pivot_breakdown_drops_coupling(self, monkeypatch, caplog):
        """A wrap pivot that is not positive definite leaves M block diagonal there."""
        def oversized_fill(X, T, Y, *args, **kwargs):
            return sp.csr_matrix(np.full((X.shape[0], Y.shape[0]), -100.0))

        monkeypatch.setattr("circsplits._preconditioner.wrap_fill", oversized_fill)
        n = 8
        mask = np.ones(n_pairs(n), dtype=bool)
        with caplog.at_level(logging.DEBUG, logger="circsplits"):
            M = BlockPreconditioner(BlockGramMatrix(n, mask))
        assert any("dropping the wrap coupling" in r.getMessage() for r in caplog.records)
        assert M.nnz == 0
        dense = M.to_dense()
        np.testing.assert_allclose(dense, dense.T, atol=1e-10)
        assert np.linalg.eigvalsh(dense).min() > 0
        v = np.random.default_rng(0).normal(size=n_pairs(n))
        np.testing.assert_allclose(M.solve_vector(M.multiply_vector(v)), v, atol=1e-9)


# ======================================================================== #
# Wrap-coupling fill-in                                                     #
# ======================================================================== #


class TestWrapFill:
    """Fill-in of the wrap coupling, kept on the windows where it lives."""

    @staticmethod
    def operands(n, i):
        gram = BlockGramMatrix(n, np.ones(n_pairs(n), dtype=bool))
        X = gram.interior[i - 1].wrap
        Y = gram.interior[i].previous
        T = gram.interior[i - 1].diagonal
        T.preprocess_inverse()
        dense = X.toarray() @ np.linalg.inv(T.to_dense()) @ Y.toarray().T
        return gram, X, T, Y, dense

    @pytest.mark.parametrize("i", [1, 4, 8])
    def test_wide_windows_give_full_product(self, i):
        n = 12
        gram, X, T, Y, dense = self.operands(n, i)
        fill = wrap_fill(X, T, Y, np.arange(n - 1), np.arange(n - i - 2), i, n, bands=n)
        np.testing.assert_allclose(fill.toarray(), dense, atol=1e-12)

    @pytest.mark.parametrize("bands", [0, 1, 3])
    @pytest.mark.parametrize("i", [1, 5, 9])
    def test_windows_follow_the_coupling(self, i, bands):
        n = 13
        gram, X, T, Y, dense = self.operands(n, i)
        fill = wrap_fill(X, T, Y, np.arange(n - 1), np.arange(n - i - 2), i, n, bands)
        l, p = np.meshgrid(np.arange(n - 1), np.arange(n - i - 2), indexing="ij")
        kept = (np.abs(p - (l - i - 1)) <= bands) | (p >= n - i - 3 - bands)
        np.testing.assert_allclose(fill.toarray(), np.where(kept, dense, 0.0), atol=1e-12)
        rows, cols = fill.nonzero()
        assert kept[rows, cols].all()

    def test_restricted_positions(self):
        """Windows are placed by unrestricted position, not by row number."""
        n = 10
        i = 3
        mask = random_mask(n, 0.6, 5)
        gram = BlockGramMatrix(n, mask)
        prev, block = gram.interior[i - 1], gram.interior[i]
        T = prev.diagonal
        T.preprocess_inverse()
        wrap_positions = gram.layout.position_of[gram.wrap.pairs]
        block_positions = gram.layout.position_of[block.pairs]
        fill = wrap_fill(prev.wrap, T, block.previous, wrap_positions, block_positions,
                         i, n, bands=1)
        dense = (prev.wrap.toarray() @ np.linalg.inv(T.to_dense())
                 @ block.previous.toarray().T)
        l, p = np.meshgrid(wrap_positions, block_positions, indexing="ij")
        kept = (np.abs(p - (l - i - 1)) <= 1) | (p >= n - i - 4)
        np.testing.assert_allclose(fill.toarray(), np.where(kept, dense, 0.0), atol=1e-12)

    def test_window_pattern(self):
        indptr, indices = window_pattern([[0, 4], [1, 5], [2, 2]], [[2, 5], [3, 5], [2, 6]])
        assert indptr.tolist() == [0, 3, 5, 9]
        assert indices.tolist() == [0, 1, 4, 1, 2, 2, 3, 4, 5]
