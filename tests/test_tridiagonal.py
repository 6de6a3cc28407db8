"""
tests/test_tridiagonal.py
=========================
Pytest test suite for TridiagonalMatrix.

Every operation is checked against the dense matrix from ``to_dense()``.
"""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from circsplits._tridiagonal import TridiagonalMatrix


# ======================================================================== #
# Fixtures                                                                  #
# ======================================================================== #


@pytest.fixture(scope="module")
def T():
    """A 6x6 diagonally dominant tridiagonal matrix."""
    a = np.array([2.0, 3.0, 2.5, 4.0, 3.5, 2.0])
    b = np.array([-0.5, 0.7, -1.0, 0.2, -0.3])
    c = np.array([0.4, -0.6, 0.9, -0.8, 0.1])
    return TridiagonalMatrix(a, b, c)


# ======================================================================== #
# Construction                                                              #
# ======================================================================== #


class TestConstruction:

    def test_to_dense(self, T):
        D = T.to_dense()
        assert D.shape == (6, 6)
        assert D[1, 0] == -0.5
        assert D[0, 1] == 0.4
        assert D[0, 2] == 0.0

    def test_bidiagonal_kinds(self):
        assert "LowerBidiagonal" in repr(TridiagonalMatrix([1.0, 1.0], [2.0]))
        assert "UpperBidiagonal" in repr(TridiagonalMatrix([1.0, 1.0], None, [2.0]))
        assert "Diagonal" in repr(TridiagonalMatrix([1.0]))

    def test_wrong_band_length(self):
        with pytest.raises(ValueError):
            TridiagonalMatrix([1.0, 2.0, 3.0], [1.0])

    def test_submatrix_drops_broken_links(self, T):
        mask = np.array([True, True, False, True, True, True])
        S = T.submatrix(mask)
        keep = np.flatnonzero(mask)
        np.testing.assert_array_equal(S.to_dense(), T.to_dense()[np.ix_(keep, keep)])

    def test_empty_submatrix(self, T):
        S = T.submatrix(np.zeros(6, dtype=bool))
        assert S.size == 0
        assert S.multiply(np.zeros(0)).size == 0

    def test_subtraction(self, T):
        D = TridiagonalMatrix(np.ones(6))
        np.testing.assert_array_equal((T - D).to_dense(), T.to_dense() - np.eye(6))


# ======================================================================== #
# Algebra                                                                   #
# ======================================================================== #


class TestAlgebra:

    def test_multiply(self, T):
        x = np.arange(1.0, 7.0)
        np.testing.assert_allclose(T.multiply(x), T.to_dense() @ x)

    def test_lu(self, T):
        L, U = T.lu()
        assert L.c is None and U.b is None
        np.testing.assert_allclose(np.diag(L.to_dense()), 1.0)
        np.testing.assert_allclose(L.to_dense() @ U.to_dense(), T.to_dense(), atol=1e-13)

    def test_multiply_lu(self, T):
        L, U = T.lu()
        np.testing.assert_allclose(
            TridiagonalMatrix.multiply_lu(L, U).to_dense(), T.to_dense(), atol=1e-13
        )

    def test_lu_solve(self, T):
        y = np.array([1.0, -2.0, 0.5, 3.0, 0.0, 1.5])
        L, U = T.lu()
        x = U.solve_upper(L.solve_lower(y))
        np.testing.assert_allclose(T.to_dense() @ x, y, atol=1e-12)

    def test_inverse_entries(self, T):
        Tinv = np.linalg.inv(T.to_dense())
        for i in range(6):
            for j in range(6):
                assert T.inverse_entry(i, j) == pytest.approx(Tinv[i, j], abs=1e-12)

    def test_inverse_entry_out_of_range(self, T):
        with pytest.raises(IndexError):
            T.inverse_entry(6, 0)
