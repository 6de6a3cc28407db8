"""
test_cpu_kernels.py
===================
Tests for CPU kernels (_cpu_kernels.py).

These tests call the numba kernels directly with plain numpy arrays and
compare against dense numpy reference computations:
- Pair indexing agrees with the canonical enumeration
- Tridiagonal LU and bidiagonal substitutions reproduce numpy.linalg
- Inverse-entry tables agree with numpy.linalg.inv
- The triple product on a sparsity pattern agrees with the dense product

The circular operators themselves are tested through their validated
wrappers in test_operators.py.
"""

import sys
from pathlib import Path

# Add parent directory to path so we can import the kernel modules
sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np
import pytest
import scipy.sparse as sp

from circsplits._cpu_kernels import (
    _pair_index,
    _tridiagonal_lu,
    _solve_lower_bidiagonal,
    _solve_upper_bidiagonal,
    _tridiagonal_inverse_data,
    _tinv_entry,
    _pattern_x_tinv_yt,
)


# ======================================================================== #
# Helpers                                                                   #
# ======================================================================== #


def random_dominant_tridiagonal(m, rng):
    """Diagonally dominant tridiagonal (a, b, c) with its dense form."""
    b = rng.uniform(-0.5, 0.5, m - 1)
    c = rng.uniform(-0.5, 0.5, m - 1)
    a = 1.5 + rng.uniform(0.0, 1.0, m)
    T = np.diag(a) + np.diag(b, -1) + np.diag(c, 1)
    return a, b, c, T


def csr_parts(M):
    M = sp.csr_matrix(M)
    return M.indptr.astype(np.int64), M.indices.astype(np.int64), M.data.astype(np.float64)


# ======================================================================== #
# Pair indexing                                                             #
# ======================================================================== #


class TestPairIndex:
    """The njit pair index enumerates pairs with i outer, j inner."""

    @pytest.mark.parametrize("n", [3, 4, 7, 12])
    def test_matches_enumeration(self, n):
        expected = 0
        for i in range(n - 1):
            for j in range(i + 1, n):
                assert _pair_index(i, j, n) == expected
                expected += 1

    def test_last_pair(self):
        n = 9
        assert _pair_index(n - 2, n - 1, n) == n * (n - 1) // 2 - 1


# ======================================================================== #
# Tridiagonal kernels                                                       #
# ======================================================================== #


class TestTridiagonalLU:
    """Unpivoted LU of tridiagonal matrices."""

    @pytest.mark.parametrize("m", [1, 2, 5, 17])
    def test_factors_multiply_back(self, m):
        rng = np.random.default_rng(m)
        a, b, c, T = random_dominant_tridiagonal(m, rng)
        lower, upper = _tridiagonal_lu(a, b, c)
        L = np.eye(m) + np.diag(lower, -1)
        U = np.diag(upper) + np.diag(c, 1)
        np.testing.assert_allclose(L @ U, T, atol=1e-13)

    def test_empty(self):
        lower, upper = _tridiagonal_lu(np.zeros(0), np.zeros(0), np.zeros(0))
        assert lower.size == 0
        assert upper.size == 0

    def test_bidiagonal_solves(self):
        rng = np.random.default_rng(3)
        m = 8
        a = 1.0 + rng.uniform(size=m)
        off = rng.uniform(-1.0, 1.0, m - 1)
        y = rng.normal(size=m)

        L = np.diag(a) + np.diag(off, -1)
        np.testing.assert_allclose(L @ _solve_lower_bidiagonal(a, off, y), y, atol=1e-12)

        U = np.diag(a) + np.diag(off, 1)
        np.testing.assert_allclose(U @ _solve_upper_bidiagonal(a, off, y), y, atol=1e-12)


class TestTridiagonalInverse:
    """O(1) entries of inv(T)."""

    @pytest.mark.parametrize("m", [1, 2, 3, 6, 20])
    def test_entries_match_dense_inverse(self, m):
        rng = np.random.default_rng(100 + m)
        a, b, c, T = random_dominant_tridiagonal(m, rng)
        dinv, s, t, v, w = _tridiagonal_inverse_data(a, b, c)
        Tinv = np.linalg.inv(T)
        for i in range(m):
            for j in range(m):
                assert _tinv_entry(dinv, s, t, v, w, i, j) == pytest.approx(
                    Tinv[i, j], abs=1e-12
                )

    def test_reducible_matrix_has_zero_blocks(self):
        """A zero off-diagonal splits T into independent blocks."""
        a = np.array([2.0, 2.0, 2.0, 2.0])
        b = np.array([-1.0, 0.0, -1.0])
        c = np.array([-1.0, 0.0, -1.0])
        T = np.diag(a) + np.diag(b, -1) + np.diag(c, 1)
        dinv, s, t, v, w = _tridiagonal_inverse_data(a, b, c)
        Tinv = np.linalg.inv(T)
        for i in range(4):
            for j in range(4):
                assert _tinv_entry(dinv, s, t, v, w, i, j) == pytest.approx(
                    Tinv[i, j], abs=1e-14
                )
        assert _tinv_entry(dinv, s, t, v, w, 0, 3) == 0.0
        assert _tinv_entry(dinv, s, t, v, w, 3, 0) == 0.0


# ======================================================================== #
# Triple product on a pattern                                              #
# ======================================================================== #


class TestPatternProduct:
    """Entries of X inv(T) Y' on a CSR sparsity pattern."""

    @pytest.mark.parametrize("transpose", [False, True])
    @pytest.mark.parametrize("density", [0.2, 0.6, 1.0])
    def test_matches_dense_product_on_pattern(self, density, transpose):
        rng = np.random.default_rng(7)
        m = 9
        a, b, c, T = random_dominant_tridiagonal(m, rng)
        X = sp.random(7, m, density=0.4, random_state=1, format="csr")
        Y = sp.random(6, m, density=0.4, random_state=2, format="csr")
        dinv, s, t, v, w = _tridiagonal_inverse_data(a, b, c)

        Tinv = np.linalg.inv(T)
        if transpose:
            Tinv = Tinv.T
        dense = X.toarray() @ Tinv @ Y.toarray().T

        pattern = sp.csr_matrix(rng.uniform(size=(7, 6)) < density)
        p_indptr = pattern.indptr.astype(np.int64)
        p_indices = pattern.indices.astype(np.int64)
        vals = _pattern_x_tinv_yt(
            *csr_parts(X), *csr_parts(Y), p_indptr, p_indices, dinv, s, t, v, w, transpose
        )
        assert vals.shape == p_indices.shape
        rows = np.repeat(np.arange(7), np.diff(p_indptr))
        np.testing.assert_allclose(vals, dense[rows, p_indices], atol=1e-12)

    def test_empty_pattern(self):
        a, b, c, _ = random_dominant_tridiagonal(4, np.random.default_rng(0))
        dinv, s, t, v, w = _tridiagonal_inverse_data(a, b, c)
        X = sp.csr_matrix(np.ones((3, 4)))
        vals = _pattern_x_tinv_yt(
            *csr_parts(X), *csr_parts(X), np.zeros(4, dtype=np.int64),
            np.zeros(0, dtype=np.int64), dinv, s, t, v, w, False
        )
        assert vals.size == 0
