"""
_cpu_kernels.py
===============
Numba-compiled kernels for circular split least squares.

This module contains ONLY numba-accelerated code and should not import other
project modules to avoid import-time complications.  The public wrappers in
``_operators.py``, ``_tridiagonal.py`` and ``_preconditioner.py`` validate
their arguments and then forward plain numpy arrays and scalars here.

Exported Functions
------------------
_pair_index : njit function
    Flat 0-based index of taxon pair (i, j), i < j.

_circular_ax, _circular_atx : njit functions
    A*x and A'*x for the full circular split design matrix, O(n^2).

_circular_solve, _circular_ainv_t : njit functions
    inv(A)*y and inv(A)'*x in closed form, O(n^2).

_tridiagonal_lu, _solve_lower_bidiagonal, _solve_upper_bidiagonal : njit
    Unpivoted tridiagonal LU and the matching bidiagonal substitutions.

_tridiagonal_inverse_data, _tinv_entry : njit functions
    O(1) access to entries of the inverse of a tridiagonal matrix.

_pattern_x_tinv_yt : njit function
    Entries of X * inv(T) * Y' on a given sparsity pattern, CSR-packed X, Y.

Notes
-----
- Pair (i, j) indexes the split {i, i+1, ..., j-1} | rest.
- Taxon index -1 stands for "wrapped around the circle": the pair (-1, k)
  is read as (k, n-1), and a pair (k, k) contributes nothing.
- cache=True persists compiled binaries to disk for faster subsequent runs.
"""

import numpy as np
from numba import njit


# ======================================================================== #
# Pair indexing                                                             #
# ======================================================================== #


@njit(cache=True)
def _pair_index(i, j, n):
    """Flat index of pair (i, j), i < j, in the order (0,1),(0,2),...,(n-2,n-1)."""
    return i * n - (i * (i + 1)) // 2 + (j - i - 1)


@njit(cache=True)
def _wrapped_get(y, i, j, n):
    if i == j:
        return 0.0
    if i < 0:
        if j == n - 1:
            return 0.0
        return y[_pair_index(j, n - 1, n)]
    return y[_pair_index(i, j, n)]


@njit(cache=True)
def _wrapped_add(y, i, j, n, value):
    if i == j:
        return
    if i < 0:
        if j == n - 1:
            return
        y[_pair_index(j, n - 1, n)] += value
    else:
        y[_pair_index(i, j, n)] += value


# ======================================================================== #
# Circular split operators                                                  #
# ======================================================================== #


@njit(cache=True)
def _circular_ax(n, x, d):
    """
    d = A*x for the full circular split system.

    Adjacent pairs (i, i+1) are explicit sums; every other pair follows from
    the recurrence

        d(i,j) = d(i,j-1) + d(i+1,j) - d(i+1,j-1) - 2 x(i+1,j)

    so the whole sweep is O(n^2).

    Parameters
    ----------
    n : int
        Number of taxa.
    x : float64[n(n-1)/2]
        Split weights.
    d : float64[n(n-1)/2]
        Output, overwritten.
    """
    for i in range(n - 1):
        total = 0.0
        # arcs ending at i: splits (k, i+1)
        for k in range(i + 1):
            total += x[_pair_index(k, i + 1, n)]
        # arcs starting at i+1: splits (i+1, j)
        for j in range(i + 2, n):
            total += x[_pair_index(i + 1, j, n)]
        d[_pair_index(i, i + 1, n)] = total

    for gap in range(2, n):
        for i in range(n - gap):
            j = i + gap
            value = (d[_pair_index(i, j - 1, n)]
                     + d[_pair_index(i + 1, j, n)]
                     - 2.0 * x[_pair_index(i + 1, j, n)])
            if gap > 2:
                value -= d[_pair_index(i + 1, j - 1, n)]
            d[_pair_index(i, j, n)] = value


@njit(cache=True)
def _circular_atx(n, x, p):
    """
    p = A'*x for the full circular split system.

    The trivial split {i} collects every pair containing i; the remaining
    entries use the transposed recurrence

        p(i,j) = p(i,j-1) + p(i+1,j) - p(i+1,j-1) - 2 x(i,j-1)
    """
    for i in range(n - 1):
        total = 0.0
        for j in range(i):
            total += x[_pair_index(j, i, n)]
        for j in range(i + 1, n):
            total += x[_pair_index(i, j, n)]
        p[_pair_index(i, i + 1, n)] = total

    for gap in range(2, n):
        for i in range(n - gap):
            j = i + gap
            value = (p[_pair_index(i, j - 1, n)]
                     + p[_pair_index(i + 1, j, n)]
                     - 2.0 * x[_pair_index(i, j - 1, n)])
            if gap > 2:
                value -= p[_pair_index(i + 1, j - 1, n)]
            p[_pair_index(i, j, n)] = value


@njit(cache=True)
def _circular_solve(n, y, x):
    """
    x = inv(A)*y, using the finite-difference formula

        x(i,j) = ( y(i,j) + y(i-1,j-1) - y(i,j-1) - y(i-1,j) ) / 2

    with the wrap-around conventions described in the module docstring.
    """
    for i in range(n - 1):
        for j in range(i + 1, n):
            x[_pair_index(i, j, n)] = 0.5 * (
                _wrapped_get(y, i, j, n)
                + _wrapped_get(y, i - 1, j - 1, n)
                - _wrapped_get(y, i, j - 1, n)
                - _wrapped_get(y, i - 1, j, n)
            )


@njit(cache=True)
def _circular_ainv_t(n, x, y):
    """
    y = inv(A)'*x, accumulated column by column.

    Column (i,j) of inv(A)' has at most four non-zeros, +1/2 at (i,j) and
    (i-1,j-1), -1/2 at (i,j-1) and (i-1,j).
    """
    for k in range(y.size):
        y[k] = 0.0
    for i in range(n - 1):
        for j in range(i + 1, n):
            half = 0.5 * x[_pair_index(i, j, n)]
            _wrapped_add(y, i, j, n, half)
            _wrapped_add(y, i - 1, j - 1, n, half)
            _wrapped_add(y, i, j - 1, n, -half)
            _wrapped_add(y, i - 1, j, n, -half)


# ======================================================================== #
# Tridiagonal kernels                                                       #
# ======================================================================== #


@njit(cache=True)
def _tridiagonal_lu(a, b, c):
    """
    Unpivoted LU of the tridiagonal matrix (a, b, c).

    Returns the sub-diagonal of the unit lower factor and the diagonal of the
    upper factor; the super-diagonal of the upper factor is c itself.
    """
    m = a.size
    lower = np.zeros(max(m - 1, 0))
    upper = np.zeros(m)
    if m == 0:
        return lower, upper
    upper[0] = a[0]
    for i in range(1, m):
        lower[i - 1] = b[i - 1] / upper[i - 1]
        upper[i] = a[i] - lower[i - 1] * c[i - 1]
    return lower, upper


@njit(cache=True)
def _solve_lower_bidiagonal(a, b, y):
    m = a.size
    x = np.zeros(m)
    if m == 0:
        return x
    x[0] = y[0] / a[0]
    for i in range(1, m):
        x[i] = (y[i] - b[i - 1] * x[i - 1]) / a[i]
    return x


@njit(cache=True)
def _solve_upper_bidiagonal(a, c, y):
    m = a.size
    x = np.zeros(m)
    if m == 0:
        return x
    x[m - 1] = y[m - 1] / a[m - 1]
    for i in range(m - 2, -1, -1):
        x[i] = (y[i] - c[i] * x[i + 1]) / a[i]
    return x


@njit(cache=True)
def _tridiagonal_inverse_data(a, b, c):
    """
    Arrays giving O(1) access to entries of inv(T) (Usmani's formula).

    Returns
    -------
    dinv : float64[m]   diagonal of inv(T)
    s    : int64[m]     s[j] = smallest i <= j with inv(T)[i, j] != 0
    t    : int64[m]     t[i] = smallest j <= i with inv(T)[i, j] != 0
    v, w : float64[m]   ratios for the upper and lower triangles
    """
    m = a.size
    dinv = np.zeros(m)
    s = np.zeros(m, dtype=np.int64)
    t = np.zeros(m, dtype=np.int64)
    v = np.ones(m)
    w = np.ones(m)
    if m == 0:
        return dinv, s, t, v, w
    if m == 1:
        dinv[0] = 1.0 / a[0]
        return dinv, s, t, v, w

    # theta[i] = det(T[:i+1,:i+1]) / det(T[:i,:i])
    theta = np.zeros(m)
    theta[0] = a[0]
    for i in range(1, m):
        theta[i] = a[i] - b[i - 1] * c[i - 1] / theta[i - 1]

    # phi[i] = det(T[i:,i:]) / det(T[i+1:,i+1:])
    phi = np.zeros(m)
    phi[m - 1] = a[m - 1]
    for i in range(m - 2, -1, -1):
        phi[i] = a[i] - b[i] * c[i] / phi[i + 1]

    for k in range(m):
        if k == 0 or c[k - 1] == 0.0:
            s[k] = k
        else:
            s[k] = s[k - 1]
        if k == 0 or b[k - 1] == 0.0:
            t[k] = k
        else:
            t[k] = t[k - 1]

    dinv[m - 1] = 1.0 / theta[m - 1]
    for i in range(m - 2, -1, -1):
        dinv[i] = phi[i + 1] * dinv[i + 1] / theta[i]

    for k in range(1, m):
        if c[k - 1] != 0.0:
            v[k] = -c[k - 1] * v[k - 1] / phi[k]
        if b[k - 1] != 0.0:
            w[k] = -b[k - 1] * w[k - 1] / phi[k]
    return dinv, s, t, v, w


@njit(cache=True)
def _tinv_entry(dinv, s, t, v, w, i, j):
    if i == j:
        return dinv[i]
    if i < j:
        if i >= s[j]:
            return dinv[i] * v[j] / v[i]
        return 0.0
    if j >= t[i]:
        return dinv[j] * w[i] / w[j]
    return 0.0


@njit(cache=True)
def _pattern_x_tinv_yt(x_indptr, x_indices, x_data,
                       y_indptr, y_indices, y_data,
                       p_indptr, p_indices, dinv, s, t, v, w, transpose):
    """
    Entries of X * inv(T) * Y' at the positions of a CSR sparsity pattern.

    X and Y are CSR-packed with the same number of columns as T; row i of
    the pattern lists the columns p_indices[p_indptr[i]:p_indptr[i+1]] to
    evaluate in row i of the product.  If `transpose` is true inv(T)' is
    used in place of inv(T).

    Returns
    -------
    vals : float64[p_indices.size]
        Product entries in pattern order.
    """
    n_rows = p_indptr.size - 1
    vals = np.zeros(p_indices.size)
    for i in range(n_rows):
        for k in range(p_indptr[i], p_indptr[i + 1]):
            j = p_indices[k]
            z = 0.0
            for ka in range(x_indptr[i], x_indptr[i + 1]):
                col_a = x_indices[ka]
                xa = x_data[ka]
                for kb in range(y_indptr[j], y_indptr[j + 1]):
                    col_b = y_indices[kb]
                    if transpose:
                        tab = _tinv_entry(dinv, s, t, v, w, col_b, col_a)
                    else:
                        tab = _tinv_entry(dinv, s, t, v, w, col_a, col_b)
                    z += xa * tab * y_data[kb]
            vals[k] = z
    return vals
