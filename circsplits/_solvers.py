"""
_solvers.py
===========
Least-squares solves with a fixed active set.

Given the active set G (splits forced to zero) and distances d, a solver
finds

    x = argmin ||A x - d||   subject to   x[G] = 0

and returns the combined vector

    z[i] = x[i]                     for i not in G   (primal weights)
    z[i] = (A'(A x - d))[i]         for i in G       (KKT gradient)

which is exactly what the block pivot driver needs for its feasibility
test.  Two strategies implement the same interface:

  DualPCGSolver
      Works on the Lagrange multipliers nu of the constraints.  With
      B = inv(A)' R the multipliers solve B'B nu = B'd, and
      x = inv(A)(d - inv(A)' R nu).  B'B is the block Gram matrix, so the
      banded block preconditioner applies.

  CGNRSolver
      Conjugate gradients on the normal equations A'A x = A'd restricted
      to the free variables.  Needs nothing but the circular operators.

When G is empty both return inv(A) d directly.  Exceeding the iteration
cap raises :class:`ConvergenceError`.
"""

import logging
from typing import Optional

import numpy as np

from circsplits._blocks import BlockGramMatrix
from circsplits._logging import log_inner_solve
from circsplits._operators import CircularOperator
from circsplits._preconditioner import BlockPreconditioner
from circsplits._utils import as_mask, as_pair_vector


logger = logging.getLogger(__name__)

SOLVERS = ("best", "dual-pcg", "cgnr")


class ConvergenceError(RuntimeError):
    """An inner conjugate gradient solve exceeded its iteration cap."""


class LeastSquaresSolver:
    """
    Base class for constrained least-squares strategies.

    Subclasses implement :meth:`_solve`, returning the primal weights x for
    a non-empty active set.  Instances keep no state between calls apart
    from ``last_iterations``, so each thread should own its own solver.

    Parameters
    ----------
    n : int
        Number of taxa.
    max_iterations : int, default 1000
        Iteration cap of the inner conjugate gradient loop.
    """

    name = "base"

    def __init__(self, n: int, max_iterations: int = 1000):
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {max_iterations}")
        self.operator = CircularOperator(n)
        self.n = self.operator.n
        self.max_iterations = int(max_iterations)
        self.last_iterations = 0

    def solve(self, active, d, tol: float, x0=None) -> np.ndarray:
        """
        Solve the restricted problem for active set *active*.

        Parameters
        ----------
        active : bool ndarray (n(n-1)/2,)
            True where the weight is constrained to zero.
        d : array_like (n(n-1)/2,)
            Distances in canonical pair order.
        tol : float
            Convergence tolerance of the inner iteration.
        x0 : array_like, optional
            Starting weights; only used by strategies that iterate on x.

        Returns
        -------
        np.ndarray
            Combined vector z (weights off G, gradient on G).

        Raises
        ------
        ConvergenceError
            If the inner iteration does not reach *tol*.
        """
        active = as_mask(active, self.n)
        d = as_pair_vector(d, self.n, "d")
        if tol <= 0:
            raise ValueError(f"tol must be positive, got {tol}")
        if x0 is not None:
            x0 = as_pair_vector(x0, self.n, "x0")

        if not active.any():
            self.last_iterations = 0
            return self.operator.solve(d)

        x = self._solve(active, d, tol, x0)
        gradient = self.operator.rmatvec(self.operator.matvec(x) - d)
        return np.where(active, gradient, x)

    def _solve(self, active: np.ndarray, d: np.ndarray, tol: float,
               x0: Optional[np.ndarray]) -> np.ndarray:
        raise NotImplementedError

    def _raise_not_converged(self, active: np.ndarray, residual: float, tol: float):
        raise ConvergenceError(
            f"{self.name} did not converge in {self.max_iterations} iterations "
            f"(|G|={int(active.sum())}, residual {residual:.3e}, tol {tol:.1e})"
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n={self.n}, max_iterations={self.max_iterations})"


class DualPCGSolver(LeastSquaresSolver):
    """
    Preconditioned conjugate gradients on the dual problem.

    Solves X nu = R' inv(A) d with X = R' inv(A) inv(A)' R, stopping when
    the recursively updated residual drops to ``tol * ||R' inv(A) d||``,
    the norm of the starting residual.  The scaling matches
    :class:`CGNRSolver`, so a tolerance means the same for distances of any
    magnitude.

    Parameters
    ----------
    n : int
        Number of taxa.
    max_iterations : int, default 1000
        Iteration cap.
    use_preconditioner : bool, default True
        Apply :class:`BlockPreconditioner`; plain CG otherwise.
    bands : int, default 10
        Window half-width of the preconditioner.
    """

    name = "dual-pcg"

    def __init__(self, n: int, max_iterations: int = 1000,
                 use_preconditioner: bool = True, bands: int = 10):
        super().__init__(n, max_iterations)
        if bands < 0:
            raise ValueError(f"bands must be non-negative, got {bands}")
        self.use_preconditioner = bool(use_preconditioner)
        self.bands = int(bands)

    def _gram(self, active: np.ndarray, v: np.ndarray) -> np.ndarray:
        return np.where(active, self.operator.solve(self.operator.solve_transpose(v)), 0.0)

    def _solve(self, active, d, tol, x0):
        op = self.operator
        unconstrained = op.solve(d)
        r = np.where(active, unconstrained, 0.0)
        rnorm = np.linalg.norm(r)
        target = tol * rnorm
        if target == 0.0:
            # R' inv(A) d = 0: the unconstrained fit already satisfies x[G] = 0
            self.last_iterations = 0
            return unconstrained

        precondition = None
        if self.use_preconditioner:
            preconditioner = BlockPreconditioner(BlockGramMatrix(self.n, active), self.bands)
            precondition = preconditioner.solve_vector

        nu = np.zeros(op.n_pairs)
        z = precondition(r) if precondition else r.copy()
        p = z.copy()
        rz = r @ z

        k = 0
        while rnorm > target:
            if k >= self.max_iterations:
                self._raise_not_converged(active, rnorm, target)
            w = self._gram(active, p)
            alpha = rz / (p @ w)
            nu += alpha * p
            r -= alpha * w
            z = precondition(r) if precondition else r.copy()
            rz_new = r @ z
            p = z + (rz_new / rz) * p
            rz = rz_new
            rnorm = np.linalg.norm(r)
            k += 1

        self.last_iterations = k
        log_inner_solve(self.name, int(active.sum()), k, rnorm, target)
        return unconstrained - op.solve(op.solve_transpose(nu))


class CGNRSolver(LeastSquaresSolver):
    """
    Conjugate gradients on the normal equations over the free variables.

    Stops when the normal-equation residual ||R_F' A'(d - A x)|| drops to
    ``tol * ||A'd||``.  The start vector is *x0* with the constrained
    entries zeroed, or zero.
    """

    name = "cgnr"

    def _normal(self, free: np.ndarray, v: np.ndarray) -> np.ndarray:
        return np.where(free, self.operator.rmatvec(self.operator.matvec(v)), 0.0)

    def _solve(self, active, d, tol, x0):
        op = self.operator
        free = ~active
        x = np.zeros(op.n_pairs) if x0 is None else np.where(free, x0, 0.0)

        b = op.rmatvec(d)
        target = tol * np.linalg.norm(b)
        if target == 0.0:
            # d = 0: the minimizer is x = 0 for every active set
            self.last_iterations = 0
            return np.zeros(op.n_pairs)
        r = np.where(free, b, 0.0) - self._normal(free, x)
        rho = r @ r
        p = r.copy()

        k = 0
        while np.sqrt(rho) > target:
            if k >= self.max_iterations:
                self._raise_not_converged(active, np.sqrt(rho), target)
            w = self._normal(free, p)
            alpha = rho / (p @ w)
            x += alpha * p
            r -= alpha * w
            rho_new = r @ r
            p = r + (rho_new / rho) * p
            rho = rho_new
            k += 1

        self.last_iterations = k
        log_inner_solve(self.name, int(active.sum()), k, np.sqrt(rho), target)
        return x


def make_solver(n: int, params) -> LeastSquaresSolver:
    """
    Build the strategy selected by ``params.solver``.

    'best' picks the preconditioned dual solver when
    ``params.use_preconditioner`` is set and CGNR otherwise.

    Parameters
    ----------
    n : int
        Number of taxa.
    params : BlockPivotParams
        Driver configuration.
    """
    name = params.solver
    if name not in SOLVERS:
        raise ValueError(f"Unknown solver {name!r}; expected one of {', '.join(SOLVERS)}")
    if name == "best":
        name = "dual-pcg" if params.use_preconditioner else "cgnr"
    if name == "dual-pcg":
        return DualPCGSolver(
            n,
            params.max_pcg_iterations,
            use_preconditioner=params.use_preconditioner,
            bands=params.preconditioner_bands,
        )
    return CGNRSolver(n, params.max_pcg_iterations)
