"""
_block_pivot.py
===============
Non-negative least squares for circular split weights by block pivoting.

Public API
----------
  block_pivot(d, n, params=None, x0=None) -> BlockPivotResult
      Minimize ||A x - d|| subject to x >= 0.

  BlockPivotParams
      Tunable parameters with their defaults.

  projected_gradient_norm(n, d, x, active), residual_norm(n, d, x)
      Convergence diagnostics.

Algorithm
---------
The driver keeps an active set G of weights forced to zero and the vector
z returned by the restricted solver (weights off G, KKT gradient on G).
An index is infeasible when z[i] < 0: a free weight that went negative or
a constrained weight whose gradient says it should grow.  Each pivot flips
membership of infeasible indices:

  * all of them, whenever the count of infeasible indices improves on the
    best seen so far (the probe budget is reset to 3);
  * all of them anyway while probe budget remains (budget decremented);
  * otherwise only the infeasible index with the highest pair index, a
    Bland-style rule that guarantees termination.

Entries of z smaller than ``block_pivot_cutoff`` in magnitude are set to
zero after every solve.  Once no index is infeasible the weights are
re-fitted with a 1000x tighter tolerance and the constrained entries are
zeroed.  Hitting ``max_block_pivot_iterations`` is not an error: a warning
is logged and the current iterate is returned with ``converged=False``.

Logging
-------
  logging.getLogger('circsplits._block_pivot')
      INFO:    run start and summary.
      DEBUG:   one line per pivot.
      WARNING: iteration cap reached.

The numba toolchain is reported once at import time.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from circsplits._logging import (
    log_optimization_status,
    log_block_pivot_start,
    log_pivot_step,
    log_block_pivot_summary,
    log_block_pivot_cap,
)
from circsplits._operators import circular_ax, circular_atx
from circsplits._solvers import SOLVERS, make_solver
from circsplits._utils import n_pairs, check_n_taxa, as_mask, as_pair_vector


logger = logging.getLogger(__name__)

log_optimization_status()

# Non-improving pivots allowed before falling back to single flips.
PROBE_STEPS = 3

# Tolerance factor of the final re-fit.
FINAL_TOLERANCE_FACTOR = 1e-3


@dataclass
class BlockPivotParams:
    """
    Parameters of the block pivot driver.

    Attributes
    ----------
    pcg_tol : float, default 1e-12
        Tolerance of the inner conjugate gradient solves.
    max_pcg_iterations : int, default 1000
        Iteration cap of the inner solves (exceeding it is fatal).
    block_pivot_cutoff : float, default 1e-8
        Entries of z below this in magnitude are treated as zero.
    max_block_pivot_iterations : int, default 1000
        Pivot cap (exceeding it only logs a warning).
    use_preconditioner : bool, default True
        Precondition the dual solver.
    preconditioner_bands : int, default 10
        Band half-width of the preconditioner.
    solver : str, default 'best'
        'dual-pcg', 'cgnr', or 'best' (dual PCG when preconditioning,
        CGNR otherwise).
    """

    pcg_tol: float = 1e-12
    max_pcg_iterations: int = 1000
    block_pivot_cutoff: float = 1e-8
    max_block_pivot_iterations: int = 1000
    use_preconditioner: bool = True
    preconditioner_bands: int = 10
    solver: str = "best"

    def __post_init__(self):
        if not self.pcg_tol > 0:
            raise ValueError(f"pcg_tol must be positive, got {self.pcg_tol}")
        if self.max_pcg_iterations < 1:
            raise ValueError(
                f"max_pcg_iterations must be positive, got {self.max_pcg_iterations}"
            )
        if self.block_pivot_cutoff < 0:
            raise ValueError(
                f"block_pivot_cutoff must be non-negative, got {self.block_pivot_cutoff}"
            )
        if self.max_block_pivot_iterations < 0:
            raise ValueError(
                "max_block_pivot_iterations must be non-negative, "
                f"got {self.max_block_pivot_iterations}"
            )
        if self.preconditioner_bands < 0:
            raise ValueError(
                f"preconditioner_bands must be non-negative, got {self.preconditioner_bands}"
            )
        if self.solver not in SOLVERS:
            raise ValueError(
                f"Unknown solver {self.solver!r}; expected one of {', '.join(SOLVERS)}"
            )


@dataclass
class BlockPivotResult:
    """
    Outcome of :func:`block_pivot`.

    Attributes
    ----------
    weights : float64 ndarray (n(n-1)/2,)
        Split weights, exactly zero on the final active set.
    active : bool ndarray (n(n-1)/2,)
        Final active set.
    iterations : int
        Number of pivots performed.
    projected_gradient_norm : float
        Norm of the gradient projected onto the feasible directions.
    converged : bool
        False if the pivot cap was reached.
    residual_norm : float
        ||A x - d||.
    """

    weights: np.ndarray = field(repr=False)
    active: np.ndarray = field(repr=False)
    iterations: int
    projected_gradient_norm: float
    converged: bool
    residual_norm: float


def residual_norm(n: int, d, x) -> float:
    """||A x - d||."""
    return float(np.linalg.norm(circular_ax(n, x) - as_pair_vector(d, n, "d")))


def projected_gradient_norm(n: int, d, x, active) -> float:
    """
    Norm of the projected gradient of ||A x - d||^2 / 2.

    Weights in *active* are taken as zero; their gradient entries count
    only when negative (the weight would like to grow).  At a solution of
    the non-negative problem the result is zero.
    """
    active = as_mask(active, n)
    x = np.where(active, 0.0, as_pair_vector(x, n))
    gradient = circular_atx(n, circular_ax(n, x) - as_pair_vector(d, n, "d"))
    gradient[active & (gradient > 0)] = 0.0
    return float(np.linalg.norm(gradient))


def _apply_cutoff(z: np.ndarray, cutoff: float) -> np.ndarray:
    z[np.abs(z) < cutoff] = 0.0
    return z


def block_pivot(d, n: int, params: Optional[BlockPivotParams] = None,
                x0=None) -> BlockPivotResult:
    """
    Non-negative circular split weights fitting distances *d*.

    Parameters
    ----------
    d : array_like, shape (n(n-1)/2,)
        Non-negative distances in canonical pair order
        (0,1), (0,2), ..., (n-2,n-1) of the circular ordering.
    n : int
        Number of taxa (n >= 3).
    params : BlockPivotParams, optional
        Tuning parameters; defaults if omitted.
    x0 : array_like, shape (n(n-1)/2,), optional
        Warm start.  The initial active set is {i : x0[i] <= 0}.

    Returns
    -------
    BlockPivotResult

    Raises
    ------
    ValueError
        If n < 3, or d has the wrong length or negative/non-finite entries.
    ConvergenceError
        If an inner solve exceeds ``max_pcg_iterations``.

    Examples
    --------
    >>> d = circular_ax(4, [1.0, 0.0, 1.0, 2.0, 3.0, 1.0])
    >>> result = block_pivot(d, 4)
    >>> np.round(result.weights, 6).tolist()
    [1.0, 0.0, 1.0, 2.0, 3.0, 1.0]
    """
    n = check_n_taxa(n)
    d = as_pair_vector(d, n, "d")
    if np.any(d < 0):
        raise ValueError("Distances must be non-negative")
    params = params if params is not None else BlockPivotParams()
    t0 = time.perf_counter()

    solver = make_solver(n, params)
    total = n_pairs(n)
    cutoff = params.block_pivot_cutoff
    log_block_pivot_start(n, total, solver.name, x0 is not None)

    if x0 is None:
        active = np.ones(total, dtype=bool)
        # x = 0, so the gradient is -A'd
        z = -circular_atx(n, d)
    else:
        x0 = as_pair_vector(x0, n, "x0")
        active = x0 <= 0.0
        z = solver.solve(active, d, params.pcg_tol, x0)
    z = _apply_cutoff(z, cutoff)

    infeasible = z < 0.0
    n_infeasible = int(infeasible.sum())
    best = total + 1
    probes = PROBE_STEPS
    iterations = 0
    converged = True

    while n_infeasible > 0:
        if iterations >= params.max_block_pivot_iterations:
            log_block_pivot_cap(params.max_block_pivot_iterations, n_infeasible)
            converged = False
            break
        if n_infeasible < best:
            best = n_infeasible
            probes = PROBE_STEPS
            active ^= infeasible
            rule = "improve"
        elif probes > 0:
            probes -= 1
            active ^= infeasible
            rule = "probe"
        else:
            k = np.flatnonzero(infeasible)[-1]
            active[k] = not active[k]
            rule = "single"
        iterations += 1
        log_pivot_step(iterations, n_infeasible, int(active.sum()), rule)

        z = _apply_cutoff(solver.solve(active, d, params.pcg_tol, z), cutoff)
        infeasible = z < 0.0
        n_infeasible = int(infeasible.sum())

    z = solver.solve(active, d, FINAL_TOLERANCE_FACTOR * params.pcg_tol, z)
    z[active] = 0.0

    pg_norm = projected_gradient_norm(n, d, z, active)
    residual = residual_norm(n, d, z)
    log_block_pivot_summary(iterations, int(active.sum()), total, pg_norm,
                            residual, time.perf_counter() - t0)
    return BlockPivotResult(
        weights=z,
        active=active,
        iterations=iterations,
        projected_gradient_norm=pg_norm,
        converged=converged,
        residual_norm=residual,
    )
