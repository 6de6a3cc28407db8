"""
_logging.py
===========
Logging functions for circsplits.

All functions in this module have NO side effects except logging. They take
computed data as parameters and format/emit log messages.

This separation ensures:
- Logging can be easily disabled/mocked in tests
- Computation is separate from presentation
- Clear boundaries between analysis and reporting

Every logger lives under the ``circsplits`` parent logger, so

    logging.getLogger('circsplits').setLevel(logging.WARNING)

silences the INFO chatter of the whole package.
"""

import logging
from typing import List


logger = logging.getLogger(__name__)


# ============================================================================ #
# System Logging (called at module import time)
# ============================================================================ #


def log_optimization_status() -> None:
    """
    Log system capabilities and the numba toolchain at INFO level.

    Called once at import time of the solver driver.  Reports CPU count,
    Python version, and the numba and llvmlite versions that compile the
    kernels.
    """
    import os
    import platform

    import llvmlite
    import numba

    cpu_count = os.cpu_count() or 1
    logger.info(
        "System: %s (%s), %d CPU cores, Python %s",
        platform.machine(),
        platform.system(),
        cpu_count,
        platform.python_version(),
    )
    logger.info("Numba %s loaded successfully", numba.__version__)
    logger.info("LLVM backend: llvmlite %s", llvmlite.__version__)


# ============================================================================ #
# Preconditioner and inner solver logging
# ============================================================================ #


def log_preconditioner_built(
    n: int, block_sizes: List[int], bands: int, nnz: int, seconds: float
) -> None:
    """
    Log preconditioner construction statistics at DEBUG level.

    Parameters
    ----------
    n : int
        Number of taxa.
    block_sizes : List[int]
        Restricted size of every block, wrap block last.
    bands : int
        Band half-width of the wrap-coupling factors.
    nnz : int
        Stored non-zeros in those factors.
    seconds : float
        Construction wall time.
    """
    n_empty = sum(1 for size in block_sizes if size == 0)
    logger.debug(
        "Preconditioner n=%d: %d active pairs in %d blocks (%d empty), "
        "bands=%d, coupling nnz=%d, built in %.4fs",
        n,
        sum(block_sizes),
        len(block_sizes),
        n_empty,
        bands,
        nnz,
        seconds,
    )


def log_inner_solve(method: str, n_active: int, iterations: int,
                    residual: float, tol: float) -> None:
    """Log one constrained least-squares solve at DEBUG level."""
    logger.debug(
        "%s: |G|=%d, %d iterations, residual %.3e (tol %.1e)",
        method,
        n_active,
        iterations,
        residual,
        tol,
    )


# ============================================================================ #
# Block pivot driver logging
# ============================================================================ #


def log_block_pivot_start(n: int, n_pairs: int, solver: str, warm_start: bool) -> None:
    logger.info(
        "Block pivot NNLS: n=%d taxa, %d splits, solver=%s%s",
        n,
        n_pairs,
        solver,
        ", warm start" if warm_start else "",
    )


def log_pivot_step(iteration: int, n_infeasible: int, n_active: int, rule: str) -> None:
    """
    Log a single pivot at DEBUG level.

    Parameters
    ----------
    iteration : int
        Pivot number, starting at 1.
    n_infeasible : int
        Infeasible indices before the pivot.
    n_active : int
        Size of the active set after the pivot.
    rule : str
        'improve', 'probe' or 'single' (the fallback flipping one index).
    """
    logger.debug(
        "Pivot %d (%s): %d infeasible, |G|=%d",
        iteration,
        rule,
        n_infeasible,
        n_active,
    )


def log_block_pivot_summary(iterations: int, n_active: int, n_pairs: int,
                            pg_norm: float, residual: float, seconds: float) -> None:
    logger.info(
        "Block pivot finished after %d pivots: %d of %d splits non-zero, "
        "projected gradient %.3e, residual %.6g (%.3fs)",
        iterations,
        n_pairs - n_active,
        n_pairs,
        pg_norm,
        residual,
        seconds,
    )


def log_block_pivot_cap(max_iterations: int, n_infeasible: int) -> None:
    """Warn that the driver stopped at its iteration cap."""
    logger.warning(
        "Block pivot reached the maximum of %d iterations with %d infeasible "
        "indices remaining; returning the current iterate",
        max_iterations,
        n_infeasible,
    )


# ============================================================================ #
# Split front end logging
# ============================================================================ #


def log_split_summary(n: int, n_splits: int, total_weight: float, cutoff: float) -> None:
    logger.info(
        "Circular splits for %d taxa: %d splits above cutoff %.1e, total weight %.6g",
        n,
        n_splits,
        cutoff,
        total_weight,
    )
