"""
circsplits
==========

Non-negative least-squares weights for circular split networks.

Given n taxa in a fixed circular order and their pairwise distances,
*circsplits* finds non-negative weights for the n(n-1)/2 circular splits
that best fit the distances, the weighting step behind NeighborNet.  The
design matrix is never formed: it is applied implicitly in O(n^2), and the
constrained problem is solved by block pivoting over a dual preconditioned
conjugate gradient solver.

Main Functions
--------------
circular_split_weights : Fit split weights for a distance matrix
block_pivot : Non-negative least squares on a distance vector
induced_distances : Distances realized by weighted splits

Main Classes
------------
CircularSplit : A weighted circular split
BlockPivotParams : Solver parameters
BlockPivotResult : Weights plus convergence diagnostics
CircularOperator : Implicit A, A', inv(A), inv(A)'
BlockGramMatrix : Restricted normal-equations matrix in block form
BlockPreconditioner : Banded block LU preconditioner
DualPCGSolver, CGNRSolver : Restricted least-squares strategies

Context Managers
----------------
quiet : Suppress logging during operations
verbose : Stream package logging to the terminal
suppress_logger : Suppress specific logger
suppress_warnings : Suppress specific warnings

Examples
--------
>>> from circsplits import circular_split_weights
>>> D = [[0, 3, 4, 5], [3, 0, 5, 6], [4, 5, 0, 3], [5, 6, 3, 0]]
>>> splits = circular_split_weights(D)
>>> len(splits)
5

Lower level:

>>> import numpy as np
>>> from circsplits import block_pivot, circular_ax
>>> d = circular_ax(5, np.ones(10))
>>> result = block_pivot(d, 5)
>>> result.converged
True
"""

__version__ = "0.1.0"
__license__ = "MIT"

# Main entry points
from ._splits import CircularSplit, circular_split_weights, induced_distances
from ._block_pivot import (
    BlockPivotParams,
    BlockPivotResult,
    block_pivot,
    projected_gradient_norm,
    residual_norm,
)

# Building blocks
from ._operators import (
    CircularOperator,
    circular_ax,
    circular_atx,
    circular_solve,
    circular_ainv_t,
    design_matrix,
)
from ._tridiagonal import TridiagonalMatrix
from ._blocks import BlockLayout, BlockGramMatrix, InteriorBlock, WrapBlock
from ._preconditioner import BlockPreconditioner
from ._solvers import (
    ConvergenceError,
    LeastSquaresSolver,
    DualPCGSolver,
    CGNRSolver,
    make_solver,
)

# Context managers (user-facing utilities)
from ._context import suppress_logger, quiet, verbose, suppress_warnings

# Utilities
from ._utils import n_pairs, pair_index, pair_from_index

# Public API
__all__ = [
    # Main entry points
    "circular_split_weights",
    "induced_distances",
    "CircularSplit",
    "block_pivot",
    "BlockPivotParams",
    "BlockPivotResult",
    "projected_gradient_norm",
    "residual_norm",
    # Building blocks
    "CircularOperator",
    "circular_ax",
    "circular_atx",
    "circular_solve",
    "circular_ainv_t",
    "design_matrix",
    "TridiagonalMatrix",
    "BlockLayout",
    "BlockGramMatrix",
    "InteriorBlock",
    "WrapBlock",
    "BlockPreconditioner",
    "ConvergenceError",
    "LeastSquaresSolver",
    "DualPCGSolver",
    "CGNRSolver",
    "make_solver",
    # Context managers
    "suppress_logger",
    "quiet",
    "verbose",
    "suppress_warnings",
    # Utilities
    "n_pairs",
    "pair_index",
    "pair_from_index",
    # Version info
    "__version__",
]
