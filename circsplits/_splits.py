"""
_splits.py
==========
From a distance matrix and a circular ordering to weighted circular splits.

A circular split cuts the circle of taxa into two arcs.  For taxa placed
at positions 0..n-1 the split indexed by pair (i, j) is the arc of
positions i..j-1; the side stored here is always the arc that excludes the
last position, so each split has exactly one representation.

Public API
----------
  circular_split_weights(distances, ordering=None, cutoff=1e-6, params=None)
      Fit non-negative split weights by block pivoting and return the
      splits whose weight exceeds *cutoff*.

  CircularSplit
      Immutable (side, weight, pair) record.

  induced_distances(splits, n)
      Distance matrix realized by a set of weighted splits.
"""

import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Sequence, Tuple

import numpy as np

from circsplits._block_pivot import BlockPivotParams, block_pivot
from circsplits._logging import log_split_summary
from circsplits._utils import pair_from_index, validate_distance_matrix, validate_ordering


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CircularSplit:
    """
    A weighted circular split.

    Attributes
    ----------
    side : frozenset of int
        Taxa on the arc not containing the last taxon of the ordering.
    weight : float
        Non-negative split weight.
    pair : tuple of int
        Circular positions (i, j) such that the arc is positions i..j-1.

    Examples
    --------
    >>> s = CircularSplit(frozenset({0, 1}), 2.5, (0, 2))
    >>> s.separates(1, 2), s.separates(0, 1)
    (True, False)
    >>> s.is_trivial(4)
    False
    """

    side: FrozenSet[int]
    weight: float
    pair: Tuple[int, int]

    def separates(self, a: int, b: int) -> bool:
        """True if taxa *a* and *b* lie on opposite sides."""
        return (a in self.side) != (b in self.side)

    def is_trivial(self, n: int) -> bool:
        """True if one side is a single taxon."""
        return len(self.side) == 1 or len(self.side) == n - 1


def circular_split_weights(
    distances,
    ordering: Optional[Sequence[int]] = None,
    cutoff: float = 1e-6,
    params: Optional[BlockPivotParams] = None,
) -> List[CircularSplit]:
    """
    Least-squares circular split weights for a distance matrix.

    Parameters
    ----------
    distances : array_like, shape (n, n)
        Symmetric, non-negative distance matrix indexed by taxon.
    ordering : sequence of int, optional
        Circular ordering of the taxa, a permutation of 0..n-1.  The
        identity if omitted.
    cutoff : float, default 1e-6
        Splits with weight not exceeding this are dropped.
    params : BlockPivotParams, optional
        Solver parameters.

    Returns
    -------
    list of CircularSplit
        In canonical pair order.

    Raises
    ------
    ValueError
        If the matrix is not square, symmetric and non-negative, or the
        ordering is not a permutation.

    Examples
    --------
    >>> D = [[0, 3, 4, 5], [3, 0, 5, 6], [4, 5, 0, 3], [5, 6, 3, 0]]
    >>> [(sorted(s.side), round(s.weight, 6)) for s in circular_split_weights(D)]
    [([0], 1.0), ([0, 1], 2.0), ([0, 1, 2], 2.0), ([1], 2.0), ([2], 1.0)]
    """
    D = validate_distance_matrix(distances)
    n = D.shape[0]
    if n == 0:
        raise ValueError("Distance matrix is empty")
    if cutoff < 0:
        raise ValueError(f"cutoff must be non-negative, got {cutoff}")
    order = validate_ordering(ordering, n)

    if n == 1:
        splits = []
    elif n == 2:
        weight = float(D[order[0], order[1]])
        splits = []
        if weight > 0:
            splits.append(CircularSplit(frozenset({int(order[0])}), weight, (0, 1)))
    else:
        rows, cols = np.triu_indices(n, 1)
        d = D[np.ix_(order, order)][rows, cols]
        result = block_pivot(d, n, params)
        splits = []
        for k in np.flatnonzero(result.weights > cutoff):
            i, j = pair_from_index(int(k), n)
            side = frozenset(int(t) for t in order[i:j])
            splits.append(CircularSplit(side, float(result.weights[k]), (i, j)))

    log_split_summary(n, len(splits), sum(s.weight for s in splits), cutoff)
    return splits


def induced_distances(splits: Sequence[CircularSplit], n: int) -> np.ndarray:
    """
    Pairwise distances realized by weighted splits.

    D[a, b] is the total weight of the splits separating a and b.

    Examples
    --------
    >>> s = CircularSplit(frozenset({0}), 1.5, (0, 1))
    >>> induced_distances([s], 3).tolist()
    [[0.0, 1.5, 1.5], [1.5, 0.0, 0.0], [1.5, 0.0, 0.0]]
    """
    D = np.zeros((n, n))
    for split in splits:
        if any(t < 0 or t >= n for t in split.side):
            raise ValueError(f"Split side {sorted(split.side)} out of range for n={n}")
        inside = np.zeros(n, dtype=bool)
        inside[list(split.side)] = True
        D[np.ix_(inside, ~inside)] += split.weight
        D[np.ix_(~inside, inside)] += split.weight
    return D
