"""Quadrature rules on the reference simplices.

The reference simplex of dimension ``d`` has vertices ``0, e_1, ..., e_d``;
weights are normalised so that they sum to its measure (``1/d!``).
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from .exceptions import ConfigurationError

# Gauss-Legendre points and weights on [-1, 1] (cached at module level)
_GAUSS_QUAD = {
    1: (np.array([0.0]), np.array([2.0])),
    2: (np.array([-1.0 / np.sqrt(3), 1.0 / np.sqrt(3)]), np.array([1.0, 1.0])),
    3: (np.array([-np.sqrt(3 / 5), 0.0, np.sqrt(3 / 5)]), np.array([5 / 9, 8 / 9, 5 / 9])),
}


@dataclass(frozen=True)
class QuadratureRule:
    """Points (n, d) and weights (n,) on the reference simplex."""

    points: NDArray[np.float64]
    weights: NDArray[np.float64]

    @property
    def dimension(self) -> int:
        return self.points.shape[1]

    @property
    def num_points(self) -> int:
        return len(self.weights)


def gauss_segment(n: int) -> QuadratureRule:
    """n-point Gauss-Legendre rule mapped onto [0, 1]."""
    if n not in _GAUSS_QUAD:
        raise ConfigurationError(f"No Gauss rule with {n} points (available: {sorted(_GAUSS_QUAD)})")
    xi, w = _GAUSS_QUAD[n]
    return QuadratureRule(points=(0.5 * (xi + 1.0))[:, None], weights=0.5 * w)


def _triangle_rule() -> QuadratureRule:
    # Degree-3 rule with a negative centroid weight
    points = np.array([
        [1 / 3, 1 / 3],
        [1 / 5, 1 / 5],
        [1 / 5, 3 / 5],
        [3 / 5, 1 / 5],
    ])
    weights = np.array([-27.0, 25.0, 25.0, 25.0]) / 96.0
    return QuadratureRule(points=points, weights=weights)


def _tetrahedron_rule() -> QuadratureRule:
    points = np.array([
        [1 / 4, 1 / 4, 1 / 4],
        [1 / 6, 1 / 6, 1 / 6],
        [1 / 2, 1 / 6, 1 / 6],
        [1 / 6, 1 / 2, 1 / 6],
        [1 / 6, 1 / 6, 1 / 2],
    ])
    weights = np.array([-2 / 15, 3 / 40, 3 / 40, 3 / 40, 3 / 40])
    return QuadratureRule(points=points, weights=weights)


def quadrature_rule(dim: int) -> QuadratureRule:
    """
    Default quadrature rule for the reference simplex of dimension ``dim``.

    Parameters
    ----------
    dim : int
        Topological dimension (0 = vertex, 1 = segment, 2 = triangle,
        3 = tetrahedron).

    Returns
    -------
    QuadratureRule
        Single point for vertices, 3-point Gauss on segments, the 4-point
        degree-3 rule on triangles and the 5-point degree-3 rule on
        tetrahedra. All of them integrate P1 x P1 products exactly.
    """
    if dim == 0:
        return QuadratureRule(points=np.zeros((1, 0)), weights=np.ones(1))
    if dim == 1:
        return gauss_segment(3)
    if dim == 2:
        return _triangle_rule()
    if dim == 3:
        return _tetrahedron_rule()
    raise ConfigurationError(f"No quadrature rule for dimension {dim}")
