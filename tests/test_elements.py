"""Tests for quadrature rules and P1 elementary operators.

Run with: pytest tests/test_elements.py -v
"""

import math

import numpy as np
import pytest

from halfguide import ConfigurationError, DegenerateElementError
from halfguide.elements import (
    elementary_matrix,
    shape_functions,
    triangle_mass,
    triangle_stiffness,
)
from halfguide.quadrature import gauss_segment, quadrature_rule


class TestQuadrature:
    """Test reference simplex quadrature rules."""

    @pytest.mark.parametrize("dim", [0, 1, 2, 3])
    def test_weights_sum_to_measure(self, dim):
        """Weights should sum to the reference simplex measure 1/d!."""
        rule = quadrature_rule(dim)
        assert np.isclose(rule.weights.sum(), 1.0 / math.factorial(dim))
        assert rule.points.shape == (rule.num_points, dim)

    def test_triangle_rule_degree(self):
        """Triangle rule should integrate x^2 exactly (1/12 on the reference triangle)."""
        rule = quadrature_rule(2)
        assert np.isclose(np.sum(rule.weights * rule.points[:, 0] ** 2), 1.0 / 12.0)
        assert np.isclose(np.sum(rule.weights * rule.points[:, 0] * rule.points[:, 1]), 1.0 / 24.0)

    def test_gauss_segment_exactness(self):
        """3-point Gauss on [0, 1] is exact up to degree 5."""
        rule = gauss_segment(3)
        for k in range(6):
            assert np.isclose(np.sum(rule.weights * rule.points[:, 0] ** k), 1.0 / (k + 1))

    def test_unknown_rule(self):
        with pytest.raises(ConfigurationError):
            quadrature_rule(4)


class TestShapeFunctions:
    """Test P1 shape function evaluation."""

    def test_partition_of_unity(self):
        """Values of the P1 functions should sum to one everywhere."""
        rng = np.random.default_rng(0)
        pts = rng.random((10, 2)) / 2
        phis = shape_functions(pts, np.array([1.0, 0.0, 0.0]))
        assert np.allclose(phis.sum(axis=1), 1.0)

    def test_derivatives_sum_to_zero(self):
        """Derivatives of a partition of unity sum to zero."""
        phis = shape_functions(np.array([[0.2, 0.3]]), np.array([0.0, 1.0, 0.0]))
        assert np.allclose(phis, [[-1.0, 1.0, 0.0]])


class TestElementaryMatrix:
    """Test single-element operators against closed forms."""

    def test_triangle_mass(self):
        """Mass matrix matches |T|/12 [[2,1,1],[1,2,1],[1,1,2]]."""
        pts = np.array([[0.0, 0.0], [2.0, 0.5], [0.3, 1.5]])
        area = 0.5 * abs(2.0 * 1.5 - 0.5 * 0.3)
        Ae = elementary_matrix(pts, [1.0], [1.0])
        assert np.allclose(Ae, triangle_mass(area))

    def test_triangle_stiffness(self):
        """Sum of dx.dx and dy.dy matches the classical stiffness matrix."""
        pts = np.array([[0.0, 0.0], [2.0, 0.5], [0.3, 1.5]])
        Ae = elementary_matrix(pts, [0.0, 1.0], [0.0, 1.0]) + elementary_matrix(
            pts, [0.0, 0.0, 1.0], [0.0, 0.0, 1.0]
        )
        assert np.allclose(Ae, triangle_stiffness(pts[:, 0], pts[:, 1]))

    def test_segment_mass(self):
        """1D mass on a segment of length 2."""
        Ae = elementary_matrix(np.array([[1.0], [3.0]]), [1.0], [1.0])
        assert np.allclose(Ae, [[2 / 3, 1 / 3], [1 / 3, 2 / 3]])

    def test_vertex_mass(self):
        """0D elements integrate by point evaluation."""
        Ae = elementary_matrix(np.array([[0.7]]), [1.0], [1.0], mesh_dim=1)
        assert np.allclose(Ae, [[1.0]])

    def test_tetrahedron_volume(self):
        """Sum of the mass entries equals the volume."""
        pts = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 2.0, 0.0], [0.0, 0.0, 3.0]])
        Ae = elementary_matrix(pts, [1.0], [1.0])
        assert np.isclose(Ae.sum(), 1.0)

    def test_quadrature_matches_closed_form(self):
        """A unit coefficient through quadrature gives the exact matrix."""
        pts = np.array([[0.0, 0.0], [1.0, 0.2], [0.1, 0.9]])
        a_u, a_v = [1.0, 0.5, 0.0], [1.0, 0.0, 2.0]
        exact = elementary_matrix(pts, a_u, a_v)
        quad = elementary_matrix(pts, a_u, a_v, fun=lambda P: np.ones(len(P)))
        assert np.allclose(exact, quad)

    def test_test_side_conjugated(self):
        """A complex coefficient on the test side is conjugated."""
        pts = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        Ae = elementary_matrix(pts, [1.0], [1j])
        assert np.allclose(Ae, -1j * triangle_mass(0.5))

    def test_linear_coefficient(self):
        """int x over the reference triangle is 1/6."""
        pts = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        Ae = elementary_matrix(pts, [1.0], [1.0], fun=lambda P: P[:, 0])
        assert np.isclose(Ae.sum(), 1.0 / 6.0)

    def test_degenerate_element(self):
        """Collinear triangle vertices raise DegenerateElementError."""
        pts = np.array([[0.0, 0.0], [1.0, 1.0], [2.0, 2.0]])
        with pytest.raises(DegenerateElementError):
            elementary_matrix(pts, [1.0], [1.0])

    def test_tangential_derivative_rejected(self):
        """Derivatives on a boundary segment of a 2D mesh are not supported."""
        pts = np.array([[0.0, 0.0], [1.0, 0.0]])
        with pytest.raises(ConfigurationError):
            elementary_matrix(pts, [0.0, 1.0], [1.0], mesh_dim=2)

    def test_derivative_beyond_dimension(self):
        """A z-derivative on a 2D mesh is rejected."""
        pts = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        with pytest.raises(ConfigurationError):
            elementary_matrix(pts, [0.0, 0.0, 0.0, 1.0], [1.0])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
