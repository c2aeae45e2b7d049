"""Tests for essential conditions and their QR reduction.

Run with: pytest tests/test_constraints.py -v
"""

import numpy as np
import pytest
from scipy import sparse

from halfguide import (
    ConfigurationError,
    EssentialConditions,
    ShapeMismatchError,
    periodicity_conditions,
    rectangle_mesh,
    reduce,
    trace_conditions,
)
from halfguide.constraints import constraints_assign_rhs


def _conditions(rows, rhs):
    return EssentialConditions(sparse.csr_matrix(np.array(rows, dtype=float)), np.asarray(rhs, dtype=float))


class TestReduce:
    """Test the parametrisation u = P x + b."""

    def test_admissible_vectors(self):
        """Every P x + b satisfies C u = rhs."""
        ecs = _conditions([[1, -1, 0, 0, 0], [0, 0, 1, 0, 0]], [0.0, 3.0])
        red = reduce(ecs)
        assert red.num_free == 3
        rng = np.random.default_rng(1)
        for _ in range(3):
            u = red.expand(rng.standard_normal(red.num_free))
            assert np.allclose(ecs.C @ u, [0.0, 3.0])

    def test_kernel(self):
        """C P vanishes and P has full column rank."""
        ecs = _conditions([[1, 1, 1, 0, 0], [0, 1, 0, -1, 0]], [1.0, 2.0])
        red = reduce(ecs)
        assert np.allclose((ecs.C @ red.P).toarray(), 0.0)
        assert np.linalg.matrix_rank(red.P.toarray()) == red.num_free

    def test_identity_on_reduced_dofs(self):
        """P is the identity on the kept DOFs, so expanding their values is exact."""
        ecs = _conditions([[1, 0, -1, 0, 0]], [2.0])
        red = reduce(ecs)
        u = red.expand(np.arange(red.num_free, dtype=float))
        assert np.allclose(red.expand(u[red.reduced]), u)
        assert len(red.eliminated) == 1

    def test_redundant_rows(self):
        """A duplicated constraint is removed without warning."""
        ecs = _conditions([[1, -1, 0, 0, 0], [2, -2, 0, 0, 0]], [1.0, 2.0])
        red = reduce(ecs)
        assert red.num_free == 4
        assert red.warnings == ()

    def test_incompatible_rows(self):
        """Contradictory constraints are reported and dropped."""
        ecs = _conditions([[1, 0, 0, 0, 0], [1, 0, 0, 0, 0]], [1.0, 2.0])
        red = reduce(ecs)
        assert len(red.warnings) == 1
        assert red.num_free == 4
        assert np.isclose(red.b[0, 0], 1.5)

    def test_multiple_rhs(self):
        ecs = _conditions([[1, 0, 0, 0, 0], [0, 0, 0, 1, 0]], [[1.0, 2.0], [3.0, 4.0]])
        red = reduce(ecs)
        assert red.b.shape == (5, 2)
        assert np.allclose(red.b[[0, 3]], [[1.0, 2.0], [3.0, 4.0]])

    def test_idempotent(self):
        """Reducing the same constraints again, or restated twice, gives the same P and b."""
        ecs = _conditions([[1.0, -2.0, 0, 0.5, 0], [0, 1.5, 3.0, 0, 0], [0, 0, 0.7, 2.0, -4.0]], [1.0, 2.0, 3.0])
        first, second = reduce(ecs), reduce(ecs)
        restated = reduce(ecs & ecs)
        for red in (second, restated):
            assert np.array_equal(red.reduced, first.reduced)
            assert np.allclose(red.P.toarray(), first.P.toarray())
            assert np.allclose(red.b, first.b)
        assert restated.warnings == ()

    def test_no_constraints(self):
        red = reduce(EssentialConditions.empty(4))
        assert red.num_free == 4
        assert np.allclose(red.P.toarray(), np.eye(4))


class TestAlgebra:
    """Test combinations of essential conditions."""

    def test_concat_broadcasts_rhs(self):
        a = _conditions([[1, 0, 0, 0, 0]], [[1.0, 2.0, 3.0]])
        b = _conditions([[0, 1, 0, 0, 0]], [0.0])
        c = a & b
        assert c.rhs.shape == (2, 3)
        assert np.allclose(c.rhs[1], 0.0)

    def test_concat_associative(self):
        a = _conditions([[1, 0, 0, 0, 0]], [1.0])
        b = _conditions([[0, 1, 0, 0, 0]], [2.0])
        c = _conditions([[0, 0, 1, 0, 0]], [3.0])
        left, right = (a & b) & c, a & (b & c)
        assert np.allclose(left.C.toarray(), right.C.toarray())
        assert np.allclose(left.rhs, right.rhs)

    def test_add_and_scale(self):
        a = _conditions([[1, 0, 0, 0, 0]], [1.0])
        b = _conditions([[0, 1, 0, 0, 0]], [2.0])
        c = a + 2.0 * b
        assert np.allclose(c.C.toarray(), [[1, 2, 0, 0, 0]])
        assert np.allclose(c.rhs, [[5.0]])
        assert np.allclose((a - b).rhs, [[-1.0]])

    def test_assign_rhs(self):
        a = _conditions([[1, 0, 0, 0, 0], [0, 1, 0, 0, 0]], [0.0, 0.0])
        b = constraints_assign_rhs(a, [1.0, 2.0])
        assert np.allclose(b.rhs, [[1.0, 2.0], [1.0, 2.0]])

    def test_rhs_row_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            EssentialConditions(sparse.eye(2, 4, format="csr"), np.zeros((3, 1)))

    def test_incompatible_broadcast(self):
        a = _conditions([[1, 0, 0, 0, 0]], [[1.0, 2.0]])
        b = _conditions([[0, 1, 0, 0, 0]], [[1.0, 2.0, 3.0]])
        with pytest.raises(ShapeMismatchError):
            a & b


class TestMeshConditions:
    """Test trace and periodicity conditions on a mesh."""

    def test_trace_conditions(self):
        mesh = rectangle_mesh(nx=3, ny=3)
        xmin = mesh.domain("xmin")
        red = reduce(trace_conditions(xmin, 2.0))
        u = red.expand(np.ones(red.num_free))
        assert np.allclose(u[xmin.id_points], 2.0)

    def test_periodicity(self):
        """Matched points of ymin and ymax get equal values."""
        mesh = rectangle_mesh(nx=4, ny=3)
        red = reduce(periodicity_conditions(mesh, 1))
        u = red.expand(np.random.default_rng(2).standard_normal(red.num_free))
        ymin, ymax = mesh.domain("ymin"), mesh.domain("ymax")
        assert np.allclose(u[ymin.id_points], u[ymax.id_points])
        assert red.num_free == mesh.num_points - ymin.num_points

    def test_periodicity_with_traces(self):
        """Corner constraints shared with a trace are redundant, not incompatible."""
        mesh = rectangle_mesh(nx=4, ny=4)
        ecs = periodicity_conditions(mesh, 1) & trace_conditions(mesh.domain("xmin"), 1.0)
        red = reduce(ecs)
        assert red.warnings == ()

    def test_non_periodic_mesh(self):
        mesh = rectangle_mesh(nx=3, ny=3)
        mesh.points[mesh.domain("xmax").id_points[1], 1] += 0.05
        with pytest.raises(ConfigurationError):
            periodicity_conditions(mesh, 0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
