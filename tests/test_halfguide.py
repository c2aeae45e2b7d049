"""Tests for the periodic half-guide solver.

The 1D checks compare against the discrete P1 dispersion relation: on a
uniform grid of step h, solutions of -u'' - omega^2 u = 0 are r^j with
r + 1/r = 2c, c = (1/h - omega^2 h/3) / (1/h + omega^2 h/6).

Run with: pytest tests/test_halfguide.py -v
"""

import numpy as np
import pytest
from scipy import sparse

from halfguide import (
    PROJECTION,
    WEAK_EVALUATION,
    BoundaryConditions,
    ConfigurationError,
    FourierBasis,
    FunctionCoefficient,
    ModeSelectionError,
    PeriodicLagrangeBasis,
    ShapeMismatchError,
    SolverOptions,
    SpectralOperator,
    cuboid_mesh,
    gradient,
    identity,
    intg_gradu_gradv,
    pair,
    periodic_half_guide,
    rectangle_mesh,
    segment_mesh,
)
from halfguide.constraints import reduce, trace_conditions
from halfguide.solvers import propagation_operators, solve_cell_problem

OMEGA = 3.0 + 1.0j


def helmholtz(dim, omega=OMEGA):
    return pair(gradient(dim), gradient(dim)) - omega**2 * pair(identity(), identity())


def decaying_root(h, omega=OMEGA):
    c = (1 / h - omega**2 * h / 3) / (1 / h + omega**2 * h / 6)
    roots = np.roots([1.0, -2.0 * c, 1.0])
    return roots[np.argmin(np.abs(roots))]


def face_bases(mesh, kind="lagrange"):
    faces = mesh.domain("xmin"), mesh.domain("xmax")
    if kind == "fourier":
        return tuple(FourierBasis(f, num_modes=1) for f in faces)
    return tuple(PeriodicLagrangeBasis(f) for f in faces)


class TestCellProblem:
    """Test the constrained linear solve."""

    def test_dirichlet_laplace(self):
        """Linear interpolation between two Dirichlet values in 1D."""
        mesh = segment_mesh((0.0, 1.0), nx=4)
        A = intg_gradu_gradv(mesh.domain("volumic"))
        ecs = trace_conditions(mesh.domain("xmin"), 1.0) & trace_conditions(mesh.domain("xmax"), 3.0)
        U = solve_cell_problem(A, 0.0, reduce(ecs))
        assert np.allclose(U[:, 0], 1.0 + 2.0 * mesh.points[:, 0])

    def test_shape_mismatch(self):
        mesh = segment_mesh(nx=4)
        red = reduce(trace_conditions(mesh.domain("xmin"), 1.0))
        with pytest.raises(ShapeMismatchError):
            solve_cell_problem(sparse.eye(3), 0.0, red)


class TestPropagationOperators:
    """Test mode selection on small pencils."""

    def test_decaying_selected(self):
        R, D, lam = propagation_operators(np.diag([0.5, 2.0]), np.eye(2), lambda V: np.zeros(V.shape[1]))
        assert np.allclose(R, [[0.5]])
        assert np.allclose(D, [[0.0]])

    def test_extra_modes_keep_smallest(self):
        R, _, lam = propagation_operators(np.diag([0.2, 0.5]), np.eye(2), lambda V: np.zeros(V.shape[1]))
        assert np.allclose(lam, [0.2])

    def test_outgoing_selected_by_flux(self):
        R, _, _ = propagation_operators(np.diag([1.0, 1.0]), np.eye(2), lambda V: np.array([1.0, -1.0]))
        assert np.allclose(R, [[1.0]])

    def test_not_enough_modes(self):
        with pytest.raises(ModeSelectionError):
            propagation_operators(np.eye(2), np.eye(2), lambda V: -np.ones(V.shape[1]))


class TestHalfLine:
    """1D half-guide against the exact discrete solution."""

    def setup_method(self):
        self.nx = 10
        self.h = 1.0 / self.nx
        self.r = decaying_root(self.h)
        self.mesh = segment_mesh((0.0, 1.0), nx=self.nx)

    def test_dirichlet(self):
        b0, b1 = face_bases(self.mesh)
        bc = BoundaryConditions(b0, b1, phi=lambda P: np.ones(len(P)))
        sol = periodic_half_guide(self.mesh, 1, 0, helmholtz(1), bc, 3, SolverOptions(omega=OMEGA))
        assert np.allclose(sol.R, [[self.r**self.nx]], rtol=1e-8)
        j = np.arange(self.nx + 1)
        for n in range(3):
            assert np.allclose(sol.U[:, n], self.r ** (self.nx * n + j), rtol=1e-7, atol=1e-12)

    def test_robin(self):
        b0, b1 = face_bases(self.mesh)
        bc = BoundaryConditions(b0, b1, bc_du=1.0, bc_u=1.0)
        sol = periodic_half_guide(
            self.mesh, 1, 0, helmholtz(1), bc, 2, SolverOptions(omega=OMEGA, sol_basis=True)
        )
        assert np.allclose(sol.R, [[self.r**self.nx]], rtol=1e-8)
        assert len(sol.U) == 2
        # The rebuilt field follows the same geometric law inside each cell
        U = sol.U[0][:, 0]
        assert np.allclose(U[1:] / U[:-1], self.r, rtol=1e-7)

    def test_mirror(self):
        """The half-line towards negative x gives the same operator."""
        mirror = segment_mesh((0.0, -1.0), nx=self.nx)
        b0, b1 = face_bases(mirror)
        bc = BoundaryConditions(b0, b1, phi=lambda P: np.ones(len(P)))
        sol = periodic_half_guide(mirror, -1, 0, helmholtz(1), bc, 1, SolverOptions(omega=OMEGA))
        assert np.allclose(sol.R, [[self.r**self.nx]], rtol=1e-8)


class TestPropagatingModes:
    """Mode selection near and on the unit circle, for both orientations.

    The outgoing mode at real omega is the limit of the decaying mode of
    omega + i eps as eps goes to zero.
    """

    def setup_method(self):
        self.nx = 20
        self.h = 1.0 / self.nx

    def _R(self, orientation, omega):
        mesh = segment_mesh((0.0, orientation * 1.0), nx=self.nx)
        b0, b1 = face_bases(mesh)
        bc = BoundaryConditions(b0, b1, phi=lambda P: np.ones(len(P)))
        sol = periodic_half_guide(mesh, orientation, 0, helmholtz(1, omega), bc, 1, SolverOptions(omega=omega))
        return sol.R[0, 0]

    def test_real_frequency(self):
        expected = decaying_root(self.h, 3.0 + 1e-8j) ** self.nx
        for orientation in (1, -1):
            R = self._R(orientation, 3.0)
            assert np.isclose(abs(R), 1.0, atol=1e-8)
            assert np.isclose(R, expected, atol=1e-5)

    def test_weak_damping(self):
        """Within the unit-circle band the flux still picks the decaying mode."""
        omega = 3.0 + 0.005j
        expected = decaying_root(self.h, omega) ** self.nx
        assert abs(expected) > 0.99
        for orientation in (1, -1):
            R = self._R(orientation, omega)
            assert abs(R) < 1.0
            assert np.isclose(R, expected, rtol=1e-8)

    def test_continuous_in_damping(self):
        for orientation in (1, -1):
            values = [self._R(orientation, 3.0 + eps * 1j) for eps in (0.0, 0.005, 0.02)]
            assert np.all(np.abs(np.diff(values)) < 0.05)
            assert np.all(np.abs(values) <= 1.0 + 1e-8)


class TestStrip:
    """2D half-guide in a strip periodic along y."""

    def setup_method(self):
        self.mesh = rectangle_mesh((0.0, 1.0), (0.0, 1.0), nx=6, ny=6)
        self.phi = lambda P: 1.0 + np.cos(2 * np.pi * P[:, 1])

    def _solve(self, mesh=None, orientation=1, num_cells=3, **kwargs):
        mesh = self.mesh if mesh is None else mesh
        b0, b1 = face_bases(mesh)
        bc = BoundaryConditions(b0, b1, phi=self.phi)
        return periodic_half_guide(mesh, orientation, 0, helmholtz(2), bc, num_cells, SolverOptions(omega=OMEGA, **kwargs))

    def test_spectral_radius(self):
        sol = self._solve()
        assert sol.R.shape == (6, 6)
        assert np.max(np.abs(np.linalg.eigvals(sol.R))) < 1.0
        assert np.all(np.abs(sol.eigenvalues) < 1.0)

    def test_dirichlet_trace(self):
        """The trace on the entry face is the boundary datum."""
        sol = self._solve()
        face = self.mesh.domain("xmin")
        assert np.allclose(sol.U[face.id_points, 0], self.phi(face.points), atol=1e-10)

    def test_continuity_between_cells(self):
        """Exit trace of cell n equals entry trace of cell n + 1."""
        sol = self._solve()
        ids0 = self.mesh.domain("xmin").id_points
        ids1 = self.mesh.domain("xmax").id_points
        for n in range(sol.num_cells - 1):
            assert np.allclose(sol.U[ids1, n], sol.U[ids0, n + 1], atol=1e-10)
        assert np.allclose(sol.D, sol.R)

    def test_local_solutions(self):
        """In basis mode the first cell is E0 + E1 D."""
        sol = self._solve(num_cells=1, sol_basis=True)
        assert np.allclose(sol.U[0], sol.E0 + sol.E1 @ sol.D)

    def test_mirror(self):
        mirror = rectangle_mesh((0.0, -1.0), (0.0, 1.0), nx=6, ny=6)
        pos = self._solve(num_cells=1)
        neg = self._solve(mesh=mirror, orientation=-1, num_cells=1)
        assert np.allclose(pos.R, neg.R, atol=1e-10)

    def test_robin_same_modes(self):
        """Dirichlet and Robin cells find the same Floquet multipliers."""
        b0, b1 = face_bases(self.mesh)
        robin = BoundaryConditions(b0, b1, bc_du=1.0, bc_u=-1j * OMEGA)
        sol = periodic_half_guide(self.mesh, 1, 0, helmholtz(2), robin, 1, SolverOptions(omega=OMEGA, sol_basis=True))
        dirichlet = self._solve(num_cells=1)
        for lam in sol.eigenvalues:
            assert np.min(np.abs(dirichlet.eigenvalues - lam)) < 1e-6

    def test_robin_coefficient_variants(self):
        """A constant coefficient gives the same half-guide in every representation."""
        b0, b1 = face_bases(self.mesh)
        c = -1j * OMEGA
        variants = (
            c,
            FunctionCoefficient(lambda P: c * np.ones(len(P))),
            SpectralOperator(c * b0.mass, WEAK_EVALUATION),
            SpectralOperator(c * np.eye(b0.num_basis), PROJECTION),
        )
        sols = [
            periodic_half_guide(
                self.mesh, 1, 0, helmholtz(2), BoundaryConditions(b0, b1, bc_du=1.0, bc_u=coef), 1,
                SolverOptions(omega=OMEGA, sol_basis=True),
            )
            for coef in variants
        ]
        ref = sols[0]
        for sol in sols[1:]:
            assert np.allclose(sol.R, ref.R, atol=1e-8)
            assert np.allclose(sol.D, ref.D, atol=1e-8)
            assert np.allclose(sol.U[0], ref.U[0], atol=1e-8)
            assert np.allclose(sol.bc.bc_u.matrix, c * np.eye(b0.num_basis))

    def test_fourier_basis(self):
        b0, b1 = face_bases(self.mesh, "fourier")
        bc = BoundaryConditions(b0, b1, phi=self.phi)
        sol = periodic_half_guide(self.mesh, 1, 0, helmholtz(2), bc, 2, SolverOptions(omega=OMEGA))
        assert sol.R.shape == (3, 3)
        assert np.max(np.abs(np.linalg.eigvals(sol.R))) < 1.0
        assert np.all(np.isfinite(sol.U))


class TestCuboid:
    """3D half-guide periodic along y and z."""

    def setup_method(self):
        self.mesh = cuboid_mesh(nx=3, ny=3, nz=3)
        self.phi = lambda P: 1.0 + np.cos(2 * np.pi * P[:, 1]) * np.cos(2 * np.pi * P[:, 2])

    def test_dirichlet(self):
        b0, b1 = face_bases(self.mesh)
        assert b0.num_basis == 9
        bc = BoundaryConditions(b0, b1, phi=self.phi)
        sol = periodic_half_guide(self.mesh, 1, 0, helmholtz(3), bc, 2, SolverOptions(omega=OMEGA))

        assert sol.R.shape == (9, 9)
        assert np.max(np.abs(np.linalg.eigvals(sol.R))) < 1.0
        face0, face1 = self.mesh.domain("xmin"), self.mesh.domain("xmax")
        assert np.allclose(sol.U[face0.id_points, 0], self.phi(face0.points), atol=1e-10)
        assert np.allclose(sol.U[face1.id_points, 0], sol.U[face0.id_points, 1], atol=1e-10)


class TestInputChecks:
    """Invalid calls are rejected before any computation."""

    def setup_method(self):
        self.mesh = rectangle_mesh(nx=4, ny=4)
        b0, b1 = face_bases(self.mesh)
        self.bc = BoundaryConditions(b0, b1, phi=lambda P: np.ones(len(P)))

    def test_orientation(self):
        with pytest.raises(ConfigurationError):
            periodic_half_guide(self.mesh, 0, 0, helmholtz(2), self.bc, 1)

    def test_orientation_away_from_exit(self):
        """The guide must extend past the exit face."""
        with pytest.raises(ConfigurationError):
            periodic_half_guide(self.mesh, -1, 0, helmholtz(2), self.bc, 1)

    def test_direction(self):
        with pytest.raises(ConfigurationError):
            periodic_half_guide(self.mesh, 1, 2, helmholtz(2), self.bc, 1)

    def test_missing_datum(self):
        bc = BoundaryConditions(self.bc.basis0, self.bc.basis1)
        with pytest.raises(ConfigurationError):
            periodic_half_guide(self.mesh, 1, 0, helmholtz(2), bc, 1)

    def test_basis_sizes(self):
        bc = BoundaryConditions(self.bc.basis0, FourierBasis(self.mesh.domain("xmax"), num_modes=1), phi=self.bc.phi)
        with pytest.raises(ShapeMismatchError):
            periodic_half_guide(self.mesh, 1, 0, helmholtz(2), bc, 1)

    def test_operator_size(self):
        with pytest.raises(ShapeMismatchError):
            periodic_half_guide(self.mesh, 1, 0, sparse.eye(3), self.bc, 1)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
