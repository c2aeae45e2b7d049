"""Essential (affine equality) conditions on DOFs and their reduction.

A set of conditions ``C u = rhs`` is reduced to a parametrisation
``u = P x + b`` of every admissible DOF vector, using a column-pivoted QR
factorisation of the columns of ``C`` that carry at least one constraint.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
import scipy.linalg as sla
from numpy.typing import NDArray
from scipy import sparse
from scipy.spatial import cKDTree

from .datastructures import AXES, BOUNDARY_TOL, Domain, Mesh, face_names
from .exceptions import ConfigurationError, ShapeMismatchError

log = logging.getLogger(__name__)

CONSTRAINT_TOL = 1e-12


def _rhs_columns(rhs, m: int) -> NDArray:
    rhs = np.asarray(rhs)
    if rhs.ndim == 0:
        return np.full((m, 1), rhs, dtype=np.result_type(rhs, np.float64))
    if rhs.ndim == 1:
        return rhs.reshape(-1, 1)
    return rhs


@dataclass(frozen=True, eq=False)
class EssentialConditions:
    """Constraint matrix ``C`` (m, N) and right-hand sides ``rhs`` (m, k)."""

    C: sparse.csr_matrix
    rhs: NDArray = field(default=None)

    def __post_init__(self) -> None:
        C = sparse.csr_matrix(self.C)
        rhs = _rhs_columns(0.0 if self.rhs is None else self.rhs, C.shape[0])
        if rhs.shape[0] != C.shape[0]:
            raise ShapeMismatchError(
                f"Constraint matrix has {C.shape[0]} rows but right-hand side has {rhs.shape[0]}"
            )
        object.__setattr__(self, "C", C)
        object.__setattr__(self, "rhs", rhs)

    @classmethod
    def empty(cls, num_dofs: int) -> EssentialConditions:
        return cls(sparse.csr_matrix((0, num_dofs)), np.zeros((0, 1)))

    @property
    def num_constraints(self) -> int:
        return self.C.shape[0]

    @property
    def num_dofs(self) -> int:
        return self.C.shape[1]

    @property
    def num_rhs(self) -> int:
        return self.rhs.shape[1]

    def __and__(self, other):
        return constraints_concat(self, other)

    def __add__(self, other):
        return constraints_add(self, other)

    def __sub__(self, other):
        return constraints_add(self, constraints_scale(-1.0, other))

    def __neg__(self):
        return constraints_scale(-1.0, self)

    def __rmul__(self, c):
        return constraints_scale(c, self)


@dataclass(frozen=True, eq=False)
class ReducedConditions:
    """Every admissible DOF vector reads ``P @ x + b``."""

    P: sparse.csr_matrix
    b: NDArray
    warnings: tuple = ()
    eliminated: NDArray = field(default=None, repr=False)
    reduced: NDArray = field(default=None, repr=False)

    @property
    def num_free(self) -> int:
        return self.P.shape[1]

    def expand(self, x: NDArray) -> NDArray:
        """Full DOF vector(s) from free parameters (N - r,) or (N - r, k)."""
        x = np.asarray(x)
        b = self.b[:, 0] if x.ndim == 1 and self.b.shape[1] == 1 else self.b
        return self.P @ x + b


def _broadcast_columns(rhs: NDArray, k: int) -> NDArray:
    if rhs.shape[1] == k:
        return rhs
    if rhs.shape[1] == 1:
        return np.tile(rhs, (1, k))
    raise ShapeMismatchError(f"Cannot broadcast {rhs.shape[1]} right-hand sides to {k}")


def constraints_concat(a: EssentialConditions, b: EssentialConditions) -> EssentialConditions:
    """Row concatenation; a single right-hand side column is broadcast."""
    if a.num_dofs != b.num_dofs:
        raise ShapeMismatchError(f"Conditions on {a.num_dofs} and {b.num_dofs} DOFs")
    k = max(a.num_rhs, b.num_rhs)
    rhs = np.vstack([_broadcast_columns(a.rhs, k), _broadcast_columns(b.rhs, k)])
    return EssentialConditions(sparse.vstack([a.C, b.C]).tocsr(), rhs)


def constraints_assign_rhs(ecs: EssentialConditions, rhs) -> EssentialConditions:
    """
    Replace the right-hand side.

    A scalar or a single row (k,) is broadcast to every constraint; a 2D
    array must have one row per constraint.
    """
    rhs = np.asarray(rhs)
    m = ecs.num_constraints
    if rhs.ndim <= 1:
        rhs = np.tile(np.atleast_1d(rhs)[None, :], (m, 1))
    return EssentialConditions(ecs.C, rhs)


def constraints_add(a: EssentialConditions, b: EssentialConditions) -> EssentialConditions:
    """Row-wise sum ``(C_a + C_b) u = rhs_a + rhs_b``."""
    if a.C.shape != b.C.shape:
        raise ShapeMismatchError(f"Cannot add conditions of shapes {a.C.shape} and {b.C.shape}")
    k = max(a.num_rhs, b.num_rhs)
    return EssentialConditions(a.C + b.C, _broadcast_columns(a.rhs, k) + _broadcast_columns(b.rhs, k))


def constraints_scale(c, ecs: EssentialConditions) -> EssentialConditions:
    return EssentialConditions(c * ecs.C, c * ecs.rhs)


def trace_conditions(domain: Domain, rhs=0.0) -> EssentialConditions:
    """
    ``u = rhs`` at every point of ``domain``, one row per point in
    ``domain.id_points`` order. ``rhs`` is a scalar, a vector with one value
    per point or an array (num_points, k).
    """
    n = domain.num_points
    C = sparse.csr_matrix(
        (np.ones(n), (np.arange(n), domain.id_points)), shape=(n, domain.mesh.num_points)
    )
    return EssentialConditions(C, _rhs_columns(rhs, n))


def periodicity_conditions(mesh: Mesh, direction: int, tol: float = BOUNDARY_TOL) -> EssentialConditions:
    """``u|min - u|max = 0`` between the two faces orthogonal to ``direction``."""
    fmin, fmax = (mesh.domain(name) for name in face_names(direction))
    if fmin.num_points != fmax.num_points:
        raise ConfigurationError(
            f"Faces {fmin.name} and {fmax.name} have {fmin.num_points} and {fmax.num_points} points"
        )
    tangential = [d for d in range(3) if d != direction]
    pts_min = fmin.points[:, tangential]
    pts_max = fmax.points[:, tangential]

    dist, match = cKDTree(pts_max).query(pts_min)
    lo, hi = mesh.bounds()
    scale = max(1.0, float(np.max(hi - lo)))
    if np.any(dist > 1e3 * tol * scale) or len(np.unique(match)) != len(match):
        raise ConfigurationError(
            f"Points of {fmin.name} and {fmax.name} do not match: the mesh is not periodic along {AXES[direction]}"
        )

    n = fmin.num_points
    rows = np.concatenate([np.arange(n), np.arange(n)])
    cols = np.concatenate([fmin.id_points, fmax.id_points[match]])
    vals = np.concatenate([np.ones(n), -np.ones(n)])
    C = sparse.csr_matrix((vals, (rows, cols)), shape=(n, mesh.num_points))
    return EssentialConditions(C, np.zeros((n, 1)))


def reduce(ecs: EssentialConditions, tol: float = CONSTRAINT_TOL) -> ReducedConditions:
    """
    Reduce ``C u = rhs`` to ``u = P x + b``.

    Parameters
    ----------
    ecs : EssentialConditions
    tol : float
        Threshold on ``|R_ii|`` below which a constraint is redundant, and on
        the transformed right-hand side above which a redundant constraint
        is inconsistent.

    Returns
    -------
    ReducedConditions
        ``P`` (N, N - r) is the identity on the reduced DOFs and expresses
        the r eliminated DOFs in terms of them; ``b`` (N, k) is the
        particular solution. Inconsistent constraints are dropped and
        reported in ``warnings``.
    """
    m, N = ecs.C.shape
    k = ecs.num_rhs
    dtype = np.result_type(ecs.C.dtype, ecs.rhs.dtype, np.float64)

    if m == 0:
        return ReducedConditions(
            sparse.identity(N, dtype=dtype, format="csr"), np.zeros((N, k), dtype=dtype),
            (), np.zeros(0, dtype=np.int64), np.arange(N),
        )

    # Only the columns touched by a constraint take part in the factorisation
    cols = np.unique(ecs.C.indices)
    Cs = ecs.C[:, cols].toarray()
    Q, R, piv = sla.qr(Cs, pivoting=True)
    G = Q.conj().T @ ecs.rhs

    diag = np.abs(np.diag(R))
    small = np.flatnonzero(diag < tol)
    r = int(small[0]) if len(small) else len(diag)

    warnings = []
    incompatible = np.flatnonzero(np.any(np.abs(G[r:]) > tol, axis=1))
    if len(incompatible):
        msg = (
            f"{len(incompatible)} incompatible essential condition(s) dropped "
            f"(max residual {np.abs(G[r:]).max():.3e})"
        )
        log.warning(msg)
        warnings.append(msg)
    if m > r:
        log.debug(f"{m - r} redundant essential condition(s) removed")

    eliminated = cols[piv[:r]]
    others = cols[piv[r:]]
    n_other = len(others)
    if r:
        X = sla.solve_triangular(R[:r, :r], np.hstack([R[:r, r:], G[:r]]))
    else:
        X = np.zeros((0, n_other + k), dtype=dtype)

    reduced = np.setdiff1d(np.arange(N), eliminated)
    position = np.full(N, -1, dtype=np.int64)
    position[reduced] = np.arange(len(reduced))

    rows = np.concatenate([reduced, np.repeat(eliminated, n_other)])
    pcols = np.concatenate([np.arange(len(reduced)), np.tile(position[others], r)])
    vals = np.concatenate([np.ones(len(reduced), dtype=dtype), -X[:, :n_other].ravel()])
    P = sparse.csr_matrix((vals, (rows, pcols)), shape=(N, len(reduced)))
    P.eliminate_zeros()

    b = np.zeros((N, k), dtype=dtype)
    b[eliminated] = X[:, n_other:]
    return ReducedConditions(P, b, tuple(warnings), eliminated, reduced)
