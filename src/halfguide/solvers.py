"""Periodic half-guide solver.

The half-guide is reduced to one periodicity cell. Local cell problems are
solved for every spectral basis function on the entry face (Sigma0) and on
the exit face (Sigma1); their traces and normal traces feed a generalized
eigenvalue problem whose outgoing/decaying modes give the propagation
operator ``R`` and the exit-face operator ``D``. The field is then
rebuilt cell by cell with the linear recurrence ``R0 <- R R0``,
``R1 <- D R0``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Optional, Union

import numpy as np
import scipy.linalg as sla
from numpy.typing import NDArray
from scipy import sparse
from scipy.sparse.linalg import splu

from .assembly import assemble, intg_u_v
from .boundary import (
    PROJECTION,
    WEAK_EVALUATION,
    BoundaryConditions,
    FunctionCoefficient,
    ScalarCoefficient,
    SpectralOperator,
    intg_tu_v,
    to_projection,
)
from .constraints import (
    CONSTRAINT_TOL,
    EssentialConditions,
    ReducedConditions,
    periodicity_conditions,
    reduce,
    trace_conditions,
)
from .datastructures import VOLUMIC, Mesh, face_names
from .exceptions import ConfigurationError, ModeSelectionError, ShapeMismatchError
from .forms import Form
from .quadrature import QuadratureRule

log = logging.getLogger(__name__)


@dataclass
class SolverOptions:
    """Options of :func:`periodic_half_guide`, with their defaults."""

    omega: complex = 1.0
    sol_basis: bool = False
    riccati_tol: float = 1e-2
    constraint_tol: float = CONSTRAINT_TOL
    quadrature: Optional[QuadratureRule] = None
    label: str = ""


@dataclass(eq=False)
class HalfGuideSolution:
    """Result of :func:`periodic_half_guide`."""

    U: Union[NDArray, list]
    R: NDArray
    D: NDArray
    E0: NDArray
    E1: NDArray
    E00: NDArray
    E10: NDArray
    E01: NDArray
    E11: NDArray
    F00: NDArray
    F10: NDArray
    F01: NDArray
    F11: NDArray
    Lambda: NDArray
    bc: BoundaryConditions
    eigenvalues: NDArray
    warnings: tuple = field(default=())

    @property
    def num_cells(self) -> int:
        return len(self.U) if isinstance(self.U, list) else self.U.shape[1]


def _factorized_solve(K: sparse.spmatrix, rhs: NDArray) -> NDArray:
    """Solve ``K x = rhs`` for all columns with a single LU factorization."""
    lu = splu(sparse.csc_matrix(K))
    if np.iscomplexobj(rhs) and not np.iscomplexobj(K):
        return lu.solve(np.ascontiguousarray(rhs.real)) + 1j * lu.solve(np.ascontiguousarray(rhs.imag))
    return lu.solve(np.ascontiguousarray(rhs.astype(np.result_type(K.dtype, rhs.dtype))))


def solve_cell_problem(A, B, reduced: ReducedConditions) -> NDArray:
    """
    Solve ``A u = B`` over the admissible set ``u = P y + b``.

    The reduced system ``P^H A P y = P^H (B - A b)`` is factorized once and
    solved for every right-hand side column.

    Parameters
    ----------
    A : sparse matrix (N, N)
    B : ndarray (N, k) or scalar
        Right-hand sides, broadcast against the columns of ``b``.
    reduced : ReducedConditions

    Returns
    -------
    U : ndarray (N, k)
    """
    A = sparse.csr_matrix(A)
    P, b = reduced.P, reduced.b
    N = A.shape[0]
    if P.shape[0] != N:
        raise ShapeMismatchError(f"Operator of size {N} and constraints on {P.shape[0]} DOFs")

    B = np.asarray(B)
    if B.ndim == 0:
        B = np.full((N, 1), B)
    elif B.ndim == 1:
        B = B[:, None]
    k = max(B.shape[1], b.shape[1])
    B = np.broadcast_to(B, (N, k))
    b = np.broadcast_to(b, (N, k))

    PH = P.conj().T.tocsr()
    K = PH @ A @ P
    rhs = PH @ (B - A @ b)
    y = _factorized_solve(K, np.asarray(rhs))
    return P @ y + b


def modes_flux(
    V: NDArray, E00, E10, F00, F10, orientation: int, mass: NDArray, omega, normal_sign: int = -1
) -> NDArray:
    """
    Energy flux of each mode (column of ``V``) through the entry face,
    counted positive towards the inside of the guide.

    ``F`` holds normal traces along the outward normal of the cell.
    ``normal_sign`` is the sign of the entry face normal along the infinite
    direction: -1 when the cell lies on ``[0, 1]``, +1 for a mirrored cell
    on ``[0, -1]``.
    """
    Nb = E00.shape[0]
    Psi = E00 @ V[:Nb] + E10 @ V[Nb:]
    dPsi = F00 @ V[:Nb] + F10 @ V[Nb:]
    pairing = np.einsum("in,ij,jn->n", Psi.conj(), mass, dPsi)
    return orientation * normal_sign * np.imag(pairing / omega)


def propagation_operators(
    Amat: NDArray,
    Bmat: NDArray,
    flux: Callable[[NDArray], NDArray],
    tol: float = 1e-2,
) -> tuple[NDArray, NDArray, NDArray]:
    """
    Solve ``Amat v = lambda Bmat v`` and build ``(R, D)`` from admissible modes.

    A mode is admissible when ``|lambda| < 1 - tol`` (decaying) or when
    ``||lambda| - 1| <= tol`` with a positive flux (outgoing).

    Returns
    -------
    R, D : ndarray (Nb, Nb)
    eigenvalues : ndarray (Nb,)
        Eigenvalues of the selected modes.

    Raises
    ------
    ModeSelectionError
        If fewer than ``Nb`` modes are admissible.
    """
    Nb = Amat.shape[0] // 2
    w, V = sla.eig(Amat, Bmat)
    finite = np.isfinite(w)
    w, V = w[finite], V[:, finite]

    modulus = np.abs(w)
    decaying = np.flatnonzero(modulus < 1.0 - tol)
    unit = np.flatnonzero(np.abs(modulus - 1.0) <= tol)
    outgoing = unit[flux(V[:, unit]) > 0] if len(unit) else unit

    selected = np.concatenate([decaying, outgoing])
    log.info(f"Modes: {len(decaying)} decaying, {len(outgoing)} outgoing of {len(unit)} propagating")
    if len(selected) < Nb:
        raise ModeSelectionError(
            f"Only {len(selected)} admissible modes found for {Nb} basis functions"
        )
    if len(selected) > Nb:
        log.warning(f"{len(selected)} admissible modes for {Nb} basis functions, keeping the smallest |lambda|")
        selected = selected[np.argsort(modulus[selected], kind="stable")[:Nb]]

    lam = w[selected]
    V0 = V[:Nb, selected]
    V1 = V[Nb:, selected]
    # R = V0 diag(lam) V0^{-1}, D = V1 V0^{-1}
    R = sla.solve(V0.T, (V0 * lam).T).T
    D = sla.solve(V0.T, V1.T).T
    return R, D, lam


def _check_inputs(mesh: Mesh, orientation, infinite_direction, bc: BoundaryConditions, num_cells, options) -> None:
    if orientation not in (-1, 1):
        raise ConfigurationError(f"Orientation must be -1 or 1, got {orientation}")
    if not isinstance(infinite_direction, (int, np.integer)) or not 0 <= infinite_direction < mesh.dimension:
        raise ConfigurationError(
            f"Infinite direction must be in [0, {mesh.dimension}), got {infinite_direction}"
        )
    if num_cells < 0:
        raise ConfigurationError(f"Number of cells must be non-negative, got {num_cells}")
    if bc.basis0 is None or bc.basis1 is None:
        raise ConfigurationError("Both spectral bases must be provided")
    if bc.basis0.num_basis != bc.basis1.num_basis:
        raise ShapeMismatchError(
            f"Spectral bases of sizes {bc.basis0.num_basis} and {bc.basis1.num_basis}"
        )
    if isinstance(bc.bc_u, SpectralOperator):
        bc.bc_u.check(bc.basis0)
    if not options.sol_basis and bc.phi is None:
        raise ConfigurationError("A boundary datum phi is needed unless sol_basis is set")


def periodic_half_guide(
    mesh: Mesh,
    orientation: int,
    infinite_direction: int,
    volumic: Union[Form, sparse.spmatrix],
    bc: BoundaryConditions,
    num_cells: int,
    options: SolverOptions | None = None,
) -> HalfGuideSolution:
    """
    Solve a periodic half-guide problem.

    Parameters
    ----------
    mesh : Mesh
        Periodicity cell, with faces ``<axis>min``/``<axis>max`` and a
        ``volumic`` domain.
    orientation : {-1, 1}
        Whether the guide extends towards positive or negative coordinates.
    infinite_direction : int
        Direction (0-based) along which the guide is semi-infinite.
    volumic : Form or sparse matrix
        Volumic bilinear form, or its assembled matrix.
    bc : BoundaryConditions
        Transverse condition and spectral bases on the entry/exit faces.
    num_cells : int
        Number of cells on which the field is rebuilt.
    options : SolverOptions, optional

    Returns
    -------
    HalfGuideSolution
        ``U`` is a list of (N, Nb) arrays when ``sol_basis`` is set (one
        solution per basis function) and an (N, num_cells) array otherwise.
    """
    options = SolverOptions() if options is None else options
    _check_inputs(mesh, orientation, infinite_direction, bc, num_cells, options)
    tag = f"[{options.label}] " if options.label else ""

    # The exit face must lie on the side the guide extends to
    sigma0, sigma1 = (mesh.domain(name) for name in face_names(infinite_direction))
    axis = infinite_direction
    normal_sign = 1 if sigma0.points[:, axis].mean() > sigma1.points[:, axis].mean() else -1
    if orientation * normal_sign > 0:
        raise ConfigurationError(
            f"Orientation {orientation} points away from the exit face '{sigma1.name}'"
        )

    N = mesh.num_points
    if isinstance(volumic, Form):
        A = assemble(mesh.domain(VOLUMIC), volumic, options.quadrature)
    else:
        A = sparse.csr_matrix(volumic)
    if A.shape != (N, N):
        raise ShapeMismatchError(f"Volumic operator of shape {A.shape} for {N} mesh points")

    # Periodicity along every bounded direction
    ecs = EssentialConditions.empty(N)
    for d in range(mesh.dimension):
        if d != infinite_direction:
            ecs = ecs & periodicity_conditions(mesh, d)

    basis0, basis1 = bc.basis0, bc.basis1
    ids0, ids1 = basis0.domain.id_points, basis1.domain.id_points
    Nb = basis0.num_basis
    I = np.eye(Nb)
    warnings: list[str] = []

    # 1. Local cell problems
    if bc.is_dirichlet:
        log.info(f"{tag}1. Local cell problems (Dirichlet)")
        if not (isinstance(bc.bc_u, ScalarCoefficient) and bc.bc_u.value == 1.0):
            log.warning(f"{tag}Dirichlet conditions: the coefficient of u is set to 1")
        bc = replace(bc, bc_u=ScalarCoefficient(1.0))

        traces = (
            trace_conditions(basis0.domain, np.hstack([basis0.phis, np.zeros((len(ids0), Nb))]))
            & trace_conditions(basis1.domain, np.hstack([np.zeros((len(ids1), Nb)), basis1.phis]))
        )
        reduced = reduce(ecs & traces, options.constraint_tol)
        Ecell = solve_cell_problem(A, 0.0, reduced)
        E0, E1 = Ecell[:, :Nb], Ecell[:, Nb:]

        log.info(f"{tag}2. Traces and normal traces")
        E00, E10, E01, E11 = I, 0 * I, 0 * I, I
        AE0, AE1 = A @ E0, A @ E1
        F00 = basis0.mass_inv @ (E0.conj().T @ AE0)
        F10 = basis0.mass_inv @ (E0.conj().T @ AE1)
        F01 = basis1.mass_inv @ (E1.conj().T @ AE0)
        F11 = basis1.mass_inv @ (E1.conj().T @ AE1)
        T = I
    else:
        log.info(f"{tag}1. Local cell problems (Robin)")
        coef = bc.bc_u
        if isinstance(coef, FunctionCoefficient):
            coef = SpectralOperator(basis0.weak_mass(coef.fun), WEAK_EVALUATION)
        inv_du = 1.0 / bc.bc_du

        S = intg_tu_v(sigma0, coef, basis0) + intg_tu_v(sigma1, coef, basis1)
        A_robin = A + inv_du * S
        BB = inv_du * np.hstack([intg_u_v(sigma0) @ basis0.lift(N), intg_u_v(sigma1) @ basis1.lift(N)])

        reduced = reduce(ecs, options.constraint_tol)
        Ecell = solve_cell_problem(A_robin, BB, reduced)
        E0, E1 = Ecell[:, :Nb], Ecell[:, Nb:]

        log.info(f"{tag}2. Traces and normal traces")
        E00 = basis0.project(E0[ids0])
        E10 = basis0.project(E1[ids0])
        E01 = basis1.project(E0[ids1])
        E11 = basis1.project(E1[ids1])

        T = to_projection(coef, basis0)
        F00 = -inv_du * (T @ E00 - I)
        F10 = -inv_du * (T @ E10)
        F01 = -inv_du * (T @ E01)
        F11 = -inv_du * (T @ E11 - I)
        bc = replace(bc, bc_u=SpectralOperator(T, PROJECTION))
    warnings.extend(reduced.warnings)

    # 3. Riccati equation
    log.info(f"{tag}3. Riccati equation")
    o = orientation
    Amat = np.block([[E01, E11], [o * F01, o * F11]])
    Bmat = np.block([[E00, E10], [-o * F00, -o * F10]])

    def flux(V):
        return modes_flux(V, E00, E10, F00, F10, o, basis0.mass, options.omega, normal_sign)

    R, D, eigenvalues = propagation_operators(Amat, Bmat, flux, options.riccati_tol)

    # 4. Cell by cell reconstruction
    log.info(f"{tag}4. Reconstruction on {num_cells} cells")
    if options.sol_basis:
        R0 = np.eye(Nb, dtype=complex)
        U = []
    else:
        R0 = basis0.project(np.asarray(bc.phi(basis0.domain.points)))
        U = np.zeros((N, num_cells), dtype=complex)
    R1 = D @ R0
    for n in range(num_cells):
        cell = E0 @ R0 + E1 @ R1
        if options.sol_basis:
            U.append(cell)
        else:
            U[:, n] = cell
        R0 = R @ R0
        R1 = D @ R0

    # 5. Transmission operator
    log.info(f"{tag}5. Transmission operator")
    U0 = E00 + E10 @ D
    dU0 = F00 + F10 @ D
    Lambda = -T.conj().T @ dU0 + np.conj(bc.bc_du) * U0

    return HalfGuideSolution(
        U=U, R=R, D=D, E0=E0, E1=E1,
        E00=E00, E10=E10, E01=E01, E11=E11,
        F00=F00, F10=F10, F01=F01, F11=F11,
        Lambda=Lambda, bc=bc, eigenvalues=eigenvalues, warnings=tuple(warnings),
    )
