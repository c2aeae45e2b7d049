"""Global assembly of P1 finite element operators.

Elementary matrices are computed for all elements of a domain at once and
scattered into a CSR matrix through COO triplets, duplicates being summed.
Bilinear forms give sparse matrices, linear forms give load vectors.
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import csr_matrix

from .datastructures import Domain
from .elements import check_derivatives, elementary_matrices, pad_alpha, quadrature_points
from .exceptions import ConfigurationError
from .forms import Form, FormTerm, Operator, as_coefficient_matrix, gradient, identity
from .quadrature import QuadratureRule, quadrature_rule

log = logging.getLogger(__name__)


def _alpha_rows(alpha) -> NDArray:
    alpha = np.asarray(alpha)
    if alpha.ndim <= 1:
        return pad_alpha(alpha)[None, :]
    return np.array([pad_alpha(row) for row in alpha])


def assemble_elements(domain: Domain, Ae: NDArray) -> csr_matrix:
    """Scatter elementary matrices (E, d+1, d+1) into an N x N CSR matrix."""
    N = domain.mesh.num_points
    elems = domain.elements
    rows = np.broadcast_to(elems[:, :, None], Ae.shape).ravel()
    cols = np.broadcast_to(elems[:, None, :], Ae.shape).ravel()
    return csr_matrix((Ae.ravel(), (rows, cols)), shape=(N, N))


def _validate(domain: Domain, alpha_u: NDArray, alpha_v: NDArray) -> None:
    if domain.elements.shape[1] != domain.dimension + 1:
        raise ConfigurationError(
            f"Domain '{domain.name}' has {domain.elements.shape[1]} points per element, "
            f"expected {domain.dimension + 1} for dimension {domain.dimension}"
        )
    for alpha in (*alpha_u, *alpha_v):
        check_derivatives(alpha, domain.dimension, domain.mesh.dimension)


def global_matrix(
    domain: Domain,
    alpha_u,
    alpha_v,
    fun=None,
    quad: QuadratureRule | None = None,
) -> csr_matrix:
    """
    Global FE matrix of ``int fun_IJ (alpha_u[J] . U) conj(alpha_v[I] . V)``.

    Parameters
    ----------
    domain : Domain
        Integration domain, possibly of lower dimension than the mesh.
    alpha_u, alpha_v : array_like (p, <=4) or (<=4,)
        Derivative combinations on the trial and test sides.
    fun : callable, optional
        Coefficient ``fun(P)`` for points P (n, 3), returning (n,) or
        (n, p_v, p_u). Identity when omitted, which enables the exact
        constant-coefficient path.
    quad : QuadratureRule, optional
        Defaults to :func:`halfguide.quadrature.quadrature_rule`.

    Returns
    -------
    csr_matrix (N, N)
        Rows are test functions, columns trial functions.
    """
    alpha_u = _alpha_rows(alpha_u)
    alpha_v = _alpha_rows(alpha_v)
    _validate(domain, alpha_u, alpha_v)
    p_u, p_v = len(alpha_u), len(alpha_v)

    vertices = domain.vertices
    mesh_dim = domain.mesh.dimension
    n_loc = domain.dimension + 1
    N = domain.mesh.num_points

    if fun is None:
        if p_u != p_v:
            raise ConfigurationError(
                f"Identity coefficient needs as many trial ({p_u}) as test ({p_v}) components"
            )
        Ae = np.zeros((len(vertices), n_loc, n_loc), dtype=np.result_type(alpha_u, alpha_v))
        for I in range(p_u):
            Ae = Ae + elementary_matrices(vertices, alpha_u[I], alpha_v[I], None, quad, mesh_dim)
        return assemble_elements(domain, Ae)

    quad = quadrature_rule(domain.dimension) if quad is None else quad
    X = quadrature_points(vertices, quad)
    n_elem, n_quad = X.shape[:2]

    # Shape check on a single point before evaluating everywhere
    as_coefficient_matrix(np.asarray(fun(X.reshape(-1, 3)[:1])), 1, p_v, p_u)
    F = as_coefficient_matrix(np.asarray(fun(X.reshape(-1, 3))), n_elem * n_quad, p_v, p_u)
    F = F.reshape(n_elem, n_quad, p_v, p_u)

    Ae = np.zeros((n_elem, n_loc, n_loc), dtype=np.result_type(alpha_u, alpha_v, F))
    for I in range(p_v):
        for J in range(p_u):
            values = F[:, :, I, J]
            if not np.any(values):
                continue
            Ae = Ae + elementary_matrices(vertices, alpha_u[J], alpha_v[I], values, quad, mesh_dim)

    if not np.any(Ae):
        log.debug(f"Vanishing coefficient on domain '{domain.name}'")
        return csr_matrix((N, N), dtype=Ae.dtype)
    return assemble_elements(domain, Ae)


def _assemble_term(domain: Domain, term: FormTerm, quad: QuadratureRule | None) -> csr_matrix:
    return term.scale * global_matrix(domain, term.alpha_u, term.alpha_v, term.fun, quad)


def assemble(domain: Domain, form: Form, quad: QuadratureRule | None = None) -> csr_matrix:
    """Assemble every term of ``form`` on ``domain`` and sum them."""
    N = domain.mesh.num_points
    A = csr_matrix((N, N))
    for term in form.terms:
        A = A + _assemble_term(domain, term, quad)
    return A.tocsr()


def integrate(domain: Domain, form: Form | Operator, quad: QuadratureRule | None = None):
    """
    Integrate a bilinear form (matrix) or a linear form (vector).

    An :class:`Operator` ``B(x) T`` with a scalar image is understood as the
    linear form ``v -> int B(x) conj(T v)``.
    """
    if isinstance(form, Form):
        return assemble(domain, form, quad)
    if isinstance(form, Operator):
        if form.output_components() != 1:
            raise ConfigurationError(
                f"A linear form needs a scalar image, got {form.output_components()} components"
            )
        if form.coef is None:
            term = FormTerm([[1.0]], form.alpha)
        else:
            term = FormTerm(
                [[1.0]], form.alpha, lambda P: np.transpose(form.coefficient_values(P), (0, 2, 1))
            )
        M = _assemble_term(domain, term, quad)
        return M @ np.ones(domain.mesh.num_points)
    raise ConfigurationError(f"Cannot integrate object of type {type(form).__name__}")


# ----------------------------------------------------------------------------
# Named shortcuts
# ----------------------------------------------------------------------------


def intg_u_v(domain: Domain, fun=None, quad: QuadratureRule | None = None) -> csr_matrix:
    """Mass matrix ``int fun u conj(v)``."""
    return global_matrix(domain, [1.0], [1.0], fun, quad)


def intg_gradu_gradv(domain: Domain, fun=None, quad: QuadratureRule | None = None) -> csr_matrix:
    """Stiffness matrix ``int (fun grad u) . conj(grad v)``; ``fun`` scalar or (n, d, d)."""
    g = gradient(domain.mesh.dimension).alpha
    return global_matrix(domain, g, g, fun, quad)


def intg_du_dv(domain: Domain, i: int | None, j: int | None, fun=None, quad=None) -> csr_matrix:
    """
    ``int fun (D_i u) conj(D_j v)`` where ``None`` means no derivative.

    Covers the whole family ``int u dxv``, ``int dyu dzv``...
    """
    alpha_u = identity().alpha if i is None else np.eye(4)[i + 1][None, :]
    alpha_v = identity().alpha if j is None else np.eye(4)[j + 1][None, :]
    return global_matrix(domain, alpha_u, alpha_v, fun, quad)
