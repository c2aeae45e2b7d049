"""Elementary operators for P1 simplices in 0 to 3 dimensions.

An element is given by its ``d + 1`` vertex coordinates padded to 3D. The
affine map ``x = x_0 + A xi`` sends the reference simplex onto it. A
derivative combination ``alpha = [a_0, a_x, a_y, a_z]`` stands for the
operator ``a_0 u + a_x du/dx + a_y du/dy + a_z du/dz``.
"""

from __future__ import annotations

import math

import numpy as np
from numpy.typing import NDArray

from .exceptions import ConfigurationError, DegenerateElementError
from .quadrature import QuadratureRule, quadrature_rule

# Relative tolerance on J / h^d below which an element is degenerate
DEGENERACY_TOL = 1e-12


def pad_alpha(alpha) -> NDArray:
    """Pad a derivative combination with zeros up to length 4."""
    alpha = np.atleast_1d(np.asarray(alpha))
    if alpha.ndim != 1 or len(alpha) > 4:
        raise ConfigurationError(f"Derivative combination must have at most 4 entries, got {alpha.shape}")
    out = np.zeros(4, dtype=np.result_type(alpha.dtype, np.float64))
    out[: len(alpha)] = alpha
    return out


def check_derivatives(alpha: NDArray, dom_dim: int, mesh_dim: int) -> None:
    """Reject derivatives that cannot be taken on a domain of dimension ``dom_dim``."""
    if dom_dim > mesh_dim:
        raise ConfigurationError(
            f"Domain dimension ({dom_dim}) exceeds mesh dimension ({mesh_dim})"
        )
    if dom_dim < mesh_dim and np.any(alpha[1:] != 0):
        raise ConfigurationError(
            f"Derivatives requested on a {dom_dim}D domain of a {mesh_dim}D mesh: "
            f"tangential derivatives are not supported (alpha={alpha})"
        )
    if np.any(alpha[mesh_dim + 1:] != 0):
        raise ConfigurationError(
            f"Derivative along a direction beyond the mesh dimension {mesh_dim} (alpha={alpha})"
        )


def shape_functions(points: NDArray[np.float64], alpha: NDArray) -> NDArray:
    """
    Evaluate ``alpha . (phi, grad phi)`` for the d+1 P1 basis functions.

    Parameters
    ----------
    points : ndarray (n, d)
        Points on the reference simplex.
    alpha : ndarray (d+1,) or (E, d+1)
        Value coefficient followed by reference-derivative coefficients,
        possibly one row per element.

    Returns
    -------
    phis : ndarray (n, d+1) or (E, n, d+1)
    """
    alpha = np.asarray(alpha)
    single = alpha.ndim == 1
    alpha = np.atleast_2d(alpha)
    a0 = alpha[:, :1]
    ad = alpha[:, 1:]

    s = points.sum(axis=1)
    phis = np.empty((alpha.shape[0], points.shape[0], points.shape[1] + 1), dtype=alpha.dtype)
    phis[:, :, 0] = a0 * (1.0 - s)[None, :] - ad.sum(axis=1)[:, None]
    phis[:, :, 1:] = a0[:, :, None] * points[None, :, :] + ad[:, None, :]
    return phis[0] if single else phis


def jacobians(vertices: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Measure scale factor of the affine map for each element.

    Length for segments, norm of the cross product for triangles and
    absolute determinant for tetrahedra.

    Raises
    ------
    DegenerateElementError
        If an element has (relatively) zero measure.
    """
    dim = vertices.shape[1] - 1
    if dim == 0:
        return np.ones(vertices.shape[0])

    edges = vertices[:, 1:, :] - vertices[:, :1, :]
    if dim == 1:
        J = np.linalg.norm(edges[:, 0], axis=1)
    elif dim == 2:
        J = np.linalg.norm(np.cross(edges[:, 0], edges[:, 1]), axis=1)
    elif dim == 3:
        J = np.abs(np.linalg.det(edges))
    else:
        raise ConfigurationError(f"Unsupported element dimension {dim}")

    h = np.linalg.norm(edges, axis=2).max(axis=1)
    bad = J <= DEGENERACY_TOL * h**dim
    if np.any(bad):
        idx = np.flatnonzero(bad)
        raise DegenerateElementError(
            f"{len(idx)} degenerate {dim}D element(s), first indices {idx[:5].tolist()}"
        )
    return J


def _reference_alpha(vertices: NDArray[np.float64], alpha: NDArray, mesh_dim: int) -> NDArray:
    """Map physical derivative coefficients to the reference element (A^{-1} beta)."""
    n_elem = vertices.shape[0]
    dim = vertices.shape[1] - 1
    out = np.zeros((n_elem, dim + 1), dtype=np.result_type(alpha.dtype, np.float64))
    out[:, 0] = alpha[0]
    if dim == 0 or dim < mesh_dim or not np.any(alpha[1:dim + 1] != 0):
        return out

    # A[e][:, j] = x_{j+1} - x_0 restricted to the first dim coordinates
    A = np.transpose(vertices[:, 1:, :dim] - vertices[:, :1, :dim], (0, 2, 1))
    beta = np.broadcast_to(alpha[1:dim + 1], (n_elem, dim))[:, :, None]
    out[:, 1:] = np.linalg.solve(A, beta)[:, :, 0]
    return out


def quadrature_points(vertices: NDArray[np.float64], quad: QuadratureRule) -> NDArray[np.float64]:
    """Physical quadrature points, shape (E, n, 3)."""
    edges = vertices[:, 1:, :] - vertices[:, :1, :]
    return vertices[:, :1, :] + np.einsum("qd,edk->eqk", quad.points, edges)


def _reference_mass(dim: int) -> NDArray[np.float64]:
    # Barycentric moments on the reference simplex: (1 + delta_ab) / (d + 2)!
    return (np.ones((dim + 1, dim + 1)) + np.eye(dim + 1)) / math.factorial(dim + 2)


def elementary_matrices(
    vertices: NDArray[np.float64],
    alpha_u,
    alpha_v,
    values: NDArray | None = None,
    quad: QuadratureRule | None = None,
    mesh_dim: int | None = None,
) -> NDArray:
    """
    Elementary matrices for a batch of elements.

    Parameters
    ----------
    vertices : ndarray (E, d+1, 3)
        Vertex coordinates of each element.
    alpha_u, alpha_v : array_like (<= 4,)
        Derivative combinations applied to the trial and test functions.
    values : ndarray (E, n), optional
        Coefficient evaluated at the physical quadrature points of ``quad``.
        When omitted the coefficient is 1 and the exact closed form is used.
    quad : QuadratureRule, optional
        Rule matching ``values``; defaults to :func:`quadrature_rule`.
    mesh_dim : int, optional
        Ambient mesh dimension, defaults to the element dimension.

    Returns
    -------
    Ae : ndarray (E, d+1, d+1)
        ``Ae[e, i, j] = int f (alpha_u . phi_j) conj(alpha_v . phi_i)``.
    """
    dim = vertices.shape[1] - 1
    mesh_dim = dim if mesh_dim is None else mesh_dim
    alpha_u = pad_alpha(alpha_u)
    alpha_v = pad_alpha(alpha_v)
    check_derivatives(alpha_u, dim, mesh_dim)
    check_derivatives(alpha_v, dim, mesh_dim)

    J = jacobians(vertices)
    ref_u = _reference_alpha(vertices, alpha_u, mesh_dim)
    ref_v = _reference_alpha(vertices, alpha_v, mesh_dim)

    if values is None and quad is None:
        # P1 combinations are affine: integrate exactly through their vertex values
        corners = np.vstack([np.zeros((1, dim)), np.eye(dim)])
        Cu = shape_functions(corners, ref_u)
        Cv = shape_functions(corners, ref_v)
        Ae = np.einsum("eai,ab,ebj->eij", Cv.conj(), _reference_mass(dim), Cu)
        return J[:, None, None] * Ae

    quad = quadrature_rule(dim) if quad is None else quad
    if values is None:
        values = np.ones((vertices.shape[0], quad.num_points))
    weighted = quad.weights[None, :] * values

    phis_u = shape_functions(quad.points, ref_u)
    phis_v = shape_functions(quad.points, ref_v)
    Ae = np.einsum("eqi,eq,eqj->eij", phis_v.conj(), weighted, phis_u)
    return J[:, None, None] * Ae


def elementary_matrix(
    points: NDArray[np.float64],
    alpha_u,
    alpha_v,
    fun=None,
    quad: QuadratureRule | None = None,
    mesh_dim: int | None = None,
) -> NDArray:
    """Elementary matrix of a single element with vertices ``points`` (d+1, <=3)."""
    points = np.asarray(points, dtype=np.float64)
    vertices = np.zeros((1, points.shape[0], 3))
    vertices[0, :, : points.shape[1]] = points

    values = None
    if fun is not None:
        quad = quadrature_rule(points.shape[0] - 1) if quad is None else quad
        X = quadrature_points(vertices, quad)[0]
        values = np.asarray(fun(X)).reshape(1, -1)
    return elementary_matrices(vertices, alpha_u, alpha_v, values, quad, mesh_dim)[0]


def triangle_mass(area: float) -> NDArray[np.float64]:
    """Classical P1 triangle mass matrix."""
    return area / 12.0 * np.array([[2.0, 1.0, 1.0], [1.0, 2.0, 1.0], [1.0, 1.0, 2.0]])


def triangle_stiffness(x: NDArray[np.float64], y: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Classical P1 triangle stiffness matrix.

    Uses the basis coefficients ``b_i = y_j - y_k`` and ``c_i = x_k - x_j``
    (cyclic i, j, k), so that ``K_ij = (b_i b_j + c_i c_j) / (4 |T|)``.
    """
    b = np.array([y[1] - y[2], y[2] - y[0], y[0] - y[1]])
    c = np.array([x[2] - x[1], x[0] - x[2], x[1] - x[0]])
    delta = 0.5 * (x[0] * (y[1] - y[2]) + x[1] * (y[2] - y[0]) + x[2] * (y[0] - y[1]))
    return (np.outer(b, b) + np.outer(c, c)) / (4.0 * abs(delta))
