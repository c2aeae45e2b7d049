"""Point location and interpolation of P1 nodal fields."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from numba import njit

if TYPE_CHECKING:
    from .datastructures import Domain


@njit
def _locate_core(vertices, points, tol):
    """Numba-accelerated brute-force point location in simplices."""
    n_pts = points.shape[0]
    n_elem = vertices.shape[0]
    d = points.shape[1]

    elements = -np.ones(n_pts, dtype=np.int64)
    bary = np.zeros((n_pts, d + 1))

    for e in range(n_elem):
        # Affine map x = x0 + T lambda_{1..d}
        T = np.empty((d, d))
        for j in range(d):
            for k in range(d):
                T[k, j] = vertices[e, j + 1, k] - vertices[e, 0, k]
        Tinv = np.linalg.inv(T)

        for i in range(n_pts):
            if elements[i] >= 0:
                continue
            rhs = points[i] - vertices[e, 0]
            lam = Tinv @ rhs
            lam0 = 1.0 - lam.sum()
            if lam0 < -tol:
                continue
            inside = True
            for j in range(d):
                if lam[j] < -tol:
                    inside = False
                    break
            if inside:
                elements[i] = e
                bary[i, 0] = lam0
                bary[i, 1:] = lam

    return elements, bary


def locate_points(vertices: np.ndarray, points: np.ndarray, tol: float = 1e-10):
    """
    Containing element and barycentric coordinates of each point.

    Parameters
    ----------
    vertices : ndarray (E, d+1, d)
        Element vertices, in the element's own dimension.
    points : ndarray (n, d)
    tol : float
        Slack on the barycentric coordinates for points on element faces.
    """
    return _locate_core(
        np.ascontiguousarray(vertices, dtype=np.float64),
        np.ascontiguousarray(points, dtype=np.float64),
        tol,
    )


def interpolate(domain: Domain, values: np.ndarray, points: np.ndarray, fill_value=np.nan) -> np.ndarray:
    """
    Evaluate a nodal P1 field at arbitrary points of ``domain``.

    ``values`` is indexed by mesh point (N,) or (N, k); points outside the
    domain get ``fill_value``.
    """
    values = np.asarray(values)
    squeeze = values.ndim == 1
    if squeeze:
        values = values[:, None]

    elements, bary = domain.locate(points)
    out = np.full((len(elements), values.shape[1]), fill_value, dtype=np.result_type(values, float))
    found = elements >= 0
    nodes = domain.elements[elements[found]]
    out[found] = np.einsum("pa,pak->pk", bary[found], values[nodes])
    return out[:, 0] if squeeze else out


def wrap_periodic(x: np.ndarray, period: float = 1.0, origin: float = 0.0) -> np.ndarray:
    """Map coordinates into the periodicity cell [origin, origin + period)."""
    return origin + np.mod(np.asarray(x) - origin, period)
