"""Finite spectral bases sampled on a boundary domain.

The basis matrices (boundary mass, spectral mass, its inverse and the
nodal-to-spectral change of basis) are computed on first access and kept
for the lifetime of the basis. Pairings are sesquilinear:
``mass = Phi^H M Phi`` and ``fe_to_spectral = mass^{-1} Phi^H M``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from itertools import product
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from .assembly import intg_u_v
from .datastructures import BOUNDARY_TOL, Domain
from .exceptions import ConfigurationError

log = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class BasisMatrices:
    boundary_mass: NDArray
    mass: NDArray
    mass_inv: NDArray
    fe_to_spectral: NDArray


def _boundary_block(domain: Domain, fun=None) -> NDArray:
    ids = domain.id_points
    return intg_u_v(domain, fun)[ids][:, ids].toarray()


def _periodic_directions(domain: Domain, directions, tol: float) -> tuple[int, ...]:
    if directions is not None:
        return tuple(directions)
    lo, hi = domain.bounds()
    return tuple(d for d in range(domain.mesh.dimension) if hi[d] - lo[d] > tol)


@dataclass(eq=False)
class SpectralBasis(ABC):
    """
    Ordered finite basis on ``domain``.

    ``phis[i, m]`` is the value of basis function ``m`` at point
    ``domain.id_points[i]``.
    """

    domain: Domain
    phis: NDArray = field(init=False, repr=False)
    _matrices: Optional[BasisMatrices] = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        self.phis = self._basis_values()

    @abstractmethod
    def _basis_values(self) -> NDArray:
        """Values of the basis functions at the domain points."""

    @property
    def num_basis(self) -> int:
        return self.phis.shape[1]

    @property
    def is_ready(self) -> bool:
        return self._matrices is not None

    @property
    def matrices(self) -> BasisMatrices:
        if self._matrices is None:
            self._matrices = self._compute_matrices()
        return self._matrices

    def _compute_matrices(self) -> BasisMatrices:
        log.debug(f"Computing basis matrices on '{self.domain.name}' ({self.num_basis} functions)")
        M = _boundary_block(self.domain)
        PhiH_M = self.phis.conj().T @ M
        mass = PhiH_M @ self.phis
        mass_inv = np.linalg.inv(mass)
        return BasisMatrices(M, mass, mass_inv, mass_inv @ PhiH_M)

    @property
    def mass(self) -> NDArray:
        return self.matrices.mass

    @property
    def mass_inv(self) -> NDArray:
        return self.matrices.mass_inv

    @property
    def fe_to_spectral(self) -> NDArray:
        return self.matrices.fe_to_spectral

    def project(self, values: NDArray) -> NDArray:
        """Spectral coefficients of nodal values given in ``id_points`` order."""
        return self.fe_to_spectral @ values

    def lift(self, num_points: int | None = None) -> NDArray:
        """Basis functions as nodal vectors on the whole mesh, (N, num_basis)."""
        N = self.domain.mesh.num_points if num_points is None else num_points
        B = np.zeros((N, self.num_basis), dtype=self.phis.dtype)
        B[self.domain.id_points] = self.phis
        return B

    def weak_mass(self, fun=None) -> NDArray:
        """``W[k, l] = int fun phi_l conj(phi_k)`` (weak evaluation of ``u -> fun u``)."""
        return self.phis.conj().T @ _boundary_block(self.domain, fun) @ self.phis


@dataclass(eq=False)
class PeriodicLagrangeBasis(SpectralBasis):
    """
    Nodal P1 hat functions of the boundary mesh, points on opposite sides
    of each periodic direction being identified.

    Functions are ordered by the tangential coordinates of their node, so
    two bases built on facing faces correspond one to one.
    """

    periodic_directions: Optional[tuple] = None
    tol: float = BOUNDARY_TOL

    def _basis_values(self) -> NDArray:
        dirs = _periodic_directions(self.domain, self.periodic_directions, self.tol)
        n = self.domain.num_points
        if not dirs:
            return np.ones((n, 1))

        pts = self.domain.points.copy()
        lo, hi = self.domain.bounds()
        for d in dirs:
            pts[np.abs(pts[:, d] - hi[d]) < self.tol, d] = lo[d]

        keys = np.round(pts[:, list(dirs)], 10)
        _, inverse = np.unique(keys, axis=0, return_inverse=True)
        inverse = np.asarray(inverse).ravel()
        phis = np.zeros((n, inverse.max() + 1))
        phis[np.arange(n), inverse] = 1.0
        return phis


@dataclass(eq=False)
class FourierBasis(SpectralBasis):
    """
    Complex exponentials ``exp(2i pi sum_j k_j (x_j - a_j) / L_j)`` with
    ``|k_j| <= num_modes[j]`` along each periodic direction.
    """

    num_modes: tuple | int = 1
    periodic_directions: Optional[tuple] = None
    tol: float = BOUNDARY_TOL

    modes: NDArray = field(init=False, repr=False)

    def _basis_values(self) -> NDArray:
        dirs = _periodic_directions(self.domain, self.periodic_directions, self.tol)
        counts = (self.num_modes,) * len(dirs) if np.isscalar(self.num_modes) else tuple(self.num_modes)
        if len(counts) != len(dirs):
            raise ConfigurationError(
                f"{len(counts)} mode counts given for {len(dirs)} periodic directions"
            )

        ranges = [range(-K, K + 1) for K in counts]
        combos = list(product(*ranges))
        self.modes = np.array(combos, dtype=np.int64).reshape(len(combos), len(dirs))

        pts = self.domain.points
        lo, hi = self.domain.bounds()
        phase = np.zeros((len(pts), len(self.modes)))
        for j, d in enumerate(dirs):
            phase += np.outer((pts[:, d] - lo[d]) / (hi[d] - lo[d]), self.modes[:, j])
        return np.exp(2j * np.pi * phase)
