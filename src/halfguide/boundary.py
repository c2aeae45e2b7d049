"""Boundary coefficients and the spectral-operator bridge.

The tangential coefficient of a boundary condition ``bc_du du/dn + bc_u u = phi``
is one of three variants:

- :class:`ScalarCoefficient`, multiplication by a constant;
- :class:`FunctionCoefficient`, multiplication by a function of the position;
- :class:`SpectralOperator`, a matrix acting on a spectral basis, either as
  a *weak evaluation* (``T[k, l] = <T phi_l, phi_k>``) or a *projection*
  (``T phi_l = sum_k T[k, l] phi_k``).

:func:`intg_tu_v` and :func:`to_projection` are the only places where the
variants are told apart.
"""

from __future__ import annotations

from dataclasses import dataclass
from numbers import Number
from typing import Callable, Optional, Union

import numpy as np
from numpy.typing import NDArray
from scipy import sparse

from .assembly import intg_u_v
from .datastructures import Domain
from .exceptions import ConfigurationError, ShapeMismatchError
from .spectral import SpectralBasis

WEAK_EVALUATION = "weak evaluation"
PROJECTION = "projection"


@dataclass(frozen=True)
class ScalarCoefficient:
    value: complex


@dataclass(frozen=True)
class FunctionCoefficient:
    fun: Callable


@dataclass(frozen=True, eq=False)
class SpectralOperator:
    matrix: NDArray
    representation: str

    def __post_init__(self) -> None:
        if self.representation not in (WEAK_EVALUATION, PROJECTION):
            raise ConfigurationError(
                f"Unknown representation '{self.representation}' "
                f"(expected '{WEAK_EVALUATION}' or '{PROJECTION}')"
            )
        matrix = np.atleast_2d(np.asarray(self.matrix))
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise ShapeMismatchError(f"Spectral operator must be square, got {matrix.shape}")
        object.__setattr__(self, "matrix", matrix)

    def check(self, basis: SpectralBasis) -> None:
        if self.matrix.shape != (basis.num_basis, basis.num_basis):
            raise ShapeMismatchError(
                f"Spectral operator of shape {self.matrix.shape} for a basis of "
                f"{basis.num_basis} functions"
            )


Coefficient = Union[ScalarCoefficient, FunctionCoefficient, SpectralOperator]


def as_coefficient(value, representation: str | None = None) -> Coefficient:
    """Wrap a number, a callable or a square matrix into a coefficient variant."""
    if isinstance(value, (ScalarCoefficient, FunctionCoefficient, SpectralOperator)):
        return value
    if isinstance(value, Number):
        return ScalarCoefficient(value)
    if callable(value):
        return FunctionCoefficient(value)
    if representation is None:
        raise ConfigurationError("A matrix coefficient needs an explicit representation")
    return SpectralOperator(np.asarray(value), representation)


def intg_tu_v(domain: Domain, coef: Coefficient, basis: SpectralBasis | None = None) -> sparse.csr_matrix:
    """
    FE matrix of ``int_domain (T u) conj(v)``.

    For a spectral operator the matrix is ``Proj^H T_weak Proj`` on the
    domain points, ``Proj`` being the nodal-to-spectral change of basis.
    """
    if isinstance(coef, ScalarCoefficient):
        return coef.value * intg_u_v(domain)
    if isinstance(coef, FunctionCoefficient):
        return intg_u_v(domain, coef.fun)
    if not isinstance(coef, SpectralOperator):
        raise ConfigurationError(f"Unsupported coefficient {type(coef).__name__}")
    if basis is None:
        raise ConfigurationError("A spectral operator needs a spectral basis")

    coef.check(basis)
    T = coef.matrix if coef.representation == WEAK_EVALUATION else basis.mass @ coef.matrix
    proj = basis.fe_to_spectral
    block = proj.conj().T @ T @ proj

    ids = domain.id_points
    N = domain.mesh.num_points
    rows = np.repeat(ids, len(ids))
    cols = np.tile(ids, len(ids))
    return sparse.csr_matrix((block.ravel(), (rows, cols)), shape=(N, N))


def to_projection(coef: Coefficient, basis: SpectralBasis) -> NDArray:
    """Matrix of the coefficient in projection representation (Nb, Nb)."""
    Nb = basis.num_basis
    if isinstance(coef, ScalarCoefficient):
        return coef.value * np.eye(Nb)
    if isinstance(coef, FunctionCoefficient):
        return basis.mass_inv @ basis.weak_mass(coef.fun)
    coef.check(basis)
    if coef.representation == WEAK_EVALUATION:
        return basis.mass_inv @ coef.matrix
    return coef.matrix


@dataclass(frozen=True, eq=False)
class BoundaryConditions:
    """
    Transverse condition ``bc_du du/dn + bc_u u = phi`` on the two faces.

    Parameters
    ----------
    basis0, basis1 : SpectralBasis
        The same basis on the entry face and on the exit face.
    bc_du : complex
        Normal derivative coefficient; zero means Dirichlet.
    bc_u : number, callable or Coefficient
        Tangential coefficient.
    phi : callable, optional
        Boundary datum ``phi(P)`` over points (n, 3) of the entry face.
    """

    basis0: SpectralBasis
    basis1: SpectralBasis
    bc_du: complex = 0.0
    bc_u: Coefficient = ScalarCoefficient(1.0)
    phi: Optional[Callable] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "bc_u", as_coefficient(self.bc_u))

    @property
    def is_dirichlet(self) -> bool:
        return abs(self.bc_du) < np.finfo(float).eps

    @property
    def num_basis(self) -> int:
        return self.basis0.num_basis
