"""Floquet-Bloch transform along the infinite direction.

A field on the whole line is recovered from half-guide solutions computed
for a set of Floquet wavenumbers ``k_m`` sampled on the Brillouin zone
``[-pi/period, pi/period]`` with the rectangular rule.
"""

from __future__ import annotations

import logging
from typing import Callable

import numpy as np
from numpy.typing import NDArray

from .exceptions import ShapeMismatchError

log = logging.getLogger(__name__)


def floquet_wavenumbers(num_points: int, period: float = 1.0) -> NDArray[np.float64]:
    """``num_points`` equispaced wavenumbers over ``[-pi/period, pi/period]``, endpoints included."""
    if num_points < 2:
        raise ShapeMismatchError(f"At least 2 Floquet points are needed, got {num_points}")
    return np.linspace(-np.pi / period, np.pi / period, num_points)


def floquet_weight(num_points: int, period: float = 1.0) -> float:
    """Rectangular-rule weight ``(2 pi / period) / (num_points - 1)``."""
    return (2 * np.pi / period) / (num_points - 1)


def cell_offsets(num_cells_infinite: int) -> NDArray[np.int64]:
    """Cell indices ``-n, ..., n - 1`` on which the transform is evaluated."""
    return np.arange(-num_cells_infinite, num_cells_infinite)


def floquet_transform(
    fun: Callable,
    points: NDArray[np.float64],
    wavenumber: float,
    period: float = 1.0,
    num_terms: int = 20,
    direction: int = 0,
) -> NDArray[np.complex128]:
    """
    Forward transform of a datum ``G`` at ``points`` (n, 3)::

        G_k(y) = sqrt(period / 2 pi) sum_{|j| <= num_terms} G(y + j period) exp(-i k (y + j period))

    ``G`` is shifted along ``direction``; it should vanish beyond
    ``num_terms`` periods.
    """
    points = np.atleast_2d(np.asarray(points, dtype=np.float64))
    out = np.zeros(len(points), dtype=np.complex128)
    for j in range(-num_terms, num_terms + 1):
        shifted = points.copy()
        shifted[:, direction] += j * period
        out += np.asarray(fun(shifted)) * np.exp(-1j * wavenumber * shifted[:, direction])
    return np.sqrt(period / (2 * np.pi)) * out


def inverse_floquet_transform(
    samples: NDArray,
    wavenumbers: NDArray[np.float64],
    coordinates: NDArray[np.float64],
    period: float = 1.0,
    num_cells_infinite: int = 1,
) -> NDArray[np.complex128]:
    """
    Rebuild the physical field from Floquet samples.

    Parameters
    ----------
    samples : ndarray (M, N, S)
        Half-guide solution for each wavenumber, ``N`` cell DOFs on ``S``
        semi-infinite cells.
    wavenumbers : ndarray (M,)
    coordinates : ndarray (N,)
        Coordinate of each DOF along the infinite direction.
    period : float
    num_cells_infinite : int
        The result covers cell offsets ``-n, ..., n - 1``.

    Returns
    -------
    ndarray (N, S, 2 n)
        ``sqrt(period / 2 pi) W sum_m exp(i k_m x) exp(i k_m tau period) U_m``.
    """
    samples = np.asarray(samples)
    wavenumbers = np.asarray(wavenumbers)
    coordinates = np.asarray(coordinates, dtype=np.float64)
    if samples.ndim == 2:
        samples = samples[:, :, None]
    M, N, S = samples.shape
    if len(wavenumbers) != M:
        raise ShapeMismatchError(f"{M} Floquet samples for {len(wavenumbers)} wavenumbers")
    if len(coordinates) != N:
        raise ShapeMismatchError(f"{len(coordinates)} coordinates for samples with {N} DOFs")

    tau = cell_offsets(num_cells_infinite)
    W = floquet_weight(M, period)
    log.debug(f"Inverse Floquet transform: {M} samples, {N} DOFs, {S} cells, {len(tau)} offsets")

    local = np.exp(1j * np.outer(coordinates, wavenumbers))  # (N, M)
    shift = np.exp(1j * period * np.outer(wavenumbers, tau))  # (M, T)
    out = np.einsum("nm,mns,mt->nst", local, samples, shift)
    return np.sqrt(period / (2 * np.pi)) * W * out
