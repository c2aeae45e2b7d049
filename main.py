"""
Floquet-Bloch demo - half-space Dirichlet problem in a periodic strip.

The datum G(y) on the line x = 0 is Floquet-transformed along y; for each
wavenumber the positive (x > 0) and negative (x < 0) half-guides are solved
on one periodicity cell, and the whole field is rebuilt with the inverse
transform.

Usage:
    python main.py
    python main.py omega=5.0 num_floquet_points=65 max_workers=4
    python main.py -m num_nodes=[11],[21]
"""

import logging
import sys
from functools import partial
from pathlib import Path

import hydra
import numpy as np
import pandas as pd
from omegaconf import DictConfig, OmegaConf

sys.path.insert(0, str(Path(__file__).parent / "src"))

from halfguide import (  # noqa: E402
    BoundaryConditions,
    FourierBasis,
    PeriodicLagrangeBasis,
    SolverOptions,
    face_names,
    floquet_transform,
    floquet_wavenumbers,
    gradient,
    identity,
    inverse_floquet_transform,
    operator_transform,
    pair,
    periodic_half_guide,
    rectangle_mesh,
)
from halfguide.batch import load_samples, run_floquet_batch  # noqa: E402

log = logging.getLogger(__name__)

# Floquet direction (y) and half-guide direction (x)
FLOQUET_DIRECTION = 1
GUIDE_DIRECTION = 0


def source(P: np.ndarray) -> np.ndarray:
    """Smooth bump supported in |y| < 1."""
    y = P[:, FLOQUET_DIRECTION]
    return np.where(np.abs(y) < 1.0, np.cos(np.pi * y / 2) ** 2, 0.0)


def shifted_helmholtz(k: float, omega: complex):
    """``(grad + ik e_y) u . conj((grad + ik e_y) v) - omega^2 u conj(v)``."""
    shift = operator_transform([[0.0], [1.0]], identity())
    op = gradient(2) + 1j * k * shift
    return pair(op, op) - omega**2 * pair(identity(), identity())


def _make_basis(domain, basis: str, fourier_modes: int):
    if basis == "lagrange":
        return PeriodicLagrangeBasis(domain)
    if basis == "fourier":
        return FourierBasis(domain, num_modes=fourier_modes)
    raise ValueError(f"Unknown basis '{basis}' (expected 'lagrange' or 'fourier')")


def solve_half_guide(orientation: int, k: float, params: dict) -> np.ndarray:
    """Solution of one half-guide for the wavenumber ``k``, shape (N, S)."""
    period = params["period"]
    n = params["num_nodes"] - 1
    mesh = rectangle_mesh((0.0, orientation * 1.0), (0.0, period), nx=n, ny=n)

    sigma0, sigma1 = (mesh.domain(name) for name in face_names(GUIDE_DIRECTION))
    phi = partial(
        floquet_transform, source,
        wavenumber=k, period=period, num_terms=params["num_terms"], direction=FLOQUET_DIRECTION,
    )
    bc = BoundaryConditions(
        basis0=_make_basis(sigma0, params["basis"], params["fourier_modes"]),
        basis1=_make_basis(sigma1, params["basis"], params["fourier_modes"]),
        phi=phi,
    )
    options = SolverOptions(omega=params["omega"], label=f"k={k:+.3f} o={orientation:+d}")
    solution = periodic_half_guide(
        mesh, orientation, GUIDE_DIRECTION, shifted_helmholtz(k, params["omega"]), bc,
        params["num_cells_semi_infinite"], options,
    )
    return solution.U


def solve_sample(index: int, k: float, params: dict) -> tuple[np.ndarray, np.ndarray]:
    """Positive and negative half-guide solutions of one Floquet sample."""
    return solve_half_guide(1, k, params), solve_half_guide(-1, k, params)


def run(cfg: DictConfig, num_nodes: int) -> pd.DataFrame:
    """Run every Floquet sample at one resolution and rebuild the field."""
    output_dir = Path(cfg.output_dir) / f"N{num_nodes}"
    params = {
        "omega": complex(cfg.omega, cfg.damping),
        "period": float(cfg.period),
        "num_nodes": int(num_nodes),
        "num_cells_semi_infinite": int(cfg.num_cells_semi_infinite),
        "basis": str(cfg.basis),
        "fourier_modes": int(cfg.fourier_modes),
        "num_terms": int(cfg.num_terms),
    }

    wavenumbers = floquet_wavenumbers(cfg.num_floquet_points, cfg.period)
    summary = run_floquet_batch(
        partial(solve_sample, params=params), wavenumbers, output_dir,
        batch_size=cfg.batch_size, max_workers=cfg.max_workers,
    )

    k, positive, negative = load_samples(output_dir, len(wavenumbers))
    mesh = rectangle_mesh((0.0, 1.0), (0.0, cfg.period), nx=num_nodes - 1, ny=num_nodes - 1)
    y = mesh.points[:, FLOQUET_DIRECTION]
    fields = {
        name: inverse_floquet_transform(samples, k.real, y, cfg.period, cfg.num_cells_infinite)
        for name, samples in (("positive", positive), ("negative", negative))
    }
    np.savez(output_dir / "field.npz", points=mesh.points, **fields)

    summary["num_nodes"] = num_nodes
    summary.to_csv(output_dir / "samples.csv", index=False)
    log.info(f"N={num_nodes}: {len(summary)} samples, {summary['wall_time'].sum():.2f}s total, "
             f"max |u| = {np.abs(fields['positive']).max():.4e}")
    return summary


@hydra.main(config_path="conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    """Main entry point."""
    log.info(f"Config:\n{OmegaConf.to_yaml(cfg)}")
    tables = [run(cfg, int(n)) for n in cfg.num_nodes]
    table = pd.concat(tables, ignore_index=True)
    Path(cfg.output_dir).mkdir(parents=True, exist_ok=True)
    table.to_csv(Path(cfg.output_dir) / "summary.csv", index=False)


if __name__ == "__main__":
    main()
