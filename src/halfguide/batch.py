"""Batch runner for Floquet samples.

Each sample solves the positive and negative half-guides for one
wavenumber and writes its own ``TFBU_<index>.npz`` artifact. Samples are
grouped in clusters of ``batch_size`` that run on a process pool; a cluster
must complete before the next one starts. Any failure aborts the batch.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_EXCEPTION, ProcessPoolExecutor, wait
from pathlib import Path
from typing import Callable

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from .exceptions import BatchError, ShapeMismatchError

log = logging.getLogger(__name__)

SAMPLE_PREFIX = "TFBU_"

# solve_sample(index, wavenumber) -> (positive (N, S), negative (N, S))
SampleFn = Callable[[int, float], tuple[NDArray, NDArray]]


def sample_path(output_dir: str | Path, index: int) -> Path:
    return Path(output_dir) / f"{SAMPLE_PREFIX}{index}.npz"


def save_sample(output_dir: str | Path, index: int, wavenumber, positive: NDArray, negative: NDArray) -> Path:
    path = sample_path(output_dir, index)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez(path, wavenumber=np.complex128(wavenumber), positive=positive, negative=negative)
    return path


def load_sample(output_dir: str | Path, index: int) -> tuple[complex, NDArray, NDArray]:
    with np.load(sample_path(output_dir, index)) as data:
        return complex(data["wavenumber"]), data["positive"], data["negative"]


def load_samples(output_dir: str | Path, num_samples: int) -> tuple[NDArray, NDArray, NDArray]:
    """
    Load and stack every sample of a batch.

    Returns
    -------
    wavenumbers : ndarray (M,)
    positive, negative : ndarray (M, N, S)
    """
    loaded = [load_sample(output_dir, m) for m in range(num_samples)]
    shapes = {(pos.shape, neg.shape) for _, pos, neg in loaded}
    if len(shapes) > 1:
        raise ShapeMismatchError(f"Floquet samples in {output_dir} have different shapes: {shapes}")
    k = np.array([s[0] for s in loaded])
    return k, np.stack([s[1] for s in loaded]), np.stack([s[2] for s in loaded])


def _run_sample(solve_sample: SampleFn, output_dir: str, index: int, wavenumber: float) -> dict:
    t0 = time.perf_counter()
    positive, negative = solve_sample(index, wavenumber)
    path = save_sample(output_dir, index, wavenumber, positive, negative)
    return {
        "index": index,
        "wavenumber": wavenumber,
        "path": str(path),
        "wall_time": time.perf_counter() - t0,
    }


def run_floquet_batch(
    solve_sample: SampleFn,
    wavenumbers: NDArray[np.float64],
    output_dir: str | Path,
    batch_size: int = 4,
    max_workers: int | None = None,
) -> pd.DataFrame:
    """
    Solve every Floquet sample and write its artifact.

    Parameters
    ----------
    solve_sample : callable
        ``solve_sample(index, wavenumber) -> (positive, negative)``; must
        be picklable (module-level function or ``functools.partial``)
        unless ``max_workers == 1``.
    wavenumbers : ndarray (M,)
    output_dir : path
    batch_size : int
        Number of samples per cluster.
    max_workers : int, optional
        Process pool size; 1 runs every sample in the calling process.

    Returns
    -------
    pd.DataFrame
        One row per sample: index, wavenumber, artifact path, wall time.

    Raises
    ------
    BatchError
        A sample raised; pending samples are cancelled.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    indices = list(range(len(wavenumbers)))
    clusters = [indices[i : i + batch_size] for i in range(0, len(indices), batch_size)]
    rows = []

    if max_workers == 1:
        for c, cluster in enumerate(clusters):
            log.info(f"Cluster {c + 1}/{len(clusters)}: samples {cluster[0]}..{cluster[-1]}")
            for m in cluster:
                try:
                    rows.append(_run_sample(solve_sample, str(output_dir), m, wavenumbers[m]))
                except Exception as exc:
                    log.error(f"Floquet sample {m} failed: {exc}")
                    raise BatchError(f"Floquet sample {m} (k={wavenumbers[m]:.4f}) failed") from exc
        return pd.DataFrame(rows)

    with ProcessPoolExecutor(max_workers=max_workers) as executor:
        for c, cluster in enumerate(clusters):
            log.info(f"Cluster {c + 1}/{len(clusters)}: samples {cluster[0]}..{cluster[-1]}")
            futures = {
                executor.submit(_run_sample, solve_sample, str(output_dir), m, wavenumbers[m]): m
                for m in cluster
            }
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in done:
                exc = future.exception()
                if exc is not None:
                    for p in pending:
                        p.cancel()
                    m = futures[future]
                    log.error(f"Floquet sample {m} failed: {exc}")
                    raise BatchError(f"Floquet sample {m} (k={wavenumbers[m]:.4f}) failed") from exc
                rows.append(future.result())

    return pd.DataFrame(rows).sort_values("index").reset_index(drop=True)
