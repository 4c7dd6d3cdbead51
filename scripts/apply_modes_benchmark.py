"""Quick benchmark: merged (single kernel) vs pairwise (kernel matrix) smooth passes.

This script applies the same Laplace double layer to several circles twice:
once as a single kernel (all chunkers merged, one smooth evaluation) and once
as a full kernel matrix (one smooth evaluation per chunker pair). It prints
wall-clock timings and the difference between the two results; DEBUG logs
from chunkapply show where the time goes.

Run with:
    python -m scripts.apply_modes_benchmark
"""

from __future__ import annotations

import warnings
from time import perf_counter
from typing import List

import numpy as np
from loguru import logger

logger.remove()
logger.add(lambda m: print(m, end=""), level="INFO")

from chunkapply import (
    AccelerationUnavailableWarning,
    Chunker,
    ChunkerOperator,
    chunker_from_curve,
    circle_curve,
    laplace2d_kernel,
)


def circle_ring(ncircles: int, nch: int, k: int) -> List[Chunker]:
    """Return ``ncircles`` circles of radius 0.3 evenly spaced on a ring of radius 3."""

    chunkers: List[Chunker] = []
    for i in range(ncircles):
        angle = 2.0 * np.pi * i / ncircles
        center = (3.0 * np.cos(angle), 3.0 * np.sin(angle))
        chunkers.append(chunker_from_curve(circle_curve(0.3, center), nch=nch, k=k))
    return chunkers


def bench(ncircles: int, nch: int, k: int, repeats: int) -> None:
    """Time both smooth strategies on the same geometry and density."""

    chunkers = circle_ring(ncircles, nch, k)
    kern = laplace2d_kernel("d")

    merged = ChunkerOperator(chunkers, kern)
    pairwise = ChunkerOperator(chunkers, [[kern] * ncircles] * ncircles)
    dens = np.random.default_rng(0).standard_normal(merged.shape[1])

    t0 = perf_counter()
    for _ in range(repeats):
        u_merged = merged.matvec(dens)
    t_merged = (perf_counter() - t0) * 1e3 / repeats

    t0 = perf_counter()
    for _ in range(repeats):
        u_pairwise = pairwise.matvec(dens)
    t_pairwise = (perf_counter() - t0) * 1e3 / repeats

    diff = float(np.max(np.abs(u_merged - u_pairwise)))
    logger.info(
        f"ncircles={ncircles:3d} npt={merged.shape[0]:6d} | merged: {t_merged:8.2f} ms | "
        f"pairwise: {t_pairwise:8.2f} ms | max diff={diff:.2e}\n"
    )


def main() -> None:
    warnings.simplefilter("ignore", AccelerationUnavailableWarning)
    nch, k, repeats = 8, 16, 3
    logger.info(f"Using nch={nch}, k={k}, repeats={repeats}\n")
    for ncircles in (1, 2, 4, 8):
        bench(ncircles, nch, k, repeats)


if __name__ == "__main__":
    main()
