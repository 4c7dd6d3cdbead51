#!/usr/bin/env python3
"""Double-layer apply demo with logging

This script applies the Laplace double layer to a constant density on a few
circle configurations and compares the result with the Gauss-law value 1/2.
It configures the loguru logger at DEBUG level so that internal debug logs
from chunkapply.layout, chunkapply.smooth and chunkapply.apply are visible.

Usage
-----
Run directly:
    python examples/circle_double_layer_demo.py

You can tweak parameters below (nch, k, radii, accel policy).
"""
from __future__ import annotations

import warnings
from time import perf_counter
from typing import List, Tuple

import numpy as np
from loguru import logger

import sys
from pathlib import Path

# Ensure local repo import when running from source tree
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from chunkapply import (
    AccelerationUnavailableWarning,
    ApplyOptions,
    ChunkGraph,
    as_components,
    chunker_from_curve,
    chunkermatapply,
    circle_curve,
    laplace2d_kernel,
)


def make_geometries(nch: int = 12, k: int = 16) -> List[Tuple[str, object]]:
    geometries: List[Tuple[str, object]] = []

    geometries.append(("single_circle", chunker_from_curve(circle_curve(1.0), nch=nch, k=k)))

    # Two well separated circles as a flat list
    geometries.append(
        (
            "two_circles",
            [
                chunker_from_curve(circle_curve(1.0), nch=nch, k=k),
                chunker_from_curve(circle_curve(0.5, (3.0, 0.0)), nch=nch, k=k),
            ],
        )
    )

    # Three circles wrapped in a chunk graph (edges only, no vertices)
    geometries.append(
        (
            "graph_of_three",
            ChunkGraph(
                tuple(
                    chunker_from_curve(circle_curve(0.4, (2.0 * i, 0.0)), nch=nch, k=k)
                    for i in range(3)
                )
            ),
        )
    )

    return geometries


def main() -> None:
    # Configure loguru at DEBUG level with a simple format
    logger.remove()
    logger.add(lambda msg: print(msg, end=""), level="DEBUG", format="<lvl>{level}</lvl> | {name}:{function}:{line} | {message}")

    options = ApplyOptions(accel="auto")
    kern = laplace2d_kernel("d")

    print("\n== Double layer apply demo ==\n")
    for name, geometry in make_geometries():
        chunkers = as_components(geometry)
        npt = sum(c.npt for c in chunkers)
        dens = np.ones(npt)

        t0 = perf_counter()
        with warnings.catch_warnings():
            # the Laplace kernels here ship without an FMM
            warnings.simplefilter("ignore", AccelerationUnavailableWarning)
            u = chunkermatapply(geometry, kern, dens, options=options)
        dt = perf_counter() - t0

        err = float(np.max(np.abs(u - 0.5)))
        print(f"case={name:>16s} | ncomp={len(chunkers)} | npt={npt:5d} | max|u - 1/2|={err:.3e} | time={dt*1e3:.2f} ms")


if __name__ == "__main__":
    main()
