"""Gauss-Legendre helpers shared by the chunker constructors."""

from __future__ import annotations

from functools import lru_cache

import numpy as np
import scipy.special as sp


@lru_cache(maxsize=32)
def _legendre_rule(k: int) -> tuple[np.ndarray, np.ndarray]:
    nodes, weights = sp.roots_legendre(k)
    nodes = np.asarray(nodes, dtype=float)
    weights = np.asarray(weights, dtype=float)
    nodes.setflags(write=False)
    weights.setflags(write=False)
    return nodes, weights


def gauss_legendre(k: int) -> tuple[np.ndarray, np.ndarray]:
    """Return the ``k``-point Gauss-Legendre nodes and weights on ``[-1, 1]``."""

    k = int(k)
    if k < 1:
        raise ValueError("The number of Legendre nodes must be positive.")
    return _legendre_rule(k)


def map_to_interval(
    nodes: np.ndarray, a: float, b: float
) -> tuple[np.ndarray, float]:
    """Map ``nodes`` from ``[-1, 1]`` onto ``[a, b]``.

    Returns the mapped nodes and the Jacobian ``(b - a) / 2`` of the affine map.
    """

    half = 0.5 * (float(b) - float(a))
    mid = 0.5 * (float(b) + float(a))
    return mid + half * np.asarray(nodes, dtype=float), half


__all__ = [
    "gauss_legendre",
    "map_to_interval",
]
