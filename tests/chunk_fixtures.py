"""Shared geometry, kernels and evaluators for the chunkapply tests."""

from __future__ import annotations

from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from chunkapply import Chunker, Kernel, PointInfo, SingularityKind, chunker_from_curve, circle_curve


def circle_chunker(
    radius: float = 1.0,
    center: Sequence[float] = (0.0, 0.0),
    nch: int = 8,
    k: int = 16,
) -> Chunker:
    """Return a counter-clockwise circle discretized on ``nch`` panels."""

    return chunker_from_curve(circle_curve(radius, center), nch=nch, k=k)


def segment_chunker(offset: float = 0.0, nch: int = 2, k: int = 2) -> Chunker:
    """Return a horizontal segment ``[offset, offset + 1] x {offset}``."""

    def curve(t: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        r = np.stack((offset + t, np.full_like(t, offset)))
        d = np.stack((np.ones_like(t), np.zeros_like(t)))
        d2 = np.zeros((2, t.size))
        return r, d, d2

    return chunker_from_curve(curve, nch=nch, k=k, interval=(0.0, 1.0))


def identity_like_kernel() -> Kernel:
    """Kernel equal to 1 for coincident source/target points and 0 otherwise."""

    def eval_fn(src: PointInfo, targ: PointInfo) -> np.ndarray:
        same = np.all(targ.r[:, :, None] == src.r[:, None, :], axis=0)
        return same.astype(float)

    return Kernel(eval_fn, sing=SingularityKind.SMOOTH, name="identity-like")


class SummingEvaluator:
    """Unweighted smooth evaluator: ``K(src, targ) @ dens`` including self terms.

    Records ``(source, targinfo.npt)`` for every call.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[Chunker, int]] = []

    def evaluate(
        self,
        source: Chunker,
        kernel: Kernel,
        opdims: Tuple[int, int],
        dens: np.ndarray,
        targinfo: PointInfo,
        workspace: Optional[Any],
        options: Any,
    ) -> np.ndarray:
        self.calls.append((source, targinfo.npt))
        return kernel.evaluate(source.point_info(), targinfo) @ np.asarray(dens)


class FailingEvaluator:
    """Smooth evaluator that always fails with ``error``."""

    def __init__(self, error: Exception) -> None:
        self.error = error

    def evaluate(self, *args: Any, **kwargs: Any) -> np.ndarray:
        raise self.error


class CountingBuilder:
    """Correction builder wrapper counting ``build`` calls."""

    def __init__(self, inner: Any) -> None:
        self.inner = inner
        self.calls = 0
        self.last_options: Any = None

    def build(self, geometry: Any, kernels: Any, options: Any) -> Any:
        self.calls += 1
        self.last_options = options
        return self.inner.build(geometry, kernels, options)
