"""Smooth (far-field) quadrature between chunkers.

The smooth rule integrates the kernel against the density with the plain
Gauss-Legendre weights of the source chunker. Coincident source/target
pairs are left out; their contribution belongs to the correction matrix.
"""

from __future__ import annotations

from time import perf_counter
from typing import Any, Optional, Protocol

import numpy as np
from loguru import logger

from .chunkers import Chunker, PointInfo
from .errors import ShapeMismatchError
from .kernels import Kernel
from .options import AccelerationPolicy, ApplyOptions

DEFAULT_BLOCK_SIZE = 1000


class SmoothEvaluator(Protocol):
    """Smooth quadrature contribution of one source chunker at a set of targets."""

    def evaluate(
        self,
        source: Chunker,
        kernel: Kernel,
        opdims: tuple[int, int],
        dens: np.ndarray,
        targinfo: PointInfo,
        workspace: Optional[Any],
        options: ApplyOptions,
    ) -> np.ndarray:
        ...


def weighted_density(source: Chunker, dens: np.ndarray, cols: int) -> np.ndarray:
    """Multiply each point's ``cols`` density entries by its smooth weight."""

    dens = np.asarray(dens).reshape(-1)
    if dens.size != source.npt * cols:
        raise ShapeMismatchError(
            f"Density has length {dens.size}, expected {source.npt * cols} "
            f"({source.npt} points x {cols} columns)."
        )
    return (dens.reshape(source.npt, cols) * source.weights[:, None]).reshape(-1)


def coincident_mask(src: PointInfo, targ: PointInfo) -> np.ndarray:
    """Return the ``(targ.npt, src.npt)`` mask of exactly coincident points."""

    return np.all(targ.r[:, :, None] == src.r[:, None, :], axis=0)


class DirectSmoothEvaluator:
    """Direct summation, switching to the kernel's FMM when the policy allows.

    Parameters
    ----------
    block_size : int, default 1000
        Number of targets evaluated per dense kernel block.
    """

    def __init__(self, *, block_size: int = DEFAULT_BLOCK_SIZE) -> None:
        if block_size < 1:
            raise ValueError("block_size must be at least 1.")
        self.block_size = int(block_size)

    @staticmethod
    def use_fmm(kernel: Kernel, nsrc: int, ntarg: int, options: ApplyOptions) -> bool:
        """Return whether the FMM path should be taken for this evaluation."""

        if not kernel.has_fmm or options.accel is AccelerationPolicy.OFF:
            return False
        if options.accel is AccelerationPolicy.ON:
            return True
        return nsrc * ntarg >= options.fmm_threshold

    def evaluate(
        self,
        source: Chunker,
        kernel: Kernel,
        opdims: tuple[int, int],
        dens: np.ndarray,
        targinfo: PointInfo,
        workspace: Optional[Any],
        options: ApplyOptions,
    ) -> np.ndarray:
        """Return the smooth contribution, length ``targinfo.npt * opdims[0]``."""

        rows, cols = (int(v) for v in opdims)
        srcinfo = source.point_info()
        weighted = weighted_density(source, dens, cols)
        t0 = perf_counter()

        if self.use_fmm(kernel, srcinfo.npt, targinfo.npt, options):
            path = "fmm"
            out = kernel.accelerated_evaluate(options.eps, srcinfo, targinfo, weighted)
        else:
            path = "direct"
            pieces = []
            for start in range(0, targinfo.npt, self.block_size):
                stop = min(start + self.block_size, targinfo.npt)
                block = targinfo.slice(start, stop)
                with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
                    mat = kernel.evaluate(srcinfo, block)
                expected = ((stop - start) * rows, srcinfo.npt * cols)
                if mat.shape != expected:
                    raise ShapeMismatchError(
                        f"Kernel {kernel.name or '<anonymous>'} returned a block of shape "
                        f"{mat.shape}, expected {expected}."
                    )
                mask = coincident_mask(srcinfo, block)
                if mask.any():
                    mat = np.where(np.kron(mask, np.ones((rows, cols), dtype=bool)), 0.0, mat)
                pieces.append(mat @ weighted)
            out = np.concatenate(pieces) if pieces else np.zeros(0, dtype=weighted.dtype)

        if out.size != targinfo.npt * rows:
            raise ShapeMismatchError(
                f"Smooth evaluation returned {out.size} values, expected {targinfo.npt * rows}."
            )
        dt = perf_counter() - t0
        logger.debug(
            f"smooth: path={path} | kernel={kernel.name or '<anonymous>'} | "
            f"nsrc={srcinfo.npt} ntarg={targinfo.npt} | opdims=({rows}, {cols}) | {dt*1e3:.2f} ms"
        )
        return out


__all__ = [
    "DEFAULT_BLOCK_SIZE",
    "DirectSmoothEvaluator",
    "SmoothEvaluator",
    "coincident_mask",
    "weighted_density",
]
