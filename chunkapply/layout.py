"""Operator-dimension probing and block layout over multiple chunkers.

Logging
-------
:func:`probe_operator_dims` and :func:`build_block_layout` emit debug records
through :mod:`loguru` with the probed shapes and timings; the FMM advisory is
raised as an :class:`~chunkapply.errors.AccelerationUnavailableWarning` and
logged at warning level.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from time import perf_counter
from typing import Sequence

import numpy as np
from loguru import logger

from .chunkers import Chunker
from .errors import AccelerationUnavailableWarning, ShapeMismatchError
from .kernels import KernelDescriptor

# Fixed probe nodes: second node on the target side, first on the source side.
_TARGET_PROBE_NODE = 1
_SOURCE_PROBE_NODE = 0

ACCELERATION_ADVISORY = (
    "chunkermatapply: this routine only recommended if fmm is defined for all "
    "relevant kernels. Consider forming the dense matrix or using a fast direct "
    "solver instead"
)


@dataclass(frozen=True)
class DimensionProbe:
    """Probed ``(rows, cols)`` per component pair and FMM coverage."""

    opdims: np.ndarray
    fmm_all: bool

    def pair(self, i: int, j: int) -> tuple[int, int]:
        """Return ``(rows, cols)`` for target ``i`` and source ``j``."""

        return int(self.opdims[i, j, 0]), int(self.opdims[i, j, 1])


@dataclass(frozen=True)
class BlockLayout:
    """Row/column offset tables (0-based, length ``ncomp + 1``)."""

    row_offsets: np.ndarray
    col_offsets: np.ndarray

    @property
    def ncomp(self) -> int:
        return int(self.row_offsets.size - 1)

    @property
    def nrows(self) -> int:
        return int(self.row_offsets[-1])

    @property
    def ncols(self) -> int:
        return int(self.col_offsets[-1])

    @property
    def shape(self) -> tuple[int, int]:
        return self.nrows, self.ncols

    def row_slice(self, i: int) -> slice:
        return slice(int(self.row_offsets[i]), int(self.row_offsets[i + 1]))

    def col_slice(self, j: int) -> slice:
        return slice(int(self.col_offsets[j]), int(self.col_offsets[j + 1]))


def probe_operator_dims(
    components: Sequence[Chunker], kernels: KernelDescriptor
) -> DimensionProbe:
    """Evaluate each kernel pair once to find its output block shape.

    For target ``i`` the sample is node 1 of chunker ``i``; for source ``j``
    it is node 0 of chunker ``j``. ``fmm_all`` is True only when every kernel
    used has an FMM routine. A kernel that declares ``opdims`` must return a
    block of exactly that shape.
    """

    ncomp = len(components)
    kernels.check_size(ncomp)
    t0 = perf_counter()

    opdims = np.zeros((ncomp, ncomp, 2), dtype=int)
    fmm_all = True
    for i in range(ncomp):
        targinfo = components[i].point(_TARGET_PROBE_NODE)
        for j in range(ncomp):
            srcinfo = components[j].point(_SOURCE_PROBE_NODE)
            kernel = kernels.kernel_for(i, j)
            block = kernel.evaluate(srcinfo, targinfo)
            if block.ndim != 2:
                raise ShapeMismatchError(
                    f"Kernel ({i}, {j}) returned a block of ndim {block.ndim} for one point pair."
                )
            if kernel.opdims is not None and tuple(block.shape) != kernel.opdims:
                raise ShapeMismatchError(
                    f"Kernel ({i}, {j}) declares operator dimensions {kernel.opdims} but "
                    f"returned a {tuple(block.shape)} block for one point pair."
                )
            opdims[i, j] = block.shape
            fmm_all = fmm_all and kernel.has_fmm

    dt = perf_counter() - t0
    logger.debug(
        f"probe_operator_dims: ncomp={ncomp} | single={kernels.is_single} | "
        f"opdims[0,0]={tuple(int(v) for v in opdims[0, 0])} | fmm_all={fmm_all} | {dt*1e3:.2f} ms"
    )
    return DimensionProbe(opdims=opdims, fmm_all=fmm_all)


def build_block_layout(opdims: np.ndarray, npts: Sequence[int]) -> BlockLayout:
    """Return offsets ``offset[i+1] = offset[i] + npts[i] * width[i]``.

    Column widths come from pairs ``(0, j)`` and row heights from ``(i, 0)``.
    A pair that disagrees with those representatives raises
    :class:`ShapeMismatchError`.
    """

    opdims = np.asarray(opdims, dtype=int)
    npts = np.asarray(npts, dtype=int).reshape(-1)
    ncomp = npts.size
    if opdims.shape != (ncomp, ncomp, 2):
        raise ShapeMismatchError(
            f"Operator dimension table has shape {opdims.shape}, expected ({ncomp}, {ncomp}, 2)."
        )

    row_dims = opdims[:, 0, 0]
    col_dims = opdims[0, :, 1]
    for i in range(ncomp):
        for j in range(ncomp):
            rows, cols = int(opdims[i, j, 0]), int(opdims[i, j, 1])
            if rows != row_dims[i] or cols != col_dims[j]:
                raise ShapeMismatchError(
                    f"Kernel ({i}, {j}) has operator dimensions ({rows}, {cols}) but chunker {i} "
                    f"expects {int(row_dims[i])} rows and chunker {j} expects {int(col_dims[j])} columns."
                )

    row_offsets = np.zeros(ncomp + 1, dtype=int)
    col_offsets = np.zeros(ncomp + 1, dtype=int)
    row_offsets[1:] = np.cumsum(npts * row_dims)
    col_offsets[1:] = np.cumsum(npts * col_dims)

    logger.debug(
        f"build_block_layout: ncomp={ncomp} | nrows={int(row_offsets[-1])} | "
        f"ncols={int(col_offsets[-1])}"
    )
    return BlockLayout(row_offsets=row_offsets, col_offsets=col_offsets)


def check_acceleration(probe: DimensionProbe) -> bool:
    """Warn when some kernel pair in use lacks an FMM; never raises.

    Returns ``probe.fmm_all``.
    """

    if not probe.fmm_all:
        logger.warning(ACCELERATION_ADVISORY)
        warnings.warn(ACCELERATION_ADVISORY, AccelerationUnavailableWarning, stacklevel=3)
    return probe.fmm_all


__all__ = [
    "ACCELERATION_ADVISORY",
    "BlockLayout",
    "DimensionProbe",
    "build_block_layout",
    "check_acceleration",
    "probe_operator_dims",
]
