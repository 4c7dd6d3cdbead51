"""Near-field/self correction matrices and their application.

A correction matrix ``C`` completes the smooth rule: the operator apply is
``u = C @ dens + smooth(dens)``. Builders implementing
:class:`CorrectionBuilder` produce ``C`` for a geometry and kernel; the
bundled :class:`NativeCorrectionBuilder` covers the ``"native"`` quadrature
for smooth kernels. Generalized Gaussian and RCIP corrections are expected
from an external builder with the same interface.
"""

from __future__ import annotations

from dataclasses import replace
from time import perf_counter
from typing import Any, Optional, Protocol, Sequence

import numpy as np
import scipy.sparse as sps
from loguru import logger

from .chunkers import Chunker, ChunkGraph, as_components
from .errors import ShapeMismatchError, UnsupportedQuadratureError
from .kernels import KernelDescriptor, SingularityKind, as_kernel_descriptor
from .layout import BlockLayout, DimensionProbe, build_block_layout, probe_operator_dims
from .options import ApplyOptions, normalize_options


class CorrectionBuilder(Protocol):
    """Factory for correction matrices."""

    def build(self, geometry: Any, kernels: KernelDescriptor, options: ApplyOptions) -> Any:
        ...


def l2_scaling(
    components: Sequence[Chunker], probe: DimensionProbe
) -> tuple[np.ndarray, np.ndarray]:
    """Return the row and column factors ``sqrt(w)`` laid out like the operator."""

    rows = [
        np.repeat(np.sqrt(c.weights), probe.pair(i, 0)[0]) for i, c in enumerate(components)
    ]
    cols = [
        np.repeat(np.sqrt(c.weights), probe.pair(0, j)[1]) for j, c in enumerate(components)
    ]
    return np.concatenate(rows), np.concatenate(cols)


class NativeCorrectionBuilder:
    """Corrections for the plain (``"native"``) Gauss-Legendre rule.

    With the native rule the smooth quadrature is already the full rule
    except for the coincident source/target term, which the smooth evaluator
    skips. The correction therefore is block diagonal with entries
    ``K(x_p, x_p) w_p``; kernels must be smooth and return their finite self
    limit at coincident points. Kernels without a classification are treated
    as smooth (``options.sing`` is not consulted); those declaring a log, pv
    or hs singularity are rejected.
    """

    quad_name = "native"

    def build(self, geometry: Any, kernels: Any, options: Optional[ApplyOptions] = None) -> sps.csr_matrix:
        options = normalize_options(options)
        if options.quad != self.quad_name:
            raise UnsupportedQuadratureError(
                f"NativeCorrectionBuilder cannot build '{options.quad}' corrections; "
                "supply a correction matrix or a builder for that quadrature."
            )
        components = as_components(geometry)
        kernels = as_kernel_descriptor(kernels)
        if options.adaptive_correction:
            logger.debug("native corrections: adaptive_correction has no effect for the native rule")
        if isinstance(geometry, ChunkGraph) and options.rcip:
            logger.debug("native corrections: rcip corner corrections are not applied by this builder")

        t0 = perf_counter()
        probe = probe_operator_dims(components, kernels)
        layout = build_block_layout(probe.opdims, [c.npt for c in components])

        rows_idx, cols_idx, values = [], [], []
        for i, chunker in enumerate(components):
            kernel = kernels.kernel_for(i, i)
            # unclassified kernels are taken as smooth by the native rule
            sing = kernel.singularity(SingularityKind.SMOOTH)
            if sing is not SingularityKind.SMOOTH:
                raise UnsupportedQuadratureError(
                    f"Kernel ({i}, {i}) is '{sing.value}' singular; the native rule only "
                    "handles smooth kernels."
                )
            r_i, c_i, v_i = self._self_terms(chunker, kernel, probe.pair(i, i))
            rows_idx.append(r_i + layout.row_offsets[i])
            cols_idx.append(c_i + layout.col_offsets[i])
            values.append(v_i)

        cormat = sps.coo_matrix(
            (np.concatenate(values), (np.concatenate(rows_idx), np.concatenate(cols_idx))),
            shape=layout.shape,
        ).tocsr()
        if options.l2scale:
            row_scale, col_scale = l2_scaling(components, probe)
            cormat = (sps.diags(row_scale) @ cormat @ sps.diags(1.0 / col_scale)).tocsr()

        dt = perf_counter() - t0
        logger.debug(
            f"native corrections: ncomp={len(components)} | shape={layout.shape} | "
            f"nnz={cormat.nnz} | l2scale={options.l2scale} | {dt*1e3:.2f} ms"
        )
        return cormat

    @staticmethod
    def _self_terms(
        chunker: Chunker, kernel: Any, opdims: tuple[int, int]
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        rows, cols = opdims
        k = chunker.k
        info = chunker.point_info()
        diag = np.arange(k)
        blocks = []
        for panel in range(chunker.nch):
            pinfo = info.slice(panel * k, (panel + 1) * k)
            mat = kernel.evaluate(pinfo, pinfo).reshape(k, rows, k, cols)
            blocks.append(mat[diag, :, diag, :])
        # (npt, rows, cols), one block per node
        self_blocks = np.concatenate(blocks, axis=0) * chunker.weights[:, None, None]

        pts = np.arange(chunker.npt)
        r_idx = pts[:, None, None] * rows + np.arange(rows)[None, :, None]
        c_idx = pts[:, None, None] * cols + np.arange(cols)[None, None, :]
        r_idx, c_idx = np.broadcast_arrays(r_idx, c_idx)
        return r_idx.reshape(-1), c_idx.reshape(-1), self_blocks.reshape(-1)


def ensure_correction_matrix(
    cormat: Optional[Any],
    geometry: Any,
    kernels: KernelDescriptor,
    options: ApplyOptions,
    builder: Optional[CorrectionBuilder] = None,
) -> Any:
    """Return ``cormat``, building corrections-only data when it is ``None``.

    Nothing is cached; callers reusing the matrix across applies keep it.
    """

    if cormat is not None:
        return cormat
    builder = NativeCorrectionBuilder() if builder is None else builder
    logger.debug(f"corrections: building with {type(builder).__name__} (quad={options.quad})")
    return builder.build(geometry, kernels, replace(options, corrections=True))


def apply_corrections(cormat: Any, dens: np.ndarray, layout: BlockLayout) -> np.ndarray:
    """Return ``cormat @ dens`` after checking ``cormat`` against ``layout``."""

    shape = tuple(int(v) for v in getattr(cormat, "shape", ()))
    if shape != layout.shape:
        raise ShapeMismatchError(
            f"Correction matrix has shape {shape}, expected {layout.shape}."
        )
    return np.asarray(cormat @ dens).reshape(-1)


__all__ = [
    "CorrectionBuilder",
    "NativeCorrectionBuilder",
    "apply_corrections",
    "ensure_correction_matrix",
    "l2_scaling",
]
