"""Matrix-free application of chunker boundary-integral operators.

:func:`chunkermatapply` evaluates ``u = A(kern) @ dens`` as the sum of a
sparse correction product and a smooth quadrature pass. The smooth pass
runs as one of two strategies:

``MergedSmoothStrategy``
    One kernel for every component pair: all chunkers are merged and the
    smooth evaluator is called once over the whole system.
``PairwiseSmoothStrategy``
    A kernel per ``(target, source)`` pair: one smooth evaluation per pair,
    accumulated into the target's output block in index order.

:class:`ChunkerOperator` binds a geometry and kernel, keeps the correction
matrix for repeated applies and exposes a SciPy ``LinearOperator``.
"""

from __future__ import annotations

from time import perf_counter
from typing import Any, Mapping, Optional, Sequence, Union

import numpy as np
from loguru import logger
from scipy.sparse.linalg import LinearOperator

from .chunkers import Chunker, as_components, merge_chunkers
from .corrections import (
    CorrectionBuilder,
    apply_corrections,
    ensure_correction_matrix,
    l2_scaling,
)
from .errors import ShapeMismatchError
from .kernels import KernelDescriptor, as_kernel_descriptor
from .layout import (
    BlockLayout,
    DimensionProbe,
    build_block_layout,
    check_acceleration,
    probe_operator_dims,
)
from .options import ApplyOptions, normalize_options
from .smooth import DirectSmoothEvaluator, SmoothEvaluator

OptionsLike = Union[ApplyOptions, Mapping[str, Any], None]


def _checked(values: Any, expected: int, what: str) -> np.ndarray:
    out = np.asarray(values).reshape(-1)
    if out.size != expected:
        raise ShapeMismatchError(f"{what} returned {out.size} values, expected {expected}.")
    return out


class MergedSmoothStrategy:
    """Single kernel: merge every chunker and evaluate once."""

    name = "merged"

    def apply(
        self,
        layout: BlockLayout,
        components: Sequence[Chunker],
        kernels: KernelDescriptor,
        probe: DimensionProbe,
        dens: np.ndarray,
        options: ApplyOptions,
        evaluator: SmoothEvaluator,
    ) -> np.ndarray:
        merged = merge_chunkers(components)
        contrib = evaluator.evaluate(
            merged,
            kernels.kernel_for(0, 0),
            probe.pair(0, 0),
            dens,
            merged.point_info(),
            None,
            options,
        )
        return _checked(contrib, layout.nrows, "Merged smooth evaluation")


class PairwiseSmoothStrategy:
    """Kernel per pair: evaluate every ``(i, j)`` and sum over ``j`` for target ``i``."""

    name = "pairwise"

    def apply(
        self,
        layout: BlockLayout,
        components: Sequence[Chunker],
        kernels: KernelDescriptor,
        probe: DimensionProbe,
        dens: np.ndarray,
        options: ApplyOptions,
        evaluator: SmoothEvaluator,
    ) -> np.ndarray:
        pieces = []
        for i, target in enumerate(components):
            targinfo = target.point_info()
            rows = layout.row_slice(i)
            acc = np.zeros(rows.stop - rows.start)
            for j, source in enumerate(components):
                contrib = evaluator.evaluate(
                    source,
                    kernels.kernel_for(i, j),
                    probe.pair(i, j),
                    dens[layout.col_slice(j)],
                    targinfo,
                    None,
                    options,
                )
                acc = acc + _checked(
                    contrib, rows.stop - rows.start, f"Smooth evaluation ({i}, {j})"
                )
            pieces.append(acc)
        return np.concatenate(pieces)


def select_strategy(
    kernels: KernelDescriptor, components: Sequence[Chunker]
) -> Union[MergedSmoothStrategy, PairwiseSmoothStrategy]:
    """Pick the smooth strategy once from the kernel variant.

    A single kernel over chunkers that cannot be merged (different panel
    orders) uses the pairwise loop with the same kernel for every pair.
    """

    if kernels.is_single:
        if len({(c.k, c.dim) for c in components}) == 1:
            return MergedSmoothStrategy()
        logger.debug("select_strategy: chunkers differ in panel order; using pairwise loop")
    return PairwiseSmoothStrategy()


def _as_density(dens: Any, layout: BlockLayout) -> np.ndarray:
    """Flatten ``dens`` column-major and check it against the column layout."""

    arr = np.asarray(dens)
    if not np.issubdtype(arr.dtype, np.number):
        raise ShapeMismatchError(f"Density must be numeric, got dtype {arr.dtype}.")
    arr = arr.reshape(-1, order="F")
    if arr.size != layout.ncols:
        raise ShapeMismatchError(
            f"Density has length {arr.size}, expected {layout.ncols} from the column layout."
        )
    return arr


def _apply_prepared(
    components: Sequence[Chunker],
    kernels: KernelDescriptor,
    probe: DimensionProbe,
    layout: BlockLayout,
    dens: np.ndarray,
    cormat: Any,
    options: ApplyOptions,
    evaluator: SmoothEvaluator,
) -> np.ndarray:
    t0 = perf_counter()
    u = apply_corrections(cormat, dens, layout)
    t_cor = perf_counter() - t0

    strategy = select_strategy(kernels, components)
    t1 = perf_counter()
    if options.l2scale:
        row_scale, col_scale = l2_scaling(components, probe)
        smooth = row_scale * strategy.apply(
            layout, components, kernels, probe, dens / col_scale, options, evaluator
        )
    else:
        smooth = strategy.apply(layout, components, kernels, probe, dens, options, evaluator)
    t_smooth = perf_counter() - t1

    logger.debug(
        f"chunkermatapply: strategy={strategy.name} | shape={layout.shape} | "
        f"corrections {t_cor*1e3:.2f} ms | smooth {t_smooth*1e3:.2f} ms"
    )
    return u + smooth


def chunkermatapply(
    geometry: Any,
    kern: Any,
    dens: Any,
    cormat: Optional[Any] = None,
    options: OptionsLike = None,
    *,
    correction_builder: Optional[CorrectionBuilder] = None,
    smooth_evaluator: Optional[SmoothEvaluator] = None,
) -> np.ndarray:
    """Apply the chunker system matrix of ``kern`` to ``dens`` without forming it.

    Parameters
    ----------
    geometry : Chunker, ChunkGraph, ComponentSource or sequence of Chunker
        Boundary discretization; a graph contributes its edge chunkers.
    kern : Kernel, callable or square matrix of those
        A single kernel for all pairs or one per ``(target, source)`` chunker.
    dens : array_like
        Density, point-major within each chunker, chunkers in order.
    cormat : sparse matrix, optional
        Corrections to the smooth rule. Built with ``correction_builder``
        (default :class:`~chunkapply.corrections.NativeCorrectionBuilder`)
        when omitted; keep it yourself to reuse across applies.
    options : ApplyOptions or mapping, optional
        See :class:`~chunkapply.options.ApplyOptions`.
    smooth_evaluator : SmoothEvaluator, optional
        Defaults to :class:`~chunkapply.smooth.DirectSmoothEvaluator`.

    Returns
    -------
    numpy.ndarray
        ``A @ dens``, laid out by the row offsets of the block layout.

    Raises
    ------
    InputTypeError
        ``geometry`` or ``kern`` is not of a supported kind.
    ShapeMismatchError
        ``dens``/``cormat`` do not match the layout, or kernel pairs disagree
        on per-chunker operator dimensions.
    """

    kernels = as_kernel_descriptor(kern)
    components = as_components(geometry)
    options = normalize_options(options)

    probe = probe_operator_dims(components, kernels)
    check_acceleration(probe)
    layout = build_block_layout(probe.opdims, [c.npt for c in components])
    dens = _as_density(dens, layout)

    cormat = ensure_correction_matrix(cormat, geometry, kernels, options, correction_builder)
    evaluator = DirectSmoothEvaluator() if smooth_evaluator is None else smooth_evaluator
    return _apply_prepared(components, kernels, probe, layout, dens, cormat, options, evaluator)


class ChunkerOperator:
    """System matrix of ``kern`` on ``geometry`` as a reusable matrix-free operator.

    The correction matrix is built once at construction (unless supplied)
    and reused by every :meth:`matvec`. Do not mutate the geometry or kernel
    while the operator is in use.
    """

    def __init__(
        self,
        geometry: Any,
        kern: Any,
        options: OptionsLike = None,
        *,
        cormat: Optional[Any] = None,
        correction_builder: Optional[CorrectionBuilder] = None,
        smooth_evaluator: Optional[SmoothEvaluator] = None,
    ) -> None:
        self.geometry = geometry
        self.kernels = as_kernel_descriptor(kern)
        self.components = as_components(geometry)
        self.options = normalize_options(options)
        self.probe = probe_operator_dims(self.components, self.kernels)
        check_acceleration(self.probe)
        self.layout = build_block_layout(self.probe.opdims, [c.npt for c in self.components])
        self.cormat = ensure_correction_matrix(
            cormat, geometry, self.kernels, self.options, correction_builder
        )
        self.smooth_evaluator = (
            DirectSmoothEvaluator() if smooth_evaluator is None else smooth_evaluator
        )

    @property
    def shape(self) -> tuple[int, int]:
        return self.layout.shape

    def matvec(self, dens: Any) -> np.ndarray:
        """Return the operator applied to ``dens``."""

        return _apply_prepared(
            self.components,
            self.kernels,
            self.probe,
            self.layout,
            _as_density(dens, self.layout),
            self.cormat,
            self.options,
            self.smooth_evaluator,
        )

    def as_linear_operator(self, dtype: Any = float) -> LinearOperator:
        """Wrap :meth:`matvec` as a :class:`scipy.sparse.linalg.LinearOperator`."""

        return LinearOperator(self.shape, matvec=self.matvec, dtype=dtype)


__all__ = [
    "ChunkerOperator",
    "MergedSmoothStrategy",
    "PairwiseSmoothStrategy",
    "chunkermatapply",
    "select_strategy",
]
