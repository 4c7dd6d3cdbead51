"""Matrix-free boundary-integral operator application on panel discretizations.

The :mod:`chunkapply` package is organised into focused submodules:

``chunkapply.chunkers``
    Panel discretizations of curves (:class:`Chunker`), chunk graphs and
    the ``components()`` capability used to list geometric components.
``chunkapply.kernels``
    Kernel objects, the single/per-pair kernel descriptor and a few
    built-in kernels.
``chunkapply.layout``
    Operator-dimension probing, block layout and the FMM advisory.
``chunkapply.corrections``
    Correction-matrix builders and their application.
``chunkapply.smooth``
    Smooth (far-field) quadrature with direct summation or kernel FMMs.
``chunkapply.apply``
    :func:`chunkermatapply` and the reusable :class:`ChunkerOperator`.

The package re-exports the most commonly used symbols."""

from __future__ import annotations

from .errors import (
    AccelerationUnavailableWarning,
    ChunkApplyError,
    InputTypeError,
    ShapeMismatchError,
    UnsupportedQuadratureError,
)
from .chunkers import (
    ChunkGraph,
    Chunker,
    ChunkerList,
    ComponentSource,
    PointInfo,
    as_components,
    chunker_from_curve,
    circle_curve,
    merge_chunkers,
)
from .kernels import (
    Kernel,
    KernelMatrix,
    SingleKernel,
    SingularityKind,
    as_kernel_descriptor,
    constant_kernel,
    laplace2d_kernel,
    tensor_kernel,
    zero_kernel,
)
from .options import AccelerationPolicy, ApplyOptions
from .layout import (
    BlockLayout,
    DimensionProbe,
    build_block_layout,
    check_acceleration,
    probe_operator_dims,
)
from .corrections import (
    CorrectionBuilder,
    NativeCorrectionBuilder,
    apply_corrections,
    ensure_correction_matrix,
)
from .smooth import DirectSmoothEvaluator, SmoothEvaluator
from .apply import (
    ChunkerOperator,
    MergedSmoothStrategy,
    PairwiseSmoothStrategy,
    chunkermatapply,
    select_strategy,
)

__all__ = [
    "AccelerationPolicy",
    "AccelerationUnavailableWarning",
    "ApplyOptions",
    "BlockLayout",
    "ChunkApplyError",
    "ChunkGraph",
    "Chunker",
    "ChunkerList",
    "ChunkerOperator",
    "ComponentSource",
    "CorrectionBuilder",
    "DimensionProbe",
    "DirectSmoothEvaluator",
    "InputTypeError",
    "Kernel",
    "KernelMatrix",
    "MergedSmoothStrategy",
    "NativeCorrectionBuilder",
    "PairwiseSmoothStrategy",
    "PointInfo",
    "ShapeMismatchError",
    "SingleKernel",
    "SingularityKind",
    "SmoothEvaluator",
    "UnsupportedQuadratureError",
    "apply_corrections",
    "as_components",
    "as_kernel_descriptor",
    "build_block_layout",
    "check_acceleration",
    "chunker_from_curve",
    "chunkermatapply",
    "circle_curve",
    "constant_kernel",
    "ensure_correction_matrix",
    "laplace2d_kernel",
    "merge_chunkers",
    "probe_operator_dims",
    "select_strategy",
    "tensor_kernel",
    "zero_kernel",
]
