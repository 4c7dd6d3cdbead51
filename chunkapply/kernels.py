"""Integral kernels and the kernel descriptor consumed by the operator apply.

A :class:`Kernel` wraps an evaluation callable ``eval_fn(src, targ)`` that
returns the dense block of kernel values between two :class:`PointInfo`
records. The block has shape ``(targ.npt * rows, src.npt * cols)`` with the
``rows x cols`` sub-block of each target/source pair stored contiguously
(point-major). Optionally a kernel carries an accelerated evaluation
(``fmm_fn``) and a singularity classification.

Operators accept a single kernel or a square matrix of kernels indexed by
``(target component, source component)``; :func:`as_kernel_descriptor`
normalises both into a :class:`SingleKernel` or :class:`KernelMatrix`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ClassVar, Optional, Sequence, Union

import numpy as np

from .chunkers import PointInfo
from .errors import InputTypeError, ShapeMismatchError

EvalFunction = Callable[[PointInfo, PointInfo], Any]
FMMFunction = Callable[[float, PointInfo, PointInfo, np.ndarray], Any]

_KERNEL_TYPE_MESSAGE = "Second input is not a kernel object, function handle, or kernel matrix"


class SingularityKind(str, Enum):
    """Strength of a kernel's on-surface singularity."""

    SMOOTH = "smooth"
    LOG = "log"
    PV = "pv"
    HS = "hs"

    @classmethod
    def coerce(cls, value: Union["SingularityKind", str]) -> "SingularityKind":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        aliases = {
            "log-singular": "log",
            "principal-value": "pv",
            "hypersingular": "hs",
        }
        return cls(aliases.get(key, key))


@dataclass(frozen=True, eq=False)
class Kernel:
    """Kernel evaluation routine plus optional FMM and singularity metadata.

    ``eval_fn`` should return a 2-D block. A 1-D return is read as a single
    row, so for one target it is a ``1 x m`` block; vector kernels with
    ``rows > 1`` must return the 2-D shape. 1-D returns for several targets
    are rejected.
    """

    eval_fn: EvalFunction
    fmm_fn: Optional[FMMFunction] = None
    sing: Optional[SingularityKind] = None
    opdims: Optional[tuple[int, int]] = None
    name: str = ""

    def __post_init__(self) -> None:
        if not callable(self.eval_fn):
            raise InputTypeError("Kernel.eval_fn must be callable.")
        if self.fmm_fn is not None and not callable(self.fmm_fn):
            raise InputTypeError("Kernel.fmm_fn must be callable or None.")
        if self.sing is not None:
            object.__setattr__(self, "sing", SingularityKind.coerce(self.sing))
        if self.opdims is not None:
            rows, cols = (int(v) for v in self.opdims)
            object.__setattr__(self, "opdims", (rows, cols))

    @property
    def has_fmm(self) -> bool:
        return self.fmm_fn is not None

    def singularity(self, default: SingularityKind) -> SingularityKind:
        """Return the kernel's own classification, or ``default`` when unset."""

        return self.sing if self.sing is not None else SingularityKind.coerce(default)

    def evaluate(self, src: PointInfo, targ: PointInfo) -> np.ndarray:
        """Return the ``(targ.npt * rows, src.npt * cols)`` block of kernel values."""

        values = np.asarray(self.eval_fn(src, targ))
        if values.ndim == 1 and targ.npt > 1:
            raise ShapeMismatchError(
                f"Kernel {self.name or '<anonymous>'} returned a 1-D array for {targ.npt} targets; "
                "return the 2-D (targ.npt * rows, src.npt * cols) block."
            )
        return np.atleast_2d(values)

    def accelerated_evaluate(
        self, eps: float, src: PointInfo, targ: PointInfo, density: np.ndarray
    ) -> np.ndarray:
        """Apply the kernel to ``density`` with the kernel's FMM.

        ``density`` already includes the source quadrature weights. The FMM
        must leave out coincident source/target pairs.
        """

        if self.fmm_fn is None:
            raise ValueError(f"Kernel {self.name or '<anonymous>'} has no FMM routine.")
        return np.asarray(self.fmm_fn(eps, src, targ, density)).reshape(-1)


def _as_kernel(item: Any, where: str = "") -> Kernel:
    if isinstance(item, Kernel):
        return item
    if callable(item):
        return Kernel(item)
    raise InputTypeError(f"{_KERNEL_TYPE_MESSAGE}{where}.")


@dataclass(frozen=True)
class SingleKernel:
    """One kernel shared by every (target, source) component pair."""

    kernel: Kernel
    is_single: ClassVar[bool] = True

    def kernel_for(self, i: int, j: int) -> Kernel:
        return self.kernel

    def check_size(self, ncomp: int) -> None:
        return None


@dataclass(frozen=True)
class KernelMatrix:
    """Kernels indexed by ``(target component, source component)``."""

    kernels: tuple[tuple[Kernel, ...], ...]
    is_single: ClassVar[bool] = False

    @property
    def shape(self) -> tuple[int, int]:
        return len(self.kernels), len(self.kernels[0])

    def kernel_for(self, i: int, j: int) -> Kernel:
        return self.kernels[i][j]

    def check_size(self, ncomp: int) -> None:
        """Raise unless the matrix is ``ncomp x ncomp``."""

        if self.shape != (ncomp, ncomp):
            raise ShapeMismatchError(
                f"Kernel matrix has shape {self.shape}, expected ({ncomp}, {ncomp}) "
                "to match the number of chunkers."
            )


KernelDescriptor = Union[SingleKernel, KernelMatrix]


def as_kernel_descriptor(kern: Any) -> KernelDescriptor:
    """Normalise ``kern`` into a :class:`SingleKernel` or :class:`KernelMatrix`.

    ``kern`` may be a :class:`Kernel`, a callable ``f(src, targ)``, or a
    rectangular nested sequence (or 2-D object array) of those. A ``1 x 1``
    matrix is treated as a single kernel.
    """

    if isinstance(kern, (SingleKernel, KernelMatrix)):
        return kern
    if isinstance(kern, Kernel) or callable(kern):
        return SingleKernel(_as_kernel(kern))

    if isinstance(kern, np.ndarray):
        if kern.ndim != 2:
            raise InputTypeError(f"{_KERNEL_TYPE_MESSAGE} (array of ndim {kern.ndim}).")
        rows: Sequence[Sequence[Any]] = [list(row) for row in kern]
    elif isinstance(kern, (list, tuple)):
        rows = [row if isinstance(row, (list, tuple)) else [row] for row in kern]
    else:
        raise InputTypeError(f"{_KERNEL_TYPE_MESSAGE} (got {type(kern).__name__}).")

    if not rows or not rows[0]:
        raise InputTypeError(f"{_KERNEL_TYPE_MESSAGE} (empty kernel matrix).")
    width = len(rows[0])
    if any(len(row) != width for row in rows):
        raise InputTypeError(f"{_KERNEL_TYPE_MESSAGE} (ragged kernel matrix).")

    matrix = tuple(
        tuple(_as_kernel(item, f" (entry {i}, {j})") for j, item in enumerate(row))
        for i, row in enumerate(rows)
    )
    if len(matrix) == 1 and width == 1:
        return SingleKernel(matrix[0][0])
    return KernelMatrix(matrix)


def zero_kernel(opdims: tuple[int, int] = (1, 1)) -> Kernel:
    """Return the kernel that vanishes identically, with a trivial fast path."""

    rows, cols = (int(v) for v in opdims)

    def eval_fn(src: PointInfo, targ: PointInfo) -> np.ndarray:
        return np.zeros((targ.npt * rows, src.npt * cols))

    def fmm_fn(eps: float, src: PointInfo, targ: PointInfo, density: np.ndarray) -> np.ndarray:
        return np.zeros(targ.npt * rows, dtype=np.result_type(density, float))

    return Kernel(eval_fn, fmm_fn, SingularityKind.SMOOTH, (rows, cols), "zero")


def constant_kernel(value: complex, opdims: tuple[int, int] = (1, 1)) -> Kernel:
    """Return the smooth kernel equal to ``value`` for every point pair."""

    rows, cols = (int(v) for v in opdims)

    def eval_fn(src: PointInfo, targ: PointInfo) -> np.ndarray:
        return np.full((targ.npt * rows, src.npt * cols), value)

    return Kernel(eval_fn, None, SingularityKind.SMOOTH, (rows, cols), "constant")


def _curvature(info: PointInfo) -> np.ndarray:
    d, d2 = info.d, info.d2
    speed = np.sqrt(d[0] * d[0] + d[1] * d[1])
    return (d[0] * d2[1] - d[1] * d2[0]) / (speed ** 3)


def laplace2d_kernel(kind: str = "s") -> Kernel:
    """Return a two-dimensional Laplace layer-potential kernel.

    ``"s"``  single layer ``-1/(2 pi) log|x - y|`` (log singular).
    ``"d"``  double layer ``-1/(2 pi) (x - y).n(y) / |x - y|^2``; smooth on
             smooth curves with self limit ``kappa(y) / (4 pi)``.
    ``"sp"`` normal derivative of the single layer at the target,
             ``-1/(2 pi) (x - y).n(x) / |x - y|^2``, self limit ``-kappa(x) / (4 pi)``.
    """

    key = str(kind).strip().lower()
    if key not in {"s", "d", "sp"}:
        raise ValueError(f"Unknown Laplace kernel type '{kind}'.")

    def eval_fn(src: PointInfo, targ: PointInfo) -> np.ndarray:
        rx = targ.r[0][:, None] - src.r[0][None, :]
        ry = targ.r[1][:, None] - src.r[1][None, :]
        dist2 = rx * rx + ry * ry
        coincident = dist2 == 0.0
        with np.errstate(divide="ignore", invalid="ignore"):
            if key == "s":
                return -np.log(dist2) / (4.0 * np.pi)
            if key == "d":
                dot = rx * src.n[0][None, :] + ry * src.n[1][None, :]
                limit = np.broadcast_to(_curvature(src)[None, :] / (4.0 * np.pi), dist2.shape)
            else:
                dot = rx * targ.n[0][:, None] + ry * targ.n[1][:, None]
                limit = np.broadcast_to(-_curvature(targ)[:, None] / (4.0 * np.pi), dist2.shape)
            out = -dot / (2.0 * np.pi * dist2)
        return np.where(coincident, limit, out)

    sing = SingularityKind.LOG if key == "s" else SingularityKind.SMOOTH
    return Kernel(eval_fn, None, sing, (1, 1), f"laplace2d:{key}")


def tensor_kernel(kernel: Kernel, block: np.ndarray) -> Kernel:
    """Return ``kernel`` tensored with a constant ``block`` (vector-valued kernel)."""

    block = np.atleast_2d(np.asarray(block))
    base = _as_kernel(kernel)

    def eval_fn(src: PointInfo, targ: PointInfo) -> np.ndarray:
        return np.kron(base.evaluate(src, targ), block)

    opdims = None
    if base.opdims is not None:
        opdims = (base.opdims[0] * block.shape[0], base.opdims[1] * block.shape[1])
    return Kernel(eval_fn, None, base.sing, opdims, f"{base.name or 'kernel'}(x){block.shape}")


__all__ = [
    "EvalFunction",
    "FMMFunction",
    "Kernel",
    "KernelDescriptor",
    "KernelMatrix",
    "SingleKernel",
    "SingularityKind",
    "as_kernel_descriptor",
    "constant_kernel",
    "laplace2d_kernel",
    "tensor_kernel",
    "zero_kernel",
]
