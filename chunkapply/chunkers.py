"""Panel discretizations of boundary curves ("chunkers") and their containers.

A :class:`Chunker` stores, for every panel and every Gauss-Legendre node on
it, the position ``r``, the first and second derivatives ``d``/``d2`` with
respect to the panel's local parameter on ``[-1, 1]`` and the unit normal
``n``. Arrays have shape ``(dim, k, nch)``; flattened quantities are
panel-major, i.e. node ``a`` of panel ``c`` has global index ``a + k * c``.

Geometry enters the operator apply through the :class:`ComponentSource`
capability: single chunkers, chunk graphs and plain lists of chunkers all
expose ``components()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Protocol, Sequence, Union, runtime_checkable

import numpy as np

from .errors import InputTypeError
from .legendre import gauss_legendre, map_to_interval

CurveFunction = Callable[[np.ndarray], tuple[np.ndarray, np.ndarray, np.ndarray]]


def _as_columns(arr: np.ndarray, name: str) -> np.ndarray:
    out = np.asarray(arr, dtype=float)
    if out.ndim == 1:
        out = out.reshape(-1, 1)
    if out.ndim != 2:
        raise ValueError(f"PointInfo.{name} must have shape (dim, m), got {out.shape}.")
    return out


def _flatten_nodes(arr: np.ndarray) -> np.ndarray:
    """Flatten ``(dim, k, nch)`` panel data to ``(dim, k * nch)`` panel-major."""

    return arr.reshape(arr.shape[0], -1, order="F")


def _normals_from_tangents(d: np.ndarray) -> np.ndarray:
    """Return unit normals to the right of the tangent (outward for CCW curves)."""

    if d.shape[0] != 2:
        raise ValueError("Normals can only be derived automatically in two dimensions.")
    speed = np.sqrt(np.sum(d * d, axis=0))
    return np.stack((d[1], -d[0])) / speed


@dataclass(frozen=True)
class PointInfo:
    """Positions, derivatives and normals for a set of points, each ``(dim, m)``."""

    r: np.ndarray
    d: np.ndarray
    d2: np.ndarray
    n: np.ndarray

    def __post_init__(self) -> None:
        for name in ("r", "d", "d2", "n"):
            object.__setattr__(self, name, _as_columns(getattr(self, name), name))
        shapes = {self.r.shape, self.d.shape, self.d2.shape, self.n.shape}
        if len(shapes) != 1:
            raise ValueError(f"PointInfo arrays disagree in shape: {sorted(shapes)}.")

    @property
    def dim(self) -> int:
        return int(self.r.shape[0])

    @property
    def npt(self) -> int:
        return int(self.r.shape[1])

    def take(self, indices: Union[Sequence[int], np.ndarray]) -> "PointInfo":
        """Return the sub-record for ``indices``."""

        idx = np.asarray(indices, dtype=int).reshape(-1)
        return PointInfo(self.r[:, idx], self.d[:, idx], self.d2[:, idx], self.n[:, idx])

    def slice(self, start: int, stop: int) -> "PointInfo":
        """Return the contiguous sub-record ``[start, stop)``."""

        sl = np.s_[:, start:stop]
        return PointInfo(self.r[sl], self.d[sl], self.d2[sl], self.n[sl])

    @classmethod
    def concatenate(cls, infos: Iterable["PointInfo"]) -> "PointInfo":
        infos = list(infos)
        if not infos:
            raise ValueError("Cannot concatenate an empty sequence of PointInfo.")
        return cls(
            np.concatenate([p.r for p in infos], axis=1),
            np.concatenate([p.d for p in infos], axis=1),
            np.concatenate([p.d2 for p in infos], axis=1),
            np.concatenate([p.n for p in infos], axis=1),
        )


@dataclass(frozen=True, eq=False)
class Chunker:
    """Panel-based discretization of a curve.

    ``r``, ``d`` and ``d2`` have shape ``(dim, k, nch)``. When ``n`` is omitted
    it is derived from ``d`` (two dimensions only). Smooth quadrature weights
    are the Gauss-Legendre weights scaled by ``|d|``.
    """

    r: np.ndarray
    d: np.ndarray
    d2: np.ndarray
    n: Optional[np.ndarray] = None
    _weights: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        r = np.array(self.r, dtype=float)
        d = np.array(self.d, dtype=float)
        d2 = np.array(self.d2, dtype=float)
        if r.ndim != 3:
            raise ValueError(f"Chunker.r must have shape (dim, k, nch), got {r.shape}.")
        if d.shape != r.shape or d2.shape != r.shape:
            raise ValueError("Chunker.r, Chunker.d and Chunker.d2 must share one shape.")
        if r.shape[1] < 2:
            raise ValueError("A chunker needs at least two nodes per panel.")
        if r.shape[2] < 1:
            raise ValueError("A chunker needs at least one panel.")

        if self.n is None:
            n = _normals_from_tangents(_flatten_nodes(d)).reshape(r.shape, order="F")
        else:
            n = np.array(self.n, dtype=float)
            if n.shape != r.shape:
                raise ValueError("Chunker.n must have the same shape as Chunker.r.")

        _, leg_weights = gauss_legendre(r.shape[1])
        speed = np.sqrt(np.sum(d * d, axis=0))
        weights = (leg_weights[:, None] * speed).reshape(-1, order="F")

        for name, value in (("r", r), ("d", d), ("d2", d2), ("n", n), ("_weights", weights)):
            value.setflags(write=False)
            object.__setattr__(self, name, value)

    @property
    def dim(self) -> int:
        return int(self.r.shape[0])

    @property
    def k(self) -> int:
        return int(self.r.shape[1])

    @property
    def nch(self) -> int:
        return int(self.r.shape[2])

    @property
    def npt(self) -> int:
        """Total number of nodes across all panels."""

        return self.k * self.nch

    @property
    def weights(self) -> np.ndarray:
        """Smooth quadrature weights, flattened panel-major."""

        return self._weights

    def point_info(self) -> PointInfo:
        """Return every node as a :class:`PointInfo`."""

        return PointInfo(
            _flatten_nodes(self.r),
            _flatten_nodes(self.d),
            _flatten_nodes(self.d2),
            _flatten_nodes(self.n),
        )

    def point(self, index: int) -> PointInfo:
        """Return the single node with flat index ``index``."""

        index = int(index)
        if not 0 <= index < self.npt:
            raise IndexError(f"Node index {index} out of range for {self.npt} nodes.")
        a, c = index % self.k, index // self.k
        return PointInfo(
            self.r[:, a, c], self.d[:, a, c], self.d2[:, a, c], self.n[:, a, c]
        )

    def components(self) -> tuple["Chunker", ...]:
        return (self,)


@runtime_checkable
class ComponentSource(Protocol):
    """Anything that can list its geometric components in order."""

    def components(self) -> tuple[Chunker, ...]:
        ...


def _check_chunkers(items: Iterable[object], owner: str) -> tuple[Chunker, ...]:
    out = tuple(items)
    if not out:
        raise InputTypeError(f"{owner} must contain at least one chunker.")
    for idx, item in enumerate(out):
        if not isinstance(item, Chunker):
            raise InputTypeError(
                f"{owner} entry {idx} is a {type(item).__name__}, not a Chunker."
            )
    return out


@dataclass(frozen=True, eq=False)
class ChunkerList:
    """Flat, ordered collection of chunkers."""

    chunkers: tuple[Chunker, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "chunkers", _check_chunkers(self.chunkers, "ChunkerList"))

    def components(self) -> tuple[Chunker, ...]:
        return self.chunkers


@dataclass(frozen=True, eq=False)
class ChunkGraph:
    """Edge chunkers plus vertex/junction metadata.

    Only ``echnks`` is used when applying operators; ``verts`` and
    ``edgesendverts`` are carried for correction builders that treat corners.
    """

    echnks: tuple[Chunker, ...]
    verts: Optional[np.ndarray] = None
    edgesendverts: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "echnks", _check_chunkers(self.echnks, "ChunkGraph"))

    @property
    def nedges(self) -> int:
        return len(self.echnks)

    def components(self) -> tuple[Chunker, ...]:
        return self.echnks


def as_components(geometry: object) -> tuple[Chunker, ...]:
    """Return the ordered chunkers behind ``geometry``.

    Accepts a :class:`Chunker`, a :class:`ChunkGraph`, any
    :class:`ComponentSource` or a list/tuple of chunkers.
    """

    if isinstance(geometry, ComponentSource):
        return _check_chunkers(geometry.components(), type(geometry).__name__)
    if isinstance(geometry, (list, tuple)):
        return ChunkerList(tuple(geometry)).components()
    raise InputTypeError(
        f"First input is not a chunker or chunkgraph object (got {type(geometry).__name__})."
    )


def merge_chunkers(chunkers: Sequence[Chunker]) -> Chunker:
    """Concatenate the panels of ``chunkers`` in order into one chunker."""

    chunkers = _check_chunkers(chunkers, "merge_chunkers")
    if len(chunkers) == 1:
        return chunkers[0]
    ks = {c.k for c in chunkers}
    dims = {c.dim for c in chunkers}
    if len(ks) != 1 or len(dims) != 1:
        raise ValueError(
            f"Chunkers must share the panel order and dimension to merge (k={sorted(ks)}, dim={sorted(dims)})."
        )
    return Chunker(
        np.concatenate([c.r for c in chunkers], axis=2),
        np.concatenate([c.d for c in chunkers], axis=2),
        np.concatenate([c.d2 for c in chunkers], axis=2),
        np.concatenate([c.n for c in chunkers], axis=2),
    )


def chunker_from_curve(
    curve: CurveFunction,
    nch: int = 16,
    k: int = 16,
    interval: tuple[float, float] = (0.0, 2.0 * np.pi),
) -> Chunker:
    """Discretize ``curve`` on ``nch`` equal parameter panels with ``k`` nodes each.

    ``curve(t)`` must return ``(r, d, d2)``, each ``(dim, len(t))``, holding the
    position and its first two derivatives with respect to ``t``.
    """

    if nch < 1:
        raise ValueError("nch must be at least 1.")
    if k < 2:
        raise ValueError("k must be at least 2.")
    nodes, _ = gauss_legendre(k)
    edges = np.linspace(float(interval[0]), float(interval[1]), int(nch) + 1)
    mapped = [map_to_interval(nodes, a, b) for a, b in zip(edges[:-1], edges[1:])]
    t = np.stack([m[0] for m in mapped], axis=1)
    half = np.array([m[1] for m in mapped])

    r, d, d2 = (np.asarray(arr, dtype=float) for arr in curve(t.reshape(-1, order="F")))
    shape = (r.shape[0], int(k), int(nch))
    r = r.reshape(shape, order="F")
    d = d.reshape(shape, order="F") * half[None, None, :]
    d2 = d2.reshape(shape, order="F") * (half * half)[None, None, :]
    return Chunker(r, d, d2)


def circle_curve(radius: float = 1.0, center: Sequence[float] = (0.0, 0.0)) -> CurveFunction:
    """Return a counter-clockwise circle parameterized on ``[0, 2 pi]``."""

    cx, cy = (float(v) for v in center)
    radius = float(radius)

    def curve(t: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        c, s = np.cos(t), np.sin(t)
        r = np.stack((cx + radius * c, cy + radius * s))
        d = np.stack((-radius * s, radius * c))
        d2 = np.stack((-radius * c, -radius * s))
        return r, d, d2

    return curve


__all__ = [
    "Chunker",
    "ChunkerList",
    "ChunkGraph",
    "ComponentSource",
    "PointInfo",
    "as_components",
    "chunker_from_curve",
    "circle_curve",
    "merge_chunkers",
]
