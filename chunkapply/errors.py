"""Exception and warning types raised by :mod:`chunkapply`."""

from __future__ import annotations


class ChunkApplyError(Exception):
    """Base class for errors raised while applying a chunker operator."""


class InputTypeError(ChunkApplyError, TypeError):
    """Geometry or kernel input is not of a recognised kind."""


class ShapeMismatchError(ChunkApplyError, ValueError):
    """Vector lengths or operator dimensions disagree with the block layout."""


class UnsupportedQuadratureError(ChunkApplyError, ValueError):
    """The requested correction quadrature cannot be built by this builder."""


class AccelerationUnavailableWarning(UserWarning):
    """At least one kernel pair in use has no accelerated (FMM) evaluation."""


__all__ = [
    "AccelerationUnavailableWarning",
    "ChunkApplyError",
    "InputTypeError",
    "ShapeMismatchError",
    "UnsupportedQuadratureError",
]
