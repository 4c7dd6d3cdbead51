"""Configuration record consumed by :func:`chunkapply.apply.chunkermatapply`."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Mapping, Optional, Union

from loguru import logger

from .errors import InputTypeError
from .kernels import SingularityKind


class AccelerationPolicy(str, Enum):
    """When the smooth evaluator may use a kernel's FMM."""

    AUTO = "auto"
    ON = "on"
    OFF = "off"


AuxQuadKey = tuple[str, SingularityKind]


def _normalize_policy(policy: Union[AccelerationPolicy, str, bool]) -> AccelerationPolicy:
    if isinstance(policy, AccelerationPolicy):
        return policy
    if isinstance(policy, bool):
        return AccelerationPolicy.AUTO if policy else AccelerationPolicy.OFF
    return AccelerationPolicy(str(policy).strip().lower())


def _normalize_auxquad_key(key: Any) -> AuxQuadKey:
    if isinstance(key, tuple) and len(key) == 2:
        return str(key[0]).strip().lower(), SingularityKind.coerce(key[1])
    if isinstance(key, str):
        # chunkie-style "<quad><sing>" names such as "ggqlog"
        for kind in sorted(SingularityKind, key=lambda k: -len(k.value)):
            if key.endswith(kind.value) and len(key) > len(kind.value):
                return key[: -len(kind.value)].strip().lower(), kind
    raise ValueError(f"Cannot interpret auxiliary quadrature key {key!r}.")


@dataclass(frozen=True)
class ApplyOptions:
    """Options for one operator apply.

    Parameters
    ----------
    quad : str, default "native"
        Quadrature used for self and neighbour corrections. The bundled
        :class:`~chunkapply.corrections.NativeCorrectionBuilder` only knows
        ``"native"``; other names (``"ggq"``) need an external builder.
    sing : SingularityKind, default ``LOG``
        Singularity assumed for kernels that do not classify themselves, as
        read by external builders. The native builder treats such kernels as
        smooth.
    l2scale : bool, default False
        Represent ``S A S^-1`` with ``S = diag(sqrt(w))``.
    accel : AccelerationPolicy, default ``AUTO``
        ``AUTO`` uses a kernel FMM when the problem is at least
        ``fmm_threshold`` source/target pairs, ``ON`` whenever one is
        defined, ``OFF`` never.
    fmm_threshold : int, default 200
        Minimum ``n_sources * n_targets`` for ``AUTO`` to pick the FMM.
    eps : float, default 1e-14
        Tolerance handed to FMM calls and adaptive corrections.
    adaptive_correction, rcip, rcip_ignore, nsub_or_tol
        Forwarded untouched to the correction builder.
    auxquads : mapping
        Precomputed quadrature data keyed by ``(quad, sing)``; passed
        through to external builders and evaluators.
    corrections : bool, default False
        Ask the correction builder for corrections only (no smooth part).
    """

    quad: str = "native"
    sing: SingularityKind = SingularityKind.LOG
    l2scale: bool = False
    accel: AccelerationPolicy = AccelerationPolicy.AUTO
    fmm_threshold: int = 200
    eps: float = 1.0e-14
    adaptive_correction: bool = False
    rcip: bool = True
    rcip_ignore: tuple[int, ...] = ()
    nsub_or_tol: Union[int, float] = 40
    auxquads: Mapping[AuxQuadKey, Any] = field(default_factory=dict)
    corrections: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "quad", str(self.quad).strip().lower())
        object.__setattr__(self, "sing", SingularityKind.coerce(self.sing))
        object.__setattr__(self, "accel", _normalize_policy(self.accel))
        object.__setattr__(
            self, "rcip_ignore", tuple(int(v) for v in self.rcip_ignore)
        )
        object.__setattr__(
            self,
            "auxquads",
            {_normalize_auxquad_key(k): v for k, v in dict(self.auxquads).items()},
        )
        if self.fmm_threshold < 0:
            raise ValueError("fmm_threshold must be non-negative.")
        if not self.eps > 0.0:
            raise ValueError("eps must be positive.")

    def auxquad(
        self, quad: Optional[str] = None, sing: Optional[SingularityKind] = None
    ) -> Optional[Any]:
        """Return precomputed data for ``(quad, sing)``, defaulting to these options."""

        key = (
            self.quad if quad is None else str(quad).strip().lower(),
            self.sing if sing is None else SingularityKind.coerce(sing),
        )
        return self.auxquads.get(key)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "ApplyOptions":
        """Build options from a plain mapping.

        Besides the field names, the chunkie-style flags ``forcefmm`` and a
        boolean ``accel`` are understood; ``flam`` is accepted and ignored.
        """

        values = dict(values)
        forcefmm = values.pop("forcefmm", None)
        flam = values.pop("flam", None)
        if flam:
            logger.warning("options: flam utilities are not available; ignoring flam=True")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown apply options: {', '.join(unknown)}.")

        if forcefmm:
            values["accel"] = AccelerationPolicy.ON
        return cls(**values)


def normalize_options(options: Union[ApplyOptions, Mapping[str, Any], None]) -> ApplyOptions:
    """Return an :class:`ApplyOptions` for ``options`` (``None`` means defaults)."""

    if options is None:
        return ApplyOptions()
    if isinstance(options, ApplyOptions):
        return options
    if isinstance(options, Mapping):
        return ApplyOptions.from_mapping(options)
    raise InputTypeError(
        f"Options must be ApplyOptions, a mapping or None, not {type(options).__name__}."
    )


__all__ = [
    "AccelerationPolicy",
    "ApplyOptions",
    "AuxQuadKey",
    "normalize_options",
]
