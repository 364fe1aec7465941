# src/tracer_engine/age.py
"""Tracer ratio to age conversion.

age = -ln(R) / lambda is defined for R in (0, inf); R in (0, 1] gives
non-negative ages and R slightly above 1 (round-off) a small negative age.
Non-positive or non-finite ratios are handled according to an explicit policy:

- "raise": raise DomainError naming how many cells are invalid (default);
- "clamp": clamp non-positive R to a positive floor before taking the log
  (non-finite R still maps to NaN);
- "nan":   return NaN at invalid cells.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final, Literal

import numpy as np

from .errors import DomainError, ErrorCode, raise_invalid_parameter

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

AgePolicy = Literal["raise", "clamp", "nan"]

_DEFAULT_FLOOR: Final[float] = float(np.finfo(np.float64).tiny)
_UNKNOWN_POLICY_ERROR = "Unknown age policy: {policy}"
_DOMAIN_ERROR = (
    "Tracer ratio must be positive and finite for age conversion; "
    "{count} of {size} values are invalid (first invalid value: {value!r})"
)


def tracer_age(
    ratio: ArrayLike,
    decay_rate: float,
    *,
    policy: AgePolicy = "raise",
    floor: float = _DEFAULT_FLOOR,
) -> NDArray[np.floating]:
    """
    Convert tracer ratios to ages, elementwise.

    Args:
        ratio: Atmosphere-normalized tracer ratio R.
        decay_rate: Decay rate lambda (1/s), > 0.
        policy: Handling of non-positive or non-finite R ("raise", "clamp", "nan").
        floor: Lower bound used by the "clamp" policy.

    Raises:
        ParameterError: If decay_rate or floor is not positive and finite.
        DomainError: If policy is "raise" and any ratio is invalid.
        ValueError: If policy is unknown.

    Returns:
        Ages in seconds, same shape as ratio.
    """
    if not (np.isfinite(decay_rate) and decay_rate > 0.0):
        raise_invalid_parameter(
            name="decay_rate", value=decay_rate, requirement="must be finite and > 0"
        )
    if policy not in ("raise", "clamp", "nan"):
        raise ValueError(_UNKNOWN_POLICY_ERROR.format(policy=policy))

    r = np.asarray(ratio, dtype=np.float64)

    if policy == "clamp":
        if not (np.isfinite(floor) and floor > 0.0):
            raise_invalid_parameter(
                name="floor", value=floor, requirement="must be finite and > 0"
            )
        r = np.where(np.isfinite(r), np.maximum(r, floor), r)

    invalid = ~np.isfinite(r) | (r <= 0.0)

    if policy == "raise" and np.any(invalid):
        bad = r[invalid]
        raise DomainError(
            _DOMAIN_ERROR.format(count=int(bad.size), size=int(r.size), value=float(bad[0])),
            code=ErrorCode.DOMAIN_ERROR,
            context={"invalid_count": int(bad.size)},
        )

    safe = np.where(invalid, 1.0, r)
    age = -np.log(safe) / decay_rate
    return np.where(invalid, np.nan, age)
