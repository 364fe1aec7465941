# src/tracer_engine/reactions.py
"""Pointwise source-minus-sink (reaction) terms.

A reaction maps the tracer state R to the local tendency sms(R); because every
term here acts cell by cell, its Jacobian with respect to R is diagonal and is
represented by the vector of diagonal entries (``derivative``).

The steady-state problem in reaction form is

    F(R) = -T R + sms(R) = 0,    J(R) = -T + diag(sms'(R)).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np

from .errors import raise_dimension_mismatch, raise_invalid_parameter

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

    from .parameters import TracerParameters


@runtime_checkable
class Reaction(Protocol):
    """Minimal interface of a pointwise reaction term."""

    def __call__(self, r: NDArray[np.floating]) -> NDArray[np.floating]:
        """Return sms(r)."""
        ...

    def derivative(self, r: NDArray[np.floating]) -> NDArray[np.floating]:
        """Return the diagonal of d sms / d r at r."""
        ...


@dataclass(frozen=True, slots=True, eq=False)
class RadiocarbonReaction:
    """Air-sea exchange plus radioactive decay.

    sms(R) = kappa * mask * (R_atm - R) / h - lambda * R

    Attributes:
        surface_mask: Boolean vector, True at gas-exchanging cells.
        params: Tracer parameters.
    """

    surface_mask: NDArray[np.bool_]
    params: TracerParameters
    _exchange: NDArray[np.floating] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        mask = np.asarray(self.surface_mask, dtype=bool)
        if mask.ndim != 1:
            raise_dimension_mismatch(
                name="surface_mask", expected="a 1D vector", got=mask.shape
            )
        object.__setattr__(self, "surface_mask", mask)
        object.__setattr__(
            self, "_exchange", np.where(mask, self.params.exchange_rate, 0.0)
        )

    def _check(self, r: NDArray[np.floating]) -> NDArray[np.floating]:
        arr = np.asarray(r, dtype=np.float64)
        if arr.shape != self._exchange.shape:
            raise_dimension_mismatch(
                name="state", expected=self._exchange.shape, got=arr.shape
            )
        return arr

    def __call__(self, r: NDArray[np.floating]) -> NDArray[np.floating]:
        """Evaluate sms(r)."""
        arr = self._check(r)
        exchange = self._exchange * (self.params.atmospheric_reference - arr)
        return exchange - self.params.decay_rate * arr

    def derivative(self, r: NDArray[np.floating]) -> NDArray[np.floating]:
        """Return -kappa * mask / h - lambda (independent of r)."""
        self._check(r)
        return -self._exchange - self.params.decay_rate


@dataclass(frozen=True, slots=True, eq=False)
class FiniteDifferenceReaction:
    """Wrap a pointwise sms callable and difference it numerically.

    Because the wrapped function acts cell by cell, perturbing every entry at
    once and differencing yields the full Jacobian diagonal in two evaluations.

    Attributes:
        func: Pointwise sms(r) callable.
        rel_step: Relative perturbation size.
        abs_step: Absolute perturbation floor.
    """

    func: Callable[[NDArray[np.floating]], NDArray[np.floating]]
    rel_step: float = 1e-6
    abs_step: float = 1e-8

    def __post_init__(self) -> None:
        for name in ("rel_step", "abs_step"):
            value = getattr(self, name)
            if not (np.isfinite(value) and value > 0.0):
                raise_invalid_parameter(
                    name=name, value=value, requirement="must be finite and > 0"
                )

    def __call__(self, r: NDArray[np.floating]) -> NDArray[np.floating]:
        """Evaluate the wrapped sms(r)."""
        return np.asarray(self.func(np.asarray(r, dtype=np.float64)), dtype=np.float64)

    def derivative(self, r: NDArray[np.floating]) -> NDArray[np.floating]:
        """Central-difference estimate of the Jacobian diagonal at r."""
        arr = np.asarray(r, dtype=np.float64)
        step = np.maximum(self.rel_step * np.abs(arr), self.abs_step)
        upper = self(arr + step)
        lower = self(arr - step)
        return (upper - lower) / (2.0 * step)
