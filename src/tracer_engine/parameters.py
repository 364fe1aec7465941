# src/tracer_engine/parameters.py
"""Physical parameters for tracer transport with air-sea exchange and decay.

All quantities are held in SI base units (seconds, meters). Conversion from
display units (years, meters per year) happens only at the configuration
boundary; see :mod:`tracer_engine.config`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Final

from .errors import raise_invalid_parameter

SECONDS_PER_DAY: Final[float] = 86_400.0
DAYS_PER_YEAR: Final[float] = 365.25
SECONDS_PER_YEAR: Final[float] = DAYS_PER_YEAR * SECONDS_PER_DAY

# Sverdrup, the usual unit for ocean volume transport.
SVERDRUP: Final[float] = 1.0e6

RADIOCARBON_HALF_LIFE_YEARS: Final[float] = 5730.0


def years_to_seconds(years: float) -> float:
    """Convert a duration in years to seconds."""
    return float(years) * SECONDS_PER_YEAR


def seconds_to_years(seconds: float) -> float:
    """Convert a duration in seconds to years."""
    return float(seconds) / SECONDS_PER_YEAR


def decay_rate_from_half_life(half_life: float) -> float:
    """
    Return the e-folding decay rate for a half-life.

    Args:
        half_life: Half-life in seconds.

    Raises:
        ParameterError: If half_life is not a positive finite number.

    Returns:
        Decay rate ln(2) / half_life in 1/s.
    """
    if not (math.isfinite(half_life) and half_life > 0.0):
        raise_invalid_parameter(
            name="half_life",
            value=half_life,
            requirement="must be a positive finite number",
        )
    return math.log(2.0) / float(half_life)


@dataclass(frozen=True, slots=True)
class TracerParameters:
    """Immutable parameter set passed into every computation.

    Attributes:
        decay_rate: Radioactive decay rate lambda (1/s); 1/tau.
        piston_velocity: Air-sea gas-exchange velocity kappa (m/s).
        layer_thickness: Thickness of the surface layer h (m).
        atmospheric_reference: Atmospheric tracer ratio R_atm (dimensionless).
    """

    decay_rate: float = math.log(2.0) / (RADIOCARBON_HALF_LIFE_YEARS * SECONDS_PER_YEAR)
    piston_velocity: float = 50.0 / (10.0 * SECONDS_PER_YEAR)
    layer_thickness: float = 100.0
    atmospheric_reference: float = 1.0

    def __post_init__(self) -> None:
        """Validate parameter ranges.

        Raises:
            ParameterError: If any parameter is out of range.
        """
        checks = (
            ("decay_rate", self.decay_rate, 0.0, "must be finite and >= 0"),
            ("piston_velocity", self.piston_velocity, 0.0, "must be finite and >= 0"),
            (
                "atmospheric_reference",
                self.atmospheric_reference,
                0.0,
                "must be finite and >= 0",
            ),
        )
        for name, value, lower, requirement in checks:
            if not (math.isfinite(value) and value >= lower):
                raise_invalid_parameter(name=name, value=value, requirement=requirement)

        if not (math.isfinite(self.layer_thickness) and self.layer_thickness > 0.0):
            raise_invalid_parameter(
                name="layer_thickness",
                value=self.layer_thickness,
                requirement="must be finite and > 0",
            )

    @classmethod
    def from_half_life(
        cls,
        half_life: float,
        *,
        piston_velocity: float = 50.0 / (10.0 * SECONDS_PER_YEAR),
        layer_thickness: float = 100.0,
        atmospheric_reference: float = 1.0,
    ) -> TracerParameters:
        """
        Build parameters from a half-life instead of a decay rate.

        Args:
            half_life: Half-life in seconds.
            piston_velocity: Air-sea gas-exchange velocity (m/s).
            layer_thickness: Surface layer thickness (m).
            atmospheric_reference: Atmospheric tracer ratio.

        Returns:
            TracerParameters instance.
        """
        return cls(
            decay_rate=decay_rate_from_half_life(half_life),
            piston_velocity=piston_velocity,
            layer_thickness=layer_thickness,
            atmospheric_reference=atmospheric_reference,
        )

    @property
    def decay_timescale(self) -> float:
        """E-folding decay time tau = 1/decay_rate in seconds (inf if no decay)."""
        if self.decay_rate == 0.0:
            return math.inf
        return 1.0 / self.decay_rate

    @property
    def exchange_rate(self) -> float:
        """Surface relaxation rate kappa/h in 1/s."""
        return self.piston_velocity / self.layer_thickness

    def with_updates(self, **changes: float) -> TracerParameters:
        """Return a copy with selected fields replaced (validated again)."""
        return replace(self, **changes)
