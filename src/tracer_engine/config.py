# src/tracer_engine/config.py
"""User-facing configuration models for radiocarbon runs.

This module defines the pydantic configuration objects read from YAML files and
translates them into native tracer_engine objects:

- RadiocarbonConfig.to_parameters() -> TracerParameters (SI units)
- RadiocarbonConfig.to_newton_config() -> NewtonConfig
- RadiocarbonConfig.to_circulation() -> BoxCirculation

Notes:
    - Values are given in display units (years, meters per year, Sverdrups);
      conversion to SI happens here and nowhere else.
    - Plot settings are explicit configuration for a visualization collaborator
      (example scripts); nothing in the package selects a plotting backend.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .box_model import BoxCirculation
from .errors import ConfigError, ErrorCode
from .parameters import (
    RADIOCARBON_HALF_LIFE_YEARS,
    SVERDRUP,
    TracerParameters,
    years_to_seconds,
)
from .steady_state import NewtonConfig

SolverMethod = Literal["direct", "newton"]
AgePolicyName = Literal["raise", "clamp", "nan"]

_NOT_A_MAPPING_ERROR = "Configuration file {path} must contain a mapping at top level"
_READ_ERROR = "Could not read configuration file {path}: {detail}"


class NewtonSettings(BaseModel):
    """Newton solver settings."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    rtol: float = Field(default=1e-8, ge=0.0)
    atol: float = Field(default=0.0, ge=0.0)
    max_iter: int = Field(default=50, ge=0)
    pseudo_dt_years: float | None = Field(
        default=None,
        gt=0.0,
        description="Initial pseudo time step in years; None starts with plain Newton",
    )
    max_backtracks: int = Field(default=10, ge=0)


class TransientSettings(BaseModel):
    """Euler-backward validation run settings."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    duration_years: float = Field(default=4000.0, gt=0.0)
    n_steps: int = Field(default=400, ge=1)


class CirculationSettings(BaseModel):
    """Box-model circulation strengths in Sverdrups (1 Sv = 1e6 m^3/s)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    acc_sv: float = Field(default=100.0, ge=0.0)
    moc_sv: float = Field(default=15.0, ge=0.0)
    mix_sv: float = Field(default=10.0, ge=0.0)


class PlotSettings(BaseModel):
    """Settings handed to plotting code; the package itself never plots."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    backend: str | None = Field(
        default=None,
        description="Matplotlib backend name, e.g. 'Agg'; None keeps the default",
    )
    output_dir: Path = Field(default=Path("outputs"))


class RadiocarbonConfig(BaseModel):
    """Configuration schema for a radiocarbon steady-state / transient run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    half_life_years: float = Field(default=RADIOCARBON_HALF_LIFE_YEARS, gt=0.0)
    piston_velocity_m_per_year: float = Field(default=5.0, ge=0.0)
    layer_thickness_m: float = Field(default=100.0, gt=0.0)
    atmospheric_reference: float = Field(default=1.0, ge=0.0)

    solver: SolverMethod = Field(default="direct", description="Steady-state method")
    age_policy: AgePolicyName = Field(default="raise")

    newton: NewtonSettings = Field(default_factory=NewtonSettings)
    transient: TransientSettings = Field(default_factory=TransientSettings)
    circulation: CirculationSettings = Field(default_factory=CirculationSettings)
    plot: PlotSettings = Field(default_factory=PlotSettings)

    def to_parameters(self) -> TracerParameters:
        """Convert to SI TracerParameters.

        Returns:
            TracerParameters instance.
        """
        return TracerParameters.from_half_life(
            years_to_seconds(self.half_life_years),
            piston_velocity=self.piston_velocity_m_per_year / years_to_seconds(1.0),
            layer_thickness=self.layer_thickness_m,
            atmospheric_reference=self.atmospheric_reference,
        )

    def to_newton_config(self) -> NewtonConfig:
        """Convert Newton settings to a NewtonConfig.

        Returns:
            NewtonConfig instance.
        """
        pseudo_dt = (
            math.inf
            if self.newton.pseudo_dt_years is None
            else years_to_seconds(self.newton.pseudo_dt_years)
        )
        return NewtonConfig(
            rtol=self.newton.rtol,
            atol=self.newton.atol,
            max_iter=self.newton.max_iter,
            pseudo_dt=pseudo_dt,
            max_backtracks=self.newton.max_backtracks,
        )

    def to_circulation(self) -> BoxCirculation:
        """Convert circulation settings to m^3/s.

        Returns:
            BoxCirculation instance.
        """
        return BoxCirculation(
            acc=self.circulation.acc_sv * SVERDRUP,
            moc=self.circulation.moc_sv * SVERDRUP,
            mix=self.circulation.mix_sv * SVERDRUP,
        )

    @property
    def transient_duration(self) -> float:
        """Transient run duration in seconds."""
        return years_to_seconds(self.transient.duration_years)


def load_config(path: str | Path) -> RadiocarbonConfig:
    """Load a RadiocarbonConfig from a YAML file.

    Args:
        path: Path to the YAML file.

    Raises:
        ConfigError: If the file cannot be read, parsed, or is not a mapping.

    Returns:
        Validated RadiocarbonConfig (pydantic ValidationError propagates for
        invalid values).
    """
    config_path = Path(path)
    try:
        raw: Any = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        msg = _READ_ERROR.format(path=config_path, detail=exc)
        raise ConfigError(msg, code=ErrorCode.INVALID_CONFIG) from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(
            _NOT_A_MAPPING_ERROR.format(path=config_path),
            code=ErrorCode.INVALID_CONFIG,
        )
    return RadiocarbonConfig.model_validate(raw)
