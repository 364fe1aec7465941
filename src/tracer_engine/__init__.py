"""tracer_engine: steady-state and transient tracer transport with decay."""

from __future__ import annotations

from .age import AgePolicy, tracer_age
from .box_model import BoxCirculation, build_box_model, build_single_box
from .config import RadiocarbonConfig, load_config
from .core_solver import CoreSolver, RunConfig, time_step
from .errors import (
    ConfigError,
    DimensionMismatchError,
    DomainError,
    ErrorCode,
    NonConvergenceError,
    ParameterError,
    SingularMatrixError,
    TracerEngineError,
)
from .grid import TracerGrid
from .matrix_ops import (
    build_exchange_operator,
    build_source_vector,
    build_system_matrix,
    clear_implicit_solver_cache,
)
from .model import RadiocarbonModel
from .model_core import ModelCore, StepperPhase, Trajectory
from .parameters import SECONDS_PER_YEAR, TracerParameters
from .reactions import FiniteDifferenceReaction, RadiocarbonReaction, Reaction
from .steady_state import NewtonConfig, NewtonResult, solve_direct, solve_newton

__version__ = "0.1.0"

__all__ = [
    "SECONDS_PER_YEAR",
    "AgePolicy",
    "BoxCirculation",
    "ConfigError",
    "CoreSolver",
    "DimensionMismatchError",
    "DomainError",
    "ErrorCode",
    "FiniteDifferenceReaction",
    "ModelCore",
    "NewtonConfig",
    "NewtonResult",
    "NonConvergenceError",
    "ParameterError",
    "RadiocarbonConfig",
    "RadiocarbonModel",
    "RadiocarbonReaction",
    "Reaction",
    "RunConfig",
    "SingularMatrixError",
    "StepperPhase",
    "TracerEngineError",
    "TracerGrid",
    "Trajectory",
    "build_box_model",
    "build_exchange_operator",
    "build_single_box",
    "build_source_vector",
    "build_system_matrix",
    "clear_implicit_solver_cache",
    "load_config",
    "solve_direct",
    "solve_newton",
    "time_step",
    "tracer_age",
]
