# src/tracer_engine/errors.py
"""Error types for tracer_engine.

This module centralizes:
- a machine-readable ErrorCode classification,
- explicit error classes that also subclass the matching builtin exception, and
- small helpers that raise standardized, context-rich errors.

Design intent:
- assembly and solver failures surface immediately with enough context
  (shapes, matrix size, iteration count, residual norm) to diagnose them
- retry policy is a caller concern; nothing here retries automatically
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Mapping


class ErrorCode(StrEnum):
    """Machine-readable classification for tracer_engine failures."""

    DIMENSION_MISMATCH = "dimension_mismatch"
    SINGULAR_MATRIX = "singular_matrix"
    NON_CONVERGENCE = "non_convergence"
    DOMAIN_ERROR = "domain_error"
    INVALID_PARAMETERS = "invalid_parameters"
    INVALID_CONFIG = "invalid_config"


class TracerEngineError(Exception):
    """Base exception for tracer_engine errors."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        """
        Initialize a TracerEngineError.

        Args:
            message: Human-readable error message.
            code: Optional machine-readable error code classifying the error.
            context: Optional diagnostic values (shapes, norms, counts).
        """
        super().__init__(message)
        self.code: ErrorCode | None = code
        self.context: dict[str, Any] = dict(context or {})


class DimensionMismatchError(TracerEngineError, ValueError):
    """Raised when operator, mask or vector sizes disagree."""


class SingularMatrixError(TracerEngineError, np.linalg.LinAlgError):
    """Raised when a linear solve is attempted on a singular matrix."""


class NonConvergenceError(TracerEngineError, RuntimeError):
    """Raised when an iterative solve exceeds its iteration cap.

    The last iterate is attached as ``result`` so callers can retry from it with
    a different initial guess, pseudo time step or tolerance.
    """

    def __init__(
        self,
        message: str,
        *,
        iterations: int,
        residual_norm: float,
        result: object | None = None,
    ) -> None:
        """
        Initialize a NonConvergenceError.

        Args:
            message: Human-readable error message.
            iterations: Number of iterations performed.
            residual_norm: Residual norm at the last iterate.
            result: Solver result describing the last iterate.
        """
        super().__init__(
            message,
            code=ErrorCode.NON_CONVERGENCE,
            context={"iterations": iterations, "residual_norm": residual_norm},
        )
        self.iterations = int(iterations)
        self.residual_norm = float(residual_norm)
        self.result = result


class DomainError(TracerEngineError, ValueError):
    """Raised when a value lies outside the domain of a transform."""


class ParameterError(TracerEngineError, ValueError):
    """Raised when physical or solver parameters are invalid."""


class ConfigError(TracerEngineError, ValueError):
    """Raised when a configuration file cannot be read or is malformed."""


def raise_dimension_mismatch(*, name: str, expected: object, got: object) -> None:
    """Raise a standardized DimensionMismatchError.

    Args:
        name: Name of the object with the size issue.
        expected: Expected shape or length.
        got: Actual observed shape or length.

    Raises:
        DimensionMismatchError: Always.
    """
    msg = f"{name} has an incompatible size. Expected {expected}. Got: {got!r}."
    raise DimensionMismatchError(
        msg,
        code=ErrorCode.DIMENSION_MISMATCH,
        context={"name": name, "expected": expected, "got": got},
    )


def raise_singular_matrix(*, shape: tuple[int, ...], detail: str | None = None) -> None:
    """Raise a standardized SingularMatrixError.

    Args:
        shape: Shape of the matrix that could not be factorized.
        detail: Optional backend detail (e.g. the factorization message).

    Raises:
        SingularMatrixError: Always.
    """
    parts = [f"Matrix of shape {tuple(shape)} is singular; the linear solve failed."]
    if detail:
        parts.append(f"Detail: {detail}")
    raise SingularMatrixError(
        " ".join(parts),
        code=ErrorCode.SINGULAR_MATRIX,
        context={"shape": tuple(shape)},
    )


def raise_invalid_parameter(*, name: str, value: object, requirement: str) -> None:
    """Raise a standardized ParameterError.

    Args:
        name: Parameter name.
        value: Offending value.
        requirement: Human-readable constraint the value violates.

    Raises:
        ParameterError: Always.
    """
    msg = f"Invalid parameter {name}={value!r}: {requirement}."
    raise ParameterError(
        msg,
        code=ErrorCode.INVALID_PARAMETERS,
        context={"name": name, "value": value},
    )
