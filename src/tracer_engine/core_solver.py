# src/tracer_engine/core_solver.py
"""Euler-backward (IMEX Euler) time stepping for tracer transport.

This solver advances a :class:`tracer_engine.model_core.ModelCore` instance over
its time grid. For the split system

    dR/dt = -A R + F(t, R)

each step solves

    (I + dt A) R_{i+1} = R_i + dt F(t_i, R_i)

i.e. implicit (Euler-backward) on the linear operator A and explicit on F.

Usage patterns:
    - Linear validation run: A = M (system matrix), F = s (constant source). The
      update is fully implicit and its fixed point is exactly M R = s.
    - IMEX run: A = T (transport), F(t, R) = sms(R) (reaction), for reaction
      terms that should not be treated implicitly.

Non-uniform dt:
    Operators depend on dt, so one (L, R) pair is built per distinct dt and the
    factorization is cached by matrix_ops.implicit_solve.

Steps are strictly sequential; each step is a blocking sparse solve.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, cast

import numpy as np
from numpy.typing import NDArray

from .errors import raise_dimension_mismatch
from .matrix_ops import as_operator, build_implicit_euler_operators, implicit_solve
from .model_core import ModelCore, StepperPhase, Trajectory, uniform_time_grid

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

    from .matrix_ops import Operator


# =============================================================================
# Errors / messages
# =============================================================================

_RHS_SHAPE_ERROR_MSG = "forcing shape {actual} does not match expected {expected}"
_NOT_INITIALIZED_MSG = "Initial state has not been set; call set_initial_state first"
_COMPLETED_ERROR_MSG = "Run is already completed; reset the initial state to rerun"
_NONFINITE_STATE_MSG = "Non-finite state produced at step {step} (t={t:.6e})"


# =============================================================================
# Type aliases / configuration
# =============================================================================

RHSFunction = Callable[[float, NDArray[np.floating]], NDArray[np.floating]]


@dataclass(slots=True, frozen=True)
class RunConfig:
    """Configuration for CoreSolver runs.

    Attributes:
        fail_on_nonfinite: Raise if a step produces NaN/inf values.
    """

    fail_on_nonfinite: bool = True


# =============================================================================
# CoreSolver
# =============================================================================


class CoreSolver:
    """Euler-backward solver operating on a ModelCore time/state grid."""

    def __init__(
        self,
        core: ModelCore,
        operator: Operator,
        forcing: ArrayLike | RHSFunction,
        *,
        config: RunConfig | None = None,
    ) -> None:
        """Initialize CoreSolver.

        Args:
            core: ModelCore instance to solve.
            operator: Implicit linear operator A, shape (n_wet, n_wet).
            forcing: Constant forcing vector, or callable F(t, R).
            config: Optional run configuration.
        """
        self.core = core
        self.cfg = config or RunConfig()
        self.dtype = core.dtype

        self._base_op = as_operator(operator)
        n = int(self._base_op.shape[0])
        if self._base_op.shape != (n, n) or n != core.n_wet:
            raise_dimension_mismatch(
                name="operator",
                expected=(core.n_wet, core.n_wet),
                got=self._base_op.shape,
            )
        # A enters as y' = -A y + F, i.e. base operator -A for implicit Euler.
        self._neg_op = -self._base_op

        self._forcing_func: RHSFunction | None
        self._forcing_const: NDArray[np.floating] | None
        if callable(forcing):
            self._forcing_func = forcing
            self._forcing_const = None
        else:
            self._forcing_func = None
            self._forcing_const = self._checked_forcing(forcing)

        self._operators: dict[float, tuple[Operator, Operator]] = {}
        self._rhs_buffer: NDArray[np.floating] = np.zeros(core.state_shape, dtype=self.dtype)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _checked_forcing(self, f: ArrayLike) -> NDArray[np.floating]:
        arr = np.asarray(f, dtype=self.dtype)
        if arr.shape != self.core.state_shape:
            raise ValueError(
                _RHS_SHAPE_ERROR_MSG.format(actual=arr.shape, expected=self.core.state_shape)
            )
        return arr

    def _forcing_into(self, out: NDArray[np.floating], t: float, y: NDArray[np.floating]) -> None:
        if self._forcing_func is not None:
            np.copyto(out, self._checked_forcing(self._forcing_func(float(t), y)))
            return
        np.copyto(out, cast("NDArray[np.floating]", self._forcing_const))

    def operators_for(self, dt: float) -> tuple[Operator, Operator]:
        """Return the cached (L, R) = (I + dt A, I) pair for a step size."""
        key = float(dt)
        ops = self._operators.get(key)
        if ops is None:
            ops = build_implicit_euler_operators(self._neg_op, key)
            self._operators[key] = ops
        return ops

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    @property
    def phase(self) -> StepperPhase:
        """Phase of the underlying run."""
        return self.core.phase

    def step(self) -> NDArray[np.floating]:
        """Advance exactly one step along the time grid.

        Raises:
            RuntimeError: If no initial state was set, the run is already completed,
                or a non-finite state is produced while fail_on_nonfinite is set.

        Returns:
            The new current state.
        """
        if not self.core.is_initialized:
            raise RuntimeError(_NOT_INITIALIZED_MSG)
        if self.core.phase is StepperPhase.COMPLETED:
            raise RuntimeError(_COMPLETED_ERROR_MSG)

        idx = self.core.current_step
        t0 = self.core.current_time
        dt = self.core.get_dt(idx)
        y = self.core.get_current_state()

        self._forcing_into(self._rhs_buffer, t0, y)
        self._rhs_buffer *= dt
        self._rhs_buffer += y

        left_op, right_op = self.operators_for(dt)
        y_next = np.asarray(implicit_solve(left_op, right_op, self._rhs_buffer), dtype=self.dtype)

        if self.cfg.fail_on_nonfinite and not np.all(np.isfinite(y_next)):
            raise RuntimeError(_NONFINITE_STATE_MSG.format(step=idx + 1, t=t0 + dt))

        self.core.advance_timestep(y_next)
        return self.core.get_current_state()

    def run(self) -> Trajectory:
        """Advance the ModelCore state through its remaining time grid.

        Returns:
            The stored trajectory (requires store_history=True).
        """
        while self.core.phase is not StepperPhase.COMPLETED:
            self.step()
        return self.core.trajectory()


def time_step(
    system_matrix: Operator,
    source: ArrayLike | RHSFunction,
    initial_state: ArrayLike,
    duration: float,
    n_steps: int,
    *,
    config: RunConfig | None = None,
) -> Trajectory:
    """
    Integrate dR/dt = -M R + s with Euler-backward steps of dt = duration / n_steps.

    Args:
        system_matrix: Implicit operator (M, or T for IMEX runs).
        source: Constant source vector s, or forcing callable F(t, R).
        initial_state: Initial state R_0.
        duration: Total simulated time in seconds.
        n_steps: Number of steps.
        config: Optional run configuration.

    Returns:
        Trajectory with states at times {0, dt, ..., duration}.
    """
    r0 = np.asarray(initial_state, dtype=np.float64)
    if r0.ndim != 1:
        raise_dimension_mismatch(name="initial_state", expected="a 1D vector", got=r0.shape)
    core = ModelCore(r0.size, uniform_time_grid(duration, n_steps))
    core.set_initial_state(r0)
    return CoreSolver(core, system_matrix, source, config=config).run()
