# src/tracer_engine/model_core.py
"""Core class for managing the numerical state of a transient tracer run.

ModelCore holds the output time grid, the current tracer vector and (optionally)
its full history. It tracks the run phase

    INITIALIZED -> STEPPING -> COMPLETED

and exposes the stored run as a :class:`Trajectory`. It does not build operators
or take steps itself; see :class:`tracer_engine.core_solver.CoreSolver`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, cast

import numpy as np
import numpy.typing as npt

from .errors import raise_dimension_mismatch, raise_invalid_parameter

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, DTypeLike


# Error / message constants -------------------------------------------------

_TIMEGRID_1D_ERROR = "time_grid must be a 1D array"
_TIMEGRID_MIN_POINTS_ERROR = "time_grid must contain at least one time point"
_TIMEGRID_MONOTONE_ERROR = "time_grid must be strictly increasing"

_HISTORY_NOT_STORED_ERROR = (
    "Full history is not stored (store_history=False); get_state_at is unavailable."
)
_NOT_INITIALIZED_ERROR = "Initial state has not been set"
_STEP_OOB_ERROR = "Step out of bounds"
_FINAL_TIMESTEP_ERROR = "Simulation has already reached final timestep"
_DT_INDEX_OOB_ERROR = "dt index out of bounds: {idx}"


# Typing helpers ------------------------------------------------------------

FloatArray = npt.NDArray[np.floating[Any]]


class StepperPhase(StrEnum):
    """Phase of a transient run."""

    INITIALIZED = "initialized"
    STEPPING = "stepping"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True, eq=False)
class Trajectory:
    """Ordered sequence of states and their time stamps.

    Attributes:
        times: Time stamps in seconds, shape (n_steps + 1,).
        states: States, shape (n_steps + 1, n_wet); states[i] is at times[i].
    """

    times: FloatArray
    states: FloatArray

    def __len__(self) -> int:
        return int(self.times.size)

    @property
    def final(self) -> FloatArray:
        """State at the last time stamp."""
        return cast("FloatArray", self.states[-1])

    @property
    def duration(self) -> float:
        """Elapsed time covered by the trajectory."""
        return float(self.times[-1] - self.times[0])


def uniform_time_grid(duration: float, n_steps: int) -> FloatArray:
    """
    Build the time stamps {0, dt, 2 dt, ..., duration} with dt = duration / n_steps.

    Args:
        duration: Total simulated time (s), > 0.
        n_steps: Number of steps, >= 1.

    Raises:
        ParameterError: If duration or n_steps is out of range.

    Returns:
        1D array of n_steps + 1 time stamps.
    """
    if not (np.isfinite(duration) and duration > 0.0):
        raise_invalid_parameter(
            name="duration", value=duration, requirement="must be finite and > 0"
        )
    if int(n_steps) != n_steps or n_steps < 1:
        raise_invalid_parameter(
            name="n_steps", value=n_steps, requirement="must be an integer >= 1"
        )
    dt = float(duration) / int(n_steps)
    grid = dt * np.arange(int(n_steps) + 1, dtype=np.float64)
    grid[-1] = float(duration)
    return grid


class ModelCore:
    """Time grid, current state and history for a transient tracer run."""

    def __init__(
        self,
        n_wet: int,
        time_grid: ArrayLike,
        *,
        store_history: bool = True,
        dtype: DTypeLike = np.float64,
    ) -> None:
        """
        Initialize ModelCore.

        Args:
            n_wet: Length of the tracer state vector.
            time_grid: 1D array of output times, strictly increasing.
            store_history: Whether to keep every state for the trajectory.
            dtype: Floating-point dtype for internal arrays.

        Raises:
            ValueError: if time_grid is invalid.
        """
        self.dtype = np.dtype(dtype)

        self.time_grid = np.asarray(time_grid, dtype=self.dtype)
        if self.time_grid.ndim != 1:
            raise ValueError(_TIMEGRID_1D_ERROR)

        self.n_timesteps = int(self.time_grid.size)
        if self.n_timesteps < 1:
            raise ValueError(_TIMEGRID_MIN_POINTS_ERROR)

        self.dt_grid = np.diff(self.time_grid)
        if np.any(self.dt_grid <= 0):
            raise ValueError(_TIMEGRID_MONOTONE_ERROR)
        # Snap round-off differences so a uniform grid uses one step size.
        if self.dt_grid.size and np.allclose(
            self.dt_grid, self.dt_grid.mean(), rtol=1e-10, atol=0.0
        ):
            self.dt_grid.fill(float(self.dt_grid.mean()))

        self.n_wet = int(n_wet)
        self.state_shape = (self.n_wet,)
        self.store_history = bool(store_history)

        self.current_step = 0
        self.current_state = np.zeros(self.state_shape, dtype=self.dtype)
        self._initialized = False

        # Optional full history: (n_timesteps, n_wet)
        self.state_array: FloatArray | None
        if self.store_history:
            self.state_array = np.zeros(
                (self.n_timesteps, self.n_wet), dtype=self.dtype
            )
        else:
            self.state_array = None

    # ------------------------------------------------------------------
    # Phase / time helpers
    # ------------------------------------------------------------------

    @property
    def phase(self) -> StepperPhase:
        """Current run phase."""
        if self.current_step >= self.n_timesteps - 1:
            return StepperPhase.COMPLETED if self._initialized else StepperPhase.INITIALIZED
        if self.current_step == 0:
            return StepperPhase.INITIALIZED
        return StepperPhase.STEPPING

    @property
    def is_initialized(self) -> bool:
        """Whether an initial state has been set."""
        return self._initialized

    @property
    def current_time(self) -> float:
        """Current simulation time t = time_grid[current_step]."""
        return float(self.time_grid[self.current_step])

    def get_dt(self, step_idx: int) -> float:
        """
        Return dt for the step [t_step_idx, t_step_idx+1].

        Args:
            step_idx: Timestep index in [0, n_timesteps - 1).

        Raises:
            IndexError: if step_idx is out of bounds.

        Returns:
            dt as a float.
        """
        if not (0 <= step_idx < self.n_timesteps - 1):
            raise IndexError(_DT_INDEX_OOB_ERROR.format(idx=step_idx))
        return float(self.dt_grid[step_idx])

    # ------------------------------------------------------------------
    # Initialization / accessors
    # ------------------------------------------------------------------

    def _checked_state(self, state: ArrayLike, name: str) -> FloatArray:
        arr = np.asarray(state, dtype=self.dtype)
        if arr.shape != self.state_shape:
            raise_dimension_mismatch(name=name, expected=self.state_shape, got=arr.shape)
        return arr

    def set_initial_state(self, initial_state: ArrayLike) -> None:
        """
        Set the initial state at time_grid[0] and reset the run.

        Args:
            initial_state: Initial state, shape (n_wet,).
        """
        arr = self._checked_state(initial_state, "initial_state")
        np.copyto(self.current_state, arr)
        self.current_step = 0
        self._initialized = True
        if self.state_array is not None:
            self.state_array[0] = self.current_state

    def get_current_state(self) -> FloatArray:
        """Return the current state."""
        return self.current_state

    def get_state_at(self, step: int) -> FloatArray:
        """
        Return the state at a given timestep from history.

        Args:
            step: Timestep index in [0, current_step].

        Raises:
            RuntimeError: if history is not stored.
            IndexError: if step is out of bounds.

        Returns:
            State at the given timestep.
        """
        if self.state_array is None:
            raise RuntimeError(_HISTORY_NOT_STORED_ERROR)
        if not (0 <= step <= self.current_step):
            raise IndexError(_STEP_OOB_ERROR)
        return cast("FloatArray", self.state_array[step])

    def trajectory(self) -> Trajectory:
        """
        Return the stored trajectory up to the current step.

        Raises:
            RuntimeError: if history is not stored or no initial state was set.

        Returns:
            Trajectory with copies of the stored times and states.
        """
        if self.state_array is None:
            raise RuntimeError(_HISTORY_NOT_STORED_ERROR)
        if not self._initialized:
            raise RuntimeError(_NOT_INITIALIZED_ERROR)
        stop = self.current_step + 1
        return Trajectory(
            times=self.time_grid[:stop].copy(),
            states=self.state_array[:stop].copy(),
        )

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def advance_timestep(self, next_state: ArrayLike) -> None:
        """
        Store the state at the next output time and advance the step counter.

        Args:
            next_state: State at the next timestep, shape (n_wet,).

        Raises:
            RuntimeError: if no initial state was set or the run is complete.
        """
        if not self._initialized:
            raise RuntimeError(_NOT_INITIALIZED_ERROR)
        if self.current_step >= self.n_timesteps - 1:
            raise RuntimeError(_FINAL_TIMESTEP_ERROR)
        arr = self._checked_state(next_state, "next_state")

        np.copyto(self.current_state, arr)
        self.current_step += 1
        if self.state_array is not None:
            self.state_array[self.current_step] = self.current_state
