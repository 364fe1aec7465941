# src/tracer_engine/model.py
"""High-level radiocarbon model tying grid, operators and solvers together.

RadiocarbonModel assembles, once per instance, the exchange operator, the
system matrix M = T + Lambda + lambda I, the source vector and the reaction
term, then exposes the steady-state, transient and age computations on them.

Example:
    >>> from tracer_engine import RadiocarbonModel, build_box_model
    >>> grid, transport = build_box_model()
    >>> model = RadiocarbonModel(grid, transport)
    >>> r = model.solve_steady_state()
    >>> ages = model.ages(r)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

import numpy as np
from scipy.sparse import csr_matrix

from .age import AgePolicy, tracer_age
from .core_solver import RunConfig, time_step
from .errors import raise_dimension_mismatch
from .matrix_ops import (
    as_operator,
    build_exchange_operator,
    build_source_vector,
    build_system_matrix,
)
from .parameters import TracerParameters
from .reactions import RadiocarbonReaction
from .steady_state import NewtonConfig, solve_direct, solve_newton

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from .grid import TracerGrid
    from .matrix_ops import Operator
    from .model_core import Trajectory

SteadyStateMethod = Literal["direct", "newton"]
TransientMethod = Literal["implicit", "imex"]

_UNKNOWN_METHOD_ERROR = "Unknown {kind} method: {method!r}; expected one of {allowed}"


class RadiocarbonModel:
    """Radiocarbon transport on a fixed grid and transport operator."""

    def __init__(
        self,
        grid: TracerGrid,
        transport: Operator,
        params: TracerParameters | None = None,
    ) -> None:
        """
        Initialize the model and assemble its operators.

        Args:
            grid: Wet-cell grid; its surface mask selects gas-exchanging cells.
            transport: Transport operator T, shape (n_wet, n_wet).
            params: Physical parameters (default: TracerParameters()).

        Raises:
            DimensionMismatchError: If T does not match the grid size.
        """
        self.grid = grid
        self.params = params or TracerParameters()

        t_op = as_operator(transport)
        expected = (grid.n_wet, grid.n_wet)
        if t_op.shape != expected:
            raise_dimension_mismatch(name="transport", expected=expected, got=t_op.shape)
        self.transport: csr_matrix = csr_matrix(t_op)

        mask = grid.surface_mask
        self.exchange_operator = build_exchange_operator(mask, self.params)
        self.system_matrix = build_system_matrix(self.transport, mask, self.params)
        self.source_vector = build_source_vector(
            self.exchange_operator, self.params.atmospheric_reference
        )
        self.reaction = RadiocarbonReaction(mask, self.params)

    @property
    def n_wet(self) -> int:
        """Number of wet cells (length of the state vector)."""
        return self.grid.n_wet

    def solve_steady_state(
        self,
        method: SteadyStateMethod = "direct",
        *,
        initial_state: ArrayLike | None = None,
        newton_config: NewtonConfig | None = None,
    ) -> NDArray[np.floating]:
        """
        Solve for the steady-state tracer field.

        Args:
            method: "direct" (sparse LU on M R = s) or "newton".
            initial_state: Initial guess for Newton (default: ones).
            newton_config: Newton solver configuration.

        Raises:
            ValueError: If method is unknown.

        Returns:
            Steady-state vector R of length n_wet.
        """
        if method == "direct":
            return solve_direct(self.system_matrix, self.source_vector)
        if method == "newton":
            result = solve_newton(
                self.transport,
                self.reaction,
                initial_state,
                config=newton_config,
            )
            return result.state
        raise ValueError(
            _UNKNOWN_METHOD_ERROR.format(
                kind="steady-state", method=method, allowed=("direct", "newton")
            )
        )

    def run_transient(
        self,
        duration: float,
        n_steps: int,
        *,
        initial_state: ArrayLike | None = None,
        method: TransientMethod = "implicit",
        config: RunConfig | None = None,
    ) -> Trajectory:
        """
        Integrate the tracer forward in time with Euler-backward steps.

        Args:
            duration: Simulated time in seconds.
            n_steps: Number of equal steps.
            initial_state: R_0 (default: ones).
            method: "implicit" treats M implicitly with constant source s;
                "imex" treats T implicitly and the reaction term explicitly.
            config: Optional run configuration.

        Raises:
            ValueError: If method is unknown.

        Returns:
            Trajectory at times {0, dt, ..., duration}.
        """
        r0 = np.ones(self.n_wet) if initial_state is None else initial_state
        if method == "implicit":
            return time_step(
                self.system_matrix, self.source_vector, r0, duration, n_steps, config=config
            )
        if method == "imex":
            return time_step(
                self.transport,
                lambda _t, r: self.reaction(r),
                r0,
                duration,
                n_steps,
                config=config,
            )
        raise ValueError(
            _UNKNOWN_METHOD_ERROR.format(
                kind="transient", method=method, allowed=("implicit", "imex")
            )
        )

    def ages(
        self,
        state: ArrayLike,
        *,
        policy: AgePolicy = "raise",
    ) -> NDArray[np.floating]:
        """Return tracer ages in seconds for a state vector."""
        return tracer_age(state, self.params.decay_rate, policy=policy)
