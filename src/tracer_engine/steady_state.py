# src/tracer_engine/steady_state.py
"""Steady-state solvers for tracer transport.

Two interchangeable strategies are provided:

- :func:`solve_direct` solves the linear system M R = s with a single sparse LU
  factorization. Deterministic, no iteration.
- :func:`solve_newton` finds R with F(R) = -T R + sms(R) = 0 using Newton's method
  globalized by pseudo-transient continuation and a backtracking line search:

      (I / delta - J(R_k)) dR = F(R_k),    R_{k+1} = R_k + alpha dR

  delta = inf is plain Newton. delta grows by switched evolution relaxation
  (delta_{k+1} = delta_k ||F_k|| / ||F_{k+1}||) until it exceeds pseudo_dt_max,
  after which plain Newton is used. Since T does not change, the factorization of
  (I / delta - J) is reused across iterations while the residual contracts well
  and delta is unchanged.

Failure modes:
    - A singular Jacobian does not abort immediately; the pseudo-transient term
      is switched on (or delta shrunk) and the matrix refactorized.
    - Exceeding max_iter raises NonConvergenceError carrying the last iterate.
"""

from __future__ import annotations

import logging
import math
import warnings
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from scipy.sparse import csr_matrix, diags, identity

from .errors import (
    NonConvergenceError,
    SingularMatrixError,
    raise_dimension_mismatch,
    raise_invalid_parameter,
)
from .matrix_ops import as_operator, factorize_operator

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from .matrix_ops import LinearSolver, Operator
    from .reactions import Reaction

logger = logging.getLogger(__name__)


# =============================================================================
# Errors / messages
# =============================================================================

_NON_CONVERGENCE_MSG = (
    "Newton solve did not converge in {iterations} iterations "
    "(residual norm {residual:.3e}, target {target:.3e}, matrix size {n})"
)
_SINGULAR_JACOBIAN_MSG = (
    "Jacobian is singular at iteration {iteration}; "
    "retrying with pseudo time step {pseudo_dt:.3e}"
)
_REPEATED_SINGULAR_DETAIL = (
    "Jacobian remained singular after {retries} pseudo-transient perturbations"
)


# =============================================================================
# Configuration / results
# =============================================================================


@dataclass(slots=True, frozen=True)
class NewtonConfig:
    """Configuration for the Newton steady-state solver.

    Attributes:
        rtol: Relative residual tolerance (relative to ||F(R_0)||).
        atol: Absolute residual tolerance.
        max_iter: Maximum number of Newton iterations.
        pseudo_dt: Initial pseudo time step delta; inf starts with plain Newton.
        pseudo_dt_max: Above this delta the pseudo-transient term is dropped.
        max_backtracks: Maximum step halvings in the line search.
        refactor_ratio: Refactorize when ||F_new|| / ||F_old|| exceeds this ratio.
        max_singular_retries: Pseudo-transient perturbations tried per iteration
            before a singular Jacobian is reported.
    """

    rtol: float = 1e-8
    atol: float = 0.0
    max_iter: int = 50
    pseudo_dt: float = math.inf
    pseudo_dt_max: float = 1e30
    max_backtracks: int = 10
    refactor_ratio: float = 0.5
    max_singular_retries: int = 20

    def __post_init__(self) -> None:
        """Validate configuration values.

        Raises:
            ParameterError: If a value is out of range.
        """
        if not (self.rtol >= 0.0 and self.atol >= 0.0):
            raise_invalid_parameter(
                name="rtol/atol",
                value=(self.rtol, self.atol),
                requirement="tolerances must be >= 0",
            )
        if self.max_iter < 0:
            raise_invalid_parameter(
                name="max_iter", value=self.max_iter, requirement="must be >= 0"
            )
        if not self.pseudo_dt > 0.0:
            raise_invalid_parameter(
                name="pseudo_dt", value=self.pseudo_dt, requirement="must be > 0"
            )
        if not 0.0 < self.refactor_ratio <= 1.0:
            raise_invalid_parameter(
                name="refactor_ratio",
                value=self.refactor_ratio,
                requirement="must be in (0, 1]",
            )


@dataclass(slots=True, frozen=True)
class NewtonResult:
    """Outcome of a Newton steady-state solve.

    Attributes:
        state: Final iterate R.
        converged: Whether the residual tolerance was met.
        iterations: Number of Newton iterations performed.
        residual_norm: ||F(R)||_2 at the final iterate.
        residual_history: Residual norms, starting with ||F(R_0)||.
        n_factorizations: Number of matrix factorizations performed.
        pseudo_dt: Pseudo time step in effect at the end (inf for plain Newton).
    """

    state: NDArray[np.floating]
    converged: bool
    iterations: int
    residual_norm: float
    residual_history: tuple[float, ...]
    n_factorizations: int
    pseudo_dt: float


# =============================================================================
# Direct linear solve
# =============================================================================


def solve_direct(system_matrix: Operator, source: ArrayLike) -> NDArray[np.floating]:
    """
    Solve M R = s with a direct LU factorization.

    Args:
        system_matrix: System matrix M, shape (N, N), sparse or dense.
        source: Source vector s, length N.

    Raises:
        DimensionMismatchError: If M is not square or s has the wrong length.
        SingularMatrixError: If M is singular.

    Returns:
        Steady-state vector R of length N.
    """
    mat = as_operator(system_matrix)
    rhs = np.asarray(source, dtype=np.float64)
    n = int(mat.shape[0])
    if mat.shape != (n, n):
        raise_dimension_mismatch(name="system_matrix", expected="a square matrix", got=mat.shape)
    if rhs.shape != (n,):
        raise_dimension_mismatch(name="source", expected=(n,), got=rhs.shape)

    solve = factorize_operator(mat)
    return np.asarray(solve(rhs), dtype=np.float64)


# =============================================================================
# Newton / pseudo-transient continuation
# =============================================================================


def steady_state_residual(
    transport: Operator,
    reaction: Reaction,
    r: NDArray[np.floating],
) -> NDArray[np.floating]:
    """Return F(r) = -T r + sms(r)."""
    return np.asarray(-(transport @ r) + reaction(r), dtype=np.float64)


def steady_state_jacobian(
    transport: Operator,
    reaction: Reaction,
    r: NDArray[np.floating],
) -> csr_matrix:
    """Return J(r) = -T + diag(sms'(r)) as a CSR matrix."""
    diag = np.asarray(reaction.derivative(r), dtype=np.float64)
    return csr_matrix(-csr_matrix(transport) + diags(diag, 0, format="csr"))


class _NewtonIteration:
    """Mutable state of one Newton solve."""

    def __init__(
        self,
        transport: csr_matrix,
        reaction: Reaction,
        r0: NDArray[np.floating],
        config: NewtonConfig,
    ) -> None:
        self.transport = transport
        self.reaction = reaction
        self.cfg = config
        self.n = int(transport.shape[0])
        self.identity = identity(self.n, format="csr", dtype=np.float64)

        self.r = r0
        self.f = steady_state_residual(transport, reaction, r0)
        self.f_norm = float(np.linalg.norm(self.f))
        self.target = config.atol + config.rtol * self.f_norm
        self.history: list[float] = [self.f_norm]

        self.pseudo_dt = float(config.pseudo_dt)
        self.solver: LinearSolver | None = None
        self.n_factorizations = 0
        self.iterations = 0

    @property
    def converged(self) -> bool:
        return self.f_norm <= self.target

    def result(self) -> NewtonResult:
        return NewtonResult(
            state=self.r.copy(),
            converged=self.converged,
            iterations=self.iterations,
            residual_norm=self.f_norm,
            residual_history=tuple(self.history),
            n_factorizations=self.n_factorizations,
            pseudo_dt=self.pseudo_dt,
        )

    def _fallback_pseudo_dt(self) -> float:
        """Finite pseudo time step that moves R by O(max(||R||, 1)) per step."""
        scale = max(float(np.max(np.abs(self.r))), 1.0)
        f_max = float(np.max(np.abs(self.f)))
        if f_max == 0.0:
            return 1.0
        return scale / f_max

    def _damp(self) -> None:
        """Switch on the pseudo-transient term, or halve delta if already on."""
        if math.isinf(self.pseudo_dt):
            self.pseudo_dt = self._fallback_pseudo_dt()
        else:
            self.pseudo_dt *= 0.5

    def _lhs(self, jac: csr_matrix) -> csr_matrix:
        if math.isinf(self.pseudo_dt):
            return csr_matrix(-jac)
        return csr_matrix(self.identity / self.pseudo_dt - jac)

    def _recover_from_singular(self, exc: SingularMatrixError, retries: int) -> None:
        """Damp after a singular solve, or raise once the retry budget is spent."""
        if retries >= self.cfg.max_singular_retries:
            raise SingularMatrixError(
                _REPEATED_SINGULAR_DETAIL.format(retries=retries),
                code=exc.code,
                context={
                    **exc.context,
                    "iteration": self.iterations,
                    "residual_norm": self.f_norm,
                },
            ) from exc
        self._damp()
        warnings.warn(
            _SINGULAR_JACOBIAN_MSG.format(iteration=self.iterations, pseudo_dt=self.pseudo_dt),
            RuntimeWarning,
            stacklevel=4,
        )

    def factorize(self) -> LinearSolver:
        jac = steady_state_jacobian(self.transport, self.reaction, self.r)
        retries = 0
        while True:
            try:
                solver = factorize_operator(self._lhs(jac))
            except SingularMatrixError as exc:
                self._recover_from_singular(exc, retries)
                retries += 1
                continue
            self.n_factorizations += 1
            return solver

    def _solve_step(self) -> tuple[NDArray[np.floating], bool]:
        """Return (dR, fresh) where fresh tells whether the matrix was just built."""
        fresh = self.solver is None
        if self.solver is None:
            self.solver = self.factorize()
        retries = 0
        while True:
            try:
                step = self.solver(self.f)
            except SingularMatrixError as exc:
                # Non-finite step from a nearly singular factorization.
                self._recover_from_singular(exc, retries)
                retries += 1
                self.solver = self.factorize()
                fresh = True
                continue
            return np.asarray(step, dtype=np.float64), fresh

    def _line_search(
        self, step: NDArray[np.floating]
    ) -> tuple[NDArray[np.floating], NDArray[np.floating], float, float] | None:
        alpha = 1.0
        for _ in range(self.cfg.max_backtracks + 1):
            r_try = self.r + alpha * step
            f_try = steady_state_residual(self.transport, self.reaction, r_try)
            f_try_norm = float(np.linalg.norm(f_try))
            if np.isfinite(f_try_norm) and f_try_norm < self.f_norm:
                return r_try, f_try, f_try_norm, alpha
            alpha *= 0.5
        return None

    def _update_pseudo_dt(self, old_norm: float) -> None:
        if math.isinf(self.pseudo_dt):
            return
        grown = self.pseudo_dt * old_norm / max(self.f_norm, np.finfo(float).tiny)
        self.pseudo_dt = math.inf if grown > self.cfg.pseudo_dt_max else grown
        self.solver = None

    def iterate(self) -> None:
        self.iterations += 1
        step, fresh = self._solve_step()
        accepted = self._line_search(step)

        if accepted is None:
            # No decrease along this direction: refresh a stale factorization,
            # otherwise damp harder.
            self.solver = None
            if fresh:
                self._damp()
            logger.debug(
                "newton iter=%d line search failed; pseudo_dt=%.3e",
                self.iterations,
                self.pseudo_dt,
            )
            return

        r_new, f_new, f_new_norm, alpha = accepted
        old_norm = self.f_norm
        self.r, self.f, self.f_norm = r_new, f_new, f_new_norm
        self.history.append(f_new_norm)

        if alpha < 1.0 or f_new_norm > self.cfg.refactor_ratio * old_norm:
            self.solver = None
        self._update_pseudo_dt(old_norm)

        logger.debug(
            "newton iter=%d residual=%.3e alpha=%.3g pseudo_dt=%.3e",
            self.iterations,
            self.f_norm,
            alpha,
            self.pseudo_dt,
        )


def solve_newton(
    transport: Operator,
    reaction: Reaction,
    initial_state: ArrayLike | None = None,
    *,
    config: NewtonConfig | None = None,
) -> NewtonResult:
    """
    Solve -T R + sms(R) = 0 with globalized Newton iteration.

    Args:
        transport: Transport operator T, shape (N, N).
        reaction: Pointwise reaction term providing sms(R) and its derivative.
        initial_state: Initial guess R_0 (default: ones).
        config: Solver configuration (default: NewtonConfig()).

    Raises:
        DimensionMismatchError: If T is not square or R_0 has the wrong length.
        NonConvergenceError: If the tolerance is not met within max_iter.
        SingularMatrixError: If the Jacobian stays singular despite perturbation.

    Returns:
        NewtonResult describing the converged solution.
    """
    cfg = config or NewtonConfig()
    t_csr = csr_matrix(as_operator(transport))
    n = int(t_csr.shape[0])
    if t_csr.shape != (n, n):
        raise_dimension_mismatch(name="transport", expected="a square matrix", got=t_csr.shape)

    if initial_state is None:
        r0 = np.ones(n, dtype=np.float64)
    else:
        r0 = np.array(initial_state, dtype=np.float64, copy=True)
    if r0.shape != (n,):
        raise_dimension_mismatch(name="initial_state", expected=(n,), got=r0.shape)

    state = _NewtonIteration(t_csr, reaction, r0, cfg)
    while not state.converged and state.iterations < cfg.max_iter:
        state.iterate()

    result = state.result()
    if not result.converged:
        raise NonConvergenceError(
            _NON_CONVERGENCE_MSG.format(
                iterations=result.iterations,
                residual=result.residual_norm,
                target=state.target,
                n=n,
            ),
            iterations=result.iterations,
            residual_norm=result.residual_norm,
            result=result,
        )
    logger.debug(
        "newton converged in %d iterations (%d factorizations)",
        result.iterations,
        result.n_factorizations,
    )
    return result
