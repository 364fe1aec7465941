# tests/test_model.py
"""Integration tests for tracer_engine.model.RadiocarbonModel.

Covers the 8-box example end to end: assembly, direct and Newton steady states,
the 4000-year Euler-backward validation run and age conversion.
"""

from __future__ import annotations

import numpy as np
import pytest
from scipy.sparse import csr_matrix

from tracer_engine.box_model import build_box_model
from tracer_engine.config import RadiocarbonConfig
from tracer_engine.errors import DimensionMismatchError
from tracer_engine.model import RadiocarbonModel
from tracer_engine.parameters import SECONDS_PER_YEAR


def test_model_assembles_operators(radiocarbon_model: RadiocarbonModel) -> None:
    """The model exposes M, s, Lambda and the reaction for its grid."""
    model = radiocarbon_model
    rate = model.params.exchange_rate

    assert model.n_wet == 5
    assert model.system_matrix.shape == (5, 5)
    np.testing.assert_allclose(model.source_vector, [rate, rate, rate, 0.0, 0.0])
    np.testing.assert_allclose(model.exchange_operator.diagonal(), model.source_vector)
    np.testing.assert_allclose(
        model.reaction(np.ones(5)), -model.params.decay_rate * np.ones(5)
    )


def test_direct_ages_match_4000_year_transient(radiocarbon_model: RadiocarbonModel) -> None:
    """Direct steady-state ages agree with a 4000-year Euler-backward run."""
    model = radiocarbon_model

    r_direct = model.solve_steady_state()
    traj = model.run_transient(4000.0 * SECONDS_PER_YEAR, 400)

    assert traj.times[-1] == pytest.approx(4000.0 * SECONDS_PER_YEAR)
    np.testing.assert_allclose(traj.final, r_direct, rtol=1e-2)
    np.testing.assert_allclose(model.ages(traj.final), model.ages(r_direct), rtol=5e-2)


def test_transient_approaches_steady_state_monotonically(
    radiocarbon_model: RadiocarbonModel,
) -> None:
    """Starting from R = 1 the distance to the steady state shrinks every step."""
    model = radiocarbon_model
    r_direct = model.solve_steady_state()
    traj = model.run_transient(4000.0 * SECONDS_PER_YEAR, 40)

    distance = np.max(np.abs(traj.states - r_direct), axis=1)
    assert np.all(np.diff(distance) < 0.0)


def test_newton_and_direct_agree(radiocarbon_model: RadiocarbonModel) -> None:
    """The reaction formulation reproduces the linear solution."""
    model = radiocarbon_model
    r_direct = model.solve_steady_state("direct")
    r_newton = model.solve_steady_state("newton", initial_state=np.zeros(5))
    np.testing.assert_allclose(r_newton, r_direct, rtol=1e-8)


def test_imex_transient_matches_implicit(radiocarbon_model: RadiocarbonModel) -> None:
    """The IMEX path converges to the same steady state as the implicit one."""
    model = radiocarbon_model
    duration = 20_000.0 * SECONDS_PER_YEAR
    implicit = model.run_transient(duration, 2_000).final
    imex = model.run_transient(duration, 2_000, method="imex").final
    np.testing.assert_allclose(imex, implicit, rtol=1e-3)


def test_deep_water_is_older_than_surface(radiocarbon_model: RadiocarbonModel) -> None:
    """Deep boxes carry older radiocarbon ages than every surface box."""
    model = radiocarbon_model
    ages = model.ages(model.solve_steady_state()) / SECONDS_PER_YEAR

    surface = model.grid.surface_mask
    assert ages[~surface].min() > ages[surface].max()
    assert np.all(ages > 0.0)
    assert np.all(ages < 5730.0)


def test_stronger_gas_exchange_makes_surface_younger() -> None:
    """Raising the piston velocity pulls surface ratios toward the atmosphere."""
    slow = RadiocarbonConfig(piston_velocity_m_per_year=2.0)
    fast = RadiocarbonConfig(piston_velocity_m_per_year=20.0)
    grid, transport = build_box_model(slow.to_circulation())

    r_slow = RadiocarbonModel(grid, transport, slow.to_parameters()).solve_steady_state()
    r_fast = RadiocarbonModel(grid, transport, fast.to_parameters()).solve_steady_state()

    assert np.all(r_fast > r_slow)


def test_unknown_methods_raise(radiocarbon_model: RadiocarbonModel) -> None:
    """Solver method names are validated."""
    with pytest.raises(ValueError, match="steady-state"):
        radiocarbon_model.solve_steady_state("gmres")  # type: ignore[arg-type]
    with pytest.raises(ValueError, match="transient"):
        radiocarbon_model.run_transient(1.0, 1, method="rk4")  # type: ignore[arg-type]


def test_transport_must_match_grid(box_model) -> None:
    """A transport operator of the wrong size is rejected."""
    grid, _ = box_model
    with pytest.raises(DimensionMismatchError, match="transport"):
        RadiocarbonModel(grid, csr_matrix((4, 4)))


def test_age_policy_passes_through(radiocarbon_model: RadiocarbonModel) -> None:
    """The model's age conversion honours the chosen policy."""
    ages = radiocarbon_model.ages(np.array([0.5, 0.0, 1.0, 1.0, 1.0]), policy="nan")
    assert np.isnan(ages[1])
    assert ages[2] == 0.0
