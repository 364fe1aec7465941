"""Global pytest configuration and shared fixtures for tracer_engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tracer_engine.box_model import build_box_model, build_single_box
from tracer_engine.matrix_ops import clear_implicit_solver_cache
from tracer_engine.model import RadiocarbonModel
from tracer_engine.parameters import TracerParameters

if TYPE_CHECKING:
    from collections.abc import Iterator

    from scipy.sparse import csr_matrix

    from tracer_engine.grid import TracerGrid


# -----------------------------------------------------------------------------
# Solver cache isolation
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _fresh_solver_cache() -> Iterator[None]:
    """Start and finish every test with an empty implicit solver cache."""
    clear_implicit_solver_cache()
    yield
    clear_implicit_solver_cache()


# -----------------------------------------------------------------------------
# Model fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def params() -> TracerParameters:
    """Default radiocarbon parameters (kappa = 50 m / 10 yr, T_1/2 = 5730 yr)."""
    return TracerParameters()


@pytest.fixture
def box_model() -> tuple[TracerGrid, csr_matrix]:
    """The 8-box (5 wet) example grid and its transport operator."""
    return build_box_model()


@pytest.fixture
def single_box() -> tuple[TracerGrid, csr_matrix]:
    """One surface cell with no transport."""
    return build_single_box()


@pytest.fixture
def radiocarbon_model(
    box_model: tuple[TracerGrid, csr_matrix], params: TracerParameters
) -> RadiocarbonModel:
    """RadiocarbonModel on the 8-box example with default parameters."""
    grid, transport = box_model
    return RadiocarbonModel(grid, transport, params)
