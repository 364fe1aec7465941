# tests/test_grid.py
"""Unit tests for tracer_engine.grid.TracerGrid."""

from __future__ import annotations

import numpy as np
import pytest

from tracer_engine.errors import DimensionMismatchError
from tracer_engine.grid import TracerGrid


def _column_grid() -> TracerGrid:
    """Two water columns of depth 3 and 1 on a 2 x 1 x 3 grid."""
    wet3d = np.zeros((2, 1, 3), dtype=bool)
    wet3d[0, 0, :] = True
    wet3d[1, 0, 0] = True
    thickness = np.array([10.0, 20.0, 30.0])
    return TracerGrid.from_mask(
        wet3d,
        volume3d=2.0 * thickness[None, None, :],
        depth3d=np.array([5.0, 20.0, 45.0])[None, None, :],
        thickness3d=thickness[None, None, :],
        lat3d=np.array([-10.0, 10.0])[:, None, None],
        lon3d=0.0,
    )


def test_from_mask_enumerates_wet_cells_column_major() -> None:
    """Wet cells are ordered with latitude fastest and depth slowest."""
    grid = _column_grid()

    assert grid.shape == (2, 1, 3)
    assert grid.n_wet == 4
    # Order: (0,0,0), (1,0,0), (0,0,1), (0,0,2)
    np.testing.assert_allclose(grid.lat, [-10.0, 10.0, -10.0, -10.0])
    np.testing.assert_allclose(grid.thickness, [10.0, 10.0, 20.0, 30.0])
    np.testing.assert_array_equal(grid.level_index, [0, 0, 1, 2])


def test_surface_and_bottom_masks() -> None:
    """Surface cells sit in level 0; bottom cells have no wet cell below."""
    grid = _column_grid()
    np.testing.assert_array_equal(grid.surface_mask, [True, True, False, False])
    np.testing.assert_array_equal(grid.bottom_mask, [False, True, False, True])


def test_volume_totals_and_weighted_mean() -> None:
    """Volume-weighted mean uses the per-cell volumes."""
    grid = _column_grid()
    assert grid.total_volume == pytest.approx(2.0 * (10 + 10 + 20 + 30))
    values = np.array([1.0, 1.0, 0.0, 0.0])
    assert grid.volume_weighted_mean(values) == pytest.approx(40.0 / 140.0)


def test_expand_fills_dry_cells_with_nan() -> None:
    """Re-expansion places values at wet cells and NaN elsewhere."""
    grid = _column_grid()
    full = grid.expand(np.arange(4.0))

    assert full.shape == grid.shape
    assert np.isnan(full[1, 0, 1])
    assert np.isnan(full[1, 0, 2])
    assert full[0, 0, 0] == 0.0
    assert full[1, 0, 0] == 1.0
    assert full[0, 0, 2] == 3.0
    np.testing.assert_array_equal(~np.isnan(full), grid.wet3d)


def test_expand_custom_fill() -> None:
    """A custom fill value replaces NaN at dry cells."""
    full = _column_grid().expand(np.ones(4), fill=-1.0)
    assert (full == -1.0).sum() == 2


def test_expand_wrong_length_raises() -> None:
    """Vectors must have one entry per wet cell."""
    with pytest.raises(DimensionMismatchError):
        _column_grid().expand(np.ones(5))


def test_grid_arrays_are_read_only() -> None:
    """Grid arrays cannot be modified after construction."""
    grid = _column_grid()
    with pytest.raises(ValueError, match="read-only"):
        grid.volume[0] = 1.0


def test_from_mask_rejects_incompatible_field() -> None:
    """Fields that do not broadcast to the mask shape are rejected."""
    wet3d = np.ones((2, 2, 2), dtype=bool)
    with pytest.raises(DimensionMismatchError, match="volume3d"):
        TracerGrid.from_mask(
            wet3d,
            volume3d=np.ones(3),
            depth3d=1.0,
            thickness3d=1.0,
            lat3d=0.0,
            lon3d=0.0,
        )


def test_direct_construction_validates_lengths() -> None:
    """Per-cell arrays must match the number of wet cells."""
    wet3d = np.ones((1, 1, 2), dtype=bool)
    with pytest.raises(DimensionMismatchError, match="depth"):
        TracerGrid(
            wet3d=wet3d,
            volume=np.ones(2),
            depth=np.ones(3),
            thickness=np.ones(2),
            lat=np.zeros(2),
            lon=np.zeros(2),
        )


def test_mask_must_be_3d() -> None:
    """Two-dimensional masks are rejected."""
    with pytest.raises(ValueError, match="3D"):
        TracerGrid.from_mask(
            np.ones((2, 2), dtype=bool),
            volume3d=1.0,
            depth3d=1.0,
            thickness3d=1.0,
            lat3d=0.0,
            lon3d=0.0,
        )
