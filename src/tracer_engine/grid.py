# src/tracer_engine/grid.py
"""Wet-cell grid container.

A TracerGrid describes the active (wet) cells of a gridded ocean: their volume,
depth, layer thickness, position and surface/bottom flags, together with the
full-grid wet mask used to re-expand wet-cell vectors for export.

Conventions:
    - The full grid has shape (n_lat, n_lon, n_depth); depth is the last axis and
      depth index 0 is the surface layer.
    - Wet cells are enumerated in column-major (Fortran) order of the full grid,
      so all surface cells come before any deeper cell.
    - All arrays are stored read-only; a grid is immutable once built.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import numpy as np

from .errors import raise_dimension_mismatch

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


_ORDER: Final[str] = "F"
_MASK_NDIM_ERROR = "wet3d must be a 3D boolean array (lat, lon, depth); got ndim={ndim}"


def _readonly(values: ArrayLike, dtype: type) -> NDArray:
    arr = np.array(values, dtype=dtype, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, slots=True, eq=False)
class TracerGrid:
    """Immutable description of the wet cells of a 3D grid.

    Attributes:
        wet3d: Full-grid wet mask, shape (n_lat, n_lon, n_depth).
        volume: Cell volumes (m^3), shape (n_wet,).
        depth: Cell-center depths (m), shape (n_wet,).
        thickness: Cell layer thicknesses (m), shape (n_wet,).
        lat: Cell-center latitudes (degrees north), shape (n_wet,).
        lon: Cell-center longitudes (degrees east), shape (n_wet,).
    """

    wet3d: NDArray[np.bool_]
    volume: NDArray[np.floating]
    depth: NDArray[np.floating]
    thickness: NDArray[np.floating]
    lat: NDArray[np.floating]
    lon: NDArray[np.floating]

    def __post_init__(self) -> None:
        """Freeze arrays and validate sizes.

        Raises:
            ValueError: If wet3d is not 3D.
            DimensionMismatchError: If a per-cell array does not have n_wet entries.
        """
        wet3d = _readonly(self.wet3d, bool)
        if wet3d.ndim != 3:
            raise ValueError(_MASK_NDIM_ERROR.format(ndim=wet3d.ndim))
        object.__setattr__(self, "wet3d", wet3d)

        n_wet = int(wet3d.sum())
        for name in ("volume", "depth", "thickness", "lat", "lon"):
            arr = _readonly(getattr(self, name), float)
            if arr.shape != (n_wet,):
                raise_dimension_mismatch(name=name, expected=(n_wet,), got=arr.shape)
            object.__setattr__(self, name, arr)

    @classmethod
    def from_mask(
        cls,
        wet3d: ArrayLike,
        *,
        volume3d: ArrayLike,
        depth3d: ArrayLike,
        thickness3d: ArrayLike,
        lat3d: ArrayLike,
        lon3d: ArrayLike,
    ) -> TracerGrid:
        """
        Build a grid by extracting wet-cell values from full-grid fields.

        Args:
            wet3d: Boolean wet mask, shape (n_lat, n_lon, n_depth).
            volume3d: Cell volumes on the full grid.
            depth3d: Cell-center depths on the full grid.
            thickness3d: Layer thicknesses on the full grid.
            lat3d: Latitudes on the full grid.
            lon3d: Longitudes on the full grid.

        Raises:
            ValueError: If wet3d is not 3D.

        Returns:
            TracerGrid restricted to wet cells.
        """
        mask = np.asarray(wet3d, dtype=bool)
        if mask.ndim != 3:
            raise ValueError(_MASK_NDIM_ERROR.format(ndim=mask.ndim))
        flat_mask = mask.ravel(order=_ORDER)

        def pick(name: str, field: ArrayLike) -> NDArray[np.floating]:
            arr = np.asarray(field, dtype=float)
            try:
                full = np.broadcast_to(arr, mask.shape)
            except ValueError:
                raise_dimension_mismatch(name=name, expected=mask.shape, got=arr.shape)
            return full.ravel(order=_ORDER)[flat_mask]

        return cls(
            wet3d=mask,
            volume=pick("volume3d", volume3d),
            depth=pick("depth3d", depth3d),
            thickness=pick("thickness3d", thickness3d),
            lat=pick("lat3d", lat3d),
            lon=pick("lon3d", lon3d),
        )

    # ------------------------------------------------------------------
    # Derived properties
    # ------------------------------------------------------------------

    @property
    def shape(self) -> tuple[int, int, int]:
        """Full-grid shape (n_lat, n_lon, n_depth)."""
        n_lat, n_lon, n_depth = self.wet3d.shape
        return int(n_lat), int(n_lon), int(n_depth)

    @property
    def n_wet(self) -> int:
        """Number of wet cells."""
        return int(self.volume.size)

    @property
    def wet_indices(self) -> NDArray[np.intp]:
        """Flat (column-major) full-grid indices of the wet cells."""
        return np.flatnonzero(self.wet3d.ravel(order=_ORDER))

    @property
    def level_index(self) -> NDArray[np.intp]:
        """Depth-level index of every wet cell."""
        _lat, _lon, level = np.unravel_index(self.wet_indices, self.shape, order=_ORDER)
        return np.asarray(level, dtype=np.intp)

    @property
    def surface_mask(self) -> NDArray[np.bool_]:
        """True for wet cells in the top layer."""
        return self.level_index == 0

    @property
    def bottom_mask(self) -> NDArray[np.bool_]:
        """True for wet cells with no wet cell directly below them."""
        below = np.zeros_like(self.wet3d)
        below[:, :, :-1] = self.wet3d[:, :, 1:]
        return ~below.ravel(order=_ORDER)[self.wet_indices]

    @property
    def total_volume(self) -> float:
        """Total wet volume in m^3."""
        return float(self.volume.sum())

    # ------------------------------------------------------------------
    # Export helpers
    # ------------------------------------------------------------------

    def expand(self, values: ArrayLike, *, fill: float = np.nan) -> NDArray[np.floating]:
        """
        Re-expand a wet-cell vector onto the full grid.

        Args:
            values: Wet-cell values, shape (n_wet,).
            fill: Value written at dry cells (default NaN, i.e. missing).

        Returns:
            Array of shape (n_lat, n_lon, n_depth) indexed like wet3d.
        """
        vec = np.asarray(values, dtype=float)
        if vec.shape != (self.n_wet,):
            raise_dimension_mismatch(name="values", expected=(self.n_wet,), got=vec.shape)
        flat = np.full(self.wet3d.size, fill, dtype=float)
        flat[self.wet_indices] = vec
        return flat.reshape(self.shape, order=_ORDER)

    def volume_weighted_mean(self, values: ArrayLike) -> float:
        """Return the volume-weighted mean of a wet-cell vector."""
        vec = np.asarray(values, dtype=float)
        if vec.shape != (self.n_wet,):
            raise_dimension_mismatch(name="values", expected=(self.n_wet,), got=vec.shape)
        return float(np.dot(self.volume, vec) / self.volume.sum())
