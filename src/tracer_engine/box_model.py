# src/tracer_engine/box_model.py
"""Hand-built box-model circulations.

The 2 x 2 x 2 (lat x lon x depth) example grid has 8 boxes, 5 of them wet:

    index  box                      level
    0      Southern Ocean surface   surface
    1      North Atlantic surface   surface
    2      North Pacific surface    surface
    3      Southern deep            deep
    4      Northern deep            deep

Circulation (volume transports in m^3/s):

    ACC: exchange between the Southern Ocean surface and the southern deep box.
    MOC: overturning loop  NP -> NA -> N deep -> S deep -> SO -> NP.
    MIX: exchange NA <-> N deep and S deep <-> N deep.

Transport operators follow dR/dt = -T R, with upwind advection: a directed
flux F from box i to box j adds F/V_i to T[i, i] and -F/V_j to T[j, i].
"""

from __future__ import annotations

import warnings
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

import numpy as np
from scipy.sparse import coo_matrix, csr_matrix

from .errors import raise_dimension_mismatch, raise_invalid_parameter
from .grid import TracerGrid
from .parameters import SVERDRUP

if TYPE_CHECKING:
    from numpy.typing import ArrayLike


# Example geometry ----------------------------------------------------------

BOX_AREA: Final[float] = 9.0e13
SURFACE_THICKNESS: Final[float] = 100.0
DEEP_THICKNESS: Final[float] = 3900.0

SOUTHERN_SURFACE: Final[int] = 0
ATLANTIC_SURFACE: Final[int] = 1
PACIFIC_SURFACE: Final[int] = 2
SOUTHERN_DEEP: Final[int] = 3
NORTHERN_DEEP: Final[int] = 4

BOX_NAMES: Final[tuple[str, ...]] = (
    "southern_surface",
    "atlantic_surface",
    "pacific_surface",
    "southern_deep",
    "northern_deep",
)

_CONSERVATION_WARNING = (
    "Fluxes do not conserve volume: box {box} has net inflow {net:.3e} m^3/s"
)

Flux = tuple[int, int, float]


@dataclass(frozen=True, slots=True)
class BoxCirculation:
    """Circulation strengths of the 8-box example (m^3/s).

    Attributes:
        acc: Southern Ocean surface/deep exchange.
        moc: Meridional overturning transport.
        mix: Mixing exchange strength.
    """

    acc: float = 100.0 * SVERDRUP
    moc: float = 15.0 * SVERDRUP
    mix: float = 10.0 * SVERDRUP

    def __post_init__(self) -> None:
        for name in ("acc", "moc", "mix"):
            value = getattr(self, name)
            if not (np.isfinite(value) and value >= 0.0):
                raise_invalid_parameter(
                    name=name, value=value, requirement="must be finite and >= 0"
                )

    def fluxes(self) -> list[Flux]:
        """Directed (source, destination, rate) fluxes between wet boxes."""
        out: list[Flux] = [
            (SOUTHERN_SURFACE, SOUTHERN_DEEP, self.acc),
            (SOUTHERN_DEEP, SOUTHERN_SURFACE, self.acc),
            (PACIFIC_SURFACE, ATLANTIC_SURFACE, self.moc),
            (ATLANTIC_SURFACE, NORTHERN_DEEP, self.moc),
            (NORTHERN_DEEP, SOUTHERN_DEEP, self.moc),
            (SOUTHERN_DEEP, SOUTHERN_SURFACE, self.moc),
            (SOUTHERN_SURFACE, PACIFIC_SURFACE, self.moc),
        ]
        out.extend(exchange(ATLANTIC_SURFACE, NORTHERN_DEEP, self.mix))
        out.extend(exchange(SOUTHERN_DEEP, NORTHERN_DEEP, self.mix))
        return out


def exchange(i: int, j: int, rate: float) -> list[Flux]:
    """Return the two directed fluxes of a symmetric exchange between i and j."""
    return [(i, j, rate), (j, i, rate)]


def build_flux_transport(
    volumes: ArrayLike,
    fluxes: Iterable[Flux],
    *,
    check_conservation: bool = True,
) -> csr_matrix:
    """
    Build an upwind advective transport operator from directed box fluxes.

    Args:
        volumes: Box volumes (m^3), length N.
        fluxes: Iterable of (source, destination, rate) with rate in m^3/s.
        check_conservation: Warn when net inflow is non-zero for any box.

    Raises:
        DimensionMismatchError: If a flux references a box outside [0, N).
        ParameterError: If a volume is not positive or a rate is negative.

    Returns:
        Transport operator T (1/s) as a CSR matrix, dR/dt = -T R.
    """
    vol = np.asarray(volumes, dtype=np.float64)
    if vol.ndim != 1:
        raise_dimension_mismatch(name="volumes", expected="a 1D vector", got=vol.shape)
    if np.any(~np.isfinite(vol) | (vol <= 0.0)):
        raise_invalid_parameter(name="volumes", value=vol, requirement="must be > 0")
    n = int(vol.size)

    rows: list[int] = []
    cols: list[int] = []
    data: list[float] = []
    net = np.zeros(n, dtype=np.float64)
    total_rate = 0.0

    for src, dst, rate in fluxes:
        if not (0 <= src < n and 0 <= dst < n):
            raise_dimension_mismatch(name="flux", expected=f"box indices in [0, {n})", got=(src, dst))
        if not (np.isfinite(rate) and rate >= 0.0):
            raise_invalid_parameter(name="flux rate", value=rate, requirement="must be >= 0")
        rows.extend((src, dst))
        cols.extend((src, src))
        data.extend((rate / vol[src], -rate / vol[dst]))
        net[src] -= rate
        net[dst] += rate
        total_rate += rate

    if check_conservation:
        tolerance = 1e-12 * max(total_rate, 1.0)
        for box in np.flatnonzero(np.abs(net) > tolerance):
            warnings.warn(
                _CONSERVATION_WARNING.format(box=int(box), net=float(net[box])),
                RuntimeWarning,
                stacklevel=2,
            )

    return coo_matrix((data, (rows, cols)), shape=(n, n)).tocsr()


def build_box_grid() -> TracerGrid:
    """Return the 2 x 2 x 2 example grid with its 5 wet boxes."""
    wet3d = np.zeros((2, 2, 2), dtype=bool)
    wet3d[0, 0, 0] = True  # Southern Ocean surface
    wet3d[1, 0, 0] = True  # North Atlantic surface
    wet3d[1, 1, 0] = True  # North Pacific surface
    wet3d[0, 0, 1] = True  # southern deep
    wet3d[1, 0, 1] = True  # northern deep

    thickness = np.array([SURFACE_THICKNESS, DEEP_THICKNESS])
    depth = np.array([0.5 * SURFACE_THICKNESS, SURFACE_THICKNESS + 0.5 * DEEP_THICKNESS])
    lat = np.array([-60.0, 30.0])
    lon = np.array([330.0, 180.0])

    return TracerGrid.from_mask(
        wet3d,
        volume3d=BOX_AREA * thickness[None, None, :],
        depth3d=depth[None, None, :],
        thickness3d=thickness[None, None, :],
        lat3d=lat[:, None, None],
        lon3d=lon[None, :, None],
    )


def build_box_model(
    circulation: BoxCirculation | None = None,
) -> tuple[TracerGrid, csr_matrix]:
    """
    Build the 8-box (5 wet) example grid and its transport operator.

    Args:
        circulation: Circulation strengths (default: ACC=100 Sv, MOC=15 Sv,
            MIX=10 Sv).

    Returns:
        (grid, transport) with transport of shape (5, 5).
    """
    circ = circulation or BoxCirculation()
    grid = build_box_grid()
    transport = build_flux_transport(grid.volume, circ.fluxes())
    return grid, transport


def build_single_box(
    *,
    thickness: float = SURFACE_THICKNESS,
    area: float = BOX_AREA,
) -> tuple[TracerGrid, csr_matrix]:
    """
    Build a one-cell surface grid with no transport (T = 0).

    Its steady state is R = kappa / (kappa + lambda h) for R_atm = 1.

    Args:
        thickness: Layer thickness h (m).
        area: Horizontal area (m^2).

    Returns:
        (grid, transport) with transport of shape (1, 1).
    """
    wet3d = np.ones((1, 1, 1), dtype=bool)
    grid = TracerGrid.from_mask(
        wet3d,
        volume3d=area * thickness,
        depth3d=0.5 * thickness,
        thickness3d=thickness,
        lat3d=0.0,
        lon3d=0.0,
    )
    return grid, csr_matrix((1, 1), dtype=np.float64)
