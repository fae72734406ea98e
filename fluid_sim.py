"""Stable Fluid solver for buoyant smoke and fire."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields, replace
from enum import IntEnum
from math import floor
from typing import NamedTuple

import numpy as np
from numba import njit

logger = logging.getLogger(__name__)

MIN_GRID_SIZE = 32
SOLVER_ITERATIONS = 20

# No nnan/ninf: the sweeps test their samples for non-finite values.
_FASTMATH = {"nsz", "arcp", "contract", "afn", "reassoc"}


class FieldKind(IntEnum):
    """Boundary treatment tag for a field."""

    SCALAR = 0
    VELOCITY_X = 1
    VELOCITY_Y = 2


@dataclass(frozen=True)
class FluidParams:
    n: int = 100
    dt: float = 0.08
    viscosity: float = 0.04
    diffusion: float = 1e-4
    buoyancy: float = 0.1
    inject_strength: float = 300.0
    temperature_decay: float = 0.09

    def __post_init__(self) -> None:
        if isinstance(self.n, bool) or not isinstance(self.n, (int, np.integer)):
            raise ValueError(f"grid size must be an integer, got {self.n!r}")
        if self.n < MIN_GRID_SIZE:
            raise ValueError(f"grid size must be >= {MIN_GRID_SIZE}, got {self.n}")
        for f in fields(self):
            if f.name == "n":
                continue
            value = getattr(self, f.name)
            if not math.isfinite(value):
                raise ValueError(f"{f.name} must be finite, got {value!r}")
            if value < 0:
                raise ValueError(f"{f.name} must be non-negative, got {value!r}")
        if self.dt <= 0:
            raise ValueError(f"dt must be positive, got {self.dt!r}")

    def with_changes(self, **changes) -> "FluidParams":
        return replace(self, **changes)

    @classmethod
    def preset(cls, top_to_bottom: bool = False, fullscreen: bool = False) -> "FluidParams":
        """Starting conditions for each flow orientation.

        Falling smoke needs a strong buoyancy term and slow decay; the rising
        plume uses a small timestep and burns off quickly. Fullscreen runs a
        coarser grid to keep the frame rate up.
        """
        if top_to_bottom:
            return cls(dt=0.08, viscosity=0.024, buoyancy=2.6, diffusion=1e-4,
                       inject_strength=300.0, temperature_decay=0.05)
        if fullscreen:
            return cls(n=50, dt=0.02, viscosity=0.012, buoyancy=0.1, diffusion=1e-4,
                       inject_strength=300.0, temperature_decay=0.6)
        return cls(dt=0.02, viscosity=0.018, buoyancy=0.1, diffusion=1e-4,
                   inject_strength=300.0, temperature_decay=0.31)


def clamp_grid_size(value: float) -> int:
    return max(MIN_GRID_SIZE, int(value))


@dataclass
class GridState:
    """Every per-cell field of one simulation, padded by a one-cell border.

    Arrays are ``(n + 2, n + 2)`` and indexed ``[j, i]`` so the flattened
    index of cell ``(i, j)`` is ``i + j * size``.
    """

    n: int
    density: np.ndarray
    prev_density: np.ndarray
    temperature: np.ndarray
    prev_temperature: np.ndarray
    vel_x: np.ndarray
    vel_y: np.ndarray
    prev_vel_x: np.ndarray
    prev_vel_y: np.ndarray
    pressure: np.ndarray
    divergence: np.ndarray

    @property
    def size(self) -> int:
        return self.n + 2

    def idx(self, i: int, j: int) -> int:
        return i + j * self.size

    def arrays(self) -> tuple[np.ndarray, ...]:
        return tuple(getattr(self, f.name) for f in fields(self) if f.name != "n")

    def clear(self) -> None:
        for field in self.arrays():
            field.fill(0.0)


class FieldSnapshot(NamedTuple):
    density: np.ndarray
    temperature: np.ndarray
    vel_x: np.ndarray
    vel_y: np.ndarray


def initialize(n: int) -> GridState:
    """Allocate a fresh, zero-filled grid with ``n`` interior cells per side."""
    if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n < MIN_GRID_SIZE:
        raise ValueError(f"grid size must be an integer >= {MIN_GRID_SIZE}, got {n!r}")
    n = int(n)
    shape = (n + 2, n + 2)
    names = [f.name for f in fields(GridState) if f.name != "n"]
    state = GridState(n=n, **{name: np.zeros(shape, dtype=np.float32) for name in names})
    logger.info("Initialized %dx%d grid (%d fields)", n, n, len(names))
    return state


@njit(cache=True, fastmath=_FASTMATH)
def _set_bnd_numba(b: int, x: np.ndarray, n: int) -> None:
    for i in range(1, n + 1):
        if b == 2:
            x[0, i] = -x[1, i]
            x[n + 1, i] = -x[n, i]
        else:
            x[0, i] = x[1, i]
            x[n + 1, i] = x[n, i]

        if b == 1:
            x[i, 0] = -x[i, 1]
            x[i, n + 1] = -x[i, n]
        else:
            x[i, 0] = x[i, 1]
            x[i, n + 1] = x[i, n]

    x[0, 0] = 0.5 * (x[1, 0] + x[0, 1])
    x[0, n + 1] = 0.5 * (x[1, n + 1] + x[0, n])
    x[n + 1, 0] = 0.5 * (x[n, 0] + x[n + 1, 1])
    x[n + 1, n + 1] = 0.5 * (x[n, n + 1] + x[n + 1, n])


@njit(cache=True, fastmath=_FASTMATH)
def _lin_solve_numba(b: int, x: np.ndarray, x0: np.ndarray, a: float, c: float, n: int) -> None:
    c_recip = 1.0 / c
    for _ in range(SOLVER_ITERATIONS):
        for j in range(1, n + 1):
            for i in range(1, n + 1):
                value = (
                    x0[j, i]
                    + a * (
                        x[j, i - 1]
                        + x[j, i + 1]
                        + x[j - 1, i]
                        + x[j + 1, i]
                    )
                ) * c_recip
                if not math.isfinite(value):
                    value = 0.0
                x[j, i] = value
        _set_bnd_numba(b, x, n)


@njit(cache=True, fastmath=_FASTMATH)
def _diffuse_numba(b: int, x: np.ndarray, x0: np.ndarray, diff: float, dt: float, n: int) -> None:
    a = dt * diff * n * n
    _lin_solve_numba(b, x, x0, a, 1.0 + 4.0 * a, n)


@njit(cache=True, fastmath=_FASTMATH)
def _advect_numba(
    b: int,
    d: np.ndarray,
    d0: np.ndarray,
    veloc_x: np.ndarray,
    veloc_y: np.ndarray,
    dt: float,
    n: int,
) -> None:
    dt0 = dt * n
    for j in range(1, n + 1):
        for i in range(1, n + 1):
            x = i - dt0 * veloc_x[j, i]
            y = j - dt0 * veloc_y[j, i]
            if not (math.isfinite(x) and math.isfinite(y)):
                d[j, i] = 0.0
                continue
            if x < 0.5:
                x = 0.5
            elif x > n + 0.5:
                x = n + 0.5
            if y < 0.5:
                y = 0.5
            elif y > n + 0.5:
                y = n + 0.5
            i0 = int(floor(x))
            i1 = i0 + 1
            j0 = int(floor(y))
            j1 = j0 + 1
            s1 = x - i0
            s0 = 1.0 - s1
            t1 = y - j0
            t0 = 1.0 - t1
            value = (
                s0 * (t0 * d0[j0, i0] + t1 * d0[j1, i0])
                + s1 * (t0 * d0[j0, i1] + t1 * d0[j1, i1])
            )
            if not math.isfinite(value):
                value = 0.0
            d[j, i] = value
    _set_bnd_numba(b, d, n)


@njit(cache=True, fastmath=_FASTMATH)
def _project_numba(
    veloc_x: np.ndarray,
    veloc_y: np.ndarray,
    p: np.ndarray,
    div: np.ndarray,
    n: int,
) -> None:
    for j in range(1, n + 1):
        for i in range(1, n + 1):
            div[j, i] = -0.5 * (
                veloc_x[j, i + 1]
                - veloc_x[j, i - 1]
                + veloc_y[j + 1, i]
                - veloc_y[j - 1, i]
            ) / n
            p[j, i] = 0.0
    _set_bnd_numba(0, div, n)
    _set_bnd_numba(0, p, n)
    _lin_solve_numba(0, p, div, 1.0, 4.0, n)

    for j in range(1, n + 1):
        for i in range(1, n + 1):
            veloc_x[j, i] -= 0.5 * n * (p[j, i + 1] - p[j, i - 1])
            veloc_y[j, i] -= 0.5 * n * (p[j + 1, i] - p[j - 1, i])
    _set_bnd_numba(1, veloc_x, n)
    _set_bnd_numba(2, veloc_y, n)


def _interior(field: np.ndarray) -> int:
    return field.shape[0] - 2


def apply_bounds(kind: FieldKind, field: np.ndarray) -> None:
    """Rewrite the border ring of ``field`` in place from its interior."""
    _set_bnd_numba(int(kind), field, _interior(field))


def lin_solve(kind: FieldKind, dst: np.ndarray, src: np.ndarray, a: float, c: float) -> None:
    _lin_solve_numba(int(kind), dst, src, float(a), float(c), _interior(dst))


def diffuse(kind: FieldKind, dst: np.ndarray, src: np.ndarray, rate: float, dt: float) -> None:
    _diffuse_numba(int(kind), dst, src, float(rate), float(dt), _interior(dst))


def advect(
    kind: FieldKind,
    dst: np.ndarray,
    src: np.ndarray,
    vel_x: np.ndarray,
    vel_y: np.ndarray,
    dt: float,
) -> None:
    _advect_numba(int(kind), dst, src, vel_x, vel_y, float(dt), _interior(dst))


def project(vel_x: np.ndarray, vel_y: np.ndarray, pressure: np.ndarray, div: np.ndarray) -> None:
    """Remove the divergent part of the velocity field, in place.

    ``pressure`` and ``div`` are scratch buffers; their previous contents
    are discarded.
    """
    _project_numba(vel_x, vel_y, pressure, div, _interior(vel_x))


def divergence(vel_x: np.ndarray, vel_y: np.ndarray) -> np.ndarray:
    """Discrete divergence over the interior cells, as ``project`` measures it."""
    n = _interior(vel_x)
    du = vel_x[1:-1, 2:] - vel_x[1:-1, :-2]
    dv = vel_y[2:, 1:-1] - vel_y[:-2, 1:-1]
    return -0.5 * (du + dv) / n


def _apply_buoyancy(state: GridState, params: FluidParams) -> None:
    inner = (slice(1, state.n + 1), slice(1, state.n + 1))
    force = params.buoyancy * state.temperature[inner] - 0.1 * state.density[inner]
    state.vel_y[inner] -= force * params.dt


def _decay(field: np.ndarray, rate: float) -> None:
    np.maximum(field - rate * field, 0.0, out=field)


def step(state: GridState, params: FluidParams) -> GridState:
    """Advance the simulation by one tick, mutating ``state`` in place."""
    if params.n != state.n:
        raise ValueError(f"params sized for n={params.n} but grid has n={state.n}")
    dt = params.dt

    _apply_buoyancy(state, params)

    diffuse(FieldKind.VELOCITY_X, state.prev_vel_x, state.vel_x, params.viscosity, dt)
    diffuse(FieldKind.VELOCITY_Y, state.prev_vel_y, state.vel_y, params.viscosity, dt)

    project(state.prev_vel_x, state.prev_vel_y, state.pressure, state.divergence)

    advect(FieldKind.VELOCITY_X, state.vel_x, state.prev_vel_x, state.prev_vel_x, state.prev_vel_y, dt)
    advect(FieldKind.VELOCITY_Y, state.vel_y, state.prev_vel_y, state.prev_vel_x, state.prev_vel_y, dt)

    project(state.vel_x, state.vel_y, state.pressure, state.divergence)

    diffuse(FieldKind.SCALAR, state.prev_temperature, state.temperature, params.diffusion, dt)
    advect(FieldKind.SCALAR, state.temperature, state.prev_temperature, state.vel_x, state.vel_y, dt)
    _decay(state.temperature, params.temperature_decay * dt)

    # smoke lingers longer than heat
    diffuse(FieldKind.SCALAR, state.prev_density, state.density, params.diffusion, dt)
    advect(FieldKind.SCALAR, state.density, state.prev_density, state.vel_x, state.vel_y, dt)
    _decay(state.density, params.temperature_decay * 0.5 * dt)
    return state


def snapshot(state: GridState, copy: bool = False) -> FieldSnapshot:
    """Read-only interior views of the fields handed to the renderer.

    With ``copy=True`` the views are detached from the live arrays, which
    is what a consumer on another thread needs.
    """
    inner = (slice(1, state.n + 1), slice(1, state.n + 1))
    views = []
    for field in (state.density, state.temperature, state.vel_x, state.vel_y):
        view = field[inner].copy() if copy else field[inner]
        view.flags.writeable = False
        views.append(view)
    return FieldSnapshot(*views)


def check_fields(state: GridState) -> int:
    """Zero any non-finite cell and return how many were found."""
    bad = 0
    for field in state.arrays():
        mask = ~np.isfinite(field)
        count = int(mask.sum())
        if count:
            field[mask] = 0.0
            bad += count
    if bad:
        logger.warning("Zeroed %d non-finite cells on %dx%d grid", bad, state.n, state.n)
    return bad


def warmup(iterations: int = 2) -> None:
    """Prime Numba kernels so the first live frame is smooth."""
    state = initialize(MIN_GRID_SIZE)
    params = FluidParams(n=MIN_GRID_SIZE)
    for _ in range(max(1, iterations)):
        step(state, params)
    logger.debug("Solver kernels compiled")
