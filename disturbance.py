"""Field disturbances: pointer injection, the steady burner and the wandering emitter."""
from __future__ import annotations

import math
from typing import Optional

import numpy as np

from fluid_sim import GridState


def grid_cell(state: GridState, sx: float, sy: float) -> tuple[int, int]:
    """Nearest interior cell for a point in normalized ``[0, 1]`` space."""
    n = state.n
    sx = min(max(sx, 0.0), 1.0)
    sy = min(max(sy, 0.0), 1.0)
    i = int(np.clip(round(sx * n) + 1, 1, n))
    j = int(np.clip(round(sy * n) + 1, 1, n))
    return i, j


def inject(state: GridState, sx: float, sy: float, strength: float) -> tuple[int, int]:
    """Drop a puff of hot smoke at a normalized position.

    Adds ``0.8 * strength`` density, ``0.03 * strength + 25`` temperature and
    a small upward kick to the vertical velocity of the nearest interior cell.
    Returns the ``(i, j)`` cell that was hit.
    """
    if not (math.isfinite(sx) and math.isfinite(sy)):
        raise ValueError(f"injection position must be finite, got ({sx!r}, {sy!r})")
    if not math.isfinite(strength):
        raise ValueError(f"injection strength must be finite, got {strength!r}")
    i, j = grid_cell(state, sx, sy)
    state.density[j, i] += strength * 0.8
    state.temperature[j, i] += strength * 0.03 + 25.0
    state.vel_y[j, i] -= strength * 0.01
    return i, j


def add_steady_source(state: GridState, strength: float, edge: str = "top") -> None:
    """Seed a half-disc burner centered on the top or bottom edge.

    Intensity falls off linearly with horizontal distance from the center.
    """
    if edge not in ("top", "bottom"):
        raise ValueError(f"edge must be 'top' or 'bottom', got {edge!r}")
    n = state.n
    cx = n // 2
    radius = max(1, n // 20)
    for dx in range(-radius, radius + 1):
        i = cx + dx
        if i < 1 or i > n:
            continue
        r = 1.0 - abs(dx) / (radius + 1)
        for dy in range(radius + 1):
            j = n - dy if edge == "top" else 1 + dy
            state.density[j, i] += strength * 0.01 * r
            state.temperature[j, i] += strength * 0.0006 * (1 + r * 3)


class WanderingEmitter:
    """Pointer that random-walks back and forth along one edge of the grid.

    Positions are produced in normalized coordinates; the walk runs over a
    nominal ``width`` in pixel-like units so step sizes stay comparable with
    a pointer dragged across a window.
    """

    def __init__(
        self,
        width: float = 800.0,
        margin: float = 40.0,
        max_step: int = 15,
        top: bool = False,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.width = float(width)
        self.margin = float(margin)
        self.max_step = int(max_step)
        self.top = top
        self._rng = rng or np.random.default_rng()
        self._x = 1.0
        self._rightward = True

    @property
    def position(self) -> tuple[float, float]:
        sy = 1.0 - 2.0 / self.width if self.top else 4.0 / self.width
        return self._x / self.width, sy

    def advance(self) -> tuple[float, float]:
        if self._rightward and self._x < self.width - self.margin:
            self._x += int(self._rng.integers(0, self.max_step))
        else:
            self._rightward = False

        if not self._rightward and self._x > self.margin:
            self._x -= int(self._rng.integers(0, self.max_step))
        else:
            self._rightward = True
        return self.position

    def emit(self, state: GridState, strength: float) -> tuple[int, int]:
        sx, sy = self.advance()
        return inject(state, sx, sy, strength)
