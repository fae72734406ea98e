"""Map temperature and density to fire colors."""
from __future__ import annotations

import numpy as np

DEFAULT_BLUE_TINT = 30
DEFAULT_GAMMA = 0.7


def intensity_map(temperature: np.ndarray, density: np.ndarray, gamma: float = DEFAULT_GAMMA) -> np.ndarray:
    intensity = np.minimum(1.0, temperature * 0.04 + density * 0.01)
    return np.power(np.maximum(intensity, 0.0), gamma)


def fire_colors(
    temperature: np.ndarray,
    density: np.ndarray,
    blue_tint: int = DEFAULT_BLUE_TINT,
    gamma: float = DEFAULT_GAMMA,
) -> np.ndarray:
    """Return a BGRA ``uint8`` image for interior fields indexed ``[j, i]``.

    Temperature picks a point on a black -> red -> orange -> yellow -> white
    palette and the combined heat/smoke intensity drives brightness and
    alpha. Row 0 of the result is the top grid row (``j = N``).
    """
    temperature = np.asarray(temperature, dtype=np.float32)
    density = np.asarray(density, dtype=np.float32)
    tint = float(np.clip(blue_tint, 0, 255))
    intensity = intensity_map(temperature, density, gamma)
    t = np.clip(temperature * 0.05, 0.0, 1.0)

    low = t <= 0.25
    mid = (t > 0.25) & (t <= 0.5)
    high = (t > 0.5) & (t <= 0.75)
    top = t > 0.75

    red = np.zeros(t.shape, dtype=np.float32)
    green = np.zeros(t.shape, dtype=np.float32)
    blue = np.full(t.shape, tint, dtype=np.float32)

    s = t / 0.25
    red[low] = np.floor(s[low] * 180 + 20 * (1 - s[low]))

    s = (t - 0.25) / 0.25
    red[mid] = 255
    green[mid] = np.floor(s[mid] * 120) * intensity[mid]

    s = (t - 0.5) / 0.25
    red[high] = 255
    green[high] = np.floor(120 + s[high] * 135) * intensity[high]

    s = (t - 0.75) / 0.25
    top_blue = np.floor(s * 255) if tint < 220 else np.full(t.shape, tint, dtype=np.float32)
    red[top] = 255 * intensity[top]
    green[top] = 255 * intensity[top]
    blue[top] = top_blue[top] * intensity[top]

    alpha = np.minimum(255, np.floor(255 * intensity))
    bgra = np.stack((blue, green, red, alpha), axis=-1)
    bgra = np.clip(bgra, 0, 255).astype(np.uint8)
    return bgra[::-1]
