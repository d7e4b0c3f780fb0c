"""sRGB <-> CIE-Lab (D65) conversion on normalized floats.

Functions broadcast over numpy arrays, so the same call converts one pixel or
a whole image. L is in [0, 100]; a and b are unbounded around 0.
"""

from __future__ import annotations

import numpy as np

# Linear RGB -> XYZ (D65)
_RGB_TO_XYZ = np.array(
    [
        [0.4124564, 0.3575761, 0.1804375],
        [0.2126729, 0.7151522, 0.0721750],
        [0.0193339, 0.1191920, 0.9503041],
    ],
    dtype=np.float64,
)
_XYZ_TO_RGB = np.array(
    [
        [3.2404542, -1.5371385, -0.4985314],
        [-0.9692660, 1.8760108, 0.0415560],
        [0.0556434, -0.2040259, 1.0572252],
    ],
    dtype=np.float64,
)
_WHITE = (0.95047, 1.00000, 1.08883)

_DELTA = 6.0 / 29.0
_DELTA3 = _DELTA ** 3


def srgb_to_linear(c):
    c = np.asarray(c, dtype=np.float64)
    return np.where(c <= 0.04045, c / 12.92, ((c + 0.055) / 1.055) ** 2.4)


def linear_to_srgb(c):
    c = np.asarray(c, dtype=np.float64)
    # max() keeps the power branch real for out-of-gamut negatives
    return np.where(c <= 0.0031308, 12.92 * c, 1.055 * np.maximum(c, 0.0) ** (1.0 / 2.4) - 0.055)


def _f(t):
    return np.where(t > _DELTA3, np.cbrt(t), t / (3.0 * _DELTA * _DELTA) + 4.0 / 29.0)


def _f_inv(ft):
    return np.where(ft > _DELTA, ft ** 3, 3.0 * _DELTA * _DELTA * (ft - 4.0 / 29.0))


def rgb_to_lab(r, g, b):
    """Convert normalized sRGB (0-1) to Lab. Returns (L, a, b)."""
    rl, gl, bl = srgb_to_linear(r), srgb_to_linear(g), srgb_to_linear(b)
    m = _RGB_TO_XYZ
    x = rl * m[0, 0] + gl * m[0, 1] + bl * m[0, 2]
    y = rl * m[1, 0] + gl * m[1, 1] + bl * m[1, 2]
    z = rl * m[2, 0] + gl * m[2, 1] + bl * m[2, 2]

    fx = _f(x / _WHITE[0])
    fy = _f(y / _WHITE[1])
    fz = _f(z / _WHITE[2])

    L = 116.0 * fy - 16.0
    a = 500.0 * (fx - fy)
    bb = 200.0 * (fy - fz)
    return L, a, bb


def lab_to_rgb(L, a, bb):
    """Convert Lab to normalized sRGB, clamped to [0, 1]. Returns (r, g, b)."""
    L = np.asarray(L, dtype=np.float64)
    fy = (L + 16.0) / 116.0
    fx = fy + np.asarray(a, dtype=np.float64) / 500.0
    fz = fy - np.asarray(bb, dtype=np.float64) / 200.0

    x = _WHITE[0] * _f_inv(fx)
    y = _WHITE[1] * _f_inv(fy)
    z = _WHITE[2] * _f_inv(fz)

    m = _XYZ_TO_RGB
    rl = x * m[0, 0] + y * m[0, 1] + z * m[0, 2]
    gl = x * m[1, 0] + y * m[1, 1] + z * m[1, 2]
    bl = x * m[2, 0] + y * m[2, 1] + z * m[2, 2]

    r = np.clip(linear_to_srgb(rl), 0.0, 1.0)
    g = np.clip(linear_to_srgb(gl), 0.0, 1.0)
    b = np.clip(linear_to_srgb(bl), 0.0, 1.0)
    return r, g, b


def rgb_image_to_lab(rgb: np.ndarray) -> np.ndarray:
    """(H, W, 3) float RGB in [0, 1] -> (H, W, 3) Lab."""
    L, a, b = rgb_to_lab(rgb[..., 0], rgb[..., 1], rgb[..., 2])
    return np.stack([L, a, b], axis=-1)


def lab_image_to_rgb(lab: np.ndarray) -> np.ndarray:
    """(H, W, 3) Lab -> (H, W, 3) float RGB in [0, 1]."""
    r, g, b = lab_to_rgb(lab[..., 0], lab[..., 1], lab[..., 2])
    return np.stack([r, g, b], axis=-1)


def strip_chroma(rgb: np.ndarray) -> np.ndarray:
    """Keep only Lab lightness: round-trip each pixel with a = b = 0."""
    L, _, _ = rgb_to_lab(rgb[..., 0], rgb[..., 1], rgb[..., 2])
    zeros = np.zeros_like(L)
    r, g, b = lab_to_rgb(L, zeros, zeros)
    return np.stack([r, g, b], axis=-1)
