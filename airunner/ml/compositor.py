"""Blending model outputs back onto source images.

- transplant_luminance: colorization; L from the original, (a, b) from the model.
- composite_alpha: background removal; thresholded matte as alpha or blend onto a color.
- blur_regions / outline_regions / anonymize: face anonymization.

Every function returns a new array and leaves its inputs untouched.
"""

from __future__ import annotations

import logging
from typing import Sequence, Tuple

import cv2
import numpy as np

from airunner.ml.colorspace import lab_to_rgb, rgb_to_lab
from airunner.ml.detect import Region
from airunner.ml.tensor_codec import Layout, to_hwc
from airunner.utils.bbox import draw_bbox_overlay

logger = logging.getLogger(__name__)


def _to_uint8_trunc(values: np.ndarray) -> np.ndarray:
    return np.clip(values, 0, 255).astype(np.uint8)


def nearest_index(size: int, model_size: int) -> np.ndarray:
    """Map pixel indices 0..size-1 onto 0..model_size-1 by floor(i / size * model_size)."""
    idx = np.floor(np.arange(size, dtype=np.float32) / np.float32(size) * np.float32(model_size)).astype(np.int64)
    return np.clip(idx, 0, model_size - 1)


def transplant_luminance(original: np.ndarray, ab_tensor: np.ndarray, layout: Layout | None = None) -> np.ndarray:
    """Recombine original lightness with model-predicted chroma at original resolution.

    ab_tensor is [1,2,h,w] or [1,h,w,2]; layout is detected from the axis of
    size 2 when not given. Chroma is sampled nearest-neighbor.
    """
    ab = to_hwc(np.asarray(ab_tensor, dtype=np.float32), layout, channels=(2,))
    model_h, model_w = ab.shape[:2]
    orig_h, orig_w = original.shape[:2]

    rgb = original[:, :, :3].astype(np.float64) / 255.0
    L, _, _ = rgb_to_lab(rgb[..., 0], rgb[..., 1], rgb[..., 2])

    ys = nearest_index(orig_h, model_h)
    xs = nearest_index(orig_w, model_w)
    ab_full = ab[ys[:, None], xs[None, :]]

    r, g, b = lab_to_rgb(L, ab_full[..., 0], ab_full[..., 1])
    out = np.empty((orig_h, orig_w, 4), dtype=np.uint8)
    out[..., 0] = _to_uint8_trunc(r * 255.0)
    out[..., 1] = _to_uint8_trunc(g * 255.0)
    out[..., 2] = _to_uint8_trunc(b * 255.0)
    out[..., 3] = 255
    return out


def matte_from_mask(mask: np.ndarray, threshold: float, size: Tuple[int, int]) -> np.ndarray:
    """Model mask (H, W) in [0, 1] -> uint8 alpha at size=(width, height).

    Values below threshold become 0 before the bilinear resize.
    """
    m = np.asarray(mask, dtype=np.float32)
    m = np.where(m < threshold, 0.0, m)
    alpha = _to_uint8_trunc(m * 255.0)
    w, h = size
    if alpha.shape[1] != w or alpha.shape[0] != h:
        alpha = cv2.resize(alpha, (w, h), interpolation=cv2.INTER_LINEAR)
    return alpha


def composite_alpha(
    source: np.ndarray,
    alpha: np.ndarray,
    bg_color: Tuple[int, int, int] | None = None,
) -> np.ndarray:
    """Apply a uint8 alpha matte (same size as source).

    With bg_color the foreground is blended onto that color and the result is
    opaque; otherwise the source RGB is kept and alpha becomes the matte.
    """
    out = np.empty_like(source, shape=(*source.shape[:2], 4))
    if bg_color is None:
        out[..., :3] = source[..., :3]
        out[..., 3] = alpha
        return out
    a = alpha.astype(np.float32)[..., None] / 255.0
    bg = np.asarray(bg_color, dtype=np.float32).reshape(1, 1, 3)
    blended = source[..., :3].astype(np.float32) * a + bg * (1.0 - a)
    out[..., :3] = _to_uint8_trunc(blended)
    out[..., 3] = 255
    return out


def safe_sigma(sigma: float, region: Region) -> int:
    """Cap blur strength to a quarter of the region's shorter side, minimum 1."""
    return max(1, min(int(sigma), min(region.width, region.height) // 4))


def blur_regions(image: np.ndarray, regions: Sequence[Region], sigma: float = 15) -> np.ndarray:
    """Gaussian-blur each region (clipped to the image) independently in a staging copy."""
    out = image.copy()
    img_h, img_w = out.shape[:2]
    for region in regions:
        roi = region.clip(img_w, img_h)
        if roi.width <= 1 or roi.height <= 1:
            continue
        s = safe_sigma(sigma, roi)
        part = out[roi.y : roi.y + roi.height, roi.x : roi.x + roi.width]
        blurred = cv2.GaussianBlur(np.ascontiguousarray(part), (0, 0), sigmaX=s, borderType=cv2.BORDER_REPLICATE)
        out[roi.y : roi.y + roi.height, roi.x : roi.x + roi.width] = blurred
    return out


def outline_regions(
    image: np.ndarray,
    regions: Sequence[Region],
    thickness: float = 3,
    color: Tuple[int, int, int] = (255, 0, 0),
) -> np.ndarray:
    return draw_bbox_overlay(image, [r.to_xyxy() for r in regions], color=color, thickness=thickness)


def anonymize(
    image: np.ndarray,
    regions: Sequence[Region],
    blur: bool = True,
    draw: bool = False,
    sigma: float = 15,
    thickness: float = 3,
) -> np.ndarray:
    """Blur then outline, each step only when requested."""
    out = image.copy()
    if blur:
        out = blur_regions(out, regions, sigma)
    if draw:
        out = outline_regions(out, regions, thickness)
    logger.debug("anonymized %d regions (blur=%s, draw=%s)", len(regions), blur, draw)
    return out
