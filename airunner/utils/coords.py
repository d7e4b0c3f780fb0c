"""Click position -> ratio -> original-pixel conversion for point prompts.

A viewer shows the image uniformly scaled (letterboxed) inside its view. The
click is first expressed as a ratio of the rendered image rectangle, then as
pixels of the original image, which is what SegmentationSession.predict takes.
"""

from __future__ import annotations

from typing import NamedTuple, Tuple


class Rect(NamedTuple):
    x: float
    y: float
    width: float
    height: float

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def contains(self, px: float, py: float) -> bool:
        return self.x <= px <= self.x + self.width and self.y <= py <= self.y + self.height


EMPTY_RECT = Rect(0.0, 0.0, 0.0, 0.0)


def render_rect(view_w: float, view_h: float, image_w: float, image_h: float) -> Rect:
    """Area a uniformly scaled image occupies inside a view, centered, excluding letterbox bars."""
    if view_w <= 0 or view_h <= 0 or image_w <= 0 or image_h <= 0:
        return EMPTY_RECT
    aspect_view = view_w / view_h
    aspect_image = image_w / image_h
    if aspect_view > aspect_image:
        # bars left and right
        render_h = view_h
        render_w = view_h * aspect_image
    else:
        render_w = view_w
        render_h = view_w / aspect_image
    return Rect((view_w - render_w) / 2.0, (view_h - render_h) / 2.0, render_w, render_h)


def view_to_ratio(px: float, py: float, rect: Rect) -> Tuple[float, float] | None:
    """Click inside rect -> (ratio_x, ratio_y) in [0, 1]; None when outside or rect is empty."""
    if rect.is_empty or not rect.contains(px, py):
        return None
    return ((px - rect.x) / rect.width, (py - rect.y) / rect.height)


def ratio_to_pixel(ratio_x: float, ratio_y: float, image_w: int, image_h: int) -> Tuple[float, float]:
    """Ratio of the displayed bounds -> original-image pixel coordinates."""
    return (ratio_x * image_w, ratio_y * image_h)
