"""Bounding box overlay drawing on images."""

from __future__ import annotations

from typing import List, Tuple

import cv2
import numpy as np


def draw_bbox_overlay(
    image: np.ndarray,
    boxes: List[Tuple[int, int, int, int]],
    color: Tuple[int, int, int] = (255, 0, 0),
    thickness: float = 3,
) -> np.ndarray:
    """Draw bounding boxes on a copy of the image. Boxes are (x1, y1, x2, y2) in pixels.
    Only RGB is painted; an alpha channel is carried over unchanged.
    """
    out = np.ascontiguousarray(np.asarray(image, dtype=np.uint8).copy())
    # OpenCV requires a contiguous buffer; slice views can be incompatible
    if out.ndim == 3 and out.shape[-1] == 4:
        canvas = np.ascontiguousarray(out[:, :, :3].copy())
    else:
        canvas = out

    thickness = max(1, int(round(thickness)))
    for x1, y1, x2, y2 in boxes:
        # cv2 treats the second corner as inclusive
        cv2.rectangle(canvas, (int(x1), int(y1)), (int(x2) - 1, int(y2) - 1), color, thickness)
    if canvas is not out:
        out[:, :, :3] = canvas
    return out
