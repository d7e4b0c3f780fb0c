"""Detection decoding: anchor-box (SSD-style) and center-form (YOLO-style) outputs, greedy NMS."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Mapping, Sequence, Tuple

import numpy as np

from airunner.errors import ShapeMismatchError

logger = logging.getLogger(__name__)


class DecodeScheme(str, Enum):
    ANCHOR_BOX = "anchor_box"
    CENTER_FORM = "center_form"


DEFAULT_IOU_THRESHOLDS = {
    DecodeScheme.ANCHOR_BOX: 0.3,
    DecodeScheme.CENTER_FORM: 0.45,
}


@dataclass(frozen=True)
class Region:
    """Axis-aligned integer rectangle (x, y, width, height) with a confidence score."""
    x: int
    y: int
    width: int
    height: int
    score: float = 1.0

    @property
    def area(self) -> int:
        return max(0, self.width) * max(0, self.height)

    def to_xyxy(self) -> tuple[int, int, int, int]:
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    def intersect(self, other: "Region") -> "Region":
        """Overlap rectangle; width/height are 0 when the rectangles do not overlap."""
        x0 = max(self.x, other.x)
        y0 = max(self.y, other.y)
        x1 = min(self.x + self.width, other.x + other.width)
        y1 = min(self.y + self.height, other.y + other.height)
        return Region(x0, y0, max(0, x1 - x0), max(0, y1 - y0), self.score)

    def clip(self, width: int, height: int) -> "Region":
        """Intersection with the image bounds (0, 0, width, height)."""
        return self.intersect(Region(0, 0, width, height))


DetectionSet = List[Region]


def iou(a: Region, b: Region) -> float:
    """Intersection over union; 0 for disjoint or degenerate rectangles."""
    inter = a.intersect(b)
    if inter.width <= 0 or inter.height <= 0:
        return 0.0
    inter_area = inter.width * inter.height
    union = a.area + b.area - inter_area
    if union <= 0:
        return 0.0
    return inter_area / union


def non_max_suppression(candidates: Sequence[Region], iou_threshold: float) -> DetectionSet:
    """Greedy NMS. Survivors come out by descending score; ties keep input order."""
    remaining = sorted(candidates, key=lambda r: -r.score)
    kept: DetectionSet = []
    while remaining:
        current = remaining.pop(0)
        kept.append(current)
        remaining = [other for other in remaining if iou(current, other) <= iou_threshold]
    return kept


def _to_regions(x, y, w, h, scores) -> list[Region]:
    # int() truncates toward zero
    return [
        Region(int(xi), int(yi), int(wi), int(hi), float(s))
        for xi, yi, wi, hi, s in zip(x.tolist(), y.tolist(), w.tolist(), h.tolist(), scores.tolist())
    ]


def decode_anchor_boxes(
    scores: np.ndarray,
    boxes: np.ndarray,
    orig_size: Tuple[int, int],
    score_threshold: float,
) -> list[Region]:
    """Decode SSD-style outputs: scores [1,N,2] (face prob at [...,1]) and boxes [1,N,4] as
    normalized (x0, y0, x1, y1). Returns candidates at or above threshold in anchor order.
    """
    scores = np.asarray(scores, dtype=np.float32)
    boxes = np.asarray(boxes, dtype=np.float32)
    if scores.ndim != 3 or boxes.ndim != 3 or boxes.shape[-1] != 4 or scores.shape[1] != boxes.shape[1]:
        raise ShapeMismatchError(f"Anchor outputs mismatch: scores {scores.shape}, boxes {boxes.shape}")
    orig_w, orig_h = orig_size
    conf = scores[0, :, 1] if scores.shape[-1] > 1 else scores[0, :, 0]
    keep = conf >= score_threshold
    b = boxes[0][keep]
    x = b[:, 0] * orig_w
    y = b[:, 1] * orig_h
    w = (b[:, 2] - b[:, 0]) * orig_w
    h = (b[:, 3] - b[:, 1]) * orig_h
    return _to_regions(x, y, w, h, conf[keep])


def decode_center_form(
    output: np.ndarray,
    orig_size: Tuple[int, int],
    model_input_size: Tuple[int, int],
    score_threshold: float,
    channels_last: bool = False,
) -> list[Region]:
    """Decode YOLO-style output [1, C, N] (rows cx, cy, w, h, score, ...) in model pixels.

    Channel-first is the fixed convention. channels_last=True reads [1, N, C];
    an output whose axis 1 is too short to hold the five rows is read that way too.
    """
    out = np.asarray(output, dtype=np.float32)
    if out.ndim != 3:
        raise ShapeMismatchError(f"Center-form output must be rank 3, got {out.shape}")
    rows = out[0]
    if channels_last or rows.shape[0] < 5:
        rows = rows.T
    if rows.shape[0] < 5:
        raise ShapeMismatchError(f"Center-form output needs at least 5 rows, got {out.shape}")
    orig_w, orig_h = orig_size
    in_w, in_h = model_input_size
    sx = orig_w / float(in_w)
    sy = orig_h / float(in_h)

    conf = rows[4]
    keep = conf >= score_threshold
    cx, cy, w, h = rows[0][keep], rows[1][keep], rows[2][keep], rows[3][keep]
    return _to_regions((cx - w / 2) * sx, (cy - h / 2) * sy, w * sx, h * sy, conf[keep])


def decode(
    raw_output: Mapping[str, np.ndarray],
    orig_size: Tuple[int, int],
    model_input_size: Tuple[int, int],
    score_threshold: float,
    scheme: DecodeScheme,
    iou_threshold: float | None = None,
    channels_last: bool = False,
) -> DetectionSet:
    """Decode model outputs with the given scheme and deduplicate with NMS.

    raw_output maps output names to arrays. The anchor-box scheme reads
    'scores' and 'boxes'; the center-form scheme reads the first output
    ([1, N, C] when channels_last).
    Sizes are (width, height). Zero candidates yield an empty list.
    """
    scheme = DecodeScheme(scheme)
    if iou_threshold is None:
        iou_threshold = DEFAULT_IOU_THRESHOLDS[scheme]
    if scheme is DecodeScheme.ANCHOR_BOX:
        if "scores" not in raw_output or "boxes" not in raw_output:
            raise ShapeMismatchError(f"Anchor-box model must output 'scores' and 'boxes', got {list(raw_output)}")
        candidates = decode_anchor_boxes(raw_output["scores"], raw_output["boxes"], orig_size, score_threshold)
    else:
        candidates = decode_center_form(
            next(iter(raw_output.values())), orig_size, model_input_size, score_threshold, channels_last
        )
    kept = non_max_suppression(candidates, iou_threshold)
    logger.debug("%s: %d candidates, %d after NMS", scheme.value, len(candidates), len(kept))
    return kept
