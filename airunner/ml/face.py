"""Face detection (UltraFace / YOLOv8-face) and anonymization."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np

from airunner.ml.compositor import anonymize, blur_regions, outline_regions
from airunner.ml.detect import DecodeScheme, DetectionSet, Region, decode
from airunner.ml.runtime import OnnxEngine, SessionLoader, load_session
from airunner.ml.tensor_codec import Layout, Normalization, image_to_tensor
from airunner.utils.image_io import decode_image, encode_png, get_image_size

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectorProfile:
    """Fixed input/output contract of one detector family."""
    name: str
    scheme: DecodeScheme
    input_size: Tuple[int, int]  # (width, height)
    normalization: Normalization
    input_name: str | None = None  # None: the model's first input
    score_threshold: float = 0.5
    iou_threshold: float = 0.45
    channels_last: bool = False  # center-form output exported as [1, N, C]


ULTRAFACE = DetectorProfile(
    name="ultraface",
    scheme=DecodeScheme.ANCHOR_BOX,
    input_size=(320, 240),
    normalization=Normalization.MEAN_SCALE,
    score_threshold=0.7,
    iou_threshold=0.3,
)

YOLO_FACE = DetectorProfile(
    name="yolo",
    scheme=DecodeScheme.CENTER_FORM,
    input_size=(640, 640),
    normalization=Normalization.UNIT,
    input_name="images",
    score_threshold=0.5,
    iou_threshold=0.45,
)

PROFILES = {p.name: p for p in (ULTRAFACE, YOLO_FACE)}


class FaceDetector(OnnxEngine):
    name = "Face detector"

    def __init__(self, profile: DetectorProfile = ULTRAFACE, loader: SessionLoader = load_session):
        super().__init__(loader)
        self.profile = profile

    def detect_array(
        self,
        image: np.ndarray,
        conf_threshold: float | None = None,
        iou_threshold: float | None = None,
    ) -> DetectionSet:
        """Detect faces in an RGBA image; regions are in original pixel coordinates."""
        session = self._require_session()
        p = self.profile
        tensor = image_to_tensor(image, p.input_size, Layout.NCHW, p.normalization)
        outputs = session.run({p.input_name or session.first_input: tensor})
        regions = decode(
            outputs,
            orig_size=get_image_size(image),
            model_input_size=p.input_size,
            score_threshold=p.score_threshold if conf_threshold is None else conf_threshold,
            scheme=p.scheme,
            iou_threshold=p.iou_threshold if iou_threshold is None else iou_threshold,
            channels_last=p.channels_last,
        )
        logger.info("%s detected %d faces", p.name, len(regions))
        return regions

    def detect(self, image_bytes: bytes, conf_threshold: float | None = None) -> DetectionSet:
        return self.detect_array(decode_image(image_bytes), conf_threshold)

    # post-processing below runs without a loaded model

    def apply_blur(self, image_bytes: bytes, regions: Sequence[Region], sigma: float = 15) -> bytes:
        return encode_png(blur_regions(decode_image(image_bytes), regions, sigma))

    def draw_boxes(self, image_bytes: bytes, regions: Sequence[Region], thickness: float = 3) -> bytes:
        return encode_png(outline_regions(decode_image(image_bytes), regions, thickness))

    def anonymize(
        self,
        image_bytes: bytes,
        regions: Sequence[Region],
        blur: bool = True,
        draw: bool = False,
        sigma: float = 15,
        thickness: float = 3,
    ) -> bytes:
        image = decode_image(image_bytes)
        return encode_png(anonymize(image, regions, blur=blur, draw=draw, sigma=sigma, thickness=thickness))
