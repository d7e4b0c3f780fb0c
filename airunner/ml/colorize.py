"""DDColor colorization: grayscale-in-Lab input at 512x512, (a, b) output blended at full resolution."""

from __future__ import annotations

import logging

import numpy as np

from airunner.ml.compositor import transplant_luminance
from airunner.ml.runtime import OnnxEngine
from airunner.ml.tensor_codec import Layout, Normalization, image_to_tensor
from airunner.utils.image_io import decode_image, encode_png

logger = logging.getLogger(__name__)


class ColorizationEngine(OnnxEngine):
    name = "Colorization model"
    MODEL_INPUT_SIZE = 512

    def colorize(self, image: np.ndarray) -> np.ndarray:
        """RGBA image -> colorized RGBA image of the same size (alpha 255)."""
        session = self._require_session()
        size = (self.MODEL_INPUT_SIZE, self.MODEL_INPUT_SIZE)
        tensor = image_to_tensor(image, size, Layout.NCHW, Normalization.LUMINANCE)
        outputs = session.run({session.first_input: tensor})
        ab = next(iter(outputs.values()))
        logger.debug("colorization output shape %s", ab.shape)
        return transplant_luminance(image, ab)

    def process(self, image_bytes: bytes) -> bytes:
        return encode_png(self.colorize(decode_image(image_bytes)))
