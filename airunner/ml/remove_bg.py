"""RMBG-1.4 background removal: 1024x1024 matte, composited at original resolution."""

from __future__ import annotations

import logging
from typing import Tuple

import numpy as np

from airunner.ml.compositor import composite_alpha, matte_from_mask
from airunner.ml.runtime import DeviceMode, ModelSession, OnnxEngine
from airunner.ml.tensor_codec import Layout, Normalization, image_to_tensor, tensor_to_mask
from airunner.utils.image_io import decode_image, encode_png, get_image_size

logger = logging.getLogger(__name__)


class BackgroundRemovalEngine(OnnxEngine):
    name = "Background removal model"
    MODEL_SIZE = 1024

    def _on_loaded(self, session: ModelSession) -> None:
        if session.device_mode is not DeviceMode.GPU:
            return
        # first CUDA run allocates kernels; do it at load time instead of on the first image
        dummy = np.zeros((1, 3, self.MODEL_SIZE, self.MODEL_SIZE), dtype=np.float32)
        try:
            session.run({session.first_input: dummy})
        except Exception as e:
            logger.warning("GPU warm-up run failed: %s", e)

    def predict_matte(self, image: np.ndarray) -> np.ndarray:
        """Raw model mask (MODEL_SIZE x MODEL_SIZE float32)."""
        session = self._require_session()
        size = (self.MODEL_SIZE, self.MODEL_SIZE)
        tensor = image_to_tensor(image, size, Layout.NCHW, Normalization.UNIT)
        outputs = session.run({session.first_input: tensor})
        return tensor_to_mask(next(iter(outputs.values())))

    def remove_background_array(
        self,
        image: np.ndarray,
        threshold: float = 0.0,
        bg_color: Tuple[int, int, int] | None = None,
    ) -> np.ndarray:
        mask = self.predict_matte(image)
        alpha = matte_from_mask(mask, threshold, get_image_size(image))
        return composite_alpha(image, alpha, bg_color)

    def remove_background(
        self,
        image_bytes: bytes,
        threshold: float = 0.0,
        bg_color: Tuple[int, int, int] | None = None,
    ) -> bytes:
        return encode_png(self.remove_background_array(decode_image(image_bytes), threshold, bg_color))
