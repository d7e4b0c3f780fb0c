"""AnimeGAN style transfer: NHWC, [-1, 1] in and out, sides cropped to multiples of 32."""

from __future__ import annotations

import logging

import numpy as np

from airunner.errors import InvalidInputError
from airunner.ml.runtime import OnnxEngine
from airunner.ml.tensor_codec import Layout, Normalization, image_to_tensor, tensor_to_image
from airunner.utils.image_io import crop, decode_image, encode_png, get_image_size

logger = logging.getLogger(__name__)

BLOCK = 32
STYLES = ("hayao", "shinkai", "paprika")


def crop_to_multiple(image: np.ndarray, block: int = BLOCK) -> np.ndarray:
    """Crop from the top-left origin to the nearest lower multiple of block on each axis."""
    w, h = get_image_size(image)
    cw, ch = w - w % block, h - h % block
    if cw == 0 or ch == 0:
        raise InvalidInputError(f"Image {w}x{h} is smaller than {block}x{block}")
    return crop(image, 0, 0, cw, ch)


class StyleTransferEngine(OnnxEngine):
    name = "Style model"

    def stylize(self, image: np.ndarray) -> np.ndarray:
        session = self._require_session()
        cropped = crop_to_multiple(image)
        tensor = image_to_tensor(cropped, None, Layout.NHWC, Normalization.SYMMETRIC)
        outputs = session.run({session.first_input: tensor})
        result = next(iter(outputs.values()))
        logger.debug("stylized %s -> %s", image.shape[:2], cropped.shape[:2])
        return tensor_to_image(result, get_image_size(cropped), Layout.NHWC, Normalization.SYMMETRIC)

    def process(self, image_bytes: bytes) -> bytes:
        return encode_png(self.stylize(decode_image(image_bytes)))
