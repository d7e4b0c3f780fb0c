"""Real-ESRGAN super-resolution, tiled so fixed-shape exports and large images both work."""

from __future__ import annotations

import logging
import math
from typing import Callable

import cv2
import numpy as np

from airunner.errors import ShapeMismatchError
from airunner.ml.runtime import OnnxEngine, SessionLoader, load_session
from airunner.ml.tensor_codec import Layout, Normalization, image_to_tensor, tensor_to_image
from airunner.utils.image_io import decode_image, encode_png

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class UpscaleEngine(OnnxEngine):
    """Tiles are tile_size square with tile_pad context on every side.

    The image is edge-replicated first, so every tile sent to the model has
    the same (tile_size + 2 * tile_pad) shape. tile_size=None runs one pass.
    """

    name = "Upscale model"

    def __init__(self, tile_size: int | None = 128, tile_pad: int = 10, loader: SessionLoader = load_session):
        super().__init__(loader)
        self.tile_size = tile_size
        self.tile_pad = tile_pad

    def _run_tile(self, tile: np.ndarray) -> np.ndarray:
        session = self._require_session()
        tensor = image_to_tensor(tile, None, Layout.NCHW, Normalization.UNIT)
        outputs = session.run({session.first_input: tensor})
        return tensor_to_image(next(iter(outputs.values())), None, Layout.NCHW, Normalization.UNIT)

    @staticmethod
    def _scale_of(tile_in: np.ndarray, tile_out: np.ndarray) -> int:
        in_h, in_w = tile_in.shape[:2]
        out_h, out_w = tile_out.shape[:2]
        if out_h % in_h or out_w % in_w or out_h // in_h != out_w // in_w:
            raise ShapeMismatchError(f"Upscaler output {out_w}x{out_h} is not an integer multiple of {in_w}x{in_h}")
        return out_h // in_h

    def upscale_array(self, image: np.ndarray, progress: ProgressCallback | None = None) -> np.ndarray:
        self._require_session()
        h, w = image.shape[:2]
        rgb = np.ascontiguousarray(image[:, :, :3])

        if not self.tile_size:
            out = self._run_tile(rgb)
            scale = self._scale_of(rgb, out)
            if progress:
                progress(1.0)
            return self._restore_alpha(out, image, scale)

        t, p = self.tile_size, self.tile_pad
        rows, cols = math.ceil(h / t), math.ceil(w / t)
        padded = cv2.copyMakeBorder(rgb, p, p + rows * t - h, p, p + cols * t - w, cv2.BORDER_REPLICATE)

        canvas = None
        scale = 0
        total = rows * cols
        done = 0
        for r in range(rows):
            for c in range(cols):
                tile = padded[r * t : r * t + t + 2 * p, c * t : c * t + t + 2 * p]
                out_tile = self._run_tile(np.ascontiguousarray(tile))
                if canvas is None:
                    scale = self._scale_of(tile, out_tile)
                    canvas = np.zeros((rows * t * scale, cols * t * scale, 4), dtype=np.uint8)
                elif out_tile.shape[0] != tile.shape[0] * scale:
                    raise ShapeMismatchError(f"Inconsistent upscaler output shape {out_tile.shape}")
                core = out_tile[p * scale : (p + t) * scale, p * scale : (p + t) * scale]
                canvas[r * t * scale : (r + 1) * t * scale, c * t * scale : (c + 1) * t * scale] = core
                done += 1
                if progress:
                    progress(done / total)
        logger.debug("upscaled %dx%d in %d tiles (x%d)", w, h, total, scale)
        return self._restore_alpha(canvas[: h * scale, : w * scale], image, scale)

    @staticmethod
    def _restore_alpha(out: np.ndarray, source: np.ndarray, scale: int) -> np.ndarray:
        out = out.copy()
        if source.ndim == 3 and source.shape[-1] == 4:
            h, w = source.shape[:2]
            out[..., 3] = cv2.resize(source[..., 3], (w * scale, h * scale), interpolation=cv2.INTER_LINEAR)
        return out

    def upscale(self, image_bytes: bytes, progress: ProgressCallback | None = None) -> bytes:
        return encode_png(self.upscale_array(decode_image(image_bytes), progress))
