"""Utilities: image I/O, bbox overlay, model cache, view coordinates."""

from airunner.utils.bbox import draw_bbox_overlay
from airunner.utils.cache import find_model, get_model_cache_dir
from airunner.utils.image_io import decode_image, encode_png, ensure_rgba, get_image_size, load_image, save_image

__all__ = [
    "load_image",
    "save_image",
    "decode_image",
    "encode_png",
    "ensure_rgba",
    "get_image_size",
    "draw_bbox_overlay",
    "get_model_cache_dir",
    "find_model",
]
