"""Model cache directory and default model file names."""

from __future__ import annotations

import os
from pathlib import Path

from airunner.errors import ModelFileNotFoundError

DEFAULT_MODEL_FILES = {
    "colorize": "ddcolor.onnx",
    "faces.ultraface": "version-RFB-320.onnx",
    "faces.yolo": "yolov8n-face.onnx",
    "remove_bg": "rmbg-1.4.onnx",
    "stylize.hayao": "AnimeGANv2_Hayao.onnx",
    "stylize.shinkai": "AnimeGANv2_Shinkai.onnx",
    "stylize.paprika": "AnimeGANv2_Paprika.onnx",
    "upscale": "Real-ESRGAN-x4plus.onnx",
    "segment.mobile_sam.encoder": "mobile_sam.encoder.onnx",
    "segment.mobile_sam.decoder": "mobile_sam.decoder.onnx",
    "segment.sam2.encoder": "sam2_hiera_small.encoder.onnx",
    "segment.sam2.decoder": "sam2_hiera_small.decoder.onnx",
}


def get_model_cache_dir(base: str | Path | None = None) -> Path:
    """Return models cache directory (MODEL_CACHE_DIR or ./models); create if needed."""
    if base is None:
        base = os.environ.get("MODEL_CACHE_DIR", os.path.join(os.getcwd(), "models"))
    path = Path(base)
    path.mkdir(parents=True, exist_ok=True)
    return path


def find_model(key: str, base: str | Path | None = None) -> Path:
    """Resolve a DEFAULT_MODEL_FILES key (or a bare file name) inside the cache dir."""
    filename = DEFAULT_MODEL_FILES.get(key, key)
    path = get_model_cache_dir(base) / filename
    if not path.is_file():
        raise ModelFileNotFoundError(f"Model '{key}' not found at {path}")
    return path
