"""Image I/O: encoded bytes <-> RGBA uint8 arrays, plus a crop helper."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from airunner.errors import InvalidInputError


def get_image_size(image: np.ndarray) -> Tuple[int, int]:
    """Return (width, height) of image."""
    h, w = image.shape[:2]
    return (int(w), int(h))


def ensure_rgba(image: np.ndarray) -> np.ndarray:
    """Convert to RGBA if needed; preserve existing alpha. Always returns a new array."""
    if image.ndim == 2:
        out = np.stack([image, image, image, np.full_like(image, 255)], axis=-1)
        return out.astype(np.uint8)
    if image.shape[-1] == 3:
        alpha = np.full((*image.shape[:2], 1), 255, dtype=image.dtype)
        out = np.concatenate([image, alpha], axis=-1)
        return out.astype(np.uint8)
    return image.astype(np.uint8, copy=True)


def decode_image(data: bytes) -> np.ndarray:
    """Decode PNG/JPEG/... bytes into an RGBA uint8 array (H, W, 4)."""
    if not data:
        raise InvalidInputError("Empty image buffer")
    try:
        with Image.open(io.BytesIO(data)) as pil:
            arr = np.array(pil.convert("RGBA"))
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidInputError(f"Cannot decode image: {e}") from e
    return arr


def encode_png(image: np.ndarray) -> bytes:
    """Encode (H, W), (H, W, 3) or (H, W, 4) uint8 array as PNG bytes."""
    if image.ndim == 3 and image.shape[-1] == 3:
        image = ensure_rgba(image)
    pil = Image.fromarray(np.ascontiguousarray(image, dtype=np.uint8))
    buf = io.BytesIO()
    pil.save(buf, format="PNG")
    return buf.getvalue()


def load_image(path: str | Path) -> np.ndarray:
    """Load image from path; return RGBA uint8 array (H, W, 4)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")
    return decode_image(path.read_bytes())


def save_image(image: np.ndarray, path: str | Path) -> None:
    """Save image as PNG; preserve alpha."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_png(image))


def crop(image: np.ndarray, x: int, y: int, width: int, height: int) -> np.ndarray:
    """Copy of the (x, y, width, height) window; caller clips to bounds first."""
    return image[y : y + height, x : x + width].copy()
