"""Image <-> tensor marshaling: resize policy, channel layout, normalization."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Sequence, Tuple

import cv2
import numpy as np

from airunner.errors import ShapeMismatchError
from airunner.ml.colorspace import strip_chroma

IMAGENET_MEAN = np.array([123.675, 116.28, 103.53], dtype=np.float32)
IMAGENET_STD = np.array([58.395, 57.12, 57.375], dtype=np.float32)


class Layout(str, Enum):
    NCHW = "nchw"  # channel-first [1, C, H, W]
    NHWC = "nhwc"  # channel-last  [1, H, W, C]


class Normalization(str, Enum):
    UNIT = "unit"  # x / 255
    MEAN_SCALE = "mean_scale"  # (x - 127) / 128
    SYMMETRIC = "symmetric"  # x / 127.5 - 1
    LUMINANCE = "luminance"  # x / 255 with chroma stripped through Lab
    IMAGENET = "imagenet"  # (x - mean) / std


def _normalize(rgb: np.ndarray, normalization: Normalization) -> np.ndarray:
    normalization = Normalization(normalization)
    x = rgb.astype(np.float32)
    if normalization is Normalization.UNIT:
        return x / 255.0
    if normalization is Normalization.MEAN_SCALE:
        return (x - 127.0) / 128.0
    if normalization is Normalization.SYMMETRIC:
        return x / 127.5 - 1.0
    if normalization is Normalization.LUMINANCE:
        return strip_chroma(x / 255.0).astype(np.float32)
    if normalization is Normalization.IMAGENET:
        return (x - IMAGENET_MEAN) / IMAGENET_STD
    raise ValueError(f"Unknown normalization: {normalization}")


def _denormalize(values: np.ndarray, normalization: Normalization) -> np.ndarray:
    normalization = Normalization(normalization)
    v = values.astype(np.float32)
    if normalization in (Normalization.UNIT, Normalization.LUMINANCE):
        return v * 255.0
    if normalization is Normalization.MEAN_SCALE:
        return v * 128.0 + 127.0
    if normalization is Normalization.SYMMETRIC:
        return (v + 1.0) * 127.5
    if normalization is Normalization.IMAGENET:
        return v * IMAGENET_STD + IMAGENET_MEAN
    raise ValueError(f"Unknown normalization: {normalization}")


def image_to_tensor(
    image: np.ndarray,
    target_size: Tuple[int, int] | None,
    layout: Layout,
    normalization: Normalization,
) -> np.ndarray:
    """Pack an RGBA/RGB uint8 image into a float32 [1,3,H,W] or [1,H,W,3] tensor.

    target_size is (width, height); the image is resampled bilinearly when it
    differs from the image size. Alpha is ignored.
    """
    layout = Layout(layout)
    rgb = image[:, :, :3] if image.ndim == 3 else np.stack([image] * 3, axis=-1)
    if target_size is not None:
        w, h = target_size
        if rgb.shape[1] != w or rgb.shape[0] != h:
            rgb = cv2.resize(np.ascontiguousarray(rgb), (w, h), interpolation=cv2.INTER_LINEAR)
    hwc = _normalize(rgb, normalization)
    if layout is Layout.NCHW:
        tensor = hwc.transpose(2, 0, 1)[np.newaxis]
    else:
        tensor = hwc[np.newaxis]
    return np.ascontiguousarray(tensor, dtype=np.float32)


def detect_layout(shape: Sequence[int], channels: Iterable[int] = (3,)) -> Layout:
    """Find the channel axis of a rank-4 tensor: axis 1 first, then the last axis."""
    channels = tuple(channels)
    if len(shape) != 4:
        raise ShapeMismatchError(f"Expected a rank-4 tensor, got shape {tuple(shape)}")
    if shape[1] in channels:
        return Layout.NCHW
    if shape[-1] in channels:
        return Layout.NHWC
    raise ShapeMismatchError(f"No channel axis of size {channels} in shape {tuple(shape)}")


def to_hwc(tensor: np.ndarray, layout: Layout | None = None, channels: Iterable[int] = (3,)) -> np.ndarray:
    """First batch item of a rank-4 tensor as (H, W, C)."""
    if tensor.ndim != 4:
        raise ShapeMismatchError(f"Expected a rank-4 tensor, got shape {tensor.shape}")
    layout = detect_layout(tensor.shape, channels) if layout is None else Layout(layout)
    if layout is Layout.NCHW:
        return tensor[0].transpose(1, 2, 0)
    return tensor[0]


def tensor_to_image(
    tensor: np.ndarray,
    out_size: Tuple[int, int] | None = None,
    layout: Layout | None = None,
    normalization: Normalization = Normalization.UNIT,
) -> np.ndarray:
    """Unpack a 3-channel tensor into an RGBA uint8 image (alpha 255).

    Values are inverse-normalized, clamped to [0, 255] and rounded. out_size
    (width, height) resamples bilinearly when it differs from the tensor size.
    """
    hwc = to_hwc(np.asarray(tensor), layout, channels=(3,))
    rgb = np.clip(_denormalize(hwc, normalization), 0.0, 255.0)
    rgb = np.rint(rgb).astype(np.uint8)
    if out_size is not None:
        w, h = out_size
        if rgb.shape[1] != w or rgb.shape[0] != h:
            rgb = cv2.resize(np.ascontiguousarray(rgb), (w, h), interpolation=cv2.INTER_LINEAR)
    alpha = np.full((*rgb.shape[:2], 1), 255, dtype=np.uint8)
    return np.concatenate([rgb, alpha], axis=-1)


def tensor_to_mask(tensor: np.ndarray) -> np.ndarray:
    """Squeeze a single-channel output ([1,1,H,W], [1,H,W,1], [1,H,W] or [H,W]) to (H, W) float32."""
    arr = np.asarray(tensor, dtype=np.float32)
    if arr.ndim == 4:
        layout = detect_layout(arr.shape, channels=(1,))
        arr = arr[0, 0] if layout is Layout.NCHW else arr[0, :, :, 0]
    elif arr.ndim == 3:
        if arr.shape[0] != 1:
            raise ShapeMismatchError(f"Expected a single mask, got shape {arr.shape}")
        arr = arr[0]
    elif arr.ndim != 2:
        raise ShapeMismatchError(f"Cannot read a mask from shape {arr.shape}")
    return arr


def _dim_matches(expected, actual: int) -> bool:
    if expected is None or isinstance(expected, str):
        return True
    return int(expected) < 0 or int(expected) == int(actual)


def check_shape(array: np.ndarray, expected: Sequence | None, name: str = "tensor") -> None:
    """Raise ShapeMismatchError unless array.shape satisfies expected.

    None, negative or symbolic (str) entries in expected match any size.
    """
    if expected is None:
        return
    actual = tuple(array.shape)
    if len(actual) != len(expected) or not all(_dim_matches(e, a) for e, a in zip(expected, actual)):
        raise ShapeMismatchError(f"{name}: shape {actual} does not match model contract {tuple(expected)}")
