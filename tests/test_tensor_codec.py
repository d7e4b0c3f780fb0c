"""Unit tests for image <-> tensor marshaling."""

from __future__ import annotations

import numpy as np
import pytest

from airunner.errors import ShapeMismatchError
from airunner.ml.tensor_codec import (
    Layout,
    Normalization,
    check_shape,
    detect_layout,
    image_to_tensor,
    tensor_to_image,
    tensor_to_mask,
)


def test_layouts_and_dtype(gradient_image):
    img = gradient_image(10, 6)
    nchw = image_to_tensor(img, None, Layout.NCHW, Normalization.UNIT)
    nhwc = image_to_tensor(img, None, Layout.NHWC, Normalization.UNIT)
    assert nchw.shape == (1, 3, 6, 10)
    assert nhwc.shape == (1, 6, 10, 3)
    assert nchw.dtype == np.float32 and nchw.flags["C_CONTIGUOUS"]
    np.testing.assert_array_equal(nchw[0].transpose(1, 2, 0), nhwc[0])


def test_resize_to_target(gradient_image):
    tensor = image_to_tensor(gradient_image(10, 6), (4, 2), Layout.NCHW, Normalization.UNIT)
    assert tensor.shape == (1, 3, 2, 4)


@pytest.mark.parametrize(
    "normalization,value,expected",
    [
        (Normalization.UNIT, 255, 1.0),
        (Normalization.MEAN_SCALE, 127, 0.0),
        (Normalization.SYMMETRIC, 0, -1.0),
        (Normalization.SYMMETRIC, 255, 1.0),
    ],
)
def test_normalization_values(solid_image, normalization, value, expected):
    img = solid_image(2, 2, (value, value, value))
    tensor = image_to_tensor(img, None, Layout.NCHW, normalization)
    np.testing.assert_allclose(tensor, expected, atol=1e-6)


def test_imagenet_normalization(solid_image):
    img = solid_image(1, 1, (124, 116, 104))
    tensor = image_to_tensor(img, None, Layout.NCHW, Normalization.IMAGENET)
    np.testing.assert_allclose(tensor.reshape(3), [0.0056, -0.0049, 0.0082], atol=1e-3)


def test_luminance_strips_chroma(solid_image):
    img = solid_image(3, 3, (200, 30, 30))
    tensor = image_to_tensor(img, None, Layout.NCHW, Normalization.LUMINANCE)
    np.testing.assert_allclose(tensor[0, 0], tensor[0, 1], atol=1e-4)
    np.testing.assert_allclose(tensor[0, 1], tensor[0, 2], atol=1e-4)


@pytest.mark.parametrize("layout", [Layout.NCHW, Layout.NHWC])
@pytest.mark.parametrize("normalization", [Normalization.UNIT, Normalization.SYMMETRIC, Normalization.MEAN_SCALE])
def test_round_trip_within_one_level(gradient_image, layout, normalization):
    img = gradient_image(9, 7)
    back = tensor_to_image(image_to_tensor(img, None, layout, normalization), None, layout, normalization)
    assert back.shape == img.shape
    assert np.abs(back.astype(int) - img.astype(int)).max() <= 1
    assert (back[..., 3] == 255).all()


def test_tensor_to_image_clamps_and_resizes():
    tensor = np.full((1, 3, 4, 4), 2.0, dtype=np.float32)
    tensor[0, 1] = -1.0
    out = tensor_to_image(tensor, (8, 2), Layout.NCHW, Normalization.UNIT)
    assert out.shape == (2, 8, 4)
    assert (out[..., 0] == 255).all() and (out[..., 1] == 0).all()


def test_detect_layout():
    assert detect_layout((1, 3, 8, 8)) is Layout.NCHW
    assert detect_layout((1, 8, 8, 3)) is Layout.NHWC
    # axis 1 wins when both could be channels
    assert detect_layout((1, 3, 8, 3)) is Layout.NCHW
    assert detect_layout((1, 2, 5, 5), channels=(2,)) is Layout.NCHW
    with pytest.raises(ShapeMismatchError):
        detect_layout((1, 5, 8, 8))
    with pytest.raises(ShapeMismatchError):
        detect_layout((3, 8, 8))


def test_tensor_to_mask_shapes():
    for shape in [(1, 1, 4, 5), (1, 4, 5, 1), (1, 4, 5), (4, 5)]:
        assert tensor_to_mask(np.zeros(shape)).shape == (4, 5)
    with pytest.raises(ShapeMismatchError):
        tensor_to_mask(np.zeros((2, 4, 5)))


def test_check_shape_wildcards():
    arr = np.zeros((1, 3, 5, 7), dtype=np.float32)
    check_shape(arr, ["batch", 3, -1, None])
    check_shape(arr, None)
    with pytest.raises(ShapeMismatchError):
        check_shape(arr, [1, 3, 4, 4])
    with pytest.raises(ShapeMismatchError):
        check_shape(arr, [1, 3, 5])
