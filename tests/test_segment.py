"""Segmentation session tests with fake encoder/decoder sessions (no weights)."""

from __future__ import annotations

import numpy as np
import pytest

from airunner.errors import (
    ConfigurationError,
    IndexOutOfRangeError,
    InvalidInputError,
    InvalidStateError,
    ModelNotLoadedError,
)
from airunner.ml.runtime import DeviceMode
from airunner.ml.segment import (
    MOBILE_SAM,
    SAM2,
    ResizeMode,
    SegmentationProfile,
    SegmentationSession,
    SessionState,
    prepare_image,
)
from airunner.utils.image_io import decode_image

TINY_SAM2 = SegmentationProfile("sam2", ResizeMode.STRETCH, pad_point=False, input_size=64, low_res_size=16)
TINY_MOBILE = SegmentationProfile("mobile_sam", ResizeMode.LONGEST_SIDE, pad_point=True, input_size=64, low_res_size=16)

SCORES = np.array([[0.2, 0.9, 0.5]], dtype=np.float32)


def _masks():
    masks = np.full((1, 3, 16, 16), -1.0, dtype=np.float32)
    masks[0, 1, :, :8] = 1.0  # left half
    masks[0, 2] = 1.0  # everything
    return masks


@pytest.fixture
def sam2_pair(make_session):
    def make():
        encoder = make_session(
            inputs=[("image", [1, 3, 64, 64], "tensor(float)")],
            outputs={
                "image_embed": np.zeros((1, 8, 4, 4), np.float32),
                "high_res_feats_0": np.zeros((1, 4, 8, 8), np.float32),
            },
        )
        decoder = make_session(
            inputs=[
                ("image_embed", [1, 8, 4, 4], "tensor(float)"),
                ("high_res_feats_0", [1, 4, 8, 8], "tensor(float)"),
                ("point_coords", [1, "num_points", 2], "tensor(float)"),
                ("point_labels", [1, "num_points"], "tensor(float)"),
                ("mask_input", [1, 1, 16, 16], "tensor(float)"),
                ("has_mask_input", [1], "tensor(float)"),
                ("orig_im_size", [2], "tensor(int64)"),
            ],
            outputs={"masks": _masks(), "iou_predictions": SCORES},
        )
        return encoder, decoder

    return make


@pytest.fixture
def session(sam2_pair, loader_for):
    encoder, decoder = sam2_pair()
    s = SegmentationSession(TINY_SAM2, loader_for(encoder, decoder))
    s.load_models("enc.onnx", "dec.onnx")
    s.fakes = (encoder, decoder)
    return s


def test_predict_before_encode_is_invalid_state():
    with pytest.raises(InvalidStateError):
        SegmentationSession().predict(10, 10)


def test_encode_without_models_raises(solid_image):
    with pytest.raises(ModelNotLoadedError):
        SegmentationSession().encode(solid_image(8, 8))


def test_encode_predict_flow(session, gradient_image):
    assert session.state is SessionState.EMPTY
    session.encode(gradient_image(40, 30))
    assert session.state is SessionState.ENCODED

    result = session.predict(10, 5)
    assert session.state is SessionState.PREDICTED
    assert session.last_point == (10.0, 5.0)
    assert result.candidate_scores == pytest.approx((0.2, 0.9, 0.5))
    assert result.best_index == 1
    assert result.ranked_indices == (1, 2, 0)
    best = decode_image(result.best_mask_bytes)
    assert best.shape == (30, 40, 4)


def test_decoder_feed_for_stretch_profile(session, gradient_image):
    session.encode(gradient_image(40, 30))
    session.predict(10, 5)
    _, decoder = session.fakes
    feed = decoder.calls[-1]
    np.testing.assert_allclose(feed["point_coords"], [[[16.0, 5 * 64 / 30]]], rtol=1e-6)
    np.testing.assert_array_equal(feed["point_labels"], [[1.0]])
    assert feed["orig_im_size"].dtype == np.int64
    assert feed["orig_im_size"].tolist() == [30, 40]
    assert feed["image_embed"].shape == (1, 8, 4, 4)
    assert feed["high_res_feats_0"].shape == (1, 4, 8, 8)


def test_masks_at_original_resolution(session, gradient_image):
    session.encode(gradient_image(40, 30))
    session.predict(10, 5)
    assert not session.get_binary_mask(0).any()
    left = session.get_binary_mask(1)
    assert left.shape == (30, 40)
    assert left[:, :15].all() and not left[:, 25:].any()
    overlay = session.get_mask(2)
    assert (overlay.reshape(-1, 4) == [30, 144, 255, 160]).all()
    np.testing.assert_array_equal(decode_image(session.get_mask_image(2)), overlay)


def test_reencode_invalidates_candidates(session, gradient_image, solid_image):
    session.encode(gradient_image(40, 30))
    session.predict(10, 5)
    session.get_mask_image(0)
    session.encode(solid_image(20, 20))
    assert session.state is SessionState.ENCODED
    with pytest.raises(InvalidStateError):
        session.get_mask_image(0)


def test_undecodable_reencode_drops_previous_embedding(session, gradient_image):
    session.encode(gradient_image(40, 30))
    session.predict(10, 5)
    with pytest.raises(InvalidInputError):
        session.encode_image(b"not an image")
    assert session.state is SessionState.EMPTY
    with pytest.raises(InvalidStateError):
        session.get_mask_image(0)
    with pytest.raises(InvalidStateError):
        session.predict(10, 5)


def test_index_out_of_range(session, gradient_image):
    session.encode(gradient_image(40, 30))
    session.predict(1, 1)
    with pytest.raises(IndexOutOfRangeError):
        session.get_mask_image(3)
    with pytest.raises(IndexError):
        session.get_mask_image(-1)


def test_get_mask_before_predict_is_invalid_state(session, gradient_image):
    session.encode(gradient_image(40, 30))
    with pytest.raises(InvalidStateError):
        session.get_mask(0)


def test_failed_decoder_load_releases_encoder(sam2_pair, loader_for):
    encoder, _ = sam2_pair()
    loader = loader_for(encoder, ConfigurationError("broken decoder"))
    s = SegmentationSession(TINY_SAM2, loader)
    with pytest.raises(ConfigurationError):
        s.load_models("enc.onnx", "dec.onnx")
    assert loader.loaded[0].closed
    assert s.state is SessionState.EMPTY
    assert s.device_mode is None


def test_model_switch_resets_embedding(sam2_pair, loader_for, gradient_image):
    first, second = sam2_pair(), sam2_pair()
    loader = loader_for(*first, *second)
    s = SegmentationSession(TINY_SAM2, loader)
    s.load_models("a.enc", "a.dec")
    s.encode(gradient_image(40, 30))
    s.predict(3, 3)
    s.load_models("b.enc", "b.dec")
    assert loader.loaded[0].closed and loader.loaded[1].closed
    assert s.state is SessionState.EMPTY
    with pytest.raises(InvalidStateError):
        s.predict(3, 3)


def test_device_mode_reports_fallback(sam2_pair, loader_for):
    s = SegmentationSession(TINY_SAM2, loader_for(*sam2_pair(), mode=DeviceMode.CPU_FALLBACK))
    assert s.load_models("enc", "dec", use_gpu=True) is DeviceMode.CPU_FALLBACK


def test_mobile_sam_pads_point_and_uses_single_embedding(make_session, loader_for, gradient_image):
    encoder = make_session(
        inputs=[("images", [1, 3, 64, 64], "tensor(float)")],
        outputs={"embeddings": np.zeros((1, 8, 4, 4), np.float32)},
    )
    decoder = make_session(
        inputs=[
            ("image_embeddings", [1, 8, 4, 4], "tensor(float)"),
            ("point_coords", [1, "n", 2], "tensor(float)"),
            ("point_labels", [1, "n"], "tensor(float)"),
            ("mask_input", [1, 1, 16, 16], "tensor(float)"),
            ("has_mask_input", [1], "tensor(float)"),
            ("orig_im_size", [2], "tensor(float)"),
        ],
        outputs={"low_res": _masks(), "scores": SCORES},
    )
    s = SegmentationSession(TINY_MOBILE, loader_for(encoder, decoder))
    s.load_models("enc", "dec")
    s.encode(gradient_image(40, 30))
    result = s.predict(10, 5)
    feed = decoder.calls[-1]
    np.testing.assert_allclose(feed["point_coords"], [[[16.0, 8.0], [0.0, 0.0]]])
    np.testing.assert_array_equal(feed["point_labels"], [[1.0, -1.0]])
    assert result.best_index == 1
    # letterboxed: the encoder saw the image in the top 48 rows only
    image_in = encoder.calls[-1]["images"]
    assert image_in[0, :, 48:].max() == 0.0
    assert s.get_binary_mask(2).shape == (30, 40)


def test_unknown_decoder_input_is_configuration_error(make_session, loader_for, gradient_image):
    encoder = make_session(
        inputs=[("image", [1, 3, 64, 64], "tensor(float)")],
        outputs={"image_embed": np.zeros((1, 2), np.float32), "extra": np.zeros((1, 2), np.float32)},
    )
    decoder = make_session(
        inputs=[("image_embed", [1, 2], "tensor(float)"), ("mystery", [1], "tensor(float)")],
        outputs={"masks": _masks(), "iou_predictions": SCORES},
    )
    s = SegmentationSession(TINY_SAM2, loader_for(encoder, decoder))
    s.load_models("enc", "dec")
    s.encode(gradient_image(8, 8))
    with pytest.raises(ConfigurationError):
        s.predict(1, 1)


def test_prepare_image_geometry(gradient_image):
    tensor, geometry = prepare_image(gradient_image(200, 100), MOBILE_SAM)
    assert tensor.shape == (1, 3, 1024, 1024)
    assert (geometry.resized_w, geometry.resized_h) == (1024, 512)
    tensor, geometry = prepare_image(gradient_image(200, 100), SAM2)
    assert (geometry.resized_w, geometry.resized_h) == (1024, 1024)
    assert geometry.scale_x == pytest.approx(5.12) and geometry.scale_y == pytest.approx(10.24)
