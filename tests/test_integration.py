"""Integration test: HTTP surface over registered engines with fake sessions (no weights)."""

from __future__ import annotations

import base64

import numpy as np
import pytest
from fastapi import concurrency
from fastapi.testclient import TestClient

from airunner import main as service
from airunner.config import Settings
from airunner.main import get_app
from airunner.ml.face import ULTRAFACE, FaceDetector
from airunner.ml.remove_bg import BackgroundRemovalEngine
from airunner.ml.segment import ResizeMode, SegmentationProfile, SegmentationSession
from airunner.pipeline import SEGMENT, EngineRegistry
from airunner.utils.image_io import decode_image


@pytest.fixture
def registry(tmp_path):
    return EngineRegistry(Settings(model_dir=tmp_path))


@pytest.fixture
def client(registry):
    return TestClient(get_app(Settings(model_dir=registry.settings.model_dir), registry))


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_blocking_work_uses_fastapi_threadpool():
    assert service.run_in_threadpool is concurrency.run_in_threadpool


def test_remove_background_endpoint(client, registry, make_session, loader_for, gradient_image, png_bytes):
    fake = make_session(outputs={"output": np.ones((1, 1, 8, 8), np.float32)})
    engine = BackgroundRemovalEngine(loader_for(fake))
    engine.load_model("rmbg.onnx")
    registry.register("remove_bg", engine)
    img = gradient_image(24, 16)

    resp = client.post("/remove-background?threshold=0.5", content=png_bytes(img))
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "image/png"
    out = decode_image(resp.content)
    np.testing.assert_array_equal(out[..., :3], img[..., :3])

    resp = client.post("/remove-background?bg_color=not-a-color", content=png_bytes(img))
    assert resp.status_code == 400


def test_face_detection_endpoint(client, registry, make_session, loader_for, gradient_image, png_bytes):
    fake = make_session(
        outputs={
            "scores": np.array([[[0.05, 0.95]]], np.float32),
            "boxes": np.array([[[0.25, 0.25, 0.75, 0.75]]], np.float32),
        }
    )
    detector = FaceDetector(ULTRAFACE, loader_for(fake))
    detector.load_model("ultraface.onnx")
    registry.register("faces.ultraface", detector)

    resp = client.post("/faces/detect", content=png_bytes(gradient_image(40, 40)))
    assert resp.status_code == 200
    assert resp.json()["faces"] == [{"x": 10, "y": 10, "width": 20, "height": 20, "score": pytest.approx(0.95)}]

    resp = client.post("/faces/anonymize?boxes=true&thickness=1", content=png_bytes(gradient_image(40, 40)))
    assert resp.status_code == 200
    assert decode_image(resp.content)[10, 15, :3].tolist() == [255, 0, 0]

    assert client.post("/faces/detect?detector=mtcnn", content=b"x").status_code == 404


def test_bad_requests(client):
    assert client.post("/colorize", content=b"").status_code == 400
    assert client.post("/stylize?style=cubism", content=b"x").status_code == 404
    # no model files in the cache dir
    assert client.post("/upscale", content=b"not an image").status_code == 503


def test_segmentation_endpoints(client, registry, make_session, loader_for, gradient_image, png_bytes):
    encoder = make_session(outputs={"image_embeddings": np.zeros((1, 4, 2, 2), np.float32)})
    masks = np.full((1, 2, 8, 8), -1.0, np.float32)
    masks[0, 1] = 1.0
    decoder = make_session(
        inputs=[
            ("image_embeddings", [1, 4, 2, 2], "tensor(float)"),
            ("point_coords", [1, "n", 2], "tensor(float)"),
            ("point_labels", [1, "n"], "tensor(float)"),
        ],
        outputs={"masks": masks, "iou_predictions": np.array([[0.3, 0.8]], np.float32)},
    )
    profile = SegmentationProfile("sam2", ResizeMode.STRETCH, pad_point=False, input_size=32, low_res_size=8)
    session = SegmentationSession(profile, loader_for(encoder, decoder))
    session.load_models("enc", "dec")
    registry.register(SEGMENT, session)

    assert client.post("/segment/predict?x=1&y=1").status_code == 409

    assert client.post("/segment/encode", content=png_bytes(gradient_image(16, 12))).status_code == 200
    resp = client.post("/segment/predict?x=4&y=3")
    assert resp.status_code == 200
    body = resp.json()
    assert body["best_index"] == 1
    assert body["ranked_indices"] == [1, 0]
    assert decode_image(base64.b64decode(body["best_mask"])).shape == (12, 16, 4)

    resp = client.get("/segment/masks/0")
    assert resp.status_code == 200
    assert not decode_image(resp.content)[..., 3].any()
    assert client.get("/segment/masks/5").status_code == 409
