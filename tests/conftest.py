"""Shared fixtures: in-memory stand-ins for onnxruntime sessions and small test images."""

from __future__ import annotations

from collections import namedtuple

import numpy as np
import pytest

from airunner.errors import ConfigurationError
from airunner.ml.runtime import DeviceMode, ModelSession
from airunner.utils.image_io import encode_png

NodeArg = namedtuple("NodeArg", ["name", "shape", "type"])


class FakeSession:
    """Quacks like onnxruntime.InferenceSession.

    outputs: name -> array returned on every run, or respond(feed) -> dict
    computes them from the feed. Every feed is recorded in calls.
    """

    def __init__(self, inputs=None, outputs=None, respond=None, output_names=None):
        self.inputs = [NodeArg(*i) for i in (inputs or [("input", ["batch", 3, "height", "width"], "tensor(float)")])]
        self.outputs = outputs or {}
        self.respond = respond
        self.output_names = list(output_names or self.outputs)
        self.calls = []

    def get_inputs(self):
        return self.inputs

    def get_outputs(self):
        return [NodeArg(n, None, "tensor(float)") for n in self.output_names]

    def get_providers(self):
        return ["CPUExecutionProvider"]

    def run(self, names, feed):
        self.calls.append({k: np.array(v, copy=True) for k, v in feed.items()})
        result = self.respond(feed) if self.respond else self.outputs
        return [result[n] for n in names]


@pytest.fixture
def make_session():
    return FakeSession


@pytest.fixture
def loader_for():
    """loader_for(*sessions, mode=...) -> a loader handing out the sessions in order.

    An Exception in the sequence is raised instead. loader.loaded lists the
    ModelSessions handed out so tests can check they were released.
    """

    def factory(*sessions, mode=DeviceMode.CPU):
        queue = list(sessions)
        loaded = []

        def loader(path, use_gpu=False):
            if not queue:
                raise ConfigurationError(f"No fake session left for {path}")
            item = queue.pop(0)
            if isinstance(item, Exception):
                raise item
            session = ModelSession(item, path, mode)
            loaded.append(session)
            return session

        loader.loaded = loaded
        return loader

    return factory


@pytest.fixture
def solid_image():
    def make(width, height, color=(120, 80, 40), alpha=255):
        img = np.zeros((height, width, 4), dtype=np.uint8)
        img[:, :, :3] = color
        img[:, :, 3] = alpha
        return img

    return make


@pytest.fixture
def gradient_image():
    """Deterministic RGBA image with distinct values per pixel."""
    def make(width, height):
        ys, xs = np.mgrid[0:height, 0:width]
        img = np.zeros((height, width, 4), dtype=np.uint8)
        img[..., 0] = (xs * 7) % 256
        img[..., 1] = (ys * 11) % 256
        img[..., 2] = (xs + ys) * 3 % 256
        img[..., 3] = 255
        return img

    return make


@pytest.fixture
def png_bytes():
    return encode_png
