"""Point-prompted segmentation (MobileSAM / SAM 2 ONNX): encode once, predict many.

State machine:

    EMPTY --encode_image--> ENCODED --predict--> PREDICTED
      ^                        |  ^                 |  |
      |                        |  +--encode_image---+  +--predict/get_mask_image
      +------ load_models / close / failed encode --+

predict needs an embedding (ENCODED or PREDICTED). get_mask_image needs
candidates (PREDICTED). Loading models always returns to EMPTY, so an
embedding never outlives the encoder that produced it.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Tuple

import cv2
import numpy as np

from airunner.errors import (
    ConfigurationError,
    IndexOutOfRangeError,
    InvalidStateError,
    ModelNotLoadedError,
    ShapeMismatchError,
)
from airunner.ml.runtime import DeviceMode, ModelSession, SessionLoader, load_session
from airunner.ml.tensor_codec import Layout, Normalization, image_to_tensor
from airunner.utils.image_io import decode_image, encode_png, get_image_size

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    EMPTY = "empty"
    ENCODED = "encoded"
    PREDICTED = "predicted"


class ResizeMode(str, Enum):
    LONGEST_SIDE = "longest_side"  # keep aspect, pad bottom/right to a square
    STRETCH = "stretch"  # resize both axes to the square


@dataclass(frozen=True)
class SegmentationProfile:
    name: str
    resize_mode: ResizeMode
    pad_point: bool  # append the (0, 0) / label -1 padding point SAM v1 decoders expect
    input_size: int = 1024
    low_res_size: int = 256


MOBILE_SAM = SegmentationProfile("mobile_sam", ResizeMode.LONGEST_SIDE, pad_point=True)
SAM2 = SegmentationProfile("sam2", ResizeMode.STRETCH, pad_point=False)

PROFILES = {p.name: p for p in (MOBILE_SAM, SAM2)}


@dataclass(frozen=True)
class _Geometry:
    orig_w: int
    orig_h: int
    resized_w: int
    resized_h: int

    @property
    def scale_x(self) -> float:
        return self.resized_w / self.orig_w

    @property
    def scale_y(self) -> float:
        return self.resized_h / self.orig_h


@dataclass(frozen=True)
class SegmentationResult:
    candidate_scores: Tuple[float, ...]  # in decoder output order
    best_index: int  # model-reported best, an index into candidate_scores
    ranked_indices: Tuple[int, ...]  # candidate indices by descending score
    best_mask_bytes: bytes


def prepare_image(image: np.ndarray, profile: SegmentationProfile) -> Tuple[np.ndarray, _Geometry]:
    """Encoder input tensor [1,3,S,S] plus the geometry needed to map points and masks."""
    w, h = get_image_size(image)
    size = profile.input_size
    if profile.resize_mode is ResizeMode.STRETCH:
        tensor = image_to_tensor(image, (size, size), Layout.NCHW, Normalization.IMAGENET)
        return tensor, _Geometry(w, h, size, size)

    scale = size / max(w, h)
    new_w, new_h = int(w * scale + 0.5), int(h * scale + 0.5)
    resized = image_to_tensor(image, (new_w, new_h), Layout.NCHW, Normalization.IMAGENET)
    tensor = np.zeros((1, 3, size, size), dtype=np.float32)
    tensor[:, :, :new_h, :new_w] = resized
    return tensor, _Geometry(w, h, new_w, new_h)


class SegmentationSession:
    """Owns an encoder/decoder pair and the current image embedding.

    Not thread-safe: callers serialize access to one session.
    """

    def __init__(
        self,
        profile: SegmentationProfile = SAM2,
        loader: SessionLoader = load_session,
        mask_color: Tuple[int, int, int, int] = (30, 144, 255, 160),
        mask_threshold: float = 0.0,
    ):
        self.profile = profile
        self.mask_color = mask_color
        self.mask_threshold = mask_threshold
        self._loader = loader
        self._encoder: ModelSession | None = None
        self._decoder: ModelSession | None = None
        self._reset()

    def _reset(self) -> None:
        self._state = SessionState.EMPTY
        self._embedding: Dict[str, np.ndarray] | None = None
        self._geometry: _Geometry | None = None
        self._candidates: List[np.ndarray] = []
        self._scores: Tuple[float, ...] = ()
        self._last_point: Tuple[float, float] | None = None

    # -- lifecycle ---------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def last_point(self) -> Tuple[float, float] | None:
        return self._last_point

    @property
    def device_mode(self) -> DeviceMode | None:
        if self._encoder is None or self._decoder is None:
            return None
        modes = (self._encoder.device_mode, self._decoder.device_mode)
        if DeviceMode.CPU_FALLBACK in modes:
            return DeviceMode.CPU_FALLBACK
        return self._encoder.device_mode

    def load_models(
        self,
        encoder_path: str | Path,
        decoder_path: str | Path,
        use_gpu: bool = False,
        profile: SegmentationProfile | None = None,
    ) -> DeviceMode:
        """Release current models, then load the pair. Always resets to EMPTY."""
        self.close()
        if profile is not None:
            self.profile = profile
        with ExitStack() as stack:
            encoder = self._loader(encoder_path, use_gpu)
            stack.callback(encoder.close)
            decoder = self._loader(decoder_path, use_gpu)
            stack.pop_all()
        self._encoder, self._decoder = encoder, decoder
        logger.info("%s loaded (%s)", self.profile.name, self.device_mode.value)
        return self.device_mode

    def close(self) -> None:
        for session in (self._encoder, self._decoder):
            if session is not None:
                session.close()
        self._encoder = self._decoder = None
        self._reset()

    def __enter__(self) -> "SegmentationSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- encode ------------------------------------------------------------

    def encode(self, image: np.ndarray) -> None:
        """Compute and store the embedding for an RGBA image; drops old candidates."""
        if self._encoder is None or self._decoder is None:
            raise ModelNotLoadedError("Segmentation models")
        self._reset()
        tensor, geometry = prepare_image(image, self.profile)
        outputs = self._encoder.run({self._encoder.first_input: tensor})
        self._embedding = dict(outputs)
        self._geometry = geometry
        self._state = SessionState.ENCODED
        logger.debug("encoded %dx%d image", geometry.orig_w, geometry.orig_h)

    def encode_image(self, image_bytes: bytes) -> None:
        self._reset()
        self.encode(decode_image(image_bytes))

    # -- predict -----------------------------------------------------------

    def _prompt(self, x: float, y: float) -> Dict[str, np.ndarray]:
        g = self._geometry
        coords = [[x * g.scale_x, y * g.scale_y]]
        labels = [1.0]
        if self.profile.pad_point:
            coords.append([0.0, 0.0])
            labels.append(-1.0)
        low = self.profile.low_res_size
        return {
            "point_coords": np.array([coords], dtype=np.float32),
            "point_labels": np.array([labels], dtype=np.float32),
            "mask_input": np.zeros((1, 1, low, low), dtype=np.float32),
            "has_mask_input": np.zeros((1,), dtype=np.float32),
            "orig_im_size": np.array([g.orig_h, g.orig_w], dtype=np.float32),
        }

    def _decoder_feed(self, x: float, y: float) -> Dict[str, np.ndarray]:
        decoder = self._decoder
        prompt = self._prompt(x, y)
        embedding = self._embedding
        feed = {}
        for name in decoder.input_names:
            if name in embedding:
                feed[name] = embedding[name]
            elif name == "image_embeddings" and len(embedding) == 1:
                feed[name] = next(iter(embedding.values()))
            elif name in prompt:
                feed[name] = decoder.cast_input(name, prompt[name])
            else:
                raise ConfigurationError(f"Cannot supply decoder input '{name}' for {self.profile.name}")
        return feed

    def _read_outputs(self, outputs: Dict[str, np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
        if "masks" in outputs and "iou_predictions" in outputs:
            masks, scores = outputs["masks"], outputs["iou_predictions"]
        else:
            values = list(outputs.values())
            if len(values) < 2:
                raise ShapeMismatchError(f"Decoder must output masks and scores, got {list(outputs)}")
            masks, scores = values[0], values[1]
        masks = np.asarray(masks, dtype=np.float32)
        scores = np.asarray(scores, dtype=np.float32).reshape(-1)
        if masks.ndim != 4 or masks.shape[1] != scores.shape[0]:
            raise ShapeMismatchError(f"Masks {masks.shape} do not match scores {scores.shape}")
        return masks[0], scores

    def predict(self, x: float, y: float) -> SegmentationResult:
        """Run the decoder for a foreground click at original-pixel (x, y)."""
        if self._embedding is None:
            raise InvalidStateError("predict requires an encoded image; call encode_image first")
        if self._decoder is None:
            raise ModelNotLoadedError("Segmentation decoder")
        outputs = self._decoder.run(self._decoder_feed(x, y))
        masks, scores = self._read_outputs(outputs)
        if scores.size == 0:
            raise ShapeMismatchError("Decoder returned no mask candidates")

        self._candidates = [m.copy() for m in masks]
        self._scores = tuple(float(s) for s in scores)
        self._last_point = (float(x), float(y))
        self._state = SessionState.PREDICTED

        best = int(np.argmax(scores))
        ranked = tuple(sorted(range(len(self._scores)), key=lambda i: -self._scores[i]))
        logger.debug("predict (%.1f, %.1f): scores=%s best=%d", x, y, self._scores, best)
        return SegmentationResult(
            candidate_scores=self._scores,
            best_index=best,
            ranked_indices=ranked,
            best_mask_bytes=encode_png(self._render(best)),
        )

    # -- masks -------------------------------------------------------------

    def _to_original(self, logits: np.ndarray) -> np.ndarray:
        g = self._geometry
        h, w = logits.shape
        if (w, h) == (g.orig_w, g.orig_h):
            return logits
        if self.profile.resize_mode is ResizeMode.LONGEST_SIDE:
            size = self.profile.input_size
            square = cv2.resize(logits, (size, size), interpolation=cv2.INTER_LINEAR)
            logits = np.ascontiguousarray(square[: g.resized_h, : g.resized_w])
        return cv2.resize(logits, (g.orig_w, g.orig_h), interpolation=cv2.INTER_LINEAR)

    def _check_index(self, index: int) -> None:
        if self._state is not SessionState.PREDICTED:
            raise InvalidStateError(f"No mask candidates in state '{self._state.value}'; call predict first")
        if not 0 <= index < len(self._candidates):
            raise IndexOutOfRangeError(f"Mask index {index} out of range (0..{len(self._candidates) - 1})")

    def get_binary_mask(self, index: int) -> np.ndarray:
        """Candidate index as a bool mask at original resolution."""
        self._check_index(index)
        return self._to_original(self._candidates[index]) > self.mask_threshold

    def _render(self, index: int) -> np.ndarray:
        binary = self._to_original(self._candidates[index]) > self.mask_threshold
        out = np.zeros((*binary.shape, 4), dtype=np.uint8)
        out[binary] = self.mask_color
        return out

    def get_mask(self, index: int) -> np.ndarray:
        """Re-render a stored candidate as an RGBA overlay without running the decoder."""
        self._check_index(index)
        return self._render(index)

    def get_mask_image(self, index: int) -> bytes:
        return encode_png(self.get_mask(index))
