"""Engine registry for the service: lazy model loading, one lock per engine."""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from airunner.config import Settings
from airunner.errors import InvalidInputError
from airunner.ml import face, segment
from airunner.ml.colorize import ColorizationEngine
from airunner.ml.detect import Region
from airunner.ml.remove_bg import BackgroundRemovalEngine
from airunner.ml.runtime import SessionLoader, load_session
from airunner.ml.stylize import STYLES, StyleTransferEngine
from airunner.ml.upscale import UpscaleEngine
from airunner.utils.cache import find_model

logger = logging.getLogger(__name__)

SEGMENT = "segment"


def hex_to_rgb(hex_color: str) -> tuple[int, int, int]:
    """Convert hex string (e.g. '#FF0000') to (R, G, B) 0-255."""
    hex_color = hex_color.lstrip("#")
    if len(hex_color) != 6 or not all(c in "0123456789abcdefABCDEF" for c in hex_color):
        raise InvalidInputError(f"Invalid hex color: {hex_color}")
    return tuple(int(hex_color[i : i + 2], 16) for i in (0, 2, 4))


def parse_color_to_rgb(value: str | None) -> tuple[int, int, int] | None:
    """Hex, CSS rgb(...) or a few names -> (R, G, B); None/'' / 'transparent' -> None."""
    if value is None:
        return None
    s = value.strip().lower()
    if s in ("", "none", "transparent"):
        return None
    named = {"white": (255, 255, 255), "black": (0, 0, 0), "green": (0, 255, 0), "blue": (0, 0, 255)}
    if s in named:
        return named[s]
    m = re.match(r"rgba?\s*\(\s*([\d.]+)\s*,\s*([\d.]+)\s*,\s*([\d.]+)", s)
    if m:
        return tuple(int(round(min(255.0, float(g)))) for g in m.groups())
    return hex_to_rgb(s)


def region_to_dict(region: Region) -> Dict[str, Any]:
    return {"x": region.x, "y": region.y, "width": region.width, "height": region.height, "score": region.score}


def region_from_dict(data: Dict[str, Any]) -> Region:
    return Region(int(data["x"]), int(data["y"]), int(data["width"]), int(data["height"]), float(data.get("score", 1.0)))


class EngineRegistry:
    """Creates engines on first use from the model cache dir.

    use(key) holds that engine's lock for the duration of the block, so one
    engine never runs two operations at once.
    Keys: colorize, faces.<ultraface|yolo>, remove_bg, stylize.<style>, upscale, segment.
    """

    def __init__(self, settings: Settings, loader: SessionLoader = load_session):
        self.settings = settings
        self._loader = loader
        self._engines: Dict[str, Any] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def register(self, key: str, engine: Any) -> None:
        """Install an already-loaded engine (replacing and closing any existing one)."""
        with self._guard:
            old = self._engines.pop(key, None)
            self._engines[key] = engine
            self._locks.setdefault(key, threading.Lock())
        if old is not None and old is not engine:
            old.close()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    @contextmanager
    def use(self, key: str) -> Iterator[Any]:
        with self._lock_for(key):
            engine = self._engines.get(key)
            if engine is None:
                engine = self._create(key)
                self._engines[key] = engine
            yield engine

    def _create(self, key: str):
        base, gpu = self.settings.model_dir, self.settings.use_gpu
        kind, _, variant = key.partition(".")
        if kind == "colorize":
            engine = ColorizationEngine(self._loader)
        elif kind == "faces" and variant in face.PROFILES:
            engine = face.FaceDetector(face.PROFILES[variant], self._loader)
        elif kind == "remove_bg":
            engine = BackgroundRemovalEngine(self._loader)
        elif kind == "stylize" and variant in STYLES:
            engine = StyleTransferEngine(self._loader)
        elif kind == "upscale":
            engine = UpscaleEngine(tile_size=self.settings.upscale_tile_size or None, loader=self._loader)
        elif kind == SEGMENT:
            return self._create_segmentation(self.settings.segment_model)
        else:
            raise KeyError(f"Unknown engine: {key}")
        engine.load_model(find_model(key, base), gpu)
        logger.info("engine %s ready (%s)", key, engine.device_mode.value)
        return engine

    def _create_segmentation(self, model: str) -> segment.SegmentationSession:
        if model not in segment.PROFILES:
            raise KeyError(f"Unknown segmentation model: {model}")
        session = segment.SegmentationSession(segment.PROFILES[model], self._loader)
        self._load_segmentation(session, model)
        return session

    def _load_segmentation(self, session: segment.SegmentationSession, model: str) -> None:
        base = self.settings.model_dir
        session.load_models(
            find_model(f"segment.{model}.encoder", base),
            find_model(f"segment.{model}.decoder", base),
            self.settings.use_gpu,
            profile=segment.PROFILES[model],
        )

    def switch_segmentation(self, model: str) -> segment.SegmentationSession:
        """Load another encoder/decoder pair; the previous embedding is discarded."""
        if model not in segment.PROFILES:
            raise KeyError(f"Unknown segmentation model: {model}")
        with self._lock_for(SEGMENT):
            session = self._engines.get(SEGMENT)
            if session is None:
                session = self._create_segmentation(model)
                self._engines[SEGMENT] = session
            else:
                self._load_segmentation(session, model)
            return session

    def close(self) -> None:
        with self._guard:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            engine.close()
