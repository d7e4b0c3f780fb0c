"""ONNX Runtime adapter: session loading with GPU->CPU fallback and scoped release."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Sequence

import numpy as np
import onnxruntime as ort

from airunner.errors import ConfigurationError, ModelFileNotFoundError, ModelNotLoadedError
from airunner.ml.tensor_codec import check_shape

logger = logging.getLogger(__name__)

CUDA_PROVIDER = "CUDAExecutionProvider"
CPU_PROVIDER = "CPUExecutionProvider"

_ORT_TYPES = {
    "tensor(float)": np.float32,
    "tensor(double)": np.float64,
    "tensor(int64)": np.int64,
    "tensor(int32)": np.int32,
    "tensor(bool)": np.bool_,
}


class DeviceMode(str, Enum):
    CPU = "CPU"
    GPU = "GPU"
    CPU_FALLBACK = "CPU (Fallback)"


class ModelSession:
    """Loaded model plus the device it ended up on.

    run() takes and returns dicts keyed by tensor name. Declared input shapes
    are enforced before every run.
    """

    def __init__(self, session, path: str | Path, device_mode: DeviceMode):
        self._session = session
        self.path = Path(path)
        self.device_mode = device_mode
        self.input_names: List[str] = [i.name for i in session.get_inputs()]
        self.input_shapes: Dict[str, list] = {i.name: list(i.shape) for i in session.get_inputs()}
        self.input_types: Dict[str, str] = {i.name: i.type for i in session.get_inputs()}
        self.output_names: List[str] = [o.name for o in session.get_outputs()]

    @property
    def closed(self) -> bool:
        return self._session is None

    @property
    def first_input(self) -> str:
        return self.input_names[0]

    def cast_input(self, name: str, value) -> np.ndarray:
        """Convert value to the element type the model declares for input name."""
        dtype = _ORT_TYPES.get(self.input_types.get(name, ""), np.float32)
        return np.asarray(value, dtype=dtype)

    def run(self, inputs: Mapping[str, np.ndarray], output_names: Sequence[str] | None = None) -> Dict[str, np.ndarray]:
        if self._session is None:
            raise ModelNotLoadedError(self.path.name)
        for name, value in inputs.items():
            if name not in self.input_shapes:
                raise ConfigurationError(f"{self.path.name} has no input named '{name}' (inputs: {self.input_names})")
            check_shape(value, self.input_shapes[name], name)
        missing = [n for n in self.input_names if n not in inputs]
        if missing:
            raise ConfigurationError(f"{self.path.name} requires inputs {missing} that were not supplied")
        names = list(output_names) if output_names else self.output_names
        values = self._session.run(names, dict(inputs))
        return dict(zip(names, values))

    def close(self) -> None:
        # onnxruntime frees the native session once the last reference is dropped
        self._session = None

    def __enter__(self) -> "ModelSession":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


SessionLoader = Callable[[str | Path, bool], ModelSession]


def _session_options():
    so = ort.SessionOptions()
    so.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_BASIC
    return so


def load_session(path: str | Path, prefer_gpu: bool = False) -> ModelSession:
    """Load an ONNX model. A GPU that cannot be acquired falls back to CPU
    and is reported as DeviceMode.CPU_FALLBACK rather than raised.
    """
    path = Path(path)
    if not path.is_file():
        raise ModelFileNotFoundError(f"Model not found: {path}")

    mode = DeviceMode.CPU
    if prefer_gpu:
        if CUDA_PROVIDER in ort.get_available_providers():
            try:
                session = ort.InferenceSession(
                    str(path), sess_options=_session_options(), providers=[CUDA_PROVIDER, CPU_PROVIDER]
                )
            except Exception as e:
                logger.warning("GPU load failed for %s (%s); falling back to CPU", path.name, e)
            else:
                if CUDA_PROVIDER in session.get_providers():
                    logger.info("Loaded %s (GPU)", path)
                    return ModelSession(session, path, DeviceMode.GPU)
                logger.warning("CUDA provider not applied for %s; running on CPU", path.name)
                return ModelSession(session, path, DeviceMode.CPU_FALLBACK)
        else:
            logger.warning("CUDAExecutionProvider not available, falling back to CPU")
        mode = DeviceMode.CPU_FALLBACK

    try:
        session = ort.InferenceSession(str(path), sess_options=_session_options(), providers=[CPU_PROVIDER])
    except Exception as e:
        raise ConfigurationError(f"Failed to load model {path}: {e}") from e
    logger.info("Loaded %s (%s)", path, mode.value)
    return ModelSession(session, path, mode)


class OnnxEngine:
    """Base for single-model engines: owns one ModelSession at a time."""

    name = "Model"

    def __init__(self, loader: SessionLoader = load_session):
        self._loader = loader
        self._session: ModelSession | None = None

    @property
    def device_mode(self) -> DeviceMode | None:
        return self._session.device_mode if self._session is not None else None

    @property
    def is_loaded(self) -> bool:
        return self._session is not None

    def load_model(self, model_path: str | Path, use_gpu: bool = False) -> DeviceMode:
        """Release any current session, then load model_path."""
        self.close()
        session = self._loader(model_path, use_gpu)
        try:
            self._on_loaded(session)
        except BaseException:
            session.close()
            raise
        self._session = session
        return session.device_mode

    def _on_loaded(self, session: ModelSession) -> None:
        pass

    def _require_session(self) -> ModelSession:
        if self._session is None:
            raise ModelNotLoadedError(self.name)
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()
