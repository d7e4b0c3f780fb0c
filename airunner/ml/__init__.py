"""ML pipeline: ONNX runtime adapter, tensor codec, decoders, compositing, engines."""

from airunner.ml.colorize import ColorizationEngine
from airunner.ml.detect import DecodeScheme, Region, decode, iou, non_max_suppression
from airunner.ml.face import FaceDetector
from airunner.ml.remove_bg import BackgroundRemovalEngine
from airunner.ml.runtime import DeviceMode, ModelSession, load_session
from airunner.ml.segment import SegmentationSession
from airunner.ml.stylize import StyleTransferEngine
from airunner.ml.upscale import UpscaleEngine

__all__ = [
    "ColorizationEngine",
    "DecodeScheme",
    "Region",
    "decode",
    "iou",
    "non_max_suppression",
    "FaceDetector",
    "BackgroundRemovalEngine",
    "DeviceMode",
    "ModelSession",
    "load_session",
    "SegmentationSession",
    "StyleTransferEngine",
    "UpscaleEngine",
]
