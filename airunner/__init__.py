"""On-device image inference over ONNX models."""

__version__ = "0.1.0"
