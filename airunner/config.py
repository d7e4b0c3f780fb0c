"""Runtime settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    model_dir: Path
    use_gpu: bool = False
    log_level: str = "INFO"
    port: int = 7860
    upscale_tile_size: int = 128
    segment_model: str = "sam2"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from MODEL_CACHE_DIR, USE_GPU, LOG_LEVEL, PORT, UPSCALE_TILE_SIZE, SEGMENT_MODEL."""
        return cls(
            model_dir=Path(os.environ.get("MODEL_CACHE_DIR", os.path.join(os.getcwd(), "models"))),
            use_gpu=_env_bool("USE_GPU"),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            port=int(os.environ.get("PORT", "7860")),
            upscale_tile_size=int(os.environ.get("UPSCALE_TILE_SIZE", "128")),
            segment_model=os.environ.get("SEGMENT_MODEL", "sam2"),
        )
