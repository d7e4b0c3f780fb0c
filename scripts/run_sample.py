#!/usr/bin/env python3
"""Sample run: one engine on one image file, output written as PNG."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from airunner.ml.colorize import ColorizationEngine
from airunner.ml.compositor import anonymize
from airunner.ml.face import PROFILES, FaceDetector
from airunner.ml.remove_bg import BackgroundRemovalEngine
from airunner.ml.stylize import StyleTransferEngine
from airunner.ml.upscale import UpscaleEngine
from airunner.pipeline import parse_color_to_rgb
from airunner.utils.image_io import load_image, save_image

logger = logging.getLogger("run_sample")

TASKS = ("colorize", "faces", "remove-bg", "stylize", "upscale")


def _engine(task: str, detector: str):
    if task == "colorize":
        return ColorizationEngine()
    if task == "faces":
        return FaceDetector(PROFILES[detector])
    if task == "remove-bg":
        return BackgroundRemovalEngine()
    if task == "stylize":
        return StyleTransferEngine()
    return UpscaleEngine()


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--task", choices=TASKS, required=True)
    parser.add_argument("--model", required=True, help="path to the .onnx file")
    parser.add_argument("--image", required=True)
    parser.add_argument("--out", required=True)
    parser.add_argument("--gpu", action="store_true")
    parser.add_argument("--detector", choices=sorted(PROFILES), default="ultraface")
    parser.add_argument("--bg-color", default=None, help="remove-bg: blend onto this color instead of alpha")
    parser.add_argument("--boxes", action="store_true", help="faces: draw outlines as well as blurring")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    image = load_image(args.image)
    with _engine(args.task, args.detector) as engine:
        mode = engine.load_model(args.model, args.gpu)
        logger.info("%s running on %s", args.task, mode.value)
        if args.task == "colorize":
            out = engine.colorize(image)
        elif args.task == "faces":
            regions = engine.detect_array(image)
            for r in regions:
                logger.info("face at (%d, %d) %dx%d score=%.3f", r.x, r.y, r.width, r.height, r.score)
            out = anonymize(image, regions, blur=True, draw=args.boxes)
        elif args.task == "remove-bg":
            out = engine.remove_background_array(image, bg_color=parse_color_to_rgb(args.bg_color))
        elif args.task == "stylize":
            out = engine.stylize(image)
        else:
            out = engine.upscale_array(image, progress=lambda f: logger.info("tiles %3.0f%%", f * 100))

    save_image(out, args.out)
    logger.info("wrote %s (%dx%d)", args.out, out.shape[1], out.shape[0])
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
