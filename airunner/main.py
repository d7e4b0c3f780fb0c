"""Entrypoint: FastAPI service over the inference engines, served via uvicorn."""

from __future__ import annotations

import argparse
import base64
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response

from airunner.config import Settings
from airunner.errors import ConfigurationError, InvalidInputError, UsageError
from airunner.ml import face, segment
from airunner.ml.stylize import STYLES
from airunner.pipeline import SEGMENT, EngineRegistry, parse_color_to_rgb, region_to_dict

logger = logging.getLogger(__name__)

PNG = "image/png"


def health():
    return JSONResponse({"status": "ok", "service": "airunner"})


async def _body(request: Request) -> bytes:
    data = await request.body()
    if not data:
        raise InvalidInputError("Request body must contain an encoded image")
    return data


def _check_choice(value: str, choices, what: str) -> None:
    if value not in choices:
        raise HTTPException(status_code=404, detail=f"Unknown {what}: {value}")


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse({"error": type(exc).__name__, "detail": str(exc)}, status_code=status_code)

    return handler


def get_app(settings: Settings | None = None, registry: EngineRegistry | None = None) -> FastAPI:
    """Return FastAPI app with /health and one route per pipeline operation."""
    settings = settings or Settings.from_env()
    registry = registry or EngineRegistry(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        registry.close()

    app = FastAPI(title="AI Runner", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.registry = registry
    app.add_api_route("/health", health, methods=["GET"])
    app.add_exception_handler(ConfigurationError, _error_handler(503))
    app.add_exception_handler(UsageError, _error_handler(409))
    app.add_exception_handler(InvalidInputError, _error_handler(400))

    def run(key: str, fn):
        with registry.use(key) as engine:
            return fn(engine)

    @app.post("/colorize")
    async def colorize(request: Request):
        data = await _body(request)
        out = await run_in_threadpool(run, "colorize", lambda e: e.process(data))
        return Response(out, media_type=PNG)

    @app.post("/faces/detect")
    async def detect_faces(
        request: Request,
        detector: str = "ultraface",
        confidence: float | None = Query(None, ge=0.0, le=1.0),
    ):
        _check_choice(detector, face.PROFILES, "detector")
        data = await _body(request)
        regions = await run_in_threadpool(run, f"faces.{detector}", lambda e: e.detect(data, confidence))
        return {"faces": [region_to_dict(r) for r in regions]}

    @app.post("/faces/anonymize")
    async def anonymize_faces(
        request: Request,
        detector: str = "ultraface",
        confidence: float | None = Query(None, ge=0.0, le=1.0),
        blur: bool = True,
        boxes: bool = False,
        sigma: float = Query(15, gt=0),
        thickness: float = Query(3, gt=0),
    ):
        _check_choice(detector, face.PROFILES, "detector")
        data = await _body(request)

        def work(engine: face.FaceDetector) -> bytes:
            regions = engine.detect(data, confidence)
            return engine.anonymize(data, regions, blur=blur, draw=boxes, sigma=sigma, thickness=thickness)

        out = await run_in_threadpool(run, f"faces.{detector}", work)
        return Response(out, media_type=PNG)

    @app.post("/remove-background")
    async def remove_background(
        request: Request,
        threshold: float = Query(0.0, ge=0.0, le=1.0),
        bg_color: str | None = None,
    ):
        color = parse_color_to_rgb(bg_color)
        data = await _body(request)
        out = await run_in_threadpool(run, "remove_bg", lambda e: e.remove_background(data, threshold, color))
        return Response(out, media_type=PNG)

    @app.post("/stylize")
    async def stylize(request: Request, style: str = "hayao"):
        _check_choice(style, STYLES, "style")
        data = await _body(request)
        out = await run_in_threadpool(run, f"stylize.{style}", lambda e: e.process(data))
        return Response(out, media_type=PNG)

    @app.post("/upscale")
    async def upscale(request: Request):
        data = await _body(request)

        def progress(fraction: float) -> None:
            logger.debug("upscale %d%%", int(fraction * 100))

        out = await run_in_threadpool(run, "upscale", lambda e: e.upscale(data, progress))
        return Response(out, media_type=PNG)

    @app.post("/segment/load")
    async def segment_load(model: str = "sam2"):
        _check_choice(model, segment.PROFILES, "segmentation model")
        session = await run_in_threadpool(registry.switch_segmentation, model)
        return {"model": session.profile.name, "device_mode": session.device_mode.value}

    @app.post("/segment/encode")
    async def segment_encode(request: Request):
        data = await _body(request)
        await run_in_threadpool(run, SEGMENT, lambda s: s.encode_image(data))
        return {"state": segment.SessionState.ENCODED.value}

    @app.post("/segment/predict")
    async def segment_predict(x: float, y: float):
        result = await run_in_threadpool(run, SEGMENT, lambda s: s.predict(x, y))
        return {
            "candidate_scores": list(result.candidate_scores),
            "best_index": result.best_index,
            "ranked_indices": list(result.ranked_indices),
            "best_mask": base64.b64encode(result.best_mask_bytes).decode("ascii"),
        }

    @app.get("/segment/masks/{index}")
    async def segment_mask(index: int):
        out = await run_in_threadpool(run, SEGMENT, lambda s: s.get_mask_image(index))
        return Response(out, media_type=PNG)

    return app


def main():
    settings = Settings.from_env()
    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=settings.port)
    args = parser.parse_args()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = get_app(settings)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
