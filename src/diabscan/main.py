"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from diabscan.config import Settings

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from diabscan.api.middleware import RequestLoggingMiddleware
from diabscan.api.routes import health_router, router
from diabscan.config import get_settings
from diabscan.errors import LabelMismatchError, ResourceLoadError
from diabscan.ml.inference import InferencePool
from diabscan.ml.labels import LabelSet
from diabscan.ml.model_manager import OnnxModelManager
from diabscan.ml.pipeline import PredictionPipeline
from diabscan.ml.preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)


def build_inference_pool(settings: Settings, labels: LabelSet) -> InferencePool:
    """Load one engine per concurrency slot and wrap each in a pipeline.

    Raises:
        ResourceLoadError: If the model cannot be loaded.
        LabelMismatchError: If the labels do not fit the model output.
    """
    preprocessor = ImagePreprocessor(resample=settings.resample, max_image_pixels=settings.max_image_pixels)
    engines = OnnxModelManager(settings).load_engines(settings.max_concurrent)
    try:
        pipelines = [PredictionPipeline(labels, preprocessor, engine) for engine in engines]
    except LabelMismatchError:
        for engine in engines:
            engine.close()
        raise
    return InferencePool(pipelines, queue_timeout=settings.queue_timeout)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting DiabScan (device=%s, max_concurrent=%s, model=%s, resample=%s)",
        settings.device,
        settings.max_concurrent,
        settings.model_path,
        settings.resample,
    )

    labels = LabelSet.from_file(settings.labels_path)
    app.state.labels = labels
    app.state.inference_pool = None
    app.state.model_name = None
    app.state.readiness_error = None

    try:
        inference_pool = build_inference_pool(settings, labels)
    except (ResourceLoadError, LabelMismatchError) as exc:
        # Not retried: predictions answer 503 until the resource is fixed and the service restarted.
        logger.error("DiabScan not ready: %s", exc)
        app.state.readiness_error = str(exc)
    else:
        app.state.inference_pool = inference_pool
        app.state.model_name = inference_pool.model_name
        logger.info("DiabScan ready")

    yield

    logger.info("Shutting down DiabScan")
    if app.state.inference_pool is not None:
        app.state.inference_pool.shutdown()
    logger.info("DiabScan shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="DiabScan",
        description="Two-class image classification API (diabetes / nondiabetes)",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(health_router)
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    settings = get_settings()
    uvicorn.run("diabscan.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
