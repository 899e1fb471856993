"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, UploadFile, status
from fastapi.responses import JSONResponse

from diabscan.api.middleware import verify_api_key
from diabscan.api.schemas import (
    ErrorResponse,
    HealthResponse,
    ImageSizeModel,
    LabelsResponse,
    PredictionResponse,
)
from diabscan.errors import DecodeError, PredictionError, ResourceLoadError

if TYPE_CHECKING:
    from diabscan.config import Settings
    from diabscan.ml.inference import InferencePool
    from diabscan.ml.interpreter import PredictionOutcome
    from diabscan.ml.labels import LabelSet

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])
health_router = APIRouter(prefix="/api/v1")

# Anything not listed is a configuration defect or runtime failure (500).
_ERROR_STATUS: dict[type[PredictionError], int] = {
    DecodeError: status.HTTP_400_BAD_REQUEST,
    ResourceLoadError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool | None:
    pool: InferencePool | None = request.app.state.inference_pool
    return pool


def _get_labels(request: Request) -> LabelSet:
    labels: LabelSet = request.app.state.labels
    return labels


def _error(status_code: int, detail: str, kind: str | None = None, stage: str | None = None) -> JSONResponse:
    body = ErrorResponse(detail=detail, kind=kind, stage=stage)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _status_for(exc: PredictionError) -> int:
    for error_type, status_code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _to_response(outcome: PredictionOutcome, threshold: float) -> PredictionResponse:
    return PredictionResponse(
        prediction=outcome.prediction,
        confidence=outcome.confidence,
        high_confidence=outcome.is_confident(threshold),
        probabilities=dict(outcome.probabilities),
        inference_time_ms=outcome.inference_time_ms,
        image_size=ImageSizeModel(width=outcome.image_size.width, height=outcome.image_size.height),
        processed_size=ImageSizeModel(width=outcome.processed_size.width, height=outcome.processed_size.height),
    )


@router.post(
    "/predict",
    response_model=PredictionResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an uploaded image",
)
async def predict(request: Request, file: UploadFile) -> PredictionResponse | JSONResponse:
    """Run the prediction pipeline on an uploaded image."""
    pool = _get_inference_pool(request)
    if pool is None:
        reason = request.app.state.readiness_error or "Model not loaded"
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, reason, kind=ResourceLoadError.__name__)

    settings = _get_settings(request)
    contents = await file.read(settings.max_file_size + 1)
    if len(contents) > settings.max_file_size:
        return _error(
            status.HTTP_413_CONTENT_TOO_LARGE,
            f"File exceeds the {settings.max_file_size} byte limit",
        )
    if not contents:
        return _error(status.HTTP_400_BAD_REQUEST, "Empty upload", kind=DecodeError.__name__)

    try:
        outcome = await pool.predict(contents)
    except TimeoutError:
        logger.warning("Inference queue full, rejecting %s", file.filename)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Inference queue is full, retry later")
    except PredictionError as exc:
        body = ErrorResponse(**exc.describe())
        return JSONResponse(status_code=_status_for(exc), content=body.model_dump())

    return _to_response(outcome, settings.confidence_threshold)


@router.get(
    "/labels",
    response_model=LabelsResponse,
    summary="List class labels",
)
async def list_labels(request: Request) -> LabelsResponse:
    """Return the labels the model output is read against, in output order."""
    return LabelsResponse(labels=list(_get_labels(request)))


@health_router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service readiness."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok" if pool is not None else "unavailable",
        ready=pool is not None,
        gpu=settings.device == "cuda",
        model=request.app.state.model_name,
        labels=list(_get_labels(request)),
        concurrent_requests=pool.active_count if pool is not None else 0,
        queue_depth=pool.queue_depth if pool is not None else 0,
        error=request.app.state.readiness_error,
    )
