"""Pydantic request/response schemas for the DiabScan API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ImageSizeModel(BaseModel):
    """Pixel dimensions of an image."""

    width: int
    height: int


class PredictionResponse(BaseModel):
    """Response for the prediction endpoint."""

    prediction: str = Field(description="Predicted label")
    confidence: float = Field(description="Raw model score of the predicted label")
    high_confidence: bool = Field(description="Whether confidence exceeds the configured threshold")
    probabilities: dict[str, float] = Field(description="Score for every label, in label order")
    inference_time_ms: float
    image_size: ImageSizeModel = Field(description="Size of the uploaded image before resizing")
    processed_size: ImageSizeModel = Field(description="Size of the tensor fed to the model")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    ready: bool
    gpu: bool
    model: str | None
    labels: list[str]
    concurrent_requests: int
    queue_depth: int
    error: str | None = None


class LabelsResponse(BaseModel):
    """Response for the labels listing endpoint."""

    labels: list[str]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    kind: str | None = None
    stage: str | None = None
