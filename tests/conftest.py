"""Shared fixtures: synthetic images and fake ONNX sessions."""

from __future__ import annotations

import io
from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest
from PIL import Image

from diabscan.ml.engine import InferenceEngine
from diabscan.ml.labels import LabelSet


def make_image_bytes(width: int = 320, height: int = 240, fmt: str = "PNG", mode: str = "RGB") -> bytes:
    """Encode a deterministic gradient image."""
    xs = np.linspace(0, 255, width, dtype=np.uint8)
    ys = np.linspace(0, 255, height, dtype=np.uint8)
    rgb = np.stack(
        [
            np.tile(xs, (height, 1)),
            np.tile(ys[:, None], (1, width)),
            np.full((height, width), 128, dtype=np.uint8),
        ],
        axis=-1,
    )
    image = Image.fromarray(rgb).convert(mode)
    buf = io.BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


def make_session(
    scores: list[float] | None = None,
    input_shape: list[object] | None = None,
    output_shape: list[object] | None = None,
) -> MagicMock:
    """Build a stand-in for ``onnxruntime.InferenceSession``."""
    session = MagicMock()
    session.get_inputs.return_value = [SimpleNamespace(name="input", shape=input_shape or [1, 224, 224, 3])]
    session.get_outputs.return_value = [SimpleNamespace(name="output", shape=output_shape or [1, 2])]
    session.run.return_value = [np.array([scores or [0.82, 0.18]], dtype=np.float32)]
    return session


@pytest.fixture()
def labels() -> LabelSet:
    return LabelSet(("diabetes", "nondiabetes"))


@pytest.fixture()
def png_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture()
def engine() -> InferenceEngine:
    return InferenceEngine(make_session(), model_name="mbv3_diabetes_2class")
