"""Inference concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> pipeline slot -> ONNX inference

Each of the N slots owns its own pipeline and engine, so an engine never
serves two calls at once. Requests beyond the semaphore limit queue with a
timeout, then get 503.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from diabscan.ml.interpreter import PredictionOutcome
    from diabscan.ml.pipeline import PredictionPipeline

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Manages the semaphore, thread pool, and pipeline slots for inference."""

    def __init__(
        self,
        pipelines: Sequence[PredictionPipeline],
        queue_timeout: float = DEFAULT_QUEUE_TIMEOUT_SECONDS,
    ) -> None:
        if not pipelines:
            raise ValueError("InferencePool needs at least one pipeline")

        self._pipelines = list(pipelines)
        self._queue_timeout = queue_timeout
        self._semaphore = asyncio.Semaphore(len(self._pipelines))
        self._executor = ThreadPoolExecutor(
            max_workers=len(self._pipelines),
            thread_name_prefix="onnx-inference",
        )
        self._idle: queue.SimpleQueue[PredictionPipeline] = queue.SimpleQueue()
        for pipeline in self._pipelines:
            self._idle.put(pipeline)

        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def predict(self, image_bytes: bytes) -> PredictionOutcome:
        """Run one prediction on a free pipeline slot.

        Acquires the semaphore (with timeout), then runs an idle pipeline in
        the executor and releases.

        Raises:
            TimeoutError: If no slot frees up within the timeout.
            PredictionError: Any pipeline stage failure.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._queue_timeout)
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, self._run_on_slot, image_bytes)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    def _run_on_slot(self, image_bytes: bytes) -> PredictionOutcome:
        # Checkout happens on the worker thread so a cancelled request never
        # hands its slot back while the engine is still running.
        pipeline = self._idle.get()
        try:
            return pipeline.predict(image_bytes)
        finally:
            self._idle.put(pipeline)

    @property
    def model_name(self) -> str:
        return self._pipelines[0].engine.model_name

    @property
    def size(self) -> int:
        return len(self._pipelines)

    @property
    def active_count(self) -> int:
        """Number of currently running inference tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool and release every engine."""
        self._executor.shutdown(wait=True)
        for pipeline in self._pipelines:
            pipeline.close()
        logger.info("Released %d inference slot(s)", len(self._pipelines))
