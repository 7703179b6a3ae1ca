"""Bounded thread pool for CPU-bound pipeline work.

Pillow and NumPy release the GIL for the heavy lifting, so threads are enough
to keep the event loop responsive. The pool admits at most
``max_workers + max_queue`` jobs; anything beyond that is refused straight
away with ``PipelineBusyError`` instead of piling up.
"""
from __future__ import annotations

import asyncio
import logging
import os
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, TypeVar

from pixelforge.domain.errors import PipelineBusyError, PipelineTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PipelineWorkerPool:
    def __init__(self, max_workers: int | None = None, max_queue: int = 32) -> None:
        self.max_workers = max(1, max_workers or os.cpu_count() or 1)
        self.max_queue = max(0, max_queue)
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="pipeline"
        )
        self._slots = threading.BoundedSemaphore(self.max_workers + self.max_queue)

    def submit(self, fn: Callable[..., T], *args: Any) -> Future[T]:
        if not self._slots.acquire(blocking=False):
            logger.warning(
                "Pipeline pool saturated (workers=%d, queue=%d)", self.max_workers, self.max_queue
            )
            raise PipelineBusyError("Image pipeline is busy. Try again shortly.")
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError as exc:
            self._slots.release()
            raise PipelineBusyError("Image pipeline is shutting down") from exc
        future.add_done_callback(lambda _: self._slots.release())
        return future

    async def run(self, fn: Callable[..., T], *args: Any, timeout: float | None = None) -> T:
        """Run ``fn(*args)`` on the pool and await it.

        On timeout or task cancellation the job is cancelled if still queued; a
        job already running finishes in the background and its result is dropped.
        """
        future = self.submit(fn, *args)
        try:
            return await asyncio.wait_for(asyncio.wrap_future(future), timeout)
        except asyncio.TimeoutError as exc:
            future.cancel()
            raise PipelineTimeoutError(f"Image pipeline exceeded {timeout:.0f}s") from exc

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)
