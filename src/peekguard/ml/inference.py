"""Inference worker.

Architecture:
    asyncio session -> single-thread executor -> preprocess + ONNX inference + post-processing

Frames are processed one at a time on a dedicated worker thread so the event
loop (and with it the UI-facing state) never blocks on inference. Each call is
bounded by ``detection_timeout``; a stalled call raises
:class:`~peekguard.errors.DetectionTimeout` and its eventual result is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

from peekguard.errors import DetectionTimeout

if TYPE_CHECKING:
    from collections.abc import Callable

    from peekguard.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Runs blocking detection work on a dedicated thread with a time bound."""

    def __init__(self, settings: Settings) -> None:
        self._timeout = settings.detection_timeout
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="frame-worker")
        self._active_count: int = 0
        self._timeouts: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Submit a synchronous function to the worker thread and await it.

        Raises:
            DetectionTimeout: If the call does not finish within the timeout.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, func, *args)
        with self._counter_lock:
            self._active_count += 1
        try:
            return await asyncio.wait_for(future, timeout=self._timeout)
        except TimeoutError:
            with self._counter_lock:
                self._timeouts += 1
            logger.warning("Detection exceeded %.2fs, frame abandoned", self._timeout)
            raise DetectionTimeout(f"Detection exceeded {self._timeout:.2f}s") from None
        finally:
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of frames currently awaited."""
        with self._counter_lock:
            return self._active_count

    @property
    def timeout_count(self) -> int:
        """Number of frames abandoned because of the timeout."""
        with self._counter_lock:
            return self._timeouts

    def shutdown(self) -> None:
        """Shut down the worker thread without waiting for an abandoned frame."""
        self._executor.shutdown(wait=False, cancel_futures=True)
