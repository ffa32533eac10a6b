"""Tests for the bounded inference worker."""

from __future__ import annotations

import threading
import time

import pytest

from peekguard.config import Settings
from peekguard.errors import DetectionTimeout
from peekguard.ml.inference import InferencePool


class TestInferencePool:
    async def test_runs_function_off_the_event_loop(self) -> None:
        pool = InferencePool(Settings())
        try:
            name = await pool.run(lambda: threading.current_thread().name)
            assert name.startswith("frame-worker")
        finally:
            pool.shutdown()

    async def test_passes_arguments(self) -> None:
        pool = InferencePool(Settings())
        try:
            assert await pool.run(pow, 2, 10) == 1024
        finally:
            pool.shutdown()

    async def test_slow_call_raises_detection_timeout(self) -> None:
        pool = InferencePool(Settings(detection_timeout=0.05))
        try:
            with pytest.raises(DetectionTimeout):
                await pool.run(time.sleep, 0.5)
            assert pool.timeout_count == 1
            assert pool.active_count == 0
        finally:
            pool.shutdown()

    async def test_errors_propagate(self) -> None:
        pool = InferencePool(Settings())

        def boom() -> None:
            raise ValueError("bad tensor")

        try:
            with pytest.raises(ValueError, match="bad tensor"):
                await pool.run(boom)
            assert pool.active_count == 0
        finally:
            pool.shutdown()
