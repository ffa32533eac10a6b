"""Tests for the detection session pipeline."""

from __future__ import annotations

import asyncio
import io
import threading
import time
from collections.abc import AsyncIterator
from unittest.mock import MagicMock

import numpy as np
import pytest
from PIL import Image

from peekguard.config import Settings
from peekguard.errors import InferenceError
from peekguard.guard.modes import DetectionMode, ProtectionAction, ProtectionSettings
from peekguard.guard.protection import ProtectionActivated, ProtectionDeactivated, ProtectionDispatcher
from peekguard.guard.session import DetectionSession
from peekguard.guard.settings_store import SettingsStore
from peekguard.ml.face_detector import OnnxFaceDetector, RawDetectorOutput
from peekguard.ml.postprocessing import DetectionResult

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

TWO_FACES = RawDetectorOutput(
    boxes=np.array([[0.1, 0.1, 0.3, 0.3], [0.6, 0.6, 0.9, 0.9]], dtype=np.float32),
    scores=np.array([0.95, 0.9], dtype=np.float32),
)
OWNER_ONLY = RawDetectorOutput(
    boxes=np.array([[0.4, 0.4, 0.6, 0.6]], dtype=np.float32),
    scores=np.array([0.95], dtype=np.float32),
)


def _frame() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (64, 48), (90, 90, 90)).save(buf, format="PNG")
    return buf.getvalue()


FRAME = _frame()


class FakeDetector:
    """Returns a configurable raw output; optionally blocks or fails."""

    def __init__(self, output: RawDetectorOutput = OWNER_ONLY, initialized: bool = True) -> None:
        self.output = output
        self.initialized = initialized
        self.error: Exception | None = None
        self.delay: float = 0.0
        self.entered = threading.Event()
        self.release: threading.Event | None = None
        self.calls = 0

    @property
    def is_initialized(self) -> bool:
        return self.initialized

    def detect(self, tensor: np.ndarray) -> RawDetectorOutput:
        self.calls += 1
        assert tensor.shape == (3, 240, 320)
        self.entered.set()
        if self.release is not None:
            self.release.wait(timeout=5)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.output


class RecordingHaptics:
    def __init__(self) -> None:
        self.calls: list[int] = []

    def vibrate(self, duration_ms: int) -> None:
        self.calls.append(duration_ms)


def _drain(session: DetectionSession) -> list[object]:
    messages = []
    while not session.messages.empty():
        messages.append(session.messages.get_nowait())
    return messages


@pytest.fixture()
def detector() -> FakeDetector:
    return FakeDetector()


@pytest.fixture()
def haptics() -> RecordingHaptics:
    return RecordingHaptics()


@pytest.fixture()
async def session(detector: FakeDetector, haptics: RecordingHaptics) -> AsyncIterator[DetectionSession]:
    s = DetectionSession.from_settings(
        Settings(detection_timeout=2.0),
        detector,
        SettingsStore(),
        dispatcher=ProtectionDispatcher(haptics=haptics),
    )
    yield s
    s.close()


async def _feed(session: DetectionSession, count: int) -> list:
    return [await session.process_frame(FRAME) for _ in range(count)]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    async def test_start_requires_initialized_detector(self) -> None:
        s = DetectionSession.from_settings(Settings(), FakeDetector(initialized=False), SettingsStore())
        try:
            with pytest.raises(InferenceError):
                s.start()
            assert s.is_active is False
        finally:
            s.close()

    async def test_frames_ignored_while_inactive(self, session: DetectionSession, detector: FakeDetector) -> None:
        assert await session.process_frame(FRAME) is None
        assert detector.calls == 0

    async def test_stop_resets_debounce(self, session: DetectionSession, detector: FakeDetector) -> None:
        detector.output = TWO_FACES
        session.start()
        await _feed(session, 3)
        assert session.debounce_snapshot().consecutive_positive_frames == 3

        session.stop()
        assert session.debounce_snapshot().consecutive_positive_frames == 0
        assert session.is_active is False

    async def test_stop_discards_in_flight_frame(self, session: DetectionSession, detector: FakeDetector) -> None:
        detector.output = TWO_FACES
        detector.release = threading.Event()
        session.start()

        task = asyncio.create_task(session.process_frame(FRAME))
        while not detector.entered.is_set():
            await asyncio.sleep(0.01)
        session.stop()
        detector.release.set()
        outcome = await task

        assert outcome is not None
        assert outcome.discarded is True
        assert session.debounce_snapshot().consecutive_positive_frames == 0
        assert _drain(session) == []


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class TestProcessFrame:
    async def test_negative_frame(self, session: DetectionSession) -> None:
        session.start()
        outcome = await session.process_frame(FRAME)
        assert outcome is not None
        assert outcome.result.face_count == 1
        assert outcome.result.peeking_detected is False
        assert outcome.confirmed is None
        assert outcome.error is None

    async def test_sustained_peeking_activates_protection(
        self, session: DetectionSession, detector: FakeDetector, haptics: RecordingHaptics
    ) -> None:
        detector.output = TWO_FACES
        session.start()
        outcomes = await _feed(session, 5)

        assert [o.confirmed is not None for o in outcomes] == [False, False, False, False, True]
        assert outcomes[-1].notification == ProtectionActivated(ProtectionAction.BLUR, ProtectionSettings().disguise_type)
        assert session.dispatcher.state.is_active is True
        assert haptics.calls == [200]
        assert session.peeking_count == 1
        assert session.debounce_snapshot().consecutive_positive_frames == 0

        (event,) = session.history
        assert event.face_count == 2
        assert event.duration_seconds == pytest.approx(5 / 3)

    async def test_results_and_notifications_are_published(
        self, session: DetectionSession, detector: FakeDetector
    ) -> None:
        detector.output = TWO_FACES
        session.start()
        await _feed(session, 5)
        session.deactivate_protection()

        messages = _drain(session)
        assert sum(isinstance(m, DetectionResult) for m in messages) == 5
        assert isinstance(messages[-2], ProtectionActivated)
        assert isinstance(messages[-1], ProtectionDeactivated)

    async def test_single_negative_frame_breaks_streak(self, session: DetectionSession, detector: FakeDetector) -> None:
        session.start()
        detector.output = TWO_FACES
        await _feed(session, 4)
        detector.output = OWNER_ONLY
        await session.process_frame(FRAME)
        detector.output = TWO_FACES
        outcomes = await _feed(session, 4)

        assert all(o.confirmed is None for o in outcomes)
        assert session.dispatcher.state.is_active is False

    async def test_meeting_mode_vibrates_without_visuals(
        self, session: DetectionSession, detector: FakeDetector, haptics: RecordingHaptics
    ) -> None:
        session.settings_store.update(mode=DetectionMode.MEETING)
        detector.output = TWO_FACES
        session.start()
        outcomes = await _feed(session, 5)

        assert outcomes[-1].confirmed is not None
        assert outcomes[-1].notification is None
        assert session.dispatcher.state.is_active is False
        assert haptics.calls == [200]

    async def test_settings_swap_applies_to_next_frame(self, session: DetectionSession, detector: FakeDetector) -> None:
        detector.output = TWO_FACES
        session.start()
        await _feed(session, 2)
        session.settings_store.update(
            settings=ProtectionSettings(peeking_threshold_seconds=1.0, detection_frequency_hz=3)
        )
        outcome = await session.process_frame(FRAME)
        assert outcome.confirmed is not None
        assert outcome.confirmed.frames == 3


class TestFrameErrors:
    async def test_empty_frame_counts_as_negative(self, session: DetectionSession, detector: FakeDetector) -> None:
        detector.output = TWO_FACES
        session.start()
        await _feed(session, 4)
        outcome = await session.process_frame(b"")

        assert outcome.error == "EmptyInputError"
        assert outcome.result.face_count == 0
        assert session.debounce_snapshot().consecutive_positive_frames == 0

    async def test_undecodable_frame_counts_as_negative(self, session: DetectionSession) -> None:
        session.start()
        outcome = await session.process_frame(b"\x00\x01garbage")
        assert outcome.error == "DecodeError"
        assert outcome.result.peeking_detected is False

    async def test_inference_error_counts_as_negative(self, session: DetectionSession, detector: FakeDetector) -> None:
        detector.output = TWO_FACES
        session.start()
        await _feed(session, 2)
        detector.error = InferenceError("session lost")
        outcome = await session.process_frame(FRAME)

        assert outcome.error == "InferenceError"
        assert session.debounce_snapshot().consecutive_positive_frames == 0
        assert session.is_active is True

    async def test_timeout_counts_as_negative(self, detector: FakeDetector) -> None:
        detector.delay = 0.5
        s = DetectionSession.from_settings(Settings(detection_timeout=0.05), detector, SettingsStore())
        try:
            s.start()
            outcome = await s.process_frame(FRAME)
            assert outcome.error == "DetectionTimeout"
            assert outcome.result.face_count == 0
            assert s.pool.timeout_count == 1
        finally:
            s.close()

    async def test_malformed_model_output_counts_as_negative(self) -> None:
        onnx_session = MagicMock()
        onnx_session.run.return_value = [np.zeros((1, 5)), np.zeros((1, 3))]
        manager = MagicMock()
        manager.get_session.return_value = onnx_session
        onnx_detector = OnnxFaceDetector(manager)
        onnx_detector.initialize()
        s = DetectionSession.from_settings(Settings(), onnx_detector, SettingsStore())
        try:
            s.start()
            outcome = await s.process_frame(FRAME)
            assert outcome.error == "InferenceError"
            assert outcome.result.face_count == 0
            assert s.is_active is True
        finally:
            s.close()


class TestDetect:
    async def test_detect_leaves_session_state_alone(self, session: DetectionSession, detector: FakeDetector) -> None:
        detector.output = TWO_FACES
        result = await session.detect(FRAME)
        assert result.peeking_detected is True
        assert session.debounce_snapshot().consecutive_positive_frames == 0
        assert session.messages.empty()

    async def test_detect_propagates_frame_errors(self, session: DetectionSession, detector: FakeDetector) -> None:
        detector.error = InferenceError("not loaded")
        with pytest.raises(InferenceError):
            await session.detect(FRAME)

    async def test_detect_accepts_decoded_arrays(self, session: DetectionSession) -> None:
        result = await session.detect(np.zeros((120, 160, 3), dtype=np.uint8))
        assert result.face_count == 1
