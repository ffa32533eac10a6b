"""Detection session: frame -> detection -> debounce -> protection.

A session owns the debounce counter and drives the protection dispatcher.
Frames are handled strictly one at a time; the blocking part (decode,
inference, post-processing) runs on the inference worker, while counter and
protection state are only touched from the event loop.

Live detection results and protection notifications are published on a single
``asyncio.Queue`` for the UI collaborator.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from peekguard.errors import FrameError, InferenceError
from peekguard.guard.debounce import PeekingDebouncer
from peekguard.guard.protection import ProtectionActivated, ProtectionDeactivated, ProtectionDispatcher
from peekguard.ml.geometry import center_distance
from peekguard.ml.inference import InferencePool
from peekguard.ml.postprocessing import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_IOU_THRESHOLD,
    NO_FACES,
    DetectionResult,
    postprocess,
)
from peekguard.ml.preprocessing import FramePreprocessor

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from peekguard.config import Settings
    from peekguard.guard.debounce import DebounceSnapshot, PeekingConfirmed
    from peekguard.guard.modes import DisguiseType, ProtectionAction
    from peekguard.guard.protection import ProtectionNotification
    from peekguard.guard.settings_store import SettingsSnapshot, SettingsStore
    from peekguard.ml.face_detector import FaceDetector

logger = logging.getLogger(__name__)

NOTIFICATION_QUEUE_SIZE: int = 64

Frame = bytes | bytearray | memoryview


@dataclass(frozen=True)
class PeekingEvent:
    """Record of one confirmed peeking incident."""

    timestamp: datetime
    face_count: int
    angle_from_center_degrees: float
    duration_seconds: float


@dataclass(frozen=True)
class FrameOutcome:
    """What happened to one frame fed into the session."""

    result: DetectionResult
    confirmed: PeekingConfirmed | None = None
    notification: ProtectionNotification | None = None
    error: str | None = None
    discarded: bool = False


SessionMessage = DetectionResult | ProtectionActivated | ProtectionDeactivated


class DetectionSession:
    """Runs the detection-to-protection pipeline for a stream of frames."""

    def __init__(
        self,
        detector: FaceDetector,
        preprocessor: FramePreprocessor,
        pool: InferencePool,
        store: SettingsStore,
        dispatcher: ProtectionDispatcher | None = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        iou_threshold: float = DEFAULT_IOU_THRESHOLD,
        history_size: int = 50,
    ) -> None:
        self._detector = detector
        self._preprocessor = preprocessor
        self._pool = pool
        self._store = store
        self.dispatcher = dispatcher if dispatcher is not None else ProtectionDispatcher()
        self._confidence_threshold = confidence_threshold
        self._iou_threshold = iou_threshold

        self._debouncer = PeekingDebouncer()
        self._frame_lock = asyncio.Lock()
        self._active = False
        self._generation = 0

        self._peeking_count = 0
        self._history: deque[PeekingEvent] = deque(maxlen=history_size)
        self.messages: asyncio.Queue[SessionMessage] = asyncio.Queue(maxsize=NOTIFICATION_QUEUE_SIZE)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        detector: FaceDetector,
        store: SettingsStore,
        dispatcher: ProtectionDispatcher | None = None,
    ) -> DetectionSession:
        return cls(
            detector=detector,
            preprocessor=FramePreprocessor.from_settings(settings),
            pool=InferencePool(settings),
            store=store,
            dispatcher=dispatcher,
            confidence_threshold=settings.confidence_threshold,
            iou_threshold=settings.iou_threshold,
            history_size=settings.history_size,
        )

    # -- Lifecycle ------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def pool(self) -> InferencePool:
        return self._pool

    @property
    def settings_store(self) -> SettingsStore:
        return self._store

    def start(self) -> None:
        """Begin accepting frames.

        Raises:
            InferenceError: If the detector is not initialized.
        """
        if not self._detector.is_initialized:
            raise InferenceError("Face detector is not initialized")
        if self._active:
            return
        self._active = True
        logger.info("Detection started (mode=%s)", self._store.snapshot().mode)

    def stop(self) -> None:
        """Stop accepting frames, drop any in-flight result and reset the debounce counter."""
        self._active = False
        self._generation += 1
        self._debouncer.reset()
        logger.info("Detection stopped")

    def close(self) -> None:
        self.stop()
        self._pool.shutdown()

    # -- Frame processing -------------------------------------------------------

    def detect_frame(self, frame: Frame | NDArray[np.uint8]) -> DetectionResult:
        """Preprocess, detect and post-process one frame (blocking)."""
        prepared = self._preprocessor.preprocess(frame)
        raw = self._detector.detect(prepared.tensor)
        return postprocess(
            raw.boxes,
            raw.scores,
            prepared.width,
            prepared.height,
            confidence_threshold=self._confidence_threshold,
            iou_threshold=self._iou_threshold,
        )

    async def detect(self, frame: Frame | NDArray[np.uint8]) -> DetectionResult:
        """Run one frame through the worker without touching session state.

        Raises:
            FrameError: Any per-frame failure.
        """
        return await self._pool.run(self.detect_frame, frame)

    async def process_frame(self, frame: Frame | NDArray[np.uint8]) -> FrameOutcome | None:
        """Feed one camera frame. Returns None when the session is not active.

        Per-frame errors are logged and count as a negative frame.
        """
        if not self._active:
            return None

        generation = self._generation
        async with self._frame_lock:
            if not self._active or generation != self._generation:
                return None

            snapshot = self._store.snapshot()
            error: str | None = None
            try:
                result = await self.detect(frame)
            except FrameError as exc:
                logger.warning("Frame skipped (%s): %s", type(exc).__name__, exc)
                result = NO_FACES
                error = type(exc).__name__

            if generation != self._generation:
                logger.debug("Discarding result of a frame from a stopped session")
                return FrameOutcome(result=result, error=error, discarded=True)

            self._publish(result)
            confirmed = self._debouncer.observe(result, snapshot.settings.required_frames)
            notification = self._handle_confirmed(confirmed, snapshot) if confirmed is not None else None
            return FrameOutcome(result=result, confirmed=confirmed, notification=notification, error=error)

    def _handle_confirmed(self, confirmed: PeekingConfirmed, snapshot: SettingsSnapshot) -> ProtectionActivated | None:
        settings = snapshot.settings
        self._peeking_count += 1
        self._history.append(
            PeekingEvent(
                timestamp=confirmed.timestamp,
                face_count=confirmed.result.face_count,
                angle_from_center_degrees=_onlooker_angle(confirmed.result),
                duration_seconds=confirmed.frames / settings.detection_frequency_hz,
            )
        )
        notification = self.dispatcher.activate(settings, snapshot.mode)
        if notification is not None:
            self._publish(notification)
        return notification

    # -- Protection ---------------------------------------------------------------

    def deactivate_protection(self) -> ProtectionDeactivated:
        notification = self.dispatcher.deactivate()
        self._publish(notification)
        return notification

    def preview_protection(self, action: ProtectionAction, disguise_type: DisguiseType) -> ProtectionActivated:
        notification = self.dispatcher.preview(action, disguise_type)
        self._publish(notification)
        return notification

    # -- Introspection --------------------------------------------------------------

    @property
    def peeking_count(self) -> int:
        return self._peeking_count

    @property
    def history(self) -> list[PeekingEvent]:
        return list(self._history)

    def debounce_snapshot(self) -> DebounceSnapshot:
        return self._debouncer.snapshot()

    def _publish(self, message: SessionMessage) -> None:
        if self.messages.full():
            # Drop the oldest message so a slow consumer never stalls detection.
            self.messages.get_nowait()
        self.messages.put_nowait(message)


def _onlooker_angle(result: DetectionResult) -> float:
    """Angle of the face furthest from the frame center, 0.0 when there are no faces."""
    if not result.faces:
        return 0.0
    onlooker = max(result.faces, key=lambda face: center_distance(face.center))
    return onlooker.angle_from_center_degrees
