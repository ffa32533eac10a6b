"""Peeking debounce state machine.

Peeking is confirmed only after ``required_frames`` consecutive positive
frames. A single negative frame cancels the streak; firing restarts it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from peekguard.ml.postprocessing import DetectionResult

logger = logging.getLogger(__name__)


class DebouncePhase(StrEnum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"


@dataclass(frozen=True)
class DebounceSnapshot:
    consecutive_positive_frames: int
    last_detection_timestamp: datetime | None

    @property
    def phase(self) -> DebouncePhase:
        return DebouncePhase.ACCUMULATING if self.consecutive_positive_frames > 0 else DebouncePhase.IDLE


@dataclass(frozen=True)
class PeekingConfirmed:
    """Emitted when a positive streak reaches the required length."""

    result: DetectionResult
    frames: int
    timestamp: datetime


class PeekingDebouncer:
    """Counts consecutive peeking frames; owned by a single detection session."""

    def __init__(self) -> None:
        self._consecutive = 0
        self._last_detection: datetime | None = None

    def observe(self, result: DetectionResult, required_frames: int) -> PeekingConfirmed | None:
        """Feed one frame's result; returns an event when the streak fires."""
        if not result.peeking_detected:
            if self._consecutive:
                logger.debug("Peeking streak of %d cancelled", self._consecutive)
            self._consecutive = 0
            return None

        self._consecutive += 1
        if self._consecutive < max(1, required_frames):
            return None

        frames = self._consecutive
        now = datetime.now(UTC)
        self._consecutive = 0
        self._last_detection = now
        logger.info("Peeking confirmed after %d frames (%d faces)", frames, result.face_count)
        return PeekingConfirmed(result=result, frames=frames, timestamp=now)

    def reset(self) -> None:
        self._consecutive = 0

    def snapshot(self) -> DebounceSnapshot:
        return DebounceSnapshot(
            consecutive_positive_frames=self._consecutive,
            last_detection_timestamp=self._last_detection,
        )
