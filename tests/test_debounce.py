"""Tests for the peeking debounce state machine."""

from __future__ import annotations

from peekguard.guard.debounce import DebouncePhase, PeekingDebouncer
from peekguard.ml.postprocessing import DetectionResult, FaceDescriptor

_FACE = FaceDescriptor(x=0.1, y=0.1, width=0.2, height=0.2, angle_from_center_degrees=-135.0)
POSITIVE = DetectionResult(face_count=2, faces=(_FACE, _FACE), peeking_detected=True)
NEGATIVE = DetectionResult(face_count=1, faces=(_FACE,), peeking_detected=False)


class TestPeekingDebouncer:
    def test_starts_idle(self) -> None:
        snapshot = PeekingDebouncer().snapshot()
        assert snapshot.consecutive_positive_frames == 0
        assert snapshot.phase is DebouncePhase.IDLE
        assert snapshot.last_detection_timestamp is None

    def test_positive_frames_accumulate(self) -> None:
        debouncer = PeekingDebouncer()
        for expected in range(1, 4):
            assert debouncer.observe(POSITIVE, required_frames=5) is None
            assert debouncer.snapshot().consecutive_positive_frames == expected
        assert debouncer.snapshot().phase is DebouncePhase.ACCUMULATING

    def test_negative_frame_cancels_streak(self) -> None:
        debouncer = PeekingDebouncer()
        events = [debouncer.observe(POSITIVE, 5) for _ in range(4)]
        events.append(debouncer.observe(NEGATIVE, 5))

        assert events == [None] * 5
        assert debouncer.snapshot().consecutive_positive_frames == 0

    def test_fires_once_on_threshold_and_resets(self) -> None:
        debouncer = PeekingDebouncer()
        events = [debouncer.observe(POSITIVE, 5) for _ in range(5)]

        fired = [event for event in events if event is not None]
        assert len(fired) == 1
        assert events[-1] is fired[0]
        assert fired[0].frames == 5
        assert fired[0].result is POSITIVE
        assert debouncer.snapshot().consecutive_positive_frames == 0
        assert debouncer.snapshot().last_detection_timestamp == fired[0].timestamp

    def test_new_streak_must_accumulate_afresh(self) -> None:
        debouncer = PeekingDebouncer()
        events = [debouncer.observe(POSITIVE, 3) for _ in range(7)]
        assert [event is not None for event in events] == [False, False, True, False, False, True, False]

    def test_single_frame_threshold_fires_immediately(self) -> None:
        debouncer = PeekingDebouncer()
        assert debouncer.observe(POSITIVE, required_frames=1) is not None

    def test_non_positive_threshold_treated_as_one(self) -> None:
        debouncer = PeekingDebouncer()
        assert debouncer.observe(POSITIVE, required_frames=0) is not None

    def test_negative_frames_never_fire(self) -> None:
        debouncer = PeekingDebouncer()
        assert all(debouncer.observe(NEGATIVE, 1) is None for _ in range(10))

    def test_reset(self) -> None:
        debouncer = PeekingDebouncer()
        debouncer.observe(POSITIVE, 5)
        debouncer.observe(POSITIVE, 5)
        debouncer.reset()
        assert debouncer.snapshot().consecutive_positive_frames == 0
        # A reset streak needs the full count again.
        assert [debouncer.observe(POSITIVE, 3) is not None for _ in range(3)] == [False, False, True]
