"""Pydantic request/response schemas for the PeekGuard API."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from peekguard.guard.modes import DetectionMode, DisguiseType, ProtectionAction, ProtectionSettings

if TYPE_CHECKING:
    from peekguard.guard.protection import ProtectionActivationState
    from peekguard.guard.session import DetectionSession, FrameOutcome
    from peekguard.guard.settings_store import SettingsSnapshot
    from peekguard.ml.postprocessing import DetectionResult


class DetectedFace(BaseModel):
    """A single detected face, normalized to the frame size."""

    x: float = Field(description="Relative bounding box x position (0.0-1.0)")
    y: float = Field(description="Relative bounding box y position (0.0-1.0)")
    width: float = Field(description="Relative bounding box width (0.0-1.0)")
    height: float = Field(description="Relative bounding box height (0.0-1.0)")
    angle_from_center: float = Field(description="Direction of the face from the frame center, in degrees")
    is_owner: bool


class DetectionResponse(BaseModel):
    """Detection result for one frame."""

    face_count: int
    faces: list[DetectedFace]
    peeking_detected: bool

    @classmethod
    def from_result(cls, result: DetectionResult) -> DetectionResponse:
        return cls(
            face_count=result.face_count,
            faces=[
                DetectedFace(
                    x=face.x,
                    y=face.y,
                    width=face.width,
                    height=face.height,
                    angle_from_center=face.angle_from_center_degrees,
                    is_owner=face.is_owner,
                )
                for face in result.faces
            ],
            peeking_detected=result.peeking_detected,
        )


class ProtectionStateResponse(BaseModel):
    is_active: bool
    action: ProtectionAction
    disguise_type: DisguiseType

    @classmethod
    def from_state(cls, state: ProtectionActivationState) -> ProtectionStateResponse:
        return cls(
            is_active=state.is_active,
            action=state.current_action,
            disguise_type=state.current_disguise_type,
        )


class PreviewRequest(BaseModel):
    action: ProtectionAction
    disguise_type: DisguiseType = DisguiseType.NEWS


class FrameResponse(BaseModel):
    """Outcome of feeding one frame to the running session."""

    processed: bool
    result: DetectionResponse | None = None
    peeking_confirmed: bool = False
    error: str | None = None
    consecutive_positive_frames: int
    protection: ProtectionStateResponse

    @classmethod
    def from_outcome(cls, outcome: FrameOutcome | None, session: DetectionSession) -> FrameResponse:
        processed = outcome is not None and not outcome.discarded
        return cls(
            processed=processed,
            result=DetectionResponse.from_result(outcome.result) if processed else None,
            peeking_confirmed=processed and outcome.confirmed is not None,
            error=outcome.error if outcome is not None else None,
            consecutive_positive_frames=session.debounce_snapshot().consecutive_positive_frames,
            protection=ProtectionStateResponse.from_state(session.dispatcher.state),
        )


class PeekingEventResponse(BaseModel):
    timestamp: datetime
    face_count: int
    angle_from_center: float
    duration_seconds: float


class SessionResponse(BaseModel):
    active: bool
    mode: DetectionMode
    required_frames: int
    consecutive_positive_frames: int
    last_detection: datetime | None
    peeking_count: int
    history: list[PeekingEventResponse]

    @classmethod
    def from_session(cls, session: DetectionSession) -> SessionResponse:
        snapshot = session.settings_store.snapshot()
        debounce = session.debounce_snapshot()
        return cls(
            active=session.is_active,
            mode=snapshot.mode,
            required_frames=snapshot.settings.required_frames,
            consecutive_positive_frames=debounce.consecutive_positive_frames,
            last_detection=debounce.last_detection_timestamp,
            peeking_count=session.peeking_count,
            history=[
                PeekingEventResponse(
                    timestamp=event.timestamp,
                    face_count=event.face_count,
                    angle_from_center=event.angle_from_center_degrees,
                    duration_seconds=event.duration_seconds,
                )
                for event in session.history
            ],
        )


class SettingsPayload(BaseModel):
    """Mode plus protection settings; PUT replaces both as one unit."""

    mode: DetectionMode = DetectionMode.OFFICE
    settings: ProtectionSettings = Field(default_factory=ProtectionSettings)


class SettingsResponse(SettingsPayload):
    sensitivity: int
    suppresses_visual: bool
    required_frames: int

    @classmethod
    def from_snapshot(cls, snapshot: SettingsSnapshot) -> SettingsResponse:
        profile = snapshot.mode.profile(snapshot.settings.custom_sensitivity)
        return cls(
            mode=snapshot.mode,
            settings=snapshot.settings,
            sensitivity=profile.sensitivity,
            suppresses_visual=profile.suppresses_visual,
            required_frames=snapshot.settings.required_frames,
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    detector_ready: bool
    session_active: bool
    frames_in_flight: int
    timeouts: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
