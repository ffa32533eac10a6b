"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from peekguard.api.middleware import verify_api_key
from peekguard.api.schemas import (
    DetectionResponse,
    ErrorResponse,
    FrameResponse,
    HealthResponse,
    PreviewRequest,
    ProtectionStateResponse,
    SessionResponse,
    SettingsPayload,
    SettingsResponse,
)
from peekguard.errors import DecodeError, DetectionTimeout, EmptyInputError, InferenceError

if TYPE_CHECKING:
    from peekguard.config import Settings
    from peekguard.guard.session import DetectionSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_session(request: Request) -> DetectionSession:
    session: DetectionSession = request.app.state.session
    return session


async def _read_frame(file: UploadFile, settings: Settings) -> bytes:
    data = await file.read()
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Frame exceeds {settings.max_file_size} bytes",
        )
    return data


@router.post(
    "/detect-faces",
    response_model=DetectionResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
        status.HTTP_504_GATEWAY_TIMEOUT: {"model": ErrorResponse},
    },
    summary="Detect faces in a single image",
)
async def detect_faces(request: Request, file: UploadFile) -> DetectionResponse:
    """Run one image through the pipeline without touching the session's debounce state."""
    data = await _read_frame(file, _get_settings(request))
    try:
        result = await _get_session(request).detect(data)
    except (EmptyInputError, DecodeError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DetectionTimeout as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc)) from exc
    except InferenceError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return DetectionResponse.from_result(result)


# -- Session ------------------------------------------------------------------


@router.post(
    "/session/start",
    response_model=SessionResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}},
    summary="Start peeking detection",
)
async def start_session(request: Request) -> SessionResponse:
    session = _get_session(request)
    try:
        session.start()
    except InferenceError as exc:
        logger.error("Cannot start detection: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return SessionResponse.from_session(session)


@router.post("/session/stop", response_model=SessionResponse, summary="Stop peeking detection")
async def stop_session(request: Request) -> SessionResponse:
    session = _get_session(request)
    session.stop()
    return SessionResponse.from_session(session)


@router.get("/session", response_model=SessionResponse, summary="Session status and peeking history")
async def get_session(request: Request) -> SessionResponse:
    return SessionResponse.from_session(_get_session(request))


@router.post(
    "/session/frames",
    response_model=FrameResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Feed one camera frame to the running session",
)
async def submit_frame(request: Request, file: UploadFile) -> FrameResponse:
    """Bad or empty frames never fail the request; they count as a frame without peeking."""
    session = _get_session(request)
    if not session.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Detection session is not active")
    data = await _read_frame(file, _get_settings(request))
    outcome = await session.process_frame(data)
    return FrameResponse.from_outcome(outcome, session)


# -- Protection -----------------------------------------------------------------


@router.get("/protection", response_model=ProtectionStateResponse, summary="Current protection state")
async def get_protection(request: Request) -> ProtectionStateResponse:
    return ProtectionStateResponse.from_state(_get_session(request).dispatcher.state)


@router.post("/protection/deactivate", response_model=ProtectionStateResponse, summary="Dismiss protection")
async def deactivate_protection(request: Request) -> ProtectionStateResponse:
    session = _get_session(request)
    session.deactivate_protection()
    return ProtectionStateResponse.from_state(session.dispatcher.state)


@router.post(
    "/protection/preview",
    response_model=ProtectionStateResponse,
    summary="Activate a specific protection action (test mode)",
)
async def preview_protection(request: Request, body: PreviewRequest) -> ProtectionStateResponse:
    session = _get_session(request)
    session.preview_protection(body.action, body.disguise_type)
    return ProtectionStateResponse.from_state(session.dispatcher.state)


# -- Settings -------------------------------------------------------------------


@router.get("/settings", response_model=SettingsResponse, summary="Current mode and protection settings")
async def get_user_settings(request: Request) -> SettingsResponse:
    return SettingsResponse.from_snapshot(_get_session(request).settings_store.snapshot())


@router.put(
    "/settings",
    response_model=SettingsResponse,
    responses={status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse}},
    summary="Replace mode and protection settings",
)
async def update_user_settings(request: Request, body: SettingsPayload) -> SettingsResponse:
    store = _get_session(request).settings_store
    try:
        snapshot = store.update(settings=body.settings, mode=body.mode)
    except OSError as exc:
        logger.exception("Failed to persist settings to %s", store.path)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Settings applied but could not be saved",
        ) from exc
    return SettingsResponse.from_snapshot(snapshot)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    session = _get_session(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        detector_ready=request.app.state.detector.is_initialized,
        session_active=session.is_active,
        frames_in_flight=session.pool.active_count,
        timeouts=session.pool.timeout_count,
    )
