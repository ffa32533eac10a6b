"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from peekguard.api.routes import router
from peekguard.config import Settings, get_settings
from peekguard.errors import InferenceError
from peekguard.guard.session import DetectionSession
from peekguard.guard.settings_store import SettingsStore
from peekguard.ml.face_detector import FaceDetector, OnnxFaceDetector
from peekguard.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings, detector: FaceDetector) -> DetectionSession:
    """Attach settings, detector and a detection session to the app."""
    store = SettingsStore(settings.settings_file)
    store.load()
    session = DetectionSession.from_settings(settings, detector, store)
    app.state.settings = settings
    app.state.detector = detector
    app.state.session = session
    return session


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting PeekGuard (device=%s, model=%s, timeout=%.1fs)",
        settings.device,
        settings.model_filename,
        settings.detection_timeout,
    )

    detector = OnnxFaceDetector(OnnxModelManager(settings))
    try:
        detector.initialize()
    except InferenceError:
        # Reported once here; starting a session answers 503 until fixed.
        logger.exception("Face detector failed to initialize")

    session = init_state(app, settings, detector)

    logger.info("PeekGuard ready")
    yield

    logger.info("Shutting down PeekGuard")
    session.close()
    detector.close()
    logger.info("PeekGuard shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="PeekGuard",
        description="Screen privacy guard: onlooker detection and protection control",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("peekguard.main:app", host=settings.host, port=settings.port)
