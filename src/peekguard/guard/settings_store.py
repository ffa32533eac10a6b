"""Process-wide protection settings with atomic swaps and JSON persistence."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ValidationError

from peekguard.guard.modes import DetectionMode, ProtectionSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettingsSnapshot:
    """Settings and mode as read together by one frame."""

    settings: ProtectionSettings
    mode: DetectionMode


class _StoredSettings(BaseModel):
    mode: DetectionMode = DetectionMode.OFFICE
    settings: ProtectionSettings = ProtectionSettings()


class SettingsStore:
    """Holds the current :class:`SettingsSnapshot`.

    Readers get an immutable snapshot; writers replace it as a whole, so a
    reader never sees a threshold from one update and a frequency from another.
    """

    def __init__(self, path: str | Path | None = None, snapshot: SettingsSnapshot | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._snapshot = snapshot or SettingsSnapshot(settings=ProtectionSettings(), mode=DetectionMode.OFFICE)

    @property
    def path(self) -> Path | None:
        return self._path

    def snapshot(self) -> SettingsSnapshot:
        with self._lock:
            return self._snapshot

    def update(
        self,
        settings: ProtectionSettings | None = None,
        mode: DetectionMode | None = None,
    ) -> SettingsSnapshot:
        """Swap in new settings and/or mode; omitted parts keep their current value."""
        with self._lock:
            current = self._snapshot
            self._snapshot = SettingsSnapshot(
                settings=settings if settings is not None else current.settings,
                mode=mode if mode is not None else current.mode,
            )
            updated = self._snapshot
        logger.info(
            "Settings updated (mode=%s, action=%s, required_frames=%d)",
            updated.mode,
            updated.settings.protection_action,
            updated.settings.required_frames,
        )
        if self._path is not None:
            self.save()
        return updated

    def load(self) -> SettingsSnapshot:
        """Load persisted settings; missing or invalid files leave defaults in place."""
        if self._path is None or not self._path.exists():
            return self.snapshot()
        try:
            stored = _StoredSettings.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", self._path, exc)
            return self.snapshot()
        with self._lock:
            self._snapshot = SettingsSnapshot(settings=stored.settings, mode=stored.mode)
            logger.info("Loaded settings from %s", self._path)
            return self._snapshot

    def save(self) -> None:
        """Write the current snapshot to the settings file (temp file + rename)."""
        if self._path is None:
            return
        current = self.snapshot()
        payload = _StoredSettings(mode=current.mode, settings=current.settings).model_dump_json(indent=2)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".settings-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
