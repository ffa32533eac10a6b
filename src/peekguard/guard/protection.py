"""Protection policy dispatcher.

Maps a confirmed peeking event plus the current mode/settings to a protection
action. State transitions return typed notifications for the UI collaborator
instead of firing callbacks.

Haptic and audio feedback are best-effort side effects: a failing device
never blocks or rolls back the visual activation.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from peekguard.guard.modes import DisguiseType, ProtectionAction

if TYPE_CHECKING:
    from peekguard.guard.modes import DetectionMode, ProtectionSettings

logger = logging.getLogger(__name__)

VIBRATION_DURATION_MS: int = 200


class Haptics(Protocol):
    def vibrate(self, duration_ms: int) -> None: ...


class AudioAlert(Protocol):
    def play_alert_sound(self) -> None: ...


class LoggingHaptics:
    """Haptics stand-in for hosts without a vibration motor."""

    def vibrate(self, duration_ms: int) -> None:
        logger.info("Vibrate for %dms", duration_ms)


class LoggingAudioAlert:
    """Audio stand-in for hosts without an audio collaborator."""

    def play_alert_sound(self) -> None:
        logger.info("Alert sound played")


@dataclass(frozen=True)
class ProtectionActivationState:
    is_active: bool = False
    current_action: ProtectionAction = ProtectionAction.BLUR
    current_disguise_type: DisguiseType = DisguiseType.NEWS


INACTIVE = ProtectionActivationState()


@dataclass(frozen=True)
class ProtectionActivated:
    action: ProtectionAction
    disguise_type: DisguiseType


@dataclass(frozen=True)
class ProtectionDeactivated:
    pass


ProtectionNotification = ProtectionActivated | ProtectionDeactivated


@dataclass(frozen=True)
class SideEffectReport:
    """Which side effects were attempted and which of them failed."""

    vibrated: bool = False
    sound_played: bool = False
    failures: tuple[str, ...] = ()


class ProtectionDispatcher:
    """Owns :class:`ProtectionActivationState`; mutated only by activate/preview/deactivate."""

    def __init__(self, haptics: Haptics | None = None, audio: AudioAlert | None = None) -> None:
        self._haptics = haptics if haptics is not None else LoggingHaptics()
        self._audio = audio if audio is not None else LoggingAudioAlert()
        self._lock = threading.Lock()
        self._state = INACTIVE
        self.last_side_effects = SideEffectReport()

    @property
    def state(self) -> ProtectionActivationState:
        with self._lock:
            return self._state

    def activate(self, settings: ProtectionSettings, mode: DetectionMode) -> ProtectionActivated | None:
        """React to confirmed peeking.

        Side effects run in every mode. The visual state only changes when the
        mode does not suppress visuals (i.e. outside meeting mode).
        """
        self.last_side_effects = self._run_side_effects(settings)

        if mode.profile(settings.custom_sensitivity).suppresses_visual:
            logger.info("Visual protection suppressed in %s mode", mode)
            return None

        return self._transition(settings.protection_action, settings.disguise_type)

    def preview(self, action: ProtectionAction, disguise_type: DisguiseType) -> ProtectionActivated:
        """Show a specific protection action directly, without side effects."""
        return self._transition(action, disguise_type)

    def deactivate(self) -> ProtectionDeactivated:
        """Dismiss protection; always allowed, even when already inactive."""
        with self._lock:
            self._state = INACTIVE
        logger.info("Protection deactivated")
        return ProtectionDeactivated()

    def _transition(self, action: ProtectionAction, disguise_type: DisguiseType) -> ProtectionActivated:
        with self._lock:
            self._state = ProtectionActivationState(
                is_active=True,
                current_action=action,
                current_disguise_type=disguise_type,
            )
        logger.info("Protection activated: %s (disguise=%s)", action, disguise_type)
        return ProtectionActivated(action=action, disguise_type=disguise_type)

    def _run_side_effects(self, settings: ProtectionSettings) -> SideEffectReport:
        vibrated = False
        sound_played = False
        failures: list[str] = []

        if settings.vibrate_on_detection:
            try:
                self._haptics.vibrate(VIBRATION_DURATION_MS)
                vibrated = True
            except Exception:
                logger.exception("Vibration failed")
                failures.append("vibrate")

        if settings.sound_on_detection:
            try:
                self._audio.play_alert_sound()
                sound_played = True
            except Exception:
                logger.exception("Alert sound failed")
                failures.append("sound")

        return SideEffectReport(vibrated=vibrated, sound_played=sound_played, failures=tuple(failures))
