"""Detection modes, protection actions and user protection settings."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_THRESHOLD_SECONDS: float = 0.5
MAX_THRESHOLD_SECONDS: float = 5.0
MIN_FREQUENCY_HZ: int = 1
MAX_FREQUENCY_HZ: int = 30
MIN_SENSITIVITY: int = 1
MAX_SENSITIVITY: int = 10


class ProtectionAction(StrEnum):
    BLUR = "blur"
    COVER = "cover"
    DISGUISE = "disguise"
    VIBRATE_ONLY = "vibrate_only"


class DisguiseType(StrEnum):
    NEWS = "news"
    STOCK_MARKET = "stock_market"
    EBOOK = "ebook"
    CALCULATOR = "calculator"
    CALENDAR = "calendar"


@dataclass(frozen=True)
class ModeProfile:
    """Behavior implied by a detection mode."""

    sensitivity: int
    suppresses_visual: bool


class DetectionMode(StrEnum):
    COMMUTE = "commute"
    OFFICE = "office"
    MEETING = "meeting"
    CUSTOM = "custom"

    def profile(self, custom_sensitivity: int = 5) -> ModeProfile:
        """Return the mode's profile; only CUSTOM uses ``custom_sensitivity``."""
        if self is DetectionMode.CUSTOM:
            sensitivity = int(_clamp(custom_sensitivity, MIN_SENSITIVITY, MAX_SENSITIVITY))
            return ModeProfile(sensitivity=sensitivity, suppresses_visual=False)
        return _MODE_PROFILES[self]


_MODE_PROFILES: dict[DetectionMode, ModeProfile] = {
    DetectionMode.COMMUTE: ModeProfile(sensitivity=10, suppresses_visual=False),
    DetectionMode.OFFICE: ModeProfile(sensitivity=6, suppresses_visual=False),
    # Meeting mode: vibration only, the screen is never switched.
    DetectionMode.MEETING: ModeProfile(sensitivity=4, suppresses_visual=True),
}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class ProtectionSettings(BaseModel):
    """User-facing protection configuration.

    Instances are immutable; updates replace the whole object. Out-of-range
    values are clamped instead of rejected.
    """

    model_config = ConfigDict(frozen=True)

    protection_action: ProtectionAction = ProtectionAction.BLUR
    disguise_type: DisguiseType = DisguiseType.NEWS
    peeking_threshold_seconds: float = Field(default=1.5, description="Sustained peeking time before protection fires")
    detection_frequency_hz: int = Field(default=3, description="Frames checked per second")
    vibrate_on_detection: bool = True
    sound_on_detection: bool = False
    custom_sensitivity: int = Field(default=5, description="Sensitivity used by the custom mode (1-10)")

    @field_validator("peeking_threshold_seconds")
    @classmethod
    def _clamp_threshold(cls, value: float) -> float:
        return _clamp(value, MIN_THRESHOLD_SECONDS, MAX_THRESHOLD_SECONDS)

    @field_validator("detection_frequency_hz")
    @classmethod
    def _clamp_frequency(cls, value: int) -> int:
        return int(_clamp(value, MIN_FREQUENCY_HZ, MAX_FREQUENCY_HZ))

    @field_validator("custom_sensitivity")
    @classmethod
    def _clamp_sensitivity(cls, value: int) -> int:
        return int(_clamp(value, MIN_SENSITIVITY, MAX_SENSITIVITY))

    @property
    def required_frames(self) -> int:
        return required_frames(self.peeking_threshold_seconds, self.detection_frequency_hz)


def required_frames(threshold_seconds: float, frequency_hz: int) -> int:
    """Consecutive positive frames needed before peeking is confirmed.

    Rounds half up on the decimal value, so 1.5 s at 3 Hz needs 5 frames and
    1.15 s at 10 Hz needs 12. Never less than 1.
    """
    product = Decimal(str(threshold_seconds)) * frequency_hz
    return max(1, int(product.to_integral_value(rounding=ROUND_HALF_UP)))
