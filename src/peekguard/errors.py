"""Exception taxonomy for the detection pipeline.

Every per-frame failure derives from :class:`FrameError`. A detection session
catches these, logs them and treats the frame as negative.
"""

from __future__ import annotations


class PeekGuardError(Exception):
    """Base class for all PeekGuard errors."""


class FrameError(PeekGuardError):
    """A single frame could not be turned into a detection result."""


class EmptyInputError(FrameError):
    """The frame buffer has zero length."""


class DecodeError(FrameError):
    """The frame buffer could not be decoded as an image."""


class InferenceError(FrameError):
    """The detector is unavailable, uninitialized, or returned malformed output."""


class DetectionTimeout(FrameError):
    """The detector call exceeded its time bound."""
