"""Axis-aligned box geometry: IOU and center distances."""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class FaceBox:
    """A detected face in pixel space of the original frame."""

    x: float
    y: float
    width: float
    height: float
    confidence: float

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def area(self) -> float:
        return self.width * self.height


def iou(a: FaceBox, b: FaceBox) -> float:
    """Intersection over union of two boxes, 0.0 when the union is empty."""
    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    x2 = min(a.x + a.width, b.x + b.width)
    y2 = min(a.y + a.height, b.y + b.height)

    intersection = max(0.0, x2 - x1) * max(0.0, y2 - y1)
    union = a.area + b.area - intersection
    return intersection / union if union > 0 else 0.0


def center_distance(point: tuple[float, float], center: tuple[float, float] = (0.5, 0.5)) -> float:
    """Euclidean distance between a point and a reference center."""
    return math.hypot(point[0] - center[0], point[1] - center[1])


def angle_from_center(point: tuple[float, float], center: tuple[float, float]) -> float:
    """Angle in degrees of the vector from ``center`` to ``point`` (atan2 convention)."""
    return math.degrees(math.atan2(point[1] - center[1], point[0] - center[0]))
