"""Detection post-processing.

Turns raw detector output (normalized boxes + scores) into a
:class:`DetectionResult`:

    confidence filter -> pixel-space FaceBox -> NMS -> FaceDescriptor -> peeking flag
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from peekguard.errors import InferenceError
from peekguard.ml.geometry import FaceBox, angle_from_center, center_distance, iou

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

DEFAULT_CONFIDENCE_THRESHOLD: float = 0.7
DEFAULT_IOU_THRESHOLD: float = 0.3

# A lone face whose center is further than this from the frame center
# (in normalized units) is treated as an onlooker.
OFF_CENTER_DISTANCE: float = 0.3


@dataclass(frozen=True)
class FaceDescriptor:
    """A face in coordinates normalized to the frame size."""

    x: float
    y: float
    width: float
    height: float
    angle_from_center_degrees: float
    is_owner: bool = False

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of processing one frame."""

    face_count: int = 0
    faces: tuple[FaceDescriptor, ...] = field(default_factory=tuple)
    peeking_detected: bool = False


NO_FACES = DetectionResult()


def filter_detections(
    boxes: NDArray[np.float32],
    scores: NDArray[np.float32],
    frame_width: int,
    frame_height: int,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> list[FaceBox]:
    """Keep detections scoring above the threshold (NaN never does) and map the rest to pixel space.

    Detection order is preserved so that NMS ties resolve deterministically.
    """
    faces: list[FaceBox] = []
    for (x1, y1, x2, y2), score in zip(boxes, scores, strict=True):
        if not score > confidence_threshold:
            continue
        px1 = float(x1) * frame_width
        py1 = float(y1) * frame_height
        px2 = float(x2) * frame_width
        py2 = float(y2) * frame_height
        faces.append(FaceBox(x=px1, y=py1, width=px2 - px1, height=py2 - py1, confidence=float(score)))
    return faces


def non_max_suppression(boxes: Sequence[FaceBox], iou_threshold: float = DEFAULT_IOU_THRESHOLD) -> list[FaceBox]:
    """Greedy NMS: keep the most confident box, drop everything overlapping it by more than the threshold."""
    # sorted() is stable, equal confidences keep detection order
    remaining = sorted(boxes, key=lambda b: b.confidence, reverse=True)
    kept: list[FaceBox] = []
    while remaining:
        best = remaining.pop(0)
        kept.append(best)
        remaining = [box for box in remaining if iou(best, box) <= iou_threshold]
    return kept


def build_descriptors(faces: Sequence[FaceBox], frame_width: int, frame_height: int) -> tuple[FaceDescriptor, ...]:
    frame_center = (frame_width / 2, frame_height / 2)
    return tuple(
        FaceDescriptor(
            x=face.x / frame_width,
            y=face.y / frame_height,
            width=face.width / frame_width,
            height=face.height / frame_height,
            angle_from_center_degrees=angle_from_center(face.center, frame_center),
            is_owner=False,
        )
        for face in faces
    )


def is_peeking(faces: Sequence[FaceDescriptor]) -> bool:
    """Any second face, or a single face far from the frame center, counts as peeking."""
    if len(faces) > 1:
        return True
    if len(faces) == 1:
        return center_distance(faces[0].center) > OFF_CENTER_DISTANCE
    return False


def postprocess(
    boxes: NDArray[np.float32],
    scores: NDArray[np.float32],
    frame_width: int,
    frame_height: int,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    iou_threshold: float = DEFAULT_IOU_THRESHOLD,
) -> DetectionResult:
    """Run the full post-processing chain on one frame's detector output.

    Args:
        boxes: N x 4 array of (x1, y1, x2, y2) normalized to the original frame.
        scores: N face confidences.
        frame_width: Original frame width in pixels.
        frame_height: Original frame height in pixels.

    Returns:
        The frame's detection result. Zero surviving detections yield an
        empty, non-peeking result.

    Raises:
        InferenceError: If the arrays do not have matching N x 4 / N shapes.
    """
    boxes = np.asarray(boxes, dtype=np.float32)
    scores = np.asarray(scores, dtype=np.float32).reshape(-1)
    if boxes.size == 0 and scores.size == 0:
        return NO_FACES
    if boxes.ndim != 2 or boxes.shape[1] != 4 or boxes.shape[0] != scores.shape[0]:
        raise InferenceError(f"Malformed detector output: boxes {boxes.shape}, scores {scores.shape}")
    if frame_width <= 0 or frame_height <= 0:
        raise InferenceError(f"Invalid frame size {frame_width}x{frame_height}")

    candidates = filter_detections(boxes, scores, frame_width, frame_height, confidence_threshold)
    if not candidates:
        return NO_FACES

    kept = non_max_suppression(candidates, iou_threshold)
    faces = build_descriptors(kept, frame_width, frame_height)
    return DetectionResult(face_count=len(faces), faces=faces, peeking_detected=is_peeking(faces))
