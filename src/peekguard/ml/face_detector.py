"""Face detector adapter.

The detector is a black box: it takes a preprocessed ``3 x H x W`` tensor and
returns normalized boxes with face confidences. :class:`OnnxFaceDetector`
runs the Ultra-Light RFB-320 model through ONNX Runtime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from peekguard.errors import InferenceError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from peekguard.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

INPUT_NAME = "input"
BOXES_OUTPUT = "boxes"
SCORES_OUTPUT = "scores"


@dataclass(frozen=True)
class RawDetectorOutput:
    """Detector output before post-processing.

    ``boxes`` is N x 4 (x1, y1, x2, y2) normalized to [0, 1] relative to the
    original frame; ``scores`` holds the N face confidences.
    """

    boxes: NDArray[np.float32]
    scores: NDArray[np.float32]


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    @property
    def is_initialized(self) -> bool:
        """Return whether the detector is ready to run."""
        ...

    def detect(self, tensor: NDArray[np.float32]) -> RawDetectorOutput:
        """Detect faces in a preprocessed image tensor.

        Args:
            tensor: 3xHxW float32 normalized image.

        Returns:
            Raw boxes and scores.

        Raises:
            InferenceError: If the detector is not initialized.
        """
        ...


class OnnxFaceDetector:
    """Ultra-Light face detector backed by an ONNX Runtime session."""

    def __init__(self, model_manager: ModelManager) -> None:
        self._model_manager = model_manager
        self._session = None

    @property
    def is_initialized(self) -> bool:
        return self._session is not None

    def initialize(self) -> None:
        """Load the model session.

        Raises:
            InferenceError: If the model cannot be found or loaded.
        """
        self._session = self._model_manager.get_session()
        logger.info("ONNX face detector initialized")

    def detect(self, tensor: NDArray[np.float32]) -> RawDetectorOutput:
        if self._session is None:
            raise InferenceError("Face detector is not initialized")

        batch = np.ascontiguousarray(tensor, dtype=np.float32)[np.newaxis, ...]
        try:
            boxes, scores = self._session.run([BOXES_OUTPUT, SCORES_OUTPUT], {INPUT_NAME: batch})
        except Exception as exc:
            raise InferenceError(f"Inference failed: {exc}") from exc

        try:
            boxes = np.asarray(boxes, dtype=np.float32).reshape(-1, 4)
            # RFB-320 emits (background, face) per anchor; keep the face column.
            scores = np.asarray(scores, dtype=np.float32)
            scores = scores.reshape(boxes.shape[0], -1)[:, -1] if len(boxes) else scores.reshape(0)
        except (ValueError, IndexError) as exc:
            raise InferenceError(f"Malformed detector output: {exc}") from exc
        return RawDetectorOutput(boxes=boxes, scores=scores)

    def close(self) -> None:
        self._session = None
        self._model_manager.shutdown()
