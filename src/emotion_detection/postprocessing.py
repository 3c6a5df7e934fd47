"""
Result synthesis: logits to a labelled, confidence-scored classification and the
annotated visualisation shown to the user.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import cv2
import numpy as np
import numpy.typing as npt

from .image import DetectedFace, Image

logger = logging.getLogger(__name__)

# Index order is the model's output order
EMOTION_LABELS: tuple[str, ...] = (
    "Neutral",
    "Happiness",
    "Surprise",
    "Sadness",
    "Anger",
    "Disgust",
    "Fear",
    "Contempt",
)

BOX_COLOR = (0, 255, 0, 255)
BOX_THICKNESS = 5
TEXT_SCALE = 1.0
TEXT_THICKNESS = 2


@dataclass(frozen=True)
class Classification:
    """Outcome of `synthesize`."""

    label: str
    confidence: float
    index: int
    probabilities: tuple[float, ...]


def softmax(logits: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Numerically stable softmax.

    Raises:
        ValueError: If `logits` is empty or holds NaN/inf values.
    """
    values = np.asarray(logits, dtype=np.float64).reshape(-1)
    if values.size == 0:
        raise ValueError("Cannot compute softmax of an empty vector")
    if not np.all(np.isfinite(values)):
        raise ValueError("Logits must be finite")
    exps = np.exp(values - values.max())
    return exps / exps.sum()


def clamp_confidence(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


def synthesize(
    logits: npt.ArrayLike, labels: Sequence[str] = EMOTION_LABELS
) -> Classification:
    """Pick the most probable label.

    Args:
        logits: Raw model scores, one per label.
        labels: Label table aligned with `logits`.

    Returns:
        The arg-max label (first maximum on ties) with its clamped probability.

    Raises:
        ValueError: On a label/logit count mismatch or invalid logits.
    """
    probabilities = softmax(logits)
    if probabilities.size != len(labels):
        raise ValueError(
            f"Got {probabilities.size} scores for {len(labels)} labels"
        )
    index = int(np.argmax(probabilities))
    return Classification(
        label=labels[index],
        confidence=clamp_confidence(float(probabilities[index])),
        index=index,
        probabilities=tuple(float(p) for p in probabilities),
    )


def annotate_faces(
    image: Image, faces: Sequence[DetectedFace], marker: str = "Face"
) -> Image:
    """Draw a box and `marker` above every face on a copy of `image`."""
    canvas = image.copy_pixels()
    for face in faces:
        box = face.bbox
        cv2.rectangle(
            canvas,
            (box.left, box.top),
            (box.right - 1, box.bottom - 1),
            BOX_COLOR,
            BOX_THICKNESS,
        )
        cv2.putText(
            canvas,
            marker,
            (box.left, max(0, box.top - 10)),
            cv2.FONT_HERSHEY_SIMPLEX,
            TEXT_SCALE,
            BOX_COLOR,
            TEXT_THICKNESS,
            cv2.LINE_AA,
        )
    logger.debug("Annotated %d face(s)", len(faces))
    return Image(canvas)
