"""
Terminal results returned by `EmotionPipeline.process`.

A result is exactly one of `EmotionSuccess`, `NoFacesDetected` or `EmotionError`.
Whatever image a result carries belongs to the caller once it is returned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from .image import Image


class ErrorKind(str, Enum):
    """Stage that produced an `EmotionError`."""

    INPUT_MISSING = "input_missing"
    MODEL_LOAD = "model_load"
    FACE_EXTRACTION = "face_extraction"
    PREPROCESSING = "preprocessing"
    INFERENCE = "inference"
    ACCELERATOR = "accelerator"
    BUSY = "busy"
    CLOSED = "closed"
    INTERNAL = "internal"

    @property
    def counts_as_failure(self) -> bool:
        """Whether this kind feeds the consecutive-failure recovery counter."""
        return self not in (ErrorKind.INPUT_MISSING, ErrorKind.BUSY, ErrorKind.CLOSED)


@dataclass(frozen=True)
class EmotionSuccess:
    """A face was classified.

    Attributes:
        label: Entry of `EMOTION_LABELS` with the highest probability.
        confidence: Probability of `label`, clamped into [0, 1].
        image: Original image annotated with every detected face.
        probabilities: Full softmax distribution, aligned with the label table.
    """

    label: str
    confidence: float
    image: Image
    probabilities: tuple[float, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class NoFacesDetected:
    """No face was found; carries the original, untouched image."""

    image: Image


@dataclass(frozen=True)
class EmotionError:
    """A stage failed. `message` is short and safe to show to a user."""

    message: str
    kind: ErrorKind = ErrorKind.INTERNAL
    cause: BaseException | None = None

    def describe(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message} - {self.cause}"


EmotionResult = Union[EmotionSuccess, NoFacesDetected, EmotionError]
