"""
Emotion Detection.

Facial emotion classification of single photographs with an ONNX classifier.

Features:
- Face location with OpenCV Haar cascades (pluggable detector backend)
- Largest-face extraction with padding
- Planar [1, 3, 224, 224] tensor preprocessing with Lanczos resampling
- ONNX Runtime inference with optional accelerator and CPU fallback
- Automatic recovery after repeated failures
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("emotion-detection")
except PackageNotFoundError:
    # package is not installed
    __version__ = "0.0.0"

from .config import PipelineConfig
from .image import BoundingBox, DetectedFace, Image
from .pipeline import EmotionPipeline
from .postprocessing import EMOTION_LABELS
from .results import (
    EmotionError,
    EmotionResult,
    EmotionSuccess,
    ErrorKind,
    NoFacesDetected,
)
from .session import DetectionSession, DetectionState

__all__ = [
    "BoundingBox",
    "DetectedFace",
    "DetectionSession",
    "DetectionState",
    "EMOTION_LABELS",
    "EmotionError",
    "EmotionPipeline",
    "EmotionResult",
    "EmotionSuccess",
    "ErrorKind",
    "Image",
    "NoFacesDetected",
    "PipelineConfig",
]
