from .face_extractor import FaceExtractor, select_largest
from .face_locator import FaceDetectorBackend, FaceLocator, HaarCascadeDetector

__all__ = [
    "FaceDetectorBackend",
    "FaceExtractor",
    "FaceLocator",
    "HaarCascadeDetector",
    "select_largest",
]
