"""Crop the most prominent face out of an image."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from ..exceptions import FaceExtractionError
from ..image import BoundingBox, DetectedFace, Image

logger = logging.getLogger(__name__)

DEFAULT_PADDING = 20


def select_largest(faces: Sequence[DetectedFace]) -> DetectedFace | None:
    """Face with the largest box area; the first one wins ties."""
    largest: DetectedFace | None = None
    for face in faces:
        if largest is None or face.bbox.area > largest.bbox.area:
            largest = face
    return largest


class FaceExtractor:
    """Crop the largest detected face with a fixed padding.

    Args:
        padding: Pixels added on every side of the face box before clipping.
    """

    def __init__(self, padding: int = DEFAULT_PADDING) -> None:
        self.padding = padding

    def crop_padded(self, image: Image, bbox: BoundingBox) -> Image:
        """Pad `bbox`, clip it to `image` and copy the region.

        Raises:
            FaceExtractionError: If the clipped region is empty.
        """
        region = bbox.padded(self.padding).clipped(image.width, image.height)
        if region.is_empty:
            raise FaceExtractionError(
                f"Invalid face dimensions: {region.width}x{region.height}"
            )
        logger.debug(
            "Extracting face: %d,%d %dx%d from %dx%d",
            region.left,
            region.top,
            region.width,
            region.height,
            image.width,
            image.height,
        )
        return image.crop(region.left, region.top, region.width, region.height)

    def extract(self, image: Image, faces: Sequence[DetectedFace]) -> Image | None:
        """Crop the largest face, or return None when that is impossible."""
        largest = select_largest(faces)
        if largest is None:
            logger.warning("No face to extract")
            return None
        try:
            return self.crop_padded(image, largest.bbox)
        except (FaceExtractionError, ValueError) as exc:
            logger.error("Error extracting face: %s", exc)
            return None
