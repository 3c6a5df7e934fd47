"""
Face Locator

Wraps a face detector behind a future that resolves exactly once. The detector
runs on the locator's own worker thread; `FaceLocator.detect` waits for it to
finish, fail or time out before returning, so callers never observe partial
detector state. A worker stuck past the timeout is abandoned and replaced.
Detector failures are reported as "no faces": for the user, a face that could
not be found and a detector that broke look the same.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path

import cv2
import numpy as np
import numpy.typing as npt

from ..exceptions import DetectorUnavailableError
from ..image import BoundingBox, DetectedFace, Image

logger = logging.getLogger(__name__)


class FaceDetectorBackend(ABC):
    """Abstract face detector used by `FaceLocator`."""

    @abstractmethod
    def detect(self, rgba: npt.NDArray[np.uint8], min_size: int) -> list[BoundingBox]:
        """Return raw face boxes for an ``(H, W, 4)`` RGBA image.

        Args:
            rgba: Read-only RGBA pixels.
            min_size: Smallest face side, in pixels, worth reporting.

        Boxes may be unclipped; the locator clips and filters them.
        """

    def close(self) -> None:
        """Release detector resources."""


class HaarCascadeDetector(FaceDetectorBackend):
    """OpenCV Haar cascade frontal-face detector.

    Args:
        cascade_path: Cascade XML file. Defaults to OpenCV's bundled
            ``haarcascade_frontalface_default.xml``.
        scale_factor: Image pyramid step passed to ``detectMultiScale``.
        min_neighbors: Neighbour count a candidate needs to be kept.

    Raises:
        DetectorUnavailableError: If the cascade cannot be loaded.
    """

    def __init__(
        self,
        cascade_path: str | Path | None = None,
        scale_factor: float = 1.1,
        min_neighbors: int = 5,
    ) -> None:
        if cascade_path is None:
            cascade_path = Path(cv2.data.haarcascades) / "haarcascade_frontalface_default.xml"
        self.cascade_path = str(cascade_path)
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors

        self._cascade: cv2.CascadeClassifier | None = cv2.CascadeClassifier(self.cascade_path)
        if self._cascade.empty():
            raise DetectorUnavailableError(
                f"Failed to load Haar cascade: {self.cascade_path}"
            )

    def detect(self, rgba: npt.NDArray[np.uint8], min_size: int) -> list[BoundingBox]:
        if self._cascade is None:
            raise DetectorUnavailableError("Haar cascade detector has been closed")

        gray = cv2.cvtColor(np.ascontiguousarray(rgba), cv2.COLOR_RGBA2GRAY)
        faces = self._cascade.detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            flags=cv2.CASCADE_SCALE_IMAGE,
            minSize=(min_size, min_size),
        )
        if faces is None or len(faces) == 0:
            return []
        return [
            BoundingBox(int(x), int(y), int(x + w), int(y + h))
            for (x, y, w, h) in faces
        ]

    def close(self) -> None:
        self._cascade = None


class FaceLocator:
    """Locate faces in an image.

    Args:
        detector: Detector backend. Defaults to `HaarCascadeDetector`.
        min_face_size: Minimum face size relative to the shorter image side.
        timeout: Seconds to wait for the detector; None waits indefinitely.
    """

    def __init__(
        self,
        detector: FaceDetectorBackend | None = None,
        min_face_size: float = 0.1,
        timeout: float | None = 10.0,
    ) -> None:
        self._detector: FaceDetectorBackend = detector or HaarCascadeDetector()
        self.min_face_size = min_face_size
        self.timeout = timeout
        self._executor: ThreadPoolExecutor | None = self._new_executor()

    @property
    def closed(self) -> bool:
        return self._executor is None

    def min_face_pixels(self, image: Image) -> int:
        return max(1, int(round(min(image.width, image.height) * self.min_face_size)))

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=1, thread_name_prefix="face-detector")

    def _abandon_worker(self) -> None:
        """Replace a worker stuck in the detector; its eventual result is discarded."""
        executor, self._executor = self._executor, self._new_executor()
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)

    def detect(self, image: Image) -> list[DetectedFace]:
        """Detect faces; returns an empty list when none are found or detection fails."""
        if self._executor is None:
            logger.error("Face detection requested on a closed locator")
            return []

        t0 = time.time()
        future = None
        try:
            min_size = self.min_face_pixels(image)
            future = self._executor.submit(self._detector.detect, image.pixels, min_size)
            boxes = future.result(timeout=self.timeout)
        except FutureTimeoutError:
            logger.error("Face detection timed out after %.2fs", self.timeout)
            if future is not None and not future.cancel():
                self._abandon_worker()
            return []
        except Exception as exc:
            logger.error("Face detection failed: %s", str(exc) or type(exc).__name__)
            return []

        faces: list[DetectedFace] = []
        for box in boxes:
            clipped = box.clipped(image.width, image.height)
            if clipped.is_empty:
                logger.debug("Dropping degenerate face box %s", box)
                continue
            faces.append(DetectedFace(bbox=clipped, tracking_id=len(faces)))

        logger.debug(
            "Found %d face(s) in %dx%d image in %.0fms",
            len(faces),
            image.width,
            image.height,
            (time.time() - t0) * 1000,
        )
        return faces

    def close(self) -> None:
        """Stop the detector worker and release the detector. Idempotent.

        Does not wait for a detector call that is still running.
        """
        executor, self._executor = self._executor, None
        if executor is None:
            return
        try:
            executor.shutdown(wait=False, cancel_futures=True)
        except Exception as exc:
            logger.warning("Error shutting down face detector worker: %s", exc)
        try:
            self._detector.close()
        except Exception as exc:
            logger.warning("Error closing face detector: %s", exc)
