"""
Image and face geometry types shared by every pipeline stage.

An `Image` owns a read-only RGBA8 pixel buffer laid out as
``(height, width, 4)``, row-major, top-to-bottom. Every transformation returns a
new `Image`; stages release the images they own once they no longer need them.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import numpy.typing as npt
from PIL import Image as PILImage

from .exceptions import ImageReleasedError


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned rectangle in source-image pixel coordinates.

    Attributes:
        left: Inclusive left edge.
        top: Inclusive top edge.
        right: Exclusive right edge.
        bottom: Exclusive bottom edge.

    Note:
        Raw detector output may be degenerate or reach outside the image. Use
        `clipped()` and `is_empty` before trusting a box; the face locator only
        ever hands out clipped, non-empty boxes.
    """

    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def area(self) -> int:
        return max(0, self.width) * max(0, self.height)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def padded(self, padding: int) -> BoundingBox:
        """Grow the box by `padding` pixels on every side."""
        return BoundingBox(
            self.left - padding,
            self.top - padding,
            self.right + padding,
            self.bottom + padding,
        )

    def clipped(self, width: int, height: int) -> BoundingBox:
        """Clip the box to an image of the given size."""
        return BoundingBox(
            max(0, self.left),
            max(0, self.top),
            min(width, self.right),
            min(height, self.bottom),
        )

    def as_tuple(self) -> tuple[int, int, int, int]:
        return (self.left, self.top, self.right, self.bottom)


@dataclass(frozen=True)
class DetectedFace:
    """A detected face: bounding box plus opaque detector annotations.

    `tracking_id` and `confidence` are only used for selection and
    visualisation, never for classification.
    """

    bbox: BoundingBox
    tracking_id: int | None = None
    confidence: float | None = None


class Image:
    """Immutable RGBA8 image.

    Args:
        pixels: Array of shape ``(H, W, 4)`` (RGBA) or ``(H, W, 3)`` (RGB, an
            opaque alpha channel is added). The data is copied so later changes
            to the caller's array never leak into the image.

    Raises:
        ValueError: If the array does not describe a non-empty RGB/RGBA image.
    """

    __slots__ = ("_pixels",)

    def __init__(self, pixels: npt.ArrayLike) -> None:
        arr = np.asarray(pixels)
        if arr.ndim != 3 or arr.shape[2] not in (3, 4):
            raise ValueError(
                f"Expected an (H, W, 3) or (H, W, 4) array, got shape {arr.shape}"
            )
        if arr.shape[0] < 1 or arr.shape[1] < 1:
            raise ValueError(f"Image must be at least 1x1, got {arr.shape[1]}x{arr.shape[0]}")

        if arr.dtype != np.uint8:
            arr = np.clip(arr, 0, 255).astype(np.uint8)

        if arr.shape[2] == 3:
            alpha = np.full(arr.shape[:2] + (1,), 255, dtype=np.uint8)
            arr = np.concatenate([arr, alpha], axis=2)
        else:
            arr = arr.copy()

        arr = np.ascontiguousarray(arr)
        arr.setflags(write=False)
        self._pixels: npt.NDArray[np.uint8] | None = arr

    # ------------------------------------------------------------------ #
    # Constructors
    # ------------------------------------------------------------------ #

    @classmethod
    def from_buffer(cls, width: int, height: int, buffer: bytes) -> Image:
        """Build an image from a raw RGBA8 buffer of ``width * height * 4`` bytes."""
        expected = width * height * 4
        if len(buffer) != expected:
            raise ValueError(
                f"RGBA buffer for {width}x{height} must be {expected} bytes, got {len(buffer)}"
            )
        arr = np.frombuffer(buffer, dtype=np.uint8).reshape(height, width, 4)
        return cls(arr)

    @classmethod
    def from_pil(cls, image: PILImage.Image) -> Image:
        return cls(np.asarray(image.convert("RGBA")))

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def pixels(self) -> npt.NDArray[np.uint8]:
        """Read-only ``(H, W, 4)`` RGBA view of the buffer."""
        if self._pixels is None:
            raise ImageReleasedError("Image has already been released")
        return self._pixels

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        """(width, height), matching PIL's convention."""
        return (self.width, self.height)

    @property
    def released(self) -> bool:
        return self._pixels is None

    def rgb(self) -> npt.NDArray[np.uint8]:
        """Read-only ``(H, W, 3)`` view without the alpha channel."""
        return self.pixels[:, :, :3]

    # ------------------------------------------------------------------ #
    # Transformations
    # ------------------------------------------------------------------ #

    def crop(self, left: int, top: int, width: int, height: int) -> Image:
        """Copy a sub-rectangle into a new image.

        Raises:
            ValueError: If the rectangle is empty or leaves the image.
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Crop size must be positive, got {width}x{height}")
        if left < 0 or top < 0 or left + width > self.width or top + height > self.height:
            raise ValueError(
                f"Crop {left},{top} {width}x{height} is outside {self.width}x{self.height}"
            )
        return Image(self.pixels[top : top + height, left : left + width])

    def copy_pixels(self) -> npt.NDArray[np.uint8]:
        """Return a writable copy of the RGBA buffer."""
        return np.array(self.pixels, copy=True)

    def to_pil(self) -> PILImage.Image:
        return PILImage.fromarray(self.copy_pixels())

    def release(self) -> None:
        """Drop the pixel buffer. Releasing twice is a no-op."""
        self._pixels = None

    def __repr__(self) -> str:
        if self._pixels is None:
            return "Image(released)"
        return f"Image({self.width}x{self.height})"
