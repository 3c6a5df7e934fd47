"""
Tensor preprocessing for the emotion classifier.

Turns a face crop into the exact input the model was trained on:

1. center-crop to a square of side ``min(width, height)``;
2. resize to 224x224 with Lanczos resampling;
3. normalise each colour channel as ``(value / 255 - mean) / std`` with
   mean = std = 0.5, ignoring alpha;
4. pack planar (channel-major): every R value row by row, then every G value,
   then every B value, i.e. the flattened ``[1, 3, 224, 224]`` layout.

The planar order is part of the model contract. An interleaved (HWC) buffer
has the same length and would be accepted silently, so it must never be
produced here.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import numpy as np
import numpy.typing as npt
from PIL import Image as PILImage

from .backends.base import INPUT_SIZE
from .exceptions import PreprocessingError
from .image import Image

logger = logging.getLogger(__name__)

INPUT_MEAN: tuple[float, float, float] = (0.5, 0.5, 0.5)
INPUT_STD: tuple[float, float, float] = (0.5, 0.5, 0.5)


def center_crop_square(image: Image) -> Image:
    """Crop the centred ``m x m`` square, ``m = min(width, height)``."""
    side = min(image.width, image.height)
    x_offset = (image.width - side) // 2
    y_offset = (image.height - side) // 2
    return image.crop(x_offset, y_offset, side, side)


def resize(image: Image, size: int = INPUT_SIZE) -> Image:
    """Resize to ``size x size`` with Lanczos resampling.

    Colour and alpha are resampled independently; Pillow would otherwise
    premultiply alpha and shift the colour of translucent pixels.
    """
    if image.width == size and image.height == size:
        return Image(image.pixels)

    pil_rgba = image.to_pil()
    rgb = pil_rgba.convert("RGB").resize((size, size), PILImage.Resampling.LANCZOS)
    alpha = pil_rgba.getchannel("A").resize((size, size), PILImage.Resampling.LANCZOS)
    rgb.putalpha(alpha)
    return Image.from_pil(rgb)


def to_planar_tensor(
    image: Image,
    mean: Sequence[float] = INPUT_MEAN,
    std: Sequence[float] = INPUT_STD,
) -> npt.NDArray[np.float32]:
    """Normalise RGB and flatten in channel-major (planar) order."""
    mean_arr = np.asarray(mean, dtype=np.float32).reshape(3, 1, 1)
    std_arr = np.asarray(std, dtype=np.float32).reshape(3, 1, 1)

    rgb = image.rgb().astype(np.float32) / np.float32(255.0)
    chw = np.transpose(rgb, (2, 0, 1))  # HWC -> CHW
    normalized = (chw - mean_arr) / std_arr
    return np.ascontiguousarray(normalized, dtype=np.float32).reshape(-1)


class TensorPreprocessor:
    """Face image to model input tensor.

    Args:
        input_size: Square model input resolution.
        mean: Per-channel normalisation mean (R, G, B).
        std: Per-channel normalisation standard deviation (R, G, B).
    """

    def __init__(
        self,
        input_size: int = INPUT_SIZE,
        mean: Sequence[float] = INPUT_MEAN,
        std: Sequence[float] = INPUT_STD,
    ) -> None:
        if len(mean) != 3 or len(std) != 3:
            raise ValueError("mean and std need exactly one value per RGB channel")
        if any(s <= 0 for s in std):
            raise ValueError("std values must be positive")
        self.input_size = input_size
        self.mean = tuple(float(m) for m in mean)
        self.std = tuple(float(s) for s in std)

    @property
    def tensor_length(self) -> int:
        return 3 * self.input_size * self.input_size

    def to_tensor(self, face_image: Image) -> npt.NDArray[np.float32]:
        """Run every preprocessing step.

        Raises:
            PreprocessingError: If any step fails.
        """
        square: Image | None = None
        scaled: Image | None = None
        try:
            logger.debug(
                "Preprocessing face %dx%d -> %dx%dx3",
                face_image.width,
                face_image.height,
                self.input_size,
                self.input_size,
            )
            square = center_crop_square(face_image)
            scaled = resize(square, self.input_size)
            tensor = to_planar_tensor(scaled, self.mean, self.std)
        except PreprocessingError:
            raise
        except Exception as exc:
            raise PreprocessingError(f"Face preprocessing failed: {exc}") from exc
        finally:
            for intermediate in (square, scaled):
                if intermediate is not None:
                    intermediate.release()

        if tensor.size != self.tensor_length:
            raise PreprocessingError(
                f"Tensor has {tensor.size} values, expected {self.tensor_length}"
            )
        return tensor

    def preprocess(self, face_image: Image) -> npt.NDArray[np.float32] | None:
        """Tensor for `face_image`, or None when preprocessing fails."""
        try:
            return self.to_tensor(face_image)
        except PreprocessingError as exc:
            logger.error("ERROR in face preprocessing: %s", exc)
            return None
