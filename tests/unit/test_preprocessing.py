"""
Tests for tensor preprocessing.

The classifier only understands planar (R plane, G plane, B plane) float input
normalised with mean = std = 0.5; an interleaved buffer has the same length, so
layout is checked explicitly.
"""

import numpy as np
import pytest

from emotion_detection.image import Image
from emotion_detection.preprocessing import (
    TensorPreprocessor,
    center_crop_square,
    resize,
    to_planar_tensor,
)

PLANE = 224 * 224


def solid(width, height, rgb, alpha=255):
    arr = np.empty((height, width, 4), dtype=np.uint8)
    arr[:, :, :3] = rgb
    arr[:, :, 3] = alpha
    return Image(arr)


class TestCenterCrop:
    @pytest.mark.parametrize(
        "size, offset",
        [((300, 200), (50, 0)), ((200, 300), (0, 50)), ((201, 200), (0, 0)), ((64, 64), (0, 0))],
    )
    def test_crops_centred_square(self, size, offset):
        width, height = size
        arr = np.random.default_rng(0).integers(0, 256, (height, width, 3), dtype=np.uint8)
        image = Image(arr)

        square = center_crop_square(image)

        side = min(width, height)
        assert square.size == (side, side)
        x, y = offset
        np.testing.assert_array_equal(square.rgb(), arr[y : y + side, x : x + side])


class TestResize:
    def test_resizes_to_model_input(self):
        assert resize(solid(97, 97, (1, 2, 3))).size == (224, 224)

    def test_constant_image_stays_constant(self):
        resized = resize(solid(448, 448, (200, 100, 50)))
        assert np.abs(resized.rgb().astype(int) - (200, 100, 50)).max() <= 1

    def test_transparent_pixels_keep_their_colour(self):
        resized = resize(solid(112, 112, (200, 100, 50), alpha=0))

        assert np.abs(resized.rgb().astype(int) - (200, 100, 50)).max() <= 1
        assert np.all(resized.pixels[:, :, 3] == 0)

    def test_already_sized_image_is_copied_unchanged(self):
        image = solid(224, 224, (9, 8, 7))
        resized = resize(image)

        assert resized is not image
        np.testing.assert_array_equal(resized.pixels, image.pixels)


class TestPlanarTensor:
    def test_normalisation(self):
        tensor = to_planar_tensor(solid(224, 224, (128, 0, 255)))

        assert tensor.dtype == np.float32
        assert tensor[0] == pytest.approx(0.0039, abs=1e-4)
        assert tensor[PLANE] == pytest.approx(-1.0)
        assert tensor[2 * PLANE] == pytest.approx(1.0)

    def test_planar_layout(self):
        arr = np.zeros((224, 224, 3), dtype=np.uint8)
        arr[3, 5] = (255, 0, 255)
        arr[200, 10] = (0, 255, 0)
        tensor = to_planar_tensor(Image(arr))

        offset = 3 * 224 + 5
        assert tensor[offset] == pytest.approx(1.0)
        assert tensor[PLANE + offset] == pytest.approx(-1.0)
        assert tensor[2 * PLANE + offset] == pytest.approx(1.0)

        offset = 200 * 224 + 10
        assert tensor[offset] == pytest.approx(-1.0)
        assert tensor[PLANE + offset] == pytest.approx(1.0)
        assert tensor[2 * PLANE + offset] == pytest.approx(-1.0)

    def test_alpha_is_ignored(self):
        opaque = to_planar_tensor(solid(224, 224, (10, 20, 30), alpha=255))
        clear = to_planar_tensor(solid(224, 224, (10, 20, 30), alpha=0))
        np.testing.assert_array_equal(opaque, clear)


class TestTensorPreprocessor:
    """Test cases for the full preprocessing stage."""

    @pytest.fixture
    def preprocessor(self):
        return TensorPreprocessor()

    def test_tensor_length(self, preprocessor, sample_image):
        tensor = preprocessor.preprocess(sample_image)

        assert tensor.shape == (3 * PLANE,)
        assert tensor.dtype == np.float32
        assert np.all(tensor >= -1.0) and np.all(tensor <= 1.0)

    def test_uniform_grey_face(self, preprocessor):
        tensor = preprocessor.preprocess(solid(150, 90, (128, 128, 128)))

        np.testing.assert_allclose(tensor, 128 / 255 * 2 - 1, atol=0.01)

    def test_input_is_not_mutated(self, preprocessor, sample_image):
        before = sample_image.copy_pixels()
        preprocessor.preprocess(sample_image)

        assert not sample_image.released
        np.testing.assert_array_equal(sample_image.pixels, before)

    def test_failure_returns_none(self, preprocessor, caplog):
        image = solid(50, 50, (1, 2, 3))
        image.release()

        assert preprocessor.preprocess(image) is None
        assert "preprocessing" in caplog.text

    def test_rejects_invalid_normalisation(self):
        with pytest.raises(ValueError):
            TensorPreprocessor(std=(0.5, 0.0, 0.5))
        with pytest.raises(ValueError):
            TensorPreprocessor(mean=(0.5, 0.5))


@pytest.mark.parametrize("width, height", [(1, 1), (1, 37), (37, 1), (2, 3), (500, 499), (224, 224)])
def test_any_input_size_gives_full_tensor(width, height):
    image = solid(width, height, (30, 60, 90))

    assert center_crop_square(image).size == (min(width, height),) * 2
    assert TensorPreprocessor().preprocess(image).shape == (3 * PLANE,)
