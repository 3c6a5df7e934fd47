"""
Unit tests for largest-face extraction.
"""

import numpy as np
import pytest

from emotion_detection.exceptions import FaceExtractionError
from emotion_detection.image import BoundingBox, DetectedFace, Image
from emotion_detection.vision import FaceExtractor, select_largest


def face(left, top, right, bottom):
    return DetectedFace(BoundingBox(left, top, right, bottom))


class TestSelectLargest:
    def test_picks_maximum_area(self):
        faces = [face(0, 0, 10, 10), face(0, 0, 30, 20), face(0, 0, 15, 15)]
        assert select_largest(faces) is faces[1]

    def test_first_wins_ties(self):
        faces = [face(0, 0, 20, 10), face(50, 50, 60, 70)]
        assert select_largest(faces) is faces[0]

    def test_empty(self):
        assert select_largest([]) is None


class TestFaceExtractor:
    """Test cases for FaceExtractor."""

    @pytest.fixture
    def image(self):
        arr = np.arange(100 * 200, dtype=np.uint32).reshape(100, 200) % 256
        return Image(np.stack([arr, arr, arr], axis=2).astype(np.uint8))

    def test_padding_on_every_side(self, image):
        crop = FaceExtractor().extract(image, [face(50, 30, 90, 70)])

        assert crop.size == (80, 80)
        np.testing.assert_array_equal(crop.pixels, image.pixels[10:90, 30:110])

    def test_padding_is_clipped_at_image_edges(self, image):
        crop = FaceExtractor(padding=20).extract(image, [face(5, 10, 40, 95)])

        # left/top clip to 0, bottom clips to the image height
        assert crop.size == (60, 100)

    def test_uses_largest_face(self, image):
        faces = [face(0, 0, 10, 10), face(100, 20, 160, 80)]
        crop = FaceExtractor(padding=0).extract(image, faces)

        assert crop.size == (60, 60)
        np.testing.assert_array_equal(crop.pixels, image.pixels[20:80, 100:160])

    def test_does_not_modify_source(self, image):
        before = image.copy_pixels()
        FaceExtractor().extract(image, [face(50, 30, 90, 70)])
        np.testing.assert_array_equal(image.pixels, before)

    def test_no_faces_returns_none(self, image):
        assert FaceExtractor().extract(image, []) is None

    def test_face_outside_image_returns_none(self, image):
        assert FaceExtractor(padding=0).extract(image, [face(250, 10, 300, 50)]) is None

    def test_crop_padded_raises_on_empty_region(self, image):
        with pytest.raises(FaceExtractionError):
            FaceExtractor(padding=0).crop_padded(image, BoundingBox(300, 0, 310, 10))

    @pytest.mark.parametrize("box", [(60, 60, 60, 90), (60, 60, 90, 60), (90, 90, 60, 60)])
    def test_degenerate_box_without_padding_returns_none(self, image, box):
        assert FaceExtractor(padding=0).extract(image, [face(*box)]) is None

    def test_crop_never_leaves_the_image(self, image):
        for box in [(0, 0, 5, 5), (190, 90, 200, 100), (-30, -30, 250, 150)]:
            crop = FaceExtractor().extract(image, [face(*box)])
            assert crop.width <= image.width and crop.height <= image.height
