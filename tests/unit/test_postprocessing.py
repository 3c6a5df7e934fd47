"""
Unit tests for result synthesis and visualisation.
"""

import numpy as np
import pytest

from emotion_detection.image import BoundingBox, DetectedFace, Image
from emotion_detection.postprocessing import (
    BOX_COLOR,
    EMOTION_LABELS,
    annotate_faces,
    clamp_confidence,
    softmax,
    synthesize,
)


class TestSoftmax:
    """Test cases for the stabilised softmax."""

    @pytest.mark.parametrize(
        "logits",
        [
            [0.1, 2.0, 0.3, 0.0, -1.0, 0.2, 0.0, -0.5],
            [1000.0, 999.0, -1000.0, 0.0, 5.0, 3.0, 2.0, 1.0],
            [-50.0] * 8,
        ],
    )
    def test_sums_to_one(self, logits):
        probs = softmax(logits)

        assert probs.sum() == pytest.approx(1.0, abs=1e-6)
        assert np.all(probs >= 0.0) and np.all(probs <= 1.0)

    def test_equal_logits_are_uniform(self):
        probs = softmax(np.full(8, 3.7, dtype=np.float32))
        assert np.all(probs == 1 / 8)

    def test_shift_invariant(self):
        logits = np.array([0.5, -1.2, 3.3, 0.0, 2.2, -0.7, 1.1, 0.4])
        np.testing.assert_allclose(softmax(logits), softmax(logits + 123.0), atol=1e-6)

    def test_large_logits_do_not_overflow(self):
        probs = softmax([1e4, 0.0])
        assert probs[0] == pytest.approx(1.0)
        assert not np.any(np.isnan(probs))

    @pytest.mark.parametrize("logits", [[], [1.0, float("nan")], [float("inf"), 0.0]])
    def test_rejects_invalid_logits(self, logits):
        with pytest.raises(ValueError):
            softmax(logits)


class TestSynthesize:
    def test_label_table(self):
        assert EMOTION_LABELS == (
            "Neutral",
            "Happiness",
            "Surprise",
            "Sadness",
            "Anger",
            "Disgust",
            "Fear",
            "Contempt",
        )

    @pytest.mark.parametrize("index", range(8))
    def test_argmax_selects_label(self, index):
        logits = np.zeros(8, dtype=np.float32)
        logits[index] = 4.0

        result = synthesize(logits)

        assert result.index == index
        assert result.label == EMOTION_LABELS[index]
        assert result.confidence == pytest.approx(max(result.probabilities))
        assert 0.0 <= result.confidence <= 1.0

    def test_first_maximum_wins_ties(self):
        result = synthesize([0.0, 2.0, 2.0, 0.0, 0.0, 0.0, 0.0, 0.0])
        assert result.label == "Happiness"

    def test_uniform_confidence(self):
        result = synthesize(np.zeros(8))
        assert result.label == "Neutral"
        assert result.confidence == 0.125

    def test_label_count_mismatch(self):
        with pytest.raises(ValueError):
            synthesize(np.zeros(7))


@pytest.mark.parametrize(
    "value, expected", [(-0.2, 0.0), (0.0, 0.0), (0.42, 0.42), (1.0, 1.0), (1.0000001, 1.0)]
)
def test_clamp_confidence(value, expected):
    assert clamp_confidence(value) == expected


class TestAnnotateFaces:
    def test_draws_on_a_copy(self, sample_image, face_box):
        before = sample_image.copy_pixels()

        annotated = annotate_faces(sample_image, [DetectedFace(face_box)])

        assert annotated is not sample_image
        assert annotated.size == sample_image.size
        np.testing.assert_array_equal(sample_image.pixels, before)
        assert annotated.pixels[face_box.top + 60, face_box.left].tolist() == list(BOX_COLOR)

    def test_every_face_gets_a_box(self):
        image = Image(np.zeros((100, 100, 3), dtype=np.uint8))
        faces = [
            DetectedFace(BoundingBox(10, 30, 30, 50)),
            DetectedFace(BoundingBox(60, 60, 90, 90)),
        ]

        annotated = annotate_faces(image, faces)

        for face in faces:
            assert annotated.pixels[face.bbox.bottom, face.bbox.right].tolist() == list(BOX_COLOR)

    def test_no_faces_is_an_unchanged_copy(self, sample_image):
        annotated = annotate_faces(sample_image, [])
        np.testing.assert_array_equal(annotated.pixels, sample_image.pixels)


@pytest.mark.parametrize("seed", range(5))
def test_softmax_preserves_argmax(seed):
    logits = np.random.default_rng(seed).normal(0.0, 5.0, 8)
    assert int(np.argmax(softmax(logits))) == int(np.argmax(logits))


def test_box_corners_stay_inside_exclusive_edges(monkeypatch):
    drawn = []
    monkeypatch.setattr(
        "emotion_detection.postprocessing.cv2.rectangle",
        lambda canvas, pt1, pt2, color, thickness: drawn.append((pt1, pt2)),
    )
    image = Image(np.zeros((100, 100, 3), dtype=np.uint8))

    annotate_faces(image, [DetectedFace(BoundingBox(10, 30, 30, 50))])

    assert drawn == [((10, 30), (29, 49))]
