"""
Pytest configuration and shared fixtures for emotion-detection tests.

ONNX Runtime is replaced by `FakeSessionFactory`, patched over
`onnxruntime.InferenceSession`; face detection uses `StaticDetector` so no
cascade file or real model is needed.
"""

from __future__ import annotations

from unittest.mock import Mock, patch

import numpy as np
import pytest

from emotion_detection.config import PipelineConfig
from emotion_detection.image import BoundingBox, Image
from emotion_detection.vision import FaceDetectorBackend, FaceLocator

CPU = "CPUExecutionProvider"
CUDA = "CUDAExecutionProvider"

# argmax is index 1 ("Happiness")
HAPPY_LOGITS = np.array([0.1, 2.0, 0.3, 0.0, -1.0, 0.2, 0.0, -0.5], dtype=np.float32)


class MockONNXSession:
    """Mock ONNX session; behaviour is read from its factory at call time."""

    def __init__(self, factory, model_bytes, providers):
        self.factory = factory
        self.model_bytes = model_bytes
        self.providers = providers
        self.run_calls = 0
        self.last_feed = None

        self.input_info = Mock()
        self.input_info.name = "input"
        self.input_info.shape = list(factory.input_shape)
        self.input_info.type = factory.input_type

        self.output_info = Mock()
        self.output_info.name = "logits"
        self.output_info.shape = list(factory.output_shape)

    def get_providers(self):
        return list(self.providers)

    def get_inputs(self):
        if self.factory.io_error is not None:
            raise self.factory.io_error
        return [self.input_info]

    def get_outputs(self):
        if self.factory.io_error is not None:
            raise self.factory.io_error
        return [self.output_info]

    def run(self, output_names, input_feed):
        self.run_calls += 1
        self.last_feed = input_feed
        if self.factory.run_error is not None:
            raise self.factory.run_error
        return [np.asarray(self.factory.logits, dtype=np.float32).reshape(1, -1)]


class FakeSessionFactory:
    """Stands in for `onnxruntime.InferenceSession` and records every session."""

    def __init__(self):
        self.sessions: list[MockONNXSession] = []
        self.available_providers = [CPU]
        self.input_shape = ["batch", 3, 224, 224]
        self.input_type = "tensor(float)"
        self.output_shape = [1, 8]
        self.logits = HAPPY_LOGITS
        self.failing_providers: set[str] = set()
        self.inactive_providers: set[str] = set()
        self.load_error: Exception | None = None
        self.run_error: Exception | None = None
        self.io_error: Exception | None = None

    def __call__(self, model_bytes, sess_options=None, providers=None):
        providers = list(providers or [CPU])
        if self.load_error is not None:
            raise self.load_error
        for provider in providers:
            if provider in self.failing_providers:
                raise RuntimeError(f"Failed to create {provider} session")
        active = [p for p in providers if p not in self.inactive_providers]
        session = MockONNXSession(self, model_bytes, active)
        self.sessions.append(session)
        return session

    @property
    def last(self) -> MockONNXSession:
        return self.sessions[-1]


class StaticDetector(FaceDetectorBackend):
    """Detector returning fixed boxes, or raising a fixed error."""

    def __init__(self, boxes=(), error: Exception | None = None):
        self.boxes = list(boxes)
        self.error = error
        self.calls = 0
        self.min_sizes: list[int] = []
        self.closed = False

    def detect(self, rgba, min_size):
        self.calls += 1
        self.min_sizes.append(min_size)
        if self.error is not None:
            raise self.error
        return list(self.boxes)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_ort():
    """Patch ONNX Runtime session creation and provider discovery."""
    factory = FakeSessionFactory()
    with patch("onnxruntime.InferenceSession", factory), patch(
        "onnxruntime.get_available_providers",
        side_effect=lambda: list(factory.available_providers),
    ):
        yield factory


@pytest.fixture
def model_bytes():
    return b"fake-onnx-emotion-model"


@pytest.fixture
def sample_image():
    """320x240 reproducible RGB test image."""
    rng = np.random.default_rng(42)
    return Image(rng.integers(0, 256, (240, 320, 3), dtype=np.uint8))


@pytest.fixture
def face_box():
    return BoundingBox(100, 60, 200, 180)


@pytest.fixture
def make_locator():
    """Build `FaceLocator`s around `StaticDetector`s and close them afterwards."""
    locators: list[FaceLocator] = []

    def _make(boxes=(), error=None, **kwargs):
        locator = FaceLocator(StaticDetector(boxes, error), **kwargs)
        locators.append(locator)
        return locator

    yield _make
    for locator in locators:
        locator.close()


@pytest.fixture
def pipeline_config():
    """Defaults with warm-up disabled and accelerator probing left on."""
    config = PipelineConfig()
    config.model.warmup = False
    return config


# Custom pytest markers for categorizing tests
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line(
        "markers", "preprocessing: marks tests for the tensor preprocessing stage"
    )
    config.addinivalue_line("markers", "model_loading: marks tests for model loading")


def pytest_collection_modifyitems(config, items):
    """Add markers to tests based on their location and names."""
    for item in items:
        parts = item.path.parts
        if "unit" in parts:
            item.add_marker(pytest.mark.unit)
        elif "integration" in parts:
            item.add_marker(pytest.mark.integration)

        if "preprocessing" in item.path.name:
            item.add_marker(pytest.mark.preprocessing)

        if "load" in item.name.lower():
            item.add_marker(pytest.mark.model_loading)
