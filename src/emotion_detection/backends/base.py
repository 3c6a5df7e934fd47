"""
Base Backend for Emotion Classification

This module defines the abstract base class for emotion classifier backends.
A backend owns one loaded classifier plus an optional accelerator context and
exposes a single synchronous inference call over the fixed model contract:
input ``[1, 3, 224, 224]`` float32 (planar RGB), output ``[1, 8]`` float32 logits.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
import numpy.typing as npt

INPUT_SIZE = 224
INPUT_CHANNELS = 3
NUM_CLASSES = 8
INPUT_SHAPE: tuple[int, int, int, int] = (1, INPUT_CHANNELS, INPUT_SIZE, INPUT_SIZE)
OUTPUT_SHAPE: tuple[int, int] = (1, NUM_CLASSES)
TENSOR_LENGTH = INPUT_CHANNELS * INPUT_SIZE * INPUT_SIZE


class EngineState(str, Enum):
    """Lifecycle of a backend.

    UNLOADED -> LOADING -> LOADED -> {RUNNING, DEGRADED} -> CLOSED. A DEGRADED or
    CLOSED backend must be loaded again before it accepts inference.
    """

    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    RUNNING = "running"
    DEGRADED = "degraded"
    CLOSED = "closed"


@dataclass
class AcceleratorContext:
    """Handle for a hardware execution path attached to a backend.

    CPU-only and accelerated backends are the same type; the accelerated one
    simply holds one of these.

    Attributes:
        provider: Runtime-specific accelerator name (e.g. "CUDAExecutionProvider").
        options: Provider options passed to the runtime when attaching.
        released: Set once the context has been released.
    """

    provider: str
    options: dict[str, str] = field(default_factory=dict)
    released: bool = False

    def release(self) -> None:
        self.released = True


@dataclass
class BackendInfo:
    """Runtime configuration and model metadata for emotion classifier backends.

    Attributes:
        runtime: Runtime framework name (e.g., "onnx").
        device: Target device identifier (e.g., "cuda", "coreml", "cpu").
        model_id: Stable model identifier, if known.
        version: Runtime version string.
        accelerated: Whether an accelerator context is attached.
        num_classes: Number of output classes (8 for the emotion model).
        input_size: Model input resolution as (height, width).
        load_time: Seconds spent in the last successful load.
        extra: Additional metadata as key-value pairs for extensibility.
    """

    runtime: str
    device: str | None = None
    model_id: str | None = None
    version: str | None = None
    accelerated: bool = False
    num_classes: int = NUM_CLASSES
    input_size: tuple[int, int] = (INPUT_SIZE, INPUT_SIZE)
    load_time: float | None = None
    extra: dict[str, str | None] = field(default_factory=dict)

    def as_dict(self) -> dict[str, object]:
        """Convert to a plain dict (safe for JSON serialization)."""
        return {
            "runtime": self.runtime,
            "device": self.device,
            "model_id": self.model_id,
            "version": self.version,
            "accelerated": self.accelerated,
            "num_classes": self.num_classes,
            "input_size": list(self.input_size),
            "load_time": self.load_time,
            "extra": dict(self.extra),
        }


class EmotionClassifierBackend(ABC):
    """Abstract base class defining the emotion classifier backend interface.

    Concrete backends implement loading, inference, health checking and release
    for a specific runtime. The base class owns the lifecycle state, the optional
    accelerator context and the lock that serialises every operation on one
    backend instance: load, infer and close share mutable runtime state and must
    never interleave.

    Attributes:
        _state: Current `EngineState`.
        _accelerator: Attached accelerator context, or None when running on CPU.
        _lock: Re-entrant lock guarding all state transitions.
    """

    def __init__(self) -> None:
        self._state: EngineState = EngineState.UNLOADED
        self._accelerator: AcceleratorContext | None = None
        self._lock = threading.RLock()

    @property
    def state(self) -> EngineState:
        return self._state

    def is_initialized(self) -> bool:
        """True when a model is loaded and inference may be attempted."""
        return self._state in (EngineState.LOADED, EngineState.RUNNING)

    def is_using_accelerator(self) -> bool:
        return self._accelerator is not None

    def needs_reload(self) -> bool:
        """True when the backend holds no usable model (never loaded, degraded or closed)."""
        return self._state in (
            EngineState.UNLOADED,
            EngineState.DEGRADED,
            EngineState.CLOSED,
        )

    def ensure_loaded(self, model_source: bytes | Callable[[], bytes]) -> None:
        """Load the model unless a healthy model is already loaded.

        Args:
            model_source: Serialized model, or a callable returning it. The
                callable is only invoked when a load is actually needed.

        Raises:
            ModelLoadingError: If loading fails.
        """
        with self._lock:
            if self._state is EngineState.LOADED and self.is_healthy():
                return
            model_bytes = model_source() if callable(model_source) else model_source
            self.load(model_bytes)

    @abstractmethod
    def load(self, model_bytes: bytes) -> None:
        """Parse the serialized model and prepare it for inference.

        Attaches an accelerator when the device supports one, falling back to CPU
        silently when attaching fails. Verifies the input/output contract and runs
        one warm-up inference.

        Raises:
            ModelLoadingError: If the model cannot be parsed or violates the
                ``[1, 3, 224, 224]`` -> ``[1, 8]`` contract.
        """

    @abstractmethod
    def infer(self, tensor: npt.NDArray[np.float32]) -> npt.NDArray[np.float32]:
        """Run one synchronous inference and return the 8 raw logits.

        Args:
            tensor: Planar float32 tensor of exactly 3*224*224 values.

        Raises:
            BackendNotInitializedError: If no healthy model is loaded.
            InvalidInputError: If the tensor has the wrong size.
            AcceleratorError: If the accelerator failed; the backend is now DEGRADED.
            InferenceError: For any other runtime failure.
        """

    @abstractmethod
    def is_healthy(self) -> bool:
        """Check that the loaded model still answers input/output queries."""

    @abstractmethod
    def close(self) -> None:
        """Release runtime and accelerator resources. Idempotent, never raises."""

    @abstractmethod
    def get_runtime_info(self) -> BackendInfo:
        """Describe the current runtime configuration."""
