"""
ONNX Runtime backend for the emotion classifier.

The backend loads a serialized ONNX graph from bytes and runs it with ONNX
Runtime. Hardware acceleration is an optional execution provider selected by a
capability probe at load time:

- the first configured accelerator provider reported by
  `onnxruntime.get_available_providers()` is attached together with the CPU
  provider;
- if attaching throws, or the runtime silently drops the provider, the backend
  continues CPU-only (logged, never surfaced as an error);
- if inference later fails inside the accelerator, session and accelerator are
  released and the backend becomes DEGRADED until it is loaded again.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Any

import numpy as np
import numpy.typing as npt
import onnxruntime as ort
from typing_extensions import override

from .backend_exceptions import (
    AcceleratorError,
    BackendError,
    BackendNotInitializedError,
    DeviceUnavailableError,
    InferenceError,
    InvalidInputError,
    ModelLoadingError,
)
from .base import (
    INPUT_SHAPE,
    NUM_CLASSES,
    OUTPUT_SHAPE,
    TENSOR_LENGTH,
    AcceleratorContext,
    BackendInfo,
    EmotionClassifierBackend,
    EngineState,
)

logger = logging.getLogger(__name__)

CPU_PROVIDER = "CPUExecutionProvider"

DEFAULT_ACCELERATOR_PROVIDERS: tuple[str, ...] = (
    "CUDAExecutionProvider",
    "CoreMLExecutionProvider",
    "DmlExecutionProvider",
    "ROCMExecutionProvider",
    "OpenVINOExecutionProvider",
)

# Substrings of an error message that point at the accelerator rather than the model
_ACCELERATOR_MARKERS: tuple[str, ...] = (
    "gpu",
    "cuda",
    "cudnn",
    "coreml",
    "dml",
    "directml",
    "rocm",
    "tensorrt",
    "openvino",
    "delegate",
)


class ONNXRTBackendError(BackendError):
    """Base class for ONNXRTBackend specific errors."""


class ONNXRTModelLoadingError(ONNXRTBackendError, ModelLoadingError):
    """Raised when ONNX model loading fails."""


def _implicates_accelerator(exc: BaseException, accelerator: AcceleratorContext) -> bool:
    text = f"{type(exc).__name__}: {exc}".lower()
    if accelerator.provider.lower() in text:
        return True
    return any(marker in text for marker in _ACCELERATOR_MARKERS)


def _shape_matches(shape: Sequence[Any] | None, expected: Sequence[int]) -> bool:
    """Compare a model tensor shape with the contract; only the batch dim may be symbolic."""
    if shape is None or len(shape) != len(expected):
        return False
    for idx, (actual, wanted) in enumerate(zip(shape, expected)):
        if isinstance(actual, int) and actual > 0:
            if actual != wanted:
                return False
        elif idx != 0:
            return False
    return True


def _infer_device(providers: Sequence[str]) -> str:
    provs = [p.lower() for p in providers]
    if any("cuda" in p or "tensorrt" in p for p in provs):
        return "cuda"
    if any("coreml" in p for p in provs):
        return "coreml"
    if any("dml" in p for p in provs):
        return "directml"
    if any("rocm" in p for p in provs):
        return "rocm"
    if any("openvino" in p for p in provs):
        return "openvino"
    return "cpu"


class ONNXRTBackend(EmotionClassifierBackend):
    """Emotion classifier backend powered by ONNX Runtime.

    Args:
        accelerator_providers: Execution providers to probe, in priority order.
            Defaults to `DEFAULT_ACCELERATOR_PROVIDERS`.
        enable_accelerator: When False the backend never probes for an
            accelerator and always runs on CPU.
        num_threads: Intra-op thread count hint for the CPU provider.
        warmup: Run one zero-tensor inference after every successful load.
        model_id: Optional identifier reported by `get_runtime_info()`.

    Example:
        ```python
        backend = ONNXRTBackend(num_threads=4)
        backend.load(Path("emotion.onnx").read_bytes())
        logits = backend.infer(tensor)
        backend.close()
        ```
    """

    def __init__(
        self,
        accelerator_providers: Sequence[str] | None = None,
        enable_accelerator: bool = True,
        num_threads: int = 4,
        warmup: bool = True,
        model_id: str | None = None,
    ) -> None:
        super().__init__()
        self._accelerator_providers: list[str] = list(
            DEFAULT_ACCELERATOR_PROVIDERS
            if accelerator_providers is None
            else accelerator_providers
        )
        self._enable_accelerator = enable_accelerator
        self._num_threads = num_threads
        self._warmup = warmup
        self.model_id = model_id

        self._session: ort.InferenceSession | None = None
        self._input_name: str | None = None
        self._output_name: str | None = None
        self._load_time_seconds: float | None = None

    # ------------------------------------------------------------------ #
    # Provider utilities
    # ------------------------------------------------------------------ #

    def _probe_accelerator(self) -> AcceleratorContext | None:
        """Return a context for the first supported accelerator, if any."""
        if not self._enable_accelerator:
            return None
        try:
            available = set(ort.get_available_providers())
        except Exception as exc:
            logger.warning("Could not query execution providers, using CPU: %s", exc)
            return None

        for provider in self._accelerator_providers:
            if provider == CPU_PROVIDER:
                continue
            if provider in available:
                logger.debug("Accelerator %s is supported on this device", provider)
                return AcceleratorContext(provider=provider)

        logger.debug("No accelerator supported on this device, using CPU")
        return None

    def _session_options(self) -> ort.SessionOptions:
        sess_options = ort.SessionOptions()
        sess_options.intra_op_num_threads = self._num_threads
        sess_options.graph_optimization_level = (
            ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        )
        return sess_options

    def _create_session(
        self, model_bytes: bytes, providers: list[str]
    ) -> ort.InferenceSession:
        return ort.InferenceSession(
            model_bytes, self._session_options(), providers=providers
        )

    def _attach_accelerator(
        self, model_bytes: bytes, accelerator: AcceleratorContext
    ) -> ort.InferenceSession | None:
        """Create an accelerated session, or None when the accelerator cannot be used."""
        try:
            session = self._create_session(
                model_bytes, [accelerator.provider, CPU_PROVIDER]
            )
            active = list(session.get_providers())
            if accelerator.provider not in active:
                raise DeviceUnavailableError(
                    f"{accelerator.provider} was not activated (active providers: {active})"
                )
            logger.info("Accelerator %s attached", accelerator.provider)
            return session
        except Exception as exc:
            logger.warning(
                "Failed to attach %s, falling back to CPU: %s",
                accelerator.provider,
                exc,
            )
            self._release_accelerator(accelerator)
            return None

    @staticmethod
    def _release_accelerator(accelerator: AcceleratorContext) -> None:
        try:
            accelerator.release()
        except Exception as exc:
            logger.warning("Error releasing accelerator %s: %s", accelerator.provider, exc)

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #

    @override
    def load(self, model_bytes: bytes) -> None:
        with self._lock:
            if self.is_initialized():
                logger.debug("Model already loaded, skipping load")
                return
            if not model_bytes:
                raise ONNXRTModelLoadingError("Model asset is empty")

            self._release()
            self._state = EngineState.LOADING
            t0 = time.time()
            logger.info("Loading emotion model (%d bytes)", len(model_bytes))

            accelerator = self._probe_accelerator()
            try:
                session = None
                if accelerator is not None:
                    session = self._attach_accelerator(model_bytes, accelerator)
                    if session is None:
                        accelerator = None
                if session is None:
                    session = self._create_session(model_bytes, [CPU_PROVIDER])
                input_name, output_name = self._validate_contract(session)
            except Exception as exc:
                if accelerator is not None:
                    self._release_accelerator(accelerator)
                self._state = EngineState.UNLOADED
                if isinstance(exc, ModelLoadingError):
                    raise
                raise ONNXRTModelLoadingError(
                    f"Failed to initialize ONNX session: {exc}"
                ) from exc

            self._session = session
            self._accelerator = accelerator
            self._input_name = input_name
            self._output_name = output_name
            self._load_time_seconds = time.time() - t0
            self._state = EngineState.LOADED
            logger.info(
                "ONNXRTBackend ready in %.2fs (providers=%s)",
                self._load_time_seconds,
                ",".join(session.get_providers()),
            )

            if self._warmup:
                self._warm_up()

    def _validate_contract(self, session: ort.InferenceSession) -> tuple[str, str]:
        """Check the model against the [1,3,224,224] -> [1,8] contract."""
        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if not inputs or not outputs:
            raise ONNXRTModelLoadingError("Model declares no inputs or outputs")

        model_input = inputs[0]
        model_output = outputs[0]
        logger.debug(
            "Model input %s %s %s, output %s %s",
            model_input.name,
            model_input.shape,
            model_input.type,
            model_output.name,
            model_output.shape,
        )

        if not _shape_matches(model_input.shape, INPUT_SHAPE):
            raise ONNXRTModelLoadingError(
                f"Model input shape {model_input.shape} does not match expected {list(INPUT_SHAPE)}"
            )
        if model_input.type != "tensor(float)":
            raise ONNXRTModelLoadingError(
                f"Model input type {model_input.type} is not float32"
            )
        if not _shape_matches(model_output.shape, OUTPUT_SHAPE):
            raise ONNXRTModelLoadingError(
                f"Model output shape {model_output.shape} does not match expected {list(OUTPUT_SHAPE)}"
            )
        return model_input.name, model_output.name

    def _warm_up(self) -> None:
        """Run one throwaway inference so the first real call is not slowed down."""
        t0 = time.time()
        try:
            self._run(np.zeros(INPUT_SHAPE, dtype=np.float32))
            logger.debug("Model warm-up completed in %.0fms", (time.time() - t0) * 1000)
        except Exception as exc:
            logger.warning("Model warm-up failed, but continuing: %s", exc)

    # ------------------------------------------------------------------ #
    # Inference
    # ------------------------------------------------------------------ #

    @staticmethod
    def _as_model_input(tensor: npt.ArrayLike) -> npt.NDArray[np.float32]:
        arr = np.asarray(tensor, dtype=np.float32)
        if arr.size != TENSOR_LENGTH:
            raise InvalidInputError(
                f"Input tensor must hold {TENSOR_LENGTH} values, got {arr.size}"
            )
        return np.ascontiguousarray(arr.reshape(INPUT_SHAPE))

    def _run(self, batch: npt.NDArray[np.float32]) -> npt.NDArray[np.float32]:
        assert self._session is not None
        outputs = self._session.run([self._output_name], {self._input_name: batch})
        logits = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        if logits.size != NUM_CLASSES:
            raise InferenceError(f"Expected {NUM_CLASSES} scores, got {logits.size}")
        return logits

    @override
    def infer(self, tensor: npt.NDArray[np.float32]) -> npt.NDArray[np.float32]:
        with self._lock:
            if not self.is_initialized() or self._session is None:
                raise BackendNotInitializedError(
                    f"Backend not loaded (state={self._state.value})"
                )
            if not self.is_healthy():
                raise BackendNotInitializedError(
                    "Backend failed its health check and must be reloaded"
                )

            batch = self._as_model_input(tensor)
            self._state = EngineState.RUNNING
            t0 = time.time()
            try:
                logits = self._run(batch)
            except Exception as exc:
                accelerator = self._accelerator
                if accelerator is not None and _implicates_accelerator(exc, accelerator):
                    logger.warning(
                        "%s inference failed, releasing session; model needs to be reloaded: %s",
                        accelerator.provider,
                        exc,
                    )
                    self._release()
                    self._state = EngineState.DEGRADED
                    raise AcceleratorError(
                        f"Accelerator inference failed: {exc}"
                    ) from exc
                self._state = EngineState.LOADED
                raise InferenceError(f"Emotion inference failed: {exc}") from exc

            self._state = EngineState.LOADED
            logger.debug("Emotion inference completed in %.0fms", (time.time() - t0) * 1000)
            return logits

    # ------------------------------------------------------------------ #
    # Health, release & runtime info
    # ------------------------------------------------------------------ #

    @override
    def is_healthy(self) -> bool:
        with self._lock:
            if self._session is None:
                return False
            try:
                inputs = self._session.get_inputs()
                outputs = self._session.get_outputs()
                healthy = (
                    bool(inputs)
                    and bool(outputs)
                    and inputs[0].shape is not None
                    and outputs[0].shape is not None
                )
            except Exception as exc:
                logger.warning("Session health check failed: %s", exc)
                healthy = False

            if not healthy:
                self._release()
                self._state = EngineState.UNLOADED
            return healthy

    def _release(self) -> None:
        """Drop session and accelerator references; never raises."""
        accelerator = self._accelerator
        self._session = None
        self._accelerator = None
        self._input_name = None
        self._output_name = None
        if accelerator is not None:
            self._release_accelerator(accelerator)

    @override
    def close(self) -> None:
        with self._lock:
            if self._state is EngineState.CLOSED:
                return
            self._release()
            self._state = EngineState.CLOSED
            logger.info("ONNXRTBackend closed")

    @override
    def get_runtime_info(self) -> BackendInfo:
        providers: list[str] = []
        if self._session is not None:
            providers = list(self._session.get_providers())
        return BackendInfo(
            runtime="onnx",
            device=_infer_device(providers) if providers else None,
            model_id=self.model_id,
            version=getattr(ort, "__version__", None),
            accelerated=self.is_using_accelerator(),
            load_time=self._load_time_seconds,
            extra={
                "providers": ",".join(providers),
                "state": self._state.value,
                "accelerator": self._accelerator.provider if self._accelerator else None,
                "num_threads": str(self._num_threads),
            },
        )
