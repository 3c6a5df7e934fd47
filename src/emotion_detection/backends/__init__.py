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
from .factory import create_backend, get_available_backends
from .onnxrt_backend import ONNXRTBackend

__all__ = [
    "AcceleratorContext",
    "AcceleratorError",
    "BackendError",
    "BackendInfo",
    "BackendNotInitializedError",
    "DeviceUnavailableError",
    "EmotionClassifierBackend",
    "EngineState",
    "INPUT_SHAPE",
    "InferenceError",
    "InvalidInputError",
    "ModelLoadingError",
    "NUM_CLASSES",
    "ONNXRTBackend",
    "OUTPUT_SHAPE",
    "TENSOR_LENGTH",
    "create_backend",
    "get_available_backends",
]
