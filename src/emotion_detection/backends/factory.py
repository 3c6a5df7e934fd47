"""
Backend factory for creating emotion classifier backends from configuration.

Backends are registered lazily so a runtime is only imported when it is
actually requested.
"""

from __future__ import annotations

import importlib.util
import logging
from typing import TYPE_CHECKING

from .base import EmotionClassifierBackend

if TYPE_CHECKING:
    from ..config import PipelineConfig

logger = logging.getLogger(__name__)


class RuntimeKind:
    """Runtime kinds for emotion classifier backends."""

    ONNXRT = "onnxrt"


# Global registry for backends
_BACKEND_REGISTRY: dict[str, type[EmotionClassifierBackend]] = {}


def register_backend(kind: str, backend_class: type[EmotionClassifierBackend]) -> None:
    """Register a backend class for a given runtime kind."""
    _BACKEND_REGISTRY[kind] = backend_class


def get_available_backends() -> list[str]:
    """Get a list of available runtime kinds."""
    available = []

    if importlib.util.find_spec("onnxruntime") is not None:
        from .onnxrt_backend import ONNXRTBackend

        register_backend(RuntimeKind.ONNXRT, ONNXRTBackend)
        available.append(RuntimeKind.ONNXRT)

    return available


def create_backend(
    config: PipelineConfig,
    runtime: str = RuntimeKind.ONNXRT,
) -> EmotionClassifierBackend:
    """
    Create an emotion classifier backend from the pipeline configuration.

    Args:
        config: Pipeline configuration; the model and accelerator sections are used.
        runtime: The runtime kind to use ("onnxrt" or its alias "onnx").

    Returns:
        An unloaded backend instance.

    Raises:
        ValueError: If the specified runtime is not available.
    """
    get_available_backends()

    runtime_normalized = runtime.lower()
    if runtime_normalized == "onnx":
        runtime_normalized = RuntimeKind.ONNXRT

    if runtime_normalized not in _BACKEND_REGISTRY:
        available = list(_BACKEND_REGISTRY.keys())
        raise ValueError(
            f"Runtime '{runtime}' is not available. Available runtimes: {available}"
        )

    if runtime_normalized == RuntimeKind.ONNXRT:
        from .onnxrt_backend import ONNXRTBackend

        model_id = config.model.path.name if config.model.path else None
        logger.debug("Creating ONNX Runtime backend (model_id=%s)", model_id)
        return ONNXRTBackend(
            accelerator_providers=config.accelerator.providers,
            enable_accelerator=config.accelerator.enabled,
            num_threads=config.model.num_threads,
            warmup=config.model.warmup,
            model_id=model_id,
        )
    raise ValueError(f"Unknown runtime: {runtime}")
