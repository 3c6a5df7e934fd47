"""
Backend Exception Definitions

Errors raised by emotion classifier backends. The pipeline converts every one of
them into an `EmotionError` result.
"""


class BackendError(Exception):
    """Base class for all backend errors."""

    pass


class BackendNotInitializedError(BackendError):
    """Raised when backend is used before a model was loaded."""

    pass


class InvalidInputError(BackendError):
    """Raised when input data is invalid or malformed."""

    pass


class InferenceError(BackendError):
    """Raised when inference operation fails."""

    pass


class AcceleratorError(InferenceError):
    """Raised when inference fails inside the hardware accelerator.

    The backend has already released its session and moved to the degraded
    state; the next load restores it.
    """

    pass


class ModelLoadingError(BackendError):
    """Raised when model loading fails."""

    pass


class DeviceUnavailableError(BackendError):
    """Raised when requested device is not available."""

    pass
