"""
Pipeline Exception Definitions

Each layer defines its own error types: inference errors live in
`backends.backend_exceptions`, everything the vision/preprocessing stages and the
configuration layer can raise lives here.
"""


class EmotionDetectionError(Exception):
    """Base class for all pipeline-level errors."""

    pass


class ConfigError(EmotionDetectionError):
    """
    Raised when configuration is invalid or malformed.

    @context: Configuration parsing and validation
    """

    pass


class DetectorUnavailableError(EmotionDetectionError):
    """
    Raised when the face detector cannot be created.

    @context: Face locator initialization
    """

    pass


class FaceExtractionError(EmotionDetectionError):
    """
    Raised when a face crop cannot be produced from a bounding box.

    @context: Face extraction
    """

    pass


class PreprocessingError(EmotionDetectionError):
    """
    Raised when a face image cannot be turned into a model input tensor.

    @context: Tensor preprocessing
    """

    pass


class ImageReleasedError(EmotionDetectionError, ValueError):
    """Raised when pixels of an already released image are accessed."""

    pass
