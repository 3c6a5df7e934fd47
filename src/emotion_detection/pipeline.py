"""
pipeline.py

The emotion pipeline: one photograph in, one `EmotionResult` out.

Stages, in order:
  - load: make sure the classifier model is loaded (lazily, on first use and
    after any reload or degradation)
  - detect: locate faces with the `FaceLocator`
  - extract: crop the largest face with padding
  - preprocess: turn the crop into the planar model input tensor
  - visualise: annotate every detected face on a copy of the image
  - infer + synthesize: classify and build the final result

No exception escapes `EmotionPipeline.process`; each stage failure maps to a
short, user-presentable `EmotionError`.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path

from .backends import (
    AcceleratorError,
    BackendError,
    EmotionClassifierBackend,
    InferenceError,
    ModelLoadingError,
    create_backend,
)
from .config import PipelineConfig
from .image import Image
from .postprocessing import EMOTION_LABELS, annotate_faces, synthesize
from .preprocessing import TensorPreprocessor
from .results import (
    EmotionError,
    EmotionResult,
    EmotionSuccess,
    ErrorKind,
    NoFacesDetected,
)
from .vision import FaceExtractor, FaceLocator, HaarCascadeDetector

logger = logging.getLogger(__name__)

MSG_IMAGE_MISSING = "Unable to capture image"
MSG_MODEL_LOAD = "Cannot load model"
MSG_EXTRACTION = "Failed to extract face"
MSG_PREPROCESSING = "Face preprocessing failed"
MSG_INFERENCE = "Model inference failed"
MSG_INTERNAL = "Error processing image"
MSG_BUSY = "Pipeline is busy"
MSG_CLOSED = "Pipeline is closed"

ModelAsset = bytes | str | Path
LocatorFactory = Callable[[PipelineConfig], FaceLocator]


def default_locator_factory(config: PipelineConfig) -> FaceLocator:
    """Build a Haar-cascade `FaceLocator` from the detection settings."""
    detection = config.detection
    return FaceLocator(
        detector=HaarCascadeDetector(cascade_path=detection.cascade_path),
        min_face_size=detection.min_face_size,
        timeout=detection.timeout,
    )


class EmotionPipeline:
    """Facial emotion classification of single photographs.

    The pipeline owns every stage component. Requests are single-flight: a
    pipeline-wide lock queues concurrent `process` calls so the engine and the
    detector never see interleaved requests.

    Recovery: results of kind MODEL_LOAD, FACE_EXTRACTION, PREPROCESSING,
    INFERENCE, ACCELERATOR and INTERNAL count as consecutive failures. A success
    or a "no faces" result resets the count. Once the count reaches
    ``config.recovery.failure_threshold`` every component is reloaded: the engine
    is closed (and loaded again by the next request) and the face locator is
    rebuilt.

    Attributes:
        config: Pipeline configuration.
        extractor: Face extraction stage.
        preprocessor: Tensor preprocessing stage.
        labels: Label table aligned with the model output.

    Example:
        ```python
        with EmotionPipeline(PipelineConfig.from_yaml(Path("emotion.yaml"))) as pipeline:
            result = pipeline.process(Image.from_pil(photo), model_bytes)
            if isinstance(result, EmotionSuccess):
                print(result.label, result.confidence)
        ```
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        backend: EmotionClassifierBackend | None = None,
        locator_factory: LocatorFactory | None = None,
        extractor: FaceExtractor | None = None,
        preprocessor: TensorPreprocessor | None = None,
    ) -> None:
        """Create the pipeline. Nothing is loaded until the first request.

        Args:
            config: Pipeline configuration; defaults apply when None.
            backend: Inference engine. Built with `create_backend` when None.
            locator_factory: Builds the face locator, now and on every reload.
            extractor: Face extraction stage.
            preprocessor: Tensor preprocessing stage.
        """
        self.config = config or PipelineConfig()
        self._engine = backend or create_backend(self.config)
        self._locator_factory = locator_factory or default_locator_factory
        self._locator: FaceLocator | None = None
        self.extractor = extractor or FaceExtractor(padding=self.config.extraction.padding)
        self.preprocessor = preprocessor or TensorPreprocessor()
        self.labels = EMOTION_LABELS

        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self._reload_count = 0
        self._closed = False

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def engine(self) -> EmotionClassifierBackend:
        return self._engine

    @property
    def locator(self) -> FaceLocator | None:
        """Current face locator; None before the first request and after a failed rebuild."""
        return self._locator

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def reload_count(self) -> int:
        """How many times every component was reloaded after repeated failures."""
        return self._reload_count

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------ #
    # Processing
    # ------------------------------------------------------------------ #

    def process(
        self,
        image: Image | None,
        model_asset: ModelAsset | None = None,
        timeout: float | None = None,
    ) -> EmotionResult:
        """Classify the most prominent face in `image`.

        Args:
            image: Decoded photograph. None means the capture failed.
            model_asset: Serialized ONNX model, or a path to one. Falls back to
                ``config.model.path`` when None.
            timeout: Seconds to wait for an in-flight request to finish; None
                waits indefinitely.

        Returns:
            `EmotionSuccess` with the annotated image, `NoFacesDetected` with the
            original image, or `EmotionError`. Images in the result belong to the
            caller.
        """
        if image is None:
            logger.error("No image to process")
            return EmotionError(MSG_IMAGE_MISSING, ErrorKind.INPUT_MISSING)

        acquired = self._lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            logger.warning("Pipeline still busy after %.2fs, request dropped", timeout)
            return EmotionError(MSG_BUSY, ErrorKind.BUSY)

        try:
            if self._closed:
                return EmotionError(MSG_CLOSED, ErrorKind.CLOSED)

            t0 = time.time()
            try:
                result = self._run_stages(image, model_asset)
            except Exception as exc:
                logger.exception("Unexpected error processing image")
                result = EmotionError(MSG_INTERNAL, ErrorKind.INTERNAL, exc)

            self._record(result)
            logger.info(
                "Processed image in %.0fms: %s",
                (time.time() - t0) * 1000,
                _summarize(result),
            )
            return result
        finally:
            self._lock.release()

    def _run_stages(self, image: Image, model_asset: ModelAsset | None) -> EmotionResult:
        try:
            self._engine.ensure_loaded(lambda: self._read_model(model_asset))
        except (ModelLoadingError, OSError) as exc:
            logger.error("Error loading model: %s", exc)
            return EmotionError(MSG_MODEL_LOAD, ErrorKind.MODEL_LOAD, exc)

        faces = self._get_locator().detect(image)
        if not faces:
            logger.info("No faces detected")
            return NoFacesDetected(image)

        face_image: Image | None = None
        visualization: Image | None = None
        try:
            face_image = self.extractor.extract(image, faces)
            if face_image is None:
                return EmotionError(MSG_EXTRACTION, ErrorKind.FACE_EXTRACTION)

            tensor = self.preprocessor.preprocess(face_image)
            if tensor is None:
                return EmotionError(MSG_PREPROCESSING, ErrorKind.PREPROCESSING)

            visualization = annotate_faces(image, faces)

            try:
                logits = self._engine.infer(tensor)
            except AcceleratorError as exc:
                logger.error("Accelerator failed during inference: %s", exc)
                return EmotionError(MSG_INFERENCE, ErrorKind.ACCELERATOR, exc)
            except InferenceError as exc:
                logger.error("Error running model inference: %s", exc)
                return EmotionError(MSG_INFERENCE, ErrorKind.INFERENCE, exc)
            except BackendError as exc:
                logger.error("Inference engine rejected the request: %s", exc)
                return EmotionError(MSG_INFERENCE, ErrorKind.INFERENCE, exc)

            classification = synthesize(logits, self.labels)
            result = EmotionSuccess(
                label=classification.label,
                confidence=classification.confidence,
                image=visualization,
                probabilities=classification.probabilities,
            )
            visualization = None
            return result
        finally:
            if face_image is not None:
                face_image.release()
            if visualization is not None:
                visualization.release()

    def _read_model(self, model_asset: ModelAsset | None) -> bytes:
        if model_asset is None:
            model_asset = self.config.model.path
        if model_asset is None:
            raise ModelLoadingError("No model asset given and no model path configured")
        if isinstance(model_asset, (bytes, bytearray)):
            return bytes(model_asset)
        return Path(model_asset).read_bytes()

    def _get_locator(self) -> FaceLocator:
        if self._locator is None:
            self._locator = self._locator_factory(self.config)
        return self._locator

    # ------------------------------------------------------------------ #
    # Recovery
    # ------------------------------------------------------------------ #

    def _record(self, result: EmotionResult) -> None:
        if not isinstance(result, EmotionError):
            self._consecutive_failures = 0
            return
        if not result.kind.counts_as_failure:
            return

        self._consecutive_failures += 1
        threshold = self.config.recovery.failure_threshold
        logger.warning(
            "Pipeline failure %d/%d: %s",
            self._consecutive_failures,
            threshold,
            result.describe(),
        )
        if self._consecutive_failures >= threshold:
            self._reload_components()

    def _reload_components(self) -> None:
        """Tear down engine and locator so the next request starts from scratch."""
        logger.warning(
            "Too many consecutive failures (%d), reloading all components",
            self._consecutive_failures,
        )
        try:
            self._engine.close()
        except Exception as exc:
            logger.warning("Error closing inference engine during reload: %s", exc)

        locator, self._locator = self._locator, None
        if locator is not None:
            locator.close()
        try:
            self._locator = self._locator_factory(self.config)
        except Exception as exc:
            logger.error("Error rebuilding face locator: %s", exc)

        self._consecutive_failures = 0
        self._reload_count += 1

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def close(self) -> None:
        """Release engine and locator. Idempotent; failures are logged only."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._engine.close()
            except Exception as exc:
                logger.warning("Error closing inference engine: %s", exc)
            locator, self._locator = self._locator, None
            if locator is not None:
                locator.close()
            logger.info("Emotion pipeline closed")

    def __enter__(self) -> EmotionPipeline:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _summarize(result: EmotionResult) -> str:
    if isinstance(result, EmotionSuccess):
        return f"{result.label} ({result.confidence:.2%})"
    if isinstance(result, NoFacesDetected):
        return "no faces"
    return f"error [{result.kind.value}] {result.describe()}"
