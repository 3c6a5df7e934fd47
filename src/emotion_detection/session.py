"""
Detection session: runs the pipeline off the caller's thread and publishes an
immutable `DetectionState` after every step.

The session is the only writer of its state. Every submission gets a generation
number; results that arrive after `cancel()`, `reset()` or a newer submission
are dropped (and their images released) instead of being published.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass

from .image import Image
from .pipeline import EmotionPipeline, ModelAsset
from .results import EmotionError, EmotionResult, EmotionSuccess, NoFacesDetected

logger = logging.getLogger(__name__)

MSG_NO_FACES = "No faces detected"
MSG_ANALYZING = "Analyzing emotion..."

StateListener = Callable[["DetectionState"], None]


@dataclass(frozen=True)
class DetectionState:
    """What a front end shows for the current detection.

    Attributes:
        is_loading: A request is in flight.
        message: Emotion label, status text or error text.
        confidence: Probability of the label; None unless the last request succeeded.
        image: Image to display (annotated on success), owned by the session.
    """

    is_loading: bool = False
    message: str = ""
    confidence: float | None = None
    image: Image | None = None

    @classmethod
    def from_result(cls, result: EmotionResult) -> DetectionState:
        if isinstance(result, EmotionSuccess):
            return cls(message=result.label, confidence=result.confidence, image=result.image)
        if isinstance(result, NoFacesDetected):
            return cls(message=MSG_NO_FACES, image=result.image)
        if isinstance(result, EmotionError) and result.cause is not None:
            return cls(message=f"ERROR: {result.describe()}")
        return cls(message=result.message)


class DetectionSession:
    """Single-writer state holder around an `EmotionPipeline`.

    Images passed to `submit` become owned by the session; they are released
    once they are neither shown nor needed any more.

    Args:
        pipeline: Pipeline to run requests on. Closed together with the session.
    """

    def __init__(self, pipeline: EmotionPipeline) -> None:
        self.pipeline = pipeline
        self._state = DetectionState()
        self._generation = 0
        self._lock = threading.Lock()
        self._listeners: list[StateListener] = []
        self._executor: ThreadPoolExecutor | None = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="emotion-session"
        )

    @property
    def state(self) -> DetectionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register `listener` for state changes; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def submit(
        self, image: Image | None, model_asset: ModelAsset | None = None
    ) -> Future[DetectionState]:
        """Process `image` in the background.

        Publishes a loading state right away and the final state once the
        pipeline returns. The future resolves to the final state, even when a
        newer request made it stale and it was not published.

        Raises:
            RuntimeError: If the session is closed.
        """
        with self._lock:
            if self._executor is None:
                raise RuntimeError("Detection session is closed")
            self._generation += 1
            generation = self._generation
            executor = self._executor
        self._publish(DetectionState(is_loading=True, message=MSG_ANALYZING), generation)
        return executor.submit(self._run, image, model_asset, generation)

    def _run(
        self, image: Image | None, model_asset: ModelAsset | None, generation: int
    ) -> DetectionState:
        result = self.pipeline.process(image, model_asset)
        result_image = getattr(result, "image", None)
        if image is not None and image is not result_image:
            image.release()

        state = DetectionState.from_result(result)
        if not self._publish(state, generation):
            logger.debug("Discarding stale result of request %d", generation)
            if result_image is not None:
                result_image.release()
        return state

    def _publish(self, state: DetectionState, generation: int) -> bool:
        with self._lock:
            if generation != self._generation:
                return False
            previous, self._state = self._state, state
            listeners = list(self._listeners)
        if previous.image is not None and previous.image is not state.image:
            previous.image.release()
        self._notify(listeners, state)
        return True

    @staticmethod
    def _notify(listeners: list[StateListener], state: DetectionState) -> None:
        for listener in listeners:
            try:
                listener(state)
            except Exception:
                logger.exception("Detection state listener failed")

    def cancel(self) -> None:
        """Drop the in-flight request; its result will not be published."""
        with self._lock:
            self._generation += 1
            if not self._state.is_loading:
                return
            state = DetectionState(image=self._state.image)
            self._state = state
            listeners = list(self._listeners)
        logger.debug("Cancelled in-flight request")
        self._notify(listeners, state)

    def reset(self) -> None:
        """Clear the state and release the shown image."""
        with self._lock:
            self._generation += 1
            previous, self._state = self._state, DetectionState()
            listeners = list(self._listeners)
        if previous.image is not None:
            previous.image.release()
        self._notify(listeners, self._state)

    def close(self) -> None:
        """Stop the worker, release the shown image and close the pipeline. Idempotent."""
        with self._lock:
            executor, self._executor = self._executor, None
            if executor is None:
                return
            self._generation += 1
            previous, self._state = self._state, DetectionState()
        executor.shutdown(wait=True, cancel_futures=True)
        if previous.image is not None:
            previous.image.release()
        self.pipeline.close()
