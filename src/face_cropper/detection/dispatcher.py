"""Turn decoded images into face records, with retry and optional offload."""

import logging
import time
from collections.abc import Callable
from typing import Protocol

import numpy as np
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from face_cropper.config import (
    DEFAULT_CONFIDENCE,
    REDUCED_RESOLUTION_FACTOR,
    RETRY_BASE_DELAY_SECONDS,
    WORKER_TIMEOUT_SECONDS,
)
from face_cropper.detection.quality import assess_face_quality
from face_cropper.detection.worker import DetectionWorker
from face_cropper.errors import DetectionAttemptError, DetectionError
from face_cropper.imaging.raster import Rasterizer
from face_cropper.models import (
    DetectionOptions,
    DetectorOutput,
    FaceBox,
    FaceRecord,
    QualityLevel,
)

logger = logging.getLogger(__name__)


class Detector(Protocol):
    """Anything that can find faces in an RGB ``uint8`` array."""

    def detect(self, pixels: np.ndarray) -> DetectorOutput: ...


class DetectionDispatcher:
    """Run face detection in-process or on a background worker.

    Every request is attempted up to ``max_retries + 1`` times. The delay
    before retry ``k`` is ``k * base_delay`` seconds. When a worker is given
    and running it takes precedence over the in-process detector.
    """

    def __init__(
        self,
        detector: Detector | None = None,
        worker: DetectionWorker | None = None,
        rasterizer: Rasterizer | None = None,
        max_retries: int = 0,
        base_delay: float = RETRY_BASE_DELAY_SECONDS,
        timeout: float = WORKER_TIMEOUT_SECONDS,
        reduced_resolution_factor: float = REDUCED_RESOLUTION_FACTOR,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        if not 0 < reduced_resolution_factor <= 1:
            raise ValueError(
                f"reduced_resolution_factor must be in (0, 1], got {reduced_resolution_factor}"
            )
        self.detector = detector
        self.worker = worker
        self.rasterizer = rasterizer or Rasterizer()
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.timeout = timeout
        self.reduced_resolution_factor = reduced_resolution_factor
        self._sleep = sleep
        self.total_faces_detected = 0

    @property
    def available(self) -> bool:
        return self.detector is not None or self.worker is not None

    def detect_faces(
        self,
        image: np.ndarray,
        options: DetectionOptions | None = None,
    ) -> list[FaceRecord]:
        """Detect faces in ``image``.

        Args:
            image: Decoded RGB pixels.
            options: Per-request options. Defaults to full resolution with
                quality analysis.

        Returns:
            Face records in detector order, boxes clamped to the image. An
            empty list is a valid outcome.

        Raises:
            DetectionError: No detector is configured, or every attempt failed.
        """
        options = options or DetectionOptions()
        if not self.available:
            raise DetectionError("Face detection model not loaded")

        pixels = image
        factor_x = factor_y = 1.0
        if options.reduced_resolution:
            pixels = self.rasterizer.downscale(image, self.reduced_resolution_factor)
            factor_x = image.shape[1] / pixels.shape[1]
            factor_y = image.shape[0] / pixels.shape[0]

        attempts = self.max_retries + 1
        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
            retry=retry_if_exception_type(DetectionAttemptError),
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=True,
        )
        try:
            output = retrying(self._attempt, pixels, options)
        except DetectionAttemptError as e:
            raise DetectionError(
                f"Face detection failed after {attempts} attempts: {e}"
            ) from e

        faces = self._to_face_records(output, image, (factor_x, factor_y), options)
        self.total_faces_detected += len(faces)
        return faces

    def _attempt(self, pixels: np.ndarray, options: DetectionOptions) -> DetectorOutput:
        if self.worker is not None and (self.worker.alive or self.detector is None):
            return self.worker.request(pixels, options, timeout=self.timeout)
        try:
            return self.detector.detect(pixels)
        except DetectionAttemptError:
            raise
        except Exception as e:
            raise DetectionAttemptError(f"{type(e).__name__}: {e}") from e

    def _to_face_records(
        self,
        output: DetectorOutput,
        image: np.ndarray,
        factors: tuple[float, float],
        options: DetectionOptions,
    ) -> list[FaceRecord]:
        height, width = image.shape[:2]
        faces: list[FaceRecord] = []
        for i, raw_box in enumerate(output.boxes):
            box = FaceBox(*raw_box).scaled(*factors).clamped(width, height)
            if box.width <= 0 or box.height <= 0:
                logger.debug("Dropping face box outside the image: %s", raw_box)
                continue

            confidence = output.scores[i] if i < len(output.scores) else DEFAULT_CONFIDENCE
            if options.include_quality:
                score, level = assess_face_quality(image, box)
            else:
                score, level = 0.0, QualityLevel.UNKNOWN

            n = len(faces)
            faces.append(
                FaceRecord(
                    id=f"face_{n}",
                    box=box,
                    confidence=min(1.0, max(0.0, float(confidence))),
                    quality_score=score,
                    quality_level=level,
                    index=n + 1,
                )
            )
        return faces


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "Detection attempt %d failed (%s), retrying in %.2fs",
        retry_state.attempt_number,
        retry_state.outcome.exception(),
        retry_state.next_action.sleep,
    )
