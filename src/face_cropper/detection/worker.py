"""Background detection thread with a correlation-id request/response protocol."""

import logging
import queue
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

from face_cropper.errors import DetectionAttemptError, DetectionError, WorkerTimeoutError
from face_cropper.models import DetectionOptions, DetectorOutput

if TYPE_CHECKING:
    from face_cropper.detection.dispatcher import Detector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkerMessage:
    """Request sent to the worker thread (``detect`` or ``shutdown``)."""

    type: str
    correlation_id: str
    payload: Any = None


@dataclass(frozen=True)
class WorkerResponse:
    """Answer from the worker thread (``result`` or ``error``)."""

    type: str
    correlation_id: str
    result: DetectorOutput | None = None
    error: str | None = None


class DetectionWorker:
    """Runs a detector on a dedicated daemon thread.

    Each request gets a unique correlation id and an entry in the outstanding
    table. A request that times out removes its entry, so a response that
    arrives later finds no waiter and is discarded.
    """

    def __init__(
        self,
        detector_factory: Callable[[], "Detector"],
        name: str = "face-cropper.detector",
    ) -> None:
        self._detector_factory = detector_factory
        self._name = name
        self._inbox: queue.Queue[WorkerMessage] = queue.Queue()
        self._outstanding: dict[str, Future] = {}
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._thread: threading.Thread | None = None
        self._init_error: str | None = None
        self.discarded_responses = 0

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def pending_count(self) -> int:
        with self._lock:
            return len(self._outstanding)

    def start(self) -> None:
        if self.alive:
            return
        self._ready.clear()
        self._init_error = None
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def wait_ready(self, timeout: float | None = None) -> bool:
        """Block until the detector is built. Raises if construction failed."""
        ready = self._ready.wait(timeout)
        if self._init_error is not None:
            raise DetectionError(f"Detector initialization failed: {self._init_error}")
        return ready

    def stop(self, timeout: float | None = None) -> None:
        if self._thread is None:
            return
        self._inbox.put(WorkerMessage(type="shutdown", correlation_id=""))
        self._thread.join(timeout)
        self._thread = None
        self._fail_outstanding("Detection worker stopped")

    def request(
        self,
        pixels: np.ndarray,
        options: DetectionOptions,
        timeout: float,
    ) -> DetectorOutput:
        """Send one detection request and wait for its response.

        Raises:
            WorkerTimeoutError: No response within ``timeout`` seconds.
            DetectionAttemptError: The worker is not running or reported an error.
        """
        if not self.alive:
            raise DetectionAttemptError("Detection worker is not running")

        correlation_id = uuid.uuid4().hex
        future: Future = Future()
        with self._lock:
            self._outstanding[correlation_id] = future
        self._inbox.put(
            WorkerMessage(type="detect", correlation_id=correlation_id, payload=(pixels, options))
        )

        try:
            response: WorkerResponse = future.result(timeout=timeout)
        except TimeoutError:
            with self._lock:
                self._outstanding.pop(correlation_id, None)
            raise WorkerTimeoutError(f"Worker did not respond within {timeout:g}s") from None

        if response.type == "error":
            raise DetectionAttemptError(response.error or "Worker reported an error")
        return response.result

    def deliver(self, response: WorkerResponse) -> bool:
        """Hand a response to its waiter. Returns False if nobody is waiting."""
        with self._lock:
            future = self._outstanding.pop(response.correlation_id, None)
            if future is None:
                self.discarded_responses += 1
        if future is None:
            logger.debug("Discarded response for unknown request %s", response.correlation_id)
            return False
        future.set_result(response)
        return True

    def _run(self) -> None:
        try:
            detector = self._detector_factory()
        except Exception as e:
            logger.exception("Failed to initialize detector in %s", self._name)
            self._init_error = str(e)
            self._ready.set()
            self._drain_inbox(f"Detector initialization failed: {e}")
            return
        self._ready.set()
        logger.debug("Detection worker %s ready", self._name)

        while True:
            message = self._inbox.get()
            if message.type == "shutdown":
                break
            pixels, _options = message.payload
            try:
                output = detector.detect(pixels)
                response = WorkerResponse(
                    type="result", correlation_id=message.correlation_id, result=output
                )
            except Exception as e:
                logger.warning("Detection failed in worker: %s", e)
                response = WorkerResponse(
                    type="error", correlation_id=message.correlation_id, error=str(e)
                )
            self.deliver(response)
        logger.debug("Detection worker %s stopped", self._name)

    def _drain_inbox(self, error: str) -> None:
        while True:
            try:
                message = self._inbox.get_nowait()
            except queue.Empty:
                return
            if message.type == "detect":
                self.deliver(
                    WorkerResponse(type="error", correlation_id=message.correlation_id, error=error)
                )

    def _fail_outstanding(self, error: str) -> None:
        with self._lock:
            pending = list(self._outstanding.items())
            self._outstanding.clear()
        for correlation_id, future in pending:
            future.set_result(
                WorkerResponse(type="error", correlation_id=correlation_id, error=error)
            )
