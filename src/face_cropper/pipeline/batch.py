"""Sequential batch processing of loaded records and streamed file references."""

import logging
import time
import uuid
from collections import deque
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

import numpy as np

from face_cropper.config import PROCESSING_TIMES_WINDOW
from face_cropper.detection.dispatcher import DetectionDispatcher
from face_cropper.errors import EncodingError, FaceCropperError
from face_cropper.geometry import compute_crop_rectangle
from face_cropper.imaging.raster import Rasterizer
from face_cropper.models import (
    BatchReport,
    CropResult,
    DetectionOptions,
    FaceRecord,
    FileRef,
    ImageRecord,
    ImageStatus,
    ItemError,
    Settings,
    StreamedResult,
)
from face_cropper.pipeline.naming import NameMapping, render_filename
from face_cropper.pipeline.store import ImageRecordStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class BatchProcessor:
    """Detect and crop faces for a batch, one item at a time.

    Loaded records are updated in the store. Queued file references are
    decoded, processed and dropped; only their crops are kept, in
    ``streamed_results`` under a synthetic id.
    """

    def __init__(
        self,
        store: ImageRecordStore,
        dispatcher: DetectionDispatcher,
        rasterizer: Rasterizer | None = None,
        continue_on_error: bool = True,
        reduced_resolution: bool = False,
        include_quality: bool = True,
        redetect: bool = False,
        name_mapping: NameMapping | None = None,
        on_progress: ProgressCallback | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.rasterizer = rasterizer or Rasterizer()
        self.continue_on_error = continue_on_error
        self.options = DetectionOptions(
            reduced_resolution=reduced_resolution, include_quality=include_quality
        )
        self.redetect = redetect
        self.name_mapping = name_mapping
        self.on_progress = on_progress
        self._clock = clock
        self._cancelled = False
        self.streamed_results: dict[str, StreamedResult] = {}
        self.processing_times: deque[float] = deque(maxlen=PROCESSING_TIMES_WINDOW)

    def cancel(self) -> None:
        """Stop the running batch before its next item."""
        self._cancelled = True

    def run(
        self,
        loaded_records: Iterable[ImageRecord],
        queued_refs: Iterable[FileRef],
        settings: Settings,
    ) -> BatchReport:
        """Process loaded records first, then queued references, in input order.

        Args:
            loaded_records: Records already decoded into the store.
            queued_refs: Undecoded files to stream through the pipeline.
            settings: Crop and output settings.

        Returns:
            The aggregate report. With ``continue_on_error`` disabled, the
            report covers the items up to and including the first failure.
        """
        loaded = list(loaded_records)
        queued = list(queued_refs)
        work: list[tuple[Callable[..., bool], ImageRecord | FileRef]] = [
            (self._process_record, record) for record in loaded
        ] + [(self._process_ref, ref) for ref in queued]

        total = len(work)
        report = BatchReport(total=total)
        self._cancelled = False
        started = self._clock()
        logger.info("Starting batch of %d item(s) (%d streamed)", total, len(queued))

        for completed, (handler, item) in enumerate(work, start=1):
            if self._cancelled:
                report.cancelled = True
                logger.info("Batch cancelled after %d item(s)", completed - 1)
                break

            item_started = self._clock()
            succeeded = handler(item, settings, report)
            elapsed = self._clock() - item_started
            report.processing_times.append(elapsed)
            self.processing_times.append(elapsed)

            self.store.sweep()
            if self.on_progress is not None:
                self.on_progress(completed, total)

            if not succeeded and not self.continue_on_error:
                report.stopped_early = True
                logger.warning("Processing stopped due to error (continue on error disabled)")
                break

        report.elapsed_seconds = self._clock() - started
        logger.info(
            "Batch finished: %d succeeded, %d failed, %d face(s), %d crop(s)",
            report.succeeded,
            report.failed,
            report.faces_found,
            report.crops_created,
        )
        return report

    def crop_record(self, record: ImageRecord, settings: Settings) -> list[CropResult]:
        """Re-crop the selected faces of an already detected record."""
        pixels = record.image if record.image is not None else self.rasterizer.decode(record.source)
        results, _ = self._crop_faces(
            record.id, record.filename, record.output_name, pixels, record.faces, settings
        )
        record.results = results
        return results

    def all_results(self) -> list[CropResult]:
        """Crops of every record in the store followed by every streamed input."""
        results = [result for record in self.store.records() for result in record.results]
        for streamed in self.streamed_results.values():
            results.extend(streamed.results)
        return results

    def _process_record(self, record: ImageRecord, settings: Settings, report: BatchReport) -> bool:
        # Undo/redo may have replaced the stored record with a copy
        if record.id in self.store:
            record = self.store.get(record.id)
        else:
            self.store.upsert(record)
        self.store.set_status(record.id, ImageStatus.PROCESSING)

        try:
            pixels = record.image
            if pixels is None:
                pixels = self.rasterizer.decode(record.source)
            if self.redetect or not record.faces:
                record.faces = self.dispatcher.detect_faces(pixels, self.options)
            results, face_errors = self._crop_faces(
                record.id, record.filename, record.output_name, pixels, record.faces, settings
            )
        except FaceCropperError as e:
            self.store.set_status(record.id, ImageStatus.ERROR)
            self._record_failure(report, record.id, record.filename, e)
            return False

        record.results = results
        self.store.mark_completed(record.id)
        self._record_success(report, record.filename, record.faces, results, face_errors)
        return True

    def _process_ref(self, ref: FileRef, settings: Settings, report: BatchReport) -> bool:
        image_id = f"temp_{uuid.uuid4().hex[:12]}"
        output_name = self.name_mapping.lookup(ref.name) if self.name_mapping else None

        try:
            pixels = self.rasterizer.decode(ref)
            faces = self.dispatcher.detect_faces(pixels, self.options)
            results, face_errors = self._crop_faces(
                image_id, ref.name, output_name, pixels, faces, settings
            )
        except FaceCropperError as e:
            self._record_failure(report, image_id, ref.name, e)
            return False

        if results:
            self.streamed_results[image_id] = StreamedResult(
                image_id=image_id,
                filename=ref.name,
                output_name=output_name,
                results=results,
                processed_at=datetime.now(UTC),
                face_count=len(faces),
            )
        self._record_success(report, ref.name, faces, results, face_errors)
        return True

    def _crop_faces(
        self,
        image_id: str,
        filename: str,
        output_name: str | None,
        pixels: np.ndarray,
        faces: list[FaceRecord],
        settings: Settings,
    ) -> tuple[list[CropResult], list[ItemError]]:
        """Encode every selected face. A face that fails does not stop the others.

        Raises:
            EncodingError: Faces were selected but none of them could be encoded.
        """
        height, width = pixels.shape[:2]
        results: list[CropResult] = []
        errors: list[ItemError] = []
        selected = [face for face in faces if face.selected]

        for face in selected:
            box = face.box.clamped(width, height)
            try:
                if box.width <= 0 or box.height <= 0:
                    raise EncodingError(f"Face {face.id} lies outside the image")
                rect = compute_crop_rectangle(box, settings, width, height)
                payload = self.rasterizer.crop_and_encode(
                    pixels,
                    rect,
                    settings.output_width,
                    settings.output_height,
                    settings.output_format,
                    settings.encoding_quality,
                )
            except EncodingError as e:
                logger.warning("Failed to crop %s of %s: %s", face.id, filename, e)
                errors.append(ItemError(image_id, filename, e.kind, f"{face.id}: {e}"))
                continue

            results.append(
                CropResult(
                    face_id=face.id,
                    face_index=face.index,
                    payload=payload,
                    filename=render_filename(
                        settings.naming_template, filename, face.index, settings, output_name
                    ),
                    format=settings.output_format,
                    quality=settings.encoding_quality,
                    source_name=filename,
                    width=settings.output_width,
                    height=settings.output_height,
                )
            )

        if selected and not results:
            raise EncodingError(
                f"None of the {len(selected)} selected face(s) could be encoded",
                image_id=image_id,
                filename=filename,
            )
        return results, errors

    def _record_success(
        self,
        report: BatchReport,
        filename: str,
        faces: list[FaceRecord],
        results: list[CropResult],
        face_errors: list[ItemError],
    ) -> None:
        report.succeeded += 1
        report.faces_found += len(faces)
        report.crops_created += len(results)
        report.face_errors.extend(face_errors)
        logger.info("Processed %s: %d face(s) found", filename, len(faces))

    def _record_failure(
        self, report: BatchReport, image_id: str, filename: str, error: FaceCropperError
    ) -> None:
        error.image_id = error.image_id or image_id
        error.filename = error.filename or filename
        report.failed += 1
        report.errors.append(ItemError(image_id, filename, error.kind, str(error)))
        logger.error("Failed to process %s: %s", filename, error)
