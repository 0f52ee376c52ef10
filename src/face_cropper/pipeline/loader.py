"""Paginated intake of input files into the image record store."""

import logging
import uuid
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field

from face_cropper.config import PAGE_SIZE
from face_cropper.errors import DecodeError
from face_cropper.imaging.raster import Rasterizer
from face_cropper.models import FileBatch, FileRef, ImageRecord, ImageStatus, ItemError
from face_cropper.pipeline.naming import NameMapping
from face_cropper.pipeline.store import ImageRecordStore

logger = logging.getLogger(__name__)


@dataclass
class EnqueueResult:
    """Outcome of handing a set of files to the loader."""

    immediate: list[ImageRecord] = field(default_factory=list)
    queued: list[FileBatch] = field(default_factory=list)
    rejected: list[ItemError] = field(default_factory=list)


class StreamingLoader:
    """Decode the first page of files at once and queue the rest by page.

    Queued pages hold only undecoded file references. Paging in a batch
    releases the pixels of the batch paged in before it, so besides the first
    page at most one page of the tail is decoded at a time. Released records
    keep their faces and results and are decoded again when processed.
    """

    def __init__(
        self,
        store: ImageRecordStore,
        rasterizer: Rasterizer | None = None,
        page_size: int = PAGE_SIZE,
        name_mapping: NameMapping | None = None,
    ) -> None:
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        self.store = store
        self.rasterizer = rasterizer or Rasterizer()
        self.page_size = page_size
        self.name_mapping = name_mapping
        self._queue: deque[FileBatch] = deque()
        self._next_page = 0
        self._resident_ids: list[str] = []
        self.rejected: list[ItemError] = []

    @property
    def pending_batches(self) -> int:
        return len(self._queue)

    @property
    def has_pending(self) -> bool:
        return bool(self._queue)

    def enqueue(self, files: Iterable[FileRef]) -> EnqueueResult:
        files = list(files)
        result = EnqueueResult()
        if not files:
            return result

        first, rest = files[: self.page_size], files[self.page_size :]
        result.immediate, result.rejected = self._load(first, self._take_page())

        for start in range(0, len(rest), self.page_size):
            files_on_page = tuple(rest[start : start + self.page_size])
            batch = FileBatch(page=self._take_page(), files=files_on_page)
            self._queue.append(batch)
            result.queued.append(batch)

        if result.queued:
            logger.info(
                "Loaded %d file(s), queued %d more in %d page(s)",
                len(result.immediate),
                len(rest),
                len(result.queued),
            )
        return result

    def load_next_page(self) -> list[ImageRecord]:
        """Decode the oldest queued page into the store. Empty when nothing is queued."""
        if not self._queue:
            return []
        batch = self._queue.popleft()
        self._release_resident_page()
        records, _ = self._load(batch.files, batch.page)
        self._resident_ids = [record.id for record in records]
        return records

    def load_all(self) -> list[ImageRecord]:
        loaded: list[ImageRecord] = []
        while self._queue:
            loaded.extend(self.load_next_page())
        return loaded

    def queued_files(self) -> list[FileRef]:
        """Take every queued reference out of the loader, in order.

        Used to stream the tail through the batch processor without
        decoding it into the store.
        """
        files = [ref for batch in self._queue for ref in batch.files]
        self._queue.clear()
        return files

    def clear(self) -> None:
        self._queue.clear()
        self._resident_ids.clear()
        self.rejected.clear()

    def _release_resident_page(self) -> None:
        released = 0
        for image_id in self._resident_ids:
            if image_id in self.store and self.store.cleanup(image_id):
                released += 1
        if released:
            logger.debug("Released pixels of %d image(s) from the previous page", released)
        self._resident_ids = []

    def _take_page(self) -> int:
        page = self._next_page
        self._next_page += 1
        return page

    def _load(
        self, files: Iterable[FileRef], page: int
    ) -> tuple[list[ImageRecord], list[ItemError]]:
        records: list[ImageRecord] = []
        rejected: list[ItemError] = []
        for ref in files:
            image_id = uuid.uuid4().hex[:12]
            try:
                pixels = self.rasterizer.decode(ref)
            except DecodeError as e:
                error = ItemError(image_id, ref.name, e.kind, str(e))
                rejected.append(error)
                self.rejected.append(error)
                logger.warning("Skipping %s: %s", ref.name, e)
                continue

            record = ImageRecord(
                id=image_id,
                source=ref,
                image=pixels,
                status=ImageStatus.LOADED,
                output_name=self.name_mapping.lookup(ref.name) if self.name_mapping else None,
                page=page,
            )
            self.store.upsert(record)
            records.append(record)
        return records, rejected
