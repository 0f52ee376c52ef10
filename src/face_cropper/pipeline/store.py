"""Authoritative in-memory state of the images in a workspace."""

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Protocol

from face_cropper.config import AUTO_CLEANUP_AGE_SECONDS
from face_cropper.models import ImageRecord, ImageStatus, UndoSnapshot

logger = logging.getLogger(__name__)


class EvictionPolicy(Protocol):
    """Decides when a record's decoded pixels are released."""

    name: str

    def evict_on_complete(self, record: ImageRecord) -> bool: ...

    def should_sweep(self, record: ImageRecord, now: float) -> bool: ...


class ManualPolicy:
    """Pixels are released only by an explicit ``cleanup`` call."""

    name = "manual"

    def evict_on_complete(self, record: ImageRecord) -> bool:
        return False

    def should_sweep(self, record: ImageRecord, now: float) -> bool:
        return False


class AutoPolicy:
    """Completed records older than ``max_age`` seconds are released on sweep."""

    name = "auto"

    def __init__(self, max_age: float = AUTO_CLEANUP_AGE_SECONDS) -> None:
        self.max_age = max_age

    def evict_on_complete(self, record: ImageRecord) -> bool:
        return False

    def should_sweep(self, record: ImageRecord, now: float) -> bool:
        return (
            record.status == ImageStatus.COMPLETED
            and record.completed_at is not None
            and now - record.completed_at > self.max_age
        )


class AggressivePolicy:
    """Pixels are released as soon as a record completes."""

    name = "aggressive"

    def evict_on_complete(self, record: ImageRecord) -> bool:
        return True

    def should_sweep(self, record: ImageRecord, now: float) -> bool:
        return record.status == ImageStatus.COMPLETED


def policy_for_mode(mode: str, max_age: float = AUTO_CLEANUP_AGE_SECONDS) -> EvictionPolicy:
    if mode == "manual":
        return ManualPolicy()
    if mode == "auto":
        return AutoPolicy(max_age=max_age)
    if mode == "aggressive":
        return AggressivePolicy()
    raise ValueError(f"Unknown memory mode: {mode!r}")


class ImageRecordStore:
    """Ordered mapping of image id to record.

    Records keep their insertion order. Mutations are rejected with
    ``RuntimeError`` while an undo/redo restore is in progress.
    """

    def __init__(
        self,
        policy: EvictionPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or ManualPolicy()
        self._clock = clock
        self._records: dict[str, ImageRecord] = {}
        self._restoring = False
        self.active_image_index = 0
        self.active_face_index = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, image_id: object) -> bool:
        return image_id in self._records

    def __iter__(self) -> Iterator[ImageRecord]:
        return iter(list(self._records.values()))

    @contextmanager
    def restoring(self) -> Iterator[None]:
        self._restoring = True
        try:
            yield
        finally:
            self._restoring = False

    def _check_writable(self) -> None:
        if self._restoring:
            raise RuntimeError("Image store is being restored; mutation rejected")

    def upsert(self, record: ImageRecord) -> None:
        self._check_writable()
        self._records[record.id] = record

    def get(self, image_id: str) -> ImageRecord:
        try:
            return self._records[image_id]
        except KeyError:
            raise KeyError(f"Unknown image id: {image_id}") from None

    def remove(self, image_id: str) -> ImageRecord:
        self._check_writable()
        ids = list(self._records)
        position = ids.index(image_id) if image_id in self._records else -1
        record = self._records.pop(image_id, None)
        if record is None:
            raise KeyError(f"Unknown image id: {image_id}")

        if position < self.active_image_index:
            self.active_image_index -= 1
        if self.active_image_index >= len(self._records):
            self.active_image_index = max(0, len(self._records) - 1)
        if position == self.active_image_index or not self._records:
            self.active_face_index = 0
        return record

    def clear(self) -> None:
        self._check_writable()
        self._records.clear()
        self.active_image_index = 0
        self.active_face_index = 0

    def records(self) -> list[ImageRecord]:
        return list(self._records.values())

    def selected_records(self) -> list[ImageRecord]:
        return [record for record in self._records.values() if record.selected]

    def set_selected(self, image_id: str, selected: bool) -> None:
        self._check_writable()
        self.get(image_id).selected = selected

    def select_all(self) -> None:
        self._check_writable()
        for record in self._records.values():
            record.selected = True

    def select_none(self) -> None:
        self._check_writable()
        for record in self._records.values():
            record.selected = False

    def set_status(self, image_id: str, status: ImageStatus) -> None:
        self._check_writable()
        self.get(image_id).status = status

    def mark_completed(self, image_id: str) -> None:
        """Mark a record completed and apply the eviction policy to it."""
        self._check_writable()
        record = self.get(image_id)
        record.status = ImageStatus.COMPLETED
        record.completed_at = self._clock()
        if self.policy.evict_on_complete(record):
            self.cleanup(image_id)

    def cleanup(self, image_id: str) -> bool:
        """Release the decoded pixels of a record. Faces and results are kept.

        Returns:
            True if pixels were released, False if already cleaned.
        """
        self._check_writable()
        record = self.get(image_id)
        if record.memory_cleaned:
            return False
        record.image = None
        record.memory_cleaned = True
        logger.debug("Released pixels of %s (%s)", record.id, record.filename)
        return True

    def sweep(self) -> list[str]:
        """Apply the eviction policy to every record; return the ids cleaned."""
        now = self._clock()
        cleaned = [
            record.id
            for record in self.records()
            if not record.memory_cleaned and self.policy.should_sweep(record, now)
        ]
        for image_id in cleaned:
            self.cleanup(image_id)
        if cleaned:
            logger.info("Memory sweep (%s) released %d image(s)", self.policy.name, len(cleaned))
        return cleaned

    def cleanup_all(self) -> list[str]:
        """Release pixels of every completed record regardless of policy."""
        cleaned = [
            record.id
            for record in self.records()
            if record.status == ImageStatus.COMPLETED and not record.memory_cleaned
        ]
        for image_id in cleaned:
            self.cleanup(image_id)
        return cleaned

    def capture(self) -> UndoSnapshot:
        return UndoSnapshot(
            records=tuple(record.copy() for record in self._records.values()),
            active_image_index=self.active_image_index,
            active_face_index=self.active_face_index,
        )

    def restore(self, snapshot: UndoSnapshot) -> None:
        """Replace the full state with ``snapshot``."""
        self._check_writable()
        with self.restoring():
            self._records = {record.id: record.copy() for record in snapshot.records}
            self.active_image_index = snapshot.active_image_index
            self.active_face_index = snapshot.active_face_index
