"""Bounded undo/redo over the image record store."""

import logging
from collections import deque

from face_cropper.config import HISTORY_LIMIT
from face_cropper.errors import EmptyHistory
from face_cropper.models import ImageRecord, UndoSnapshot
from face_cropper.pipeline.store import ImageRecordStore

logger = logging.getLogger(__name__)


class UndoRedoManager:
    """Snapshot/restore history for an :class:`ImageRecordStore`.

    Callers take a snapshot right before each destructive mutation; the
    manager does not detect mutations on its own. Both histories hold at most
    ``limit`` entries and drop the oldest when full.
    """

    def __init__(self, store: ImageRecordStore, limit: int = HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError(f"History limit must be >= 1, got {limit}")
        self.store = store
        self.limit = limit
        self._undo: deque[UndoSnapshot] = deque(maxlen=limit)
        self._redo: deque[UndoSnapshot] = deque(maxlen=limit)

    @property
    def undo_history(self) -> tuple[UndoSnapshot, ...]:
        """Undo entries, oldest first."""
        return tuple(self._undo)

    @property
    def redo_history(self) -> tuple[UndoSnapshot, ...]:
        return tuple(self._redo)

    def can_undo(self) -> bool:
        return bool(self._undo)

    def can_redo(self) -> bool:
        return bool(self._redo)

    def snapshot(self) -> None:
        """Record the current state and invalidate the redo history."""
        self._undo.append(self.store.capture())
        self._redo.clear()

    def undo(self) -> None:
        if not self._undo:
            raise EmptyHistory("Nothing to undo")
        self._redo.append(self.store.capture())
        self.store.restore(self._undo.pop())
        logger.debug("Undo (remaining %d)", len(self._undo))

    def redo(self) -> None:
        if not self._redo:
            raise EmptyHistory("Nothing to redo")
        self._undo.append(self.store.capture())
        self.store.restore(self._redo.pop())
        logger.debug("Redo (remaining %d)", len(self._redo))

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()


class Workspace:
    """User-facing selection edits, each preceded by an undo snapshot."""

    def __init__(self, store: ImageRecordStore, history: UndoRedoManager | None = None) -> None:
        self.store = store
        self.history = history or UndoRedoManager(store)

    def toggle_face(self, image_id: str, face_id: str) -> bool:
        """Flip the selection of one face and return its new state."""
        record = self.store.get(image_id)
        face = next((f for f in record.faces if f.id == face_id), None)
        if face is None:
            raise KeyError(f"Unknown face {face_id} in image {image_id}")
        self.history.snapshot()
        face.selected = not face.selected
        return face.selected

    def clear_face_selection(self, image_id: str | None = None) -> None:
        """Deselect every face of one image, or of all images."""
        records = [self.store.get(image_id)] if image_id else self.store.records()
        self.history.snapshot()
        for record in records:
            for face in record.faces:
                face.selected = False

    def remove_image(self, image_id: str) -> ImageRecord:
        self.store.get(image_id)
        self.history.snapshot()
        return self.store.remove(image_id)

    def toggle_image(self, image_id: str) -> bool:
        record = self.store.get(image_id)
        self.history.snapshot()
        self.store.set_selected(image_id, not record.selected)
        return record.selected

    def undo(self) -> None:
        self.history.undo()

    def redo(self) -> None:
        self.history.redo()
