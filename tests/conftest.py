"""Shared test fixtures."""

from io import BytesIO

import duckdb
import numpy as np
import pytest
from PIL import Image

from face_cropper.models import DetectorOutput, FaceBox, FaceRecord, FileRef, ImageRecord
from face_cropper.presets.schema import ensure_schema


@pytest.fixture
def db_conn():
    """In-memory DuckDB connection with schema initialized."""
    conn = duckdb.connect(":memory:")
    ensure_schema(conn)
    yield conn
    conn.close()


def make_pixels(width: int = 800, height: int = 600, seed: int = 0) -> np.ndarray:
    """Random RGB image."""
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)


def encode_png(pixels: np.ndarray) -> bytes:
    buffer = BytesIO()
    Image.fromarray(pixels).save(buffer, format="PNG")
    return buffer.getvalue()


def make_ref(name: str = "photo.png", width: int = 120, height: int = 90) -> FileRef:
    """In-memory PNG file reference."""
    return FileRef(name=name, data=encode_png(make_pixels(width, height)))


def make_face(index: int, x: float, y: float, width: float, height: float) -> FaceRecord:
    return FaceRecord(
        id=f"face_{index}",
        box=FaceBox(x, y, width, height),
        confidence=0.9,
        index=index + 1,
    )


def make_record(
    image_id: str,
    width: int = 800,
    height: int = 600,
    faces: list[FaceRecord] | None = None,
    name: str | None = None,
) -> ImageRecord:
    """Decoded record whose source bytes match its pixels."""
    pixels = make_pixels(width, height)
    return ImageRecord(
        id=image_id,
        source=FileRef(name=name or f"{image_id}.png", data=encode_png(pixels)),
        image=pixels,
        faces=faces or [],
    )


class FakeDetector:
    """Detector returning fixed boxes; records the shape of every input."""

    def __init__(self, boxes=None, scores=None):
        self.boxes = boxes if boxes is not None else [(100.0, 100.0, 200.0, 200.0)]
        self.scores = scores if scores is not None else [0.95] * len(self.boxes)
        self.calls: list[tuple[int, ...]] = []

    def detect(self, pixels: np.ndarray) -> DetectorOutput:
        self.calls.append(pixels.shape)
        return DetectorOutput(boxes=list(self.boxes), scores=list(self.scores))


class ScriptedDetector:
    """Detector that plays back a list of outcomes, one per call.

    Exceptions in the script are raised; anything else is returned.
    """

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def detect(self, pixels: np.ndarray) -> DetectorOutput:
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


ONE_FACE = DetectorOutput(boxes=[(100.0, 100.0, 200.0, 200.0)], scores=[0.9])
NO_FACES = DetectorOutput(boxes=[], scores=[])
