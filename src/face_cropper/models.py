"""Data models for the face-cropping pipeline."""

import json
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

import numpy as np

from face_cropper.config import (
    DEFAULT_NAMING_TEMPLATE,
    MAX_OUTPUT_DIMENSION,
    MIN_OUTPUT_DIMENSION,
    SIZE_PRESETS,
)

OUTPUT_FORMATS = ("png", "jpeg", "webp")
SETTINGS_FORMAT_VERSION = "1.0"


class ImageStatus(str, Enum):
    """Lifecycle state of an image in the workspace."""

    LOADED = "loaded"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class PositioningMode(str, Enum):
    """How the crop window is placed around a face."""

    CENTER = "center"
    RULE_OF_THIRDS = "rule-of-thirds"
    CUSTOM = "custom"


class QualityLevel(str, Enum):
    """Sharpness bucket derived from the Laplacian variance of a face."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FileRef:
    """An input file that may not have been decoded yet."""

    name: str
    path: Path | None = None
    data: bytes | None = field(default=None, repr=False)

    @classmethod
    def from_path(cls, path: str | Path) -> "FileRef":
        path = Path(path)
        return cls(name=path.name, path=path)

    @property
    def size(self) -> int | None:
        """Size in bytes, when it can be known without reading the file."""
        if self.data is not None:
            return len(self.data)
        if self.path is not None and self.path.exists():
            return self.path.stat().st_size
        return None

    def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is None:
            raise FileNotFoundError(f"No data or path for {self.name}")
        return self.path.read_bytes()


@dataclass(frozen=True)
class FileBatch:
    """A page of undecoded file references waiting to be loaded."""

    page: int
    files: tuple[FileRef, ...]

    def __len__(self) -> int:
        return len(self.files)


@dataclass(frozen=True)
class FaceBox:
    """Face bounding box in source-image pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def scaled(self, factor: float, factor_y: float | None = None) -> "FaceBox":
        """Scale by ``factor``, or by ``factor`` on x and ``factor_y`` on y."""
        fy = factor if factor_y is None else factor_y
        return FaceBox(self.x * factor, self.y * fy, self.width * factor, self.height * fy)

    def clamped(self, image_width: int, image_height: int) -> "FaceBox":
        """Return the part of the box that lies inside the image."""
        x1 = min(max(self.x, 0.0), float(image_width))
        y1 = min(max(self.y, 0.0), float(image_height))
        x2 = min(max(self.x + self.width, 0.0), float(image_width))
        y2 = min(max(self.y + self.height, 0.0), float(image_height))
        return FaceBox(x1, y1, x2 - x1, y2 - y1)


@dataclass
class FaceRecord:
    """A detected face within one image."""

    id: str  # unique within the owning image, e.g. "face_0"
    box: FaceBox
    confidence: float
    quality_score: float = 0.0
    quality_level: QualityLevel = QualityLevel.UNKNOWN
    selected: bool = True
    index: int = 1


@dataclass(frozen=True)
class CropRect:
    """Crop window in source-image pixels. May overhang the far edge."""

    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class CropResult:
    """One encoded face crop."""

    face_id: str
    face_index: int
    payload: bytes = field(repr=False)
    filename: str
    format: str
    quality: int
    source_name: str
    width: int
    height: int


@dataclass
class ImageRecord:
    """Authoritative workspace state of a single image."""

    id: str
    source: FileRef
    image: np.ndarray | None = field(default=None, repr=False, compare=False)
    faces: list[FaceRecord] = field(default_factory=list)
    results: list[CropResult] = field(default_factory=list)
    selected: bool = True
    status: ImageStatus = ImageStatus.LOADED
    output_name: str | None = None
    memory_cleaned: bool = False
    completed_at: float | None = None
    page: int = 0

    @property
    def filename(self) -> str:
        return self.source.name

    @property
    def size(self) -> tuple[int, int] | None:
        """(width, height) of the decoded image, or None once released."""
        if self.image is None:
            return None
        height, width = self.image.shape[:2]
        return width, height

    def selected_faces(self) -> list[FaceRecord]:
        return [face for face in self.faces if face.selected]

    def copy(self) -> "ImageRecord":
        """Copy faces and the results list; pixel data is shared, never mutated in place."""
        return replace(
            self,
            faces=[replace(face) for face in self.faces],
            results=list(self.results),
        )


@dataclass(frozen=True)
class UndoSnapshot:
    """Copy of every record plus the active image and face cursors."""

    records: tuple[ImageRecord, ...]
    active_image_index: int = 0
    active_face_index: int = 0


@dataclass(frozen=True)
class DetectionOptions:
    """Per-request options sent to the detector."""

    reduced_resolution: bool = False
    include_quality: bool = True


@dataclass(frozen=True)
class DetectorOutput:
    """Raw detector answer: (x, y, width, height) boxes with matching scores."""

    boxes: list[tuple[float, float, float, float]]
    scores: list[float]


@dataclass(frozen=True)
class Settings:
    """Crop and output configuration."""

    output_width: int = 256
    output_height: int = 256
    face_height_fraction: float = 0.7
    positioning_mode: PositioningMode = PositioningMode.CENTER
    vertical_offset: float = 0.0
    horizontal_offset: float = 0.0
    aspect_ratio_locked: bool = False
    locked_ratio: float | None = None
    output_format: str = "png"
    quality: int = 85
    naming_template: str = DEFAULT_NAMING_TEMPLATE

    def __post_init__(self) -> None:
        object.__setattr__(self, "positioning_mode", PositioningMode(self.positioning_mode))
        object.__setattr__(self, "output_format", _normalize_format(self.output_format))
        if self.output_width <= 0 or self.output_height <= 0:
            raise ValueError(
                f"Output size must be positive, got {self.output_width}x{self.output_height}"
            )
        if not 0 < self.face_height_fraction <= 1:
            raise ValueError(
                f"face_height_fraction must be in (0, 1], got {self.face_height_fraction}"
            )
        if not 1 <= self.quality <= 100:
            raise ValueError(f"quality must be in [1, 100], got {self.quality}")
        for name in ("vertical_offset", "horizontal_offset"):
            if not -1 <= getattr(self, name) <= 1:
                raise ValueError(f"{name} must be in [-1, 1], got {getattr(self, name)}")
        if self.aspect_ratio_locked and self.locked_ratio is None:
            object.__setattr__(self, "locked_ratio", self.output_width / self.output_height)

    @property
    def encoding_quality(self) -> int:
        """Quality passed to the encoder; lossless PNG always reports 100."""
        return self.quality if self.output_format in ("jpeg", "webp") else 100

    @property
    def file_extension(self) -> str:
        return "jpg" if self.output_format == "jpeg" else self.output_format

    def lock_aspect_ratio(self, locked: bool = True) -> "Settings":
        ratio = self.output_width / self.output_height if locked else None
        return replace(self, aspect_ratio_locked=locked, locked_ratio=ratio)

    def with_width(self, width: int) -> "Settings":
        """Change the width, keeping the locked aspect ratio if there is one."""
        if self.aspect_ratio_locked and self.locked_ratio:
            height = _clamp_dimension(round(width / self.locked_ratio))
            return replace(self, output_width=width, output_height=height)
        return replace(self, output_width=width)

    def with_height(self, height: int) -> "Settings":
        """Change the height, keeping the locked aspect ratio if there is one."""
        if self.aspect_ratio_locked and self.locked_ratio:
            width = _clamp_dimension(round(height * self.locked_ratio))
            return replace(self, output_width=width, output_height=height)
        return replace(self, output_height=height)

    def with_size_preset(self, preset: str) -> "Settings":
        if preset not in SIZE_PRESETS:
            raise ValueError(f"Unknown size preset: {preset!r}")
        width, height = SIZE_PRESETS[preset]
        locked_ratio = width / height if self.aspect_ratio_locked else None
        return replace(self, output_width=width, output_height=height, locked_ratio=locked_ratio)

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["positioning_mode"] = self.positioning_mode.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """Build settings from a flat mapping; missing or null fields use the defaults.

        Keys exported by the browser version (``outputWidth``, ``faceHeightPct``,
        ``jpegQuality`` ...) are accepted as well; percentages are converted to
        fractions and zero or empty values fall back to the defaults.
        """
        values: dict = {}
        for key, (name, factor) in _LEGACY_KEYS.items():
            if data.get(key):
                values[name] = data[key] * factor if factor != 1 else data[key]
        for f in fields(cls):
            if data.get(f.name) is not None:
                values[f.name] = data[f.name]

        for name in ("output_width", "output_height", "quality"):
            if name in values:
                values[name] = int(values[name])
        for name in ("face_height_fraction", "vertical_offset", "horizontal_offset"):
            if name in values:
                values[name] = float(values[name])
        if "locked_ratio" in values:
            values["locked_ratio"] = float(values["locked_ratio"])
        if "aspect_ratio_locked" in values:
            values["aspect_ratio_locked"] = bool(values["aspect_ratio_locked"])
        return cls(**values)


_LEGACY_KEYS: dict[str, tuple[str, float]] = {
    "outputWidth": ("output_width", 1),
    "outputHeight": ("output_height", 1),
    "faceHeightPct": ("face_height_fraction", 0.01),
    "positioningMode": ("positioning_mode", 1),
    "verticalOffset": ("vertical_offset", 0.01),
    "horizontalOffset": ("horizontal_offset", 0.01),
    "aspectRatioLocked": ("aspect_ratio_locked", 1),
    "outputFormat": ("output_format", 1),
    "jpegQuality": ("quality", 1),
    "namingTemplate": ("naming_template", 1),
}


def _normalize_format(value: str) -> str:
    fmt = str(value).lower()
    if fmt == "jpg":
        fmt = "jpeg"
    if fmt not in OUTPUT_FORMATS:
        raise ValueError(f"Unsupported output format: {value!r}")
    return fmt


def _clamp_dimension(value: int) -> int:
    return max(MIN_OUTPUT_DIMENSION, min(MAX_OUTPUT_DIMENSION, value))


@dataclass(frozen=True)
class SettingsSnapshot:
    """A named, timestamped copy of the settings, serializable to JSON."""

    name: str
    settings: Settings
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_json(self) -> str:
        payload = {
            "name": self.name,
            "timestamp": self.timestamp.isoformat(),
            "version": SETTINGS_FORMAT_VERSION,
            **self.settings.to_dict(),
        }
        return json.dumps(payload, indent=2)

    @classmethod
    def from_json(cls, text: str, name: str | None = None) -> "SettingsSnapshot":
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("Settings file must contain a JSON object")
        raw_timestamp = data.get("timestamp") or data.get("exportedAt")
        timestamp = datetime.fromisoformat(raw_timestamp) if raw_timestamp else datetime.now(UTC)
        return cls(
            name=name or data.get("name") or "imported",
            settings=Settings.from_dict(data),
            timestamp=timestamp,
        )


@dataclass(frozen=True)
class ItemError:
    """A terminal failure attributed to one input image."""

    image_id: str
    filename: str
    kind: str
    message: str


@dataclass
class StreamedResult:
    """Crops kept for an input that was processed without entering the store."""

    image_id: str
    filename: str
    output_name: str | None
    results: list[CropResult]
    processed_at: datetime
    face_count: int = 0


@dataclass
class BatchReport:
    """Aggregate outcome of one batch run."""

    total: int
    succeeded: int = 0
    failed: int = 0
    faces_found: int = 0
    crops_created: int = 0
    stopped_early: bool = False
    cancelled: bool = False
    elapsed_seconds: float = 0.0
    processing_times: list[float] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)
    face_errors: list[ItemError] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed

    @property
    def unattempted(self) -> int:
        return self.total - self.attempted

    @property
    def average_time(self) -> float:
        if not self.processing_times:
            return 0.0
        return sum(self.processing_times) / len(self.processing_times)

    @property
    def success_rate(self) -> float:
        if self.attempted == 0:
            return 0.0
        return self.succeeded / self.attempted
