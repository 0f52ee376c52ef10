"""Spreadsheet name mapping, output filename templates and CSV reports."""

import csv
import logging
import re
import time
from collections.abc import Iterable
from pathlib import Path, PureWindowsPath

from face_cropper.models import BatchReport, ImageRecord, Settings, StreamedResult

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def _stem(filename: str) -> str:
    """Filename without its last extension."""
    name = PureWindowsPath(filename).name
    return re.sub(r"\.[^/.]+$", "", name)


class NameMapping:
    """Resolve an input filename to the output name given in a spreadsheet.

    Lookup order: exact filename, filename without extension, spreadsheet
    entries compared without their extension, then a partial match where one
    name contains the other. All comparisons are case-insensitive.
    """

    def __init__(self, mapping: dict[str, str] | None = None) -> None:
        self._mapping: dict[str, str] = {}
        for file_path, output_name in (mapping or {}).items():
            self.add(file_path, output_name)

    def __len__(self) -> int:
        return len(self._mapping)

    def add(self, file_path: str, output_name: str) -> None:
        filename = PureWindowsPath(file_path.strip()).name.lower()
        if filename and output_name.strip():
            self._mapping[filename] = output_name.strip()

    def lookup(self, filename: str) -> str | None:
        name = PureWindowsPath(filename).name.lower()
        if name in self._mapping:
            return self._mapping[name]

        stem = _stem(name)
        if stem in self._mapping:
            return self._mapping[stem]

        for key, output_name in self._mapping.items():
            if _stem(key) == stem:
                return output_name

        if stem:
            for key, output_name in self._mapping.items():
                key_stem = _stem(key)
                if key_stem and (key_stem in stem or stem in key_stem):
                    return output_name
        return None

    @classmethod
    def from_csv(
        cls,
        path: str | Path,
        file_column: str | int,
        name_column: str | int,
        encoding: str = "utf-8-sig",
    ) -> "NameMapping":
        """Build a mapping from two columns of a CSV file with a header row.

        Columns may be given by header name or by zero-based index.
        """
        with open(path, newline="", encoding=encoding) as f:
            reader = csv.reader(f)
            try:
                header = [column.strip() for column in next(reader)]
            except StopIteration:
                raise ValueError(f"CSV file is empty: {path}") from None
            file_idx = _column_index(header, file_column)
            name_idx = _column_index(header, name_column)
            if file_idx == name_idx:
                raise ValueError("File and name columns must be different")

            mapping = cls()
            for row in reader:
                if len(row) <= max(file_idx, name_idx):
                    continue
                mapping.add(row[file_idx], row[name_idx])

        logger.info("Built mapping for %d filename entries from %s", len(mapping), path)
        return mapping


def _column_index(header: list[str], column: str | int) -> int:
    if isinstance(column, int):
        if not 0 <= column < len(header):
            raise ValueError(f"Column index {column} out of range (0-{len(header) - 1})")
        return column
    if column.isdigit() and column not in header:
        return _column_index(header, int(column))
    try:
        return header.index(column)
    except ValueError:
        raise ValueError(f"Column {column!r} not found in CSV header {header}") from None


def render_filename(
    template: str,
    original_name: str,
    index: int,
    settings: Settings,
    output_name: str | None = None,
    timestamp: int | None = None,
) -> str:
    """Expand a naming template and append the extension for the output format.

    Tokens: ``{original}`` (input name without extension), ``{csv_name}``
    (spreadsheet name, falling back to the original), ``{index}`` (1-based face
    index), ``{timestamp}`` (milliseconds since the epoch), ``{width}`` and
    ``{height}``.
    """
    original = _stem(original_name) or "image"
    if timestamp is None:
        timestamp = int(time.time() * 1000)
    name = (
        (template or "{csv_name}")
        .replace("{csv_name}", output_name or original)
        .replace("{original}", original)
        .replace("{index}", str(index))
        .replace("{timestamp}", str(timestamp))
        .replace("{width}", str(settings.output_width))
        .replace("{height}", str(settings.output_height))
    )
    name = _UNSAFE_CHARS.sub("_", name).strip() or "face"
    return f"{name}.{settings.file_extension}"


REPORT_COLUMNS = ["image_id", "source_file", "output_name", "status", "faces", "crops", "files", "error"]


def write_csv_report(
    path: str | Path,
    report: BatchReport,
    records: Iterable[ImageRecord] = (),
    streamed: Iterable[StreamedResult] = (),
) -> Path:
    """Write one row per processed input with its outcome."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    errors = {error.image_id: error for error in report.errors}

    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(REPORT_COLUMNS)
        for record in records:
            error = errors.pop(record.id, None)
            writer.writerow(
                [
                    record.id,
                    record.filename,
                    record.output_name or "",
                    record.status.value,
                    len(record.faces),
                    len(record.results),
                    ";".join(result.filename for result in record.results),
                    error.message if error else "",
                ]
            )
        for item in streamed:
            writer.writerow(
                [
                    item.image_id,
                    item.filename,
                    item.output_name or "",
                    "completed",
                    item.face_count,
                    len(item.results),
                    ";".join(result.filename for result in item.results),
                    "",
                ]
            )
        # Failures of streamed inputs have no record of their own
        for error in errors.values():
            writer.writerow([error.image_id, error.filename, "", "error", 0, 0, "", error.message])
    return path
