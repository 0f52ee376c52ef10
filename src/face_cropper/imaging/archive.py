"""ZIP export of encoded crops."""

import zipfile
from collections.abc import Iterable
from io import BytesIO
from pathlib import Path, PurePosixPath


def build_archive(entries: Iterable[tuple[str, bytes]]) -> bytes:
    """Pack ``(filename, payload)`` pairs into an in-memory ZIP archive.

    Repeated filenames get a numeric suffix so no entry is shadowed.
    """
    buffer = BytesIO()
    seen: dict[str, int] = {}
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for filename, payload in entries:
            zf.writestr(_unique_name(filename, seen), payload)
    return buffer.getvalue()


def write_archive(path: str | Path, entries: Iterable[tuple[str, bytes]]) -> Path:
    """Write the archive for ``entries`` to ``path`` and return the path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(build_archive(entries))
    return path


def _unique_name(filename: str, seen: dict[str, int]) -> str:
    count = seen.get(filename, 0)
    seen[filename] = count + 1
    if count == 0:
        return filename
    name = PurePosixPath(filename)
    candidate = str(name.with_name(f"{name.stem}_{count}{name.suffix}"))
    while candidate in seen:
        count += 1
        candidate = str(name.with_name(f"{name.stem}_{count}{name.suffix}"))
    seen[candidate] = 1
    return candidate
