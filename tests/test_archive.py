"""Tests for ZIP export."""

import zipfile
from io import BytesIO

from face_cropper.imaging.archive import build_archive, write_archive


def test_build_archive_contains_entries():
    data = build_archive([("a.png", b"one"), ("b.png", b"two")])
    with zipfile.ZipFile(BytesIO(data)) as zf:
        assert zf.namelist() == ["a.png", "b.png"]
        assert zf.read("b.png") == b"two"


def test_duplicate_names_are_suffixed():
    data = build_archive([("face.png", b"1"), ("face.png", b"2"), ("face.png", b"3")])
    with zipfile.ZipFile(BytesIO(data)) as zf:
        assert zf.namelist() == ["face.png", "face_1.png", "face_2.png"]
        assert zf.read("face_2.png") == b"3"


def test_write_archive(tmp_path):
    path = write_archive(tmp_path / "out" / "faces.zip", [("x.jpg", b"data")])
    assert path.exists()
    with zipfile.ZipFile(path) as zf:
        assert zf.read("x.jpg") == b"data"


def test_duplicate_names_keep_their_directory():
    data = build_archive([("team/face.png", b"1"), ("team/face.png", b"2"), ("face.png", b"3")])
    with zipfile.ZipFile(BytesIO(data)) as zf:
        assert zf.namelist() == ["team/face.png", "team/face_1.png", "face.png"]
