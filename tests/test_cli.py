"""End-to-end tests for the command line interface."""

import csv
import json
import zipfile

import pytest
from conftest import FakeDetector, encode_png, make_pixels

import face_cropper.db
import face_cropper.pipeline
from face_cropper.pipeline import main


@pytest.fixture
def photos(tmp_path):
    folder = tmp_path / "photos"
    folder.mkdir()
    for i in range(3):
        (folder / f"person_{i}.png").write_bytes(encode_png(make_pixels(300, 300, seed=i)))
    (folder / "notes.txt").write_text("not an image")
    return folder


@pytest.fixture(autouse=True)
def fake_backend(tmp_path, monkeypatch):
    monkeypatch.setattr(
        face_cropper.pipeline,
        "_build_detector",
        lambda device: FakeDetector(boxes=[(100, 80, 100, 120)]),
    )
    monkeypatch.setattr(face_cropper.db, "DB_PATH", tmp_path / "test.duckdb")


def test_run_writes_zip_and_report(photos, tmp_path, capsys):
    archive = tmp_path / "crops.zip"
    report = tmp_path / "report.csv"

    main(["run", str(photos), "--zip", str(archive), "--report", str(report)])

    with zipfile.ZipFile(archive) as zf:
        assert sorted(zf.namelist()) == [
            "face_person_0_1.png",
            "face_person_1_1.png",
            "face_person_2_1.png",
        ]
    with open(report, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert [row["status"] for row in rows] == ["completed"] * 3
    assert "Crops created: 3" in capsys.readouterr().out


def test_run_streams_beyond_first_page(photos, tmp_path):
    output_dir = tmp_path / "out"

    main(["run", str(photos), "--output-dir", str(output_dir), "--page-size", "1", "--worker"])

    assert sorted(p.name for p in output_dir.iterdir()) == [
        "face_person_0_1.png",
        "face_person_1_1.png",
        "face_person_2_1.png",
    ]


def test_run_with_name_mapping(photos, tmp_path):
    mapping = tmp_path / "names.csv"
    mapping.write_text("file,name\nperson_0.png,Alice\nperson_1.png,Bob\n", encoding="utf-8")
    output_dir = tmp_path / "out"

    main(
        [
            "run",
            str(photos),
            "--output-dir",
            str(output_dir),
            "--csv",
            str(mapping),
            "--file-column",
            "file",
            "--name-column",
            "name",
            "--template",
            "{csv_name}",
            "--format",
            "jpeg",
        ]
    )

    assert sorted(p.name for p in output_dir.iterdir()) == [
        "Alice.jpg",
        "Bob.jpg",
        "person_2.jpg",
    ]


def test_presets_round_trip(photos, tmp_path, capsys):
    main(["presets", "save", "badges", "--width", "400", "--height", "500", "--format", "webp"])
    main(["presets", "list"])
    assert "badges: 400x500" in capsys.readouterr().out

    exported = tmp_path / "badges.json"
    main(["presets", "export", "badges", str(exported)])
    data = json.loads(exported.read_text())
    assert data["name"] == "badges"
    assert data["output_width"] == 400
    assert data["output_format"] == "webp"

    main(["presets", "import", str(exported), "--name", "copy"])
    main(["presets", "delete", "badges"])
    capsys.readouterr()
    main(["presets", "list"])
    out = capsys.readouterr().out
    assert "copy: 400x500" in out
    assert "badges:" not in out

    output_dir = tmp_path / "out"
    main(["run", str(photos / "person_0.png"), "--preset", "copy", "--output-dir", str(output_dir)])
    assert [p.name for p in output_dir.iterdir()] == ["face_person_0_1.webp"]


def test_unknown_preset_exits(photos):
    with pytest.raises(SystemExit):
        main(["run", str(photos), "--preset", "missing"])


def test_no_command_prints_help(capsys):
    main([])
    assert "usage" in capsys.readouterr().out


def test_detect_lists_faces(photos, capsys):
    main(["detect", str(photos / "person_1.png")])
    out = capsys.readouterr().out
    assert "person_1.png: 300x300, 1 face(s)" in out
    assert "#1 (100, 80, 100x120)" in out
