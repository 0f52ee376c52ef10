"""Tests for crop rectangle computation."""

import pytest

from face_cropper.geometry import compute_crop_rectangle
from face_cropper.models import FaceBox, PositioningMode, Settings


def test_center_mode_scenario():
    face = FaceBox(100, 100, 200, 200)
    settings = Settings(output_width=256, output_height=256, face_height_fraction=0.7)

    rect = compute_crop_rectangle(face, settings, 800, 600)

    assert rect.width == pytest.approx(285.714, abs=1e-3)
    assert rect.height == pytest.approx(285.714, abs=1e-3)
    assert rect.x == pytest.approx(57.143, abs=1e-3)
    assert rect.y == pytest.approx(57.143, abs=1e-3)


def test_clamps_by_translation_at_far_edge():
    face = FaceBox(700, 500, 100, 100)
    settings = Settings(output_width=256, output_height=256, face_height_fraction=0.7)

    rect = compute_crop_rectangle(face, settings, 800, 600)

    # Size is preserved; only the origin moves
    assert rect.width == pytest.approx(142.857, abs=1e-3)
    assert rect.x + rect.width == pytest.approx(800)
    assert rect.y + rect.height == pytest.approx(600)


def test_clamps_at_origin():
    face = FaceBox(0, 0, 60, 60)
    rect = compute_crop_rectangle(face, Settings(), 800, 600)
    assert rect.x == 0
    assert rect.y == 0


def test_crop_larger_than_image_overhangs_far_edge():
    face = FaceBox(10, 10, 50, 50)
    settings = Settings(output_width=256, output_height=256, face_height_fraction=0.1)

    rect = compute_crop_rectangle(face, settings, 200, 200)

    assert rect.x == 0
    assert rect.y == 0
    assert rect.width == pytest.approx(500)
    assert rect.height == pytest.approx(500)


def test_rule_of_thirds_places_eye_line():
    face = FaceBox(300, 300, 200, 200)
    settings = Settings(positioning_mode=PositioningMode.RULE_OF_THIRDS)

    rect = compute_crop_rectangle(face, settings, 1000, 1000)

    crop = 256 / (256 * 0.7 / 200)
    eyes_y = 300 + 0.35 * 200
    assert rect.x == pytest.approx(400 - crop / 2)
    assert rect.y == pytest.approx(eyes_y - crop / 3 - crop / 2)


def test_rule_of_thirds_eye_line_ratio_is_overridable():
    face = FaceBox(300, 300, 200, 200)
    settings = Settings(positioning_mode="rule-of-thirds")

    default = compute_crop_rectangle(face, settings, 1000, 1000)
    lower = compute_crop_rectangle(face, settings, 1000, 1000, eye_line_ratio=0.45)

    assert lower.y == pytest.approx(default.y + 0.10 * 200)


def test_custom_mode_offsets():
    face = FaceBox(300, 300, 200, 200)
    settings = Settings(
        positioning_mode=PositioningMode.CUSTOM, horizontal_offset=0.5, vertical_offset=-0.5
    )

    rect = compute_crop_rectangle(face, settings, 1000, 1000)

    crop = 256 / (256 * 0.7 / 200)
    assert rect.x == pytest.approx(400 + 0.5 * crop / 2 - crop / 2)
    assert rect.y == pytest.approx(400 - 0.5 * crop / 2 - crop / 2)


def test_center_mode_ignores_offsets():
    face = FaceBox(300, 300, 200, 200)
    plain = compute_crop_rectangle(face, Settings(), 1000, 1000)
    offset = compute_crop_rectangle(
        face, Settings(horizontal_offset=0.8, vertical_offset=0.8), 1000, 1000
    )
    assert offset == plain


def test_non_square_output():
    face = FaceBox(300, 300, 100, 100)
    settings = Settings(output_width=413, output_height=531, face_height_fraction=0.5)

    rect = compute_crop_rectangle(face, settings, 1000, 1000)

    assert rect.height == pytest.approx(200)
    assert rect.width / rect.height == pytest.approx(413 / 531)


def test_rectangle_always_within_image_when_it_fits():
    image_w, image_h = 640, 480
    modes = ["center", "rule-of-thirds", "custom"]
    boxes = [
        FaceBox(0, 0, 40, 40),
        FaceBox(600, 440, 40, 40),
        FaceBox(300, 200, 80, 120),
        FaceBox(10, 400, 60, 80),
        FaceBox(500, 5, 100, 100),
    ]
    for mode in modes:
        for offset in (-1.0, 0.0, 1.0):
            for fraction in (0.4, 0.7, 1.0):
                settings = Settings(
                    output_width=200,
                    output_height=240,
                    face_height_fraction=fraction,
                    positioning_mode=mode,
                    horizontal_offset=offset,
                    vertical_offset=offset,
                )
                for box in boxes:
                    rect = compute_crop_rectangle(box, settings, image_w, image_h)
                    if rect.width > image_w or rect.height > image_h:
                        continue
                    assert rect.x >= 0
                    assert rect.y >= 0
                    assert rect.x + rect.width <= image_w + 1e-9
                    assert rect.y + rect.height <= image_h + 1e-9


def test_zero_height_face_rejected():
    with pytest.raises(ValueError):
        compute_crop_rectangle(FaceBox(10, 10, 10, 0), Settings(), 100, 100)
