"""Face-centered crop rectangle computation."""

from face_cropper.config import EYE_LINE_RATIO
from face_cropper.models import CropRect, FaceBox, PositioningMode, Settings


def compute_crop_rectangle(
    face: FaceBox,
    settings: Settings,
    image_width: int,
    image_height: int,
    eye_line_ratio: float = EYE_LINE_RATIO,
) -> CropRect:
    """Compute the source rectangle that frames ``face`` for the requested output.

    The crop is scaled so the face occupies ``face_height_fraction`` of the
    output height, centered according to the positioning mode, then translated
    back inside the image. On an axis where the crop is larger than the image
    the origin is pinned to 0 and the crop overhangs the far edge.

    Args:
        face: Face bounding box in source pixels.
        settings: Output size and positioning settings.
        image_width: Source image width in pixels.
        image_height: Source image height in pixels.
        eye_line_ratio: Fraction of the face height, from the top of the box,
            where the eyes are assumed to sit in rule-of-thirds mode.

    Returns:
        The crop rectangle in source pixels.
    """
    if face.height <= 0:
        raise ValueError(f"Face height must be positive, got {face.height}")

    scale = (settings.output_height * settings.face_height_fraction) / face.height
    crop_width = settings.output_width / scale
    crop_height = settings.output_height / scale

    center_x, center_y = face.center
    mode = settings.positioning_mode
    if mode == PositioningMode.RULE_OF_THIRDS:
        target_x = center_x + settings.horizontal_offset * crop_width / 2
        eyes_y = face.y + face.height * eye_line_ratio
        target_y = eyes_y - crop_height / 3
    elif mode == PositioningMode.CUSTOM:
        target_x = center_x + settings.horizontal_offset * crop_width / 2
        target_y = center_y + settings.vertical_offset * crop_height / 2
    else:
        target_x, target_y = center_x, center_y

    x = _clamp_origin(target_x - crop_width / 2, crop_width, image_width)
    y = _clamp_origin(target_y - crop_height / 2, crop_height, image_height)
    return CropRect(x=x, y=y, width=crop_width, height=crop_height)


def _clamp_origin(origin: float, length: float, limit: int) -> float:
    if length >= limit:
        return 0.0
    return max(0.0, min(limit - length, origin))
