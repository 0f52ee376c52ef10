"""Decode input files, sample face regions and encode crops."""

import logging
import math
from io import BytesIO

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from face_cropper.config import (
    MAX_FILE_SIZE_BYTES,
    MAX_IMAGE_DIMENSION,
    MIN_IMAGE_DIMENSION,
    QUALITY_MAX_DIMENSION,
)
from face_cropper.errors import DecodeError, EncodingError
from face_cropper.models import CropRect, FaceBox, FileRef

logger = logging.getLogger(__name__)

_PIL_FORMATS = {"png": "PNG", "jpeg": "JPEG", "webp": "WEBP"}
_GRAY_WEIGHTS = np.array([0.299, 0.587, 0.114])


class Rasterizer:
    """Pixel I/O for the pipeline. Images are held as RGB ``uint8`` arrays."""

    def __init__(
        self,
        max_file_size: int = MAX_FILE_SIZE_BYTES,
        min_dimension: int = MIN_IMAGE_DIMENSION,
        max_dimension: int = MAX_IMAGE_DIMENSION,
    ) -> None:
        self.max_file_size = max_file_size
        self.min_dimension = min_dimension
        self.max_dimension = max_dimension

    def decode(self, ref: FileRef) -> np.ndarray:
        """Decode a file into RGB pixels, applying EXIF orientation.

        Raises:
            DecodeError: The file is missing, too large, not an image, or its
                dimensions are outside the accepted range.
        """
        size = ref.size
        if size is not None and size > self.max_file_size:
            raise DecodeError(
                f"File too large: {size} bytes (max {self.max_file_size})", filename=ref.name
            )

        try:
            data = ref.read_bytes()
            with Image.open(BytesIO(data)) as img:
                img = ImageOps.exif_transpose(img)
                pixels = np.array(img.convert("RGB"))
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
            logger.warning("Rejected %s: %s", ref.name, e)
            raise DecodeError("Corrupted or invalid image file", filename=ref.name) from e

        height, width = pixels.shape[:2]
        if min(width, height) < self.min_dimension:
            raise DecodeError(
                f"Image too small: {width}x{height} (min {self.min_dimension}px)",
                filename=ref.name,
            )
        if max(width, height) > self.max_dimension:
            raise DecodeError(
                f"Image too large: {width}x{height} (max {self.max_dimension}px)",
                filename=ref.name,
            )
        return pixels

    def downscale(self, pixels: np.ndarray, factor: float) -> np.ndarray:
        height, width = pixels.shape[:2]
        size = (max(1, round(width * factor)), max(1, round(height * factor)))
        return cv2.resize(pixels, size, interpolation=cv2.INTER_AREA)

    def crop_and_encode(
        self,
        pixels: np.ndarray,
        rect: CropRect,
        width: int,
        height: int,
        output_format: str,
        quality: int,
    ) -> bytes:
        """Cut ``rect`` out of ``pixels``, resample to ``width`` x ``height`` and encode.

        Parts of the rectangle outside the image are filled by repeating the
        nearest edge pixel. Only the part inside the image and the output
        buffer are ever allocated, however large the rectangle is.

        Raises:
            EncodingError: The crop is empty or the encoder failed.
        """
        if output_format not in _PIL_FORMATS:
            raise EncodingError(f"Unsupported output format: {output_format}")

        img_h, img_w = pixels.shape[:2]
        x0, y0 = max(0, math.floor(rect.x)), max(0, math.floor(rect.y))
        x1 = min(img_w, math.ceil(rect.x + rect.width))
        y1 = min(img_h, math.ceil(rect.y + rect.height))
        if x1 <= x0 or y1 <= y0:
            raise EncodingError(f"Crop rectangle {rect} does not intersect the image")
        region = pixels[y0:y1, x0:x1]

        save_options: dict = {"format": _PIL_FORMATS[output_format]}
        if output_format == "jpeg":
            save_options["quality"] = quality
            save_options["optimize"] = True
        elif output_format == "webp":
            save_options["quality"] = quality

        try:
            resized = _sample_region(region, x0, y0, rect, width, height)
            buffer = BytesIO()
            Image.fromarray(resized).save(buffer, **save_options)
        except (cv2.error, OSError, ValueError, MemoryError) as e:
            raise EncodingError(f"Failed to encode crop: {e}") from e
        return buffer.getvalue()

    def grayscale_samples(self, pixels: np.ndarray, box: FaceBox) -> np.ndarray:
        return grayscale_samples(pixels, box)


def grayscale_samples(
    pixels: np.ndarray,
    box: FaceBox,
    max_dimension: int = QUALITY_MAX_DIMENSION,
) -> np.ndarray:
    """Return the luma of the face region as a float array.

    The region is clipped to the image and downscaled so its longer side is at
    most ``max_dimension``. An empty array is returned when the box lies
    entirely outside the image.
    """
    img_h, img_w = pixels.shape[:2]
    x = max(0, min(img_w, int(box.x)))
    y = max(0, min(img_h, int(box.y)))
    width = min(max(1, int(box.width)), img_w - x)
    height = min(max(1, int(box.height)), img_h - y)
    if width <= 0 or height <= 0:
        return np.empty((0, 0), dtype=np.float64)

    region = pixels[y : y + height, x : x + width]
    scale = min(1.0, max_dimension / max(width, height))
    if scale < 1.0:
        size = (max(1, int(width * scale)), max(1, int(height * scale)))
        region = cv2.resize(region, size, interpolation=cv2.INTER_AREA)

    if region.ndim == 2:
        return region.astype(np.float64)
    return region[..., :3].astype(np.float64) @ _GRAY_WEIGHTS


def _sample_region(
    region: np.ndarray,
    region_x: int,
    region_y: int,
    rect: CropRect,
    width: int,
    height: int,
) -> np.ndarray:
    """Resample the part of ``rect`` covered by ``region`` into a ``width`` x ``height`` image.

    ``region`` is the slice of the source starting at ``(region_x, region_y)``.
    When shrinking, the region is first area-averaged down to roughly the
    output scale; an affine warp then places it and replicates the border.
    """
    step_x = rect.width / width
    step_y = rect.height / height

    # Source pixels per region pixel after the optional pre-shrink
    kx = ky = 1.0
    if step_x > 1 or step_y > 1:
        reg_h, reg_w = region.shape[:2]
        size = (
            max(1, round(reg_w / max(step_x, 1.0))),
            max(1, round(reg_h / max(step_y, 1.0))),
        )
        region = cv2.resize(region, size, interpolation=cv2.INTER_AREA)
        kx, ky = reg_w / size[0], reg_h / size[1]

    # Maps output pixel centers to region pixel coordinates
    transform = np.array(
        [
            [step_x / kx, 0.0, (rect.x - region_x + step_x / 2) / kx - 0.5],
            [0.0, step_y / ky, (rect.y - region_y + step_y / 2) / ky - 0.5],
        ]
    )
    return cv2.warpAffine(
        np.ascontiguousarray(region),
        transform,
        (width, height),
        flags=cv2.INTER_LINEAR | cv2.WARP_INVERSE_MAP,
        borderMode=cv2.BORDER_REPLICATE,
    )
