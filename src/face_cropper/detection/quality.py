"""Face sharpness scoring based on the Laplacian response."""

import cv2
import numpy as np

from face_cropper.config import QUALITY_HIGH_THRESHOLD, QUALITY_MEDIUM_THRESHOLD
from face_cropper.imaging.raster import grayscale_samples
from face_cropper.models import FaceBox, QualityLevel

LAPLACIAN_KERNEL = np.array(
    [
        [-1, -1, -1],
        [-1, 8, -1],
        [-1, -1, -1],
    ],
    dtype=np.float64,
)


def laplacian_energy(gray: np.ndarray) -> float:
    """Mean squared 8-neighbour Laplacian over the interior pixels.

    Higher values mean a sharper region. Regions smaller than 3x3 score 0.
    """
    if gray.ndim != 2 or gray.shape[0] < 3 or gray.shape[1] < 3:
        return 0.0
    response = cv2.filter2D(gray.astype(np.float64), cv2.CV_64F, LAPLACIAN_KERNEL)
    interior = response[1:-1, 1:-1]
    return float(np.mean(interior * interior))


def classify_quality(score: float) -> QualityLevel:
    if score > QUALITY_HIGH_THRESHOLD:
        return QualityLevel.HIGH
    if score > QUALITY_MEDIUM_THRESHOLD:
        return QualityLevel.MEDIUM
    return QualityLevel.LOW


def assess_face_quality(pixels: np.ndarray, box: FaceBox) -> tuple[float, QualityLevel]:
    """Score the sharpness of the face at ``box``.

    Returns:
        ``(score, level)``; ``(0.0, UNKNOWN)`` when the box is outside the image.
    """
    samples = grayscale_samples(pixels, box)
    if samples.size == 0:
        return 0.0, QualityLevel.UNKNOWN
    score = laplacian_energy(samples)
    return score, classify_quality(score)
