"""InsightFace wrapper implementing the detector interface."""

import cv2
import numpy as np
from insightface.app import FaceAnalysis

from face_cropper.config import DETECTOR_DEVICE, DETECTOR_INPUT_SIZE, DETECTOR_MODEL_NAME
from face_cropper.models import DetectorOutput


class InsightFaceDetector:
    """Detect faces with an InsightFace model pack (SCRFD detector only)."""

    def __init__(
        self,
        model_name: str = DETECTOR_MODEL_NAME,
        device: str = DETECTOR_DEVICE,
        det_size: tuple[int, int] = DETECTOR_INPUT_SIZE,
    ) -> None:
        providers = (
            ["CUDAExecutionProvider", "CPUExecutionProvider"]
            if device == "cuda"
            else ["CPUExecutionProvider"]
        )
        self.app = FaceAnalysis(name=model_name, providers=providers, allowed_modules=["detection"])
        self.app.prepare(ctx_id=0 if device == "cuda" else -1, det_size=det_size)

    def detect(self, pixels: np.ndarray) -> DetectorOutput:
        """Detect faces in RGB pixels.

        Returns:
            Boxes as ``(x, y, width, height)`` in pixel space, with detection scores.
        """
        bgr = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
        faces = self.app.get(bgr)

        boxes = []
        scores = []
        for face in faces:
            x1, y1, x2, y2 = face.bbox.astype(float)
            boxes.append((x1, y1, x2 - x1, y2 - y1))
            scores.append(float(face.det_score))
        return DetectorOutput(boxes=boxes, scores=scores)
