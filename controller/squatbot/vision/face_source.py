"""
Webcam face source for the vision client.
Grabs frames with OpenCV and runs MediaPipe face detection on them.
"""

from __future__ import annotations

import logging
from typing import List, Optional

# Optional deps
try:
    import cv2  # type: ignore
except Exception:
    cv2 = None

try:
    import mediapipe as mp  # type: ignore
except Exception:
    mp = None

from ..game import BoundingBox, Detection

logger = logging.getLogger(__name__)


def detections_from_result(result, frame_width: int, frame_height: int) -> List[Detection]:
    """Convert MediaPipe's relative boxes to pixel-space detections."""
    detections: List[Detection] = []
    for item in getattr(result, "detections", None) or ():
        location = getattr(item, "location_data", None)
        box = getattr(location, "relative_bounding_box", None) if location is not None else None
        score = float(item.score[0]) if getattr(item, "score", None) else 0.0
        if box is None:
            detections.append(Detection(bounding_box=None, score=score))
            continue
        detections.append(
            Detection(
                bounding_box=BoundingBox(
                    origin_x=box.xmin * frame_width,
                    origin_y=box.ymin * frame_height,
                    width=box.width * frame_width,
                    height=box.height * frame_height,
                ),
                score=score,
            )
        )
    return detections


class WebcamFaceSource:
    """Blocking frame source; call :meth:`read` from an executor."""

    def __init__(self, camera_id: int = 0, width: int = 640, height: int = 480, confidence: float = 0.5) -> None:
        self.camera_id = camera_id
        self.width = width
        self.height = height
        self.confidence = confidence
        self.enable_hardware = bool(cv2 is not None and mp is not None)
        self._cap = None
        self._face_detector = None

    def open(self) -> None:
        if not self.enable_hardware:
            raise RuntimeError("OpenCV and MediaPipe are required for the webcam face source")
        if self._cap is not None:
            return

        logger.info(f"Opening webcam (camera_id={self.camera_id})")
        self._cap = cv2.VideoCapture(self.camera_id)
        if not self._cap.isOpened():
            self._cap = None
            raise RuntimeError(f"Failed to open webcam {self.camera_id}")

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)

        self._face_detector = mp.solutions.face_detection.FaceDetection(
            model_selection=0,
            min_detection_confidence=self.confidence,
        )
        logger.info("Webcam activated successfully")

    def read(self) -> Optional[List[Detection]]:
        """Detections for the next frame, or None when no frame arrived."""
        if self._cap is None:
            self.open()

        ret, frame = self._cap.read()
        if not ret or frame is None:
            return None

        height, width = frame.shape[:2]
        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        result = self._face_detector.process(rgb_frame)
        return detections_from_result(result, width, height)

    def close(self) -> None:
        if self._cap is not None:
            logger.info("Closing webcam")
            self._cap.release()
            self._cap = None
        if self._face_detector is not None:
            self._face_detector.close()
            self._face_detector = None


__all__ = ["WebcamFaceSource", "detections_from_result"]
