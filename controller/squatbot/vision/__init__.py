"""Camera-side helpers for the vision client."""

from .face_source import WebcamFaceSource, detections_from_result

__all__ = ["WebcamFaceSource", "detections_from_result"]
