"""Dlib descriptor extractor using the face_recognition library.

Detects the single face in a frame, locates its landmarks and computes the
128-D ResNet-34 descriptor. Descriptors are returned raw (not L2-normalized)
so that Euclidean distances keep their usual 0.6 tolerance.
"""

from __future__ import annotations

from typing import Literal, Optional

import cv2
import face_recognition
import numpy as np

from attendance_core.exceptions import ExtractionFailed
from attendance_core.interfaces import BBox, Extraction, Landmarks
from attendance_core.logging_config import get_logger

logger = get_logger(__name__)

# face_recognition does not expose detector scores
FIXED_DETECTION_SCORE = 0.99


class DlibDescriptorExtractor:
    """DescriptorExtractor backed by dlib.

    Attributes:
        detector_model: Detection model ("hog" or "cnn")
        embedder_model: Landmark model size ("large" or "small")
        upsample: Number of times to upsample image (higher = detect smaller faces)
        num_jitters: Number of times to re-sample the face for encoding

    Example:
        >>> extractor = DlibDescriptorExtractor(detector_model="hog")
        >>> extraction = extractor.extract(frame)
        >>> if extraction is not None:
        ...     print(extraction.box, extraction.feature_vector.shape)
    """

    def __init__(
        self,
        detector_model: Literal["hog", "cnn"] = "hog",
        embedder_model: Literal["large", "small"] = "large",
        upsample: int = 1,
        num_jitters: int = 1,
    ):
        if detector_model not in ("hog", "cnn"):
            raise ValueError(f"detector_model must be 'hog' or 'cnn', got '{detector_model}'")
        if embedder_model not in ("large", "small"):
            raise ValueError(
                f"embedder_model must be 'large' or 'small', got '{embedder_model}'"
            )

        self.detector_model = detector_model
        self.embedder_model = embedder_model
        self.upsample = upsample
        self.num_jitters = num_jitters

        logger.info(
            f"Initialized dlib extractor (detector={detector_model}, "
            f"embedder={embedder_model}, upsample={upsample})"
        )

    def extract(self, frame_bgr: np.ndarray) -> Optional[Extraction]:
        """Detect a single face and compute its descriptor.

        Args:
            frame_bgr: Input image in BGR format (OpenCV convention), shape [H, W, 3]

        Returns:
            Extraction for the face, or None if no face is visible.

        Raises:
            ExtractionFailed: If the frame is invalid, more than one face is
                visible or the model fails.
        """
        if frame_bgr is None or frame_bgr.size == 0:
            raise ExtractionFailed("Empty frame provided")

        if len(frame_bgr.shape) != 3 or frame_bgr.shape[2] != 3:
            raise ExtractionFailed(f"Expected 3-channel image, got shape {frame_bgr.shape}")

        try:
            # face_recognition expects RGB
            frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)

            # (top, right, bottom, left) tuples
            locations = face_recognition.face_locations(
                frame_rgb,
                number_of_times_to_upsample=self.upsample,
                model=self.detector_model,
            )

            if not locations:
                logger.debug("No face detected")
                return None

            if len(locations) > 1:
                raise ExtractionFailed(
                    f"Expected a single face, found {len(locations)}"
                )

            encodings = face_recognition.face_encodings(
                frame_rgb,
                known_face_locations=locations,
                num_jitters=self.num_jitters,
                model=self.embedder_model,
            )
            if not encodings:
                raise ExtractionFailed("Could not compute face encoding")

            landmarks = face_recognition.face_landmarks(
                frame_rgb,
                face_locations=locations,
                model=self.embedder_model,
            )
        except ExtractionFailed:
            raise
        except Exception as e:
            logger.error(f"Descriptor extraction failed: {e}")
            raise ExtractionFailed(f"Descriptor extraction failed: {e}") from e

        top, right, bottom, left = locations[0]
        h, w = frame_bgr.shape[:2]
        box = BBox.from_corners(
            max(0, left), max(0, top), min(w, right), min(h, bottom)
        )

        return Extraction(
            box=box,
            detection_score=FIXED_DETECTION_SCORE,
            feature_vector=np.asarray(encodings[0], dtype=np.float64),
            landmarks=_to_landmarks(landmarks[0]) if landmarks else None,
        )

    def __repr__(self) -> str:
        return (
            f"DlibDescriptorExtractor(detector='{self.detector_model}', "
            f"embedder='{self.embedder_model}', upsample={self.upsample})"
        )


def _to_landmarks(points: dict) -> Optional[Landmarks]:
    """Reduce face_recognition's landmark dict to the points used for pose.

    The small model has no nose_bridge; its nose_tip is used instead.
    """
    left_eye = points.get("left_eye")
    right_eye = points.get("right_eye")
    nose = points.get("nose_bridge") or points.get("nose_tip")

    if not left_eye or not right_eye or not nose:
        return None

    return Landmarks(
        left_eye=tuple(map(float, left_eye[0])),
        right_eye=tuple(map(float, right_eye[0])),
        nose=tuple(map(float, nose[0])),
    )
