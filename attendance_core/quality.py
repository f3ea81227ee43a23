"""Quality gate for face captures.

A capture must pass the gate before it can become an enrollment template or
a live match attempt. Each failing rule subtracts a fixed penalty from a
score that starts at 1.0 and records a named issue. Any issue blocks the
capture, even when the aggregate score would still pass.
"""

from __future__ import annotations

from typing import List, Optional

from attendance_core.interfaces import Extraction, Landmarks, QualityReport
from attendance_core.logging_config import get_logger

logger = get_logger(__name__)

ISSUE_LOW_DETECTION = "low detection confidence"
ISSUE_FACE_TOO_SMALL = "face too small"
ISSUE_EXTREME_POSE = "extreme head pose"

PENALTY_LOW_DETECTION = 0.2
PENALTY_FACE_TOO_SMALL = 0.3
PENALTY_EXTREME_POSE = 0.2

MIN_VALID_SCORE = 0.6


def pose_offset_ratio(landmarks: Optional[Landmarks]) -> float:
    """Estimate head yaw from landmarks.

    The ratio is the horizontal offset of the nose from the midpoint of the
    eyes, relative to the inter-eye distance.

    Args:
        landmarks: Eye and nose points, or None

    Returns:
        Offset ratio (0.0 = frontal). 0.0 when landmarks are missing.
    """
    if landmarks is None:
        return 0.0

    left_x = landmarks.left_eye[0]
    right_x = landmarks.right_eye[0]
    nose_x = landmarks.nose[0]

    eye_distance = abs(right_x - left_x)
    nose_offset = abs(nose_x - (left_x + right_x) / 2)

    if eye_distance == 0:
        return 0.0 if nose_offset == 0 else float("inf")

    return nose_offset / eye_distance


class QualityGate:
    """Validates single captures against detection, size and pose rules.

    Attributes:
        min_detection_score: Detector confidence below this is an issue
        min_face_size: Box width or height below this (pixels) is an issue
        max_pose_offset: Pose offset ratio above this is an issue

    Example:
        >>> gate = QualityGate()
        >>> report = gate.assess(0.95, 180, 200, 0.05)
        >>> report.valid
        True
    """

    def __init__(
        self,
        min_detection_score: float = 0.8,
        min_face_size: float = 100,
        max_pose_offset: float = 0.3,
    ):
        self.min_detection_score = min_detection_score
        self.min_face_size = min_face_size
        self.max_pose_offset = max_pose_offset

    def assess(
        self,
        detection_score: float,
        box_width: float,
        box_height: float,
        pose_offset: float,
    ) -> QualityReport:
        """Assess one capture.

        Args:
            detection_score: Detector confidence (0.0 to 1.0)
            box_width: Face box width in source-frame pixels
            box_height: Face box height in source-frame pixels
            pose_offset: Nose offset ratio (see pose_offset_ratio)

        Returns:
            QualityReport with the verdict, ordered issues and score.
        """
        issues: List[str] = []
        score = 1.0

        if detection_score < self.min_detection_score:
            issues.append(ISSUE_LOW_DETECTION)
            score -= PENALTY_LOW_DETECTION

        if box_width < self.min_face_size or box_height < self.min_face_size:
            issues.append(ISSUE_FACE_TOO_SMALL)
            score -= PENALTY_FACE_TOO_SMALL

        if pose_offset > self.max_pose_offset:
            issues.append(ISSUE_EXTREME_POSE)
            score -= PENALTY_EXTREME_POSE

        report = QualityReport(
            valid=score >= MIN_VALID_SCORE and not issues,
            issues=tuple(issues),
            score=max(0.0, score),
        )

        if not report.valid:
            logger.debug(f"Capture failed quality gate: {list(report.issues)}")

        return report

    def assess_extraction(self, extraction: Extraction) -> QualityReport:
        """Assess an extractor result, deriving pose from its landmarks."""
        return self.assess(
            detection_score=extraction.detection_score,
            box_width=extraction.box.width,
            box_height=extraction.box.height,
            pose_offset=pose_offset_ratio(extraction.landmarks),
        )

    def __repr__(self) -> str:
        return (
            f"QualityGate(min_detection_score={self.min_detection_score}, "
            f"min_face_size={self.min_face_size}, max_pose_offset={self.max_pose_offset})"
        )


_default_gate = QualityGate()


def assess(
    detection_score: float,
    box_width: float,
    box_height: float,
    pose_offset: float,
) -> QualityReport:
    """Assess a capture with the default thresholds."""
    return _default_gate.assess(detection_score, box_width, box_height, pose_offset)
