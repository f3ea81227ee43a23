"""Configuration management for the attendance engine.

This module loads configuration from environment variables (.env file) and
provides a centralized Config class for accessing engine settings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class Config:
    """Engine configuration loaded from environment variables.

    Attributes:
        confidence_threshold: Minimum match confidence (0.0-1.0, inclusive)
        min_detection_score: Quality gate minimum detector score
        min_face_size: Quality gate minimum box width/height in pixels
        max_pose_offset: Quality gate maximum nose offset ratio
        enrollment_target: Number of templates that completes an enrollment
        max_enrollment_attempts: Rejected captures allowed before a reset is required
        strict_transitions: Enforce the attendance transition table
        max_sync_attempts: Failed submissions before an entry is dead-lettered (0 = never)
        poll_interval: Live detection polling period in seconds
        camera_id: Camera device ID for video capture
        api_base_url: Base URL of the attendance API
        api_token: Bearer token for the attendance API
        request_timeout: HTTP timeout in seconds
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file that also receives log output
    """

    confidence_threshold: float
    min_detection_score: float
    min_face_size: int
    max_pose_offset: float
    enrollment_target: int
    max_enrollment_attempts: int
    strict_transitions: bool
    max_sync_attempts: int
    poll_interval: float
    camera_id: int
    api_base_url: str
    api_token: str
    request_timeout: float
    log_level: str
    log_file: Optional[Path]

    # Paths
    data_dir: Path
    offline_dir: Path

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Returns:
            Config instance with values from environment or defaults.

        Raises:
            ValueError: If environment variables are invalid.
        """
        # Get project root (parent of attendance_core/)
        project_root = Path(__file__).parent.parent

        # Matching
        confidence_threshold = float(os.getenv("CONFIDENCE_THRESHOLD", "0.6"))
        if not 0.0 <= confidence_threshold <= 1.0:
            raise ValueError(
                f"CONFIDENCE_THRESHOLD must be between 0.0 and 1.0, got {confidence_threshold}"
            )

        # Quality gate
        min_detection_score = float(os.getenv("MIN_DETECTION_SCORE", "0.8"))
        if not 0.0 <= min_detection_score <= 1.0:
            raise ValueError(
                f"MIN_DETECTION_SCORE must be between 0.0 and 1.0, got {min_detection_score}"
            )

        min_face_size = int(os.getenv("MIN_FACE_SIZE", "100"))
        if min_face_size < 0:
            raise ValueError(f"MIN_FACE_SIZE must be >= 0, got {min_face_size}")

        max_pose_offset = float(os.getenv("MAX_POSE_OFFSET", "0.3"))
        if max_pose_offset < 0:
            raise ValueError(f"MAX_POSE_OFFSET must be >= 0, got {max_pose_offset}")

        # Enrollment
        enrollment_target = int(os.getenv("ENROLLMENT_TARGET", "3"))
        if enrollment_target < 1:
            raise ValueError(f"ENROLLMENT_TARGET must be >= 1, got {enrollment_target}")

        max_enrollment_attempts = int(os.getenv("MAX_ENROLLMENT_ATTEMPTS", "10"))
        if max_enrollment_attempts < 1:
            raise ValueError(
                f"MAX_ENROLLMENT_ATTEMPTS must be >= 1, got {max_enrollment_attempts}"
            )

        # Attendance
        strict_transitions = bool(int(os.getenv("STRICT_TRANSITIONS", "0")))

        # Offline queue
        max_sync_attempts = int(os.getenv("MAX_SYNC_ATTEMPTS", "5"))
        if max_sync_attempts < 0:
            raise ValueError(f"MAX_SYNC_ATTEMPTS must be >= 0, got {max_sync_attempts}")

        # Capture
        poll_interval = float(os.getenv("POLL_INTERVAL", "0.5"))
        if poll_interval <= 0:
            raise ValueError(f"POLL_INTERVAL must be > 0, got {poll_interval}")

        camera_id = int(os.getenv("CAMERA_ID", "0"))
        if camera_id < 0:
            raise ValueError(f"CAMERA_ID must be >= 0, got {camera_id}")

        # Submission endpoint
        api_base_url = os.getenv("API_BASE_URL", "http://localhost:5000/api")
        api_token = os.getenv("API_TOKEN", "")

        request_timeout = float(os.getenv("REQUEST_TIMEOUT", "30"))
        if request_timeout <= 0:
            raise ValueError(f"REQUEST_TIMEOUT must be > 0, got {request_timeout}")

        # Logging configuration
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if log_level not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got {log_level}")
        log_file = Path(os.environ["LOG_FILE"]) if os.getenv("LOG_FILE") else None

        # Paths
        data_dir = Path(os.getenv("DATA_DIR", str(project_root / "data")))
        offline_dir = data_dir / "offline"

        return cls(
            confidence_threshold=confidence_threshold,
            min_detection_score=min_detection_score,
            min_face_size=min_face_size,
            max_pose_offset=max_pose_offset,
            enrollment_target=enrollment_target,
            max_enrollment_attempts=max_enrollment_attempts,
            strict_transitions=strict_transitions,
            max_sync_attempts=max_sync_attempts,
            poll_interval=poll_interval,
            camera_id=camera_id,
            api_base_url=api_base_url,
            api_token=api_token,
            request_timeout=request_timeout,
            log_level=log_level,
            log_file=log_file,
            data_dir=data_dir,
            offline_dir=offline_dir,
        )

    @property
    def logging_level(self) -> int:
        """Numeric level for the logging module."""
        return logging.getLevelName(self.log_level)

    def __repr__(self) -> str:
        """Return string representation of config."""
        return (
            f"Config(\n"
            f"  Threshold: {self.confidence_threshold},\n"
            f"  Quality: score>={self.min_detection_score}, "
            f"size>={self.min_face_size}, pose<={self.max_pose_offset},\n"
            f"  Enrollment: {self.enrollment_target} templates, "
            f"{self.max_enrollment_attempts} attempts,\n"
            f"  Strict Transitions: {self.strict_transitions},\n"
            f"  Max Sync Attempts: {self.max_sync_attempts},\n"
            f"  API: {self.api_base_url},\n"
            f"  Log Level: {self.log_level}\n"
            f")"
        )


# Global config instance (lazy-loaded)
_config: Config | None = None


def get_config() -> Config:
    """Get global config instance (singleton pattern).

    Returns:
        Config instance loaded from environment.
    """
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() re-reads the environment."""
    global _config
    _config = None
