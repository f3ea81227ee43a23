"""Shared fixtures and fakes for the test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import numpy as np
import pytest

from attendance_core.config import Config, reset_config
from attendance_core.exceptions import SubmissionFailed
from attendance_core.interfaces import (
    AttendanceEvent,
    AttendanceType,
    BBox,
    Extraction,
    Landmarks,
    Origin,
)

BASE_TIME = datetime(2025, 11, 4, 8, 0, tzinfo=timezone.utc)


def make_vector(offset: float = 0.0, index: int = 0) -> np.ndarray:
    """128-D vector of zeros with `offset` at one position."""
    vector = np.zeros(128, dtype=np.float64)
    vector[index] = offset
    return vector


def make_extraction(
    vector: Optional[np.ndarray] = None,
    score: float = 0.99,
    size: float = 200,
    landmarks: Optional[Landmarks] = None,
) -> Extraction:
    if landmarks is None:
        landmarks = Landmarks(left_eye=(80.0, 100.0), right_eye=(140.0, 100.0), nose=(110.0, 130.0))
    return Extraction(
        box=BBox(x=10, y=10, width=size, height=size),
        detection_score=score,
        feature_vector=make_vector() if vector is None else vector,
        landmarks=landmarks,
    )


def make_event(
    event_type: AttendanceType = AttendanceType.CHECK_IN,
    minutes: int = 0,
    identity: str = "EMP-7",
    origin: Origin = Origin.OFFLINE,
) -> AttendanceEvent:
    return AttendanceEvent(
        identity=identity,
        type=event_type,
        captured_at=BASE_TIME + timedelta(minutes=minutes),
        confidence=0.9,
        origin=origin,
    )


class FakeExtractor:
    """Returns queued extractions in order, repeating the last one."""

    def __init__(self, *extractions: Optional[Extraction]):
        self.extractions: List[Optional[Extraction]] = list(extractions) or [make_extraction()]
        self.calls = 0

    def extract(self, frame_bgr: np.ndarray) -> Optional[Extraction]:
        self.calls += 1
        if len(self.extractions) > 1:
            return self.extractions.pop(0)
        return self.extractions[0]


class RecordingSubmitter:
    """Submitter that records events and fails on demand."""

    def __init__(self) -> None:
        self.submitted: List[AttendanceEvent] = []
        self.fail_ids: set = set()
        self.fail_all = False

    async def submit(
        self,
        event: AttendanceEvent,
        feature_vector: np.ndarray,
        image_jpeg: Optional[bytes] = None,
    ) -> Dict[str, Any]:
        if self.fail_all or event.event_id in self.fail_ids:
            raise SubmissionFailed("Attendance API unreachable")
        self.submitted.append(event)
        return {"id": len(self.submitted), "type": event.type.value}


@pytest.fixture
def config(tmp_path, monkeypatch) -> Config:
    """Config with defaults and a temporary data directory."""
    for name in (
        "CONFIDENCE_THRESHOLD",
        "STRICT_TRANSITIONS",
        "MAX_SYNC_ATTEMPTS",
        "LOG_LEVEL",
        "LOG_FILE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    reset_config()
    yield Config.from_env()
    reset_config()


@pytest.fixture
def frame() -> np.ndarray:
    """Create a test frame (480x640 BGR)."""
    return np.zeros((480, 640, 3), dtype=np.uint8)
