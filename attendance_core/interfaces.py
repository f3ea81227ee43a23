"""Core interfaces and data structures for the attendance engine.

This module defines the value types that flow through the engine (feature
vectors, captures, attendance events, match results) and the Protocols of
the external collaborators it consumes: the descriptor extractor, the
persistent local log, the submission endpoint and the camera.

Components depend on these abstractions rather than concrete implementations.
"""

from __future__ import annotations

import dataclasses
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import numpy as np

from attendance_core.exceptions import InvalidVectorLength

FEATURE_VECTOR_LENGTH = 128

Point = Tuple[float, float]


def as_feature_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    """Validate and convert raw numbers into a feature vector.

    Args:
        values: Sequence of 128 real numbers (list, tuple or numpy array)

    Returns:
        1-D float64 array of length 128. The input is never modified.

    Raises:
        InvalidVectorLength: If the input is not exactly 128 numbers long.
        ValueError: If any component is NaN or infinite.

    Example:
        >>> vec = as_feature_vector([0.0] * 128)
        >>> vec.shape
        (128,)
    """
    vector = np.array(values, dtype=np.float64)

    if vector.ndim == 2 and vector.shape[0] == 1:
        vector = vector.reshape(-1)

    if vector.ndim != 1:
        raise InvalidVectorLength(int(vector.size), FEATURE_VECTOR_LENGTH)

    if vector.shape[0] != FEATURE_VECTOR_LENGTH:
        raise InvalidVectorLength(int(vector.shape[0]), FEATURE_VECTOR_LENGTH)

    if not np.all(np.isfinite(vector)):
        raise ValueError("Feature vector contains NaN or infinite values")

    return vector


@dataclass
class BBox:
    """Bounding box for a detected face, in source-frame pixels.

    Attributes:
        x: Left edge x-coordinate
        y: Top edge y-coordinate
        width: Box width
        height: Box height
    """

    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_corners(cls, x1: float, y1: float, x2: float, y2: float) -> BBox:
        """Create a box from its top-left and bottom-right corners."""
        return cls(x=x1, y=y1, width=x2 - x1, height=y2 - y1)

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        """Get bounding box area in square pixels."""
        return self.width * self.height

    @property
    def center(self) -> Point:
        """Get center point (x, y) of bounding box."""
        return (self.x + self.width / 2, self.y + self.height / 2)


@dataclass
class Landmarks:
    """Facial landmarks used for pose estimation.

    Attributes:
        left_eye: Outer corner of the left eye (x, y)
        right_eye: Outer corner of the right eye (x, y)
        nose: Top of the nose bridge (x, y)
    """

    left_eye: Point
    right_eye: Point
    nose: Point


@dataclass
class Extraction:
    """Single-face result of the external descriptor extractor.

    Attributes:
        box: Face bounding box
        detection_score: Detector confidence (0.0 to 1.0)
        feature_vector: 128-D face descriptor
        landmarks: Optional landmarks for pose estimation
    """

    box: BBox
    detection_score: float
    feature_vector: np.ndarray
    landmarks: Optional[Landmarks] = None

    def __post_init__(self) -> None:
        """Validate extraction data after initialization."""
        if not 0.0 <= self.detection_score <= 1.0:
            raise ValueError(
                f"Detection score must be in [0, 1], got {self.detection_score}"
            )
        self.feature_vector = as_feature_vector(self.feature_vector)

    def __repr__(self) -> str:
        return (
            f"Extraction(box={self.box}, score={self.detection_score:.3f}, "
            f"landmarks={'yes' if self.landmarks else 'no'})"
        )


@dataclass(frozen=True)
class MatchResult:
    """Outcome of comparing two feature vectors.

    Attributes:
        distance: Euclidean distance (>= 0)
        confidence: max(0, 1 - distance), in [0, 1]
        matched: True if confidence reached the threshold
    """

    distance: float
    confidence: float
    matched: bool


@dataclass(frozen=True)
class QualityReport:
    """Verdict of the quality gate for one capture."""

    valid: bool
    issues: Tuple[str, ...]
    score: float


class AttendanceType(str, Enum):
    """Kinds of attendance events."""

    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"
    BREAK_START = "break-start"
    BREAK_END = "break-end"


class Origin(str, Enum):
    """Connectivity at the moment an event was created."""

    ONLINE = "online"
    OFFLINE = "offline"


class SyncState(str, Enum):
    """Reconciliation state of an event."""

    PENDING = "pending"
    SUBMITTED = "submitted"


@dataclass(frozen=True)
class Geolocation:
    """Where an event was captured."""

    lat: float
    lng: float
    address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"lat": self.lat, "lng": self.lng}
        if self.address is not None:
            data["address"] = self.address
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Geolocation:
        return cls(lat=float(data["lat"]), lng=float(data["lng"]), address=data.get("address"))


@dataclass(frozen=True)
class AttendanceEvent:
    """A confirmed, timestamped attendance record.

    Events are immutable. The only permitted change is the sync-state
    transition pending -> submitted, which produces a new instance via
    mark_submitted().

    Attributes:
        identity: Confirmed identity the event belongs to
        type: Attendance event type
        captured_at: Instant of capture (timezone-aware)
        confidence: Match confidence that confirmed the identity
        origin: Connectivity when the event was created
        sync_state: Reconciliation state
        geolocation: Optional capture location
        notes: Optional free text forwarded to the endpoint
        event_id: Unique key used for exactly-once reconciliation
    """

    identity: str
    type: AttendanceType
    captured_at: datetime
    confidence: float
    origin: Origin
    sync_state: SyncState = SyncState.PENDING
    geolocation: Optional[Geolocation] = None
    notes: Optional[str] = None
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0 or math.isnan(self.confidence):
            raise ValueError(f"Confidence must be in [0, 1], got {self.confidence}")

    def mark_submitted(self) -> AttendanceEvent:
        """Return a copy of this event in the submitted state."""
        return dataclasses.replace(self, sync_state=SyncState.SUBMITTED)

    def with_origin(self, origin: Origin) -> AttendanceEvent:
        """Return a copy of this event with a different origin."""
        return dataclasses.replace(self, origin=origin)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible types."""
        return {
            "event_id": self.event_id,
            "identity": self.identity,
            "type": self.type.value,
            "captured_at": self.captured_at.isoformat(),
            "confidence": self.confidence,
            "origin": self.origin.value,
            "sync_state": self.sync_state.value,
            "geolocation": self.geolocation.to_dict() if self.geolocation else None,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AttendanceEvent:
        """Rebuild an event serialized with to_dict()."""
        geolocation = data.get("geolocation")
        return cls(
            identity=data["identity"],
            type=AttendanceType(data["type"]),
            captured_at=datetime.fromisoformat(data["captured_at"]),
            confidence=float(data["confidence"]),
            origin=Origin(data["origin"]),
            sync_state=SyncState(data["sync_state"]),
            geolocation=Geolocation.from_dict(geolocation) if geolocation else None,
            notes=data.get("notes"),
            event_id=data["event_id"],
        )


@runtime_checkable
class DescriptorExtractor(Protocol):
    """Protocol for the external frame -> descriptor model.

    The extractor may be slow and may fail. The engine calls it off the event
    loop, one call at a time per capture session.
    """

    def extract(self, frame_bgr: np.ndarray) -> Optional[Extraction]:
        """Detect a single face and compute its descriptor.

        Args:
            frame_bgr: Input image in BGR format (OpenCV convention), shape [H, W, 3]

        Returns:
            Extraction for the face, or None if no face is visible.

        Raises:
            ExtractionFailed: If more than one face is visible or inference fails.
        """
        ...


@runtime_checkable
class KeyValueStore(Protocol):
    """Protocol for the persistent local log holding the offline queue."""

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the value stored under key, or None."""
        ...

    async def set(self, key: str, value: Dict[str, Any]) -> None:
        """Durably store value under key, replacing any previous value."""
        ...

    async def list_keys(self, prefix: str = "") -> List[str]:
        """Return all keys starting with prefix, sorted."""
        ...

    async def delete(self, key: str) -> None:
        """Remove key if present."""
        ...

    async def clear(self) -> None:
        """Remove every key."""
        ...


@runtime_checkable
class Submitter(Protocol):
    """Protocol for the attendance submission endpoint."""

    async def submit(
        self,
        event: AttendanceEvent,
        feature_vector: np.ndarray,
        image_jpeg: Optional[bytes] = None,
    ) -> Dict[str, Any]:
        """Submit one event and return the created record.

        Raises:
            SubmissionFailed: If the endpoint is unreachable or rejects the event.
        """
        ...


@runtime_checkable
class VideoSource(Protocol):
    """Protocol for camera resources held by a capture session."""

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """Read next frame; returns (success, frame)."""
        ...

    def release(self) -> None:
        """Release the device (stop all tracks)."""
        ...

    @property
    def is_opened(self) -> bool:
        """True while the device is held."""
        ...
