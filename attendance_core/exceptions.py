"""Error taxonomy for the attendance reconciliation engine.

Every failure the engine reports is one of these types. None of them is fatal
to the process: callers catch them, surface the message, and retry.
"""

from __future__ import annotations

from typing import Sequence


class AttendanceCoreError(Exception):
    """Base class for all engine errors."""


class InvalidVectorLength(AttendanceCoreError, ValueError):
    """Raised when a feature vector does not have the expected length."""

    def __init__(self, length: int, expected: int = 128):
        self.length = length
        self.expected = expected
        super().__init__(f"Expected feature vector of length {expected}, got {length}")


class QualityRejected(AttendanceCoreError):
    """Raised when a capture fails the quality gate."""

    def __init__(self, issues: Sequence[str], score: float | None = None):
        self.issues = list(issues)
        self.score = score
        detail = ", ".join(self.issues) if self.issues else "score below minimum"
        super().__init__(f"Capture rejected by quality gate: {detail}")


class AlreadyEnrolled(AttendanceCoreError):
    """Raised when a capture is submitted for an identity whose enrollment is complete."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Identity '{identity}' is already enrolled")


class EnrollmentAttemptsExhausted(AttendanceCoreError):
    """Raised when an identity has no rejected-capture budget left."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(
            f"No enrollment attempts remaining for '{identity}'; reset the enrollment"
        )


class IdentityNotConfirmed(AttendanceCoreError):
    """Raised when a live capture does not match the identity's templates."""

    def __init__(self, identity: str, confidence: float = 0.0):
        self.identity = identity
        self.confidence = confidence
        super().__init__(
            f"Could not confirm identity '{identity}' (confidence={confidence:.3f})"
        )


class InvalidTransition(AttendanceCoreError):
    """Raised in strict mode when an event type is not allowed from the current state."""

    def __init__(self, state: str, event_type: str):
        self.state = state
        self.event_type = event_type
        super().__init__(f"Cannot record '{event_type}' while in state '{state}'")


class InvalidWorkingHours(AttendanceCoreError):
    """Raised when a check-out precedes its check-in."""


class ExtractionFailed(AttendanceCoreError):
    """Raised when the descriptor extractor fails or finds no face."""


class SubmissionFailed(AttendanceCoreError):
    """Raised when the submission endpoint rejects or cannot receive an event."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class QueuePersistenceFailed(AttendanceCoreError):
    """Raised when the offline queue cannot be written to the local log."""


class CameraAlreadyAcquired(AttendanceCoreError, RuntimeError):
    """Raised when a session tries to hold a second camera."""


class ModelNotReady(AttendanceCoreError, RuntimeError):
    """Raised when the engine is used before initialize() completed."""
