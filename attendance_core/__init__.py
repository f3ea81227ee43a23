"""Biometric attendance reconciliation engine.

This package contains the matcher, quality gate, enrollment accumulator,
attendance state machine and offline queue, plus the engine facade that
wires them to a descriptor extractor and the attendance API.
"""

from attendance_core.attendance import (
    AttendanceState,
    AttendanceStateMachine,
    DaySummary,
    current_state,
    format_duration,
    summarize_day,
    working_hours,
)
from attendance_core.config import Config, get_config
from attendance_core.enrollment import (
    EnrollmentAccumulator,
    EnrollmentPhase,
    EnrollmentProgress,
    EnrollmentState,
)
from attendance_core.exceptions import (
    AlreadyEnrolled,
    AttendanceCoreError,
    CameraAlreadyAcquired,
    EnrollmentAttemptsExhausted,
    ExtractionFailed,
    IdentityNotConfirmed,
    InvalidTransition,
    InvalidVectorLength,
    InvalidWorkingHours,
    ModelNotReady,
    QualityRejected,
    QueuePersistenceFailed,
    SubmissionFailed,
)
from attendance_core.interfaces import (
    AttendanceEvent,
    AttendanceType,
    BBox,
    Extraction,
    Geolocation,
    Landmarks,
    MatchResult,
    Origin,
    QualityReport,
    SyncState,
    as_feature_vector,
)
from attendance_core.logging_config import get_logger, setup_logging
from attendance_core.matcher import DescriptorMatcher
from attendance_core.offline_queue import DrainReport, OfflineQueue, SyncReconciler
from attendance_core.quality import QualityGate
from attendance_core.services.engine import AttendanceEngine, AttendanceOutcome
from attendance_core.storage import JsonDirectoryStore, MemoryStore

__all__ = [
    # Config
    "Config",
    "get_config",
    # Logging
    "setup_logging",
    "get_logger",
    # Interfaces
    "AttendanceEvent",
    "AttendanceType",
    "BBox",
    "Extraction",
    "Geolocation",
    "Landmarks",
    "MatchResult",
    "Origin",
    "QualityReport",
    "SyncState",
    "as_feature_vector",
    # Errors
    "AttendanceCoreError",
    "AlreadyEnrolled",
    "CameraAlreadyAcquired",
    "EnrollmentAttemptsExhausted",
    "ExtractionFailed",
    "IdentityNotConfirmed",
    "InvalidTransition",
    "InvalidVectorLength",
    "InvalidWorkingHours",
    "ModelNotReady",
    "QualityRejected",
    "QueuePersistenceFailed",
    "SubmissionFailed",
    # Core
    "DescriptorMatcher",
    "QualityGate",
    "EnrollmentAccumulator",
    "EnrollmentPhase",
    "EnrollmentProgress",
    "EnrollmentState",
    "AttendanceState",
    "AttendanceStateMachine",
    "DaySummary",
    "current_state",
    "format_duration",
    "summarize_day",
    "working_hours",
    # Offline
    "OfflineQueue",
    "SyncReconciler",
    "DrainReport",
    "JsonDirectoryStore",
    "MemoryStore",
    # Engine
    "AttendanceEngine",
    "AttendanceOutcome",
]
