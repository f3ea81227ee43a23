"""High-level services for the attendance pipeline.

This package contains the engine facade that orchestrates extraction,
quality checks, matching, submission and offline reconciliation.
"""

from attendance_core.services.engine import AttendanceEngine, AttendanceOutcome

__all__ = [
    "AttendanceEngine",
    "AttendanceOutcome",
]
