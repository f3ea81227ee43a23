"""Enrollment accumulator for registering new identities.

This module collects quality-passing captures into a per-identity template
set until the completion threshold is reached. Enrollment moves through
three phases per identity:

    EMPTY -> PARTIAL(n) -> COMPLETE

COMPLETE is terminal; only an explicit reset() returns an identity to EMPTY.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from attendance_core.exceptions import (
    AlreadyEnrolled,
    EnrollmentAttemptsExhausted,
    QualityRejected,
)
from attendance_core.interfaces import QualityReport, as_feature_vector
from attendance_core.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_ENROLLMENT_TARGET = 3
DEFAULT_MAX_ATTEMPTS = 10


class EnrollmentPhase(str, Enum):
    EMPTY = "empty"
    PARTIAL = "partial"
    COMPLETE = "complete"


def _freeze(vector: np.ndarray) -> np.ndarray:
    vector.setflags(write=False)
    return vector


@dataclass
class EnrollmentState:
    """Enrollment progress of one identity.

    Attributes:
        identity: Identity the templates belong to
        templates: Accepted templates, in capture order (read-only arrays)
        completed: True once the target number of templates was accepted
        attempts_remaining: Rejected captures still allowed before a reset
    """

    identity: str
    attempts_remaining: int
    templates: List[np.ndarray] = field(default_factory=list)
    completed: bool = False

    @property
    def phase(self) -> EnrollmentPhase:
        if self.completed:
            return EnrollmentPhase.COMPLETE
        if self.templates:
            return EnrollmentPhase.PARTIAL
        return EnrollmentPhase.EMPTY

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible types."""
        return {
            "identity": self.identity,
            "templates": [template.tolist() for template in self.templates],
            "completed": self.completed,
            "attempts_remaining": self.attempts_remaining,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EnrollmentState:
        """Rebuild a state serialized with to_dict()."""
        return cls(
            identity=data["identity"],
            templates=[_freeze(as_feature_vector(t)) for t in data["templates"]],
            completed=bool(data["completed"]),
            attempts_remaining=int(data["attempts_remaining"]),
        )


@dataclass(frozen=True)
class EnrollmentProgress:
    """Result of an accepted enrollment capture.

    Attributes:
        identity: Identity being enrolled
        count: Templates accepted so far
        remaining: Templates still needed to complete
        completed: True if this capture completed the enrollment
        attempts_remaining: Rejected captures still allowed
    """

    identity: str
    count: int
    remaining: int
    completed: bool
    attempts_remaining: int


class EnrollmentAccumulator:
    """Accumulates enrollment templates per identity.

    Workflow:
    1. The caller runs the quality gate on a capture
    2. submit_capture() appends the descriptor as a template if the gate passed
    3. Once the target count is reached the identity is COMPLETE
    4. Templates feed the matcher for attendance captures

    Attributes:
        target: Number of templates that completes an enrollment
        max_attempts: Rejected captures allowed per identity before a reset

    Example:
        >>> accumulator = EnrollmentAccumulator(target=3)
        >>> progress = accumulator.submit_capture("EMP-7", vector, report)
        >>> print(f"{progress.count}/3 captured, {progress.remaining} to go")
    """

    def __init__(
        self,
        target: int = DEFAULT_ENROLLMENT_TARGET,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        if target < 1:
            raise ValueError(f"target must be >= 1, got {target}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        self.target = target
        self.max_attempts = max_attempts
        self._states: Dict[str, EnrollmentState] = {}

        logger.debug(
            f"Initialized EnrollmentAccumulator: target={target}, max_attempts={max_attempts}"
        )

    def _state_for(self, identity: str) -> EnrollmentState:
        if identity not in self._states:
            self._states[identity] = EnrollmentState(
                identity=identity, attempts_remaining=self.max_attempts
            )
        return self._states[identity]

    def submit_capture(
        self,
        identity: str,
        vector: np.ndarray,
        quality: QualityReport,
    ) -> EnrollmentProgress:
        """Offer one capture for an identity's enrollment.

        Args:
            identity: Identity being enrolled
            vector: 128-D feature vector of the capture
            quality: Quality gate verdict for the capture

        Returns:
            EnrollmentProgress after accepting the template.

        Raises:
            AlreadyEnrolled: If the identity is already COMPLETE.
            EnrollmentAttemptsExhausted: If no rejected-capture budget is left.
            InvalidVectorLength: If the vector is not 128 numbers long.
            QualityRejected: If the capture failed the gate. The rejected
                capture consumes one attempt; templates are unchanged.
        """
        state = self._state_for(identity)

        if state.completed:
            raise AlreadyEnrolled(identity)

        if state.attempts_remaining <= 0:
            raise EnrollmentAttemptsExhausted(identity)

        template = _freeze(as_feature_vector(vector))

        if not quality.valid:
            state.attempts_remaining -= 1
            logger.warning(
                f"Rejected enrollment capture for '{identity}': {list(quality.issues)} "
                f"({state.attempts_remaining} attempts remaining)"
            )
            raise QualityRejected(quality.issues, quality.score)

        state.templates.append(template)
        count = len(state.templates)

        if count >= self.target:
            state.completed = True
            logger.info(f"Enrollment complete for '{identity}' ({count} templates)")
        else:
            logger.info(f"Captured template {count}/{self.target} for '{identity}'")

        return EnrollmentProgress(
            identity=identity,
            count=count,
            remaining=max(0, self.target - count),
            completed=state.completed,
            attempts_remaining=state.attempts_remaining,
        )

    def reset(self, identity: str) -> None:
        """Clear all templates and counters for an identity."""
        self._states[identity] = EnrollmentState(
            identity=identity, attempts_remaining=self.max_attempts
        )
        logger.info(f"Reset enrollment for '{identity}'")

    def restore(self, state: EnrollmentState) -> None:
        """Load a previously persisted enrollment state."""
        self._states[state.identity] = state

    def state(self, identity: str) -> Optional[EnrollmentState]:
        """Get the enrollment state of an identity, or None if never attempted."""
        return self._states.get(identity)

    def phase(self, identity: str) -> EnrollmentPhase:
        state = self._states.get(identity)
        return state.phase if state is not None else EnrollmentPhase.EMPTY

    def templates(self, identity: str) -> Tuple[np.ndarray, ...]:
        """Get the accepted templates of an identity, in capture order."""
        state = self._states.get(identity)
        return tuple(state.templates) if state is not None else ()

    def is_enrolled(self, identity: str) -> bool:
        state = self._states.get(identity)
        return state is not None and state.completed

    def enrolled_identities(self) -> List[str]:
        """List identities whose enrollment is complete."""
        return sorted(identity for identity, s in self._states.items() if s.completed)

    def candidates(self) -> List[Tuple[str, np.ndarray]]:
        """All (identity, template) pairs, identities in first-attempt order."""
        return [
            (identity, template)
            for identity, state in self._states.items()
            for template in state.templates
        ]

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"EnrollmentAccumulator(target={self.target}, "
            f"enrolled={len(self.enrolled_identities())}, tracked={len(self._states)})"
        )
