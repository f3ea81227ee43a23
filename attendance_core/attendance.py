"""Attendance state machine for check-in/check-out/break workflows.

The state of an identity for a day is derived from its event history:

    NOT_CHECKED_IN -> CHECKED_IN -> ON_BREAK <-> CHECKED_IN -> CHECKED_OUT

The state machine confirms the identity against its enrolled templates,
checks the requested event type against the transition table (strict mode
only) and builds the AttendanceEvent.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional, Sequence

import numpy as np

from attendance_core.exceptions import (
    IdentityNotConfirmed,
    InvalidTransition,
    InvalidWorkingHours,
)
from attendance_core.interfaces import (
    AttendanceEvent,
    AttendanceType,
    Geolocation,
    Origin,
)
from attendance_core.logging_config import get_logger
from attendance_core.matcher import DescriptorMatcher

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AttendanceState(str, Enum):
    """Per-identity, per-day attendance states."""

    NOT_CHECKED_IN = "not-checked-in"
    CHECKED_IN = "checked-in"
    ON_BREAK = "on-break"
    CHECKED_OUT = "checked-out"


# State reached after each event type
_STATE_AFTER: Dict[AttendanceType, AttendanceState] = {
    AttendanceType.CHECK_IN: AttendanceState.CHECKED_IN,
    AttendanceType.BREAK_START: AttendanceState.ON_BREAK,
    AttendanceType.BREAK_END: AttendanceState.CHECKED_IN,
    AttendanceType.CHECK_OUT: AttendanceState.CHECKED_OUT,
}

TRANSITIONS: Dict[AttendanceState, FrozenSet[AttendanceType]] = {
    AttendanceState.NOT_CHECKED_IN: frozenset({AttendanceType.CHECK_IN}),
    AttendanceState.CHECKED_IN: frozenset(
        {AttendanceType.BREAK_START, AttendanceType.CHECK_OUT}
    ),
    AttendanceState.ON_BREAK: frozenset({AttendanceType.BREAK_END}),
    AttendanceState.CHECKED_OUT: frozenset(),
}


def current_state(day_history: Sequence[AttendanceEvent]) -> AttendanceState:
    """Derive the current state from today's events (last event wins)."""
    if not day_history:
        return AttendanceState.NOT_CHECKED_IN
    return _STATE_AFTER[AttendanceType(day_history[-1].type)]


def working_hours(check_in: datetime, check_out: datetime) -> timedelta:
    """Compute the time worked between a check-in and a later check-out.

    Raises:
        InvalidWorkingHours: If the check-out precedes the check-in
            (clock skew or tampering). Negative durations are never returned.
    """
    duration = check_out - check_in
    if duration < timedelta(0):
        raise InvalidWorkingHours(
            f"Check-out at {check_out.isoformat()} precedes check-in at {check_in.isoformat()}"
        )
    return duration


def format_duration(duration: timedelta) -> str:
    """Format a duration as '<hours>h <minutes>m'."""
    total_minutes = int(duration.total_seconds() // 60)
    return f"{total_minutes // 60}h {total_minutes % 60}m"


@dataclass(frozen=True)
class DaySummary:
    """Read-only projection of one identity's day.

    Attributes:
        state: Current attendance state
        has_checked_in: At least one check-in today
        has_checked_out: At least one check-out today
        last_check_in: Most recent check-in event
        last_check_out: Most recent check-out event
        break_time: Total time of closed breaks
        suggested_type: Event type a client should preselect
    """

    state: AttendanceState
    has_checked_in: bool
    has_checked_out: bool
    last_check_in: Optional[AttendanceEvent]
    last_check_out: Optional[AttendanceEvent]
    break_time: timedelta
    suggested_type: AttendanceType

    @property
    def worked(self) -> Optional[timedelta]:
        """Time between last check-in and last check-out, if both exist.

        Raises:
            InvalidWorkingHours: If the check-out precedes the check-in.
        """
        if self.last_check_in is None or self.last_check_out is None:
            return None
        return working_hours(self.last_check_in.captured_at, self.last_check_out.captured_at)


def summarize_day(day_history: Sequence[AttendanceEvent]) -> DaySummary:
    """Summarize an identity's events for one day."""
    check_ins = [e for e in day_history if e.type == AttendanceType.CHECK_IN]
    check_outs = [e for e in day_history if e.type == AttendanceType.CHECK_OUT]

    break_time = timedelta(0)
    break_started: Optional[datetime] = None
    for event in day_history:
        if event.type == AttendanceType.BREAK_START:
            break_started = event.captured_at
        elif event.type == AttendanceType.BREAK_END and break_started is not None:
            if event.captured_at > break_started:
                break_time += event.captured_at - break_started
            break_started = None

    if check_ins and not check_outs:
        suggested = AttendanceType.CHECK_OUT
    else:
        suggested = AttendanceType.CHECK_IN

    return DaySummary(
        state=current_state(day_history),
        has_checked_in=bool(check_ins),
        has_checked_out=bool(check_outs),
        last_check_in=check_ins[-1] if check_ins else None,
        last_check_out=check_outs[-1] if check_outs else None,
        break_time=break_time,
        suggested_type=suggested,
    )


class AttendanceStateMachine:
    """Confirms identities and creates attendance events.

    Attributes:
        matcher: Descriptor matcher used to confirm the identity
        strict: Enforce the transition table (False keeps the permissive
                behaviour where any type is accepted at any time)

    Example:
        >>> machine = AttendanceStateMachine(DescriptorMatcher(), strict=True)
        >>> event = machine.request_event(
        ...     "EMP-7", AttendanceType.CHECK_IN, vector, templates, [],
        ...     origin=Origin.ONLINE,
        ... )
    """

    def __init__(
        self,
        matcher: DescriptorMatcher,
        strict: bool = False,
        clock: Clock = utc_now,
    ):
        self.matcher = matcher
        self.strict = strict
        self._clock = clock

    @staticmethod
    def allowed_types(state: AttendanceState) -> FrozenSet[AttendanceType]:
        """Event types the strict transition table allows from a state."""
        return TRANSITIONS[state]

    def check_transition(
        self,
        event_type: AttendanceType,
        day_history: Sequence[AttendanceEvent],
    ) -> AttendanceState:
        """Validate an event type against today's history.

        Returns:
            The current state.

        Raises:
            InvalidTransition: In strict mode, if the type is not allowed.
        """
        state = current_state(day_history)

        if event_type not in TRANSITIONS[state]:
            if self.strict:
                raise InvalidTransition(state.value, event_type.value)
            logger.warning(
                f"Accepting out-of-sequence '{event_type.value}' in state '{state.value}' "
                f"(permissive mode)"
            )

        return state

    def request_event(
        self,
        identity: str,
        event_type: AttendanceType | str,
        vector: np.ndarray,
        templates: Sequence[np.ndarray],
        day_history: Sequence[AttendanceEvent],
        *,
        origin: Origin,
        geolocation: Optional[Geolocation] = None,
        notes: Optional[str] = None,
        captured_at: Optional[datetime] = None,
    ) -> AttendanceEvent:
        """Confirm the identity and create an attendance event.

        Args:
            identity: Identity claiming the event
            event_type: Requested event type
            vector: Live 128-D feature vector (already quality-checked)
            templates: Templates enrolled for the identity
            day_history: Identity's events so far today, oldest first
            origin: Connectivity at capture time
            geolocation: Optional capture location
            notes: Optional notes for the endpoint
            captured_at: Capture instant (defaults to the clock)

        Returns:
            New pending AttendanceEvent.

        Raises:
            IdentityNotConfirmed: If no template matches.
            InvalidTransition: In strict mode, if the type is out of sequence.
            InvalidVectorLength: If the vector is not 128 numbers long.
        """
        event_type = AttendanceType(event_type)

        result = self.matcher.match_identity(vector, templates)
        if result is None or not result.matched:
            confidence = result.confidence if result is not None else 0.0
            logger.warning(
                f"Identity '{identity}' not confirmed (confidence={confidence:.3f}, "
                f"threshold={self.matcher.threshold:.3f})"
            )
            raise IdentityNotConfirmed(identity, confidence)

        self.check_transition(event_type, day_history)

        event = AttendanceEvent(
            identity=identity,
            type=event_type,
            captured_at=captured_at or self._clock(),
            confidence=result.confidence,
            origin=origin,
            geolocation=geolocation,
            notes=notes,
        )

        logger.info(
            f"Accepted {event_type.value} for '{identity}' "
            f"(confidence={result.confidence:.3f}, origin={origin.value})"
        )

        return event

    def __repr__(self) -> str:
        return f"AttendanceStateMachine(strict={self.strict}, matcher={self.matcher})"
