"""Unit tests for the attendance state machine."""

from __future__ import annotations

from datetime import timedelta

import pytest

from attendance_core.attendance import (
    AttendanceState,
    AttendanceStateMachine,
    current_state,
    format_duration,
    summarize_day,
    working_hours,
)
from attendance_core.exceptions import (
    IdentityNotConfirmed,
    InvalidTransition,
    InvalidWorkingHours,
)
from attendance_core.interfaces import AttendanceType, Geolocation, Origin, SyncState
from attendance_core.matcher import DescriptorMatcher
from tests.conftest import BASE_TIME, make_event, make_vector


@pytest.fixture
def templates():
    return [make_vector(0.0), make_vector(0.1)]


@pytest.fixture
def machine():
    return AttendanceStateMachine(DescriptorMatcher(), clock=lambda: BASE_TIME)


@pytest.fixture
def strict_machine():
    return AttendanceStateMachine(DescriptorMatcher(), strict=True, clock=lambda: BASE_TIME)


def test_current_state():
    """Test that the last event of the day determines the state."""
    assert current_state([]) == AttendanceState.NOT_CHECKED_IN
    assert current_state([make_event(AttendanceType.CHECK_IN)]) == AttendanceState.CHECKED_IN
    assert (
        current_state([make_event(AttendanceType.CHECK_IN), make_event(AttendanceType.BREAK_START, 60)])
        == AttendanceState.ON_BREAK
    )
    assert (
        current_state([make_event(AttendanceType.CHECK_IN), make_event(AttendanceType.CHECK_OUT, 480)])
        == AttendanceState.CHECKED_OUT
    )


def test_request_event(machine, templates):
    """Test creating an event for a confirmed identity."""
    event = machine.request_event(
        "EMP-7",
        "check-in",
        make_vector(0.18),
        templates,
        [],
        origin=Origin.ONLINE,
        geolocation=Geolocation(40.4, -3.7, "Main office"),
    )

    assert event.identity == "EMP-7"
    assert event.type == AttendanceType.CHECK_IN
    assert event.confidence == pytest.approx(0.92)
    assert event.origin == Origin.ONLINE
    assert event.sync_state == SyncState.PENDING
    assert event.captured_at == BASE_TIME
    assert event.geolocation.address == "Main office"


def test_confidence_from_best_template(machine):
    """Test that the event carries the match confidence of the closest template."""
    event = machine.request_event(
        "EMP-7", AttendanceType.CHECK_IN, make_vector(0.18), [make_vector(0.0)], [],
        origin=Origin.ONLINE,
    )

    assert event.confidence == pytest.approx(0.82)


def test_identity_not_confirmed(machine, templates):
    """Test that a distant face (distance ~0.9) creates no event."""
    with pytest.raises(IdentityNotConfirmed) as exc_info:
        machine.request_event(
            "EMP-7", AttendanceType.CHECK_IN, make_vector(1.0), templates, [],
            origin=Origin.ONLINE,
        )

    assert exc_info.value.confidence == pytest.approx(0.1)


def test_no_templates_not_confirmed(machine):
    """Test that an identity without templates cannot be confirmed."""
    with pytest.raises(IdentityNotConfirmed):
        machine.request_event(
            "EMP-7", AttendanceType.CHECK_IN, make_vector(), [], [], origin=Origin.ONLINE
        )


def test_permissive_accepts_out_of_sequence(machine, templates):
    """Test that permissive mode accepts a check-out with no check-in."""
    event = machine.request_event(
        "EMP-7", AttendanceType.CHECK_OUT, make_vector(), templates, [], origin=Origin.ONLINE
    )

    assert event.type == AttendanceType.CHECK_OUT


def test_strict_rejects_out_of_sequence(strict_machine, templates):
    """Test that strict mode enforces the transition table."""
    with pytest.raises(InvalidTransition):
        strict_machine.request_event(
            "EMP-7", AttendanceType.CHECK_OUT, make_vector(), templates, [], origin=Origin.ONLINE
        )

    history = [make_event(AttendanceType.CHECK_IN), make_event(AttendanceType.CHECK_OUT, 480)]
    with pytest.raises(InvalidTransition):
        strict_machine.check_transition(AttendanceType.CHECK_IN, history)


def test_strict_full_day(strict_machine, templates):
    """Test a valid day: check-in, break, back, check-out."""
    history = []
    for event_type in (
        AttendanceType.CHECK_IN,
        AttendanceType.BREAK_START,
        AttendanceType.BREAK_END,
        AttendanceType.CHECK_OUT,
    ):
        history.append(
            strict_machine.request_event(
                "EMP-7", event_type, make_vector(), templates, history, origin=Origin.ONLINE
            )
        )

    assert current_state(history) == AttendanceState.CHECKED_OUT
    assert AttendanceStateMachine.allowed_types(AttendanceState.CHECKED_OUT) == frozenset()


def test_identity_checked_before_transition(strict_machine):
    """Test that an unconfirmed identity fails before sequencing is checked."""
    with pytest.raises(IdentityNotConfirmed):
        strict_machine.request_event(
            "EMP-7", AttendanceType.CHECK_OUT, make_vector(1.0), [make_vector()], [],
            origin=Origin.ONLINE,
        )


def test_working_hours():
    """Test duration between check-in and check-out."""
    check_in = BASE_TIME
    check_out = BASE_TIME + timedelta(hours=8, minutes=30)

    duration = working_hours(check_in, check_out)

    assert duration == timedelta(hours=8, minutes=30)
    assert format_duration(duration) == "8h 30m"


def test_negative_working_hours():
    """Test that a check-out before the check-in is rejected."""
    with pytest.raises(InvalidWorkingHours):
        working_hours(BASE_TIME, BASE_TIME - timedelta(minutes=1))


def test_summarize_day():
    """Test the day projection with a closed break."""
    history = [
        make_event(AttendanceType.CHECK_IN, 0),
        make_event(AttendanceType.BREAK_START, 240),
        make_event(AttendanceType.BREAK_END, 270),
    ]

    summary = summarize_day(history)

    assert summary.state == AttendanceState.CHECKED_IN
    assert summary.has_checked_in
    assert not summary.has_checked_out
    assert summary.break_time == timedelta(minutes=30)
    assert summary.suggested_type == AttendanceType.CHECK_OUT
    assert summary.worked is None


def test_summarize_day_checked_out():
    """Test the projection after check-out."""
    history = [make_event(AttendanceType.CHECK_IN, 0), make_event(AttendanceType.CHECK_OUT, 480)]

    summary = summarize_day(history)

    assert summary.worked == timedelta(hours=8)
    assert summary.suggested_type == AttendanceType.CHECK_IN


def test_summarize_empty_day():
    summary = summarize_day([])

    assert summary.state == AttendanceState.NOT_CHECKED_IN
    assert summary.last_check_in is None
    assert summary.suggested_type == AttendanceType.CHECK_IN
