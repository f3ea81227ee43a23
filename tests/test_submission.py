"""Unit tests for the HTTP submitter."""

from __future__ import annotations

import dataclasses
import json

import httpx
import pytest

from attendance_core.exceptions import SubmissionFailed
from attendance_core.interfaces import AttendanceType, Geolocation, Origin
from attendance_core.submission import SUBMIT_PATH, HttpSubmitter, build_form
from tests.conftest import make_event, make_vector


def make_submitter(handler, token="secret"):
    return HttpSubmitter(
        "http://api.test/api/",
        token=token,
        transport=httpx.MockTransport(handler),
    )


def test_build_form():
    """Test the form fields sent for an event."""
    event = make_event(AttendanceType.CHECK_IN, origin=Origin.OFFLINE)
    event = dataclasses.replace(event, geolocation=Geolocation(40.4, -3.7, "HQ"), notes="late bus")

    form = build_form(event, make_vector(0.5))

    assert json.loads(form["faceDescriptor"])[0] == 0.5
    assert len(json.loads(form["faceDescriptor"])) == 128
    assert form["type"] == "check-in"
    assert form["isOfflineEntry"] == "true"
    assert form["clientEventId"] == event.event_id
    assert json.loads(form["location"]) == {"latitude": 40.4, "longitude": -3.7, "address": "HQ"}
    assert form["notes"] == "late bus"


def test_build_form_minimal():
    """Test that optional fields are omitted."""
    form = build_form(make_event(origin=Origin.ONLINE), make_vector())

    assert form["isOfflineEntry"] == "false"
    assert "location" not in form
    assert "notes" not in form


@pytest.mark.asyncio
async def test_submit_success():
    """Test a successful submission returns the attendance record."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = request.content.decode()
        return httpx.Response(201, json={"attendance": {"id": 17, "type": "check-in"}})

    event = make_event()
    async with make_submitter(handler) as submitter:
        record = await submitter.submit(event, make_vector())

    assert record == {"id": 17, "type": "check-in"}
    assert seen["url"] == f"http://api.test/api{SUBMIT_PATH}"
    assert seen["auth"] == "Bearer secret"
    assert event.event_id in seen["body"]


@pytest.mark.asyncio
async def test_submit_with_image():
    """Test that the JPEG is sent as a multipart file."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["content_type"] = request.headers["Content-Type"]
        seen["body"] = request.content
        return httpx.Response(200, json={"id": 1})

    async with make_submitter(handler) as submitter:
        record = await submitter.submit(make_event(), make_vector(), image_jpeg=b"\xff\xd8jpeg")

    assert record == {"id": 1}
    assert seen["content_type"].startswith("multipart/form-data")
    assert b'name="faceImage"' in seen["body"]


@pytest.mark.asyncio
async def test_error_status_raises():
    """Test that an error response becomes SubmissionFailed with the status."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="maintenance")

    async with make_submitter(handler) as submitter:
        with pytest.raises(SubmissionFailed) as exc_info:
            await submitter.submit(make_event(), make_vector())

    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_network_error_raises():
    """Test that connection errors become SubmissionFailed."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with make_submitter(handler, token="") as submitter:
        with pytest.raises(SubmissionFailed, match="unreachable"):
            await submitter.submit(make_event(), make_vector())


@pytest.mark.asyncio
async def test_timeout_raises():
    """Test that timeouts become SubmissionFailed."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    async with make_submitter(handler) as submitter:
        with pytest.raises(SubmissionFailed, match="timed out"):
            await submitter.submit(make_event(), make_vector())


@pytest.mark.asyncio
async def test_invalid_json_raises():
    """Test that a non-JSON body is reported as a failure."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>proxy</html>")

    async with make_submitter(handler) as submitter:
        with pytest.raises(SubmissionFailed, match="invalid JSON"):
            await submitter.submit(make_event(), make_vector())


@pytest.mark.asyncio
async def test_list_payload_is_kept():
    """Test that a non-object JSON body still counts as submitted."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json=[{"id": 3}])

    async with make_submitter(handler) as submitter:
        record = await submitter.submit(make_event(), make_vector())

    assert record == {"response": [{"id": 3}]}


@pytest.mark.asyncio
async def test_closed_client_raises():
    """Test that submitting through a closed client is a SubmissionFailed."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(201, json={"id": 1})

    submitter = make_submitter(handler)
    await submitter.close()

    with pytest.raises(SubmissionFailed, match="closed"):
        await submitter.submit(make_event(), make_vector())

    assert calls == []
