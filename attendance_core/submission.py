"""Async client for the attendance submission endpoint."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import httpx
import numpy as np

from attendance_core.config import Config
from attendance_core.exceptions import SubmissionFailed
from attendance_core.interfaces import AttendanceEvent, Origin
from attendance_core.logging_config import get_logger

logger = get_logger(__name__)

SUBMIT_PATH = "/attendance/face-recognition"


def build_form(event: AttendanceEvent, feature_vector: np.ndarray) -> Dict[str, str]:
    """Build the multipart form fields for one event."""
    form = {
        "faceDescriptor": json.dumps([float(v) for v in feature_vector]),
        "type": event.type.value,
        "confidence": str(event.confidence),
        "capturedAt": event.captured_at.isoformat(),
        "isOfflineEntry": "true" if event.origin == Origin.OFFLINE else "false",
        "clientEventId": event.event_id,
    }
    if event.geolocation is not None:
        location: Dict[str, Any] = {
            "latitude": event.geolocation.lat,
            "longitude": event.geolocation.lng,
        }
        if event.geolocation.address:
            location["address"] = event.geolocation.address
        form["location"] = json.dumps(location)
    if event.notes:
        form["notes"] = event.notes
    return form


class HttpSubmitter:
    """Posts attendance events to the API.

    Example:
        >>> submitter = HttpSubmitter.from_config(get_config())
        >>> record = await submitter.submit(event, vector)
        >>> await submitter.close()
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: Config) -> HttpSubmitter:
        return cls(config.api_base_url, config.api_token, config.request_timeout)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> HttpSubmitter:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def submit(
        self,
        event: AttendanceEvent,
        feature_vector: np.ndarray,
        image_jpeg: Optional[bytes] = None,
    ) -> Dict[str, Any]:
        """Submit one event.

        Returns:
            The created attendance record returned by the API.

        Raises:
            SubmissionFailed: On network errors, timeouts or error statuses.
        """
        files = None
        if image_jpeg is not None:
            filename = f"attendance-{event.event_id}.jpg"
            files = {"faceImage": (filename, image_jpeg, "image/jpeg")}

        if self._client.is_closed:
            raise SubmissionFailed("Attendance API client is closed")

        try:
            response = await self._client.post(
                SUBMIT_PATH,
                data=build_form(event, feature_vector),
                files=files,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise SubmissionFailed("Attendance API timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise SubmissionFailed(
                f"Attendance API returned {exc.response.status_code}: {exc.response.text}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise SubmissionFailed(f"Attendance API unreachable: {exc}") from exc

        try:
            payload = response.json() if response.content else {}
        except ValueError as exc:
            raise SubmissionFailed("Attendance API returned invalid JSON") from exc

        logger.debug(f"Submitted {event.type.value} for '{event.identity}' ({event.event_id})")
        if not isinstance(payload, dict):
            # The API stored the event; keep whatever body it sent
            logger.warning(f"Unexpected attendance API payload: {type(payload).__name__}")
            return {"response": payload}
        return payload.get("attendance", payload)

    def __repr__(self) -> str:
        return f"HttpSubmitter(base_url={self._client.base_url})"
