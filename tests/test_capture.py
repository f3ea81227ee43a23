"""Unit tests for capture sessions and the live detection loop."""

from __future__ import annotations

import asyncio
import threading
from unittest.mock import Mock, patch

import numpy as np
import pytest

from attendance_core.capture import (
    CaptureSession,
    LiveDetectionLoop,
    WebcamSource,
    encode_jpeg,
)
from attendance_core.exceptions import CameraAlreadyAcquired, ExtractionFailed
from tests.conftest import make_extraction


class FakeCamera:
    """Camera double tracking release calls."""

    def __init__(self):
        self.released = 0
        self.frame = np.zeros((480, 640, 3), dtype=np.uint8)

    def read(self):
        if self.released:
            return False, None
        return True, self.frame

    def release(self):
        self.released += 1

    @property
    def is_opened(self):
        return not self.released


@pytest.fixture
def camera():
    return FakeCamera()


def test_session_acquires_and_releases(camera):
    """Test that a session releases its camera on exit."""
    with CaptureSession(lambda: camera) as session:
        assert session.active
        assert session.read_frame() is not None

    assert camera.released == 1
    assert not session.active
    assert session.read_frame() is None


def test_second_acquire_rejected(camera):
    """Test that a session never holds two cameras."""
    factory = Mock(return_value=camera)
    session = CaptureSession(factory)
    session.start()

    with pytest.raises(CameraAlreadyAcquired):
        session.start()

    assert factory.call_count == 1
    session.close()


def test_release_on_error(camera):
    """Test that the camera is released when the body raises."""
    with pytest.raises(RuntimeError):
        with CaptureSession(lambda: camera):
            raise RuntimeError("boom")

    assert camera.released == 1


def test_cancel_then_close_releases_once(camera):
    """Test that cancel and close share a single release."""
    session = CaptureSession(lambda: camera)
    session.start()

    session.cancel()
    session.close()

    assert camera.released == 1


def test_restart_after_close():
    """Test that a closed session can acquire a new camera."""
    cameras = [FakeCamera(), FakeCamera()]
    session = CaptureSession(lambda: cameras.pop(0))

    session.start()
    session.close()
    second = session.start()

    assert second.is_opened
    session.close()


def test_webcam_source_open_failure():
    """Test that an unavailable camera raises RuntimeError."""
    with patch("attendance_core.capture.cv2.VideoCapture") as capture_cls:
        capture_cls.return_value.isOpened.return_value = False

        with pytest.raises(RuntimeError, match="Failed to open webcam"):
            WebcamSource(camera_id=3)


def test_webcam_source_read_and_release():
    """Test reading and releasing through the OpenCV wrapper."""
    frame = np.zeros((480, 640, 3), dtype=np.uint8)
    with patch("attendance_core.capture.cv2.VideoCapture") as capture_cls:
        cap = capture_cls.return_value
        cap.isOpened.return_value = True
        cap.get.return_value = 640
        cap.read.return_value = (True, frame)

        with WebcamSource(camera_id=0) as source:
            success, read = source.read()

        assert success
        assert read is frame
        cap.release.assert_called_once()


def test_encode_jpeg():
    """Test that a frame encodes to JPEG bytes."""
    data = encode_jpeg(np.zeros((64, 64, 3), dtype=np.uint8))

    assert data[:2] == b"\xff\xd8"


def test_loop_rejects_bad_interval(camera):
    with pytest.raises(ValueError):
        LiveDetectionLoop(Mock(), camera.read, interval=0)


@pytest.mark.asyncio
async def test_tick_skips_while_in_flight(camera):
    """Test that overlapping ticks are skipped, not queued."""
    gate = threading.Event()
    results = []

    class SlowExtractor:
        def extract(self, frame_bgr):
            gate.wait(timeout=5)
            return make_extraction()

    loop = LiveDetectionLoop(
        SlowExtractor(), lambda: camera.frame, on_result=results.append, interval=0.1
    )

    task = loop.tick()
    assert loop.in_flight
    assert loop.tick() is None
    assert loop.tick() is None

    gate.set()
    await task

    assert loop.skipped == 2
    assert loop.processed == 1
    assert len(results) == 1
    assert not loop.in_flight


@pytest.mark.asyncio
async def test_extraction_failure_reports_no_face(camera):
    """Test that extractor errors clear the in-flight flag and report None."""
    extractor = Mock()
    extractor.extract.side_effect = ExtractionFailed("two faces")
    results = []

    loop = LiveDetectionLoop(extractor, lambda: camera.frame, on_result=results.append)
    await loop.tick()

    assert results == [None]
    assert not loop.in_flight


@pytest.mark.asyncio
async def test_frame_read_off_event_loop(camera):
    """Test that the blocking frame read runs in a worker thread."""
    readers = []

    def read_frame():
        readers.append(threading.get_ident())
        return camera.frame

    extractor = Mock()
    extractor.extract.return_value = make_extraction()
    loop = LiveDetectionLoop(extractor, read_frame)

    await loop.tick()

    assert len(readers) == 1
    assert readers[0] != threading.get_ident()
    assert loop.processed == 1


@pytest.mark.asyncio
async def test_no_frame_skips_extraction(camera):
    """Test that a missing frame does not call the extractor."""
    extractor = Mock()
    loop = LiveDetectionLoop(extractor, lambda: None)

    await loop.tick()

    extractor.extract.assert_not_called()
    assert loop.processed == 0


@pytest.mark.asyncio
async def test_run_and_stop(camera):
    """Test that run ticks periodically until stopped."""
    extractor = Mock()
    extractor.extract.return_value = make_extraction()
    loop = LiveDetectionLoop(extractor, lambda: camera.frame, interval=0.01)

    task = asyncio.create_task(loop.run())
    await asyncio.sleep(0.1)
    loop.stop()
    await task

    assert loop.processed >= 1
    assert not loop.running


@pytest.mark.asyncio
async def test_run_cancelled_releases_session(camera):
    """Test that cancelling a live session releases the camera."""
    extractor = Mock()
    extractor.extract.return_value = None

    async def live():
        with CaptureSession(lambda: camera) as session:
            await LiveDetectionLoop(extractor, session.read_frame, interval=0.01).run()

    task = asyncio.create_task(live())
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert camera.released == 1
