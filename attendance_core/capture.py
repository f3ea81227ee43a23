"""Camera access and live detection.

This module provides the OpenCV webcam source, a capture session that owns
exactly one camera at a time, and the polling loop that runs the descriptor
extractor on live frames for preview feedback.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Tuple

import cv2
import numpy as np

from attendance_core.exceptions import CameraAlreadyAcquired, ExtractionFailed
from attendance_core.interfaces import DescriptorExtractor, Extraction, VideoSource
from attendance_core.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 0.5

CameraFactory = Callable[[], VideoSource]
FrameSource = Callable[[], Optional[np.ndarray]]
ResultCallback = Callable[[Optional[Extraction]], Any]


class WebcamSource:
    """Video source for reading from a webcam or USB camera.

    Attributes:
        camera_id: Camera device ID (0 for default camera)
        cap: OpenCV VideoCapture object

    Example:
        >>> with WebcamSource(camera_id=0) as source:
        ...     success, frame = source.read()
    """

    def __init__(self, camera_id: int = 0, width: int = 640, height: int = 480):
        """Open the camera.

        Args:
            camera_id: Camera device index (default: 0 for first camera)
            width: Requested frame width
            height: Requested frame height

        Raises:
            RuntimeError: If the camera cannot be opened.
        """
        self.camera_id = camera_id
        self.cap = cv2.VideoCapture(camera_id)

        if not self.cap.isOpened():
            raise RuntimeError(
                f"Failed to open webcam with camera_id={camera_id}. "
                f"Check if camera is connected and not in use by another application."
            )

        # Not every camera honours the requested size
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        actual_width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(f"Opened webcam {camera_id}: {actual_width}x{actual_height}")

    def read(self) -> Tuple[bool, Optional[np.ndarray]]:
        """Read next frame from webcam.

        Returns:
            Tuple of (success, frame) where frame is BGR [H, W, 3] or None.
        """
        if not self.cap.isOpened():
            logger.error("Webcam is not opened")
            return False, None

        success, frame = self.cap.read()

        if not success:
            logger.warning("Failed to read frame from webcam")
            return False, None

        return True, frame

    def release(self) -> None:
        """Release webcam resources."""
        if self.cap.isOpened():
            self.cap.release()
            logger.info(f"Released webcam {self.camera_id}")

    @property
    def is_opened(self) -> bool:
        return self.cap.isOpened()

    def __repr__(self) -> str:
        status = "opened" if self.is_opened else "closed"
        return f"WebcamSource(camera_id={self.camera_id}, status={status})"

    def __enter__(self) -> WebcamSource:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


def encode_jpeg(frame_bgr: np.ndarray, quality: int = 80) -> bytes:
    """Encode a BGR frame as JPEG for the submission endpoint.

    Raises:
        ValueError: If OpenCV cannot encode the frame.
    """
    success, buffer = cv2.imencode(".jpg", frame_bgr, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not success:
        raise ValueError("Failed to encode frame as JPEG")
    return buffer.tobytes()


class CaptureSession:
    """Scoped owner of a single camera.

    start() acquires the camera; close() releases it. Every exit path
    (normal exit, cancellation, error, teardown) goes through close(), and
    closing twice is harmless.

    Example:
        >>> with CaptureSession(lambda: WebcamSource(0)) as session:
        ...     frame = session.read_frame()
    """

    def __init__(self, camera_factory: CameraFactory):
        self._camera_factory = camera_factory
        self._camera: Optional[VideoSource] = None

    @property
    def active(self) -> bool:
        return self._camera is not None

    @property
    def camera(self) -> Optional[VideoSource]:
        return self._camera

    def start(self) -> VideoSource:
        """Acquire the camera.

        Raises:
            CameraAlreadyAcquired: If this session already holds a camera.
        """
        if self._camera is not None:
            raise CameraAlreadyAcquired("Capture session already holds a camera")

        self._camera = self._camera_factory()
        logger.debug(f"Capture session started with {self._camera}")
        return self._camera

    def read_frame(self) -> Optional[np.ndarray]:
        """Read one frame, or None if no camera is held or the read failed."""
        if self._camera is None:
            return None
        success, frame = self._camera.read()
        return frame if success else None

    def close(self) -> None:
        """Release the camera if one is held."""
        camera, self._camera = self._camera, None
        if camera is None:
            return
        camera.release()
        logger.debug("Capture session closed")

    def cancel(self) -> None:
        """Stop capturing; same as close()."""
        self.close()

    def __enter__(self) -> CaptureSession:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"CaptureSession(active={self.active})"


class LiveDetectionLoop:
    """Polls frames and runs the extractor for live face feedback.

    At most one extraction is in flight. A tick that fires while the previous
    extraction is still running is skipped, not queued. The frame read and
    the extraction both run in a worker thread.

    Attributes:
        interval: Seconds between ticks
        skipped: Ticks skipped because an extraction was in flight
        processed: Ticks that ran an extraction

    Example:
        >>> loop = LiveDetectionLoop(extractor, session.read_frame, on_result=show_box)
        >>> task = asyncio.create_task(loop.run())
        >>> ...
        >>> loop.stop()
    """

    def __init__(
        self,
        extractor: DescriptorExtractor,
        frame_source: FrameSource,
        on_result: Optional[ResultCallback] = None,
        interval: float = DEFAULT_POLL_INTERVAL,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")

        self.extractor = extractor
        self.frame_source = frame_source
        self.on_result = on_result
        self.interval = interval
        self.skipped = 0
        self.processed = 0
        self._in_flight = False
        self._running = False
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def running(self) -> bool:
        return self._running

    def tick(self) -> Optional[asyncio.Task[None]]:
        """Start one extraction unless one is already running.

        Returns:
            The task running the extraction, or None if the tick was skipped.
        """
        if self._in_flight:
            self.skipped += 1
            logger.debug(f"Skipping live detection tick ({self.skipped} skipped)")
            return None

        self._in_flight = True
        task = asyncio.ensure_future(self._process())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _process(self) -> None:
        try:
            frame = await asyncio.to_thread(self.frame_source)
            if frame is None:
                return
            try:
                extraction = await asyncio.to_thread(self.extractor.extract, frame)
            except ExtractionFailed as exc:
                logger.debug(f"Live detection: {exc}")
                extraction = None
            except Exception as e:
                logger.error(f"Error during live detection: {e}", exc_info=True)
                extraction = None
            self.processed += 1
            if self.on_result is not None:
                self.on_result(extraction)
        finally:
            self._in_flight = False

    async def run(self) -> None:
        """Tick every interval until stop() is called or the task is cancelled."""
        self._running = True
        logger.info(f"Live detection started (interval={self.interval:.2f}s)")
        try:
            while self._running:
                self.tick()
                await asyncio.sleep(self.interval)
        finally:
            self._running = False
            for task in list(self._pending):
                task.cancel()
            logger.info(
                f"Live detection stopped ({self.processed} processed, {self.skipped} skipped)"
            )

    def stop(self) -> None:
        self._running = False

    def __repr__(self) -> str:
        return (
            f"LiveDetectionLoop(interval={self.interval}, running={self._running}, "
            f"skipped={self.skipped})"
        )
