"""Attendance engine service.

This module provides the facade that ties the reconciliation pipeline
together:

1. Enrollment: extract -> quality gate -> enrollment accumulator
2. Attendance: extract -> quality gate -> identity match -> state machine
   -> submit online, or enqueue offline
3. Reconciliation: drain the offline queue when connectivity returns
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np

from attendance_core.attendance import AttendanceStateMachine, Clock, utc_now
from attendance_core.capture import (
    CaptureSession,
    FrameSource,
    LiveDetectionLoop,
    ResultCallback,
    WebcamSource,
    encode_jpeg,
)
from attendance_core.config import Config, get_config
from attendance_core.enrollment import EnrollmentAccumulator, EnrollmentProgress, EnrollmentState
from attendance_core.exceptions import (
    ExtractionFailed,
    ModelNotReady,
    QualityRejected,
    SubmissionFailed,
)
from attendance_core.interfaces import (
    AttendanceEvent,
    AttendanceType,
    DescriptorExtractor,
    Extraction,
    Geolocation,
    KeyValueStore,
    Origin,
    Submitter,
)
from attendance_core.lifecycle import MatcherLifecycle
from attendance_core.logging_config import get_logger
from attendance_core.matcher import DescriptorMatcher
from attendance_core.offline_queue import DrainReport, OfflineQueue, SyncReconciler
from attendance_core.quality import QualityGate

logger = get_logger(__name__)

ENROLLMENT_PREFIX = "enrollment_"


def enrollment_key(identity: str) -> str:
    """Store key for an identity's enrollment state (hex keeps it filename-safe)."""
    return f"{ENROLLMENT_PREFIX}{identity.encode('utf-8').hex()}"


@dataclass
class AttendanceOutcome:
    """Result of an attendance capture.

    Attributes:
        event: The created event (origin offline if it was queued)
        queued: True if the event went to the offline queue
        record: Attendance record returned by the API when submitted online

    Example:
        >>> outcome = await engine.submit_attendance_capture("EMP-7", frame, "check-in")
        >>> print(f"{outcome.event.type.value}: queued={outcome.queued}")
        check-in: queued=False
    """

    event: AttendanceEvent
    queued: bool
    record: Optional[Dict[str, Any]] = None

    def __repr__(self) -> str:
        return (
            f"AttendanceOutcome(type='{self.event.type.value}', "
            f"identity='{self.event.identity}', queued={self.queued})"
        )


class AttendanceEngine:
    """Biometric attendance reconciliation engine.

    Attributes:
        config: Engine configuration
        submitter: Attendance submission endpoint
        store: Local log holding enrollments and the offline queue
        online: Whether the submission endpoint is believed reachable
        matcher: Descriptor matcher
        quality_gate: Capture quality gate
        accumulator: Enrollment accumulator
        state_machine: Attendance state machine
        queue: Offline queue
        reconciler: Offline queue reconciler
        lifecycle: Readiness handle of the descriptor extractor

    Example:
        >>> engine = AttendanceEngine.from_config(get_config())
        >>> await engine.initialize()
        >>> progress = await engine.submit_enrollment_capture("EMP-7", frame)
        >>> outcome = await engine.submit_attendance_capture("EMP-7", frame, "check-in")
    """

    def __init__(
        self,
        extractor_loader: Callable[[], DescriptorExtractor],
        submitter: Submitter,
        store: KeyValueStore,
        config: Optional[Config] = None,
        *,
        online: bool = True,
        send_images: bool = False,
        clock: Clock = utc_now,
        submitter_factory: Optional[Callable[[], Submitter]] = None,
    ):
        """Initialize the engine.

        Args:
            extractor_loader: Blocking callable returning the descriptor
                              extractor; runs once, in a worker thread
            submitter: Attendance submission endpoint
            store: Local log for enrollments and queued events
            config: Configuration object. If None, loads from .env
            online: Initial connectivity
            send_images: Attach the captured frame as JPEG to online submissions
            clock: Source of capture timestamps
            submitter_factory: Builds a new submitter. When given, the engine
                               owns the submitter: dispose() closes it and
                               the next initialize() builds a fresh one
        """
        if config is None:
            config = get_config()

        self.config = config
        self.submitter = submitter
        self.store = store
        self.online = online
        self.send_images = send_images

        self.matcher = DescriptorMatcher(threshold=config.confidence_threshold)
        self.quality_gate = QualityGate(
            min_detection_score=config.min_detection_score,
            min_face_size=config.min_face_size,
            max_pose_offset=config.max_pose_offset,
        )
        self.accumulator = EnrollmentAccumulator(
            target=config.enrollment_target,
            max_attempts=config.max_enrollment_attempts,
        )
        self.state_machine = AttendanceStateMachine(
            self.matcher, strict=config.strict_transitions, clock=clock
        )
        self.queue = OfflineQueue(store, max_attempts=config.max_sync_attempts)
        self.reconciler = SyncReconciler(self.queue)
        self.lifecycle: MatcherLifecycle[DescriptorExtractor] = MatcherLifecycle(
            extractor_loader, name="descriptor extractor"
        )

        self._restoring: Optional[asyncio.Future[None]] = None
        self._submitter_factory = submitter_factory
        self._submitter_closed = False

        logger.info(
            f"Initialized AttendanceEngine (threshold={config.confidence_threshold:.2f}, "
            f"strict={config.strict_transitions}, online={online})"
        )

    @classmethod
    def from_config(cls, config: Optional[Config] = None, **kwargs: Any) -> AttendanceEngine:
        """Create an engine with the dlib extractor, HTTP submitter and JSON store."""
        from attendance_core.storage import JsonDirectoryStore
        from attendance_core.submission import HttpSubmitter

        if config is None:
            config = get_config()

        def load_extractor() -> DescriptorExtractor:
            from attendance_core.backends.dlib import DlibDescriptorExtractor

            return DlibDescriptorExtractor()

        def build_submitter() -> Submitter:
            return HttpSubmitter.from_config(config)

        return cls(
            load_extractor,
            build_submitter(),
            JsonDirectoryStore(config.offline_dir),
            config,
            submitter_factory=build_submitter,
            **kwargs,
        )

    # Lifecycle

    async def initialize(self) -> None:
        """Restore local state and load the extractor.

        Safe to call repeatedly and concurrently. After a failure the next
        call retries.
        """
        if self._submitter_closed:
            self.submitter = self._submitter_factory()
            self._submitter_closed = False

        if self._restoring is None:
            self._restoring = asyncio.ensure_future(self._restore())

        restoring = self._restoring
        try:
            await asyncio.shield(restoring)
        except Exception:
            if self._restoring is restoring:
                self._restoring = None
            raise

        await self.lifecycle.initialize()

    async def _restore(self) -> None:
        keys = await self.store.list_keys(ENROLLMENT_PREFIX)
        for key in keys:
            data = await self.store.get(key)
            if data is not None:
                self.accumulator.restore(EnrollmentState.from_dict(data))
        await self.queue.load()
        logger.info(
            f"Restored {len(keys)} enrollments, {len(self.queue)} queued events"
        )

    def is_ready(self) -> bool:
        restored = (
            self._restoring is not None
            and self._restoring.done()
            and not self._restoring.cancelled()
            and self._restoring.exception() is None
        )
        return restored and self.lifecycle.is_ready()

    async def dispose(self) -> None:
        """Release the extractor, and the submitter if the engine owns it."""
        self.lifecycle.dispose()
        self._restoring = None
        if self._submitter_factory is not None and not self._submitter_closed:
            self._submitter_closed = True
            await self.submitter.close()
        logger.info("Attendance engine disposed")

    def _extractor(self) -> DescriptorExtractor:
        if not self.is_ready():
            raise ModelNotReady("Attendance engine is not initialized; call initialize() first")
        return self.lifecycle.model

    async def _extract(self, frame: np.ndarray) -> Extraction:
        extractor = self._extractor()
        try:
            extraction = await asyncio.to_thread(extractor.extract, frame)
        except ExtractionFailed:
            raise
        except Exception as e:
            raise ExtractionFailed(f"Descriptor extraction failed: {e}") from e

        if extraction is None:
            raise ExtractionFailed("No face detected")
        return extraction

    # Enrollment

    async def submit_enrollment_capture(
        self, identity: str, frame: np.ndarray
    ) -> EnrollmentProgress:
        """Offer one frame for an identity's enrollment.

        Returns:
            EnrollmentProgress after the template was accepted.

        Raises:
            ModelNotReady: If the engine is not initialized.
            ExtractionFailed: If no single face could be extracted.
            QualityRejected: If the capture failed the quality gate.
            AlreadyEnrolled: If the identity is already enrolled.
            EnrollmentAttemptsExhausted: If the identity must be reset first.
        """
        extraction = await self._extract(frame)
        report = self.quality_gate.assess_extraction(extraction)

        try:
            return self.accumulator.submit_capture(identity, extraction.feature_vector, report)
        finally:
            await self._save_enrollment(identity)

    async def reset_enrollment(self, identity: str) -> None:
        """Discard an identity's templates and restore its attempt budget."""
        self.accumulator.reset(identity)
        await self._save_enrollment(identity)

    async def _save_enrollment(self, identity: str) -> None:
        state = self.accumulator.state(identity)
        if state is None:
            return
        try:
            await self.store.set(enrollment_key(identity), state.to_dict())
        except Exception as e:
            logger.error(f"Could not persist enrollment of '{identity}': {e}")

    # Attendance

    async def submit_attendance_capture(
        self,
        identity: str,
        frame: np.ndarray,
        event_type: AttendanceType | str,
        day_history: Sequence[AttendanceEvent] = (),
        geolocation: Optional[Geolocation] = None,
        notes: Optional[str] = None,
    ) -> AttendanceOutcome:
        """Confirm an identity from a frame and record an attendance event.

        Online, the event is submitted right away; if that fails it is
        queued. Offline, it is queued. Queued events always carry origin
        offline.

        Args:
            identity: Identity claiming the event
            frame: Captured frame, BGR [H, W, 3]
            event_type: Requested event type
            day_history: Identity's events so far today, oldest first
            geolocation: Optional capture location
            notes: Optional notes for the endpoint

        Returns:
            AttendanceOutcome with the event and where it went.

        Raises:
            ModelNotReady: If the engine is not initialized.
            ExtractionFailed: If no single face could be extracted.
            QualityRejected: If the capture failed the quality gate.
            IdentityNotConfirmed: If the face does not match the identity.
            InvalidTransition: In strict mode, if the type is out of sequence.
        """
        extraction = await self._extract(frame)
        report = self.quality_gate.assess_extraction(extraction)
        if not report.valid:
            logger.warning(f"Rejected attendance capture for '{identity}': {list(report.issues)}")
            raise QualityRejected(report.issues, report.score)

        vector = extraction.feature_vector
        event = self.state_machine.request_event(
            identity,
            event_type,
            vector,
            self.accumulator.templates(identity),
            day_history,
            origin=Origin.ONLINE if self.online else Origin.OFFLINE,
            geolocation=geolocation,
            notes=notes,
        )

        if not self.online:
            await self.queue.enqueue(event, vector)
            return AttendanceOutcome(event=event, queued=True)

        # Earlier offline events go first
        if len(self.queue) and not (await self.drain_offline_queue()).complete:
            return await self._enqueue_offline(event, vector)

        image = encode_jpeg(frame) if self.send_images else None
        try:
            record = await self.submitter.submit(event, vector, image)
        except SubmissionFailed as e:
            logger.warning(f"Online submission failed, queueing offline: {e}")
            return await self._enqueue_offline(event, vector)
        except Exception as e:
            logger.error(f"Unexpected error submitting online, queueing offline: {e}", exc_info=True)
            return await self._enqueue_offline(event, vector)

        return AttendanceOutcome(event=event.mark_submitted(), queued=False, record=record)

    async def _enqueue_offline(self, event: AttendanceEvent, vector: np.ndarray) -> AttendanceOutcome:
        event = event.with_origin(Origin.OFFLINE)
        await self.queue.enqueue(event, vector)
        return AttendanceOutcome(event=event, queued=True)

    # Reconciliation

    async def drain_offline_queue(self) -> DrainReport:
        """Replay queued events in capture order, stopping at the first failure."""
        return await self.reconciler.drain(self.submitter.submit)

    async def set_online(self, online: bool) -> Optional[DrainReport]:
        """Update connectivity. Coming back online drains the queue.

        Returns:
            The DrainReport if a drain ran, otherwise None.
        """
        was_online, self.online = self.online, online
        if online == was_online:
            return None

        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        if online:
            return await self.drain_offline_queue()
        return None

    # Capture

    def open_capture_session(self) -> CaptureSession:
        """Create a capture session for the configured camera."""
        return CaptureSession(lambda: WebcamSource(camera_id=self.config.camera_id))

    def create_live_loop(
        self,
        frame_source: FrameSource,
        on_result: Optional[ResultCallback] = None,
    ) -> LiveDetectionLoop:
        """Create a live detection loop using the loaded extractor."""
        return LiveDetectionLoop(
            self._extractor(),
            frame_source,
            on_result=on_result,
            interval=self.config.poll_interval,
        )

    def __repr__(self) -> str:
        return (
            f"AttendanceEngine(ready={self.is_ready()}, online={self.online}, "
            f"enrolled={len(self.accumulator.enrolled_identities())}, queued={len(self.queue)})"
        )
