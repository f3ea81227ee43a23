"""Offline queue and sync reconciler.

Attendance events created while the submission endpoint is unreachable are
appended to a durable FIFO queue. When connectivity returns the reconciler
replays them head to tail, one at a time, and marks each one submitted
exactly once.

Ordering takes priority over throughput: a drain pass stops at the first
failed submission and leaves that entry, and everything behind it, pending.
An entry that keeps failing is moved to a dead-letter log after
max_attempts failures so it cannot block the queue forever.

Storage layout in the local log:
    attendance_<sequence>   pending (or submitted, awaiting removal) entries
    deadletter_<sequence>   entries that exhausted their retry budget
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import numpy as np

from attendance_core.exceptions import QueuePersistenceFailed
from attendance_core.interfaces import (
    AttendanceEvent,
    KeyValueStore,
    SyncState,
    as_feature_vector,
)
from attendance_core.logging_config import get_logger

logger = get_logger(__name__)

QUEUE_PREFIX = "attendance_"
DEAD_LETTER_PREFIX = "deadletter_"
DEFAULT_MAX_ATTEMPTS = 5

SubmitFn = Callable[[AttendanceEvent, np.ndarray], Awaitable[Any]]


@dataclass
class OfflineQueueEntry:
    """One queued attendance event.

    Attributes:
        sequence: Position in capture order (monotonic, never reused)
        event: The queued event
        feature_vector: Raw 128-D descriptor sent along with the event
        captured_at: Capture instant
        attempts: Failed submission attempts so far
        persisted: False while the entry only exists in memory
    """

    sequence: int
    event: AttendanceEvent
    feature_vector: np.ndarray
    captured_at: datetime
    attempts: int = 0
    persisted: bool = False

    @property
    def key(self) -> str:
        return f"{QUEUE_PREFIX}{self.sequence:012d}"

    @property
    def dead_letter_key(self) -> str:
        return f"{DEAD_LETTER_PREFIX}{self.sequence:012d}"

    @property
    def sync_state(self) -> SyncState:
        return self.event.sync_state

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "event": self.event.to_dict(),
            "feature_vector": self.feature_vector.tolist(),
            "captured_at": self.captured_at.isoformat(),
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> OfflineQueueEntry:
        return cls(
            sequence=int(data["sequence"]),
            event=AttendanceEvent.from_dict(data["event"]),
            feature_vector=as_feature_vector(data["feature_vector"]),
            captured_at=datetime.fromisoformat(data["captured_at"]),
            attempts=int(data.get("attempts", 0)),
            persisted=True,
        )


@dataclass
class DrainReport:
    """Outcome of one drain pass.

    Attributes:
        submitted: Events reconciled in this pass, in order
        failed: Event whose submission failed and stopped the pass
        dead_lettered: Events moved to the dead-letter log in this pass
        remaining: Entries still queued after the pass
    """

    submitted: List[AttendanceEvent] = field(default_factory=list)
    failed: Optional[AttendanceEvent] = None
    dead_lettered: List[AttendanceEvent] = field(default_factory=list)
    remaining: int = 0

    @property
    def complete(self) -> bool:
        """True if the pass reached the end of the queue."""
        return self.failed is None


class OfflineQueue:
    """Durable FIFO of attendance events awaiting reconciliation.

    The queue is only mutated from the event loop thread, through enqueue()
    and the SyncReconciler, so it needs no locking.

    Attributes:
        max_attempts: Failed submissions before an entry is dead-lettered
                      (0 keeps retrying forever)

    Example:
        >>> queue = OfflineQueue(JsonDirectoryStore("data/offline"))
        >>> await queue.load()
        >>> await queue.enqueue(event, vector)
        >>> len(queue)
        1
    """

    def __init__(self, store: KeyValueStore, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        if max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0, got {max_attempts}")

        self.store = store
        self.max_attempts = max_attempts
        self._entries: List[OfflineQueueEntry] = []
        self._next_sequence = 1

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> Tuple[OfflineQueueEntry, ...]:
        """Queued entries, head first."""
        return tuple(self._entries)

    def pending(self) -> List[AttendanceEvent]:
        """Events not yet reconciled, head first."""
        return [e.event for e in self._entries if e.sync_state == SyncState.PENDING]

    def exhausted(self, entry: OfflineQueueEntry) -> bool:
        """True if the entry used up its retry budget."""
        return self.max_attempts > 0 and entry.attempts >= self.max_attempts

    async def load(self) -> int:
        """Rebuild the queue from the local log.

        Entries already held in memory are kept; stored entries are merged
        in sequence order.

        Returns:
            Number of entries loaded from the log.
        """
        known = {entry.key for entry in self._entries}
        loaded = 0

        for key in await self.store.list_keys(QUEUE_PREFIX):
            if key in known:
                continue
            data = await self.store.get(key)
            if data is None:
                continue
            self._entries.append(OfflineQueueEntry.from_dict(data))
            loaded += 1

        self._entries.sort(key=lambda e: e.sequence)

        dead_keys = await self.store.list_keys(DEAD_LETTER_PREFIX)
        sequences = [e.sequence for e in self._entries]
        sequences += [int(k[len(DEAD_LETTER_PREFIX):]) for k in dead_keys]
        if sequences:
            self._next_sequence = max(self._next_sequence, max(sequences) + 1)

        logger.info(
            f"Loaded {loaded} queued events ({len(self._entries)} total, "
            f"{len(dead_keys)} dead-lettered)"
        )
        return loaded

    async def enqueue(self, event: AttendanceEvent, raw_vector: np.ndarray) -> OfflineQueueEntry:
        """Append an event at the tail of the queue.

        A failure to write the local log does not drop the entry: it stays
        queued in memory and is written again on the next drain.

        Args:
            event: Pending attendance event
            raw_vector: 128-D descriptor of the capture

        Returns:
            The queued entry. Enqueueing an event that is already queued
            returns the existing entry.
        """
        for existing in self._entries:
            if existing.event.event_id == event.event_id:
                logger.debug(f"Event {event.event_id} already queued")
                return existing

        entry = OfflineQueueEntry(
            sequence=self._next_sequence,
            event=event,
            feature_vector=as_feature_vector(raw_vector),
            captured_at=event.captured_at,
        )
        self._next_sequence += 1
        self._entries.append(entry)

        try:
            await self.write(entry)
        except QueuePersistenceFailed as exc:
            logger.error(f"{exc}; entry kept in memory until the next drain")

        logger.info(
            f"Queued {event.type.value} for '{event.identity}' offline "
            f"(position {len(self._entries)})"
        )
        return entry

    async def write(self, entry: OfflineQueueEntry) -> None:
        """Write an entry to the local log.

        Raises:
            QueuePersistenceFailed: If the store rejects the write.
        """
        try:
            await self.store.set(entry.key, entry.to_dict())
        except Exception as exc:
            entry.persisted = False
            raise QueuePersistenceFailed(f"Could not persist {entry.key}: {exc}") from exc
        entry.persisted = True

    async def _delete(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except Exception as exc:
            raise QueuePersistenceFailed(f"Could not delete {key}: {exc}") from exc

    async def write_unpersisted(self) -> int:
        """Retry writing entries whose earlier persistence failed.

        Returns:
            Number of entries still unpersisted.
        """
        failures = 0
        for entry in self._entries:
            if entry.persisted:
                continue
            try:
                await self.write(entry)
            except QueuePersistenceFailed as exc:
                failures += 1
                logger.error(str(exc))
        return failures

    async def remove(self, entry: OfflineQueueEntry) -> bool:
        """Remove a reconciled entry from the queue and the local log.

        The submitted flag is written before the key is deleted, so an entry
        whose deletion fails is never submitted again after a restart.

        Returns:
            True if removed; False if the log could not be updated (the
            entry stays queued, flagged submitted, and removal is retried
            on the next drain).
        """
        try:
            await self.write(entry)
            await self._delete(entry.key)
        except QueuePersistenceFailed as exc:
            logger.error(f"{exc}; removal retried on the next drain")
            return False

        self._entries.remove(entry)
        return True

    async def dead_letter(self, entry: OfflineQueueEntry) -> bool:
        """Move an entry to the dead-letter log.

        Returns:
            True if moved; False if the log could not be updated.
        """
        try:
            await self.store.set(entry.dead_letter_key, entry.to_dict())
        except Exception as exc:
            logger.error(f"Could not dead-letter {entry.key}: {exc}")
            return False

        try:
            await self._delete(entry.key)
        except QueuePersistenceFailed as exc:
            # A reload brings the stale copy back already exhausted; it is
            # dead-lettered again under the same key
            logger.error(str(exc))

        self._entries.remove(entry)
        logger.warning(
            f"Dead-lettered {entry.event.type.value} for '{entry.event.identity}' "
            f"after {entry.attempts} failed attempts"
        )
        return True

    async def dead_letters(self) -> List[OfflineQueueEntry]:
        """Entries that exhausted their retry budget, oldest first."""
        entries = []
        for key in await self.store.list_keys(DEAD_LETTER_PREFIX):
            data = await self.store.get(key)
            if data is not None:
                entries.append(OfflineQueueEntry.from_dict(data))
        return entries

    async def requeue_dead_letters(self) -> int:
        """Move every dead-lettered entry back to the tail with a fresh budget.

        The queue entry is written before the dead letter is deleted. A dead
        letter whose event is already queued is a stale copy and is only
        deleted.

        Returns:
            Number of entries requeued.
        """
        queued = {entry.event.event_id for entry in self._entries}
        count = 0
        for dead in await self.dead_letters():
            if dead.event.event_id not in queued:
                entry = OfflineQueueEntry(
                    sequence=self._next_sequence,
                    event=dead.event,
                    feature_vector=dead.feature_vector,
                    captured_at=dead.captured_at,
                )
                self._next_sequence += 1
                try:
                    await self.write(entry)
                except QueuePersistenceFailed as exc:
                    logger.error(f"{exc}; {dead.dead_letter_key} stays dead-lettered")
                    continue
                self._entries.append(entry)
                queued.add(entry.event.event_id)
                count += 1

            try:
                await self._delete(dead.dead_letter_key)
            except QueuePersistenceFailed as exc:
                logger.error(str(exc))

        if count:
            logger.info(f"Requeued {count} dead-lettered events")
        return count

    def __repr__(self) -> str:
        return f"OfflineQueue(entries={len(self._entries)}, max_attempts={self.max_attempts})"


class SyncReconciler:
    """Drains the offline queue into the submission endpoint.

    The reconciler is the only writer of an event's sync state. Entries are
    submitted sequentially, head first; the pass stops at the first failure.

    Example:
        >>> reconciler = SyncReconciler(queue)
        >>> report = await reconciler.drain(submitter.submit)
        >>> print(f"{len(report.submitted)} synced, {report.remaining} left")
    """

    def __init__(self, queue: OfflineQueue):
        self.queue = queue
        self._active: Optional[asyncio.Future[DrainReport]] = None

    @property
    def draining(self) -> bool:
        return self._active is not None and not self._active.done()

    async def drain(self, submit: SubmitFn) -> DrainReport:
        """Run one drain pass.

        Args:
            submit: Async callable taking (event, feature_vector). Returning
                    False or raising counts as a failure; any other return
                    value counts as success.

        Returns:
            DrainReport for the pass. A call made while a pass is running
            joins that pass instead of starting another one.
        """
        if self.draining:
            logger.debug("Drain already in progress; joining it")
            return await asyncio.shield(self._active)

        self._active = asyncio.ensure_future(self._drain(submit))
        return await asyncio.shield(self._active)

    async def _drain(self, submit: SubmitFn) -> DrainReport:
        report = DrainReport()

        await self.queue.write_unpersisted()

        if self.queue.entries():
            logger.info(f"Draining offline queue ({len(self.queue)} entries)")

        for entry in self.queue.entries():
            if entry.sync_state == SyncState.SUBMITTED:
                # Reconciled earlier; only the removal is outstanding
                await self.queue.remove(entry)
                continue

            if self.queue.exhausted(entry):
                if await self.queue.dead_letter(entry):
                    report.dead_lettered.append(entry.event)
                    continue
                report.failed = entry.event
                break

            try:
                outcome = await submit(entry.event, entry.feature_vector)
                succeeded = outcome is not False
                error = "submission rejected"
            except Exception as exc:
                succeeded = False
                error = str(exc)

            if succeeded:
                entry.event = entry.event.mark_submitted()
                report.submitted.append(entry.event)
                await self.queue.remove(entry)
                continue

            entry.attempts += 1
            report.failed = entry.event
            logger.warning(
                f"Sync failed for {entry.event.type.value} of '{entry.event.identity}' "
                f"(attempt {entry.attempts}): {error}"
            )

            if self.queue.exhausted(entry) and await self.queue.dead_letter(entry):
                report.dead_lettered.append(entry.event)
            else:
                try:
                    await self.queue.write(entry)
                except QueuePersistenceFailed as exc:
                    logger.error(str(exc))
            break

        report.remaining = len(self.queue)

        logger.info(
            f"Drain finished: {len(report.submitted)} submitted, "
            f"{len(report.dead_lettered)} dead-lettered, {report.remaining} remaining"
        )
        return report
