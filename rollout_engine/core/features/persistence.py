"""
Write-behind persistence for rollout state.

Registry and tracker listeners hand committed records to a StateWriter,
which queues them and saves them on an asyncio task. Evaluation and
administrative calls never wait on the store.

Each submitted record gets a sequence number. When records for the same
id reach the queue out of order (one from the loop, one from a worker
thread), only the newest is saved.

Usage:
    writer = StateWriter(store)
    await writer.start()
    registry.subscribe(writer.flag_changed)
    tracker.subscribe(writer.phase_changed)
    ...
    await writer.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
from typing import TYPE_CHECKING, Union

import structlog

from .interfaces import FeatureFlag, RolloutStateStore

if TYPE_CHECKING:
    from rollout_engine.core.rollout.interfaces import RolloutPhase

logger = structlog.get_logger()

Record = Union[FeatureFlag, "RolloutPhase"]
RecordKey = tuple[str, str]


class StateWriter:
    """Fire-and-forget writer from in-memory state to a durable store."""

    def __init__(self, store: RolloutStateStore):
        self.store = store
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[tuple[int, Record]] | None = None
        self._task: asyncio.Task | None = None
        self._seq_lock = threading.Lock()
        self._seq = 0
        self._latest: dict[RecordKey, int] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start draining on the current event loop."""
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._task = asyncio.create_task(self._drain(), name="rollout-state-writer")

    async def flush(self) -> None:
        """Wait until every queued record has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Flush pending writes and stop the drain task."""
        if not self.running:
            return
        await self.flush()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    # ============================================================
    # LISTENERS
    # ============================================================

    def flag_changed(self, flag: FeatureFlag) -> None:
        self._submit(flag)

    def phase_changed(self, phase: "RolloutPhase") -> None:
        self._submit(phase)

    def _submit(self, record: Record) -> None:
        if self._loop is None or self._queue is None or self._loop.is_closed():
            logger.warning("State writer not running, record not persisted", record_id=record.id)
            return

        with self._seq_lock:
            self._seq += 1
            item = (self._seq, record)
            self._latest[_key(record)] = self._seq

        try:
            current_loop = asyncio.get_running_loop()
        except RuntimeError:
            current_loop = None

        if current_loop is self._loop:
            self._queue.put_nowait(item)
        else:
            # Listener runs on a worker thread (sync route handlers)
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    async def _drain(self) -> None:
        while True:
            seq, record = await self._queue.get()
            try:
                if self._latest.get(_key(record)) != seq:
                    logger.debug("Superseded record skipped", record_id=record.id)
                    continue
                if isinstance(record, FeatureFlag):
                    await self.store.save_flag(record)
                else:
                    await self.store.save_phase(record)
            except Exception:
                logger.exception("Failed to persist rollout state", record_id=record.id)
            finally:
                self._queue.task_done()


def _key(record: Record) -> RecordKey:
    kind = "flag" if isinstance(record, FeatureFlag) else "phase"
    return kind, record.id
