"""Outbound Dispatcher — fire-and-forget delivery of events and trust updates.

State changes are committed by the TransactionService first; the resulting
notifications are then handed to this dispatcher, which queues them on a
bounded asyncio.Queue and delivers them from background worker tasks.

Guarantees:
    - Enqueueing never blocks and never raises into the caller.
    - A full queue drops the job (counted in ``stats.dropped``).
    - A failing publisher or trust handler is logged and counted in
      ``stats.failed``; it never rolls back or blocks the triggering operation.
    - Delivery is best-effort, at most once.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from agentic_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from agentic_marketplace.domain.ports import EventPublisher

logger = get_logger(__name__)


@dataclass
class DispatcherStats:
    enqueued: int = 0
    delivered: int = 0
    failed: int = 0
    dropped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "enqueued": self.enqueued,
            "delivered": self.delivered,
            "failed": self.failed,
            "dropped": self.dropped,
        }


@dataclass(frozen=True)
class _Job:
    label: str
    func: Callable[..., Awaitable[Any]]
    args: tuple


class OutboundDispatcher:
    """Bounded queue + worker tasks for notifications that must not block callers."""

    def __init__(
        self,
        publisher: EventPublisher | None = None,
        max_queue_size: int = 1000,
        workers: int = 2,
    ) -> None:
        self._publisher = publisher
        self._queue: asyncio.Queue[_Job] = asyncio.Queue(maxsize=max_queue_size)
        self._worker_count = max(1, workers)
        self._workers: list[asyncio.Task] = []
        self.stats = DispatcherStats()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._run(), name=f"outbound-dispatcher-{i}")
            for i in range(self._worker_count)
        ]
        logger.info("dispatcher.started", workers=self._worker_count)

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers, optionally delivering what is already queued."""
        if drain and self._workers:
            await self._queue.join()
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers = []
        logger.info("dispatcher.stopped", **self.stats.to_dict())

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def publish(self, event_type: str, payload: dict[str, Any]) -> bool:
        """Queue a domain event for the publisher. Returns False if not queued."""
        if self._publisher is None:
            logger.debug("dispatcher.no_publisher", event_type=event_type)
            return False
        return self._enqueue(_Job(event_type, self._publisher.publish, (event_type, payload)))

    def submit(self, label: str, func: Callable[..., Awaitable[Any]], *args: Any) -> bool:
        """Queue an arbitrary coroutine function call (e.g. a trust update)."""
        return self._enqueue(_Job(label, func, args))

    def _enqueue(self, job: _Job) -> bool:
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning("dispatcher.queue_full", job=job.label, dropped=self.stats.dropped)
            return False
        self.stats.enqueued += 1
        return True

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await job.func(*job.args)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.stats.failed += 1
                logger.warning("dispatcher.job_failed", job=job.label, error=str(exc))
            else:
                self.stats.delivered += 1
            finally:
                self._queue.task_done()
