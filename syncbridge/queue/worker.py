"""Background worker that drains the pending queue.

One worker runs per process. Each cycle fetches a bounded batch of the oldest
pending rows and handles them one at a time: claim, execute, then complete or
record the failed attempt. A failing item never stops the rest of the batch,
and an error while fetching only skips the current cycle.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from syncbridge.config import settings
from syncbridge.database import async_session
from syncbridge.errors import QueueTransitionError
from syncbridge.models.queue_item import QueueItem
from syncbridge.queue.store import QueueStore

logger = logging.getLogger(__name__)

Executor = Callable[[QueueItem], Awaitable[Any]]
Notifier = Callable[[QueueItem], Awaitable[None]]


@dataclass
class CycleReport:
    fetched: int = 0
    claimed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errored: int = 0
    reclaimed: int = 0


class QueueWorker:
    """Poll loop over :class:`QueueStore`.

    Unset tuning arguments are read from ``settings`` on every cycle, so a
    configuration reload takes effect without restarting the worker.
    """

    def __init__(
        self,
        executor: Executor | None = None,
        session_factory: async_sessionmaker[AsyncSession] = async_session,
        *,
        notifier: Notifier | None = None,
        batch_size: int | None = None,
        max_retries: int | None = None,
        poll_interval: float | None = None,
        stale_after: timedelta | None = None,
    ) -> None:
        if executor is None:
            from syncbridge.handlers.queue_handlers import dispatch_queue_item

            executor = dispatch_queue_item
        if notifier is None:
            from syncbridge.clients.monitor_client import notify_monitor

            notifier = notify_monitor
        self._executor = executor
        self._notifier = notifier
        self._session_factory = session_factory
        self._batch_size = batch_size
        self._max_retries = max_retries
        self._poll_interval = poll_interval
        self._stale_after = stale_after

    @property
    def batch_size(self) -> int:
        return self._batch_size or settings.queue_batch_size

    @property
    def max_retries(self) -> int:
        return self._max_retries or settings.queue_max_retries

    @property
    def poll_interval(self) -> float:
        return self._poll_interval if self._poll_interval is not None else settings.queue_poll_interval_seconds

    @property
    def stale_after(self) -> timedelta | None:
        if self._stale_after is not None:
            return self._stale_after or None
        if settings.queue_stale_after_seconds <= 0:
            return None
        return timedelta(seconds=settings.queue_stale_after_seconds)

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll until ``stop_event`` is set. Never raises out of a cycle."""
        logger.info("Queue worker starting")
        while not stop_event.is_set():
            if not settings.queue_enabled:
                logger.info("Queue worker is disabled, skipping poll")
            else:
                try:
                    report = await self.run_cycle(stop_event)
                    if report.fetched:
                        logger.info(
                            "Queue cycle finished: %d succeeded, %d failed, %d skipped",
                            report.succeeded, report.failed, report.skipped,
                        )
                except Exception:
                    logger.exception("Queue worker: unhandled error during polling cycle")
            await self._sleep(stop_event)
        logger.info("Queue worker stopping")

    async def run_cycle(self, stop_event: asyncio.Event | None = None) -> CycleReport:
        report = CycleReport()
        async with self._session_factory() as db:
            store = QueueStore(db, self.max_retries)

            stale_after = self.stale_after
            if stale_after is not None:
                reclaimed = await store.reclaim_stale(stale_after)
                report.reclaimed = len(reclaimed)
                if reclaimed:
                    logger.warning(
                        "Reclaimed %d stale processing items: %s",
                        len(reclaimed), ", ".join(str(item.id) for item in reclaimed),
                    )

            items = await store.fetch_pending(self.batch_size)
            report.fetched = len(items)
            if not items:
                logger.debug("Queue worker: no pending items")
                return report

            logger.info("Queue worker: processing %d pending items", len(items))
            for item in items:
                if stop_event is not None and stop_event.is_set():
                    logger.info("Shutdown requested, leaving %d items for the next run", report.fetched - report.claimed - report.skipped)
                    break
                await self._process(store, item, report)
        return report

    async def _process(self, store: QueueStore, item: QueueItem, report: CycleReport) -> None:
        try:
            updated = await self._attempt(store, item, report)
        except Exception:
            report.errored += 1
            logger.exception(
                "Queue item %d: storage error, leaving it for the stale reclaim", item.id
            )
            await store.rollback()
            return
        if updated is not None:
            await self._notifier(updated)

    async def _attempt(self, store: QueueStore, item: QueueItem, report: CycleReport) -> QueueItem | None:
        if not await store.claim(item.id):
            report.skipped += 1
            return None
        report.claimed += 1

        logger.info(
            "Processing queue item %d (category=%s, doc=%s, ref=%s)",
            item.id, item.event_category, item.external_doc_ref, item.correlation_ref,
        )
        try:
            result = await self._executor(item)
        except Exception as exc:
            report.failed += 1
            try:
                return await store.fail_attempt(item.id, exc)
            except QueueTransitionError as transition_error:
                logger.warning("Could not record failure for queue item %d: %s", item.id, transition_error)
                return None

        try:
            updated = await store.complete(item.id, result)
        except QueueTransitionError as transition_error:
            logger.warning("Could not complete queue item %d: %s", item.id, transition_error)
            return None
        report.succeeded += 1
        logger.info("Queue item %d done", item.id)
        return updated

    async def _sleep(self, stop_event: asyncio.Event) -> None:
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
