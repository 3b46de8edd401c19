"""Queue store: the only code that mutates ``sync_queue`` rows.

Every transition is a single conditional UPDATE whose WHERE clause carries the
expected current status, so the database decides which caller wins when the
worker and an admin request touch the same row.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any

from pydantic import BaseModel
from sqlalchemy import func, not_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from syncbridge.config import settings
from syncbridge.core.retry import RetryDecision, decide
from syncbridge.errors import QueueItemNotFound, QueueTransitionError, UnsupportedEventCategory
from syncbridge.models.queue_item import (
    DEFAULT_EVENT_CATEGORY,
    RESYNC_CATEGORY_PREFIX,
    QueueItem,
    QueueStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 2000


def serialize_result(result: Any) -> str:
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    return json.dumps(result, default=str)


def _not_ledger():
    return not_(QueueItem.event_category.startswith(RESYNC_CATEGORY_PREFIX))


class QueueStore:
    def __init__(self, db: AsyncSession, max_retries: int | None = None) -> None:
        self._db = db
        self.max_retries = max_retries if max_retries is not None else settings.queue_max_retries

    # ── reads ────────────────────────────────────────────────────────

    async def get(self, item_id: int) -> QueueItem:
        item = await self._db.get(QueueItem, item_id, populate_existing=True)
        if item is None:
            raise QueueItemNotFound(item_id)
        return item

    async def fetch_pending(self, batch_size: int) -> list[QueueItem]:
        """Oldest eligible pending rows first, at most ``batch_size``."""
        result = await self._db.execute(
            select(QueueItem)
            .where(
                QueueItem.status == QueueStatus.PENDING,
                QueueItem.retry_count < self.max_retries,
                _not_ledger(),
            )
            .order_by(QueueItem.created_at.asc(), QueueItem.id.asc())
            .limit(batch_size)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_items(self, status: str | None = None) -> list[QueueItem]:
        stmt = select(QueueItem).order_by(QueueItem.created_at.desc(), QueueItem.id.desc())
        if status:
            stmt = stmt.where(QueueItem.status == status.strip().lower())
        result = await self._db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def summary(self) -> dict[str, int]:
        result = await self._db.execute(
            select(QueueItem.status, func.count(QueueItem.id)).group_by(QueueItem.status)
        )
        counts = dict.fromkeys(QueueStatus.ALL, 0)
        counts.update((status, count) for status, count in result.all())
        counts["total"] = sum(counts.values())
        return counts

    # ── transitions ──────────────────────────────────────────────────

    async def enqueue(
        self,
        external_doc_ref: str,
        correlation_ref: str = "",
        event_category: str = DEFAULT_EVENT_CATEGORY,
        payload: Any = None,
    ) -> QueueItem:
        category = event_category or DEFAULT_EVENT_CATEGORY
        if category.startswith(RESYNC_CATEGORY_PREFIX):
            # Ledger rows are written by the resync coordinator only; the worker never picks them up.
            raise UnsupportedEventCategory(category)
        item = QueueItem(
            external_doc_ref=str(external_doc_ref),
            correlation_ref=correlation_ref or "",
            event_category=category,
            status=QueueStatus.PENDING,
            retry_count=0,
            payload_json=serialize_result(payload) if payload is not None else None,
        )
        self._db.add(item)
        await self._db.commit()
        logger.info(
            "Queue item %d enqueued (category=%s, doc=%s, ref=%s)",
            item.id, item.event_category, item.external_doc_ref, item.correlation_ref,
        )
        return item

    async def claim(self, item_id: int) -> bool:
        """Flip a pending row to processing. False means someone else has it."""
        result = await self._db.execute(
            update(QueueItem)
            .where(
                QueueItem.id == item_id,
                QueueItem.status == QueueStatus.PENDING,
                QueueItem.retry_count < self.max_retries,
            )
            .values(status=QueueStatus.PROCESSING, claimed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        claimed = result.rowcount == 1
        if not claimed:
            logger.debug("Queue item %d was not claimable", item_id)
        return claimed

    async def complete(self, item_id: int, result: Any) -> QueueItem:
        outcome = await self._db.execute(
            update(QueueItem)
            .where(QueueItem.id == item_id, QueueItem.status == QueueStatus.PROCESSING)
            .values(
                status=QueueStatus.DONE,
                response_body=serialize_result(result),
                error_message=None,
                processed_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        if outcome.rowcount != 1:
            await self._raise_unexpected_status(item_id, QueueStatus.PROCESSING)
        return await self.get(item_id)

    async def fail_attempt(self, item_id: int, error: str | BaseException) -> QueueItem:
        """Record a failed attempt; back to pending, or failed once retries run out."""
        item = await self.get(item_id)
        if item.status != QueueStatus.PROCESSING:
            raise QueueTransitionError(
                item_id, f"Queue item {item_id} is not in processing status (status={item.status})"
            )

        message = str(error)[:_MAX_ERROR_LENGTH]
        attempt = item.retry_count + 1
        if decide(item.retry_count, self.max_retries) is RetryDecision.EXHAUST:
            values = dict(
                status=QueueStatus.FAILED,
                retry_count=attempt,
                error_message=message,
                processed_at=utcnow(),
            )
        else:
            values = dict(
                status=QueueStatus.PENDING,
                retry_count=attempt,
                error_message=message,
                claimed_at=None,
            )

        outcome = await self._db.execute(
            update(QueueItem)
            .where(
                QueueItem.id == item_id,
                QueueItem.status == QueueStatus.PROCESSING,
                QueueItem.retry_count == item.retry_count,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        if outcome.rowcount != 1:
            raise QueueTransitionError(item_id, f"Queue item {item_id} changed while recording its failure")

        if values["status"] == QueueStatus.FAILED:
            logger.error(
                "Queue item %d (doc=%s, ref=%s) permanently failed after %d attempts: %s",
                item_id, item.external_doc_ref, item.correlation_ref, attempt, message,
            )
        else:
            logger.warning(
                "Queue item %d (doc=%s, ref=%s) failed (attempt %d/%d), will retry: %s",
                item_id, item.external_doc_ref, item.correlation_ref, attempt, self.max_retries, message,
            )
        return await self.get(item_id)

    async def manual_reset(self, item_id: int) -> QueueItem:
        """Operator retry: failed → pending with a fresh retry budget."""
        item = await self.get(item_id)
        if item.is_ledger_entry:
            raise QueueTransitionError(
                item_id, f"Queue item {item_id} is a resync ledger entry; resubmit the resync instead"
            )
        outcome = await self._db.execute(
            update(QueueItem)
            .where(QueueItem.id == item_id, QueueItem.status == QueueStatus.FAILED)
            .values(
                status=QueueStatus.PENDING,
                retry_count=0,
                error_message=None,
                processed_at=None,
                claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        if outcome.rowcount != 1:
            await self._raise_unexpected_status(item_id, QueueStatus.FAILED)
        logger.info("Queue item %d reset to pending", item_id)
        return await self.get(item_id)

    async def reset_all_failed(self) -> int:
        outcome = await self._db.execute(
            update(QueueItem)
            .where(QueueItem.status == QueueStatus.FAILED, _not_ledger())
            .values(
                status=QueueStatus.PENDING,
                retry_count=0,
                error_message=None,
                processed_at=None,
                claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        logger.info("%d failed queue items reset to pending", outcome.rowcount)
        return outcome.rowcount

    async def reclaim_stale(self, older_than: timedelta) -> list[QueueItem]:
        """Hand processing rows abandoned by a dead worker back to the retry policy."""
        cutoff = utcnow() - older_than
        result = await self._db.execute(
            select(QueueItem.id).where(
                QueueItem.status == QueueStatus.PROCESSING,
                QueueItem.claimed_at.is_not(None),
                QueueItem.claimed_at < cutoff,
                _not_ledger(),
            )
        )
        reclaimed = []
        for item_id in result.scalars().all():
            try:
                reclaimed.append(
                    await self.fail_attempt(item_id, f"stale claim reclaimed (processing longer than {older_than})")
                )
            except QueueTransitionError:
                # Finished between the select and the update.
                continue
        return reclaimed

    # ── resync ledger ────────────────────────────────────────────────

    async def open_ledger_entry(
        self, external_doc_ref: str, correlation_ref: str, document_type: str
    ) -> QueueItem:
        """Audit row for a synchronous resync; starts directly in processing."""
        item = QueueItem(
            external_doc_ref=str(external_doc_ref),
            correlation_ref=correlation_ref or "",
            event_category=f"{RESYNC_CATEGORY_PREFIX}{document_type}",
            status=QueueStatus.PROCESSING,
            retry_count=0,
            claimed_at=utcnow(),
        )
        self._db.add(item)
        await self._db.commit()
        return item

    async def close_ledger_entry(
        self, item_id: int, *, result: Any = None, error: str | BaseException | None = None
    ) -> None:
        if error is not None:
            values = dict(
                status=QueueStatus.FAILED,
                error_message=str(error)[:_MAX_ERROR_LENGTH],
                processed_at=utcnow(),
            )
        else:
            values = dict(
                status=QueueStatus.DONE,
                response_body=serialize_result(result),
                error_message=None,
                processed_at=utcnow(),
            )
        outcome = await self._db.execute(
            update(QueueItem)
            .where(QueueItem.id == item_id, QueueItem.status == QueueStatus.PROCESSING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        if outcome.rowcount != 1:
            await self._raise_unexpected_status(item_id, QueueStatus.PROCESSING)

    async def rollback(self) -> None:
        await self._db.rollback()

    async def _raise_unexpected_status(self, item_id: int, expected: str) -> None:
        item = await self.get(item_id)
        raise QueueTransitionError(
            item_id, f"Queue item {item_id} is not in {expected} status (status={item.status})"
        )
