"""Persisted work queue and resync ledger rows."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from syncbridge.database import Base


class QueueStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"

    ALL = (PENDING, PROCESSING, DONE, FAILED)
    TERMINAL = (DONE, FAILED)


DEFAULT_EVENT_CATEGORY = "webhook"
RESYNC_CATEGORY_PREFIX = "resync:"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueItem(Base):
    __tablename__ = "sync_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_doc_ref = Column(String(64), nullable=False, index=True)
    correlation_ref = Column(String(128), nullable=False, default="")
    event_category = Column(
        String(50), nullable=False, default=DEFAULT_EVENT_CATEGORY, server_default=DEFAULT_EVENT_CATEGORY
    )
    status = Column(String(20), nullable=False, default=QueueStatus.PENDING)
    retry_count = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    response_body = Column(Text, nullable=True)
    payload_json = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_sync_queue_status_created", "status", "created_at"),
    )

    @property
    def is_ledger_entry(self) -> bool:
        return (self.event_category or "").startswith(RESYNC_CATEGORY_PREFIX)

    def __repr__(self) -> str:
        return (
            f"<QueueItem(id={self.id}, category='{self.event_category}', "
            f"status='{self.status}', retries={self.retry_count})>"
        )
