"""Pydantic models for the queue endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from syncbridge.models.queue_item import DEFAULT_EVENT_CATEGORY


class QueueItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_doc_ref: str
    correlation_ref: str
    event_category: str
    status: str
    retry_count: int
    error_message: Optional[str] = None
    response_body: Optional[str] = None
    payload_json: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None


class EnqueueRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    external_doc_ref: str = Field(min_length=1)
    correlation_ref: str = ""
    event_category: str = DEFAULT_EVENT_CATEGORY
    payload: Optional[dict[str, Any]] = None


class EnqueueResponse(BaseModel):
    id: int
    status: str
