"""Response models for the consumer API."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class SchedulerStatus(BaseModel):
    scheduled: bool
    start: str
    duration_seconds: int
    max_visibility_timeout_seconds: int
    next_start: Optional[str] = None


class ConsumerStatus(BaseModel):
    name: str
    queue_name: str
    queue_url: Optional[str] = None
    running: bool
    enabled: bool
    consuming: bool
    error_count: int
    last_poll_at: Optional[str] = None


class ConsumerStatusResponse(BaseModel):
    consumer: ConsumerStatus
    scheduler: SchedulerStatus
