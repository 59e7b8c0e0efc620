"""Dependency injection helpers for FastAPI routes."""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, status

from sqs_toolkit.sqs.consumer import SqsConsumer

_consumer: Optional[SqsConsumer] = None


def set_consumer(consumer: Optional[SqsConsumer]) -> None:
    """Register the consumer served by the API (None detaches it)."""

    global _consumer
    _consumer = consumer


def get_consumer() -> SqsConsumer:
    if _consumer is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No consumer configured")
    return _consumer
