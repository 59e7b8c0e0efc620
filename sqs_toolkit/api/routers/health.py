"""Health check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from sqs_toolkit.api.dependencies import get_consumer
from sqs_toolkit.sqs.consumer import SqsConsumer

router = APIRouter()


@router.get("/healthz", summary="Liveness probe")
def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Readiness probe")
def readiness_check(consumer: SqsConsumer = Depends(get_consumer)) -> JSONResponse:
    ready = consumer.running or not consumer.enabled
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "stopped", "consumer": consumer.name},
    )
