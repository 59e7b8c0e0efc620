"""Consumer status and control endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from sqs_toolkit.api.dependencies import get_consumer
from sqs_toolkit.api.schemas import ConsumerStatusResponse
from sqs_toolkit.sqs.consumer import SqsConsumer

router = APIRouter()


def _describe(consumer: SqsConsumer) -> ConsumerStatusResponse:
    return ConsumerStatusResponse.model_validate(
        {"consumer": consumer.status(), "scheduler": consumer.scheduler()}
    )


@router.get("", response_model=ConsumerStatusResponse)
def read_consumer(consumer: SqsConsumer = Depends(get_consumer)) -> ConsumerStatusResponse:
    return _describe(consumer)


@router.post("/start", response_model=ConsumerStatusResponse)
async def start_consumer(consumer: SqsConsumer = Depends(get_consumer)) -> ConsumerStatusResponse:
    await consumer.start()
    return _describe(consumer)


@router.post("/stop", response_model=ConsumerStatusResponse)
async def stop_consumer(consumer: SqsConsumer = Depends(get_consumer)) -> ConsumerStatusResponse:
    await consumer.stop()
    return _describe(consumer)
