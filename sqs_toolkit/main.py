"""FastAPI application factory exposing consumer health and control."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from sqs_toolkit import __version__
from sqs_toolkit.api.dependencies import set_consumer
from sqs_toolkit.api.error_handlers import register_exception_handlers
from sqs_toolkit.api.routers import get_api_router
from sqs_toolkit.core.config import AppSettings, get_settings
from sqs_toolkit.core.logging import configure_logging
from sqs_toolkit.sqs.consumer import SqsConsumer
from sqs_toolkit.workers.sqs_consumer import build_consumer_from_settings


def create_app(settings: AppSettings | None = None, consumer: Optional[SqsConsumer] = None) -> FastAPI:
    """Application factory."""

    settings = settings or get_settings()
    configure_logging(settings)
    consumer = consumer or build_consumer_from_settings(settings)
    set_consumer(consumer)

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: D401
        """Start the consumer with the app when autostart is enabled."""

        if settings.consumer_autostart:
            await consumer.start()
        yield
        await consumer.stop()

    app = FastAPI(
        title="SQS Toolkit Consumer",
        version=__version__,
        lifespan=lifespan,
    )

    register_exception_handlers(app)
    app.include_router(get_api_router())
    return app
