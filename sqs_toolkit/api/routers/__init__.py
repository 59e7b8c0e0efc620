"""Router registrations."""

from fastapi import APIRouter

from sqs_toolkit.api.routers import consumer, health


def get_api_router() -> APIRouter:
    router = APIRouter()
    router.include_router(health.router, tags=["health"])
    router.include_router(consumer.router, prefix="/api/v1/consumer", tags=["consumer"])
    return router
