"""Exception handlers for the FastAPI app."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sqs_toolkit.core.errors import ConfigurationError, InitializationError


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(InitializationError)
    async def initialization_error_handler(request: Request, exc: InitializationError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:  # noqa: WPS430
        return JSONResponse(status_code=500, content={"detail": str(exc)})
