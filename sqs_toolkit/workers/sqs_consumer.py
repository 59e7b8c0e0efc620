"""Runs a consumer built from environment settings until SIGINT/SIGTERM."""

from __future__ import annotations

import asyncio
import importlib
import logging
import signal
import sys
from typing import Any, Mapping, Optional

from sqs_toolkit.core.config import AppSettings, get_settings, load_profiles
from sqs_toolkit.core.errors import ConfigurationError
from sqs_toolkit.core.logging import configure_logging
from sqs_toolkit.sqs.consumer import MessageHandler, SqsConsumer

LOGGER = logging.getLogger("sqs_toolkit.workers.sqs_consumer")


def log_message_handler(body: Any, message: Mapping[str, Any]) -> None:
    """Default handler: record the message and acknowledge it."""

    LOGGER.info(
        "message_handled",
        extra={"message_id": message.get("MessageId"), "fields": sorted(body) if isinstance(body, dict) else None},
    )


def load_handler(path: Optional[str]) -> MessageHandler:
    """Import a ``package.module:callable`` handler reference."""

    if not path:
        return log_message_handler
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ConfigurationError(f"Handler must look like 'package.module:callable', got {path!r}")
    try:
        module = importlib.import_module(module_name)
        handler = getattr(module, attribute)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(f"Unable to import handler {path!r}", exc) from exc
    if not callable(handler):
        raise ConfigurationError(f"Handler {path!r} is not callable")
    return handler


def build_consumer_from_settings(
    settings: Optional[AppSettings] = None,
    handler: Optional[MessageHandler] = None,
    **clients: Any,
) -> SqsConsumer:
    """Construct the configured consumer; ``clients`` may inject sqs/kms clients."""

    settings = settings or get_settings()
    profiles = load_profiles(settings.config_file) if settings.config_file else None
    return SqsConsumer(
        settings.consumer_name,
        handler or load_handler(settings.handler),
        conf=settings.consumer_overrides(),
        profiles=profiles,
        **clients,
    )


async def run(consumer: SqsConsumer) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, lambda: asyncio.ensure_future(consumer.stop()))
        except NotImplementedError:  # pragma: no cover - windows event loops
            pass
    await consumer.start(wait_until_stopped=True)


def main() -> int:
    settings = get_settings()
    configure_logging(settings)
    try:
        consumer = build_consumer_from_settings(settings)
        asyncio.run(run(consumer))
    except ConfigurationError as exc:
        LOGGER.error("consumer_configuration_invalid", extra={"error": str(exc)})
        return 2
    except Exception:  # noqa: BLE001
        LOGGER.exception("consumer_worker_failed")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
