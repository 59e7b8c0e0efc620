"""Long-polling SQS consumer engine."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from sqs_toolkit.common.encryption import EnvelopeEncryption
from sqs_toolkit.common.retry import Retrier, wait
from sqs_toolkit.common.validation import SchemaValidator
from sqs_toolkit.core.config import ConsumerConfig, resolve_consumer_config
from sqs_toolkit.core.errors import ConfigurationError, MessageSyntaxError, is_non_retryable
from sqs_toolkit.sqs.events import FAILED, PROCESSED, RUNNING, STOPPED, EventEmitter, Listener
from sqs_toolkit.sqs.scheduler import Clock, ProcessingWindow
from sqs_toolkit.sqs.session import QueueSession

LOGGER = logging.getLogger("sqs_toolkit.sqs.consumer")

MessageHandler = Callable[[Any, Mapping[str, Any]], Union[Any, Awaitable[Any]]]


def receive_count(message: Mapping[str, Any]) -> int:
    """The provider's ApproximateReceiveCount for ``message``, defaulting to 1."""

    raw = (message.get("Attributes") or {}).get("ApproximateReceiveCount")
    try:
        count = int(raw)
    except (TypeError, ValueError):
        return 1
    return max(count, 1)


class SqsConsumer:
    """Polls one queue and feeds each message through decrypt, validate, handle, delete.

    Messages that fail with a non-retryable error are deleted. Any other
    failure leaves the message on the queue and pushes its visibility timeout
    out exponentially, keyed by the receive count. Consecutive failed poll
    cycles back off with a separate retrier.

    A prebuilt ``session`` carries its own configuration and clients; passing
    either alongside it is a configuration error.
    """

    def __init__(
        self,
        name: str,
        handler: MessageHandler,
        *,
        conf: Optional[Mapping[str, Any]] = None,
        profiles: Optional[Mapping[str, Any]] = None,
        config: Optional[ConsumerConfig] = None,
        session: Optional[QueueSession] = None,
        sqs_client: Any = None,
        kms_client: Any = None,
        validator: Optional[SchemaValidator] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        if not callable(handler):
            raise ConfigurationError(f"Consumer {name} requires a callable message handler")

        if session is not None:
            if any(item is not None for item in (conf, profiles, config, sqs_client, kms_client, validator)):
                raise ConfigurationError(
                    f"Consumer {name} was given a session; configuration and clients belong to the session"
                )
            self.config = session.config
        else:
            self.config = config or resolve_consumer_config(name, conf, profiles)
            encryption = EnvelopeEncryption(
                self.config.encryption.key,
                kms_client=kms_client,
                region_name=self.config.encryption.region_name or self.config.sqs_options.get("region_name"),
                endpoint_url=self.config.encryption.endpoint_url,
                algorithm=self.config.encryption.algorithm,
            )
            session = QueueSession(
                self.config,
                sqs_client=sqs_client,
                validator=validator,
                encryption=encryption,
            )

        self.name = name
        self.session = session
        self.events: EventEmitter = session.events
        self._handler = handler
        self._running = False
        self._error_count = 0
        self._last_poll_at: Optional[datetime] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_requested = asyncio.Event()

        poll_error = self.config.poll.error
        message_error = self.config.message.error
        self._poll_retrier = Retrier(poll_error.min_wait_seconds, poll_error.max_wait_seconds)
        self._message_retrier = Retrier(message_error.min_visibility_seconds, message_error.max_visibility_seconds)
        self._window = ProcessingWindow(self.config.consumer.scheduler, clock=clock)

    # -- public surface -------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def enabled(self) -> bool:
        return self.config.consumer.enabled

    @property
    def error_count(self) -> int:
        return self._error_count

    def on(self, event: str, listener: Listener) -> Listener:
        return self.events.on(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        self.events.off(event, listener)

    def is_consuming(self) -> bool:
        return self._window.is_consuming()

    def scheduler(self) -> Dict[str, Any]:
        if self._window.scheduled:
            self._window.visibility_timeout()
        return self._window.describe()

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            **self.session.status(),
            "running": self._running,
            "enabled": self.enabled,
            "consuming": self.is_consuming(),
            "error_count": self._error_count,
            "last_poll_at": self._last_poll_at.isoformat() if self._last_poll_at else None,
        }

    async def send_message(
        self,
        message: Mapping[str, Any],
        sensitive: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        return await self.session.send_message(message, sensitive)

    async def start(self, wait_until_stopped: bool = False) -> None:
        """Resolve the queue and launch the poll loop.

        No-op when disabled or already running. With ``wait_until_stopped``
        the call returns only after the loop has exited.
        """

        if not self.enabled:
            LOGGER.info("consumer_disabled", extra={"consumer": self.name})
            return
        if self._running:
            return

        if self._task is not None and not self._task.done():
            # A previous loop is still finishing its last cycle.
            await self._task

        self._running = True
        self._stop_requested.clear()
        try:
            await self.session.resolve_queue()
        except Exception:
            LOGGER.exception("consumer_initialization_failed", extra={"consumer": self.name})
            self._running = False
            self.events.emit(STOPPED)
            raise

        LOGGER.info(
            "consumer_running",
            extra={"consumer": self.name, "queue_url": self.session.queue_url},
        )
        self.events.emit(RUNNING)
        self._task = asyncio.create_task(self._run(), name=f"sqs-consumer-{self.name}")
        if wait_until_stopped:
            await self._task

    async def stop(self, wait: bool = False) -> None:
        """Request the poll loop to exit at its next cycle boundary."""

        if not self._running:
            return
        LOGGER.info("consumer_stopping", extra={"consumer": self.name})
        self._running = False
        self._stop_requested.set()
        if wait and self._task is not None:
            await asyncio.shield(self._task)

    async def delete_queue(self) -> None:
        await self.session.delete_queue()

    async def purge_queue(self) -> None:
        await self.session.purge_queue()

    # -- poll loop ------------------------------------------------------

    def _check_poll(self) -> bool:
        if not self.enabled:
            LOGGER.info("consumer_disabled_stopping", extra={"consumer": self.name})
            self._running = False
            return False
        if not self._running:
            LOGGER.info(
                "consumer_poll_stopped",
                extra={"consumer": self.name, "queue_url": self.session.queue_url},
            )
            return False
        if not self.session.resolved:
            LOGGER.error("consumer_queue_unresolved", extra={"consumer": self.name})
            self._running = False
            return False
        return True

    async def _run(self) -> None:
        try:
            while self._check_poll():
                if await self._poll():
                    self._error_count = 0
                    continue
                self._error_count += 1
                delay = self._poll_retrier.next_try_interval(self._error_count)
                LOGGER.info(
                    "consumer_backoff",
                    extra={"consumer": self.name, "wait_seconds": delay, "error_count": self._error_count},
                )
                await self._backoff(delay)
        finally:
            self._running = False
            self.events.emit(STOPPED)
            self.session.reset()
            LOGGER.info("consumer_stopped", extra={"consumer": self.name})

    async def _poll(self) -> bool:
        """Run one receive/process cycle; True when every message succeeded."""

        self._last_poll_at = datetime.now(timezone.utc)
        LOGGER.debug("consumer_polling", extra={"consumer": self.name, "queue_url": self.session.queue_url})
        try:
            messages = await self.session.receive_messages(
                max_messages=self.config.concurrency,
                wait_seconds=self.config.poll.interval_seconds,
            )
            messages = await self._scheduled_consuming(messages)
        except Exception:  # noqa: BLE001 - any receive failure backs off the loop
            LOGGER.exception("consumer_poll_failed", extra={"consumer": self.name})
            return False

        if not messages:
            return True

        results = await asyncio.gather(
            *(self._handle(message) for message in messages),
            return_exceptions=True,
        )
        return all(result is True for result in results)

    async def _backoff(self, seconds: float) -> None:
        sleeper = asyncio.ensure_future(wait(seconds))
        stopper = asyncio.ensure_future(self._stop_requested.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            sleeper.cancel()
            if sleeper.done() and not sleeper.cancelled() and sleeper.exception() is not None:
                LOGGER.warning("consumer_backoff_interrupted", extra={"consumer": self.name})

    async def _scheduled_consuming(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Defer the whole batch when a scheduled consumer is outside its window."""

        if not messages or not self._window.scheduled:
            return messages

        timeout = self._window.visibility_timeout()
        if not timeout:
            return messages

        LOGGER.info(
            "consumer_messages_deferred",
            extra={
                "consumer": self.name,
                "timeout": timeout,
                "message_ids": [message.get("MessageId") for message in messages],
            },
        )
        await asyncio.gather(
            *(self.session.change_visibility(message["ReceiptHandle"], timeout) for message in messages)
        )
        return []

    # -- per-message pipeline -------------------------------------------

    async def _handle(self, message: Dict[str, Any]) -> bool:
        message_id = message.get("MessageId")
        LOGGER.info("message_processing", extra={"consumer": self.name, "message_id": message_id})
        body: Any = None
        try:
            try:
                body = json.loads(message["Body"])
            except (KeyError, TypeError, ValueError) as exc:
                raise MessageSyntaxError(f"Message {message_id} body is not valid JSON", exc) from exc
            body = await self.session.decrypt_message(body)
            await self.session.validate_message(body)
            await self._invoke_handler(body, message)
            await self.session.delete_message(message["ReceiptHandle"])
        except Exception as exc:  # noqa: BLE001 - classified below
            return await self._handle_failure(message, body, exc)

        LOGGER.info("message_processed", extra={"consumer": self.name, "message_id": message_id})
        self.events.emit(PROCESSED, message, body)
        return True

    async def _invoke_handler(self, body: Any, message: Dict[str, Any]) -> Any:
        if inspect.iscoroutinefunction(self._handler) or inspect.iscoroutinefunction(
            getattr(self._handler, "__call__", None)
        ):
            return await self._handler(body, message)
        result = await asyncio.to_thread(self._handler, body, message)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _handle_failure(self, message: Dict[str, Any], body: Any, exc: Exception) -> bool:
        message_id = message.get("MessageId")
        receipt_handle = message.get("ReceiptHandle")
        try:
            if is_non_retryable(exc):
                LOGGER.warning(
                    "message_rejected",
                    extra={"consumer": self.name, "message_id": message_id, "error": str(exc)},
                )
                try:
                    await self.session.delete_message(receipt_handle)
                except Exception as delete_exc:  # noqa: BLE001 - the message is not retried either way
                    LOGGER.warning(
                        "message_delete_failed",
                        extra={"consumer": self.name, "message_id": message_id, "error": str(delete_exc)},
                    )
                self.events.emit(FAILED, message, body, exc)
                return True

            count = receive_count(message)
            timeout = self._message_retrier.next_try_interval(count)
            max_retries = self.config.message.error.max_retries
            LOGGER.log(
                logging.ERROR if count >= max_retries else logging.INFO,
                "message_processing_failed",
                exc_info=exc,
                extra={
                    "consumer": self.name,
                    "message_id": message_id,
                    "receive_count": count,
                    "max_retries": max_retries,
                    "visibility_timeout": timeout,
                },
            )
            self.events.emit(FAILED, message, body, exc)
            await self.session.change_visibility(receipt_handle, timeout)
        except Exception:  # noqa: BLE001 - the pipeline always resolves to a boolean
            LOGGER.exception(
                "message_visibility_change_failed",
                extra={"consumer": self.name, "message_id": message_id},
            )
        return False
