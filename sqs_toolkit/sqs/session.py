"""Queue session: queue resolution, validated sends and administrative operations."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from sqs_toolkit.common.encryption import EnvelopeEncryption
from sqs_toolkit.common.validation import SchemaValidator
from sqs_toolkit.core.config import ConsumerConfig, deep_merge
from sqs_toolkit.core.errors import DecryptionError, EncryptionConfigurationError, InitializationError
from sqs_toolkit.sqs.events import FAILED_INIT, INITIALIZED, SENT, SENT_FAILED, EventEmitter

LOGGER = logging.getLogger("sqs_toolkit.sqs.session")

ENCRYPTED_FIELD = "encrypted"

_MISSING_QUEUE_CODES = {
    "AWS.SimpleQueueService.NonExistentQueue",
    "QueueDoesNotExist",
}


def _is_missing_queue(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") in _MISSING_QUEUE_CODES


class QueueSession:
    """Owns one logical queue: resolves its URL and sends validated messages.

    The resolved queue URL is cached until :meth:`reset` or
    :meth:`delete_queue` clears it.
    """

    def __init__(
        self,
        config: ConsumerConfig,
        *,
        sqs_client: Any = None,
        validator: Optional[SchemaValidator] = None,
        encryption: Optional[EnvelopeEncryption] = None,
        events: Optional[EventEmitter] = None,
    ) -> None:
        self.config = config
        self.name = config.name
        self.events = events or EventEmitter()
        self._sqs = sqs_client
        self._validator = validator or SchemaValidator()
        if encryption is None:
            encryption = EnvelopeEncryption(
                config.encryption.key,
                region_name=config.encryption.region_name or config.sqs_options.get("region_name"),
                endpoint_url=config.encryption.endpoint_url,
                algorithm=config.encryption.algorithm,
            )
        self.encryption = encryption
        self._queue_url: Optional[str] = None
        self._resolve_lock = asyncio.Lock()

    @property
    def sqs(self) -> Any:
        if self._sqs is None:
            self._sqs = boto3.client("sqs", **self.config.sqs_options)
        return self._sqs

    @property
    def queue_name(self) -> str:
        return self.config.queue_name

    @property
    def queue_url(self) -> Optional[str]:
        return self._queue_url

    @property
    def resolved(self) -> bool:
        return self._queue_url is not None

    def status(self) -> Dict[str, Any]:
        return {"queue_name": self.queue_name, "queue_url": self._queue_url}

    def reset(self) -> None:
        """Forget the resolved queue URL so the next use resolves it again."""

        self._queue_url = None

    async def resolve_queue(self) -> str:
        """Look up the queue URL, creating the queue when it does not exist."""

        if self._queue_url:
            return self._queue_url

        async with self._resolve_lock:
            if self._queue_url:
                return self._queue_url

            LOGGER.info("queue_resolving", extra={"consumer": self.name, "queue_name": self.queue_name})
            try:
                try:
                    response = await asyncio.to_thread(self.sqs.get_queue_url, QueueName=self.queue_name)
                except ClientError as exc:
                    if not _is_missing_queue(exc):
                        raise
                    response = await asyncio.to_thread(
                        self.sqs.create_queue,
                        QueueName=self.queue_name,
                        Attributes=dict(self.config.queue.attributes),
                    )
                    LOGGER.info(
                        "queue_created",
                        extra={"consumer": self.name, "queue_url": response["QueueUrl"]},
                    )
            except (BotoCoreError, ClientError) as exc:
                LOGGER.exception(
                    "queue_resolution_failed",
                    extra={"consumer": self.name, "queue_name": self.queue_name},
                )
                self.events.emit(FAILED_INIT, exc)
                raise InitializationError(f"Unable to resolve queue {self.queue_name}", exc) from exc

            self._queue_url = response["QueueUrl"]
            LOGGER.info("queue_resolved", extra={"consumer": self.name, "queue_url": self._queue_url})
            self.events.emit(INITIALIZED, self._queue_url)
            return self._queue_url

    async def validate_message(self, body: Any) -> Any:
        return await self._validator.validate(body, self.config.message_schema)

    async def send_message(
        self,
        message: Mapping[str, Any],
        sensitive: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Validate and send ``message``; ``sensitive`` fields travel encrypted."""

        try:
            if sensitive is not None and not self.encryption.configured:
                raise EncryptionConfigurationError("key")
            queue_url = await self.resolve_queue()
            if sensitive is not None:
                await self.validate_message(deep_merge(message, sensitive))
                envelope = await self.encryption.encrypt(dict(sensitive))
                body = {**message, ENCRYPTED_FIELD: envelope}
            else:
                await self.validate_message(message)
                body = dict(message)
            response = await asyncio.to_thread(
                self.sqs.send_message,
                QueueUrl=queue_url,
                MessageBody=json.dumps(body),
            )
        except Exception as exc:
            LOGGER.warning(
                "message_send_failed",
                extra={"consumer": self.name, "queue_name": self.queue_name, "error": str(exc)},
            )
            self.events.emit(SENT_FAILED, exc)
            raise

        LOGGER.debug(
            "message_sent",
            extra={"consumer": self.name, "message_id": response.get("MessageId")},
        )
        self.events.emit(SENT, body)
        return response

    async def decrypt_message(self, body: Any) -> Any:
        """Merge the decrypted envelope into ``body``; bodies without one pass through."""

        if not isinstance(body, Mapping) or body.get(ENCRYPTED_FIELD) is None:
            return body
        if not self.encryption.configured:
            raise DecryptionError("Message is encrypted but no encryption key is configured")

        decrypted = await self.encryption.decrypt(body[ENCRYPTED_FIELD])
        if not isinstance(decrypted, Mapping):
            raise DecryptionError("Encrypted payload must decode to an object")
        plain = {key: value for key, value in body.items() if key != ENCRYPTED_FIELD}
        return deep_merge(plain, decrypted)

    async def receive_messages(self, *, max_messages: int, wait_seconds: int) -> List[Dict[str, Any]]:
        response = await asyncio.to_thread(
            self.sqs.receive_message,
            QueueUrl=self._require_url(),
            MaxNumberOfMessages=max_messages,
            WaitTimeSeconds=wait_seconds,
            AttributeNames=["ApproximateReceiveCount"],
        )
        return response.get("Messages", [])

    async def delete_message(self, receipt_handle: str) -> None:
        await asyncio.to_thread(
            self.sqs.delete_message,
            QueueUrl=self._require_url(),
            ReceiptHandle=receipt_handle,
        )

    async def change_visibility(self, receipt_handle: str, timeout: int) -> None:
        await asyncio.to_thread(
            self.sqs.change_message_visibility,
            QueueUrl=self._require_url(),
            ReceiptHandle=receipt_handle,
            VisibilityTimeout=int(timeout),
        )

    async def delete_queue(self) -> None:
        if not self._queue_url:
            return
        queue_url = self._queue_url
        await asyncio.to_thread(self.sqs.delete_queue, QueueUrl=queue_url)
        self._queue_url = None
        LOGGER.info("queue_deleted", extra={"consumer": self.name, "queue_url": queue_url})

    async def purge_queue(self) -> None:
        queue_url = await self.resolve_queue()
        await asyncio.to_thread(self.sqs.purge_queue, QueueUrl=queue_url)
        LOGGER.info("queue_purged", extra={"consumer": self.name, "queue_url": queue_url})

    def _require_url(self) -> str:
        if not self._queue_url:
            raise InitializationError(f"Queue {self.queue_name} is not resolved")
        return self._queue_url
