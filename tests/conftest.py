import asyncio
import json
import logging
import os
import sys
import time
import uuid
from collections import defaultdict
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

os.environ.setdefault("SQSX_ENVIRONMENT", "test")
os.environ.setdefault("SQSX_LOG_JSON", "false")
os.environ.setdefault("SQSX_ENCRYPTION_KEY", "")
os.environ.setdefault("SQSX_CONFIG_FILE", "")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-west-2")

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from sqs_toolkit.core.config import get_settings  # noqa: E402

get_settings.cache_clear()

from sqs_toolkit.sqs.consumer import SqsConsumer  # noqa: E402

QUEUE_NAME = "test-unit"
QUEUE_URL = "https://sqs.us-west-2.amazonaws.com/123456789012/test-unit"
KEY_ID = "alias/sqs-toolkit-test"


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeSqsClient:
    """In-memory stand-in for the boto3 SQS client."""

    def __init__(self, queues=None, batches=None) -> None:
        self.queues = dict(queues if queues is not None else {QUEUE_NAME: QUEUE_URL})
        self.batches = list(batches or [])
        self.batch_total = len(self.batches)
        self.calls = defaultdict(list)
        self.get_queue_url_error = None
        self.create_queue_error = None
        self.delete_error = None
        self.visibility_error = None
        self.send_error = None

    def add_batches(self, *batches) -> None:
        self.batches.extend(batches)
        self.batch_total += len(batches)

    @property
    def receive_calls(self) -> int:
        return len(self.calls["receive_message"])

    def get_queue_url(self, QueueName):
        self.calls["get_queue_url"].append(QueueName)
        if self.get_queue_url_error is not None:
            raise self.get_queue_url_error
        if QueueName not in self.queues:
            raise client_error("AWS.SimpleQueueService.NonExistentQueue", "GetQueueUrl")
        return {"QueueUrl": self.queues[QueueName]}

    def create_queue(self, QueueName, Attributes):
        self.calls["create_queue"].append({"QueueName": QueueName, "Attributes": Attributes})
        if self.create_queue_error is not None:
            raise self.create_queue_error
        url = f"https://sqs.us-west-2.amazonaws.com/123456789012/{QueueName}"
        self.queues[QueueName] = url
        return {"QueueUrl": url}

    def receive_message(self, **kwargs):
        self.calls["receive_message"].append(kwargs)
        if self.batches:
            batch = self.batches.pop(0)
            if isinstance(batch, Exception):
                raise batch
            return {"Messages": batch}
        time.sleep(0.005)
        return {}

    def delete_message(self, QueueUrl, ReceiptHandle):
        self.calls["delete_message"].append(ReceiptHandle)
        if self.delete_error is not None:
            raise self.delete_error
        return {}

    def change_message_visibility(self, QueueUrl, ReceiptHandle, VisibilityTimeout):
        self.calls["change_message_visibility"].append((ReceiptHandle, VisibilityTimeout))
        if self.visibility_error is not None:
            raise self.visibility_error
        return {}

    def send_message(self, QueueUrl, MessageBody):
        self.calls["send_message"].append({"QueueUrl": QueueUrl, "MessageBody": MessageBody})
        if self.send_error is not None:
            raise self.send_error
        return {"MessageId": str(uuid.uuid4())}

    def delete_queue(self, QueueUrl):
        self.calls["delete_queue"].append(QueueUrl)
        return {}

    def purge_queue(self, QueueUrl):
        self.calls["purge_queue"].append(QueueUrl)
        return {}


class FakeKmsClient:
    """Wraps data keys by handing out opaque tokens that map back to the key."""

    def __init__(self) -> None:
        self._keys = {}
        self.calls = defaultdict(list)
        self.decrypt_error = None

    def generate_data_key(self, KeyId, KeySpec):
        self.calls["generate_data_key"].append({"KeyId": KeyId, "KeySpec": KeySpec})
        plaintext = os.urandom(32)
        blob = os.urandom(24)
        self._keys[blob] = (KeyId, plaintext)
        return {"Plaintext": plaintext, "CiphertextBlob": blob, "KeyId": KeyId}

    def decrypt(self, CiphertextBlob, KeyId=None):
        self.calls["decrypt"].append({"CiphertextBlob": CiphertextBlob, "KeyId": KeyId})
        if self.decrypt_error is not None:
            raise self.decrypt_error
        if CiphertextBlob not in self._keys:
            raise client_error("InvalidCiphertextException", "Decrypt")
        owner, plaintext = self._keys[CiphertextBlob]
        if KeyId is not None and KeyId != owner:
            raise client_error("IncorrectKeyException", "Decrypt")
        return {"Plaintext": plaintext, "KeyId": owner}


@pytest.fixture()
def fake_sqs() -> FakeSqsClient:
    return FakeSqsClient()


@pytest.fixture()
def fake_kms() -> FakeKmsClient:
    return FakeKmsClient()


@pytest.fixture()
def base_conf():
    return {"queue": {"prefix": "test-", "env": "unit"}}


@pytest.fixture()
def make_message():
    def _make(message_id, body, receive_count=None):
        message = {
            "MessageId": message_id,
            "ReceiptHandle": f"receipt-{message_id}",
            "Body": body if isinstance(body, str) else json.dumps(body),
        }
        if receive_count is not None:
            message["Attributes"] = {"ApproximateReceiveCount": str(receive_count)}
        return message

    return _make


@pytest.fixture()
def make_consumer(fake_sqs, fake_kms, base_conf):
    from sqs_toolkit.core.config import deep_merge

    def _make(handler, conf=None, **kwargs):
        return SqsConsumer(
            "unit-consumer",
            handler,
            conf=deep_merge(base_conf, conf or {}),
            sqs_client=fake_sqs,
            kms_client=fake_kms,
            **kwargs,
        )

    return _make


@pytest.fixture()
def no_wait(monkeypatch):
    waiter = AsyncMock(return_value=None)
    monkeypatch.setattr("sqs_toolkit.sqs.consumer.wait", waiter)
    return waiter


@pytest.fixture()
def drain(fake_sqs):
    async def _drain(consumer, timeout=5.0):
        await consumer.start()
        deadline = time.monotonic() + timeout
        while fake_sqs.receive_calls <= fake_sqs.batch_total:
            if time.monotonic() > deadline:
                raise AssertionError("consumer did not drain the queued batches")
            await asyncio.sleep(0.01)
        await consumer.stop(wait=True)

    return _drain


@pytest.fixture()
def api_consumer(make_consumer):
    return make_consumer(lambda body, message: None)


@pytest.fixture()
def client(api_consumer) -> TestClient:  # noqa: ANN001
    from sqs_toolkit.api.dependencies import set_consumer
    from sqs_toolkit.core.config import AppSettings
    from sqs_toolkit.main import create_app

    root_logger = logging.getLogger()
    handlers, level = root_logger.handlers[:], root_logger.level
    app = create_app(AppSettings(log_json=False, consumer_autostart=False), consumer=api_consumer)
    with TestClient(app) as test_client:
        yield test_client
    set_consumer(None)
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)
