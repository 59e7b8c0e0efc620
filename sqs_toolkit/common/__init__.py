"""Helpers shared by queue sessions and consumers."""

from sqs_toolkit.common.encryption import EnvelopeEncryption  # noqa: F401
from sqs_toolkit.common.retry import Retrier, next_retry_interval  # noqa: F401
from sqs_toolkit.common.validation import SchemaValidator  # noqa: F401
