"""Long-polling SQS consumer/producer toolkit with envelope encryption."""

from sqs_toolkit.core.errors import (  # noqa: F401
    ConfigurationError,
    DecryptionError,
    EncryptionConfigurationError,
    InitializationError,
    MessageSyntaxError,
    NonRetryableError,
    ValidationError,
)
from sqs_toolkit.sqs import QueueSession, SqsConsumer  # noqa: F401

__version__ = "1.0.0"
