"""Error taxonomy for queue sessions and consumers."""

from __future__ import annotations

import json
from typing import Any, Iterable, Optional


class SqsToolkitError(Exception):
    """Base class for all toolkit errors."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConfigurationError(SqsToolkitError):
    """A required setting is missing or invalid for the requested operation."""


class EncryptionConfigurationError(ConfigurationError):
    """No encryption key is configured but the operation needs one."""

    def __init__(self, setting: str = "key") -> None:
        super().__init__(f"An encryption configuration was not found in the config: encryption.{setting}")
        self.setting = setting


class NonRetryableError(SqsToolkitError):
    """Raised by handlers when a message can never be processed successfully."""


class ValidationError(NonRetryableError):
    """A message body does not conform to the configured JSON schema."""

    def __init__(self, schema_id: Optional[str], errors: Iterable[Any]) -> None:
        self.schema_id = schema_id
        self.errors = list(errors)
        super().__init__(
            f"Validation error took place while validating against schema: {schema_id}. "
            f"{json.dumps(self.errors, default=str)}"
        )


class MessageSyntaxError(NonRetryableError):
    """A message body is not parseable JSON."""


class DecryptionError(NonRetryableError):
    """An encrypted envelope is malformed, foreign, or cannot be decoded."""


class KeyServiceError(SqsToolkitError):
    """The key management service failed in a way that may succeed on retry."""


class InitializationError(SqsToolkitError):
    """The queue could not be resolved or created."""


def is_non_retryable(exc: BaseException) -> bool:
    """Return True when retrying the message cannot change the outcome."""

    return isinstance(exc, NonRetryableError)
