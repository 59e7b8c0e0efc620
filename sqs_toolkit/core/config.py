"""Application settings and layered consumer configuration."""

from __future__ import annotations

import json
import os
import re
from datetime import time
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sqs_toolkit.common.durations import read_duration
from sqs_toolkit.core.errors import ConfigurationError


class AppSettings(BaseSettings):
    """Process configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SQSX_",
        extra="ignore",
    )

    environment: Literal["local", "test", "staging", "production"] = Field(default="local")
    service_name: str = Field(default="sqs-toolkit")
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)
    aws_region: str = Field(default="us-west-2")
    sqs_endpoint_url: str | None = Field(default=None)
    kms_endpoint_url: str | None = Field(default=None)
    consumer_name: str = Field(default="sqs-default")
    consumer_autostart: bool = Field(default=False)
    handler: str | None = Field(default=None)
    config_file: str | None = Field(default=None)
    queue_prefix: str | None = Field(default=None)
    queue_env: str | None = Field(default=None)
    encryption_key: str | None = Field(default=None)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator(
        "sqs_endpoint_url",
        "kms_endpoint_url",
        "config_file",
        "queue_prefix",
        "queue_env",
        "encryption_key",
        "handler",
        mode="before",
    )
    @classmethod
    def empty_string_to_none(cls, value: str | None) -> str | None:
        if value == "":
            return None
        return value

    def consumer_overrides(self) -> Dict[str, Any]:
        """Consumer configuration derived from environment settings."""

        overrides: Dict[str, Any] = {"sqs_options": {"region_name": self.aws_region}}
        if self.sqs_endpoint_url:
            overrides["sqs_options"]["endpoint_url"] = self.sqs_endpoint_url
        queue: Dict[str, Any] = {}
        if self.queue_prefix:
            queue["prefix"] = self.queue_prefix
        if self.queue_env:
            queue["env"] = self.queue_env
        if queue:
            overrides["queue"] = queue
        encryption: Dict[str, Any] = {}
        if self.encryption_key:
            encryption["key"] = self.encryption_key
        if self.kms_endpoint_url:
            encryption["endpoint_url"] = self.kms_endpoint_url
        if encryption:
            overrides["encryption"] = encryption
        return overrides


@lru_cache
def get_settings() -> AppSettings:
    """Return cached application settings instance."""

    return AppSettings()


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class QueueConfig(_Section):
    prefix: str = "sqs-default-"
    env: str = Field(default_factory=lambda: os.getenv("USER") or "local")
    attributes: Dict[str, str] = Field(default_factory=dict)

    @field_validator("attributes", mode="before")
    @classmethod
    def stringify_attributes(cls, value: Optional[Mapping[str, Any]]) -> Dict[str, str]:
        # SQS only accepts string attribute values.
        return {key: str(item) for key, item in (value or {}).items()}


class PollErrorConfig(_Section):
    min_wait_seconds: float = 10
    max_wait_seconds: float = 600


class PollConfig(_Section):
    interval_seconds: int = Field(default=20, ge=0, le=20)
    error: PollErrorConfig = Field(default_factory=PollErrorConfig)


class MessageErrorConfig(_Section):
    min_visibility_seconds: int = 60
    max_visibility_seconds: int = 600
    max_retries: int = 10


class MessageConfig(_Section):
    error: MessageErrorConfig = Field(default_factory=MessageErrorConfig)


class SchedulerConfig(_Section):
    scheduled: bool = False
    start_time_of_day: time = time(0, 0, 0)
    duration: int = 2 * 60 * 60
    max_visibility_timeout: int = 6 * 60 * 60

    @field_validator("duration", "max_visibility_timeout", mode="before")
    @classmethod
    def parse_human_duration(cls, value: Any) -> int:
        return read_duration(value)


class ConsumerSection(_Section):
    enabled: bool = True
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)


class EncryptionConfig(_Section):
    key: Optional[str] = None
    algorithm: str = "AES_256"
    region_name: Optional[str] = None
    endpoint_url: Optional[str] = None

    @field_validator("key", mode="before")
    @classmethod
    def empty_key_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value == "":
            return None
        return value


DEFAULT_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-04/schema#",
    "type": "object",
}


class ConsumerConfig(_Section):
    """Fully resolved configuration for one named queue session/consumer."""

    name: str = "sqs-default"
    queue: QueueConfig = Field(default_factory=QueueConfig)
    sqs_options: Dict[str, Any] = Field(default_factory=lambda: {"region_name": "us-west-2"})
    concurrency: int = Field(default=10, ge=1, le=10)
    poll: PollConfig = Field(default_factory=PollConfig)
    message: MessageConfig = Field(default_factory=MessageConfig)
    consumer: ConsumerSection = Field(default_factory=ConsumerSection)
    message_schema: Optional[Dict[str, Any]] = Field(
        default_factory=lambda: dict(DEFAULT_SCHEMA),
        alias="schema",
    )
    encryption: EncryptionConfig = Field(default_factory=EncryptionConfig)

    @property
    def queue_name(self) -> str:
        return f"{self.queue.prefix}{self.queue.env}"

    @property
    def has_encryption_key(self) -> bool:
        return bool(self.encryption.key)


# Legacy short names accepted in profile files and overrides.
_KEY_ALIASES = {
    "min_wait": "min_wait_seconds",
    "max_wait": "max_wait_seconds",
    "min_visibility": "min_visibility_seconds",
    "max_visibility": "max_visibility_seconds",
    "interval": "interval_seconds",
    "start": "start_time_of_day",
    "duration_human": "duration",
    "max_visibility_timeout_human": "max_visibility_timeout",
}

# Values under these keys are passed through verbatim.
_OPAQUE_KEYS = {"attributes", "schema", "sqs_options"}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def normalize_keys(conf: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert camelCase and legacy option names to their canonical form."""

    normalized: Dict[str, Any] = {}
    for key, value in conf.items():
        name = _snake(str(key))
        name = _KEY_ALIASES.get(name, name)
        if isinstance(value, Mapping) and name not in _OPAQUE_KEYS:
            value = normalize_keys(value)
        normalized[name] = value
    return normalized


def deep_merge(*layers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Recursively merge mappings; later layers win, nested mappings merge."""

    merged: Dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            current = merged.get(key)
            if isinstance(current, Mapping) and isinstance(value, Mapping):
                merged[key] = deep_merge(current, value)
            elif isinstance(value, Mapping):
                merged[key] = deep_merge(value)
            else:
                merged[key] = value
    return merged


def load_profiles(path: str | os.PathLike[str]) -> Dict[str, Any]:
    """Read named consumer profiles from a JSON document.

    The document maps consumer names to partial configurations; an optional
    ``defaults`` entry applies to every consumer.
    """

    try:
        raw = Path(path).read_text(encoding="utf-8")
        profiles = json.loads(raw)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Unable to load consumer profiles from {path}", exc) from exc
    if not isinstance(profiles, dict):
        raise ConfigurationError(f"Consumer profiles in {path} must be a JSON object")
    return profiles


def resolve_consumer_config(
    name: str,
    overrides: Optional[Mapping[str, Any]] = None,
    profiles: Optional[Mapping[str, Any]] = None,
) -> ConsumerConfig:
    """Build the configuration for ``name``: defaults < profile < overrides."""

    profiles = profiles or {}
    layers = [
        normalize_keys(profiles.get("defaults") or {}),
        normalize_keys(profiles.get(name) or {}),
        normalize_keys(overrides or {}),
    ]
    merged = deep_merge(*layers)
    merged["name"] = name
    try:
        return ConsumerConfig.model_validate(merged)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid configuration for consumer {name}: {exc}", exc) from exc
