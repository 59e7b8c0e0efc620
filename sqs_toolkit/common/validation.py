"""JSON schema validation for message bodies."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from jsonschema import SchemaError, validators

from sqs_toolkit.core.errors import ConfigurationError, ValidationError

LOGGER = logging.getLogger("sqs_toolkit.common.validation")


def _schema_id(schema: Mapping[str, Any]) -> Optional[str]:
    return schema.get("$id") or schema.get("id") or schema.get("title")


class SchemaValidator:
    """Validates values against JSON schemas, caching compiled validators."""

    def __init__(self) -> None:
        self._compiled: Dict[int, Any] = {}

    def _validator_for(self, schema: Mapping[str, Any]) -> Any:
        key = id(schema)
        cached = self._compiled.get(key)
        if cached is not None and cached.schema is schema:
            return cached
        validator_cls = validators.validator_for(schema)
        try:
            validator_cls.check_schema(schema)
        except SchemaError as exc:
            raise ConfigurationError(f"Invalid JSON schema: {exc.message}", exc) from exc
        compiled = validator_cls(schema)
        self._compiled[key] = compiled
        return compiled

    def collect_errors(self, value: Any, schema: Mapping[str, Any]) -> List[Dict[str, Any]]:
        validator = self._validator_for(schema)
        return [
            {
                "path": "/".join(str(part) for part in error.absolute_path),
                "message": error.message,
                "validator": error.validator,
            }
            for error in sorted(validator.iter_errors(value), key=lambda item: list(map(str, item.path)))
        ]

    async def validate(self, value: Any, schema: Optional[Mapping[str, Any]]) -> Any:
        """Return ``value`` when it conforms to ``schema``.

        An empty or missing schema accepts anything.
        """

        if not schema:
            return value
        errors = self.collect_errors(value, schema)
        if errors:
            LOGGER.debug(
                "schema_validation_failed",
                extra={"schema_id": _schema_id(schema), "error_count": len(errors)},
            )
            raise ValidationError(_schema_id(schema), errors)
        return value
