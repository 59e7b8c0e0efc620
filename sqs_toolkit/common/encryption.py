"""Envelope encryption of message payloads using KMS data keys."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import os
from typing import Any, Dict, Mapping, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sqs_toolkit.core.errors import DecryptionError, EncryptionConfigurationError, KeyServiceError

LOGGER = logging.getLogger("sqs_toolkit.common.encryption")

NONCE_BYTES = 12

# KMS error codes meaning the wrapped key will never unwrap with this key.
_PERMANENT_KMS_ERRORS = {
    "InvalidCiphertextException",
    "IncorrectKeyException",
    "InvalidKeyUsageException",
}


class EnvelopeEncryption:
    """Encrypts payloads with per-message AES-GCM keys wrapped by KMS.

    Envelopes have the shape ``{"cipherText": <base64>, "wrappedKey": <hex>}``.
    The unwrapped data key only lives in local variables for the duration of
    one cipher operation.
    """

    def __init__(
        self,
        key_id: Optional[str],
        *,
        kms_client: Any = None,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        algorithm: str = "AES_256",
    ) -> None:
        self.key_id = key_id or None
        self.algorithm = algorithm
        self._kms = kms_client
        self._client_kwargs = {"region_name": region_name, "endpoint_url": endpoint_url}

    @property
    def kms(self) -> Any:
        if self._kms is None:
            self._kms = boto3.client("kms", **self._client_kwargs)
        return self._kms

    @property
    def configured(self) -> bool:
        return self.key_id is not None

    async def encrypt(self, data: Any) -> Dict[str, str]:
        if not self.key_id:
            raise EncryptionConfigurationError("key")

        try:
            response = await asyncio.to_thread(
                self.kms.generate_data_key,
                KeyId=self.key_id,
                KeySpec=self.algorithm,
            )
        except (BotoCoreError, ClientError) as exc:
            LOGGER.exception("encryption_data_key_failed", extra={"key_id": self.key_id})
            raise KeyServiceError("Unable to generate a data key", exc) from exc

        plaintext_key = response.pop("Plaintext")
        try:
            nonce = os.urandom(NONCE_BYTES)
            sealed = AESGCM(plaintext_key).encrypt(nonce, json.dumps(data).encode("utf-8"), None)
        finally:
            del plaintext_key

        return {
            "cipherText": base64.b64encode(nonce + sealed).decode("ascii"),
            "wrappedKey": bytes(response["CiphertextBlob"]).hex(),
        }

    async def decrypt(self, envelope: Mapping[str, Any]) -> Any:
        if not self.key_id:
            raise EncryptionConfigurationError("key")

        try:
            wrapped_key = bytes.fromhex(envelope["wrappedKey"])
            payload = base64.b64decode(envelope["cipherText"], validate=True)
        except (KeyError, TypeError, ValueError, binascii.Error) as exc:
            raise DecryptionError("Encrypted envelope is malformed", exc) from exc
        if len(payload) <= NONCE_BYTES:
            raise DecryptionError("Encrypted envelope is malformed")

        try:
            response = await asyncio.to_thread(
                self.kms.decrypt,
                CiphertextBlob=wrapped_key,
                KeyId=self.key_id,
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code")
            if code in _PERMANENT_KMS_ERRORS:
                raise DecryptionError(f"Wrapped key cannot be unwrapped: {code}", exc) from exc
            LOGGER.exception("encryption_unwrap_failed", extra={"key_id": self.key_id, "code": code})
            raise KeyServiceError("Unable to unwrap data key", exc) from exc
        except BotoCoreError as exc:
            LOGGER.exception("encryption_unwrap_failed", extra={"key_id": self.key_id})
            raise KeyServiceError("Unable to unwrap data key", exc) from exc

        plaintext_key = response.pop("Plaintext")
        try:
            plaintext = AESGCM(plaintext_key).decrypt(payload[:NONCE_BYTES], payload[NONCE_BYTES:], None)
        except (InvalidTag, ValueError) as exc:
            raise DecryptionError("Cipher text does not match the wrapped key", exc) from exc
        finally:
            del plaintext_key

        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DecryptionError("Decrypted payload is not valid JSON", exc) from exc
