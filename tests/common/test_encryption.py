from __future__ import annotations

import base64

import pytest

from sqs_toolkit.common.encryption import EnvelopeEncryption
from sqs_toolkit.core.errors import (
    DecryptionError,
    EncryptionConfigurationError,
    KeyServiceError,
    NonRetryableError,
)

DATA = {"someProperty": "some property value", "someOtherProperty": "some other property value"}


def _client_error(code: str):
    from botocore.exceptions import ClientError

    return ClientError({"Error": {"Code": code, "Message": code}}, "Decrypt")


@pytest.mark.asyncio
async def test_encrypt_requests_a_data_key(fake_kms) -> None:
    encryption = EnvelopeEncryption("alias/test", kms_client=fake_kms)
    envelope = await encryption.encrypt(DATA)

    assert set(envelope) == {"cipherText", "wrappedKey"}
    assert fake_kms.calls["generate_data_key"] == [{"KeyId": "alias/test", "KeySpec": "AES_256"}]
    assert "some property value" not in envelope["cipherText"]


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [DATA, [1, "two", None], "plain", 3.5, {"nested": {"list": [{"a": 1}]}}])
async def test_round_trip(fake_kms, value) -> None:
    encryption = EnvelopeEncryption("alias/test", kms_client=fake_kms)
    assert await encryption.decrypt(await encryption.encrypt(value)) == value


@pytest.mark.asyncio
async def test_consecutive_encrypts_differ(fake_kms) -> None:
    encryption = EnvelopeEncryption("alias/test", kms_client=fake_kms)
    first = await encryption.encrypt(DATA)
    second = await encryption.encrypt(DATA)
    assert first["cipherText"] != second["cipherText"]


@pytest.mark.asyncio
async def test_missing_key_is_a_configuration_error(fake_kms) -> None:
    encryption = EnvelopeEncryption(None, kms_client=fake_kms)
    with pytest.raises(EncryptionConfigurationError):
        await encryption.encrypt(DATA)
    with pytest.raises(EncryptionConfigurationError):
        await encryption.decrypt({"cipherText": "x", "wrappedKey": "00"})
    assert not fake_kms.calls


@pytest.mark.asyncio
async def test_foreign_wrapped_key_is_non_retryable(fake_kms) -> None:
    encryption = EnvelopeEncryption("alias/test", kms_client=fake_kms)
    envelope = await encryption.encrypt(DATA)
    envelope["wrappedKey"] = "ab" * 24

    with pytest.raises(DecryptionError) as excinfo:
        await encryption.decrypt(envelope)
    assert isinstance(excinfo.value, NonRetryableError)


@pytest.mark.asyncio
async def test_key_mismatch_is_non_retryable(fake_kms) -> None:
    envelope = await EnvelopeEncryption("alias/one", kms_client=fake_kms).encrypt(DATA)
    with pytest.raises(DecryptionError):
        await EnvelopeEncryption("alias/two", kms_client=fake_kms).decrypt(envelope)


@pytest.mark.asyncio
async def test_tampered_cipher_text_is_non_retryable(fake_kms) -> None:
    encryption = EnvelopeEncryption("alias/test", kms_client=fake_kms)
    envelope = await encryption.encrypt(DATA)
    raw = bytearray(base64.b64decode(envelope["cipherText"]))
    raw[-1] ^= 0xFF
    envelope["cipherText"] = base64.b64encode(bytes(raw)).decode("ascii")

    with pytest.raises(DecryptionError):
        await encryption.decrypt(envelope)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "envelope",
    [
        {},
        {"cipherText": "not base64!", "wrappedKey": "00"},
        {"cipherText": "AAAA", "wrappedKey": "zz"},
        {"cipherText": base64.b64encode(b"short").decode(), "wrappedKey": "00"},
    ],
)
async def test_malformed_envelopes_are_rejected_without_kms(fake_kms, envelope) -> None:
    encryption = EnvelopeEncryption("alias/test", kms_client=fake_kms)
    with pytest.raises(DecryptionError):
        await encryption.decrypt(envelope)
    assert not fake_kms.calls["decrypt"]


@pytest.mark.asyncio
async def test_transient_kms_failure_is_retryable(fake_kms) -> None:
    encryption = EnvelopeEncryption("alias/test", kms_client=fake_kms)
    envelope = await encryption.encrypt(DATA)
    fake_kms.decrypt_error = _client_error("KMSInternalException")

    with pytest.raises(KeyServiceError) as excinfo:
        await encryption.decrypt(envelope)
    assert not isinstance(excinfo.value, NonRetryableError)


def test_data_key_is_not_retained(fake_kms) -> None:
    import asyncio

    encryption = EnvelopeEncryption("alias/test", kms_client=fake_kms)
    asyncio.run(encryption.encrypt(DATA))
    assert all(not isinstance(value, bytes) for value in vars(encryption).values())
