"""Credential validation and wire encoding."""

from __future__ import annotations

from wifiprov.core.errors import InvalidInputError
from wifiprov.core.model import CredentialField


def _encode(field: CredentialField, value: object, max_bytes: int) -> bytes:
    if not isinstance(value, str):
        raise InvalidInputError(f"{field.value} must be a string")
    try:
        payload = value.encode("utf-8")
    except UnicodeEncodeError:
        raise InvalidInputError(f"{field.value} is not valid UTF-8 text") from None
    if len(payload) > max_bytes:
        raise InvalidInputError(
            f"{field.value} encodes to {len(payload)} bytes, exceeds max write size {max_bytes} bytes"
        )
    return payload


def encode_credentials(ssid: object, password: object, *, max_bytes: int) -> dict[CredentialField, bytes]:
    """Validate and UTF-8 encode credentials, one payload per characteristic.

    Payloads carry no framing, length prefix, or checksum. An empty password
    is accepted for open networks; an empty SSID is not.
    """
    ssid_payload = _encode(CredentialField.SSID, ssid, max_bytes)
    if not ssid_payload:
        raise InvalidInputError("ssid must not be empty")
    password_payload = _encode(CredentialField.PASSWORD, password, max_bytes)
    return {
        CredentialField.SSID: ssid_payload,
        CredentialField.PASSWORD: password_payload,
    }
