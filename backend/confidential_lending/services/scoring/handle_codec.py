"""
Handle Codec

Reversible encoding between a non-negative integer and an opaque handle
string that stands in for a ciphertext.

Handle layout:
    "0x" + hex( "enc_" + base64(str(value)) + "_" + nonce )

The nonce (millisecond timestamp + random hex) makes two encodings of the
same value differ, so equality of stored handles never leaks equality of
values. This is an encoding, not encryption.

decode() is total: anything that does not have the layout above decodes
to 0. The risk classifier relies on that to fail closed to "high".
"""
import base64
import binascii
import secrets
import time

from ..errors import ValidationError

HANDLE_PREFIX = "0x"
PAYLOAD_TAG = "enc"
SEPARATOR = "_"


def _nonce() -> str:
    return f"{int(time.time() * 1000)}{secrets.token_hex(4)}"


def encode(value: int) -> str:
    """Encode a non-negative integer into a fresh opaque handle."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Handle value must be an integer, got {type(value).__name__}")
    if value < 0:
        raise ValidationError("Handle value must be non-negative")

    try:
        digits = str(value)
    except ValueError:
        raise ValidationError("Handle value is too large to encode")

    encoded = base64.b64encode(digits.encode("ascii")).decode("ascii")
    payload = SEPARATOR.join([PAYLOAD_TAG, encoded, _nonce()])
    return HANDLE_PREFIX + payload.encode("utf-8").hex()


def _payload_of(handle: str):
    body = handle[len(HANDLE_PREFIX):] if handle.startswith(HANDLE_PREFIX) else handle
    try:
        return bytes.fromhex(body).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        # Plain "enc_<b64>_<nonce>" form
        return handle


def _value_of(payload: str):
    parts = payload.split(SEPARATOR)
    if len(parts) != 3 or parts[0] != PAYLOAD_TAG or not parts[2]:
        return None
    try:
        digits = base64.b64decode(parts[1], validate=True).decode("ascii")
    except (binascii.Error, ValueError):
        return None
    if not digits or not digits.isdigit():
        return None
    try:
        return int(digits)
    except ValueError:
        # Beyond the interpreter's int-string conversion limit
        return None


def decode(handle: str) -> int:
    """Decode a handle back to its integer. Malformed handles decode to 0."""
    if not isinstance(handle, str) or not handle:
        return 0
    value = _value_of(_payload_of(handle))
    return 0 if value is None else value


def is_handle(handle: str) -> bool:
    """True when the handle has the full structure produced by encode()."""
    if not isinstance(handle, str) or not handle:
        return False
    return _value_of(_payload_of(handle)) is not None
