import re
import hashlib

from certledger.errors import InvalidKey

KEY_SIZE = 32
ZERO_KEY = bytes(KEY_SIZE)
KEY_PATTERN = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def derive_key(data: bytes) -> bytes:
    """Computes the registry key of a document: the SHA256 digest of its raw bytes."""
    return hashlib.sha256(data).digest()


def parse_key(value) -> bytes:
    """Accepts a 32 byte key or its hex form (with or without 0x), raises InvalidKey otherwise."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != KEY_SIZE:
            raise InvalidKey(f"Invalid hash length: {len(value)}")
        return bytes(value)
    if not isinstance(value, str) or not KEY_PATTERN.match(value):
        raise InvalidKey("Invalid hash format")
    if value.startswith("0x"):
        value = value[2:]
    return bytes.fromhex(value)


def key_to_hex(key: bytes) -> str:
    return "0x" + key.hex()


def is_zero_key(key: bytes) -> bool:
    return key == ZERO_KEY
