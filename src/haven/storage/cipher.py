"""Reversible transforms for sensitive record fields.

XorCipher is the default and is OBFUSCATION ONLY: the key is a fixed constant
shipped with the code, so anyone holding the stored blob and this module can
read it back. It keeps casual eyes off sensitive fields in a local store and
nothing more. Use FernetCipher with a secret key when the medium itself may be
read by someone else.

Both ciphers share one contract: encrypt() takes a JSON-serializable mapping
and returns text; decrypt() returns the mapping, or {} for anything it cannot
read. Decryption never raises, so a damaged blob costs the user those fields
instead of blocking access to the rest of their record.
"""

import base64
import binascii
import hashlib
import json
import logging
from typing import Any, Protocol

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

DEFAULT_XOR_KEY = "user_data_key"


class Cipher(Protocol):
    """Contract for sensitive-field ciphers."""

    def encrypt(self, data: dict[str, Any]) -> str: ...

    def decrypt(self, blob: str) -> dict[str, Any]: ...


def _xor(data: bytes, key: bytes) -> bytes:
    return bytes(b ^ key[i % len(key)] for i, b in enumerate(data))


def _as_mapping(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        logger.warning("Decrypted payload is %s, not a mapping", type(value).__name__)
        return {}
    return value


class XorCipher:
    """JSON -> base64 -> repeating-key XOR -> base64.

    Not encryption in any cryptographic sense; see the module docstring.
    """

    def __init__(self, key: str = DEFAULT_XOR_KEY) -> None:
        if not key:
            raise ValueError("XOR key must not be empty")
        self._key = key.encode("utf-8")

    def encrypt(self, data: dict[str, Any]) -> str:
        encoded = base64.b64encode(json.dumps(data).encode("utf-8"))
        return base64.b64encode(_xor(encoded, self._key)).decode("ascii")

    def decrypt(self, blob: str) -> dict[str, Any]:
        try:
            encoded = _xor(base64.b64decode(blob, validate=True), self._key)
            plain = base64.b64decode(encoded, validate=True).decode("utf-8")
            return _as_mapping(json.loads(plain))
        except (binascii.Error, UnicodeDecodeError, ValueError, TypeError) as e:
            logger.warning("Failed to decrypt sensitive data: %s", e)
            return {}


class FernetCipher:
    """Authenticated encryption (AES-CBC + HMAC) via cryptography's Fernet.

    The Fernet key is derived from arbitrary secret text with SHA-256, so any
    passphrase-like secret from configuration can be used directly.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("Fernet secret must not be empty")
        self._fernet = Fernet(self.derive_key(secret))

    @staticmethod
    def derive_key(secret: str) -> bytes:
        return base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())

    def encrypt(self, data: dict[str, Any]) -> str:
        return self._fernet.encrypt(json.dumps(data).encode("utf-8")).decode("ascii")

    def decrypt(self, blob: str) -> dict[str, Any]:
        try:
            plain = self._fernet.decrypt(blob.encode("ascii")).decode("utf-8")
            return _as_mapping(json.loads(plain))
        except InvalidToken:
            logger.warning("Failed to decrypt sensitive data: invalid token")
            return {}
        except (UnicodeError, ValueError, TypeError, AttributeError) as e:
            logger.warning("Failed to decrypt sensitive data: %s", e)
            return {}
