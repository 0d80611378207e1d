from __future__ import annotations

import base64
import binascii
import os
from collections.abc import Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from qms_core.core.config import Settings

BLOB_SCHEME = "aesgcm"
_NONCE_BYTES = 12
_KEY_BYTES = 32


class DecryptionError(Exception):
    pass


class SecretCodecConfigError(Exception):
    pass


class SecretCodec:
    """Seals individual secret field values with AES-256-GCM.

    A blob looks like ``aesgcm:<key_id>:<nonce_b64>:<ciphertext_b64>``. The key id
    travels with the blob so retired keys can stay in the ring for reads while
    new seals always use the active key. ``context`` is bound as associated data,
    so a blob moved to a different field no longer opens.
    """

    def __init__(self, *, keys: Mapping[str, bytes], active_key_id: str) -> None:
        if not keys:
            raise SecretCodecConfigError("At least one integration encryption key is required.")
        if active_key_id not in keys:
            raise SecretCodecConfigError(f"Active key id {active_key_id!r} is not in the key ring.")
        for key_id, key in keys.items():
            if not key_id or ":" in key_id:
                raise SecretCodecConfigError(f"Invalid key id {key_id!r}.")
            if len(key) != _KEY_BYTES:
                raise SecretCodecConfigError(f"Key {key_id!r} must be {_KEY_BYTES} bytes.")
        self._ciphers = {key_id: AESGCM(key) for key_id, key in keys.items()}
        self.active_key_id = active_key_id

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecretCodec":
        keys: dict[str, bytes] = {}
        for entry in settings.integration_encryption_keys.split(","):
            entry = entry.strip()
            if not entry:
                continue
            key_id, sep, encoded = entry.partition(":")
            if not sep:
                raise SecretCodecConfigError("INTEGRATION_ENCRYPTION_KEYS entries must be '<key_id>:<key>'.")
            try:
                keys[key_id.strip()] = base64.urlsafe_b64decode(encoded.strip())
            except (binascii.Error, ValueError) as exc:
                raise SecretCodecConfigError(f"Key {key_id!r} is not valid base64.") from exc
        active = settings.integration_encryption_active_key or (next(iter(keys)) if len(keys) == 1 else "")
        return cls(keys=keys, active_key_id=active)

    @staticmethod
    def generate_key() -> str:
        return base64.urlsafe_b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")

    def seal(self, plaintext: str, *, context: str | None = None) -> str:
        nonce = os.urandom(_NONCE_BYTES)
        ciphertext = self._ciphers[self.active_key_id].encrypt(
            nonce, plaintext.encode("utf-8"), _aad(context)
        )
        return ":".join(
            (
                BLOB_SCHEME,
                self.active_key_id,
                base64.b64encode(nonce).decode("ascii"),
                base64.b64encode(ciphertext).decode("ascii"),
            )
        )

    def reveal(self, blob: str, *, context: str | None = None) -> str:
        parts = blob.split(":") if isinstance(blob, str) else []
        if len(parts) != 4 or parts[0] != BLOB_SCHEME:
            raise DecryptionError("Malformed secret blob.")
        _, key_id, nonce_b64, ciphertext_b64 = parts
        cipher = self._ciphers.get(key_id)
        if cipher is None:
            raise DecryptionError(f"Secret was sealed with unknown key {key_id!r}.")
        try:
            nonce = base64.b64decode(nonce_b64, validate=True)
            ciphertext = base64.b64decode(ciphertext_b64, validate=True)
            plaintext = cipher.decrypt(nonce, ciphertext, _aad(context))
        except (binascii.Error, ValueError, InvalidTag) as exc:
            raise DecryptionError("Secret blob failed authentication.") from exc
        return plaintext.decode("utf-8")

    @staticmethod
    def is_sealed(value: object) -> bool:
        return isinstance(value, str) and value.startswith(BLOB_SCHEME + ":")


def _aad(context: str | None) -> bytes | None:
    return context.encode("utf-8") if context else None
