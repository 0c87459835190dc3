"""Symmetric encryption, token generation and masking for credential material."""

from __future__ import annotations

import base64
import hashlib
import json
import secrets
from functools import lru_cache
from typing import Any, Dict, Mapping, Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from lifesync.core.config import settings
from lifesync.core.errors import CredentialError

_KDF_SALT = b"lifesync.secret-store.v1"


def _derive_fernet_key(secret: str) -> bytes:
    raw = hashlib.scrypt(secret.encode("utf-8"), salt=_KDF_SALT, n=2**14, r=8, p=1, dklen=32)
    return base64.urlsafe_b64encode(raw)


class SecretCipher:
    """Authenticated encryption keyed from a process-wide secret.

    Fernet tokens carry their own random IV and an HMAC, so every payload
    encrypts differently and tampering is detected on decrypt. Older keys
    stay readable through MultiFernet; new tokens always use the primary key.
    """

    algorithm = "fernet-aes128-cbc-hmac-sha256"

    def __init__(self, primary_key: str, previous_keys: Sequence[str] = ()):
        keys = [_derive_fernet_key(primary_key)] + [_derive_fernet_key(k) for k in previous_keys]
        self._fernet = MultiFernet([Fernet(k) for k in keys])
        self.key_id = hashlib.sha256(keys[0]).hexdigest()[:12]

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            raise CredentialError("Decryption failed: payload is corrupt or was encrypted with an unknown key") from exc

    def encrypt_object(self, obj: Mapping[str, Any]) -> str:
        return self.encrypt(json.dumps(dict(obj), separators=(",", ":")))

    def decrypt_object(self, token: str) -> Dict[str, Any]:
        plaintext = self.decrypt(token)
        try:
            data = json.loads(plaintext)
        except json.JSONDecodeError as exc:
            raise CredentialError("Decrypted payload is not valid JSON") from exc
        if not isinstance(data, dict):
            raise CredentialError("Decrypted payload is not an object")
        return data

    def rotate(self, token: str) -> str:
        """Re-encrypt a token under the primary key."""
        try:
            return self._fernet.rotate(token.encode("ascii")).decode("ascii")
        except InvalidToken as exc:
            raise CredentialError("Cannot rotate a token that fails authentication") from exc


@lru_cache(maxsize=1)
def get_cipher() -> SecretCipher:
    return SecretCipher(settings.ENCRYPTION_KEY, settings.previous_encryption_keys)


def generate_secure_token(nbytes: int = 32) -> str:
    """Hex-encoded random token (``nbytes`` of entropy, 2*nbytes characters)."""
    return secrets.token_hex(nbytes)


def mask_token(value: str, visible: int = 4) -> str:
    if len(value) <= visible * 2:
        return "*" * len(value)
    return value[:visible] + "*" * (len(value) - visible * 2) + value[-visible:]


def mask_credentials(payload: Mapping[str, Any], kind: str) -> Dict[str, Any]:
    """Display-safe copy of a credential payload for logs and UI."""
    if kind == "oauth":
        masked = dict(payload)
        masked["access_token"] = mask_token(str(payload.get("access_token") or ""))
        if payload.get("refresh_token"):
            masked["refresh_token"] = mask_token(str(payload["refresh_token"]))
        return masked
    if kind == "api_key":
        masked = dict(payload)
        masked["api_key"] = mask_token(str(payload.get("api_key") or ""))
        if payload.get("secret_key"):
            masked["secret_key"] = mask_token(str(payload["secret_key"]))
        return masked
    if kind == "basic_auth":
        return {"username": payload.get("username"), "password": "***masked***"}
    if kind == "certificate":
        return {
            "certificate": "***certificate-data***",
            "private_key": "***private-key***",
            "passphrase": "***masked***",
        }
    return {"value": "***masked***"}
