"""At-rest encryption for endpoint API keys."""

from __future__ import annotations

import base64
import logging
import os

from cryptography.fernet import Fernet, InvalidToken


_ENC_PREFIX = "enc:"
_logger = logging.getLogger("routeshape.secrets")
_WARNED = {"plaintext": False}


class SecretStoreError(RuntimeError):
    pass


def _get_fernet() -> Fernet | None:
    key = os.getenv("ROUTESHAPE_SECRET_KEY", "").strip()
    if not key:
        return None
    try:
        # Accept a raw 32-char secret or a urlsafe base64 Fernet key
        if len(key) == 32:
            key = base64.urlsafe_b64encode(key.encode("utf-8")).decode("utf-8")
        return Fernet(key.encode("utf-8"))
    except Exception as exc:
        raise SecretStoreError("Invalid ROUTESHAPE_SECRET_KEY") from exc


def seal_api_key(value: str | None) -> str | None:
    if value is None:
        return None
    fernet = _get_fernet()
    if fernet is None:
        if not _WARNED["plaintext"]:
            _logger.warning("api_keys_plaintext reason=ROUTESHAPE_SECRET_KEY unset")
            _WARNED["plaintext"] = True
        return value
    return _ENC_PREFIX + fernet.encrypt(value.encode("utf-8")).decode("utf-8")


def open_api_key(stored: str | None) -> str | None:
    if stored is None or not stored.startswith(_ENC_PREFIX):
        return stored
    fernet = _get_fernet()
    if fernet is None:
        raise SecretStoreError("ROUTESHAPE_SECRET_KEY is required to read encrypted API keys")
    try:
        return fernet.decrypt(stored[len(_ENC_PREFIX) :].encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise SecretStoreError("Invalid API key token") from exc
