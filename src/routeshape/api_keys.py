"""API key generation and the public/private key lifecycle."""

from __future__ import annotations

import hmac
import secrets

ACCESS_PUBLIC = "public"
ACCESS_PRIVATE = "private"
ACCESS_MODES = (ACCESS_PUBLIC, ACCESS_PRIVATE)

KEY_PREFIX = "ak_"
KEY_BYTES = 24


def generate_api_key() -> str:
    """Return ``ak_`` followed by 48 lowercase hex characters."""
    return KEY_PREFIX + secrets.token_hex(KEY_BYTES)


def next_api_key(current_mode: str | None, current_key: str | None, new_mode: str, regenerate: bool = False) -> str | None:
    """Key an endpoint should hold after moving from ``current_mode`` to ``new_mode``.

    ``current_mode`` is None on create. Public endpoints never hold a key; a
    private endpoint keeps its key verbatim unless ``regenerate`` is set or it
    has none yet (fresh create, or coming back from public).
    """
    if new_mode == ACCESS_PUBLIC:
        return None
    if regenerate or current_mode != ACCESS_PRIVATE or not current_key:
        return generate_api_key()
    return current_key


def keys_match(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))

