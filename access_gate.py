"""Access control for private endpoints and the API key lifecycle."""

from __future__ import annotations

import logging

from endpoint_registry import EndpointRegistry
from routeshape.api_keys import ACCESS_PRIVATE, ACCESS_PUBLIC, keys_match, next_api_key
from routeshape.errors import AuthError, ConflictError


logger = logging.getLogger("routeshape.auth")

MISSING_KEY_HINT = "This endpoint requires an API key. Include x-api-key header in your request."
INVALID_KEY_HINT = "The provided API key is not valid for this endpoint."


class AccessGate:
    def __init__(self, registry: EndpointRegistry) -> None:
        self._registry = registry

    def authorize(self, endpoint: dict, provided_key: str | None) -> None:
        """Raise AuthError unless ``provided_key`` opens ``endpoint``.

        Public endpoints ignore any supplied key.
        """
        if endpoint.get("access_mode") == ACCESS_PUBLIC:
            return
        if not provided_key:
            raise AuthError("API_KEY_MISSING", "Missing API key", None, {"hint": MISSING_KEY_HINT})
        if not keys_match(provided_key, endpoint.get("api_key")):
            logger.info("api_key_rejected endpoint=%s", endpoint.get("id"))
            raise AuthError("API_KEY_INVALID", "Invalid API key", None, {"hint": INVALID_KEY_HINT})

    def set_access_mode(self, endpoint_id: str, access_mode: str, owner_id: str | None = None) -> dict:
        return self._registry.update(endpoint_id, {"access_mode": access_mode}, owner_id)

    def regenerate(self, endpoint_id: str, owner_id: str | None = None) -> dict:
        endpoint = self._registry.get(endpoint_id, owner_id)
        if endpoint.get("access_mode") != ACCESS_PRIVATE:
            raise ConflictError(
                "ENDPOINT_NOT_PRIVATE",
                "API keys can only be regenerated for private endpoints",
                "access_mode",
                {"id": endpoint_id},
            )
        key = next_api_key(ACCESS_PRIVATE, endpoint.get("api_key"), ACCESS_PRIVATE, regenerate=True)
        updated = self._registry.set_api_key(endpoint_id, key)
        logger.info("api_key_regenerated endpoint=%s", endpoint_id)
        return updated
