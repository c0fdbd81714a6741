"""Resolve an inbound (project slug, route suffix, key) to an endpoint payload."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from access_gate import AccessGate
from endpoint_registry import EndpointRegistry
from record_store import RecordStore
from resolution_cache import ResolutionCache
from routeshape.errors import NotFoundError
from routeshape.routes import full_route, normalize_request_route


logger = logging.getLogger("routeshape.resolve")

CACHE_HIT = "HIT"
CACHE_MISS = "MISS"
CACHE_DIRECT = "DIRECT"


@dataclass
class Resolution:
    route: str
    endpoint_id: str
    name: str | None
    access_type: str
    payload: Any
    cache: str


def request_route(project_slug: str, suffix: str | None) -> str:
    return full_route(project_slug, normalize_request_route(suffix))


def _not_found(route: str) -> NotFoundError:
    return NotFoundError(
        "ENDPOINT_NOT_FOUND",
        "API endpoint not found",
        None,
        {"hint": f"No API endpoint configured for route: {route}", "route": route},
    )


class Resolver:
    def __init__(
        self,
        registry: EndpointRegistry,
        gate: AccessGate,
        records: RecordStore,
        cache: ResolutionCache | None = None,
        direct_reader=None,
    ) -> None:
        self._registry = registry
        self._gate = gate
        self._records = records
        self._cache = cache
        self._direct = direct_reader

    def _load_payload(self, endpoint: dict, route: str) -> Any:
        source = endpoint.get("data_source") or {}
        kind = source.get("kind")
        if kind == "template":
            template_id = source.get("template_id")
            try:
                template = self._records.get_template(template_id or "")
            except NotFoundError as exc:
                logger.warning("dangling_source endpoint=%s template=%s", endpoint["id"], template_id)
                raise _not_found(route) from exc
            return template.get("json")
        schema_id = source.get("schema_id")
        try:
            self._records.get_schema(schema_id or "")
        except NotFoundError as exc:
            logger.warning("dangling_source endpoint=%s schema=%s", endpoint["id"], schema_id)
            raise _not_found(route) from exc
        return self._records.list_entry_data(schema_id)

    def resolve(self, project_slug: str, suffix: str | None, provided_key: str | None = None) -> Resolution:
        route = request_route(project_slug, suffix)
        # taken before any read so a concurrent write voids the cache fill
        generation = self._cache.generation() if self._cache is not None else None
        endpoint = self._registry.lookup(route)
        if endpoint is None:
            raise _not_found(route)
        self._gate.authorize(endpoint, provided_key)

        cache_status = CACHE_MISS
        payload: Any = None
        hit = False
        if self._cache is not None:
            hit, payload = self._cache.get(endpoint["id"])
        if hit:
            cache_status = CACHE_HIT
        else:
            payload = self._load_payload(endpoint, route)
            if self._cache is not None:
                source = endpoint["data_source"]
                self._cache.set(
                    endpoint["id"],
                    payload,
                    (source["kind"], source[f"{source['kind']}_id"]),
                    generation=generation,
                )
        logger.debug("resolved route=%s endpoint=%s cache=%s", route, endpoint["id"], cache_status)
        return Resolution(
            route=route,
            endpoint_id=endpoint["id"],
            name=endpoint.get("name"),
            access_type=endpoint.get("access_mode"),
            payload=payload,
            cache=cache_status,
        )

    def resolve_direct(self, project_slug: str, suffix: str | None, provided_key: str | None = None) -> Resolution:
        """Single read for public endpoints; anything else takes the regular path."""
        route = request_route(project_slug, suffix)
        row = self._direct.read_public(route) if self._direct is not None else None
        if row is None:
            return self.resolve(project_slug, suffix, provided_key)
        return Resolution(
            route=route,
            endpoint_id=row["endpoint_id"],
            name=row.get("name"),
            access_type="public",
            payload=row.get("payload"),
            cache=CACHE_DIRECT,
        )
