"""Endpoint definitions: routes, data sources and access modes per project."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict

from record_store import RecordStore
from resolution_cache import ResolutionCache
from routeshape.api_keys import ACCESS_MODES, ACCESS_PRIVATE, ACCESS_PUBLIC, next_api_key
from routeshape.errors import ConflictError, NotFoundError, ValidationError
from routeshape.routes import full_route, normalize_route, route_suffix


logger = logging.getLogger("routeshape.registry")

SOURCE_KINDS = ("template", "schema")
_SOURCE_COLUMNS = {"template": "template_id", "schema": "schema_id"}


def _view(row: dict | None) -> dict | None:
    if row is None:
        return None
    view = copy.deepcopy(row)
    kind = row.get("data_kind")
    column = _SOURCE_COLUMNS.get(kind)
    view["data_source"] = {"kind": kind, column: row.get(column)} if column else None
    return view


def _parse_source(payload: dict) -> tuple[str | None, str | None]:
    """Accept ``data_source: {kind, template_id|schema_id}`` or the flat ``data_type`` form."""
    source = payload.get("data_source")
    if isinstance(source, dict):
        kind = source.get("kind")
        column = _SOURCE_COLUMNS.get(kind)
        return kind, source.get(column) if column else None
    kind = payload.get("data_type")
    column = _SOURCE_COLUMNS.get(kind)
    return kind, payload.get(column) if column else None


class EndpointRegistry:
    def __init__(self, stores: dict, records: RecordStore, cache: ResolutionCache | None = None) -> None:
        self._endpoints = stores["endpoints"]
        self._records = records
        self._cache = cache

    def _invalidate(self, endpoint_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate_endpoint(endpoint_id)

    def _check_source(self, kind: Any, source_id: Any, owner_id: str | None) -> tuple[str, str]:
        if kind not in SOURCE_KINDS:
            raise ValidationError(
                "DATA_SOURCE_INVALID",
                "data source kind must be 'template' or 'schema'",
                "data_source.kind",
                {"kind": kind},
            )
        column = _SOURCE_COLUMNS[kind]
        if not isinstance(source_id, str) or not source_id:
            raise ValidationError("DATA_SOURCE_REQUIRED", f"{column} is required", f"data_source.{column}")
        try:
            if kind == "template":
                self._records.get_template(source_id, owner_id)
            else:
                self._records.get_schema(source_id, owner_id)
        except NotFoundError as exc:
            raise ValidationError(
                "DATA_SOURCE_NOT_FOUND",
                f"{kind} not found: {source_id}",
                f"data_source.{column}",
                {"id": source_id},
            ) from exc
        return kind, source_id

    def _check_access_mode(self, mode: Any) -> str:
        if mode not in ACCESS_MODES:
            raise ValidationError("ACCESS_MODE_INVALID", "access_mode must be 'public' or 'private'", "access_mode", {"access_mode": mode})
        return mode

    def _check_name(self, payload: dict) -> str:
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("ENDPOINT_NAME_REQUIRED", "name is required", "name")
        return name.strip()

    def create(self, project: dict, payload: dict, owner_id: str) -> dict:
        name = self._check_name(payload)
        suffix = normalize_route(payload.get("route"))
        mode = self._check_access_mode(payload.get("access_mode", ACCESS_PUBLIC))
        kind, source_id = self._check_source(*_parse_source(payload), owner_id)
        record = {
            "project_id": project["id"],
            "owner_id": owner_id,
            "route": full_route(project["slug"], suffix),
            "name": name,
            "description": payload.get("description"),
            "access_mode": mode,
            "data_kind": kind,
            "template_id": source_id if kind == "template" else None,
            "schema_id": source_id if kind == "schema" else None,
            "api_key": next_api_key(None, None, mode),
        }
        row = self._endpoints.create(record)
        logger.info("endpoint_created id=%s route=%s access=%s source=%s", row["id"], row["route"], mode, kind)
        return _view(row)

    def get(self, endpoint_id: str, owner_id: str | None = None) -> dict:
        row = self._endpoints.get(endpoint_id)
        if row is None or (owner_id is not None and row.get("owner_id") != owner_id):
            raise NotFoundError("ENDPOINT_NOT_FOUND", "endpoint not found", "id", {"id": endpoint_id})
        return _view(row)

    def lookup(self, route: str) -> dict | None:
        """Exact, case-sensitive match on the full route."""
        return _view(self._endpoints.get_by_route(route))

    def list_for_project(self, project_id: str) -> list[dict]:
        return [_view(r) for r in self._endpoints.list_for_project(project_id)]

    def references(self, kind: str, source_id: str) -> list[dict]:
        return [_view(r) for r in self._endpoints.list_by_source(kind, source_id)]

    def update(self, endpoint_id: str, changes: dict, owner_id: str | None = None) -> dict:
        current = self.get(endpoint_id, owner_id)
        patch: Dict[str, Any] = {}
        if "name" in changes:
            patch["name"] = self._check_name(changes)
        if "description" in changes:
            patch["description"] = changes.get("description")
        if "route" in changes:
            project = self._records.get_project(current["project_id"])
            patch["route"] = full_route(project["slug"], normalize_route(changes.get("route")))
        if "data_source" in changes or "data_type" in changes:
            kind, source_id = self._check_source(*_parse_source(changes), owner_id)
            patch["data_kind"] = kind
            patch["template_id"] = source_id if kind == "template" else None
            patch["schema_id"] = source_id if kind == "schema" else None
        mode = current["access_mode"]
        if "access_mode" in changes:
            mode = self._check_access_mode(changes.get("access_mode"))
            patch["access_mode"] = mode
        # api_key in the payload is ignored; keys only change with the access mode
        key = next_api_key(current["access_mode"], current.get("api_key"), mode)
        if key != current.get("api_key"):
            patch["api_key"] = key
        if not patch:
            return current
        row = self._endpoints.update(endpoint_id, patch)
        self._invalidate(endpoint_id)
        logger.info(
            "endpoint_updated id=%s keys=%s access=%s key_changed=%s",
            endpoint_id,
            ",".join(sorted(k for k in patch if k != "api_key")),
            mode,
            "api_key" in patch,
        )
        return _view(row)

    def set_api_key(self, endpoint_id: str, api_key: str) -> dict:
        current = self.get(endpoint_id)
        if current["access_mode"] != ACCESS_PRIVATE:
            raise ConflictError("ENDPOINT_NOT_PRIVATE", "only private endpoints hold an API key", "access_mode")
        row = self._endpoints.update(endpoint_id, {"api_key": api_key})
        self._invalidate(endpoint_id)
        return _view(row)

    def delete(self, endpoint_id: str, owner_id: str | None = None) -> dict:
        current = self.get(endpoint_id, owner_id)
        self._endpoints.delete(endpoint_id)
        self._invalidate(endpoint_id)
        logger.info("endpoint_deleted id=%s route=%s", endpoint_id, current["route"])
        return {"id": endpoint_id}

    def suffix_of(self, endpoint: dict) -> str:
        project = self._records.get_project(endpoint["project_id"])
        return route_suffix(project["slug"], endpoint["route"])
