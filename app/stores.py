"""In-memory stores for projects, schemas, entries, templates and endpoints."""

from __future__ import annotations

import copy
import itertools
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from routeshape.errors import ConflictError


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class _MemoryTable:
    def __init__(self) -> None:
        self._rows: Dict[str, dict] = {}
        self._seq = itertools.count()
        self._lock = threading.RLock()

    def _insert(self, row: dict) -> dict:
        record = copy.deepcopy(row)
        record.setdefault("id", str(uuid.uuid4()))
        now = _now()
        record.setdefault("created_at", now)
        record["updated_at"] = now
        record["_seq"] = next(self._seq)
        self._rows[record["id"]] = record
        return self._public(record)

    def _public(self, row: dict | None) -> dict | None:
        if row is None:
            return None
        return {k: copy.deepcopy(v) for k, v in row.items() if k != "_seq"}

    def get(self, row_id: str) -> dict | None:
        with self._lock:
            return self._public(self._rows.get(row_id))

    def _select(self, predicate, newest_first: bool = True) -> list[dict]:
        with self._lock:
            rows = [r for r in self._rows.values() if predicate(r)]
        rows.sort(key=lambda r: r["_seq"], reverse=newest_first)
        return [self._public(r) for r in rows]

    def update(self, row_id: str, changes: dict) -> dict | None:
        with self._lock:
            row = self._rows.get(row_id)
            if row is None:
                return None
            row.update(copy.deepcopy({k: v for k, v in changes.items() if k not in ("id", "created_at")}))
            row["updated_at"] = _now()
            return self._public(row)

    def delete(self, row_id: str) -> bool:
        with self._lock:
            return self._rows.pop(row_id, None) is not None


class MemoryProjectStore(_MemoryTable):
    def create(self, project: dict) -> dict:
        with self._lock:
            slug = project.get("slug")
            if any(r.get("slug") == slug for r in self._rows.values()):
                raise ConflictError("PROJECT_SLUG_TAKEN", f"project slug already in use: {slug}", "slug", {"slug": slug})
            return self._insert(project)

    def list(self, owner_id: str | None = None) -> list[dict]:
        return self._select(lambda r: owner_id is None or r.get("owner_id") == owner_id)


class MemorySchemaStore(_MemoryTable):
    def create(self, schema: dict) -> dict:
        with self._lock:
            return self._insert(schema)

    def list(self, owner_id: str | None = None) -> list[dict]:
        return self._select(lambda r: owner_id is None or r.get("owner_id") == owner_id)


class MemoryTemplateStore(_MemoryTable):
    def create(self, template: dict) -> dict:
        with self._lock:
            return self._insert(template)

    def list(self, owner_id: str | None = None) -> list[dict]:
        return self._select(lambda r: owner_id is None or r.get("owner_id") == owner_id)


class MemoryEntryStore(_MemoryTable):
    def create(self, schema_id: str, data: dict, owner_id: str | None = None) -> dict:
        with self._lock:
            return self._insert({"schema_id": schema_id, "owner_id": owner_id, "data": data})

    def list(self, schema_id: str) -> list[dict]:
        return self._select(lambda r: r.get("schema_id") == schema_id)

    def list_data(self, schema_id: str) -> list[Any]:
        return [row["data"] for row in self.list(schema_id)]

    def update(self, entry_id: str, changes: dict) -> dict | None:
        changes = {k: v for k, v in changes.items() if k != "schema_id"}
        return super().update(entry_id, changes)

    def delete_for_schema(self, schema_id: str) -> int:
        with self._lock:
            ids = [rid for rid, row in self._rows.items() if row.get("schema_id") == schema_id]
            for rid in ids:
                del self._rows[rid]
            return len(ids)


class MemoryEndpointStore(_MemoryTable):
    def _route_taken(self, project_id: str, route: str, exclude_id: str | None = None) -> bool:
        for row in self._rows.values():
            if row["id"] == exclude_id:
                continue
            if row.get("project_id") == project_id and row.get("route") == route:
                return True
        return False

    def create(self, endpoint: dict) -> dict:
        with self._lock:
            if self._route_taken(endpoint["project_id"], endpoint["route"]):
                raise ConflictError("ROUTE_TAKEN", f"route already exists in project: {endpoint['route']}", "route")
            return self._insert(endpoint)

    def update(self, endpoint_id: str, changes: dict) -> dict | None:
        with self._lock:
            row = self._rows.get(endpoint_id)
            if row is None:
                return None
            route = changes.get("route", row.get("route"))
            if self._route_taken(row["project_id"], route, exclude_id=endpoint_id):
                raise ConflictError("ROUTE_TAKEN", f"route already exists in project: {route}", "route")
            changes = {k: v for k, v in changes.items() if k != "project_id"}
            return super().update(endpoint_id, changes)

    def get_by_route(self, route: str) -> dict | None:
        with self._lock:
            for row in self._rows.values():
                if row.get("route") == route:
                    return self._public(row)
        return None

    def list_for_project(self, project_id: str) -> list[dict]:
        return self._select(lambda r: r.get("project_id") == project_id)

    def list_by_source(self, kind: str, source_id: str) -> list[dict]:
        column = "template_id" if kind == "template" else "schema_id"
        return self._select(lambda r: r.get("data_kind") == kind and r.get(column) == source_id)


class MemoryDirectReader:
    """Single-pass read of a public endpoint's payload, bypassing the registry."""

    def __init__(
        self,
        endpoints: MemoryEndpointStore,
        templates: MemoryTemplateStore,
        schemas: MemorySchemaStore,
        entries: MemoryEntryStore,
    ) -> None:
        self._endpoints = endpoints
        self._templates = templates
        self._schemas = schemas
        self._entries = entries

    def read_public(self, route: str) -> dict | None:
        endpoint = self._endpoints.get_by_route(route)
        if not endpoint or endpoint.get("access_mode") != "public":
            return None
        if endpoint.get("data_kind") == "template":
            template = self._templates.get(endpoint.get("template_id") or "")
            if template is None:
                return None
            payload: Any = template.get("json")
        else:
            schema_id = endpoint.get("schema_id")
            if not schema_id or self._schemas.get(schema_id) is None:
                return None
            payload = self._entries.list_data(schema_id)
        return {"endpoint_id": endpoint["id"], "name": endpoint.get("name"), "payload": payload}


def memory_stores() -> dict:
    endpoints = MemoryEndpointStore()
    templates = MemoryTemplateStore()
    schemas = MemorySchemaStore()
    entries = MemoryEntryStore()
    return {
        "projects": MemoryProjectStore(),
        "schemas": schemas,
        "entries": entries,
        "templates": templates,
        "endpoints": endpoints,
        "direct": MemoryDirectReader(endpoints, templates, schemas, entries),
    }
