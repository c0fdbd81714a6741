"""Projects, schemas, entries and templates on top of the memory or DB stores."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from app.records_validation import errors_to_issues, validate_record
from resolution_cache import ResolutionCache
from routeshape.errors import ConflictError, NotFoundError, ValidationError
from routeshape.field_model import fields_from_json, fields_to_json, validate_fields
from routeshape.json_document import ensure_document, parse_document
from routeshape.routes import slugify, validate_slug


logger = logging.getLogger("routeshape.records")


def _owned(row: dict | None, owner_id: str | None, kind: str, row_id: str) -> dict:
    # rows of other owners are reported as missing
    if row is None or (owner_id is not None and row.get("owner_id") != owner_id):
        raise NotFoundError(f"{kind.upper()}_NOT_FOUND", f"{kind} not found", "id", {"id": row_id})
    return row


def _require_name(payload: dict, code: str) -> str:
    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(code, "name is required", "name")
    return name.strip()


def _keep_ids(raw: Any, rendered: list[dict]) -> list[dict]:
    """Carry optional client-side ``id`` keys over to the normalized field JSON."""
    if not isinstance(raw, list):
        return rendered
    for src, out in zip(raw, rendered):
        if not isinstance(src, dict):
            continue
        if "id" in src:
            out["id"] = src["id"]
        if isinstance(src.get("objectFields"), list) and "objectFields" in out:
            _keep_ids(src["objectFields"], out["objectFields"])
    return rendered


class RecordStore:
    def __init__(self, stores: dict, cache: ResolutionCache | None = None, strict_booleans: bool = False) -> None:
        self._projects = stores["projects"]
        self._schemas = stores["schemas"]
        self._entries = stores["entries"]
        self._templates = stores["templates"]
        self._endpoints = stores["endpoints"]
        self._cache = cache
        self.strict_booleans = strict_booleans

    def _invalidate(self, kind: str, source_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate_source(kind, source_id)

    # projects

    def create_project(self, payload: dict, owner_id: str) -> dict:
        name = _require_name(payload, "PROJECT_NAME_REQUIRED")
        slug = payload.get("slug")
        slug = validate_slug(slug.strip() if isinstance(slug, str) and slug.strip() else slugify(name))
        project = self._projects.create({"owner_id": owner_id, "name": name, "slug": slug})
        logger.info("project_created id=%s slug=%s", project["id"], slug)
        return project

    def get_project(self, project_id: str, owner_id: str | None = None) -> dict:
        return _owned(self._projects.get(project_id), owner_id, "project", project_id)

    def list_projects(self, owner_id: str | None = None) -> list[dict]:
        return self._projects.list(owner_id)

    # schemas

    def _check_fields(self, raw_fields: Any) -> list[dict]:
        issues, fields = validate_fields(raw_fields)
        if issues:
            raise ValidationError("SCHEMA_FIELDS_INVALID", "schema fields are invalid", "fields", errors=issues)
        return _keep_ids(raw_fields, fields_to_json(fields))

    def create_schema(self, payload: dict, owner_id: str) -> dict:
        name = _require_name(payload, "SCHEMA_NAME_REQUIRED")
        fields = self._check_fields(payload.get("fields", []))
        schema = self._schemas.create(
            {"owner_id": owner_id, "name": name, "description": payload.get("description"), "fields": fields}
        )
        logger.info("schema_created id=%s fields=%s", schema["id"], len(fields))
        return schema

    def get_schema(self, schema_id: str, owner_id: str | None = None) -> dict:
        return _owned(self._schemas.get(schema_id), owner_id, "schema", schema_id)

    def list_schemas(self, owner_id: str | None = None) -> list[dict]:
        return self._schemas.list(owner_id)

    def update_schema(self, schema_id: str, changes: dict, owner_id: str | None = None) -> dict:
        self.get_schema(schema_id, owner_id)
        patch: Dict[str, Any] = {}
        if "name" in changes:
            patch["name"] = _require_name(changes, "SCHEMA_NAME_REQUIRED")
        if "description" in changes:
            patch["description"] = changes.get("description")
        if "fields" in changes:
            # existing entries are left as written; new writes use the new fields
            patch["fields"] = self._check_fields(changes.get("fields"))
        if not patch:
            return self.get_schema(schema_id, owner_id)
        schema = self._schemas.update(schema_id, patch)
        self._invalidate("schema", schema_id)
        logger.info("schema_updated id=%s keys=%s", schema_id, ",".join(sorted(patch)))
        return schema

    def delete_schema(self, schema_id: str, owner_id: str | None = None) -> dict:
        self.get_schema(schema_id, owner_id)
        refs = self._endpoints.list_by_source("schema", schema_id)
        if refs:
            raise ConflictError(
                "SCHEMA_IN_USE",
                "schema is used by one or more endpoints",
                "id",
                {"endpoint_ids": [r["id"] for r in refs]},
            )
        removed = self._entries.delete_for_schema(schema_id)
        self._schemas.delete(schema_id)
        self._invalidate("schema", schema_id)
        logger.info("schema_deleted id=%s entries=%s", schema_id, removed)
        return {"id": schema_id, "entries_deleted": removed}

    def schema_fields(self, schema: dict) -> list:
        return fields_from_json(schema.get("fields") or [])

    # entries

    def validate_entry(self, schema_id: str, data: Any, owner_id: str | None = None) -> tuple[dict, dict]:
        schema = self.get_schema(schema_id, owner_id)
        return validate_record(self.schema_fields(schema), data, strict_booleans=self.strict_booleans)

    def _coerce_entry(self, schema_id: str, data: Any, owner_id: str | None) -> dict:
        errors, coerced = self.validate_entry(schema_id, data, owner_id)
        if errors:
            raise ValidationError(
                "ENTRY_INVALID",
                "entry does not match schema",
                "data",
                {"fields": errors},
                errors=errors_to_issues(errors),
            )
        return coerced

    def create_entry(self, schema_id: str, data: Any, owner_id: str | None = None) -> dict:
        coerced = self._coerce_entry(schema_id, data, owner_id)
        entry = self._entries.create(schema_id, coerced, owner_id)
        self._invalidate("schema", schema_id)
        logger.info("entry_created id=%s schema=%s", entry["id"], schema_id)
        return entry

    def get_entry(self, schema_id: str, entry_id: str, owner_id: str | None = None) -> dict:
        self.get_schema(schema_id, owner_id)
        entry = self._entries.get(entry_id)
        if entry is None or entry.get("schema_id") != schema_id:
            raise NotFoundError("ENTRY_NOT_FOUND", "entry not found", "entry_id", {"id": entry_id})
        return entry

    def list_entries(self, schema_id: str, owner_id: str | None = None) -> list[dict]:
        self.get_schema(schema_id, owner_id)
        return self._entries.list(schema_id)

    def list_entry_data(self, schema_id: str) -> List[Any]:
        return self._entries.list_data(schema_id)

    def update_entry(self, schema_id: str, entry_id: str, data: Any, owner_id: str | None = None) -> dict:
        self.get_entry(schema_id, entry_id, owner_id)
        coerced = self._coerce_entry(schema_id, data, owner_id)
        entry = self._entries.update(entry_id, {"data": coerced})
        self._invalidate("schema", schema_id)
        logger.info("entry_updated id=%s schema=%s", entry_id, schema_id)
        return entry

    def delete_entry(self, schema_id: str, entry_id: str, owner_id: str | None = None) -> dict:
        self.get_entry(schema_id, entry_id, owner_id)
        self._entries.delete(entry_id)
        self._invalidate("schema", schema_id)
        logger.info("entry_deleted id=%s schema=%s", entry_id, schema_id)
        return {"id": entry_id}

    # templates

    def _template_json(self, payload: dict) -> Any:
        if "json_text" in payload:
            return parse_document(payload.get("json_text"))
        if "json" not in payload:
            raise ValidationError("TEMPLATE_JSON_REQUIRED", "JSON cannot be empty", "json")
        return ensure_document(payload.get("json"))

    def create_template(self, payload: dict, owner_id: str) -> dict:
        name = _require_name(payload, "TEMPLATE_NAME_REQUIRED")
        document = self._template_json(payload)
        template = self._templates.create(
            {"owner_id": owner_id, "name": name, "description": payload.get("description"), "json": document}
        )
        logger.info("template_created id=%s", template["id"])
        return template

    def get_template(self, template_id: str, owner_id: str | None = None) -> dict:
        return _owned(self._templates.get(template_id), owner_id, "template", template_id)

    def list_templates(self, owner_id: str | None = None) -> list[dict]:
        return self._templates.list(owner_id)

    def update_template(self, template_id: str, changes: dict, owner_id: str | None = None) -> dict:
        self.get_template(template_id, owner_id)
        patch: Dict[str, Any] = {}
        if "name" in changes:
            patch["name"] = _require_name(changes, "TEMPLATE_NAME_REQUIRED")
        if "description" in changes:
            patch["description"] = changes.get("description")
        if "json" in changes or "json_text" in changes:
            patch["json"] = self._template_json(changes)
        if not patch:
            return self.get_template(template_id, owner_id)
        template = self._templates.update(template_id, patch)
        self._invalidate("template", template_id)
        logger.info("template_updated id=%s keys=%s", template_id, ",".join(sorted(patch)))
        return template

    def delete_template(self, template_id: str, owner_id: str | None = None) -> dict:
        self.get_template(template_id, owner_id)
        refs = self._endpoints.list_by_source("template", template_id)
        if refs:
            raise ConflictError(
                "TEMPLATE_IN_USE",
                "template is used by one or more endpoints",
                "id",
                {"endpoint_ids": [r["id"] for r in refs]},
            )
        self._templates.delete(template_id)
        self._invalidate("template", template_id)
        logger.info("template_deleted id=%s", template_id)
        return {"id": template_id}
