"""DB-backed stores (Supabase Postgres) mirroring the in-memory stores."""

from __future__ import annotations

import copy
import json
import logging
import uuid
from typing import Any

import psycopg2.errors

from app.db import execute, fetch_all, fetch_one, get_conn
from app.secrets import open_api_key, seal_api_key
from routeshape.errors import ConflictError

logger = logging.getLogger("routeshape.db")


_TABLES_SQL = [
    """
    create table if not exists projects (
      id text primary key,
      owner_id text not null,
      name text not null,
      slug text not null unique,
      created_at timestamptz not null default now(),
      updated_at timestamptz not null default now()
    )
    """,
    """
    create table if not exists schemas (
      id text primary key,
      owner_id text not null,
      name text not null,
      description text,
      fields jsonb not null default '[]'::jsonb,
      created_at timestamptz not null default now(),
      updated_at timestamptz not null default now()
    )
    """,
    """
    create table if not exists entries (
      id text primary key,
      schema_id text not null references schemas(id) on delete cascade,
      owner_id text,
      data jsonb not null,
      created_at timestamptz not null default now(),
      updated_at timestamptz not null default now()
    )
    """,
    "create index if not exists entries_schema_created_idx on entries (schema_id, created_at desc)",
    """
    create table if not exists templates (
      id text primary key,
      owner_id text not null,
      name text not null,
      description text,
      json jsonb,
      created_at timestamptz not null default now(),
      updated_at timestamptz not null default now()
    )
    """,
    """
    create table if not exists endpoints (
      id text primary key,
      project_id text not null references projects(id) on delete cascade,
      owner_id text not null,
      route text not null check (route ~ '^/'),
      name text not null,
      description text,
      access_mode text not null check (access_mode in ('public', 'private')),
      data_kind text not null check (data_kind in ('template', 'schema')),
      template_id text references templates(id),
      schema_id text references schemas(id),
      api_key text,
      created_at timestamptz not null default now(),
      updated_at timestamptz not null default now(),
      constraint endpoints_project_route_key unique (project_id, route),
      constraint endpoints_source_check check (
        (data_kind = 'template' and schema_id is null) or (data_kind = 'schema' and template_id is null)
      ),
      constraint endpoints_key_check check ((access_mode = 'private') = (api_key is not null))
    )
    """,
    "create index if not exists endpoints_route_public_idx on endpoints (route) where access_mode = 'public'",
    "create index if not exists endpoints_template_idx on endpoints (template_id)",
    "create index if not exists endpoints_schema_idx on endpoints (schema_id)",
]


def ensure_tables() -> None:
    with get_conn() as conn:
        for idx, sql in enumerate(_TABLES_SQL):
            execute(conn, sql, query_name=f"ensure_tables.{idx}")
    logger.info("ensure_tables done statements=%s", len(_TABLES_SQL))


def _to_iso(value):
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return value


def _row(row: dict | None) -> dict | None:
    if row is None:
        return None
    out = dict(row)
    for key in ("created_at", "updated_at"):
        if key in out:
            out[key] = _to_iso(out[key])
    return out


def _jsonb(value: Any) -> str:
    return json.dumps(value, default=str)


def _set_clause(changes: dict, allowed: tuple[str, ...], jsonb_cols: tuple[str, ...] = ()) -> tuple[str, list]:
    parts: list[str] = []
    params: list = []
    for col in allowed:
        if col not in changes:
            continue
        if col in jsonb_cols:
            parts.append(f"{col}=%s::jsonb")
            params.append(_jsonb(changes[col]))
        else:
            parts.append(f"{col}=%s")
            params.append(changes[col])
    parts.append("updated_at=now()")
    return ", ".join(parts), params


class DbProjectStore:
    def create(self, project: dict) -> dict:
        project_id = project.get("id") or str(uuid.uuid4())
        try:
            with get_conn() as conn:
                row = fetch_one(
                    conn,
                    """
                    insert into projects (id, owner_id, name, slug)
                    values (%s, %s, %s, %s)
                    returning id, owner_id, name, slug, created_at, updated_at
                    """,
                    [project_id, project.get("owner_id"), project.get("name"), project.get("slug")],
                    query_name="projects.insert",
                )
        except psycopg2.errors.UniqueViolation as exc:
            slug = project.get("slug")
            raise ConflictError("PROJECT_SLUG_TAKEN", f"project slug already in use: {slug}", "slug", {"slug": slug}) from exc
        return _row(row)

    def get(self, project_id: str) -> dict | None:
        with get_conn() as conn:
            row = fetch_one(conn, "select * from projects where id=%s", [project_id], query_name="projects.get")
        return _row(row)

    def list(self, owner_id: str | None = None) -> list[dict]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                "select * from projects where (%s::text is null or owner_id=%s) order by created_at desc",
                [owner_id, owner_id],
                query_name="projects.list",
            )
        return [_row(r) for r in rows]


class DbSchemaStore:
    def create(self, schema: dict) -> dict:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                """
                insert into schemas (id, owner_id, name, description, fields)
                values (%s, %s, %s, %s, %s::jsonb)
                returning *
                """,
                [
                    schema.get("id") or str(uuid.uuid4()),
                    schema.get("owner_id"),
                    schema.get("name"),
                    schema.get("description"),
                    _jsonb(schema.get("fields") or []),
                ],
                query_name="schemas.insert",
            )
        return _row(row)

    def get(self, schema_id: str) -> dict | None:
        with get_conn() as conn:
            row = fetch_one(conn, "select * from schemas where id=%s", [schema_id], query_name="schemas.get")
        return _row(row)

    def list(self, owner_id: str | None = None) -> list[dict]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                "select * from schemas where (%s::text is null or owner_id=%s) order by created_at desc",
                [owner_id, owner_id],
                query_name="schemas.list",
            )
        return [_row(r) for r in rows]

    def update(self, schema_id: str, changes: dict) -> dict | None:
        sets, params = _set_clause(changes, ("name", "description", "fields"), jsonb_cols=("fields",))
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"update schemas set {sets} where id=%s returning *",
                params + [schema_id],
                query_name="schemas.update",
            )
        return _row(row)

    def delete(self, schema_id: str) -> bool:
        # entries go with the schema via on delete cascade
        with get_conn() as conn:
            count = execute(conn, "delete from schemas where id=%s", [schema_id], query_name="schemas.delete")
        return count > 0


class DbTemplateStore:
    def create(self, template: dict) -> dict:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                """
                insert into templates (id, owner_id, name, description, json)
                values (%s, %s, %s, %s, %s::jsonb)
                returning *
                """,
                [
                    template.get("id") or str(uuid.uuid4()),
                    template.get("owner_id"),
                    template.get("name"),
                    template.get("description"),
                    _jsonb(template.get("json")),
                ],
                query_name="templates.insert",
            )
        return _row(row)

    def get(self, template_id: str) -> dict | None:
        with get_conn() as conn:
            row = fetch_one(conn, "select * from templates where id=%s", [template_id], query_name="templates.get")
        return _row(row)

    def list(self, owner_id: str | None = None) -> list[dict]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                "select * from templates where (%s::text is null or owner_id=%s) order by created_at desc",
                [owner_id, owner_id],
                query_name="templates.list",
            )
        return [_row(r) for r in rows]

    def update(self, template_id: str, changes: dict) -> dict | None:
        sets, params = _set_clause(changes, ("name", "description", "json"), jsonb_cols=("json",))
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"update templates set {sets} where id=%s returning *",
                params + [template_id],
                query_name="templates.update",
            )
        return _row(row)

    def delete(self, template_id: str) -> bool:
        with get_conn() as conn:
            count = execute(conn, "delete from templates where id=%s", [template_id], query_name="templates.delete")
        return count > 0


class DbEntryStore:
    def create(self, schema_id: str, data: dict, owner_id: str | None = None) -> dict:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                """
                insert into entries (id, schema_id, owner_id, data)
                values (%s, %s, %s, %s::jsonb)
                returning *
                """,
                [str(uuid.uuid4()), schema_id, owner_id, _jsonb(data)],
                query_name="entries.insert",
            )
        return _row(row)

    def get(self, entry_id: str) -> dict | None:
        with get_conn() as conn:
            row = fetch_one(conn, "select * from entries where id=%s", [entry_id], query_name="entries.get")
        return _row(row)

    def list(self, schema_id: str) -> list[dict]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                "select * from entries where schema_id=%s order by created_at desc, id desc",
                [schema_id],
                query_name="entries.list",
            )
        return [_row(r) for r in rows]

    def list_data(self, schema_id: str) -> list[Any]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                "select data from entries where schema_id=%s order by created_at desc, id desc",
                [schema_id],
                query_name="entries.list_data",
            )
        return [copy.deepcopy(r.get("data")) for r in rows]

    def update(self, entry_id: str, changes: dict) -> dict | None:
        sets, params = _set_clause(changes, ("data",), jsonb_cols=("data",))
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"update entries set {sets} where id=%s returning *",
                params + [entry_id],
                query_name="entries.update",
            )
        return _row(row)

    def delete(self, entry_id: str) -> bool:
        with get_conn() as conn:
            count = execute(conn, "delete from entries where id=%s", [entry_id], query_name="entries.delete")
        return count > 0

    def delete_for_schema(self, schema_id: str) -> int:
        with get_conn() as conn:
            return execute(conn, "delete from entries where schema_id=%s", [schema_id], query_name="entries.delete_for_schema")


def _endpoint_row(row: dict | None) -> dict | None:
    out = _row(row)
    if out is not None:
        out["api_key"] = open_api_key(out.get("api_key"))
    return out


class DbEndpointStore:
    _COLUMNS = ("route", "name", "description", "access_mode", "data_kind", "template_id", "schema_id", "api_key")

    def _route_conflict(self, exc: Exception, route: str | None) -> ConflictError:
        return ConflictError("ROUTE_TAKEN", f"route already exists in project: {route}", "route")

    def create(self, endpoint: dict) -> dict:
        try:
            with get_conn() as conn:
                row = fetch_one(
                    conn,
                    """
                    insert into endpoints (
                        id, project_id, owner_id, route, name, description,
                        access_mode, data_kind, template_id, schema_id, api_key
                    )
                    values (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    returning *
                    """,
                    [
                        endpoint.get("id") or str(uuid.uuid4()),
                        endpoint.get("project_id"),
                        endpoint.get("owner_id"),
                        endpoint.get("route"),
                        endpoint.get("name"),
                        endpoint.get("description"),
                        endpoint.get("access_mode"),
                        endpoint.get("data_kind"),
                        endpoint.get("template_id"),
                        endpoint.get("schema_id"),
                        seal_api_key(endpoint.get("api_key")),
                    ],
                    query_name="endpoints.insert",
                )
        except psycopg2.errors.UniqueViolation as exc:
            raise self._route_conflict(exc, endpoint.get("route")) from exc
        return _endpoint_row(row)

    def get(self, endpoint_id: str) -> dict | None:
        with get_conn() as conn:
            row = fetch_one(conn, "select * from endpoints where id=%s", [endpoint_id], query_name="endpoints.get")
        return _endpoint_row(row)

    def get_by_route(self, route: str) -> dict | None:
        with get_conn() as conn:
            row = fetch_one(conn, "select * from endpoints where route=%s limit 1", [route], query_name="endpoints.get_by_route")
        return _endpoint_row(row)

    def list_for_project(self, project_id: str) -> list[dict]:
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                "select * from endpoints where project_id=%s order by created_at desc",
                [project_id],
                query_name="endpoints.list_for_project",
            )
        return [_endpoint_row(r) for r in rows]

    def list_by_source(self, kind: str, source_id: str) -> list[dict]:
        column = "template_id" if kind == "template" else "schema_id"
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                f"select * from endpoints where data_kind=%s and {column}=%s",
                [kind, source_id],
                query_name="endpoints.list_by_source",
            )
        return [_endpoint_row(r) for r in rows]

    def update(self, endpoint_id: str, changes: dict) -> dict | None:
        changes = dict(changes)
        if "api_key" in changes:
            changes["api_key"] = seal_api_key(changes["api_key"])
        sets, params = _set_clause(changes, self._COLUMNS)
        try:
            with get_conn() as conn:
                row = fetch_one(
                    conn,
                    f"update endpoints set {sets} where id=%s returning *",
                    params + [endpoint_id],
                    query_name="endpoints.update",
                )
        except psycopg2.errors.UniqueViolation as exc:
            raise self._route_conflict(exc, changes.get("route")) from exc
        return _endpoint_row(row)

    def delete(self, endpoint_id: str) -> bool:
        with get_conn() as conn:
            count = execute(conn, "delete from endpoints where id=%s", [endpoint_id], query_name="endpoints.delete")
        return count > 0


class DbDirectReader:
    """One round trip for a public endpoint: endpoint, template and entries joined."""

    def read_public(self, route: str) -> dict | None:
        with get_conn() as conn:
            row = fetch_one(
                conn,
                """
                select
                  e.id,
                  e.name,
                  e.data_kind,
                  t.id as template_found,
                  t.json as template_json,
                  s.id as schema_found,
                  case when e.data_kind = 'schema' then coalesce(
                    (select jsonb_agg(d.data order by d.created_at desc, d.id desc)
                       from entries d where d.schema_id = e.schema_id),
                    '[]'::jsonb
                  ) end as entries_json
                from endpoints e
                left join templates t on t.id = e.template_id
                left join schemas s on s.id = e.schema_id
                where e.route = %s and e.access_mode = 'public'
                limit 1
                """,
                [route],
                query_name="endpoints.read_public",
            )
        if not row:
            return None
        if row.get("data_kind") == "template":
            if not row.get("template_found"):
                return None
            payload = row.get("template_json")
        else:
            if not row.get("schema_found"):
                return None
            payload = row.get("entries_json") or []
        return {"endpoint_id": row["id"], "name": row.get("name"), "payload": payload}


def db_stores() -> dict:
    return {
        "projects": DbProjectStore(),
        "schemas": DbSchemaStore(),
        "entries": DbEntryStore(),
        "templates": DbTemplateStore(),
        "endpoints": DbEndpointStore(),
        "direct": DbDirectReader(),
    }
