"""FastAPI app: management API under /manage and the endpoint resolution routes."""

from __future__ import annotations

import json
import os
import re
import sys
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import logging
import time

from app.auth import PROTECTED_PREFIX, SupabaseAuthMiddleware, auth_disabled
from app.cors import SplitCORSMiddleware
from app.db import get_db_stats, reset_db_stats
from app.stores import memory_stores
from access_gate import AccessGate
from endpoint_registry import EndpointRegistry
from record_store import RecordStore
from resolution_cache import ResolutionCache
from resolver import Resolution, Resolver, request_route
from routeshape.errors import AuthError, NotFoundError, RouteshapeError, ValidationError
from routeshape.field_model import validate_fields
from routeshape.json_document import payload_etag


app = FastAPI(title="routeshape")
logger = logging.getLogger("routeshape")
logging.basicConfig(level=logging.INFO)


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


USE_DB = os.getenv("USE_DB", "").strip() == "1"
SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip()
SUPABASE_AUD = os.getenv("SUPABASE_JWT_AUD", "").strip() or None
DISABLE_AUTH = auth_disabled()
APP_ENV = os.getenv("APP_ENV", os.getenv("ENV", "dev")).strip().lower() or "dev"
IS_DEV = APP_ENV == "dev"
REQ_SLOW_MS = float(os.getenv("ROUTESHAPE_REQ_SLOW_MS", "250"))
STRICT_BOOLEANS = _env_flag("ROUTESHAPE_STRICT_BOOLEANS")
CACHE_ENABLED = _env_flag("ROUTESHAPE_CACHE_ENABLED", "0" if USE_DB else "1")
CACHE_MAX_ENTRIES = int(os.getenv("ROUTESHAPE_CACHE_MAX_ENTRIES", "500"))
DEV_OWNER_ID = "dev"
logger.info(
    "startup use_db=%s auth_disabled=%s cache_enabled=%s strict_booleans=%s",
    USE_DB,
    DISABLE_AUTH,
    CACHE_ENABLED,
    STRICT_BOOLEANS,
)

_LOCAL_CORS_ORIGINS = {
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
}
_EXTRA_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("ROUTESHAPE_CORS_ORIGINS", "").split(",")
    if origin.strip()
}
_CORS_ORIGINS = _LOCAL_CORS_ORIGINS | _EXTRA_CORS_ORIGINS

if USE_DB:
    from app.stores_db import db_stores, ensure_tables

    if _env_flag("ROUTESHAPE_ENSURE_TABLES", "1"):
        ensure_tables()
    stores = db_stores()
else:
    stores = memory_stores()

cache = ResolutionCache(max_entries=CACHE_MAX_ENTRIES, enabled=CACHE_ENABLED)
records = RecordStore(stores, cache=cache, strict_booleans=STRICT_BOOLEANS)
registry = EndpointRegistry(stores, records, cache=cache)
gate = AccessGate(registry)
resolver = Resolver(registry, gate, records, cache=cache, direct_reader=stores["direct"])


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    reset_db_stats()
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    db_stats = get_db_stats()
    db_ms = db_stats.get("total_ms", 0.0)
    route = request.scope.get("route")
    route_name = getattr(route, "name", None) or "unknown"
    logger.info(
        "%s %s %s route=%s total_ms=%.1f db_ms=%.1f db_q=%s",
        request.method,
        request.url.path,
        response.status_code,
        route_name,
        total_ms,
        db_ms,
        db_stats.get("queries", 0),
    )
    if total_ms >= REQ_SLOW_MS:
        logger.warning(
            "slow_request method=%s path=%s route=%s total_ms=%.1f db_ms=%.1f status=%s",
            request.method,
            request.url.path,
            route_name,
            total_ms,
            db_ms,
            response.status_code,
        )
    if IS_DEV:
        response.headers["X-Req-MS"] = f"{total_ms:.1f}"
        response.headers["X-DB-MS"] = f"{db_ms:.1f}"
        response.headers["X-Queries"] = str(db_stats.get("queries", 0))
    return response


app.add_middleware(
    SplitCORSMiddleware,
    manage_prefix=PROTECTED_PREFIX,
    manage_origins=_CORS_ORIGINS,
    manage_origin_regex=r"http://localhost:\d+|http://127\.0\.0\.1:\d+",
)
if not DISABLE_AUTH:
    if not SUPABASE_URL:
        raise RuntimeError("SUPABASE_URL is required for auth")
    app.add_middleware(SupabaseAuthMiddleware, supabase_url=SUPABASE_URL, audience=SUPABASE_AUD)


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


@app.exception_handler(RouteshapeError)
async def routeshape_error_handler(request: Request, exc: RouteshapeError):
    if isinstance(exc, ValidationError):
        body = {"ok": False, "errors": exc.issues(), "warnings": []}
        return JSONResponse(jsonable_encoder(body), status_code=exc.status)
    return _error_response(exc.code, exc.message, exc.path, exc.detail, status=exc.status)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error method=%s path=%s", request.method, request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


def _reject_constant(name: str) -> Any:
    raise ValidationError("BODY_INVALID", f"{name} is not valid JSON", None)


async def _safe_json(request: Request) -> Any:
    raw = await request.body()
    try:
        return json.loads(raw, parse_constant=_reject_constant)
    except ValueError:
        return None


async def _json_object(request: Request) -> dict:
    body = await _safe_json(request)
    if not isinstance(body, dict):
        raise ValidationError("BODY_INVALID", "request body must be a JSON object", None)
    return body


def _owner(request: Request) -> str:
    user = getattr(request.state, "user", None)
    if isinstance(user, dict) and user.get("id"):
        return user["id"]
    if DISABLE_AUTH:
        return DEV_OWNER_ID
    raise AuthError("AUTH_REQUIRED", "authenticated user required", "Authorization")


def _endpoint_out(endpoint: dict) -> dict:
    out = dict(endpoint)
    out["route_suffix"] = registry.suffix_of(endpoint)
    return out


@app.get("/health")
async def health() -> dict:
    return {"ok": True, "use_db": USE_DB, "cache": cache.stats()}


# projects


@app.post("/manage/projects")
async def create_project(request: Request):
    body = await _json_object(request)
    project = records.create_project(body, _owner(request))
    return _ok_response({"project": project}, status=201)


@app.get("/manage/projects")
async def list_projects(request: Request):
    return _ok_response({"projects": records.list_projects(_owner(request))})


@app.get("/manage/projects/{project_id}")
async def get_project(project_id: str, request: Request):
    return _ok_response({"project": records.get_project(project_id, _owner(request))})


# schemas


@app.post("/manage/schemas")
async def create_schema(request: Request):
    body = await _json_object(request)
    schema = records.create_schema(body, _owner(request))
    return _ok_response({"schema": schema}, status=201)


@app.get("/manage/schemas")
async def list_schemas(request: Request):
    return _ok_response({"schemas": records.list_schemas(_owner(request))})


@app.post("/manage/schemas/check")
async def check_schema_fields(request: Request):
    body = await _json_object(request)
    issues, _fields = validate_fields(body.get("fields"))
    return JSONResponse(jsonable_encoder({"ok": not issues, "errors": issues, "warnings": []}))


@app.get("/manage/schemas/{schema_id}")
async def get_schema(schema_id: str, request: Request):
    owner_id = _owner(request)
    schema = records.get_schema(schema_id, owner_id)
    refs = [e["id"] for e in registry.references("schema", schema_id)]
    return _ok_response({"schema": schema, "endpoint_ids": refs})


@app.put("/manage/schemas/{schema_id}")
async def update_schema(schema_id: str, request: Request):
    body = await _json_object(request)
    return _ok_response({"schema": records.update_schema(schema_id, body, _owner(request))})


@app.delete("/manage/schemas/{schema_id}")
async def delete_schema(schema_id: str, request: Request):
    return _ok_response({"deleted": records.delete_schema(schema_id, _owner(request))})


@app.post("/manage/schemas/{schema_id}/validate")
async def validate_schema_entry(schema_id: str, request: Request):
    body = await _json_object(request)
    errors, coerced = records.validate_entry(schema_id, body.get("data"), _owner(request))
    return JSONResponse(
        jsonable_encoder({"ok": not errors, "data": coerced if not errors else None, "fields": errors, "errors": [], "warnings": []})
    )


# entries


@app.get("/manage/schemas/{schema_id}/entries")
async def list_entries(schema_id: str, request: Request):
    return _ok_response({"entries": records.list_entries(schema_id, _owner(request))})


@app.post("/manage/schemas/{schema_id}/entries")
async def create_entry(schema_id: str, request: Request):
    body = await _json_object(request)
    entry = records.create_entry(schema_id, body.get("data"), _owner(request))
    return _ok_response({"entry": entry}, status=201)


@app.get("/manage/schemas/{schema_id}/entries/{entry_id}")
async def get_entry(schema_id: str, entry_id: str, request: Request):
    return _ok_response({"entry": records.get_entry(schema_id, entry_id, _owner(request))})


@app.put("/manage/schemas/{schema_id}/entries/{entry_id}")
async def update_entry(schema_id: str, entry_id: str, request: Request):
    body = await _json_object(request)
    entry = records.update_entry(schema_id, entry_id, body.get("data"), _owner(request))
    return _ok_response({"entry": entry})


@app.delete("/manage/schemas/{schema_id}/entries/{entry_id}")
async def delete_entry(schema_id: str, entry_id: str, request: Request):
    return _ok_response({"deleted": records.delete_entry(schema_id, entry_id, _owner(request))})


# templates


@app.post("/manage/templates")
async def create_template(request: Request):
    body = await _json_object(request)
    template = records.create_template(body, _owner(request))
    return _ok_response({"template": template}, status=201)


@app.get("/manage/templates")
async def list_templates(request: Request):
    return _ok_response({"templates": records.list_templates(_owner(request))})


@app.get("/manage/templates/{template_id}")
async def get_template(template_id: str, request: Request):
    owner_id = _owner(request)
    template = records.get_template(template_id, owner_id)
    refs = [e["id"] for e in registry.references("template", template_id)]
    return _ok_response({"template": template, "endpoint_ids": refs})


@app.put("/manage/templates/{template_id}")
async def update_template(template_id: str, request: Request):
    body = await _json_object(request)
    return _ok_response({"template": records.update_template(template_id, body, _owner(request))})


@app.delete("/manage/templates/{template_id}")
async def delete_template(template_id: str, request: Request):
    return _ok_response({"deleted": records.delete_template(template_id, _owner(request))})


# endpoints


@app.post("/manage/projects/{project_id}/endpoints")
async def create_endpoint(project_id: str, request: Request):
    owner_id = _owner(request)
    body = await _json_object(request)
    project = records.get_project(project_id, owner_id)
    endpoint = registry.create(project, body, owner_id)
    return _ok_response({"endpoint": _endpoint_out(endpoint)}, status=201)


@app.get("/manage/projects/{project_id}/endpoints")
async def list_endpoints(project_id: str, request: Request):
    project = records.get_project(project_id, _owner(request))
    endpoints = [_endpoint_out(e) for e in registry.list_for_project(project["id"])]
    return _ok_response({"endpoints": endpoints})


@app.get("/manage/endpoints/{endpoint_id}")
async def get_endpoint(endpoint_id: str, request: Request):
    return _ok_response({"endpoint": _endpoint_out(registry.get(endpoint_id, _owner(request)))})


@app.put("/manage/endpoints/{endpoint_id}")
async def update_endpoint(endpoint_id: str, request: Request):
    body = await _json_object(request)
    endpoint = registry.update(endpoint_id, body, _owner(request))
    return _ok_response({"endpoint": _endpoint_out(endpoint)})


@app.delete("/manage/endpoints/{endpoint_id}")
async def delete_endpoint(endpoint_id: str, request: Request):
    return _ok_response({"deleted": registry.delete(endpoint_id, _owner(request))})


@app.post("/manage/endpoints/{endpoint_id}/regenerate-key")
async def regenerate_endpoint_key(endpoint_id: str, request: Request):
    endpoint = gate.regenerate(endpoint_id, _owner(request))
    return _ok_response({"endpoint": _endpoint_out(endpoint)})


# resolution; registered last so the catch-all routes never shadow /manage or /health


def _resolution_error(exc: NotFoundError | AuthError, route: str) -> JSONResponse:
    hint = (exc.detail or {}).get("hint") if isinstance(exc.detail, dict) else None
    body = {"error": exc.message, "message": hint or exc.message, "route": route}
    return JSONResponse(body, status_code=exc.status, headers={"X-Cache": "MISS"})


def _resolution_response(result: Resolution) -> JSONResponse:
    payload = jsonable_encoder(result.payload)
    headers = {
        "X-API-Type": result.access_type or "public",
        "X-API-Name": _header_value(result.name),
        "X-Cache": result.cache,
        "ETag": payload_etag(payload),
    }
    return JSONResponse(payload, headers=headers)


_HEADER_UNSAFE_RE = re.compile(r"[^\x20-\x7e]")


def _header_value(value: str | None) -> str:
    # header values are latin-1 on the wire; keep names readable and safe
    return _HEADER_UNSAFE_RE.sub("?", value or "")


def _resolve(project_slug: str, suffix: str, request: Request, direct: bool) -> JSONResponse:
    key = request.headers.get("x-api-key")
    handler = resolver.resolve_direct if direct else resolver.resolve
    try:
        result = handler(project_slug, suffix, key)
    except (NotFoundError, AuthError) as exc:
        route = request_route(project_slug, suffix)
        logger.info("resolve_failed route=%s status=%s code=%s", route, exc.status, exc.code)
        return _resolution_error(exc, route)
    return _resolution_response(result)


@app.get("/direct/{project_slug}")
async def resolve_direct_root(project_slug: str, request: Request):
    return _resolve(project_slug, "/", request, direct=True)


@app.get("/direct/{project_slug}/{suffix:path}")
async def resolve_direct(project_slug: str, suffix: str, request: Request):
    return _resolve(project_slug, suffix, request, direct=True)


@app.get("/{project_slug}")
async def resolve_root(project_slug: str, request: Request):
    return _resolve(project_slug, "/", request, direct=False)


@app.get("/{project_slug}/{suffix:path}")
async def resolve_endpoint(project_slug: str, suffix: str, request: Request):
    return _resolve(project_slug, suffix, request, direct=False)
