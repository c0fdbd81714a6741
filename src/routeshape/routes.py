"""Route and project slug helpers."""

from __future__ import annotations

import re

from .errors import ValidationError


_ROUTE_CHARS_RE = re.compile(r"^[A-Za-z0-9\-_/]*$")
_SLUG_RE = re.compile(r"^[a-z0-9\-_]+$")
_SLASHES_RE = re.compile(r"/{2,}")
_WS_RE = re.compile(r"\s+")

RESERVED_SLUGS = {"health", "manage", "direct"}


def _collapse(route: str) -> str:
    route = route.strip()
    if not route.startswith("/"):
        route = "/" + route
    route = _SLASHES_RE.sub("/", route)
    if len(route) > 1 and route.endswith("/"):
        route = route.rstrip("/") or "/"
    return route


def normalize_route(suffix: str | None) -> str:
    """Authoring-time normalization; rejects characters outside [A-Za-z0-9-_/]."""
    if suffix is None or not isinstance(suffix, str):
        raise ValidationError("ROUTE_REQUIRED", "route is required", "route")
    route = _collapse(suffix)
    if not _ROUTE_CHARS_RE.match(route):
        raise ValidationError(
            "ROUTE_INVALID",
            "Route can only contain letters, numbers, hyphens, underscores, and forward slashes",
            "route",
            detail={"route": suffix},
        )
    return route


def normalize_request_route(suffix: str | None) -> str:
    """Request-time normalization; never rejects, unknown characters just fail to match."""
    return _collapse(suffix or "")


def slugify(name: str) -> str:
    return _WS_RE.sub("-", (name or "").strip().lower())


def validate_slug(slug: str) -> str:
    if not slug or not _SLUG_RE.match(slug):
        raise ValidationError(
            "PROJECT_SLUG_INVALID",
            "project slug may only contain lowercase letters, numbers, hyphens and underscores",
            "slug",
            detail={"slug": slug},
        )
    if slug in RESERVED_SLUGS:
        raise ValidationError("PROJECT_SLUG_RESERVED", f"project slug is reserved: {slug}", "slug", detail={"slug": slug})
    return slug


def full_route(project_slug: str, suffix: str) -> str:
    """Prefix a normalized suffix with the project slug: ("shop", "/items") -> "/shop/items"."""
    if suffix == "/":
        return f"/{project_slug}"
    return f"/{project_slug}{suffix}"


def route_suffix(project_slug: str, route: str) -> str:
    prefix = f"/{project_slug}"
    if route == prefix:
        return "/"
    if route.startswith(prefix + "/"):
        return route[len(prefix) :]
    return route
