"""Supabase JWT auth middleware for the management API."""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from typing import Any, Dict, List, Optional

import httpx
from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse


_LOCAL_ORIGIN_RE = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
PROTECTED_PREFIX = "/manage"

logger = logging.getLogger("routeshape.auth")


def auth_disabled() -> bool:
    return os.getenv("ROUTESHAPE_DISABLE_AUTH", "").strip().lower() in ("1", "true", "yes")


def _attach_local_cors(request: Request, response: JSONResponse) -> JSONResponse:
    origin = request.headers.get("origin")
    if origin and _LOCAL_ORIGIN_RE.match(origin):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Credentials", "true")
        response.headers.setdefault("Access-Control-Allow-Headers", "*")
        response.headers.setdefault("Access-Control-Allow-Methods", "*")
        response.headers.setdefault("Vary", "Origin")
    return response


class JwksCache:
    """Signing keys of one Supabase project, refetched after ``ttl`` seconds.

    A token signed with an unknown ``kid`` forces one refetch, at most every
    ``min_refresh`` seconds, so forged kids cannot hammer the JWKS endpoint.
    """

    def __init__(self, url: str, ttl: float | None = None, min_refresh: float = 30.0, fetch=None) -> None:
        self.url = url
        self.ttl = ttl if ttl is not None else float(os.getenv("ROUTESHAPE_JWKS_TTL_S", "600"))
        self.min_refresh = min_refresh
        self._fetch = fetch or self._http_fetch
        self._keys: List[dict] = []
        self._fetched_at = 0.0
        self._lock = threading.Lock()

    @staticmethod
    def _http_fetch(url: str) -> dict:
        resp = httpx.get(url, timeout=10.0)
        resp.raise_for_status()
        return resp.json()

    def _refresh(self, now: float) -> None:
        data = self._fetch(self.url)
        self._keys = [k for k in (data or {}).get("keys", []) if isinstance(k, dict)]
        self._fetched_at = now
        logger.info("jwks_refreshed keys=%s", len(self._keys))

    def _lookup(self, kid: str | None) -> dict | None:
        for jwk in self._keys:
            if jwk.get("kid") == kid:
                return jwk
        return None

    def key_for(self, kid: str | None) -> dict:
        with self._lock:
            now = time.monotonic()
            if not self._keys or now - self._fetched_at >= self.ttl:
                self._refresh(now)
            key = self._lookup(kid)
            if key is None and now - self._fetched_at >= self.min_refresh:
                # signing keys may have rotated since the last fetch
                self._refresh(now)
                key = self._lookup(kid)
        if key is None:
            raise JWTError(f"unknown signing key kid={kid}")
        return key


class TokenVerifier:
    """Checks Supabase access tokens: signature, issuer and, when set, audience."""

    def __init__(self, supabase_url: str, audience: Optional[str] = None, jwks: JwksCache | None = None) -> None:
        base = supabase_url.rstrip("/")
        self.issuer = f"{base}/auth/v1"
        self.audience = audience
        self.jwks = jwks or JwksCache(f"{self.issuer}/.well-known/jwks.json")

    def claims(self, token: str) -> Dict[str, Any]:
        header = jwt.get_unverified_header(token)
        key = self.jwks.key_for(header.get("kid"))
        claims = jwt.decode(
            token,
            key,
            algorithms=[header.get("alg", "RS256")],
            issuer=self.issuer,
            audience=self.audience,
            options={"verify_aud": self.audience is not None},
        )
        if not claims.get("sub"):
            raise JWTError("token has no subject")
        return claims


def _get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def _unauthorized(request: Request, code: str, message: str, detail: dict | None = None) -> JSONResponse:
    return _attach_local_cors(
        request,
        JSONResponse(
            {
                "ok": False,
                "errors": [{"code": code, "message": message, "path": "Authorization", "detail": detail}],
                "warnings": [],
            },
            status_code=401,
        ),
    )


class SupabaseAuthMiddleware(BaseHTTPMiddleware):
    """Verify the bearer JWT on ``/manage`` requests; resolution routes use API keys instead."""

    def __init__(
        self,
        app,
        supabase_url: str,
        audience: Optional[str] = None,
        verifier: TokenVerifier | None = None,
    ) -> None:
        super().__init__(app)
        self._verifier = verifier or TokenVerifier(supabase_url, audience)

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        path = request.url.path
        if auth_disabled() or request.method == "OPTIONS":
            return await call_next(request)
        if path != PROTECTED_PREFIX and not path.startswith(PROTECTED_PREFIX + "/"):
            return await call_next(request)

        token = _get_bearer_token(request)
        if not token:
            logger.warning("auth_missing_token path=%s", path)
            return _unauthorized(request, "AUTH_MISSING_TOKEN", "Missing bearer token")

        try:
            claims = self._verifier.claims(token)
        except (JWTError, httpx.HTTPError) as exc:
            logger.warning("auth_invalid_token path=%s issuer=%s error=%s", path, self._verifier.issuer, exc)
            return _unauthorized(request, "AUTH_INVALID_TOKEN", "Invalid bearer token", {"error": str(exc)})

        request.state.user = {
            "id": claims["sub"],
            "email": claims.get("email"),
            "role": claims.get("role"),
            "claims": claims,
        }
        request.state.auth_ms = (time.perf_counter() - start) * 1000
        return await call_next(request)
