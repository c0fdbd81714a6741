"""CORS policies: open for endpoint resolution, an origin allow-list for /manage."""

from __future__ import annotations

from typing import Iterable, Optional

from starlette.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send


RESOLUTION_EXPOSE_HEADERS = ["X-API-Type", "X-API-Name", "X-Cache", "ETag"]
RESOLUTION_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type", "x-api-key"]


def is_manage_path(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


class SplitCORSMiddleware:
    """Choose the CORS policy by path.

    Generated endpoints are called by browser apps on any origin with an
    ``x-api-key`` header and no cookies, so they answer ``*``. The management
    API keeps the credentialed allow-list.
    """

    def __init__(
        self,
        app: ASGIApp,
        manage_prefix: str,
        manage_origins: Iterable[str],
        manage_origin_regex: Optional[str] = None,
    ) -> None:
        self._manage_prefix = manage_prefix
        self._manage = CORSMiddleware(
            app,
            allow_origins=sorted(manage_origins),
            allow_origin_regex=manage_origin_regex,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self._public = CORSMiddleware(
            app,
            allow_origins=["*"],
            allow_methods=["GET", "OPTIONS"],
            allow_headers=RESOLUTION_ALLOW_HEADERS,
            expose_headers=RESOLUTION_EXPOSE_HEADERS,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and is_manage_path(scope["path"], self._manage_prefix):
            await self._manage(scope, receive, send)
            return
        await self._public(scope, receive, send)
