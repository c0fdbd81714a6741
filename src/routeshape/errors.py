"""Error taxonomy shared by the registry, record store and resolver."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


Issue = Dict[str, Any]


def issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


@dataclass
class RouteshapeError(Exception):
    code: str
    message: str
    path: str | None = None
    detail: dict | None = None

    status = 400

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base

    def as_issue(self) -> Issue:
        return issue(self.code, self.message, self.path, self.detail)


@dataclass
class ValidationError(RouteshapeError):
    errors: List[Issue] = field(default_factory=list)

    status = 400

    def issues(self) -> List[Issue]:
        return list(self.errors) if self.errors else [self.as_issue()]


@dataclass
class NotFoundError(RouteshapeError):
    status = 404


@dataclass
class AuthError(RouteshapeError):
    status = 401


@dataclass
class ConflictError(RouteshapeError):
    status = 409
