"""Template document checks and payload fingerprints."""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any

from .errors import ValidationError


def _check(value: Any, path: str) -> None:
    if value is None or isinstance(value, (str, bool, int)):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError("TEMPLATE_JSON_INVALID", f"non-finite number at {path}", path)
        return
    if isinstance(value, list):
        for idx, item in enumerate(value):
            _check(item, f"{path}[{idx}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationError("TEMPLATE_JSON_INVALID", f"non-string key at {path}", path)
            _check(item, f"{path}.{key}")
        return
    raise ValidationError("TEMPLATE_JSON_INVALID", f"unsupported value at {path}: {type(value).__name__}", path)


def is_json_value(value: Any) -> bool:
    """True when ``value`` serializes as strict JSON (finite numbers, string keys)."""
    try:
        _check(value, "$")
    except ValidationError:
        return False
    return True


def ensure_document(value: Any) -> Any:
    """Accept any JSON value; strings that look like serialized JSON are not parsed here."""
    _check(value, "$")
    return value


def parse_document(text: str) -> Any:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("TEMPLATE_JSON_REQUIRED", "JSON cannot be empty", "json_text")
    try:
        value = json.loads(text)
    except ValueError as exc:
        raise ValidationError("TEMPLATE_JSON_INVALID", str(exc), "json_text") from exc
    return ensure_document(value)


def payload_etag(payload: Any) -> str:
    data = json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
    return '"' + hashlib.sha256(data.encode("utf-8")).hexdigest() + '"'
