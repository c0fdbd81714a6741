"""Record validation and coercion against a schema's field definitions."""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any, Dict

from routeshape.field_model import ArrayField, LeafField, ObjectField, STRING_TYPES
from routeshape.json_document import is_json_value


MISSING_REQUIRED = "MissingRequiredField"
TYPE_MISMATCH = "TypeMismatch"

_INT_RE = re.compile(r"^[+-]?[0-9]+$")
_DECIMAL_RE = re.compile(r"^[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?$")

_MISSING = object()


def _is_blank(field: LeafField | ArrayField | ObjectField, value: Any) -> bool:
    if value is _MISSING or value is None:
        return True
    return field.type in STRING_TYPES and isinstance(value, str) and value.strip() == ""


def coerce_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        # ASCII decimal notation only, no "1_000", "inf" or non-ASCII digits
        if _INT_RE.match(text):
            return int(text)
        if not _DECIMAL_RE.match(text):
            return None
        number = float(text)
        return number if math.isfinite(number) else None
    return None


def is_iso_date(value: Any) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        date.fromisoformat(value)
        return True
    except ValueError:
        pass
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
        return True
    except ValueError:
        return False


def _coerce_boolean(value: Any, strict: bool) -> tuple[bool, bool]:
    if isinstance(value, bool):
        return True, value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return True, value.strip().lower() == "true"
    if strict:
        return False, False
    return True, False


def _coerce_scalar(ftype: str, value: Any, strict_booleans: bool) -> tuple[bool, Any]:
    if ftype == "number":
        number = coerce_number(value)
        return (number is not None), number
    if ftype == "boolean":
        return _coerce_boolean(value, strict_booleans)
    if ftype == "date":
        return is_iso_date(value), value
    if ftype in STRING_TYPES:
        # email/url formats are a UI affordance; only the string type is enforced.
        return isinstance(value, str), value
    return False, value


def _validate_object(sub_fields, value: Any, path: str, errors: Dict[str, str], strict_booleans: bool) -> Any:
    if not isinstance(value, dict):
        errors[path] = TYPE_MISMATCH
        return value
    coerced = dict(value)
    declared = {sub.name for sub in sub_fields}
    for key, extra in value.items():
        # undeclared keys are stored as sent, so they must be strict JSON
        if key not in declared and not is_json_value(extra):
            errors[f"{path}.{key}"] = TYPE_MISMATCH
    for sub in sub_fields:
        sub_path = f"{path}.{sub.name}"
        raw = value.get(sub.name, _MISSING)
        if _is_blank(sub, raw):
            if sub.required:
                errors[sub_path] = MISSING_REQUIRED
            elif sub.type == "boolean":
                coerced[sub.name] = False
            continue
        ok, out = _coerce_scalar(sub.type, raw, strict_booleans)
        if not ok:
            errors[sub_path] = TYPE_MISMATCH
            continue
        coerced[sub.name] = out
    return coerced


def _validate_value(field, value: Any, path: str, errors: Dict[str, str], strict_booleans: bool) -> Any:
    if isinstance(field, ObjectField):
        return _validate_object(field.object_fields, value, path, errors, strict_booleans)
    if isinstance(field, ArrayField):
        if not isinstance(value, list):
            errors[path] = TYPE_MISMATCH
            return value
        items = []
        for idx, item in enumerate(value):
            item_path = f"{path}[{idx}]"
            if field.item_type == "object":
                items.append(_validate_object(field.object_fields, item, item_path, errors, strict_booleans))
                continue
            ok, out = _coerce_scalar(field.item_type, item, strict_booleans)
            if not ok:
                errors[item_path] = TYPE_MISMATCH
            items.append(out)
        return items
    ok, out = _coerce_scalar(field.type, value, strict_booleans)
    if not ok:
        errors[path] = TYPE_MISMATCH
    return out


def validate_record(fields, candidate: Any, strict_booleans: bool = False) -> tuple[dict, dict]:
    """Check ``candidate`` against ``fields`` and return ``(errors, coerced)``.

    ``errors`` maps a field path (``title``, ``address.city``, ``items[0].sku``)
    to a reason code. ``coerced`` holds exactly the schema's top-level keys:
    unknown keys are dropped, absent optional fields become ``None``, and blank
    optional booleans (absent or ``null``) become ``False``. Sub-object keys that
    the schema does not declare are kept when they are strict JSON.
    """
    errors: Dict[str, str] = {}
    if not isinstance(candidate, dict):
        return {"$": TYPE_MISMATCH}, {}
    coerced: Dict[str, Any] = {}
    for field in fields:
        raw = candidate.get(field.name, _MISSING)
        if _is_blank(field, raw):
            if field.required:
                errors[field.name] = MISSING_REQUIRED
                continue
            if field.type == "boolean":
                coerced[field.name] = False
            else:
                coerced[field.name] = None if raw is _MISSING else raw
            continue
        coerced[field.name] = _validate_value(field, raw, field.name, errors, strict_booleans)
    if errors:
        return errors, {}
    return errors, coerced


def errors_to_issues(errors: dict) -> list[dict]:
    messages = {
        MISSING_REQUIRED: "Missing required field",
        TYPE_MISMATCH: "Value does not match field type",
    }
    return [
        {"code": reason, "message": f"{messages.get(reason, reason)}: {path}", "path": path, "detail": None}
        for path, reason in errors.items()
    ]
