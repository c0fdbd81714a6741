"""Field definitions for user-authored schemas.

A schema is an ordered list of top-level fields. Composite fields (``array`` of
objects, ``object``) carry exactly one more tier of leaf sub-fields, so the
depth bound lives in the types: ``ArrayField.object_fields`` and
``ObjectField.object_fields`` only ever hold ``LeafField`` values.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Tuple, Union

from .errors import Issue, ValidationError, issue


LEAF_TYPES = ("text", "long_text", "number", "boolean", "date", "email", "url")
COMPOSITE_TYPES = ("array", "object")
FIELD_TYPES = LEAF_TYPES + COMPOSITE_TYPES
ARRAY_ITEM_TYPES = ("text", "number", "url", "object")
STRING_TYPES = ("text", "long_text", "email", "url")

# Names the original editor used for the same types.
TYPE_ALIASES = {"textarea": "long_text", "long-text": "long_text"}


@dataclass(frozen=True)
class LeafField:
    name: str
    type: str
    required: bool = False

    def to_json(self) -> dict:
        return {"name": self.name, "type": self.type, "required": self.required}


@dataclass(frozen=True)
class ArrayField:
    name: str
    item_type: str
    required: bool = False
    object_fields: Tuple[LeafField, ...] = ()

    type = "array"

    def to_json(self) -> dict:
        data = {"name": self.name, "type": "array", "required": self.required, "arrayItemType": self.item_type}
        if self.item_type == "object":
            data["objectFields"] = [f.to_json() for f in self.object_fields]
        return data


@dataclass(frozen=True)
class ObjectField:
    name: str
    object_fields: Tuple[LeafField, ...]
    required: bool = False

    type = "object"

    def to_json(self) -> dict:
        return {
            "name": self.name,
            "type": "object",
            "required": self.required,
            "objectFields": [f.to_json() for f in self.object_fields],
        }


FieldDefinition = Union[LeafField, ArrayField, ObjectField]


def _normalize_type(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return TYPE_ALIASES.get(value, value)
    return value


def _field_name(raw: dict) -> str | None:
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        return None
    return name.strip()


def _parse_sub_fields(raw_fields: Any, path: str, errors: List[Issue]) -> Tuple[LeafField, ...]:
    if not isinstance(raw_fields, list) or not raw_fields:
        errors.append(issue("OBJECT_FIELDS_REQUIRED", "objectFields must be a non-empty list", path))
        return ()
    seen: set[str] = set()
    parsed: List[LeafField] = []
    for idx, raw in enumerate(raw_fields):
        sub_path = f"{path}[{idx}]"
        if not isinstance(raw, dict):
            errors.append(issue("FIELDS_INVALID", "field definition must be an object", sub_path))
            continue
        name = _field_name(raw)
        if name is None:
            errors.append(issue("FIELD_NAME_REQUIRED", "field name is required", f"{sub_path}.name"))
            continue
        if name in seen:
            errors.append(issue("FIELD_NAME_DUPLICATE", f"duplicate field name: {name}", f"{sub_path}.name"))
            continue
        seen.add(name)
        ftype = _normalize_type(raw.get("type"))
        if ftype in COMPOSITE_TYPES:
            errors.append(
                issue(
                    "NESTED_COMPOSITE_FORBIDDEN",
                    f"{name} cannot be {ftype} inside an object",
                    f"{sub_path}.type",
                    {"type": ftype},
                )
            )
            continue
        if ftype not in LEAF_TYPES:
            errors.append(issue("FIELD_TYPE_INVALID", f"unknown field type: {ftype}", f"{sub_path}.type"))
            continue
        if raw.get("objectFields"):
            errors.append(issue("OBJECT_FIELDS_UNEXPECTED", "objectFields only allowed on object fields", f"{sub_path}.objectFields"))
            continue
        parsed.append(LeafField(name=name, type=ftype, required=bool(raw.get("required"))))
    return tuple(parsed)


def _parse_field(raw: dict, path: str, errors: List[Issue]) -> FieldDefinition | None:
    name = _field_name(raw)
    if name is None:
        errors.append(issue("FIELD_NAME_REQUIRED", "field name is required", f"{path}.name"))
        return None
    ftype = _normalize_type(raw.get("type"))
    required = bool(raw.get("required"))
    item_type = raw.get("arrayItemType")
    sub_fields = raw.get("objectFields")

    if ftype == "array":
        if item_type in (None, ""):
            errors.append(issue("ARRAY_ITEM_TYPE_REQUIRED", f"{name} needs an arrayItemType", f"{path}.arrayItemType"))
            return None
        if item_type not in ARRAY_ITEM_TYPES:
            errors.append(
                issue(
                    "ARRAY_ITEM_TYPE_INVALID",
                    f"arrayItemType must be one of {list(ARRAY_ITEM_TYPES)}",
                    f"{path}.arrayItemType",
                )
            )
            return None
        if item_type == "object":
            before = len(errors)
            object_fields = _parse_sub_fields(sub_fields, f"{path}.objectFields", errors)
            if len(errors) > before:
                return None
            return ArrayField(name=name, item_type=item_type, required=required, object_fields=object_fields)
        if sub_fields:
            errors.append(issue("OBJECT_FIELDS_UNEXPECTED", "objectFields only allowed for arrays of objects", f"{path}.objectFields"))
            return None
        return ArrayField(name=name, item_type=item_type, required=required)

    if item_type not in (None, ""):
        errors.append(issue("ARRAY_ITEM_TYPE_UNEXPECTED", "arrayItemType only allowed on array fields", f"{path}.arrayItemType"))
        return None

    if ftype == "object":
        before = len(errors)
        object_fields = _parse_sub_fields(sub_fields, f"{path}.objectFields", errors)
        if len(errors) > before:
            return None
        return ObjectField(name=name, object_fields=object_fields, required=required)

    if ftype not in LEAF_TYPES:
        errors.append(issue("FIELD_TYPE_INVALID", f"unknown field type: {ftype}", f"{path}.type"))
        return None
    if sub_fields:
        errors.append(issue("OBJECT_FIELDS_UNEXPECTED", "objectFields only allowed on object fields", f"{path}.objectFields"))
        return None
    return LeafField(name=name, type=ftype, required=required)


def validate_fields(raw_fields: Any) -> tuple[list[Issue], list[FieldDefinition]]:
    """Structurally check a schema's field list and build typed definitions.

    Returns ``(issues, fields)``; ``fields`` is only meaningful when ``issues``
    is empty.
    """
    errors: List[Issue] = []
    if not isinstance(raw_fields, list):
        return [issue("FIELDS_INVALID", "fields must be a list", "fields")], []
    seen: set[str] = set()
    fields: List[FieldDefinition] = []
    for idx, raw in enumerate(raw_fields):
        path = f"fields[{idx}]"
        if isinstance(raw, (LeafField, ArrayField, ObjectField)):
            raw = raw.to_json()
        if not isinstance(raw, dict):
            errors.append(issue("FIELDS_INVALID", "field definition must be an object", path))
            continue
        name = _field_name(raw)
        if name is not None and name in seen:
            errors.append(issue("FIELD_NAME_DUPLICATE", f"duplicate field name: {name}", f"{path}.name"))
            continue
        parsed = _parse_field(raw, path, errors)
        if parsed is None:
            continue
        seen.add(parsed.name)
        fields.append(parsed)
    return errors, fields


def fields_from_json(raw_fields: Any) -> list[FieldDefinition]:
    """Parse stored field JSON, raising if it is no longer structurally valid."""
    errors, fields = validate_fields(raw_fields)
    if errors:
        raise ValidationError("FIELDS_INVALID", "stored schema fields are invalid", "fields", errors=errors)
    return fields


def fields_to_json(fields: List[FieldDefinition]) -> list[dict]:
    return [f.to_json() for f in fields]
