import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from routeshape.errors import ValidationError
from routeshape.field_model import (
    ArrayField,
    LeafField,
    ObjectField,
    fields_from_json,
    fields_to_json,
    validate_fields,
)


def _codes(issues):
    return [i["code"] for i in issues]


class TestValidateFields(unittest.TestCase):
    def test_builds_typed_fields(self) -> None:
        issues, fields = validate_fields(
            [
                {"name": "title", "type": "text", "required": True},
                {"name": "tags", "type": "array", "arrayItemType": "text"},
                {
                    "name": "address",
                    "type": "object",
                    "objectFields": [{"name": "city", "type": "text", "required": True}],
                },
                {
                    "name": "items",
                    "type": "array",
                    "arrayItemType": "object",
                    "objectFields": [{"name": "sku", "type": "text"}, {"name": "qty", "type": "number"}],
                },
            ]
        )
        self.assertEqual(issues, [])
        self.assertEqual(fields[0], LeafField(name="title", type="text", required=True))
        self.assertIsInstance(fields[1], ArrayField)
        self.assertEqual(fields[1].item_type, "text")
        self.assertIsInstance(fields[2], ObjectField)
        self.assertEqual(fields[2].object_fields[0].name, "city")
        self.assertEqual(len(fields[3].object_fields), 2)

    def test_textarea_alias(self) -> None:
        issues, fields = validate_fields([{"name": "body", "type": "textarea"}])
        self.assertEqual(issues, [])
        self.assertEqual(fields[0].type, "long_text")

    def test_nested_composite_rejected(self) -> None:
        issues, _ = validate_fields(
            [
                {
                    "name": "outer",
                    "type": "object",
                    "objectFields": [{"name": "inner", "type": "object", "objectFields": [{"name": "x", "type": "text"}]}],
                }
            ]
        )
        self.assertEqual(_codes(issues), ["NESTED_COMPOSITE_FORBIDDEN"])
        self.assertEqual(issues[0]["path"], "fields[0].objectFields[0].type")

    def test_array_inside_array_object_rejected(self) -> None:
        issues, _ = validate_fields(
            [
                {
                    "name": "rows",
                    "type": "array",
                    "arrayItemType": "object",
                    "objectFields": [{"name": "cells", "type": "array", "arrayItemType": "text"}],
                }
            ]
        )
        self.assertIn("NESTED_COMPOSITE_FORBIDDEN", _codes(issues))

    def test_array_needs_item_type(self) -> None:
        issues, _ = validate_fields([{"name": "tags", "type": "array"}])
        self.assertEqual(_codes(issues), ["ARRAY_ITEM_TYPE_REQUIRED"])

    def test_array_item_type_closed_set(self) -> None:
        issues, _ = validate_fields([{"name": "flags", "type": "array", "arrayItemType": "boolean"}])
        self.assertEqual(_codes(issues), ["ARRAY_ITEM_TYPE_INVALID"])

    def test_item_type_only_on_arrays(self) -> None:
        issues, _ = validate_fields([{"name": "title", "type": "text", "arrayItemType": "text"}])
        self.assertEqual(_codes(issues), ["ARRAY_ITEM_TYPE_UNEXPECTED"])

    def test_object_needs_sub_fields(self) -> None:
        issues, _ = validate_fields([{"name": "address", "type": "object", "objectFields": []}])
        self.assertEqual(_codes(issues), ["OBJECT_FIELDS_REQUIRED"])

    def test_sub_fields_only_on_objects(self) -> None:
        issues, _ = validate_fields([{"name": "title", "type": "text", "objectFields": [{"name": "a", "type": "text"}]}])
        self.assertEqual(_codes(issues), ["OBJECT_FIELDS_UNEXPECTED"])

    def test_names_required_and_unique(self) -> None:
        issues, _ = validate_fields(
            [
                {"name": "  ", "type": "text"},
                {"name": "title", "type": "text"},
                {"name": "title", "type": "number"},
            ]
        )
        self.assertEqual(_codes(issues), ["FIELD_NAME_REQUIRED", "FIELD_NAME_DUPLICATE"])
        self.assertEqual(issues[1]["path"], "fields[2].name")

    def test_names_are_case_sensitive(self) -> None:
        issues, fields = validate_fields([{"name": "Title", "type": "text"}, {"name": "title", "type": "text"}])
        self.assertEqual(issues, [])
        self.assertEqual(len(fields), 2)

    def test_unknown_type(self) -> None:
        issues, _ = validate_fields([{"name": "x", "type": "color"}])
        self.assertEqual(_codes(issues), ["FIELD_TYPE_INVALID"])

    def test_non_list(self) -> None:
        issues, fields = validate_fields({"name": "x"})
        self.assertEqual(_codes(issues), ["FIELDS_INVALID"])
        self.assertEqual(fields, [])


class TestFieldJson(unittest.TestCase):
    def test_wire_form(self) -> None:
        raw = [
            {"name": "title", "type": "text", "required": True},
            {
                "name": "items",
                "type": "array",
                "required": False,
                "arrayItemType": "object",
                "objectFields": [{"name": "sku", "type": "text", "required": True}],
            },
        ]
        self.assertEqual(fields_to_json(fields_from_json(raw)), raw)

    def test_stored_invalid_fields_raise(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            fields_from_json([{"name": "x", "type": "nope"}])
        self.assertEqual(ctx.exception.code, "FIELDS_INVALID")
        self.assertEqual(ctx.exception.errors[0]["code"], "FIELD_TYPE_INVALID")


if __name__ == "__main__":
    unittest.main()
