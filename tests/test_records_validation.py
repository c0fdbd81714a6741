import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.records_validation import (
    MISSING_REQUIRED,
    TYPE_MISMATCH,
    coerce_number,
    errors_to_issues,
    is_iso_date,
    validate_record,
)
from routeshape.field_model import fields_from_json


ARTICLE = fields_from_json(
    [
        {"name": "title", "type": "text", "required": True},
        {"name": "views", "type": "number"},
        {"name": "published", "type": "boolean"},
        {"name": "posted_on", "type": "date"},
        {"name": "contact", "type": "email"},
        {"name": "tags", "type": "array", "arrayItemType": "text"},
        {
            "name": "author",
            "type": "object",
            "objectFields": [
                {"name": "name", "type": "text", "required": True},
                {"name": "age", "type": "number"},
            ],
        },
        {
            "name": "items",
            "type": "array",
            "arrayItemType": "object",
            "objectFields": [{"name": "name", "type": "text", "required": True}],
        },
    ]
)


class TestValidateRecord(unittest.TestCase):
    def test_minimal_record_accepted(self) -> None:
        fields = fields_from_json([{"name": "title", "type": "text", "required": True}])
        errors, coerced = validate_record(fields, {"title": "Hi"})
        self.assertEqual(errors, {})
        self.assertEqual(coerced, {"title": "Hi"})

    def test_missing_required(self) -> None:
        fields = fields_from_json([{"name": "title", "type": "text", "required": True}])
        errors, coerced = validate_record(fields, {})
        self.assertEqual(errors, {"title": MISSING_REQUIRED})
        self.assertEqual(coerced, {})

    def test_blank_string_counts_as_missing(self) -> None:
        errors, _ = validate_record(ARTICLE, {"title": "   "})
        self.assertEqual(errors, {"title": MISSING_REQUIRED})

    def test_null_counts_as_missing(self) -> None:
        errors, _ = validate_record(ARTICLE, {"title": None})
        self.assertEqual(errors, {"title": MISSING_REQUIRED})

    def test_absent_optionals_are_filled(self) -> None:
        errors, coerced = validate_record(ARTICLE, {"title": "Hi", "extra": 1})
        self.assertEqual(errors, {})
        self.assertEqual(sorted(coerced), sorted(f.name for f in ARTICLE))
        self.assertIsNone(coerced["views"])
        self.assertIs(coerced["published"], False)
        self.assertNotIn("extra", coerced)

    def test_number_coercion(self) -> None:
        _, coerced = validate_record(ARTICLE, {"title": "a", "views": "42"})
        self.assertEqual(coerced["views"], 42)
        self.assertIsInstance(coerced["views"], int)
        _, coerced = validate_record(ARTICLE, {"title": "a", "views": "4.5"})
        self.assertEqual(coerced["views"], 4.5)

    def test_number_mismatch(self) -> None:
        for bad in ("abc", True, [1], {"n": 1}, "nan", float("inf")):
            errors, _ = validate_record(ARTICLE, {"title": "a", "views": bad})
            self.assertEqual(errors, {"views": TYPE_MISMATCH}, bad)

    def test_boolean_lenient_default(self) -> None:
        _, coerced = validate_record(ARTICLE, {"title": "a", "published": "yes"})
        self.assertIs(coerced["published"], False)
        _, coerced = validate_record(ARTICLE, {"title": "a", "published": "true"})
        self.assertIs(coerced["published"], True)
        _, coerced = validate_record(ARTICLE, {"title": "a", "published": True})
        self.assertIs(coerced["published"], True)

    def test_boolean_strict(self) -> None:
        errors, _ = validate_record(ARTICLE, {"title": "a", "published": 1}, strict_booleans=True)
        self.assertEqual(errors, {"published": TYPE_MISMATCH})
        errors, coerced = validate_record(ARTICLE, {"title": "a", "published": "False"}, strict_booleans=True)
        self.assertEqual(errors, {})
        self.assertIs(coerced["published"], False)

    def test_dates(self) -> None:
        for good in ("2024-02-29", "2024-05-01T10:00:00Z", "2024-05-01T10:00:00+02:00"):
            errors, coerced = validate_record(ARTICLE, {"title": "a", "posted_on": good})
            self.assertEqual(errors, {}, good)
            self.assertEqual(coerced["posted_on"], good)
        errors, _ = validate_record(ARTICLE, {"title": "a", "posted_on": "yesterday"})
        self.assertEqual(errors, {"posted_on": TYPE_MISMATCH})

    def test_email_format_not_enforced(self) -> None:
        errors, coerced = validate_record(ARTICLE, {"title": "a", "contact": "not-an-email"})
        self.assertEqual(errors, {})
        self.assertEqual(coerced["contact"], "not-an-email")

    def test_text_must_be_string(self) -> None:
        errors, _ = validate_record(ARTICLE, {"title": 5})
        self.assertEqual(errors, {"title": TYPE_MISMATCH})

    def test_array_items(self) -> None:
        errors, _ = validate_record(ARTICLE, {"title": "a", "tags": ["x", 3]})
        self.assertEqual(errors, {"tags[1]": TYPE_MISMATCH})
        errors, _ = validate_record(ARTICLE, {"title": "a", "tags": "x"})
        self.assertEqual(errors, {"tags": TYPE_MISMATCH})

    def test_array_of_objects_paths(self) -> None:
        errors, _ = validate_record(ARTICLE, {"title": "a", "items": [{"name": "a"}, {"name": "b"}, {}]})
        self.assertEqual(errors, {"items[2].name": MISSING_REQUIRED})

    def test_object_sub_fields(self) -> None:
        errors, coerced = validate_record(ARTICLE, {"title": "a", "author": {"name": "Ada", "age": "36", "x": 1}})
        self.assertEqual(errors, {})
        self.assertEqual(coerced["author"], {"name": "Ada", "age": 36, "x": 1})
        errors, _ = validate_record(ARTICLE, {"title": "a", "author": {"age": 3}})
        self.assertEqual(errors, {"author.name": MISSING_REQUIRED})
        errors, _ = validate_record(ARTICLE, {"title": "a", "author": ["Ada"]})
        self.assertEqual(errors, {"author": TYPE_MISMATCH})

    def test_object_extra_keys_must_be_strict_json(self) -> None:
        for bad in (float("nan"), float("inf"), [1, float("-inf")], {"deep": float("nan")}, object()):
            errors, coerced = validate_record(ARTICLE, {"title": "a", "author": {"name": "Ada", "extra": bad}})
            self.assertEqual(errors, {"author.extra": TYPE_MISMATCH}, bad)
            self.assertEqual(coerced, {})
        errors, _ = validate_record(ARTICLE, {"title": "a", "items": [{"name": "x", "w": float("nan")}]})
        self.assertEqual(errors, {"items[0].w": TYPE_MISMATCH})

    def test_null_optional_boolean_becomes_false(self) -> None:
        _, coerced = validate_record(ARTICLE, {"title": "a", "published": None})
        self.assertIs(coerced["published"], False)
        fields = fields_from_json(
            [{"name": "opts", "type": "object", "objectFields": [{"name": "on", "type": "boolean"}]}]
        )
        for value in ({"on": None}, {}):
            errors, coerced = validate_record(fields, {"opts": value})
            self.assertEqual(errors, {})
            self.assertEqual(coerced["opts"], {"on": False})

    def test_non_mapping_candidate(self) -> None:
        errors, coerced = validate_record(ARTICLE, ["title"])
        self.assertEqual(errors, {"$": TYPE_MISMATCH})
        self.assertEqual(coerced, {})

    def test_errors_to_issues(self) -> None:
        issues = errors_to_issues({"title": MISSING_REQUIRED})
        self.assertEqual(issues[0]["code"], MISSING_REQUIRED)
        self.assertEqual(issues[0]["path"], "title")


class TestScalars(unittest.TestCase):
    def test_coerce_number(self) -> None:
        self.assertEqual(coerce_number(" 7 "), 7)
        self.assertEqual(coerce_number(-1.5), -1.5)
        self.assertIsNone(coerce_number(False))
        self.assertIsNone(coerce_number(""))
        self.assertEqual(coerce_number("-2.5e3"), -2500.0)
        self.assertEqual(coerce_number(".5"), 0.5)

    def test_coerce_number_plain_ascii_only(self) -> None:
        for text in ("1_000", "١٢", "１２", "inf", "NaN", "0x10", "1e999", "1.2.3"):
            self.assertIsNone(coerce_number(text), text)

    def test_is_iso_date(self) -> None:
        self.assertTrue(is_iso_date("2024-01-01"))
        self.assertFalse(is_iso_date("01/02/2024"))
        self.assertFalse(is_iso_date(20240101))


if __name__ == "__main__":
    unittest.main()
