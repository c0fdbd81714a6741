import os
import sys
import unittest
import uuid

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

USE_DB = os.getenv("USE_DB", "0") == "1"
DB_URL = os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL")

if USE_DB and DB_URL:
    from app.db import get_db_stats, reset_db_stats
    from app.stores_db import db_stores, ensure_tables
    from endpoint_registry import EndpointRegistry
    from record_store import RecordStore
    from routeshape.errors import ConflictError


@unittest.skipUnless(USE_DB and DB_URL, "DB store tests require USE_DB=1 and DATABASE_URL/SUPABASE_DB_URL")
class TestDbStores(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        ensure_tables()

    def setUp(self) -> None:
        self.stores = db_stores()
        self.records = RecordStore(self.stores)
        self.registry = EndpointRegistry(self.stores, self.records)
        self.owner = f"test-{uuid.uuid4().hex[:8]}"
        self.project = self.records.create_project({"name": f"db {uuid.uuid4().hex[:8]}"}, self.owner)

    def test_entries_round_trip_newest_first(self) -> None:
        schema = self.records.create_schema(
            {"name": "Posts", "fields": [{"name": "title", "type": "text", "required": True}]}, self.owner
        )
        self.records.create_entry(schema["id"], {"title": "one"}, self.owner)
        self.records.create_entry(schema["id"], {"title": "two"}, self.owner)
        self.assertEqual(self.records.list_entry_data(schema["id"]), [{"title": "two"}, {"title": "one"}])
        self.records.delete_schema(schema["id"], self.owner)
        self.assertEqual(self.stores["entries"].list(schema["id"]), [])

    def test_route_unique_index(self) -> None:
        template = self.records.create_template({"name": "T", "json": {"a": 1}}, self.owner)
        payload = {"name": "T", "route": "/t", "data_source": {"kind": "template", "template_id": template["id"]}}
        self.registry.create(self.project, payload, self.owner)
        with self.assertRaises(ConflictError):
            self.registry.create(self.project, payload, self.owner)

    def test_private_key_round_trip(self) -> None:
        template = self.records.create_template({"name": "T", "json": "scalar"}, self.owner)
        endpoint = self.registry.create(
            self.project,
            {
                "name": "T",
                "route": "/private",
                "access_mode": "private",
                "data_source": {"kind": "template", "template_id": template["id"]},
            },
            self.owner,
        )
        fetched = self.registry.get(endpoint["id"])
        self.assertEqual(fetched["api_key"], endpoint["api_key"])
        self.assertIsNone(self.stores["direct"].read_public(endpoint["route"]))

    def test_direct_read_is_one_query(self) -> None:
        template = self.records.create_template({"name": "T", "json": [1, 2]}, self.owner)
        endpoint = self.registry.create(
            self.project,
            {"name": "T", "route": "/open", "data_source": {"kind": "template", "template_id": template["id"]}},
            self.owner,
        )
        reset_db_stats()
        row = self.stores["direct"].read_public(endpoint["route"])
        self.assertEqual(row["payload"], [1, 2])
        self.assertEqual(get_db_stats()["queries"], 1)


if __name__ == "__main__":
    unittest.main()
