import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from resolution_cache import ResolutionCache


class TestResolutionCache(unittest.TestCase):
    def test_hit_and_miss(self) -> None:
        cache = ResolutionCache(max_entries=4)
        self.assertEqual(cache.get("e1"), (False, None))
        cache.set("e1", {"a": 1}, ("template", "t1"))
        self.assertEqual(cache.get("e1"), (True, {"a": 1}))
        stats = cache.stats()
        self.assertEqual(stats["hits"], 1)
        self.assertEqual(stats["misses"], 1)

    def test_returned_payload_is_a_copy(self) -> None:
        cache = ResolutionCache()
        cache.set("e1", [{"a": 1}], ("schema", "s1"))
        _, payload = cache.get("e1")
        payload.append({"b": 2})
        self.assertEqual(cache.get("e1")[1], [{"a": 1}])

    def test_lru_eviction(self) -> None:
        cache = ResolutionCache(max_entries=2)
        cache.set("e1", 1, ("template", "t1"))
        cache.set("e2", 2, ("template", "t2"))
        cache.get("e1")
        cache.set("e3", 3, ("template", "t3"))
        self.assertTrue(cache.get("e1")[0])
        self.assertFalse(cache.get("e2")[0])
        self.assertEqual(cache.stats()["evictions"], 1)

    def test_invalidate_by_source(self) -> None:
        cache = ResolutionCache()
        cache.set("e1", [], ("schema", "s1"))
        cache.set("e2", [], ("schema", "s1"))
        cache.set("e3", {}, ("template", "t1"))
        self.assertEqual(cache.invalidate_source("schema", "s1"), 2)
        self.assertFalse(cache.get("e1")[0])
        self.assertFalse(cache.get("e2")[0])
        self.assertTrue(cache.get("e3")[0])

    def test_invalidate_endpoint(self) -> None:
        cache = ResolutionCache()
        cache.set("e1", {}, ("template", "t1"))
        cache.invalidate_endpoint("e1")
        self.assertFalse(cache.get("e1")[0])
        self.assertEqual(cache.invalidate_source("template", "t1"), 0)

    def test_set_after_invalidation_is_dropped(self) -> None:
        cache = ResolutionCache()
        token = cache.generation()
        cache.invalidate_source("schema", "s1")
        cache.set("e1", ["old"], ("schema", "s1"), generation=token)
        self.assertFalse(cache.get("e1")[0])

        token = cache.generation()
        cache.invalidate_endpoint("e9")
        cache.set("e1", ["old"], ("schema", "s1"), generation=token)
        self.assertFalse(cache.get("e1")[0])

        token = cache.generation()
        cache.set("e1", ["fresh"], ("schema", "s1"), generation=token)
        self.assertEqual(cache.get("e1"), (True, ["fresh"]))

    def test_disabled(self) -> None:
        cache = ResolutionCache(enabled=False)
        cache.set("e1", {}, ("template", "t1"))
        self.assertEqual(cache.get("e1"), (False, None))
        self.assertEqual(cache.stats()["size"], 0)


if __name__ == "__main__":
    unittest.main()
