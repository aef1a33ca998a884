import unittest
import json
import os
import sys
import tempfile
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

# Ensure src/ is importable
SYS_PATH_ADDED = str(Path(__file__).resolve().parents[1] / "src")
if SYS_PATH_ADDED not in sys.path:
    sys.path.insert(0, SYS_PATH_ADDED)

from pmdp_departures.cache import DepartureCache, cache_key  # noqa: E402
from pmdp_departures.config import CacheConfig  # noqa: E402
from pmdp_departures.models import AggregationResult, DepartureQuery, RawDeparture  # noqa: E402
from pmdp_departures.transform import transform_departure  # noqa: E402

PRAGUE = ZoneInfo("Europe/Prague")
NOW = datetime(2026, 10, 17, 12, 0, tzinfo=PRAGUE).timestamp()


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def sample_result(ttl=300):
    raw = RawDeparture.model_validate(
        {
            "DepartureTime": "2026-10-17T12:20:00",
            "DelayMin": 1,
            "Line": {"Name": "4", "TractionType": 1, "IsBarrierFree": True},
            "LastStopName": "Bory",
            "ConnectionId": {"Id": 4711},
        }
    )
    dep = transform_departure(raw, 40, "Hlavní nádraží", datetime.fromtimestamp(NOW, tz=PRAGUE))
    return AggregationResult(departures=[dep], cache_max_age=ttl, first_departure_minutes=21)


class CacheKeyTests(unittest.TestCase):
    def test_key_shape(self):
        key = cache_key(DepartureQuery(stop_ids=[40]))
        self.assertTrue(key.startswith("pmdp_"))
        self.assertTrue(key.endswith(".json"))
        self.assertEqual(len(key), len("pmdp_") + 32 + len(".json"))

    def test_order_does_not_change_key(self):
        a = DepartureQuery(stop_ids=[40, 124], exclude_trips=["1", "2"], exclude_headsigns=["Bory", "Lobzy"])
        b = DepartureQuery(stop_ids=[124, 40], exclude_trips=["2", "1"], exclude_headsigns=["lobzy", "BORY"])
        self.assertEqual(cache_key(a), cache_key(b))

    def test_every_field_changes_key(self):
        base = DepartureQuery(stop_ids=[40])
        variants = [
            DepartureQuery(stop_ids=[41]),
            DepartureQuery(stop_ids=[40], exclude_trips=["1"]),
            DepartureQuery(stop_ids=[40], exclude_headsigns=["Bory"]),
            DepartureQuery(stop_ids=[40], limit=10),
            DepartureQuery(stop_ids=[40], min_minutes=3),
        ]
        keys = {cache_key(q) for q in variants}
        self.assertEqual(len(keys), len(variants))
        self.assertNotIn(cache_key(base), keys)


class DepartureCacheTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.now = NOW
        self.cache = DepartureCache(self.root / "cache", clock=lambda: self.now, rng=FixedRandom(0.5))

    def tearDown(self):
        self._tmp.cleanup()

    def test_round_trip(self):
        result = sample_result()
        self.assertTrue(self.cache.set("pmdp_a.json", result))
        got = self.cache.get("pmdp_a.json")
        self.assertIsNotNone(got)
        self.assertTrue(got.from_cache)
        self.assertEqual(got.departures, result.departures)
        self.assertEqual(got.cache_max_age, 300)
        self.assertEqual(got.first_departure_minutes, 21)

    def test_remaining_ttl_and_expiry(self):
        self.cache.set("pmdp_a.json", sample_result(ttl=30))
        self.now += 29
        self.assertEqual(self.cache.get("pmdp_a.json").cache_max_age, 1)
        self.now += 1
        self.assertIsNone(self.cache.get("pmdp_a.json"))

    def test_file_layout(self):
        self.cache.set("pmdp_a.json", sample_result())
        data = json.loads((self.root / "cache" / "pmdp_a.json").read_text(encoding="utf-8"))
        self.assertEqual(set(data), {"departures", "expires", "first_min"})
        self.assertEqual(data["expires"], int(NOW) + 300)
        self.assertEqual(data["first_min"], 21)
        self.assertEqual(data["departures"][0]["stop"]["id"], "PMDP_40")
        # no temp files left behind
        self.assertEqual([p.name for p in (self.root / "cache").iterdir()], ["pmdp_a.json"])

    def test_missing_and_corrupt_entries(self):
        self.assertIsNone(self.cache.get("pmdp_missing.json"))
        (self.root / "cache").mkdir()
        (self.root / "cache" / "pmdp_bad.json").write_text("{not json", encoding="utf-8")
        self.assertIsNone(self.cache.get("pmdp_bad.json"))
        (self.root / "cache" / "pmdp_partial.json").write_text('{"departures": []}', encoding="utf-8")
        self.assertIsNone(self.cache.get("pmdp_partial.json"))

    def test_entry_with_invalid_utf8_is_ignored(self):
        (self.root / "cache").mkdir()
        (self.root / "cache" / "pmdp_binary.json").write_bytes(b"\xff\xfe garbage")
        self.assertIsNone(self.cache.get("pmdp_binary.json"))
        self.assertTrue(self.cache.set("pmdp_binary.json", sample_result()))
        self.assertTrue(self.cache.get("pmdp_binary.json").from_cache)

    def test_overwrite_replaces_entry(self):
        self.cache.set("pmdp_a.json", sample_result(ttl=300))
        self.cache.set("pmdp_a.json", AggregationResult(departures=[], cache_max_age=900, first_departure_minutes=999))
        got = self.cache.get("pmdp_a.json")
        self.assertEqual(got.departures, [])
        self.assertEqual(got.cache_max_age, 900)

    def test_unwritable_location_is_skipped(self):
        blocker = self.root / "blocker"
        blocker.write_text("", encoding="utf-8")
        cache = DepartureCache(blocker / "cache", clock=lambda: self.now, rng=FixedRandom(0.5))
        self.assertFalse(cache.set("pmdp_a.json", sample_result()))
        self.assertIsNone(cache.get("pmdp_a.json"))
        self.assertEqual(cache.sweep(), 0)

    def test_sweep_removes_stale_entries_only(self):
        self.cache.set("pmdp_old.json", sample_result())
        self.cache.set("pmdp_new.json", sample_result())
        (self.root / "cache" / "other.json").write_text("{}", encoding="utf-8")
        old = self.now - 3601
        os.utime(self.root / "cache" / "pmdp_old.json", (old, old))
        os.utime(self.root / "cache" / "pmdp_new.json", (self.now, self.now))

        self.assertEqual(self.cache.sweep(), 1)
        self.assertFalse((self.root / "cache" / "pmdp_old.json").exists())
        self.assertTrue((self.root / "cache" / "pmdp_new.json").exists())

        self.assertEqual(self.cache.sweep(all_entries=True), 1)
        self.assertFalse((self.root / "cache" / "pmdp_new.json").exists())
        self.assertTrue((self.root / "cache" / "other.json").exists())

    def test_read_triggers_sweep_when_trial_succeeds(self):
        self.cache.set("pmdp_old.json", sample_result())
        old = self.now - 7200
        os.utime(self.root / "cache" / "pmdp_old.json", (old, old))

        self.cache.get("pmdp_other.json")
        self.assertTrue((self.root / "cache" / "pmdp_old.json").exists())

        gc_cache = DepartureCache(self.root / "cache", clock=lambda: self.now, rng=FixedRandom(0.0))
        gc_cache.get("pmdp_other.json")
        self.assertFalse((self.root / "cache" / "pmdp_old.json").exists())

    def test_from_config(self):
        self.assertIsNone(DepartureCache.from_config(CacheConfig(dir=None)))
        cache = DepartureCache.from_config(CacheConfig(dir=str(self.root / "c"), gc_probability=0.5))
        self.assertEqual(cache.cache_dir, self.root / "c")
        self.assertEqual(cache.gc_probability, 0.5)
        self.assertEqual(cache.gc_max_age_seconds, 3600)


if __name__ == "__main__":
    unittest.main()
