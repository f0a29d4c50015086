import json

from pantry_to_cart.cache import CacheEntry, FileCache, cache_key_hash


class Clock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _cache(tmp_path, clock=None, **kw):
    return FileCache(tmp_path / "c", clock=clock or Clock(), **kw)


def test_round_trip(tmp_path):
    c = _cache(tmp_path)
    value = {"a": [1, 2.5, "süt"], "b": None}
    c.set("https://x/?q=sut", value, ttl=60)
    assert c.get("https://x/?q=sut") == value


def test_json_round_trip_limits(tmp_path):
    c = _cache(tmp_path)
    c.set("pair", (1, 2))
    c.set("nothing", None)
    assert c.get("pair") == [1, 2]
    assert c.get("nothing") is None
    assert c.path_for("nothing").exists()


def test_get_is_idempotent(tmp_path):
    c = _cache(tmp_path)
    c.set("k", "<html>body</html>")
    assert c.get("k") == c.get("k") == "<html>body</html>"
    assert c.get("missing") is None
    assert c.get("missing") is None


def test_file_layout(tmp_path):
    clock = Clock(500.0)
    c = _cache(tmp_path, clock)
    c.set("k", "v", ttl=30)
    path = c.path_for("k")
    assert path.name == cache_key_hash("k") + "_v1.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["content"] == "v"
    assert data["timestamp"] == 500.0
    assert data["ttl"] == 30.0


def test_expired_entry_reads_as_miss_but_stays_on_disk(tmp_path):
    clock = Clock()
    c = _cache(tmp_path, clock)
    c.set("k", "v", ttl=10)
    clock.now += 10
    assert c.get("k") == "v"
    clock.now += 1
    assert c.get("k") is None
    assert c.path_for("k").exists()


def test_entry_expiry_boundary():
    e = CacheEntry(payload=1, stored_at=100.0, ttl=10.0)
    assert not e.is_expired(110.0)
    assert e.is_expired(110.5)


def test_evict_removes_expired_and_corrupt(tmp_path):
    clock = Clock()
    c = _cache(tmp_path, clock)
    c.set("old", 1, ttl=5)
    c.set("fresh", 2, ttl=500)
    (c.directory / ("0" * 32 + "_v1.json")).write_text("{not json", encoding="utf-8")
    clock.now += 10

    assert c.evict_stale() == 2
    assert len(c) == 1
    assert c.get("fresh") == 2


def test_evict_trims_oldest_down_to_cap(tmp_path):
    clock = Clock()
    c = _cache(tmp_path, clock, max_entries=3)
    for i in range(6):
        c.set(f"k{i}", i, ttl=1000)
        clock.now += 1
    c.set("expired", "x", ttl=0)
    clock.now += 1

    c.evict_stale()

    assert len(c) == 3
    assert [c.get(f"k{i}") for i in range(6)] == [None, None, None, 3, 4, 5]
    for path in c.directory.glob("*_v1.json"):
        data = json.loads(path.read_text(encoding="utf-8"))
        assert clock.now - data["timestamp"] <= data["ttl"]


def test_evict_under_cap_keeps_everything(tmp_path):
    c = _cache(tmp_path, max_entries=10)
    c.set("a", 1)
    c.set("b", 2)
    assert c.evict_stale() == 0
    assert len(c) == 2


def test_unserializable_value_is_not_written(tmp_path):
    c = _cache(tmp_path)
    c.set("k", object())
    assert c.get("k") is None
    assert len(c) == 0
    assert list(c.directory.glob("*.tmp")) == []
