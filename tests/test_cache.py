import json
import os

import pytest
from structlog.testing import capture_logs

from aiwire_provider.cache import STALE_TEMP_SECONDS, ResponseCache, fingerprint
from aiwire_provider.contracts import CompletionResult, SideEffect, TokenUsage
from aiwire_provider.logging import LogChannels
from aiwire_provider.options import AskOptions


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(tmp_path, clock):
    return ResponseCache(tmp_path / "cache", clock=clock)


def _ok(text: str = "answer") -> CompletionResult:
    return CompletionResult.ok(text, usage=TokenUsage(1, 2, 3), raw={"id": "x"})


OPTS = AskOptions(provider="anthropic", system_prompt="", temperature=0.7)


def test_fingerprint_is_twelve_hex_chars_and_stable():
    key = fingerprint("hi", OPTS)
    assert len(key) == 12
    assert int(key, 16) >= 0
    assert fingerprint("hi", OPTS) == key


def test_fingerprint_ignores_transport_options():
    with_key = OPTS.merged({"key": "sk-other", "timeout": 99, "max_tokens": 10, "context_id": 4})
    assert fingerprint("hi", with_key) == fingerprint("hi", OPTS)


def test_fingerprint_changes_with_identity_fields():
    base = fingerprint("hi", OPTS)
    assert fingerprint("hello", OPTS) != base
    assert fingerprint("hi", OPTS.merged({"provider": "openai"})) != base
    assert fingerprint("hi", OPTS.merged({"model": "claude-opus-4-6"})) != base
    assert fingerprint("hi", OPTS.merged({"temperature": 0.2})) != base
    assert fingerprint("hi", OPTS.merged({"system_prompt": "Be terse."})) != base
    assert fingerprint("hi", OPTS.merged({"history": [{"role": "user", "content": "x"}]})) != base


def test_set_then_get_in_same_context(cache):
    assert cache.set("hi", OPTS, _ok(), "D", context_id=5) is True
    hit = cache.get("hi", OPTS, context_id=5)
    assert hit is not None
    assert hit.success is True
    assert hit.cached is True
    assert hit.content == "answer"
    assert hit.usage.total_tokens == 3


def test_other_context_misses(cache):
    cache.set("hi", OPTS, _ok(), "D", context_id=5)
    assert cache.get("hi", OPTS, context_id=6) is None
    assert cache.get("hi", OPTS) is None


def test_expired_entry_is_removed_on_lookup(cache, clock):
    cache.set("hi", OPTS, _ok(), 60, context_id=5)
    assert cache.stats().total_files == 1

    clock.now += 61
    assert cache.get("hi", OPTS, context_id=5) is None
    assert cache.stats().total_files == 0


def test_entry_is_live_until_expiry_second(cache, clock):
    cache.set("hi", OPTS, _ok(), 60)
    clock.now += 60
    assert cache.get("hi", OPTS) is not None


def test_corrupt_entry_is_deleted(cache, tmp_path):
    cache.set("hi", OPTS, _ok(), "D")
    path = tmp_path / "cache" / "0" / f"{fingerprint('hi', OPTS)}.json"
    path.write_text("{not json", encoding="utf-8")

    assert cache.get("hi", OPTS) is None
    assert not path.exists()


def test_entry_file_layout(cache, tmp_path, clock):
    cache.set("hi", OPTS, _ok().with_side_effect(SideEffect("cache_write", ok=True)), "W", context_id=9)
    path = tmp_path / "cache" / "9" / f"{fingerprint('hi', OPTS)}.json"
    entry = json.loads(path.read_text(encoding="utf-8"))
    assert entry["ttl"] == "W"
    assert entry["expires_at"] - entry["created_at"] == 604800
    assert entry["context_id"] == 9
    assert entry["result"]["cached"] is False
    assert entry["result"]["side_effects"] == []


def test_write_failure_returns_false(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory", encoding="utf-8")
    cache = ResponseCache(blocker)
    assert cache.set("hi", OPTS, _ok(), "D") is False


def test_clear_context_and_clear_all(cache, tmp_path):
    cache.set("a", OPTS, _ok(), "D", context_id=1)
    cache.set("b", OPTS, _ok(), "D", context_id=1)
    cache.set("c", OPTS, _ok(), "D", context_id=2)

    assert cache.clear_context(1) == 2
    assert not (tmp_path / "cache" / "1").exists()
    assert cache.clear_context(1) == 0
    assert cache.clear_all() == 1
    assert cache.stats().total_files == 0


def test_sweep_and_stats(cache, clock):
    cache.set("short", OPTS, _ok(), 10, context_id=3)
    cache.set("long", OPTS, _ok(), "Y", context_id=3)
    cache.set("other", OPTS, _ok(), "D")

    clock.now += 11
    stats = cache.stats()
    assert stats.total_files == 3
    assert stats.expired == 1
    assert stats.partitions == 2
    assert stats.total_size > 0

    assert cache.sweep_expired() == 1
    assert cache.stats().total_files == 2
    assert cache.get("long", OPTS, context_id=3) is not None


def test_stats_on_missing_directory(tmp_path):
    stats = ResponseCache(tmp_path / "nope").stats()
    assert (stats.total_files, stats.total_size, stats.partitions, stats.expired) == (0, 0, 0, 0)


def test_sweep_removes_stale_temp_files_and_empty_partition(cache, clock, tmp_path):
    partition = tmp_path / "cache" / "4"
    partition.mkdir(parents=True)
    old = partition / ".abc123.x1.tmp"
    old.write_text("{", encoding="utf-8")
    os.utime(old, (clock.now - STALE_TEMP_SECONDS - 1,) * 2)

    assert cache.sweep_expired() == 0
    assert not old.exists()
    assert not partition.exists()


def test_sweep_keeps_fresh_temp_files(cache, clock, tmp_path):
    cache.set("q", OPTS, _ok(), "D", context_id=5)
    partition = tmp_path / "cache" / "5"
    fresh = partition / ".def456.x2.tmp"
    fresh.write_text("{", encoding="utf-8")
    os.utime(fresh, (clock.now,) * 2)

    assert cache.sweep_expired() == 0
    assert fresh.exists()
    assert cache.stats().total_files == 1


def test_cache_logs_name_the_fingerprint(tmp_path, clock):
    with capture_logs() as logs:
        cache = ResponseCache(tmp_path / "cache", clock=clock, log=LogChannels(enable_debug=True))
        cache.set("q", OPTS, _ok(), "D")
        cache.get("q", OPTS)
    assert [e["fingerprint"] for e in logs] == [fingerprint("q", OPTS)] * 2
