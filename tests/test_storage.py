"""Summary: Tests for the file-backed state stores.

Importance: Idempotency and rate-limit state must survive across adapter processes.
Alternatives: Rely on manual testing for storage operations.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from opsbridge.storage.debug_dump import debug_id, debug_path, write_debug_dump
from opsbridge.storage.idempotency import (
    IdempotencyConflict,
    IdempotencyStore,
    build_entry_key,
    content_hash,
)
from opsbridge.storage.json_store import JsonFileStore
from opsbridge.storage.rate_limit import RateLimiter


class FakeClock:
    """Summary: Deterministic clock whose sleep advances time."""

    def __init__(self, start: float) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_json_store_persists_section_with_header(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "nested" / "state.json", section="keys", header={"version": 1})
    store.put("a", {"n": 1})
    document = json.loads((tmp_path / "nested" / "state.json").read_text(encoding="utf-8"))
    assert document == {"version": 1, "keys": {"a": {"n": 1}}}
    assert store.get("a") == {"n": 1}
    assert store.get("missing") is None


def test_json_store_treats_corrupt_file_as_empty(tmp_path: Path) -> None:
    """Summary: Ensure a damaged state file does not block calls.

    Importance: The next successful write repairs the file.
    Alternatives: Raise and require manual repair.
    """

    path = tmp_path / "state.json"
    path.write_text("{broken", encoding="utf-8")
    store = JsonFileStore(path, section="keys")
    assert store.load() == {}
    store.put("k", 1)
    assert store.get("k") == 1


def test_idempotency_duplicate_and_conflict(tmp_path: Path) -> None:
    """Summary: Verify same-content reuse is a duplicate and new content conflicts.

    Importance: Retries must not resend, and key reuse with new content must be rejected.
    Alternatives: Deduplicate on the key alone.
    """

    store = IdempotencyStore(tmp_path)
    key = build_entry_key(None, "raw-message", "k1")
    assert key == "default::raw-message::k1"
    first = content_hash("hello")

    fresh = store.check(key, first)
    assert fresh.is_duplicate is False and fresh.conflict is False

    store.record(key, first, {"idempotencyKey": "k1", "mode": "raw-message"})
    duplicate = store.check(key, first)
    assert duplicate.is_duplicate is True
    assert duplicate.prior_record is not None
    assert duplicate.prior_record["contentHash"] == first

    with pytest.raises(IdempotencyConflict) as excinfo:
        store.require_fresh_or_duplicate(key, content_hash("different"))
    assert excinfo.value.existing_hash == first

    document = json.loads(store.path.read_text(encoding="utf-8"))
    assert document["version"] == 1
    assert key in document["keys"]


def test_rate_limiter_spaces_calls(tmp_path: Path) -> None:
    """Summary: Ensure consecutive acquisitions are spaced by the minimum interval.

    Importance: Quota-limited APIs reject bursts.
    Alternatives: Sleep a fixed amount before every call.
    """

    clock = FakeClock(1_000.0)
    limiter = RateLimiter(tmp_path, clock=clock.time, sleep=clock.sleep)

    first = limiter.acquire("note.write", 1_100)
    assert first.slept_ms == 0

    clock.now += 0.5
    second = limiter.acquire("note.write", 1_100)
    assert second.slept_ms == 600
    assert clock.sleeps == [pytest.approx(0.6)]

    other = limiter.acquire("upload.write", 1_100)
    assert other.slept_ms == 0

    document = json.loads((tmp_path / "rate-limit.json").read_text(encoding="utf-8"))
    assert set(document["lastByKey"]) == {"note.write", "upload.write"}
    assert "updatedAt" in document
    assert limiter.last_stamp("note.write") == int(clock.now * 1000)


def test_rate_limiter_state_is_shared_between_instances(tmp_path: Path) -> None:
    clock = FakeClock(50.0)
    RateLimiter(tmp_path, clock=clock.time, sleep=clock.sleep).acquire("note.write", 1_000)
    clock.now += 0.25
    result = RateLimiter(tmp_path, clock=clock.time, sleep=clock.sleep).acquire("note.write", 1_000)
    assert result.slept_ms == 750


def test_debug_dump_is_written_and_id_is_stable(tmp_path: Path) -> None:
    first = debug_id("mail", "send_message", "k", {"b": 1, "a": 2})
    second = debug_id("mail", "send_message", "k", {"a": 9, "b": 0})
    assert first.startswith("mail-")
    assert first.rsplit("-", 1)[1] == second.rsplit("-", 1)[1]

    path = debug_path(tmp_path, first)
    assert write_debug_dump(path, first, {"action": "send_message"}, {"ok": True}) is True
    document = json.loads(path.read_text(encoding="utf-8"))
    assert document["debugId"] == first
    assert document["response"] == {"ok": True}
