"""Summary: Idempotency store for retry-safe write actions.

Importance: Prevents a retried send from being delivered twice and rejects key reuse with new content.
Alternatives: Rely on the backend to deduplicate by message id.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from opsbridge.storage.json_store import JsonFileStore


logger = logging.getLogger(__name__)

STORE_FILENAME = "mail-idempotency.json"


class IdempotencyConflict(ValueError):
    """Summary: Raised when a key is reused with different content.

    Importance: A conflicting reuse is a hard stop, distinct from a missing field.
    Alternatives: Overwrite the stored hash with the new content.
    """

    def __init__(self, key: str, existing_hash: str, content_hash: str) -> None:
        super().__init__("idempotency key reuse with different payload content")
        self.key = key
        self.existing_hash = existing_hash
        self.content_hash = content_hash


@dataclass(frozen=True)
class IdempotencyCheck:
    """Summary: Result of comparing a request against the stored record."""

    is_duplicate: bool
    conflict: bool
    prior_record: dict[str, Any] | None


class IdempotencyStore:
    """Summary: Records content hashes of successful writes per composite key.

    Importance: Only successful backend calls are recorded, so failed sends stay retryable.
    Alternatives: Record every attempt and track status per entry.
    """

    def __init__(self, state_dir: Path) -> None:
        self._store = JsonFileStore(state_dir / STORE_FILENAME, section="keys", header={"version": 1})

    @property
    def path(self) -> Path:
        return self._store.path

    def check(self, entry_key: str, content_hash: str) -> IdempotencyCheck:
        """Summary: Look up a key and compare content hashes.

        Importance: `conflict` must lead to immediate rejection by the caller.
        Alternatives: Raise IdempotencyConflict directly from here.
        """

        existing = self._store.get(entry_key)
        if not isinstance(existing, dict):
            return IdempotencyCheck(is_duplicate=False, conflict=False, prior_record=None)
        existing_hash = existing.get("contentHash")
        if isinstance(existing_hash, str) and existing_hash and existing_hash != content_hash:
            return IdempotencyCheck(is_duplicate=False, conflict=True, prior_record=existing)
        return IdempotencyCheck(is_duplicate=True, conflict=False, prior_record=existing)

    def require_fresh_or_duplicate(self, entry_key: str, content_hash: str) -> IdempotencyCheck:
        """Summary: Check a key and raise on conflicting reuse."""

        result = self.check(entry_key, content_hash)
        if result.conflict and result.prior_record is not None:
            raise IdempotencyConflict(entry_key, str(result.prior_record.get("contentHash")), content_hash)
        return result

    def record(self, entry_key: str, content_hash: str, metadata: dict[str, Any]) -> dict[str, Any]:
        """Summary: Persist a key after the backend call succeeded.

        Importance: Append-only; entries are never expired.
        Alternatives: Expire entries after a retention window.
        """

        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            **metadata,
            "contentHash": content_hash,
        }
        self._store.put(entry_key, entry)
        logger.info("Recorded idempotency key %s.", entry_key)
        return entry


def build_entry_key(account: str | None, mode: str, idempotency_key: str) -> str:
    return f"{account or 'default'}::{mode}::{idempotency_key}"


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
