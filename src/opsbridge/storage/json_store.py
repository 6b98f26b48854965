"""Summary: File-backed key-value store for adapter state.

Importance: Gives idempotency and rate-limit state a narrow get/put interface over one JSON document.
Alternatives: Use SQLite or an embedded key-value database with locking.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


logger = logging.getLogger(__name__)


class JsonFileStore:
    """Summary: Key-value section of a JSON document on disk.

    Importance: Read fully, mutate in memory, write fully; no cross-process locking.
    Alternatives: Append-only JSON lines with compaction.
    """

    def __init__(
        self,
        path: Path,
        section: str,
        header: dict[str, Any] | None = None,
        stamp_field: str | None = None,
    ) -> None:
        """Summary: Bind the store to a file and the section holding its keys.

        Importance: Several logical stores can share the layout conventions of one format.
        Alternatives: Store every key as a separate file.
        """

        self.path = path
        self._section = section
        self._header = dict(header or {})
        self._stamp_field = stamp_field

    def get(self, key: str) -> Any | None:
        return self.load().get(key)

    def put(self, key: str, value: Any) -> None:
        """Summary: Set one key and persist the whole document.

        Importance: Concurrent writers may race; the last write wins.
        Alternatives: Lock the file for the read-modify-write cycle.
        """

        entries = self.load()
        entries[key] = value
        self.save(entries)

    def load(self) -> dict[str, Any]:
        """Summary: Read every entry of the section.

        Importance: Missing or corrupt files read as empty so a bad state file never blocks a call.
        Alternatives: Raise and require manual repair.
        """

        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return {}
        if not isinstance(document, dict):
            return {}
        entries = document.get(self._section)
        return dict(entries) if isinstance(entries, dict) else {}

    def save(self, entries: dict[str, Any]) -> None:
        document: dict[str, Any] = dict(self._header)
        if self._stamp_field:
            document[self._stamp_field] = datetime.now(timezone.utc).isoformat()
        document[self._section] = entries
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(document, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
