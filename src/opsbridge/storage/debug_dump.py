"""Summary: Per-call debug dump files for offline troubleshooting.

Importance: Preserves the exact envelope and response of a call next to the adapter state.
Alternatives: Log full payloads to stderr.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


logger = logging.getLogger(__name__)


def debug_id(domain: str, action: str | None, idempotency_key: str | None, payload: dict[str, Any]) -> str:
    """Summary: Build a dump id from a timestamp and a short hash of dispatch fields.

    Importance: The hash part is deterministic for the same domain, action, key, and payload keys.
    Alternatives: Use random UUIDs.
    """

    fingerprint = json.dumps(
        {
            "domain": domain,
            "action": action,
            "idempotencyKey": idempotency_key,
            "payloadKeys": sorted(payload.keys()),
        },
        sort_keys=True,
    )
    short = hashlib.sha1(fingerprint.encode("utf-8")).hexdigest()[:10]
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    return f"{domain}-{stamp}-{short}"


def debug_path(state_dir: Path, dump_id: str) -> Path:
    return state_dir / "debug" / f"{dump_id}.json"


def write_debug_dump(path: Path, dump_id: str, request: Any, response: dict[str, Any]) -> bool:
    """Summary: Write the dump file; failures are logged, never raised.

    Importance: A failing dump must not change the response the caller receives.
    Alternatives: Fail the call when diagnostics cannot be written.
    """

    document = {
        "debugId": dump_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request": request,
        "response": response,
    }
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(document, indent=2, ensure_ascii=False, default=str) + "\n", encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not write debug dump %s: %s", path, exc)
        return False
    return True
