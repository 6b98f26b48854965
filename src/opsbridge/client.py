"""Summary: Caller-side client that spawns domain adapters.

Importance: Gives hosts one call for envelope construction, process execution, and call logging.
Alternatives: Import routers in-process and skip the subprocess boundary.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from opsbridge.config import AdapterConfig
from opsbridge.envelope import DOMAINS
from opsbridge.executor import SpawnError, parse_json_output, run_command, truncate
from opsbridge.models import AdapterCallResult


logger = logging.getLogger(__name__)

CALLS_LOG_FILENAME = "calls.jsonl"
CLIENT_NAME = "opsbridge"

DESTRUCTIVE_ACTIONS = {
    ("mail", "delete_messages"),
    ("mail", "purge_folder"),
    ("calendar", "delete_event"),
}


def is_destructive(domain: str, action: str) -> bool:
    return (domain, action) in DESTRUCTIVE_ACTIONS


class AdapterClient:
    """Summary: Invokes adapters through their stdin/stdout contract.

    Importance: Spawn failures come back as results, so hosts never handle raw OS errors.
    Alternatives: Raise on every non-zero exit code.
    """

    def __init__(self, config: AdapterConfig) -> None:
        self._config = config

    @property
    def calls_log_path(self) -> Path:
        return self._config.resolve_state_dir() / CALLS_LOG_FILENAME

    def build_envelope(
        self,
        domain: str,
        action: str,
        payload: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        request_id: str | None = None,
        tool: str = "cli",
    ) -> dict[str, Any]:
        envelope: dict[str, Any] = {
            "version": 1,
            "domain": domain,
            "action": action,
            "payload": payload or {},
            "meta": {
                "plugin": CLIENT_NAME,
                "tool": tool,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
        if idempotency_key:
            envelope["idempotencyKey"] = idempotency_key
        if request_id:
            envelope["requestId"] = request_id
        return envelope

    def invoke(
        self,
        domain: str,
        action: str,
        payload: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        request_id: str | None = None,
        timeout_ms: int | None = None,
    ) -> AdapterCallResult:
        """Summary: Run one adapter call and return its parsed outcome.

        Importance: `ok` mirrors the adapter exit code, not the envelope's own flag.
        Alternatives: Trust the `ok` field of whatever the adapter printed.
        """

        if domain not in DOMAINS:
            raise ValueError(f"Unknown domain: {domain}")
        envelope = self.build_envelope(domain, action, payload, idempotency_key, request_id)
        argv = self._config.adapter_command(domain)
        timeout = timeout_ms or self._config.adapter_timeout_ms
        started = time.monotonic()
        try:
            result = run_command(argv, timeout_ms=timeout, stdin_text=json.dumps(envelope) + "\n")
        except SpawnError as exc:
            duration_ms = int((time.monotonic() - started) * 1000)
            self._record(
                {
                    "domain": domain,
                    "action": action,
                    "argv": argv,
                    "timeoutMs": timeout,
                    "durationMs": duration_ms,
                    "error": str(exc),
                }
            )
            return AdapterCallResult(
                ok=False,
                domain=domain,
                action=action,
                exit_code=None,
                signal=None,
                killed=False,
                duration_ms=duration_ms,
                error=str(exc),
                envelope=envelope,
            )

        parsed, parse_error = parse_json_output(result.stdout)
        self._record(
            {
                "domain": domain,
                "action": action,
                "argv": argv,
                "timeoutMs": timeout,
                "durationMs": result.duration_ms,
                "code": result.exit_code,
                "signal": result.signal,
                "killed": result.killed,
                "stdout": result.stdout,
                "stderr": result.stderr,
            }
        )
        response = parsed if isinstance(parsed, dict) else None
        error = None
        if not result.ok:
            error = response.get("error") if response and isinstance(response.get("error"), str) else None
            error = error or f"adapter exited with code {result.exit_code}"
        return AdapterCallResult(
            ok=result.ok,
            domain=domain,
            action=action,
            exit_code=result.exit_code,
            signal=result.signal,
            killed=result.killed,
            duration_ms=result.duration_ms,
            response=response,
            stdout_raw=result.stdout if response is None else None,
            stdout_parse_error=parse_error,
            stderr=result.stderr or None,
            error=error,
            envelope=envelope,
        )

    def _record(self, record: dict[str, Any]) -> None:
        """Summary: Append one call record to the JSON-lines log.

        Importance: Output fields are truncated so the log stays bounded per call.
        Alternatives: Log full output through the logging module.
        """

        if not self._config.record_calls:
            return
        entry = {"ts": datetime.now(timezone.utc).isoformat(), **record}
        for key in ("stdout", "stderr"):
            if isinstance(entry.get(key), str):
                entry[key] = truncate(entry[key], self._config.max_output_chars) or ""
        path = self.calls_log_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as exc:
            logger.warning("Could not append call record to %s: %s", path, exc)
