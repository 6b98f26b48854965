"""Summary: Notes action router backed by the Mowen OpenAPI.

Importance: Builds note and upload requests, paces writes, and normalizes HTTP outcomes.
Alternatives: Call the HTTP API straight from the host process.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, cast

from opsbridge.config import AdapterConfig
from opsbridge.envelope import EXIT_BACKEND, EXIT_VALIDATION, RequestEnvelope
from opsbridge.executor import HttpResult, TransportError, parse_json_output, post_json
from opsbridge.models import RouterResult
from opsbridge.payloads import NOTES_PAYLOADS, ActionPayload, NotesPayload, NoteWritePayload
from opsbridge.router import ActionRouter
from opsbridge.storage.rate_limit import RateLimiter


logger = logging.getLogger(__name__)

API_PREFIX = "/api/open/api/v1"

ACTION_ALIASES = {
    "create_doc": "create_note",
    "update_doc": "edit_note",
    "set_doc": "set_note",
}

UNSUPPORTED_ACTIONS = ("append_doc", "read_doc", "search", "list_spaces")

NOTE_ID_KEYS = ("noteId", "note_id", "id")
NOTE_ID_PATHS: tuple[tuple[str, ...], ...] = (
    (),
    ("data",),
    ("result",),
    ("note",),
    ("data", "note"),
    ("result", "note"),
    ("note", "note"),
)


@dataclass(frozen=True)
class Endpoint:
    """Summary: API path and rate-limit bucket for one write action."""

    path: str
    rate_limit_key: str


ENDPOINTS = {
    "create_note": Endpoint(f"{API_PREFIX}/note/create", "note.write"),
    "edit_note": Endpoint(f"{API_PREFIX}/note/edit", "note.write"),
    "set_note": Endpoint(f"{API_PREFIX}/note/set", "note.write"),
    "upload_prepare": Endpoint(f"{API_PREFIX}/upload/prepare", "upload.write"),
    "upload_url": Endpoint(f"{API_PREFIX}/upload/url", "upload.write"),
}


@dataclass(frozen=True)
class NotesSettings:
    """Summary: Effective notes settings after payload overrides."""

    api_key: str | None
    base_url: str
    timeout_ms: int
    min_interval_ms: int
    state_dir: Path
    user_agent: str


def unsupported_action_message(action: str) -> str:
    if action == "append_doc":
        return (
            "append_doc is not supported by the Mowen OpenAPI (no read/merge helper). "
            "Use edit_note/update_doc with an explicit NoteAtom body."
        )
    if action in UNSUPPORTED_ACTIONS:
        return (
            f"{action} is not available in the Mowen OpenAPI. "
            "Supported actions: create/edit/set note and upload APIs."
        )
    return f"unsupported action '{action}'"


def extract_note_id(value: Any) -> str | None:
    """Summary: Find the note id in an API response.

    Importance: The API nests the id differently per endpoint; the first non-empty string wins.
    Alternatives: Read one fixed field and miss ids nested elsewhere.
    """

    if not isinstance(value, dict):
        return None
    for path in NOTE_ID_PATHS:
        node: Any = value
        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
        if not isinstance(node, dict):
            continue
        for key in NOTE_ID_KEYS:
            candidate = node.get(key)
            if isinstance(candidate, str) and candidate.strip():
                return candidate.strip()
    return None


def summarize_request(action: str, body: dict[str, Any]) -> dict[str, Any]:
    summary: dict[str, Any] = {"action": action}
    if isinstance(body.get("noteId"), str):
        summary["noteId"] = body["noteId"]
    if isinstance(body.get("fileType"), int):
        summary["fileType"] = body["fileType"]
    for key in ("url", "fileName"):
        if isinstance(body.get(key), str):
            summary[key] = body[key]
    note_body = body.get("body")
    if isinstance(note_body, dict) and isinstance(note_body.get("content"), list):
        summary["bodyBlocks"] = len(note_body["content"])
    if isinstance(body.get("settings"), dict):
        summary["hasSettings"] = True
    return summary


class NotesRouter(ActionRouter):
    """Summary: Dispatches note actions to the Mowen HTTP API.

    Importance: Health stays local so probing never spends API quota.
    Alternatives: Probe the API with a read call.
    """

    domain = "notes"
    adapter_name = "mowen-openapi"
    payload_models = NOTES_PAYLOADS

    def __init__(
        self,
        config: AdapterConfig,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(config)
        self._clock = clock
        self._sleep = sleep

    @property
    def supported_actions(self) -> list[str]:
        return [*self.payload_models, *ACTION_ALIASES]

    def dispatch(self, action: str, payload: dict[str, Any], envelope: RequestEnvelope) -> RouterResult:
        """Summary: Map aliases, reject unavailable actions, then dispatch.

        Importance: Responses report the caller's action and the mapped one.
        Alternatives: Expose only canonical action names.
        """

        mapped = ACTION_ALIASES.get(action, action)
        if mapped in UNSUPPORTED_ACTIONS:
            result = self.failure(mapped, EXIT_VALIDATION, unsupported_action_message(mapped), "validation")
        else:
            result = super().dispatch(mapped, payload, envelope)
        return RouterResult(
            exit_code=result.exit_code,
            body={**result.body, "action": action, "mappedAction": mapped},
        )

    def settings_for(self, payload: NotesPayload) -> NotesSettings:
        state_dir = Path(payload.state_dir).expanduser() if payload.state_dir else self.config.resolve_state_dir()
        base_url = (payload.base_url or self.config.notes_base_url).rstrip("/")
        return NotesSettings(
            api_key=payload.api_key or self.config.notes_api_key,
            base_url=base_url,
            timeout_ms=payload.timeout_ms or self.config.notes_timeout_ms,
            min_interval_ms=payload.min_interval_ms or self.config.notes_min_interval_ms,
            state_dir=state_dir,
            user_agent=self.config.notes_user_agent,
        )

    def handle(self, action: str, parsed: ActionPayload, envelope: RequestEnvelope) -> RouterResult:
        payload = cast(NotesPayload, parsed)
        settings = self.settings_for(payload)
        if action == "health":
            return self.health(action, settings)
        if not settings.api_key:
            return self.failure(
                action,
                EXIT_VALIDATION,
                "Missing API key. Set OPSBRIDGE_NOTES_API_KEY or payload.apiKey",
                "validation",
            )
        endpoint = ENDPOINTS[action]
        request_body = cast(NoteWritePayload, payload).build_request()
        limiter = RateLimiter(settings.state_dir, clock=self._clock, sleep=self._sleep)
        rate_limit = limiter.acquire(endpoint.rate_limit_key, settings.min_interval_ms)
        api: dict[str, Any] = {
            "method": "POST",
            "path": endpoint.path,
            "baseUrl": settings.base_url,
            "timeoutMs": settings.timeout_ms,
        }
        try:
            response = post_json(
                f"{settings.base_url}{endpoint.path}",
                request_body,
                headers={
                    "Authorization": f"Bearer {settings.api_key}",
                    "User-Agent": settings.user_agent,
                },
                timeout_ms=settings.timeout_ms,
            )
        except TransportError as exc:
            return self.failure(
                action,
                EXIT_BACKEND,
                str(exc),
                "transport",
                timedOut=exc.timed_out,
                api={**api, "durationMs": exc.duration_ms},
                rateLimit=rate_limit.to_json(),
                request={"summary": summarize_request(action, request_body)},
            )
        return self.from_response(action, response, api, rate_limit.to_json(), request_body)

    def from_response(
        self,
        action: str,
        response: HttpResult,
        api: dict[str, Any],
        rate_limit: dict[str, Any],
        request_body: dict[str, Any],
    ) -> RouterResult:
        response_json, parse_error = parse_json_output(response.text)
        fields: dict[str, Any] = {
            "noteId": extract_note_id(response_json),
            "api": {
                **api,
                "status": response.status,
                "statusText": response.reason,
                "durationMs": response.duration_ms,
                "headers": response.headers,
            },
            "rateLimit": rate_limit,
            "request": {"summary": summarize_request(action, request_body)},
            "response": {
                "json": response_json,
                "text": response.text if response_json is None else None,
                "jsonParseError": parse_error,
            },
        }
        if response.ok:
            return self.success(action, **fields)
        return self.failure(
            action,
            EXIT_BACKEND,
            f"HTTP {response.status} {response.reason}".strip(),
            "backend",
            status=response.status,
            **fields,
        )

    def health(self, action: str, settings: NotesSettings) -> RouterResult:
        """Summary: Report local configuration without any network call."""

        fields = {
            "configured": {"apiKey": bool(settings.api_key), "baseUrl": bool(settings.base_url)},
            "baseUrl": settings.base_url,
            "timeoutMs": settings.timeout_ms,
            "rateLimit": {"minIntervalMs": settings.min_interval_ms, "stateDir": str(settings.state_dir)},
        }
        if settings.api_key:
            return self.success(
                action,
                note="Notes adapter is configured. Health is local-only to avoid consuming API quota.",
                **fields,
            )
        return self.failure(
            action,
            EXIT_VALIDATION,
            "Set OPSBRIDGE_NOTES_API_KEY (or payload.apiKey) to enable notes API calls.",
            "validation",
            **fields,
        )
