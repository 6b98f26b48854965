"""Summary: JSON request/response envelope codec.

Importance: Defines the one stable contract between callers and every domain adapter.
Alternatives: Exchange ad hoc dictionaries and validate fields at each use site.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError


DOMAINS = ("mail", "calendar", "notes")

EXIT_OK = 0
EXIT_VALIDATION = 2
EXIT_BACKEND = 3
EXIT_CRASH = 99


class EnvelopeError(ValueError):
    """Summary: Raised when stdin does not hold a usable request envelope.

    Importance: `kind` separates malformed JSON from a structurally invalid envelope.
    Alternatives: Use two unrelated exception classes.
    """

    def __init__(self, message: str, kind: str = "validation") -> None:
        super().__init__(message)
        self.kind = kind


class RequestEnvelope(BaseModel):
    """Summary: Immutable request envelope read from adapter stdin.

    Importance: Carries domain, action, payload, and idempotency key into dispatch.
    Alternatives: Keep the parsed JSON dictionary and index it directly.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    version: Literal[1] = 1
    domain: str | None = None
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = Field(default=None, alias="idempotencyKey")
    request_id: str | None = Field(default=None, alias="requestId")
    meta: dict[str, Any] = Field(default_factory=dict)


class ResponseEnvelope(BaseModel):
    """Summary: Response envelope written to adapter stdout.

    Importance: Fixes the common fields while letting each domain attach its own result shape.
    Alternatives: Build plain dictionaries in every router.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    ok: bool
    domain: str
    action: str | None = None
    adapter: str | None = None


def parse_envelope(raw_text: str, expected_domain: str | None = None) -> RequestEnvelope:
    """Summary: Parse and validate one request envelope.

    Importance: Rejects malformed input before any backend work starts.
    Alternatives: Let pydantic errors propagate to the entrypoint unchanged.
    """

    text = (raw_text or "").strip()
    if not text:
        raise EnvelopeError("empty stdin; expected JSON envelope", kind="malformed")
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise EnvelopeError(f"invalid JSON envelope: {exc}", kind="malformed") from exc
    if not isinstance(raw, dict):
        raise EnvelopeError("expected JSON object envelope", kind="malformed")

    action = raw.get("action")
    if not isinstance(action, str) or not action.strip():
        raise EnvelopeError("envelope.action required")
    payload = raw.get("payload")
    if payload is None:
        raw = {**raw, "payload": {}}
    elif not isinstance(payload, dict):
        raise EnvelopeError("envelope.payload must be a JSON object")
    raw = {**raw, "action": action.strip()}

    try:
        envelope = RequestEnvelope.model_validate(raw)
    except ValidationError as exc:
        raise EnvelopeError(f"invalid envelope: {format_validation_error(exc)}") from exc

    if envelope.domain and expected_domain and envelope.domain != expected_domain:
        raise EnvelopeError(
            f"unexpected domain '{envelope.domain}', expected '{expected_domain}'"
        )
    return envelope


def build_response(
    domain: str,
    action: str | None,
    ok: bool,
    adapter: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Summary: Construct a response envelope as a plain dictionary.

    Importance: Pure construction; `None` extras are dropped so envelopes stay compact.
    Alternatives: Mutate a shared response dictionary as work progresses.
    """

    fields = {key: value for key, value in extra.items() if value is not None}
    response = ResponseEnvelope(ok=ok, domain=domain, action=action, adapter=adapter, **fields)
    return response.model_dump(exclude_none=True)


def dump_response(body: dict[str, Any]) -> str:
    """Summary: Serialize a response body to a single JSON line."""

    return json.dumps(body, ensure_ascii=False, default=str)


def format_validation_error(exc: ValidationError) -> str:
    """Summary: Flatten a pydantic error into one readable line.

    Importance: Envelope `error` fields are human-readable strings, not error trees.
    Alternatives: Return `exc.errors()` verbatim.
    """

    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)
