"""Summary: Tests for the request/response envelope codec.

Importance: Every adapter depends on the same parsing and error classification.
Alternatives: Test envelope handling only through full adapter runs.
"""

from __future__ import annotations

import json

import pytest

from opsbridge.envelope import EnvelopeError, build_response, dump_response, parse_envelope


def test_parse_envelope_reads_aliases() -> None:
    """Summary: Verify camelCase wire fields map onto the model.

    Importance: Callers send `idempotencyKey` and `requestId`.
    Alternatives: Require snake_case on the wire.
    """

    envelope = parse_envelope(
        json.dumps(
            {
                "version": 1,
                "domain": "mail",
                "action": " send_message ",
                "payload": {"rawMessage": "hi"},
                "idempotencyKey": "k-1",
                "requestId": "r-1",
                "meta": {"tool": "test"},
            }
        ),
        expected_domain="mail",
    )
    assert envelope.action == "send_message"
    assert envelope.idempotency_key == "k-1"
    assert envelope.request_id == "r-1"
    assert envelope.payload == {"rawMessage": "hi"}


@pytest.mark.parametrize("raw", ["", "   ", "{not json", "[1, 2]"])
def test_parse_envelope_flags_malformed_input(raw: str) -> None:
    with pytest.raises(EnvelopeError) as excinfo:
        parse_envelope(raw, expected_domain="mail")
    assert excinfo.value.kind == "malformed"


@pytest.mark.parametrize(
    "document",
    [
        {"domain": "mail"},
        {"action": ""},
        {"action": "health", "payload": [1]},
        {"action": "health", "version": 2},
        {"action": "health", "domain": "calendar"},
    ],
)
def test_parse_envelope_flags_invalid_envelopes(document: dict) -> None:
    """Summary: Ensure structurally invalid envelopes are validation errors.

    Importance: Missing action, bad payload, wrong version, and wrong domain all exit 2.
    Alternatives: Treat every parse problem as malformed.
    """

    with pytest.raises(EnvelopeError) as excinfo:
        parse_envelope(json.dumps(document), expected_domain="mail")
    assert excinfo.value.kind == "validation"


def test_missing_payload_defaults_to_empty_object() -> None:
    envelope = parse_envelope("{\"action\": \"health\"}", expected_domain="notes")
    assert envelope.payload == {}
    assert envelope.domain is None


def test_build_response_drops_none_and_keeps_extras() -> None:
    """Summary: Verify response construction is compact and extensible.

    Importance: Domain results ride along as extra fields.
    Alternatives: Emit explicit nulls for every optional field.
    """

    body = build_response("mail", "health", True, adapter="himalaya", data={"x": 1}, error=None)
    assert body == {"ok": True, "domain": "mail", "action": "health", "adapter": "himalaya", "data": {"x": 1}}
    line = dump_response(body)
    assert "\n" not in line
    assert json.loads(line) == body
