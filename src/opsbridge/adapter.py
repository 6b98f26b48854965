"""Summary: Process entrypoint shared by the domain adapters.

Importance: Reads one envelope, dispatches it, writes one JSON line, and maps the outcome to an exit code.
Alternatives: Run each router as a long-lived service.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, TextIO

from opsbridge.config import AdapterConfig
from opsbridge.envelope import (
    EXIT_CRASH,
    EXIT_VALIDATION,
    EnvelopeError,
    RequestEnvelope,
    build_response,
    dump_response,
    parse_envelope,
)
from opsbridge.models import RouterResult
from opsbridge.router import ActionRouter
from opsbridge.storage.debug_dump import debug_id, debug_path, write_debug_dump


logger = logging.getLogger(__name__)


def configure_logging(config: AdapterConfig) -> None:
    """Summary: Send log records to stderr at the configured level.

    Importance: Stdout belongs to the JSON envelope.
    Alternatives: Write logs to a file under the state directory.
    """

    level = getattr(logging, config.log_level, logging.WARNING)
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")


def build_router(domain: str, config: AdapterConfig) -> ActionRouter:
    """Summary: Construct the router for a domain.

    Importance: Imports stay local so one adapter never loads another domain's backend.
    Alternatives: Register routers in a module-level plugin table.
    """

    if domain == "mail":
        from opsbridge.mail import MailRouter

        return MailRouter(config)
    if domain == "calendar":
        from opsbridge.calendar import CalendarRouter

        return CalendarRouter(config)
    if domain == "notes":
        from opsbridge.notes import NotesRouter

        return NotesRouter(config)
    raise ValueError(f"Unknown domain: {domain}")


def handle_request(router: ActionRouter, raw_text: str) -> tuple[RouterResult, RequestEnvelope | None]:
    """Summary: Turn raw stdin text into a router result.

    Importance: Every failure, including unexpected exceptions, becomes an envelope here.
    Alternatives: Let exceptions reach the interpreter and print tracebacks.
    """

    domain = router.domain
    try:
        envelope = parse_envelope(raw_text, expected_domain=domain)
    except EnvelopeError as exc:
        body = build_response(domain, None, False, adapter=router.adapter_name, error=str(exc), errorKind=exc.kind)
        return RouterResult(exit_code=EXIT_VALIDATION, body=body), None
    try:
        result = router.dispatch(envelope.action, envelope.payload, envelope)
    except Exception as exc:
        logger.exception("Adapter crash while handling %s.%s.", domain, envelope.action)
        body = build_response(
            domain,
            envelope.action,
            False,
            adapter=router.adapter_name,
            error=f"adapter crash: {exc}",
            errorKind="crash",
        )
        return RouterResult(exit_code=EXIT_CRASH, body=body), envelope
    return result, envelope


def run_adapter(
    router: ActionRouter,
    config: AdapterConfig,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> int:
    """Summary: Run one request/response cycle and return the exit code.

    Importance: Exactly one JSON object plus newline is written to stdout.
    Alternatives: Stream partial results as they arrive.
    """

    source = stdin if stdin is not None else sys.stdin
    sink = stdout if stdout is not None else sys.stdout
    try:
        raw_text = source.read()
    except (OSError, UnicodeDecodeError) as exc:
        raw_text = ""
        logger.warning("Could not read stdin: %s", exc)
    result, envelope = handle_request(router, raw_text)
    body = result.body
    if config.debug_dumps:
        body = _with_debug_dump(router.domain, config, envelope, raw_text, body)
    sink.write(dump_response(body) + "\n")
    sink.flush()
    return result.exit_code


def _with_debug_dump(
    domain: str,
    config: AdapterConfig,
    envelope: RequestEnvelope | None,
    raw_text: str,
    body: dict[str, Any],
) -> dict[str, Any]:
    action = envelope.action if envelope is not None else None
    key = envelope.idempotency_key if envelope is not None else None
    payload = envelope.payload if envelope is not None else {}
    dump_id = debug_id(domain, action, key, payload)
    path = debug_path(config.resolve_state_dir(), dump_id)
    request: Any = envelope.model_dump(by_alias=True) if envelope is not None else raw_text
    if not write_debug_dump(path, dump_id, request, body):
        return body
    return {**body, "debugPath": str(path)}


def main(domain: str, stdin: TextIO | None = None, stdout: TextIO | None = None) -> int:
    """Summary: Load configuration, build the router, and run one request.

    Importance: A broken configuration still yields an envelope on stdout.
    Alternatives: Let configuration errors print a traceback.
    """

    sink = stdout if stdout is not None else sys.stdout
    try:
        config = AdapterConfig.from_env()
    except (OSError, ValueError) as exc:
        body = build_response(domain, None, False, error=f"invalid configuration: {exc}", errorKind="crash")
        sink.write(dump_response(body) + "\n")
        sink.flush()
        return EXIT_CRASH
    configure_logging(config)
    return run_adapter(build_router(domain, config), config, stdin=stdin, stdout=sink)
