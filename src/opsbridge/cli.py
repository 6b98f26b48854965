"""Summary: Command-line interface and console-script entrypoints for OpsBridge.

Importance: Exposes the adapters as executables and gives operators a way to call them by hand.
Alternatives: Use a CLI framework like Typer or Click.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from opsbridge.adapter import build_router, configure_logging, main as adapter_main
from opsbridge.client import AdapterClient, is_destructive
from opsbridge.config import AdapterConfig
from opsbridge.envelope import DOMAINS, EXIT_BACKEND, EXIT_OK, EXIT_VALIDATION


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser."""

    parser = argparse.ArgumentParser(description="OpsBridge CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    adapter = subparsers.add_parser("adapter", help="Run a domain adapter on stdin/stdout")
    adapter.add_argument("domain", choices=DOMAINS)

    call = subparsers.add_parser("call", help="Invoke an adapter action")
    call.add_argument("domain", choices=DOMAINS)
    call.add_argument("action", type=str)
    call.add_argument("--payload", type=str, default=None, help="Payload as a JSON object")
    call.add_argument("--payload-file", type=str, default=None)
    call.add_argument("--idempotency-key", type=str, default=None)
    call.add_argument("--request-id", type=str, default=None)
    call.add_argument("--timeout-ms", type=int, default=None)
    call.add_argument("--confirm", action="store_true", help="Execute destructive actions")

    actions = subparsers.add_parser("actions", help="List supported actions")
    actions.add_argument("domain", nargs="?", choices=DOMAINS, default=None)

    return parser


def load_payload(text: str | None, path: str | None) -> dict[str, Any]:
    if path:
        text = Path(path).read_text(encoding="utf-8")
    if not text:
        return {}
    payload = json.loads(text)
    if not isinstance(payload, dict):
        raise ValueError("payload must be a JSON object")
    return payload


def preview_destructive(client: AdapterClient, args: argparse.Namespace, payload: dict[str, Any]) -> dict[str, Any]:
    """Summary: Describe a destructive call without running it.

    Importance: Calendar deletes show the event that would be removed.
    Alternatives: Refuse destructive actions from the CLI entirely.
    """

    preview: dict[str, Any] = {
        "ok": True,
        "dryRun": True,
        "domain": args.domain,
        "action": args.action,
        "payload": payload,
        "hint": "Re-run with --confirm to execute.",
    }
    if args.domain == "calendar" and args.action == "delete_event":
        lookup = client.invoke("calendar", "get_event", payload, timeout_ms=args.timeout_ms)
        preview["target"] = (lookup.response or {}).get("data", {}).get("event") if lookup.ok else None
        if not lookup.ok:
            preview["ok"] = False
            preview["error"] = lookup.error
    return preview


def run_call(config: AdapterConfig, args: argparse.Namespace) -> int:
    try:
        payload = load_payload(args.payload, args.payload_file)
    except (OSError, ValueError) as exc:
        print(json.dumps({"ok": False, "error": f"invalid payload: {exc}"}))
        return EXIT_VALIDATION
    client = AdapterClient(config)
    if is_destructive(args.domain, args.action) and not args.confirm:
        preview = preview_destructive(client, args, payload)
        print(json.dumps(preview, indent=2, ensure_ascii=False))
        return EXIT_OK if preview["ok"] else EXIT_BACKEND
    result = client.invoke(
        args.domain,
        args.action,
        payload,
        idempotency_key=args.idempotency_key,
        request_id=args.request_id,
        timeout_ms=args.timeout_ms,
    )
    print(json.dumps(result.to_json(), indent=2, ensure_ascii=False))
    if result.exit_code is None:
        return EXIT_BACKEND
    return result.exit_code


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments."""

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "adapter":
        sys.exit(adapter_main(args.domain))

    config = AdapterConfig.from_env()
    configure_logging(config)

    if args.command == "call":
        sys.exit(run_call(config, args))

    if args.command == "actions":
        domains = [args.domain] if args.domain else list(DOMAINS)
        for domain in domains:
            router = build_router(domain, config)
            print(f"{domain}: {', '.join(router.supported_actions)}")
        return


def mail_adapter() -> None:
    sys.exit(adapter_main("mail"))


def calendar_adapter() -> None:
    sys.exit(adapter_main("calendar"))


def notes_adapter() -> None:
    sys.exit(adapter_main("notes"))


if __name__ == "__main__":
    run_cli()
