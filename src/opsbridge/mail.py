"""Summary: Mail action router backed by the himalaya CLI.

Importance: Turns mail envelopes into bounded himalaya invocations and normalizes their output.
Alternatives: Speak IMAP/SMTP directly from Python.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

from opsbridge.config import AdapterConfig
from opsbridge.envelope import EXIT_BACKEND, EXIT_VALIDATION, RequestEnvelope
from opsbridge.executor import CommandResult, SpawnError, parse_json_output, run_command, truncate
from opsbridge.models import RouterResult
from opsbridge.payloads import (
    MAIL_PAYLOADS,
    ActionPayload,
    ArchivePayload,
    DeleteMessagesPayload,
    DraftReplyPayload,
    GetMessagePayload,
    LabelPayload,
    ListMessagesPayload,
    MailHealthPayload,
    MailPayload,
    MarkReadPayload,
    PurgeFolderPayload,
    SendMessagePayload,
)
from opsbridge.router import ActionRouter, PayloadError
from opsbridge.storage.idempotency import IdempotencyConflict, IdempotencyStore, build_entry_key, content_hash


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MailSettings:
    """Summary: Effective mail settings after payload overrides."""

    binary: str
    config_path: str | None
    account: str | None
    folder: str
    archive_folder: str
    timeout_ms: int
    state_dir: Path

    def to_json(self) -> dict[str, Any]:
        return {
            "binary": self.binary,
            "configPath": self.config_path,
            "account": self.account,
            "folder": self.folder,
            "timeoutMs": self.timeout_ms,
        }


@dataclass(frozen=True)
class HimalayaRun:
    """Summary: One himalaya invocation with its parsed stdout."""

    command: CommandResult
    stdout_json: Any
    stdout_json_error: str | None

    @property
    def ok(self) -> bool:
        return self.command.exit_code == 0

    def result_block(self) -> dict[str, Any]:
        """Summary: Build the `result` field shared by every mail response.

        Importance: Raw stdout is echoed only when it did not parse as JSON.
        Alternatives: Always echo stdout and let callers parse it.
        """

        block: dict[str, Any] = {"exec": self.command.exec_info(), "stdoutJson": self.stdout_json}
        if self.stdout_json_error:
            block["stdoutJsonError"] = self.stdout_json_error
        if self.command.stderr:
            block["stderr"] = truncate(self.command.stderr)
        if self.stdout_json is None:
            block["stdoutRaw"] = self.command.stdout
        return block


def default_himalaya_config_path() -> Path:
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "himalaya" / "config.toml"
    if sys.platform == "win32":
        app_data = os.getenv("APPDATA")
        root = Path(app_data) if app_data else home / "AppData" / "Roaming"
        return root / "himalaya" / "config.toml"
    return home / ".config" / "himalaya" / "config.toml"


def with_account_arg(subcommand: list[str], account: str | None) -> list[str]:
    """Summary: Insert `-a <account>` after the two-word subcommand."""

    if not account:
        return list(subcommand)
    insert_at = 2 if len(subcommand) >= 2 else len(subcommand)
    return [*subcommand[:insert_at], "-a", account, *subcommand[insert_at:]]


def headers_to_args(headers: Any) -> list[str]:
    if isinstance(headers, list):
        return [arg for entry in headers if isinstance(entry, str) for arg in ("-H", entry)]
    if isinstance(headers, dict):
        return [
            arg
            for key, value in headers.items()
            if isinstance(key, str) and isinstance(value, str)
            for arg in ("-H", f"{key}:{value}")
        ]
    return []


class HimalayaClient:
    """Summary: Runs himalaya with the adapter's global arguments.

    Importance: Every call gets JSON output, the config path, quiet mode, and a timeout.
    Alternatives: Build full argv lists inside each handler.
    """

    def __init__(self, settings: MailSettings) -> None:
        self.settings = settings

    def global_args(self) -> list[str]:
        args = ["-o", "json"]
        if self.settings.config_path:
            args.extend(["-c", self.settings.config_path])
        args.append("--quiet")
        return args

    def run(
        self,
        subcommand: list[str],
        include_account: bool = True,
        stdin_text: str | None = None,
    ) -> HimalayaRun:
        tail = with_account_arg(subcommand, self.settings.account) if include_account else list(subcommand)
        argv = [self.settings.binary, *self.global_args(), *tail]
        command = run_command(argv, timeout_ms=self.settings.timeout_ms, stdin_text=stdin_text)
        stdout_json, stdout_json_error = parse_json_output(command.stdout)
        return HimalayaRun(command=command, stdout_json=stdout_json, stdout_json_error=stdout_json_error)

    def version(self) -> CommandResult:
        return run_command([self.settings.binary, "--version"], timeout_ms=self.settings.timeout_ms)


class MailRouter(ActionRouter):
    """Summary: Dispatches mail actions to himalaya subcommands.

    Importance: Sends are idempotent per key; batch actions run as one invocation.
    Alternatives: One invocation per message id with per-id results.
    """

    domain = "mail"
    adapter_name = "himalaya"
    payload_models = MAIL_PAYLOADS

    def settings_for(self, payload: MailPayload) -> MailSettings:
        state_dir = Path(payload.state_dir).expanduser() if payload.state_dir else self.config.resolve_state_dir()
        return MailSettings(
            binary=self.config.mail_binary,
            config_path=payload.config_path or self.config.mail_config_path,
            account=payload.account or self.config.mail_account,
            folder=payload.folder or self.config.mail_folder,
            archive_folder=self.config.mail_archive_folder,
            timeout_ms=payload.timeout_ms or self.config.mail_timeout_ms,
            state_dir=state_dir,
        )

    def handle(self, action: str, parsed: ActionPayload, envelope: RequestEnvelope) -> RouterResult:
        payload = cast(MailPayload, parsed)
        settings = self.settings_for(payload)
        client = HimalayaClient(settings)
        try:
            if action == "health":
                return self.health(action, client, payload)
            if action == "send_message":
                return self.send_message(action, client, payload, envelope)
            subcommand, request, include_account = self.build_command(action, settings, payload)
            run = client.run(subcommand, include_account=include_account)
        except SpawnError as exc:
            return self.failure(
                action,
                EXIT_BACKEND,
                str(exc),
                "transport",
                settings=settings.to_json(),
            )
        return self.from_run(action, run, request=request)

    def build_command(
        self,
        action: str,
        settings: MailSettings,
        payload: ActionPayload,
    ) -> tuple[list[str], dict[str, Any] | None, bool]:
        """Summary: Map an action and its payload to a himalaya subcommand.

        Importance: Keeps argv construction pure so it can be read in one place.
        Alternatives: Spread subcommand building across handler methods.
        """

        folder = settings.folder
        if action == "list_accounts":
            return ["account", "list"], None, False
        if action == "list_folders":
            return ["folder", "list"], None, True
        if isinstance(payload, ListMessagesPayload):
            query = payload.query_args()
            args = ["envelope", "list", "-f", folder, "-p", str(payload.page), "-s", str(payload.page_size), *query]
            request = {"folder": folder, "page": payload.page, "pageSize": payload.page_size, "query": query}
            return args, request, True
        if isinstance(payload, GetMessagePayload):
            args = ["message", "read", "-f", folder]
            if payload.preview:
                args.append("-p")
            if payload.no_headers:
                args.append("--no-headers")
            args.extend(headers_to_args(payload.headers))
            args.extend(payload.ids)
            return args, {"folder": folder, "ids": payload.ids}, True
        if isinstance(payload, DraftReplyPayload):
            args = ["template", "reply", "-f", folder]
            if payload.all_recipients:
                args.append("-A")
            args.extend(headers_to_args(payload.headers))
            args.append(str(payload.id))
            if payload.body:
                args.append(payload.body)
            return args, {"id": payload.id, "folder": folder}, True
        if isinstance(payload, ArchivePayload):
            target = payload.archive_folder or settings.archive_folder
            args = ["message", "move", "-f", folder, target, *payload.ids]
            return args, {"sourceFolder": folder, "targetFolder": target, "ids": payload.ids}, True
        if isinstance(payload, DeleteMessagesPayload):
            return ["message", "delete", "-f", folder, *payload.ids], {"folder": folder, "ids": payload.ids}, True
        if isinstance(payload, PurgeFolderPayload):
            target = payload.target_folder
            return ["folder", "purge", "-y", target], {"folder": target}, True
        if isinstance(payload, MarkReadPayload):
            mode = "add" if payload.read else "remove"
            args = ["flag", mode, "-f", folder, "seen", *payload.ids]
            return args, {"folder": folder, "ids": payload.ids, "read": payload.read}, True
        if isinstance(payload, LabelPayload):
            mode = payload.flag_mode
            args = ["flag", mode, "-f", folder, *payload.flags, *payload.ids]
            return args, {"folder": folder, "ids": payload.ids, "mode": mode, "flags": payload.flags}, True
        raise PayloadError(f"unsupported action '{action}'")

    def from_run(self, action: str, run: HimalayaRun, **fields: Any) -> RouterResult:
        if run.ok:
            return self.success(action, result=run.result_block(), **fields)
        error = run.command.stderr.strip() or f"himalaya exited with code {run.command.exit_code}"
        if run.command.killed:
            error = f"himalaya timed out after {run.command.timeout_ms} ms"
        return self.failure(action, EXIT_BACKEND, error, "backend", result=run.result_block(), **fields)

    def health(self, action: str, client: HimalayaClient, payload: MailHealthPayload) -> RouterResult:
        """Summary: Check the binary, the config file, and optionally a one-item listing.

        Importance: Lets hosts verify mail wiring without touching any message.
        Alternatives: Always run a live listing.
        """

        settings = client.settings
        version = client.version()
        config_path = Path(settings.config_path).expanduser() if settings.config_path else default_himalaya_config_path()
        checks = {
            "binaryVersion": version.stdout.strip() or None,
            "binaryOk": version.exit_code == 0,
            "configPathChecked": str(config_path),
            "configPathExists": config_path.exists(),
        }
        probe: dict[str, Any] = {"requested": payload.deep}
        if payload.deep:
            probe["ok"] = False
            if settings.account or settings.config_path:
                run = client.run(["envelope", "list", "-f", settings.folder, "-s", "1"])
                probe["ok"] = run.ok
                probe["result"] = run.result_block()
        if not checks["binaryOk"]:
            return self.failure(
                action,
                EXIT_BACKEND,
                version.stderr.strip() or "himalaya --version failed",
                "backend",
                settings=settings.to_json(),
                checks=checks,
                probe=probe,
            )
        return self.success(action, settings=settings.to_json(), checks=checks, probe=probe)

    def send_message(
        self,
        action: str,
        client: HimalayaClient,
        payload: SendMessagePayload,
        envelope: RequestEnvelope,
    ) -> RouterResult:
        """Summary: Send a raw message or template with idempotency protection.

        Importance: A duplicate key skips the backend; a conflicting key is rejected.
        Alternatives: Always send and let recipients deduplicate.
        """

        settings = client.settings
        mode = payload.mode
        content = payload.content
        digest = content_hash(content)
        request = {"mode": mode, "bytes": len(content.encode("utf-8"))}
        key = envelope.idempotency_key or payload.idempotency_key
        if payload.require_idempotency_key and not key:
            raise PayloadError("idempotencyKey required (payload.requireIdempotencyKey=true)")

        store = IdempotencyStore(settings.state_dir)
        entry_key = build_entry_key(settings.account, mode, key) if key else None
        if entry_key:
            try:
                check = store.require_fresh_or_duplicate(entry_key, digest)
            except IdempotencyConflict as exc:
                return self.failure(
                    action,
                    EXIT_VALIDATION,
                    str(exc),
                    "idempotency_conflict",
                    idempotency={
                        "key": key,
                        "storePath": str(store.path),
                        "conflict": True,
                        "existingContentHash": exc.existing_hash,
                        "contentHash": exc.content_hash,
                    },
                )
            if check.is_duplicate:
                logger.info("Skipping duplicate send for %s.", entry_key)
                return self.success(
                    action,
                    request=request,
                    idempotency={
                        "key": key,
                        "storePath": str(store.path),
                        "duplicate": True,
                        "skippedSend": True,
                        "entryKey": entry_key,
                        "existing": check.prior_record,
                    },
                    result={
                        "exec": {
                            "code": 0,
                            "signal": None,
                            "killed": False,
                            "timeoutMs": settings.timeout_ms,
                            "durationMs": 0,
                        }
                    },
                )

        subcommand = ["template", "send"] if mode == "template" else ["message", "send"]
        run = client.run(subcommand, stdin_text=content)
        idempotency = None
        if entry_key:
            if run.ok:
                store.record(
                    entry_key,
                    digest,
                    {
                        "idempotencyKey": key,
                        "account": settings.account,
                        "mode": mode,
                        "bytes": request["bytes"],
                        "exec": run.command.exec_info(),
                        "stdoutJson": run.stdout_json,
                    },
                )
            idempotency = {"key": key, "duplicate": False, "storePath": str(store.path), "contentHash": digest}
        return self.from_run(action, run, request=request, idempotency=idempotency)
