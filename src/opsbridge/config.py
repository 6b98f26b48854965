"""Summary: Adapter configuration for OpsBridge.

Importance: Centralizes defaults, JSON config, .env, and environment overrides for every adapter.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path


DEFAULT_VALUES: dict[str, str] = {
    "state_dir": "",
    "log_level": "WARNING",
    "debug_dumps": "false",
    "mail_binary": "himalaya",
    "mail_config_path": "",
    "mail_account": "",
    "mail_folder": "INBOX",
    "mail_archive_folder": "Archive",
    "mail_timeout_ms": "30000",
    "calendar_backend": "jxa",
    "calendar_osascript_bin": "/usr/bin/osascript",
    "calendar_timeout_ms": "20000",
    "calendar_default_calendar": "",
    "calendar_file_path": "",
    "notes_api_key": "",
    "notes_base_url": "https://open.mowen.cn",
    "notes_timeout_ms": "30000",
    "notes_min_interval_ms": "1100",
    "notes_user_agent": "opsbridge-notes-adapter/1",
    "mail_adapter_command": "",
    "calendar_adapter_command": "",
    "notes_adapter_command": "",
    "adapter_timeout_ms": "30000",
    "record_calls": "true",
    "max_output_chars": "4000",
}

ENV_PREFIX = "OPSBRIDGE_"


@dataclass(frozen=True)
class AdapterConfig:
    """Summary: Holds configuration values for adapters, state, and the caller client.

    Importance: Ensures every adapter derives settings from a single source of truth.
    Alternatives: Let each adapter read its own environment variables ad hoc.
    """

    state_dir: str | None
    log_level: str
    debug_dumps: bool
    mail_binary: str
    mail_config_path: str | None
    mail_account: str | None
    mail_folder: str
    mail_archive_folder: str
    mail_timeout_ms: int
    calendar_backend: str
    calendar_osascript_bin: str
    calendar_timeout_ms: int
    calendar_default_calendar: str | None
    calendar_file_path: str | None
    notes_api_key: str | None
    notes_base_url: str
    notes_timeout_ms: int
    notes_min_interval_ms: int
    notes_user_agent: str
    mail_adapter_command: str | None
    calendar_adapter_command: str | None
    notes_adapter_command: str | None
    adapter_timeout_ms: int
    record_calls: bool
    max_output_chars: int

    @staticmethod
    def from_env() -> "AdapterConfig":
        """Summary: Build configuration from defaults, JSON config, .env, and environment.

        Importance: Keeps every key defined in one defaults map while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        values = dict(DEFAULT_VALUES)
        explicit_path = os.getenv(f"{ENV_PREFIX}DEFAULTS_PATH")
        if explicit_path:
            values.update(load_defaults(Path(explicit_path)))
        else:
            fallback = Path("config") / "defaults.json"
            if fallback.exists():
                values.update(load_defaults(fallback))
        load_dotenv(Path(".env"))
        for key in DEFAULT_VALUES:
            override = os.getenv(f"{ENV_PREFIX}{key.upper()}")
            if override is not None:
                values[key] = override
        return AdapterConfig.from_values(values)

    @staticmethod
    def from_values(values: dict[str, str]) -> "AdapterConfig":
        """Summary: Build configuration from a flat key-value mapping.

        Importance: Gives tests and embedding hosts a config path without touching the environment.
        Alternatives: Require callers to pass every field to the constructor.
        """

        merged = {**DEFAULT_VALUES, **{key: str(value) for key, value in values.items()}}
        return AdapterConfig(
            state_dir=_optional(merged["state_dir"]),
            log_level=merged["log_level"].strip().upper() or "WARNING",
            debug_dumps=_parse_bool(merged["debug_dumps"]),
            mail_binary=merged["mail_binary"].strip() or "himalaya",
            mail_config_path=_optional(merged["mail_config_path"]),
            mail_account=_optional(merged["mail_account"]),
            mail_folder=merged["mail_folder"].strip() or "INBOX",
            mail_archive_folder=merged["mail_archive_folder"].strip() or "Archive",
            mail_timeout_ms=_parse_positive_int(merged["mail_timeout_ms"], 30_000),
            calendar_backend=merged["calendar_backend"].strip().lower() or "jxa",
            calendar_osascript_bin=merged["calendar_osascript_bin"].strip() or "/usr/bin/osascript",
            calendar_timeout_ms=_parse_positive_int(merged["calendar_timeout_ms"], 20_000),
            calendar_default_calendar=_optional(merged["calendar_default_calendar"]),
            calendar_file_path=_optional(merged["calendar_file_path"]),
            notes_api_key=_optional(merged["notes_api_key"]),
            notes_base_url=(merged["notes_base_url"].strip() or "https://open.mowen.cn").rstrip("/"),
            notes_timeout_ms=_parse_positive_int(merged["notes_timeout_ms"], 30_000),
            notes_min_interval_ms=_parse_positive_int(merged["notes_min_interval_ms"], 1_100),
            notes_user_agent=merged["notes_user_agent"].strip() or "opsbridge-notes-adapter/1",
            mail_adapter_command=_optional(merged["mail_adapter_command"]),
            calendar_adapter_command=_optional(merged["calendar_adapter_command"]),
            notes_adapter_command=_optional(merged["notes_adapter_command"]),
            adapter_timeout_ms=_parse_positive_int(merged["adapter_timeout_ms"], 30_000),
            record_calls=_parse_bool(merged["record_calls"]),
            max_output_chars=_parse_positive_int(merged["max_output_chars"], 4_000),
        )

    def resolve_state_dir(self) -> Path:
        """Summary: Resolve the writable state directory for adapter files.

        Importance: Idempotency, rate-limit, and debug files all live under this root.
        Alternatives: Keep state next to the adapter executable.
        """

        if self.state_dir:
            return Path(self.state_dir).expanduser()
        return default_state_dir()

    def adapter_command(self, domain: str) -> list[str]:
        """Summary: Resolve the argv used to spawn the adapter for a domain.

        Importance: Lets hosts point a domain at any executable honoring the envelope protocol.
        Alternatives: Hardcode the adapter module path in the client.
        """

        configured = {
            "mail": self.mail_adapter_command,
            "calendar": self.calendar_adapter_command,
            "notes": self.notes_adapter_command,
        }.get(domain)
        if configured:
            return shlex.split(configured)
        return [sys.executable, "-m", "opsbridge.cli", "adapter", domain]


def default_state_dir() -> Path:
    """Summary: Platform default state directory.

    Importance: Mirrors where desktop tools conventionally keep per-user state.
    Alternatives: Always use a dot-directory in the home folder.
    """

    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "opsbridge"
    if sys.platform == "win32":
        app_data = os.getenv("APPDATA")
        root = Path(app_data) if app_data else home / "AppData" / "Roaming"
        return root / "opsbridge"
    return home / ".local" / "state" / "opsbridge"


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Lets operators keep adapter settings in a key-value config file.
    Alternatives: Inline defaults in the AdapterConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Defaults file must contain a JSON object: {path}")
    return {str(key): "" if value is None else str(value) for key, value in raw.items()}


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps secrets such as the notes API key out of code.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def _optional(value: str) -> str | None:
    cleaned = value.strip()
    return cleaned or None


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_positive_int(value: str, fallback: int) -> int:
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return fallback
    return parsed if parsed > 0 else fallback
