"""Summary: Tests for configuration loading.

Importance: Ensures defaults, JSON config, .env, and environment overrides behave correctly.
Alternatives: Validate configuration manually during runtime.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

from opsbridge.config import AdapterConfig, load_defaults, load_dotenv


def test_load_defaults_reads_json(tmp_path: Path) -> None:
    """Summary: Verify defaults are parsed from JSON.

    Importance: Confirms the config file can hold adapter settings.
    Alternatives: Hardcode defaults in the test.
    """

    defaults_path = tmp_path / "defaults.json"
    defaults_path.write_text("{\"mail_folder\": \"Work\", \"notes_timeout_ms\": 5000}", encoding="utf-8")
    defaults = load_defaults(defaults_path)
    assert defaults["mail_folder"] == "Work"
    assert defaults["notes_timeout_ms"] == "5000"


def test_load_defaults_rejects_missing_and_non_object(tmp_path: Path) -> None:
    """Summary: Ensure broken defaults files fail loudly.

    Importance: A typo in the config path should not silently fall back to defaults.
    Alternatives: Ignore unreadable defaults files.
    """

    with pytest.raises(FileNotFoundError):
        load_defaults(tmp_path / "missing.json")
    listing = tmp_path / "list.json"
    listing.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_defaults(listing)


def test_load_dotenv_sets_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Ensure .env values populate environment variables.

    Importance: Validates local secret loading without external tools.
    Alternatives: Assume OS environment is always set.
    """

    env_path = tmp_path / ".env"
    env_path.write_text("# comment\nOPSBRIDGE_NOTES_API_KEY=secret\n", encoding="utf-8")
    monkeypatch.delenv("OPSBRIDGE_NOTES_API_KEY", raising=False)
    load_dotenv(env_path)
    assert os.getenv("OPSBRIDGE_NOTES_API_KEY") == "secret"
    monkeypatch.delenv("OPSBRIDGE_NOTES_API_KEY", raising=False)


def test_from_env_layers_defaults_file_and_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify environment variables override the defaults file.

    Importance: Operators set secrets in the environment and shared settings in JSON.
    Alternatives: Read only one configuration source.
    """

    defaults_path = tmp_path / "defaults.json"
    defaults_path.write_text(
        "{\"mail_account\": \"work\", \"notes_min_interval_ms\": \"2000\", \"debug_dumps\": \"yes\"}",
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OPSBRIDGE_DEFAULTS_PATH", str(defaults_path))
    monkeypatch.setenv("OPSBRIDGE_MAIL_ACCOUNT", "personal")
    monkeypatch.delenv("OPSBRIDGE_NOTES_MIN_INTERVAL_MS", raising=False)
    monkeypatch.delenv("OPSBRIDGE_DEBUG_DUMPS", raising=False)

    config = AdapterConfig.from_env()

    assert config.mail_account == "personal"
    assert config.notes_min_interval_ms == 2000
    assert config.debug_dumps is True
    assert config.mail_folder == "INBOX"


def test_from_values_normalizes_fields() -> None:
    config = AdapterConfig.from_values(
        {
            "notes_base_url": "https://notes.example.com/",
            "mail_timeout_ms": "-5",
            "calendar_backend": "FILE",
            "log_level": "debug",
            "mail_account": "  ",
        }
    )
    assert config.notes_base_url == "https://notes.example.com"
    assert config.mail_timeout_ms == 30_000
    assert config.calendar_backend == "file"
    assert config.log_level == "DEBUG"
    assert config.mail_account is None


def test_adapter_command_defaults_to_module_entrypoint() -> None:
    """Summary: Ensure unset adapter commands run the bundled adapter module.

    Importance: Hosts work out of the box without configuring executables.
    Alternatives: Require a command for every domain.
    """

    config = AdapterConfig.from_values({"notes_adapter_command": "/opt/bin/notes-adapter --verbose"})
    assert config.adapter_command("mail") == [sys.executable, "-m", "opsbridge.cli", "adapter", "mail"]
    assert config.adapter_command("notes") == ["/opt/bin/notes-adapter", "--verbose"]


def test_resolve_state_dir_prefers_configured_path(tmp_path: Path) -> None:
    config = AdapterConfig.from_values({"state_dir": str(tmp_path / "state")})
    assert config.resolve_state_dir() == tmp_path / "state"
    assert AdapterConfig.from_values({}).resolve_state_dir().name == "opsbridge"
