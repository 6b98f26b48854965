"""Summary: Bounded subprocess and HTTP execution for adapter backends.

Importance: Every backend call goes through here, so no call can block past its timeout.
Alternatives: Use asyncio subprocesses or a third-party HTTP client.
"""

from __future__ import annotations

import http.client
import json
import logging
import os
import signal
import socket
import subprocess
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Mapping, Sequence


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30_000
DRAIN_GRACE_SECONDS = 1.0
RESPONSE_HEADERS = ("content-type", "x-request-id", "x-trace-id")


class SpawnError(RuntimeError):
    """Summary: Raised when an executable cannot be started at all.

    Importance: Separates "binary missing" from "binary ran and failed".
    Alternatives: Report spawn failures as a synthetic exit code.
    """

    def __init__(self, argv: Sequence[str], reason: str) -> None:
        super().__init__(f"failed to execute {argv[0] if argv else '<empty argv>'}: {reason}")
        self.argv = list(argv)
        self.reason = reason


class TransportError(RuntimeError):
    """Summary: Raised when an HTTP request fails before any response arrives.

    Importance: Lets routers report network failure distinctly from a non-2xx status.
    Alternatives: Fold transport failures into a fake HTTP status.
    """

    def __init__(self, message: str, timed_out: bool, duration_ms: int) -> None:
        super().__init__(message)
        self.timed_out = timed_out
        self.duration_ms = duration_ms


@dataclass(frozen=True)
class CommandResult:
    """Summary: Captured outcome of one subprocess run.

    Importance: Carries the diagnostics every failure envelope needs.
    Alternatives: Return subprocess.CompletedProcess directly.
    """

    argv: list[str]
    exit_code: int | None
    signal: str | None
    killed: bool
    stdout: str
    stderr: str
    duration_ms: int
    timeout_ms: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.killed

    def exec_info(self) -> dict[str, Any]:
        return {
            "code": self.exit_code,
            "signal": self.signal,
            "killed": self.killed,
            "timeoutMs": self.timeout_ms,
            "durationMs": self.duration_ms,
        }


@dataclass(frozen=True)
class HttpResult:
    """Summary: Captured outcome of one HTTP request that produced a response.

    Importance: Non-2xx responses are data, not exceptions, so routers can echo them.
    Alternatives: Raise on every non-2xx status.
    """

    status: int
    reason: str
    headers: dict[str, str]
    text: str
    duration_ms: int

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def run_command(
    argv: Sequence[str],
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    stdin_text: str | None = None,
) -> CommandResult:
    """Summary: Run a command with a hard wall-clock bound.

    Importance: Always returns captured output; only a failed spawn raises.
    Alternatives: Use subprocess.run(check=True) and handle CalledProcessError.
    """

    command = [str(part) for part in argv]
    merged_env = {**os.environ, **env} if env else None
    started = time.monotonic()
    try:
        process = subprocess.Popen(
            command,
            stdin=subprocess.PIPE if stdin_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=merged_env,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=hasattr(os, "killpg"),
        )
    except OSError as exc:
        raise SpawnError(command, exc.strerror or str(exc)) from exc

    killed = False
    try:
        stdout, stderr = process.communicate(input=stdin_text, timeout=timeout_ms / 1000)
    except subprocess.TimeoutExpired:
        logger.warning("Killing %s after %s ms.", command[0], timeout_ms)
        _kill_process_group(process)
        killed = True
        stdout, stderr = _drain(process)

    duration_ms = int((time.monotonic() - started) * 1000)
    exit_code, signal_name = _decode_returncode(process.returncode)
    logger.debug("Ran %s exit=%s signal=%s in %s ms.", command[0], exit_code, signal_name, duration_ms)
    return CommandResult(
        argv=command,
        exit_code=exit_code,
        signal=signal_name,
        killed=killed,
        stdout=stdout or "",
        stderr=stderr or "",
        duration_ms=duration_ms,
        timeout_ms=timeout_ms,
    )


def post_json(
    url: str,
    body: Any,
    headers: Mapping[str, str] | None = None,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> HttpResult:
    """Summary: Send a JSON POST request with a bounded duration.

    Importance: Gives HTTP backends the same timeout contract as subprocess backends.
    Alternatives: Use requests or httpx.
    """

    data = json.dumps(body).encode("utf-8")
    started = time.monotonic()
    try:
        request = urllib.request.Request(
            url,
            data=data,
            headers={"Content-Type": "application/json", **(headers or {})},
            method="POST",
        )
    except ValueError as exc:
        raise TransportError(f"invalid url {url!r}: {exc}", timed_out=False, duration_ms=0) from exc
    try:
        with urllib.request.urlopen(request, timeout=timeout_ms / 1000) as response:
            raw = response.read().decode("utf-8", errors="replace")
            status = response.status
            reason = response.reason or ""
            response_headers = response.headers
    except urllib.error.HTTPError as exc:
        raw = exc.read().decode("utf-8", errors="replace")
        status = exc.code
        reason = str(exc.reason or "")
        response_headers = exc.headers
    except (
        urllib.error.URLError,
        http.client.HTTPException,
        TimeoutError,
        socket.timeout,
        ConnectionError,
        ValueError,
    ) as exc:
        duration_ms = int((time.monotonic() - started) * 1000)
        timed_out = _is_timeout(exc)
        message = "request timed out" if timed_out else f"request failed: {exc}"
        raise TransportError(message, timed_out=timed_out, duration_ms=duration_ms) from exc

    duration_ms = int((time.monotonic() - started) * 1000)
    selected: dict[str, str] = {}
    if response_headers is not None:
        for name in RESPONSE_HEADERS:
            value = response_headers.get(name)
            if value:
                selected[name] = value
    return HttpResult(
        status=status,
        reason=reason,
        headers=selected,
        text=raw,
        duration_ms=duration_ms,
    )


def parse_json_output(text: str) -> tuple[Any, str | None]:
    """Summary: Parse trimmed backend output as JSON when present.

    Importance: Backends may print non-JSON text; the error is kept for diagnostics.
    Alternatives: Require strict JSON and fail the call otherwise.
    """

    trimmed = (text or "").strip()
    if not trimmed:
        return None, None
    try:
        return json.loads(trimmed), None
    except json.JSONDecodeError as exc:
        return None, str(exc)


def truncate(text: str | None, max_chars: int = 4_000) -> str | None:
    if not text:
        return None
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "…"


def _kill_process_group(process: subprocess.Popen[str]) -> None:
    # The child leads its own session, so its group id is its pid.
    if hasattr(os, "killpg"):
        try:
            os.killpg(process.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    process.kill()


def _drain(process: subprocess.Popen[str]) -> tuple[str, str]:
    """Summary: Collect what a killed process left in its pipes, within a short grace period.

    Importance: A descendant that escaped the group kill may still hold the pipes open.
    Alternatives: Wait on communicate() without a bound.
    """

    try:
        return process.communicate(timeout=DRAIN_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        logger.warning("Abandoning output of %s; pipes still held open.", process.args)
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()
        process.wait()
        return "", ""


def _decode_returncode(returncode: int | None) -> tuple[int | None, str | None]:
    if returncode is None or returncode >= 0:
        return returncode, None
    try:
        return None, signal.Signals(-returncode).name
    except ValueError:
        return None, f"SIG{-returncode}"


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, (TimeoutError, socket.timeout)):
        return True
    reason = getattr(exc, "reason", None)
    return isinstance(reason, (TimeoutError, socket.timeout))
