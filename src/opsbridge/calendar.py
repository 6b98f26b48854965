"""Summary: Calendar backends and the calendar action router.

Importance: Applies date-range, query, and ordering rules in Python on top of any event source.
Alternatives: Let the automation script filter and sort events itself.
"""

from __future__ import annotations

import json
import logging
import tempfile
import uuid
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, cast

from opsbridge.calendar_script import JXA_SOURCE, REQUEST_PATH_ENV
from opsbridge.config import AdapterConfig
from opsbridge.envelope import EXIT_BACKEND, RequestEnvelope
from opsbridge.executor import SpawnError, parse_json_output, run_command, truncate
from opsbridge.models import CalendarEvent, CalendarInfo, DateRange, RouterResult
from opsbridge.payloads import (
    CALENDAR_PAYLOADS,
    ActionPayload,
    CalendarPayload,
    CreateEventPayload,
    EventRefPayload,
    ListEventsPayload,
    UpdateEventPayload,
    ensure_event_times,
)
from opsbridge.router import ActionRouter, PayloadError


logger = logging.getLogger(__name__)


class CalendarBackendError(RuntimeError):
    """Summary: Raised when the calendar backend cannot complete an operation.

    Importance: Carries process diagnostics into the failure envelope.
    Alternatives: Return error dictionaries from backend methods.
    """

    def __init__(
        self,
        message: str,
        exec_info: dict[str, Any] | None = None,
        stderr: str | None = None,
        stdout_raw: str | None = None,
    ) -> None:
        super().__init__(message)
        self.exec_info = exec_info
        self.stderr = stderr
        self.stdout_raw = stdout_raw

    def result_block(self) -> dict[str, Any] | None:
        if self.exec_info is None:
            return None
        block: dict[str, Any] = {"exec": self.exec_info}
        if self.stderr:
            block["stderr"] = truncate(self.stderr)
        if self.stdout_raw:
            block["stdoutRaw"] = self.stdout_raw
        return block


class CalendarBackend(ABC):
    """Summary: Abstract source and sink of calendar events.

    Importance: Lets the router run unchanged against macOS Calendar or a local file.
    Alternatives: Couple the router to osascript.
    """

    name: str = ""

    def __init__(self) -> None:
        self.last_exec: dict[str, Any] | None = None

    @abstractmethod
    def list_calendars(self) -> list[CalendarInfo]:
        """Summary: Return every calendar the backend can see."""

    @abstractmethod
    def fetch_events(self, calendars: list[str], date_range: DateRange) -> list[CalendarEvent]:
        """Summary: Return candidate events for the range.

        Importance: Backends may pre-filter; the router re-applies the overlap rule.
        Alternatives: Require exact filtering from every backend.
        """

    @abstractmethod
    def find_event(self, event_id: str, calendars: list[str]) -> CalendarEvent | None:
        """Summary: Look an event up by id, optionally within named calendars."""

    @abstractmethod
    def create_event(self, calendar: str, event: CalendarEvent) -> CalendarEvent:
        """Summary: Create an event in the named calendar and return it as stored."""

    @abstractmethod
    def update_event(self, event: CalendarEvent) -> CalendarEvent:
        """Summary: Overwrite the mutable fields of an existing event."""

    @abstractmethod
    def delete_event(self, event: CalendarEvent) -> None:
        """Summary: Remove an existing event."""


class JxaCalendarBackend(CalendarBackend):
    """Summary: Drives macOS Calendar through `osascript -l JavaScript`.

    Importance: The script arrives on stdin; the request travels in a temp file named by an env var.
    Alternatives: Pass the request as a script argument.
    """

    name = "macos-calendar-jxa"

    def __init__(self, osascript_bin: str, timeout_ms: int) -> None:
        super().__init__()
        self._osascript_bin = osascript_bin
        self._timeout_ms = timeout_ms

    def list_calendars(self) -> list[CalendarInfo]:
        rows = self._call("list_calendars")
        return [CalendarInfo.from_json(row) for row in rows or [] if isinstance(row, dict)]

    def fetch_events(self, calendars: list[str], date_range: DateRange) -> list[CalendarEvent]:
        rows = self._call("list_events", calendars=calendars, **date_range.to_json())
        return _events_from_rows(rows)

    def find_event(self, event_id: str, calendars: list[str]) -> CalendarEvent | None:
        row = self._call("find_event", id=event_id, calendars=calendars)
        return self._event_from_row(row) if isinstance(row, dict) else None

    def create_event(self, calendar: str, event: CalendarEvent) -> CalendarEvent:
        row = self._call("create_event", calendar=calendar, event=event.to_json())
        if not isinstance(row, dict):
            raise CalendarBackendError("calendar automation returned no event", exec_info=self.last_exec)
        return self._event_from_row(row)

    def update_event(self, event: CalendarEvent) -> CalendarEvent:
        row = self._call("update_event", event=event.to_json())
        if not isinstance(row, dict):
            raise CalendarBackendError("event not found", exec_info=self.last_exec)
        return self._event_from_row(row)

    def delete_event(self, event: CalendarEvent) -> None:
        row = self._call("delete_event", id=event.id, calendar=event.calendar)
        if row is None:
            raise CalendarBackendError("event not found", exec_info=self.last_exec)

    def _event_from_row(self, row: dict[str, Any]) -> CalendarEvent:
        try:
            return CalendarEvent.from_json(row)
        except ValueError as exc:
            raise CalendarBackendError(
                f"calendar automation returned an unusable event row: {exc}",
                exec_info=self.last_exec,
            ) from exc

    def _call(self, op: str, **args: Any) -> Any:
        """Summary: Run one script operation and return its `data` field.

        Importance: The temp request file is removed even when the script fails.
        Alternatives: Keep request files for inspection.
        """

        with tempfile.NamedTemporaryFile(
            "w",
            prefix="opsbridge-calendar-",
            suffix=".json",
            delete=False,
            encoding="utf-8",
        ) as handle:
            json.dump({"op": op, "args": args}, handle)
            request_path = Path(handle.name)
        try:
            result = run_command(
                [self._osascript_bin, "-l", "JavaScript"],
                timeout_ms=self._timeout_ms,
                env={REQUEST_PATH_ENV: str(request_path)},
                stdin_text=JXA_SOURCE,
            )
        finally:
            request_path.unlink(missing_ok=True)
        self.last_exec = result.exec_info()
        parsed, _ = parse_json_output(result.stdout)
        if result.ok and isinstance(parsed, dict) and parsed.get("ok") is True:
            return parsed.get("data")
        message = None
        if isinstance(parsed, dict) and isinstance(parsed.get("error"), str):
            message = parsed["error"]
        if message is None and result.killed:
            message = f"osascript timed out after {self._timeout_ms} ms"
        raise CalendarBackendError(
            message or result.stderr.strip() or f"osascript exited with code {result.exit_code}",
            exec_info=self.last_exec,
            stderr=result.stderr or None,
            stdout_raw=result.stdout if parsed is None else None,
        )


class JsonFileCalendarBackend(CalendarBackend):
    """Summary: Stores calendars and events in one local JSON document.

    Importance: Supports development and tests on machines without Calendar.app.
    Alternatives: Generate synthetic events in code.
    """

    name = "calendar-file"

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path

    def list_calendars(self) -> list[CalendarInfo]:
        return [CalendarInfo.from_json(row) for row in self._load()["calendars"]]

    def fetch_events(self, calendars: list[str], date_range: DateRange) -> list[CalendarEvent]:
        events = _events_from_rows(self._load()["events"])
        if calendars:
            events = [event for event in events if event.calendar in calendars]
        return events

    def find_event(self, event_id: str, calendars: list[str]) -> CalendarEvent | None:
        for event in _events_from_rows(self._load()["events"]):
            if event.id == event_id and (not calendars or event.calendar in calendars):
                return event
        return None

    def create_event(self, calendar: str, event: CalendarEvent) -> CalendarEvent:
        document = self._load()
        stored = replace(event, id=str(uuid.uuid4()).upper(), calendar=calendar)
        document["events"].append(stored.to_json())
        self._save(document)
        return stored

    def update_event(self, event: CalendarEvent) -> CalendarEvent:
        document = self._load()
        for index, row in enumerate(document["events"]):
            if str(row.get("id")) == event.id:
                document["events"][index] = event.to_json()
                self._save(document)
                return event
        raise CalendarBackendError("event not found")

    def delete_event(self, event: CalendarEvent) -> None:
        document = self._load()
        remaining = [row for row in document["events"] if str(row.get("id")) != event.id]
        if len(remaining) == len(document["events"]):
            raise CalendarBackendError("event not found")
        document["events"] = remaining
        self._save(document)

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            raise CalendarBackendError(f"calendar file not found: {self._path}")
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise CalendarBackendError(f"calendar file is not valid JSON: {self._path}") from exc
        if not isinstance(raw, dict):
            raise CalendarBackendError(f"calendar file must contain a JSON object: {self._path}")
        calendars = raw.get("calendars")
        events = raw.get("events")
        return {
            "calendars": [row for row in calendars if isinstance(row, dict)] if isinstance(calendars, list) else [],
            "events": [row for row in events if isinstance(row, dict)] if isinstance(events, list) else [],
        }

    def _save(self, document: dict[str, Any]) -> None:
        self._path.write_text(json.dumps(document, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def _events_from_rows(rows: Any) -> list[CalendarEvent]:
    events = []
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        try:
            events.append(CalendarEvent.from_json(row))
        except ValueError:
            logger.debug("Skipping calendar row without usable id or dates: %s", row.get("id"))
    return events


def build_calendar_backend(config: AdapterConfig, payload: CalendarPayload) -> CalendarBackend:
    """Summary: Choose the backend from configuration.

    Importance: Payload overrides for osascript path and timeout apply only to the JXA backend.
    Alternatives: Select the backend per request.
    """

    if config.calendar_backend == "file":
        if not config.calendar_file_path:
            raise CalendarBackendError("calendar_file_path is required for the file backend")
        return JsonFileCalendarBackend(Path(config.calendar_file_path).expanduser())
    return JxaCalendarBackend(
        payload.osascript_bin or config.calendar_osascript_bin,
        payload.timeout_ms or config.calendar_timeout_ms,
    )


def filter_events(
    events: list[CalendarEvent],
    date_range: DateRange,
    query: str | None,
    include_notes: bool,
    limit: int,
) -> list[CalendarEvent]:
    """Summary: Apply overlap, query, ordering, and limit rules.

    Importance: One pure function defines what a listing returns for every backend.
    Alternatives: Trust backend filtering.
    """

    needle = query.lower() if query else None
    selected = []
    for event in events:
        if not date_range.overlaps(event):
            continue
        if needle:
            haystack = "\n".join(
                part
                for part in (event.title, event.location, event.notes if include_notes else None)
                if part
            ).lower()
            if needle not in haystack:
                continue
        selected.append(event)
    selected.sort(key=lambda event: (event.start, event.title or ""))
    return selected[:limit]


class CalendarRouter(ActionRouter):
    """Summary: Dispatches calendar actions to a calendar backend."""

    domain = "calendar"
    payload_models = CALENDAR_PAYLOADS

    def __init__(self, config: AdapterConfig, backend: CalendarBackend | None = None) -> None:
        super().__init__(config)
        self._backend = backend

    @property
    def adapter_name(self) -> str:  # type: ignore[override]
        if self._backend is not None:
            return self._backend.name
        return JsonFileCalendarBackend.name if self.config.calendar_backend == "file" else JxaCalendarBackend.name

    def handle(self, action: str, parsed: ActionPayload, envelope: RequestEnvelope) -> RouterResult:
        payload = cast(CalendarPayload, parsed)
        backend = self._backend
        try:
            if backend is None:
                backend = build_calendar_backend(self.config, payload)
            data = self.run_action(action, backend, payload)
        except CalendarBackendError as exc:
            return self.failure(action, EXIT_BACKEND, str(exc), "backend", result=exc.result_block())
        except SpawnError as exc:
            return self.failure(action, EXIT_BACKEND, str(exc), "transport")
        if action == "health" and not data["calendarCount"]:
            return self.failure(
                action,
                EXIT_BACKEND,
                "no calendars available",
                "backend",
                data=data,
                result=_exec_block(backend),
            )
        return self.success(action, data=data, result=_exec_block(backend))

    def run_action(self, action: str, backend: CalendarBackend, payload: CalendarPayload) -> dict[str, Any]:
        calendars = payload.selected_calendars()
        if action in {"health", "list_calendars"}:
            infos = sorted(backend.list_calendars(), key=lambda info: info.name)
            rows = [info.to_json() for info in infos]
            if action == "health":
                return {"calendarCount": len(rows), "calendars": rows}
            return {"calendars": rows, "count": len(rows)}
        if isinstance(payload, ListEventsPayload):
            date_range = payload.date_range()
            events = filter_events(
                backend.fetch_events(calendars, date_range),
                date_range,
                payload.query,
                payload.include_notes,
                payload.limit,
            )
            items = [event.to_json(include_notes=payload.include_notes) for event in events]
            return {"items": items, "count": len(items), "range": date_range.to_json(), "action": action}
        if isinstance(payload, CreateEventPayload):
            target = self.pick_target_calendar(backend, payload)
            draft = CalendarEvent(
                id="",
                calendar=target,
                title=payload.title,
                start=cast(datetime, payload.start),
                end=cast(datetime, payload.end),
                all_day=payload.all_day,
                location=payload.location,
                notes=payload.notes,
                url=payload.url,
            )
            return {"event": backend.create_event(target, draft).to_json()}
        if isinstance(payload, UpdateEventPayload):
            existing = self.require_event(backend, payload, calendars)
            return {"event": backend.update_event(merge_event_update(existing, payload)).to_json()}
        if isinstance(payload, EventRefPayload):
            existing = self.require_event(backend, payload, calendars)
            if action == "delete_event":
                backend.delete_event(existing)
                return {"deleted": {"id": existing.id, "calendar": existing.calendar, "title": existing.title}}
            return {"event": existing.to_json()}
        raise PayloadError(f"unsupported action '{action}'")

    def require_event(
        self,
        backend: CalendarBackend,
        payload: EventRefPayload,
        calendars: list[str],
    ) -> CalendarEvent:
        event = backend.find_event(str(payload.event_id), calendars)
        if event is None:
            raise CalendarBackendError("event not found", exec_info=backend.last_exec)
        return event

    def pick_target_calendar(self, backend: CalendarBackend, payload: CalendarPayload) -> str:
        """Summary: Choose the calendar a new event is written to.

        Importance: Explicit name, then default, then first writable, then first.
        Alternatives: Always require an explicit calendar.
        """

        infos = backend.list_calendars()
        requested = payload.calendar or payload.default_calendar or self.config.calendar_default_calendar
        if requested:
            if not any(info.name == requested for info in infos):
                raise PayloadError(f"calendar not found: {requested}")
            return requested
        for info in infos:
            if info.writable:
                return info.name
        if infos:
            return infos[0].name
        raise CalendarBackendError("no calendars available", exec_info=backend.last_exec)


def merge_event_update(existing: CalendarEvent, payload: UpdateEventPayload) -> CalendarEvent:
    """Summary: Apply supplied update fields onto an existing event.

    Importance: Start and end are re-validated against the merged all-day flag.
    Alternatives: Replace the whole event with the payload.
    """

    changes: dict[str, Any] = {}
    if payload.supplied("title"):
        changes["title"] = str(payload.title).strip()
    if payload.touches_times():
        all_day = payload.all_day if payload.supplied("all_day") and payload.all_day is not None else existing.all_day
        start = payload.start if payload.supplied("start") else existing.start
        end = payload.end if payload.supplied("end") else existing.end
        if start is None:
            raise PayloadError("payload.start required")
        try:
            start, end = ensure_event_times(start, end, all_day)
        except ValueError as exc:
            raise PayloadError(str(exc)) from exc
        changes.update(start=start, end=end, all_day=all_day)
    for name in ("location", "notes", "url"):
        if payload.supplied(name):
            value = getattr(payload, name)
            changes[name] = "" if value is None else str(value)
    return replace(existing, **changes)


def _exec_block(backend: CalendarBackend) -> dict[str, Any] | None:
    return {"exec": backend.last_exec} if backend.last_exec is not None else None
