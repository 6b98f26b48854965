"""Summary: Domain model dataclasses for OpsBridge.

Importance: Defines the entities shared between routers, backends, and the client.
Alternatives: Pass raw backend dictionaries through every layer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


_BARE_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class RouterResult:
    """Summary: Outcome of a router dispatch: process exit code plus response body.

    Importance: Keeps exit-code policy next to the envelope it describes.
    Alternatives: Raise exceptions and let the entrypoint pick the exit code.
    """

    exit_code: int
    body: dict[str, Any]


@dataclass(frozen=True)
class CalendarInfo:
    """Summary: Represents a calendar container exposed by the backend.

    Importance: Drives calendar selection for reads and target choice for writes.
    Alternatives: Address calendars by name only.
    """

    name: str
    identifier: str | None = None
    writable: bool = False
    description: str | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "calendarIdentifier": self.identifier,
            "writable": self.writable,
            "description": self.description,
        }

    @staticmethod
    def from_json(data: dict[str, Any]) -> "CalendarInfo":
        return CalendarInfo(
            name=str(data.get("name") or ""),
            identifier=data.get("calendarIdentifier") or data.get("identifier"),
            writable=data.get("writable") is True,
            description=data.get("description"),
        )


@dataclass(frozen=True)
class CalendarEvent:
    """Summary: Represents a calendar event with timezone-aware bounds.

    Importance: Core unit for listing, overlap filtering, and write echoes.
    Alternatives: Keep events as raw JSON rows from the automation script.
    """

    id: str
    calendar: str | None
    title: str | None
    start: datetime
    end: datetime
    all_day: bool = False
    location: str | None = None
    notes: str | None = None
    url: str | None = None
    status: str | None = None

    def to_json(self, include_notes: bool = True) -> dict[str, Any]:
        """Summary: Serialize the event into the response shape.

        Importance: Keeps field naming stable regardless of backend.
        Alternatives: Return backend rows unchanged.
        """

        row: dict[str, Any] = {
            "id": self.id,
            "uid": self.id,
            "calendar": self.calendar,
            "title": self.title,
            "summary": self.title,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "allDay": self.all_day,
            "location": self.location,
            "url": self.url,
            "status": self.status,
        }
        if include_notes:
            row["notes"] = self.notes
        return row

    @staticmethod
    def from_json(data: dict[str, Any]) -> "CalendarEvent":
        """Summary: Build an event from a backend row.

        Importance: Normalizes ISO strings into aware datetimes once, at the boundary.
        Alternatives: Parse dates lazily wherever they are compared.
        """

        event_id = data.get("id") or data.get("uid")
        if not event_id:
            raise ValueError("event row has no id")
        return CalendarEvent(
            id=str(event_id),
            calendar=data.get("calendar"),
            title=data.get("title") if data.get("title") is not None else data.get("summary"),
            start=parse_iso_datetime(data.get("start")),
            end=parse_iso_datetime(data.get("end")),
            all_day=data.get("allDay") is True,
            location=data.get("location"),
            notes=data.get("notes"),
            url=data.get("url"),
            status=data.get("status"),
        )


@dataclass(frozen=True)
class DateRange:
    """Summary: Half-open time window used for event listings.

    Importance: Encodes the overlap rule in one place.
    Alternatives: Compare raw timestamps inline in the router.
    """

    start: datetime
    end: datetime

    def overlaps(self, event: CalendarEvent) -> bool:
        return event.start < self.end and event.end > self.start

    def to_json(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class AdapterCallResult:
    """Summary: Caller-side view of one adapter process invocation.

    Importance: Gives hosts the parsed envelope plus process diagnostics.
    Alternatives: Return raw stdout and let every caller parse it.
    """

    ok: bool
    domain: str
    action: str
    exit_code: int | None
    signal: str | None
    killed: bool
    duration_ms: int
    response: dict[str, Any] | None = None
    stdout_raw: str | None = None
    stdout_parse_error: str | None = None
    stderr: str | None = None
    error: str | None = None
    envelope: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "domain": self.domain,
            "action": self.action,
            "exec": {
                "code": self.exit_code,
                "signal": self.signal,
                "killed": self.killed,
                "durationMs": self.duration_ms,
            },
            "stdoutJson": self.response,
            "stdoutRaw": self.stdout_raw,
            "stdoutParseError": self.stdout_parse_error,
            "stderr": self.stderr,
            "error": self.error,
        }


def parse_iso_datetime(value: Any) -> datetime:
    """Summary: Parse an ISO-8601 string into an aware datetime.

    Importance: Backends emit both `Z` suffixes and offsets; naive values are local time.
    Alternatives: Use dateutil for lenient parsing.
    """

    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"invalid ISO timestamp: {value!r}")
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.astimezone()
    return parsed


def parse_date_input(value: Any, field_name: str) -> datetime:
    """Summary: Parse a caller-supplied date or timestamp.

    Importance: Accepts bare `YYYY-MM-DD` (local midnight), ISO-8601, and epoch milliseconds.
    Alternatives: Require full ISO timestamps from callers.
    """

    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.astimezone()
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be a date string")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000).astimezone()
        except (OverflowError, OSError, ValueError) as exc:
            raise ValueError(f"invalid timestamp for {field_name}") from exc
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a date string")
    text = value.strip()
    if not text:
        raise ValueError(f"{field_name} is empty")
    if _BARE_DATE.match(text):
        try:
            return datetime.strptime(text, "%Y-%m-%d").astimezone()
        except ValueError as exc:
            raise ValueError(f"invalid date for {field_name}") from exc
    try:
        return parse_iso_datetime(text)
    except ValueError as exc:
        raise ValueError(f"invalid date for {field_name}: {text}") from exc
