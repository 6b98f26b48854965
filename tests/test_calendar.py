"""Summary: Tests for calendar listing, writes, and backends.

Importance: Ensures range filtering, defaults, and write echoes behave the same for every backend.
Alternatives: Validate calendar behaviour manually against Calendar.app.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from opsbridge.calendar import CalendarRouter, JxaCalendarBackend, filter_events
from opsbridge.calendar_script import REQUEST_PATH_ENV
from opsbridge.config import AdapterConfig
from opsbridge.envelope import RequestEnvelope
from opsbridge.models import CalendarEvent, DateRange, RouterResult


FIXTURE = {
    "calendars": [
        {"name": "Home", "calendarIdentifier": "cal-home", "writable": False},
        {"name": "Work", "calendarIdentifier": "cal-work", "writable": True},
    ],
    "events": [
        {
            "id": "e1",
            "calendar": "Work",
            "title": "Standup",
            "start": "2026-03-02T09:00:00+00:00",
            "end": "2026-03-02T09:15:00+00:00",
            "location": "Room 1",
            "notes": "secret agenda",
        },
        {
            "id": "e2",
            "calendar": "Home",
            "title": "Dentist",
            "start": "2026-03-02T08:00:00+00:00",
            "end": "2026-03-02T09:00:00+00:00",
        },
        {
            "id": "e3",
            "calendar": "Work",
            "title": "Planning",
            "start": "2026-03-02T10:00:00+00:00",
            "end": "2026-03-02T11:00:00+00:00",
        },
        {
            "id": "e4",
            "calendar": "Work",
            "title": "Alpha review",
            "start": "2026-03-02T10:00:00+00:00",
            "end": "2026-03-02T10:30:00+00:00",
        },
        {
            "id": "e5",
            "calendar": "Home",
            "title": "Late lunch",
            "start": "2026-03-02T12:00:00+00:00",
            "end": "2026-03-02T13:00:00+00:00",
        },
    ],
}

MORNING = {"start": "2026-03-02T09:00:00Z", "end": "2026-03-02T12:00:00Z"}


@pytest.fixture()
def calendar_file(tmp_path: Path) -> Path:
    path = tmp_path / "calendar.json"
    path.write_text(json.dumps(FIXTURE), encoding="utf-8")
    return path


def file_router(path: Path, **values: str) -> CalendarRouter:
    config = AdapterConfig.from_values({"calendar_backend": "file", "calendar_file_path": str(path), **values})
    return CalendarRouter(config)


def dispatch(router: CalendarRouter, action: str, payload: dict[str, Any]) -> RouterResult:
    envelope = RequestEnvelope(domain="calendar", action=action, payload=payload)
    return router.dispatch(action, payload, envelope)


def stored_events(path: Path) -> dict[str, dict[str, Any]]:
    document = json.loads(path.read_text(encoding="utf-8"))
    return {row["id"]: row for row in document["events"]}


def test_list_events_uses_half_open_overlap_and_ordering(calendar_file: Path) -> None:
    """Summary: Verify boundary-touching events are excluded and ties sort by title.

    Importance: An event ending exactly at the range start is not in the range.
    Alternatives: Treat the range as closed on both ends.
    """

    result = dispatch(file_router(calendar_file), "list_events", dict(MORNING))

    assert result.exit_code == 0
    data = result.body["data"]
    assert [item["id"] for item in data["items"]] == ["e1", "e4", "e3"]
    assert data["count"] == 3
    assert data["action"] == "list_events"
    assert data["range"]["start"].startswith("2026-03-02T09:00:00")
    assert "notes" not in data["items"][0]
    assert result.body["adapter"] == "calendar-file"


def test_list_events_applies_limit_and_calendar_filter(calendar_file: Path) -> None:
    router = file_router(calendar_file)

    limited = dispatch(router, "list_events", {**MORNING, "limit": 2})
    home_only = dispatch(router, "list_events", {"start": "2026-03-02", "end": "2026-03-04", "calendars": ["Home"]})

    assert [item["id"] for item in limited.body["data"]["items"]] == ["e1", "e4"]
    assert {item["calendar"] for item in home_only.body["data"]["items"]} == {"Home"}


def test_search_matches_notes_only_when_requested(calendar_file: Path) -> None:
    """Summary: Ensure notes are searched and returned only with includeNotes.

    Importance: Notes can hold private text that callers did not ask for.
    Alternatives: Always search every text field.
    """

    router = file_router(calendar_file)

    hidden = dispatch(router, "search", {**MORNING, "query": "AGENDA"})
    shown = dispatch(router, "search", {**MORNING, "query": "agenda", "includeNotes": True})
    by_location = dispatch(router, "search", {**MORNING, "query": "room"})

    assert hidden.body["data"]["count"] == 0
    assert [item["id"] for item in shown.body["data"]["items"]] == ["e1"]
    assert shown.body["data"]["items"][0]["notes"] == "secret agenda"
    assert shown.body["data"]["action"] == "search"
    assert [item["id"] for item in by_location.body["data"]["items"]] == ["e1"]


def test_list_events_rejects_inverted_range(calendar_file: Path) -> None:
    result = dispatch(
        file_router(calendar_file),
        "list_events",
        {"start": "2026-03-02T12:00:00Z", "end": "2026-03-02T09:00:00Z"},
    )
    assert result.exit_code == 2
    assert result.body["error"] == "payload.end must be later than payload.start"


def test_create_event_defaults_end_and_picks_writable_calendar(calendar_file: Path) -> None:
    """Summary: Verify a timed event lasts an hour and lands in the first writable calendar.

    Importance: Callers often send only a title and a start time.
    Alternatives: Require an explicit end and calendar.
    """

    result = dispatch(
        file_router(calendar_file),
        "create_event",
        {"summary": "Review", "start": "2026-03-05T14:00:00+00:00", "description": "bring notes"},
    )

    assert result.exit_code == 0
    event = result.body["data"]["event"]
    assert event["calendar"] == "Work"
    assert event["title"] == "Review"
    assert event["notes"] == "bring notes"
    assert event["end"] == "2026-03-05T15:00:00+00:00"
    assert event["id"] == event["id"].upper()
    assert event["id"] in stored_events(calendar_file)


def test_create_all_day_event_lasts_a_day(calendar_file: Path) -> None:
    result = dispatch(
        file_router(calendar_file),
        "create_event",
        {"title": "Offsite", "start": "2026-03-06", "allday": True, "calendar": "Home"},
    )
    assert result.exit_code == 0
    event = result.body["data"]["event"]
    assert event["allDay"] is True
    assert event["calendar"] == "Home"
    start = datetime.fromisoformat(event["start"])
    end = datetime.fromisoformat(event["end"])
    assert end - start == timedelta(hours=24)


def test_create_event_uses_configured_default_calendar(calendar_file: Path) -> None:
    router = file_router(calendar_file, calendar_default_calendar="Home")
    result = dispatch(router, "create_event", {"title": "Chores", "start": "2026-03-07T10:00:00Z"})
    assert result.body["data"]["event"]["calendar"] == "Home"


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"start": "2026-03-05T14:00:00Z"}, "payload.title (or summary) required"),
        ({"title": "x"}, "payload.start required"),
        (
            {"title": "x", "start": "2026-03-05T14:00:00Z", "end": "2026-03-05T13:00:00Z"},
            "payload.end must be later than payload.start",
        ),
        ({"title": "x", "start": "2026-03-05T14:00:00Z", "calendar": "Nope"}, "calendar not found: Nope"),
    ],
)
def test_create_event_validation(calendar_file: Path, payload: dict[str, Any], message: str) -> None:
    result = dispatch(file_router(calendar_file), "create_event", payload)
    assert result.exit_code == 2
    assert result.body["errorKind"] == "validation"
    assert result.body["error"] == message
    assert len(stored_events(calendar_file)) == len(FIXTURE["events"])


def test_update_event_merges_supplied_fields(calendar_file: Path) -> None:
    """Summary: Ensure only supplied fields change and times are re-checked.

    Importance: Partial updates must not wipe unrelated fields.
    Alternatives: Replace the whole event on update.
    """

    result = dispatch(
        file_router(calendar_file),
        "update_event",
        {"uid": "e1", "title": "Daily standup", "end": "2026-03-02T09:30:00+00:00"},
    )

    assert result.exit_code == 0
    event = result.body["data"]["event"]
    assert event["title"] == "Daily standup"
    assert event["start"] == "2026-03-02T09:00:00+00:00"
    assert event["end"] == "2026-03-02T09:30:00+00:00"
    assert event["location"] == "Room 1"
    stored = stored_events(calendar_file)["e1"]
    assert stored["title"] == "Daily standup"
    assert stored["notes"] == "secret agenda"


def test_update_event_rejects_bad_changes(calendar_file: Path) -> None:
    router = file_router(calendar_file)

    empty_title = dispatch(router, "update_event", {"id": "e1", "title": "  "})
    inverted = dispatch(router, "update_event", {"id": "e1", "end": "2026-03-02T08:00:00+00:00"})

    assert empty_title.exit_code == 2
    assert empty_title.body["error"] == "payload.title/summary cannot be empty"
    assert inverted.exit_code == 2
    assert inverted.body["error"] == "payload.end must be later than payload.start"
    assert stored_events(calendar_file)["e1"]["end"] == "2026-03-02T09:15:00+00:00"


def test_get_and_delete_event(calendar_file: Path) -> None:
    router = file_router(calendar_file)

    fetched = dispatch(router, "get_event", {"eventId": "e2"})
    deleted = dispatch(router, "delete_event", {"id": "e2"})
    missing = dispatch(router, "delete_event", {"id": "e2"})

    assert fetched.body["data"]["event"]["title"] == "Dentist"
    assert deleted.exit_code == 0
    assert deleted.body["data"]["deleted"] == {"id": "e2", "calendar": "Home", "title": "Dentist"}
    assert "e2" not in stored_events(calendar_file)
    assert missing.exit_code == 3
    assert missing.body["errorKind"] == "backend"
    assert missing.body["error"] == "event not found"


def test_event_reference_is_required(calendar_file: Path) -> None:
    result = dispatch(file_router(calendar_file), "get_event", {})
    assert result.exit_code == 2
    assert result.body["error"] == "payload.id (or uid/eventId) required"


def test_health_and_list_calendars(calendar_file: Path, tmp_path: Path) -> None:
    router = file_router(calendar_file)

    health = dispatch(router, "health", {})
    listing = dispatch(router, "list_calendars", {})

    assert health.exit_code == 0
    assert health.body["data"]["calendarCount"] == 2
    assert listing.body["data"]["count"] == 2
    assert [row["name"] for row in listing.body["data"]["calendars"]] == ["Home", "Work"]

    empty = tmp_path / "empty.json"
    empty.write_text("{\"calendars\": [], \"events\": []}", encoding="utf-8")
    no_calendars = dispatch(file_router(empty), "health", {})
    assert no_calendars.exit_code == 3
    assert no_calendars.body["error"] == "no calendars available"


def test_missing_calendar_file_is_a_backend_failure(tmp_path: Path) -> None:
    result = dispatch(file_router(tmp_path / "missing.json"), "list_calendars", {})
    assert result.exit_code == 3
    assert result.body["errorKind"] == "backend"
    assert "calendar file not found" in result.body["error"]


def test_unknown_calendar_action_is_rejected(calendar_file: Path) -> None:
    result = dispatch(file_router(calendar_file), "invite_attendees", {})
    assert result.exit_code == 2
    assert "create_event" in result.body["supportedActions"]


def test_filter_events_is_pure() -> None:
    start = datetime.fromisoformat("2026-03-02T09:00:00+00:00")
    events = [
        CalendarEvent(id="b", calendar="Work", title="B", start=start, end=start + timedelta(hours=1)),
        CalendarEvent(id="a", calendar="Work", title="A", start=start, end=start + timedelta(hours=1)),
    ]
    window = DateRange(start=start, end=start + timedelta(hours=2))
    assert [event.id for event in filter_events(events, window, None, False, 50)] == ["a", "b"]
    assert filter_events(events, window, "b", False, 50)[0].id == "b"


FAKE_OSASCRIPT = """#!{python}
import json
import os
import sys

script = sys.stdin.read()
with open(os.environ["{env}"], encoding="utf-8") as handle:
    request = json.load(handle)
with open(os.environ["FAKE_OSASCRIPT_LOG"], "a", encoding="utf-8") as handle:
    handle.write(json.dumps({{"argv": sys.argv[1:], "request": request, "scriptBytes": len(script)}}) + "\\n")
op = request["op"]
if op == "list_calendars":
    print(json.dumps({{"ok": True, "data": [{{"name": "Work", "writable": True}}]}}))
elif op == "list_events":
    print(json.dumps({{"ok": True, "data": [
        {{"id": "x1", "calendar": "Work", "title": "Sync",
          "start": "2026-03-02T09:00:00Z", "end": "2026-03-02T09:30:00Z"}},
        {{"id": "x2", "calendar": "Work", "title": "Outside",
          "start": "2026-03-09T09:00:00Z", "end": "2026-03-09T09:30:00Z"}}
    ]}}))
elif op == "find_event" and request["args"]["id"] == "broken":
    print(json.dumps({{"ok": True, "data": {{"id": "E1", "calendar": "Work", "start": None, "end": None}}}}))
elif op == "find_event":
    print(json.dumps({{"ok": True, "data": None}}))
else:
    print(json.dumps({{"ok": False, "error": "Calendar.app is not running"}}))
    sys.exit(1)
"""


@pytest.fixture()
def fake_osascript(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    script = tmp_path / "osascript"
    script.write_text(FAKE_OSASCRIPT.format(python=sys.executable, env=REQUEST_PATH_ENV), encoding="utf-8")
    script.chmod(0o755)
    monkeypatch.setenv("FAKE_OSASCRIPT_LOG", str(tmp_path / "osascript.log"))
    return script


def test_jxa_backend_passes_request_file_and_script(tmp_path: Path, fake_osascript: Path) -> None:
    """Summary: Verify the automation request travels through a temp file and the script through stdin.

    Importance: Keeps user text out of argv and removes the request file afterwards.
    Alternatives: Interpolate the request into the script source.
    """

    router = CalendarRouter(AdapterConfig.from_values({"calendar_osascript_bin": str(fake_osascript)}))

    result = dispatch(router, "list_events", dict(MORNING))

    assert result.exit_code == 0
    assert result.body["adapter"] == "macos-calendar-jxa"
    assert [item["id"] for item in result.body["data"]["items"]] == ["x1"]
    assert result.body["result"]["exec"]["code"] == 0
    log = [json.loads(line) for line in (tmp_path / "osascript.log").read_text(encoding="utf-8").splitlines()]
    assert log[0]["argv"] == ["-l", "JavaScript"]
    assert log[0]["request"]["op"] == "list_events"
    assert log[0]["request"]["args"]["start"].startswith("2026-03-02T09:00:00")
    assert log[0]["scriptBytes"] > 0


def test_jxa_backend_reports_script_errors(fake_osascript: Path) -> None:
    backend = JxaCalendarBackend(str(fake_osascript), 10_000)
    router = CalendarRouter(AdapterConfig.from_values({}), backend=backend)

    missing = dispatch(router, "get_event", {"id": "nope"})
    assert missing.exit_code == 3
    assert missing.body["error"] == "event not found"

    created = dispatch(router, "create_event", {"title": "Sync", "start": "2026-03-02T09:00:00Z"})
    assert created.exit_code == 3
    assert created.body["errorKind"] == "backend"
    assert created.body["error"] == "Calendar.app is not running"
    assert created.body["result"]["exec"]["code"] == 1


def test_jxa_backend_rejects_unusable_event_rows(fake_osascript: Path) -> None:
    """Summary: Ensure an event row without dates is a backend failure, not a crash.

    Importance: Calendar.app can return events whose dates fail to serialize.
    Alternatives: Return the row with missing dates to the caller.
    """

    router = CalendarRouter(AdapterConfig.from_values({}), backend=JxaCalendarBackend(str(fake_osascript), 10_000))

    result = dispatch(router, "get_event", {"id": "broken"})

    assert result.exit_code == 3
    assert result.body["ok"] is False
    assert result.body["errorKind"] == "backend"
    assert result.body["error"].startswith("calendar automation returned an unusable event row")
    assert result.body["result"]["exec"]["code"] == 0
