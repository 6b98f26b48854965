"""Summary: Per-action payload variants validated at the router boundary.

Importance: Each action gets its own model, so loosely typed JSON never flows into backend code.
Alternatives: Pass the raw payload dictionary and read fields with helpers.
"""

from __future__ import annotations

import math
from abc import abstractmethod
from datetime import datetime, timedelta
from typing import Annotated, Any, ClassVar, cast

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)

from opsbridge.models import DateRange, parse_date_input


def clean_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def clean_id(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if math.isfinite(value) else None
    return clean_str(value)


def positive_int(value: Any, fallback: int | None) -> int | None:
    """Summary: Read a positive integer from a number or numeric string.

    Importance: Absent, zero, negative, non-finite, or garbage values fall back instead of failing.
    Alternatives: Reject non-positive values as validation errors.
    """

    if isinstance(value, bool):
        return fallback
    if isinstance(value, float) and not math.isfinite(value):
        return fallback
    if isinstance(value, (int, float)):
        number = int(value)
        return number if number > 0 else fallback
    if isinstance(value, str):
        try:
            number = int(value.strip())
        except ValueError:
            return fallback
        return number if number > 0 else fallback
    return fallback


def string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def normalize_ids(value: Any, fallback: Any = None) -> list[str]:
    """Summary: Collect message ids from `ids`, seeding from `id` only when empty.

    Importance: The array wins when both are given.
    Alternatives: Merge both fields.
    """

    ids: list[str] = []
    if isinstance(value, list):
        for entry in value:
            cleaned = clean_id(entry)
            if cleaned:
                ids.append(cleaned)
    else:
        cleaned = clean_id(value)
        if cleaned:
            ids.append(cleaned)
    if not ids:
        cleaned = clean_id(fallback)
        if cleaned:
            ids.append(cleaned)
    return ids


def _flag_false(value: Any) -> bool:
    return value if isinstance(value, bool) else False


def _flag_true(value: Any) -> bool:
    return value if isinstance(value, bool) else True


Text = Annotated[str | None, BeforeValidator(clean_str)]
IdText = Annotated[str | None, BeforeValidator(clean_id)]
FlagFalse = Annotated[bool, BeforeValidator(_flag_false)]
FlagTrue = Annotated[bool, BeforeValidator(_flag_true)]
StringList = Annotated[list[str], BeforeValidator(string_list)]
OptionalPositive = Annotated[int | None, BeforeValidator(lambda value: positive_int(value, None))]
Page = Annotated[int, BeforeValidator(lambda value: positive_int(value, 1))]
PageSize = Annotated[int, BeforeValidator(lambda value: positive_int(value, 50))]
Limit = Annotated[int, BeforeValidator(lambda value: min(positive_int(value, 50) or 50, 500))]


class ActionPayload(BaseModel):
    """Summary: Base for every payload variant.

    Importance: Unknown keys are ignored; aliases accept the camelCase wire names.
    Alternatives: Forbid unknown keys and break older callers.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# Mail


class MailPayload(ActionPayload):
    config_path: Text = Field(default=None, alias="configPath")
    account: Text = None
    folder: Text = None
    timeout_ms: OptionalPositive = Field(default=None, alias="timeoutMs")
    state_dir: Text = Field(default=None, alias="stateDir")


class MailHealthPayload(MailPayload):
    deep: FlagFalse = False


class ListMessagesPayload(MailPayload):
    page: Page = 1
    page_size: PageSize = Field(default=50, alias="pageSize")
    query: Text = None
    query_tokens: StringList = Field(default_factory=list, alias="queryTokens")

    def query_args(self) -> list[str]:
        if self.query_tokens:
            return list(self.query_tokens)
        return [self.query] if self.query else []


class MessageIdsPayload(MailPayload):
    """Summary: Mail payload addressing one or more messages."""

    ids: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _collect_ids(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {**data, "ids": normalize_ids(data.get("ids"), data.get("id"))}
        return data

    @model_validator(mode="after")
    def _require_ids(self) -> "MessageIdsPayload":
        if not self.ids:
            raise ValueError("payload.id or payload.ids required")
        return self


class GetMessagePayload(MessageIdsPayload):
    preview: FlagFalse = False
    no_headers: FlagFalse = Field(default=False, alias="noHeaders")
    headers: Any = None


class DraftReplyPayload(MailPayload):
    id: IdText = None
    body: Text = None
    all_recipients: FlagFalse = Field(default=False, alias="allRecipients")
    headers: Any = None

    @model_validator(mode="after")
    def _require_id(self) -> "DraftReplyPayload":
        if not self.id:
            raise ValueError("payload.id required")
        return self


class SendMessagePayload(MailPayload):
    """Summary: Raw message or named template to send.

    Importance: The chosen content is what the idempotency hash covers.
    Alternatives: Hash the whole payload, including transport settings.
    """

    raw_message: Text = Field(default=None, alias="rawMessage")
    message: Text = None
    raw: Text = None
    template: Text = None
    format: Text = None
    idempotency_key: Text = Field(default=None, alias="idempotencyKey")
    require_idempotency_key: FlagFalse = Field(default=False, alias="requireIdempotencyKey")

    @model_validator(mode="after")
    def _require_content(self) -> "SendMessagePayload":
        if not (self.raw_message or self.message or self.raw or self.template):
            raise ValueError("payload.rawMessage (or payload.message/raw) or payload.template required")
        return self

    @property
    def mode(self) -> str:
        if self.template or self.format == "mml":
            return "template"
        return "raw-message"

    @property
    def content(self) -> str:
        return self.template or self.raw_message or self.message or self.raw or ""


class ArchivePayload(MessageIdsPayload):
    archive_folder: Text = Field(default=None, alias="archiveFolder")


class DeleteMessagesPayload(MessageIdsPayload):
    pass


class PurgeFolderPayload(MailPayload):
    name: Text = None

    @model_validator(mode="after")
    def _require_folder(self) -> "PurgeFolderPayload":
        if not (self.folder or self.name):
            raise ValueError("payload.folder (or payload.name) required")
        return self

    @property
    def target_folder(self) -> str:
        return self.folder or self.name or ""


class MarkReadPayload(MessageIdsPayload):
    read: FlagTrue = True


class LabelPayload(MessageIdsPayload):
    mode: Text = None
    flags: StringList = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_flags(self) -> "LabelPayload":
        if (self.mode or "add") not in {"add", "remove", "set"}:
            raise ValueError("payload.mode must be one of add/remove/set")
        if not self.flags:
            raise ValueError("payload.flags required (string[])")
        return self

    @property
    def flag_mode(self) -> str:
        return self.mode or "add"


MAIL_PAYLOADS: dict[str, type[ActionPayload]] = {
    "health": MailHealthPayload,
    "list_accounts": MailPayload,
    "list_folders": MailPayload,
    "list_messages": ListMessagesPayload,
    "search": ListMessagesPayload,
    "get_message": GetMessagePayload,
    "draft_reply": DraftReplyPayload,
    "send_message": SendMessagePayload,
    "archive": ArchivePayload,
    "delete_messages": DeleteMessagesPayload,
    "purge_folder": PurgeFolderPayload,
    "mark_read": MarkReadPayload,
    "label": LabelPayload,
}


# Calendar


class CalendarPayload(ActionPayload):
    osascript_bin: Text = Field(default=None, alias="osascriptBin")
    timeout_ms: OptionalPositive = Field(default=None, alias="timeoutMs")
    default_calendar: Text = Field(default=None, alias="defaultCalendar")
    calendar: Text = None
    calendars: StringList = Field(default_factory=list)

    def selected_calendars(self) -> list[str]:
        names: list[str] = []
        for name in [self.calendar, *self.calendars]:
            if name and name not in names:
                names.append(name)
        return names


class ListEventsPayload(CalendarPayload):
    """Summary: Date-ranged event listing with optional text query.

    Importance: `start` defaults to now and `end` to a week later; end must follow start.
    Alternatives: Require both bounds from the caller.
    """

    start: datetime | None = None
    end: datetime | None = None
    query: Text = None
    include_notes: FlagFalse = Field(default=False, alias="includeNotes")
    limit: Limit = 50

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_bounds(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or value == "":
            return None
        return parse_date_input(value, f"payload.{info.field_name}")

    @model_validator(mode="after")
    def _fill_range(self) -> "ListEventsPayload":
        if self.start is None:
            self.start = datetime.now().astimezone()
        if self.end is None:
            self.end = self.start + timedelta(days=7)
        if not self.end > self.start:
            raise ValueError("payload.end must be later than payload.start")
        return self

    def date_range(self) -> DateRange:
        return DateRange(start=cast(datetime, self.start), end=cast(datetime, self.end))


class EventRefPayload(CalendarPayload):
    event_id: IdText = Field(default=None, validation_alias=AliasChoices("id", "uid", "eventId"))

    @model_validator(mode="after")
    def _require_event_id(self) -> "EventRefPayload":
        if not self.event_id:
            raise ValueError("payload.id (or uid/eventId) required")
        return self


def _fold_event_aliases(data: Any) -> Any:
    if not isinstance(data, dict):
        return data
    folded = dict(data)
    if "title" not in folded and "summary" in folded:
        folded["title"] = folded["summary"]
    if "notes" not in folded and "description" in folded:
        folded["notes"] = folded["description"]
    if "allDay" not in folded:
        for alias in ("allday", "alldayEvent"):
            if alias in folded:
                folded["allDay"] = folded[alias]
                break
    return folded


def ensure_event_times(start: datetime, end: datetime | None, all_day: bool) -> tuple[datetime, datetime]:
    """Summary: Default a missing end and check ordering.

    Importance: Timed events last one hour and all-day events 24 hours unless told otherwise.
    Alternatives: Require an explicit end.
    """

    resolved_end = end if end is not None else start + timedelta(hours=24 if all_day else 1)
    if not resolved_end > start:
        raise ValueError("payload.end must be later than payload.start")
    return start, resolved_end


class CreateEventPayload(CalendarPayload):
    title: Text = None
    start: datetime | None = None
    end: datetime | None = None
    all_day: FlagFalse = Field(default=False, alias="allDay")
    location: str | None = None
    notes: str | None = None
    url: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _aliases(cls, data: Any) -> Any:
        return _fold_event_aliases(data)

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_bounds(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or value == "":
            return None
        return parse_date_input(value, f"payload.{info.field_name}")

    @field_validator("location", "notes", "url", mode="before")
    @classmethod
    def _text_only(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None

    @model_validator(mode="after")
    def _check(self) -> "CreateEventPayload":
        if not self.title:
            raise ValueError("payload.title (or summary) required")
        if self.start is None:
            raise ValueError("payload.start required")
        self.start, self.end = ensure_event_times(self.start, self.end, self.all_day)
        return self


class UpdateEventPayload(EventRefPayload):
    """Summary: Partial event update merged onto the stored event.

    Importance: `model_fields_set` records which fields the caller actually supplied.
    Alternatives: Require the full event on every update.
    """

    title: Any = None
    start: datetime | None = None
    end: datetime | None = None
    all_day: bool | None = Field(default=None, alias="allDay")
    location: Any = None
    notes: Any = None
    url: Any = None

    @model_validator(mode="before")
    @classmethod
    def _aliases(cls, data: Any) -> Any:
        return _fold_event_aliases(data)

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_bounds(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or value == "":
            return None
        return parse_date_input(value, f"payload.{info.field_name}")

    @field_validator("all_day", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> Any:
        return value if isinstance(value, bool) else None

    @model_validator(mode="after")
    def _check_title(self) -> "UpdateEventPayload":
        if "title" in self.model_fields_set:
            if not isinstance(self.title, str) or not self.title.strip():
                raise ValueError("payload.title/summary cannot be empty")
        return self

    def supplied(self, name: str) -> bool:
        return name in self.model_fields_set

    def touches_times(self) -> bool:
        return any(self.supplied(name) for name in ("start", "end", "all_day"))


CALENDAR_PAYLOADS: dict[str, type[ActionPayload]] = {
    "health": CalendarPayload,
    "list_calendars": CalendarPayload,
    "list_events": ListEventsPayload,
    "search": ListEventsPayload,
    "get_event": EventRefPayload,
    "create_event": CreateEventPayload,
    "update_event": UpdateEventPayload,
    "delete_event": EventRefPayload,
}


# Notes


class NotesPayload(ActionPayload):
    api_key: Text = Field(default=None, validation_alias=AliasChoices("apiKey", "api_key"))
    base_url: Text = Field(default=None, validation_alias=AliasChoices("baseUrl", "base_url"))
    timeout_ms: OptionalPositive = Field(default=None, validation_alias=AliasChoices("timeoutMs", "timeout_ms"))
    min_interval_ms: OptionalPositive = Field(
        default=None, validation_alias=AliasChoices("minIntervalMs", "min_interval_ms")
    )
    state_dir: Text = Field(default=None, validation_alias=AliasChoices("stateDir", "state_dir"))


class NoteWritePayload(NotesPayload):
    """Summary: Base for note actions that send a request body to the API.

    Importance: A caller-supplied `request` object is forwarded as-is instead of being built.
    Alternatives: Always build the body from individual fields.
    """

    request: dict[str, Any] | None = None

    @field_validator("request", mode="before")
    @classmethod
    def _request_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @abstractmethod
    def build_request(self) -> dict[str, Any]:
        """Summary: Return the JSON body for this action's endpoint."""


def paragraph_node(text: Any) -> dict[str, Any]:
    clean = text if isinstance(text, str) else ""
    if not clean:
        return {"type": "paragraph"}
    return {"type": "paragraph", "content": [{"type": "text", "text": clean}]}


def note_body_from_text(text: str) -> dict[str, Any]:
    lines = text.replace("\r\n", "\n").split("\n")
    return {"type": "doc", "content": [paragraph_node(line) for line in lines]}


def note_body_from_paragraphs(paragraphs: list[Any]) -> dict[str, Any]:
    content = []
    for entry in paragraphs:
        if isinstance(entry, dict):
            content.append(entry)
        elif isinstance(entry, str):
            content.append(paragraph_node(entry))
        else:
            content.append(paragraph_node("" if entry is None else str(entry)))
    return {"type": "doc", "content": content}


def resolve_note_body(raw: dict[str, Any]) -> dict[str, Any] | None:
    """Summary: Pick the note document body from the first source that resolves.

    Importance: Priority is structured body, named structured field, paragraphs, then flat text.
    Alternatives: Accept only a fully formed document.
    """

    if isinstance(raw.get("body"), dict):
        return raw["body"]
    for key in ("noteAtom", "note_atom"):
        if isinstance(raw.get(key), dict):
            return raw[key]
    if isinstance(raw.get("paragraphs"), list):
        return note_body_from_paragraphs(raw["paragraphs"])
    for key in ("text", "bodyText", "body_text", "contentText", "content_text"):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return note_body_from_text(value)
    return None


class NoteBodyPayload(NoteWritePayload):
    note_body: dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _resolve_body(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {**data, "note_body": resolve_note_body(data)}
        return data


def normalize_tags(value: Any) -> list[str] | None:
    tags = string_list(value)
    if not tags:
        return None
    return [tag[:30] for tag in tags[:10]]


class CreateNotePayload(NoteBodyPayload):
    settings: dict[str, Any] | None = None
    auto_publish: bool | None = Field(default=None, validation_alias=AliasChoices("autoPublish", "auto_publish"))
    tags: list[str] | None = None

    @field_validator("settings", mode="before")
    @classmethod
    def _settings_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @field_validator("auto_publish", mode="before")
    @classmethod
    def _auto_publish(cls, value: Any) -> Any:
        return value if isinstance(value, bool) else None

    @field_validator("tags", mode="before")
    @classmethod
    def _tags(cls, value: Any) -> Any:
        return normalize_tags(value)

    @model_validator(mode="after")
    def _require_body(self) -> "CreateNotePayload":
        if self.request is None and self.note_body is None:
            raise ValueError("create_note requires payload.body (NoteAtom) or payload.text / payload.paragraphs")
        return self

    def build_request(self) -> dict[str, Any]:
        if self.request is not None:
            return self.request
        settings = self.settings
        if settings is None and (self.auto_publish is not None or self.tags):
            settings = {}
            if self.auto_publish is not None:
                settings["autoPublish"] = self.auto_publish
            if self.tags:
                settings["tags"] = self.tags
        body: dict[str, Any] = {"body": self.note_body}
        if settings is not None:
            body["settings"] = settings
        return body


class EditNotePayload(NoteBodyPayload):
    note_id: IdText = Field(default=None, validation_alias=AliasChoices("noteId", "note_id", "id"))

    @model_validator(mode="after")
    def _require_fields(self) -> "EditNotePayload":
        if self.request is not None:
            return self
        if not self.note_id:
            raise ValueError("payload.noteId is required")
        if self.note_body is None:
            raise ValueError("edit_note requires payload.body (NoteAtom) or payload.text / payload.paragraphs")
        return self

    def build_request(self) -> dict[str, Any]:
        if self.request is not None:
            return self.request
        return {"noteId": self.note_id, "body": self.note_body}


class SetNotePayload(NoteWritePayload):
    note_id: IdText = Field(default=None, validation_alias=AliasChoices("noteId", "note_id", "id"))
    section: Page = 1
    settings: dict[str, Any] | None = None
    privacy: dict[str, Any] | None = None

    @field_validator("settings", "privacy", mode="before")
    @classmethod
    def _objects(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @model_validator(mode="after")
    def _require_fields(self) -> "SetNotePayload":
        if self.request is not None:
            return self
        if not self.note_id:
            raise ValueError("payload.noteId is required")
        if self.settings is None and self.privacy is None:
            raise ValueError("set_note requires payload.settings or payload.privacy")
        return self

    def build_request(self) -> dict[str, Any]:
        if self.request is not None:
            return self.request
        settings = self.settings if self.settings is not None else {"privacy": self.privacy}
        return {"noteId": self.note_id, "section": self.section, "settings": settings}


FILE_KINDS = {"image": 1, "img": 1, "picture": 1, "audio": 2, "pdf": 3}


def normalize_file_type(value: Any) -> int | None:
    """Summary: Map a numeric or named file kind onto the API's 1/2/3 enum."""

    if isinstance(value, bool) or (isinstance(value, float) and not math.isfinite(value)):
        return None
    if isinstance(value, (int, float)):
        number = int(value)
        return number if 1 <= number <= 3 else None
    text = clean_str(value)
    if not text:
        return None
    if text.isdigit():
        number = int(text)
        return number if 1 <= number <= 3 else None
    return FILE_KINDS.get(text.lower())


class UploadPreparePayload(NoteWritePayload):
    file_type: int | None = None
    file_name: Text = Field(default=None, validation_alias=AliasChoices("fileName", "file_name"))

    @model_validator(mode="before")
    @classmethod
    def _file_type(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        resolved = None
        for key in ("fileType", "file_type", "fileKind", "file_kind"):
            resolved = normalize_file_type(data.get(key))
            if resolved is not None:
                break
        return {**data, "file_type": resolved}

    @model_validator(mode="after")
    def _require_type(self) -> "UploadPreparePayload":
        if self.request is None and self.file_type is None:
            raise ValueError(
                f"{self.action_name} requires payload.fileType (1=image, 2=audio, 3=pdf) or payload.fileKind"
            )
        return self

    action_name: ClassVar[str] = "upload_prepare"

    def build_request(self) -> dict[str, Any]:
        if self.request is not None:
            return self.request
        body: dict[str, Any] = {"fileType": self.file_type}
        if self.file_name:
            body["fileName"] = self.file_name
        return body


class UploadUrlPayload(UploadPreparePayload):
    url: Text = None

    action_name: ClassVar[str] = "upload_url"

    @model_validator(mode="after")
    def _require_url(self) -> "UploadUrlPayload":
        if self.request is None and not self.url:
            raise ValueError("upload_url requires payload.url")
        return self

    def build_request(self) -> dict[str, Any]:
        if self.request is not None:
            return self.request
        body: dict[str, Any] = {"fileType": self.file_type, "url": self.url}
        if self.file_name:
            body["fileName"] = self.file_name
        return body


NOTES_PAYLOADS: dict[str, type[ActionPayload]] = {
    "health": NotesPayload,
    "create_note": CreateNotePayload,
    "edit_note": EditNotePayload,
    "set_note": SetNotePayload,
    "upload_prepare": UploadPreparePayload,
    "upload_url": UploadUrlPayload,
}


def format_payload_error(exc: ValidationError) -> str:
    """Summary: Render payload validation failures as the adapter's error string.

    Importance: Messages raised by validators are shown verbatim; field errors get a `payload.` path.
    Alternatives: Return pydantic's multi-line report.
    """

    parts = []
    for error in exc.errors():
        if error.get("type") == "value_error":
            cause = error.get("ctx", {}).get("error")
            parts.append(str(cause) if cause is not None else str(error.get("msg")))
            continue
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"payload.{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts)
