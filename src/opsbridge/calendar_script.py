"""Summary: JXA source run by osascript for the macOS Calendar backend.

Importance: Keeps the automation script small; filtering, sorting, and validation happen in Python.
Alternatives: Ship the script as a separate .js file resolved at runtime.
"""

REQUEST_PATH_ENV = "OPSBRIDGE_CALENDAR_REQ_PATH"

JXA_SOURCE = r"""
ObjC.import("Foundation");
ObjC.import("stdlib");

function readEnv(name) {
  try {
    var env = $.NSProcessInfo.processInfo.environment;
    var v = env.objectForKey($(name));
    return v ? ObjC.unwrap(v) : null;
  } catch (e) {
    return null;
  }
}

function readTextFile(p) {
  var data = $.NSData.dataWithContentsOfFile($(p).stringByStandardizingPath);
  if (!data) throw new Error("cannot read request file: " + p);
  return ObjC.unwrap($.NSString.alloc.initWithDataEncoding(data, $.NSUTF8StringEncoding));
}

function safeCall(obj, name, fallback) {
  try {
    if (!obj) return fallback;
    var fn = obj[name];
    if (typeof fn === "function") return obj[name]();
    return typeof fn === "undefined" ? fallback : fn;
  } catch (e) {
    return fallback;
  }
}

function realize(coll) {
  if (coll === null || typeof coll === "undefined") return [];
  var target = coll;
  if (typeof target === "function") {
    try { target = target(); } catch (e) {}
  }
  if (Array.isArray(target)) return target;
  if (typeof target.length === "number") {
    var out = [];
    for (var i = 0; i < target.length; i++) out.push(target[i]);
    return out;
  }
  return [target];
}

function text(v) {
  return v === null || typeof v === "undefined" ? null : String(v);
}

function iso(v) {
  if (!v) return null;
  var d = new Date(v);
  return Number.isFinite(d.getTime()) ? d.toISOString() : null;
}

function eventRow(ev, calName) {
  var uid = safeCall(ev, "uid", null) || safeCall(ev, "id", null);
  return {
    id: uid ? String(uid) : null,
    calendar: calName,
    title: text(safeCall(ev, "summary", null)),
    start: iso(safeCall(ev, "startDate", null)),
    end: iso(safeCall(ev, "endDate", null)),
    allDay: safeCall(ev, "alldayEvent", false) === true,
    location: text(safeCall(ev, "location", null)),
    notes: text(safeCall(ev, "description", null)),
    url: text(safeCall(ev, "url", null)),
    status: text(safeCall(ev, "status", null)),
  };
}

function calendarRow(cal) {
  return {
    name: text(safeCall(cal, "name", null)),
    calendarIdentifier: text(safeCall(cal, "calendarIdentifier", null)),
    writable: safeCall(cal, "writable", false) === true,
    description: text(safeCall(cal, "description", null)),
  };
}

function calendarsNamed(Calendar, names) {
  if (!names || names.length === 0) return realize(Calendar.calendars());
  var out = [];
  for (var i = 0; i < names.length; i++) {
    var found = realize(Calendar.calendars.whose({ name: names[i] }));
    for (var j = 0; j < found.length; j++) out.push(found[j]);
  }
  return out;
}

function listEvents(Calendar, args) {
  var start = new Date(args.start);
  var end = new Date(args.end);
  var rows = [];
  var cals = calendarsNamed(Calendar, args.calendars);
  for (var i = 0; i < cals.length; i++) {
    var calName = text(safeCall(cals[i], "name", null));
    var matches;
    try {
      matches = cals[i].events.whose({ startDate: { _lessThan: end }, endDate: { _greaterThan: start } });
    } catch (e) {
      matches = cals[i].events();
    }
    var evs = realize(matches);
    for (var j = 0; j < evs.length; j++) {
      var row = eventRow(evs[j], calName);
      if (row.id && row.start && row.end) rows.push(row);
    }
  }
  return rows;
}

function findEvent(Calendar, args) {
  var cals = calendarsNamed(Calendar, args.calendars);
  for (var i = 0; i < cals.length; i++) {
    var calName = text(safeCall(cals[i], "name", null));
    try {
      var byId = cals[i].events.byId(args.id);
      var row = eventRow(byId, calName);
      if (row.id) return { handle: byId, row: row };
    } catch (e) {}
    var evs = realize(cals[i].events());
    for (var j = 0; j < evs.length; j++) {
      var uid = text(safeCall(evs[j], "uid", null) || safeCall(evs[j], "id", null));
      if (uid && uid === args.id) return { handle: evs[j], row: eventRow(evs[j], calName) };
    }
  }
  return null;
}

function applyFields(ev, fields) {
  ev.summary = fields.title;
  ev.startDate = new Date(fields.start);
  ev.endDate = new Date(fields.end);
  ev.alldayEvent = fields.allDay === true;
  ev.location = fields.location == null ? "" : String(fields.location);
  ev.description = fields.notes == null ? "" : String(fields.notes);
  ev.url = fields.url == null ? "" : String(fields.url);
}

function main() {
  var reqPath = readEnv("OPSBRIDGE_CALENDAR_REQ_PATH");
  if (!reqPath) throw new Error("OPSBRIDGE_CALENDAR_REQ_PATH missing");
  var req = JSON.parse(readTextFile(reqPath));
  var op = String(req.op || "");
  var args = req.args && typeof req.args === "object" ? req.args : {};
  var Calendar = Application("Calendar");

  if (op === "list_calendars") {
    return realize(Calendar.calendars()).map(calendarRow);
  }
  if (op === "list_events") {
    return listEvents(Calendar, args);
  }
  if (op === "find_event") {
    var found = findEvent(Calendar, args);
    return found ? found.row : null;
  }
  if (op === "create_event") {
    var target = calendarsNamed(Calendar, [args.calendar])[0];
    if (!target) throw new Error("calendar not found: " + args.calendar);
    var props = {
      summary: args.event.title,
      startDate: new Date(args.event.start),
      endDate: new Date(args.event.end),
    };
    if (typeof args.event.location === "string") props.location = args.event.location;
    if (typeof args.event.notes === "string") props.description = args.event.notes;
    if (typeof args.event.url === "string") props.url = args.event.url;
    if (args.event.allDay === true) props.alldayEvent = true;
    var ev = Calendar.Event(props);
    target.events.push(ev);
    Calendar.reloadCalendars();
    return eventRow(ev, text(safeCall(target, "name", null)));
  }
  if (op === "update_event") {
    var current = findEvent(Calendar, { id: args.event.id, calendars: [args.event.calendar] });
    if (!current) return null;
    applyFields(current.handle, args.event);
    Calendar.reloadCalendars();
    var refreshed = findEvent(Calendar, { id: args.event.id, calendars: [args.event.calendar] });
    return (refreshed || current).row;
  }
  if (op === "delete_event") {
    var doomed = findEvent(Calendar, { id: args.id, calendars: [args.calendar] });
    if (!doomed) return null;
    Calendar.delete(doomed.handle);
    Calendar.reloadCalendars();
    return doomed.row;
  }
  throw new Error("unsupported op: " + op);
}

function emit(obj) {
  $.NSFileHandle.fileHandleWithStandardOutput.writeData(
    $(JSON.stringify(obj) + "\n").dataUsingEncoding($.NSUTF8StringEncoding)
  );
}

try {
  emit({ ok: true, data: main() });
} catch (e) {
  emit({ ok: false, error: e && e.message ? e.message : String(e) });
}
"""
