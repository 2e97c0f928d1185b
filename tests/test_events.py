import json

from proprion import events
from proprion.errors import PropagationTimedOut


def test_emit_writes_one_sorted_json_line_without_secrets():
    lines: list[str] = []
    events.set_sink(lines.append)
    try:
        event = events.new_event("proprion.test", provider="exo", secretKey="nope", nested={"api_secret": "x"})
        events.emit(event)
    finally:
        events.set_sink(events.stderr_sink)

    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["event"] == "proprion.test"
    assert record["schema_version"] == events.SCHEMA_VERSION
    assert "_start" not in record
    assert "secretKey" not in record
    assert record["nested"] == {}
    assert isinstance(record["duration_ms"], int)


def test_record_error_includes_leftover_resources():
    event = events.new_event("proprion.test")
    events.record_error(event, PropagationTimedOut("slow", step="role_created", resources={"roleId": "r-1"}))
    assert event["outcome"] == "error"
    assert event["error"]["type"] == "PropagationTimedOut"
    assert event["resources_left"] == {"roleId": "r-1"}


def test_muted_sink_drops_events(capsys):
    events.set_sink(None)
    try:
        events.emit(events.new_event("proprion.test"))
    finally:
        events.set_sink(events.stderr_sink)
    assert capsys.readouterr().err == ""
