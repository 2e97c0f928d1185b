from __future__ import annotations

import json
import sys
import time
from datetime import datetime, timezone
from typing import Any, Callable

SCHEMA_VERSION = "2026-10-01"

Sink = Callable[[str], None]


def stderr_sink(line: str) -> None:
    sys.stderr.write(line + "\n")


_sink: Sink | None = stderr_sink


def set_sink(sink: Sink | None) -> None:
    """Route wide events somewhere else; ``None`` mutes them."""

    global _sink
    _sink = sink


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: _scrub(v)
            for k, v in value.items()
            if "secret" not in str(k).lower()
        }
    if isinstance(value, (list, tuple)):
        return [_scrub(v) for v in value]
    return value


def new_event(name: str, **fields: Any) -> dict[str, Any]:
    event: dict[str, Any] = {
        "event": name,
        "schema_version": SCHEMA_VERSION,
        "ts": _now_iso(),
        "_start": time.monotonic(),
    }
    event.update(fields)
    return event


def record_error(event: dict[str, Any], exc: BaseException) -> None:
    event["outcome"] = "error"
    event["error"] = {"type": type(exc).__name__, "message": str(exc)}
    resources = getattr(exc, "resources", None)
    if resources:
        event["resources_left"] = dict(resources)


def emit(event: dict[str, Any]) -> None:
    start = event.pop("_start", None)
    if start is not None:
        event["duration_ms"] = int((time.monotonic() - start) * 1000)
    if _sink is None:
        return
    # Never log credential material.
    _sink(json.dumps(_scrub(event), separators=(",", ":"), sort_keys=True, default=str))
