"""One-line JSON log records on stdout."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable

JOB = "a03_returns_sheet_sync"


def utc_now_iso() -> str:
    """Return the current UTC time in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def log_event(lvl: str, msg: str, **fields: Any) -> dict:
    rec = {"ts": utc_now_iso(), "lvl": lvl, "job": JOB, "msg": msg}
    rec.update(fields)
    print(json.dumps(rec, separators=(",", ":"), default=str), flush=True)
    return rec


__all__: Iterable[str] = ("utc_now_iso", "log_event", "JOB")
