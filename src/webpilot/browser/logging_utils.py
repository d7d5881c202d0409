"""One-line ``key=value`` lifecycle events.

Every event is emitted as ``webpilot event=<name> k1=v1 k2=v2`` so the
rotating log file stays grep-able. ``None`` fields are omitted and values
with whitespace or quotes are JSON-quoted.
"""

from __future__ import annotations

import json
import logging
from typing import Any


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        return f"{value:.3f}"
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(_render(item) for item in value)
    text = str(value)
    if not text or any(ch.isspace() or ch in "\"'=" for ch in text):
        return json.dumps(text, ensure_ascii=False)
    return text


def log_event(logger: logging.Logger, *, level: int, event: str, **fields: Any) -> None:
    if not logger.isEnabledFor(level):
        return
    line = [f"event={event}"]
    line.extend(f"{key}={_render(value)}" for key, value in fields.items() if value is not None)
    logger.log(level, "webpilot %s", " ".join(line))
