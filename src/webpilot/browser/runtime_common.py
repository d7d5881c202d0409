"""Defaults and small coercion helpers used across the browser modules."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any, Optional

# Timeouts (milliseconds unless the name says seconds)
DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_NAVIGATION_TIMEOUT_MS = 45_000
DEFAULT_POST_GOTO_SETTLE_MS = 2_500
DEFAULT_PROBE_TIMEOUT_SECONDS = 3.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 60
MAX_WAIT_SECONDS = 60.0

DEFAULT_MAX_SESSIONS = 5

# Session key shapes
FALLBACK_SESSION_KEY = "default"
AUTO_KEY_PREFIX = "auto_"
ISOLATED_KEY_PREFIX = "isolated_"

_NON_TOKEN = re.compile(r"[^a-z0-9]")
_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9_.-]+")


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def as_text(value: Any) -> str:
    """``str(value)`` that maps ``None`` and unprintable objects to ``""``."""
    if value is None:
        return ""
    try:
        return str(value)
    except Exception:
        return ""


def clamp_timeout_ms(timeout_ms: Optional[Any], default: int = DEFAULT_TIMEOUT_MS) -> int:
    if timeout_ms is None or isinstance(timeout_ms, bool):
        return default
    try:
        return max(1, int(timeout_ms))
    except (TypeError, ValueError):
        return default


def screenshot_filename(name: Optional[str], *, default: str = "screenshot") -> str:
    """Reduce a caller supplied name to a bare, shell safe file name."""
    leaf = PurePath(str(name or "").strip()).name
    return _UNSAFE_FILENAME.sub("-", leaf).strip("-.") or default


def host_token(host: str) -> str:
    """``Shop.Example.com`` -> ``shop_example_com`` (``www.`` dropped).

    Takes a bare hostname as returned by ``urlparse().hostname``, so IPv6
    literals such as ``::1`` keep their colons until they become ``_``.
    """
    hostname = str(host or "").strip().lower().removeprefix("www.")
    return _NON_TOKEN.sub("_", hostname)
