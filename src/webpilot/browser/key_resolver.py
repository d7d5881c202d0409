"""Map an inbound tool call to the session key it should run against."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, Optional, Set
from urllib.parse import urlparse

from .errors import ErrorKind
from .logging_utils import log_event
from .runtime_common import (
    AUTO_KEY_PREFIX,
    FALLBACK_SESSION_KEY,
    ISOLATED_KEY_PREFIX,
    host_token,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyResolution:
    key: str
    reason: str
    ambiguous: bool = False
    host: Optional[str] = None


def host_of(address: Optional[str]) -> Optional[str]:
    """Return the lower-cased hostname of an absolute address, or None."""
    text = str(address or "").strip()
    if not text:
        return None
    try:
        parsed = urlparse(text)
        host = parsed.hostname
    except ValueError:
        return None
    if not parsed.scheme or not host:
        return None
    return host.lower()


class SessionKeyResolver:
    """
    Resolution order:

    1. a non-blank explicit key is returned verbatim;
    2. navigation tools with a parsable target address get ``auto_<host>``;
    3. otherwise reuse the only live session, use ``default`` when there is
       none, or mint a fresh ``isolated_<hex>`` key when several exist.
    """

    def __init__(self, navigation_tools: Iterable[str] = ("navigate_to_url",)) -> None:
        self._navigation_tools: Set[str] = set(navigation_tools)
        self._minted: Set[str] = set()

    def resolve(
        self,
        explicit_key: Optional[str],
        tool_name: str,
        target_address: Optional[str],
        existing_keys: Iterable[str],
        *,
        navigates: Optional[bool] = None,
    ) -> KeyResolution:
        if navigates is None:
            navigates = tool_name in self._navigation_tools
        key = str(explicit_key).strip() if explicit_key is not None else ""
        if key:
            return KeyResolution(key=key, reason="explicit")

        host = host_of(target_address)
        if navigates and host:
            token = host_token(host)
            if token:
                return KeyResolution(key=f"{AUTO_KEY_PREFIX}{token}", reason="host", host=host)

        existing = sorted(set(existing_keys))
        if len(existing) == 1:
            return KeyResolution(key=existing[0], reason="single_session")
        if not existing:
            return KeyResolution(key=FALLBACK_SESSION_KEY, reason="fallback")

        minted = self._mint(existing)
        log_event(
            logger,
            level=logging.WARNING,
            event="session_resolution_ambiguous",
            kind=ErrorKind.SESSION_RESOLUTION_AMBIGUOUS.value,
            tool=tool_name,
            live_sessions=len(existing),
            key=minted,
        )
        return KeyResolution(key=minted, reason="isolated", ambiguous=True)

    def _mint(self, existing: Iterable[str]) -> str:
        taken = set(existing)
        while True:
            candidate = f"{ISOLATED_KEY_PREFIX}{uuid.uuid4().hex[:12]}"
            if candidate not in self._minted and candidate not in taken:
                self._minted.add(candidate)
                return candidate
