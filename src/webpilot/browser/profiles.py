"""Session profiles: the fixed browsing-context settings bound to a session key."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from .runtime_common import (
    AUTO_KEY_PREFIX,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    DEFAULT_TIMEOUT_MS,
    FALLBACK_SESSION_KEY,
    ISOLATED_KEY_PREFIX,
    host_token,
)

if TYPE_CHECKING:
    from webpilot.config.gateway_config import HostRule, SessionConfig, TimeoutConfig


class SessionClass(str, Enum):
    EXPLICIT = "explicit"
    NAVIGATION = "navigation"
    FALLBACK = "fallback"


def classify_key(key: str) -> SessionClass:
    if key == FALLBACK_SESSION_KEY or key.startswith(ISOLATED_KEY_PREFIX):
        return SessionClass.FALLBACK
    if key.startswith(AUTO_KEY_PREFIX):
        return SessionClass.NAVIGATION
    return SessionClass.EXPLICIT


@dataclass(frozen=True)
class SessionProfile:
    name: str
    session_class: SessionClass
    viewport: Dict[str, int] = field(default_factory=lambda: {"width": 1280, "height": 720})
    extra_http_headers: Dict[str, str] = field(default_factory=dict)
    user_agent: Optional[str] = None
    locale: Optional[str] = None
    idle_timeout_seconds: int = 1800
    default_timeout_ms: int = DEFAULT_TIMEOUT_MS
    navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS

    def context_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"viewport": dict(self.viewport)}
        if self.extra_http_headers:
            options["extra_http_headers"] = dict(self.extra_http_headers)
        if self.user_agent:
            options["user_agent"] = self.user_agent
        if self.locale:
            options["locale"] = self.locale
        return options

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "session_class": self.session_class.value,
            "viewport": dict(self.viewport),
            "idle_timeout_seconds": self.idle_timeout_seconds,
        }


class ProfileResolver:
    """
    Derive a SessionProfile from a session key.

    ``auto_*`` keys are matched against the configured host rules, either by
    the host seen at resolution time or by comparing normalized host tokens.
    A rule marked ``slow`` gets the long idle timeout; fallback and isolated
    sessions get the short one.
    """

    def __init__(
        self,
        sessions: Optional["SessionConfig"] = None,
        timeouts: Optional["TimeoutConfig"] = None,
    ) -> None:
        if sessions is None or timeouts is None:
            from webpilot.config.gateway_config import SessionConfig, TimeoutConfig

            sessions = sessions or SessionConfig()
            timeouts = timeouts or TimeoutConfig()
        self._sessions = sessions
        self._timeouts = timeouts

    def _rule_for_key(self, key: str, host: Optional[str]) -> Optional["HostRule"]:
        if host:
            return self._sessions.rule_for(host)
        token = key[len(AUTO_KEY_PREFIX):]
        for rule in self._sessions.host_rules:
            pattern_token = host_token(rule.pattern.replace("*.", "").replace("*", ""))
            if pattern_token and (token == pattern_token or token.endswith("_" + pattern_token)):
                return rule
        return None

    def resolve(self, key: str, host: Optional[str] = None) -> SessionProfile:
        session_class = classify_key(key)
        cfg = self._sessions
        rule = None
        if session_class is SessionClass.NAVIGATION:
            rule = self._rule_for_key(key, host)

        if session_class is SessionClass.FALLBACK:
            idle = cfg.fallback_idle_timeout_seconds
        elif rule is not None and rule.slow:
            idle = cfg.slow_idle_timeout_seconds
        elif session_class is SessionClass.NAVIGATION:
            idle = cfg.navigation_idle_timeout_seconds
        else:
            idle = cfg.idle_timeout_seconds
        if rule is not None and rule.idle_timeout_seconds is not None:
            idle = rule.idle_timeout_seconds

        headers = dict(cfg.headers)
        if rule is not None:
            headers.update(rule.headers)

        return SessionProfile(
            name=rule.pattern if rule is not None else session_class.value,
            session_class=session_class,
            viewport=dict((rule.viewport if rule is not None and rule.viewport else None) or cfg.viewport),
            extra_http_headers=headers,
            user_agent=(rule.user_agent if rule is not None and rule.user_agent else cfg.user_agent),
            locale=(rule.locale if rule is not None and rule.locale else cfg.locale),
            idle_timeout_seconds=max(1, int(idle)),
            default_timeout_ms=self._timeouts.default_ms,
            navigation_timeout_ms=self._timeouts.for_tool("navigate_to_url"),
        )
