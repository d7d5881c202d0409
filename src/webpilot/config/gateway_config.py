from __future__ import annotations

import fnmatch
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from webpilot.browser.runtime_common import (
    DEFAULT_MAX_SESSIONS,
    DEFAULT_PROBE_TIMEOUT_SECONDS,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    DEFAULT_TIMEOUT_MS,
)

DEFAULT_HTTP_PORT = 10000

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})

DEFAULT_TOOL_TIMEOUTS_MS: Dict[str, int] = {
    "navigate_to_url": 45_000,
    "wait_for_content": 60_000,
    "fill_form": 10_000,
    "click_element": 10_000,
    "get_page_content": 15_000,
    "get_page_html": 15_000,
    "capture_screenshot": 30_000,
    "extract_data": 20_000,
    "extract_links": 20_000,
    "extract_tables": 20_000,
    "submit_form": 60_000,
    "smart_fill_form": 60_000,
}


def _env_flag(name: str, current: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    return current


def _env_int(name: str, current: int, minimum: int = 1) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return current
    try:
        return max(minimum, int(raw))
    except ValueError:
        return current


def _env_text(name: str, current: Optional[str]) -> Optional[str]:
    return os.environ.get(name, "").strip() or current


def _as_str_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return [str(item).strip() for item in value if str(item).strip()]


def _as_str_dict(value: Any) -> Dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}


def host_matches(pattern: str, host: str) -> bool:
    """Match a host against a rule pattern (glob, or bare suffix like ``example.com``)."""
    pattern = (pattern or "").strip().lower()
    host = (host or "").strip().lower()
    if not pattern or not host:
        return False
    if any(ch in pattern for ch in "*?["):
        return fnmatch.fnmatch(host, pattern)
    return host == pattern or host.endswith("." + pattern)


@dataclass
class EngineConfig:
    headless: bool = True
    executable_path: Optional[str] = None
    channel: Optional[str] = None
    extra_args: List[str] = field(default_factory=list)
    single_process: bool = False
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    launch_timeout_ms: int = 60_000

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EngineConfig":
        if not isinstance(data, dict):
            return cls()
        return cls(
            headless=bool(data.get("headless", True)),
            executable_path=data.get("executable_path") or None,
            channel=data.get("channel") or None,
            extra_args=_as_str_list(data.get("extra_args")),
            single_process=bool(data.get("single_process", False)),
            probe_timeout_seconds=float(data.get("probe_timeout_seconds", DEFAULT_PROBE_TIMEOUT_SECONDS)),
            launch_timeout_ms=int(data.get("launch_timeout_ms", 60_000)),
        )


@dataclass
class HostRule:
    """Per-host overrides for the browsing context of ``auto_*`` sessions."""

    pattern: str
    viewport: Optional[Dict[str, int]] = None
    user_agent: Optional[str] = None
    locale: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    idle_timeout_seconds: Optional[int] = None
    slow: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["HostRule"]:
        if not isinstance(data, dict):
            return None
        pattern = str(data.get("pattern") or data.get("host") or "").strip()
        if not pattern:
            return None
        viewport = data.get("viewport")
        idle = data.get("idle_timeout_seconds")
        return cls(
            pattern=pattern,
            viewport=(
                {"width": int(viewport["width"]), "height": int(viewport["height"])}
                if isinstance(viewport, dict) and "width" in viewport and "height" in viewport
                else None
            ),
            user_agent=data.get("user_agent") or None,
            locale=data.get("locale") or None,
            headers=_as_str_dict(data.get("headers")),
            idle_timeout_seconds=int(idle) if idle is not None else None,
            slow=bool(data.get("slow", False)),
        )

    def matches(self, host: str) -> bool:
        return host_matches(self.pattern, host)


@dataclass
class SessionConfig:
    max_sessions: int = DEFAULT_MAX_SESSIONS
    idle_timeout_seconds: int = 1800
    navigation_idle_timeout_seconds: int = 1800
    fallback_idle_timeout_seconds: int = 300
    slow_idle_timeout_seconds: int = 3600
    sweep_interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS
    viewport: Dict[str, int] = field(default_factory=lambda: {"width": 1280, "height": 720})
    user_agent: Optional[str] = None
    locale: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    host_rules: List[HostRule] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SessionConfig":
        if not isinstance(data, dict):
            return cls()
        defaults = cls()
        viewport = data.get("viewport")
        rules = [HostRule.from_dict(item) for item in (data.get("host_rules") or [])]
        return cls(
            max_sessions=max(1, int(data.get("max_sessions", defaults.max_sessions))),
            idle_timeout_seconds=int(data.get("idle_timeout_seconds", defaults.idle_timeout_seconds)),
            navigation_idle_timeout_seconds=int(
                data.get("navigation_idle_timeout_seconds", defaults.navigation_idle_timeout_seconds)
            ),
            fallback_idle_timeout_seconds=int(
                data.get("fallback_idle_timeout_seconds", defaults.fallback_idle_timeout_seconds)
            ),
            slow_idle_timeout_seconds=int(
                data.get("slow_idle_timeout_seconds", defaults.slow_idle_timeout_seconds)
            ),
            sweep_interval_seconds=max(
                1, int(data.get("sweep_interval_seconds", defaults.sweep_interval_seconds))
            ),
            viewport=(
                {"width": int(viewport["width"]), "height": int(viewport["height"])}
                if isinstance(viewport, dict) and "width" in viewport and "height" in viewport
                else defaults.viewport
            ),
            user_agent=data.get("user_agent") or None,
            locale=data.get("locale") or None,
            headers=_as_str_dict(data.get("headers")),
            host_rules=[rule for rule in rules if rule is not None],
        )

    def rule_for(self, host: str) -> Optional[HostRule]:
        for rule in self.host_rules:
            if rule.matches(host):
                return rule
        return None


@dataclass
class TimeoutConfig:
    default_ms: int = DEFAULT_TIMEOUT_MS
    tools: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TOOL_TIMEOUTS_MS))

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TimeoutConfig":
        if not isinstance(data, dict):
            return cls()
        tools = dict(DEFAULT_TOOL_TIMEOUTS_MS)
        for name, value in (data.get("tools") or {}).items():
            try:
                tools[str(name)] = max(1, int(value))
            except (TypeError, ValueError):
                continue
        return cls(
            default_ms=max(1, int(data.get("default_ms", DEFAULT_TIMEOUT_MS))),
            tools=tools,
        )

    def for_tool(self, name: str) -> int:
        return int(self.tools.get(name, self.default_ms))


@dataclass
class CredentialConfig:
    """Login credentials applied when navigation lands on a login form."""

    pattern: str
    username: Optional[str] = None
    password: Optional[str] = None
    username_selector: Optional[str] = None
    password_selector: Optional[str] = None
    submit_selector: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["CredentialConfig"]:
        if not isinstance(data, dict):
            return None
        pattern = str(data.get("pattern") or data.get("host") or "").strip()
        if not pattern:
            return None
        return cls(
            pattern=pattern,
            username=data.get("username") or None,
            password=data.get("password") or None,
            username_selector=data.get("username_selector") or None,
            password_selector=data.get("password_selector") or None,
            submit_selector=data.get("submit_selector") or None,
        )

    def matches(self, host: str) -> bool:
        return host_matches(self.pattern, host)

    @property
    def usable(self) -> bool:
        return bool(self.username and self.password)


@dataclass
class HttpConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_HTTP_PORT
    path: str = "/mcp"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "HttpConfig":
        if not isinstance(data, dict):
            return cls()
        path = str(data.get("path") or "/mcp").strip() or "/mcp"
        if not path.startswith("/"):
            path = "/" + path
        return cls(
            host=str(data.get("host") or "0.0.0.0"),
            port=int(data.get("port") or DEFAULT_HTTP_PORT),
            path=path,
            cors_origins=_as_str_list(data.get("cors_origins")) or ["*"],
        )


@dataclass
class GatewayConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    credentials: List[CredentialConfig] = field(default_factory=list)
    http: HttpConfig = field(default_factory=HttpConfig)
    screenshot_dir: Optional[str] = None
    memory_gc_threshold_mb: int = 512
    server_name: str = "webpilot"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GatewayConfig":
        if not isinstance(data, dict):
            return cls()
        creds = [CredentialConfig.from_dict(item) for item in (data.get("credentials") or [])]
        return cls(
            engine=EngineConfig.from_dict(data.get("engine")),
            sessions=SessionConfig.from_dict(data.get("sessions")),
            timeouts=TimeoutConfig.from_dict(data.get("timeouts")),
            credentials=[item for item in creds if item is not None],
            http=HttpConfig.from_dict(data.get("http")),
            screenshot_dir=data.get("screenshot_dir") or None,
            memory_gc_threshold_mb=int(data.get("memory_gc_threshold_mb", 512)),
            server_name=str(data.get("server_name") or "webpilot"),
        )

    def apply_env_overrides(self) -> "GatewayConfig":
        """Apply ``WEBPILOT_*`` (and ``PORT``) environment overrides in place."""
        self.engine.headless = _env_flag("WEBPILOT_HEADLESS", self.engine.headless)
        self.engine.single_process = _env_flag(
            "WEBPILOT_SINGLE_PROCESS", self.engine.single_process
        )
        self.engine.executable_path = _env_text(
            "WEBPILOT_BROWSER_EXECUTABLE_PATH", self.engine.executable_path
        )
        sessions = self.sessions
        sessions.max_sessions = _env_int("WEBPILOT_MAX_SESSIONS", sessions.max_sessions)
        sessions.idle_timeout_seconds = _env_int(
            "WEBPILOT_SESSION_IDLE_SECS", sessions.idle_timeout_seconds
        )
        sessions.sweep_interval_seconds = _env_int(
            "WEBPILOT_SWEEP_INTERVAL_SECS", sessions.sweep_interval_seconds
        )
        self.http.host = _env_text("WEBPILOT_HTTP_HOST", self.http.host) or self.http.host
        self.http.port = _env_int("PORT", self.http.port)
        self.screenshot_dir = _env_text("WEBPILOT_SCREENSHOT_DIR", self.screenshot_dir)
        return self

    def credentials_for(self, host: str) -> Optional[CredentialConfig]:
        for item in self.credentials:
            if item.matches(host):
                return item
        return None


def load_gateway_config(path: Optional[Path] = None) -> GatewayConfig:
    """Load config from an optional YAML/JSON file, then apply env overrides."""
    from webpilot.command.command_utils import resolve_env_vars
    from webpilot.util.file_utils import from_json_or_yaml

    data: Dict[str, Any] = {}
    if path is not None:
        data = resolve_env_vars(from_json_or_yaml(path) or {})
    return GatewayConfig.from_dict(data).apply_env_overrides()
