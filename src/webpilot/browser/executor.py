"""
Action executor.

Runs one catalog tool against a session page under a bounded timeout and
turns every expected failure into a result dict. Only unexpected exceptions
and ``FatalError`` escape to the gateway.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import ValidationError

from .errors import (
    ActionFailed,
    ActionTimeout,
    BrowserGatewayError,
    ErrorKind,
    FatalError,
    InvalidArguments,
    NavigationFailed,
    UnknownTool,
)
from .logging_utils import log_event
from .runtime_common import clamp_timeout_ms

if TYPE_CHECKING:
    from webpilot.config.gateway_config import GatewayConfig
    from webpilot.tool.decorator import ToolMetadata
    from webpilot.tool.registry import ToolRegistry

    from .page_actions import PageActions
    from .session_manager import Session, SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 2.0

# Tools that chain several bounded page operations (goto, login, goto again).
_BUDGET_FACTOR: Dict[str, int] = {
    "navigate_to_url": 3,
    "submit_form": 2,
    "smart_fill_form": 2,
    "extract_data": 2,
    "extract_links": 2,
    "extract_tables": 2,
}


@dataclass
class ToolContext:
    """Everything a catalog tool may touch during one call."""

    tool_name: str
    session: Optional["Session"]
    sessions: "SessionRegistry"
    actions: "PageActions"
    config: "GatewayConfig"
    timeout_ms: int

    @property
    def page(self) -> Any:
        if self.session is None:
            raise ActionFailed(f"Tool {self.tool_name} has no session page")
        return self.session.page


class ActionExecutor:
    def __init__(
        self,
        tools: "ToolRegistry",
        sessions: "SessionRegistry",
        actions: "PageActions",
        config: "GatewayConfig",
        *,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ) -> None:
        self._tools = tools
        self._sessions = sessions
        self._actions = actions
        self._config = config
        self._grace_seconds = max(0.0, float(grace_seconds))

    def lookup(self, tool_name: str) -> "ToolMetadata":
        tool = self._tools.get(tool_name)
        if tool is None:
            raise UnknownTool(
                f"Unknown tool: {tool_name}",
                details={"available_tools": self._tools.tool_names},
            )
        return tool

    def validate(self, tool: "ToolMetadata", arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if arguments is not None and not isinstance(arguments, dict):
            raise InvalidArguments("Tool arguments must be an object")
        try:
            return tool.validate_arguments(arguments)
        except ValidationError as exc:
            raise InvalidArguments(
                f"Invalid arguments for {tool.name}",
                details={
                    "errors": [
                        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
                        for err in exc.errors()
                    ]
                },
            ) from exc

    def timeout_for(self, tool_name: str, arguments: Dict[str, Any]) -> int:
        configured = self._config.timeouts.for_tool(tool_name)
        requested = arguments.get("timeout")
        if requested is None:
            return configured
        return clamp_timeout_ms(requested, configured)

    async def execute(
        self,
        session: Optional["Session"],
        tool_name: str,
        arguments: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        started = time.perf_counter()
        tool = self.lookup(tool_name)
        session_id = session.key if session is not None else None
        try:
            kwargs = self.validate(tool, arguments)
            timeout_ms = self.timeout_for(tool.name, kwargs)
            ctx = ToolContext(
                tool_name=tool.name,
                session=session,
                sessions=self._sessions,
                actions=self._actions,
                config=self._config,
                timeout_ms=timeout_ms,
            )
            budget = timeout_ms / 1000.0 * _BUDGET_FACTOR.get(tool.name, 1) + self._grace_seconds
            payload = await asyncio.wait_for(tool.execute(ctx, **kwargs), timeout=budget)
        except FatalError:
            raise
        except BrowserGatewayError as exc:
            return self._failed(tool.name, session_id, exc, started)
        except (PlaywrightTimeoutError, asyncio.TimeoutError) as exc:
            error = ActionTimeout(
                f"{tool.name} timed out",
                details={"reason": str(exc) or "deadline exceeded"},
            )
            return self._failed(tool.name, session_id, error, started)
        except PlaywrightError as exc:
            message = str(exc).strip().splitlines()[0] if str(exc).strip() else type(exc).__name__
            if "net::ERR_" in str(exc):
                error: BrowserGatewayError = NavigationFailed(message)
            else:
                error = ActionFailed(message)
            return self._failed(tool.name, session_id, error, started)
        except ValueError as exc:
            return self._failed(tool.name, session_id, InvalidArguments(str(exc)), started)

        out = dict(payload or {})
        if session_id is not None:
            out.setdefault("session_id", session_id)
        log_event(
            logger,
            level=logging.DEBUG,
            event="execute_success",
            tool=tool.name,
            session_id=session_id,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return self._ok(**out)

    def _failed(
        self,
        tool_name: str,
        session_id: Optional[str],
        exc: BrowserGatewayError,
        started: float,
    ) -> Dict[str, Any]:
        log_event(
            logger,
            level=logging.WARNING,
            event="execute_failed",
            tool=tool_name,
            session_id=session_id,
            kind=exc.kind.value,
            duration_ms=int((time.perf_counter() - started) * 1000),
            error=exc.message,
        )
        details = dict(exc.details)
        if session_id is not None:
            details.setdefault("session_id", session_id)
        return self._err(exc.message, kind=exc.kind, details=details)

    @staticmethod
    def _ok(**payload: Any) -> Dict[str, Any]:
        out = {"success": True, "error": None}
        out.update(payload)
        return out

    @staticmethod
    def _err(
        message: str,
        *,
        kind: ErrorKind = ErrorKind.ACTION_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error": message,
            "error_kind": kind.value,
        }
        if details:
            payload["error_details"] = details
        return payload
