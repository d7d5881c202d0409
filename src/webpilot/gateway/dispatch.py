"""
Dispatch gateway.

One ``Dispatcher.handle`` serves every transport: decode the envelope, route
the method, resolve the session for tool calls, run the executor, and build
the JSON-RPC response. Nothing raised below this boundary reaches a
transport.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, Optional, Union

from webpilot.browser.errors import (
    BrowserGatewayError,
    ErrorKind,
    FatalError,
    ProtocolDecodeError,
)
from webpilot.browser.executor import ActionExecutor
from webpilot.browser.key_resolver import SessionKeyResolver
from webpilot.browser.logging_utils import log_event
from webpilot.browser.session_manager import SessionRegistry
from webpilot.tool.registry import ToolRegistry

from .protocol import (
    FATAL_ERROR,
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    CallEnvelope,
    Stage,
    code_for_kind,
    decode,
    error_response,
    failure_response,
    select_protocol,
    success_response,
    tool_result,
)

logger = logging.getLogger(__name__)

FatalCallback = Callable[[FatalError], Any]


class Dispatcher:
    def __init__(
        self,
        tools: ToolRegistry,
        sessions: SessionRegistry,
        executor: ActionExecutor,
        resolver: Optional[SessionKeyResolver] = None,
        *,
        server_name: str = "webpilot",
        server_version: str = "0.1.0",
        instructions: str = "",
        on_fatal: Optional[FatalCallback] = None,
    ) -> None:
        self._tools = tools
        self._sessions = sessions
        self._executor = executor
        self._resolver = resolver or SessionKeyResolver(tools.navigation_tools)
        self._server_info = {"name": server_name, "version": server_version}
        self._instructions = instructions
        self._on_fatal = on_fatal
        self._background: set[asyncio.Task] = set()
        self.fatal_error: Optional[FatalError] = None

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    async def handle(
        self,
        message: Union[str, bytes, Dict[str, Any]],
        transport: str = "stdio",
    ) -> Optional[Dict[str, Any]]:
        """Process one inbound message; returns None for notifications."""
        started = time.perf_counter()
        envelope: Optional[CallEnvelope] = None
        request_id = None
        try:
            request = decode(message)
            request_id = request.id
            envelope = CallEnvelope.from_request(request, transport)
            response = await self._route(envelope)
        except ProtocolDecodeError as exc:
            code = int(exc.details.get("code") or code_for_kind(exc.kind))
            data: Dict[str, Any] = {"kind": exc.kind.value}
            if exc.details.get("errors"):
                data["details"] = {"errors": exc.details["errors"]}
            log_event(
                logger,
                level=logging.WARNING,
                event="decode_failed",
                transport=transport,
                code=code,
                error=exc.message,
            )
            response = error_response(exc.details.get("request_id", request_id), code, exc.message, data)
        except FatalError as exc:
            logger.critical("Fatal gateway error: %s %s", exc.message, exc.details)
            self._trigger_fatal(exc)
            response = error_response(request_id, FATAL_ERROR, exc.message, exc.to_dict())
        except BrowserGatewayError as exc:
            response = error_response(request_id, code_for_kind(exc.kind), exc.message, exc.to_dict())
        except Exception as exc:
            logger.exception(
                "Unhandled error while dispatching %s",
                envelope.method if envelope is not None else "<undecoded>",
            )
            response = error_response(
                request_id,
                INTERNAL_ERROR,
                "Internal error",
                {"kind": ErrorKind.INTERNAL_ERROR.value, "message": str(exc) or type(exc).__name__},
            )

        failed = response is not None and "error" in response
        stage = Stage.FAILED if failed or envelope is None else envelope.stage
        log_event(
            logger,
            level=logging.DEBUG,
            event="dispatch",
            transport=transport,
            method=envelope.method if envelope is not None else None,
            tool=envelope.tool_name if envelope is not None else None,
            stage=stage.value,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        if envelope is not None:
            envelope.stage = Stage.RESPONDED
            if envelope.is_notification:
                return None
        return response

    async def _route(self, envelope: CallEnvelope) -> Optional[Dict[str, Any]]:
        method = envelope.method
        if method == "initialize":
            return success_response(envelope.request_id, self._initialize_result(envelope))
        if method == "ping":
            return success_response(envelope.request_id, {})
        if method == "tools/list":
            return success_response(envelope.request_id, {"tools": self._tools.get_schemas()})
        if method == "tools/call":
            return await self._call_tool(envelope)
        if method.startswith("notifications/"):
            return None
        return error_response(
            envelope.request_id,
            METHOD_NOT_FOUND,
            f"Method {method} not found",
            {"kind": ErrorKind.PROTOCOL_DECODE_ERROR.value},
        )

    def _initialize_result(self, envelope: CallEnvelope) -> Dict[str, Any]:
        return {
            "protocolVersion": select_protocol(envelope.params.get("protocolVersion")),
            "serverInfo": dict(self._server_info),
            "capabilities": {"tools": {"listChanged": False}},
            "instructions": self._instructions,
        }

    async def _call_tool(self, envelope: CallEnvelope) -> Dict[str, Any]:
        tool = self._executor.lookup(envelope.tool_name or "")
        arguments = envelope.arguments
        self._executor.validate(tool, arguments)

        if not tool.session_bound:
            result = await self._executor.execute(None, tool.name, arguments)
            envelope.stage = Stage.EXECUTED
            return self._respond(envelope, result)

        resolution = self._resolver.resolve(
            arguments.get("session_id"),
            tool.name,
            arguments.get("url"),
            self._sessions.keys(),
            navigates=tool.navigates,
        )
        async with self._sessions.lease(resolution.key, host=resolution.host) as session:
            envelope.stage = Stage.SESSION_RESOLVED
            log_event(
                logger,
                level=logging.DEBUG,
                event="session_resolved",
                tool=tool.name,
                session_id=session.key,
                reason=resolution.reason,
            )
            result = await self._executor.execute(session, tool.name, arguments)
            envelope.stage = Stage.EXECUTED
        return self._respond(envelope, result)

    @staticmethod
    def _respond(envelope: CallEnvelope, result: Dict[str, Any]) -> Dict[str, Any]:
        if result.get("success"):
            return success_response(envelope.request_id, tool_result(result))
        return failure_response(envelope.request_id, result)

    def _trigger_fatal(self, exc: FatalError) -> None:
        self.fatal_error = exc
        if self._on_fatal is None:
            return
        outcome = self._on_fatal(exc)
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._background.add(task)
            task.add_done_callback(self._background.discard)
