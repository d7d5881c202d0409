"""Error taxonomy shared by the browser core and the dispatch gateway."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    ENGINE_UNAVAILABLE = "EngineUnavailable"
    SESSION_RESOLUTION_AMBIGUOUS = "SessionResolutionAmbiguous"
    ACTION_TIMEOUT = "ActionTimeout"
    ACTION_TARGET_NOT_FOUND = "ActionTargetNotFound"
    ACTION_AUTHENTICATION_REQUIRED = "ActionAuthenticationRequired"
    NAVIGATION_FAILED = "NavigationFailed"
    ACTION_FAILED = "ActionFailed"
    INVALID_ARGUMENTS = "InvalidArguments"
    PROTOCOL_DECODE_ERROR = "ProtocolDecodeError"
    UNKNOWN_TOOL = "UnknownTool"
    INTERNAL_ERROR = "InternalError"
    FATAL = "Fatal"


class BrowserGatewayError(Exception):
    """Base error carrying a machine-checkable kind next to the message."""

    kind: ErrorKind = ErrorKind.ACTION_FAILED

    def __init__(
        self,
        message: str,
        *,
        kind: Optional[ErrorKind] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class EngineUnavailable(BrowserGatewayError):
    """Browser launch or connection failed; the next call retries."""

    kind = ErrorKind.ENGINE_UNAVAILABLE


class ActionTimeout(BrowserGatewayError):
    kind = ErrorKind.ACTION_TIMEOUT


class ActionTargetNotFound(BrowserGatewayError):
    kind = ErrorKind.ACTION_TARGET_NOT_FOUND


class ActionAuthenticationRequired(BrowserGatewayError):
    kind = ErrorKind.ACTION_AUTHENTICATION_REQUIRED


class NavigationFailed(BrowserGatewayError):
    kind = ErrorKind.NAVIGATION_FAILED


class ActionFailed(BrowserGatewayError):
    kind = ErrorKind.ACTION_FAILED


class InvalidArguments(BrowserGatewayError):
    kind = ErrorKind.INVALID_ARGUMENTS


class ProtocolDecodeError(BrowserGatewayError):
    kind = ErrorKind.PROTOCOL_DECODE_ERROR


class UnknownTool(BrowserGatewayError):
    kind = ErrorKind.UNKNOWN_TOOL


class FatalError(BrowserGatewayError):
    """Unrecoverable internal invariant violation; the process must exit."""

    kind = ErrorKind.FATAL
