"""JSON-RPC 2.0 envelopes and MCP result shapes shared by every transport."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from webpilot.browser.errors import ErrorKind, ProtocolDecodeError

JSONRPC_VERSION = "2.0"

SUPPORTED_PROTOCOL_VERSIONS = ["2025-06-18", "2025-03-26", "2024-11-05"]
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[0]

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
ACTION_ERROR = -32000
ENGINE_UNAVAILABLE = -32001
FATAL_ERROR = -32099

_KIND_CODES: Dict[ErrorKind, int] = {
    ErrorKind.ENGINE_UNAVAILABLE: ENGINE_UNAVAILABLE,
    ErrorKind.ACTION_TIMEOUT: ACTION_ERROR,
    ErrorKind.ACTION_TARGET_NOT_FOUND: ACTION_ERROR,
    ErrorKind.ACTION_AUTHENTICATION_REQUIRED: ACTION_ERROR,
    ErrorKind.NAVIGATION_FAILED: ACTION_ERROR,
    ErrorKind.ACTION_FAILED: ACTION_ERROR,
    ErrorKind.INVALID_ARGUMENTS: INVALID_PARAMS,
    ErrorKind.UNKNOWN_TOOL: INVALID_PARAMS,
    ErrorKind.PROTOCOL_DECODE_ERROR: INVALID_REQUEST,
    ErrorKind.INTERNAL_ERROR: INTERNAL_ERROR,
    ErrorKind.FATAL: FATAL_ERROR,
}

RequestId = Union[int, str, None]


class Stage(str, Enum):
    RECEIVED = "received"
    DECODED = "decoded"
    SESSION_RESOLVED = "session_resolved"
    EXECUTED = "executed"
    RESPONDED = "responded"
    FAILED = "failed"


def code_for_kind(kind: ErrorKind) -> int:
    return _KIND_CODES.get(kind, INTERNAL_ERROR)


def select_protocol(requested: Any) -> str:
    if isinstance(requested, str) and requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return LATEST_PROTOCOL_VERSION


class RpcRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    jsonrpc: Literal["2.0"]
    method: str
    id: RequestId = None
    params: Optional[Dict[str, Any]] = None

    @property
    def is_notification(self) -> bool:
        return "id" not in self.model_fields_set


@dataclass
class CallEnvelope:
    """One decoded inbound call, discarded after the response is produced."""

    transport: str
    request_id: RequestId
    method: str
    tool_name: Optional[str] = None
    arguments: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    is_notification: bool = False
    stage: Stage = Stage.DECODED

    @classmethod
    def from_request(cls, request: RpcRequest, transport: str) -> "CallEnvelope":
        params = request.params or {}
        tool_name = None
        arguments: Dict[str, Any] = {}
        if request.method == "tools/call":
            raw_name = params.get("name")
            if not isinstance(raw_name, str) or not raw_name.strip():
                raise ProtocolDecodeError(
                    "tools/call requires params.name",
                    details={"code": INVALID_PARAMS, "request_id": request.id},
                )
            tool_name = raw_name.strip()
            raw_arguments = params.get("arguments")
            if raw_arguments is None:
                raw_arguments = {}
            if not isinstance(raw_arguments, dict):
                raise ProtocolDecodeError(
                    "tools/call params.arguments must be an object",
                    details={"code": INVALID_PARAMS, "request_id": request.id},
                )
            arguments = dict(raw_arguments)
        return cls(
            transport=transport,
            request_id=request.id,
            method=request.method,
            tool_name=tool_name,
            arguments=arguments,
            params=dict(params),
            is_notification=request.is_notification,
        )


def decode(message: Union[str, bytes, Dict[str, Any]]) -> RpcRequest:
    """Parse one JSON-RPC request; raises ProtocolDecodeError carrying the JSON-RPC code."""
    if isinstance(message, (bytes, bytearray)):
        try:
            message = message.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolDecodeError("Parse error: invalid UTF-8", details={"code": PARSE_ERROR}) from exc
    if isinstance(message, str):
        try:
            message = json.loads(message)
        except json.JSONDecodeError as exc:
            raise ProtocolDecodeError(f"Parse error: {exc.msg}", details={"code": PARSE_ERROR}) from exc
    if isinstance(message, list):
        raise ProtocolDecodeError("Batch requests are not supported", details={"code": INVALID_REQUEST})
    if not isinstance(message, dict):
        raise ProtocolDecodeError("Invalid Request: expected an object", details={"code": INVALID_REQUEST})

    request_id = message.get("id")
    if not isinstance(request_id, (int, str)) or isinstance(request_id, bool):
        request_id = None
    try:
        return RpcRequest.model_validate(message)
    except ValidationError as exc:
        raise ProtocolDecodeError(
            "Invalid Request",
            details={
                "code": INVALID_REQUEST,
                "request_id": request_id,
                "errors": [err.get("msg", "") for err in exc.errors()],
            },
        ) from exc


def success_response(request_id: RequestId, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(
    request_id: RequestId,
    code: int,
    message: str,
    data: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": int(code), "message": message}
    if data:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def failure_response(request_id: RequestId, failure: Dict[str, Any]) -> Dict[str, Any]:
    """Turn an executor failure dict into a JSON-RPC error envelope."""
    raw_kind = failure.get("error_kind") or ErrorKind.ACTION_FAILED.value
    try:
        kind = ErrorKind(raw_kind)
    except ValueError:
        kind = ErrorKind.ACTION_FAILED
    data: Dict[str, Any] = {"kind": kind.value}
    if failure.get("error_details"):
        data["details"] = failure["error_details"]
    return error_response(request_id, code_for_kind(kind), str(failure.get("error") or kind.value), data)


def tool_result(payload: Dict[str, Any]) -> Dict[str, Any]:
    """MCP ``tools/call`` result: a text block, an image block for screenshots, and structured content."""
    structured = {key: value for key, value in payload.items() if key not in {"success", "error"}}
    summary = {key: value for key, value in structured.items() if key != "image_base64"}
    content: List[Dict[str, Any]] = [
        {"type": "text", "text": json.dumps(summary, ensure_ascii=False, default=str)},
    ]
    if payload.get("image_base64"):
        content.append(
            {
                "type": "image",
                "data": payload["image_base64"],
                "mimeType": payload.get("mime_type") or "image/png",
            }
        )
    return {"content": content, "structuredContent": structured, "isError": False}
