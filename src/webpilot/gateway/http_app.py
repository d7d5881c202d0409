from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from webpilot.browser.logging_utils import log_event
from webpilot.browser.maintenance import memory_stats

from .dispatch import Dispatcher

if TYPE_CHECKING:
    from webpilot.config.gateway_config import GatewayConfig

logger = logging.getLogger(__name__)

SSE_KEEPALIVE_SECONDS = 15.0


def _sse_frame(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


class SseChannels:
    """Open legacy SSE streams, keyed by the id handed out in the ``endpoint`` event."""

    def __init__(self) -> None:
        self._queues: Dict[str, "asyncio.Queue[Dict[str, Any]]"] = {}

    def open(self) -> str:
        channel_id = uuid.uuid4().hex
        self._queues[channel_id] = asyncio.Queue()
        return channel_id

    def close(self, channel_id: str) -> None:
        self._queues.pop(channel_id, None)

    def get(self, channel_id: str) -> Optional["asyncio.Queue[Dict[str, Any]]"]:
        return self._queues.get(channel_id)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._queues

    def __len__(self) -> int:
        return len(self._queues)


def build_app(dispatcher: Dispatcher, config: Optional["GatewayConfig"] = None) -> FastAPI:
    path = config.http.path if config is not None else "/mcp"
    cors_origins = config.http.cors_origins if config is not None else ["*"]
    server_name = config.server_name if config is not None else "webpilot"

    app = FastAPI(title=server_name, version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    channels = SseChannels()
    app.state.dispatcher = dispatcher
    app.state.sse_channels = channels

    @app.post(path)
    async def mcp_post(request: Request) -> Response:
        body = await request.body()
        response = await dispatcher.handle(body, transport="http")
        if response is None:
            return Response(status_code=202)
        return JSONResponse(response)

    @app.get(path)
    async def mcp_stream(request: Request) -> StreamingResponse:
        channel_id = channels.open()
        queue = channels.get(channel_id)
        log_event(logger, level=logging.INFO, event="sse_open", channel=channel_id)

        async def _events() -> AsyncIterator[str]:
            try:
                yield _sse_frame("endpoint", f"/messages?session_id={channel_id}")
                while True:
                    if await request.is_disconnected():
                        break
                    try:
                        message = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_SECONDS)
                    except asyncio.TimeoutError:
                        yield ": keepalive\n\n"
                        continue
                    yield _sse_frame("message", json.dumps(message, ensure_ascii=False, default=str))
            finally:
                channels.close(channel_id)
                log_event(logger, level=logging.INFO, event="sse_closed", channel=channel_id)

        return StreamingResponse(
            _events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/messages")
    async def legacy_message(request: Request, session_id: str) -> Response:
        queue = channels.get(session_id)
        if queue is None:
            raise HTTPException(status_code=404, detail=f"Unknown SSE session: {session_id}")
        body = await request.body()
        response = await dispatcher.handle(body, transport="sse")
        if response is not None:
            await queue.put(response)
        return Response(status_code=202)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        sessions = dispatcher.sessions
        return {
            "status": "ok",
            "engine": sessions.engine.status(),
            "sessions": sessions.stats(),
            "memory": memory_stats(),
            "sse_channels": len(channels),
        }

    @app.get("/keepalive")
    async def keepalive() -> Dict[str, Any]:
        return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app
