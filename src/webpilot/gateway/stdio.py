"""
Newline-delimited JSON-RPC over stdin/stdout.

stdin is read on a daemon thread so a blocked ``readline`` never holds the
interpreter open at shutdown; every line is dispatched as its own task.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import threading
from typing import IO, Any, Dict, Optional, Set

from .dispatch import Dispatcher

logger = logging.getLogger(__name__)

_EOF = object()


class StdioTransport:
    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        stdin: Optional[IO[str]] = None,
        stdout: Optional[IO[str]] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self._write_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._reader: Optional[threading.Thread] = None

    def _start_reader(self, loop: asyncio.AbstractEventLoop) -> None:
        def _pump() -> None:
            try:
                for line in self._stdin:
                    loop.call_soon_threadsafe(self._queue.put_nowait, line)
            except (OSError, ValueError) as exc:
                logger.warning("stdin reader stopped: %s", exc)
            finally:
                try:
                    loop.call_soon_threadsafe(self._queue.put_nowait, _EOF)
                except RuntimeError:
                    # Loop already closed.
                    pass

        self._reader = threading.Thread(target=_pump, name="webpilot-stdin", daemon=True)
        self._reader.start()

    async def serve(self) -> None:
        """Read requests until EOF, then wait for in-flight calls to answer."""
        self._start_reader(asyncio.get_running_loop())
        logger.info("stdio transport ready")
        while True:
            item = await self._queue.get()
            if item is _EOF:
                break
            line = item.strip()
            if not line:
                continue
            task = asyncio.create_task(self._handle_line(line))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("stdin closed; stdio transport finished")

    async def _handle_line(self, line: str) -> None:
        response = await self._dispatcher.handle(line, transport="stdio")
        if response is not None:
            await self.write(response)

    async def write(self, message: Dict[str, Any]) -> None:
        data = json.dumps(message, ensure_ascii=False, default=str)
        async with self._write_lock:
            self._stdout.write(data + "\n")
            self._stdout.flush()
