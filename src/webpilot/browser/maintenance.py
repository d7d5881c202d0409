"""Periodic upkeep: idle-session sweep and memory pressure relief."""

from __future__ import annotations

import asyncio
import gc
import logging
from typing import Any, Dict, List, Optional

import psutil

from .logging_utils import log_event
from .runtime_common import DEFAULT_SWEEP_INTERVAL_SECONDS
from .session_manager import SessionRegistry

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


def memory_stats() -> Dict[str, Any]:
    """Resident/virtual memory of this process and overall system usage."""
    process = psutil.Process()
    info = process.memory_info()
    rss_mb = info.rss / _MB
    children_rss_mb = 0.0
    for child in process.children(recursive=True):
        try:
            children_rss_mb += child.memory_info().rss / _MB
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return {
        "rss_mb": round(rss_mb, 1),
        "vms_mb": round(info.vms / _MB, 1),
        "children_rss_mb": round(children_rss_mb, 1),
        "system_percent": psutil.virtual_memory().percent,
    }


class MaintenanceLoop:
    """
    Runs ``sweep_idle`` on a fixed period, independent of call traffic.

    When this process plus its browser children exceed the memory threshold a
    garbage-collection pass is forced after the sweep.
    """

    def __init__(
        self,
        sessions: SessionRegistry,
        *,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        memory_gc_threshold_mb: int = 512,
    ) -> None:
        self._sessions = sessions
        self._interval = max(0.05, float(interval_seconds))
        self._threshold_mb = max(1, int(memory_gc_threshold_mb))
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="webpilot-maintenance")

    async def stop(self) -> None:
        self._stop_event.set()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                # A failed pass must not stop future sweeps.
                logger.exception("Maintenance pass failed")

    async def run_once(self) -> List[str]:
        self.runs += 1
        swept = await self._sessions.sweep_idle()
        stats = memory_stats()
        total_mb = stats["rss_mb"] + stats["children_rss_mb"]
        collected = None
        if total_mb > self._threshold_mb:
            collected = gc.collect()
        if swept or collected is not None:
            log_event(
                logger,
                level=logging.INFO,
                event="maintenance",
                swept=len(swept),
                active=len(self._sessions),
                memory_mb=total_mb,
                gc_collected=collected,
            )
        return swept

    async def force_full_teardown(self) -> List[str]:
        closed = await self._sessions.teardown_all()
        gc.collect()
        return closed
