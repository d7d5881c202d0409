"""
Process-wide browser engine handle.

One Chromium instance is shared by every session. The handle launches it
lazily, probes it before handing it out, and relaunches after a disconnect.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .errors import EngineUnavailable
from .logging_utils import log_event
from .runtime_common import DEFAULT_PROBE_TIMEOUT_SECONDS

if TYPE_CHECKING:
    from webpilot.config.gateway_config import EngineConfig

logger = logging.getLogger(__name__)

# Chromium flags for containerized hosts.
BASE_LAUNCH_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-zygote",
)

Launcher = Callable[[], Awaitable[Tuple[Any, Any]]]
DisconnectListener = Callable[[str], Awaitable[None]]


class EngineState(str, Enum):
    ABSENT = "absent"
    LAUNCHING = "launching"
    READY = "ready"
    DISCONNECTED = "disconnected"


def _classify_launch_failure(message: str) -> Dict[str, Any]:
    lowered = (message or "").lower()
    details: Dict[str, Any] = {"category": "launch_failure"}
    if "executable doesn't exist" in lowered or "executable not found" in lowered:
        details["category"] = "browser_missing"
        details["hint"] = "Install browser binaries: playwright install chromium"
    elif "playwright is not installed" in lowered:
        details["category"] = "dependency_missing"
        details["hint"] = "Install the package dependencies: pip install -e ."
    elif "subprocess support is unavailable" in lowered or "notimplementederror" in lowered:
        details["category"] = "event_loop_policy"
        details["hint"] = "The running event loop cannot spawn subprocesses."
    elif "cannot allocate memory" in lowered or "resource temporarily unavailable" in lowered:
        details["category"] = "resource_exhausted"
    return details


def build_launch_kwargs(config: "EngineConfig") -> Dict[str, Any]:
    args: List[str] = list(BASE_LAUNCH_ARGS)
    if config.single_process:
        args.append("--single-process")
    for extra in config.extra_args:
        if extra not in args:
            args.append(extra)
    kwargs: Dict[str, Any] = {
        "headless": bool(config.headless),
        "args": args,
        "timeout": int(config.launch_timeout_ms),
    }
    if config.executable_path:
        kwargs["executable_path"] = config.executable_path
    elif config.channel:
        kwargs["channel"] = config.channel
    return kwargs


def make_playwright_launcher(config: "EngineConfig") -> Launcher:
    async def _launch() -> Tuple[Any, Any]:
        try:
            from playwright.async_api import async_playwright
        except ImportError as exc:
            raise EngineUnavailable(
                "playwright is not installed",
                details=_classify_launch_failure("playwright is not installed"),
            ) from exc

        driver = await async_playwright().start()
        try:
            browser = await driver.chromium.launch(**build_launch_kwargs(config))
        except BaseException:
            try:
                await driver.stop()
            except Exception:
                logger.debug("Playwright driver stop after failed launch raised", exc_info=True)
            raise
        return driver, browser

    return _launch


class EngineHandle:
    """Owns the single browser instance; ``acquire`` is safe to call concurrently."""

    def __init__(
        self,
        config: Optional["EngineConfig"] = None,
        *,
        launcher: Optional[Launcher] = None,
        probe_timeout_seconds: Optional[float] = None,
    ) -> None:
        if config is None:
            from webpilot.config.gateway_config import EngineConfig

            config = EngineConfig()
        self._config = config
        self._launcher = launcher or make_playwright_launcher(config)
        self._probe_timeout = float(
            probe_timeout_seconds
            if probe_timeout_seconds is not None
            else getattr(config, "probe_timeout_seconds", DEFAULT_PROBE_TIMEOUT_SECONDS)
        )
        self._lock = asyncio.Lock()
        self._state = EngineState.ABSENT
        self._driver: Any = None
        self._browser: Any = None
        self._version: Optional[str] = None
        self._launched_at: Optional[float] = None
        self._launch_count = 0
        self._last_error: Optional[str] = None
        self._listeners: List[DisconnectListener] = []
        self._background: set[asyncio.Task] = set()

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def launch_count(self) -> int:
        return self._launch_count

    def add_disconnect_listener(self, listener: DisconnectListener) -> None:
        self._listeners.append(listener)

    async def acquire(self) -> Any:
        async with self._lock:
            browser = self._browser
            if browser is not None:
                if await self._probe(browser):
                    return browser
                await self._discard(reason="probe_failed")
            return await self._launch()

    async def release(self) -> None:
        async with self._lock:
            if self._browser is None and self._driver is None:
                self._state = EngineState.ABSENT
                return
            await self._close_current()
            self._state = EngineState.ABSENT
            log_event(logger, level=logging.INFO, event="engine_released")

    def status(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "version": self._version,
            "launch_count": self._launch_count,
            "launched_at": self._launched_at,
            "headless": bool(getattr(self._config, "headless", True)),
            "last_error": self._last_error,
        }

    async def _launch(self) -> Any:
        self._state = EngineState.LAUNCHING
        started = time.perf_counter()
        try:
            driver, browser = await self._launcher()
        except EngineUnavailable as exc:
            self._state = EngineState.ABSENT
            self._last_error = exc.message
            raise
        except Exception as exc:
            self._state = EngineState.ABSENT
            message = str(exc) or type(exc).__name__
            self._last_error = message
            log_event(
                logger,
                level=logging.ERROR,
                event="engine_launch_failed",
                error=message,
            )
            raise EngineUnavailable(
                f"Failed to launch browser: {message}",
                details=_classify_launch_failure(message),
            ) from exc

        self._driver = driver
        self._browser = browser
        self._launch_count += 1
        self._launched_at = time.time()
        self._last_error = None
        self._version = await self._read_version(browser)
        try:
            browser.on("disconnected", lambda *_: self._on_disconnected(browser))
        except Exception:
            logger.debug("Browser does not support disconnect events", exc_info=True)
        self._state = EngineState.READY
        log_event(
            logger,
            level=logging.INFO,
            event="engine_launched",
            version=self._version,
            launch_count=self._launch_count,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return browser

    async def _probe(self, browser: Any) -> bool:
        try:
            if not browser.is_connected():
                return False
            version = await asyncio.wait_for(self._read_version(browser), timeout=self._probe_timeout)
            return bool(version)
        except Exception as exc:
            log_event(
                logger,
                level=logging.WARNING,
                event="engine_probe_failed",
                error=str(exc) or type(exc).__name__,
            )
            return False

    @staticmethod
    async def _read_version(browser: Any) -> Optional[str]:
        value = getattr(browser, "version", None)
        if callable(value):
            value = value()
        if inspect.isawaitable(value):
            value = await value
        return str(value) if value else None

    async def _discard(self, *, reason: str) -> None:
        self._state = EngineState.DISCONNECTED
        log_event(logger, level=logging.WARNING, event="engine_disconnected", reason=reason)
        await self._close_current()
        await self._notify(reason)

    async def _close_current(self) -> None:
        browser, driver = self._browser, self._driver
        self._browser = None
        self._driver = None
        self._version = None
        try:
            if browser is not None:
                await asyncio.wait_for(browser.close(), timeout=self._probe_timeout * 3)
        except Exception as exc:
            logger.warning("Browser close failed: %s", exc)
        try:
            if driver is not None:
                await driver.stop()
        except Exception as exc:
            logger.warning("Playwright driver stop failed: %s", exc)

    async def _notify(self, reason: str) -> None:
        for listener in list(self._listeners):
            try:
                await listener(reason)
            except Exception:
                logger.exception("Engine disconnect listener failed")

    def _on_disconnected(self, browser: Any) -> None:
        if browser is not self._browser:
            return
        self._state = EngineState.DISCONNECTED
        log_event(logger, level=logging.WARNING, event="engine_disconnected", reason="event")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._notify("event"))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
