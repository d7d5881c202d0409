"""
Browser automation gateway: MCP-style tools over stdio and/or HTTP.

> webpilot-server --transport stdio
> webpilot-server --transport http --port 10000 --config webpilot.yaml
"""
from __future__ import annotations

import asyncio
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

import click
from dotenv import load_dotenv

from webpilot import __version__
from webpilot.browser.engine import EngineHandle
from webpilot.browser.errors import FatalError
from webpilot.browser.executor import ActionExecutor
from webpilot.browser.maintenance import MaintenanceLoop
from webpilot.browser.page_actions import PlaywrightPageActions
from webpilot.browser.profiles import ProfileResolver
from webpilot.browser.session_manager import SessionRegistry
from webpilot.command.command_utils import setup_command_logger
from webpilot.config.gateway_config import GatewayConfig, load_gateway_config
from webpilot.gateway.dispatch import Dispatcher
from webpilot.gateway.http_app import build_app
from webpilot.gateway.stdio import StdioTransport
from webpilot.tool.catalog import build_registry

EXIT_OK = 0
EXIT_FAILURE = 1

INSTRUCTIONS = (
    "Browser automation tools backed by one shared Chromium. Pass session_id to "
    "keep working in the same tab; without it, navigations get a per-host "
    "session and other calls reuse the only open session."
)


@dataclass
class UvicornHandle:
    server: Any
    task: asyncio.Task

    def request_stop(self) -> None:
        self.server.should_exit = True


@dataclass
class Gateway:
    """Wired components of one running server."""

    config: GatewayConfig
    engine: EngineHandle
    sessions: SessionRegistry
    dispatcher: Dispatcher
    maintenance: MaintenanceLoop


def build_gateway(config: GatewayConfig, *, on_fatal=None, engine: Optional[EngineHandle] = None) -> Gateway:
    engine = engine or EngineHandle(config.engine)
    sessions = SessionRegistry(
        engine,
        ProfileResolver(config.sessions, config.timeouts),
        max_sessions=config.sessions.max_sessions,
        probe_timeout_seconds=config.engine.probe_timeout_seconds,
    )
    tools = build_registry()
    executor = ActionExecutor(tools, sessions, PlaywrightPageActions(), config)
    dispatcher = Dispatcher(
        tools,
        sessions,
        executor,
        server_name=config.server_name,
        server_version=__version__,
        instructions=INSTRUCTIONS,
        on_fatal=on_fatal,
    )
    maintenance = MaintenanceLoop(
        sessions,
        interval_seconds=config.sessions.sweep_interval_seconds,
        memory_gc_threshold_mb=config.memory_gc_threshold_mb,
    )
    return Gateway(
        config=config,
        engine=engine,
        sessions=sessions,
        dispatcher=dispatcher,
        maintenance=maintenance,
    )


@click.command(name="webpilot-server")
@click.option("--config", "-c", default=None,
              help="Path to the configuration file (YAML or JSON).",
              type=click.Path(exists=True, dir_okay=False))
@click.option("--transport", "-t", type=click.Choice(["stdio", "http", "both"]), default="stdio",
              show_default=True, help="Which transport(s) to serve.")
@click.option("--host", default=None, help="HTTP bind host (overrides config).")
@click.option("--port", "-p", type=int, default=None, help="HTTP port (overrides config and PORT).")
@click.option("--headless/--headed", default=None, help="Run Chromium headless or headed.")
@click.option("--max-sessions", type=int, default=None, help="Maximum concurrent browser sessions.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def run(config, transport, host, port, headless, max_sessions, verbose):
    load_dotenv()
    logger = setup_command_logger(
        log_filename="webpilot-server.log",
        verbose=verbose,
    )

    try:
        gateway_config = load_gateway_config(Path(config) if config else None)
    except Exception as exc:
        logger.error("Failed to load configuration: %s", exc)
        sys.exit(EXIT_FAILURE)
    if host:
        gateway_config.http.host = host
    if port:
        gateway_config.http.port = port
    if headless is not None:
        gateway_config.engine.headless = headless
    if max_sessions:
        gateway_config.sessions.max_sessions = max(1, max_sessions)

    stop_event: Optional[asyncio.Event] = None
    exit_code = EXIT_OK

    def _request_stop(code: int = EXIT_OK) -> None:
        nonlocal exit_code
        exit_code = max(exit_code, code)
        if stop_event is not None:
            stop_event.set()

    def _on_fatal(exc: FatalError) -> None:
        logger.critical("Stopping after fatal error: %s", exc.message)
        _request_stop(EXIT_FAILURE)

    def _handle_sig(signum, frame):
        logger.info("Received signal %s. Stopping webpilot server.", signum)
        loop = main_loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(_request_stop)

    main_loop: Optional[asyncio.AbstractEventLoop] = None
    signal.signal(signal.SIGINT, _handle_sig)
    signal.signal(signal.SIGTERM, _handle_sig)

    async def _main() -> None:
        nonlocal stop_event, main_loop
        main_loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        gateway = build_gateway(gateway_config, on_fatal=_on_fatal)
        gateway.maintenance.start()
        serve_tasks: List[asyncio.Task] = []
        uvicorn_handles: List[UvicornHandle] = []

        if transport in ("http", "both"):
            import uvicorn

            app = build_app(gateway.dispatcher, gateway_config)
            server = uvicorn.Server(
                uvicorn.Config(
                    app,
                    host=gateway_config.http.host,
                    port=gateway_config.http.port,
                    log_level="info",
                    log_config=None,
                )
            )
            task = asyncio.create_task(server.serve())
            uvicorn_handles.append(UvicornHandle(server=server, task=task))
            serve_tasks.append(task)
            logger.info(
                "HTTP transport listening on %s:%s%s",
                gateway_config.http.host,
                gateway_config.http.port,
                gateway_config.http.path,
            )

        if transport in ("stdio", "both"):
            stdio = StdioTransport(gateway.dispatcher)
            serve_tasks.append(asyncio.create_task(stdio.serve()))

        wait_tasks = serve_tasks + [asyncio.create_task(stop_event.wait())]
        try:
            done, pending = await asyncio.wait(wait_tasks, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.cancelled() or task.exception() is None:
                    continue
                logger.error("Transport stopped with error: %s", task.exception())
                _request_stop(EXIT_FAILURE)
        finally:
            stop_event.set()
            for handle in uvicorn_handles:
                handle.request_stop()
            await gateway.maintenance.stop()
            closed = await gateway.maintenance.force_full_teardown()
            logger.info("Closed %d session(s) and released the browser.", len(closed))
            pending_tasks = [task for task in wait_tasks if not task.done()]
            for task in pending_tasks:
                task.cancel()
            await asyncio.gather(*pending_tasks, return_exceptions=True)

    try:
        asyncio.run(_main())
    except Exception:
        logger.exception("webpilot server failed")
        exit_code = EXIT_FAILURE
    finally:
        logger.info("webpilot server shutdown complete (exit code %d).", exit_code)
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
