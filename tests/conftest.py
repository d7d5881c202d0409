import asyncio
from typing import Any, Dict, List, Optional

import pytest

from webpilot.browser.engine import EngineHandle
from webpilot.browser.errors import ActionTargetNotFound
from webpilot.browser.executor import ActionExecutor
from webpilot.browser.profiles import ProfileResolver
from webpilot.browser.session_manager import SessionRegistry
from webpilot.config.gateway_config import GatewayConfig
from webpilot.gateway.dispatch import Dispatcher
from webpilot.tool.catalog import build_registry


class FakePage:
    def __init__(self, context):
        self.context = context
        self.url = "about:blank"
        self.title = ""
        self.body = ""
        self.selectors: Dict[str, str] = {}
        self.login_form = False
        self.closed = False
        self.hang_evaluate = False
        self.evaluate_delay = 0.0
        self.default_timeout = None
        self.navigation_timeout = None
        self.filled: Dict[str, str] = {}
        self.clicked: List[str] = []

    def is_closed(self):
        return self.closed

    async def evaluate(self, script, arg=None):
        if self.hang_evaluate:
            await asyncio.sleep(3600)
        if self.evaluate_delay:
            await asyncio.sleep(self.evaluate_delay)
        return 1

    def set_default_timeout(self, timeout_ms):
        self.default_timeout = timeout_ms

    def set_default_navigation_timeout(self, timeout_ms):
        self.navigation_timeout = timeout_ms


class FakeContext:
    def __init__(self, browser, options):
        self.browser = browser
        self.options = options
        self.pages: List[FakePage] = []
        self.closed = False
        self.close_error: Optional[Exception] = None
        self.fail_new_page: Optional[Exception] = None

    async def new_page(self):
        if self.fail_new_page is not None:
            raise self.fail_new_page
        page = FakePage(self)
        self.pages.append(page)
        return page

    async def close(self):
        self.closed = True
        for page in self.pages:
            page.closed = True
        if self.close_error is not None:
            raise self.close_error


class FakeBrowser:
    def __init__(self, version="120.0.6099.28"):
        self._version = version
        self.connected = True
        self.closed = False
        self.contexts: List[FakeContext] = []
        self.handlers: Dict[str, List[Any]] = {}
        self.fail_new_context: Optional[Exception] = None
        self.fail_new_page: Optional[Exception] = None
        self.new_context_delay = 0.0

    @property
    def version(self):
        return self._version

    def is_connected(self):
        return self.connected

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    async def new_context(self, **options):
        if self.new_context_delay:
            await asyncio.sleep(self.new_context_delay)
        if self.fail_new_context is not None:
            raise self.fail_new_context
        context = FakeContext(self, options)
        context.fail_new_page = self.fail_new_page
        self.contexts.append(context)
        return context

    async def close(self):
        self.closed = True
        self.connected = False

    def crash(self):
        self.connected = False
        for handler in self.handlers.get("disconnected", []):
            handler(self)


class FakeDriver:
    def __init__(self):
        self.stopped = False

    async def stop(self):
        self.stopped = True


class FakeLauncher:
    """Stands in for ``make_playwright_launcher``; hands out a new FakeBrowser per launch."""

    def __init__(self):
        self.calls = 0
        self.fail: Optional[Exception] = None
        self.delay = 0.0
        self.browsers: List[FakeBrowser] = []
        self.drivers: List[FakeDriver] = []

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        browser, driver = FakeBrowser(), FakeDriver()
        self.browsers.append(browser)
        self.drivers.append(driver)
        return driver, browser


class FakePageActions:
    """PageActions fake that keeps page state on FakePage attributes."""

    def __init__(self):
        self.calls: List[str] = []
        self.pages: Dict[str, Dict[str, Any]] = {}
        self.login_success = True
        self.hang_click = False

    def site(self, url, *, title="", body="", selectors=None, login_form=False):
        self.pages[url] = {
            "title": title,
            "body": body,
            "selectors": dict(selectors or {}),
            "login_form": login_form,
        }

    async def goto(self, page, url, *, timeout_ms, wait_until="domcontentloaded"):
        self.calls.append("goto")
        spec = self.pages.get(url, {})
        page.url = url
        page.title = spec.get("title", "")
        page.body = spec.get("body", "")
        page.selectors = dict(spec.get("selectors", {}))
        page.login_form = bool(spec.get("login_form")) and not getattr(page, "logged_in", False)
        return {"url": url, "title": page.title, "status": 200}

    async def detect_login(self, page):
        self.calls.append("detect_login")
        return page.login_form

    async def attempt_login(self, page, credentials, *, timeout_ms):
        self.calls.append("attempt_login")
        page.logged_in = self.login_success

    async def wait(self, page, *, seconds, selector, timeout_ms):
        self.calls.append("wait")
        if selector and selector not in page.selectors:
            raise ActionTargetNotFound(f"Element did not appear: {selector}")
        return {"waited_ms": int(seconds * 1000), "selector": selector, "url": page.url}

    async def fill(self, page, selector, value, *, timeout_ms):
        self.calls.append("fill")
        if selector not in page.selectors:
            raise ActionTargetNotFound(f"No element matches selector: {selector}")
        page.filled[selector] = value

    async def click(self, page, selector, *, timeout_ms):
        self.calls.append("click")
        if self.hang_click:
            await asyncio.sleep(3600)
        if selector not in page.selectors:
            raise ActionTargetNotFound(f"No element matches selector: {selector}")
        page.clicked.append(selector)

    async def text(self, page, *, selector, timeout_ms):
        self.calls.append("text")
        if selector:
            if selector not in page.selectors:
                raise ActionTargetNotFound(f"No element matches selector: {selector}")
            return page.selectors[selector]
        return page.body

    async def html(self, page, *, selector, timeout_ms):
        self.calls.append("html")
        return f"<html><body>{page.body}</body></html>"

    async def screenshot(self, page, *, full_page, image_type, timeout_ms):
        self.calls.append("screenshot")
        return {"data": b"\x89PNG fake", "width": 1280, "height": 720, "mime_type": f"image/{image_type}"}

    async def extract_data(self, page, selectors, *, timeout_ms):
        self.calls.append("extract_data")
        return {name: page.selectors.get(selector) for name, selector in selectors.items()}

    async def extract_links(self, page, *, limit):
        self.calls.append("extract_links")
        return [{"text": "home", "href": page.url}][:limit]

    async def extract_tables(self, page, *, limit):
        self.calls.append("extract_tables")
        return []

    async def submit_form(self, page, fields, *, submit_selector, wait_for_selector, timeout_ms):
        self.calls.append("submit_form")
        for selector, value in fields.items():
            await self.fill(page, selector, value, timeout_ms=timeout_ms)
        if submit_selector:
            await self.click(page, submit_selector, timeout_ms=timeout_ms)
        return {"url": page.url, "content": page.body, "filled": list(fields), "submitted": bool(submit_selector)}

    async def smart_fill_form(self, page, fields, *, submit_text, timeout_ms):
        self.calls.append("smart_fill_form")
        filled = [f["label"] for f in fields if f["label"] in page.selectors]
        unmatched = [f["label"] for f in fields if f["label"] not in page.selectors]
        return {"url": page.url, "content": page.body, "filled": filled, "unmatched": unmatched, "submitted": True}


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def config():
    return GatewayConfig()


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def engine(config, launcher):
    return EngineHandle(config.engine, launcher=launcher, probe_timeout_seconds=0.2)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(config, engine, clock):
    return SessionRegistry(
        engine,
        ProfileResolver(config.sessions, config.timeouts),
        max_sessions=config.sessions.max_sessions,
        probe_timeout_seconds=0.2,
        clock=clock,
    )


@pytest.fixture
def actions():
    return FakePageActions()


@pytest.fixture
def tools():
    return build_registry()


@pytest.fixture
def executor(tools, registry, actions, config):
    return ActionExecutor(tools, registry, actions, config, grace_seconds=0.1)


@pytest.fixture
def dispatcher(tools, registry, executor):
    return Dispatcher(tools, registry, executor, server_name="webpilot-test")
