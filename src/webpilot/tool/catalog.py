"""
Browser tools exposed through ``tools/list`` and ``tools/call``.

Every session-bound tool accepts an optional ``session_id``; the gateway uses
it (or the tool's ``url``) to pick the session before the tool runs, so the
handlers themselves only see the resolved page through ``ctx``.
"""

import asyncio
import base64
import gc
import sys
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import urlparse

from webpilot.browser.errors import ActionAuthenticationRequired, InvalidArguments
from webpilot.browser.executor import ToolContext
from webpilot.browser.key_resolver import host_of
from webpilot.browser.runtime_common import MAX_WAIT_SECONDS, screenshot_filename, utc_timestamp
from webpilot.util.file_utils import ensure_dir

from .capability import Capability
from .decorator import tool
from .registry import ToolRegistry


DEFAULT_SCREENSHOT_DIR = "~/.webpilot/screenshots"

WaitUntil = Literal["load", "domcontentloaded", "networkidle", "commit"]


def _require_http_url(url: Optional[str]) -> str:
    text = str(url or "").strip()
    parsed = urlparse(text)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise InvalidArguments(
            f"A well-formed http(s) URL is required, got: {text or '<empty>'}",
            details={"url": text},
        )
    return text


def _require_text(name: str, value: Optional[str]) -> str:
    text = str(value or "").strip()
    if not text:
        raise InvalidArguments(f"{name} is required")
    return text


async def _navigate(ctx: ToolContext, url: str, *, wait_until: str = "domcontentloaded") -> Dict[str, Any]:
    """Load ``url``; when a login form shows up, submit configured credentials once."""
    actions, page = ctx.actions, ctx.page
    result = await actions.goto(page, url, timeout_ms=ctx.timeout_ms, wait_until=wait_until)
    if not await actions.detect_login(page):
        result["login_detected"] = False
        return result

    credentials = None
    for candidate in (host_of(url), host_of(result.get("url"))):
        if candidate:
            credentials = ctx.config.credentials_for(candidate)
            if credentials is not None:
                break
    if credentials is None or not credentials.usable:
        result["login_detected"] = True
        return result

    await actions.attempt_login(page, credentials, timeout_ms=ctx.timeout_ms)
    result = await actions.goto(page, url, timeout_ms=ctx.timeout_ms, wait_until=wait_until)
    if await actions.detect_login(page):
        raise ActionAuthenticationRequired(
            "Login form is still present after submitting credentials",
            details={"url": result.get("url") or url, "host": host_of(url)},
        )
    result["login_detected"] = True
    result["login_performed"] = True
    return result


async def _maybe_navigate(ctx: ToolContext, url: Optional[str]) -> Optional[Dict[str, Any]]:
    if url is None or not str(url).strip():
        return None
    return await _navigate(ctx, _require_http_url(url))


@tool(
    description="Navigate the session page to a URL and wait for it to load.",
    capabilities=[Capability.BROWSER],
    navigates=True,
)
async def navigate_to_url(
    ctx: ToolContext,
    url: str,
    wait_until: WaitUntil = "domcontentloaded",
    timeout: Optional[int] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Args:
        url: Absolute http(s) URL to open.
        wait_until: Load condition to wait for before returning.
        timeout: Navigation timeout in milliseconds.
        session_id: Session to run in; derived from the URL host when omitted.
    """
    return await _navigate(ctx, _require_http_url(url), wait_until=wait_until)


@tool(
    description="Wait a number of seconds, or until a selector becomes visible.",
    capabilities=[Capability.BROWSER],
    read_only=True,
)
async def wait_for_content(
    ctx: ToolContext,
    seconds: float = 2.0,
    selector: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Args:
        seconds: Seconds to wait (0 to 60). With a selector, the maximum wait.
        selector: CSS selector to wait for.
        session_id: Session to run in.
    """
    if seconds < 0 or seconds > MAX_WAIT_SECONDS:
        raise InvalidArguments(
            f"seconds must be between 0 and {int(MAX_WAIT_SECONDS)}",
            details={"seconds": seconds},
        )
    return await ctx.actions.wait(
        ctx.page,
        seconds=float(seconds),
        selector=(selector or "").strip() or None,
        timeout_ms=ctx.timeout_ms,
    )


@tool(
    description="Fill an input field identified by a CSS selector.",
    capabilities=[Capability.BROWSER],
)
async def fill_form(
    ctx: ToolContext,
    selector: str,
    value: str,
    timeout: Optional[int] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Args:
        selector: CSS selector of the field.
        value: Text to enter.
        timeout: Timeout in milliseconds.
        session_id: Session to run in.
    """
    clean = _require_text("selector", selector)
    await ctx.actions.fill(ctx.page, clean, value, timeout_ms=ctx.timeout_ms)
    return {"selector": clean, "url": getattr(ctx.page, "url", "")}


@tool(
    description="Click an element identified by a CSS selector.",
    capabilities=[Capability.BROWSER],
)
async def click_element(
    ctx: ToolContext,
    selector: str,
    timeout: Optional[int] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Args:
        selector: CSS selector of the element.
        timeout: Timeout in milliseconds.
        session_id: Session to run in.
    """
    clean = _require_text("selector", selector)
    await ctx.actions.click(ctx.page, clean, timeout_ms=ctx.timeout_ms)
    return {"selector": clean, "url": getattr(ctx.page, "url", "")}


@tool(
    description="Return the rendered text of the page or of one element.",
    capabilities=[Capability.BROWSER],
    read_only=True,
)
async def get_page_content(
    ctx: ToolContext,
    selector: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Args:
        selector: Optional CSS selector to scope the text.
        session_id: Session to run in.
    """
    text = await ctx.actions.text(ctx.page, selector=(selector or "").strip() or None, timeout_ms=ctx.timeout_ms)
    return {"url": getattr(ctx.page, "url", ""), "content": text, "length": len(text or "")}


@tool(
    description="Return the HTML markup of the page or of one element.",
    capabilities=[Capability.BROWSER],
    read_only=True,
)
async def get_page_html(
    ctx: ToolContext,
    selector: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Args:
        selector: Optional CSS selector to scope the markup.
        session_id: Session to run in.
    """
    html = await ctx.actions.html(ctx.page, selector=(selector or "").strip() or None, timeout_ms=ctx.timeout_ms)
    return {"url": getattr(ctx.page, "url", ""), "html": html, "length": len(html or "")}


@tool(
    description="Capture a screenshot of the page as base64, optionally saving it to a file.",
    capabilities=[Capability.BROWSER, Capability.FILESYSTEM],
    read_only=True,
)
async def capture_screenshot(
    ctx: ToolContext,
    filename: Optional[str] = None,
    full_page: bool = False,
    image_type: Literal["png", "jpeg"] = "png",
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Args:
        filename: Save the image under the screenshot directory with this name.
        full_page: Capture the full scrollable page instead of the viewport.
        image_type: Image format.
        session_id: Session to run in.
    """
    shot = await ctx.actions.screenshot(
        ctx.page,
        full_page=full_page,
        image_type=image_type,
        timeout_ms=ctx.timeout_ms,
    )
    data: bytes = shot["data"]
    payload: Dict[str, Any] = {
        "image_base64": base64.b64encode(data).decode("ascii"),
        "mime_type": shot.get("mime_type") or f"image/{image_type}",
        "width": shot.get("width", 0),
        "height": shot.get("height", 0),
        "size_bytes": len(data),
        "url": getattr(ctx.page, "url", ""),
        "timestamp": utc_timestamp(),
    }
    if filename:
        extension = ".jpg" if image_type == "jpeg" else ".png"
        name = screenshot_filename(filename)
        if not name.lower().endswith((".png", ".jpg", ".jpeg")):
            name += extension
        directory = ensure_dir(ctx.config.screenshot_dir or DEFAULT_SCREENSHOT_DIR)
        path = directory / name
        await asyncio.to_thread(path.write_bytes, data)
        payload["path"] = str(path)
    return payload


@tool(
    description="Extract text for named CSS selectors; unmatched selectors yield null.",
    capabilities=[Capability.BROWSER],
    navigates=True,
)
async def extract_data(
    ctx: ToolContext,
    selectors: Dict[str, str],
    url: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Args:
        selectors: Mapping of result key to CSS selector.
        url: Navigate here first when given.
        session_id: Session to run in.
    """
    if not selectors:
        raise InvalidArguments("selectors must contain at least one entry")
    await _maybe_navigate(ctx, url)
    data = await ctx.actions.extract_data(ctx.page, dict(selectors), timeout_ms=ctx.timeout_ms)
    return {
        "url": getattr(ctx.page, "url", ""),
        "data": data,
        "matched": sum(1 for value in data.values() if value is not None),
    }


@tool(
    description="List the links on the page.",
    capabilities=[Capability.BROWSER],
    navigates=True,
)
async def extract_links(
    ctx: ToolContext,
    limit: int = 100,
    url: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Args:
        limit: Maximum number of links (1 to 1000).
        url: Navigate here first when given.
        session_id: Session to run in.
    """
    await _maybe_navigate(ctx, url)
    links = await ctx.actions.extract_links(ctx.page, limit=max(1, min(int(limit), 1000)))
    return {"url": getattr(ctx.page, "url", ""), "links": links, "count": len(links)}


@tool(
    description="Extract HTML tables as headers and rows of cell text.",
    capabilities=[Capability.BROWSER],
    navigates=True,
)
async def extract_tables(
    ctx: ToolContext,
    limit: int = 10,
    url: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Args:
        limit: Maximum number of tables (1 to 100).
        url: Navigate here first when given.
        session_id: Session to run in.
    """
    await _maybe_navigate(ctx, url)
    tables = await ctx.actions.extract_tables(ctx.page, limit=max(1, min(int(limit), 100)))
    return {"url": getattr(ctx.page, "url", ""), "tables": tables, "count": len(tables)}


@tool(
    description="Fill form fields by CSS selector, optionally click submit, and return the resulting page.",
    capabilities=[Capability.BROWSER],
    navigates=True,
)
async def submit_form(
    ctx: ToolContext,
    fields: Dict[str, str],
    url: Optional[str] = None,
    wait_for_selector: Optional[str] = None,
    submit_selector: Optional[str] = None,
    timeout: Optional[int] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Args:
        fields: Mapping of CSS selector to value.
        url: Navigate here first when given.
        wait_for_selector: Wait for this selector before filling.
        submit_selector: Click this element after filling.
        timeout: Per-step timeout in milliseconds.
        session_id: Session to run in.
    """
    if not fields:
        raise InvalidArguments("fields must contain at least one entry")
    await _maybe_navigate(ctx, url)
    return await ctx.actions.submit_form(
        ctx.page,
        dict(fields),
        submit_selector=(submit_selector or "").strip() or None,
        wait_for_selector=(wait_for_selector or "").strip() or None,
        timeout_ms=ctx.timeout_ms,
    )


@tool(
    description="Fill form fields located by their visible label, then press the submit button.",
    capabilities=[Capability.BROWSER],
    navigates=True,
)
async def smart_fill_form(
    ctx: ToolContext,
    fields: List[Dict[str, Any]],
    url: Optional[str] = None,
    submit_text: str = "Submit",
    timeout: Optional[int] = None,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Args:
        fields: List of {label, value, type?} entries.
        url: Navigate here first when given.
        submit_text: Text of the submit button.
        timeout: Per-step timeout in milliseconds.
        session_id: Session to run in.
    """
    if not fields:
        raise InvalidArguments("fields must contain at least one entry")
    for index, field in enumerate(fields):
        if not str(field.get("label") or "").strip():
            raise InvalidArguments(f"fields[{index}].label is required")
    await _maybe_navigate(ctx, url)
    return await ctx.actions.smart_fill_form(
        ctx.page,
        list(fields),
        submit_text=submit_text or "Submit",
        timeout_ms=ctx.timeout_ms,
    )


@tool(
    description="Close one session, every session, or only the idle ones.",
    capabilities=[Capability.SESSIONS],
    session_bound=False,
)
async def cleanup_resources(
    ctx: ToolContext,
    session_id: Optional[str] = None,
    close_all: bool = False,
) -> Dict[str, Any]:
    """
    Args:
        session_id: Close only this session.
        close_all: Close every session and release the browser.
    """
    sessions = ctx.sessions
    if session_id and session_id.strip():
        closed = await sessions.teardown_one(session_id.strip())
        return {"closed": [session_id.strip()] if closed else [], "remaining": len(sessions)}
    if close_all:
        closed_keys = await sessions.teardown_all()
        gc.collect()
        return {"closed": closed_keys, "remaining": len(sessions), "engine_released": True}
    closed_keys = await sessions.sweep_idle()
    gc.collect()
    return {"closed": closed_keys, "remaining": len(sessions)}


@tool(
    description="List live sessions and engine status.",
    capabilities=[Capability.SESSIONS],
    session_bound=False,
    read_only=True,
)
async def list_sessions(ctx: ToolContext) -> Dict[str, Any]:
    return {
        "sessions": ctx.sessions.snapshot(),
        "stats": ctx.sessions.stats(),
        "engine": ctx.sessions.engine.status(),
    }


def build_registry() -> ToolRegistry:
    """Registry holding every tool defined in this module."""
    registry = ToolRegistry()
    registry.register_module(sys.modules[__name__])
    return registry
