"""
Page-level operations run against a session's page.

``PageActions`` is the seam between the executor and the DOM: the executor
owns validation, timeouts and error mapping, while implementations only talk
to the page. Tests inject fakes with the same shape.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import ActionFailed, ActionTargetNotFound
from .logging_utils import log_event
from .page_scripts import EXTRACT_LINKS_JS, EXTRACT_TABLES_JS, PAGE_SIZE_JS
from .runtime_common import DEFAULT_POST_GOTO_SETTLE_MS, as_text, clamp_timeout_ms

if TYPE_CHECKING:
    from webpilot.config.gateway_config import CredentialConfig

logger = logging.getLogger(__name__)

PASSWORD_SELECTOR = "input[type='password']"
USERNAME_SELECTORS = (
    "input[type='email']",
    "input[autocomplete='username']",
    "input[name*='user' i]",
    "input[name*='login' i]",
    "input[id*='user' i]",
    "input[name*='email' i]",
    "input[type='text']",
)
LOGIN_SUBMIT_SELECTORS = (
    "button[type='submit']",
    "input[type='submit']",
    "button:has-text('Log in')",
    "button:has-text('Sign in')",
)


class PageActions(Protocol):
    async def goto(self, page: Any, url: str, *, timeout_ms: int, wait_until: str = "domcontentloaded") -> Dict[str, Any]: ...

    async def detect_login(self, page: Any) -> bool: ...

    async def attempt_login(self, page: Any, credentials: "CredentialConfig", *, timeout_ms: int) -> None: ...

    async def wait(self, page: Any, *, seconds: float, selector: Optional[str], timeout_ms: int) -> Dict[str, Any]: ...

    async def fill(self, page: Any, selector: str, value: str, *, timeout_ms: int) -> None: ...

    async def click(self, page: Any, selector: str, *, timeout_ms: int) -> None: ...

    async def text(self, page: Any, *, selector: Optional[str], timeout_ms: int) -> str: ...

    async def html(self, page: Any, *, selector: Optional[str], timeout_ms: int) -> str: ...

    async def screenshot(self, page: Any, *, full_page: bool, image_type: str, timeout_ms: int) -> Dict[str, Any]: ...

    async def extract_data(self, page: Any, selectors: Dict[str, str], *, timeout_ms: int) -> Dict[str, Optional[str]]: ...

    async def extract_links(self, page: Any, *, limit: int) -> List[Dict[str, Any]]: ...

    async def extract_tables(self, page: Any, *, limit: int) -> List[Dict[str, Any]]: ...

    async def submit_form(
        self,
        page: Any,
        fields: Dict[str, str],
        *,
        submit_selector: Optional[str],
        wait_for_selector: Optional[str],
        timeout_ms: int,
    ) -> Dict[str, Any]: ...

    async def smart_fill_form(
        self,
        page: Any,
        fields: List[Dict[str, Any]],
        *,
        submit_text: str,
        timeout_ms: int,
    ) -> Dict[str, Any]: ...


def _css_string(value: str) -> str:
    return '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'


def _xpath_literal(value: str) -> str:
    text = str(value)
    if '"' not in text:
        return f'"{text}"'
    if "'" not in text:
        return f"'{text}'"
    parts = text.split('"')
    return "concat(" + ", '\"', ".join(f'"{part}"' for part in parts) + ")"


def _label_candidates(label: str) -> List[str]:
    lowered = label.lower()
    xlabel = _xpath_literal(label)
    return [
        f"input[placeholder*={_css_string(label)} i]",
        f"textarea[placeholder*={_css_string(label)} i]",
        f"input[name*={_css_string(lowered)}]",
        f"input[id*={_css_string(lowered)}]",
        f"xpath=//label[contains(normalize-space(.), {xlabel})]/following-sibling::input",
        f"xpath=//label[contains(normalize-space(.), {xlabel})]/parent::*/input",
        f"xpath=//label[contains(normalize-space(.), {xlabel})]/following-sibling::textarea",
        f"xpath=//label[contains(normalize-space(.), {xlabel})]//input",
    ]


def _submit_candidates(submit_text: str) -> List[str]:
    return [
        f"button:has-text({_css_string(submit_text)})",
        "input[type='submit']",
        "button[type='submit']",
        f"xpath=//button[contains(normalize-space(.), {_xpath_literal(submit_text)})]",
    ]


class PlaywrightPageActions:
    """PageActions backed by the Playwright async API."""

    def __init__(self, *, settle_ms: int = DEFAULT_POST_GOTO_SETTLE_MS) -> None:
        self._settle_ms = max(50, int(settle_ms))

    async def _settle(self, page: Any, timeout_ms: int) -> None:
        # networkidle is best-effort.
        try:
            await page.wait_for_load_state("networkidle", timeout=min(self._settle_ms, timeout_ms))
        except Exception:
            logger.debug("networkidle settle skipped", exc_info=True)

    async def _attached(self, page: Any, selector: str, timeout_ms: int) -> Any:
        locator = page.locator(selector).first
        try:
            await locator.wait_for(state="attached", timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise ActionTargetNotFound(
                f"No element matches selector: {selector}",
                details={"selector": selector, "timeout_ms": timeout_ms},
            ) from exc
        return locator

    async def _first_visible(self, page: Any, selectors: List[str]) -> Optional[Any]:
        for candidate in selectors:
            try:
                locator = page.locator(candidate).first
                if await locator.is_visible():
                    return locator
            except Exception:
                continue
        return None

    async def goto(
        self,
        page: Any,
        url: str,
        *,
        timeout_ms: int,
        wait_until: str = "domcontentloaded",
    ) -> Dict[str, Any]:
        timeout_value = clamp_timeout_ms(timeout_ms)
        response = await page.goto(url, timeout=timeout_value, wait_until=wait_until)
        if wait_until != "networkidle":
            await self._settle(page, timeout_value)
        status = None
        if response is not None:
            try:
                status = int(response.status)
            except Exception:
                status = None
        try:
            title = await page.title()
        except Exception:
            title = ""
        return {
            "url": as_text(getattr(page, "url", url)),
            "title": as_text(title),
            "status": status,
        }

    async def detect_login(self, page: Any) -> bool:
        try:
            fields = page.locator(PASSWORD_SELECTOR)
            count = await fields.count()
            for index in range(min(count, 5)):
                if await fields.nth(index).is_visible():
                    return True
        except Exception:
            logger.debug("login detection failed", exc_info=True)
        return False

    async def attempt_login(self, page: Any, credentials: "CredentialConfig", *, timeout_ms: int) -> None:
        timeout_value = clamp_timeout_ms(timeout_ms)
        if credentials.username_selector:
            username = await self._attached(page, credentials.username_selector, timeout_value)
        else:
            username = await self._first_visible(page, list(USERNAME_SELECTORS))
        if username is None:
            raise ActionTargetNotFound("Login form has no recognizable username field")
        password = await self._attached(page, credentials.password_selector or PASSWORD_SELECTOR, timeout_value)

        await username.fill(credentials.username or "", timeout=timeout_value)
        await password.fill(credentials.password or "", timeout=timeout_value)
        if credentials.submit_selector:
            submit = await self._attached(page, credentials.submit_selector, timeout_value)
        else:
            submit = await self._first_visible(page, list(LOGIN_SUBMIT_SELECTORS))
        if submit is not None:
            await submit.click(timeout=timeout_value)
        else:
            await password.press("Enter", timeout=timeout_value)
        await self._settle(page, timeout_value)
        log_event(
            logger,
            level=logging.INFO,
            event="login_submitted",
            url=as_text(getattr(page, "url", "")),
        )

    async def wait(
        self,
        page: Any,
        *,
        seconds: float,
        selector: Optional[str],
        timeout_ms: int,
    ) -> Dict[str, Any]:
        started = time.perf_counter()
        if selector:
            wait_ms = int(seconds * 1000) if seconds > 0 else clamp_timeout_ms(timeout_ms)
            try:
                await page.locator(selector).first.wait_for(state="visible", timeout=max(1, wait_ms))
            except PlaywrightTimeoutError as exc:
                raise ActionTargetNotFound(
                    f"Element did not appear: {selector}",
                    details={"selector": selector, "waited_ms": wait_ms},
                ) from exc
        else:
            await page.wait_for_timeout(int(seconds * 1000))
        return {
            "waited_ms": int((time.perf_counter() - started) * 1000),
            "selector": selector,
            "url": as_text(getattr(page, "url", "")),
        }

    async def fill(self, page: Any, selector: str, value: str, *, timeout_ms: int) -> None:
        deadline = time.monotonic() + timeout_ms / 1000.0
        locator = await self._attached(page, selector, timeout_ms)
        remaining = max(1, int((deadline - time.monotonic()) * 1000))
        await locator.fill(value, timeout=remaining)

    async def click(self, page: Any, selector: str, *, timeout_ms: int) -> None:
        deadline = time.monotonic() + timeout_ms / 1000.0
        locator = await self._attached(page, selector, timeout_ms)
        remaining = max(1, int((deadline - time.monotonic()) * 1000))
        await locator.click(timeout=remaining)

    async def text(self, page: Any, *, selector: Optional[str], timeout_ms: int) -> str:
        if selector:
            locator = await self._attached(page, selector, timeout_ms)
            return await locator.inner_text(timeout=timeout_ms)
        return await page.inner_text("body", timeout=timeout_ms)

    async def html(self, page: Any, *, selector: Optional[str], timeout_ms: int) -> str:
        if selector:
            locator = await self._attached(page, selector, timeout_ms)
            return await locator.evaluate("(el) => el.outerHTML")
        return await page.content()

    async def screenshot(
        self,
        page: Any,
        *,
        full_page: bool,
        image_type: str,
        timeout_ms: int,
    ) -> Dict[str, Any]:
        image_kind = "jpeg" if image_type == "jpeg" else "png"
        data = await page.screenshot(full_page=bool(full_page), type=image_kind, timeout=timeout_ms)
        size = getattr(page, "viewport_size", None) or {}
        if full_page:
            try:
                size = await page.evaluate(PAGE_SIZE_JS) or size
            except Exception:
                logger.debug("page size probe failed", exc_info=True)
        return {
            "data": data,
            "width": int(size.get("width") or 0),
            "height": int(size.get("height") or 0),
            "mime_type": f"image/{image_kind}",
        }

    async def extract_data(
        self,
        page: Any,
        selectors: Dict[str, str],
        *,
        timeout_ms: int,
    ) -> Dict[str, Optional[str]]:
        results: Dict[str, Optional[str]] = {}
        for name, selector in selectors.items():
            try:
                locator = page.locator(selector)
                if await locator.count() == 0:
                    results[name] = None
                    continue
                text = await locator.first.text_content(timeout=timeout_ms)
                results[name] = text.strip() if isinstance(text, str) else None
            except PlaywrightTimeoutError:
                results[name] = None
            except Exception as exc:
                if page.is_closed():
                    raise ActionFailed("Page closed during extraction") from exc
                results[name] = None
        return results

    async def extract_links(self, page: Any, *, limit: int) -> List[Dict[str, Any]]:
        links = await page.evaluate(EXTRACT_LINKS_JS, {"limit": int(limit)})
        return [item for item in (links or []) if isinstance(item, dict)]

    async def extract_tables(self, page: Any, *, limit: int) -> List[Dict[str, Any]]:
        tables = await page.evaluate(EXTRACT_TABLES_JS, {"limit": int(limit)})
        return [item for item in (tables or []) if isinstance(item, dict)]

    async def submit_form(
        self,
        page: Any,
        fields: Dict[str, str],
        *,
        submit_selector: Optional[str],
        wait_for_selector: Optional[str],
        timeout_ms: int,
    ) -> Dict[str, Any]:
        if wait_for_selector:
            try:
                await page.locator(wait_for_selector).first.wait_for(state="visible", timeout=timeout_ms)
            except PlaywrightTimeoutError as exc:
                raise ActionTargetNotFound(
                    f"Form did not appear: {wait_for_selector}",
                    details={"selector": wait_for_selector},
                ) from exc
        for selector, value in fields.items():
            await self.fill(page, selector, value, timeout_ms=timeout_ms)
        submitted = False
        if submit_selector:
            await self.click(page, submit_selector, timeout_ms=timeout_ms)
            await self._settle(page, timeout_ms)
            submitted = True
        return {
            "url": as_text(getattr(page, "url", "")),
            "content": await page.content(),
            "filled": list(fields.keys()),
            "submitted": submitted,
        }

    async def smart_fill_form(
        self,
        page: Any,
        fields: List[Dict[str, Any]],
        *,
        submit_text: str,
        timeout_ms: int,
    ) -> Dict[str, Any]:
        filled: List[str] = []
        unmatched: List[str] = []
        for field in fields:
            label = str(field.get("label") or "").strip()
            value = "" if field.get("value") is None else str(field.get("value"))
            locator = await self._first_visible(page, _label_candidates(label)) if label else None
            if locator is None:
                unmatched.append(label)
                continue
            if str(field.get("type") or "text").lower() in {"checkbox", "radio"}:
                if value.lower() in {"", "0", "false", "no", "off"}:
                    await locator.uncheck(timeout=timeout_ms)
                else:
                    await locator.check(timeout=timeout_ms)
            else:
                await locator.fill(value, timeout=timeout_ms)
            filled.append(label)

        submit = await self._first_visible(page, _submit_candidates(submit_text))
        submitted = False
        if submit is not None:
            await submit.click(timeout=timeout_ms)
            await self._settle(page, timeout_ms)
            submitted = True
        return {
            "url": as_text(getattr(page, "url", "")),
            "content": await page.content(),
            "filled": filled,
            "unmatched": unmatched,
            "submitted": submitted,
        }
