import asyncio
import base64

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from webpilot.browser.errors import FatalError, InvalidArguments, UnknownTool
from webpilot.config.gateway_config import CredentialConfig


@pytest.mark.asyncio
async def test_navigate_success_payload(executor, registry, actions):
    actions.site("https://a.example/x", title="A", body="hello")
    session = await registry.get_or_create("auto_a_example")

    result = await executor.execute(session, "navigate_to_url", {"url": "https://a.example/x"})

    assert result["success"] is True
    assert result["error"] is None
    assert result["url"] == "https://a.example/x"
    assert result["status"] == 200
    assert result["login_detected"] is False
    assert result["session_id"] == "auto_a_example"


@pytest.mark.asyncio
async def test_non_http_url_is_invalid_arguments(executor, registry):
    session = await registry.get_or_create("default")

    result = await executor.execute(session, "navigate_to_url", {"url": "file:///etc/passwd"})

    assert result["success"] is False
    assert result["error_kind"] == "InvalidArguments"


@pytest.mark.asyncio
async def test_schema_violations_become_invalid_arguments(executor, registry):
    session = await registry.get_or_create("default")

    result = await executor.execute(session, "click_element", {"selector": "#a", "bogus": 1})

    assert result["success"] is False
    assert result["error_kind"] == "InvalidArguments"
    assert result["error_details"]["errors"]


def test_unknown_tool_lists_available(executor):
    with pytest.raises(UnknownTool) as excinfo:
        executor.lookup("teleport")
    assert "navigate_to_url" in excinfo.value.details["available_tools"]


def test_validate_rejects_non_object(executor, tools):
    with pytest.raises(InvalidArguments):
        executor.validate(tools.get("click_element"), ["#a"])


@pytest.mark.asyncio
async def test_missing_selector_reports_target_not_found(executor, registry):
    session = await registry.get_or_create("default")

    result = await executor.execute(session, "click_element", {"selector": "#missing"})

    assert result["success"] is False
    assert result["error_kind"] == "ActionTargetNotFound"
    assert result["error_details"]["session_id"] == "default"


@pytest.mark.asyncio
async def test_hung_action_is_bounded_by_timeout(executor, registry, actions):
    actions.hang_click = True
    session = await registry.get_or_create("default")

    result = await asyncio.wait_for(
        executor.execute(session, "click_element", {"selector": "#a", "timeout": 50}),
        timeout=5,
    )

    assert result["success"] is False
    assert result["error_kind"] == "ActionTimeout"


@pytest.mark.asyncio
async def test_playwright_errors_are_mapped(executor, registry, actions):
    session = await registry.get_or_create("default")

    async def net_error(*args, **kwargs):
        raise PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://nowhere.invalid/")

    actions.goto = net_error
    result = await executor.execute(session, "navigate_to_url", {"url": "https://nowhere.invalid/"})
    assert result["error_kind"] == "NavigationFailed"

    async def pw_timeout(*args, **kwargs):
        raise PlaywrightTimeoutError("Timeout 30000ms exceeded.")

    actions.goto = pw_timeout
    result = await executor.execute(session, "navigate_to_url", {"url": "https://slow.example/"})
    assert result["error_kind"] == "ActionTimeout"

    async def target_closed(*args, **kwargs):
        raise PlaywrightError("Target page, context or browser has been closed")

    actions.text = target_closed
    result = await executor.execute(session, "get_page_content", {})
    assert result["error_kind"] == "ActionFailed"


@pytest.mark.asyncio
async def test_fatal_error_propagates(executor, registry, actions):
    session = await registry.get_or_create("default")

    async def broken(*args, **kwargs):
        raise FatalError("corrupted")

    actions.text = broken
    with pytest.raises(FatalError):
        await executor.execute(session, "get_page_content", {})


@pytest.mark.asyncio
async def test_unexpected_errors_propagate(executor, registry, actions):
    session = await registry.get_or_create("default")

    async def broken(*args, **kwargs):
        raise KeyError("surprise")

    actions.text = broken
    with pytest.raises(KeyError):
        await executor.execute(session, "get_page_content", {})


def test_timeout_argument_overrides_tool_default(executor, config):
    assert executor.timeout_for("click_element", {}) == config.timeouts.for_tool("click_element")
    assert executor.timeout_for("click_element", {"timeout": 1234}) == 1234


@pytest.mark.asyncio
async def test_login_is_performed_with_configured_credentials(executor, registry, actions, config):
    config.credentials.append(CredentialConfig(pattern="intranet.example", username="u", password="p"))
    actions.site("https://intranet.example/", body="dashboard", login_form=True)
    session = await registry.get_or_create("auto_intranet_example")

    result = await executor.execute(session, "navigate_to_url", {"url": "https://intranet.example/"})

    assert result["success"] is True
    assert result["login_performed"] is True
    assert actions.calls.count("goto") == 2
    assert "attempt_login" in actions.calls


@pytest.mark.asyncio
async def test_rejected_login_requires_authentication(executor, registry, actions, config):
    config.credentials.append(CredentialConfig(pattern="intranet.example", username="u", password="bad"))
    actions.site("https://intranet.example/", login_form=True)
    actions.login_success = False
    session = await registry.get_or_create("auto_intranet_example")

    result = await executor.execute(session, "navigate_to_url", {"url": "https://intranet.example/"})

    assert result["success"] is False
    assert result["error_kind"] == "ActionAuthenticationRequired"


@pytest.mark.asyncio
async def test_login_form_without_credentials_is_reported(executor, registry, actions):
    actions.site("https://private.example/", login_form=True)
    session = await registry.get_or_create("auto_private_example")

    result = await executor.execute(session, "navigate_to_url", {"url": "https://private.example/"})

    assert result["success"] is True
    assert result["login_detected"] is True
    assert "attempt_login" not in actions.calls


@pytest.mark.asyncio
async def test_wait_for_content_bounds(executor, registry):
    session = await registry.get_or_create("default")

    too_long = await executor.execute(session, "wait_for_content", {"seconds": 61})
    assert too_long["error_kind"] == "InvalidArguments"

    missing = await executor.execute(session, "wait_for_content", {"seconds": 0.1, "selector": "#never"})
    assert missing["error_kind"] == "ActionTargetNotFound"


@pytest.mark.asyncio
async def test_screenshot_is_base64_and_saved(executor, registry, config, tmp_path):
    config.screenshot_dir = str(tmp_path)
    session = await registry.get_or_create("default")

    result = await executor.execute(
        session,
        "capture_screenshot",
        {"filename": "../../etc/shot", "image_type": "jpeg"},
    )

    assert result["success"] is True
    assert base64.b64decode(result["image_base64"]) == b"\x89PNG fake"
    assert result["mime_type"] == "image/jpeg"
    assert result["size_bytes"] == len(b"\x89PNG fake")
    saved = tmp_path / "shot.jpg"
    assert result["path"] == str(saved)
    assert saved.read_bytes() == b"\x89PNG fake"


@pytest.mark.asyncio
async def test_extract_data_navigates_and_reports_matches(executor, registry, actions):
    actions.site("https://shop.example/item", selectors={"h1": "Widget", ".price": "$5"})
    session = await registry.get_or_create("auto_shop_example")

    result = await executor.execute(
        session,
        "extract_data",
        {"url": "https://shop.example/item", "selectors": {"name": "h1", "price": ".price", "sku": ".sku"}},
    )

    assert result["success"] is True
    assert result["data"] == {"name": "Widget", "price": "$5", "sku": None}
    assert result["matched"] == 2


@pytest.mark.asyncio
async def test_submit_form_fills_and_clicks(executor, registry, actions):
    actions.site("https://form.example/", body="thanks", selectors={"#q": "", "#go": ""})
    session = await registry.get_or_create("auto_form_example")

    result = await executor.execute(
        session,
        "submit_form",
        {"url": "https://form.example/", "fields": {"#q": "query"}, "submit_selector": "#go"},
    )

    assert result["success"] is True
    assert result["submitted"] is True
    assert session.page.filled == {"#q": "query"}
    assert session.page.clicked == ["#go"]


@pytest.mark.asyncio
async def test_smart_fill_requires_labels(executor, registry):
    session = await registry.get_or_create("default")

    result = await executor.execute(session, "smart_fill_form", {"fields": [{"value": "x"}]})

    assert result["error_kind"] == "InvalidArguments"


@pytest.mark.asyncio
async def test_list_sessions_runs_without_a_session(executor, registry):
    await registry.get_or_create("default")

    result = await executor.execute(None, "list_sessions", {})

    assert result["success"] is True
    assert result["stats"]["active_sessions"] == 1
    assert result["engine"]["state"] == "ready"
    assert "session_id" not in result


@pytest.mark.asyncio
async def test_cleanup_resources_modes(executor, registry, clock):
    await registry.get_or_create("a")
    await registry.get_or_create("b")

    one = await executor.execute(None, "cleanup_resources", {"session_id": "a"})
    assert one["closed"] == ["a"]
    assert one["remaining"] == 1

    idle = await executor.execute(None, "cleanup_resources", {})
    assert idle["closed"] == []

    everything = await executor.execute(None, "cleanup_resources", {"close_all": True})
    assert everything["closed"] == ["b"]
    assert everything["engine_released"] is True
    assert registry.engine.state.value == "absent"
