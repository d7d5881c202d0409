import logging

from webpilot.browser.logging_utils import log_event
from webpilot.browser.runtime_common import clamp_timeout_ms, host_token, screenshot_filename
from webpilot.tool.capability import Capability, expand_capabilities


def test_host_token_normalizes_hosts():
    assert host_token("Shop.Example.com") == "shop_example_com"
    assert host_token("::1") == "__1"
    assert host_token("www.example.com") == "example_com"
    assert host_token("") == ""


def test_screenshot_filename_strips_directories():
    assert screenshot_filename("../../etc/passwd") == "passwd"
    assert screenshot_filename("my shot.png") == "my-shot.png"
    assert screenshot_filename("  ") == "screenshot"


def test_clamp_timeout_ms():
    assert clamp_timeout_ms(None, 500) == 500
    assert clamp_timeout_ms("250") == 250
    assert clamp_timeout_ms(-3) == 1
    assert clamp_timeout_ms("soon", 700) == 700


def test_browser_implies_network():
    assert expand_capabilities([Capability.BROWSER]) == {Capability.BROWSER, Capability.NETWORK}
    assert expand_capabilities([Capability.SESSIONS]) == {Capability.SESSIONS}


def test_log_event_renders_key_values(caplog):
    log = logging.getLogger("webpilot.test")
    with caplog.at_level(logging.INFO, logger="webpilot.test"):
        log_event(log, level=logging.INFO, event="demo", ok=True, took=1.5, note="two words", skipped=None)

    assert 'webpilot event=demo ok=true took=1.500 note="two words"' in caplog.text
    assert "skipped" not in caplog.text
