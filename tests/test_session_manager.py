import asyncio

import pytest

from webpilot.browser.errors import EngineUnavailable, FatalError
from webpilot.browser.profiles import ProfileResolver, SessionClass
from webpilot.browser.session_manager import SessionRegistry
from webpilot.config.gateway_config import HostRule, SessionConfig, TimeoutConfig


def _registry(engine, clock, *, max_sessions=5, sessions=None):
    return SessionRegistry(
        engine,
        ProfileResolver(sessions or SessionConfig(), TimeoutConfig()),
        max_sessions=max_sessions,
        probe_timeout_seconds=0.05,
        clock=clock,
    )


def _live_contexts(browser):
    return [context for context in browser.contexts if not context.closed]


@pytest.mark.asyncio
async def test_concurrent_get_or_create_yields_one_session(registry, launcher):
    sessions = await asyncio.gather(*(registry.get_or_create("work") for _ in range(10)))

    assert len({id(session) for session in sessions}) == 1
    assert len(registry) == 1
    assert launcher.calls == 1
    assert len(launcher.browsers[0].contexts) == 1


@pytest.mark.asyncio
async def test_same_key_callers_share_a_slow_creation(registry, engine):
    browser = await engine.acquire()
    browser.new_context_delay = 0.05

    sessions = await asyncio.gather(*(registry.get_or_create("work") for _ in range(5)))

    assert len({id(session) for session in sessions}) == 1
    assert len(browser.contexts) == 1


@pytest.mark.asyncio
async def test_teardown_during_lock_handoff_keeps_one_session(registry, launcher):
    first = await registry.get_or_create("k")
    first.page.evaluate_delay = 0.02
    browser = launcher.browsers[0]
    browser.new_context_delay = 0.05

    holder = asyncio.create_task(registry.get_or_create("k"))
    waiter = asyncio.create_task(registry.get_or_create("k"))
    await asyncio.sleep(0)
    lock, _ = registry._key_locks["k"]
    # Stop right after the holder releases the key lock, before the woken
    # waiter has resumed.
    while lock.locked() and not waiter.done():
        await asyncio.sleep(0)
    await registry.teardown_one("k")
    late = asyncio.create_task(registry.get_or_create("k"))

    await holder
    waited, latest = await asyncio.gather(waiter, late)

    assert latest is registry.get("k")
    assert waited is latest or waited is first
    assert len(_live_contexts(browser)) == 1
    assert registry.keys() == ["k"]


@pytest.mark.asyncio
async def test_teardown_during_slow_creation_leaves_one_context(registry, engine):
    browser = await engine.acquire()
    browser.new_context_delay = 0.05

    creating = asyncio.create_task(registry.get_or_create("k"))
    await asyncio.sleep(0.01)
    assert await registry.teardown_one("k") is False
    again = asyncio.create_task(registry.get_or_create("k"))

    first, second = await asyncio.gather(creating, again)

    assert first is second
    assert len(_live_contexts(browser)) == 1


@pytest.mark.asyncio
async def test_eviction_racing_creation_keeps_one_context_per_key(engine, clock):
    registry = _registry(engine, clock, max_sessions=1)
    browser = await engine.acquire()
    browser.new_context_delay = 0.05

    await asyncio.gather(
        registry.get_or_create("a"),
        registry.get_or_create("b"),
        registry.get_or_create("a"),
    )

    assert len(registry) == 1
    assert len(_live_contexts(browser)) == 1


@pytest.mark.asyncio
async def test_new_session_gets_profile_options_and_timeouts(registry, launcher):
    session = await registry.get_or_create("auto_a_example", host="a.example")

    context = launcher.browsers[0].contexts[0]
    assert context.options["viewport"] == {"width": 1280, "height": 720}
    assert session.session_class is SessionClass.NAVIGATION
    assert session.page.default_timeout == session.profile.default_timeout_ms
    assert session.page.navigation_timeout == session.profile.navigation_timeout_ms
    assert session.host == "a.example"


@pytest.mark.asyncio
async def test_dead_page_is_replaced(registry):
    first = await registry.get_or_create("work")
    first.page.closed = True

    second = await registry.get_or_create("work")

    assert second is not first
    assert first.context.closed
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_unresponsive_page_is_replaced(registry):
    first = await registry.get_or_create("work")
    first.page.hang_evaluate = True

    second = await registry.get_or_create("work")

    assert second is not first


@pytest.mark.asyncio
async def test_busy_page_is_not_probed(registry):
    async with registry.lease("work") as session:
        session.page.hang_evaluate = True
        again = await registry.get_or_create("work")
        assert again is session


@pytest.mark.asyncio
async def test_idle_sweep_then_recreate(registry, clock):
    first = await registry.get_or_create("work")
    clock.advance(first.profile.idle_timeout_seconds + 1)

    swept = await registry.sweep_idle()

    assert swept == ["work"]
    assert len(registry) == 0
    assert first.context.closed

    second = await registry.get_or_create("work")
    assert second is not first
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_sweep_skips_sessions_with_calls_in_flight(registry, clock):
    async with registry.lease("work") as session:
        clock.advance(session.profile.idle_timeout_seconds * 2)
        assert await registry.sweep_idle() == []
    assert "work" in registry


@pytest.mark.asyncio
async def test_fallback_sessions_idle_out_sooner(registry, clock):
    await registry.get_or_create("default")
    await registry.get_or_create("auto_a_example")
    clock.advance(SessionConfig().fallback_idle_timeout_seconds + 1)

    assert await registry.sweep_idle() == ["default"]
    assert registry.keys() == ["auto_a_example"]


@pytest.mark.asyncio
async def test_slow_host_rule_extends_idle_timeout(engine, clock):
    cfg = SessionConfig(host_rules=[HostRule(pattern="slow.example", slow=True)])
    registry = _registry(engine, clock, sessions=cfg)

    slow = await registry.get_or_create("auto_slow_example", host="slow.example")
    fast = await registry.get_or_create("auto_fast_example", host="fast.example")

    assert slow.profile.idle_timeout_seconds == cfg.slow_idle_timeout_seconds
    assert fast.profile.idle_timeout_seconds == cfg.navigation_idle_timeout_seconds


@pytest.mark.asyncio
async def test_eviction_removes_exactly_one_lru(engine, clock):
    registry = _registry(engine, clock, max_sessions=2)
    older = await registry.get_or_create("auto_a_example")
    clock.advance(5)
    await registry.get_or_create("auto_b_example")
    clock.advance(5)

    await registry.get_or_create("auto_c_example")

    assert sorted(registry.keys()) == ["auto_b_example", "auto_c_example"]
    assert older.context.closed


@pytest.mark.asyncio
async def test_eviction_prefers_fallback_class(engine, clock):
    registry = _registry(engine, clock, max_sessions=2)
    await registry.get_or_create("auto_a_example")
    clock.advance(5)
    fallback = await registry.get_or_create("default")
    clock.advance(5)

    await registry.get_or_create("auto_b_example")

    assert "default" not in registry
    assert "auto_a_example" in registry
    assert fallback.context.closed


@pytest.mark.asyncio
async def test_eviction_skips_busy_session(engine, clock):
    registry = _registry(engine, clock, max_sessions=2)
    async with registry.lease("auto_a_example"):
        clock.advance(5)
        await registry.get_or_create("auto_b_example")
        clock.advance(5)
        await registry.get_or_create("auto_c_example")
        assert sorted(registry.keys()) == ["auto_a_example", "auto_c_example"]


@pytest.mark.asyncio
async def test_lease_refreshes_last_used_on_success_only(registry, clock):
    session = await registry.get_or_create("work")
    created = session.last_used
    clock.advance(10)

    with pytest.raises(RuntimeError):
        async with registry.lease("work"):
            raise RuntimeError("boom")
    assert session.last_used == created
    assert session.in_flight == 0

    async with registry.lease("work"):
        assert session.in_flight == 1
    assert session.last_used == created + 10


@pytest.mark.asyncio
async def test_teardown_all_then_get_or_create_relaunches(registry, launcher):
    await registry.get_or_create("a")
    await registry.get_or_create("b")

    closed = await registry.teardown_all()

    assert sorted(closed) == ["a", "b"]
    assert len(registry) == 0
    assert launcher.browsers[0].closed

    await registry.get_or_create("a")
    assert launcher.calls == 2
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_teardown_one_reports_missing_keys(registry):
    await registry.get_or_create("a")

    assert await registry.teardown_one("a") is True
    assert await registry.teardown_one("a") is False


@pytest.mark.asyncio
async def test_teardown_failure_still_removes_entry(registry):
    session = await registry.get_or_create("a")
    session.context.close_error = RuntimeError("target closed")

    assert await registry.teardown_one("a") is True
    assert "a" not in registry


@pytest.mark.asyncio
async def test_engine_disconnect_drops_every_session(registry, launcher):
    await registry.get_or_create("a")
    await registry.get_or_create("b")

    launcher.browsers[0].crash()
    for _ in range(5):
        await asyncio.sleep(0)

    assert len(registry) == 0


@pytest.mark.asyncio
async def test_context_failure_surfaces_engine_unavailable(registry, engine):
    browser = await engine.acquire()
    browser.fail_new_context = RuntimeError("Target page, context or browser has been closed")

    with pytest.raises(EngineUnavailable):
        await registry.get_or_create("a")
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_page_failure_closes_the_context(registry, engine):
    browser = await engine.acquire()
    browser.fail_new_page = RuntimeError("page crashed")

    with pytest.raises(EngineUnavailable):
        await registry.get_or_create("a")
    assert browser.contexts[0].closed
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_shared_page_violates_invariants(registry):
    a = await registry.get_or_create("a")
    b = await registry.get_or_create("b")
    b.page = a.page

    with pytest.raises(FatalError):
        await registry.sweep_idle()


@pytest.mark.asyncio
async def test_blank_key_is_rejected(registry):
    with pytest.raises(ValueError):
        await registry.get_or_create("   ")


@pytest.mark.asyncio
async def test_snapshot_and_stats(registry):
    await registry.get_or_create("default")
    await registry.get_or_create("auto_a_example")

    stats = registry.stats()
    snapshot = {item["session_id"]: item for item in registry.snapshot()}

    assert stats["active_sessions"] == 2
    assert stats["by_class"] == {"explicit": 0, "navigation": 1, "fallback": 1}
    assert snapshot["default"]["session_class"] == "fallback"
    assert snapshot["auto_a_example"]["idle_seconds"] == 0
