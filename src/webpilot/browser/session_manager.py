"""Session registry: one isolated browsing context and page per session key."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from .engine import EngineHandle
from .errors import BrowserGatewayError, EngineUnavailable, FatalError
from .logging_utils import log_event
from .profiles import ProfileResolver, SessionClass, SessionProfile
from .runtime_common import DEFAULT_MAX_SESSIONS, DEFAULT_PROBE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class Session:
    key: str
    context: Any
    page: Any
    profile: SessionProfile
    created_at: float = field(default_factory=time.time)
    last_used: float = field(default_factory=time.time)
    in_flight: int = 0
    host: Optional[str] = None

    @property
    def session_class(self) -> SessionClass:
        return self.profile.session_class

    def to_dict(self, now: Optional[float] = None) -> Dict[str, Any]:
        now = time.time() if now is None else now
        try:
            url = str(getattr(self.page, "url", "") or "")
        except Exception:
            url = ""
        return {
            "session_id": self.key,
            "session_class": self.profile.session_class.value,
            "profile": self.profile.name,
            "url": url,
            "created_at": self.created_at,
            "last_used": self.last_used,
            "idle_seconds": round(max(0.0, now - self.last_used), 3),
            "idle_timeout_seconds": self.profile.idle_timeout_seconds,
            "in_flight": self.in_flight,
        }


class SessionRegistry:
    """
    Owner of every live session.

    The table is guarded by one registry lock; creation of a given key is
    serialized by a per-key lock so concurrent callers share one session.
    Contexts are closed outside the registry lock.
    """

    def __init__(
        self,
        engine: EngineHandle,
        profiles: Optional[ProfileResolver] = None,
        *,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
        close_timeout_seconds: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._engine = engine
        self._profiles = profiles or ProfileResolver()
        self._max_sessions = max(1, int(max_sessions))
        self._probe_timeout = float(probe_timeout_seconds)
        self._close_timeout = float(close_timeout_seconds)
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()
        # key -> (lock, callers holding or waiting on it)
        self._key_locks: Dict[str, Tuple[asyncio.Lock, int]] = {}
        engine.add_disconnect_listener(self.on_engine_disconnected)

    @property
    def engine(self) -> EngineHandle:
        return self._engine

    @property
    def max_sessions(self) -> int:
        return self._max_sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    def keys(self) -> List[str]:
        return list(self._sessions.keys())

    def get(self, key: str) -> Optional[Session]:
        return self._sessions.get(key)

    def snapshot(self) -> List[Dict[str, Any]]:
        now = self._clock()
        return [session.to_dict(now) for session in self._sessions.values()]

    def stats(self) -> Dict[str, Any]:
        by_class: Dict[str, int] = {item.value: 0 for item in SessionClass}
        for session in self._sessions.values():
            by_class[session.profile.session_class.value] += 1
        return {
            "active_sessions": len(self._sessions),
            "max_sessions": self._max_sessions,
            "by_class": by_class,
            "in_flight": sum(session.in_flight for session in self._sessions.values()),
        }

    async def get_or_create(self, key: str, *, host: Optional[str] = None) -> Session:
        return await self._acquire(key, host=host, hold=False)

    @asynccontextmanager
    async def lease(self, key: str, *, host: Optional[str] = None) -> AsyncIterator[Session]:
        """Hold a session for one call; ``last_used`` is refreshed on success."""
        session = await self._acquire(key, host=host, hold=True)
        try:
            yield session
            session.last_used = self._clock()
        finally:
            session.in_flight = max(0, session.in_flight - 1)

    async def _acquire(self, key: str, *, host: Optional[str], hold: bool) -> Session:
        clean_key = str(key or "").strip()
        if not clean_key:
            raise ValueError("session key must be non-empty")

        lock = self._enter_key(clean_key)
        try:
            async with lock:
                session, victim = await self._acquire_locked(clean_key, host, hold)
        finally:
            self._leave_key(clean_key)

        if victim is not None:
            log_event(
                logger,
                level=logging.INFO,
                event="session_evicted",
                session_id=victim.key,
                session_class=victim.profile.session_class.value,
                for_session=clean_key,
            )
            await self._close_session(victim, reason="evicted")
        return session

    async def _acquire_locked(
        self, clean_key: str, host: Optional[str], hold: bool
    ) -> Tuple[Session, Optional[Session]]:
        """Body of ``_acquire``; the caller holds the key lock."""
        while True:
            session = self._sessions.get(clean_key)
            if session is None:
                break
            if await self._page_alive(session):
                if self._sessions.get(clean_key) is session:
                    if hold:
                        session.in_flight += 1
                    return session, None
                continue
            async with self._lock:
                if self._sessions.get(clean_key) is session:
                    self._sessions.pop(clean_key, None)
                self._check_invariants()
            await self._close_session(session, reason="page_dead")

        created = await self._create(clean_key, host)
        victim: Optional[Session] = None
        async with self._lock:
            existing = self._sessions.get(clean_key)
            if existing is None:
                if len(self._sessions) >= self._max_sessions:
                    victim = self._pick_victim(exclude=clean_key)
                    if victim is not None:
                        self._sessions.pop(victim.key, None)
                self._sessions[clean_key] = created
                session = created
            else:
                session = existing
            if hold:
                session.in_flight += 1
            self._check_invariants()

        if session is not created:
            # Never replace a live entry; the newcomer is discarded.
            log_event(
                logger,
                level=logging.WARNING,
                event="session_create_conflict",
                session_id=clean_key,
            )
            await self._close_session(created, reason="duplicate")
        return session, victim

    def _enter_key(self, key: str) -> asyncio.Lock:
        lock, users = self._key_locks.get(key) or (asyncio.Lock(), 0)
        self._key_locks[key] = (lock, users + 1)
        return lock

    def _leave_key(self, key: str) -> None:
        # Only callers that entered through _enter_key drop a key lock, and
        # only once none of them still holds or waits on it.
        lock, users = self._key_locks[key]
        if users <= 1:
            del self._key_locks[key]
        else:
            self._key_locks[key] = (lock, users - 1)

    async def _create(self, key: str, host: Optional[str]) -> Session:
        profile = self._profiles.resolve(key, host)
        browser = await self._engine.acquire()
        started = time.perf_counter()
        try:
            context = await browser.new_context(**profile.context_options())
        except BrowserGatewayError:
            raise
        except Exception as exc:
            raise EngineUnavailable(
                f"Failed to open browsing context: {exc}",
                details={"session_id": key},
            ) from exc
        try:
            page = await context.new_page()
            page.set_default_timeout(profile.default_timeout_ms)
            page.set_default_navigation_timeout(profile.navigation_timeout_ms)
        except BaseException as exc:
            try:
                await context.close()
            except Exception as close_exc:
                logger.warning("Context close after failed session start raised: %s", close_exc)
            if isinstance(exc, Exception) and not isinstance(exc, BrowserGatewayError):
                raise EngineUnavailable(
                    f"Failed to open page: {exc}",
                    details={"session_id": key},
                ) from exc
            raise

        now = self._clock()
        session = Session(
            key=key,
            context=context,
            page=page,
            profile=profile,
            created_at=now,
            last_used=now,
            host=host,
        )
        log_event(
            logger,
            level=logging.INFO,
            event="session_created",
            session_id=key,
            session_class=profile.session_class.value,
            profile=profile.name,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return session

    async def _page_alive(self, session: Session) -> bool:
        page = session.page
        try:
            if page.is_closed():
                return False
            # Busy pages are not evaluated.
            if session.in_flight > 0:
                return True
            await asyncio.wait_for(page.evaluate("1"), timeout=self._probe_timeout)
            return True
        except Exception as exc:
            log_event(
                logger,
                level=logging.WARNING,
                event="session_probe_failed",
                session_id=session.key,
                error=str(exc) or type(exc).__name__,
            )
            return False

    def _pick_victim(self, *, exclude: str) -> Optional[Session]:
        candidates = [session for key, session in self._sessions.items() if key != exclude]
        if not candidates:
            return None
        pool = [session for session in candidates if session.in_flight == 0] or candidates
        fallback = [session for session in pool if session.profile.session_class is SessionClass.FALLBACK]
        return min(fallback or pool, key=lambda session: session.last_used)

    def _check_invariants(self) -> None:
        if len(self._sessions) > self._max_sessions:
            raise FatalError(
                "session table exceeds capacity",
                details={"size": len(self._sessions), "max_sessions": self._max_sessions},
            )
        pages = set()
        for key, session in self._sessions.items():
            if session.key != key or session.page is None:
                raise FatalError("session table entry is inconsistent", details={"session_id": key})
            if id(session.page) in pages:
                raise FatalError("page shared between sessions", details={"session_id": key})
            pages.add(id(session.page))

    async def _close_session(self, session: Session, *, reason: str) -> None:
        try:
            await asyncio.wait_for(session.context.close(), timeout=self._close_timeout)
        except Exception as exc:
            log_event(
                logger,
                level=logging.WARNING,
                event="session_close_failed",
                session_id=session.key,
                reason=reason,
                error=str(exc) or type(exc).__name__,
            )
            return
        log_event(
            logger,
            level=logging.INFO,
            event="session_closed",
            session_id=session.key,
            reason=reason,
        )

    async def sweep_idle(self, now: Optional[float] = None) -> List[str]:
        now = self._clock() if now is None else now
        expired: List[Session] = []
        async with self._lock:
            for key, session in list(self._sessions.items()):
                if session.in_flight > 0:
                    continue
                if now - float(session.last_used) > float(session.profile.idle_timeout_seconds):
                    expired.append(self._sessions.pop(key))
            self._check_invariants()
        for session in expired:
            await self._close_session(session, reason="idle")
        return [session.key for session in expired]

    async def teardown_one(self, key: str) -> bool:
        async with self._lock:
            session = self._sessions.pop(str(key or "").strip(), None)
            self._check_invariants()
        if session is None:
            return False
        await self._close_session(session, reason="explicit")
        return True

    async def teardown_all(self, *, release_engine: bool = True) -> List[str]:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await self._close_session(session, reason="teardown")
        if release_engine:
            await self._engine.release()
        log_event(
            logger,
            level=logging.INFO,
            event="registry_teardown",
            closed=len(sessions),
            release_engine=release_engine,
        )
        return [session.key for session in sessions]

    async def on_engine_disconnected(self, reason: str) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        if sessions:
            log_event(
                logger,
                level=logging.WARNING,
                event="sessions_dropped",
                reason=reason,
                count=len(sessions),
            )
        for session in sessions:
            await self._close_session(session, reason="engine_disconnected")
