from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import DEFAULTS, Settings
from .gateway import SupabaseGateway
from .identity import IdentityResolver
from .pending import PendingEditStore
from .session import AuthSession
from .sync import SyncController

logger = logging.getLogger(__name__)


class BackgroundLoop:
    """One asyncio loop on a daemon thread, shared by every browser session.

    Streamlit reruns the page script on arbitrary threads; the Supabase async
    client and its realtime websocket must stay on a single loop.
    """

    def __init__(self, name: str = "dime-async-loop"):
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._loop_ready = threading.Event()
        self._lock = threading.Lock()
        self._closers: List[Callable[[], Awaitable[Any]]] = []

    def _ensure_worker_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop and self._thread and self._thread.is_alive():
                return self._loop

            self._loop_ready.clear()

            def _runner():
                loop = asyncio.new_event_loop()
                asyncio.set_event_loop(loop)
                self._loop = loop
                self._loop_ready.set()
                loop.run_forever()

            self._thread = threading.Thread(target=_runner, name=self.name, daemon=True)
            self._thread.start()
            if not self._loop_ready.wait(timeout=5):
                raise RuntimeError("Failed to start the background asyncio loop")
            return self._loop

    def run(self, coro, timeout: float = DEFAULTS.CALL_TIMEOUT_SECONDS):
        """Run a coroutine on the background loop and wait for its result."""
        loop = self._ensure_worker_loop()
        fut = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return fut.result(timeout=timeout)
        except FuturesTimeoutError:
            fut.cancel()
            raise

    def add_closer(self, closer: Callable[[], Awaitable[Any]]) -> Callable[[], None]:
        """Register a coroutine function to run at shutdown; returns a function that unregisters it."""
        with self._lock:
            self._closers.append(closer)

        def remove() -> None:
            with self._lock:
                if closer in self._closers:
                    self._closers.remove(closer)
        return remove

    @property
    def closer_count(self) -> int:
        return len(self._closers)

    def shutdown(self, timeout: float = 5.0) -> None:
        loop = self._loop
        if loop is None or not loop.is_running():
            return
        with self._lock:
            closers, self._closers = self._closers, []
        for closer in closers:
            try:
                self.run(closer(), timeout=timeout)
            except Exception:
                logger.warning("shutdown hook failed", exc_info=True)
        loop.call_soon_threadsafe(loop.stop)


@dataclass
class DashboardRuntime:
    """Per-browser-session wiring of gateway, auth session and controller."""
    gateway: Any
    session: AuthSession
    controller: SyncController
    _cleanups: List[Callable[[], None]] = field(default_factory=list, repr=False)

    @property
    def pending(self) -> PendingEditStore:
        return self.controller.pending

    @classmethod
    async def open(cls, settings: Settings) -> "DashboardRuntime":
        gateway = await SupabaseGateway.connect(settings)
        return await cls.assemble(gateway)

    @classmethod
    async def assemble(cls, gateway) -> "DashboardRuntime":
        session = AuthSession(gateway)
        controller = SyncController(gateway, IdentityResolver(), PendingEditStore(), session=session)
        await session.bind()
        await controller.start()
        return cls(gateway=gateway, session=session, controller=controller)

    def on_close(self, cleanup: Callable[[], None]) -> None:
        self._cleanups.append(cleanup)

    async def close(self) -> None:
        await self.controller.close()
        self.session.unbind()
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in cleanups:
            cleanup()


class SessionRegistry:
    """Runtimes keyed by browser session id.

    Streamlit gives no hook when a tab goes away, so ``sweep`` is called as
    new sessions arrive and closes the runtimes whose session is gone.
    """

    def __init__(self, loop: BackgroundLoop):
        self.loop = loop
        self._runtimes: Dict[str, DashboardRuntime] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._runtimes)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._runtimes

    def add(self, session_id: str, runtime: DashboardRuntime) -> None:
        runtime.on_close(self.loop.add_closer(runtime.close))
        runtime.on_close(lambda: self._forget(session_id, runtime))
        with self._lock:
            previous = self._runtimes.get(session_id)
            self._runtimes[session_id] = runtime
        if previous is not None and previous is not runtime:
            self._close(session_id, previous)

    def _forget(self, session_id: str, runtime: DashboardRuntime) -> None:
        with self._lock:
            if self._runtimes.get(session_id) is runtime:
                del self._runtimes[session_id]

    def _close(self, session_id: str, runtime: DashboardRuntime) -> None:
        try:
            self.loop.run(runtime.close())
        except Exception:
            logger.warning("closing runtime for session %s failed", session_id, exc_info=True)

    def sweep(self, is_active: Callable[[str], bool]) -> int:
        """Close every runtime whose session ``is_active`` no longer knows; returns how many."""
        with self._lock:
            gone = [(sid, rt) for sid, rt in self._runtimes.items() if not is_active(sid)]
        for sid, runtime in gone:
            logger.info("closing runtime of ended session %s", sid)
            self._close(sid, runtime)
        return len(gone)
