"""Keeps the dashboard's derived state in step with the backend.

State machine::

    UNINITIALIZED -> METADATA_LOADING -> METADATA_READY -> DATA_LOADING -> READY
                            |                                  ^            |
                            v                                  +------------+
                          ERROR                         (refresh, realtime, commit)

Everything here runs on one asyncio loop. Derived state is published as a
single immutable ``DashboardSnapshot`` that is swapped, never mutated, so the
page thread can read ``controller.snapshot`` at any time.

Refreshes may overlap (a realtime push while a commit is re-reading, two
pushes in a row). Each data category gets a request token per fetch and only
the response carrying the latest token is applied; older responses that land
late are dropped.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

from .aggregate import aggregate_positions, label_transactions
from .config import DEFAULTS
from .errors import DashboardError, DataFetchError, MetadataFetchError, SubscriptionError, WriteValidationError
from .identity import IdentityResolver
from .models import NewTransaction, PositionSummary, TransactionView
from .pending import PendingEditStore, parse_delta
from .session import SIGNED_IN, SIGNED_OUT

logger = logging.getLogger(__name__)

POSITIONS = "positions"
HISTORY = "history"


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    METADATA_LOADING = "metadata_loading"
    METADATA_READY = "metadata_ready"
    DATA_LOADING = "data_loading"
    READY = "ready"
    ERROR = "error"


_LOADING = (SyncState.METADATA_LOADING, SyncState.DATA_LOADING)
_STARTABLE = (SyncState.UNINITIALIZED, SyncState.ERROR, SyncState.METADATA_READY)
_REFRESHABLE = (SyncState.METADATA_READY, SyncState.DATA_LOADING, SyncState.READY)


@dataclass(frozen=True)
class DashboardSnapshot:
    state: SyncState = SyncState.UNINITIALIZED
    summary: Tuple[PositionSummary, ...] = ()
    history: Tuple[TransactionView, ...] = ()
    live: bool = False
    version: int = 0

    @property
    def loading(self) -> bool:
        return self.state in _LOADING


class SyncController:
    def __init__(self, gateway, resolver: Optional[IdentityResolver] = None,
                 pending: Optional[PendingEditStore] = None, session=None,
                 history_limit: int = DEFAULTS.HISTORY_LIMIT):
        self.gateway = gateway
        self.resolver = resolver or IdentityResolver()
        self.pending = pending or PendingEditStore()
        self.history_limit = history_limit

        self._snapshot = DashboardSnapshot()
        self._tokens: Dict[str, int] = {POSITIONS: 0, HISTORY: 0}
        self._inflight = 0
        self._generation = 0
        self._subscription = None
        self._tasks: Set[asyncio.Task] = set()
        self._notices: Deque[str] = deque(maxlen=20)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unlisten: Optional[Callable[[], None]] = None
        if session is not None:
            self._unlisten = session.subscribe(self._on_session_event)

    # ---------- published state ----------
    @property
    def snapshot(self) -> DashboardSnapshot:
        return self._snapshot

    @property
    def state(self) -> SyncState:
        return self._snapshot.state

    def _publish(self, **changes: Any) -> None:
        before = self._snapshot.state
        self._snapshot = replace(self._snapshot, version=self._snapshot.version + 1, **changes)
        if self._snapshot.state != before:
            logger.debug("sync state %s -> %s", before.value, self._snapshot.state.value)

    def _notify(self, message: str) -> None:
        self._notices.append(message)

    def drain_notices(self) -> List[str]:
        out = []
        while self._notices:
            out.append(self._notices.popleft())
        return out

    # ---------- metadata ----------
    async def start(self) -> DashboardSnapshot:
        """Load people and funds, then subscribe and fetch data once both are non-empty."""
        self._loop = asyncio.get_running_loop()
        if self.state not in _STARTABLE:
            return self._snapshot
        generation = self._generation
        self._publish(state=SyncState.METADATA_LOADING)
        try:
            await self.resolver.reload(self.gateway)
        except MetadataFetchError as exc:
            logger.error("metadata load failed: %s", exc)
            self._notify(str(exc))
            if generation == self._generation:
                self._publish(state=SyncState.ERROR)
            return self._snapshot
        if generation != self._generation:
            return self._snapshot

        self.pending.ensure(self.resolver.cells())
        self._publish(state=SyncState.METADATA_READY)
        if not self.resolver.is_complete:
            logger.warning("no people or funds visible; data load deferred")
            return self._snapshot

        await self._subscribe()
        return await self.refresh()

    # ---------- data ----------
    def _issue(self, category: str) -> int:
        self._tokens[category] += 1
        return self._tokens[category]

    async def refresh(self) -> DashboardSnapshot:
        """Re-read positions and history together; stale or failed reads leave prior data in place."""
        snapshot, _ = await self._refresh()
        return snapshot

    async def _refresh(self) -> Tuple[DashboardSnapshot, bool]:
        # The flag is False when a read for this round failed or the session changed underneath it.
        if self.state not in _REFRESHABLE or not self.resolver.is_complete:
            return self._snapshot, True
        generation = self._generation
        tokens = {POSITIONS: self._issue(POSITIONS), HISTORY: self._issue(HISTORY)}
        self._inflight += 1
        self._publish(state=SyncState.DATA_LOADING)
        try:
            positions, history = await asyncio.gather(
                self.gateway.list_current_positions(),
                self.gateway.list_recent_transactions(self.history_limit),
                return_exceptions=True,
            )
        finally:
            self._inflight -= 1
        if generation != self._generation:
            logger.debug("dropping refresh from a previous session")
            return self._snapshot, False

        ok = True
        changes: Dict[str, Any] = {}
        for category, result in ((POSITIONS, positions), (HISTORY, history)):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if tokens[category] != self._tokens[category]:
                logger.debug("dropping stale %s response (token %d, latest %d)",
                             category, tokens[category], self._tokens[category])
                continue
            if isinstance(result, BaseException):
                self._report_fetch_failure(category, result)
                ok = False
            elif category == POSITIONS:
                changes["summary"] = tuple(aggregate_positions(self.resolver, result))
            else:
                changes["history"] = tuple(label_transactions(self.resolver, result))

        if self._inflight == 0:
            changes["state"] = SyncState.READY
        if changes:
            self._publish(**changes)
        return self._snapshot, ok

    def _report_fetch_failure(self, category: str, exc: BaseException) -> None:
        if not isinstance(exc, DataFetchError):
            exc = DataFetchError(f"Could not load {category}: {exc}")
        logger.warning("%s fetch failed: %s", category, exc)
        self._notify(str(exc))

    # ---------- writes ----------
    async def commit(self, person_id: str, fund_id: str) -> NewTransaction:
        """Insert the cell's draft as a transaction, re-read, then empty that cell only."""
        draft = self.pending.get(person_id, fund_id)
        amount = parse_delta(draft.delta)
        if self.resolver.person_name(person_id) is None or self.resolver.fund_symbol(fund_id) is None:
            raise WriteValidationError("People/fund ids are not loaded yet.")

        txn = NewTransaction(person_id=person_id, fund_id=fund_id,
                             amount_delta=amount, note=draft.note.strip() or None)
        await self.gateway.insert_transaction(txn)
        logger.info("transaction saved: %s %s %s",
                    self.resolver.person_name(person_id), self.resolver.fund_symbol(fund_id), amount)
        _, refreshed = await self._refresh()
        if refreshed:
            self.pending.clear(person_id, fund_id)
        else:
            logger.warning("keeping the draft for %s/%s, the dashboard did not reload", person_id, fund_id)
        return txn

    # ---------- realtime ----------
    async def _subscribe(self) -> None:
        if self._subscription is not None:
            return
        try:
            self._subscription = await self.gateway.on_transactions_changed(self._on_transactions_changed)
        except SubscriptionError as exc:
            logger.warning("realtime subscription failed: %s", exc)
            self._notify(str(exc))
            return
        self._publish(live=True)

    async def _unsubscribe(self) -> None:
        sub, self._subscription = self._subscription, None
        if sub is None:
            return
        self._publish(live=False)
        try:
            await sub.close()
        except Exception:
            logger.warning("closing the realtime channel failed", exc_info=True)

    def _on_transactions_changed(self, payload: Any = None) -> None:
        logger.debug("transactions changed, scheduling refresh")
        self._spawn(self.refresh)

    # ---------- auth ----------
    def _on_session_event(self, event: str, email: Optional[str]) -> None:
        if event == SIGNED_OUT:
            self._spawn(self.reset)
        elif event == SIGNED_IN and self.state in _STARTABLE:
            self._spawn(self.start)

    async def reset(self) -> None:
        """Forget everything loaded for the previous user."""
        self._generation += 1
        await self._unsubscribe()
        self.resolver.clear()
        self.pending.reset()
        self._snapshot = DashboardSnapshot(version=self._snapshot.version + 1)

    # ---------- lifecycle ----------
    def _spawn(self, factory: Callable[[], Any]) -> None:
        loop = self._loop
        if loop is None:
            loop = self._loop = asyncio.get_running_loop()
        loop.call_soon_threadsafe(self._create_task, factory)

    def _create_task(self, factory: Callable[[], Any]) -> None:
        task = asyncio.ensure_future(factory())
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background sync task failed", exc_info=exc)
            self._notify(str(exc) if isinstance(exc, DashboardError) else f"Unexpected error: {exc}")

    async def wait_idle(self) -> None:
        """Wait for refreshes scheduled by realtime or auth events."""
        await asyncio.sleep(0)  # let call_soon_threadsafe callbacks create their tasks
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await asyncio.sleep(0)

    async def close(self) -> None:
        if self._unlisten is not None:
            unlisten, self._unlisten = self._unlisten, None
            unlisten()
        await self._unsubscribe()
