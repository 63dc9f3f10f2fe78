from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from dime_portfolio.errors import DataFetchError, MetadataFetchError, SubscriptionError, WriteRejectedError
from dime_portfolio.identity import IdentityResolver
from dime_portfolio.models import Fund, Person, PositionRow, Transaction


class FakeSubscription:
    def __init__(self, gateway: "FakeGateway", callback):
        self.gateway = gateway
        self.callback = callback
        self.closed = False

    async def close(self) -> None:
        self.closed = True
        if self.callback in self.gateway.change_callbacks:
            self.gateway.change_callbacks.remove(self.callback)


class FakeGateway:
    """In-memory stand-in for Supabase.

    ``fail`` names methods that raise; ``hold(name)`` makes the next call to
    that method wait on the returned event, after it has captured its data.
    """

    def __init__(self, people=(), funds=(), positions=(), transactions=(), email: Optional[str] = None):
        self.people: List[Person] = list(people)
        self.funds: List[Fund] = list(funds)
        self.positions: List[PositionRow] = list(positions)
        self.transactions: List[Transaction] = list(transactions)
        self.email = email
        self.inserted = []
        self.magic_links: List[str] = []
        self.fail = set()
        self.calls: Dict[str, int] = defaultdict(int)
        self.change_callbacks = []
        self.session_callbacks = []
        self.subscriptions: List[FakeSubscription] = []
        self._holds: Dict[str, List[asyncio.Event]] = defaultdict(list)

    def hold(self, name: str) -> asyncio.Event:
        gate = asyncio.Event()
        self._holds[name].append(gate)
        return gate

    async def _enter(self, name: str, error):
        self.calls[name] += 1
        if self._holds[name]:
            await self._holds[name].pop(0).wait()
        if name in self.fail:
            raise error(f"{name} failed")

    # ---------- queries ----------
    async def list_people(self):
        rows = list(self.people)
        await self._enter("list_people", MetadataFetchError)
        return rows

    async def list_funds(self):
        rows = list(self.funds)
        await self._enter("list_funds", MetadataFetchError)
        return rows

    async def list_current_positions(self):
        rows = list(self.positions)
        await self._enter("list_current_positions", DataFetchError)
        return rows

    async def list_recent_transactions(self, limit: int):
        rows = sorted(self.transactions, key=lambda t: t.created_at, reverse=True)[:limit]
        await self._enter("list_recent_transactions", DataFetchError)
        return rows

    # ---------- commands ----------
    async def insert_transaction(self, txn) -> None:
        await self._enter("insert_transaction", WriteRejectedError)
        self.inserted.append(txn)

    # ---------- realtime ----------
    async def on_transactions_changed(self, callback):
        await self._enter("on_transactions_changed", SubscriptionError)
        self.change_callbacks.append(callback)
        sub = FakeSubscription(self, callback)
        self.subscriptions.append(sub)
        return sub

    def push_change(self, payload=None) -> None:
        for cb in list(self.change_callbacks):
            cb(payload or {"eventType": "INSERT"})

    # ---------- auth ----------
    async def current_session_email(self):
        return self.email

    def on_session_change(self, callback):
        self.session_callbacks.append(callback)
        return lambda: self.session_callbacks.remove(callback)

    def emit_session(self, event: str, email: Optional[str]) -> None:
        self.email = email
        for cb in list(self.session_callbacks):
            cb(event, email)

    async def send_magic_link(self, email: str) -> None:
        self.magic_links.append(email)

    async def verify_email_code(self, email: str, code: str):
        self.email = email
        return email

    async def sign_out(self) -> None:
        self.email = None


async def settle(rounds: int = 20) -> None:
    """Give scheduled tasks a chance to run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def txn(id, person_id, fund_id, delta, minute, note=None) -> Transaction:
    return Transaction(
        id=id, person_id=person_id, fund_id=fund_id, amount_delta=Decimal(delta), note=note,
        created_at=datetime(2025, 1, 1, 12, minute, tzinfo=timezone.utc),
    )


@pytest.fixture
def people():
    return [Person("p1", "Alice"), Person("p2", "Bankz")]


@pytest.fixture
def funds():
    return [Fund("f1", "IVV"), Fund("f2", "VOO"), Fund("f3", "QQQ")]


@pytest.fixture
def resolver(people, funds):
    r = IdentityResolver()
    r.update(people, funds)
    return r


@pytest.fixture
def gateway(people, funds):
    return FakeGateway(
        people=people,
        funds=funds,
        positions=[
            PositionRow("p1", "f1", Decimal("5000")),
            PositionRow("p2", "f3", Decimal("3000")),
        ],
        transactions=[
            txn("t1", "p1", "f1", "5000", 1, note="first buy"),
            txn("t2", "p2", "f3", "3000", 2),
        ],
        email="alice@example.com",
    )
