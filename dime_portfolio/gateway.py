"""Supabase access for people, funds, positions and transactions.

The rest of the package talks to the ``Gateway`` protocol only; tests swap
in an in-memory fake. Client exceptions are translated into the error kinds
of ``errors`` so the page can show them verbatim.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

import pandas as pd
from supabase import AsyncClient, acreate_client

from .config import DEFAULTS, Settings
from .errors import AuthError, ConfigurationError, DataFetchError, MetadataFetchError, SubscriptionError, WriteRejectedError
from .models import Fund, NewTransaction, Person, PositionRow, Transaction, to_decimal

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Dict[str, Any]], None]
SessionCallback = Callable[[str, Optional[str]], None]


class Subscription(Protocol):
    async def close(self) -> None: ...


class Gateway(Protocol):
    async def list_people(self) -> List[Person]: ...
    async def list_funds(self) -> List[Fund]: ...
    async def list_current_positions(self) -> List[PositionRow]: ...
    async def list_recent_transactions(self, limit: int) -> List[Transaction]: ...
    async def insert_transaction(self, txn: NewTransaction) -> None: ...
    async def on_transactions_changed(self, callback: ChangeCallback) -> Subscription: ...
    async def current_session_email(self) -> Optional[str]: ...
    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]: ...
    async def send_magic_link(self, email: str) -> None: ...
    async def verify_email_code(self, email: str, code: str) -> Optional[str]: ...
    async def sign_out(self) -> None: ...


# ===============================
# ROW PARSING
# ===============================

def parse_person(row: Dict[str, Any]) -> Person:
    return Person(id=str(row["id"]), name=str(row.get("name") or ""))


def parse_fund(row: Dict[str, Any]) -> Fund:
    return Fund(id=str(row["id"]), symbol=str(row.get("symbol") or "").upper())


def parse_position(row: Dict[str, Any]) -> PositionRow:
    return PositionRow(
        person_id=str(row.get("person_id")),
        fund_id=str(row.get("fund_id")),
        amount=to_decimal(row.get("amount")),
    )


def parse_transaction(row: Dict[str, Any]) -> Transaction:
    return Transaction(
        id=str(row["id"]),
        person_id=str(row.get("person_id")),
        fund_id=str(row.get("fund_id")),
        amount_delta=to_decimal(row.get("amount_delta")),
        note=row.get("note") or None,
        created_at=pd.Timestamp(row["created_at"]).to_pydatetime(),
    )


def _email_of(session: Any) -> Optional[str]:
    user = getattr(session, "user", None)
    return getattr(user, "email", None) if user is not None else None


# ===============================
# SUPABASE
# ===============================

class ChannelSubscription:
    def __init__(self, client: AsyncClient, channel: Any):
        self._client = client
        self._channel = channel

    async def close(self) -> None:
        if self._channel is None:
            return
        channel, self._channel = self._channel, None
        await self._client.remove_channel(channel)
        logger.info("realtime channel removed")


class SupabaseGateway:
    def __init__(self, client: AsyncClient, redirect_url: Optional[str] = None,
                 channel_name: str = DEFAULTS.REALTIME_CHANNEL):
        self.client = client
        self.redirect_url = redirect_url
        self.channel_name = channel_name

    @classmethod
    async def connect(cls, settings: Settings) -> "SupabaseGateway":
        try:
            client = await acreate_client(settings.supabase_url, settings.supabase_key)
        except Exception as exc:
            raise ConfigurationError(f"Could not create the Supabase client: {exc}") from exc
        return cls(client, redirect_url=settings.redirect_url)

    # ---------- queries ----------
    async def list_people(self) -> List[Person]:
        try:
            res = await self.client.table("people").select("id, name").order("name").execute()
        except Exception as exc:
            raise MetadataFetchError(f"Could not load people: {exc}") from exc
        return [parse_person(r) for r in res.data or []]

    async def list_funds(self) -> List[Fund]:
        try:
            res = await self.client.table("funds").select("id, symbol").order("symbol").execute()
        except Exception as exc:
            raise MetadataFetchError(f"Could not load funds: {exc}") from exc
        return [parse_fund(r) for r in res.data or []]

    async def list_current_positions(self) -> List[PositionRow]:
        try:
            res = await self.client.table("v_current_positions").select("person_id, fund_id, amount").execute()
        except Exception as exc:
            raise DataFetchError(f"Could not load positions: {exc}") from exc
        return [parse_position(r) for r in res.data or []]

    async def list_recent_transactions(self, limit: int) -> List[Transaction]:
        try:
            res = await (
                self.client.table("transactions")
                .select("id, person_id, fund_id, amount_delta, note, created_at")
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as exc:
            raise DataFetchError(f"Could not load recent transactions: {exc}") from exc
        return [parse_transaction(r) for r in res.data or []]

    # ---------- commands ----------
    async def insert_transaction(self, txn: NewTransaction) -> None:
        try:
            await self.client.table("transactions").insert(txn.as_row()).execute()
        except Exception as exc:
            raise WriteRejectedError(f"Save failed: {exc}") from exc

    # ---------- realtime ----------
    async def on_transactions_changed(self, callback: ChangeCallback) -> ChannelSubscription:
        def on_state(state: Any, error: Optional[Exception]) -> None:
            if error is not None:
                logger.warning("realtime channel %s: %s (%s)", self.channel_name, state, error)
            else:
                logger.debug("realtime channel %s: %s", self.channel_name, state)

        try:
            channel = self.client.channel(self.channel_name)
            channel.on_postgres_changes("*", schema="public", table="transactions", callback=callback)
            await channel.subscribe(on_state)
        except Exception as exc:
            raise SubscriptionError(f"Live updates unavailable: {exc}") from exc
        return ChannelSubscription(self.client, channel)

    # ---------- auth ----------
    async def current_session_email(self) -> Optional[str]:
        try:
            session = await self.client.auth.get_session()
        except Exception as exc:
            raise AuthError(f"Could not read the current session: {exc}") from exc
        return _email_of(session)

    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]:
        sub = self.client.auth.on_auth_state_change(lambda event, session: callback(str(event), _email_of(session)))
        return sub.unsubscribe

    async def send_magic_link(self, email: str) -> None:
        payload: Dict[str, Any] = {"email": email}
        if self.redirect_url:
            payload["options"] = {"email_redirect_to": self.redirect_url}
        try:
            await self.client.auth.sign_in_with_otp(payload)
        except Exception as exc:
            raise AuthError(str(exc)) from exc

    async def verify_email_code(self, email: str, code: str) -> Optional[str]:
        try:
            res = await self.client.auth.verify_otp({"email": email, "token": code, "type": "email"})
        except Exception as exc:
            raise AuthError(f"Code rejected: {exc}") from exc
        return _email_of(res)

    async def sign_out(self) -> None:
        try:
            await self.client.auth.sign_out()
        except Exception as exc:
            raise AuthError(f"Sign-out failed: {exc}") from exc
