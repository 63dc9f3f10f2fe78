from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

ZERO = Decimal(0)


def to_decimal(value: Any) -> Decimal:
    """Backend numerics arrive as int, float or str; missing means zero."""
    if value is None or value == "":
        return ZERO
    try:
        # str() keeps 0.1 as 0.1 instead of the binary float expansion
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return ZERO
    return number if number.is_finite() else ZERO


@dataclass(frozen=True)
class Person:
    id: str
    name: str


@dataclass(frozen=True)
class Fund:
    id: str
    symbol: str


@dataclass(frozen=True)
class PositionRow:
    """Current balance of one (person, fund) pair, as folded by the backend view."""
    person_id: str
    fund_id: str
    amount: Decimal


@dataclass(frozen=True)
class Transaction:
    id: str
    person_id: str
    fund_id: str
    amount_delta: Decimal
    note: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class NewTransaction:
    person_id: str
    fund_id: str
    amount_delta: Decimal
    note: Optional[str] = None

    def as_row(self) -> Dict[str, Any]:
        # PostgREST serializes JSON; Decimal goes over the wire as a string
        return {
            "person_id": self.person_id,
            "fund_id": self.fund_id,
            "amount_delta": str(self.amount_delta),
            "note": self.note,
        }


@dataclass(frozen=True)
class TransactionView:
    """A history row labelled with display names; unknown references stay None."""
    id: str
    person: Optional[str]
    fund: Optional[str]
    delta: Decimal
    note: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class PositionSummary:
    person_id: str
    person: str
    values: Mapping[str, Decimal] = field(default_factory=dict)

    def amount(self, symbol: str) -> Decimal:
        return self.values.get(symbol, ZERO)

    @property
    def total(self) -> Decimal:
        return sum(self.values.values(), ZERO)

    def as_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {"person": self.person}
        record.update(self.values)
        return record


@dataclass(frozen=True)
class Share:
    """One slice of a percentage breakdown; ``value`` is already scaled to 0..100."""
    label: str
    value: Decimal
