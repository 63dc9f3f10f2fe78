"""Position summaries and percentage breakdowns.

Both are pure functions over already-small result sets; the summary is
rebuilt from scratch on each refresh rather than patched.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from .identity import IdentityResolver
from .models import ZERO, PositionRow, PositionSummary, Share, Transaction, TransactionView

HUNDRED = 100


# ===============================
# AGGREGATION
# ===============================

def aggregate_positions(resolver: IdentityResolver, rows: Iterable[PositionRow]) -> List[PositionSummary]:
    symbols = resolver.fund_symbols
    grid: Dict[str, Dict[str, Decimal]] = {
        p.id: {s: ZERO for s in symbols} for p in resolver.people
    }
    for row in rows:
        person = resolver.person_name(row.person_id)
        fund = resolver.fund_symbol(row.fund_id)
        if person is None or fund is None:
            continue
        # overwrite, the view folds history into one balance per pair
        grid[row.person_id][fund] = row.amount
    return [PositionSummary(person_id=p.id, person=p.name, values=grid[p.id]) for p in resolver.people]


def label_transactions(resolver: IdentityResolver, transactions: Iterable[Transaction]) -> List[TransactionView]:
    return [
        TransactionView(
            id=t.id,
            person=resolver.person_name(t.person_id),
            fund=resolver.fund_symbol(t.fund_id),
            delta=t.amount_delta,
            note=t.note or None,
            created_at=t.created_at,
        )
        for t in transactions
    ]


# ===============================
# PROJECTION
# ===============================

def grand_total(summary: Iterable[PositionSummary]) -> Decimal:
    return sum((p.total for p in summary), ZERO)


def fund_totals(summary: Iterable[PositionSummary], symbols: Sequence[str]) -> Dict[str, Decimal]:
    totals = {s: ZERO for s in symbols}
    for p in summary:
        for s in symbols:
            totals[s] += p.amount(s)
    return totals


def _pct(part: Decimal, total: Decimal) -> Decimal:
    return part / total * HUNDRED if total > 0 else ZERO


def person_percentages(summary: Sequence[PositionSummary]) -> List[Share]:
    total = grand_total(summary)
    return [Share(label=p.person, value=_pct(p.total, total)) for p in summary]


def fund_percentages(summary: Sequence[PositionSummary], symbols: Sequence[str]) -> List[Share]:
    total = grand_total(summary)
    totals = fund_totals(summary, symbols)
    return [Share(label=s, value=_pct(totals[s], total)) for s in symbols]


def sort_shares(shares: Iterable[Share]) -> List[Share]:
    """Largest share first; sorted() is stable with reverse=True, so ties keep input order."""
    return sorted(shares, key=lambda s: s.value, reverse=True)
