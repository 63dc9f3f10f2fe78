from __future__ import annotations

from decimal import Decimal

import pytest

from dime_portfolio.aggregate import (
    aggregate_positions,
    fund_percentages,
    fund_totals,
    grand_total,
    label_transactions,
    person_percentages,
    sort_shares,
)
from dime_portfolio.identity import IdentityResolver
from dime_portfolio.models import Fund, Person, PositionRow, Share

from conftest import txn

SYMBOLS = ("IVV", "VOO", "QQQ")


def _values(shares):
    return {s.label: s.value for s in shares}


def test_single_person_single_fund_example():
    r = IdentityResolver()
    r.update([Person("p1", "Alice")], [Fund("f1", "IVV")])
    summary = aggregate_positions(r, [PositionRow("p1", "f1", Decimal(5000))])

    assert [p.as_record() for p in summary] == [{"person": "Alice", "IVV": 5000, "VOO": 0, "QQQ": 0}]
    assert grand_total(summary) == 5000
    assert _values(person_percentages(summary)) == {"Alice": 100}
    assert _values(fund_percentages(summary, SYMBOLS)) == {"IVV": 100, "VOO": 0, "QQQ": 0}


@pytest.mark.parametrize("rows", [
    [],
    [PositionRow("p1", "f1", Decimal(1))],
    [PositionRow("p1", "f1", Decimal(1)), PositionRow("p2", "f2", Decimal(2)), PositionRow("p1", "f3", Decimal(3))],
    [PositionRow("ghost", "f1", Decimal(9))] * 10,
])
def test_one_record_per_known_person(resolver, rows):
    summary = aggregate_positions(resolver, rows)
    assert [p.person for p in summary] == ["Alice", "Bankz"]


def test_person_without_activity_is_all_zero(resolver):
    summary = aggregate_positions(resolver, [PositionRow("p1", "f1", Decimal(10))])
    bankz = summary[1]
    assert bankz.values == {"IVV": 0, "VOO": 0, "QQQ": 0}
    assert bankz.total == 0


def test_unknown_references_are_dropped(resolver):
    rows = [
        PositionRow("p1", "f-unknown", Decimal(700)),
        PositionRow("p-unknown", "f1", Decimal(800)),
        PositionRow("p2", "f2", Decimal(50)),
    ]
    summary = aggregate_positions(resolver, rows)
    assert grand_total(summary) == 50
    assert summary[0].total == 0


def test_duplicate_pair_last_row_wins(resolver):
    rows = [PositionRow("p1", "f1", Decimal(100)), PositionRow("p1", "f1", Decimal(40))]
    summary = aggregate_positions(resolver, rows)
    assert summary[0].amount("IVV") == 40


def test_amounts_stay_decimal(resolver):
    summary = aggregate_positions(resolver, [PositionRow("p1", "f1", Decimal("0.1")), PositionRow("p1", "f2", Decimal("0.2"))])
    assert summary[0].total == Decimal("0.3")


def test_percentages_sum_to_hundred(resolver):
    rows = [
        PositionRow("p1", "f1", Decimal(1000)),
        PositionRow("p1", "f2", Decimal(333)),
        PositionRow("p2", "f3", Decimal(1667)),
    ]
    summary = aggregate_positions(resolver, rows)
    assert float(sum(s.value for s in person_percentages(summary))) == pytest.approx(100)
    assert float(sum(s.value for s in fund_percentages(summary, SYMBOLS))) == pytest.approx(100)


def test_zero_total_gives_zero_percentages(resolver):
    summary = aggregate_positions(resolver, [])
    assert all(s.value == 0 for s in person_percentages(summary))
    assert all(s.value == 0 for s in fund_percentages(summary, SYMBOLS))


def test_fund_totals(resolver):
    rows = [PositionRow("p1", "f1", Decimal(10)), PositionRow("p2", "f1", Decimal(5)), PositionRow("p2", "f2", Decimal(1))]
    totals = fund_totals(aggregate_positions(resolver, rows), SYMBOLS)
    assert totals == {"IVV": 15, "VOO": 1, "QQQ": 0}


def test_sort_shares_descending_and_stable():
    shares = [Share("a", Decimal(10)), Share("b", Decimal(30)), Share("c", Decimal(10)), Share("d", Decimal(50))]
    assert [s.label for s in sort_shares(shares)] == ["d", "b", "a", "c"]


def test_label_transactions_keeps_unknown_as_none(resolver):
    views = label_transactions(resolver, [txn("t1", "p1", "f3", "-250", 5, note=""), txn("t2", "px", "fx", "1", 6)])
    assert (views[0].person, views[0].fund, views[0].delta, views[0].note) == ("Alice", "QQQ", Decimal(-250), None)
    assert (views[1].person, views[1].fund) == (None, None)
