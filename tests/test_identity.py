from __future__ import annotations

import pytest

from dime_portfolio.errors import MetadataFetchError
from dime_portfolio.identity import IdentityResolver
from dime_portfolio.models import Fund, Person

from conftest import FakeGateway

pytestmark = pytest.mark.asyncio


async def test_lookups_both_ways(resolver):
    assert resolver.person_id("Alice") == "p1"
    assert resolver.person_name("p2") == "Bankz"
    assert resolver.fund_id("QQQ") == "f3"
    assert resolver.fund_symbol("f2") == "VOO"
    assert resolver.person_name("nope") is None
    assert resolver.is_complete


async def test_empty_lists_give_empty_mappings():
    r = IdentityResolver()
    r.update([], [])
    assert r.people == () and r.funds == ()
    assert r.person_id("Alice") is None
    assert not r.is_complete
    assert r.cells() == []


async def test_unsupported_fund_symbol_is_ignored():
    r = IdentityResolver(fund_symbols=("IVV",))
    r.update([Person("p1", "Alice")], [Fund("f1", "IVV"), Fund("f9", "SPY")])
    assert [f.symbol for f in r.funds] == ["IVV"]
    assert r.fund_symbol("f9") is None


async def test_duplicate_names_keep_both_ids_by_id(caplog):
    r = IdentityResolver()
    r.update([Person("p1", "Sam"), Person("p2", "Sam")], [Fund("f1", "IVV")])
    assert r.person_name("p1") == "Sam" and r.person_name("p2") == "Sam"
    assert r.person_id("Sam") == "p2"
    assert r.cells() == [("p1", "f1"), ("p2", "f1")]
    assert "duplicate person name" in caplog.text


async def test_reload_fetches_both_lists(people, funds):
    r = IdentityResolver()
    await r.reload(FakeGateway(people=people, funds=funds))
    assert len(r.people) == 2 and len(r.funds) == 3


async def test_failed_reload_keeps_previous_mappings(resolver):
    gw = FakeGateway(people=[Person("p9", "Zed")], funds=[Fund("f1", "IVV")])
    gw.fail.add("list_funds")
    with pytest.raises(MetadataFetchError):
        await resolver.reload(gw)
    assert resolver.person_name("p1") == "Alice"
    assert resolver.person_name("p9") is None
