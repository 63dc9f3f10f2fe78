from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import DEFAULTS
from .errors import MetadataFetchError
from .models import Fund, Person

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Mappings:
    people: Tuple[Person, ...] = ()
    funds: Tuple[Fund, ...] = ()
    person_id_by_name: Dict[str, str] = field(default_factory=dict)
    person_name_by_id: Dict[str, str] = field(default_factory=dict)
    fund_id_by_symbol: Dict[str, str] = field(default_factory=dict)
    fund_symbol_by_id: Dict[str, str] = field(default_factory=dict)


class IdentityResolver:
    """Two-way lookups between backend ids and display keys.

    Writes need backend ids; read queries come back with ids that have to be
    labelled. All six lookups are swapped in one assignment, so readers never
    see a mix of old and new metadata.
    """

    def __init__(self, fund_symbols: Sequence[str] = DEFAULTS.FUND_SYMBOLS):
        self.fund_symbols: Tuple[str, ...] = tuple(fund_symbols)
        self._maps = _Mappings()

    # ---------- loading ----------
    def update(self, people: Iterable[Person], funds: Iterable[Fund]) -> None:
        people = tuple(people)
        known_funds = []
        for fund in funds:
            if fund.symbol in self.fund_symbols:
                known_funds.append(fund)
            else:
                logger.debug("ignoring fund %s with unsupported symbol %r", fund.id, fund.symbol)

        id_by_name: Dict[str, str] = {}
        for p in people:
            if p.name in id_by_name:
                logger.warning("duplicate person name %r (ids %s, %s)", p.name, id_by_name[p.name], p.id)
            id_by_name[p.name] = p.id

        self._maps = _Mappings(
            people=people,
            funds=tuple(known_funds),
            person_id_by_name=id_by_name,
            person_name_by_id={p.id: p.name for p in people},
            fund_id_by_symbol={f.symbol: f.id for f in known_funds},
            fund_symbol_by_id={f.id: f.symbol for f in known_funds},
        )

    async def reload(self, gateway) -> None:
        """Fetch people and funds together; keep the old mappings if either read fails."""
        try:
            people, funds = await asyncio.gather(gateway.list_people(), gateway.list_funds())
        except MetadataFetchError:
            raise
        except Exception as exc:
            raise MetadataFetchError(f"Could not load people/funds: {exc}") from exc
        self.update(people, funds)
        logger.info("metadata loaded: %d people, %d funds", len(self.people), len(self.funds))

    def clear(self) -> None:
        self._maps = _Mappings()

    # ---------- lookups ----------
    @property
    def people(self) -> Tuple[Person, ...]:
        return self._maps.people

    @property
    def funds(self) -> Tuple[Fund, ...]:
        return self._maps.funds

    @property
    def is_complete(self) -> bool:
        return bool(self._maps.people) and bool(self._maps.funds)

    def person_id(self, name: str) -> Optional[str]:
        return self._maps.person_id_by_name.get(name)

    def person_name(self, person_id: str) -> Optional[str]:
        return self._maps.person_name_by_id.get(person_id)

    def fund_id(self, symbol: str) -> Optional[str]:
        return self._maps.fund_id_by_symbol.get(symbol)

    def fund_symbol(self, fund_id: str) -> Optional[str]:
        return self._maps.fund_symbol_by_id.get(fund_id)

    def cells(self) -> List[Tuple[str, str]]:
        """Every (person_id, fund_id) pair the entry grid shows."""
        maps = self._maps
        return [(p.id, f.id) for p in maps.people for f in maps.funds]
