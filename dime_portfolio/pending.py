from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Tuple

from .errors import WriteValidationError

Cell = Tuple[str, str]  # (person_id, fund_id)


@dataclass(frozen=True)
class PendingEdit:
    delta: str = ""
    note: str = ""


EMPTY = PendingEdit()


def parse_delta(text: str) -> Decimal:
    """Turn a draft amount into a signed Decimal, or refuse it before any write."""
    raw = (text or "").strip().replace(",", "")
    if not raw:
        raise WriteValidationError("Enter an amount (+/-) before saving.")
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise WriteValidationError(f"{text!r} is not a valid amount.") from None
    if not value.is_finite() or value == 0:
        raise WriteValidationError("The amount must be a non-zero number.")
    return value


class PendingEditStore:
    """Unsaved (amount, note) drafts per cell, independent of loaded data.

    Keystrokes arrive on the page thread while a commit clears its cell from
    the background loop, hence the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._cells: Dict[Cell, PendingEdit] = {}
        self._revisions: Dict[Cell, int] = {}

    def get(self, person_id: str, fund_id: str) -> PendingEdit:
        with self._lock:
            return self._cells.get((person_id, fund_id), EMPTY)

    def set_delta(self, person_id: str, fund_id: str, delta: str) -> None:
        self._patch((person_id, fund_id), delta=delta or "")

    def set_note(self, person_id: str, fund_id: str, note: str) -> None:
        self._patch((person_id, fund_id), note=note or "")

    def _patch(self, cell: Cell, **fields) -> None:
        with self._lock:
            self._cells[cell] = replace(self._cells.get(cell, EMPTY), **fields)

    def ensure(self, cells: Iterable[Cell]) -> None:
        """Start untouched cells empty; drafts already typed are kept."""
        with self._lock:
            for cell in cells:
                self._cells.setdefault(cell, EMPTY)

    def clear(self, person_id: str, fund_id: str) -> None:
        cell = (person_id, fund_id)
        with self._lock:
            self._cells[cell] = EMPTY
            self._revisions[cell] = self._revisions.get(cell, 0) + 1

    def revision(self, person_id: str, fund_id: str) -> int:
        """Bumped on every clear so input widgets can be re-keyed empty."""
        with self._lock:
            return self._revisions.get((person_id, fund_id), 0)

    def reset(self) -> None:
        with self._lock:
            for cell in self._cells:
                self._revisions[cell] = self._revisions.get(cell, 0) + 1
            self._cells.clear()
