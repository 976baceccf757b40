"""
Sort / Filter Engine for repair and client lists.

Sorting is driven by a two-argument comparator per field, negated for
descending order. Python's sort is stable and a negated comparator still
returns 0 for ties, so equal records keep their incoming order in both
directions.

    date    createdAt seconds (undated repairs count as 0, undated
            clients always sort last)
    name    ownerName, locale-aware
    car     "make model", locale-aware
    status  status label, locale-aware
    cost    numeric

Filtering is a case-insensitive substring search over a fixed set of
fields per entity. An empty term returns the input untouched.
"""

import unicodedata
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Callable, Sequence

from core.errors import ValidationError
from tools.shop.records import Client, Repair
from tools.shop.workflow import STATUS_LABELS, RepairStatus, status_label

SORT_FIELDS = ("date", "name", "car", "status", "cost")
CLIENT_SORT_FIELDS = ("date", "name", "car")
SORT_ORDERS = ("asc", "desc")


# ---------------------------------------------------------------------------
# Sort state
# ---------------------------------------------------------------------------

@dataclass
class SortState:
    """Current sort column and direction for a list view.

    Clicking the active column flips the direction; clicking a different
    column switches to it in ascending order.
    """
    field: str = "date"
    order: str = "desc"

    def toggle(self, field: str) -> "SortState":
        if field == self.field:
            self.order = "desc" if self.order == "asc" else "asc"
        else:
            self.field = field
            self.order = "asc"
        return self


def validate_sort(field: str, order: str, allowed: Sequence[str] = SORT_FIELDS) -> None:
    if field not in allowed:
        raise ValidationError(f"Unknown sort field '{field}'", field="sort")
    if order not in SORT_ORDERS:
        raise ValidationError(f"Unknown sort order '{order}'", field="order")


# ---------------------------------------------------------------------------
# Comparators
# ---------------------------------------------------------------------------

def _collation_key(text: str) -> str:
    """Accent-insensitive, case-insensitive primary key."""
    decomposed = unicodedata.normalize("NFKD", text or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def locale_compare(a: str, b: str) -> int:
    """Compare like a human-facing collation: primary letters first,
    then case/accents as a tiebreak."""
    ka, kb = _collation_key(a), _collation_key(b)
    if ka != kb:
        return -1 if ka < kb else 1
    a, b = a or "", b or ""
    if a == b:
        return 0
    return -1 if a < b else 1


def _compare_dates(a, b) -> int:
    """createdAt seconds; a missing timestamp counts as 0."""
    sa = a.created_at.seconds if a.created_at else 0
    sb = b.created_at.seconds if b.created_at else 0
    diff = sa - sb
    return (diff > 0) - (diff < 0)


def compare(a, b, field: str, locale: str = "en") -> int:
    """Two-argument comparator over Repair or Client records."""
    if field == "date":
        return _compare_dates(a, b)
    if field == "name":
        return locale_compare(a.owner_name, b.owner_name)
    if field == "car":
        return locale_compare(f"{a.make} {a.model}", f"{b.make} {b.model}")
    if field == "status":
        return locale_compare(status_label(a.status, locale), status_label(b.status, locale))
    if field == "cost":
        diff = a.cost - b.cost
        return (diff > 0) - (diff < 0)
    return 0


def make_comparator(field: str, order: str = "asc", locale: str = "en") -> Callable:
    sign = -1 if order == "desc" else 1

    def _cmp(a, b) -> int:
        # Undated clients go to the bottom in both directions
        if field == "date" and isinstance(a, Client) and isinstance(b, Client):
            missing = (a.created_at is None) - (b.created_at is None)
            if missing:
                return missing
        return sign * compare(a, b, field, locale)

    return _cmp


def sort_records(records: Sequence, field: str = "date", order: str = "desc", locale: str = "en") -> list:
    """Return a new list sorted by ``field`` in ``order``."""
    return sorted(records, key=cmp_to_key(make_comparator(field, order, locale)))


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

def _status_texts(status) -> list[str]:
    """Every text a status can be searched by: stored value and labels."""
    parsed = RepairStatus.parse(status)
    if parsed is None:
        return [str(status or "")]
    return [parsed.value, *STATUS_LABELS[parsed].values()]


def _contains(term: str, *fields: str) -> bool:
    return any(term in (f or "").lower() for f in fields)


def filter_repairs(repairs: Sequence[Repair], term: str) -> list[Repair]:
    """Staff list search: owner, car, free text, status, service names."""
    if not term:
        return list(repairs)
    needle = term.lower()
    return [
        r for r in repairs
        if _contains(
            needle,
            r.owner_name,
            f"{r.make} {r.model}",
            r.repairs,
            *_status_texts(r.status),
            *(s.name for s in r.selected_services),
        )
    ]


def filter_customer_repairs(repairs: Sequence[Repair], term: str) -> list[Repair]:
    """Customer view search: the owner is always the customer, so the
    owner name is left out."""
    if not term:
        return list(repairs)
    needle = term.lower()
    return [
        r for r in repairs
        if _contains(
            needle,
            r.make,
            r.model,
            r.repairs,
            *_status_texts(r.status),
            *(s.name for s in r.selected_services),
        )
    ]


def filter_clients(clients: Sequence[Client], term: str) -> list[Client]:
    if not term:
        return list(clients)
    needle = term.lower()
    return [c for c in clients if _contains(needle, c.owner_name, c.make, c.model)]
