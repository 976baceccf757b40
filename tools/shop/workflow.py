"""
Repair Status Workflow

A repair moves through a fixed four-state lifecycle:

    PENDING (quote sent) → IN_PROGRESS → COMPLETED
          └──────────────┴──→ CANCELLED

COMPLETED and CANCELLED are terminal: advancing them is a no-op, never an
error. Cancelling is permissive and always lands on CANCELLED.

Status values are stored as the enum name ("PENDING", ...). Records written
by the older Bulgarian-only front end carry the display label instead
("Изпратена оферта", ...); RepairStatus.parse() accepts both.

Usage:
    from tools.shop.workflow import RepairStatus, next_status, status_color

    next_status(RepairStatus.PENDING)         # RepairStatus.IN_PROGRESS
    status_color(RepairStatus.CANCELLED)      # "red"
    status_label(RepairStatus.PENDING, "bg")  # "Изпратена оферта"
"""

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Iterator

from core.errors import ConflictError

logger = logging.getLogger("shop.workflow")


class RepairStatus(str, Enum):
    """Lifecycle states for a repair work order."""
    PENDING = "PENDING"            # Quote sent, waiting for the customer
    IN_PROGRESS = "IN_PROGRESS"    # Work started
    COMPLETED = "COMPLETED"        # Terminal
    CANCELLED = "CANCELLED"        # Terminal

    @classmethod
    def parse(cls, value) -> "RepairStatus | None":
        """Map an enum, enum name, or display label onto a RepairStatus.

        Returns None for anything unrecognised so callers can keep the raw
        text (and render it with the fallback color).
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        text = value.strip()
        if text.upper() in cls.__members__:
            return cls[text.upper()]
        folded = text.casefold()
        for status, labels in STATUS_LABELS.items():
            if any(label.casefold() == folded for label in labels.values()):
                return status
        return None


STATUS_LABELS: dict[RepairStatus, dict[str, str]] = {
    RepairStatus.PENDING:     {"en": "Quote sent",  "bg": "Изпратена оферта"},
    RepairStatus.IN_PROGRESS: {"en": "In progress", "bg": "В процес"},
    RepairStatus.COMPLETED:   {"en": "Completed",   "bg": "Завършен"},
    RepairStatus.CANCELLED:   {"en": "Cancelled",   "bg": "Отказан"},
}

STATUS_COLORS: dict[RepairStatus, str] = {
    RepairStatus.PENDING: "amber",
    RepairStatus.IN_PROGRESS: "blue",
    RepairStatus.COMPLETED: "green",
    RepairStatus.CANCELLED: "red",
}
UNKNOWN_STATUS_COLOR = "gray"

TERMINAL_STATUSES = frozenset({RepairStatus.COMPLETED, RepairStatus.CANCELLED})

_NEXT: dict[RepairStatus, RepairStatus] = {
    RepairStatus.PENDING: RepairStatus.IN_PROGRESS,
    RepairStatus.IN_PROGRESS: RepairStatus.COMPLETED,
}


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def next_status(current):
    """Return the status that follows ``current``.

    Terminal and unrecognised statuses map to themselves.
    """
    status = RepairStatus.parse(current)
    if status is None:
        return current
    return _NEXT.get(status, status)


def cancel_status(current) -> RepairStatus:
    """Return CANCELLED for any current status.

    Cancelling a COMPLETED repair is allowed (the shop has always permitted
    it) but is logged so it shows up in the audit trail.
    """
    if RepairStatus.parse(current) is RepairStatus.COMPLETED:
        logger.warning("Cancelling a repair that was already COMPLETED")
    return RepairStatus.CANCELLED


def is_terminal(status) -> bool:
    return RepairStatus.parse(status) in TERMINAL_STATUSES


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------

def status_color(status) -> str:
    """Fixed status → color lookup; unknown statuses are gray."""
    parsed = RepairStatus.parse(status)
    if parsed is None:
        return UNKNOWN_STATUS_COLOR
    return STATUS_COLORS[parsed]


def status_label(status, locale: str = "en") -> str:
    """Localized display text for a status. Unknown values pass through."""
    parsed = RepairStatus.parse(status)
    if parsed is None:
        return str(status or "")
    labels = STATUS_LABELS[parsed]
    return labels.get(locale, labels["en"])


def status_legend(locale: str = "en") -> list[dict[str, str]]:
    """All statuses with their label and color, in lifecycle order."""
    return [
        {"status": s.value, "label": status_label(s, locale), "color": STATUS_COLORS[s]}
        for s in RepairStatus
    ]


# ---------------------------------------------------------------------------
# In-flight guard
# ---------------------------------------------------------------------------

class StatusUpdateGuard:
    """Rejects a second status transition for a repair while one is running.

    This is a per-process debounce for double submits, not a lock across
    sessions or servers: concurrent edits from different sessions are still
    last-write-wins at the storage layer.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    @contextmanager
    def hold(self, repair_id: str) -> Iterator[None]:
        with self._lock:
            if repair_id in self._in_flight:
                raise ConflictError(f"Repair '{repair_id}' is already being updated")
            self._in_flight.add(repair_id)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(repair_id)

    def is_updating(self, repair_id: str) -> bool:
        with self._lock:
            return repair_id in self._in_flight
