"""
Shop Audit Trail

Records the business events of the shop: repairs created, advanced or
cancelled, clients and services added or removed, logins, registrations and
role grants. Every request-scoped failure the HTTP layer maps to an error
response is recorded here as well.

Events live in an in-memory ring buffer and are forwarded to Python logging
under ``shop.events``. ``export_json()`` writes the buffer to disk.

Categories:
    repair   client   service   auth   system

Usage:
    from core.event_logger import EventLogger

    events = EventLogger(max_events=1000)
    events.info("repair", "Repair created", repair_id="a1b2", client_id="c3d4")
    events.warn("repair", "Completed repair cancelled", repair_id="a1b2")
"""

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger("shop.events")

SEVERITY_INFO = "INFO"
SEVERITY_WARN = "WARN"
SEVERITY_ERROR = "ERROR"

CATEGORIES = ("repair", "client", "service", "auth", "system")


@dataclass
class Event:
    """One audit entry.

    Attributes:
        timestamp:  When it happened (UTC).
        severity:   INFO, WARN or ERROR.
        category:   One of CATEGORIES.
        message:    What happened, in plain words.
        details:    Ids and other context (repair_id, email, ...).
    """
    timestamp: datetime
    severity: str
    category: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity,
            "category": self.category,
            "message": self.message,
            "details": self.details,
        }


class EventLogger:
    """Bounded audit log. Oldest entries drop off once ``max_events`` is hit."""

    def __init__(self, max_events: int = 1000):
        self._events: deque[Event] = deque(maxlen=max_events)
        logger.info("EventLogger initialized (max_events=%d)", max_events)

    def info(self, category: str, message: str, **details):
        self._log(SEVERITY_INFO, category, message, details)

    def warn(self, category: str, message: str, **details):
        self._log(SEVERITY_WARN, category, message, details)

    def error(self, category: str, message: str, **details):
        self._log(SEVERITY_ERROR, category, message, details)

    def _log(self, severity: str, category: str, message: str, details: dict):
        if category not in CATEGORIES:
            logger.debug("Uncategorised event %r filed under system", category)
            category = "system"
        event = Event(
            timestamp=datetime.now(timezone.utc),
            severity=severity,
            category=category,
            message=message,
            details=details,
        )
        self._events.append(event)

        log_msg = f"[{category}] {message}"
        if details:
            log_msg += " (" + ", ".join(f"{k}={v}" for k, v in details.items()) + ")"

        if severity == SEVERITY_ERROR:
            logger.error(log_msg)
        elif severity == SEVERITY_WARN:
            logger.warning(log_msg)
        else:
            logger.info(log_msg)

    # -------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------

    def get_recent(self, count: int = 100, category: str | None = None) -> list[dict]:
        """Most recent ``count`` events as dicts, newest last."""
        events = [e for e in self._events if category is None or e.category == category]
        return [e.to_dict() for e in events[-count:]] if count > 0 else []

    def get_all(self) -> list[dict]:
        return [e.to_dict() for e in self._events]

    @property
    def count(self) -> int:
        return len(self._events)

    # -------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------

    def export_json(self, filepath: str | Path) -> int:
        """Write every buffered event to ``filepath``. Returns the count."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        events = self.get_all()
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump({
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "event_count": len(events),
                "events": events,
            }, f, indent=2, ensure_ascii=False)

        logger.info("Exported %d events to %s", len(events), filepath)
        return len(events)
