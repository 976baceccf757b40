"""
Shop Record Types

Explicit record types for the three shop collections plus the embedded
service snapshot. Documents come out of a schemaless store, so every read
goes through ``from_doc()`` which coerces types and fills defaults; nothing
past this layer sees a raw dict.

Field names on the wire keep the document keys the shop has always used
(``ownerName``, ``engineSize``, ``selectedServices``, ``createdAt`` ...).

Client ⟷ Repair association is by ``clientId`` on new repairs. Older repairs
have no clientId and are associated by tools.shop.matcher.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from tools.shop.workflow import RepairStatus

logger = logging.getLogger("shop.records")


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _money(value: Any) -> float:
    """Coerce a stored price/cost to a float with 2-decimal precision."""
    if value is None or value == "":
        return 0.0
    try:
        return float(Decimal(str(value)).quantize(Decimal("0.01")))
    except (InvalidOperation, ValueError):
        logger.warning("Unreadable amount %r, treating as 0", value)
        return 0.0


# ---------------------------------------------------------------------------
# Timestamp
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Timestamp:
    """A stored {seconds, nanoseconds} instant."""
    seconds: int
    nanoseconds: int = 0

    @classmethod
    def from_value(cls, value: Any) -> "Timestamp | None":
        """Accept a stored pair, epoch seconds, a datetime, or None."""
        if value is None:
            return None
        if isinstance(value, Timestamp):
            return value
        if isinstance(value, dict):
            try:
                return cls(int(value.get("seconds", 0)), int(value.get("nanoseconds", 0)))
            except (TypeError, ValueError):
                return None
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            ts = value.timestamp()
            return cls(int(ts), int(round((ts - int(ts)) * 1e9)))
        if isinstance(value, (int, float)):
            return cls(int(value), int(round((value - int(value)) * 1e9)))
        return None

    def to_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.seconds + self.nanoseconds / 1e9, tz=timezone.utc)

    def to_doc(self) -> dict[str, int]:
        return {"seconds": self.seconds, "nanoseconds": self.nanoseconds}


def _ts_doc(ts: Timestamp | None) -> dict[str, int] | None:
    return ts.to_doc() if ts else None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

@dataclass
class Client:
    """One vehicle-owner / vehicle pairing.

    Uniqueness by owner name is a convention only: duplicates can exist in
    storage and are collapsed when building selector lists.
    """
    id: str = ""
    owner_name: str = ""
    phone: str = ""
    make: str = ""
    model: str = ""
    engine_size: str = ""
    vin: str = ""
    email: str = ""
    created_at: Timestamp | None = None
    updated_at: Timestamp | None = None

    @property
    def car(self) -> str:
        return f"{self.make} {self.model}".strip()

    def to_doc(self) -> dict[str, Any]:
        doc = {
            "ownerName": self.owner_name,
            "phone": self.phone,
            "make": self.make,
            "model": self.model,
            "engineSize": self.engine_size,
            "vin": self.vin,
            "email": self.email,
            "createdAt": _ts_doc(self.created_at),
        }
        if self.updated_at:
            doc["updatedAt"] = self.updated_at.to_doc()
        return doc

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, **self.to_doc()}

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "Client":
        return cls(
            id=_text(doc.get("id")),
            owner_name=_text(doc.get("ownerName")),
            phone=_text(doc.get("phone")),
            make=_text(doc.get("make")),
            model=_text(doc.get("model")),
            engine_size=_text(doc.get("engineSize")),
            vin=_text(doc.get("vin")),
            email=_text(doc.get("email")),
            created_at=Timestamp.from_value(doc.get("createdAt")),
            updated_at=Timestamp.from_value(doc.get("updatedAt")),
        )


# ---------------------------------------------------------------------------
# Service catalog entry and its snapshot
# ---------------------------------------------------------------------------

@dataclass
class Service:
    """A billable catalog entry."""
    id: str = ""
    name: str = ""
    price: float = 0.0
    description: str = ""
    created_at: Timestamp | None = None

    def to_doc(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "price": self.price,
            "description": self.description,
            "createdAt": _ts_doc(self.created_at),
        }

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, **self.to_doc()}

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "Service":
        return cls(
            id=_text(doc.get("id")),
            name=_text(doc.get("name")),
            price=_money(doc.get("price")),
            description=_text(doc.get("description")),
            created_at=Timestamp.from_value(doc.get("createdAt")),
        )


@dataclass(frozen=True)
class SelectedService:
    """A service as it was priced when attached to a repair.

    Later edits to the catalog entry never reach this copy.
    """
    id: str
    name: str
    price: float
    description: str = ""

    @classmethod
    def from_service(cls, service: Service) -> "SelectedService":
        return cls(
            id=service.id,
            name=service.name,
            price=service.price,
            description=service.description,
        )

    def to_doc(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "description": self.description,
        }

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "SelectedService":
        return cls(
            id=_text(doc.get("id")),
            name=_text(doc.get("name")),
            price=_money(doc.get("price")),
            description=_text(doc.get("description")),
        )


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------

@dataclass
class Repair:
    """A work order.

    ``repairs`` is the legacy free-text description. When selected_services
    is used it holds the newline-joined service names and ``cost`` is their
    sum; legacy records carry free text and a manually entered cost.
    ``status`` is a RepairStatus, or the raw stored text if unrecognised.
    """
    id: str = ""
    owner_name: str = ""
    phone: str = ""
    make: str = ""
    model: str = ""
    engine_size: str = ""
    vin: str = ""
    repairs: str = ""
    selected_services: list[SelectedService] = field(default_factory=list)
    cost: float = 0.0
    additional_info: str = ""
    status: RepairStatus | str = RepairStatus.PENDING
    created_at: Timestamp | None = None
    updated_at: Timestamp | None = None
    owner_email: str = ""
    user_email: str = ""
    client_id: str = ""

    @property
    def car(self) -> str:
        return f"{self.make} {self.model}".strip()

    @property
    def status_value(self) -> str:
        if isinstance(self.status, RepairStatus):
            return self.status.value
        return _text(self.status)

    def to_doc(self) -> dict[str, Any]:
        doc = {
            "ownerName": self.owner_name,
            "phone": self.phone,
            "make": self.make,
            "model": self.model,
            "engineSize": self.engine_size,
            "vin": self.vin,
            "repairs": self.repairs,
            "selectedServices": [s.to_doc() for s in self.selected_services],
            "cost": self.cost,
            "additionalInfo": self.additional_info,
            "status": self.status_value,
            "createdAt": _ts_doc(self.created_at),
            "updatedAt": _ts_doc(self.updated_at),
            "ownerEmail": self.owner_email,
            "userEmail": self.user_email,
            "clientId": self.client_id,
        }
        return doc

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, **self.to_doc()}

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "Repair":
        raw_status = doc.get("status")
        status = RepairStatus.parse(raw_status)
        if status is None:
            status = _text(raw_status) or RepairStatus.PENDING

        services = []
        for item in doc.get("selectedServices") or []:
            if isinstance(item, dict):
                services.append(SelectedService.from_doc(item))
            else:
                logger.warning("Skipping malformed service line on repair %s", doc.get("id"))

        return cls(
            id=_text(doc.get("id")),
            owner_name=_text(doc.get("ownerName")),
            phone=_text(doc.get("phone")),
            make=_text(doc.get("make")),
            model=_text(doc.get("model")),
            engine_size=_text(doc.get("engineSize")),
            vin=_text(doc.get("vin")),
            repairs=_text(doc.get("repairs")),
            selected_services=services,
            cost=_money(doc.get("cost")),
            additional_info=_text(doc.get("additionalInfo")),
            status=status,
            created_at=Timestamp.from_value(doc.get("createdAt")),
            updated_at=Timestamp.from_value(doc.get("updatedAt")),
            owner_email=_text(doc.get("ownerEmail")),
            user_email=_text(doc.get("userEmail")),
            client_id=_text(doc.get("clientId")),
        )
