"""
Repair work orders: the form-state draft and the persistent store.

RepairDraft accumulates what the repair form collects (client binding,
selected services, notes) and keeps the legacy fields in step: whenever the
service list changes, ``cost`` becomes the sum of the service prices and
``repairs`` the newline-joined service names. A draft with no services
keeps the free-text ``repairs`` and manually entered ``cost`` instead.

RepairStore writes drafts to the ``repairs`` collection and runs the status
workflow. Every status change is a single-field write (``status`` plus
``updatedAt``) and returns the record as persisted.

Usage:
    from tools.shop.repairs import RepairDraft, RepairStore

    draft = RepairDraft.from_client(client)
    draft.add_service(oil_change)
    repair = repairs.create_repair(draft, user_email="mechanic@example.com")
    repairs.advance_status(repair.id, "PENDING")   # -> IN_PROGRESS
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any

from core.document_store import DocumentStore, server_timestamp
from core.errors import ConflictError, NotFoundError, ValidationError
from core.event_logger import EventLogger
from security.permissions import has_capability
from tools.shop.catalog import parse_price
from tools.shop.matcher import (
    CONFIDENT,
    REASON_CLIENT_ID,
    CustomerIdentity,
    MatchResult,
    match_repairs,
    owns_repair,
)
from tools.shop.records import Client, Repair, SelectedService, Service, Timestamp
from tools.shop.workflow import (
    RepairStatus,
    StatusUpdateGuard,
    cancel_status,
    next_status,
)

logger = logging.getLogger("shop.repairs")

COLLECTION = "repairs"


# ---------------------------------------------------------------------------
# Draft
# ---------------------------------------------------------------------------

@dataclass
class RepairDraft:
    """Editable state of the repair form.

    In edit mode (``repair_id`` set) the client binding is fixed: the
    vehicle and owner fields come from the stored repair and
    select_client() is rejected.
    """
    client_id: str = ""
    owner_name: str = ""
    phone: str = ""
    make: str = ""
    model: str = ""
    engine_size: str = ""
    vin: str = ""
    owner_email: str = ""
    selected_services: list[SelectedService] = field(default_factory=list)
    repairs: str = ""
    cost: float = 0.0
    additional_info: str = ""
    status: RepairStatus | None = None
    repair_id: str = ""

    @property
    def edit_mode(self) -> bool:
        return bool(self.repair_id)

    @classmethod
    def from_client(cls, client: Client) -> "RepairDraft":
        draft = cls()
        draft._bind(client)
        return draft

    @classmethod
    def from_repair(cls, repair: Repair) -> "RepairDraft":
        """Load a stored repair into the form for editing."""
        status = repair.status if isinstance(repair.status, RepairStatus) else None
        return cls(
            client_id=repair.client_id,
            owner_name=repair.owner_name,
            phone=repair.phone,
            make=repair.make,
            model=repair.model,
            engine_size=repair.engine_size,
            vin=repair.vin,
            owner_email=repair.owner_email,
            selected_services=list(repair.selected_services),
            repairs=repair.repairs,
            cost=repair.cost,
            additional_info=repair.additional_info,
            status=status,
            repair_id=repair.id,
        )

    def _bind(self, client: Client) -> None:
        # Snapshot: later client edits do not reach the repair
        self.client_id = client.id
        self.owner_name = client.owner_name
        self.phone = client.phone
        self.make = client.make
        self.model = client.model
        self.engine_size = client.engine_size
        self.vin = client.vin
        self.owner_email = client.email

    def select_client(self, client: Client) -> None:
        if self.edit_mode:
            raise ValidationError("The client of an existing repair cannot be changed", field="client_id")
        self._bind(client)

    # -- services -------------------------------------------------------

    def add_service(self, service: Service) -> bool:
        """Attach a catalog service. Returns False if it was already there."""
        if any(s.id == service.id for s in self.selected_services):
            return False
        self.selected_services.append(SelectedService.from_service(service))
        self._sync_legacy_fields()
        return True

    def add_custom_service(self, name: str, price) -> SelectedService:
        """Attach an ad-hoc line that is not in the catalog."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("'name' is required", field="name")
        line = SelectedService(
            id=f"custom-{uuid.uuid4().hex[:12]}",
            name=name,
            price=parse_price(price),
        )
        self.selected_services.append(line)
        self._sync_legacy_fields()
        return line

    def remove_service(self, service_id: str) -> bool:
        before = len(self.selected_services)
        self.selected_services = [s for s in self.selected_services if s.id != service_id]
        removed = len(self.selected_services) != before
        if removed:
            self._sync_legacy_fields()
        return removed

    def _sync_legacy_fields(self) -> None:
        total = sum((Decimal(str(s.price)) for s in self.selected_services), Decimal("0"))
        self.cost = float(total.quantize(Decimal("0.01")))
        self.repairs = "\n".join(s.name for s in self.selected_services)

    # -- validation ---------------------------------------------------------

    def validate(self) -> None:
        if not self.owner_name.strip():
            raise ValidationError("A client must be selected", field="client_id")
        if not self.selected_services and not self.repairs.strip():
            raise ValidationError(
                "Add at least one service or describe the repairs", field="selected_services",
            )
        if self.cost < 0:
            raise ValidationError("Cost cannot be negative", field="cost")

    def to_doc(self) -> dict[str, Any]:
        """Editable fields in document form (status and timestamps excluded)."""
        if self.selected_services:
            self._sync_legacy_fields()
        return {
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
            "ownerEmail": self.owner_email,
            "clientId": self.client_id,
        }


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class RepairStore:
    """Persistent repairs plus the status workflow.

    Args:
        store:  Shared document store.
        events: Audit trail.
        guard:  In-flight guard for status transitions; one is created if
                not given.
    """

    def __init__(
        self,
        store: DocumentStore,
        events: EventLogger | None = None,
        guard: StatusUpdateGuard | None = None,
    ):
        self._store = store
        self._events = events
        self.guard = guard or StatusUpdateGuard()

    def _audit(self, severity: str, message: str, **details) -> None:
        if self._events is None:
            return
        if severity == "warn":
            self._events.warn("repair", message, **details)
        else:
            self._events.info("repair", message, **details)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_repair(self, draft: RepairDraft, owner_email: str = "", user_email: str = "") -> Repair:
        """Validate and store a new repair in PENDING state."""
        draft.validate()
        now = server_timestamp()
        doc = draft.to_doc()
        doc.update({
            "status": RepairStatus.PENDING.value,
            "createdAt": now,
            "updatedAt": now,
            "userEmail": (user_email or "").lower(),
        })
        if owner_email:
            doc["ownerEmail"] = owner_email.lower()
        repair_id = self._store.add(COLLECTION, doc)
        repair = Repair.from_doc({**doc, "id": repair_id})
        logger.info("Repair created: %s for %s (cost %.2f)", repair_id[:8], repair.owner_name, repair.cost)
        self._audit("info", "Repair created", repair_id=repair_id,
                    client_id=repair.client_id, cost=repair.cost)
        return repair

    def update_repair(self, repair_id: str, draft: RepairDraft) -> Repair:
        """Save an edit. The client binding of the stored repair is kept."""
        stored = self.get_repair(repair_id)
        draft = replace(draft, selected_services=list(draft.selected_services))
        # Binding fields always come from the stored record
        draft.client_id = stored.client_id
        draft.owner_name = stored.owner_name
        draft.phone = stored.phone
        draft.make = stored.make
        draft.model = stored.model
        draft.engine_size = stored.engine_size
        draft.vin = stored.vin
        draft.owner_email = stored.owner_email
        draft.validate()

        fields = {
            k: v for k, v in draft.to_doc().items()
            if k in ("repairs", "selectedServices", "cost", "additionalInfo")
        }
        if draft.status is not None:
            fields["status"] = draft.status.value
        fields["updatedAt"] = server_timestamp()
        merged = self._store.update(COLLECTION, repair_id, fields)
        logger.info("Repair updated: %s", repair_id[:8])
        self._audit("info", "Repair updated", repair_id=repair_id)
        return Repair.from_doc(merged)

    def get_repair(self, repair_id: str) -> Repair:
        doc = self._store.get(COLLECTION, repair_id)
        if doc is None:
            raise NotFoundError(COLLECTION, repair_id)
        return Repair.from_doc(doc)

    def list_repairs(self) -> list[Repair]:
        """Every repair, newest first."""
        docs = self._store.query(COLLECTION, order_by="createdAt", descending=True)
        return [Repair.from_doc(d) for d in docs]

    def delete_repair(self, repair_id: str) -> bool:
        deleted = self._store.delete(COLLECTION, repair_id)
        if deleted:
            logger.info("Repair removed: %s", repair_id[:8])
            self._audit("info", "Repair deleted", repair_id=repair_id)
        return deleted

    # ------------------------------------------------------------------
    # Status workflow
    # ------------------------------------------------------------------

    def _write_status(self, repair: Repair, status: RepairStatus) -> Repair:
        """Persist ``status`` only if the stored status still reads as ``repair``'s.

        Stored values are compared after parsing, so a legacy Bulgarian label
        counts as its enum member.
        """
        def unchanged(stored) -> bool:
            return Repair.from_doc({"status": stored}).status == repair.status

        updated_at = server_timestamp()
        self._store.update(
            COLLECTION, repair.id,
            {"status": status.value, "updatedAt": updated_at},
            expect={"status": unchanged},
        )
        return replace(repair, status=status, updated_at=Timestamp.from_value(updated_at))

    def _load_expecting(self, repair_id: str, expected) -> Repair:
        repair = self.get_repair(repair_id)
        if expected is None:
            return repair
        wanted = RepairStatus.parse(expected)
        if wanted is None:
            raise ValidationError(f"Unknown status '{expected}'", field="from")
        if repair.status is not wanted:
            raise ConflictError(
                f"Repair {repair_id} is {repair.status_value}, not {wanted.value}"
            )
        return repair

    def advance_status(self, repair_id: str, expected=None) -> Repair:
        """Move a repair one step forward. Terminal states stay put.

        With ``expected`` the step only happens from that status; a repair
        that has already moved on raises ConflictError.
        """
        with self.guard.hold(repair_id):
            repair = self._load_expecting(repair_id, expected)
            new = next_status(repair.status)
            if new == repair.status or not isinstance(new, RepairStatus):
                logger.info("Repair %s is %s; nothing to advance", repair_id[:8], repair.status_value)
                return repair
            updated = self._write_status(repair, new)
        logger.info("Repair %s: %s -> %s", repair_id[:8], repair.status_value, new.value)
        self._audit("info", "Repair status advanced", repair_id=repair_id,
                    old=repair.status_value, new=new.value)
        return updated

    def cancel(self, repair_id: str, expected=None) -> Repair:
        """Cancel a repair from any state, or only from ``expected`` if given."""
        with self.guard.hold(repair_id):
            repair = self._load_expecting(repair_id, expected)
            if repair.status is RepairStatus.CANCELLED:
                return repair
            was_completed = repair.status is RepairStatus.COMPLETED
            updated = self._write_status(repair, cancel_status(repair.status))
        if was_completed:
            self._audit("warn", "Completed repair cancelled", repair_id=repair_id)
        else:
            self._audit("info", "Repair cancelled", repair_id=repair_id, old=repair.status_value)
        return updated

    def set_status(self, repair_id: str, status) -> Repair:
        """Staff override from the edit form: any known status."""
        parsed = RepairStatus.parse(status)
        if parsed is None:
            raise ValidationError(f"Unknown status '{status}'", field="status")
        with self.guard.hold(repair_id):
            repair = self.get_repair(repair_id)
            if repair.status is parsed:
                return repair
            updated = self._write_status(repair, parsed)
        self._audit("info", "Repair status set", repair_id=repair_id,
                    old=repair.status_value, new=parsed.value)
        return updated

    # ------------------------------------------------------------------
    # Customer views
    # ------------------------------------------------------------------

    def own_repairs(self, email: str) -> list[Repair]:
        """Repairs explicitly tagged with ``email`` as owner or creator."""
        email = (email or "").lower()
        if not email:
            return []
        return [
            r for r in self.list_repairs()
            if r.owner_email.lower() == email or r.user_email.lower() == email
        ]

    def repairs_for_account(
        self,
        account: Any,
        client: Client | None,
        fallback: bool = True,
        diagnostic_count: int = 5,
    ) -> MatchResult:
        """Repairs visible to ``account``.

        Staff see every repair. Customers get the matcher's result for
        their identity; confident matches are stamped with the client id
        so the next lookup hits them directly.
        """
        repairs = self.list_repairs()
        if has_capability(getattr(account, "role", None), "view_all_repairs"):
            return MatchResult(repairs=repairs, confidence=CONFIDENT)

        identity = CustomerIdentity.from_client(getattr(account, "email", ""), client)
        result = match_repairs(
            identity, repairs, fallback=fallback, diagnostic_count=diagnostic_count,
        )
        if client is not None and result.is_confident:
            self.backfill_client_ids(result, client.id, identity)
        return result

    def backfill_client_ids(
        self, result: MatchResult, client_id: str, identity: CustomerIdentity,
    ) -> int:
        """Stamp ``client_id`` on confidently matched repairs that lack one.

        Only repairs ``identity`` owns outright are stamped: the same email,
        or the same name on the same make and model. A match on vehicle or
        phone alone is shown but left unlinked, since two customers can share
        either. Heuristic matches are never stamped. Returns the number
        written.
        """
        if not client_id or not result.is_confident:
            return 0
        stamped = 0
        for repair in result.repairs:
            if repair.client_id or result.reasons.get(repair.id) == REASON_CLIENT_ID:
                continue
            if not owns_repair(identity, repair):
                continue
            self._store.update(COLLECTION, repair.id, {"clientId": client_id})
            repair.client_id = client_id
            stamped += 1
        if stamped:
            logger.info("Linked %d legacy repair(s) to client %s", stamped, client_id[:8])
            self._audit("info", "Legacy repairs linked to client",
                        client_id=client_id, count=stamped)
        return stamped

    def get_status(self) -> dict[str, Any]:
        counts = {s.value: 0 for s in RepairStatus}
        for repair in self.list_repairs():
            counts[repair.status_value] = counts.get(repair.status_value, 0) + 1
        return {"total_repairs": sum(counts.values()), "by_status": counts}
