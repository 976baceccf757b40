"""
Client records: vehicle owners and their vehicles.

A client is created either by staff (full form) or automatically when a
customer registers (name only, vehicle left blank and completed later from
the profile page). Owner-name uniqueness is a convention, not a key:
duplicates are collapsed on every read of the selector list.

Storage: the ``clients`` collection of the shared DocumentStore.
"""

import logging
from typing import Any

from core.document_store import DocumentStore, server_timestamp
from core.errors import NotFoundError, ValidationError
from core.event_logger import EventLogger
from tools.shop.records import Client

logger = logging.getLogger("shop.clients")

COLLECTION = "clients"

REQUIRED_FIELDS = ("owner_name", "phone", "make", "model", "engine_size")

# python attribute -> document key
_DOC_KEYS = {
    "owner_name": "ownerName",
    "phone": "phone",
    "make": "make",
    "model": "model",
    "engine_size": "engineSize",
    "vin": "vin",
    "email": "email",
}


def _require(values: dict[str, Any], fields) -> None:
    for name in fields:
        if not str(values.get(name) or "").strip():
            raise ValidationError(f"'{name}' is required", field=name)


class ClientStore:
    """CRUD and lookups over client records.

    Args:
        store:  Shared document store.
        events: Audit trail; optional so the store can be used standalone.
    """

    def __init__(self, store: DocumentStore, events: EventLogger | None = None):
        self._store = store
        self._events = events

    def _audit(self, message: str, **details) -> None:
        if self._events is not None:
            self._events.info("client", message, **details)

    # ------------------------------------------------------------------
    # Create / update / delete
    # ------------------------------------------------------------------

    def create_client(
        self,
        owner_name: str,
        phone: str,
        make: str,
        model: str,
        engine_size: str,
        vin: str = "",
        email: str = "",
    ) -> Client:
        """Staff entry: every vehicle field except VIN is required."""
        values = {
            "owner_name": owner_name, "phone": phone, "make": make,
            "model": model, "engine_size": engine_size, "vin": vin, "email": email,
        }
        _require(values, REQUIRED_FIELDS)
        client = Client(**{k: str(v or "").strip() for k, v in values.items()})
        client.email = client.email.lower()
        return self._insert(client)

    def create_from_account(self, email: str, display_name: str = "") -> Client:
        """Self-registration: a placeholder profile linked by email.

        The owner name is the display name, or the part of the email
        before the "@" when no display name was given.
        """
        if not email:
            raise ValidationError("'email' is required", field="email")
        name = (display_name or "").strip() or email.split("@", 1)[0]
        client = Client(owner_name=name, email=email.strip().lower())
        return self._insert(client)

    def _insert(self, client: Client) -> Client:
        doc = client.to_doc()
        doc["createdAt"] = server_timestamp()
        client_id = self._store.add(COLLECTION, doc)
        created = Client.from_doc({**doc, "id": client_id})
        logger.info("Client added: %s (%s)", created.owner_name, client_id[:8])
        self._audit("Client created", client_id=client_id, owner_name=created.owner_name)
        return created

    def update_client(self, client_id: str, **fields: Any) -> Client:
        """Apply an edit-form or profile update.

        Only known fields are written; required fields may not be blanked
        once set. Unknown ids raise NotFoundError.
        """
        updates = {k: str(v or "").strip() for k, v in fields.items() if k in _DOC_KEYS}
        current = self.get_client(client_id)
        for name in REQUIRED_FIELDS:
            if name in updates and not updates[name] and getattr(current, name):
                raise ValidationError(f"'{name}' cannot be cleared", field=name)
        if not updates:
            return current
        if "email" in updates:
            updates["email"] = updates["email"].lower()

        doc = {_DOC_KEYS[k]: v for k, v in updates.items()}
        doc["updatedAt"] = server_timestamp()
        merged = self._store.update(COLLECTION, client_id, doc)
        logger.info("Client updated: %s (%s)", merged.get("ownerName"), client_id[:8])
        self._audit("Client updated", client_id=client_id, fields=sorted(updates))
        return Client.from_doc(merged)

    def delete_client(self, client_id: str) -> bool:
        deleted = self._store.delete(COLLECTION, client_id)
        if deleted:
            logger.info("Client removed: %s", client_id[:8])
            self._audit("Client deleted", client_id=client_id)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_client(self, client_id: str) -> Client:
        doc = self._store.get(COLLECTION, client_id)
        if doc is None:
            raise NotFoundError(COLLECTION, client_id)
        return Client.from_doc(doc)

    def find_by_email(self, email: str) -> Client | None:
        """The newest client profile linked to ``email``, if any."""
        if not email:
            return None
        docs = self._store.query(
            COLLECTION, where={"email": email.strip().lower()},
            order_by="createdAt", descending=True, limit=1,
        )
        return Client.from_doc(docs[0]) if docs else None

    def list_clients(self) -> list[Client]:
        """Every client, newest first."""
        docs = self._store.query(COLLECTION, order_by="createdAt", descending=True)
        return [Client.from_doc(d) for d in docs]

    def list_unique_clients(self) -> list[Client]:
        """One client per distinct owner name: the newest one wins."""
        seen: set[str] = set()
        unique = []
        for client in self.list_clients():
            if client.owner_name in seen:
                continue
            seen.add(client.owner_name)
            unique.append(client)
        return unique

    def find_matching_client(self, owner_name: str, make: str, model: str) -> Client | None:
        """The client a repair was created for, judged by name and vehicle."""
        for client in self.list_clients():
            if (
                client.owner_name == owner_name
                and client.make == make
                and client.model == model
            ):
                return client
        return None

    def get_status(self) -> dict[str, int]:
        return {"total_clients": self._store.count(COLLECTION)}
