"""
Service catalog: the billable services the shop offers.

Repairs never reference a catalog entry live. They carry a SelectedService
snapshot taken when the service was attached, so deleting or repricing an
entry here leaves existing repairs untouched.
"""

import logging
from decimal import Decimal, InvalidOperation

from core.document_store import DocumentStore, server_timestamp
from core.errors import NotFoundError, ValidationError
from core.event_logger import EventLogger
from tools.shop.records import Service

logger = logging.getLogger("shop.catalog")

COLLECTION = "services"


def parse_price(value) -> float:
    """Validate a price entered on a form: a number, zero or more."""
    try:
        price = Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, AttributeError):
        raise ValidationError(f"Invalid price {value!r}", field="price")
    if not price.is_finite() or price < 0:
        raise ValidationError(f"Invalid price {value!r}", field="price")
    return float(price.quantize(Decimal("0.01")))


class ServiceCatalog:

    def __init__(self, store: DocumentStore, events: EventLogger | None = None):
        self._store = store
        self._events = events

    def add_service(self, name: str, price, description: str = "") -> Service:
        name = (name or "").strip()
        if not name:
            raise ValidationError("'name' is required", field="name")
        if price is None or price == "":
            raise ValidationError("'price' is required", field="price")
        service = Service(
            name=name,
            price=parse_price(price),
            description=(description or "").strip(),
            created_at=None,
        )
        doc = service.to_doc()
        doc["createdAt"] = server_timestamp()
        service_id = self._store.add(COLLECTION, doc)
        logger.info("Service added: %s @ %.2f (%s)", name, service.price, service_id[:8])
        if self._events is not None:
            self._events.info("service", "Service added", service_id=service_id, name=name)
        return Service.from_doc({**doc, "id": service_id})

    def get_service(self, service_id: str) -> Service:
        doc = self._store.get(COLLECTION, service_id)
        if doc is None:
            raise NotFoundError(COLLECTION, service_id)
        return Service.from_doc(doc)

    def list_services(self) -> list[Service]:
        """Newest first."""
        docs = self._store.query(COLLECTION, order_by="createdAt", descending=True)
        return [Service.from_doc(d) for d in docs]

    def delete_service(self, service_id: str) -> bool:
        deleted = self._store.delete(COLLECTION, service_id)
        if deleted:
            logger.info("Service removed: %s", service_id[:8])
            if self._events is not None:
                self._events.info("service", "Service deleted", service_id=service_id)
        return deleted
