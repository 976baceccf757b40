"""Record builders for tests that do not need a store."""

from tools.shop.records import Client, Repair, SelectedService, Timestamp
from tools.shop.workflow import RepairStatus


def make_repair(id="r1", seconds=None, **fields) -> Repair:
    services = [
        s if isinstance(s, SelectedService) else SelectedService(**s)
        for s in fields.pop("selected_services", [])
    ]
    created = Timestamp(seconds) if seconds is not None else None
    fields.setdefault("status", RepairStatus.PENDING)
    return Repair(id=id, created_at=created, selected_services=services, **fields)


def make_client(id="c1", seconds=None, **fields) -> Client:
    created = Timestamp(seconds) if seconds is not None else None
    return Client(id=id, created_at=created, **fields)
