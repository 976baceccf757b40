"""Shared fixtures: throwaway stores and a configured app per test."""

import pytest

from core.config import ShopConfig
from core.document_store import DocumentStore
from core.event_logger import EventLogger
from tools.shop.catalog import ServiceCatalog
from tools.shop.clients import ClientStore
from tools.shop.repairs import RepairStore


@pytest.fixture
def store(tmp_path):
    s = DocumentStore(str(tmp_path / "shop.db"))
    yield s
    s.close()


@pytest.fixture
def events():
    return EventLogger(max_events=200)


@pytest.fixture
def clients(store, events):
    return ClientStore(store, events)


@pytest.fixture
def catalog(store, events):
    return ServiceCatalog(store, events)


@pytest.fixture
def repairs(store, events):
    return RepairStore(store, events)


@pytest.fixture
def shop_config(tmp_path, monkeypatch):
    for var in ("SHOP_STORAGE_DB_PATH", "SHOP_QUOTE_FONT_PATH", "SHOP_LOCALE_DEFAULT",
                "SHOP_MATCHER_FALLBACK_ENABLED", "SHOP_QUOTE_VAT_RATE"):
        monkeypatch.delenv(var, raising=False)
    path = tmp_path / "settings.toml"
    path.write_text(
        "[storage]\n"
        f'db_path = "{(tmp_path / "shop.db").as_posix()}"\n'
        "[auth]\n"
        "bcrypt_rounds = 4\n"
        "max_login_attempts = 3\n"
        "[events]\n"
        f'export_dir = "{(tmp_path / "logs").as_posix()}"\n',
        encoding="utf-8",
    )
    return ShopConfig(path)
