"""End-to-end tests for the /api/v1 HTTP surface."""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from interfaces.dashboard.server import create_app

API = "/api/v1"
ADMIN = "admin@mechanic.com"
CUSTOMER = "ivan@example.com"
PASSWORD = "secret1"


@pytest.fixture
def app(shop_config, tmp_path):
    return create_app(shop_config, db_path=str(tmp_path / "api.db"))


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def register(client, email, name=""):
    resp = client.post(f"{API}/auth/register", json={
        "email": email, "password": PASSWORD, "display_name": name,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()["account"]


def login(client, email):
    resp = client.post(f"{API}/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.text
    return resp.json()["account"]


def seed_repair(client):
    """As staff: one client, one service, one repair. Returns the repair JSON."""
    c = client.post(f"{API}/clients", json={
        "owner_name": "Ivan Petrov", "phone": "0888111222", "make": "Toyota",
        "model": "Corolla", "engine_size": "1.6",
    }).json()["client"]
    s = client.post(f"{API}/services", json={"name": "Oil change", "price": 45}).json()["service"]
    resp = client.post(f"{API}/repairs", json={"client_id": c["id"], "service_ids": [s["id"]]})
    assert resp.status_code == 201, resp.text
    return resp.json()["repair"]


class TestAuth:

    def test_register_logs_in(self, client):
        account = register(client, ADMIN)
        assert account["isAdmin"] is True
        assert client.get(f"{API}/auth/me").json()["account"]["email"] == ADMIN

    def test_customer_role(self, client):
        assert register(client, CUSTOMER, "Ivan Petrov")["isAdmin"] is False

    def test_anonymous_is_401(self, client):
        assert client.get(f"{API}/repairs").status_code == 401

    def test_duplicate_is_409(self, client):
        register(client, CUSTOMER)
        resp = client.post(f"{API}/auth/register", json={"email": CUSTOMER, "password": PASSWORD})
        assert resp.status_code == 409

    def test_short_password_is_422(self, client):
        resp = client.post(f"{API}/auth/register", json={"email": CUSTOMER, "password": "1"})
        assert resp.status_code == 422
        assert resp.json()["field"] == "password"

    def test_logout(self, client):
        register(client, CUSTOMER)
        client.post(f"{API}/auth/logout")
        assert client.get(f"{API}/auth/me").status_code == 401

    def test_lockout(self, client):
        register(client, CUSTOMER)
        for _ in range(3):
            resp = client.post(f"{API}/auth/login", json={"email": CUSTOMER, "password": "wrong"})
            assert resp.status_code == 401
        resp = client.post(f"{API}/auth/login", json={"email": CUSTOMER, "password": PASSWORD})
        assert resp.status_code == 429


class TestStaffFlow:

    def test_repair_lifecycle(self, client):
        register(client, ADMIN)
        repair = seed_repair(client)
        assert repair["cost"] == 45
        assert repair["status"] == "PENDING"
        assert repair["statusColor"] == "amber"

        url = f"{API}/repairs/{repair['id']}/advance"
        resp = client.post(url, params={"from": "PENDING"})
        assert resp.json()["repair"]["status"] == "IN_PROGRESS"
        resp = client.post(url, params={"from": "IN_PROGRESS", "lang": "bg"})
        assert resp.json()["repair"]["statusLabel"] == "Завършен"
        resp = client.post(url, params={"from": "COMPLETED"})
        assert resp.json()["repair"]["status"] == "COMPLETED"

    def test_stale_transition_is_409(self, client):
        register(client, ADMIN)
        repair = seed_repair(client)
        url = f"{API}/repairs/{repair['id']}"
        assert client.post(f"{url}/advance", params={"from": "PENDING"}).status_code == 200
        assert client.post(f"{url}/advance", params={"from": "PENDING"}).status_code == 409
        assert client.post(f"{url}/cancel", params={"from": "PENDING"}).status_code == 409
        assert client.get(url).json()["repair"]["status"] == "IN_PROGRESS"

    def test_transition_needs_current_status(self, client):
        register(client, ADMIN)
        repair = seed_repair(client)
        assert client.post(f"{API}/repairs/{repair['id']}/advance").status_code == 422
        resp = client.post(f"{API}/repairs/{repair['id']}/cancel", params={"from": "PENDING"})
        assert resp.json()["repair"]["status"] == "CANCELLED"

    def test_double_submit_advances_once(self, app):
        async def scenario():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
                resp = await ac.post(f"{API}/auth/register", json={"email": ADMIN, "password": PASSWORD})
                assert resp.status_code == 201, resp.text
                c = (await ac.post(f"{API}/clients", json={
                    "owner_name": "Ivan Petrov", "phone": "0888111222", "make": "Toyota",
                    "model": "Corolla", "engine_size": "1.6",
                })).json()["client"]
                repair = (await ac.post(f"{API}/repairs", json={
                    "client_id": c["id"], "repairs": "Oil change", "cost": 45,
                })).json()["repair"]

                url = f"{API}/repairs/{repair['id']}"
                first, second = await asyncio.gather(
                    ac.post(f"{url}/advance", params={"from": "PENDING"}),
                    ac.post(f"{url}/advance", params={"from": "PENDING"}),
                )
                stored = (await ac.get(url)).json()["repair"]["status"]
            return sorted([first.status_code, second.status_code]), stored

        codes, stored = asyncio.run(scenario())
        assert codes == [200, 409]
        assert stored == "IN_PROGRESS"

    def test_repair_detail_includes_matching_client(self, client):
        register(client, ADMIN)
        repair = seed_repair(client)
        body = client.get(f"{API}/repairs/{repair['id']}").json()
        assert body["client"]["ownerName"] == "Ivan Petrov"

    def test_edit_adds_custom_line(self, client):
        register(client, ADMIN)
        repair = seed_repair(client)
        resp = client.put(f"{API}/repairs/{repair['id']}", json={
            "custom_services": [{"name": "Wipers", "price": "15"}],
            "additional_info": "Check tyres",
        })
        updated = resp.json()["repair"]
        assert updated["cost"] == 60
        assert updated["additionalInfo"] == "Check tyres"

    def test_cost_with_services_is_422(self, client):
        register(client, ADMIN)
        repair = seed_repair(client)
        url = f"{API}/repairs/{repair['id']}"
        resp = client.put(url, json={"cost": "99"})
        assert resp.status_code == 422
        assert resp.json()["field"] == "cost"
        assert client.get(url).json()["repair"]["cost"] == 45
        assert client.put(url, json={"cost": "45.00"}).status_code == 200

    def test_unknown_status_is_422(self, client):
        register(client, ADMIN)
        repair = seed_repair(client)
        resp = client.put(f"{API}/repairs/{repair['id']}", json={"status": "ON_HOLD"})
        assert resp.status_code == 422
        assert resp.json()["field"] == "status"

    def test_missing_client_field_is_422(self, client):
        register(client, ADMIN)
        resp = client.post(f"{API}/clients", json={
            "owner_name": "Ivan", "phone": "1", "make": "Toyota", "model": "Corolla",
            "engine_size": " ",
        })
        assert resp.status_code == 422
        assert resp.json()["field"] == "engine_size"

    def test_unknown_repair_is_404(self, client):
        register(client, ADMIN)
        assert client.get(f"{API}/repairs/nope").status_code == 404
        resp = client.post(f"{API}/repairs/nope/advance", params={"from": "PENDING"})
        assert resp.status_code == 404

    def test_sorting_and_search(self, client):
        register(client, ADMIN)
        seed_repair(client)
        resp = client.get(f"{API}/repairs", params={"q": "corolla", "sort": "cost", "order": "asc"})
        assert resp.json()["count"] == 1
        assert client.get(f"{API}/repairs", params={"q": "opel"}).json()["count"] == 0
        assert client.get(f"{API}/repairs", params={"sort": "color"}).status_code == 422

    def test_quote_json(self, client):
        register(client, ADMIN)
        repair = seed_repair(client)
        body = client.get(f"{API}/repairs/{repair['id']}/quote", params={"lang": "bg"}).json()
        quote = body["quote"]
        assert quote["locale"] == "bg"
        assert quote["totals"] == {"subtotal": 45.0, "vat": 9.0, "total": 54.0}
        assert quote["filename"].startswith("оферта_ремонт_")
        assert isinstance(body["pdfAvailable"], bool)

    def test_quote_pdf_english(self, client):
        pytest.importorskip("fpdf")
        register(client, ADMIN)
        repair = seed_repair(client)
        resp = client.get(f"{API}/repairs/{repair['id']}/quote.pdf")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert "repair_quote_" in resp.headers["content-disposition"]
        assert resp.content.startswith(b"%PDF")

    def test_grant_mechanic(self, client):
        register(client, CUSTOMER)
        register(client, ADMIN)
        resp = client.post(f"{API}/admin/mechanics", json={"email": CUSTOMER})
        assert resp.json()["account"]["isAdmin"] is True
        emails = {a["email"] for a in client.get(f"{API}/admin/mechanics").json()["mechanics"]}
        assert emails == {ADMIN, CUSTOMER}

    def test_events_are_recorded(self, client):
        register(client, ADMIN)
        seed_repair(client)
        events = client.get(f"{API}/events", params={"category": "repair"}).json()["events"]
        assert events[-1]["message"] == "Repair created"


class TestCustomerFlow:

    def test_customer_cannot_manage(self, client):
        register(client, CUSTOMER)
        assert client.post(f"{API}/clients", json={
            "owner_name": "X", "phone": "1", "make": "A", "model": "B", "engine_size": "1",
        }).status_code == 403
        assert client.post(f"{API}/services", json={"name": "X", "price": 1}).status_code == 403
        assert client.get(f"{API}/events").status_code == 403

    def test_customer_sees_matched_repairs_only(self, client):
        register(client, ADMIN)
        repair = seed_repair(client)
        stranger = client.post(f"{API}/repairs", json={
            "repairs": "Clutch", "cost": 300,
        })
        assert stranger.status_code == 422

        register(client, CUSTOMER, "Ivan Petrov")
        body = client.get(f"{API}/my-repairs").json()
        assert [r["id"] for r in body["repairs"]] == [repair["id"]]
        assert body["confidence"] == "confident"
        assert body["notice"] == ""
        assert "diagnostic" not in body

    def test_customer_without_match_gets_notice(self, client):
        register(client, ADMIN)
        seed_repair(client)
        register(client, "maria@example.com", "Maria Ivanova")
        body = client.get(f"{API}/my-repairs").json()
        assert body["repairs"] == []
        assert body["confidence"] == "none"
        assert body["notice"]
        assert "diagnostic" not in body

    def test_customer_cannot_open_foreign_repair(self, client):
        register(client, ADMIN)
        repair = seed_repair(client)
        register(client, "maria@example.com", "Maria Ivanova")
        assert client.get(f"{API}/repairs/{repair['id']}").status_code == 403
        assert client.get(f"{API}/repairs/{repair['id']}/quote").status_code == 403

    def test_profile_update(self, client):
        register(client, CUSTOMER, "Ivan Petrov")
        resp = client.patch(f"{API}/profile", json={"make": "Toyota", "model": "Corolla"})
        assert resp.json()["client"]["make"] == "Toyota"
        assert client.get(f"{API}/profile").json()["client"]["model"] == "Corolla"


def test_staff_reconciliation_view(client):
    register(client, ADMIN)
    seed_repair(client)
    other = client.post(f"{API}/clients", json={
        "owner_name": "Maria Ivanova", "phone": "0877123456", "make": "Opel",
        "model": "Astra", "engine_size": "1.4",
    }).json()["client"]
    body = client.get(f"{API}/clients/{other['id']}/repairs").json()
    assert body["repairs"] == []
    assert len(body["diagnostic"]) == 1
    assert body["notice"]


def test_health_and_status_colors(client):
    health = client.get(f"{API}/health").json()
    assert health["status"] == "ok"
    assert set(health["pdf_available"]) == {"en", "bg"}
    colors = client.get(f"{API}/status-colors").json()
    assert colors["colors"]["CANCELLED"] == "red"
    assert colors["unknown"] == "gray"


def test_events_exported_on_shutdown(shop_config, tmp_path):
    app = create_app(shop_config, db_path=str(tmp_path / "export.db"))
    with TestClient(app) as c:
        register(c, CUSTOMER)
    exported = list((tmp_path / "logs").glob("events_*.json"))
    assert len(exported) == 1
