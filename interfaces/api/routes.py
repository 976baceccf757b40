"""
Shop REST API: /api/v1/

JSON endpoints for the shop front end. Shared state (stores, session
manager, event logger, config) is read from ``request.app.state``, which
the app factory in interfaces.dashboard.server fills in.

Auth: session cookie set by /auth/login and /auth/register. Capability
checks go through security.permissions; domain errors (ShopError) are
turned into responses by the server's exception handler.

Locale: ``lang`` query parameter, "en" or "bg"; anything else falls back
to the configured default.
"""

import logging
from typing import Optional
from urllib.parse import quote as url_quote

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel

from core.errors import PermissionDenied, ValidationError
from security.auth import Account
from security.permissions import ROLE_MECHANIC, has_capability, require
from tools.shop.catalog import parse_price
from tools.shop.i18n import match_notice, resolve_locale
from tools.shop.matcher import CONFIDENT, CustomerIdentity, match_repairs, owns_repair
from tools.shop.quotes import build_quote, pdf_available, render_pdf
from tools.shop.records import Repair
from tools.shop.repairs import RepairDraft
from tools.shop.sorting import (
    CLIENT_SORT_FIELDS,
    SORT_FIELDS,
    filter_clients,
    filter_customer_repairs,
    filter_repairs,
    sort_records,
    validate_sort,
)
from tools.shop.workflow import (
    STATUS_COLORS,
    UNKNOWN_STATUS_COLOR,
    RepairStatus,
    status_color,
    status_label,
    status_legend,
)

logger = logging.getLogger("shop.api")

router = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_locale(request: Request, lang: Optional[str] = None) -> str:
    locale_cfg = request.app.state.config.locale
    return resolve_locale(lang, supported=tuple(locale_cfg.supported), default=locale_cfg.default)


def current_account(request: Request) -> Account:
    """The logged-in account, or 401."""
    cookie_name = request.app.state.config.auth.cookie_name
    token = request.cookies.get(cookie_name)
    account = request.app.state.session_manager.get_account(token)
    if account is None:
        raise HTTPException(status_code=401, detail="Not logged in")
    return account


def requires(capability: str):
    """Dependency factory: the current account, checked for ``capability``."""

    def _dependency(account: Account = Depends(current_account)) -> Account:
        require(account, capability)
        return account

    return _dependency


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _set_session_cookie(request: Request, response: Response, token: str) -> None:
    auth = request.app.state.config.auth
    response.set_cookie(
        auth.cookie_name, token,
        max_age=auth.session_timeout, httponly=True, samesite="lax",
    )


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------

class RegisterBody(BaseModel):
    email: str
    password: str
    display_name: str = ""
    confirm_password: Optional[str] = None


class LoginBody(BaseModel):
    email: str
    password: str


class ClientBody(BaseModel):
    owner_name: str
    phone: str
    make: str
    model: str
    engine_size: str
    vin: str = ""
    email: str = ""


class ClientPatch(BaseModel):
    owner_name: Optional[str] = None
    phone: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    engine_size: Optional[str] = None
    vin: Optional[str] = None
    email: Optional[str] = None


class ProfilePatch(BaseModel):
    owner_name: Optional[str] = None
    phone: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    engine_size: Optional[str] = None
    vin: Optional[str] = None


class ServiceBody(BaseModel):
    name: str
    price: float | str
    description: str = ""


class CustomServiceBody(BaseModel):
    name: str
    price: float | str


class RepairBody(BaseModel):
    client_id: str = ""
    service_ids: list[str] = []
    custom_services: list[CustomServiceBody] = []
    repairs: str = ""
    cost: float | str = 0
    additional_info: str = ""


class RepairUpdate(BaseModel):
    service_ids: Optional[list[str]] = None
    custom_services: list[CustomServiceBody] = []
    repairs: Optional[str] = None
    cost: Optional[float | str] = None
    additional_info: Optional[str] = None
    status: Optional[str] = None


class GrantBody(BaseModel):
    email: str
    role: str = ROLE_MECHANIC


# ---------------------------------------------------------------------------
# View helpers
# ---------------------------------------------------------------------------

def _repair_view(repair: Repair, locale: str) -> dict:
    return {
        **repair.to_dict(),
        "statusLabel": status_label(repair.status, locale),
        "statusColor": status_color(repair.status),
    }


def _identity(request: Request, account: Account) -> CustomerIdentity:
    client = request.app.state.clients.find_by_email(account.email)
    return CustomerIdentity.from_client(account.email, client)


def _visible_repair(request: Request, account: Account, repair_id: str) -> Repair:
    """Load a repair the account may see, else 403."""
    repair = request.app.state.repairs.get_repair(repair_id)
    if has_capability(account.role, "view_all_repairs"):
        return repair
    if not owns_repair(_identity(request, account), repair):
        raise PermissionDenied(f"Repair '{repair_id}' does not belong to {account.email}")
    return repair


def _apply_custom_services(draft: RepairDraft, lines: list[CustomServiceBody]) -> None:
    for line in lines:
        draft.add_custom_service(line.name, line.price)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

# -- Auth --------------------------------------------------------------------

@router.post("/auth/register", status_code=201)
async def register(body: RegisterBody, request: Request, response: Response):
    """Create an account plus client profile and log it in."""
    accounts = request.app.state.accounts
    account = accounts.register(
        body.email, body.password,
        display_name=body.display_name,
        confirm_password=body.confirm_password,
    )
    token = request.app.state.session_manager.login(body.email, body.password, _client_ip(request))
    if token:
        _set_session_cookie(request, response, token)
    return {"account": account.to_dict()}


@router.post("/auth/login")
async def login(body: LoginBody, request: Request, response: Response):
    sm = request.app.state.session_manager
    events = request.app.state.event_logger
    ip = _client_ip(request)

    remaining = sm.get_lockout_remaining(ip)
    if remaining:
        raise HTTPException(status_code=429, detail=f"Too many attempts. Try again in {remaining}s")

    token = sm.login(body.email, body.password, ip)
    if token is None:
        events.warn("auth", "Failed login", email=body.email, ip=ip)
        raise HTTPException(status_code=401, detail="Invalid email or password")

    _set_session_cookie(request, response, token)
    account = sm.get_account(token)
    events.info("auth", "Login", email=account.email)
    return {"account": account.to_dict()}


@router.post("/auth/logout")
async def logout(request: Request, response: Response):
    cookie_name = request.app.state.config.auth.cookie_name
    request.app.state.session_manager.destroy_session(request.cookies.get(cookie_name))
    response.delete_cookie(cookie_name)
    return {"ok": True}


@router.get("/auth/me")
async def me(account: Account = Depends(current_account)):
    return {"account": account.to_dict()}


# -- Clients -----------------------------------------------------------------

@router.get("/clients")
async def list_clients(
    request: Request,
    q: str = "",
    sort: str = "date",
    order: str = "desc",
    unique: bool = False,
    locale: str = Depends(get_locale),
    account: Account = Depends(requires("manage_clients")),
):
    validate_sort(sort, order, CLIENT_SORT_FIELDS)
    store = request.app.state.clients
    clients = store.list_unique_clients() if unique else store.list_clients()
    clients = sort_records(filter_clients(clients, q), sort, order, locale)
    return {"clients": [c.to_dict() for c in clients], "count": len(clients)}


@router.post("/clients", status_code=201)
async def create_client(
    body: ClientBody,
    request: Request,
    account: Account = Depends(requires("manage_clients")),
):
    client = request.app.state.clients.create_client(**body.model_dump())
    return {"client": client.to_dict()}


@router.get("/clients/{client_id}")
async def get_client(
    client_id: str,
    request: Request,
    account: Account = Depends(requires("manage_clients")),
):
    return {"client": request.app.state.clients.get_client(client_id).to_dict()}


@router.patch("/clients/{client_id}")
async def update_client(
    client_id: str,
    body: ClientPatch,
    request: Request,
    account: Account = Depends(requires("manage_clients")),
):
    client = request.app.state.clients.update_client(client_id, **body.model_dump(exclude_none=True))
    return {"client": client.to_dict()}


@router.delete("/clients/{client_id}")
async def delete_client(
    client_id: str,
    request: Request,
    account: Account = Depends(requires("manage_clients")),
):
    if not request.app.state.clients.delete_client(client_id):
        raise HTTPException(status_code=404, detail=f"Client '{client_id}' not found")
    return {"ok": True}


@router.get("/clients/{client_id}/repairs")
async def client_repairs(
    client_id: str,
    request: Request,
    locale: str = Depends(get_locale),
    account: Account = Depends(requires("view_all_repairs")),
):
    """Staff reconciliation view: what the matcher links to this client."""
    state = request.app.state
    client = state.clients.get_client(client_id)
    identity = CustomerIdentity.from_client(client.email, client)
    result = match_repairs(
        identity, state.repairs.list_repairs(),
        fallback=state.config.matcher.fallback_enabled,
        diagnostic_count=state.config.matcher.diagnostic_count,
    )
    return {
        "repairs": [_repair_view(r, locale) for r in result.repairs],
        "reasons": result.reasons,
        "confidence": result.confidence,
        "diagnostic": [_repair_view(r, locale) for r in result.diagnostic],
        "notice": "" if result.is_confident else match_notice(
            "diagnostic" if result.diagnostic else result.confidence, locale),
    }


# -- Profile -----------------------------------------------------------------

@router.get("/profile")
async def get_profile(request: Request, account: Account = Depends(requires("edit_own_profile"))):
    client = request.app.state.clients.find_by_email(account.email)
    return {"account": account.to_dict(), "client": client.to_dict() if client else None}


@router.patch("/profile")
async def update_profile(
    body: ProfilePatch,
    request: Request,
    account: Account = Depends(requires("edit_own_profile")),
):
    clients = request.app.state.clients
    client = clients.find_by_email(account.email)
    if client is None:
        client = clients.create_from_account(account.email, account.display_name)
    client = clients.update_client(client.id, **body.model_dump(exclude_none=True))
    return {"account": account.to_dict(), "client": client.to_dict()}


# -- Services ----------------------------------------------------------------

@router.get("/services")
async def list_services(request: Request, account: Account = Depends(requires("view_services"))):
    services = request.app.state.catalog.list_services()
    return {"services": [s.to_dict() for s in services]}


@router.post("/services", status_code=201)
async def add_service(
    body: ServiceBody,
    request: Request,
    account: Account = Depends(requires("manage_services")),
):
    service = request.app.state.catalog.add_service(body.name, body.price, body.description)
    return {"service": service.to_dict()}


@router.delete("/services/{service_id}")
async def delete_service(
    service_id: str,
    request: Request,
    account: Account = Depends(requires("manage_services")),
):
    if not request.app.state.catalog.delete_service(service_id):
        raise HTTPException(status_code=404, detail=f"Service '{service_id}' not found")
    return {"ok": True}


# -- Repairs -----------------------------------------------------------------

@router.get("/repairs")
async def list_repairs(
    request: Request,
    q: str = "",
    sort: str = "date",
    order: str = "desc",
    locale: str = Depends(get_locale),
    account: Account = Depends(current_account),
):
    """Staff: every repair. Customers: repairs tagged with their email."""
    validate_sort(sort, order, SORT_FIELDS)
    store = request.app.state.repairs
    if has_capability(account.role, "view_all_repairs"):
        repairs = filter_repairs(store.list_repairs(), q)
    else:
        require(account, "view_own_repairs")
        repairs = filter_customer_repairs(store.own_repairs(account.email), q)
    repairs = sort_records(repairs, sort, order, locale)
    return {"repairs": [_repair_view(r, locale) for r in repairs], "count": len(repairs)}


@router.post("/repairs", status_code=201)
async def create_repair(
    body: RepairBody,
    request: Request,
    locale: str = Depends(get_locale),
    account: Account = Depends(requires("manage_repairs")),
):
    state = request.app.state
    draft = RepairDraft()
    if body.client_id:
        draft.select_client(state.clients.get_client(body.client_id))
    for service_id in body.service_ids:
        draft.add_service(state.catalog.get_service(service_id))
    _apply_custom_services(draft, body.custom_services)
    if not draft.selected_services:
        draft.repairs = body.repairs
        draft.cost = parse_price(body.cost)
    draft.additional_info = body.additional_info

    repair = state.repairs.create_repair(draft, user_email=account.email)
    return {"repair": _repair_view(repair, locale)}


@router.get("/repairs/{repair_id}")
async def get_repair(
    repair_id: str,
    request: Request,
    locale: str = Depends(get_locale),
    account: Account = Depends(current_account),
):
    repair = _visible_repair(request, account, repair_id)
    body = {"repair": _repair_view(repair, locale)}
    if has_capability(account.role, "manage_clients"):
        client = request.app.state.clients.find_matching_client(
            repair.owner_name, repair.make, repair.model,
        )
        body["client"] = client.to_dict() if client else None
    return body


@router.put("/repairs/{repair_id}")
async def update_repair(
    repair_id: str,
    body: RepairUpdate,
    request: Request,
    locale: str = Depends(get_locale),
    account: Account = Depends(requires("manage_repairs")),
):
    state = request.app.state
    draft = RepairDraft.from_repair(state.repairs.get_repair(repair_id))

    if body.service_ids is not None:
        keep = set(body.service_ids)
        for line in list(draft.selected_services):
            if line.id not in keep:
                draft.remove_service(line.id)
        present = {s.id for s in draft.selected_services}
        for service_id in body.service_ids:
            if service_id not in present:
                draft.add_service(state.catalog.get_service(service_id))
    _apply_custom_services(draft, body.custom_services)

    if not draft.selected_services:
        if body.repairs is not None:
            draft.repairs = body.repairs
        if body.cost is not None:
            draft.cost = parse_price(body.cost)
    elif body.cost is not None and parse_price(body.cost) != draft.cost:
        raise ValidationError("Cost is the sum of the selected services", field="cost")
    if body.additional_info is not None:
        draft.additional_info = body.additional_info
    if body.status is not None:
        status = RepairStatus.parse(body.status)
        if status is None:
            raise ValidationError(f"Unknown status '{body.status}'", field="status")
        draft.status = status

    repair = state.repairs.update_repair(repair_id, draft)
    return {"repair": _repair_view(repair, locale)}


@router.delete("/repairs/{repair_id}")
async def delete_repair(
    repair_id: str,
    request: Request,
    account: Account = Depends(requires("manage_repairs")),
):
    if not request.app.state.repairs.delete_repair(repair_id):
        raise HTTPException(status_code=404, detail=f"Repair '{repair_id}' not found")
    return {"ok": True}


@router.post("/repairs/{repair_id}/advance")
async def advance_repair(
    repair_id: str,
    request: Request,
    from_status: str = Query(..., alias="from"),
    locale: str = Depends(get_locale),
    account: Account = Depends(requires("manage_repairs")),
):
    repair = request.app.state.repairs.advance_status(repair_id, from_status)
    return {"repair": _repair_view(repair, locale)}


@router.post("/repairs/{repair_id}/cancel")
async def cancel_repair(
    repair_id: str,
    request: Request,
    from_status: str = Query(..., alias="from"),
    locale: str = Depends(get_locale),
    account: Account = Depends(requires("manage_repairs")),
):
    repair = request.app.state.repairs.cancel(repair_id, from_status)
    return {"repair": _repair_view(repair, locale)}


# -- Quotes ------------------------------------------------------------------

def _quote_for(request: Request, account: Account, repair_id: str, locale: str):
    require(account, "download_quote")
    repair = _visible_repair(request, account, repair_id)
    quote_cfg = request.app.state.config.quote
    return build_quote(
        repair, locale,
        vat_rate=quote_cfg.vat_rate,
        validity_days=quote_cfg.quote_validity_days,
    )


@router.get("/repairs/{repair_id}/quote")
async def get_quote(
    repair_id: str,
    request: Request,
    locale: str = Depends(get_locale),
    account: Account = Depends(current_account),
):
    document = _quote_for(request, account, repair_id, locale)
    font_path = request.app.state.config.quote.font_path
    return {
        "quote": document.to_dict(),
        "pdfAvailable": pdf_available(document.locale, font_path),
    }


@router.get("/repairs/{repair_id}/quote.pdf")
async def get_quote_pdf(
    repair_id: str,
    request: Request,
    locale: str = Depends(get_locale),
    account: Account = Depends(current_account),
):
    document = _quote_for(request, account, repair_id, locale)
    data = render_pdf(document, font_path=request.app.state.config.quote.font_path)
    disposition = f"attachment; filename*=UTF-8''{url_quote(document.filename)}"
    return Response(content=data, media_type="application/pdf",
                    headers={"Content-Disposition": disposition})


# -- Customer view -----------------------------------------------------------

@router.get("/my-repairs")
async def my_repairs(
    request: Request,
    q: str = "",
    locale: str = Depends(get_locale),
    account: Account = Depends(requires("view_own_repairs")),
):
    """Repairs the matcher links to the logged-in customer.

    Anything short of a confident match comes with a notice. The
    system-wide diagnostic list is never sent to customers.
    """
    state = request.app.state
    client = state.clients.find_by_email(account.email)
    result = state.repairs.repairs_for_account(
        account, client,
        fallback=state.config.matcher.fallback_enabled,
        diagnostic_count=state.config.matcher.diagnostic_count,
    )
    repairs = filter_customer_repairs(result.repairs, q)
    return {
        "repairs": [_repair_view(r, locale) for r in repairs],
        "reasons": result.reasons,
        "confidence": result.confidence,
        "notice": "" if result.confidence == CONFIDENT else match_notice(result.confidence, locale),
    }


# -- Reference data ----------------------------------------------------------

@router.get("/status-colors")
async def status_colors(locale: str = Depends(get_locale)):
    return {
        "colors": {s.value: c for s, c in STATUS_COLORS.items()},
        "unknown": UNKNOWN_STATUS_COLOR,
        "legend": status_legend(locale),
    }


# -- Admin -------------------------------------------------------------------

@router.get("/admin/mechanics")
async def list_mechanics(request: Request, account: Account = Depends(requires("manage_accounts"))):
    mechanics = request.app.state.accounts.list_accounts(role=ROLE_MECHANIC)
    return {"mechanics": [a.to_dict() for a in mechanics]}


@router.post("/admin/mechanics")
async def grant_mechanic(
    body: GrantBody,
    request: Request,
    account: Account = Depends(requires("manage_accounts")),
):
    granted = request.app.state.accounts.grant_role(body.email, body.role)
    return {"account": granted.to_dict()}


@router.get("/events")
async def get_events(
    request: Request,
    count: int = 200,
    category: Optional[str] = None,
    account: Account = Depends(requires("view_events")),
):
    return {"events": request.app.state.event_logger.get_recent(count, category)}


@router.get("/health")
async def health(request: Request):
    state = request.app.state
    font_path = state.config.quote.font_path
    return {
        "status": "ok",
        "pdf_available": {
            loc: pdf_available(loc, font_path) for loc in state.config.locale.supported
        },
        "sessions": state.session_manager.active_session_count,
    }
