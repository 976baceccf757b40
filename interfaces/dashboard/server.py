"""
Shop Server

FastAPI application for the auto-repair shop. Builds the shared state
(document store, stores, sessions, audit trail), mounts the /api/v1 router
and maps domain errors onto HTTP responses.

Run with:
    uvicorn interfaces.dashboard.server:create_app --factory --host 0.0.0.0 --port 8080

or through shop_launcher.py.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.config import ShopConfig, get_config
from core.document_store import DocumentStore
from core.errors import PermissionDenied, QuoteRenderError, ShopError, StorageError, ValidationError
from core.event_logger import EventLogger
from interfaces.api.routes import router as api_router
from security.auth import AccountStore, SessionManager
from tools.shop.catalog import ServiceCatalog
from tools.shop.clients import ClientStore
from tools.shop.repairs import RepairStore

logger = logging.getLogger("shop.server")

# Shown instead of the internal error text for server-side failures
_GENERIC_MESSAGES = {
    StorageError: "The shop database is temporarily unavailable. Please try again.",
    QuoteRenderError: "The quote PDF cannot be generated right now.",
}


def _error_response(request: Request, exc: ShopError) -> JSONResponse:
    events: EventLogger = request.app.state.event_logger
    where = f"{request.method} {request.url.path}"
    body = {"detail": str(exc)}

    if exc.status_code >= 500:
        logger.error("%s failed: %s", where, exc)
        events.error("system", "Request failed", path=where, error=str(exc))
        body["detail"] = next(
            (msg for cls, msg in _GENERIC_MESSAGES.items() if isinstance(exc, cls)),
            "Something went wrong. Please try again.",
        )
    elif isinstance(exc, PermissionDenied):
        logger.warning("%s denied: %s", where, exc)
        events.warn("auth", "Permission denied", path=where)
    else:
        logger.info("%s rejected: %s", where, exc)

    if isinstance(exc, ValidationError) and exc.field:
        body["field"] = exc.field
    return JSONResponse(status_code=exc.status_code, content=body)


def create_app(config: ShopConfig | None = None, db_path: str | None = None) -> FastAPI:
    """Build the shop app.

    Args:
        config:  Settings to use; the global config when omitted.
        db_path: Document store location; ``config.storage.db_path`` when omitted.
    """
    config = config or get_config()
    store = DocumentStore(db_path or config.storage.db_path)
    event_logger = EventLogger(max_events=config.events.max_events)
    clients = ClientStore(store, event_logger)
    accounts = AccountStore(
        store,
        clients,
        event_logger,
        bootstrap_admin_emails=list(config.auth.bootstrap_admin_emails),
        min_password_length=config.auth.min_password_length,
        bcrypt_rounds=config.auth.bcrypt_rounds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Shop server starting up")
        event_logger.info("system", "Shop server starting up")
        yield
        export_dir = Path(config.events.export_dir)
        if event_logger.count:
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            try:
                event_logger.export_json(export_dir / f"events_{stamp}.json")
            except OSError as e:
                logger.warning("Could not export events to %s: %s", export_dir, e)
        store.close()
        logger.info("Shop server shutting down")

    app = FastAPI(title="Auto Service", lifespan=lifespan)

    # Shared state for the routers
    app.state.config = config
    app.state.store = store
    app.state.event_logger = event_logger
    app.state.clients = clients
    app.state.catalog = ServiceCatalog(store, event_logger)
    app.state.repairs = RepairStore(store, event_logger)
    app.state.accounts = accounts
    app.state.session_manager = SessionManager(
        accounts,
        session_timeout=config.auth.session_timeout,
        max_login_attempts=config.auth.max_login_attempts,
        lockout_duration=config.auth.lockout_duration,
    )

    @app.exception_handler(ShopError)
    async def shop_error_handler(request: Request, exc: ShopError):
        return _error_response(request, exc)

    app.include_router(api_router)
    logger.info("Shop app created (db=%s)", db_path or config.storage.db_path)
    return app
