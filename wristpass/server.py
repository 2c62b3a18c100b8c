from __future__ import annotations
import os
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from loguru import logger

from . import checkout, mass_status, provisioning, reconcile
from .auth import AuthProvider, RemoteAuth, StaticTokenAuth
from .checkout import PurchaseItem
from .errors import (
    AuthenticationError, ForbiddenError, NotFoundError, WristpassError
)
from .helpers import bearer_token, ct_equal, to_iso
from .infra.log import setup_logging
from .infra.sql import GatedAsyncSession, open_database
from .infra.timings import install_shutdown_report, snapshot
from .mockpay import MockPay, PaymentGateway
from .model import inventory, ledger
from .model.db import TX_PENDING, create_schema
from .model.event_data import EVENT_PURCHASE, parse_event_data
from .model.pending import BACKEND as PENDING_BACKEND, new_index
from .schemas import MassStatusRequest, ProvisionRequest, PurchaseRequest

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./wristpass.db")
PAYMENT_TIMEOUT_SECONDS = float(os.environ.get("PAYMENT_TIMEOUT_SECONDS", "15"))

AUTH_BACKEND = os.environ.get("AUTH_BACKEND", "remote").lower()  # remote|static
AUTH_URL = os.environ.get("AUTH_URL", "http://localhost:54321")
AUTH_ANON_KEY = os.environ.get("AUTH_ANON_KEY", "")
AUTH_STATIC_TOKENS = os.environ.get("AUTH_STATIC_TOKENS", "")

ADMIN_TOKEN = os.environ.get("ADMIN_TOKEN", "")
REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")

router = APIRouter()


# ----------------------------
# Dependencies
# ----------------------------
async def get_db(request: Request) -> GatedAsyncSession:
    async with request.app.state.database.open() as db:
        yield db


async def pending_index(
    request: Request, db: GatedAsyncSession = Depends(get_db)
):
    if PENDING_BACKEND == "redis":
        return new_index(r=request.app.state.redis)
    return new_index(db=db)


async def current_user_id(
    request: Request, authorization: Optional[str] = Header(None)
) -> str:
    if not authorization:
        raise AuthenticationError("Unauthorized: Missing Authorization header")
    token = bearer_token(authorization)
    user_id = None
    if token:
        user_id = await request.app.state.auth.resolve(token)
    if not user_id:
        raise AuthenticationError("Unauthorized: Invalid token")
    return user_id


def require_admin(
    request: Request, authorization: Optional[str] = Header(None)
) -> None:
    expected = request.app.state.admin_token
    if not expected:
        raise ForbiddenError("Admin API is disabled.")
    token = bearer_token(authorization)
    if token is None:
        raise AuthenticationError("Unauthorized: Missing admin token")
    if not ct_equal(token, expected):
        raise ForbiddenError("Forbidden: Invalid admin token")


# ----------------------------
# Exception handlers
# ----------------------------
async def _wristpass_error(request: Request, exc: WristpassError):
    if exc.status_code >= 500:
        logger.bind(path=request.url.path).error("{}: {}",
                                                 type(exc).__name__, exc)
    return ORJSONResponse(exc.body(), status_code=exc.status_code)


async def _validation_error(request: Request, exc: RequestValidationError):
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())[1:])
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
    message = "; ".join(parts) or "Invalid request body"
    return ORJSONResponse({"error": message}, status_code=400)


async def _unhandled_error(request: Request, exc: Exception):
    # raw driver errors stay in the log
    logger.bind(path=request.url.path).opt(exception=exc).error(
        "unhandled error"
    )
    return ORJSONResponse({"error": "Internal Server Error"}, status_code=500)


# ----------------------------
# Functions
# ----------------------------
@router.post("/functions/process-ticket-purchase")
async def process_ticket_purchase(
    body: PurchaseRequest,
    request: Request,
    user_id: str = Depends(current_user_id),
    db: GatedAsyncSession = Depends(get_db),
    pending=Depends(pending_index),
):
    items = [
        PurchaseItem(
            ticket_type_id=i.ticket_type_id,
            quantity=i.quantity,
            unit_price=i.price,
        )
        for i in body.purchase_items
    ]
    result = await checkout.process_purchase(
        db,
        pending,
        request.app.state.gateway,
        buyer_id=user_id,
        event_id=body.event_id,
        items=items,
        payment_timeout=request.app.state.payment_timeout,
    )
    if result.status == TX_PENDING:
        return ORJSONResponse({
            "message": "Payment is being processed; check the transaction "
                       "status later.",
            "transactionId": result.transaction_id,
            "status": result.status,
        }, status_code=202)
    return {
        "message": "Purchase completed successfully.",
        "transactionId": result.transaction_id,
        "status": result.status,
        "ticketsAssigned": result.tickets_assigned,
    }


@router.post("/functions/create-wristbands-batch")
async def create_wristbands_batch(
    body: ProvisionRequest,
    user_id: str = Depends(current_user_id),
    db: GatedAsyncSession = Depends(get_db),
):
    result = await provisioning.provision(
        db,
        requestor_id=user_id,
        event_id=body.event_id,
        company_id=body.company_id,
        base_code=body.base_code,
        access_type=body.access_type,
        price=body.price,
        quantity=body.quantity,
    )
    return {
        "message": f'Successfully created wristband "{result.code}" and '
                   f"{result.units_created} analytics records.",
        "count": result.units_created,
        "wristbandId": result.ticket_type_id,
    }


@router.post("/functions/update-wristband-status-mass")
async def update_wristband_status_mass(
    body: MassStatusRequest,
    user_id: str = Depends(current_user_id),
    db: GatedAsyncSession = Depends(get_db),
):
    result = await mass_status.update_event_wristband_status(
        db,
        event_id=body.event_id,
        requestor_user_id=user_id,
        new_status=body.new_status,
    )
    if result.ticket_types_updated == 0:
        return {
            "message": "No wristbands found for this event to update.",
            "count": 0,
        }
    return {
        "message": f"Successfully updated {result.ticket_types_updated} "
                   "wristbands and analytics records.",
        "count": result.ticket_types_updated,
    }


# ----------------------------
# API: reads
# ----------------------------
@router.get("/api/events/{event_id}/ticket-types")
async def get_event_ticket_types(
    event_id: str, db: GatedAsyncSession = Depends(get_db)
):
    items = await inventory.event_availability(db, event_id)
    return {"event_id": event_id, "items": items}


@router.get("/api/transactions/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    user_id: str = Depends(current_user_id),
    db: GatedAsyncSession = Depends(get_db),
):
    row = await ledger.get_transaction(db, transaction_id)
    # other buyers' transactions look exactly like missing ones
    if row is None or row["client_user_id"] != user_id:
        raise NotFoundError("Transaction not found.")
    tickets = []
    for unit in await inventory.units_for_transaction(db, transaction_id):
        ticket = {
            "code": unit["code_wristbands"],
            "sequentialNumber": unit["sequential_number"],
            "status": unit["status"],
        }
        # only sold units carry purchase data
        if unit["event_type"] == EVENT_PURCHASE:
            data = parse_event_data(unit["event_type"], unit["event_data"])
            ticket["unitPrice"] = data.unit_price
            ticket["purchaseDate"] = data.purchase_date
        tickets.append(ticket)

    return {
        "transactionId": row["id"],
        "eventId": row["event_id"],
        "status": row["status"],
        "totalValue": row["total_value"],
        "ticketCount": len(row["wristband_analytics_ids"] or []),
        "paymentGatewayId": row["payment_gateway_id"],
        "createdAt": to_iso(row["created_at"]),
        "updatedAt": to_iso(row["updated_at"]),
        "tickets": tickets,
    }


# ---- Admin
@router.get("/api/admin/pending", dependencies=[Depends(require_admin)])
async def api_admin_pending(limit: int = 100, pending=Depends(pending_index)):
    limit = max(1, min(limit, 500))
    total, items = await pending.recent(limit=limit)
    return {"items": items, "limit": limit, "total": total,
            "backend": PENDING_BACKEND}


@router.get("/api/admin/timings", dependencies=[Depends(require_admin)])
async def api_admin_timings():
    return {"timings": snapshot()}


@router.post("/api/admin/reconcile", dependencies=[Depends(require_admin)])
async def api_admin_reconcile(
    request: Request,
    db: GatedAsyncSession = Depends(get_db),
    pending=Depends(pending_index),
):
    report = await reconcile.sweep(
        db, pending, claim_ttl_seconds=request.app.state.claim_ttl_seconds
    )
    return report.as_dict()


# ----------------------------
# App factory
# ----------------------------
def _auth_from_env(app: FastAPI) -> AuthProvider:
    if AUTH_BACKEND == "static":
        return StaticTokenAuth.from_env(AUTH_STATIC_TOKENS)
    return RemoteAuth(app.state.http, AUTH_URL, AUTH_ANON_KEY)


def create_app(
    database_url: Optional[str] = None,
    *,
    auth: Optional[AuthProvider] = None,
    gateway: Optional[PaymentGateway] = None,
    admin_token: Optional[str] = None,
    payment_timeout: float = PAYMENT_TIMEOUT_SECONDS,
    claim_ttl_seconds: float = reconcile.CLAIM_TTL_SECONDS,
) -> FastAPI:
    app = FastAPI(title="Wristpass", default_response_class=ORJSONResponse)

    database = open_database(database_url or DATABASE_URL)
    engine = database.engine
    app.state.database = database
    app.state.gateway = gateway or MockPay()
    app.state.admin_token = ADMIN_TOKEN if admin_token is None else admin_token
    app.state.payment_timeout = payment_timeout
    app.state.claim_ttl_seconds = claim_ttl_seconds
    app.state.auth = auth
    app.state.http = None
    app.state.redis = None

    app.add_exception_handler(WristpassError, _wristpass_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(Exception, _unhandled_error)
    app.include_router(router)

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _say_hello():
        setup_logging()
        logger.info(
            "Wristpass starting: db={} pending-index={} auth={}",
            engine.dialect.name, PENDING_BACKEND,
            type(app.state.auth).__name__ if app.state.auth else AUTH_BACKEND,
        )

    @app.on_event("startup")
    async def _db_init():
        async with engine.begin() as conn:
            await create_schema(conn)

    @app.on_event("startup")
    async def _http_client_start():
        app.state.http = httpx.AsyncClient(
            timeout=5.0,
            limits=httpx.Limits(
                max_connections=256, max_keepalive_connections=256
            ),
        )
        if app.state.auth is None:
            app.state.auth = _auth_from_env(app)

    @app.on_event("startup")
    async def _redis_start():
        if PENDING_BACKEND == "redis":
            app.state.redis = redis.from_url(
                REDIS_URL,
                decode_responses=True,
                max_connections=int(os.getenv("REDIS_MAX_CONN", "256")),
                socket_timeout=2.0,
                socket_connect_timeout=2.0,
                retry_on_timeout=True,
            )

    @app.on_event("shutdown")
    async def _http_client_stop():
        http = app.state.http
        if http is not None:
            await http.aclose()
            app.state.http = None

    @app.on_event("shutdown")
    async def _redis_stop():
        r = app.state.redis
        if r is not None:
            await r.aclose()
            app.state.redis = None

    @app.on_event("shutdown")
    async def _engine_stop():
        await database.dispose()

    install_shutdown_report(app)
    return app


app = create_app()
