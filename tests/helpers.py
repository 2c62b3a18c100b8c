"""Catalog seeding, a scriptable gateway and row readers shared by tests."""
import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import insert, select

from wristpass.helpers import new_id
from wristpass.infra.sql import GatedAsyncSession
from wristpass.mockpay import (
    ChargeRequest, ChargeResult, GatewayUnavailable, PaymentGateway
)
from wristpass.model.db import (
    Company, Event, InventoryUnit, PaymentSettings, TicketType, Transaction,
    UserCompany,
)
from wristpass.provisioning import provision

MANAGER_ID = "manager-1"
BUYER_ID = "buyer-1"
OTHER_BUYER_ID = "buyer-2"
OUTSIDER_ID = "outsider-1"

TOKENS = {
    "manager-token": MANAGER_ID,
    "buyer-token": BUYER_ID,
    "other-buyer-token": OTHER_BUYER_ID,
    "outsider-token": OUTSIDER_ID,
}
ADMIN_TOKEN = "admin-secret"


def auth_header(user_token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {user_token}"}


@dataclass
class Catalog:
    company_id: str
    event_id: str
    other_company_id: str
    other_event_id: str
    orphan_event_id: str
    unpaid_event_id: str


async def seed_catalog(SessionAsync) -> Catalog:
    """
    Two companies. The first one (managed by MANAGER_ID) owns `event_id`
    with payment settings and `unpaid_event_id` under a company without
    them; `orphan_event_id` has no company at all.
    """
    cat = Catalog(
        company_id=new_id(),
        event_id=new_id(),
        other_company_id=new_id(),
        other_event_id=new_id(),
        orphan_event_id=new_id(),
        unpaid_event_id=new_id(),
    )
    unpaid_company_id = new_id()
    async with SessionAsync() as session:
        async with session.begin():
            await session.execute(insert(Company), [
                {"id": cat.company_id, "name": "Acme Shows"},
                {"id": cat.other_company_id, "name": "Other Shows"},
                {"id": unpaid_company_id, "name": "No Keys Ltd"},
            ])
            await session.execute(insert(UserCompany), [
                {"user_id": MANAGER_ID, "company_id": cat.company_id,
                 "role": "owner"},
                {"user_id": MANAGER_ID, "company_id": unpaid_company_id,
                 "role": "owner"},
                {"user_id": OUTSIDER_ID, "company_id": cat.other_company_id,
                 "role": "manager"},
            ])
            await session.execute(insert(Event), [
                {"id": cat.event_id, "company_id": cat.company_id,
                 "user_id": MANAGER_ID, "title": "Summer Fest"},
                {"id": cat.other_event_id,
                 "company_id": cat.other_company_id,
                 "user_id": OUTSIDER_ID, "title": "Other Fest"},
                {"id": cat.orphan_event_id, "company_id": None,
                 "user_id": MANAGER_ID, "title": "Orphan"},
                {"id": cat.unpaid_event_id, "company_id": unpaid_company_id,
                 "user_id": MANAGER_ID, "title": "No Keys Fest"},
            ])
            await session.execute(insert(PaymentSettings).values(
                id=new_id(), company_id=cat.company_id,
                api_key="key", api_token="token",
            ))
    return cat


async def make_ticket_type(
    db: GatedAsyncSession,
    cat: Catalog,
    code: str = "VIP",
    quantity: int = 10,
    price: float = 100.0,
) -> str:
    res = await provision(
        db,
        requestor_id=MANAGER_ID,
        event_id=cat.event_id,
        company_id=cat.company_id,
        base_code=code,
        access_type=code.lower(),
        price=price,
        quantity=quantity,
    )
    return res.ticket_type_id


async def units_of(db: GatedAsyncSession, ticket_type_id: str) -> List[dict]:
    async with db.session.begin():
        rows = (await db.session.execute(
            select(InventoryUnit.__table__)
            .where(InventoryUnit.wristband_id == ticket_type_id)
            .order_by(InventoryUnit.sequential_number)
        )).mappings().all()
    return [dict(r) for r in rows]


async def ticket_types(db: GatedAsyncSession, event_id: str) -> List[dict]:
    async with db.session.begin():
        rows = (await db.session.execute(
            select(TicketType.__table__)
            .where(TicketType.event_id == event_id)
        )).mappings().all()
    return [dict(r) for r in rows]


async def transactions(db: GatedAsyncSession) -> List[dict]:
    async with db.session.begin():
        rows = (await db.session.execute(
            select(Transaction.__table__)
        )).mappings().all()
    return [dict(r) for r in rows]


class ScriptedGateway(PaymentGateway):
    """
    outcome: succeed | decline | unavailable | hang
    """

    def __init__(self, outcome: str = "succeed",
                 delay: float = 0.0) -> None:
        self.outcome = outcome
        self.delay = delay
        self.calls: List[ChargeRequest] = []

    async def charge(self, request: ChargeRequest) -> ChargeResult:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.outcome == "hang":
            await asyncio.sleep(3600)
        if self.outcome == "unavailable":
            raise GatewayUnavailable("connection refused")
        if self.outcome == "decline":
            return ChargeResult(succeeded=False, reason="insufficient funds")
        return ChargeResult(
            succeeded=True, reference=f"TEST-{request.transaction_id[:8]}"
        )


def count_by(units: List[dict], key: str = "status") -> Dict[Optional[str], int]:
    out: Dict[Optional[str], int] = {}
    for u in units:
        out[u[key]] = out.get(u[key], 0) + 1
    return out
