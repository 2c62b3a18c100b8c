# model/catalog.py
"""
Read side of the catalog & profile store: events, company membership and
per-company payment gateway credentials.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select

from ..infra.sql import GatedAsyncSession
from .db import Event, PaymentSettings, UserCompany


@dataclass(frozen=True)
class EventInfo:
    id: str
    company_id: Optional[str]
    manager_user_id: str
    title: str


@dataclass(frozen=True)
class PaymentCredentials:
    api_key: str
    api_token: str


async def get_event(db: GatedAsyncSession, event_id: str) -> Optional[EventInfo]:
    async with db.gated():
        async with db.session.begin():
            row = (await db.session.execute(
                select(Event.id, Event.company_id, Event.user_id, Event.title)
                .where(Event.id == event_id)
            )).first()
    if row is None:
        return None
    return EventInfo(
        id=row.id,
        company_id=row.company_id,
        manager_user_id=row.user_id,
        title=row.title or "",
    )


async def company_role(
    db: GatedAsyncSession, user_id: str, company_id: str
) -> Optional[str]:
    async with db.gated():
        async with db.session.begin():
            return (await db.session.execute(
                select(UserCompany.role)
                .where(UserCompany.user_id == user_id,
                       UserCompany.company_id == company_id)
                .limit(1)
            )).scalar_one_or_none()


async def get_payment_credentials(
    db: GatedAsyncSession, company_id: Optional[str]
) -> Optional[PaymentCredentials]:
    """None unless both the key and the token are configured."""
    if not company_id:
        return None
    async with db.gated():
        async with db.session.begin():
            row = (await db.session.execute(
                select(PaymentSettings.api_key, PaymentSettings.api_token)
                .where(PaymentSettings.company_id == company_id)
                .limit(1)
            )).first()
    if row is None or not row.api_key or not row.api_token:
        return None
    return PaymentCredentials(api_key=row.api_key, api_token=row.api_token)
