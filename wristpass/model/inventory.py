# model/inventory.py
"""
Inventory unit store.

Units are the only rows contended by concurrent buyers. Every state change on
them is a compare-and-swap: the UPDATE re-states the status it expects and the
affected row count is checked, so a unit moves

    active -> reserved    (claim_for_type, inside the allocator's transaction)
    reserved -> used      (assign_units, after a captured payment)
    reserved -> active    (release_claims, reconciliation sweep)

at most once per claim, whatever the isolation level.
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import (
    AssignmentFailedError, DuplicateCodeError, InsufficientInventoryError,
    SoldUnitsBlockWithdrawalError,
)
from ..helpers import new_id, now_ts
from ..infra.sql import GatedAsyncSession
from .db import (
    InventoryUnit, TicketType,
    TT_ACTIVE, TT_CANCELLED, U_ACTIVE, U_CANCELLED, U_RESERVED, U_USED,
)
from .event_data import (
    EVENT_CREATION, EVENT_PURCHASE, CreationEventData, PurchaseEventData
)

_NO_SYNC = {"synchronize_session": False}


# ------------------------------------------------------------------------------
# Claim / assign / release
# ------------------------------------------------------------------------------

# UN-GATED internal function: runs inside the caller's transaction
async def claim_for_type(
    session: AsyncSession,
    *,
    event_id: str,
    ticket_type_id: str,
    quantity: int,
    transaction_id: str,
) -> List[str]:
    """
    Move exactly `quantity` unsold units of `ticket_type_id` to 'reserved'
    for `transaction_id`, or raise InsufficientInventoryError.

    PostgreSQL: the candidate rows are locked with FOR UPDATE SKIP LOCKED so
    concurrent buyers pick disjoint units. SQLite ignores FOR UPDATE; there
    the caller's transaction already holds the database write lock.
    """
    # share lock on the ticket type: a concurrent mass status update waits
    # for this claim, or this claim sees the new status
    type_status = (await session.execute(
        select(TicketType.status)
        .where(TicketType.id == ticket_type_id,
               TicketType.event_id == event_id)
        .with_for_update(read=True)
    )).scalar_one_or_none()
    if type_status != TT_ACTIVE:
        raise InsufficientInventoryError(ticket_type_id)

    candidates = (
        select(InventoryUnit.id)
        .where(
            InventoryUnit.wristband_id == ticket_type_id,
            InventoryUnit.status == U_ACTIVE,
            InventoryUnit.client_user_id.is_(None),
        )
        .order_by(InventoryUnit.sequential_number)
        .limit(quantity)
        .with_for_update(skip_locked=True)
    )
    unit_ids = list((await session.execute(candidates)).scalars())
    if len(unit_ids) < quantity:
        raise InsufficientInventoryError(ticket_type_id)

    res = await session.execute(
        update(InventoryUnit)
        .where(
            InventoryUnit.id.in_(unit_ids),
            InventoryUnit.status == U_ACTIVE,
            InventoryUnit.client_user_id.is_(None),
        )
        .values(
            status=U_RESERVED,
            transaction_id=transaction_id,
            updated_at=now_ts(),
        )
        .execution_options(**_NO_SYNC)
    )
    if res.rowcount != quantity:
        # someone else swapped a candidate first
        raise InsufficientInventoryError(ticket_type_id)
    return unit_ids


async def assign_units(
    db: GatedAsyncSession,
    *,
    transaction_id: str,
    buyer_id: str,
    units_by_type: Dict[str, List[str]],
    unit_prices: Dict[str, float],
    total_paid: float,
    purchase_date: str,
) -> int:
    """
    reserved -> used for every claimed unit, with purchase event data.
    All-or-nothing: a short count rolls the whole assignment back and raises
    AssignmentFailedError.
    """
    expected = sum(len(ids) for ids in units_by_type.values())
    assigned = 0
    now = now_ts()
    async with db.gated():
        async with db.session.begin():
            for ticket_type_id, unit_ids in units_by_type.items():
                data = PurchaseEventData(
                    purchase_date=purchase_date,
                    total_paid=total_paid,
                    client_id=buyer_id,
                    transaction_id=transaction_id,
                    unit_price=unit_prices.get(ticket_type_id, 0.0),
                )
                res = await db.session.execute(
                    update(InventoryUnit)
                    .where(
                        InventoryUnit.id.in_(unit_ids),
                        InventoryUnit.transaction_id == transaction_id,
                        InventoryUnit.status == U_RESERVED,
                    )
                    .values(
                        status=U_USED,
                        client_user_id=buyer_id,
                        event_type=EVENT_PURCHASE,
                        event_data=data.to_json(),
                        updated_at=now,
                    )
                    .execution_options(**_NO_SYNC)
                )
                assigned += res.rowcount
            if assigned != expected:
                raise AssignmentFailedError(transaction_id)
    return assigned


# UN-GATED internal function
async def release_claims(session: AsyncSession, transaction_id: str) -> int:
    res = await session.execute(
        update(InventoryUnit)
        .where(
            InventoryUnit.transaction_id == transaction_id,
            InventoryUnit.status == U_RESERVED,
            InventoryUnit.client_user_id.is_(None),
        )
        .values(status=U_ACTIVE, transaction_id=None, updated_at=now_ts())
        .execution_options(**_NO_SYNC)
    )
    return int(res.rowcount)


# ------------------------------------------------------------------------------
# Provisioning
# ------------------------------------------------------------------------------

async def insert_ticket_type(
    db: GatedAsyncSession,
    *,
    event_id: str,
    company_id: str,
    manager_user_id: str,
    code: str,
    access_type: str,
    price: float,
) -> str:
    ticket_type_id = new_id()
    try:
        async with db.gated():
            async with db.session.begin():
                await db.session.execute(insert(TicketType).values(
                    id=ticket_type_id,
                    event_id=event_id,
                    company_id=company_id,
                    manager_user_id=manager_user_id,
                    code=code,
                    access_type=access_type,
                    price=price,
                    status=TT_ACTIVE,
                    created_at=now_ts(),
                ))
    except IntegrityError:
        raise DuplicateCodeError(code)
    return ticket_type_id


def creation_rows(
    ticket_type_id: str,
    base: Dict[str, Any],
    first_seq: int,
    count: int,
) -> List[Dict[str, Any]]:
    """Unit rows numbered first_seq .. first_seq + count - 1."""
    now = now_ts()
    rows = []
    for seq in range(first_seq, first_seq + count):
        data = CreationEventData(
            code=base["code"],
            access_type=base["access_type"],
            price=base["price"],
            manager_id=base["manager_id"],
            event_id=base["event_id"],
            company_id=base["company_id"],
            initial_status=U_ACTIVE,
            sequential_entry=seq,
        )
        rows.append({
            "id": new_id(),
            "wristband_id": ticket_type_id,
            "status": U_ACTIVE,
            "client_user_id": None,
            "transaction_id": None,
            "sequential_number": seq,
            "code_wristbands": base["code"],
            "event_type": EVENT_CREATION,
            "event_data": data.to_json(),
            "created_at": now,
            "updated_at": None,
        })
    return rows


async def insert_units(
    db: GatedAsyncSession, rows: List[Dict[str, Any]]
) -> int:
    async with db.gated():
        async with db.session.begin():
            await db.session.execute(insert(InventoryUnit), rows)
    return len(rows)


async def withdraw_ticket_type(
    db: GatedAsyncSession, ticket_type_id: str
) -> None:
    """Cancel a ticket type and its unsold units so nothing more is sold."""
    now = now_ts()
    async with db.gated():
        async with db.session.begin():
            await db.session.execute(
                update(TicketType)
                .where(TicketType.id == ticket_type_id)
                .values(status=TT_CANCELLED)
                .execution_options(**_NO_SYNC)
            )
            await db.session.execute(
                update(InventoryUnit)
                .where(InventoryUnit.wristband_id == ticket_type_id,
                       InventoryUnit.status == U_ACTIVE)
                .values(status=U_CANCELLED, updated_at=now)
                .execution_options(**_NO_SYNC)
            )


async def delete_ticket_type(db: GatedAsyncSession, ticket_type_id: str) -> None:
    # units first; the FK cascade is not relied upon
    async with db.gated():
        async with db.session.begin():
            await db.session.execute(
                delete(InventoryUnit)
                .where(InventoryUnit.wristband_id == ticket_type_id)
                .execution_options(**_NO_SYNC)
            )
            await db.session.execute(
                delete(TicketType)
                .where(TicketType.id == ticket_type_id)
                .execution_options(**_NO_SYNC)
            )


# ------------------------------------------------------------------------------
# Mass status
# ------------------------------------------------------------------------------

# UN-GATED internal function
async def _has_committed_units(session: AsyncSession, type_ids: List[str]) -> bool:
    """True if any unit of these ticket types is sold or held by a claim."""
    row = (await session.execute(
        select(InventoryUnit.id)
        .where(
            InventoryUnit.wristband_id.in_(type_ids),
            or_(
                InventoryUnit.client_user_id.is_not(None),
                InventoryUnit.status == U_RESERVED,
            ),
        )
        .limit(1)
    )).first()
    return row is not None


async def set_event_status(
    db: GatedAsyncSession,
    event_id: str,
    company_id: str,
    new_status: str,
    *,
    refuse_if_committed: bool = False,
) -> int:
    """
    Set `new_status` on every ticket type of the event and on their units.
    Sold or reserved units keep their status. Returns the number of ticket
    types updated.

    With refuse_if_committed, raises SoldUnitsBlockWithdrawalError and changes
    nothing if any unit is sold or reserved. The ticket type rows are updated
    (and so locked) before that check, so no claim can slip in between.

    Ticket type rows are locked in id order, the order claims take them in.
    """
    now = now_ts()
    async with db.gated():
        async with db.session.begin():
            # PostgreSQL: FOR UPDATE in id order; SQLite ignores it and
            # locks the whole database at the UPDATE below
            await db.session.execute(
                select(TicketType.id)
                .where(TicketType.event_id == event_id,
                       TicketType.company_id == company_id)
                .order_by(TicketType.id)
                .with_for_update()
            )
            await db.session.execute(
                update(TicketType)
                .where(TicketType.event_id == event_id,
                       TicketType.company_id == company_id)
                .values(status=new_status)
                .execution_options(**_NO_SYNC)
            )
            type_ids = list((await db.session.execute(
                select(TicketType.id)
                .where(TicketType.event_id == event_id,
                       TicketType.company_id == company_id)
            )).scalars())
            if not type_ids:
                return 0
            if refuse_if_committed and await _has_committed_units(
                db.session, type_ids
            ):
                raise SoldUnitsBlockWithdrawalError()

            await db.session.execute(
                update(InventoryUnit)
                .where(
                    InventoryUnit.wristband_id.in_(type_ids),
                    InventoryUnit.status.not_in((U_USED, U_RESERVED)),
                )
                .values(status=new_status, updated_at=now)
                .execution_options(**_NO_SYNC)
            )
    return len(type_ids)


# ------------------------------------------------------------------------------
# Read APIs
# ------------------------------------------------------------------------------

async def ticket_type_prices(
    db: GatedAsyncSession, event_id: str, ticket_type_ids: Iterable[str]
) -> Dict[str, float]:
    ids = list(ticket_type_ids)
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(TicketType.id, TicketType.price)
                .where(TicketType.event_id == event_id,
                       TicketType.id.in_(ids))
            )).all()
    return {r.id: float(r.price) for r in rows}


async def event_availability(
    db: GatedAsyncSession, event_id: str
) -> List[Dict[str, Any]]:
    """Active ticket types of an event with their unsold unit counts."""
    available = func.count(InventoryUnit.id)
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(
                    TicketType.id, TicketType.code, TicketType.access_type,
                    TicketType.price, available.label("available"),
                )
                .outerjoin(
                    InventoryUnit,
                    (InventoryUnit.wristband_id == TicketType.id)
                    & (InventoryUnit.status == U_ACTIVE)
                    & InventoryUnit.client_user_id.is_(None),
                )
                .where(TicketType.event_id == event_id,
                       TicketType.status == TT_ACTIVE)
                .group_by(TicketType.id, TicketType.code,
                          TicketType.access_type, TicketType.price)
                .order_by(TicketType.code)
            )).mappings().all()
    return [
        {
            "ticket_type_id": r["id"],
            "code": r["code"],
            "access_type": r["access_type"],
            "price": float(r["price"]),
            "available": int(r["available"]),
            "sold_out": int(r["available"]) == 0,
        }
        for r in rows
    ]


async def units_for_transaction(
    db: GatedAsyncSession, transaction_id: str
) -> List[Dict[str, Any]]:
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(
                    InventoryUnit.id, InventoryUnit.code_wristbands,
                    InventoryUnit.sequential_number, InventoryUnit.status,
                    InventoryUnit.event_type, InventoryUnit.event_data,
                )
                .where(InventoryUnit.transaction_id == transaction_id)
                .order_by(InventoryUnit.code_wristbands,
                          InventoryUnit.sequential_number)
            )).mappings().all()
    return [dict(r) for r in rows]
