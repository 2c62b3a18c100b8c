# model/ledger.py
"""
Transaction ledger ("receivables"): one row per checkout attempt.

  pending -> paid     settlement captured the payment
  pending -> failed   definitive decline, or abandoned claim (sweep)

Both transitions are conditional on the row still being pending, so a
transaction becomes terminal exactly once.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import LedgerAlreadyFinalizedError, TransactionNotFoundError
from ..helpers import new_id, now_ts
from ..infra.sql import GatedAsyncSession
from .db import (
    InventoryUnit, Transaction,
    TX_FAILED, TX_PENDING, TX_TERMINAL, U_RESERVED,
)
from . import inventory

_NO_SYNC = {"synchronize_session": False}


# UN-GATED internal function
async def insert_transaction(
    session: AsyncSession,
    *,
    buyer_id: str,
    manager_id: str,
    event_id: str,
    total_value: float,
    created_at: Optional[float] = None,
) -> str:
    transaction_id = new_id()
    await session.execute(insert(Transaction).values(
        id=transaction_id,
        client_user_id=buyer_id,
        manager_user_id=manager_id,
        event_id=event_id,
        total_value=total_value,
        status=TX_PENDING,
        wristband_analytics_ids=[],
        payment_gateway_id=None,
        created_at=created_at if created_at is not None else now_ts(),
    ))
    return transaction_id


# UN-GATED internal function
async def attach_units(
    session: AsyncSession, transaction_id: str, unit_ids: List[str]
) -> None:
    await session.execute(
        update(Transaction)
        .where(Transaction.id == transaction_id)
        .values(wristband_analytics_ids=list(unit_ids))
        .execution_options(**_NO_SYNC)
    )


# UN-GATED internal function
async def try_finalize(
    session: AsyncSession,
    transaction_id: str,
    status: str,
    gateway_ref: Optional[str] = None,
) -> bool:
    if status not in TX_TERMINAL:
        raise ValueError(f"not a terminal status: {status!r}")
    res = await session.execute(
        update(Transaction)
        .where(Transaction.id == transaction_id,
               Transaction.status == TX_PENDING)
        .values(status=status, payment_gateway_id=gateway_ref,
                updated_at=now_ts())
        .execution_options(**_NO_SYNC)
    )
    return res.rowcount == 1


async def finalize(
    db: GatedAsyncSession,
    transaction_id: str,
    status: str,
    gateway_ref: Optional[str] = None,
) -> None:
    """
    Raises LedgerAlreadyFinalizedError if the transaction is already
    terminal, TransactionNotFoundError if it does not exist.
    """
    async with db.gated():
        async with db.session.begin():
            if await try_finalize(db.session, transaction_id, status,
                                  gateway_ref):
                return
            current = (await db.session.execute(
                select(Transaction.status)
                .where(Transaction.id == transaction_id)
            )).scalar_one_or_none()
    if current is None:
        raise TransactionNotFoundError(transaction_id)
    raise LedgerAlreadyFinalizedError(transaction_id, current)


async def expire_and_release(
    db: GatedAsyncSession, transaction_id: str
) -> Optional[int]:
    """
    Fail a still-pending transaction and release its units in one DB
    transaction. None if it was no longer pending.
    """
    async with db.gated():
        async with db.session.begin():
            if not await try_finalize(db.session, transaction_id, TX_FAILED):
                return None
            return await inventory.release_claims(db.session, transaction_id)


async def release_failed(db: GatedAsyncSession, transaction_id: str) -> int:
    async with db.gated():
        async with db.session.begin():
            status = (await db.session.execute(
                select(Transaction.status)
                .where(Transaction.id == transaction_id)
            )).scalar_one_or_none()
            if status != TX_FAILED:
                return 0
            return await inventory.release_claims(db.session, transaction_id)


# ------------------------------------------------------------------------------
# Read APIs
# ------------------------------------------------------------------------------

async def get_transaction(
    db: GatedAsyncSession, transaction_id: str
) -> Optional[Dict[str, Any]]:
    async with db.gated():
        async with db.session.begin():
            row = (await db.session.execute(
                select(
                    Transaction.id, Transaction.client_user_id,
                    Transaction.manager_user_id, Transaction.event_id,
                    Transaction.total_value, Transaction.status,
                    Transaction.wristband_analytics_ids,
                    Transaction.payment_gateway_id, Transaction.created_at,
                    Transaction.updated_at,
                ).where(Transaction.id == transaction_id)
            )).mappings().first()
    return dict(row) if row else None


async def list_stale_pending(
    db: GatedAsyncSession, cutoff: float, limit: int = 500
) -> List[str]:
    async with db.gated():
        async with db.session.begin():
            return list((await db.session.execute(
                select(Transaction.id)
                .where(Transaction.status == TX_PENDING,
                       Transaction.created_at < cutoff)
                .order_by(Transaction.created_at)
                .limit(limit)
            )).scalars())


async def list_pending(
    db: GatedAsyncSession, limit: int = 200
) -> List[Dict[str, Any]]:
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(Transaction.id, Transaction.created_at)
                .where(Transaction.status == TX_PENDING)
                .order_by(Transaction.created_at.desc())
                .limit(limit)
            )).all()
    return [{"transaction_id": r.id, "created_at": r.created_at}
            for r in rows]


async def count_pending(db: GatedAsyncSession) -> int:
    async with db.gated():
        async with db.session.begin():
            return int((await db.session.execute(
                select(func.count(Transaction.id))
                .where(Transaction.status == TX_PENDING)
            )).scalar_one())


async def list_failed_with_claims(
    db: GatedAsyncSession, limit: int = 500
) -> List[str]:
    async with db.gated():
        async with db.session.begin():
            return list((await db.session.execute(
                select(Transaction.id)
                .join(InventoryUnit,
                      InventoryUnit.transaction_id == Transaction.id)
                .where(Transaction.status == TX_FAILED,
                       InventoryUnit.status == U_RESERVED)
                .distinct()
                .limit(limit)
            )).scalars())
