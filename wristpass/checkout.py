# wristpass/checkout.py
"""
Ticket purchase: reservation (claim units + pending ledger row, atomically)
followed by payment settlement.

    reserve()  -> one DB transaction: ledger row + CAS claim per ticket type
    settle()   -> gateway round trip, then ledger + unit write-back

Settlement outcomes:
    captured        ledger paid, units used          CheckoutResult(paid)
    declined        ledger failed, units untouched   PaymentFailedError
    no answer       ledger stays pending             CheckoutResult(pending)
    captured but write-back failed                   AssignmentFailedError
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from loguru import logger

from .errors import (
    AssignmentFailedError, NotFoundError, PaymentFailedError,
    PaymentNotConfiguredError, ValidationFailedError,
)
from .helpers import money, now_ts, to_iso
from .infra.sql import GatedAsyncSession
from .infra.timings import timeit
from .mockpay import ChargeRequest, ChargeResult, GatewayUnavailable, PaymentGateway
from .model import catalog, inventory, ledger
from .model.catalog import EventInfo, PaymentCredentials
from .model.db import TX_FAILED, TX_PAID, TX_PENDING


@dataclass(frozen=True)
class PurchaseItem:
    ticket_type_id: str
    quantity: int
    unit_price: float


@dataclass
class Reservation:
    transaction_id: str
    buyer_id: str
    event: EventInfo
    total_value: float
    created_at: float
    units_by_type: Dict[str, List[str]] = field(default_factory=dict)
    unit_prices: Dict[str, float] = field(default_factory=dict)

    @property
    def unit_ids(self) -> List[str]:
        return [u for ids in self.units_by_type.values() for u in ids]


@dataclass(frozen=True)
class CheckoutResult:
    transaction_id: str
    status: str
    tickets_assigned: int = 0
    gateway_ref: Optional[str] = None


def order_total(items: Sequence[PurchaseItem]) -> float:
    return money(sum(i.unit_price * i.quantity for i in items))


def validate_items(items: Sequence[PurchaseItem]) -> None:
    if not items:
        raise ValidationFailedError("Missing event details or purchase items")
    seen = set()
    for item in items:
        if not item.ticket_type_id:
            raise ValidationFailedError("ticketTypeId is required")
        if item.quantity < 1:
            raise ValidationFailedError("quantity must be at least 1")
        if item.unit_price < 0:
            raise ValidationFailedError("price must not be negative")
        if item.ticket_type_id in seen:
            raise ValidationFailedError(
                f"Ticket type {item.ticket_type_id} is listed twice"
            )
        seen.add(item.ticket_type_id)


# ----------------------------
# Reservation allocator
# ----------------------------
async def reserve(
    db: GatedAsyncSession,
    pending,
    *,
    buyer_id: str,
    event: EventInfo,
    items: Sequence[PurchaseItem],
) -> Reservation:
    """
    Claim every requested unit and record the pending transaction, or claim
    nothing. InsufficientInventoryError names the first short ticket type in
    id order.
    """
    created_at = now_ts()
    reservation = Reservation(
        transaction_id="",
        buyer_id=buyer_id,
        event=event,
        total_value=order_total(items),
        created_at=created_at,
        unit_prices={i.ticket_type_id: money(i.unit_price) for i in items},
    )

    async with timeit("checkout.reserve"):
        async with db.gated():
            async with db.session.begin():
                # first write of the transaction; SQLite takes its write
                # lock here
                tx_id = await ledger.insert_transaction(
                    db.session,
                    buyer_id=buyer_id,
                    manager_id=event.manager_user_id,
                    event_id=event.id,
                    total_value=reservation.total_value,
                    created_at=created_at,
                )
                # ticket types are share-locked in id order, the order a
                # mass status update locks them in
                for item in sorted(items, key=lambda i: i.ticket_type_id):
                    reservation.units_by_type[item.ticket_type_id] = (
                        await inventory.claim_for_type(
                            db.session,
                            event_id=event.id,
                            ticket_type_id=item.ticket_type_id,
                            quantity=item.quantity,
                            transaction_id=tx_id,
                        )
                    )
                await ledger.attach_units(
                    db.session, tx_id, reservation.unit_ids
                )

    reservation.transaction_id = tx_id
    await _index(pending, tx_id, created_at)
    logger.bind(transaction_id=tx_id, event_id=event.id).info(
        "claimed {} units for buyer {}", len(reservation.unit_ids), buyer_id
    )
    return reservation


# ----------------------------
# Payment settlement
# ----------------------------
async def _index(pending, transaction_id: str, created_at: float) -> None:
    # the sweep also reads the ledger, so an unindexed claim still expires
    try:
        await pending.add(transaction_id, created_at)
    except Exception:
        logger.bind(transaction_id=transaction_id).exception(
            "could not add transaction to the pending index"
        )


async def _unindex(pending, transaction_id: str) -> None:
    # the ledger is authoritative; a stale index entry only costs the sweep
    # one no-op conditional update
    try:
        await pending.remove(transaction_id)
    except Exception:
        logger.bind(transaction_id=transaction_id).exception(
            "could not drop transaction from the pending index"
        )


async def settle(
    db: GatedAsyncSession,
    pending,
    gateway: PaymentGateway,
    reservation: Reservation,
    credentials: PaymentCredentials,
    *,
    timeout: float,
) -> CheckoutResult:
    tx_id = reservation.transaction_id
    log = logger.bind(transaction_id=tx_id, event_id=reservation.event.id)
    request = ChargeRequest(
        transaction_id=tx_id,
        amount=reservation.total_value,
        buyer_id=reservation.buyer_id,
        manager_id=reservation.event.manager_user_id,
        credentials=credentials,
    )

    try:
        async with timeit("payment.charge"):
            result = await asyncio.wait_for(gateway.charge(request), timeout)
    except asyncio.TimeoutError:
        log.warning(
            "no payment outcome after {}s; transaction stays pending", timeout
        )
        return CheckoutResult(transaction_id=tx_id, status=TX_PENDING)
    except GatewayUnavailable as e:
        result = ChargeResult(succeeded=False, reason=f"gateway unavailable: {e}")

    if not result.succeeded:
        async with timeit("ledger.finalize"):
            await ledger.finalize(db, tx_id, TX_FAILED)
        await _unindex(pending, tx_id)
        log.info("payment failed: {}", result.reason)
        raise PaymentFailedError(tx_id)

    # funds are captured from here on: every failure is a reconciliation case
    try:
        async with timeit("ledger.finalize"):
            await ledger.finalize(db, tx_id, TX_PAID, result.reference)
        await _unindex(pending, tx_id)
        async with timeit("inventory.assign"):
            assigned = await inventory.assign_units(
                db,
                transaction_id=tx_id,
                buyer_id=reservation.buyer_id,
                units_by_type=reservation.units_by_type,
                unit_prices=reservation.unit_prices,
                total_paid=reservation.total_value,
                purchase_date=to_iso(now_ts()),
            )
    except Exception as e:
        log.opt(exception=e).critical(
            "payment {} captured but ticket assignment failed; "
            "manual reconciliation required", result.reference
        )
        if isinstance(e, AssignmentFailedError):
            raise
        raise AssignmentFailedError(tx_id) from e

    log.info("paid {} via {}, {} units assigned",
             reservation.total_value, result.reference, assigned)
    return CheckoutResult(
        transaction_id=tx_id,
        status=TX_PAID,
        tickets_assigned=assigned,
        gateway_ref=result.reference,
    )


async def process_purchase(
    db: GatedAsyncSession,
    pending,
    gateway: PaymentGateway,
    *,
    buyer_id: str,
    event_id: str,
    items: Sequence[PurchaseItem],
    payment_timeout: float,
) -> CheckoutResult:
    validate_items(items)

    event = await catalog.get_event(db, event_id)
    if event is None:
        raise NotFoundError("Event not found or manager data missing.")

    credentials = await catalog.get_payment_credentials(db, event.company_id)
    if credentials is None:
        raise PaymentNotConfiguredError()

    prices = await inventory.ticket_type_prices(
        db, event.id, [i.ticket_type_id for i in items]
    )
    for item in items:
        current = prices.get(item.ticket_type_id)
        # unknown types fall through to the claim, which answers 409
        if current is not None and abs(current - item.unit_price) > 0.005:
            raise ValidationFailedError(
                f"Price for ticket type {item.ticket_type_id} does not match "
                "the current price."
            )

    reservation = await reserve(
        db, pending, buyer_id=buyer_id, event=event, items=items
    )
    return await settle(
        db, pending, gateway, reservation, credentials,
        timeout=payment_timeout,
    )
