# wristpass/provisioning.py
from __future__ import annotations
import os
from dataclasses import dataclass

from loguru import logger

from .errors import (
    ForbiddenError, NotFoundError, ProvisioningError, ValidationFailedError
)
from .helpers import money
from .infra.sql import GatedAsyncSession
from .infra.timings import timeit
from .model import catalog, inventory

PROVISION_BATCH_SIZE = int(os.environ.get("PROVISION_BATCH_SIZE", "100"))
PROVISION_MAX_QUANTITY = int(os.environ.get("PROVISION_MAX_QUANTITY", "10000"))


@dataclass(frozen=True)
class ProvisionResult:
    ticket_type_id: str
    code: str
    units_created: int


async def _roll_back(db: GatedAsyncSession, log, ticket_type_id: str) -> None:
    # withdrawn first, so a failed delete leaves only cancelled units behind
    await inventory.withdraw_ticket_type(db, ticket_type_id)
    try:
        await inventory.delete_ticket_type(db, ticket_type_id)
    except Exception:
        log.exception("could not delete wristband {}; left cancelled",
                      ticket_type_id)


async def provision(
    db: GatedAsyncSession,
    *,
    requestor_id: str,
    event_id: str,
    company_id: str,
    base_code: str,
    access_type: str,
    price: float,
    quantity: int,
    batch_size: int = PROVISION_BATCH_SIZE,
) -> ProvisionResult:
    """
    Create one ticket type and `quantity` units numbered 1..quantity.

    All-or-nothing for the caller: a duplicate code creates nothing
    (DuplicateCodeError), and a failing unit batch deletes every unit written
    so far plus the ticket type before raising ProvisioningError. If that
    delete fails too, the ticket type is left cancelled.
    """
    if quantity < 1:
        raise ValidationFailedError("quantity must be at least 1")
    if quantity > PROVISION_MAX_QUANTITY:
        raise ValidationFailedError(
            f"quantity must be at most {PROVISION_MAX_QUANTITY}"
        )
    if price < 0:
        raise ValidationFailedError("price must not be negative")
    if batch_size < 1:
        raise ValueError("batch_size must be positive")

    if await catalog.company_role(db, requestor_id, company_id) is None:
        raise ForbiddenError(
            "Forbidden: User is not associated with this company."
        )
    event = await catalog.get_event(db, event_id)
    if event is None or event.company_id != company_id:
        raise NotFoundError("Event not found for this company.")

    price = money(price)
    log = logger.bind(event_id=event_id, code=base_code)

    # step 1: the ticket type; DuplicateCodeError is terminal
    ticket_type_id = await inventory.insert_ticket_type(
        db,
        event_id=event_id,
        company_id=company_id,
        manager_user_id=requestor_id,
        code=base_code,
        access_type=access_type,
        price=price,
    )

    # step 2: the units, one round trip per batch
    base = {
        "code": base_code,
        "access_type": access_type,
        "price": price,
        "manager_id": requestor_id,
        "event_id": event_id,
        "company_id": company_id,
    }
    created = 0
    try:
        async with timeit("provision.units"):
            for start in range(0, quantity, batch_size):
                count = min(batch_size, quantity - start)
                rows = inventory.creation_rows(
                    ticket_type_id, base, start + 1, count
                )
                created += await inventory.insert_units(db, rows)
    except BaseException as e:
        # cancellation too: a half-built wristband must not stay sellable
        log.opt(exception=e).error(
            "unit batch starting at {} failed; rolling back wristband {}",
            created + 1, ticket_type_id,
        )
        await _roll_back(db, log, ticket_type_id)
        if not isinstance(e, Exception):
            raise
        raise ProvisioningError(base_code) from e

    log.info("created wristband {} with {} units", ticket_type_id, created)
    return ProvisionResult(
        ticket_type_id=ticket_type_id, code=base_code, units_created=created
    )
