from __future__ import annotations
from dataclasses import dataclass

from loguru import logger

from .errors import (
    ForbiddenError, NotFoundError, ValidationFailedError
)
from .infra.sql import GatedAsyncSession
from .model import catalog, inventory
from .model.db import TICKET_TYPE_STATUSES, WITHDRAWAL_STATUSES


@dataclass(frozen=True)
class MassUpdateResult:
    new_status: str
    ticket_types_updated: int


async def update_event_wristband_status(
    db: GatedAsyncSession,
    *,
    event_id: str,
    requestor_user_id: str,
    new_status: str,
) -> MassUpdateResult:
    """
    Move every wristband of an event (and its units) to `new_status`.
    A withdrawal is refused as a whole while any unit is sold or reserved.
    """
    if new_status not in TICKET_TYPE_STATUSES:
        raise ValidationFailedError(
            f"new_status must be one of {', '.join(TICKET_TYPE_STATUSES)}"
        )

    event = await catalog.get_event(db, event_id)
    if event is None or not event.company_id:
        raise NotFoundError("Event not found or company association missing.")

    role = await catalog.company_role(db, requestor_user_id, event.company_id)
    if role is None:
        raise ForbiddenError(
            "Forbidden: User is not associated with this company."
        )

    count = await inventory.set_event_status(
        db, event_id, event.company_id, new_status,
        refuse_if_committed=new_status in WITHDRAWAL_STATUSES,
    )
    logger.bind(event_id=event_id, requestor=requestor_user_id).info(
        "set {} wristbands to {}", count, new_status
    )
    return MassUpdateResult(new_status=new_status, ticket_types_updated=count)
