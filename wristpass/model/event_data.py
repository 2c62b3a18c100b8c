# wristpass/model/event_data.py
"""
Typed payloads for InventoryUnit.event_data, tagged by InventoryUnit.event_type:

  creation : written once by the batch provisioner
  purchase : written by payment settlement when the unit is sold

The JSON column stays a plain object; these dataclasses are the only way the
code reads or writes it, so a shape error surfaces as a ValueError instead of
a missing key somewhere downstream.
"""
from __future__ import annotations
from dataclasses import MISSING, asdict, dataclass, fields
from typing import Any, Dict, Union

EVENT_CREATION = "creation"
EVENT_PURCHASE = "purchase"


@dataclass(frozen=True)
class CreationEventData:
    code: str
    access_type: str
    price: float
    manager_id: str
    event_id: str
    company_id: str
    initial_status: str
    sequential_entry: int

    event_type = EVENT_CREATION

    def to_json(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PurchaseEventData:
    purchase_date: str
    total_paid: float
    client_id: str
    transaction_id: str
    unit_price: float
    quantity_purchased: int = 1

    event_type = EVENT_PURCHASE

    def to_json(self) -> Dict[str, Any]:
        return asdict(self)


EventData = Union[CreationEventData, PurchaseEventData]

_VARIANTS = {
    EVENT_CREATION: CreationEventData,
    EVENT_PURCHASE: PurchaseEventData,
}


def parse_event_data(event_type: str, payload: Dict[str, Any]) -> EventData:
    cls = _VARIANTS.get(event_type)
    if cls is None:
        raise ValueError(f"unknown event_type: {event_type!r}")
    if not isinstance(payload, dict):
        raise ValueError("event_data must be an object")

    names = {f.name for f in fields(cls)}
    unknown = set(payload) - names
    if unknown:
        raise ValueError(
            f"unexpected {event_type} fields: {sorted(unknown)}"
        )
    required = {
        f.name for f in fields(cls)
        if f.default is MISSING and f.default_factory is MISSING
    }
    missing = required - set(payload)
    if missing:
        raise ValueError(f"missing {event_type} fields: {sorted(missing)}")
    return cls(**payload)
