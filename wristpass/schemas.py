from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .provisioning import PROVISION_MAX_QUANTITY


class PurchaseItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ticket_type_id: str = Field(alias="ticketTypeId", min_length=1)
    quantity: int = Field(gt=0)
    price: float = Field(ge=0)


class PurchaseRequest(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "eventId": "6f1c9a52-0d7e-4c59-9a31-8f0c1d7e2b44",
                "purchaseItems": [
                    {"ticketTypeId": "b3e0...", "quantity": 2, "price": 120.0}
                ],
            }
        },
    )

    event_id: str = Field(alias="eventId", min_length=1)
    purchase_items: List[PurchaseItemIn] = Field(alias="purchaseItems")

    @field_validator("purchase_items")
    @classmethod
    def validate_purchase_items(cls, v):
        if not v:
            raise ValueError("purchaseItems must not be empty")
        return v


class ProvisionRequest(BaseModel):
    event_id: str = Field(min_length=1)
    company_id: str = Field(min_length=1)
    base_code: str = Field(min_length=1, max_length=64)
    access_type: str = Field(min_length=1)
    price: float = Field(ge=0)
    quantity: int = Field(ge=1, le=PROVISION_MAX_QUANTITY)

    @field_validator("base_code", "access_type")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class MassStatusRequest(BaseModel):
    event_id: str = Field(min_length=1)
    new_status: str = Field(min_length=1)

    model_config = ConfigDict(
        json_schema_extra={"example": {"event_id": "...", "new_status": "lost"}}
    )
