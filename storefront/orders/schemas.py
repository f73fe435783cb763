from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..common.db import MAX_INT
from .model import OrderStatus, PaymentMethod


class ShippingAddress(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, frozen=True)

    full_name: str = Field(..., min_length=1, max_length=255, alias="fullName")
    phone: str = Field(..., min_length=6, max_length=32)
    email: Optional[str] = Field(None, max_length=255)
    address: str = Field(..., min_length=1, max_length=512)
    city: str = Field(..., min_length=1, max_length=128)
    district: str = Field(..., min_length=1, max_length=128)
    ward: str = Field(..., min_length=1, max_length=128)

    def snapshot(self) -> dict:
        return self.model_dump(by_alias=False)


class OrderLine(BaseModel):
    # any client-side price on the line is dropped here
    product_id: int = Field(..., gt=0, le=MAX_INT)
    quantity: int = Field(..., ge=1, le=MAX_INT)


class CreateOrderCommand(BaseModel):
    items: List[OrderLine] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("notes")
    @classmethod
    def _blank_notes_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


class StatusUpdateCommand(BaseModel):
    status: OrderStatus
