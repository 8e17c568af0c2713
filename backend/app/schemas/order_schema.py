from typing import Optional

from pydantic import BaseModel, Field

from app.models.enums import Currency, OrderStatus


class AddressIn(BaseModel):
    city: str = Field(..., min_length=1, max_length=255)
    street: str = Field(..., min_length=1, max_length=255)
    home: str = Field(..., min_length=1, max_length=64)
    apartment: str = Field(..., min_length=1, max_length=64)


class CreateOrderIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone_number: str = Field(..., min_length=5, max_length=32)
    currency: Optional[Currency] = None
    billing_address: AddressIn
    delivery_address: AddressIn


class OrderStatusIn(BaseModel):
    status: OrderStatus
