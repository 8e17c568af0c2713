from pydantic import BaseModel, Field


class CreatePaymentIn(BaseModel):
    order_number: str = Field(..., min_length=1)


class CheckoutSessionIn(BaseModel):
    session_id: str = Field(..., min_length=1)
