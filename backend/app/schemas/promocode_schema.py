from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import PromocodeType


class PromocodeCreateIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    type: PromocodeType
    # percent, or base-currency minor units for fixed
    discount_value: Decimal = Field(..., gt=0)
    usage_limit: int = Field(..., gt=0)
    valid_from: datetime
    valid_to: datetime


class PromocodeUpdateIn(BaseModel):
    code: Optional[str] = Field(None, min_length=1, max_length=64)
    type: Optional[PromocodeType] = None
    discount_value: Optional[Decimal] = Field(None, gt=0)
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None


class PromocodeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    code: str
    type: PromocodeType
    discount_value: Decimal
    usage_limit: int
    usage_count: int
    valid_from: datetime
    valid_to: datetime
