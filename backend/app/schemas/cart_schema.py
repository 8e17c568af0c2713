from pydantic import BaseModel, Field


class AddCartItemIn(BaseModel):
    product_sku_id: int
    quantity: int = Field(1, gt=0)


class UpdateCartItemIn(BaseModel):
    quantity: int = Field(..., gt=0)


class AddPromocodeIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
