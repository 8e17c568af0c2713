from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id
from app.db import get_db
from app.models.enums import Currency
from app.schemas.cart_schema import AddCartItemIn, AddPromocodeIn, UpdateCartItemIn
from app.services.cart_service import CartService
from app.services.errors import ServiceException

router = APIRouter(prefix="/api/cart", tags=["cart"])


@router.get("", summary="Get priced cart")
def get_cart(
    currency: Optional[Currency] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    svc = CartService(db)
    try:
        return svc.get_cart(user_id, currency)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/items", summary="Add item to cart", status_code=201)
def add_item(
    payload: AddCartItemIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    svc = CartService(db)
    svc.create_if_not_exists(user_id)
    try:
        item = svc.add_item(user_id, payload.product_sku_id, payload.quantity)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"item_id": item.id, "product_sku_id": item.product_sku_id, "quantity": item.quantity}


@router.patch("/items/{item_id}", summary="Change item quantity")
def update_item(
    item_id: int,
    payload: UpdateCartItemIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    svc = CartService(db)
    try:
        item = svc.update_item(user_id, item_id, payload.quantity)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"item_id": item.id, "product_sku_id": item.product_sku_id, "quantity": item.quantity}


@router.delete("/items/{item_id}", summary="Remove item")
def remove_item(
    item_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        CartService(db).remove_item(user_id, item_id)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"ok": True}


@router.delete("", summary="Clear cart")
def clear_cart(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    try:
        CartService(db).clear(user_id)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"ok": True}


@router.post("/promocode", summary="Attach promocode to cart")
def add_promocode(
    payload: AddPromocodeIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        promocode = CartService(db).add_promocode(user_id, payload.code)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"id": promocode.id, "code": promocode.code}


@router.delete("/promocode", summary="Detach promocode from cart")
def remove_promocode(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    try:
        CartService(db).remove_promocode(user_id)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"ok": True}
