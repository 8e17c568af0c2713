from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.enums import OrderStatus
from app.schemas.order_schema import OrderStatusIn
from app.schemas.promocode_schema import PromocodeCreateIn, PromocodeOut, PromocodeUpdateIn
from app.services.errors import ServiceException
from app.services.order_service import OrderService
from app.services.promocode_service import PromocodeService

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/promocodes", summary="List promocodes")
def list_promocodes(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    result = PromocodeService(db).list(search=search, page=page, limit=limit)
    return {
        "promocodes": [PromocodeOut.model_validate(p) for p in result["promocodes"]],
        "page_count": result["page_count"],
    }


@router.post("/promocodes", summary="Create promocode", status_code=201)
def create_promocode(payload: PromocodeCreateIn, db: Session = Depends(get_db)):
    try:
        promocode = PromocodeService(db).create(**payload.model_dump())
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return PromocodeOut.model_validate(promocode)


@router.get("/promocodes/{promocode_id}", summary="Get promocode")
def get_promocode(promocode_id: int, db: Session = Depends(get_db)):
    promocode = PromocodeService(db).get(promocode_id=promocode_id, validate=False)
    if not promocode:
        raise HTTPException(status_code=404, detail="Promocode doesn't exist")
    return PromocodeOut.model_validate(promocode)


@router.patch("/promocodes/{promocode_id}", summary="Update promocode")
def update_promocode(promocode_id: int, payload: PromocodeUpdateIn, db: Session = Depends(get_db)):
    try:
        promocode = PromocodeService(db).update(promocode_id, payload.model_dump(exclude_unset=True))
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return PromocodeOut.model_validate(promocode)


@router.delete("/promocodes/{promocode_id}", summary="Delete promocode")
def delete_promocode(promocode_id: int, db: Session = Depends(get_db)):
    try:
        PromocodeService(db).remove(promocode_id)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"ok": True}


@router.get("/orders", summary="List all orders")
def list_orders(
    status: Optional[OrderStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return OrderService(db).list_orders(status=status, search=search, page=page, limit=limit)


@router.get("/orders/{order_number}", summary="Get any order")
def get_order(order_number: str, db: Session = Depends(get_db)):
    try:
        return OrderService(db).get_order(order_number)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/orders/{order_number}/status", summary="Advance order status")
def advance_status(order_number: str, payload: OrderStatusIn, db: Session = Depends(get_db)):
    try:
        order = OrderService(db).advance_status(order_number, payload.status)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"number": order.number, "status": order.status}
