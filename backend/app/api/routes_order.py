from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id
from app.db import get_db
from app.models.enums import OrderStatus
from app.schemas.order_schema import CreateOrderIn
from app.services.errors import ServiceException
from app.services.order_service import OrderService

router = APIRouter(tags=["orders"])


@router.post("", summary="Create order (checkout)", status_code=201)
def create_order(
    payload: CreateOrderIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    svc = OrderService(db)
    try:
        number = svc.create_order(user_id, payload.model_dump())
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"order_number": number}


@router.get("", summary="List my orders")
def list_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return OrderService(db).list_orders(user_id=user_id, status=status, page=page, limit=limit)


@router.get("/{order_number}", summary="Get my order")
def get_order(
    order_number: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return OrderService(db).get_order(order_number, user_id=user_id)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
