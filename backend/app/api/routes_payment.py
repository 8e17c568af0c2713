from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id
from app.db import get_db
from app.schemas.payment_schema import CheckoutSessionIn, CreatePaymentIn
from app.services.errors import ServiceException
from app.services.payment_service import PaymentService

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("", summary="Start checkout for a pending order", status_code=201)
def create_payment(
    payload: CreatePaymentIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        url = PaymentService(db).create(user_id, payload.order_number)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"url": url}


@router.post("/capture", summary="Confirm a paid checkout session")
def capture_payment(
    payload: CheckoutSessionIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        PaymentService(db).capture(user_id, payload.session_id)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"ok": True}


@router.post("/cancel", summary="Cancel a checkout session")
def cancel_payment(
    payload: CheckoutSessionIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        PaymentService(db).cancel(user_id, payload.session_id)
    except ServiceException as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"ok": True}
