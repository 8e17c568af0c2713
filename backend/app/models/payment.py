from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.db import Base
from app.models.enums import PaymentStatus, value_enum


class Payment(Base):
    __tablename__ = "payments"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    checkout_session_id = Column(String(255), unique=True, nullable=False, index=True)
    transaction_id = Column(String(255), unique=True, nullable=True)
    amount = Column(Integer, nullable=False)  # minor units, order currency
    status = Column(
        value_enum(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.PENDING
    )
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    order = relationship("Order", back_populates="payments")
