from app.db import Base
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship


class Cart(Base):
    __tablename__ = "carts"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), unique=True, index=True, nullable=False)
    promocode_id = Column(
        Integer, ForeignKey("promocodes.id", ondelete="SET NULL"), nullable=True
    )  # single promocode per cart, cleared at checkout
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    items = relationship(
        "CartItem", back_populates="cart", cascade="all, delete-orphan"
    )
    promocode = relationship("Promocode")
