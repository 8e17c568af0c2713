from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Numeric, String

from app.db import Base
from app.models.enums import PromocodeType, value_enum

PROMOCODE_USAGE_CONSTRAINT = "promocode_usage_within_limit"


class Promocode(Base):
    __tablename__ = "promocodes"
    __table_args__ = (
        CheckConstraint("usage_count >= 0", name="promocode_usage_count_non_negative"),
        CheckConstraint("usage_count <= usage_limit", name=PROMOCODE_USAGE_CONSTRAINT),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), unique=True, index=True, nullable=False)
    type = Column(value_enum(PromocodeType, "promocode_type"), nullable=False)
    # percent for PERCENT, base-currency minor units for FIXED
    discount_value = Column(Numeric(10, 2), nullable=False)
    usage_limit = Column(Integer, nullable=False)
    usage_count = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_to = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<Promocode code={self.code} used={self.usage_count}/{self.usage_limit}>"
