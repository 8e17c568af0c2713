from typing import List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.models.promocode import Promocode


class PromocodeRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_code(self, code: str) -> Optional[Promocode]:
        return self.db.query(Promocode).filter(Promocode.code == code).first()

    def get_by_id(self, promocode_id: int) -> Optional[Promocode]:
        return self.db.get(Promocode, promocode_id)

    def list(
        self, search: Optional[str] = None, page: int = 1, limit: int = 20
    ) -> Tuple[List[Promocode], int]:
        query = self.db.query(Promocode)
        if search:
            query = query.filter(Promocode.code.ilike(f"%{search}%"))
        total = query.with_entities(func.count()).scalar() or 0
        items = (
            query.order_by(Promocode.created_at.desc(), Promocode.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def adjust_usage(self, promocode_id: int, delta: int) -> None:
        """Relative `usage_count = usage_count + delta` update."""
        self.db.execute(
            update(Promocode)
            .where(Promocode.id == promocode_id)
            .values(usage_count=Promocode.usage_count + delta)
            .execution_options(synchronize_session=False)
        )
