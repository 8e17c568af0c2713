import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.enums import PromocodeType
from app.models.promocode import Promocode
from app.repositories.promocode_repo import PromocodeRepository
from app.services.errors import BusinessRuleException, NotFoundException
from app.services.price_service import CurrencyLike, PriceService, round_half_up
from app.utils.timeutils import as_utc, utcnow
from app.utils.transactions import smart_transaction

log = logging.getLogger(__name__)

MUTABLE_FIELDS = ("code", "type", "discount_value", "valid_from", "valid_to")


class PromocodeException(BusinessRuleException):
    pass


class PromocodeNotFound(NotFoundException):
    pass


class PromocodeValidity(NamedTuple):
    valid: bool
    reason: Optional[str] = None


def is_valid(promocode: Promocode, now: Optional[datetime] = None) -> PromocodeValidity:
    """Whether `promocode` can be redeemed at `now`. Pure; reads only the row."""
    now = as_utc(now) if now else utcnow()
    if now < as_utc(promocode.valid_from):
        return PromocodeValidity(False, "Promocode not active yet")
    if now > as_utc(promocode.valid_to):
        return PromocodeValidity(False, "Promocode expired")
    if promocode.usage_count >= promocode.usage_limit:
        return PromocodeValidity(False, "Promocode is inactive")
    return PromocodeValidity(True)


def apply_discount(amount: int, promocode: Promocode, fixed_discount: Optional[int] = None) -> int:
    """
    Discounted `amount` (minor units), floored at zero.

    `fixed_discount` overrides the stored value of a FIXED promocode, for
    callers that have already converted it out of the base currency.
    """
    if promocode.type == PromocodeType.PERCENT:
        discount = round_half_up(Decimal(amount) * Decimal(promocode.discount_value) / 100)
    else:
        discount = (
            fixed_discount
            if fixed_discount is not None
            else round_half_up(Decimal(promocode.discount_value))
        )
    return max(amount - discount, 0)


class PromocodeService:
    def __init__(self, db: Session, price_service: Optional[PriceService] = None):
        self.db = db
        self.repo = PromocodeRepository(db)
        self.prices = price_service or PriceService()

    is_valid = staticmethod(is_valid)
    apply_discount = staticmethod(apply_discount)

    def get(
        self,
        code: Optional[str] = None,
        promocode_id: Optional[int] = None,
        validate: bool = True,
    ) -> Optional[Promocode]:
        """
        Look a promocode up by code or id.

        With `validate` (the checkout path) a missing code raises
        PromocodeNotFound and an unusable one raises PromocodeException with
        the validity reason. Without it the row is returned as-is, or None.
        """
        if code is not None:
            promocode = self.repo.get_by_code(code)
        elif promocode_id is not None:
            promocode = self.repo.get_by_id(promocode_id)
        else:
            raise ValueError("Either code or promocode_id is required")

        if not validate:
            return promocode

        if not promocode:
            log.info("Promocode lookup failed: not found code=%s id=%s", code, promocode_id)
            raise PromocodeNotFound("Promocode not found")
        result = is_valid(promocode)
        if not result.valid:
            log.info("Promocode lookup failed: %s promocode_id=%s", result.reason, promocode.id)
            raise PromocodeException(result.reason)
        return promocode

    def fixed_discount_in(self, promocode: Promocode, currency: CurrencyLike) -> int:
        """A FIXED promocode's discount (stored in base currency) in `currency` minor units."""
        value = round_half_up(Decimal(promocode.discount_value))
        return self.prices.convert(value, self.prices.base_currency, currency)

    def apply(self, amount: int, promocode: Promocode, currency: Optional[CurrencyLike] = None) -> int:
        if promocode.type == PromocodeType.FIXED and currency is not None:
            return apply_discount(amount, promocode, self.fixed_discount_in(promocode, currency))
        return apply_discount(amount, promocode)

    # --- admin ---

    def list(self, search: Optional[str] = None, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        items, total = self.repo.list(search=search, page=page, limit=limit)
        return {"promocodes": items, "page_count": math.ceil(total / limit) if limit else 0}

    def create(
        self,
        code: str,
        type: PromocodeType,
        discount_value: Decimal,
        usage_limit: int,
        valid_from: datetime,
        valid_to: datetime,
    ) -> Promocode:
        type = PromocodeType(type)
        discount_value = Decimal(str(discount_value))
        if discount_value <= 0:
            raise PromocodeException("Discount value must be positive")
        if usage_limit <= 0:
            raise PromocodeException("Usage limit must be positive")
        self._check_percent(type, discount_value)
        if as_utc(valid_to) <= as_utc(valid_from):
            raise PromocodeException("Valid to must be greater than valid from")
        if as_utc(valid_to) <= utcnow():
            raise PromocodeException("Valid to must be greater than current date")
        if self.repo.get_by_code(code):
            log.info("Create promocode failed: already exists code=%s", code)
            raise PromocodeException("Promocode already exists")

        try:
            with smart_transaction(self.db):
                promocode = Promocode(
                    code=code,
                    type=type,
                    discount_value=discount_value,
                    usage_limit=usage_limit,
                    usage_count=0,
                    valid_from=as_utc(valid_from),
                    valid_to=as_utc(valid_to),
                )
                self.db.add(promocode)
                self.db.flush()
        except IntegrityError:
            log.info("Create promocode failed: already exists code=%s", code)
            raise PromocodeException("Promocode already exists")
        return promocode

    def update(self, promocode_id: int, data: Dict[str, Any]) -> Promocode:
        promocode = self.repo.get_by_id(promocode_id)
        if not promocode:
            log.info("Update promocode failed: not found promocode_id=%s", promocode_id)
            raise PromocodeNotFound("Promocode doesn't exist")

        changes = self.build_update_data(data, promocode)
        if "code" in changes:
            other = self.repo.get_by_code(changes["code"])
            if other and other.id != promocode.id:
                log.info("Update promocode failed: already exists code=%s", changes["code"])
                raise PromocodeException("Promocode already exists")

        try:
            with smart_transaction(self.db):
                for key, val in changes.items():
                    setattr(promocode, key, val)
                self.db.flush()
        except IntegrityError:
            raise PromocodeException("Promocode already exists")
        return promocode

    def build_update_data(self, data: Dict[str, Any], promocode: Promocode) -> Dict[str, Any]:
        """Keep only the fields that differ from the stored row, then check coherence."""
        changes: Dict[str, Any] = {}
        for key, val in data.items():
            if key not in MUTABLE_FIELDS or val is None:
                continue
            current = getattr(promocode, key)
            if key in ("valid_from", "valid_to"):
                val = as_utc(val)
                if as_utc(current) == val:
                    continue
            elif key == "discount_value":
                val = Decimal(str(val))
                if Decimal(current) == val:
                    continue
            elif key == "type":
                val = PromocodeType(val)
                if current == val:
                    continue
            elif current == val:
                continue
            changes[key] = val

        if not changes:
            log.info("Update promocode failed: no changes promocode_id=%s", promocode.id)
            raise PromocodeException("No changes detected")

        self._check_percent(
            changes.get("type", promocode.type),
            Decimal(changes.get("discount_value", promocode.discount_value)),
        )
        valid_from = changes.get("valid_from", as_utc(promocode.valid_from))
        valid_to = changes.get("valid_to", as_utc(promocode.valid_to))
        if valid_to <= valid_from:
            log.info(
                "Update promocode failed: window inverted valid_from=%s valid_to=%s",
                valid_from,
                valid_to,
            )
            raise PromocodeException("Valid to must be greater than valid from")
        return changes

    def remove(self, promocode_id: int) -> None:
        promocode = self.repo.get_by_id(promocode_id)
        if not promocode:
            log.info("Remove promocode failed: not found promocode_id=%s", promocode_id)
            raise PromocodeNotFound("Promocode doesn't exist")
        try:
            with smart_transaction(self.db):
                self.db.delete(promocode)
                self.db.flush()
        except IntegrityError:
            log.info("Remove promocode failed: referenced by orders promocode_id=%s", promocode_id)
            raise PromocodeException("Promocode is referenced by existing orders")

    @staticmethod
    def _check_percent(type: PromocodeType, discount_value: Decimal) -> None:
        if PromocodeType(type) == PromocodeType.PERCENT and discount_value >= 100:
            raise PromocodeException("Discount value must be less than 100 for percent promocodes")
