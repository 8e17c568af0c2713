import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, NamedTuple, Optional, Union

from app.config import settings
from app.models.enums import Currency
from app.services.errors import ServiceUnavailableException
from app.services.exchange_rates import ExchangeRateCache, Rates, rate_cache

log = logging.getLogger(__name__)

CurrencyLike = Union[Currency, str]


class PriceServiceUnavailable(ServiceUnavailableException):
    pass


class Money(NamedTuple):
    amount: int  # minor units
    currency: Currency


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


class PriceService:
    """
    Minor-unit price engine.

    Amounts are integers in a currency's minor units everywhere inside the
    core; major-unit decimals only appear at the API boundary. Cross-currency
    conversion goes through the base currency using the cached rate table.
    """

    def __init__(
        self,
        cache: Optional[ExchangeRateCache] = None,
        multipliers: Optional[Dict[str, int]] = None,
        base_currency: Optional[CurrencyLike] = None,
    ):
        self.cache = cache or rate_cache
        self.multipliers = multipliers or settings.CURRENCY_MULTIPLIERS
        self.base_currency = Currency(base_currency or settings.BASE_CURRENCY)

    def multiplier(self, currency: CurrencyLike) -> int:
        code = Currency(currency).value
        try:
            return int(self.multipliers[code])
        except KeyError:
            raise ValueError(f"No minor-unit multiplier configured for {code}")

    def to_minor_units(self, amount, currency: CurrencyLike) -> int:
        return round_half_up(Decimal(str(amount)) * self.multiplier(currency))

    def to_major_units(self, amount: int, currency: CurrencyLike) -> Decimal:
        return Decimal(int(amount)) / self.multiplier(currency)

    def exchange_rates(self) -> Rates:
        rates = self.cache.get_or_refresh()
        if not rates:
            raise PriceServiceUnavailable("Currency conversion temporarily unavailable")
        return rates

    def needs_conversion(self, currency_from: CurrencyLike, currency_to: CurrencyLike) -> bool:
        return Currency(currency_from) != Currency(currency_to)

    def convert(self, amount: int, currency_from: CurrencyLike, currency_to: CurrencyLike) -> int:
        if not self.needs_conversion(currency_from, currency_to):
            return int(amount)
        rates = self.exchange_rates()
        try:
            rate_from = rates[Currency(currency_from).value]
            rate_to = rates[Currency(currency_to).value]
        except KeyError as e:
            log.warning("Exchange rate missing for %s", e)
            raise PriceServiceUnavailable("Currency conversion temporarily unavailable")
        amount_in_base = Decimal(int(amount)) / rate_from
        return round_half_up(amount_in_base * rate_to)

    def convert_money(self, money: Money, currency_to: CurrencyLike) -> Money:
        return Money(self.convert(money.amount, money.currency, currency_to), Currency(currency_to))
