import logging
import threading
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Mapping, Optional

from app.adapters.exchange_rate_client import ExchangeRateClient
from app.config import settings
from app.utils.timeutils import utcnow

log = logging.getLogger(__name__)

Rates = Dict[str, Decimal]


class ExchangeRateCache:
    """
    Process-wide exchange-rate table with get-or-refresh semantics.

    A table younger than `ttl_seconds` is served without calling the
    provider. On a miss the fetcher is called once, however many threads
    miss together; if it yields nothing the cache stays empty and callers
    decide how to fail.
    """

    def __init__(
        self,
        fetcher: Callable[[], Optional[Mapping[str, float]]],
        ttl_seconds: int = 86400,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._fetcher = fetcher
        self._clock = clock
        self.ttl = timedelta(seconds=ttl_seconds)
        self._rates: Optional[Rates] = None
        self.expires_at: Optional[datetime] = None
        self._lock = threading.Lock()

    def peek(self) -> Optional[Rates]:
        """Cached rates if still fresh, without touching the provider."""
        if self._rates is None or self.expires_at is None:
            return None
        if self._clock() >= self.expires_at:
            return None
        return self._rates

    def get_or_refresh(self) -> Optional[Rates]:
        rates = self.peek()
        if rates is not None:
            return rates
        with self._lock:
            # another thread may have refreshed while we waited
            rates = self.peek()
            if rates is not None:
                return rates
            return self._refresh()

    def refresh(self) -> Optional[Rates]:
        """
        Fetch a new table. A failed fetch keeps whatever fresh table is
        already cached.
        """
        with self._lock:
            return self._refresh()

    def _refresh(self) -> Optional[Rates]:
        fetched = self._fetcher()
        if not fetched:
            log.warning("Exchange rate refresh failed; cache expires_at=%s", self.expires_at)
            return self.peek()
        return self.set(fetched)

    def set(self, rates: Mapping[str, float]) -> Rates:
        self._rates = {code: Decimal(str(rate)) for code, rate in rates.items()}
        self.expires_at = self._clock() + self.ttl
        log.info("Exchange rates cached for %d currencies until %s", len(self._rates), self.expires_at)
        return self._rates

    def invalidate(self) -> None:
        self._rates = None
        self.expires_at = None


def _fetch_from_provider():
    client = ExchangeRateClient(
        settings.EXCHANGE_RATE_BASE_URL,
        settings.EXCHANGE_RATE_API_KEY,
        timeout=settings.EXCHANGE_RATE_TIMEOUT_SECONDS,
    )
    return client.fetch_rates(settings.BASE_CURRENCY)


rate_cache = ExchangeRateCache(_fetch_from_provider, ttl_seconds=settings.EXCHANGE_RATE_TTL_SECONDS)
