import logging
from typing import Dict, Optional

import requests

log = logging.getLogger(__name__)


class ExchangeRateClient:
    """
    Thin client for the exchange-rate provider.

    The provider answers `GET {base_url}{api_key}/latest/{base}` with either
    {"result": "success", "conversion_rates": {"USD": 0.0123, ...}} or
    {"result": "error", "error-type": "invalid-key"}.
    Rates are expressed as units of each currency per one unit of `base`.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout

    def latest_url(self, base_currency: str) -> str:
        return f"{self.base_url}{self.api_key}/latest/{base_currency}"

    def fetch_rates(self, base_currency: str) -> Optional[Dict[str, float]]:
        """Return the provider's rate map, or None when it cannot be obtained."""
        try:
            res = requests.get(self.latest_url(base_currency), timeout=self.timeout)
            data = res.json()
        except (requests.RequestException, ValueError) as e:
            log.warning("Error getting exchange rates: %s", e)
            return None

        if data.get("result") != "success":
            log.info("Error getting exchange rates: %s", data.get("error-type", "unknown"))
            return None
        return data.get("conversion_rates") or None
