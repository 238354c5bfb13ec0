"""
Exchange rate lookups for showing transactions in a user's preferred currency.
Uses the free open.er-api.com endpoint by default.
"""
import logging
from typing import Iterable, List, Optional

import httpx

from settings import EXCHANGE_API_URL, EXCHANGE_CACHE_SECONDS, utc_now

logger = logging.getLogger(__name__)


class ExchangeRateAPI:
    """Thin client over a ``/latest/<BASE>`` exchange rate endpoint."""

    def __init__(self, base_url: str = EXCHANGE_API_URL, client: Optional[httpx.Client] = None,
                 cache_seconds: int = EXCHANGE_CACHE_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=15.0)
        self.cache_seconds = cache_seconds
        self._cache: dict = {}

    def get_rates(self, base_currency: str = "USD") -> Optional[dict]:
        """Get exchange rates for a base currency"""
        cache_key = base_currency.upper()
        cached = self._cache.get(cache_key)
        if cached and (utc_now() - cached["fetched_at"]).total_seconds() < self.cache_seconds:
            return cached["rates"]

        try:
            response = self.client.get(f"{self.base_url}/{cache_key}")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Exchange rate API error for %s: %s", cache_key, e)
            return None

        if data.get("result") != "success" or "rates" not in data:
            logger.warning("Exchange rate API returned no rates for %s", cache_key)
            return None

        rates = {
            "base": data.get("base_code", cache_key),
            "last_updated": data.get("time_last_update_utc"),
            "rates": data["rates"],
        }
        self._cache[cache_key] = {"rates": rates, "fetched_at": utc_now()}
        return rates

    def convert(self, amount: float, from_currency: str, to_currency: str) -> Optional[dict]:
        """Convert amount between currencies"""
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return {
                "from_currency": from_currency,
                "to_currency": to_currency,
                "original_amount": amount,
                "converted_amount": amount,
                "exchange_rate": 1.0,
            }

        rates = self.get_rates(from_currency)
        if rates and to_currency in rates["rates"]:
            rate = rates["rates"][to_currency]
            return {
                "from_currency": from_currency,
                "to_currency": to_currency,
                "original_amount": amount,
                "converted_amount": round(amount * rate, 2),
                "exchange_rate": rate,
            }
        return None


def convert_transactions(rows: Iterable[dict], preferred_currency: str,
                         api: Optional[ExchangeRateAPI]) -> List[dict]:
    """
    Re-express serialized transactions in ``preferred_currency``.

    Rows that cannot be converted are returned unchanged.
    """
    converted = []
    for row in rows:
        currency = (row.get("currency") or preferred_currency).upper()
        if api is None or currency == preferred_currency.upper():
            converted.append(row)
            continue

        result = api.convert(row["amount"], currency, preferred_currency)
        if result is None:
            converted.append(row)
            continue

        rate = result["exchange_rate"]
        converted.append({
            **row,
            "amount": result["converted_amount"],
            "tax": round((row.get("tax") or 0.0) * rate, 2),
            "currency": preferred_currency.upper(),
            "original_amount": row["amount"],
            "original_currency": currency,
        })
    return converted
