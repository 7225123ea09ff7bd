"""
Price feed adapters: the BTC quote price and fiat-to-fiat exchange rates.

Both are memoised in ``cachetools.TTLCache`` objects owned by the adapter
instances, with an injectable clock, rather than module-level state.
"""

import sys
import time
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from cachetools import TTLCache

from .http_client import IndexerAPIError, RetryingHTTPClient
from .models import to_decimal


COINGECKO_API = "https://api.coingecko.com/api/v3"
CURRENCY_API = "https://cdn.jsdelivr.net/npm/@fawazahmed0/currency-api@latest/v1/currencies"

DEFAULT_COIN_ID = "bitcoin"
DEFAULT_QUOTE_CURRENCY = "usd"

PRICE_TTL = 60.0  # seconds
EXCHANGE_RATE_TTL = 3600.0  # seconds
CACHE_MAXSIZE = 16

# Units of each currency per 1 USD, used when the rate feed is unreachable
FALLBACK_RATES = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("149.5"),
    "INR": Decimal("83.2"),
    "AUD": Decimal("1.52"),
    "CAD": Decimal("1.36"),
    "CNY": Decimal("7.24"),
}


class PriceFeedError(IndexerAPIError):
    """Exception raised when the price feed returns no usable price."""

    pass


class PriceOracle(RetryingHTTPClient):
    """Current quote-currency price of the tracked asset from CoinGecko."""

    def __init__(
        self,
        base_url: str = COINGECKO_API,
        coin_id: str = DEFAULT_COIN_ID,
        quote_currency: str = DEFAULT_QUOTE_CURRENCY,
        ttl: float = PRICE_TTL,
        clock: Callable[[], float] = time.time,
        **kwargs: Any,
    ):
        super().__init__(base_url, **kwargs)
        self.coin_id = coin_id
        self.quote_currency = quote_currency.lower()
        self.cache = TTLCache(maxsize=CACHE_MAXSIZE, ttl=ttl, timer=clock)

    def get_price(self) -> Decimal:
        """
        Get the current price, served from cache while fresh.

        Returns:
            Price of one coin in the quote currency

        Raises:
            PriceFeedError: If the feed fails or omits the price
        """
        key = f"{self.coin_id}:{self.quote_currency}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            data = self._get_json(
                "/simple/price",
                params={"ids": self.coin_id, "vs_currencies": self.quote_currency},
            )
        except PriceFeedError:
            raise
        except IndexerAPIError as e:
            raise PriceFeedError(f"Price fetch failed: {e}", status_code=e.status_code) from e

        entry = data.get(self.coin_id) if isinstance(data, dict) else None
        value = entry.get(self.quote_currency) if isinstance(entry, dict) else None
        if value is None or isinstance(value, bool):
            raise PriceFeedError(f"No {self.quote_currency} price for {self.coin_id}")
        try:
            price = to_decimal(value)
        except ValueError as e:
            raise PriceFeedError(str(e)) from e
        if not price.is_finite():
            raise PriceFeedError(f"Non-finite price for {self.coin_id}: {price}")
        if price <= 0:
            raise PriceFeedError(f"Non-positive price for {self.coin_id}: {price}")

        self.cache[key] = price
        return price


class ExchangeRateFeed(RetryingHTTPClient):
    """USD-relative fiat rates from the fawazahmed0 currency API."""

    def __init__(self, base_url: str = CURRENCY_API, **kwargs: Any):
        super().__init__(base_url, **kwargs)

    def get_usd_rates(self) -> Dict[str, Decimal]:
        """
        Fetch units-per-USD for the supported currencies.

        Raises:
            IndexerAPIError: If the feed fails or has no USD table
        """
        data = self._get_json("/usd.json")
        table = data.get("usd") if isinstance(data, dict) else None
        if not isinstance(table, dict):
            raise IndexerAPIError("Exchange rate feed returned no usd table")

        rates = {"USD": Decimal("1")}
        for code in FALLBACK_RATES:
            value = table.get(code.lower())
            if code == "USD" or value is None or isinstance(value, bool):
                continue
            try:
                rate = to_decimal(value)
            except ValueError:
                continue
            if rate.is_finite() and rate > 0:
                rates[code] = rate
        return rates


class ExchangeRateCache:
    """
    Process-scoped memo of fiat exchange rates.

    Successful fetches are kept for ``ttl`` seconds. Failures return the
    static fallback table without caching it, so the next call retries.
    """

    CACHE_KEY = "usd_rates"

    def __init__(
        self,
        feed: ExchangeRateFeed,
        ttl: float = EXCHANGE_RATE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.feed = feed
        self.cache = TTLCache(maxsize=1, ttl=ttl, timer=clock)

    def rates(self) -> Dict[str, Decimal]:
        cached = self.cache.get(self.CACHE_KEY)
        if cached is not None:
            return cached
        try:
            rates = self.feed.get_usd_rates()
        except IndexerAPIError as e:
            print(f"[rates] Using fallback exchange rates: {e}", file=sys.stderr)
            return dict(FALLBACK_RATES)
        self.cache[self.CACHE_KEY] = rates
        return rates

    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        """Convert ``amount`` using the current (or fallback) rates."""
        if from_currency.upper() == to_currency.upper():
            return amount
        return convert_currency(amount, from_currency, to_currency, self.rates())


def convert_currency(
    amount: Decimal,
    from_currency: str,
    to_currency: str,
    rates: Optional[Dict[str, Decimal]] = None,
) -> Decimal:
    """
    Convert between fiat currencies via USD.

    Unknown currency codes are treated as a rate of 1.
    """
    if from_currency.upper() == to_currency.upper():
        return amount
    table = rates if rates is not None else FALLBACK_RATES
    from_rate = table.get(from_currency.upper()) or Decimal("1")
    to_rate = table.get(to_currency.upper()) or Decimal("1")
    return amount / from_rate * to_rate
