"""
Exchange rate sources.
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Optional

import requests
import yfinance as yf

from src.alerts.errors import RateFetchError

logger = logging.getLogger(__name__)


def _validate_rate(value: Any, from_currency: str, to_currency: str) -> float:
    """Coerce a provider value to a positive finite rate."""
    try:
        rate = float(value)
    except (TypeError, ValueError):
        raise RateFetchError(
            f"Invalid rate for {from_currency}/{to_currency}: {value!r}"
        )
    if not math.isfinite(rate) or rate <= 0:
        raise RateFetchError(
            f"Invalid rate for {from_currency}/{to_currency}: {value!r}"
        )
    return rate


class RateSource(ABC):
    """Abstract async source of current exchange rates."""

    name: str = "rate_source"

    @abstractmethod
    async def get_rate(self, from_currency: str, to_currency: str) -> float:
        """
        Fetch the current rate for a currency pair.

        Args:
            from_currency: Source currency code (e.g. "USD")
            to_currency: Target currency code (e.g. "EUR")

        Returns:
            Units of `to_currency` per one `from_currency`

        Raises:
            RateFetchError: If no usable rate is available
        """
        pass


class ExchangeRateApiSource(RateSource):
    """Fetches rates from ExchangeRate-API (v6, API key required)."""

    name = "exchangerate_api"
    BASE_URL = "https://v6.exchangerate-api.com/v6"

    def __init__(self, api_key: str, timeout: float = 10.0):
        self.api_key = api_key
        self.timeout = timeout

    async def get_rate(self, from_currency: str, to_currency: str) -> float:
        return await asyncio.to_thread(self._fetch, from_currency, to_currency)

    def _fetch(self, from_currency: str, to_currency: str) -> float:
        if not self.api_key:
            raise RateFetchError("ExchangeRate-API key not configured")

        url = f"{self.BASE_URL}/{self.api_key}/latest/{from_currency}"
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise RateFetchError(f"ExchangeRate-API request failed: {e}")
        except ValueError as e:
            raise RateFetchError(f"ExchangeRate-API returned invalid JSON: {e}")

        if data.get("result") == "error":
            raise RateFetchError(f"ExchangeRate-API error: {data.get('error-type')}")

        rates = data.get("conversion_rates") or {}
        if to_currency not in rates:
            raise RateFetchError(
                f"Rate not available for {from_currency}/{to_currency}"
            )
        return _validate_rate(rates[to_currency], from_currency, to_currency)


class YahooFinanceRateSource(RateSource):
    """Fetches rates from Yahoo Finance FX tickers such as "USDEUR=X"."""

    name = "yahoo_finance"

    async def get_rate(self, from_currency: str, to_currency: str) -> float:
        return await asyncio.to_thread(self._fetch, from_currency, to_currency)

    def _fetch(self, from_currency: str, to_currency: str) -> float:
        symbol = f"{from_currency}{to_currency}=X"
        try:
            ticker = yf.Ticker(symbol)
            info = ticker.info or {}

            # Use regularMarketPrice if available, otherwise fall back to previousClose
            price = info.get("regularMarketPrice")
            if price is None:
                price = info.get("previousClose")

            if price is None:
                hist = ticker.history(period="5d")
                if not hist.empty:
                    price = hist["Close"].iloc[-1]
        except Exception as e:
            raise RateFetchError(f"Yahoo Finance request failed for {symbol}: {e}")

        if price is None:
            raise RateFetchError(f"No data available: {symbol}")
        return _validate_rate(price, from_currency, to_currency)


class FallbackRateSource(RateSource):
    """Tries each source in priority order until one returns a rate."""

    name = "fallback"

    def __init__(self, sources: list[RateSource]):
        if not sources:
            raise ValueError("FallbackRateSource needs at least one source")
        self.sources = sources

    async def get_rate(self, from_currency: str, to_currency: str) -> float:
        for source in self.sources:
            try:
                return await source.get_rate(from_currency, to_currency)
            except RateFetchError as e:
                logger.warning(f"{source.name} failed for {from_currency}/{to_currency}: {e}")
                continue
        raise RateFetchError(
            f"All rate sources failed for {from_currency}/{to_currency}"
        )


def create_rate_source(
    provider: str,
    api_key: Optional[str] = None,
    timeout: float = 10.0,
    fallback_order: Optional[list[str]] = None,
) -> RateSource:
    """
    Create a rate source by provider name.

    Args:
        provider: "exchangerate_api", "yahoo_finance" or "fallback"
        api_key: ExchangeRate-API key
        timeout: HTTP timeout in seconds
        fallback_order: Provider names tried by the fallback source

    Raises:
        ValueError: If the provider is unknown
    """
    if provider == "exchangerate_api":
        return ExchangeRateApiSource(api_key=api_key or "", timeout=timeout)
    elif provider == "yahoo_finance":
        return YahooFinanceRateSource()
    elif provider == "fallback":
        order = fallback_order or ["exchangerate_api", "yahoo_finance"]
        if "fallback" in order:
            raise ValueError("Fallback order cannot include 'fallback'")
        return FallbackRateSource(
            [create_rate_source(name, api_key, timeout) for name in order]
        )
    else:
        raise ValueError(f"Unknown rate provider: {provider}")
