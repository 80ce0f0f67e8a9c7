# src/rate_fetcher.py
"""Rate-limited EUR/USD fetcher with cache and simulation fallback.

``get_current_rate`` always returns a sample. A remote call is only made when
the fetch budget allows it; any failure or throttling degrades to the cached
rate (while fresh) and then to a synthetic price. The ``source`` of each
sample records which path produced it.

Budget rules:
- at most ``api_request_ceiling`` successful calls, counted for the process
  lifetime, or per ``api_request_window`` seconds when that is set
- at least ``api_min_interval`` seconds between successful calls
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import replace
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Optional

import httpx

from models import CachedRate, FetchBudget, RateSample, RateSource, utc_now
from price_generator import SyntheticPriceGenerator
from rate_cache import RateCache
from settings import Settings

logger = logging.getLogger(__name__)

EXCHANGE_RATE_BLOCK = "Realtime Currency Exchange Rate"
EXCHANGE_RATE_FIELD = "5. Exchange Rate"
PROVIDER_MESSAGE_KEYS = ("Error Message", "Note", "Information")


class RateFetchError(RuntimeError):
    """The provider could not deliver a usable rate."""


def parse_exchange_rate(payload: Any) -> float:
    """Extract the numeric rate from a CURRENCY_EXCHANGE_RATE response."""
    if not isinstance(payload, dict):
        raise RateFetchError("Unexpected API response format")
    for key in PROVIDER_MESSAGE_KEYS:
        if key in payload:
            raise RateFetchError(f"Provider returned {key!r}: {payload[key]}")

    block = payload.get(EXCHANGE_RATE_BLOCK)
    if not isinstance(block, dict) or EXCHANGE_RATE_FIELD not in block:
        raise RateFetchError("Unexpected API response format")
    try:
        rate = float(block[EXCHANGE_RATE_FIELD])
    except (TypeError, ValueError) as exc:
        raise RateFetchError(f"Non-numeric exchange rate: {block[EXCHANGE_RATE_FIELD]!r}") from exc
    if not math.isfinite(rate) or rate <= 0:
        raise RateFetchError(f"Implausible exchange rate: {rate}")
    return rate


class RateLimitedFetcher:
    def __init__(
        self,
        settings: Settings,
        cache: RateCache,
        generator: SyntheticPriceGenerator,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utc_now,
        from_currency: str = "EUR",
        to_currency: str = "USD",
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.generator = generator
        self.from_currency = from_currency
        self.to_currency = to_currency
        self._clock = clock
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=settings.api_timeout,
            headers={"Accept": "application/json"},
        )
        self._budget = FetchBudget(window_start=clock())
        self._lock = asyncio.Lock()
        self._last_value: Optional[float] = None

    @property
    def budget(self) -> FetchBudget:
        return replace(self._budget)

    @property
    def remote_enabled(self) -> bool:
        return self.settings.has_api_key

    def update_settings(self, settings: Settings) -> None:
        """Swap in new settings (e.g. a freshly stored API key); the budget is kept."""
        self.settings = settings

    def _roll_window(self, now: datetime) -> None:
        window = self.settings.api_request_window
        if window is None:
            return
        if (now - self._budget.window_start).total_seconds() >= window:
            logger.debug("Fetch budget window elapsed, resetting count")
            self._budget.count = 0
            self._budget.window_start = now

    def can_fetch(self) -> bool:
        if not self.remote_enabled:
            return False
        now = self._clock()
        self._roll_window(now)
        if self._budget.count >= self.settings.api_request_ceiling:
            return False
        last = self._budget.last_request_at
        if last is None:
            return True
        return (now - last).total_seconds() >= self.settings.api_min_interval

    async def get_current_rate(self) -> RateSample:
        async with self._lock:
            if not self.can_fetch():
                logger.info("Rate limit - using cached/fallback data")
                return self._remember(self.fallback())

            try:
                value = await self._request_rate()
            except RateFetchError as exc:
                logger.warning("API Error: %s", exc)
                return self._remember(self.fallback())

            now = self._clock()
            sample = RateSample(value=value, observed_at=now, source=RateSource.LIVE)
            try:
                self.cache.write(CachedRate.from_sample(sample))
            except OSError as exc:
                logger.warning("Could not persist rate to cache: %s", exc)
            self._budget.count += 1
            self._budget.last_request_at = now

            logger.info("Real %s/%s rate: %s", self.from_currency, self.to_currency, value)
            return self._remember(sample)

    def fallback(self) -> RateSample:
        cached = self.cache.read()
        if cached is not None:
            age = cached.age(self._clock()).total_seconds()
            if age < self.settings.cache_staleness:
                return cached.to_sample()
            logger.info("Cached rate is %.0fs old, past the staleness ceiling", age)
        return self.generator.sample(self._last_value)

    async def _request_rate(self) -> float:
        params = {
            "function": "CURRENCY_EXCHANGE_RATE",
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "apikey": self.settings.alpha_vantage_api_key,
        }
        try:
            response = await self._client.get(
                self.settings.alpha_vantage_api_url,
                params=params,
                timeout=self.settings.api_timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise RateFetchError(f"Request timed out after {self.settings.api_timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise RateFetchError(f"HTTP error {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise RateFetchError(f"Request failed: {exc.__class__.__name__}") from exc
        except httpx.InvalidURL as exc:
            raise RateFetchError("Configured API URL is not a valid URL") from exc
        except ValueError as exc:
            raise RateFetchError("Response body is not valid JSON") from exc
        return parse_exchange_rate(payload)

    def _remember(self, sample: RateSample) -> RateSample:
        self._last_value = sample.value
        return sample

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


async def rate_stream(fetcher: RateLimitedFetcher, interval_s: float) -> AsyncIterator[RateSample]:
    """Yield the current rate now and then every ``interval_s`` seconds.

    A failed refresh is logged and skipped; the stream keeps its schedule.
    """
    while True:
        try:
            sample = await fetcher.get_current_rate()
        except Exception:
            logger.exception("Rate refresh failed, retrying in %ss", interval_s)
        else:
            yield sample
        await asyncio.sleep(max(0.0, interval_s))
