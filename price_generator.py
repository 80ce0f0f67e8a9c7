# src/price_generator.py
"""Synthetic EUR/USD prices for when no real rate is available.

Prices follow a bounded random walk: each step draws a uniform move scaled by
the volatility of the trading session active at that UTC hour, adds a small
constant drift, and is clamped to the configured band so repeated calls can
never wander off.
"""

import math
import random
from datetime import datetime
from typing import Callable, Optional

from models import RateSample, RateSource, utc_now
from settings import Settings


class SyntheticPriceGenerator:
    def __init__(
        self,
        settings: Settings,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self._rng = rng or random.Random()
        self._clock = clock

    def session_multiplier(self, hour: int) -> float:
        """Volatility multiplier for a UTC hour; the first matching band wins."""
        for band in self.settings.session_bands:
            if band.covers(hour):
                return band.multiplier
        return self.settings.default_session_multiplier

    def generate(self, previous_price: Optional[float] = None) -> float:
        s = self.settings
        if previous_price is None or not math.isfinite(previous_price):
            previous_price = s.base_price

        multiplier = self.session_multiplier(self._clock().hour)
        max_move = s.base_max_move * multiplier
        move = self._rng.uniform(-1.0, 1.0) * max_move + s.trend_drift

        return max(s.min_price, min(s.max_price, previous_price + move))

    def sample(self, previous_price: Optional[float] = None) -> RateSample:
        return RateSample(
            value=self.generate(previous_price),
            observed_at=self._clock(),
            source=RateSource.SYNTHETIC,
        )
