# src/models.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RateSource(str, Enum):
    LIVE = "live"
    CACHED = "cached"
    SYNTHETIC = "synthetic"

    @property
    def label(self) -> str:
        return _SOURCE_LABELS[self]


_SOURCE_LABELS = {
    RateSource.LIVE: "Alpha Vantage",
    RateSource.CACHED: "Cached",
    RateSource.SYNTHETIC: "Simulated (Fallback)",
}


# One exchange-rate observation, fetched or synthetic
@dataclass(frozen=True)
class RateSample:
    value: float
    observed_at: datetime
    source: RateSource = RateSource.SYNTHETIC


@dataclass
class FetchBudget:
    count: int = 0
    window_start: datetime = field(default_factory=utc_now)
    last_request_at: Optional[datetime] = None


# The single persisted record: {"rate": ..., "timestamp": ...}
class CachedRate(BaseModel):
    rate: float
    timestamp: datetime

    @classmethod
    def from_sample(cls, sample: RateSample) -> "CachedRate":
        return cls(rate=sample.value, timestamp=sample.observed_at)

    def age(self, now: datetime) -> timedelta:
        stamp = self.timestamp
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        return now - stamp

    def to_sample(self) -> RateSample:
        return RateSample(value=self.rate, observed_at=self.timestamp, source=RateSource.CACHED)


@dataclass
class TimeframeIndicators:
    timeframe: str
    rsi: float
    macd: float
    trend: Literal["bullish", "bearish", "neutral"]


def default_timeframes() -> Dict[str, TimeframeIndicators]:
    return {
        "1h": TimeframeIndicators("1h", rsi=65.4, macd=0.0024, trend="bullish"),
        "4h": TimeframeIndicators("4h", rsi=58.2, macd=0.0018, trend="bullish"),
        "1d": TimeframeIndicators("1d", rsi=48.7, macd=-0.0005, trend="neutral"),
        "1w": TimeframeIndicators("1w", rsi=35.1, macd=-0.0089, trend="bearish"),
    }


CHART_TIMEFRAMES = ("1H", "4H", "1D", "1W")


@dataclass(frozen=True)
class PricePoint:
    time: datetime
    price: float


# What the dashboard shows; updated by the refresh loop
class DashboardState:
    def __init__(self, initial_price: float = 1.1659, initial_change: float = 0.0012, history_size: int = 50):
        self.current_price: float = initial_price
        self.price_change: float = initial_change
        self.last_update: datetime = utc_now()
        self.observed_at: Optional[datetime] = None
        self.data_source: str = "Pending"
        self.chart_timeframe: str = "1H"
        self.history: deque[PricePoint] = deque(maxlen=history_size)
        self.timeframes: Dict[str, TimeframeIndicators] = default_timeframes()
        self.updates: int = 0

    def apply(self, sample: RateSample, now: Optional[datetime] = None) -> None:
        self.price_change = sample.value - self.current_price
        self.current_price = sample.value
        self.observed_at = sample.observed_at
        self.last_update = now or utc_now()
        self.data_source = sample.source.label
        self.history.append(PricePoint(time=self.last_update, price=sample.value))
        self.updates += 1

    @property
    def prices(self) -> deque[float]:
        return deque((point.price for point in self.history), maxlen=self.history.maxlen)


# --- API response models ---

class RateResponse(BaseModel):
    pair: str = "EUR/USD"
    price: float
    change: float
    price_text: str
    change_text: str
    change_percent: str
    direction: Literal["positive", "negative"]
    data_source: str
    observed_at: Optional[datetime]
    last_update: datetime


class HistoryResponse(BaseModel):
    timeframe: str
    labels: List[str]
    prices: List[float]


class TimeframeCard(BaseModel):
    timeframe: str
    rsi: float  # [0, 100]
    macd: float
    rsi_text: str
    macd_text: str
    trend: Literal["bullish", "bearish", "neutral"]


class IndicatorsResponse(BaseModel):
    trend: Literal["UP", "DOWN", "FLAT"]
    rsi: float
    timeframes: List[TimeframeCard]


class ApiKeyRequest(BaseModel):
    api_key: str
