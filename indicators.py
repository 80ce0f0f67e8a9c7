"""Indicators for the EUR/USD dashboard.

Two kinds of numbers live here:

- SMA and RSI computed from the chart's rolling ``deque[float]`` of prices,
  which give the trend of the live series.
- The per-timeframe indicator cards (1h/4h/1d/1w). These are display values
  only: each refresh nudges RSI and MACD by a small random step so the cards
  move with the feed. They are not derived from market data.
"""

import random
from collections import deque
from typing import Dict, Tuple

from models import TimeframeIndicators

RSI_STEP = 1.5
MACD_STEP = 0.0004


def calculate_sma(prices: deque[float], period: int) -> float:
    """Simple Moving Average of the last ``period`` prices.

    With fewer than ``period`` prices the last observed price is returned
    (0.0 for an empty series) so a short history reads as flat.
    """
    if period <= 0:
        raise ValueError("period must be > 0")

    n = len(prices)
    if n == 0:
        return 0.0
    if n < period:
        return float(prices[-1])

    window = list(prices)[n - period:]
    return sum(float(p) for p in window) / period


def calculate_rsi(prices: deque[float], period: int = 14) -> float:
    """Relative Strength Index with Wilder's smoothing, bounded to [0, 100].

    Returns 50.0 until there are at least ``period + 1`` prices.
    """
    if period <= 0:
        raise ValueError("period must be > 0")
    if len(prices) < period + 1:
        return 50.0

    closes = [float(x) for x in prices]
    deltas = [curr - prev for prev, curr in zip(closes, closes[1:])]

    avg_gain = sum(max(d, 0.0) for d in deltas[:period]) / period
    avg_loss = sum(max(-d, 0.0) for d in deltas[:period]) / period
    for d in deltas[period:]:
        avg_gain = (avg_gain * (period - 1) + max(d, 0.0)) / period
        avg_loss = (avg_loss * (period - 1) + max(-d, 0.0)) / period

    if avg_loss == 0.0:
        return 50.0 if avg_gain == 0.0 else 100.0
    if avg_gain == 0.0:
        return 0.0
    rsi = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
    return min(100.0, max(0.0, rsi))


def determine_trend(prices: deque[float]) -> Tuple[str, float]:
    """MA(20) against MA(50) of the chart series, plus RSI(14).

    Returns (trend, rsi) with trend one of "UP" | "DOWN" | "FLAT".
    """
    rsi_val = calculate_rsi(prices, period=14)
    ma_short = calculate_sma(prices, period=20)
    ma_long = calculate_sma(prices, period=50)

    if ma_short > ma_long:
        return "UP", rsi_val
    if ma_short < ma_long:
        return "DOWN", rsi_val
    return "FLAT", rsi_val


def classify_trend(rsi: float, macd: float) -> str:
    if macd > 0 and rsi >= 50.0:
        return "bullish"
    if macd < 0 and rsi < 50.0:
        return "bearish"
    return "neutral"


def drift_timeframes(frames: Dict[str, TimeframeIndicators], rng: random.Random) -> None:
    """Advance every indicator card by one random step, in place."""
    for frame in frames.values():
        frame.rsi = min(100.0, max(0.0, frame.rsi + rng.uniform(-RSI_STEP, RSI_STEP)))
        frame.macd += rng.uniform(-MACD_STEP, MACD_STEP)
        frame.trend = classify_trend(frame.rsi, frame.macd)
