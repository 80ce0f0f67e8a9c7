# src/formatting.py
# Display strings for prices and indicator values.


def format_price(price: float) -> str:
    return f"{float(price):.4f}"


def format_price_change(change: float) -> str:
    sign = "+" if change >= 0 else ""
    return f"{sign}{change:.4f}"


def percent_change(current: float, previous: float) -> str:
    if previous == 0:
        return "0.000"
    return f"{(current - previous) / previous * 100:.3f}"


def change_label(change: float, price: float) -> str:
    """e.g. "+0.0012 (0.103%)"; the percentage is relative to the current price."""
    pct = change / price * 100 if price else 0.0
    return f"{format_price_change(change)} ({pct:.3f}%)"


def format_macd(macd: float) -> str:
    return f"+{macd:.4f}" if macd > 0 else f"{macd:.4f}"
