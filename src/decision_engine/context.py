"""Per-tick market context capture."""

from __future__ import annotations

import math
from datetime import datetime, timezone

from decision_engine.config import Settings
from decision_engine.ports import MarketDataProvider
from decision_engine.types import MarketContext, Session
from decision_engine.utils.logging import get_logger

# Server-hour boundaries, [start, end)
_SESSION_HOURS: tuple[tuple[int, int, Session], ...] = (
    (0, 7, Session.ASIAN),
    (7, 13, Session.LONDON),
    (13, 16, Session.OVERLAP),
    (16, 21, Session.NEW_YORK),
)


def session_for_hour(hour: int) -> Session:
    """Classify a server hour into a trading session."""
    for start, end, session in _SESSION_HOURS:
        if start <= hour < end:
            return session
    return Session.OFF_HOURS


def in_skip_window(hour: int, start: int, end: int) -> bool:
    """Whether `hour` falls inside an inclusive skip window (may wrap midnight)."""
    if start < 0 or end < 0:
        return False
    if start <= end:
        return start <= hour <= end
    return hour >= start or hour <= end


def in_weekend_window(now: datetime, settings: Settings) -> bool:
    """Whether `now` is at or past the pre-weekend closing time."""
    if not settings.close_on_weekend:
        return False
    weekday = now.weekday()
    if weekday > settings.weekend_close_weekday:
        return True
    return weekday == settings.weekend_close_weekday and now.hour >= settings.weekend_close_hour


class MarketClock:
    """Server-time source fed from the latest captured context."""

    def __init__(self) -> None:
        self._now: datetime | None = None

    def advance(self, now: datetime) -> None:
        self._now = now

    def __call__(self) -> datetime:
        if self._now is None:
            return datetime.now(timezone.utc)
        return self._now


def capture_context(provider: MarketDataProvider, settings: Settings) -> MarketContext | None:
    """Build one immutable snapshot; ``None`` when no usable quote is available."""
    logger = get_logger("decision_engine.context")
    quote = provider.quote()
    if quote is None or not _positive(quote.bid) or not _positive(quote.ask):
        logger.warning("quote_unavailable")
        return None

    now = provider.server_time()
    mid = (quote.bid + quote.ask) / 2.0
    macro = provider.macro_score()
    return MarketContext(
        time=now,
        bar_time=provider.bar_time(),
        bid=quote.bid,
        ask=quote.ask,
        atr=_reading(provider, "atr", settings.default_atr),
        adx=_reading(provider, "adx", settings.default_adx),
        trend_ma=_reading(provider, "trend_ma", 0.0),
        mid_band=_reading(provider, "mid_band", mid),
        swing_high=_reading(provider, "swing_high", 0.0),
        swing_low=_reading(provider, "swing_low", 0.0),
        daily_trend=provider.trend("D1"),
        h4_trend=provider.trend("H4"),
        regime=provider.regime(),
        macro_score=int(macro) if macro is not None else 0,
        session=session_for_hour(now.hour),
    )


def _reading(provider: MarketDataProvider, name: str, default: float) -> float:
    value = provider.indicator(name)
    if value is None or not _positive(value):
        return default
    return float(value)


def _positive(value: float) -> bool:
    return math.isfinite(value) and value > 0
