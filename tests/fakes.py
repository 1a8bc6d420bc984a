"""Fakes and builders shared by the test modules."""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime
from typing import Any

import pandas as pd

from decision_engine.config import Settings
from decision_engine.context import MarketClock, session_for_hour
from decision_engine.engine import EngineContext, build_engine
from decision_engine.exec.paper import PaperBroker
from decision_engine.types import (
    BrokerPosition,
    ClosedTrade,
    Direction,
    MarketContext,
    PatternKind,
    PatternSignal,
    PendingSignal,
    Quote,
    Regime,
    SetupQuality,
    Trend,
)

# Tuesday, London session
NOW = datetime(2026, 3, 10, 9, 30, tzinfo=UTC)


def make_context(**overrides: Any) -> MarketContext:
    time = overrides.pop("time", NOW)
    defaults: dict[str, Any] = {
        "time": time,
        "bar_time": time.replace(minute=0, second=0, microsecond=0),
        "bid": 1999.9,
        "ask": 2000.0,
        "atr": 3.0,
        "adx": 25.0,
        "trend_ma": 0.0,
        "mid_band": 2005.0,
        "swing_high": 2010.0,
        "swing_low": 1990.0,
        "daily_trend": Trend.BULLISH,
        "h4_trend": Trend.BULLISH,
        "regime": Regime.TRENDING,
        "macro_score": 2,
        "session": session_for_hour(time.hour),
    }
    defaults.update(overrides)
    return MarketContext(**defaults)


def make_signal(**overrides: Any) -> PatternSignal:
    defaults: dict[str, Any] = {
        "direction": Direction.LONG,
        "kind": PatternKind.ENGULFING,
        "name": "Bullish Engulfing",
        "entry_price": 2000.0,
        "stop_loss": 1995.0,
    }
    defaults.update(overrides)
    return PatternSignal(**defaults)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeAccount:
    """Account provider with directly settable balances and history."""

    def __init__(
        self,
        balance: float = 10_000.0,
        free_margin: float | None = None,
        margin_per_lot: float = 2_000.0,
    ) -> None:
        self.balance_value = balance
        self.free_margin_value = balance if free_margin is None else free_margin
        self.margin_per_lot = margin_per_lot
        self.realized_today = 0.0
        self.floating = 0.0
        self.positions: list[BrokerPosition] = []
        self.closed: dict[int, ClosedTrade] = {}

    def balance(self) -> float:
        return self.balance_value

    def free_margin(self) -> float:
        return self.free_margin_value

    def margin_required(self, direction: Direction, lots: float, price: float) -> float | None:
        return lots * self.margin_per_lot

    def open_positions(self, magic: int) -> list[BrokerPosition]:
        return [p for p in self.positions if p.magic == magic]

    def is_position_open(self, ticket: int) -> bool:
        return any(p.ticket == ticket for p in self.positions)

    def closed_trade(self, ticket: int) -> ClosedTrade | None:
        return self.closed.get(ticket)

    def realized_profit_since(self, since: datetime, magic: int) -> float:
        return self.realized_today

    def floating_profit(self, magic: int) -> float:
        return self.floating

    def record_close(self, ticket: int, profit: float) -> None:
        self.positions = [p for p in self.positions if p.ticket != ticket]
        self.closed[ticket] = ClosedTrade(
            ticket=ticket, profit=profit, exit_price=2000.0, closed_at=NOW
        )


class FakeMarketData:
    """Market data provider serving a mutable context."""

    def __init__(self, context: MarketContext | None = None, *, quote_available: bool = True) -> None:
        self.context = context or make_context()
        self.quote_available = quote_available

    def set(self, **overrides: Any) -> None:
        time = overrides.get("time")
        if time is not None:
            overrides.setdefault("bar_time", time.replace(minute=0, second=0, microsecond=0))
            overrides.setdefault("session", session_for_hour(time.hour))
        self.context = dataclasses.replace(self.context, **overrides)

    def quote(self) -> Quote | None:
        if not self.quote_available:
            return None
        return Quote(bid=self.context.bid, ask=self.context.ask)

    def server_time(self) -> datetime:
        return self.context.time

    def bar_time(self) -> datetime:
        return self.context.bar_time

    def indicator(self, name: str) -> float | None:
        return getattr(self.context, name)

    def trend(self, timeframe: str) -> Trend:
        return self.context.daily_trend if timeframe == "D1" else self.context.h4_trend

    def regime(self) -> Regime:
        return self.context.regime

    def macro_score(self) -> int | None:
        return self.context.macro_score


class ScriptedDetector:
    def __init__(self, signal: PatternSignal | None = None) -> None:
        self.signal = signal
        self.calls = 0

    def detect(self, context: MarketContext) -> PatternSignal | None:
        self.calls += 1
        return self.signal


class FixedConfluence:
    def __init__(self, score: float = 100.0, confirms: bool = True) -> None:
        self._score = score
        self._confirms = confirms

    def score(self, direction: Direction, context: MarketContext) -> float:
        return self._score

    def confirms(self, direction: Direction, context: MarketContext) -> bool:
        return self._confirms


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def notify(self, title: str, message: str) -> None:
        self.messages.append((title, message))


class RaisingNotifier:
    def notify(self, title: str, message: str) -> None:
        raise RuntimeError("channel_down")


def make_broker(settings: Settings, context: MarketContext | None = None) -> PaperBroker:
    context = context or make_context()
    broker = PaperBroker(
        symbol=settings.symbol,
        magic=settings.strategy_magic,
        initial_balance=settings.paper_initial_balance,
        contract_size=settings.contract_size,
        leverage=settings.paper_leverage,
    )
    broker.update_market(context.bid, context.ask, context.time)
    return broker


def build_test_engine(
    settings: Settings,
    broker: PaperBroker,
    *,
    market: FakeMarketData | None = None,
    detector: ScriptedDetector | None = None,
    **kwargs: Any,
) -> EngineContext:
    clock = MarketClock()
    clock.advance(NOW)
    return build_engine(
        settings,
        provider=market or FakeMarketData(),
        account=broker,
        gateway=broker,
        trend_detector=detector or ScriptedDetector(),
        clock=clock,
        **kwargs,
    )


def make_pending(**overrides: Any) -> PendingSignal:
    defaults: dict[str, Any] = {
        "direction": Direction.LONG,
        "pattern_kind": PatternKind.ENGULFING,
        "pattern_name": "Bullish Engulfing",
        "entry_price": 2000.0,
        "stop_loss": 1995.0,
        "tp1": 2007.5,
        "tp2": 2015.0,
        "quality": SetupQuality.A,
        "regime": Regime.TRENDING,
        "daily_trend": Trend.BULLISH,
        "h4_trend": Trend.BULLISH,
        "macro_score": 2,
        "staged_bar": 1,
        "staged_at": NOW,
    }
    defaults.update(overrides)
    return PendingSignal(**defaults)


def replay_frame() -> pd.DataFrame:
    """Stage on 09:00, confirm on 10:00, take profit inside the 10:00 bar, quiet 11:00."""
    base = {
        "atr": 3.0,
        "adx": 25.0,
        "trend_ma": 0.0,
        "mid_band": 2005.0,
        "swing_high": 2010.0,
        "swing_low": 1990.0,
        "daily_trend": "BULLISH",
        "h4_trend": "BULLISH",
        "regime": "TRENDING",
        "macro_score": 2,
        "pattern": None,
        "direction": None,
        "pattern_name": None,
        "stop_loss": None,
    }
    rows = [
        {
            **base,
            "time": "2026-03-10T09:00:00Z",
            "bid": 1999.9,
            "ask": 2000.0,
            "pattern": "engulfing",
            "direction": "LONG",
            "pattern_name": "Bullish Engulfing",
            "stop_loss": 1995.0,
        },
        {**base, "time": "2026-03-10T10:00:00Z", "bid": 1999.9, "ask": 2000.0},
        {
            **base,
            "time": "2026-03-10T10:30:00Z",
            "bar_time": "2026-03-10T10:00:00Z",
            "bid": 2016.0,
            "ask": 2016.1,
        },
        {**base, "time": "2026-03-10T11:00:00Z", "bid": 2016.0, "ask": 2016.1},
    ]
    frame = pd.DataFrame(rows)
    frame["bar_time"] = frame["bar_time"].fillna(frame["time"])
    return frame
