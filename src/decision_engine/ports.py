"""Collaborator interfaces consumed by the decision core."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from decision_engine.types import (
    BrokerPosition,
    ClosedTrade,
    Direction,
    MarketContext,
    PatternKind,
    PatternSignal,
    Position,
    Quote,
    Regime,
    SetupQuality,
    Trend,
)


class MarketDataProvider(Protocol):
    """Pull-based market data and precomputed indicator readings.

    Readings that are not available come back as ``None``.
    """

    def quote(self) -> Quote | None: ...

    def server_time(self) -> datetime: ...

    def bar_time(self) -> datetime: ...

    def indicator(self, name: str) -> float | None: ...

    def trend(self, timeframe: str) -> Trend: ...

    def regime(self) -> Regime: ...

    def macro_score(self) -> int | None: ...


class AccountProvider(Protocol):
    """Read-only account and position state."""

    def balance(self) -> float: ...

    def free_margin(self) -> float: ...

    def margin_required(self, direction: Direction, lots: float, price: float) -> float | None: ...

    def open_positions(self, magic: int) -> list[BrokerPosition]: ...

    def is_position_open(self, ticket: int) -> bool: ...

    def closed_trade(self, ticket: int) -> ClosedTrade | None: ...

    def realized_profit_since(self, since: datetime, magic: int) -> float: ...

    def floating_profit(self, magic: int) -> float: ...


class OrderGateway(Protocol):
    """Order execution. Open calls return a ticket id, or 0 on failure."""

    def open_long(self, lots: float, stop_loss: float, take_profit: float, comment: str) -> int: ...

    def open_short(self, lots: float, stop_loss: float, take_profit: float, comment: str) -> int: ...

    def close_position(self, ticket: int) -> bool: ...

    def close_partial(self, ticket: int, lots: float) -> bool: ...

    def modify_position(self, ticket: int, stop_loss: float, take_profit: float) -> bool: ...

    def close_all(self) -> int: ...


class PatternDetector(Protocol):
    def detect(self, context: MarketContext) -> PatternSignal | None: ...


class SignalValidator(Protocol):
    def validate_mean_reversion(self, signal: PatternSignal, context: MarketContext) -> bool: ...

    def validate_trend_following(self, signal: PatternSignal, context: MarketContext) -> bool: ...


class QualityScorer(Protocol):
    def score(self, signal: PatternSignal, context: MarketContext) -> SetupQuality: ...


class StructuralConfluence(Protocol):
    def score(self, direction: Direction, context: MarketContext) -> float: ...


class MomentumConfluence(Protocol):
    def confirms(self, direction: Direction, context: MarketContext) -> bool: ...


class PositionManager(Protocol):
    """Per-tick management of a live position."""

    def manage(self, position: Position, context: MarketContext) -> Position: ...

    def should_exit_early(self, position: Position, context: MarketContext) -> bool: ...


class AdaptiveTakeProfit(Protocol):
    def targets(
        self,
        direction: Direction,
        entry: float,
        risk_distance: float,
        regime: Regime,
        kind: PatternKind,
    ) -> tuple[float, float] | None: ...


class DynamicSizer(Protocol):
    def adjusted_risk(self, base_risk: float, quality: SetupQuality) -> float: ...

    def record_trade(self, profit: float) -> None: ...


class TradeLogger(Protocol):
    def log_entry(self, position: Position) -> None: ...

    def log_exit(self, position: Position, exit_price: float, profit: float, reason: str) -> None: ...


class Notifier(Protocol):
    def notify(self, title: str, message: str) -> None: ...
