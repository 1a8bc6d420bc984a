"""Shared domain types for the decision engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from decision_engine.errors import RejectReason


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1


class Trend(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class Regime(str, Enum):
    TRENDING = "TRENDING"
    RANGING = "RANGING"
    CHOPPY = "CHOPPY"
    HIGH_VOLATILITY = "HIGH_VOLATILITY"
    LOW_VOLATILITY = "LOW_VOLATILITY"
    UNKNOWN = "UNKNOWN"


class Session(str, Enum):
    ASIAN = "ASIAN"
    LONDON = "LONDON"
    OVERLAP = "OVERLAP"
    NEW_YORK = "NEW_YORK"
    OFF_HOURS = "OFF_HOURS"


class SetupQuality(str, Enum):
    A_PLUS = "A+"
    A = "A"
    B_PLUS = "B+"
    B = "B"
    NONE = "None"


class StrategyClass(str, Enum):
    TREND_FOLLOWING = "trend_following"
    MEAN_REVERSION = "mean_reversion"


class PatternFamily(Enum):
    """Pattern family with its risk multiplier."""

    MA_CROSS = ("ma_cross", 1.10)
    CANDLE = ("candle", 1.05)
    STRUCTURE = ("structure", 1.0)
    MOMENTUM = ("momentum", 1.0)
    BAND = ("band", 1.0)
    RANGE_BOX = ("range_box", 1.0)

    def __init__(self, label: str, risk_multiplier: float) -> None:
        self.label = label
        self.risk_multiplier = risk_multiplier


class PatternKind(Enum):
    """Pattern identity decided once at detection time."""

    MA_CROSS = ("ma_cross", PatternFamily.MA_CROSS, StrategyClass.TREND_FOLLOWING, 60.0)
    ENGULFING = ("engulfing", PatternFamily.CANDLE, StrategyClass.TREND_FOLLOWING, 55.0)
    PIN_BAR = ("pin_bar", PatternFamily.CANDLE, StrategyClass.TREND_FOLLOWING, 50.0)
    ORDER_BLOCK = ("order_block", PatternFamily.STRUCTURE, StrategyClass.TREND_FOLLOWING, 55.0)
    MOMENTUM_BREAKOUT = (
        "momentum_breakout",
        PatternFamily.MOMENTUM,
        StrategyClass.TREND_FOLLOWING,
        50.0,
    )
    BAND_REVERSION = ("band_reversion", PatternFamily.BAND, StrategyClass.MEAN_REVERSION, 55.0)
    RSI_EXTREME = ("rsi_extreme", PatternFamily.MOMENTUM, StrategyClass.MEAN_REVERSION, 50.0)
    RANGE_BOX = ("range_box", PatternFamily.RANGE_BOX, StrategyClass.MEAN_REVERSION, 55.0)

    def __init__(
        self,
        code: str,
        family: PatternFamily,
        strategy: StrategyClass,
        base_confidence: float,
    ) -> None:
        self.code = code
        self.family = family
        self.strategy = strategy
        self.base_confidence = base_confidence

    @property
    def risk_multiplier(self) -> float:
        return self.family.risk_multiplier

    @property
    def is_mean_reversion(self) -> bool:
        return self.strategy is StrategyClass.MEAN_REVERSION

    @property
    def is_range_box(self) -> bool:
        return self.family is PatternFamily.RANGE_BOX

    @classmethod
    def from_code(cls, code: str) -> PatternKind:
        for kind in cls:
            if kind.code == code:
                return kind
        raise ValueError(f"unknown_pattern_kind: {code}")


@dataclass(slots=True, frozen=True)
class Quote:
    bid: float
    ask: float


@dataclass(slots=True, frozen=True)
class MarketContext:
    """Market snapshot captured once per tick and passed through the pipeline."""

    time: datetime
    bar_time: datetime
    bid: float
    ask: float
    atr: float
    adx: float
    trend_ma: float
    mid_band: float
    swing_high: float
    swing_low: float
    daily_trend: Trend
    h4_trend: Trend
    regime: Regime
    macro_score: int
    session: Session

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2.0

    def entry_price(self, direction: Direction) -> float:
        """Price a market order in `direction` would fill at."""
        return self.ask if direction is Direction.LONG else self.bid

    def exit_price(self, direction: Direction) -> float:
        return self.bid if direction is Direction.LONG else self.ask


@dataclass(slots=True, frozen=True)
class PatternSignal:
    """Classified signal produced by a pattern detector."""

    direction: Direction
    kind: PatternKind
    name: str
    entry_price: float
    stop_loss: float


@dataclass(slots=True, frozen=True)
class Position:
    """One open trade; state changes produce a new instance."""

    ticket: int
    direction: Direction
    pattern_kind: PatternKind | None
    pattern_name: str
    lots: float
    entry_price: float
    stop_loss: float
    tp1: float
    tp2: float
    opened_at: datetime
    quality: SetupQuality
    initial_risk_pct: float
    tp1_closed: bool = False
    tp2_closed: bool = False
    at_breakeven: bool = False


@dataclass(slots=True, frozen=True)
class PendingSignal:
    """Candidate trade awaiting the confirmation bar."""

    direction: Direction
    pattern_kind: PatternKind
    pattern_name: str
    entry_price: float
    stop_loss: float
    tp1: float
    tp2: float
    quality: SetupQuality
    regime: Regime
    daily_trend: Trend
    h4_trend: Trend
    macro_score: int
    staged_bar: int
    staged_at: datetime


@dataclass(slots=True)
class RiskStats:
    """Process-wide risk ledger snapshot."""

    current_exposure: float = 0.0
    daily_pnl_pct: float = 0.0
    consecutive_wins: int = 0
    consecutive_losses: int = 0
    positions_count: int = 0
    trading_halted: bool = False
    last_reset: datetime | None = None


@dataclass(slots=True)
class RiskCheckResult:
    """Result of admission checks."""

    allowed: bool
    reasons: list[RejectReason] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class BrokerPosition:
    """Live position as reported by the account provider."""

    ticket: int
    direction: Direction
    lots: float
    open_price: float
    stop_loss: float
    take_profit: float
    profit: float
    opened_at: datetime
    magic: int = 0
    comment: str = ""


@dataclass(slots=True, frozen=True)
class ClosedTrade:
    """Trade history record for a closed position."""

    ticket: int
    profit: float
    exit_price: float
    closed_at: datetime


@dataclass(slots=True)
class Decision:
    """Outcome of one trade decision step."""

    status: str
    reason: RejectReason | None = None
    ticket: int = 0
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return self.reason is None

    @classmethod
    def reject(cls, reason: RejectReason, **details: Any) -> Decision:
        return cls(status="rejected", reason=reason, details=details)

    @classmethod
    def executed(cls, ticket: int, **details: Any) -> Decision:
        return cls(status="executed", ticket=ticket, details=details)

    @classmethod
    def staged(cls, **details: Any) -> Decision:
        return cls(status="pending", details=details)


@dataclass(slots=True)
class TickResult:
    """Outcome of one engine tick."""

    status: str
    new_bar: bool = False
    decisions: list[Decision] = field(default_factory=list)
    closed_tickets: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
