"""Historical observation loading and replay collaborators."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pandas as pd  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, model_validator

from decision_engine.types import (
    Direction,
    MarketContext,
    PatternKind,
    PatternSignal,
    Quote,
    Regime,
    StrategyClass,
    Trend,
)

_REQUIRED_COLUMNS = ["time", "bid", "ask"]
_NUMERIC_COLUMNS = [
    "bid",
    "ask",
    "atr",
    "adx",
    "trend_ma",
    "mid_band",
    "swing_high",
    "swing_low",
    "macro_score",
    "stop_loss",
    "ob_score",
    "momentum_bias",
]
_INDICATORS = ("atr", "adx", "trend_ma", "mid_band", "swing_high", "swing_low")


class Observation(BaseModel):
    """One precomputed market observation."""

    model_config = ConfigDict(extra="ignore")

    time: datetime
    bar_time: datetime
    bid: float = Field(gt=0.0)
    ask: float = Field(gt=0.0)
    atr: float | None = None
    adx: float | None = None
    trend_ma: float | None = None
    mid_band: float | None = None
    swing_high: float | None = None
    swing_low: float | None = None
    daily_trend: Trend = Trend.NEUTRAL
    h4_trend: Trend = Trend.NEUTRAL
    regime: Regime = Regime.UNKNOWN
    macro_score: int | None = None
    pattern: str | None = None
    direction: Direction | None = None
    pattern_name: str | None = None
    stop_loss: float | None = None
    ob_score: float | None = None
    momentum_bias: int | None = None

    @model_validator(mode="after")
    def check_pattern(self) -> "Observation":
        """Pattern rows need a direction and a stop."""
        if self.ask < self.bid:
            raise ValueError("ask_below_bid")
        if self.pattern is None:
            return self
        PatternKind.from_code(self.pattern)
        if self.direction is None or self.stop_loss is None:
            raise ValueError("pattern_requires_direction_and_stop_loss")
        return self

    @property
    def pattern_kind(self) -> PatternKind | None:
        return PatternKind.from_code(self.pattern) if self.pattern else None


def load_observations_csv(path: Path) -> list[Observation]:
    """Load observations from CSV and validate every row."""
    df = pd.read_csv(path)
    return to_observations(normalize_observations(df))


def normalize_observations(df: pd.DataFrame) -> pd.DataFrame:
    """Validate/normalize dataframe to the expected observation shape."""
    missing = [col for col in _REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"missing_observation_columns: {','.join(missing)}")

    normalized = df.copy()
    normalized["time"] = pd.to_datetime(normalized["time"], utc=True)
    if "bar_time" in normalized.columns:
        normalized["bar_time"] = pd.to_datetime(normalized["bar_time"], utc=True)
    else:
        normalized["bar_time"] = normalized["time"]
    for col in _NUMERIC_COLUMNS:
        if col in normalized.columns:
            normalized[col] = pd.to_numeric(normalized[col], errors="coerce")

    normalized = normalized.dropna(subset=["time", "bar_time", "bid", "ask"])
    normalized = normalized.sort_values("time", kind="stable").reset_index(drop=True)
    if normalized.empty:
        raise ValueError("normalized_observations_empty")
    if not bool(normalized["bar_time"].is_monotonic_increasing):
        raise ValueError("bar_time_not_monotonic_after_normalization")
    return normalized


def to_observations(df: pd.DataFrame) -> list[Observation]:
    records = df.astype(object).where(df.notna(), None).to_dict(orient="records")
    return [Observation.model_validate(record) for record in records]


class ReplayMarketData:
    """Market data provider stepping through observations one at a time."""

    def __init__(self, observations: list[Observation]) -> None:
        self._rows = list(observations)
        self._index = -1

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def current(self) -> Observation | None:
        if 0 <= self._index < len(self._rows):
            return self._rows[self._index]
        return None

    def advance(self) -> Observation | None:
        """Move to the next observation; ``None`` once exhausted."""
        if self._index < len(self._rows):
            self._index += 1
        return self.current

    def quote(self) -> Quote | None:
        row = self.current
        if row is None:
            return None
        return Quote(bid=row.bid, ask=row.ask)

    def server_time(self) -> datetime:
        return self._require().time

    def bar_time(self) -> datetime:
        return self._require().bar_time

    def indicator(self, name: str) -> float | None:
        if name not in _INDICATORS:
            raise ValueError(f"unsupported_indicator: {name}")
        row = self.current
        return getattr(row, name) if row is not None else None

    def trend(self, timeframe: str) -> Trend:
        row = self.current
        if row is None:
            return Trend.NEUTRAL
        if timeframe == "D1":
            return row.daily_trend
        if timeframe == "H4":
            return row.h4_trend
        raise ValueError(f"unsupported_timeframe: {timeframe}")

    def regime(self) -> Regime:
        row = self.current
        return row.regime if row is not None else Regime.UNKNOWN

    def macro_score(self) -> int | None:
        row = self.current
        return row.macro_score if row is not None else None

    def _require(self) -> Observation:
        row = self.current
        if row is None:
            raise RuntimeError("replay_position_out_of_range")
        return row


class ReplayPatternDetector:
    """Emits the pattern recorded on the current observation for one strategy class."""

    def __init__(self, provider: ReplayMarketData, strategy: StrategyClass) -> None:
        self._provider = provider
        self._strategy = strategy

    def detect(self, context: MarketContext) -> PatternSignal | None:
        row = self._provider.current
        if row is None:
            return None
        kind = row.pattern_kind
        if kind is None or kind.strategy is not self._strategy:
            return None
        if row.direction is None or row.stop_loss is None:
            return None
        return PatternSignal(
            direction=row.direction,
            kind=kind,
            name=row.pattern_name or kind.code,
            entry_price=context.entry_price(row.direction),
            stop_loss=row.stop_loss,
        )


class ReplayConfluence:
    """Order-block score and momentum bias read from the current observation."""

    def __init__(self, provider: ReplayMarketData) -> None:
        self._provider = provider

    def score(self, direction: Direction, context: MarketContext) -> float:
        row = self._provider.current
        if row is None or row.ob_score is None:
            return 0.0
        return row.ob_score

    def confirms(self, direction: Direction, context: MarketContext) -> bool:
        row = self._provider.current
        if row is None or row.momentum_bias is None:
            return False
        return row.momentum_bias * direction.sign > 0
