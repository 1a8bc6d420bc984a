"""Adaptive sizing and take-profit collaborators."""

from __future__ import annotations

from collections import deque

from decision_engine.types import Direction, PatternKind, Regime, SetupQuality

# (tp1, tp2) as multiples of the stop distance
_REGIME_TARGETS: dict[Regime, tuple[float, float]] = {
    Regime.TRENDING: (2.0, 4.0),
    Regime.HIGH_VOLATILITY: (1.5, 3.0),
    Regime.RANGING: (1.2, 2.0),
    Regime.LOW_VOLATILITY: (1.2, 2.0),
    Regime.CHOPPY: (1.0, 1.5),
}
_MEAN_REVERSION_SCALE = 0.75


class RegimeTakeProfit:
    """Take-profit distances keyed on the volatility regime and pattern class."""

    def targets(
        self,
        direction: Direction,
        entry: float,
        risk_distance: float,
        regime: Regime,
        kind: PatternKind,
    ) -> tuple[float, float] | None:
        multiples = _REGIME_TARGETS.get(regime)
        if multiples is None or risk_distance <= 0:
            return None
        tp1_mult, tp2_mult = multiples
        if kind.is_mean_reversion:
            tp1_mult *= _MEAN_REVERSION_SCALE
            tp2_mult *= _MEAN_REVERSION_SCALE
        sign = direction.sign
        return entry + sign * risk_distance * tp1_mult, entry + sign * risk_distance * tp2_mult


class PerformanceSizer:
    """Scales risk by the recent win rate of closed trades."""

    def __init__(
        self,
        *,
        window: int = 20,
        min_trades: int = 5,
        boost: float = 1.25,
        cut: float = 0.5,
        max_risk_pct: float = 2.0,
    ) -> None:
        self._results: deque[float] = deque(maxlen=window)
        self._min_trades = min_trades
        self._boost = boost
        self._cut = cut
        self._max_risk_pct = max_risk_pct

    @property
    def win_rate(self) -> float | None:
        if len(self._results) < self._min_trades:
            return None
        wins = sum(1 for profit in self._results if profit > 0)
        return wins / len(self._results)

    def record_trade(self, profit: float) -> None:
        self._results.append(profit)

    def adjusted_risk(self, base_risk: float, quality: SetupQuality) -> float:
        win_rate = self.win_rate
        if win_rate is None:
            return base_risk
        if win_rate >= 0.6 and quality in (SetupQuality.A_PLUS, SetupQuality.A):
            factor = self._boost
        elif win_rate <= 0.35:
            factor = self._cut
        else:
            factor = 1.0
        return min(base_risk * factor, self._max_risk_pct)
