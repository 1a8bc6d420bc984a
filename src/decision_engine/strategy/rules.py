"""Deterministic validation, quality and stop rules."""

from __future__ import annotations

from decision_engine.config import Settings
from decision_engine.types import (
    Direction,
    MarketContext,
    PatternKind,
    PatternSignal,
    Regime,
    SetupQuality,
    Trend,
)

_QUALITY_BY_POINTS = {
    4: SetupQuality.A_PLUS,
    3: SetupQuality.A,
    2: SetupQuality.B_PLUS,
    1: SetupQuality.B,
}


def pattern_confidence(kind: PatternKind, context: MarketContext, settings: Settings) -> float:
    """Base pattern score plus ADX-band and ATR-band bonuses."""
    score = kind.base_confidence
    if settings.confidence_adx_min <= context.adx <= settings.confidence_adx_max:
        score += settings.confidence_adx_bonus
    if settings.confidence_atr_min <= context.atr <= settings.confidence_atr_max:
        score += settings.confidence_atr_bonus
    return score


def dynamic_stop_loss(
    direction: Direction,
    entry: float,
    native_stop: float,
    context: MarketContext,
    settings: Settings,
) -> float:
    """Place the stop beyond the nearest swing point, bounded by ATR multiples.

    Never tighter than the native stop.
    """
    atr = context.atr
    buffer = atr * settings.dynamic_sl_atr_buffer
    swing = context.swing_low if direction is Direction.LONG else context.swing_high
    if swing > 0 and (entry - swing) * direction.sign > 0:
        distance = abs(entry - swing) + buffer
    else:
        distance = atr * settings.dynamic_sl_min_atr
    distance = min(
        max(distance, atr * settings.dynamic_sl_min_atr),
        atr * settings.dynamic_sl_max_atr,
    )
    native_distance = (entry - native_stop) * direction.sign
    distance = max(distance, native_distance)
    return entry - direction.sign * distance


def fixed_targets(
    direction: Direction,
    entry: float,
    risk_distance: float,
    tp1_multiplier: float,
    tp2_multiplier: float,
) -> tuple[float, float]:
    """TP1/TP2 at fixed multiples of the stop distance."""
    sign = direction.sign
    return (
        entry + sign * risk_distance * tp1_multiplier,
        entry + sign * risk_distance * tp2_multiplier,
    )


def _aligned(trend: Trend, direction: Direction) -> bool:
    if direction is Direction.LONG:
        return trend is Trend.BULLISH
    return trend is Trend.BEARISH


def _opposed(trend: Trend, direction: Direction) -> bool:
    if direction is Direction.LONG:
        return trend is Trend.BEARISH
    return trend is Trend.BULLISH


class RuleBasedValidator:
    """Trend/regime/macro alignment checks per strategy class."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def validate_mean_reversion(self, signal: PatternSignal, context: MarketContext) -> bool:
        settings = self._settings
        if context.regime in (Regime.TRENDING, Regime.HIGH_VOLATILITY):
            return False
        if context.adx > settings.mr_max_adx:
            return False
        return settings.mr_atr_min <= context.atr <= settings.mr_atr_max

    def validate_trend_following(self, signal: PatternSignal, context: MarketContext) -> bool:
        direction = signal.direction
        if context.regime is Regime.CHOPPY:
            return False
        if _opposed(context.h4_trend, direction) or _opposed(context.daily_trend, direction):
            return False
        macro_against = -context.macro_score * direction.sign
        return macro_against <= self._settings.tf_macro_tolerance


class ConfluenceQualityScorer:
    """Grades a setup by how many context factors agree with it."""

    def score(self, signal: PatternSignal, context: MarketContext) -> SetupQuality:
        direction = signal.direction
        points = 0
        if _aligned(context.daily_trend, direction):
            points += 1
        if _aligned(context.h4_trend, direction):
            points += 1
        if context.macro_score * direction.sign > 0:
            points += 1
        favoured = Regime.RANGING if signal.kind.is_mean_reversion else Regime.TRENDING
        if context.regime is favoured:
            points += 1
        if signal.kind.is_mean_reversion:
            # Reversion setups fade the short-term trend
            points = max(points, 1)
        return _QUALITY_BY_POINTS.get(points, SetupQuality.NONE)
