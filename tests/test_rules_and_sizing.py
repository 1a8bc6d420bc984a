from __future__ import annotations

import pytest
from fakes import FakeMarketData, make_context, make_signal

from decision_engine.config import Settings
from decision_engine.context import capture_context, in_skip_window, session_for_hour
from decision_engine.strategy.rules import (
    ConfluenceQualityScorer,
    RuleBasedValidator,
    dynamic_stop_loss,
    pattern_confidence,
)
from decision_engine.strategy.sizing import PerformanceSizer, RegimeTakeProfit
from decision_engine.types import (
    Direction,
    PatternKind,
    Regime,
    Session,
    SetupQuality,
    Trend,
)


class _SparseMarketData(FakeMarketData):
    def indicator(self, name: str) -> float | None:
        return None

    def macro_score(self) -> int | None:
        return None


@pytest.mark.parametrize(
    ("kind", "adx", "atr", "expected"),
    [
        (PatternKind.ENGULFING, 25.0, 3.0, 75.0),
        (PatternKind.MA_CROSS, 45.0, 9.0, 60.0),
        (PatternKind.PIN_BAR, 10.0, 3.0, 60.0),
        (PatternKind.PIN_BAR, 45.0, 9.0, 50.0),
    ],
)
def test_pattern_confidence(kind: PatternKind, adx: float, atr: float, expected: float) -> None:
    context = make_context(adx=adx, atr=atr)
    assert pattern_confidence(kind, context, Settings()) == pytest.approx(expected)


def test_dynamic_stop_clamped_to_atr_multiple() -> None:
    # swing 1990 + 0.9 buffer = 10.9, capped at 3 ATR
    stop = dynamic_stop_loss(Direction.LONG, 2000.0, 1995.0, make_context(), Settings())
    assert stop == pytest.approx(1991.0)


def test_dynamic_stop_never_tighter_than_native() -> None:
    context = make_context(swing_low=1999.0)
    stop = dynamic_stop_loss(Direction.LONG, 2000.0, 1995.0, context, Settings())
    assert stop == pytest.approx(1995.0)


def test_dynamic_stop_for_short_uses_swing_high() -> None:
    stop = dynamic_stop_loss(Direction.SHORT, 1999.9, 2002.0, make_context(), Settings())
    assert stop == pytest.approx(2008.9)


def test_trend_following_validation() -> None:
    validator = RuleBasedValidator(Settings())
    signal = make_signal()

    assert validator.validate_trend_following(signal, make_context())
    assert validator.validate_trend_following(signal, make_context(macro_score=-2))
    assert not validator.validate_trend_following(signal, make_context(macro_score=-3))
    assert not validator.validate_trend_following(signal, make_context(regime=Regime.CHOPPY))
    assert not validator.validate_trend_following(signal, make_context(h4_trend=Trend.BEARISH))


def test_mean_reversion_validation() -> None:
    validator = RuleBasedValidator(Settings())
    signal = make_signal(kind=PatternKind.BAND_REVERSION)

    assert validator.validate_mean_reversion(signal, make_context(regime=Regime.RANGING, adx=20.0))
    assert not validator.validate_mean_reversion(signal, make_context())
    assert not validator.validate_mean_reversion(
        signal, make_context(regime=Regime.RANGING, adx=30.0)
    )
    assert not validator.validate_mean_reversion(
        signal, make_context(regime=Regime.RANGING, adx=20.0, atr=7.0)
    )


def test_quality_grades_by_agreeing_factors() -> None:
    scorer = ConfluenceQualityScorer()
    signal = make_signal()

    assert scorer.score(signal, make_context()) is SetupQuality.A_PLUS
    assert scorer.score(signal, make_context(macro_score=0)) is SetupQuality.A
    ranging = make_context(macro_score=0, regime=Regime.RANGING)
    assert scorer.score(signal, ranging) is SetupQuality.B_PLUS

    reversion = make_signal(kind=PatternKind.BAND_REVERSION)
    unaligned = make_context(
        daily_trend=Trend.NEUTRAL,
        h4_trend=Trend.NEUTRAL,
        macro_score=0,
        regime=Regime.RANGING,
    )
    assert scorer.score(reversion, unaligned) is SetupQuality.B
    assert scorer.score(signal, unaligned) is SetupQuality.NONE


def test_regime_take_profit() -> None:
    tp = RegimeTakeProfit()
    long, short = Direction.LONG, Direction.SHORT
    engulfing, reversion = PatternKind.ENGULFING, PatternKind.BAND_REVERSION

    assert tp.targets(long, 2000.0, 5.0, Regime.TRENDING, engulfing) == pytest.approx((2010.0, 2020.0))
    assert tp.targets(short, 2000.0, 5.0, Regime.TRENDING, engulfing) == pytest.approx((1990.0, 1980.0))
    # Reversion targets are scaled down
    assert tp.targets(long, 2000.0, 5.0, Regime.RANGING, reversion) == pytest.approx((2004.5, 2007.5))
    assert tp.targets(long, 2000.0, 5.0, Regime.UNKNOWN, engulfing) is None


def test_performance_sizer_needs_history() -> None:
    sizer = PerformanceSizer()
    for _ in range(4):
        sizer.record_trade(50.0)
    assert sizer.win_rate is None
    assert sizer.adjusted_risk(1.0, SetupQuality.A) == 1.0


def test_performance_sizer_boosts_and_cuts() -> None:
    winning = PerformanceSizer()
    for profit in (50.0, 50.0, 50.0, 50.0, -40.0):
        winning.record_trade(profit)
    assert winning.adjusted_risk(1.0, SetupQuality.A) == pytest.approx(1.25)
    assert winning.adjusted_risk(1.8, SetupQuality.A_PLUS) == pytest.approx(2.0)
    assert winning.adjusted_risk(1.0, SetupQuality.B) == pytest.approx(1.0)

    losing = PerformanceSizer()
    for profit in (50.0, -40.0, -40.0, -40.0, -40.0):
        losing.record_trade(profit)
    assert losing.adjusted_risk(1.0, SetupQuality.A) == pytest.approx(0.5)


@pytest.mark.parametrize(
    ("hour", "session"),
    [
        (0, Session.ASIAN),
        (6, Session.ASIAN),
        (7, Session.LONDON),
        (13, Session.OVERLAP),
        (16, Session.NEW_YORK),
        (20, Session.NEW_YORK),
        (21, Session.OFF_HOURS),
    ],
)
def test_session_for_hour(hour: int, session: Session) -> None:
    assert session_for_hour(hour) is session


def test_skip_window() -> None:
    assert not in_skip_window(9, -1, 10)
    assert in_skip_window(9, 9, 10)
    assert in_skip_window(10, 9, 10)
    assert not in_skip_window(11, 9, 10)
    assert in_skip_window(23, 22, 2)
    assert in_skip_window(1, 22, 2)
    assert not in_skip_window(3, 22, 2)


def test_capture_context_fills_defaults() -> None:
    context = capture_context(_SparseMarketData(), Settings())

    assert context is not None
    assert context.atr == pytest.approx(3.0)
    assert context.adx == pytest.approx(20.0)
    assert context.trend_ma == 0.0
    assert context.mid_band == pytest.approx(1999.95)
    assert context.macro_score == 0
    assert context.session is Session.LONDON


def test_capture_context_without_quote() -> None:
    assert capture_context(FakeMarketData(quote_available=False), Settings()) is None
