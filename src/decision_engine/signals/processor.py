"""Signal pipeline: detection, validation, scoring and staging."""

from __future__ import annotations

from decision_engine.config import Settings
from decision_engine.context import in_skip_window, in_weekend_window
from decision_engine.errors import RejectReason
from decision_engine.execution.orchestrator import TradeOrchestrator
from decision_engine.ports import (
    MomentumConfluence,
    PatternDetector,
    QualityScorer,
    SignalValidator,
    StructuralConfluence,
)
from decision_engine.risk.manager import RiskManager
from decision_engine.signals.pending import PendingSlot
from decision_engine.strategy.rules import dynamic_stop_loss, fixed_targets, pattern_confidence
from decision_engine.types import (
    Decision,
    Direction,
    MarketContext,
    PatternKind,
    PatternSignal,
    PendingSignal,
    Regime,
    Session,
    SetupQuality,
    Trend,
)
from decision_engine.utils.logging import get_logger, log_rejection, log_trade_signal

_SHORT_SESSIONS = (Session.LONDON, Session.OVERLAP, Session.NEW_YORK)


class SignalProcessor:
    """Top of the decision pipeline. Every stage short-circuits on rejection."""

    def __init__(
        self,
        settings: Settings,
        risk_manager: RiskManager,
        orchestrator: TradeOrchestrator,
        pending: PendingSlot,
        *,
        trend_detector: PatternDetector,
        validator: SignalValidator,
        quality_scorer: QualityScorer,
        mean_reversion_detector: PatternDetector | None = None,
        structural_confluence: StructuralConfluence | None = None,
        momentum_confluence: MomentumConfluence | None = None,
    ) -> None:
        self._settings = settings
        self._risk = risk_manager
        self._orchestrator = orchestrator
        self._pending = pending
        self._trend_detector = trend_detector
        self._mr_detector = mean_reversion_detector
        self._validator = validator
        self._quality_scorer = quality_scorer
        self._structural = structural_confluence
        self._momentum = momentum_confluence
        self._logger = get_logger("decision_engine.signals.processor")

    def process(self, context: MarketContext, bar_index: int) -> Decision:
        """Run the full pipeline for one new bar."""
        settings = self._settings

        rejection = self._check_session(context)
        if rejection is not None:
            return rejection

        admission = self._risk.check_admission()
        if not admission.allowed:
            return self._reject(admission.reasons[0], "admission", **admission.details)

        signal = self._detect(context)
        if signal is None:
            return Decision.reject(RejectReason.NO_SIGNAL)
        direction, kind = signal.direction, signal.kind
        log_trade_signal(
            self._logger,
            symbol=settings.symbol,
            direction=direction.value,
            signal_type=kind.strategy.value,
            pattern=signal.name,
            regime=context.regime.value,
            adx=round(context.adx, 2),
            atr=round(context.atr, 2),
            macro=context.macro_score,
        )

        rejection = (
            self._check_short_side(direction, kind, context)
            or self._check_strategy_conditions(signal, context)
            or self._check_structure(direction, kind, context)
            or self._check_confluence(direction, context)
        )
        if rejection is not None:
            return rejection

        quality = self._quality_scorer.score(signal, context)
        if quality is SetupQuality.NONE:
            return self._reject(RejectReason.VALIDATION_FAILED, "quality", pattern=signal.name)

        risk_pct = self._orchestrator.get_risk_for_quality(quality, kind)
        risk_pct = self._risk.adjust_risk_for_streak(risk_pct)
        if direction is Direction.SHORT:
            risk_pct *= settings.short_risk_multiplier

        rejection = self._check_session_adx(context) or self._check_confidence(kind, context)
        if rejection is not None:
            return rejection

        entry = context.entry_price(direction)
        stop = signal.stop_loss
        if settings.use_dynamic_sl:
            stop = dynamic_stop_loss(direction, entry, stop, context, settings)
        if (entry - stop) * direction.sign <= 0:
            return self._reject(
                RejectReason.INVALID_STOP_DISTANCE,
                "stop",
                entry=entry,
                stop=stop,
                direction=direction.value,
            )

        lots = self._risk.calculate_lot_size(risk_pct, entry, stop)
        if lots <= 0:
            return self._reject(
                RejectReason.LOT_BELOW_MINIMUM,
                "lot_size",
                risk_pct=round(risk_pct, 3),
                entry=entry,
                stop=stop,
            )

        targets = self._take_profits(signal, entry, stop, context)
        if targets is None:
            return self._reject(
                RejectReason.REWARD_RISK_TOO_LOW,
                "targets",
                entry=entry,
                mid_band=context.mid_band,
                direction=direction.value,
            )
        tp1, tp2 = targets

        if settings.use_confirmation_candle:
            self._pending.stage(
                PendingSignal(
                    direction=direction,
                    pattern_kind=kind,
                    pattern_name=signal.name,
                    entry_price=entry,
                    stop_loss=stop,
                    tp1=tp1,
                    tp2=tp2,
                    quality=quality,
                    regime=context.regime,
                    daily_trend=context.daily_trend,
                    h4_trend=context.h4_trend,
                    macro_score=context.macro_score,
                    staged_bar=bar_index,
                    staged_at=context.bar_time,
                )
            )
            self._logger.info(
                "pending_signal_staged",
                pattern=signal.name,
                direction=direction.value,
                quality=quality.value,
                bar=bar_index,
            )
            return Decision.staged(pattern=signal.name, quality=quality.value)

        return self._orchestrator.execute_trade(
            direction,
            lots,
            stop,
            tp1,
            tp2,
            quality,
            signal.name,
            kind,
            risk_pct,
            context=context,
        )

    def revalidate_pending(self, pending: PendingSignal, context: MarketContext) -> bool:
        """Re-run the context-dependent gates against the confirmation bar."""
        direction, kind = pending.direction, pending.pattern_kind
        if self._check_session(context) is not None:
            return False
        admission = self._risk.check_admission()
        if not admission.allowed:
            self._reject(admission.reasons[0], "revalidate", **admission.details)
            return False
        rejection = (
            self._check_short_side(direction, kind, context)
            or self._check_structure(direction, kind, context)
            or self._check_session_adx(context)
            or self._check_confidence(kind, context)
            or self._check_confluence(direction, context)
        )
        return rejection is None

    # ───── stages ───────────────────────────────────────────────────
    def _check_session(self, context: MarketContext) -> Decision | None:
        settings = self._settings
        hour = context.time.hour
        if context.session not in settings.allowed_sessions:
            return self._reject(
                RejectReason.SESSION_NOT_ALLOWED,
                "session",
                session=context.session.value,
            )
        if in_skip_window(hour, settings.skip_hour_start, settings.skip_hour_end):
            return self._reject(RejectReason.SESSION_NOT_ALLOWED, "skip_hours", hour=hour)
        if in_weekend_window(context.time, settings):
            return self._reject(
                RejectReason.SESSION_NOT_ALLOWED,
                "weekend",
                weekday=context.time.weekday(),
                hour=hour,
            )
        return None

    def _detect(self, context: MarketContext) -> PatternSignal | None:
        settings = self._settings
        in_band = settings.mr_atr_min <= context.atr <= settings.mr_atr_max
        if settings.use_mean_reversion and self._mr_detector is not None and in_band:
            signal = self._mr_detector.detect(context)
            if signal is not None:
                return signal
        return self._trend_detector.detect(context)

    def _check_short_side(
        self, direction: Direction, kind: PatternKind, context: MarketContext
    ) -> Decision | None:
        if direction is not Direction.SHORT:
            return None
        settings = self._settings
        if context.session not in _SHORT_SESSIONS:
            return self._reject(
                RejectReason.SESSION_NOT_ALLOWED,
                "short_session",
                session=context.session.value,
            )

        adx, macro = context.adx, context.macro_score
        if kind.is_mean_reversion:
            below_ma = context.trend_ma > 0 and context.mid < context.trend_ma
            exception = (
                macro <= settings.mr_short_exception_macro
                and adx <= settings.mr_short_exception_adx
            )
            if not (below_ma or exception):
                return self._reject(
                    RejectReason.VALIDATION_FAILED,
                    "mr_short_trend_ma",
                    price=context.mid,
                    trend_ma=context.trend_ma,
                    macro=macro,
                    adx=adx,
                )
            if macro > settings.mr_short_max_macro or adx > settings.mr_short_max_adx:
                return self._reject(
                    RejectReason.VALIDATION_FAILED,
                    "mr_short_macro_adx",
                    macro=macro,
                    adx=adx,
                )
            return None

        bearish_bias = (
            context.daily_trend is Trend.BEARISH or macro <= settings.tf_short_max_macro
        )
        if context.h4_trend is not Trend.BEARISH or not bearish_bias:
            return self._reject(
                RejectReason.VALIDATION_FAILED,
                "tf_short_trend",
                h4=context.h4_trend.value,
                daily=context.daily_trend.value,
                macro=macro,
            )
        if not settings.tf_short_adx_min <= adx <= settings.tf_short_adx_max:
            return self._reject(RejectReason.VALIDATION_FAILED, "tf_short_adx", adx=adx)
        if context.regime in (Regime.CHOPPY, Regime.UNKNOWN):
            return self._reject(
                RejectReason.VALIDATION_FAILED,
                "tf_short_regime",
                regime=context.regime.value,
            )
        return None

    def _check_strategy_conditions(
        self, signal: PatternSignal, context: MarketContext
    ) -> Decision | None:
        if signal.kind.is_mean_reversion:
            valid = self._validator.validate_mean_reversion(signal, context)
        else:
            valid = self._validator.validate_trend_following(signal, context)
        if valid:
            return None
        return self._reject(
            RejectReason.VALIDATION_FAILED,
            signal.kind.strategy.value,
            regime=context.regime.value,
            daily=context.daily_trend.value,
            h4=context.h4_trend.value,
            macro=context.macro_score,
            adx=context.adx,
            atr=context.atr,
        )

    def _check_structure(
        self, direction: Direction, kind: PatternKind, context: MarketContext
    ) -> Decision | None:
        settings = self._settings
        if kind.is_range_box and context.regime is not Regime.RANGING:
            return self._reject(
                RejectReason.VALIDATION_FAILED,
                "range_box_regime",
                regime=context.regime.value,
            )
        if (
            direction is Direction.SHORT
            and kind.is_mean_reversion
            and context.trend_ma > 0
            and context.mid > context.trend_ma
            and (
                context.macro_score > settings.mr_short_exception_macro
                or context.adx > settings.mr_short_exception_adx
            )
        ):
            return self._reject(
                RejectReason.VALIDATION_FAILED,
                "mr_short_above_ma",
                macro=context.macro_score,
                adx=context.adx,
            )
        return None

    def _check_confluence(self, direction: Direction, context: MarketContext) -> Decision | None:
        settings = self._settings
        if settings.use_ob_confluence and self._structural is not None:
            score = self._structural.score(direction, context)
            if score < settings.min_ob_score:
                return self._reject(
                    RejectReason.CONFLUENCE_REJECTED,
                    "order_block",
                    score=score,
                    min_score=settings.min_ob_score,
                )
        if settings.use_momentum_confluence and self._momentum is not None:
            if not self._momentum.confirms(direction, context):
                return self._reject(
                    RejectReason.CONFLUENCE_REJECTED,
                    "momentum",
                    direction=direction.value,
                )
        return None

    def _check_session_adx(self, context: MarketContext) -> Decision | None:
        adx_min, adx_max = self._settings.adx_band_for(context.session)
        if adx_min <= context.adx <= adx_max:
            return None
        return self._reject(
            RejectReason.VALIDATION_FAILED,
            "session_adx",
            session=context.session.value,
            adx=context.adx,
            adx_min=adx_min,
            adx_max=adx_max,
        )

    def _check_confidence(self, kind: PatternKind, context: MarketContext) -> Decision | None:
        settings = self._settings
        if not settings.use_pattern_confidence:
            return None
        confidence = pattern_confidence(kind, context, settings)
        if confidence >= settings.min_pattern_confidence:
            return None
        return self._reject(
            RejectReason.CONFIDENCE_TOO_LOW,
            "confidence",
            confidence=confidence,
            min_confidence=settings.min_pattern_confidence,
            adx=context.adx,
            atr=context.atr,
        )

    def _take_profits(
        self,
        signal: PatternSignal,
        entry: float,
        stop: float,
        context: MarketContext,
    ) -> tuple[float, float] | None:
        settings = self._settings
        direction = signal.direction
        if signal.kind.is_mean_reversion:
            reward = (context.mid_band - entry) * direction.sign
            if reward <= 0:
                return None
            tp1 = context.mid_band
            return tp1, tp1 + direction.sign * reward * settings.mr_tp2_extension
        return fixed_targets(
            direction,
            entry,
            abs(entry - stop),
            settings.tp1_multiplier,
            settings.tp2_multiplier,
        )

    def _reject(self, reason: RejectReason, stage: str, **details: object) -> Decision:
        log_rejection(self._logger, reason=reason, stage=stage, **details)
        return Decision.reject(reason, stage=stage, **details)
