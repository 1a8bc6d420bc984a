"""Execution boundary: final trade construction, sizing and order submission."""

from __future__ import annotations

from decision_engine.config import Settings
from decision_engine.errors import RejectReason
from decision_engine.ports import AdaptiveTakeProfit, DynamicSizer, Notifier, OrderGateway, TradeLogger
from decision_engine.positions.coordinator import PositionCoordinator
from decision_engine.risk.manager import RiskManager
from decision_engine.risk.monitor import RiskMonitor
from decision_engine.strategy.rules import fixed_targets
from decision_engine.types import (
    Decision,
    Direction,
    MarketContext,
    PatternKind,
    PendingSignal,
    Position,
    SetupQuality,
)
from decision_engine.utils.logging import (
    get_logger,
    log_order_execution,
    log_rejection,
    log_trade_signal,
)

CONFIRMED_SUFFIX = " (Confirmed)"


def reward_risk_ratio(direction: Direction, entry: float, stop: float, tp1: float, tp2: float) -> float:
    """RR of the farther target; 0 when the stop distance is not positive."""
    risk = abs(entry - stop)
    if risk <= 0:
        return 0.0
    if direction is Direction.LONG:
        reward = max(tp1, tp2) - entry
    else:
        reward = entry - min(tp1, tp2)
    return reward / risk


class TradeOrchestrator:
    """Turns a validated signal into an open position."""

    def __init__(
        self,
        settings: Settings,
        risk_manager: RiskManager,
        risk_monitor: RiskMonitor,
        coordinator: PositionCoordinator,
        gateway: OrderGateway,
        *,
        adaptive_tp: AdaptiveTakeProfit | None = None,
        sizer: DynamicSizer | None = None,
        trade_logger: TradeLogger | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._settings = settings
        self._risk = risk_manager
        self._monitor = risk_monitor
        self._coordinator = coordinator
        self._gateway = gateway
        self._adaptive_tp = adaptive_tp
        self._sizer = sizer
        self._trade_logger = trade_logger
        self._notifier = notifier
        self._logger = get_logger("decision_engine.execution.orchestrator")

    def get_risk_for_quality(self, quality: SetupQuality, kind: PatternKind | None = None) -> float:
        settings = self._settings
        base = {
            SetupQuality.A_PLUS: settings.risk_a_plus_pct,
            SetupQuality.A: settings.risk_a_pct,
            SetupQuality.B_PLUS: settings.risk_b_plus_pct,
            SetupQuality.B: settings.risk_b_pct,
        }.get(quality, 0.0)
        multiplier = kind.risk_multiplier if kind is not None else 1.0
        return base * multiplier

    def execute_trade(
        self,
        direction: Direction,
        lots: float,
        stop_loss: float,
        tp1: float,
        tp2: float,
        quality: SetupQuality,
        pattern_name: str,
        pattern_kind: PatternKind,
        risk_pct: float = 0.0,
        *,
        context: MarketContext,
    ) -> Decision:
        """Gate, size and submit one order; ledgers change only after a fill."""
        entry = context.entry_price(direction)
        if (entry - stop_loss) * direction.sign <= 0:
            return self._reject(
                RejectReason.INVALID_STOP_DISTANCE,
                "execute",
                entry=entry,
                stop=stop_loss,
                direction=direction.value,
            )

        rr = reward_risk_ratio(direction, entry, stop_loss, tp1, tp2)
        if rr < self._settings.min_rr_ratio:
            return self._reject(
                RejectReason.REWARD_RISK_TOO_LOW,
                "execute",
                rr=round(rr, 3),
                min_rr=self._settings.min_rr_ratio,
                entry=entry,
                stop=stop_loss,
                tp1=tp1,
                tp2=tp2,
            )

        if not self._monitor.can_trade():
            return Decision.reject(
                RejectReason.DAILY_TRADE_LIMIT_REACHED,
                stage="trade_count",
                trades_today=self._monitor.trades_today,
            )

        final_risk = risk_pct if risk_pct > 0 else self._risk.compute_risk_percent(lots, entry, stop_loss)
        if self._is_counter_trend(direction, context):
            final_risk *= self._settings.counter_trend_risk_factor
            lots = self._risk.calculate_lot_size(final_risk, entry, stop_loss)
            self._logger.info(
                "counter_trend_risk_reduced",
                direction=direction.value,
                price=entry,
                trend_ma=context.trend_ma,
                risk_pct=round(final_risk, 3),
                lots=lots,
            )
        if lots <= 0:
            return self._reject(
                RejectReason.LOT_BELOW_MINIMUM,
                "execute",
                lots=lots,
                risk_pct=round(final_risk, 3),
            )

        open_order = self._gateway.open_long if direction is Direction.LONG else self._gateway.open_short
        ticket = open_order(lots, stop_loss, tp2, pattern_name)
        if ticket <= 0:
            return self._reject(
                RejectReason.ORDER_REJECTED,
                "execute",
                direction=direction.value,
                lots=lots,
            )

        position = Position(
            ticket=ticket,
            direction=direction,
            pattern_kind=pattern_kind,
            pattern_name=pattern_name,
            lots=lots,
            entry_price=entry,
            stop_loss=stop_loss,
            tp1=tp1,
            tp2=tp2,
            opened_at=context.time,
            quality=quality,
            initial_risk_pct=final_risk,
        )
        self._coordinator.add_position(position)
        self._risk.add_position(ticket, final_risk)
        self._monitor.increment_trades_today()

        log_order_execution(
            self._logger,
            symbol=self._settings.symbol,
            side=direction.value,
            quantity=lots,
            price=entry,
            order_id=ticket,
            status="filled",
            stop_loss=stop_loss,
            tp1=tp1,
            tp2=tp2,
            risk_pct=round(final_risk, 3),
            quality=quality.value,
            pattern=pattern_name,
        )
        self._after_entry(position)
        return Decision.executed(ticket, lots=lots, risk_pct=final_risk, entry=entry)

    def process_confirmed_signal(self, pending: PendingSignal, context: MarketContext) -> Decision:
        """Rebuild a staged signal against the confirmation bar and execute it."""
        settings = self._settings
        direction = pending.direction
        entry = context.entry_price(direction)
        if entry <= 0:
            return self._reject(RejectReason.INVALID_PRICE, "confirm", entry=entry)

        stop = pending.stop_loss
        risk_distance = (entry - stop) * direction.sign
        if risk_distance <= 0:
            return self._reject(
                RejectReason.INVALID_STOP_DISTANCE,
                "confirm",
                entry=entry,
                stop=stop,
                direction=direction.value,
            )

        targets = None
        if settings.use_adaptive_tp and self._adaptive_tp is not None:
            targets = self._adaptive_tp.targets(
                direction, entry, risk_distance, context.regime, pending.pattern_kind
            )
        if targets is None:
            targets = fixed_targets(
                direction, entry, risk_distance, settings.tp1_multiplier, settings.tp2_multiplier
            )
        tp1, tp2 = targets

        if reward_risk_ratio(direction, entry, stop, tp1, tp2) < settings.min_rr_ratio:
            tp1, tp2 = fixed_targets(
                direction,
                entry,
                risk_distance,
                settings.min_rr_ratio,
                settings.min_rr_ratio + settings.tp2_rr_extension,
            )
            self._logger.info("targets_widened", tp1=round(tp1, 2), tp2=round(tp2, 2))

        base_risk = self.get_risk_for_quality(pending.quality, pending.pattern_kind)
        if settings.use_dynamic_sizing and self._sizer is not None:
            risk_pct = self._sizer.adjusted_risk(base_risk, pending.quality)
        else:
            risk_pct = self._risk.adjust_risk_for_streak(base_risk)
        if direction is Direction.SHORT:
            risk_pct *= settings.short_risk_multiplier

        lots = self._risk.calculate_lot_size(risk_pct, entry, stop)
        if lots <= 0:
            return self._reject(
                RejectReason.LOT_BELOW_MINIMUM,
                "confirm",
                risk_pct=round(risk_pct, 3),
                entry=entry,
                stop=stop,
            )

        admission = self._risk.check_admission()
        if not admission.allowed:
            return self._reject(admission.reasons[0], "confirm", **admission.details)

        log_trade_signal(
            self._logger,
            symbol=settings.symbol,
            direction=direction.value,
            signal_type="confirmed",
            pattern=pending.pattern_name,
            entry=entry,
            stop=stop,
            tp1=round(tp1, 2),
            tp2=round(tp2, 2),
            risk_pct=round(risk_pct, 3),
        )
        return self.execute_trade(
            direction,
            lots,
            stop,
            tp1,
            tp2,
            pending.quality,
            pending.pattern_name + CONFIRMED_SUFFIX,
            pending.pattern_kind,
            risk_pct,
            context=context,
        )

    def _is_counter_trend(self, direction: Direction, context: MarketContext) -> bool:
        if not self._settings.use_counter_trend_filter or context.trend_ma <= 0:
            return False
        price = context.mid
        if direction is Direction.LONG:
            return price < context.trend_ma
        return price > context.trend_ma

    def _reject(self, reason: RejectReason, stage: str, **details: object) -> Decision:
        log_rejection(self._logger, reason=reason, stage=stage, **details)
        return Decision.reject(reason, stage=stage, **details)

    def _after_entry(self, position: Position) -> None:
        if self._trade_logger is not None:
            try:
                self._trade_logger.log_entry(position)
            except Exception as exc:  # noqa: BLE001 - trade logging must not block trading.
                self._logger.warning("trade_log_failed", ticket=position.ticket, error=str(exc))
        if self._notifier is not None:
            try:
                self._notifier.notify(
                    f"{position.direction.value} {self._settings.symbol}",
                    f"{position.pattern_name} [{position.quality.value}] "
                    f"{position.lots} lots @ {position.entry_price} "
                    f"SL {position.stop_loss} TP1 {position.tp1:.2f} TP2 {position.tp2:.2f}",
                )
            except Exception as exc:  # noqa: BLE001 - alerting must not block trading.
                self._logger.warning("alert_failed", ticket=position.ticket, error=str(exc))
