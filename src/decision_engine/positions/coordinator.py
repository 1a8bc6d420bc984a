"""Authoritative store of open positions and their lifecycle."""

from __future__ import annotations

from datetime import datetime

from decision_engine.config import Settings
from decision_engine.context import in_weekend_window
from decision_engine.ports import (
    AccountProvider,
    DynamicSizer,
    OrderGateway,
    PositionManager,
    TradeLogger,
)
from decision_engine.risk.manager import RiskManager
from decision_engine.strategy.rules import fixed_targets
from decision_engine.types import BrokerPosition, MarketContext, Position, SetupQuality
from decision_engine.utils.logging import get_logger, log_position_exit, log_risk_event


class PositionCoordinator:
    """Owns full position state, keyed by broker ticket.

    Every add/remove here is paired with the same call on the risk manager so
    both trackers report the same position count.
    """

    def __init__(
        self,
        settings: Settings,
        account: AccountProvider,
        gateway: OrderGateway,
        risk_manager: RiskManager,
        position_manager: PositionManager,
        trade_logger: TradeLogger | None = None,
        sizer: DynamicSizer | None = None,
    ) -> None:
        self._settings = settings
        self._account = account
        self._gateway = gateway
        self._risk = risk_manager
        self._position_manager = position_manager
        self._trade_logger = trade_logger
        self._sizer = sizer
        self._logger = get_logger("decision_engine.positions.coordinator")
        self._positions: dict[int, Position] = {}

    @property
    def position_count(self) -> int:
        return len(self._positions)

    @property
    def positions(self) -> list[Position]:
        return list(self._positions.values())

    def get_position(self, ticket: int) -> Position | None:
        return self._positions.get(ticket)

    def add_position(self, position: Position) -> None:
        if position.ticket in self._positions:
            raise ValueError(f"position_already_tracked: {position.ticket}")
        self._positions[position.ticket] = position

    # ───── startup ──────────────────────────────────────────────────
    def load_open_positions(self) -> int:
        """Adopt live broker positions carrying this strategy's identifier."""
        loaded = 0
        for broker_position in self._account.open_positions(self._settings.strategy_magic):
            if broker_position.ticket in self._positions:
                continue
            risk_pct = self._risk.compute_risk_percent(
                broker_position.lots,
                broker_position.open_price,
                broker_position.stop_loss,
            )
            position = _adopt(broker_position, risk_pct, self._settings)
            self.add_position(position)
            self._risk.add_position(position.ticket, risk_pct)
            loaded += 1
            self._logger.info(
                "position_loaded",
                ticket=position.ticket,
                direction=position.direction.value,
                lots=position.lots,
                entry=position.entry_price,
                risk_pct=round(risk_pct, 3),
            )
        return loaded

    # ───── per tick ─────────────────────────────────────────────────
    def manage_open_positions(self, context: MarketContext) -> list[int]:
        """Run lifecycle checks for every tracked position; returns closed tickets."""
        if not self._positions:
            return []

        if self.weekend_window_active(context.time):
            log_risk_event(
                self._logger,
                event_type="weekend_window",
                action="close_all",
                positions=self.position_count,
            )
            return self.close_all_positions("weekend", context)

        closed: list[int] = []
        for ticket in reversed(list(self._positions)):
            position = self._positions[ticket]

            if not self._account.is_position_open(ticket):
                self._finalize(position, "closed_by_broker", context)
                closed.append(ticket)
                continue

            if self._is_expired(position, context.time):
                if self._close(position, "max_age", context):
                    closed.append(ticket)
                continue

            position = self._position_manager.manage(position, context)
            self._positions[ticket] = position

            if self._position_manager.should_exit_early(position, context):
                if self._close(position, "regime_change", context):
                    closed.append(ticket)
        return closed

    def close_all_positions(self, reason: str, context: MarketContext | None = None) -> list[int]:
        """Close every tracked position; failed closes stay tracked for the next tick."""
        closed: list[int] = []
        for ticket in reversed(list(self._positions)):
            if self._close(self._positions[ticket], reason, context):
                closed.append(ticket)
        return closed

    def weekend_window_active(self, now: datetime) -> bool:
        return in_weekend_window(now, self._settings)

    # ───── helpers ──────────────────────────────────────────────────
    def _is_expired(self, position: Position, now: datetime) -> bool:
        max_hours = self._settings.max_position_hours
        if max_hours <= 0:
            return False
        held_hours = (now - position.opened_at).total_seconds() / 3600
        return held_hours >= max_hours

    def _close(self, position: Position, reason: str, context: MarketContext | None) -> bool:
        if not self._gateway.close_position(position.ticket):
            self._logger.error("position_close_failed", ticket=position.ticket, reason=reason)
            return False
        self._finalize(position, reason, context)
        return True

    def _finalize(self, position: Position, reason: str, context: MarketContext | None) -> None:
        closed = self._account.closed_trade(position.ticket)
        if closed is not None:
            profit, exit_price = closed.profit, closed.exit_price
        else:
            self._logger.warning("closed_trade_history_missing", ticket=position.ticket)
            exit_price = context.exit_price(position.direction) if context else position.entry_price
            profit = 0.0
        self._record_exit(position, exit_price, profit, reason)
        if self._sizer is not None and closed is not None:
            self._sizer.record_trade(profit)
        self._risk.remove_position(position.ticket, is_winner=profit > 0 if closed else None)
        del self._positions[position.ticket]

    def _record_exit(self, position: Position, exit_price: float, profit: float, reason: str) -> None:
        log_position_exit(
            self._logger,
            ticket=position.ticket,
            reason=reason,
            profit=profit,
            exit_price=exit_price,
            pattern=position.pattern_name,
        )
        if self._trade_logger is None:
            return
        try:
            self._trade_logger.log_exit(position, exit_price, profit, reason)
        except Exception as exc:  # noqa: BLE001 - trade logging must not block trading.
            self._logger.warning("trade_log_failed", ticket=position.ticket, error=str(exc))


def _adopt(broker_position: BrokerPosition, risk_pct: float, settings: Settings) -> Position:
    entry, stop = broker_position.open_price, broker_position.stop_loss
    direction = broker_position.direction
    tp1 = tp2 = broker_position.take_profit
    risk_distance = (entry - stop) * direction.sign
    if tp2 <= 0 and stop > 0 and risk_distance > 0:
        # No broker target: rebuild both from the stop distance
        tp1, tp2 = fixed_targets(
            direction,
            entry,
            risk_distance,
            settings.tp1_multiplier,
            settings.tp2_multiplier,
        )
    return Position(
        ticket=broker_position.ticket,
        direction=broker_position.direction,
        pattern_kind=None,
        pattern_name=broker_position.comment or "Recovered",
        lots=broker_position.lots,
        entry_price=broker_position.open_price,
        stop_loss=broker_position.stop_loss,
        tp1=tp1,
        tp2=tp2,
        opened_at=broker_position.opened_at,
        quality=SetupQuality.NONE,
        initial_risk_pct=risk_pct,
    )
