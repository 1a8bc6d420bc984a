"""Default per-tick position management."""

from __future__ import annotations

import dataclasses

from decision_engine.config import Settings
from decision_engine.ports import OrderGateway
from decision_engine.types import Direction, MarketContext, Position, Regime, Trend
from decision_engine.utils.logging import get_logger


class RuleBasedPositionManager:
    """Partial close at TP1 with a breakeven stop, and regime-driven early exit."""

    def __init__(self, settings: Settings, gateway: OrderGateway) -> None:
        self._settings = settings
        self._gateway = gateway
        self._logger = get_logger("decision_engine.positions.management")

    def manage(self, position: Position, context: MarketContext) -> Position:
        if position.tp1_closed or position.tp1 <= 0:
            return position
        price = context.exit_price(position.direction)
        if (price - position.tp1) * position.direction.sign < 0:
            return position

        settings = self._settings
        close_lots = _floor_to_step(position.lots * settings.tp1_close_fraction, settings.lot_step)
        remaining = round(position.lots - close_lots, 8)
        lots = position.lots
        if close_lots >= settings.min_lot and remaining >= settings.min_lot:
            if self._gateway.close_partial(position.ticket, close_lots):
                lots = remaining
            else:
                self._logger.warning("partial_close_failed", ticket=position.ticket)
                return position

        at_breakeven = position.at_breakeven
        in_profit = (price - position.entry_price) * position.direction.sign > 0
        if not at_breakeven and in_profit:
            at_breakeven = self._gateway.modify_position(
                position.ticket, position.entry_price, position.tp2
            )
        self._logger.info(
            "tp1_reached",
            ticket=position.ticket,
            price=price,
            closed_lots=round(position.lots - lots, 8),
            at_breakeven=at_breakeven,
        )
        return dataclasses.replace(
            position,
            lots=lots,
            stop_loss=position.entry_price if at_breakeven else position.stop_loss,
            tp1_closed=True,
            at_breakeven=at_breakeven,
        )

    def should_exit_early(self, position: Position, context: MarketContext) -> bool:
        if position.at_breakeven:
            return False
        against = Trend.BEARISH if position.direction is Direction.LONG else Trend.BULLISH
        macro_against = context.macro_score * position.direction.sign < 0
        return (
            context.regime is Regime.CHOPPY
            and context.h4_trend is against
            and macro_against
        )


def _floor_to_step(lots: float, step: float) -> float:
    return round(int(lots / step + 1e-9) * step, 8)
