"""Risk ledger, admission gating and lot sizing."""

from __future__ import annotations

import math
from collections.abc import Callable
from datetime import datetime, time, timezone

from decision_engine.config import Settings
from decision_engine.errors import RejectReason
from decision_engine.ports import AccountProvider
from decision_engine.types import Direction, RiskCheckResult, RiskStats
from decision_engine.utils.logging import get_logger, log_rejection, log_risk_event

_LOT_EPSILON = 1e-9


class RiskManager:
    """Tracks exposure, daily P&L and win/loss streaks.

    The ledger only keeps ``ticket -> initial_risk_pct``; full position state
    lives in the position coordinator.
    """

    def __init__(
        self,
        settings: Settings,
        account: AccountProvider,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._account = account
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = get_logger("decision_engine.risk.manager")
        self._ledger: dict[int, float] = {}
        self._stats = RiskStats(last_reset=self._clock())

    # ───── daily state ──────────────────────────────────────────────
    def update_daily_stats(self) -> RiskStats:
        """Roll the day if needed and recompute exposure and daily P&L."""
        now = self._clock()
        last_reset = self._stats.last_reset
        if last_reset is None or now.date() != last_reset.date():
            if self._stats.trading_halted:
                log_risk_event(
                    self._logger,
                    event_type="daily_reset",
                    action="resume_trading",
                    previous_day=last_reset.date().isoformat() if last_reset else None,
                )
            self._stats.trading_halted = False
            self._stats.last_reset = now

        self._stats.current_exposure = self.get_current_exposure()
        self._stats.positions_count = len(self._ledger)
        self._stats.daily_pnl_pct = self._compute_daily_pnl_pct(now)

        if (
            not self._stats.trading_halted
            and self._stats.daily_pnl_pct <= -self._settings.daily_loss_limit_pct
        ):
            self._stats.trading_halted = True
            log_risk_event(
                self._logger,
                event_type="daily_loss_limit",
                action="halt_trading",
                daily_pnl_pct=round(self._stats.daily_pnl_pct, 3),
                limit_pct=self._settings.daily_loss_limit_pct,
            )
        return self._stats

    def _compute_daily_pnl_pct(self, now: datetime) -> float:
        day_start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
        magic = self._settings.strategy_magic
        realized = self._account.realized_profit_since(day_start, magic)
        floating = self._account.floating_profit(magic)
        start_balance = self._account.balance() - realized
        if start_balance <= 0:
            return 0.0
        return (realized + floating) / start_balance * 100.0

    def get_stats(self) -> RiskStats:
        return self.update_daily_stats()

    def is_trading_halted(self) -> bool:
        return self.update_daily_stats().trading_halted

    def get_current_exposure(self) -> float:
        return sum(self._ledger.values())

    @property
    def positions_count(self) -> int:
        return len(self._ledger)

    @property
    def consecutive_losses(self) -> int:
        return self._stats.consecutive_losses

    @property
    def consecutive_wins(self) -> int:
        return self._stats.consecutive_wins

    def tracked_tickets(self) -> list[int]:
        return list(self._ledger)

    # ───── admission ────────────────────────────────────────────────
    def check_admission(self) -> RiskCheckResult:
        """Check whether a new position may be opened, with reasons."""
        stats = self.update_daily_stats()
        details = {
            "daily_pnl_pct": round(stats.daily_pnl_pct, 3),
            "exposure_pct": round(stats.current_exposure, 3),
            "positions": stats.positions_count,
        }
        if stats.trading_halted:
            return RiskCheckResult(False, [RejectReason.DAILY_LOSS_LIMIT_HALTED], details)
        if stats.current_exposure >= self._settings.max_total_exposure_pct:
            return RiskCheckResult(False, [RejectReason.EXPOSURE_LIMIT_REACHED], details)
        if stats.positions_count >= self._settings.max_positions:
            return RiskCheckResult(False, [RejectReason.POSITION_COUNT_LIMIT_REACHED], details)
        return RiskCheckResult(True, [], details)

    def can_open_new_position(self) -> bool:
        result = self.check_admission()
        if not result.allowed:
            log_rejection(
                self._logger,
                reason=result.reasons[0],
                stage="admission",
                **result.details,
            )
        return result.allowed

    # ───── sizing ───────────────────────────────────────────────────
    def calculate_lot_size(self, risk_percent: float, entry_price: float, stop_loss: float) -> float:
        """Lots that risk `risk_percent` of balance over the stop distance; 0 on failure."""
        stop_distance = abs(entry_price - stop_loss)
        if entry_price <= 0 or stop_loss <= 0 or stop_distance <= 0:
            log_rejection(
                self._logger,
                reason=RejectReason.INVALID_STOP_DISTANCE,
                stage="lot_size",
                entry=entry_price,
                stop=stop_loss,
            )
            return 0.0
        balance = self._account.balance()
        if risk_percent <= 0 or balance <= 0:
            log_rejection(
                self._logger,
                reason=RejectReason.LOT_BELOW_MINIMUM,
                stage="lot_size",
                risk_pct=risk_percent,
                balance=balance,
            )
            return 0.0

        settings = self._settings
        risk_amount = balance * risk_percent / 100.0
        distance_points = stop_distance / settings.point
        raw_lots = risk_amount / (distance_points * settings.point_value)
        lots = math.floor(raw_lots / settings.lot_step + _LOT_EPSILON) * settings.lot_step

        if lots + _LOT_EPSILON < settings.min_lot:
            log_rejection(
                self._logger,
                reason=RejectReason.LOT_BELOW_MINIMUM,
                stage="lot_size",
                lots=round(raw_lots, 4),
                min_lot=settings.min_lot,
                risk_amount=round(risk_amount, 2),
            )
            return 0.0
        lots = round(min(lots, settings.max_lot), 8)

        direction = Direction.LONG if entry_price > stop_loss else Direction.SHORT
        margin = self._account.margin_required(direction, lots, entry_price)
        headroom = self._account.free_margin() * settings.max_margin_usage_pct / 100.0
        if margin is None or margin > headroom:
            log_rejection(
                self._logger,
                reason=RejectReason.INSUFFICIENT_MARGIN,
                stage="lot_size",
                lots=lots,
                margin_required=margin,
                headroom=round(headroom, 2),
            )
            return 0.0
        return lots

    def compute_risk_percent(self, lots: float, entry_price: float, stop_loss: float) -> float:
        """Risk of account implied by an existing lot size and stop."""
        stop_distance = abs(entry_price - stop_loss)
        balance = self._account.balance()
        if lots <= 0 or stop_loss <= 0 or stop_distance <= 0 or balance <= 0:
            return 0.0
        distance_points = stop_distance / self._settings.point
        risk_amount = lots * distance_points * self._settings.point_value
        return risk_amount / balance * 100.0

    def adjust_risk_for_streak(self, base_risk: float) -> float:
        settings = self._settings
        if not settings.use_loss_scaling:
            return base_risk
        losses = self._stats.consecutive_losses
        if losses >= settings.losses_level2:
            return base_risk * (100.0 - settings.reduction_level2_pct) / 100.0
        if losses >= settings.losses_level1:
            return base_risk * (100.0 - settings.reduction_level1_pct) / 100.0
        return base_risk

    # ───── ledger ───────────────────────────────────────────────────
    def add_position(self, ticket: int, initial_risk_pct: float) -> None:
        if ticket in self._ledger:
            self._logger.warning("ledger_ticket_exists", ticket=ticket)
            return
        self._ledger[ticket] = float(initial_risk_pct)
        self._logger.debug(
            "ledger_add",
            ticket=ticket,
            risk_pct=round(initial_risk_pct, 3),
            exposure_pct=round(self.get_current_exposure(), 3),
        )

    def remove_position(self, ticket: int, is_winner: bool | None = None) -> bool:
        """Drop a ticket from the ledger and update the win/loss streak."""
        if ticket not in self._ledger:
            self._logger.warning("ledger_ticket_missing", ticket=ticket)
            return False

        profit = self._lookup_profit(ticket)
        if profit is not None:
            # Breakeven closes leave both streaks untouched
            is_winner = None if profit == 0 else profit > 0
        if is_winner is True:
            self._stats.consecutive_wins += 1
            self._stats.consecutive_losses = 0
        elif is_winner is False:
            self._stats.consecutive_losses += 1
            self._stats.consecutive_wins = 0

        del self._ledger[ticket]
        self._logger.debug(
            "ledger_remove",
            ticket=ticket,
            profit=profit,
            consecutive_losses=self._stats.consecutive_losses,
            consecutive_wins=self._stats.consecutive_wins,
        )
        return True

    def _lookup_profit(self, ticket: int) -> float | None:
        closed = self._account.closed_trade(ticket)
        if closed is not None:
            return closed.profit
        for position in self._account.open_positions(self._settings.strategy_magic):
            if position.ticket == ticket:
                return position.profit
        return None
