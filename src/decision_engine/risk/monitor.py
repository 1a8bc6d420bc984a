"""Daily trade throttling and the daily-loss flatten-and-halt guard."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, timezone

from decision_engine.config import Settings
from decision_engine.errors import RejectReason
from decision_engine.ports import Notifier
from decision_engine.positions.coordinator import PositionCoordinator
from decision_engine.risk.manager import RiskManager
from decision_engine.utils.logging import get_logger, log_rejection, log_risk_event


class RiskMonitor:
    """Wraps the risk manager with per-day trade counting and halt enforcement."""

    def __init__(
        self,
        settings: Settings,
        risk_manager: RiskManager,
        coordinator: PositionCoordinator,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._risk = risk_manager
        self._coordinator = coordinator
        self._notifier = notifier
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._logger = get_logger("decision_engine.risk.monitor")
        self._trades_today = 0
        self._trades_day: date = self._clock().date()
        self._halt_alerted = False

    @property
    def trades_today(self) -> int:
        self._roll_day()
        return self._trades_today

    def can_trade(self) -> bool:
        self._roll_day()
        limit = self._settings.max_trades_per_day
        if limit <= 0:
            return True
        if self._trades_today >= limit:
            log_rejection(
                self._logger,
                reason=RejectReason.DAILY_TRADE_LIMIT_REACHED,
                stage="trade_count",
                trades_today=self._trades_today,
                limit=limit,
            )
            return False
        return True

    def increment_trades_today(self) -> None:
        self._roll_day()
        self._trades_today += 1

    def check_risk_limits(self) -> list[int]:
        """Flatten everything while halted. Safe to call on every tick."""
        if not self._risk.is_trading_halted():
            self._halt_alerted = False
            return []

        if not self._halt_alerted:
            self._halt_alerted = True
            stats = self._risk.get_stats()
            log_risk_event(
                self._logger,
                event_type="daily_loss_limit",
                action="flatten_and_halt",
                daily_pnl_pct=round(stats.daily_pnl_pct, 3),
                positions=self._coordinator.position_count,
            )
            self._alert(
                "Trading halted",
                f"Daily loss limit {self._settings.daily_loss_limit_pct}% reached "
                f"(daily P&L {stats.daily_pnl_pct:.2f}%). Closing all positions.",
            )

        if self._coordinator.position_count == 0:
            return []
        return self._coordinator.close_all_positions("daily_loss_limit")

    def _roll_day(self) -> None:
        today = self._clock().date()
        if today != self._trades_day:
            self._trades_day = today
            self._trades_today = 0

    def _alert(self, title: str, message: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(title, message)
        except Exception as exc:  # noqa: BLE001 - alerting must not block trading.
            self._logger.warning("alert_failed", error=str(exc))
