"""Tick driver and explicit component registry."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from decision_engine.config import Settings
from decision_engine.context import MarketClock, capture_context
from decision_engine.errors import InitializationError, RejectReason
from decision_engine.execution.orchestrator import TradeOrchestrator
from decision_engine.journal.store import JournalStore
from decision_engine.ports import (
    AccountProvider,
    AdaptiveTakeProfit,
    DynamicSizer,
    MarketDataProvider,
    MomentumConfluence,
    Notifier,
    OrderGateway,
    PatternDetector,
    PositionManager,
    QualityScorer,
    SignalValidator,
    StructuralConfluence,
    TradeLogger,
)
from decision_engine.positions.coordinator import PositionCoordinator
from decision_engine.positions.management import RuleBasedPositionManager
from decision_engine.risk.manager import RiskManager
from decision_engine.risk.monitor import RiskMonitor
from decision_engine.signals.pending import PendingSlot
from decision_engine.signals.processor import SignalProcessor
from decision_engine.strategy.rules import ConfluenceQualityScorer, RuleBasedValidator
from decision_engine.strategy.sizing import PerformanceSizer, RegimeTakeProfit
from decision_engine.types import Decision, MarketContext, PendingSignal, TickResult
from decision_engine.utils.logging import get_logger


@dataclass(slots=True)
class EngineContext:
    """Every component the engine drives, built once and passed explicitly."""

    settings: Settings
    provider: MarketDataProvider
    account: AccountProvider
    gateway: OrderGateway
    clock: MarketClock
    risk_manager: RiskManager
    coordinator: PositionCoordinator
    monitor: RiskMonitor
    orchestrator: TradeOrchestrator
    processor: SignalProcessor
    pending: PendingSlot
    trade_logger: TradeLogger | None = None
    notifier: Notifier | None = None
    journal: JournalStore | None = None


def build_engine(
    settings: Settings,
    *,
    provider: MarketDataProvider,
    account: AccountProvider,
    gateway: OrderGateway,
    trend_detector: PatternDetector,
    mean_reversion_detector: PatternDetector | None = None,
    validator: SignalValidator | None = None,
    quality_scorer: QualityScorer | None = None,
    position_manager: PositionManager | None = None,
    structural_confluence: StructuralConfluence | None = None,
    momentum_confluence: MomentumConfluence | None = None,
    adaptive_tp: AdaptiveTakeProfit | None = None,
    sizer: DynamicSizer | None = None,
    trade_logger: TradeLogger | None = None,
    notifier: Notifier | None = None,
    journal: JournalStore | None = None,
    clock: MarketClock | None = None,
) -> EngineContext:
    """Wire the core components; rule-based defaults fill unset collaborators."""
    clock = clock or MarketClock()
    sizer = sizer or PerformanceSizer()
    risk_manager = RiskManager(settings, account, clock)
    coordinator = PositionCoordinator(
        settings,
        account,
        gateway,
        risk_manager,
        position_manager or RuleBasedPositionManager(settings, gateway),
        trade_logger=trade_logger,
        sizer=sizer,
    )
    monitor = RiskMonitor(settings, risk_manager, coordinator, notifier=notifier, clock=clock)
    orchestrator = TradeOrchestrator(
        settings,
        risk_manager,
        monitor,
        coordinator,
        gateway,
        adaptive_tp=adaptive_tp or RegimeTakeProfit(),
        sizer=sizer,
        trade_logger=trade_logger,
        notifier=notifier,
    )
    pending = PendingSlot()
    processor = SignalProcessor(
        settings,
        risk_manager,
        orchestrator,
        pending,
        trend_detector=trend_detector,
        validator=validator or RuleBasedValidator(settings),
        quality_scorer=quality_scorer or ConfluenceQualityScorer(),
        mean_reversion_detector=mean_reversion_detector,
        structural_confluence=structural_confluence,
        momentum_confluence=momentum_confluence,
    )
    return EngineContext(
        settings=settings,
        provider=provider,
        account=account,
        gateway=gateway,
        clock=clock,
        risk_manager=risk_manager,
        coordinator=coordinator,
        monitor=monitor,
        orchestrator=orchestrator,
        processor=processor,
        pending=pending,
        trade_logger=trade_logger,
        notifier=notifier,
        journal=journal,
    )


class TradingEngine:
    """Runs position management, risk limits and the signal pipeline per tick."""

    def __init__(self, context: EngineContext) -> None:
        self._ctx = context
        self._logger = get_logger("decision_engine.engine")
        self._started = False
        self._last_bar_time: datetime | None = None
        self._bar_index = 0

    @property
    def context(self) -> EngineContext:
        return self._ctx

    @property
    def bar_index(self) -> int:
        return self._bar_index

    def start(self) -> int:
        """Validate collaborators and adopt live positions. Returns the adopted count."""
        ctx = self._ctx
        for name in ("provider", "account", "gateway"):
            if getattr(ctx, name) is None:
                raise InitializationError(f"missing_collaborator: {name}")

        market = capture_context(ctx.provider, ctx.settings)
        if market is None:
            raise InitializationError("market_data_unavailable")
        ctx.clock.advance(market.time)

        try:
            loaded = ctx.coordinator.load_open_positions()
        except Exception as exc:
            raise InitializationError(f"position_load_failed: {exc}") from exc

        self._started = True
        stats = ctx.risk_manager.get_stats()
        self._logger.info(
            "engine_started",
            symbol=ctx.settings.symbol,
            magic=ctx.settings.strategy_magic,
            loaded_positions=loaded,
            exposure_pct=round(stats.current_exposure, 3),
            daily_pnl_pct=round(stats.daily_pnl_pct, 3),
        )
        return loaded

    def on_tick(self) -> TickResult:
        """Process one market update."""
        if not self._started:
            raise InitializationError("engine_not_started")

        ctx = self._ctx
        market = capture_context(ctx.provider, ctx.settings)
        if market is None:
            return TickResult(status="no_quote", warnings=["quote_unavailable"])
        ctx.clock.advance(market.time)

        result = TickResult(status="idle")
        try:
            result.closed_tickets.extend(ctx.coordinator.manage_open_positions(market))
            flattened = ctx.monitor.check_risk_limits()
            if flattened:
                self._journal(
                    "risk_event",
                    {"event_type": "daily_loss_limit", "closed_tickets": flattened},
                )
            result.closed_tickets.extend(flattened)

            if market.bar_time == self._last_bar_time:
                return result
            self._last_bar_time = market.bar_time
            self._bar_index += 1
            result.new_bar = True

            pending = ctx.pending.take(self._bar_index)
            if pending is not None:
                result.decisions.append(self._confirm(pending, market))

            result.decisions.append(ctx.processor.process(market, self._bar_index))
        except Exception as exc:  # noqa: BLE001 - top-level guard for loop resilience.
            self._logger.exception("tick_failed", error=str(exc))
            self._journal("error", {"error": str(exc), "bar": self._bar_index})
            result.status = "failed"
            result.warnings.append(str(exc))
            return result

        for decision in result.decisions:
            self._journal_decision(decision, market)
        result.status = _tick_status(result.decisions)
        return result

    def _confirm(self, pending: PendingSignal, market: MarketContext) -> Decision:
        ctx = self._ctx
        if not ctx.processor.revalidate_pending(pending, market):
            self._logger.info(
                "pending_signal_discarded",
                pattern=pending.pattern_name,
                staged_bar=pending.staged_bar,
            )
            return Decision.reject(
                RejectReason.PENDING_EXPIRED,
                stage="revalidate",
                pattern=pending.pattern_name,
            )
        return ctx.orchestrator.process_confirmed_signal(pending, market)

    def _journal_decision(self, decision: Decision, market: MarketContext) -> None:
        if decision.reason is RejectReason.NO_SIGNAL:
            return
        payload = {
            "bar": self._bar_index,
            "bar_time": market.bar_time.isoformat(),
            "status": decision.status,
            "reason": decision.reason.value if decision.reason else None,
            "ticket": decision.ticket,
            **{key: _plain(value) for key, value in decision.details.items()},
        }
        event_type = {"rejected": "rejection", "pending": "pending"}.get(decision.status)
        if event_type is not None:
            self._journal(event_type, payload)

    def _journal(self, event_type: str, payload: dict[str, object]) -> None:
        journal = self._ctx.journal
        if journal is None:
            return
        try:
            journal.append(event_type, payload)
        except Exception as exc:  # noqa: BLE001 - journaling must not block trading.
            self._logger.warning("journal_append_failed", event_type=event_type, error=str(exc))


def _tick_status(decisions: list[Decision]) -> str:
    statuses = {decision.status for decision in decisions}
    if "executed" in statuses:
        return "executed"
    if "pending" in statuses:
        return "pending"
    return "no_trade"


def _plain(value: object) -> object:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
