"""Drive the engine over recorded observations with the paper broker."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

from decision_engine.config import Settings
from decision_engine.context import MarketClock
from decision_engine.engine import EngineContext, TradingEngine, build_engine
from decision_engine.exec.paper import PaperBroker
from decision_engine.journal.store import JournalStore, JournalTradeLogger
from decision_engine.ports import Notifier
from decision_engine.replay.data import (
    Observation,
    ReplayConfluence,
    ReplayMarketData,
    ReplayPatternDetector,
)
from decision_engine.types import StrategyClass
from decision_engine.utils.logging import get_logger


@dataclass(slots=True)
class ReplaySummary:
    """Aggregate outcome of one replay run."""

    ticks: int = 0
    bars: int = 0
    executed: int = 0
    staged: int = 0
    rejections: dict[str, int] = field(default_factory=dict)
    closed_tickets: list[int] = field(default_factory=list)
    final_balance: float = 0.0
    open_positions: int = 0
    trading_halted: bool = False


def run_replay(
    settings: Settings,
    observations: list[Observation],
    *,
    journal_dir: Path | None = None,
    state_file: Path | None = None,
    notifier: Notifier | None = None,
) -> ReplaySummary:
    """Replay observations tick by tick; quotes reach the broker before the engine."""
    if not observations:
        raise ValueError("replay_observations_empty")

    logger = get_logger("decision_engine.replay.runner")
    provider = ReplayMarketData(observations)
    broker = PaperBroker(
        symbol=settings.symbol,
        magic=settings.strategy_magic,
        initial_balance=settings.paper_initial_balance,
        contract_size=settings.contract_size,
        leverage=settings.paper_leverage,
        state_file=state_file,
    )
    clock = MarketClock()
    journal = JournalStore(journal_dir, clock=clock) if journal_dir is not None else None
    confluence = ReplayConfluence(provider)
    context = build_engine(
        settings,
        provider=provider,
        account=broker,
        gateway=broker,
        trend_detector=ReplayPatternDetector(provider, StrategyClass.TREND_FOLLOWING),
        mean_reversion_detector=ReplayPatternDetector(provider, StrategyClass.MEAN_REVERSION),
        structural_confluence=confluence,
        momentum_confluence=confluence,
        trade_logger=JournalTradeLogger(journal) if journal is not None else None,
        notifier=notifier,
        journal=journal,
        clock=clock,
    )
    engine = TradingEngine(context)

    summary = ReplaySummary()
    rejections: Counter[str] = Counter()
    row = provider.advance()
    assert row is not None
    broker.update_market(row.bid, row.ask, row.time)
    engine.start()

    while row is not None:
        result = engine.on_tick()
        summary.ticks += 1
        summary.bars += int(result.new_bar)
        summary.closed_tickets.extend(result.closed_tickets)
        for decision in result.decisions:
            if decision.status == "executed":
                summary.executed += 1
            elif decision.status == "pending":
                summary.staged += 1
            elif decision.reason is not None:
                rejections[decision.reason.value] += 1

        row = provider.advance()
        if row is not None:
            broker.update_market(row.bid, row.ask, row.time)

    _finish(summary, rejections, broker, context)
    logger.info(
        "replay_completed",
        ticks=summary.ticks,
        bars=summary.bars,
        executed=summary.executed,
        staged=summary.staged,
        final_balance=round(summary.final_balance, 2),
        open_positions=summary.open_positions,
    )
    return summary


def _finish(
    summary: ReplaySummary,
    rejections: Counter[str],
    broker: PaperBroker,
    context: EngineContext,
) -> None:
    summary.rejections = dict(rejections)
    summary.final_balance = broker.balance()
    summary.open_positions = context.coordinator.position_count
    summary.trading_halted = context.risk_manager.is_trading_halted()
