from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from fakes import NOW, FakeClock

from decision_engine.journal.store import JournalStore, JournalTradeLogger
from decision_engine.types import Direction, PatternKind, Position, SetupQuality


def _position() -> Position:
    return Position(
        ticket=7,
        direction=Direction.LONG,
        pattern_kind=PatternKind.PIN_BAR,
        pattern_name="Bullish Pin Bar",
        lots=0.2,
        entry_price=2000.0,
        stop_loss=1995.0,
        tp1=2007.5,
        tp2=2015.0,
        opened_at=NOW,
        quality=SetupQuality.A,
        initial_risk_pct=1.05,
    )


def test_journal_splits_files_by_day(tmp_path: Path) -> None:
    clock = FakeClock()
    store = JournalStore(tmp_path, clock=clock)
    store.append("rejection", {"reason": "NoSignal"})
    clock.now = NOW + timedelta(days=1)
    store.append("rejection", {"reason": "SessionNotAllowed"})

    assert sorted(p.name for p in tmp_path.glob("*.jsonl")) == [
        "2026-03-10.jsonl",
        "2026-03-11.jsonl",
    ]
    rows = store.load_recent(5)
    assert [row["payload"]["reason"] for row in rows] == ["NoSignal", "SessionNotAllowed"]
    assert store.load_recent(1)[0]["timestamp"].startswith("2026-03-11")
    assert store.load_recent(0) == []


def test_journal_rejects_unknown_event_types(tmp_path: Path) -> None:
    store = JournalStore(tmp_path, clock=FakeClock())
    with pytest.raises(ValueError, match="unsupported_event_type"):
        store.append("heartbeat", {})


def test_trade_logger_writes_entry_and_exit(tmp_path: Path) -> None:
    store = JournalStore(tmp_path, clock=FakeClock())
    trade_logger = JournalTradeLogger(store)

    trade_logger.log_entry(_position())
    trade_logger.log_exit(_position(), 2015.0, 300.004, "closed_by_broker")

    entry, exit_row = store.load_recent(10)
    assert entry["event_type"] == "entry"
    assert entry["payload"]["pattern_kind"] == "pin_bar"
    assert entry["payload"]["quality"] == "A"
    assert exit_row["payload"]["profit"] == 300.0
    assert exit_row["payload"]["reason"] == "closed_by_broker"
