"""JSONL journal store for engine events."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from decision_engine.types import Position

_ALLOWED_EVENT_TYPES = {
    "entry",
    "exit",
    "rejection",
    "pending",
    "risk_event",
    "error",
}


class JournalStore:
    """Append-only JSONL event store, one file per day."""

    def __init__(
        self,
        journal_dir: Path,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._journal_dir = journal_dir
        self._journal_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def append(self, event_type: str, payload: dict[str, Any]) -> None:
        """Append one event line to the daily JSONL file."""
        if event_type not in _ALLOWED_EVENT_TYPES:
            raise ValueError(f"unsupported_event_type: {event_type}")
        now = self._clock()
        record = {
            "timestamp": now.isoformat(),
            "event_type": event_type,
            "payload": payload,
        }
        file_path = self._file_path_for_day(now.date())
        with file_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=True) + "\n")

    def load_recent(self, limit: int, event_type: str | None = None) -> list[dict[str, Any]]:
        """Load recent events from the most recent journal files."""
        if limit <= 0:
            return []

        rows: list[dict[str, Any]] = []
        files = sorted(self._journal_dir.glob("*.jsonl"), reverse=True)
        for file in files:
            lines = file.read_text(encoding="utf-8").splitlines()
            for line in reversed(lines):
                if not line.strip():
                    continue
                row = json.loads(line)
                if event_type is not None and row.get("event_type") != event_type:
                    continue
                rows.append(row)
                if len(rows) >= limit:
                    return list(reversed(rows))
        return list(reversed(rows))

    def _file_path_for_day(self, day: date) -> Path:
        return self._journal_dir / f"{day.isoformat()}.jsonl"


class JournalTradeLogger:
    """Trade logger writing entries and exits to the journal."""

    def __init__(self, store: JournalStore) -> None:
        self._store = store

    def log_entry(self, position: Position) -> None:
        self._store.append("entry", _position_payload(position))

    def log_exit(self, position: Position, exit_price: float, profit: float, reason: str) -> None:
        self._store.append(
            "exit",
            {
                **_position_payload(position),
                "exit_price": exit_price,
                "profit": round(profit, 2),
                "reason": reason,
            },
        )


def _position_payload(position: Position) -> dict[str, Any]:
    return {
        "ticket": position.ticket,
        "direction": position.direction.value,
        "pattern": position.pattern_name,
        "pattern_kind": position.pattern_kind.code if position.pattern_kind else None,
        "quality": position.quality.value,
        "lots": position.lots,
        "entry_price": position.entry_price,
        "stop_loss": position.stop_loss,
        "tp1": position.tp1,
        "tp2": position.tp2,
        "risk_pct": round(position.initial_risk_pct, 4),
        "opened_at": position.opened_at.isoformat(),
    }
