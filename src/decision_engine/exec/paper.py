"""Paper broker: simulated account state and order execution."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from decision_engine.types import BrokerPosition, ClosedTrade, Direction, Quote
from decision_engine.utils.logging import get_logger, log_order_execution


@dataclass(slots=True)
class _PaperPosition:
    ticket: int
    direction: str
    lots: float
    open_price: float
    stop_loss: float
    take_profit: float
    opened_at: str
    magic: int
    comment: str


@dataclass(slots=True)
class _PaperState:
    balance: float
    next_ticket: int
    positions: dict[int, _PaperPosition] = field(default_factory=dict)
    history: dict[int, dict[str, Any]] = field(default_factory=dict)
    realized: list[tuple[str, float]] = field(default_factory=list)


class PaperBroker:
    """Single-symbol simulated broker with SL/TP fills on quote updates."""

    def __init__(
        self,
        *,
        symbol: str,
        magic: int,
        initial_balance: float = 10_000.0,
        contract_size: float = 100.0,
        leverage: float = 100.0,
        slippage: float = 0.0,
        state_file: Path | None = None,
    ) -> None:
        self._symbol = symbol
        self._magic = magic
        self._contract_size = contract_size
        self._leverage = leverage
        self._slippage = slippage
        self._state_file = state_file
        self._quote: Quote | None = None
        self._now = datetime.now(timezone.utc)
        self._logger = get_logger("decision_engine.exec.paper")
        self._state = self._load_state(initial_balance)

    # ───── market updates ───────────────────────────────────────────
    def update_market(self, bid: float, ask: float, now: datetime) -> list[int]:
        """Apply a new quote and fill any stop-loss/take-profit it touches."""
        self._quote = Quote(bid=bid, ask=ask)
        self._now = now
        hits: list[int] = []
        for ticket, position in list(self._state.positions.items()):
            fill = self._protective_fill(position)
            if fill is not None:
                price, reason = fill
                self._close(ticket, price, reason)
                hits.append(ticket)
        return hits

    def _protective_fill(self, position: _PaperPosition) -> tuple[float, str] | None:
        assert self._quote is not None
        if position.direction == Direction.LONG.value:
            price = self._quote.bid
            if position.stop_loss > 0 and price <= position.stop_loss:
                return position.stop_loss, "stop_loss"
            if position.take_profit > 0 and price >= position.take_profit:
                return position.take_profit, "take_profit"
            return None
        price = self._quote.ask
        if position.stop_loss > 0 and price >= position.stop_loss:
            return position.stop_loss, "stop_loss"
        if position.take_profit > 0 and price <= position.take_profit:
            return position.take_profit, "take_profit"
        return None

    # ───── account provider ─────────────────────────────────────────
    def quote(self) -> Quote | None:
        return self._quote

    def balance(self) -> float:
        return self._state.balance

    def equity(self) -> float:
        return self._state.balance + self.floating_profit(self._magic)

    def free_margin(self) -> float:
        used = sum(
            self._margin(p.lots, p.open_price) for p in self._state.positions.values()
        )
        return self.equity() - used

    def margin_required(self, direction: Direction, lots: float, price: float) -> float | None:
        if lots <= 0 or price <= 0:
            return None
        return self._margin(lots, price)

    def open_positions(self, magic: int) -> list[BrokerPosition]:
        return [
            self._to_broker_position(p)
            for p in self._state.positions.values()
            if p.magic == magic
        ]

    def is_position_open(self, ticket: int) -> bool:
        return ticket in self._state.positions

    def closed_trade(self, ticket: int) -> ClosedTrade | None:
        record = self._state.history.get(ticket)
        if record is None:
            return None
        return ClosedTrade(
            ticket=ticket,
            profit=float(record["profit"]),
            exit_price=float(record["exit_price"]),
            closed_at=datetime.fromisoformat(record["closed_at"]),
        )

    def realized_profit_since(self, since: datetime, magic: int) -> float:
        return sum(
            profit
            for stamp, profit in self._state.realized
            if datetime.fromisoformat(stamp) >= since
        )

    def floating_profit(self, magic: int) -> float:
        if self._quote is None:
            return 0.0
        return sum(
            self._pnl(p, self._exit_price(p.direction), p.lots)
            for p in self._state.positions.values()
            if p.magic == magic
        )

    # ───── order gateway ────────────────────────────────────────────
    def open_long(self, lots: float, stop_loss: float, take_profit: float, comment: str) -> int:
        return self._open(Direction.LONG, lots, stop_loss, take_profit, comment)

    def open_short(self, lots: float, stop_loss: float, take_profit: float, comment: str) -> int:
        return self._open(Direction.SHORT, lots, stop_loss, take_profit, comment)

    def close_position(self, ticket: int) -> bool:
        position = self._state.positions.get(ticket)
        if position is None or self._quote is None:
            return False
        self._close(ticket, self._exit_price(position.direction), "manual")
        return True

    def close_partial(self, ticket: int, lots: float) -> bool:
        position = self._state.positions.get(ticket)
        if position is None or self._quote is None or lots <= 0 or lots >= position.lots:
            return False
        profit = self._pnl(position, self._exit_price(position.direction), lots)
        position.lots = round(position.lots - lots, 8)
        self._realize(profit)
        self._persist()
        log_order_execution(
            self._logger,
            symbol=self._symbol,
            side="CLOSE_PARTIAL",
            quantity=lots,
            order_id=ticket,
            status="filled",
            realized_pnl=round(profit, 2),
        )
        return True

    def modify_position(self, ticket: int, stop_loss: float, take_profit: float) -> bool:
        position = self._state.positions.get(ticket)
        if position is None:
            return False
        position.stop_loss = stop_loss
        position.take_profit = take_profit
        self._persist()
        return True

    def close_all(self) -> int:
        return sum(1 for ticket in list(self._state.positions) if self.close_position(ticket))

    # ───── internals ────────────────────────────────────────────────
    def _open(
        self,
        direction: Direction,
        lots: float,
        stop_loss: float,
        take_profit: float,
        comment: str,
    ) -> int:
        if self._quote is None or lots <= 0:
            return 0
        if direction is Direction.LONG:
            price = self._quote.ask + self._slippage
        else:
            price = self._quote.bid - self._slippage
        ticket = self._state.next_ticket
        self._state.next_ticket += 1
        self._state.positions[ticket] = _PaperPosition(
            ticket=ticket,
            direction=direction.value,
            lots=float(lots),
            open_price=float(price),
            stop_loss=float(stop_loss),
            take_profit=float(take_profit),
            opened_at=self._now.isoformat(),
            magic=self._magic,
            comment=comment,
        )
        self._persist()
        log_order_execution(
            self._logger,
            symbol=self._symbol,
            side=direction.value,
            quantity=lots,
            price=price,
            order_id=ticket,
            status="filled",
        )
        return ticket

    def _close(self, ticket: int, exit_price: float, reason: str) -> None:
        position = self._state.positions.pop(ticket)
        profit = self._pnl(position, exit_price, position.lots)
        self._realize(profit)
        self._state.history[ticket] = {
            "profit": profit,
            "exit_price": exit_price,
            "closed_at": self._now.isoformat(),
            "reason": reason,
        }
        self._persist()
        log_order_execution(
            self._logger,
            symbol=self._symbol,
            side="CLOSE",
            quantity=position.lots,
            price=exit_price,
            order_id=ticket,
            status="filled",
            reason=reason,
            realized_pnl=round(profit, 2),
        )

    def _realize(self, profit: float) -> None:
        self._state.balance += profit
        self._state.realized.append((self._now.isoformat(), profit))

    def _pnl(self, position: _PaperPosition, exit_price: float, lots: float) -> float:
        sign = 1 if position.direction == Direction.LONG.value else -1
        return (exit_price - position.open_price) * sign * lots * self._contract_size

    def _exit_price(self, direction: str) -> float:
        assert self._quote is not None
        return self._quote.bid if direction == Direction.LONG.value else self._quote.ask

    def _margin(self, lots: float, price: float) -> float:
        return lots * self._contract_size * price / self._leverage

    def _to_broker_position(self, position: _PaperPosition) -> BrokerPosition:
        profit = 0.0
        if self._quote is not None:
            profit = self._pnl(position, self._exit_price(position.direction), position.lots)
        return BrokerPosition(
            ticket=position.ticket,
            direction=Direction(position.direction),
            lots=position.lots,
            open_price=position.open_price,
            stop_loss=position.stop_loss,
            take_profit=position.take_profit,
            profit=profit,
            opened_at=datetime.fromisoformat(position.opened_at),
            magic=position.magic,
            comment=position.comment,
        )

    def _load_state(self, initial_balance: float) -> _PaperState:
        if self._state_file is None or not self._state_file.exists():
            return _PaperState(balance=initial_balance, next_ticket=1)

        raw = json.loads(self._state_file.read_text(encoding="utf-8"))
        positions = {
            int(ticket): _PaperPosition(**payload)
            for ticket, payload in raw.get("positions", {}).items()
        }
        return _PaperState(
            balance=float(raw.get("balance", initial_balance)),
            next_ticket=int(raw.get("next_ticket", 1)),
            positions=positions,
            history={int(ticket): record for ticket, record in raw.get("history", {}).items()},
            realized=[(str(stamp), float(profit)) for stamp, profit in raw.get("realized", [])],
        )

    def _persist(self) -> None:
        if self._state_file is None:
            return
        payload: dict[str, Any] = {
            "balance": self._state.balance,
            "next_ticket": self._state.next_ticket,
            "positions": {
                str(ticket): asdict(position)
                for ticket, position in self._state.positions.items()
            },
            "history": {str(ticket): record for ticket, record in self._state.history.items()},
            "realized": self._state.realized,
        }
        serialized = json.dumps(payload, ensure_ascii=True, indent=2)
        self._state_file.write_text(serialized, encoding="utf-8")
