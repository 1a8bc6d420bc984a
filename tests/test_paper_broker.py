from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from fakes import NOW

from decision_engine.exec.paper import PaperBroker
from decision_engine.types import Direction

MAGIC = 240_601


def _broker(state_file: Path | None = None) -> PaperBroker:
    broker = PaperBroker(symbol="XAUUSD", magic=MAGIC, state_file=state_file)
    broker.update_market(1999.9, 2000.0, NOW)
    return broker


def test_open_requires_a_quote() -> None:
    broker = PaperBroker(symbol="XAUUSD", magic=MAGIC)
    assert broker.open_long(0.1, 1995.0, 2010.0, "no quote") == 0


def test_long_fills_at_ask_and_marks_to_bid() -> None:
    broker = _broker()

    ticket = broker.open_long(0.5, 1990.0, 2020.0, "entry")

    assert ticket == 1
    position = broker.open_positions(MAGIC)[0]
    assert position.direction is Direction.LONG
    assert position.open_price == pytest.approx(2000.0)
    # Spread cost: (1999.9 - 2000.0) * 0.5 lots * 100
    assert broker.floating_profit(MAGIC) == pytest.approx(-5.0)
    assert broker.margin_required(Direction.LONG, 0.5, 2000.0) == pytest.approx(1000.0)
    assert broker.free_margin() == pytest.approx(10_000.0 - 5.0 - 1000.0)


def test_stop_loss_fill_realizes_loss() -> None:
    broker = _broker()
    ticket = broker.open_long(1.0, 1995.0, 2010.0, "entry")

    hits = broker.update_market(1994.5, 1994.6, NOW + timedelta(minutes=5))

    assert hits == [ticket]
    assert not broker.is_position_open(ticket)
    closed = broker.closed_trade(ticket)
    assert closed is not None
    assert closed.exit_price == pytest.approx(1995.0)
    assert closed.profit == pytest.approx(-500.0)
    assert broker.balance() == pytest.approx(9_500.0)


def test_short_take_profit_fill() -> None:
    broker = _broker()
    ticket = broker.open_short(0.2, 2010.0, 1990.0, "entry")

    broker.update_market(1989.8, 1989.9, NOW + timedelta(minutes=5))

    closed = broker.closed_trade(ticket)
    assert closed is not None
    assert closed.profit == pytest.approx((1999.9 - 1990.0) * 0.2 * 100)


def test_partial_close_reduces_lots() -> None:
    broker = _broker()
    ticket = broker.open_long(0.3, 1990.0, 2020.0, "entry")
    broker.update_market(2005.0, 2005.1, NOW + timedelta(minutes=5))

    assert broker.close_partial(ticket, 0.1)
    assert not broker.close_partial(ticket, 0.2)

    position = broker.open_positions(MAGIC)[0]
    assert position.lots == pytest.approx(0.2)
    assert broker.balance() == pytest.approx(10_050.0)


def test_realized_profit_since_day_start() -> None:
    broker = _broker()
    ticket = broker.open_long(0.1, 1990.0, 2020.0, "entry")
    broker.update_market(2010.0, 2010.1, NOW + timedelta(hours=1))
    broker.close_position(ticket)

    day_start = NOW.replace(hour=0, minute=0)
    assert broker.realized_profit_since(day_start, MAGIC) == pytest.approx(100.0)
    assert broker.realized_profit_since(NOW + timedelta(hours=2), MAGIC) == 0.0


def test_modify_position_updates_protective_levels() -> None:
    broker = _broker()
    ticket = broker.open_long(0.1, 1990.0, 2020.0, "entry")

    assert broker.modify_position(ticket, 2000.0, 2020.0)
    assert not broker.modify_position(99, 2000.0, 2020.0)
    assert broker.open_positions(MAGIC)[0].stop_loss == pytest.approx(2000.0)


def test_state_survives_restart(tmp_path: Path) -> None:
    state_file = tmp_path / "paper.json"
    broker = _broker(state_file)
    closed = broker.open_long(0.1, 1990.0, 2020.0, "first")
    broker.close_position(closed)
    kept = broker.open_short(0.2, 2010.0, 1980.0, "second")

    reloaded = _broker(state_file)

    assert reloaded.balance() == pytest.approx(broker.balance())
    assert reloaded.is_position_open(kept)
    assert reloaded.closed_trade(closed) is not None
    assert reloaded.open_long(0.1, 1990.0, 2020.0, "third") == kept + 1
