from __future__ import annotations

from datetime import timedelta

import pytest
from fakes import NOW, FakeAccount, FakeClock
from structlog.testing import capture_logs

from decision_engine.config import Settings
from decision_engine.errors import RejectReason
from decision_engine.risk.manager import RiskManager


def _manager(settings: Settings, account: FakeAccount, clock: FakeClock | None = None) -> RiskManager:
    return RiskManager(settings, account, clock or FakeClock())


def test_lot_size_for_one_percent_risk(settings: Settings) -> None:
    manager = _manager(settings, FakeAccount(balance=10_000.0))
    lots = manager.calculate_lot_size(1.0, 2000.0, 1995.0)
    assert lots == pytest.approx(0.2)


def test_lot_size_for_two_percent_risk_over_ten_dollar_stop(settings: Settings) -> None:
    manager = _manager(settings, FakeAccount(balance=10_000.0))
    # 200 risked over 1000 points at 1.0 per point per lot
    assert manager.calculate_lot_size(2.0, 2000.0, 1990.0) == pytest.approx(0.2)


def test_lot_size_without_risk_budget_is_logged(settings: Settings) -> None:
    with capture_logs() as logs:
        manager = _manager(settings, FakeAccount(balance=0.0))
        assert manager.calculate_lot_size(1.0, 2000.0, 1995.0) == 0.0
        assert _manager(settings, FakeAccount()).calculate_lot_size(0.0, 2000.0, 1995.0) == 0.0

    rejections = [entry for entry in logs if entry["event"] == "trade_rejected"]
    assert [entry["stage"] for entry in rejections] == ["lot_size", "lot_size"]
    assert rejections[0]["balance"] == 0.0
    assert rejections[1]["risk_pct"] == 0.0
    assert rejections[1]["reason"] == RejectReason.LOT_BELOW_MINIMUM.value



def test_lot_size_rejects_degenerate_stop(settings: Settings) -> None:
    manager = _manager(settings, FakeAccount())
    assert manager.calculate_lot_size(1.0, 2000.0, 0.0) == 0.0
    assert manager.calculate_lot_size(1.0, 2000.0, 2000.0) == 0.0


def test_lot_size_below_minimum_returns_zero(settings: Settings) -> None:
    manager = _manager(settings, FakeAccount())
    assert manager.calculate_lot_size(0.001, 2000.0, 1995.0) == 0.0


def test_lot_size_clamped_to_max_lot(settings: Settings) -> None:
    manager = _manager(settings, FakeAccount(balance=1_000_000.0, margin_per_lot=10.0))
    lots = manager.calculate_lot_size(1.0, 2000.0, 1995.0)
    assert lots == pytest.approx(settings.max_lot)


def test_lot_size_rejected_without_margin_headroom(settings: Settings) -> None:
    account = FakeAccount(balance=10_000.0, free_margin=500.0, margin_per_lot=5_000.0)
    manager = _manager(settings, account)
    assert manager.calculate_lot_size(1.0, 2000.0, 1995.0) == 0.0


def test_lot_size_is_a_multiple_of_lot_step(settings: Settings) -> None:
    manager = _manager(settings, FakeAccount(balance=10_000.0))
    lots = manager.calculate_lot_size(1.575, 2000.0, 1995.0)
    assert lots == pytest.approx(0.31)


def test_compute_risk_percent_inverts_sizing(settings: Settings) -> None:
    manager = _manager(settings, FakeAccount(balance=10_000.0))
    assert manager.compute_risk_percent(0.2, 2000.0, 1995.0) == pytest.approx(1.0)
    assert manager.compute_risk_percent(0.2, 2000.0, 0.0) == 0.0


def test_exposure_equals_sum_of_ledger(settings: Settings) -> None:
    manager = _manager(settings, FakeAccount())
    manager.add_position(1, 1.0)
    manager.add_position(2, 1.5)
    manager.add_position(2, 9.0)
    assert manager.get_current_exposure() == pytest.approx(2.5)
    assert manager.positions_count == 2

    assert manager.remove_position(1)
    assert not manager.remove_position(1)
    assert manager.get_current_exposure() == pytest.approx(1.5)
    assert manager.get_stats().positions_count == 1


def test_daily_loss_limit_halts_trading(settings: Settings) -> None:
    account = FakeAccount(balance=9_650.0)
    account.realized_today = -350.0
    manager = _manager(settings, account)

    stats = manager.get_stats()
    assert stats.daily_pnl_pct == pytest.approx(-3.5)
    assert stats.trading_halted
    result = manager.check_admission()
    assert not result.allowed
    assert result.reasons == [RejectReason.DAILY_LOSS_LIMIT_HALTED]
    assert not manager.can_open_new_position()


def test_floating_loss_counts_toward_daily_limit(settings: Settings) -> None:
    account = FakeAccount(balance=10_000.0)
    account.floating = -301.0
    manager = _manager(settings, account)
    assert manager.is_trading_halted()


def test_halt_latches_until_day_rollover(settings: Settings) -> None:
    account = FakeAccount(balance=9_650.0)
    account.realized_today = -350.0
    clock = FakeClock()
    manager = _manager(settings, account, clock)
    assert manager.is_trading_halted()

    account.realized_today = 0.0
    account.balance_value = 10_000.0
    assert manager.is_trading_halted()

    clock.now = NOW + timedelta(days=1)
    assert not manager.is_trading_halted()
    assert manager.check_admission().allowed


def test_exposure_limit_blocks_admission(settings: Settings) -> None:
    manager = _manager(settings, FakeAccount())
    manager.add_position(1, 3.0)
    manager.add_position(2, 3.0)
    result = manager.check_admission()
    assert result.reasons == [RejectReason.EXPOSURE_LIMIT_REACHED]


def test_position_count_limit_blocks_admission(settings: Settings) -> None:
    manager = _manager(settings, FakeAccount())
    for ticket in (1, 2, 3):
        manager.add_position(ticket, 1.0)
    result = manager.check_admission()
    assert not result.allowed
    assert result.reasons == [RejectReason.POSITION_COUNT_LIMIT_REACHED]
    assert result.details["positions"] == 3


def _close_with(manager: RiskManager, account: FakeAccount, ticket: int, profit: float) -> None:
    manager.add_position(ticket, 1.0)
    account.record_close(ticket, profit)
    manager.remove_position(ticket)


def test_loss_streak_scales_risk(settings: Settings) -> None:
    account = FakeAccount()
    manager = _manager(settings, account)

    _close_with(manager, account, 1, -50.0)
    _close_with(manager, account, 2, -50.0)
    assert manager.consecutive_losses == 2
    assert manager.adjust_risk_for_streak(2.0) == pytest.approx(1.5)

    _close_with(manager, account, 3, -50.0)
    assert manager.consecutive_losses == 3
    assert manager.adjust_risk_for_streak(2.0) == pytest.approx(1.0)

    _close_with(manager, account, 4, 80.0)
    assert manager.consecutive_losses == 0
    assert manager.consecutive_wins == 1
    assert manager.adjust_risk_for_streak(2.0) == pytest.approx(2.0)


def test_loss_scaling_can_be_disabled(tmp_path: object) -> None:
    settings = Settings(journal_dir=tmp_path, use_loss_scaling=False)
    account = FakeAccount()
    manager = _manager(settings, account)
    for ticket in (1, 2, 3):
        _close_with(manager, account, ticket, -10.0)
    assert manager.adjust_risk_for_streak(2.0) == pytest.approx(2.0)


def test_breakeven_close_leaves_streaks_unchanged(settings: Settings) -> None:
    account = FakeAccount()
    manager = _manager(settings, account)
    _close_with(manager, account, 1, -10.0)
    _close_with(manager, account, 2, 0.0)
    assert manager.consecutive_losses == 1
    assert manager.consecutive_wins == 0


def test_streak_uses_hint_when_history_missing(settings: Settings) -> None:
    manager = _manager(settings, FakeAccount())
    manager.add_position(7, 1.0)
    manager.remove_position(7, is_winner=False)
    assert manager.consecutive_losses == 1

    manager.add_position(8, 1.0)
    manager.remove_position(8)
    assert manager.consecutive_losses == 1
