"""CLI 入口模块 - Decision Engine 命令行接口。"""

import sys
from pathlib import Path

import click

from decision_engine import __version__
from decision_engine.config import get_settings
from decision_engine.errors import InitializationError
from decision_engine.notify.alerts import build_notifier
from decision_engine.replay.data import load_observations_csv
from decision_engine.replay.runner import run_replay
from decision_engine.utils.logging import get_logger, setup_logging


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Decision Engine - 单品种日内交易决策引擎。

    风控准入、仓位计算、信号确认与持仓生命周期管理。
    """
    if version:
        click.echo(f"decision-engine version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.option(
    "--csv",
    "csv_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="预计算行情观测 CSV 文件",
)
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="纸交易账户状态文件（可选，用于续跑）",
)
@click.option(
    "--no-journal",
    is_flag=True,
    default=False,
    help="不写入交易日志",
)
def replay(csv_path: Path, state_file: Path | None, no_journal: bool) -> None:
    """用纸交易账户回放历史观测。

    读取观测 → 逐笔驱动引擎 → 模拟成交 → 输出摘要
    """
    settings = get_settings()
    setup_logging(settings)
    logger = get_logger("decision_engine.main")

    journal_dir = None
    if not no_journal:
        settings.ensure_directories()
        journal_dir = settings.journal_dir

    try:
        observations = load_observations_csv(csv_path)
    except ValueError as e:
        logger.error("replay_data_invalid", path=str(csv_path), error=str(e))
        sys.exit(1)

    logger.info("starting_replay", path=str(csv_path), rows=len(observations))

    try:
        summary = run_replay(
            settings,
            observations,
            journal_dir=journal_dir,
            state_file=state_file,
            notifier=build_notifier(settings),
        )
    except InitializationError as e:
        logger.error("engine_initialization_failed", error=str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("replay_interrupted", message="User interrupted")
        sys.exit(0)

    click.echo("=" * 50)
    click.echo("Replay Summary")
    click.echo("=" * 50)
    click.echo(f"   Ticks: {summary.ticks}")
    click.echo(f"   Bars: {summary.bars}")
    click.echo(f"   Executed: {summary.executed}")
    click.echo(f"   Staged: {summary.staged}")
    click.echo(f"   Closed: {len(summary.closed_tickets)}")
    click.echo(f"   Open positions: {summary.open_positions}")
    click.echo(f"   Final balance: {summary.final_balance:.2f}")
    click.echo(f"   Trading halted: {'Yes' if summary.trading_halted else 'No'}")
    if summary.rejections:
        click.echo()
        click.echo("[Rejections]")
        for reason, count in sorted(summary.rejections.items()):
            click.echo(f"   {reason}: {count}")
    click.echo("=" * 50)


@cli.command()
def status() -> None:
    """显示系统状态和配置摘要。"""
    settings = get_settings()
    setup_logging(settings)

    click.echo("=" * 50)
    click.echo("Decision Engine - Status")
    click.echo("=" * 50)
    click.echo()

    # 品种参数
    click.echo("[Instrument]")
    click.echo(f"   Symbol: {settings.symbol}")
    click.echo(f"   Strategy magic: {settings.strategy_magic}")
    click.echo(f"   Lot range: {settings.min_lot} - {settings.max_lot} (step {settings.lot_step})")
    click.echo()

    # 风控参数
    click.echo("[Risk Parameters]")
    click.echo(f"   Daily loss limit: {settings.daily_loss_limit_pct}%")
    click.echo(f"   Max total exposure: {settings.max_total_exposure_pct}%")
    click.echo(f"   Max positions: {settings.max_positions}")
    trades_limit = settings.max_trades_per_day or "unlimited"
    click.echo(f"   Max trades per day: {trades_limit}")
    click.echo(
        f"   Quality risk: A+ {settings.risk_a_plus_pct}% / A {settings.risk_a_pct}% / "
        f"B+ {settings.risk_b_plus_pct}% / B {settings.risk_b_pct}%"
    )
    click.echo(f"   Min reward/risk: {settings.min_rr_ratio}")
    click.echo()

    # 交易时段
    click.echo("[Sessions]")
    click.echo(f"   Allowed: {', '.join(s.value for s in settings.allowed_sessions)}")
    if settings.skip_hour_start >= 0 and settings.skip_hour_end >= 0:
        click.echo(f"   Skip hours: {settings.skip_hour_start} - {settings.skip_hour_end}")
    click.echo(f"   Confirmation candle: {'Yes' if settings.use_confirmation_candle else 'No'}")
    click.echo()

    # 日志配置
    click.echo("[Logging]")
    click.echo(f"   Log level: {settings.log_level}")
    click.echo(f"   Log format: {settings.log_format.value}")
    click.echo(f"   Journal dir: {settings.journal_dir}")
    webhook = "[OK] Configured" if settings.alert_webhook_url else "[--] Not configured"
    click.echo(f"   Alert webhook: {webhook}")
    click.echo()
    click.echo("=" * 50)


@cli.command()
def check() -> None:
    """检查系统依赖和配置。"""
    setup_logging()
    logger = get_logger("decision_engine.main")

    click.echo("Checking system dependencies...")
    click.echo()

    all_ok = True

    # 检查必要的包
    packages = [
        ("pydantic", "Configuration validation"),
        ("pydantic_settings", "Settings loading"),
        ("httpx", "HTTP client"),
        ("pandas", "Data processing"),
        ("structlog", "Structured logging"),
        ("click", "CLI framework"),
        ("tenacity", "Retry mechanism"),
    ]

    for pkg_name, desc in packages:
        try:
            __import__(pkg_name)
            click.echo(f"  [OK] {pkg_name} - {desc}")
        except ImportError:
            click.echo(f"  [MISSING] {pkg_name} - {desc}")
            all_ok = False

    click.echo()

    # 检查配置文件
    env_file = Path(".env")
    if env_file.exists():
        click.echo("  [OK] .env configuration file exists")
    else:
        click.echo("  [WARN] .env file not found (using defaults)")

    click.echo()

    if all_ok:
        click.echo("[OK] All dependency checks passed")
    else:
        click.echo("[ERROR] Some dependencies missing. Run: pip install -e .")

    logger.info("dependency_check_completed", all_ok=all_ok)


# 支持 python -m decision_engine.main 调用
if __name__ == "__main__":
    cli()
