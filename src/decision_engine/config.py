"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from decision_engine.types import Session


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 品种参数 ====================
    symbol: str = Field(default="XAUUSD", description="交易品种")
    strategy_magic: int = Field(default=240_601, ge=0, description="策略标识（过滤持仓）")
    point: float = Field(default=0.01, gt=0.0, description="最小报价单位")
    point_value: float = Field(default=1.0, gt=0.0, description="每手每点价值（账户货币）")
    lot_step: float = Field(default=0.01, gt=0.0, description="手数步长")
    min_lot: float = Field(default=0.01, gt=0.0, description="最小手数")
    max_lot_multiplier: float = Field(
        default=100.0,
        ge=1.0,
        le=10_000.0,
        description="最大手数 = 最小手数 × 倍数",
    )
    max_margin_usage_pct: float = Field(
        default=50.0,
        gt=0.0,
        le=100.0,
        description="可用保证金最大使用比例（百分比）",
    )

    # ==================== 风控参数 ====================
    daily_loss_limit_pct: float = Field(
        default=3.0,
        gt=0.0,
        le=20.0,
        description="日内亏损停机阈值（账户百分比）",
    )
    max_total_exposure_pct: float = Field(
        default=6.0,
        gt=0.0,
        le=50.0,
        description="总风险敞口限制（账户百分比）",
    )
    max_positions: int = Field(default=3, ge=1, le=50, description="最大同时持仓数")
    max_trades_per_day: int = Field(
        default=5,
        ge=0,
        le=100,
        description="每日最大开仓次数（0 表示不限制）",
    )
    use_loss_scaling: bool = Field(default=True, description="连续亏损后是否降低风险")
    losses_level1: int = Field(default=2, ge=1, le=20, description="一级降险连亏次数")
    losses_level2: int = Field(default=3, ge=1, le=20, description="二级降险连亏次数")
    reduction_level1_pct: float = Field(default=25.0, ge=0.0, le=100.0, description="一级降险比例")
    reduction_level2_pct: float = Field(default=50.0, ge=0.0, le=100.0, description="二级降险比例")

    # ==================== 质量分级风险 ====================
    risk_a_plus_pct: float = Field(default=1.5, ge=0.0, le=5.0, description="A+ 级风险百分比")
    risk_a_pct: float = Field(default=1.0, ge=0.0, le=5.0, description="A 级风险百分比")
    risk_b_plus_pct: float = Field(default=0.75, ge=0.0, le=5.0, description="B+ 级风险百分比")
    risk_b_pct: float = Field(default=0.5, ge=0.0, le=5.0, description="B 级风险百分比")

    # ==================== 交易构建 ====================
    min_rr_ratio: float = Field(default=1.5, gt=0.0, le=10.0, description="最小盈亏比")
    tp1_multiplier: float = Field(default=1.5, gt=0.0, le=20.0, description="TP1 止损距离倍数")
    tp2_multiplier: float = Field(default=3.0, gt=0.0, le=20.0, description="TP2 止损距离倍数")
    tp2_rr_extension: float = Field(
        default=1.0,
        gt=0.0,
        le=10.0,
        description="放宽目标时 TP2 超出最小盈亏比的幅度",
    )
    short_risk_multiplier: float = Field(default=0.5, gt=0.0, le=1.0, description="做空风险系数")
    use_counter_trend_filter: bool = Field(default=True, description="逆长期趋势是否减半风险")
    counter_trend_risk_factor: float = Field(default=0.5, gt=0.0, le=1.0, description="逆势风险系数")
    use_adaptive_tp: bool = Field(default=False, description="是否使用按波动状态自适应止盈")
    use_dynamic_sizing: bool = Field(default=False, description="是否使用绩效自适应仓位")
    use_confirmation_candle: bool = Field(default=True, description="是否等待确认 K 线")

    # ==================== 交易时段 ====================
    allowed_sessions: list[Session] = Field(
        default_factory=lambda: [
            Session.ASIAN,
            Session.LONDON,
            Session.OVERLAP,
            Session.NEW_YORK,
        ],
        description="允许交易的时段",
    )
    skip_hour_start: int = Field(default=-1, ge=-1, le=23, description="跳过时段开始（-1 关闭）")
    skip_hour_end: int = Field(default=-1, ge=-1, le=23, description="跳过时段结束（含）")
    asian_adx_min: float = Field(default=15.0, ge=0.0, le=100.0)
    asian_adx_max: float = Field(default=40.0, ge=0.0, le=100.0)
    london_adx_min: float = Field(default=18.0, ge=0.0, le=100.0)
    london_adx_max: float = Field(default=55.0, ge=0.0, le=100.0)
    newyork_adx_min: float = Field(default=18.0, ge=0.0, le=100.0)
    newyork_adx_max: float = Field(default=55.0, ge=0.0, le=100.0)

    # ==================== 均值回归 ====================
    use_mean_reversion: bool = Field(default=True, description="是否启用均值回归策略")
    mr_atr_min: float = Field(default=2.0, ge=0.0, description="均值回归 ATR 下限")
    mr_atr_max: float = Field(default=6.0, ge=0.0, description="均值回归 ATR 上限")
    mr_max_adx: float = Field(default=25.0, ge=0.0, le=100.0, description="均值回归最大 ADX")
    mr_tp2_extension: float = Field(
        default=0.5,
        ge=0.0,
        le=5.0,
        description="均值回归 TP2 超出中轨的比例",
    )
    mr_short_max_macro: int = Field(default=-1, le=0, description="均值回归做空所需宏观分上限")
    mr_short_max_adx: float = Field(default=22.0, ge=0.0, le=100.0, description="均值回归做空 ADX 上限")
    mr_short_exception_macro: int = Field(
        default=-3,
        le=0,
        description="价格位于长期均线上方时做空所需宏观分上限",
    )
    mr_short_exception_adx: float = Field(
        default=20.0,
        ge=0.0,
        le=100.0,
        description="价格位于长期均线上方时做空 ADX 上限",
    )

    # ==================== 趋势跟随做空 ====================
    tf_short_max_macro: int = Field(default=-2, le=0, description="日线非空头时做空所需宏观分上限")
    tf_short_adx_min: float = Field(default=20.0, ge=0.0, le=100.0)
    tf_short_adx_max: float = Field(default=45.0, ge=0.0, le=100.0)
    tf_macro_tolerance: int = Field(default=2, ge=0, le=10, description="趋势跟随宏观逆向容忍度")

    # ==================== 共振与置信度 ====================
    use_ob_confluence: bool = Field(default=False, description="是否要求订单块共振")
    min_ob_score: float = Field(default=50.0, ge=0.0, le=100.0)
    use_momentum_confluence: bool = Field(default=False, description="是否要求动量共振")
    use_pattern_confidence: bool = Field(default=True, description="是否启用形态置信度过滤")
    min_pattern_confidence: float = Field(default=60.0, ge=0.0, le=100.0)
    confidence_adx_min: float = Field(default=20.0, ge=0.0, le=100.0)
    confidence_adx_max: float = Field(default=40.0, ge=0.0, le=100.0)
    confidence_adx_bonus: float = Field(default=10.0, ge=0.0, le=50.0)
    confidence_atr_min: float = Field(default=2.0, ge=0.0)
    confidence_atr_max: float = Field(default=8.0, ge=0.0)
    confidence_atr_bonus: float = Field(default=10.0, ge=0.0, le=50.0)

    # ==================== 动态止损 ====================
    use_dynamic_sl: bool = Field(default=False, description="是否启用动态止损")
    dynamic_sl_atr_buffer: float = Field(default=0.3, ge=0.0, le=5.0, description="摆动点外 ATR 缓冲")
    dynamic_sl_min_atr: float = Field(default=1.0, ge=0.0, le=10.0, description="最小止损 ATR 倍数")
    dynamic_sl_max_atr: float = Field(default=3.0, gt=0.0, le=20.0, description="最大止损 ATR 倍数")

    # ==================== 持仓管理 ====================
    close_on_weekend: bool = Field(default=True, description="周末前是否强制平仓")
    weekend_close_weekday: int = Field(default=4, ge=0, le=6, description="平仓星期（0=周一）")
    weekend_close_hour: int = Field(default=20, ge=0, le=23, description="平仓小时（服务器时间）")
    max_position_hours: float = Field(default=0.0, ge=0.0, description="最长持仓小时（0 关闭）")
    tp1_close_fraction: float = Field(default=0.5, gt=0.0, le=1.0, description="TP1 部分平仓比例")

    # ==================== 默认指标值 ====================
    default_adx: float = Field(default=20.0, ge=0.0, le=100.0, description="ADX 不可用时的默认值")
    default_atr: float = Field(default=3.0, gt=0.0, description="ATR 不可用时的默认值")

    # ==================== 纸交易 ====================
    paper_initial_balance: float = Field(default=10_000.0, gt=0.0)
    paper_leverage: float = Field(default=100.0, ge=1.0, le=1000.0)
    contract_size: float = Field(default=100.0, gt=0.0, description="每手合约数量")

    # ==================== 告警 ====================
    alert_webhook_url: str = Field(default="", description="告警 Webhook 地址")
    alert_timeout: int = Field(default=3, ge=1, le=10, description="告警请求单次超时（秒）")

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    # ==================== 数据存储 ====================
    journal_dir: Path = Field(
        default=Path("data/journal"),
        description="交易日志存储目录",
    )

    @field_validator("journal_dir", mode="before")
    @classmethod
    def parse_journal_dir(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_ranges(self) -> "Settings":
        """校验成对阈值的先后关系。"""
        if self.losses_level2 < self.losses_level1:
            raise ValueError("losses_level2 must be >= losses_level1")
        if self.mr_atr_max < self.mr_atr_min:
            raise ValueError("mr_atr_max must be >= mr_atr_min")
        if self.tf_short_adx_max < self.tf_short_adx_min:
            raise ValueError("tf_short_adx_max must be >= tf_short_adx_min")
        if self.dynamic_sl_max_atr < self.dynamic_sl_min_atr:
            raise ValueError("dynamic_sl_max_atr must be >= dynamic_sl_min_atr")
        return self

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.journal_dir.mkdir(parents=True, exist_ok=True)

    @property
    def max_lot(self) -> float:
        """最大手数。"""
        return self.min_lot * self.max_lot_multiplier

    def adx_band_for(self, session: Session) -> tuple[float, float]:
        """返回指定时段允许的 ADX 区间。"""
        if session == Session.ASIAN:
            return self.asian_adx_min, self.asian_adx_max
        if session == Session.LONDON:
            return self.london_adx_min, self.london_adx_max
        return self.newyork_adx_min, self.newyork_adx_max


# 全局配置实例（延迟初始化），仅供 CLI 层使用
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
