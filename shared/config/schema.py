"""配置架构定义（Pydantic Schema）。

目标：
- 配置是强类型、启动时一次性构建的不可变对象（frozen），之后只读向下传递；
- 启动阶段尽早失败，避免 typo/类型错误在长回测或学习循环中“隐蔽爆炸”；
- 核心组件只接收这里的配置对象，不直接读环境变量。
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

_FROZEN = ConfigDict(extra="forbid", frozen=True)


class ExchangeConfig(BaseModel):
    """行情源（交易所）配置。"""
    name: str = "binance"
    base_url: str = "https://api.binance.com"
    ws_url: Optional[str] = "wss://stream.binance.com:9443/ws"
    timeout_secs: float = 10.0

    model_config = _FROZEN


class RiskConfig(BaseModel):
    """风控配置。距离类参数均为相对入场价的比例（0.02 = 2%）。"""
    max_risk_per_trade: float = Field(default=0.02, gt=0, le=1)
    max_leverage: float = Field(default=1.0, gt=0)
    max_open_positions: int = Field(default=1, ge=1)
    stop_loss_distance: float = Field(default=0.02, gt=0, lt=1)
    take_profit_distance: float = Field(default=0.04, gt=0)
    trailing_stop_distance: float = Field(default=0.01, gt=0, lt=1)
    max_drawdown: float = Field(default=0.2, gt=0, le=1)
    daily_loss_limit_pct: float = Field(default=0.05, gt=0, le=1)

    model_config = _FROZEN


class IndicatorConfig(BaseModel):
    """技术指标参数。"""
    window: int = Field(default=200, ge=2)
    rsi_period: int = Field(default=14, gt=0)
    macd_fast: int = Field(default=12, gt=0)
    macd_slow: int = Field(default=26, gt=0)
    macd_signal: int = Field(default=9, gt=0)
    ppo_period: int = Field(default=14, gt=0)
    ema_short: int = Field(default=14, gt=0)
    ema_long: int = Field(default=26, gt=0)
    bollinger_period: int = Field(default=20, gt=0)
    bollinger_k: float = Field(default=2.0, gt=0)
    stochastic_period: int = Field(default=14, gt=0)
    stochastic_smooth: int = Field(default=3, gt=0)
    atr_period: int = Field(default=14, gt=0)
    volume_window: int = Field(default=20, gt=0)
    levels_window: int = Field(default=20, ge=3)

    model_config = _FROZEN

    @model_validator(mode="after")
    def _check_macd(self) -> "IndicatorConfig":
        if self.macd_fast >= self.macd_slow:
            raise ValueError("macd_fast must be < macd_slow")
        return self


class StrategyConfig(BaseModel):
    """策略配置（type + params）。

    说明：
    - 策略参数不允许“散落在顶层”：必须进入 `params`；
    - `strategy:` 下的扁平字段会被自动挪到 `params`，用户写起来方便，schema 又能保持严格。
    """
    type: str = "ppo"
    params: Dict[str, Any] = Field(default_factory=dict)
    model_config = _FROZEN

    @model_validator(mode="before")
    @classmethod
    def _pack_flat_params(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if "params" in data and isinstance(data.get("params"), dict) and set(data.keys()) <= {"type", "params"}:
            return data
        strat_type = data.get("type", "ppo")
        params = {k: v for k, v in data.items() if k not in {"type", "params"}}
        existing = data.get("params")
        if isinstance(existing, dict):
            params = {**params, **existing}
        return {"type": strat_type, "params": params}


class BacktestConfig(BaseModel):
    """回测配置。"""
    data_dir: str = "dataset/history"
    symbols: Optional[List[str]] = None
    interval: Optional[str] = None
    initial_balance: Optional[float] = None
    warmup_bars: int = Field(default=100, ge=0)
    entry_confidence: float = Field(default=0.7, ge=0, le=1)
    leverage: float = Field(default=1.0, gt=0)
    flatten_on_end: bool = False
    quiet_risk_logs: bool = True
    record_equity: bool = True

    model_config = _FROZEN


class LearningConfig(BaseModel):
    """强化学习循环配置。"""
    learning_rate: float = Field(default=0.001, gt=0)
    gamma: float = Field(default=0.99, ge=0, le=1)
    epsilon: float = Field(default=1.0, ge=0, le=1)
    epsilon_min: float = Field(default=0.01, ge=0, le=1)
    epsilon_decay: float = Field(default=0.995, gt=0, le=1)
    batch_size: int = Field(default=32, ge=1)
    retrain_interval: float = Field(default=3600.0, gt=0)
    max_episodes: int = Field(default=1000, ge=1)
    max_steps_per_episode: Optional[int] = Field(default=None, ge=1)
    win_probability: float = Field(default=0.5, ge=0, le=1)
    model_path: str = "models/agent.npz"
    max_fetch_failures: int = Field(default=5, ge=1)
    seed: Optional[int] = None

    model_config = _FROZEN


class MainConfig(BaseModel):
    """应用总配置：进程启动时构建一次，之后只读。"""
    symbols: List[str] = Field(default_factory=lambda: ["BTCUSDT"])
    timeframe: str = "1h"
    mode: Literal["backtest", "paper", "dry-run"] = "backtest"
    initial_balance: float = Field(default=10000.0, gt=0)

    # 子模块配置
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)

    model_config = _FROZEN

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # 兼容单 symbol 写法：`symbol: BTCUSDT`
        if "symbol" in data and "symbols" not in data:
            data["symbols"] = [data.pop("symbol")]
        mode = data.get("mode")
        if isinstance(mode, str):
            data["mode"] = mode.replace("_", "-").lower()
        return data


# 兼容旧命名
AppConfig = MainConfig
