"""单次回测引擎（BacktestEngine）。

流程：配置 → 数据 → 组件（指标/状态/策略/风控）→ 持仓模拟 → 指标/产物。
"""

from __future__ import annotations

import math
from datetime import datetime
from pathlib import Path
from typing import Mapping, Sequence

import pandas as pd

from algo.factors.engine import IndicatorEngine
from algo.market.classifier import MarketStateClassifier
from algo.risk.manager import RiskManager
from algo.strategy.registry import build_strategy
from engine.base_engine import BaseEngine, EngineResult
from engine.simulator import PositionSimulator
from market_data.loader import HistoricalDataLoader, merge_candles
from shared.config.config_loader import load_config
from shared.config.schema import MainConfig
from shared.models.models import BacktestResult, Candle
from shared.utils.logging import setup_logger


def _export_trades_csv(result: BacktestResult, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = [
        {
            "symbol": t.symbol,
            "side": t.side.value,
            "entry_time": t.entry_time.isoformat(),
            "exit_time": t.exit_time.isoformat(),
            "entry_price": t.entry_price,
            "exit_price": t.exit_price,
            "size": t.size,
            "pnl": t.pnl,
            "pnl_percent": t.pnl_percent,
            "exit_reason": t.exit_reason,
        }
        for t in result.trades
    ]
    pd.DataFrame(rows).to_csv(path, index=False)


def _export_equity_csv(equity_curve: list[tuple[datetime | None, float]], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if not equity_curve:
        return

    # Columns: ts, equity, drawdown, drawdown_pct
    data = []
    peak = -math.inf
    for ts, eq in equity_curve:
        if eq > peak:
            peak = eq
        dd = peak - eq
        dd_pct = dd / peak if peak > 0 else 0.0
        data.append({
            "ts": ts.isoformat() if ts is not None else "",
            "equity": eq,
            "drawdown": dd,
            "drawdown_pct": dd_pct,
        })
    pd.DataFrame(data).to_csv(path, index=False)


def summarize(result: BacktestResult, initial_balance: float) -> dict:
    """BacktestResult -> 可序列化的 summary。"""
    return {
        "initial_balance": initial_balance,
        "final_balance": initial_balance + result.total_pnl,
        "total_trades": result.total_trades,
        "winning_trades": result.winning_trades,
        "losing_trades": result.losing_trades,
        "win_rate": result.win_rate,
        "total_pnl": result.total_pnl,
        "max_drawdown": result.max_drawdown,
        "sharpe_ratio": result.sharpe_ratio,
        **result.stats,
    }


class BacktestEngine(BaseEngine):
    """单次回测引擎。

    Parameters
    ----------
    cfg_path:
        配置文件路径（未传 `cfg_obj` 时使用）。
    cfg_obj:
        已构建好的配置对象。
    candles:
        直接注入的 K 线（symbol -> 序列）；缺省从 `backtest.data_dir` 读取 CSV。
    artifacts_dir:
        产物目录；给定时导出 trades.csv / equity.csv。
    """

    def __init__(
        self,
        *,
        cfg_path: str = "config/config.yml",
        cfg_obj: MainConfig | None = None,
        candles: Mapping[str, Sequence[Candle]] | None = None,
        artifacts_dir: str | Path | None = None,
    ):
        self._cfg_path = cfg_path
        self._cfg_obj = cfg_obj
        self._candles = candles
        self._artifacts_dir = artifacts_dir

        self.cfg: MainConfig | None = None
        self.simulator: PositionSimulator | None = None

    def run(self) -> EngineResult:
        cfg = self._load_cfg()
        bt_cfg = cfg.backtest
        logger = setup_logger("backtest")

        symbols = list(bt_cfg.symbols or cfg.symbols)
        interval = bt_cfg.interval or cfg.timeframe
        initial_balance = float(bt_cfg.initial_balance or cfg.initial_balance)

        candles = self._load_candles(cfg, symbols, interval)
        logger.info(
            "Backtest start: symbols=%s interval=%s bars=%d balance=%.2f",
            symbols,
            interval,
            len(candles),
            initial_balance,
        )

        # 叶子组件先构建，再注入上层
        classifier = MarketStateClassifier(volume_window=cfg.indicators.volume_window)
        indicators = IndicatorEngine(cfg.indicators)
        strategy = build_strategy(cfg.strategy)
        risk = RiskManager(
            cfg.risk,
            capital=initial_balance,
            market_states=classifier,
            suppress_warnings=bt_cfg.quiet_risk_logs,
        )
        simulator = PositionSimulator(
            strategy=strategy,
            indicators=indicators,
            classifier=classifier,
            risk=risk,
            warmup_bars=bt_cfg.warmup_bars,
            entry_confidence=bt_cfg.entry_confidence,
            leverage=bt_cfg.leverage,
            flatten_on_end=bt_cfg.flatten_on_end,
            logger=logger,
        )
        self.simulator = simulator
        result = simulator.run(candles)

        summary = {"symbols": symbols, "interval": interval, "strategy": cfg.strategy.type}
        summary.update(summarize(result, initial_balance))

        artifacts: dict = {"result": result}
        if self._artifacts_dir is not None:
            out_dir = Path(self._artifacts_dir)
            trades_path = out_dir / "trades.csv"
            _export_trades_csv(result, trades_path)
            artifacts["trades_csv"] = str(trades_path)
            if bt_cfg.record_equity:
                equity_path = out_dir / "equity.csv"
                _export_equity_csv(simulator.equity_curve, equity_path)
                artifacts["equity_csv"] = str(equity_path)

        logger.info("Backtest summary: %s", summary)
        return EngineResult(summary=summary, artifacts=artifacts)

    def _load_cfg(self) -> MainConfig:
        cfg = self._cfg_obj if self._cfg_obj is not None else load_config(self._cfg_path)
        self.cfg = cfg
        return cfg

    def _load_candles(self, cfg: MainConfig, symbols: list[str], interval: str) -> list[Candle]:
        if self._candles is not None:
            series = [self._candles.get(sym, ()) for sym in symbols]
        else:
            loader = HistoricalDataLoader(cfg.backtest.data_dir)
            series = [loader.load(sym, interval) for sym in symbols]
        return merge_candles(series)
