"""学习/纸面交易引擎（LearningEngine）。

流程：配置 → 数据源 → 指标/状态 → agent 选动作 → 风控调整 → 环境推进 → TD 学习 → 事件。
每个 episode 从 `environment.reset()` 开始，直到环境终止、步数上限或连续拉取失败过多。
"""

from __future__ import annotations

import time
from dataclasses import replace
from datetime import date
from pathlib import Path
from typing import Any, Callable

from algo.factors.engine import IndicatorEngine
from algo.market.classifier import MarketStateClassifier
from algo.risk.manager import RiskManager
from algo.rl.agent import ACTIONS, QLearningAgent
from algo.rl.environment import TradingEnvironment
from broker.abstract_broker import Broker
from engine.base_engine import BaseEngine, EngineResult
from engine.events import METRICS, SIGNAL, EventBus, MetricsEvent, SignalEvent
from market.client import CandleSource, get_candle_source
from shared.config.config_loader import load_config
from shared.config.schema import MainConfig
from shared.errors import DataSourceError
from shared.models.models import Action, ActionProposal, Candle, OrderRequest
from shared.utils.logging import setup_logger
from shared.utils.timeframe import interval_seconds


class LearningEngine(BaseEngine):
    """强化学习驱动的纸面交易循环。

    Parameters
    ----------
    cfg_path / cfg_obj:
        配置来源。
    source / agent / environment / broker / events:
        可注入的协作者；缺省按配置构建（broker 缺省不启用）。
    max_episodes / max_steps:
        覆盖配置中的 episode 数与单 episode 步数上限；显式 0 个 episode 表示不训练。
    step_delay:
        每步之间的等待秒数；缺省 paper 模式按 timeframe，其他模式为 0。
    sleep / clock:
        可注入的等待函数与单调时钟（测试用）。
    """

    def __init__(
        self,
        *,
        cfg_path: str = "config/config.yml",
        cfg_obj: MainConfig | None = None,
        source: CandleSource | None = None,
        agent: QLearningAgent | None = None,
        environment: TradingEnvironment | None = None,
        broker: Broker | None = None,
        events: EventBus | None = None,
        symbol: str | None = None,
        max_episodes: int | None = None,
        max_steps: int | None = None,
        step_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_episodes is not None and max_episodes < 0:
            raise ValueError("max_episodes must be >= 0")
        if max_steps is not None and max_steps < 1:
            raise ValueError("max_steps must be >= 1")
        self._cfg_path = cfg_path
        self._cfg_obj = cfg_obj
        self._source = source
        self._agent = agent
        self._environment = environment
        self.broker = broker
        self.events = events or EventBus()
        self._symbol = symbol
        self._max_episodes = max_episodes
        self._max_steps = max_steps
        self._step_delay = step_delay
        self._sleep = sleep
        self._clock = clock

        self.cfg: MainConfig | None = None
        self.logger = setup_logger("learning")
        self._running = False
        self.episode = 0
        self.step_count = 0
        self.best_reward: float | None = None
        self.agent: QLearningAgent | None = None
        self.environment: TradingEnvironment | None = None
        self._current_day: date | None = None

    # ------------------------------------------------------------------
    def stop(self) -> None:
        """协作式停止：当前步完成后在下一次循环检查时退出。"""
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def get_status(self) -> dict[str, Any]:
        state = self.environment.state if self.environment is not None else None
        return {
            "running": self._running,
            "episode": self.episode,
            "step": self.step_count,
            "best_reward": self.best_reward,
            "balance": state.balance if state else None,
            "drawdown": state.drawdown if state else None,
            "agent": self.agent.get_metrics() if self.agent is not None else {},
        }

    # ------------------------------------------------------------------
    def run(self) -> EngineResult:
        cfg = self._load_cfg()
        learn_cfg = cfg.learning
        logger = self.logger

        symbol = self._symbol or cfg.symbols[0]
        max_episodes = self._max_episodes if self._max_episodes is not None else learn_cfg.max_episodes
        max_steps = self._max_steps if self._max_steps is not None else learn_cfg.max_steps_per_episode
        delay = self._resolve_delay(cfg)

        # 叶子组件先构建，再注入
        classifier = MarketStateClassifier(volume_window=cfg.indicators.volume_window)
        indicators = IndicatorEngine(cfg.indicators)
        risk = RiskManager(cfg.risk, capital=cfg.initial_balance, market_states=classifier)
        env = self._environment or TradingEnvironment(
            initial_balance=cfg.initial_balance,
            win_probability=learn_cfg.win_probability,
            rng=learn_cfg.seed,
        )
        agent = self._agent or QLearningAgent.from_config(learn_cfg)
        self.environment = env
        self.agent = agent

        model_path = Path(learn_cfg.model_path)
        if model_path.exists():
            agent.load_model(model_path)

        source = self._source or get_candle_source(cfg, logger=logger)
        try:
            source.connect()
        except DataSourceError:
            logger.exception("Data source connect failed, abort.")
            raise

        self._running = True
        last_checkpoint = self._clock()
        episodes_run = 0
        logger.info(
            "Learning start: symbol=%s timeframe=%s episodes=%d delay=%.2fs",
            symbol,
            cfg.timeframe,
            max_episodes,
            delay,
        )
        try:
            while self._running and self.episode < max_episodes:
                self.episode += 1
                total_reward, steps = self._run_episode(
                    source=source,
                    symbol=symbol,
                    interval=cfg.timeframe,
                    classifier=classifier,
                    indicators=indicators,
                    risk=risk,
                    env=env,
                    agent=agent,
                    max_steps=max_steps,
                    max_failures=learn_cfg.max_fetch_failures,
                    delay=delay,
                )
                if steps == 0:
                    logger.error("Episode %d produced no steps, data source exhausted. Stop.", self.episode)
                    break
                episodes_run += 1
                agent.end_episode()
                logger.info(
                    "Episode %d done: steps=%d reward=%.2f balance=%.2f epsilon=%.4f",
                    self.episode,
                    steps,
                    total_reward,
                    env.state.balance,
                    agent.epsilon,
                )

                if self.best_reward is None or total_reward > self.best_reward:
                    self.best_reward = total_reward
                    agent.save_model(model_path)
                if self._clock() - last_checkpoint >= learn_cfg.retrain_interval:
                    agent.save_model(model_path)
                    last_checkpoint = self._clock()
        finally:
            self._running = False
            source.close()

        summary = {
            "symbol": symbol,
            "episodes": episodes_run,
            "steps": self.step_count,
            "best_reward": self.best_reward,
            "final_balance": env.state.balance,
            "agent": agent.get_metrics(),
            "model_path": str(model_path),
        }
        logger.info("Learning summary: %s", summary)
        return EngineResult(summary=summary, artifacts={"model_path": str(model_path)})

    # ------------------------------------------------------------------
    def _run_episode(
        self,
        *,
        source: CandleSource,
        symbol: str,
        interval: str,
        classifier: MarketStateClassifier,
        indicators: IndicatorEngine,
        risk: RiskManager,
        env: TradingEnvironment,
        agent: QLearningAgent,
        max_steps: int | None,
        max_failures: int,
        delay: float,
    ) -> tuple[float, int]:
        env.reset()
        risk.update_capital(env.state.balance)
        risk.reset_daily_pnl(log=False)
        total_reward = 0.0
        steps = 0
        failures = 0

        while self._running:
            candle = self._fetch(source, symbol, interval)
            if candle is None:
                failures += 1
                if failures > max_failures:
                    self.logger.error(
                        "Episode %d aborted after %d consecutive fetch failures.", self.episode, failures - 1
                    )
                    break
                self._sleep(delay)
                continue
            failures = 0

            self._maybe_roll_day(candle, risk)
            market_state = classifier.update(candle)
            ind = indicators.update(candle)
            state = replace(env.state, market_state=market_state, indicators=ind)

            decision = agent.select_action(state)
            proposal = risk.adjust_action(ActionProposal(decision.action, decision.confidence), state)
            result = env.step(proposal, candle, market_state, ind)
            # 按风控调整后实际执行的动作更新
            agent.learn(state, ACTIONS.index(proposal.action), result.reward, result.next_state, result.done)

            if result.info.get("trade_executed"):
                pnl = float(result.info.get("pnl", 0.0))
                risk.update_daily_pnl(pnl)
                risk.update_capital(result.next_state.balance)
                if self.broker is not None:
                    self._mirror_trade(candle, proposal, pnl)

            self._emit(candle, proposal, decision.confidence, result.next_state, agent)

            total_reward += result.reward
            steps += 1
            self.step_count += 1
            if result.done:
                break
            if max_steps is not None and steps >= max_steps:
                break
            self._sleep(delay)
        return total_reward, steps

    def _fetch(self, source: CandleSource, symbol: str, interval: str) -> Candle | None:
        try:
            candle = source.fetch_latest_candle(symbol, interval)
        except DataSourceError as exc:
            self.logger.warning("Fetch candle failed for %s: %s", symbol, exc)
            return None
        if candle is None:
            self.logger.warning("No candle for %s, skip step.", symbol)
        return candle

    def _maybe_roll_day(self, candle: Candle, risk: RiskManager) -> None:
        day = candle.timestamp.date()
        if self._current_day is not None and day != self._current_day:
            risk.reset_daily_pnl()
            self.logger.info("Trading day changed to %s, reset daily PnL.", day.isoformat())
        self._current_day = day

    def _mirror_trade(self, candle: Candle, proposal: ActionProposal, pnl: float) -> None:
        """把环境里的模拟成交在 paper 账户上记成一开一平，已实现盈亏与环境一致。"""
        price = candle.close
        if price <= 0 or proposal.size <= 0:
            return
        qty = proposal.size / price
        exit_side = Action.SELL if proposal.action is Action.BUY else Action.BUY
        exit_price = price + pnl / qty if proposal.action is Action.BUY else price - pnl / qty
        self.broker.place_order(OrderRequest(candle.symbol, proposal.action, qty, price=price))
        self.broker.place_order(OrderRequest(candle.symbol, exit_side, qty, price=exit_price))

    def _emit(self, candle: Candle, proposal: ActionProposal, confidence: float, state, agent: QLearningAgent) -> None:
        self.events.emit(
            SIGNAL,
            SignalEvent(
                symbol=candle.symbol,
                action=proposal.action,
                confidence=confidence,
                price=candle.close,
                timestamp=candle.timestamp,
                size=proposal.size,
            ),
        )
        self.events.emit(
            METRICS,
            MetricsEvent(
                balance=state.balance,
                equity=state.equity,
                drawdown=state.drawdown,
                win_rate=state.win_rate,
                trade_count=state.trade_count,
                rl_metrics=agent.get_metrics(),
            ),
        )

    def _resolve_delay(self, cfg: MainConfig) -> float:
        if self._step_delay is not None:
            return max(0.0, float(self._step_delay))
        if cfg.mode == "paper":
            return float(interval_seconds(cfg.timeframe))
        return 0.0

    def _load_cfg(self) -> MainConfig:
        cfg = self._cfg_obj if self._cfg_obj is not None else load_config(self._cfg_path)
        self.cfg = cfg
        return cfg
