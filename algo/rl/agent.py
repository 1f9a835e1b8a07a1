"""epsilon-greedy 价值近似 agent（一步 TD 在线更新）。"""

from __future__ import annotations

import zipfile
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from shared.config.schema import LearningConfig
from shared.models.models import Action, Level, Momentum, Regime, TradingState, Trend
from shared.utils.logging import setup_logger

ACTIONS: tuple[Action, ...] = (Action.BUY, Action.SELL, Action.HOLD)
STATE_SIZE = 10

_TREND_CODE = {Trend.UP: 1.0, Trend.DOWN: -1.0, Trend.SIDEWAYS: 0.0}
_LEVEL_CODE = {Level.HIGH: 1.0, Level.MEDIUM: 0.5, Level.LOW: 0.0}
_MOMENTUM_CODE = {Momentum.STRONG: 1.0, Momentum.WEAK: -1.0, Momentum.NEUTRAL: 0.0}
_REGIME_CODE = {Regime.BULL: 1.0, Regime.BEAR: -1.0}


def encode_state(state: TradingState) -> np.ndarray:
    """TradingState -> 定长特征向量。

    前 5 维是市场状态的离散编码（趋势/波动率/成交量/动量/牛熊），
    后 5 维是 RSI、MACD 柱状图、回撤、胜率、上一步奖励的归一化值。
    """
    ms = state.market_state
    ind = state.indicators
    return np.array(
        [
            _TREND_CODE[ms.trend],
            _LEVEL_CODE[ms.volatility],
            _LEVEL_CODE[ms.volume],
            _MOMENTUM_CODE[ms.momentum],
            _REGIME_CODE[ms.regime],
            (ind.rsi - 50.0) / 50.0,
            float(np.tanh(ind.macd.histogram)),
            min(1.0, state.drawdown),
            state.win_rate / 100.0,
            state.last_reward,
        ],
        dtype=float,
    )


@dataclass(frozen=True)
class AgentDecision:
    action: Action
    index: int
    confidence: float
    explored: bool = False


class QLearningAgent:
    """线性价值近似的 epsilon-greedy agent。

    Q(s, a) = W[a] · φ(s) + b[a]；每个转移只对所选动作做一次梯度步：
    `target = r`（终止）或 `r + γ · max_a' Q(s', a')`。

    Parameters
    ----------
    learning_rate / gamma:
        学习率与折扣因子。
    epsilon / epsilon_min / epsilon_decay:
        探索率及其每个 episode 的衰减。
    batch_size:
        奖励/TD 误差统计的滑动窗口长度。
    rng:
        numpy 随机数生成器或种子。
    """

    def __init__(
        self,
        learning_rate: float = 0.001,
        gamma: float = 0.95,
        epsilon: float = 0.1,
        epsilon_min: float = 0.01,
        epsilon_decay: float = 0.995,
        batch_size: int = 32,
        rng: np.random.Generator | int | None = None,
        logger=None,
    ):
        self.state_size = STATE_SIZE
        self.action_count = len(ACTIONS)
        self.learning_rate = float(learning_rate)
        self.gamma = float(gamma)
        self.epsilon = float(epsilon)
        self.epsilon_min = float(epsilon_min)
        self.epsilon_decay = float(epsilon_decay)
        self.rng = rng if isinstance(rng, np.random.Generator) else np.random.default_rng(rng)
        self.logger = logger or setup_logger("rl-agent")

        self.updates = 0
        self.last_td_error = 0.0
        self._recent_rewards: deque[float] = deque(maxlen=int(batch_size))
        self._init_weights()

    @classmethod
    def from_config(cls, cfg: LearningConfig, rng: np.random.Generator | int | None = None, logger=None) -> "QLearningAgent":
        return cls(
            learning_rate=cfg.learning_rate,
            gamma=cfg.gamma,
            epsilon=cfg.epsilon,
            epsilon_min=cfg.epsilon_min,
            epsilon_decay=cfg.epsilon_decay,
            batch_size=cfg.batch_size,
            rng=rng if rng is not None else cfg.seed,
            logger=logger,
        )

    def _init_weights(self) -> None:
        self.weights = self.rng.normal(0.0, 0.01, size=(self.action_count, self.state_size))
        self.bias = np.zeros(self.action_count, dtype=float)

    def q_values(self, features: np.ndarray) -> np.ndarray:
        return self.weights @ features + self.bias

    def select_action(self, state: TradingState) -> AgentDecision:
        """按 epsilon 概率均匀随机探索，否则取 Q 最大的动作。

        贪心时的置信度取 Q 值 softmax 后该动作的概率；探索时为 1 / 动作数。
        """
        if self.rng.random() < self.epsilon:
            idx = int(self.rng.integers(self.action_count))
            return AgentDecision(ACTIONS[idx], idx, 1.0 / self.action_count, explored=True)

        q = self.q_values(encode_state(state))
        idx = int(np.argmax(q))
        exp = np.exp(q - q.max())
        confidence = float(exp[idx] / exp.sum())
        return AgentDecision(ACTIONS[idx], idx, confidence)

    def learn(
        self,
        state: TradingState,
        action_index: int,
        reward: float,
        next_state: TradingState,
        done: bool,
    ) -> float:
        """一步 TD 更新，返回 TD 误差。"""
        if not 0 <= action_index < self.action_count:
            raise ValueError(f"action_index out of range: {action_index}")
        features = encode_state(state)
        if done:
            target = reward
        else:
            target = reward + self.gamma * float(np.max(self.q_values(encode_state(next_state))))
        td_error = target - float(self.q_values(features)[action_index])

        self.weights[action_index] += self.learning_rate * td_error * features
        self.bias[action_index] += self.learning_rate * td_error

        self.updates += 1
        self.last_td_error = td_error
        self._recent_rewards.append(float(reward))
        return td_error

    def end_episode(self) -> float:
        """episode 结束时衰减探索率，返回新的 epsilon。"""
        self.epsilon = max(self.epsilon_min, self.epsilon * self.epsilon_decay)
        return self.epsilon

    def get_metrics(self) -> dict[str, Any]:
        rewards = list(self._recent_rewards)
        return {
            "epsilon": self.epsilon,
            "updates": self.updates,
            "last_td_error": self.last_td_error,
            "mean_reward": float(np.mean(rewards)) if rewards else 0.0,
        }

    # ------------------------------------------------------------------
    # 持久化：路径即键，内容对调用方不透明
    # ------------------------------------------------------------------
    def save_model(self, path: str | Path) -> bool:
        """保存权重；失败只记 warning。"""
        target = Path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as f:
                np.savez(f, weights=self.weights, bias=self.bias, epsilon=np.array(self.epsilon))
        except OSError as exc:
            self.logger.warning("Failed to save model to %s: %s", target, exc)
            return False
        self.logger.info("Model saved to %s", target)
        return True

    def load_model(self, path: str | Path) -> bool:
        """加载权重；任何失败都回退为全新初始化的模型。"""
        source = Path(path)
        try:
            with np.load(source) as data:
                weights = np.array(data["weights"], dtype=float)
                bias = np.array(data["bias"], dtype=float)
                epsilon = float(data["epsilon"])
            if weights.shape != (self.action_count, self.state_size) or bias.shape != (self.action_count,):
                raise ValueError(f"unexpected weight shape {weights.shape}")
        except (OSError, EOFError, ValueError, KeyError, zipfile.BadZipFile) as exc:
            self.logger.warning("Failed to load model from %s (%s), using a fresh model.", source, exc)
            self._init_weights()
            return False
        self.weights = weights
        self.bias = bias
        self.epsilon = epsilon
        self.logger.info("Model loaded from %s", source)
        return True
