"""事件总线：显式的回调注册表。

引擎只向总线 `emit`，看板/通知等外部协作者通过 `subscribe` 接收；
订阅者抛出的异常只记日志，不影响主循环。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from shared.models.models import Action
from shared.utils.logging import setup_logger

SIGNAL = "signal"
METRICS = "metrics"


@dataclass(frozen=True)
class SignalEvent:
    symbol: str
    action: Action
    confidence: float
    price: float
    timestamp: datetime
    size: float


@dataclass(frozen=True)
class MetricsEvent:
    balance: float
    equity: float
    drawdown: float
    win_rate: float
    trade_count: int
    rl_metrics: dict[str, Any] = field(default_factory=dict)


Callback = Callable[[Any], None]


class EventBus:
    """按 topic 分发的同步回调注册表。"""

    def __init__(self, logger=None):
        self.logger = logger or setup_logger("events")
        self._subscribers: dict[str, list[Callback]] = {}

    def subscribe(self, topic: str, callback: Callback) -> Callable[[], None]:
        """注册回调，返回取消订阅函数。"""
        self._subscribers.setdefault(topic, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(topic, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def emit(self, topic: str, payload: Any) -> int:
        """分发事件，返回成功送达的订阅者数量。"""
        delivered = 0
        for callback in list(self._subscribers.get(topic, ())):
            try:
                callback(payload)
            except Exception:
                self.logger.exception("Subscriber for %s failed", topic)
                continue
            delivered += 1
        return delivered
