"""Broker 抽象接口：纸面/实盘执行层只需实现 `place_order`。"""

from __future__ import annotations

from abc import ABC, abstractmethod

from shared.models.models import OrderFill, OrderRequest


class Broker(ABC):
    """交易执行抽象层。

    子类维护本地持仓与 PnL 视图，并实现下单执行。
    """

    @abstractmethod
    def place_order(self, request: OrderRequest) -> OrderFill:
        """执行下单请求并返回成交回报。非法请求抛 ValueError。"""
