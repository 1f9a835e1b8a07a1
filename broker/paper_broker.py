"""纸面 broker：只做本地记账，不触网。

按净持仓记账：同向加仓更新均价，反向成交先平后开，平掉的部分计入已实现 PnL。
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from broker.abstract_broker import Broker
from shared.models.models import Action, OrderFill, OrderRequest
from shared.utils.logging import setup_logger


@dataclass
class PaperPosition:
    """净持仓快照（qty > 0 多头，< 0 空头）。"""

    symbol: str
    qty: float
    avg_price: float


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PaperBroker(Broker):
    """纸面交易 broker。

    Parameters
    ----------
    cash:
        初始现金。
    clock:
        成交时间来源，测试可注入固定时钟。
    """

    def __init__(self, cash: float = 0.0, clock: Callable[[], datetime] | None = None, logger=None):
        self.cash = float(cash)
        self.clock = clock or _utc_now
        self.logger = logger or setup_logger("paper-broker")
        self.positions: dict[str, PaperPosition] = {}
        self.last_prices: dict[str, float] = {}
        self.realized_pnl_all = 0.0
        self.fills: list[OrderFill] = []
        self._ids = itertools.count(1)

    def update_price(self, symbol: str, price: float) -> None:
        self.last_prices[symbol] = float(price)

    def get_position(self, symbol: str) -> PaperPosition | None:
        return self.positions.get(symbol)

    def place_order(self, request: OrderRequest) -> OrderFill:
        if request.side is Action.HOLD:
            raise ValueError("Cannot place an order with side HOLD")
        if request.size <= 0:
            raise ValueError(f"Order size must be > 0, got {request.size}")
        order_type = request.order_type.lower()
        if order_type not in {"market", "limit"}:
            raise ValueError(f"Unsupported order type: {request.order_type}")
        if order_type == "limit" and request.price is None:
            raise ValueError("Limit order requires a price")

        price = request.price if request.price is not None else self.last_prices.get(request.symbol)
        if price is None or price <= 0:
            raise ValueError(f"No price available for {request.symbol}")

        signed_qty = request.size if request.side is Action.BUY else -request.size
        realized = self._apply_fill(request.symbol, signed_qty, price)
        self.cash -= signed_qty * price
        self.realized_pnl_all += realized
        self.last_prices[request.symbol] = price

        fill = OrderFill(
            order_id=f"paper-{next(self._ids)}",
            symbol=request.symbol,
            side=request.side,
            size=request.size,
            filled_price=price,
            timestamp=self.clock(),
        )
        self.fills.append(fill)
        self.logger.info(
            "Paper fill %s %s %.6f @ %.4f (realized=%.4f)",
            fill.side.value,
            fill.symbol,
            fill.size,
            fill.filled_price,
            realized,
        )
        return fill

    def _apply_fill(self, symbol: str, signed_qty: float, price: float) -> float:
        pos = self.positions.get(symbol)
        if pos is None or pos.qty == 0:
            self.positions[symbol] = PaperPosition(symbol, signed_qty, price)
            return 0.0

        if (pos.qty > 0) == (signed_qty > 0):
            new_qty = pos.qty + signed_qty
            pos.avg_price = (pos.avg_price * abs(pos.qty) + price * abs(signed_qty)) / abs(new_qty)
            pos.qty = new_qty
            return 0.0

        closing = min(abs(pos.qty), abs(signed_qty))
        direction = 1.0 if pos.qty > 0 else -1.0
        realized = (price - pos.avg_price) * closing * direction
        remaining = pos.qty + signed_qty
        if abs(remaining) < 1e-12:
            del self.positions[symbol]
        elif (remaining > 0) == (pos.qty > 0):
            pos.qty = remaining
        else:
            self.positions[symbol] = PaperPosition(symbol, remaining, price)
        return realized

    def equity(self) -> float:
        """现金 + 持仓按最新价估值。"""
        return self.cash + sum(
            p.qty * self.last_prices.get(sym, p.avg_price) for sym, p in self.positions.items()
        )
