"""K 线数据源（本地回放 / Binance REST + WebSocket）。

统一契约：
- `fetch_latest_candle(symbol, interval) -> Candle | None`
- `get_historical_data(symbol, interval, limit) -> list[Candle]`（升序、去重）
- `subscribe_to_kline(symbol, interval, on_candle) -> unsubscribe()`
"""

from __future__ import annotations

import asyncio
import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Iterable, Sequence

import requests
import websockets

from market_data.loader import HistoricalDataLoader
from shared.config.schema import MainConfig
from shared.errors import DataSourceError
from shared.models.models import Candle
from shared.utils.logging import setup_logger

OnCandle = Callable[[Candle], None]


def _dedupe_sorted(candles: Iterable[Candle]) -> list[Candle]:
    latest: dict[tuple[str, datetime], Candle] = {}
    for c in candles:
        latest[(c.symbol, c.timestamp)] = c
    return sorted(latest.values(), key=lambda c: (c.timestamp, c.symbol))


class CandleSource(ABC):
    """K 线数据源抽象基类。"""

    def connect(self) -> None:
        """建立连接（启动阶段调用，失败应抛 DataSourceError）。"""

    def close(self) -> None:
        """释放资源。"""

    @abstractmethod
    def fetch_latest_candle(self, symbol: str, interval: str) -> Candle | None:
        raise NotImplementedError

    @abstractmethod
    def get_historical_data(self, symbol: str, interval: str, limit: int = 500) -> list[Candle]:
        raise NotImplementedError

    @abstractmethod
    def subscribe_to_kline(self, symbol: str, interval: str, on_candle: OnCandle) -> Callable[[], None]:
        raise NotImplementedError


class ReplayCandleSource(CandleSource):
    """按时间顺序回放一组 K 线，便于离线 paper/dry-run 与测试。

    每次 `fetch_latest_candle` 前进一根；回放结束返回 None（`loop=True` 时从头再来）。
    订阅者会收到每一根被回放的 K 线。
    """

    def __init__(self, candles: Iterable[Candle], loop: bool = False, logger=None):
        self.loop = loop
        self.logger = logger or setup_logger("market-replay")
        self._series: dict[str, list[Candle]] = {}
        for c in _dedupe_sorted(candles):
            self._series.setdefault(c.symbol, []).append(c)
        self._cursor: dict[str, int] = {}
        self._subscribers: dict[str, list[OnCandle]] = {}

    def fetch_latest_candle(self, symbol: str, interval: str) -> Candle | None:
        series = self._series.get(symbol, [])
        idx = self._cursor.get(symbol, 0)
        if idx >= len(series):
            if not self.loop or not series:
                return None
            idx = 0
        candle = series[idx]
        self._cursor[symbol] = idx + 1
        for callback in list(self._subscribers.get(symbol, ())):
            callback(candle)
        return candle

    def get_historical_data(self, symbol: str, interval: str, limit: int = 500) -> list[Candle]:
        series = self._series.get(symbol, [])
        replayed = series[: self._cursor.get(symbol, 0)] or series
        return list(replayed[-limit:]) if limit > 0 else []

    def subscribe_to_kline(self, symbol: str, interval: str, on_candle: OnCandle) -> Callable[[], None]:
        self._subscribers.setdefault(symbol, []).append(on_candle)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(symbol, [])
            if on_candle in callbacks:
                callbacks.remove(on_candle)

        return unsubscribe

    def remaining(self, symbol: str) -> int:
        return len(self._series.get(symbol, [])) - self._cursor.get(symbol, 0)


def _parse_rest_kline(symbol: str, row: Sequence) -> Candle:
    return Candle(
        symbol=symbol,
        timestamp=datetime.fromtimestamp(int(row[0]) / 1000, tz=timezone.utc),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
    )


def _parse_ws_kline(payload: dict) -> Candle | None:
    """WebSocket kline 消息 -> Candle；仅在 K 线收盘（`x=true`）时返回。"""
    k = payload.get("k")
    if not isinstance(k, dict) or not k.get("x"):
        return None
    return Candle(
        symbol=str(k.get("s") or payload.get("s")),
        timestamp=datetime.fromtimestamp(int(k["t"]) / 1000, tz=timezone.utc),
        open=float(k["o"]),
        high=float(k["h"]),
        low=float(k["l"]),
        close=float(k["c"]),
        volume=float(k["v"]),
    )


class BinanceCandleSource(CandleSource):
    """Binance 行情（REST 拉 K 线 + WebSocket 推送收盘 K 线）。"""

    def __init__(
        self,
        base_url: str = "https://api.binance.com",
        ws_base: str | None = "wss://stream.binance.com:9443/ws",
        timeout: float = 10.0,
        session: requests.Session | None = None,
        logger=None,
    ):
        self.base_url = base_url.rstrip("/")
        self.ws_base = (ws_base or "wss://stream.binance.com:9443/ws").rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or setup_logger("market-binance")

    def _get(self, path: str, params: dict | None = None):
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise DataSourceError(f"GET {url} failed: {exc}") from exc

    def connect(self) -> None:
        self._get("/api/v3/ping")
        self.logger.info("Connected to Binance REST: %s", self.base_url)

    def close(self) -> None:
        self.session.close()

    def get_historical_data(self, symbol: str, interval: str, limit: int = 500) -> list[Candle]:
        rows = self._get("/api/v3/klines", {"symbol": symbol, "interval": interval, "limit": int(limit)})
        return _dedupe_sorted(_parse_rest_kline(symbol, row) for row in rows)

    def fetch_latest_candle(self, symbol: str, interval: str) -> Candle | None:
        """最近一根已收盘的 K 线（最后一根未收盘时取倒数第二根）。"""
        rows = self._get("/api/v3/klines", {"symbol": symbol, "interval": interval, "limit": 2})
        if not rows:
            return None
        now_ms = datetime.now(timezone.utc).timestamp() * 1000
        closed = [row for row in rows if int(row[6]) <= now_ms]
        row = closed[-1] if closed else rows[-1]
        return _parse_rest_kline(symbol, row)

    async def _ws_loop(self, url: str, on_candle: OnCandle, stop: threading.Event):
        while not stop.is_set():
            try:
                async with websockets.connect(url) as ws:
                    self.logger.info("Connected to Binance WS: %s", url)
                    while not stop.is_set():
                        try:
                            msg = await asyncio.wait_for(ws.recv(), timeout=1.0)
                        except asyncio.TimeoutError:
                            continue
                        candle = _parse_ws_kline(json.loads(msg))
                        if candle is not None:
                            on_candle(candle)
            except Exception as exc:  # pragma: no cover - 网络异常重连
                if stop.is_set():
                    break
                self.logger.warning("WS error %s, reconnecting in 3s...", exc)
                await asyncio.sleep(3)

    def subscribe_to_kline(self, symbol: str, interval: str, on_candle: OnCandle) -> Callable[[], None]:
        """后台线程订阅收盘 K 线，返回取消订阅函数。"""
        url = f"{self.ws_base}/{symbol.lower()}@kline_{interval}"
        stop = threading.Event()
        thread = threading.Thread(
            target=lambda: asyncio.run(self._ws_loop(url, on_candle, stop)),
            name=f"kline-{symbol}-{interval}",
            daemon=True,
        )
        thread.start()

        def unsubscribe() -> None:
            stop.set()
            thread.join(timeout=5)

        return unsubscribe


def get_candle_source(cfg: MainConfig, logger=None) -> CandleSource:
    """根据运行模式选择数据源。

    - paper：Binance 实时行情；
    - dry-run / backtest：从 `backtest.data_dir` 回放本地 CSV。
    """
    if cfg.mode == "paper":
        if cfg.exchange.name.lower() != "binance":
            raise ValueError(f"Unsupported exchange for paper mode: {cfg.exchange.name}")
        return BinanceCandleSource(
            base_url=cfg.exchange.base_url,
            ws_base=cfg.exchange.ws_url,
            timeout=cfg.exchange.timeout_secs,
            logger=logger,
        )

    loader = HistoricalDataLoader(cfg.backtest.data_dir)
    interval = cfg.backtest.interval or cfg.timeframe
    candles: list[Candle] = []
    for symbol in cfg.symbols:
        try:
            candles.extend(loader.load(symbol, interval))
        except FileNotFoundError as exc:
            raise DataSourceError(str(exc)) from exc
    return ReplayCandleSource(candles, logger=logger)
