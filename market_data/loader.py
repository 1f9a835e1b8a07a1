"""历史 K 线加载与落盘（CSV）。

读出的 K 线按时间升序、同一 (symbol, timestamp) 只保留最后一条。
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

import pandas as pd

from shared.models.models import Candle

CANDLE_COLUMNS = ["timestamp", "symbol", "open", "high", "low", "close", "volume"]
_TS_ALIASES = ("timestamp", "ts", "end_ts", "open_time")


def _parse_dt(val) -> datetime:
    """解析时间：支持秒/毫秒时间戳与 ISO 字符串，统一为 UTC。"""
    if isinstance(val, datetime):
        return val if val.tzinfo else val.replace(tzinfo=timezone.utc)
    text = str(val).strip()
    try:
        if text.replace(".", "", 1).isdigit():
            ts_num = float(text)
            if ts_num > 1e12:
                return datetime.fromtimestamp(ts_num / 1000, tz=timezone.utc)
            return datetime.fromtimestamp(ts_num, tz=timezone.utc)
        return datetime.fromisoformat(text.replace("Z", "+00:00")).astimezone(timezone.utc)
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"Invalid datetime value: {val}") from exc


def candles_from_frame(df: pd.DataFrame, symbol: str | None = None) -> list[Candle]:
    """DataFrame -> 去重、升序的 Candle 列表。"""
    if df.empty:
        return []
    ts_col = next((c for c in _TS_ALIASES if c in df.columns), None)
    if ts_col is None:
        raise ValueError(f"Candle data requires one of columns: {', '.join(_TS_ALIASES)}")
    missing = [c for c in ("open", "high", "low", "close") if c not in df.columns]
    if missing:
        raise ValueError(f"Candle data missing columns: {missing}")

    frame = pd.DataFrame(
        {
            "timestamp": [_parse_dt(v) for v in df[ts_col]],
            "symbol": df["symbol"].astype(str) if "symbol" in df.columns else (symbol or ""),
            "open": df["open"].astype(float),
            "high": df["high"].astype(float),
            "low": df["low"].astype(float),
            "close": df["close"].astype(float),
            "volume": df["volume"].fillna(0).astype(float) if "volume" in df.columns else 0.0,
        }
    )
    if symbol is not None and "symbol" in df.columns:
        frame = frame[frame["symbol"] == symbol]
    frame = (
        frame.drop_duplicates(subset=["symbol", "timestamp"], keep="last")
        .sort_values(["timestamp", "symbol"])
        .reset_index(drop=True)
    )
    return [
        Candle(
            symbol=row.symbol,
            timestamp=row.timestamp.to_pydatetime() if hasattr(row.timestamp, "to_pydatetime") else row.timestamp,
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in frame.itertuples(index=False)
    ]


def load_candles_from_csv(path: str | Path, symbol: str | None = None) -> list[Candle]:
    """从 CSV 读取 K 线。`symbol` 给定时只保留该 symbol（CSV 无 symbol 列时直接套用）。"""
    csv_path = Path(path)
    if not csv_path.exists():
        raise FileNotFoundError(f"Candle file not found: {csv_path}")
    return candles_from_frame(pd.read_csv(csv_path), symbol=symbol)


def save_candles_to_csv(candles: Iterable[Candle], path: str | Path) -> Path:
    """K 线落盘（ISO 时间），用于缓存历史数据。"""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    rows = [
        {
            "timestamp": c.timestamp.isoformat(),
            "symbol": c.symbol,
            "open": c.open,
            "high": c.high,
            "low": c.low,
            "close": c.close,
            "volume": c.volume,
        }
        for c in candles
    ]
    pd.DataFrame(rows, columns=CANDLE_COLUMNS).to_csv(out, index=False)
    return out


def merge_candles(series: Iterable[Iterable[Candle]]) -> list[Candle]:
    """多个 symbol 的 K 线按 (timestamp, symbol) 合并成单一时间线。"""
    merged = [c for candles in series for c in candles]
    merged.sort(key=lambda c: (c.timestamp, c.symbol))
    return merged


class HistoricalDataLoader:
    """历史 K 线数据管理器：`{data_dir}/{symbol}_{interval}.csv`。"""

    def __init__(self, data_dir: str = "dataset/history"):
        self.data_dir = Path(data_dir)

    def klines_path(self, symbol: str, interval: str) -> Path:
        return self.data_dir / f"{symbol}_{interval}.csv"

    def load(self, symbol: str, interval: str) -> list[Candle]:
        return load_candles_from_csv(self.klines_path(symbol, interval), symbol=symbol)

    def save(self, candles: Iterable[Candle], symbol: str, interval: str) -> Path:
        return save_candles_to_csv(candles, self.klines_path(symbol, interval))
