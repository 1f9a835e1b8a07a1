"""行情数据模块（market_data）：历史 K 线的 CSV 加载与落盘。"""

from market_data.loader import HistoricalDataLoader, load_candles_from_csv, merge_candles, save_candles_to_csv

__all__ = [
    "HistoricalDataLoader",
    "load_candles_from_csv",
    "merge_candles",
    "save_candles_to_csv",
]
