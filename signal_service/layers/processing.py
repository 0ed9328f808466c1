"""
Layer 3 – 数据处理层
对数据源返回的原始 K 线进行清洗、标准化，输出分析层可直接使用的 DataFrame。
"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd

logger = logging.getLogger(__name__)

_PRICE_COLS = ["open", "high", "low", "close"]


class ProcessingLayer:
    """数据处理层：清洗 + 标准化"""

    def normalize_ohlcv(self, records: List[Dict[str, Any]]) -> pd.DataFrame:
        """
        将原始 OHLCV 记录列表标准化为 DataFrame

        标准列：date, open, high, low, close, volume
        """
        if not records:
            return pd.DataFrame()

        df = pd.DataFrame(records)

        for col in ["date"] + _PRICE_COLS + ["volume"]:
            if col not in df.columns:
                df[col] = 0.0

        for col in _PRICE_COLS + ["volume"]:
            df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0.0)

        df["date"] = pd.to_datetime(df["date"], errors="coerce")
        df = df.dropna(subset=["date"])
        df["date"] = df["date"].dt.strftime("%Y-%m-%d")

        # 同一日期保留最后一条
        df = df.drop_duplicates(subset=["date"], keep="last")
        df = df.sort_values("date").reset_index(drop=True)

        return df

    def fill_missing(self, df: pd.DataFrame) -> pd.DataFrame:
        """价格为 0 视为缺失，前向填充；开头无法填充的行丢弃"""
        if df.empty:
            return df
        df = df.copy()
        df[_PRICE_COLS] = df[_PRICE_COLS].replace(0, float("nan")).ffill()
        return df.dropna(subset=["close"]).reset_index(drop=True)

    def to_records(self, df: pd.DataFrame) -> List[Dict[str, Any]]:
        """DataFrame 转换为字典列表"""
        if df.empty:
            return []
        return df.to_dict(orient="records")


# ── 模块级别单例 ──────────────────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor
