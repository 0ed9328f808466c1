"""
Layer 1 – 数据获取层
从行情数据提供商拉取单个标的的原始 K 线，统一规范化后向上层提供标准接口。
所有外部调用都经过对应依赖类别的准入队列；阻塞式 SDK 调用放到线程池中执行。
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

from signal_service.config import settings
from signal_service.errors import PermanentError, TransientError
from signal_service.layers.queue import AdmissionQueue, get_queue

logger = logging.getLogger(__name__)

RawPayload = List[Dict[str, Any]]


class DataSource(Protocol):
    """外部数据源：拉取单个标的的一份数据，可能失败，受限流约束"""

    name: str

    async def fetch(self, symbol: str) -> RawPayload: ...


class YahooFinanceSource:
    """通过 yfinance 获取日线历史数据"""

    name = "yfinance"

    def __init__(
        self,
        queue: Optional[AdmissionQueue] = None,
        period: Optional[str] = None,
        interval: Optional[str] = None,
    ):
        self._queue = queue or get_queue("market_data")
        self._period = period or settings.HISTORY_PERIOD
        self._interval = interval or settings.HISTORY_INTERVAL

    async def fetch(self, symbol: str) -> RawPayload:
        return await self._queue.submit(lambda: asyncio.to_thread(self._download, symbol))

    def _download(self, symbol: str) -> RawPayload:
        import yfinance as yf

        try:
            ticker = yf.Ticker(symbol)
            df = ticker.history(period=self._period, interval=self._interval)
        except Exception as exc:
            raise TransientError(
                f"{symbol} 历史数据获取失败: {exc}", symbol=symbol, source=self.name
            ) from exc

        if df is None or df.empty:
            raise PermanentError(f"{symbol} 无历史数据", symbol=symbol, source=self.name)

        df = df.reset_index()
        date_col = "Date" if "Date" in df.columns else df.columns[0]
        records = []
        for _, row in df.iterrows():
            records.append({
                "date": str(row[date_col])[:10],
                "open": float(row["Open"]),
                "high": float(row["High"]),
                "low": float(row["Low"]),
                "close": float(row["Close"]),
                "volume": float(row["Volume"]),
            })
        logger.debug(f"{symbol} 历史数据获取成功，共 {len(records)} 条")
        return records


# ── 模块级别单例 ──────────────────────────────────────────
_source: Optional[DataSource] = None


def get_data_source() -> DataSource:
    global _source
    if _source is None:
        _source = YahooFinanceSource()
    return _source
