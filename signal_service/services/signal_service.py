"""
信号计算服务
整合数据获取、缓存、处理、分析四层：单个代码的信号计算、缓存优先读取与批量读取
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from signal_service.layers.acquisition import DataSource, get_data_source
from signal_service.layers.analysis import get_analysis_layer
from signal_service.layers.cache import TieredCache, get_cache
from signal_service.layers.processing import get_processing_layer

logger = logging.getLogger(__name__)

_SUMMARY_FIELDS = [
    "date", "close", "MA5", "MA25", "MA75",
    "MACD_DIF", "MACD_DEA", "MACD_HIST", "RSI14",
    "BOLL_UPPER", "BOLL_MID", "BOLL_LOWER",
]


class SignalService:
    """信号业务服务"""

    def __init__(
        self,
        source: Optional[DataSource] = None,
        history_cache: Optional[TieredCache] = None,
        signals_cache: Optional[TieredCache] = None,
        lookback_days: int = 90,
    ):
        self._source = source or get_data_source()
        self._history_cache = history_cache
        self._signals_cache = signals_cache
        self._proc = get_processing_layer()
        self._analysis = get_analysis_layer()
        self._lookback_days = lookback_days

    # 未注入时每次按当前连接状态构建，保证 Redis / MongoDB 初始化后立即生效
    @property
    def history_cache(self) -> TieredCache:
        return self._history_cache or get_cache("history")

    @property
    def signals_cache(self) -> TieredCache:
        return self._signals_cache or get_cache("signals")

    # ── 历史 K 线 ─────────────────────────────────────────

    async def get_history(self, symbol: str, force_refresh: bool = False) -> List[Dict[str, Any]]:
        """缓存优先获取历史 K 线"""
        cache = self.history_cache
        if not force_refresh:
            cached = await cache.get(symbol)
            if cached.hit:
                return cached.value

        records = await self.fetch_history(symbol)
        await cache.set(symbol, records)
        return records

    async def fetch_history(self, symbol: str) -> List[Dict[str, Any]]:
        """直接从数据源拉取并标准化，不读写缓存"""
        raw = await self._source.fetch(symbol)
        df = self._proc.normalize_ohlcv(raw)
        df = self._proc.fill_missing(df)
        return self._proc.to_records(df)

    # ── 信号计算 ──────────────────────────────────────────

    async def compute_signals(self, symbol: str) -> Dict[str, Any]:
        """
        计算单个代码的信号载荷（不写信号缓存，由调用方决定）

        Returns:
            {
                "symbol": "7203.T",
                "computed_at": "...",
                "latest": {"close": ..., "RSI14": ..., ...},
                "flags": {"ma_cross": False, ...},
                "recent": [{"strategy": "...", "date": "...", "price": ...}]
            }
        """
        history = await self.get_history(symbol)
        df = self._proc.normalize_ohlcv(history)
        df = self._analysis.compute_all(df)
        detected = self._analysis.detect_signals(df, lookback_days=self._lookback_days)
        summary = self._analysis.to_indicator_summary(df)

        return {
            "symbol": symbol,
            "computed_at": datetime.now(tz=timezone.utc).isoformat(),
            "latest": {k: summary.get(k) for k in _SUMMARY_FIELDS if k in summary},
            "flags": detected["flags"],
            "recent": detected["recent"],
        }

    async def compute_and_cache(self, symbol: str) -> Dict[str, Any]:
        payload = await self.compute_signals(symbol)
        await self.signals_cache.set(symbol, payload)
        return payload

    async def get_signals(self, symbol: str, force_refresh: bool = False) -> Dict[str, Any]:
        """缓存优先获取信号"""
        if not force_refresh:
            cached = await self.signals_cache.get(symbol)
            if cached.hit:
                return cached.value
        return await self.compute_and_cache(symbol)

    async def get_signals_batch(self, symbols: List[str]) -> Dict[str, Any]:
        """
        批量读取信号：先查快速层，未命中部分一次性查询慢速层。
        不会触发任何数据源请求，都未命中的代码不出现在结果中。
        """
        cache = self.signals_cache
        result: Dict[str, Any] = {}
        misses: List[str] = []
        for symbol in dict.fromkeys(symbols):
            cached = await cache.get(symbol)
            if cached.hit:
                result[symbol] = cached.value
            else:
                misses.append(symbol)

        if misses:
            remote = await cache.get_remote(misses)
            result.update(remote)
            logger.debug(f"批量读取: 快速层命中 {len(result) - len(remote)}，慢速层补充 {len(remote)}")
        return result


# ── 模块级别单例 ──────────────────────────────────────────
_signal_service: Optional[SignalService] = None


def get_signal_service() -> SignalService:
    global _signal_service
    if _signal_service is None:
        _signal_service = SignalService()
    return _signal_service
