"""
自选股服务
扫描的股票池：优先读取 MongoDB 自选股集合，不可用时读取本地 JSON 文件
"""

import json
import logging
import os
from typing import List, Optional

from signal_service.config import settings
from signal_service.db import get_mongo_collection

logger = logging.getLogger(__name__)


class WatchlistService:
    """自选股列表读取"""

    def __init__(self, file_path: Optional[str] = None, page_size: Optional[int] = None):
        self._file_path = file_path or settings.WATCHLIST_FILE
        self._page_size = page_size or settings.WATCHLIST_PAGE_SIZE

    async def get_symbols(self) -> List[str]:
        """返回去重后的代码列表（保持登记顺序）"""
        collection = get_mongo_collection(settings.WATCHLIST_COLLECTION)
        if collection is not None:
            try:
                symbols = await self._load_from_mongo(collection)
                logger.info(f"自选股读取成功（MongoDB），共 {len(symbols)} 个")
                return symbols
            except Exception as exc:
                logger.warning(f"自选股读取失败（MongoDB），改用本地文件: {exc}")
        symbols = self._load_from_file()
        logger.info(f"自选股读取成功（文件），共 {len(symbols)} 个")
        return symbols

    async def _load_from_mongo(self, collection) -> List[str]:
        symbols: List[str] = []
        skip = 0
        while True:
            cursor = (
                collection.find({}, {"symbol": 1})
                .sort("created_at", 1)
                .skip(skip)
                .limit(self._page_size)
            )
            rows = await cursor.to_list(length=self._page_size)
            symbols.extend(row["symbol"] for row in rows if row.get("symbol"))
            if len(rows) < self._page_size:
                break
            skip += self._page_size
        return list(dict.fromkeys(symbols))

    def _load_from_file(self) -> List[str]:
        """文件格式：{"stocks": [{"symbol": "7203.T", ...}, ...]}"""
        if not os.path.exists(self._file_path):
            logger.warning(f"自选股文件不存在: {self._file_path}")
            return []
        with open(self._file_path, "r", encoding="utf-8") as fh:
            doc = json.load(fh)
        stocks = doc.get("stocks", []) if isinstance(doc, dict) else []
        return list(dict.fromkeys(s["symbol"] for s in stocks if isinstance(s, dict) and s.get("symbol")))


# ── 模块级别单例 ──────────────────────────────────────────
_watchlist_service: Optional[WatchlistService] = None


def get_watchlist_service() -> WatchlistService:
    global _watchlist_service
    if _watchlist_service is None:
        _watchlist_service = WatchlistService()
    return _watchlist_service
