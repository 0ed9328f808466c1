"""
Layer 2 – 缓存层
快速层（Redis，未连接时退化为本地 JSON 文件）按数据类别 TTL 判定新鲜度；
慢速层（MongoDB）只在快速层未命中时由调用方批量查询，写入只落快速层。

任何缓存读写故障都不会向上抛出：读失败视为未命中，写失败视为空操作。
"""

import hashlib
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol
from urllib.parse import quote

from signal_service.config import settings
from signal_service.db import get_mongo_collection, get_redis

logger = logging.getLogger(__name__)


def _make_key(namespace: str, *parts: str) -> str:
    """生成规范化缓存键"""
    raw = ":".join([namespace] + list(parts))
    if len(raw) > 200:
        raw = namespace + ":" + hashlib.md5(raw.encode()).hexdigest()
    return raw


def _safe_filename(key: str) -> str:
    """百分号编码，不同的键映射到不同的文件名"""
    safe = quote(key, safe="")
    if len(safe) > 200:
        # quote 的输出里 % 后只会跟十六进制字符，"%md5-" 前缀不会与之冲突
        safe = "%md5-" + hashlib.md5(key.encode()).hexdigest()
    return safe


# ── 缓存记录与读取结果 ────────────────────────────────────

@dataclass(frozen=True)
class CacheEntry:
    """一条缓存记录；TTL 属于数据类别，不随记录保存"""
    value: Any
    written_at: float

    def to_json(self) -> str:
        return json.dumps(
            {"value": self.value, "written_at": self.written_at},
            ensure_ascii=False,
            default=str,
        )

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        doc = json.loads(raw)
        return cls.from_document(doc)

    @classmethod
    def from_document(cls, doc: Any) -> "CacheEntry":
        if not isinstance(doc, dict) or "value" not in doc:
            raise ValueError("缓存记录缺少 value 字段")
        written_at = doc.get("written_at")
        if isinstance(written_at, bool) or not isinstance(written_at, (int, float)):
            raise ValueError(f"缓存记录 written_at 非法: {written_at!r}")
        return cls(value=doc["value"], written_at=float(written_at))


class CacheStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"      # 无记录
    STALE = "stale"    # 有记录但已过期
    ERROR = "error"    # 读取 / 解析失败，按未命中处理


@dataclass(frozen=True)
class CacheResult:
    status: CacheStatus
    value: Any = None
    written_at: Optional[float] = None
    error: Optional[str] = None

    @property
    def hit(self) -> bool:
        return self.status is CacheStatus.HIT


# ── 快速层存储 ────────────────────────────────────────────

class FastStore(Protocol):
    name: str

    async def read(self, kind: str, key: str) -> Optional[str]: ...

    async def write(self, kind: str, key: str, raw: str) -> None: ...

    async def delete(self, kind: str, key: str) -> bool: ...

    async def count(self, kind: str) -> int: ...


class LocalFileStore:
    """本地 JSON 文件存储：<base_dir>/<kind>/<key>.json"""

    name = "file"

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    def _dir(self, kind: str) -> str:
        return os.path.join(self.base_dir, kind)

    def _path(self, kind: str, key: str) -> str:
        return os.path.join(self._dir(kind), f"{_safe_filename(key)}.json")

    async def read(self, kind: str, key: str) -> Optional[str]:
        path = self._path(kind, key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as fh:
            return fh.read()

    async def write(self, kind: str, key: str, raw: str) -> None:
        directory = self._dir(kind)
        os.makedirs(directory, exist_ok=True)
        # 先写临时文件再原子替换，读方不会看到半条记录
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(raw)
            os.replace(tmp_path, self._path(kind, key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    async def delete(self, kind: str, key: str) -> bool:
        path = self._path(kind, key)
        if not os.path.exists(path):
            return False
        os.remove(path)
        return True

    async def count(self, kind: str) -> int:
        directory = self._dir(kind)
        if not os.path.isdir(directory):
            return 0
        return len([f for f in os.listdir(directory) if f.endswith(".json")])


class RedisStore:
    """Redis 存储：每个 (kind, key) 一个字符串值，不设置过期时间"""

    name = "redis"

    def __init__(self, client):
        self._redis = client

    @staticmethod
    def _key(kind: str, key: str) -> str:
        # 超长键摘要后仍保留 cache:<kind>: 前缀，count 才能匹配到
        return _make_key(f"cache:{kind}", key)

    async def read(self, kind: str, key: str) -> Optional[str]:
        return await self._redis.get(self._key(kind, key))

    async def write(self, kind: str, key: str, raw: str) -> None:
        await self._redis.set(self._key(kind, key), raw)

    async def delete(self, kind: str, key: str) -> bool:
        return bool(await self._redis.delete(self._key(kind, key)))

    async def count(self, kind: str) -> int:
        total = 0
        async for _ in self._redis.scan_iter(match=f"cache:{kind}:*"):
            total += 1
        return total


# ── 慢速层存储 ────────────────────────────────────────────

class MongoRemoteStore:
    """
    MongoDB 慢速层（只读）
    文档结构：{kind, key, value, written_at}，由独立的入库流程写入
    """

    name = "mongodb"

    def __init__(self, collection):
        self._coll = collection

    async def read_many(self, kind: str, keys: List[str]) -> Dict[str, CacheEntry]:
        result: Dict[str, CacheEntry] = {}
        cursor = self._coll.find({"kind": kind, "key": {"$in": keys}})
        async for doc in cursor:
            try:
                result[doc["key"]] = CacheEntry.from_document(doc)
            except (KeyError, ValueError) as exc:
                logger.debug(f"慢速层记录格式错误，忽略: {doc.get('key')} ({exc})")
        return result

    async def count(self, kind: str) -> int:
        return await self._coll.count_documents({"kind": kind})


# ── 分级缓存 ──────────────────────────────────────────────

class TieredCache:
    """
    单一数据类别的分级缓存

    Args:
        kind: 数据类别（history / signals）
        ttl: 新鲜度窗口（秒），写入后 ttl 秒内读取视为命中
        fast: 快速层存储
        slow: 慢速层存储，None 表示不启用
        clock: 时间源，返回 Unix 时间戳（秒）
    """

    def __init__(
        self,
        kind: str,
        ttl: float,
        fast: FastStore,
        slow: Optional[MongoRemoteStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.kind = kind
        self.ttl = ttl
        self._fast = fast
        self._slow = slow
        self._clock = clock

    async def get(self, key: str) -> CacheResult:
        """只查询快速层；慢速层由调用方通过 get_remote 批量查询"""
        try:
            raw = await self._fast.read(self.kind, key)
        except Exception as exc:
            logger.debug(f"快速层读取失败（{self._fast.name}）: {self.kind}:{key} {exc}")
            return CacheResult(CacheStatus.ERROR, error=str(exc))

        if raw is None:
            return CacheResult(CacheStatus.MISS)

        try:
            entry = CacheEntry.from_json(raw)
        except (TypeError, ValueError) as exc:
            logger.debug(f"缓存记录格式错误，按未命中处理: {self.kind}:{key} {exc}")
            return CacheResult(CacheStatus.ERROR, error=str(exc))

        if self._clock() - entry.written_at < self.ttl:
            return CacheResult(CacheStatus.HIT, value=entry.value, written_at=entry.written_at)
        return CacheResult(CacheStatus.STALE, written_at=entry.written_at)

    async def get_value(self, key: str) -> Optional[Any]:
        result = await self.get(key)
        return result.value if result.hit else None

    async def set(self, key: str, value: Any) -> None:
        """写入快速层并覆盖旧记录；失败时静默"""
        entry = CacheEntry(value=value, written_at=self._clock())
        try:
            await self._fast.write(self.kind, key, entry.to_json())
            logger.debug(f"缓存写入（{self._fast.name}）: {self.kind}:{key}")
        except Exception as exc:
            logger.debug(f"快速层写入失败（{self._fast.name}）: {self.kind}:{key} {exc}")

    async def get_remote(self, keys: Iterable[str]) -> Dict[str, Any]:
        """批量查询慢速层，返回 {key: value}；不可用或失败时返回空字典"""
        if self._slow is None:
            return {}
        unique = list(dict.fromkeys(keys))
        if not unique:
            return {}
        try:
            entries = await self._slow.read_many(self.kind, unique)
        except Exception as exc:
            logger.debug(f"慢速层读取失败（{self._slow.name}）: {self.kind} {exc}")
            return {}
        return {key: entry.value for key, entry in entries.items()}

    async def delete(self, key: str) -> bool:
        try:
            return await self._fast.delete(self.kind, key)
        except Exception as exc:
            logger.debug(f"快速层删除失败（{self._fast.name}）: {self.kind}:{key} {exc}")
            return False

    async def stats(self) -> dict:
        """返回各层记录数"""
        result: dict = {"kind": self.kind, "ttl": self.ttl}
        try:
            result["fast"] = {"backend": self._fast.name, "records": await self._fast.count(self.kind)}
        except Exception as exc:
            result["fast"] = {"backend": self._fast.name, "status": "error", "error": str(exc)}

        if self._slow is None:
            result["slow"] = {"status": "disabled"}
        else:
            try:
                result["slow"] = {"backend": self._slow.name, "records": await self._slow.count(self.kind)}
            except Exception as exc:
                result["slow"] = {"backend": self._slow.name, "status": "error", "error": str(exc)}
        return result


# ── 按数据类别构建 ────────────────────────────────────────

def cache_ttls() -> Dict[str, int]:
    return {
        "history": settings.HISTORY_CACHE_TTL,
        "signals": settings.SIGNALS_CACHE_TTL,
    }


def get_cache(kind: str) -> TieredCache:
    """根据当前可用连接构建指定类别的分级缓存"""
    ttls = cache_ttls()
    if kind not in ttls:
        raise KeyError(f"未知缓存类别: {kind}")

    redis = get_redis()
    fast: FastStore = RedisStore(redis) if redis is not None else LocalFileStore(settings.CACHE_DIR)

    collection = get_mongo_collection(settings.REMOTE_CACHE_COLLECTION)
    slow = MongoRemoteStore(collection) if collection is not None else None

    return TieredCache(kind, ttls[kind], fast, slow)
