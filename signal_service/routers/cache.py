"""
缓存管理路由
GET  /api/cache/stats     - 各数据类别的缓存统计与队列状态
POST /api/cache/clear     - 删除指定缓存条目
"""

from dataclasses import asdict

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from signal_service.layers.cache import cache_ttls, get_cache
from signal_service.layers.queue import queue_states
from signal_service.models.response import ApiResponse

router = APIRouter(prefix="/api/cache", tags=["缓存管理"])


class ClearRequest(BaseModel):
    kind: str
    key: str


@router.get("/stats", response_model=ApiResponse)
async def cache_stats():
    """获取各类别缓存记录数及准入队列状态"""
    caches = {kind: await get_cache(kind).stats() for kind in cache_ttls()}
    queues = {name: asdict(state) for name, state in queue_states().items()}
    return ApiResponse.ok(data={"caches": caches, "queues": queues})


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(body: ClearRequest):
    """删除快速层中的一条缓存记录"""
    if body.kind not in cache_ttls():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"未知缓存类别: {body.kind}",
        )
    removed = await get_cache(body.kind).delete(body.key)
    return ApiResponse.ok(
        data={"removed": removed},
        message=f"缓存已清理: {body.kind}:{body.key}",
    )
