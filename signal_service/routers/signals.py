"""
信号路由
GET /api/signals/batch       - 批量读取缓存中的信号（不请求数据源）
GET /api/signals/{symbol}    - 获取单个代码的信号（缓存优先）
"""

from fastapi import APIRouter, HTTPException, Query, status

from signal_service.errors import PermanentError, TransientError
from signal_service.models.response import ApiResponse
from signal_service.services.signal_service import get_signal_service

router = APIRouter(prefix="/api/signals", tags=["信号"])


@router.get("/batch", response_model=ApiResponse)
async def get_signals_batch(
    symbols: str = Query(..., description="逗号分隔的股票代码，如 7203.T,9984.T"),
):
    """批量读取信号缓存（快速层 → 慢速层）"""
    symbol_list = [s.strip() for s in symbols.split(",") if s.strip()]
    if not symbol_list:
        return ApiResponse.ok(data={"count": 0, "signals": {}})
    result = await get_signal_service().get_signals_batch(symbol_list)
    return ApiResponse.ok(data={"count": len(result), "signals": result})


@router.get("/{symbol}", response_model=ApiResponse)
async def get_signals(
    symbol: str,
    force_refresh: bool = Query(default=False),
):
    """获取单个代码的信号"""
    svc = get_signal_service()
    try:
        payload = await svc.get_signals(symbol, force_refresh=force_refresh)
    except PermanentError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except TransientError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return ApiResponse.ok(data=payload)
