"""
扫描路由
POST /api/scan/{target}   - 启动扫描并以 SSE 推送进度（signals / prices）
GET  /api/scan/status     - 各扫描目标的最新状态
"""

from typing import Callable, Dict, Optional, Tuple

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse

from signal_service.errors import ScanConflictError
from signal_service.layers.cache import TieredCache
from signal_service.models.response import ApiResponse
from signal_service.models.scan import ScanRequest
from signal_service.services.scan_service import ScanHandle, get_scan_coordinator
from signal_service.services.signal_service import SignalService, get_signal_service
from signal_service.services.watchlist_service import get_watchlist_service


router = APIRouter(prefix="/api/scan", tags=["扫描"])

# 扫描目标 → (计算函数, 承接结果的缓存)
_TARGETS: Dict[str, Callable[[SignalService], Tuple[Callable, TieredCache]]] = {
    "signals": lambda svc: (svc.compute_signals, svc.signals_cache),
    "prices": lambda svc: (svc.fetch_history, svc.history_cache),
}


async def _stream(handle: ScanHandle):
    try:
        async for event in handle.events():
            yield event.to_sse()
    finally:
        # 客户端断开时停止领取新代码，在途任务照常完成
        handle.cancel()


@router.get("/status", response_model=ApiResponse)
async def scan_status():
    """各扫描目标的运行状态与最后一次进度"""
    return ApiResponse.ok(data=get_scan_coordinator().status())


@router.post("/{target}")
async def start_scan(target: str, body: Optional[ScanRequest] = None):
    """
    启动扫描

    - 请求体可指定 `symbols`，否则扫描全部自选股
    - 同一目标已在扫描时返回 409
    """
    if target not in _TARGETS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"未知扫描目标: {target}，支持: {list(_TARGETS)}",
        )

    coordinator = get_scan_coordinator()
    if coordinator.is_running(target):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"扫描已在运行中: {target}")

    # 显式传入空列表时按空扫描处理，只有省略 symbols 才回退到自选股
    if body is not None and body.symbols is not None:
        symbols = body.symbols
    else:
        symbols = await get_watchlist_service().get_symbols()

    compute, cache = _TARGETS[target](get_signal_service())
    try:
        handle = coordinator.start(target, symbols, compute=compute, cache=cache)
    except ScanConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))

    return StreamingResponse(
        _stream(handle),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
