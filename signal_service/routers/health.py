"""健康检查路由"""

import time

from fastapi import APIRouter

from signal_service import __version__
from signal_service.db import check_health
from signal_service.services.scan_service import get_scan_coordinator

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health():
    """服务健康检查（含缓存后端与扫描状态）"""
    db_health = await check_health()
    return {
        "success": True,
        "data": {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "Signal Refresh Service",
            "databases": db_health,
            "scans": get_scan_coordinator().status(),
        },
        "message": "服务运行正常",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz():
    """Kubernetes readiness probe"""
    return {"ready": True}
