"""
行情信号刷新服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn signal_service.main:app --host 0.0.0.0 --port 8001
    python -m signal_service.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from signal_service import __version__
from signal_service.config import settings
from signal_service.db import init_mongodb, init_redis, close_connections
from signal_service.routers import health, scan, signals, cache

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 Signal Refresh Service v{__version__} 启动中")
    logger.info(f"   MongoDB   : {settings.MONGODB_HOST}:{settings.MONGODB_PORT}")
    logger.info(f"   Redis     : {settings.REDIS_HOST}:{settings.REDIS_PORT}")
    logger.info(f"   Queues    : {settings.QUEUE_CAPACITIES}")
    logger.info(f"   Scan      : {settings.SCAN_WORKERS} 路并行，每 {settings.SCAN_PROGRESS_EVERY} 个推送进度")
    logger.info("=" * 60)

    # 初始化数据库连接（失败不阻断启动，降级运行）
    mongo_ok = await init_mongodb()
    redis_ok = await init_redis()

    if mongo_ok and redis_ok:
        logger.info("✅ 快速层 Redis / 慢速层 MongoDB 均就绪")
    elif mongo_ok:
        logger.warning("⚠️ Redis 不可用，快速层降级为本地文件")
    elif redis_ok:
        logger.warning("⚠️ MongoDB 不可用，慢速层停用，自选股改读本地文件")
    else:
        logger.warning("⚠️ 数据库均不可用，仅使用本地文件缓存")

    yield

    logger.info("🔄 信号刷新服务正在关闭...")
    await close_connections()
    logger.info("✅ 信号刷新服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="Signal Refresh Service",
    description=(
        "在外部 API 限流约束下批量刷新自选股衍生信号：\n"
        "- 🚦 按依赖类别限流的准入队列\n"
        "- 🗄️ 分级缓存（文件 / Redis → MongoDB），按数据类别 TTL 判定新鲜度\n"
        "- 📡 并行扫描 + SSE 进度推送，同一目标单实例运行\n\n"
        "**分层架构**\n"
        "```\n"
        "Queue Layer        ← 并发准入控制\n"
        "Acquisition Layer  ← 从数据提供商拉取原始数据\n"
        "Cache Layer        ← 快速层 / 慢速层\n"
        "Processing Layer   ← 数据清洗、标准化\n"
        "Analysis Layer     ← 指标与信号计算\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 全局异常处理 ──────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "内部服务错误", "message": str(exc)},
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(scan.router)
app.include_router(signals.router)
app.include_router(cache.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Signal Refresh Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "signal_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
