"""
企业数据镜像服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn mirror_service.main:app --host 0.0.0.0 --port 3000
    python -m mirror_service.main
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

from mirror_service import __version__, db
from mirror_service.config import settings
from mirror_service.errors import MirrorServiceError, RateLimitExceeded
from mirror_service.layers.ratelimit import RateLimiter
from mirror_service.models.response import respond
from mirror_service.routers import admin, companies, health
from mirror_service.services.company_service import build_company_service, set_company_service

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
    logger.info(f"🚀 Company Mirror Service v{__version__} 启动中")
    logger.info(f"   MongoDB   : {settings.MONGODB_HOST}:{settings.MONGODB_PORT}")
    logger.info(f"   Redis     : {settings.REDIS_HOST}:{settings.REDIS_PORT}")
    logger.info(f"   限流      : {settings.RATE_LIMIT_MAX_REQUESTS} 次 / {settings.RATE_LIMIT_WINDOW_MS}ms")
    logger.info(f"   数据新鲜度: {settings.DATA_FRESHNESS_HOURS} 小时")
    logger.info("=" * 60)

    # 初始化数据库连接（失败不阻断启动，降级运行）
    mongo_ok = await db.init_mongodb()
    redis_ok = await db.init_redis()
    if not mongo_ok:
        logger.warning("⚠️ MongoDB 不可用，镜像数据仅保存在进程内存中")
    if not redis_ok:
        logger.warning("⚠️ Redis 不可用，限流窗口仅在当前进程内生效")

    service = build_company_service(await db.create_mirror_store())
    service.start()
    set_company_service(service)
    app.state.company_service = service

    limiter = RateLimiter(
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        window_ms=settings.RATE_LIMIT_WINDOW_MS,
        store=db.create_window_store(),
    )
    limiter.start_sweeper(settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS)
    app.state.rate_limiter = limiter

    yield

    logger.info("🔄 镜像服务正在关闭...")
    await limiter.stop_sweeper()
    await service.close()
    set_company_service(None)
    await db.close_connections()
    logger.info("✅ 镜像服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="Company Mirror Service",
    description=(
        "ANAF 企业数据镜像服务：\n"
        "- 🏢 企业基础信息（批量合并请求，遵守 ANAF 每秒 1 次的限制）\n"
        "- 📊 年度资产负债表（按年份回填缺失数据）\n"
        "- 🗄️ 本地镜像（按新鲜度阈值刷新）\n"
        "- 🚦 按客户端 IP 的固定窗口限流\n\n"
        "**分层架构**\n"
        "```\n"
        "Acquisition Layer  ← 调用 ANAF 接口\n"
        "Coalescer Layer    ← 合并并发查询，按固定间隔分发\n"
        "Cache Layer        ← 镜像缓存（MongoDB / 内存）\n"
        "Backfill Layer     ← 年度资产负债表回填\n"
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


# ── 限流中间件 ────────────────────────────────────────────
@app.middleware("http")
async def rate_limit(request: Request, call_next):
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return await call_next(request)

    client_ip = request.client.host if request.client else "unknown"
    try:
        decision = await limiter.admit(client_ip)
    except RateLimitExceeded as exc:
        retry_after = exc.decision.retry_after_seconds
        logger.info(f"客户端 {client_ip} 超出限流，{retry_after} 秒后重试")
        return respond(
            request,
            "Too many requests. Please try again later.",
            {"error": "Rate limit exceeded", "retryAfter": f"{retry_after} seconds"},
            status_code=429,
            headers=exc.decision.headers(),
        )

    response = await call_next(request)
    response.headers.update(decision.headers())
    return response


# ── 请求 ID / 计时中间件（最外层） ─────────────────────────
@app.middleware("http")
async def add_request_context(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    request.state.started_at = time.time()
    response = await call_next(request)
    elapsed = (time.time() - request.state.started_at) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    response.headers["X-Process-Time"] = f"{elapsed:.1f}ms"
    logger.info(f"{response.status_code} {request.method} {request.url.path} - {elapsed:.0f}ms")
    return response


# ── 异常处理 ──────────────────────────────────────────────
@app.exception_handler(MirrorServiceError)
async def mirror_error_handler(request: Request, exc: MirrorServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.url.path} 处理失败: {exc}")
    return respond(request, exc.message or type(exc).__name__, {"error": str(exc)}, status_code=exc.status_code)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return respond(request, str(exc.detail), None, status_code=exc.status_code)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return respond(request, "Internal server error", {"error": str(exc)}, status_code=500)


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(companies.router)
app.include_router(admin.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Company Mirror Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "mirror_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
