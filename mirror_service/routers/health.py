"""健康检查路由"""

import time

from fastapi import APIRouter, Request

from mirror_service import __version__
from mirror_service.db import check_health

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health(request: Request):
    """服务健康检查（含数据库与合并器状态）"""
    db_health = await check_health()
    service = getattr(request.app.state, "company_service", None)
    coalescer = None
    if service is not None:
        coalescer = {
            "pending": service.coalescer.pending_count,
            "queuedBatches": service.coalescer.queued_jobs,
            "dispatching": service.coalescer.is_dispatching,
        }
    return {
        "success": True,
        "data": {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "Company Mirror Service",
            "databases": db_health,
            "coalescer": coalescer,
        },
        "message": "服务运行正常",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request):
    """Kubernetes readiness probe"""
    return {"ready": getattr(request.app.state, "company_service", None) is not None}
