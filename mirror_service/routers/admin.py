"""
管理路由（需要 Bearer ADMIN_TOKEN）
GET /admin                       - 管理接口索引
GET /admin/records               - 已镜像的企业档案（分页）
GET /admin/records/overview      - 镜像统计
GET /admin/ratelimit             - 限流状态
"""

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from mirror_service import __version__
from mirror_service.config import settings
from mirror_service.layers.store import RecordKind
from mirror_service.models.response import respond
from mirror_service.services.company_service import CompanyService, get_company_service

router = APIRouter(prefix="/admin", tags=["管理"])


# ── 依赖注入：校验管理令牌 ────────────────────────────────

async def require_admin(authorization: Optional[str] = Header(default=None)) -> None:
    expected = settings.ADMIN_TOKEN
    if not expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Admin API disabled")
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if not secrets.compare_digest(authorization[7:], expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


# ── 路由处理器 ────────────────────────────────────────────

@router.get("", dependencies=[Depends(require_admin)])
async def admin_index(request: Request):
    return respond(request, "You are authorized to access the admin API", {
        "version": __version__,
        "endpoints": {
            "records": "/admin/records?take=100&skip=0",
            "recordsOverview": "/admin/records/overview",
            "rateLimit": "/admin/ratelimit",
        },
    })


@router.get("/records", dependencies=[Depends(require_admin)])
async def list_records(
    request: Request,
    take: int = Query(default=100, ge=1, le=1000),
    skip: int = Query(default=0, ge=0),
    svc: CompanyService = Depends(get_company_service),
):
    records = await svc.store.list_records(RecordKind.PROFILE, skip=skip, take=take)
    return respond(request, "Business Records", [
        {
            "cui": r.key,
            "denumire": r.payload.get("denumire"),
            "lastUpdated": r.last_updated.isoformat(),
            "createdAt": r.created_at.isoformat() if r.created_at else None,
        }
        for r in records
    ])


@router.get("/records/overview", dependencies=[Depends(require_admin)])
async def records_overview(
    request: Request,
    svc: CompanyService = Depends(get_company_service),
):
    return respond(request, "Business Records Overview", {
        "businessRecords": await svc.store.count(RecordKind.PROFILE),
        "balanceSheets": await svc.store.count(RecordKind.STATEMENT),
        "pendingLookups": svc.coalescer.pending_count,
        "queuedBatches": svc.coalescer.queued_jobs,
    })


@router.get("/ratelimit", dependencies=[Depends(require_admin)])
async def rate_limit_status(request: Request):
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return respond(request, "Rate limiting disabled", {"enabled": False})
    return respond(request, "Rate limiting", {
        "enabled": True,
        "backend": limiter.backend,
        "maxRequests": limiter.max_requests,
        "windowMs": limiter.window_ms,
        "trackedClients": limiter.tracked_clients,
    })
