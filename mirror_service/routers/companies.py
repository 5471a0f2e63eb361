"""
企业数据路由
GET /v1                       - v1 健康检查
GET /v1/{cui}                 - 企业基础信息
GET /v1/{cui}/bilant          - 全部年度资产负债表
GET /v1/{cui}/bilant/{an}     - 指定年份资产负债表
GET /v1/{cui}/complete        - 基础信息 + 全部资产负债表
"""

import logging
import time
from datetime import date

from fastapi import APIRouter, Depends, Request

from mirror_service.config import settings
from mirror_service.errors import ValidationError
from mirror_service.identifiers import validate_entity_id
from mirror_service.models.response import respond
from mirror_service.services.company_service import CompanyService, get_company_service, source_label

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["企业数据"])


def _require_cui(cui: str) -> str:
    if not validate_entity_id(cui):
        raise ValidationError("Invalid CUI format")
    return cui


def _parse_year(an: str) -> int:
    try:
        year = int(an)
    except ValueError:
        year = None
    if year is None or year < settings.MIN_SUPPORTED_YEAR or year > date.today().year:
        raise ValidationError(
            f"Invalid year. Must be between {settings.MIN_SUPPORTED_YEAR} and current year"
        )
    return year


@router.get("")
async def v1_health(request: Request):
    started = getattr(request.state, "started_at", time.time())
    return respond(request, "Healthcheck is ok", {"responseTime": int((time.time() - started) * 1000)})


@router.get("/{cui}")
async def get_business_record(
    cui: str,
    request: Request,
    svc: CompanyService = Depends(get_company_service),
):
    """企业基础信息"""
    _require_cui(cui)
    logger.info(f"API 请求: 企业基础信息 CUI {cui}")
    record, provenance = await svc.get_business_record(cui)
    return respond(request, "Success", record, source=source_label(provenance))


@router.get("/{cui}/bilant")
async def get_all_balance_sheets(
    cui: str,
    request: Request,
    svc: CompanyService = Depends(get_company_service),
):
    """全部年度资产负债表"""
    _require_cui(cui)
    logger.info(f"API 请求: 全部资产负债表 CUI {cui}")
    sheets, provenance = await svc.get_all_balance_sheets(cui)
    record, _ = await svc.get_business_record(cui)
    return respond(
        request,
        "Success",
        {
            "cui": record.get("cui"),
            "denumire": record.get("denumire"),
            "count": len(sheets),
            "balanceSheets": sheets,
        },
        source=source_label(provenance),
    )


@router.get("/{cui}/bilant/{an}")
async def get_balance_sheet(
    cui: str,
    an: str,
    request: Request,
    svc: CompanyService = Depends(get_company_service),
):
    """指定年份资产负债表"""
    _require_cui(cui)
    year = _parse_year(an)
    logger.info(f"API 请求: 资产负债表 CUI {cui}, {year} 年")
    sheet, provenance = await svc.get_balance_sheet(cui, year)
    record, _ = await svc.get_business_record(cui)
    return respond(
        request,
        "Success",
        {"cui": record.get("cui"), "denumire": record.get("denumire"), "balanceSheet": sheet},
        source=source_label(provenance),
    )


@router.get("/{cui}/complete")
async def get_complete_company_data(
    cui: str,
    request: Request,
    svc: CompanyService = Depends(get_company_service),
):
    """基础信息 + 全部资产负债表"""
    _require_cui(cui)
    logger.info(f"API 请求: 完整企业数据 CUI {cui}")
    data, provenance = await svc.get_complete_company_data(cui)
    return respond(request, "Success", data, source=source_label(provenance))
