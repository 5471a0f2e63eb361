"""
Layer 1 – 数据获取层
调用 ANAF 公共接口：
  - 基础信息接口（POST，支持批量，由合并层调用）
  - 资产负债表接口（GET，单个 CUI + 年份）
网络错误与非成功状态码统一转换为 UpstreamError
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from mirror_service.config import settings
from mirror_service.errors import NotFoundError, UpstreamError
from mirror_service.layers.processing import transform_balance_sheet

logger = logging.getLogger(__name__)


class AcquisitionLayer:
    """数据获取层：封装 ANAF 接口调用"""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        general_info_url: Optional[str] = None,
        balance_sheet_url: Optional[str] = None,
    ):
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.UPSTREAM_TIMEOUT_SECONDS),
            headers={"Content-Type": "application/json"},
        )
        self._general_info_url = general_info_url or settings.ANAF_GENERAL_INFO_URL
        self._balance_sheet_url = balance_sheet_url or settings.ANAF_BALANCE_SHEET_URL

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── 基础信息（批量） ──────────────────────────────────

    async def fetch_general_info_batch(self, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        批量查询企业基础信息

        Args:
            items: [{"cui": 123, "data": "YYYY-MM-DD"}, ...]，最多 100 个

        Returns:
            {"found": [...], "notFound": [...]}
        """
        try:
            response = await self._client.post(self._general_info_url, json=items)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"ANAF request failed: {exc}") from exc

        if not response.is_success:
            raise UpstreamError(
                f"ANAF API returned status {response.status_code}",
                upstream_status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError(f"ANAF returned invalid JSON: {exc}") from exc

        logger.debug(f"ANAF 基础信息响应: {data}")
        return data

    # ── 资产负债表（单年） ────────────────────────────────

    async def fetch_balance_sheet(self, cui: str, year: int) -> Dict[str, Any]:
        """获取指定年份的资产负债表，返回内部格式（含 denumireCaen）"""
        logger.info(f"从 ANAF 获取资产负债表: CUI {cui}, {year} 年")
        try:
            response = await self._client.get(
                self._balance_sheet_url, params={"an": year, "cui": cui}
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"ANAF request failed: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError(f"Balance sheet not found for CUI {cui}, year {year}")
        if not response.is_success:
            raise UpstreamError(
                f"ANAF API returned status {response.status_code}",
                upstream_status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError(f"ANAF returned invalid JSON: {exc}") from exc
        if not isinstance(body, dict):
            raise UpstreamError("ANAF returned an unexpected balance sheet payload")

        return transform_balance_sheet(body, year)
