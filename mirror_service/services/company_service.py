"""
企业数据服务
整合获取、合并、镜像缓存、回填四层，对外提供统一的企业数据访问接口
"""

import asyncio
import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from mirror_service.config import settings
from mirror_service.errors import EnrichmentWarning
from mirror_service.identifiers import canonical_entity_id
from mirror_service.layers.acquisition import AcquisitionLayer
from mirror_service.layers.backfill import YearBackfillPlanner
from mirror_service.layers.cache import MirrorCache, Provenance
from mirror_service.layers.coalescer import RequestCoalescer
from mirror_service.layers.processing import registration_year, transform_general_info
from mirror_service.layers.scheduling import Clock
from mirror_service.layers.store import MirrorStore, RecordKind, StatementKey

logger = logging.getLogger(__name__)

RawId = Union[str, int]


def source_label(provenance: Provenance, source_name: Optional[str] = None) -> str:
    """响应 meta.source 中的数据来源标识"""
    if provenance is Provenance.ORIGIN_NEW:
        return "ANAF (new)"
    if provenance is Provenance.ORIGIN_UPDATED:
        return "ANAF (updated)"
    return source_name or settings.SOURCE_NAME


def combine_provenance(*values: Provenance) -> Provenance:
    if Provenance.ORIGIN_NEW in values:
        return Provenance.ORIGIN_NEW
    if Provenance.ORIGIN_UPDATED in values:
        return Provenance.ORIGIN_UPDATED
    return Provenance.CACHE


class CompanyService:
    """企业数据业务服务"""

    def __init__(
        self,
        acquisition: AcquisitionLayer,
        coalescer: RequestCoalescer,
        mirror: MirrorCache,
        planner: YearBackfillPlanner,
        enrichment_years: int = 6,
        today: Callable[[], date] = date.today,
    ):
        self._acq = acquisition
        self._coalescer = coalescer
        self._mirror = mirror
        self._planner = planner
        self._enrichment_years = enrichment_years
        self._today = today

    @property
    def store(self) -> MirrorStore:
        return self._mirror.store

    @property
    def coalescer(self) -> RequestCoalescer:
        return self._coalescer

    def start(self) -> None:
        self._coalescer.start()

    async def close(self) -> None:
        await self._coalescer.stop()
        await self._acq.aclose()

    # ── 回源函数 ──────────────────────────────────────────

    async def _fetch_profile(self, cui: str) -> Dict[str, Any]:
        record = await self._coalescer.enqueue(cui, {"data": self._today().isoformat()})
        return transform_general_info(record)

    async def _fetch_statement(self, key: StatementKey) -> Dict[str, Any]:
        cui, year = key
        return await self._acq.fetch_balance_sheet(cui, year)

    async def statement(self, cui: str, year: int) -> Tuple[Dict[str, Any], Provenance]:
        """单年份资产负债表（镜像缓存）"""
        return await self._mirror.get_or_fetch(RecordKind.STATEMENT, (cui, year), self._fetch_statement)

    # ── 企业基础信息 ──────────────────────────────────────

    async def get_business_record(self, raw_id: RawId) -> Tuple[Dict[str, Any], Provenance]:
        cui = canonical_entity_id(raw_id)
        logger.info(f"获取企业基础信息: CUI {cui}")

        profile, provenance = await self._mirror.get_or_fetch(
            RecordKind.PROFILE, cui, self._fetch_profile
        )

        if not profile.get("denumireCaen"):
            name = await self._enrich_classification(cui)
            if name:
                profile = {**profile, "denumireCaen": name}

        return profile, provenance

    async def _enrich_classification(self, cui: str) -> Optional[str]:
        """从最近几年的资产负债表中补充 denumireCaen，失败只记录日志"""
        current_year = self._today().year
        try:
            for year in range(current_year, current_year - self._enrichment_years, -1):
                try:
                    statement, _ = await self.statement(cui, year)
                except Exception as exc:
                    logger.debug(f"补充 CAEN 名称时跳过 {year} 年: {exc}")
                    continue
                name = statement.get("denumireCaen")
                if name:
                    await self.store.patch(RecordKind.PROFILE, cui, {"denumireCaen": name})
                    logger.info(f"使用 {year} 年资产负债表补充 CUI {cui} 的 denumireCaen: {name}")
                    return name
            raise EnrichmentWarning(
                f"no CAEN name in the last {self._enrichment_years} balance sheets"
            )
        except Exception as exc:
            logger.warning(f"无法补充 CUI {cui} 的 denumireCaen: {exc}")
            return None

    async def _patch_classification(self, cui: str, name: str) -> None:
        try:
            await self.store.patch(RecordKind.PROFILE, cui, {"denumireCaen": name})
        except Exception as exc:
            logger.warning(f"更新 denumireCaen 失败: {exc}")

    # ── 资产负债表 ────────────────────────────────────────

    async def get_balance_sheet(self, raw_id: RawId, year: int) -> Tuple[Dict[str, Any], Provenance]:
        cui = canonical_entity_id(raw_id)
        logger.info(f"获取资产负债表: CUI {cui}, {year} 年")

        statement, provenance = await self.statement(cui, year)
        if provenance is not Provenance.CACHE and statement.get("denumireCaen"):
            await self._patch_classification(cui, statement["denumireCaen"])
        return statement, provenance

    async def get_all_balance_sheets(self, raw_id: RawId) -> Tuple[List[Dict[str, Any]], Provenance]:
        """注册年份（至少 MIN_SUPPORTED_YEAR）至今的全部有效资产负债表"""
        cui = canonical_entity_id(raw_id)
        logger.info(f"获取全部资产负债表: CUI {cui}")

        try:
            profile, _ = await self.get_business_record(cui)
        except Exception as exc:
            logger.warning(f"无法获取 CUI {cui} 的基础信息，从最早支持年份开始回填: {exc}")
            profile = None

        existing = [record.payload for record in await self.store.list_statements(cui)]

        async def fetch_year(year: int) -> Tuple[Dict[str, Any], Provenance]:
            return await self.statement(cui, year)

        result = await self._planner.run(
            cui,
            existing,
            fetch_year,
            registration_year=registration_year(profile),
            current_year=self._today().year,
        )

        if result.classification_name:
            await self._patch_classification(cui, result.classification_name)

        provenance = Provenance.ORIGIN_NEW if result.fetched_years else Provenance.CACHE
        return result.statements, provenance

    # ── 完整数据 ──────────────────────────────────────────

    async def get_complete_company_data(self, raw_id: RawId) -> Tuple[Dict[str, Any], Provenance]:
        """基础信息 + 全部资产负债表（并发获取）"""
        cui = canonical_entity_id(raw_id)
        (profile, profile_src), (statements, statements_src) = await asyncio.gather(
            self.get_business_record(cui),
            self.get_all_balance_sheets(cui),
        )
        data = {"businessRecord": profile, "balanceSheets": statements}
        return data, combine_provenance(profile_src, statements_src)


# ── 服务装配 ──────────────────────────────────────────────

def build_company_service(
    store: MirrorStore,
    acquisition: Optional[AcquisitionLayer] = None,
    clock: Optional[Clock] = None,
) -> CompanyService:
    """按配置装配各层；返回的服务中合并器尚未启动"""
    acquisition = acquisition or AcquisitionLayer()
    coalescer = RequestCoalescer(
        acquisition.fetch_general_info_batch,
        wait_ms=settings.ANAF_BUNDLE_WAIT_MS,
        max_batch_size=settings.ANAF_BUNDLE_MAX_SIZE,
        dispatch_interval_ms=settings.ANAF_DISPATCH_INTERVAL_MS,
        clock=clock,
    )
    return CompanyService(
        acquisition=acquisition,
        coalescer=coalescer,
        mirror=MirrorCache(store, settings.DATA_FRESHNESS_HOURS),
        planner=YearBackfillPlanner(
            min_supported_year=settings.MIN_SUPPORTED_YEAR,
            pacing_ms=settings.BACKFILL_PACING_MS,
            clock=clock,
        ),
        enrichment_years=settings.ENRICHMENT_MAX_YEARS,
    )


# ── 模块级别单例 ──────────────────────────────────────────
_company_service: Optional[CompanyService] = None


def set_company_service(service: Optional[CompanyService]) -> None:
    global _company_service
    _company_service = service


def get_company_service() -> CompanyService:
    if _company_service is None:
        raise RuntimeError("CompanyService 尚未初始化")
    return _company_service
