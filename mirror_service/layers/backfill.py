"""
Layer 4 – 年度回填层
补齐某个 CUI 缺失年份的资产负债表：
  - 从最新年份向前逐年回源
  - 全零报表视为未申报：已有有效报表时停止，否则继续向前
  - 单个年份失败只记录日志，不中断整个回填
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from mirror_service.errors import NotFoundError
from mirror_service.layers.cache import Provenance
from mirror_service.layers.processing import are_all_indicators_zero
from mirror_service.layers.scheduling import Clock, get_default_clock

logger = logging.getLogger(__name__)

YearFetch = Callable[[int], Awaitable[Tuple[Dict[str, Any], Provenance]]]


class BackfillResult(BaseModel):
    statements: List[Dict[str, Any]] = Field(default_factory=list)
    fetched_years: List[int] = Field(default_factory=list)   # 本次新接受的年份
    probed_years: List[int] = Field(default_factory=list)    # 本次实际请求过的年份
    classification_name: Optional[str] = None


def year_range(registration_year: Optional[int], min_supported_year: int, current_year: int) -> List[int]:
    start = max(registration_year or min_supported_year, min_supported_year)
    return list(range(start, current_year + 1))


class YearBackfillPlanner:
    """按年份补齐资产负债表"""

    def __init__(
        self,
        min_supported_year: int,
        pacing_ms: int,
        clock: Optional[Clock] = None,
    ):
        self._min_year = min_supported_year
        self._pacing = pacing_ms / 1000.0
        self._clock = clock or get_default_clock()

    async def run(
        self,
        entity_id: str,
        existing: List[Dict[str, Any]],
        fetch_year: YearFetch,
        registration_year: Optional[int],
        current_year: int,
    ) -> BackfillResult:
        """
        Args:
            entity_id: 规范化后的 CUI
            existing: 存储中已有的报表（全零报表会被忽略）
            fetch_year: 镜像缓存的单年份获取函数
            registration_year: 注册年份，未知时从最早支持年份开始
            current_year: 当前年份
        """
        kept = [s for s in existing if not are_all_indicators_zero(s.get("indicators") or {})]
        existing_years: Set[int] = {int(s["an"]) for s in kept}
        missing = [y for y in reversed(year_range(registration_year, self._min_year, current_year))
                   if y not in existing_years]

        result = BackfillResult()
        if not missing:
            logger.info(f"CUI {entity_id} 的 {len(kept)} 份资产负债表均已在镜像中")
            result.statements = sorted(kept, key=lambda s: s["an"], reverse=True)
            return result

        logger.info(f"CUI {entity_id} 已缓存 {len(kept)} 份资产负债表，需补齐 {len(missing)} 个年份")

        accepted: List[Dict[str, Any]] = []
        pause_before_next = False
        for year in missing:
            # 只在两次回源之间节流，最后一个年份之后不再等待
            if pause_before_next:
                await self._clock.sleep(self._pacing)
                pause_before_next = False

            result.probed_years.append(year)
            try:
                statement, provenance = await fetch_year(year)
            except NotFoundError:
                logger.info(f"CUI {entity_id} 在 {year} 年没有资产负债表")
                continue
            except Exception as exc:
                logger.warning(f"获取 CUI {entity_id} {year} 年资产负债表失败: {exc}")
                continue

            if not result.classification_name and statement.get("denumireCaen"):
                result.classification_name = statement["denumireCaen"]

            if are_all_indicators_zero(statement.get("indicators") or {}):
                if accepted:
                    logger.info(f"{year} 年指标全部为零，停止向前回填")
                    break
                logger.info(f"{year} 年指标全部为零，尚无有效报表，继续向前")
                continue

            accepted.append(statement)
            result.fetched_years.append(year)
            pause_before_next = provenance is not Provenance.CACHE

        result.statements = sorted(kept + accepted, key=lambda s: s["an"], reverse=True)
        logger.info(f"CUI {entity_id} 共返回 {len(result.statements)} 份资产负债表")
        return result
