"""
测试公共工具
  - VirtualClock：可手动推进的时钟，替代合并器 / 回填层的真实等待
  - FakeAnaf：内存中的 ANAF 接口，记录每次调用
  - make_service：用 FakeAnaf 装配 CompanyService
"""

import asyncio
import os
import sys
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

# 确保项目根目录在 sys.path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from mirror_service.errors import NotFoundError  # noqa: E402


# ─────────────────────────────────────────────────────────
# 虚拟时钟
# ─────────────────────────────────────────────────────────

class _VirtualTimer:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualClock:
    """只在 advance / sleep 时前进的时钟"""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._timers: List[_VirtualTimer] = []
        self.sleeps: List[float] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> _VirtualTimer:
        timer = _VirtualTimer(self._now + max(0.0, delay), callback)
        self._timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        """推进时间并按到期顺序触发定时器"""
        target = self._now + seconds
        while True:
            due = [t for t in self._timers if not t.cancelled and t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self._timers.remove(timer)
            self._now = max(self._now, timer.when)
            timer.callback()
        self._now = target
        self._timers = [t for t in self._timers if not t.cancelled]

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(max(0.0, seconds))
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


# ─────────────────────────────────────────────────────────
# 假 ANAF 接口
# ─────────────────────────────────────────────────────────

def make_statement(year: int, caen_name: Optional[str] = "Activitati de realizare a soft-ului la comanda",
                   value: float = 1000) -> Dict[str, Any]:
    return {
        "an": year,
        "codCaen": "6201",
        "denumireCaen": caen_name,
        "indicators": {"cifraDeAfaceriNeta": value, "profitNet": value / 10},
    }


def make_zero_statement(year: int) -> Dict[str, Any]:
    return {
        "an": year,
        "codCaen": None,
        "denumireCaen": None,
        "indicators": {"cifraDeAfaceriNeta": 0, "profitNet": 0},
    }


class FakeAnaf:
    """记录调用的 ANAF 替身，接口与 AcquisitionLayer 一致"""

    def __init__(
        self,
        companies: Optional[Dict[str, Dict[str, Any]]] = None,
        statements: Optional[Dict[Tuple[str, int], Dict[str, Any]]] = None,
    ):
        self.companies = companies or {}
        self.statements = statements or {}
        self.batch_calls: List[List[Dict[str, Any]]] = []
        self.balance_calls: List[Tuple[str, int]] = []
        self.fail_with: Optional[Exception] = None
        self.closed = False

    async def fetch_general_info_batch(self, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        self.batch_calls.append(items)
        if self.fail_with is not None:
            raise self.fail_with
        found, not_found = [], []
        for item in items:
            general = self.companies.get(str(item["cui"]))
            if general is None:
                not_found.append(item["cui"])
            else:
                found.append({"date_generale": {**general, "cui": item["cui"]}})
        return {"found": found, "notFound": not_found}

    async def fetch_balance_sheet(self, cui: str, year: int) -> Dict[str, Any]:
        self.balance_calls.append((cui, year))
        statement = self.statements.get((cui, year))
        if statement is None:
            raise NotFoundError(f"Balance sheet not found for CUI {cui}, year {year}")
        return dict(statement)

    async def aclose(self) -> None:
        self.closed = True


def company(name: str = "EXEMPLU SRL", registered: str = "12.04.2019") -> Dict[str, Any]:
    return {
        "denumire": name,
        "nrRegCom": "J40/1234/2019",
        "stare_inregistrare": f"INREGISTRAT din data {registered}",
        "data_inregistrare": registered,
        "cod_CAEN": "6201",
    }


def make_service(anaf: FakeAnaf, store=None, today: date = date(2024, 6, 1)):
    """实时时钟 + 零等待的合并器，便于直接 await 服务方法"""
    from mirror_service.layers.backfill import YearBackfillPlanner
    from mirror_service.layers.cache import MirrorCache
    from mirror_service.layers.coalescer import RequestCoalescer
    from mirror_service.layers.store import InMemoryMirrorStore
    from mirror_service.services.company_service import CompanyService

    coalescer = RequestCoalescer(
        anaf.fetch_general_info_batch,
        wait_ms=0,
        max_batch_size=100,
        dispatch_interval_ms=0,
    )
    service = CompanyService(
        acquisition=anaf,
        coalescer=coalescer,
        mirror=MirrorCache(store if store is not None else InMemoryMirrorStore(), freshness_hours=24),
        planner=YearBackfillPlanner(min_supported_year=2014, pacing_ms=0),
        enrichment_years=6,
        today=lambda: today,
    )
    service.start()
    return service
