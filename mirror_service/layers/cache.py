"""
Layer 3 – 镜像缓存层
本地记录在新鲜度阈值内直接返回，否则回源获取、写入存储并返回
回源失败直接向上抛出，不会返回过期数据
"""

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from mirror_service.layers.store import CacheRecord, MirrorStore, RecordKey, RecordKind

logger = logging.getLogger(__name__)

OriginFetch = Callable[[RecordKey], Awaitable[Dict[str, Any]]]


class Provenance(str, Enum):
    CACHE = "cache"
    ORIGIN_NEW = "origin-new"
    ORIGIN_UPDATED = "origin-updated"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class MirrorCache:
    """按新鲜度决定命中镜像还是回源"""

    def __init__(
        self,
        store: MirrorStore,
        freshness_hours: float,
        now: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._freshness = timedelta(hours=freshness_hours)
        self._now = now

    @property
    def store(self) -> MirrorStore:
        return self._store

    def is_fresh(self, record: CacheRecord, freshness_hours: Optional[float] = None) -> bool:
        threshold = self._freshness if freshness_hours is None else timedelta(hours=freshness_hours)
        return self._now() - record.last_updated <= threshold

    async def get_or_fetch(
        self,
        kind: RecordKind,
        key: RecordKey,
        origin_fetch: OriginFetch,
        freshness_hours: Optional[float] = None,
    ) -> Tuple[Dict[str, Any], Provenance]:
        """
        获取单条记录

        Returns:
            (payload, provenance)；provenance 为 cache / origin-new / origin-updated
        """
        record = await self._store.get(kind, key)

        if record is not None:
            if self.is_fresh(record, freshness_hours):
                logger.debug(f"镜像命中: {kind.value} {key}")
                return record.payload, Provenance.CACHE
            logger.info(f"镜像已过期，回源刷新: {kind.value} {key}")
        else:
            logger.info(f"镜像中不存在，回源获取: {kind.value} {key}")

        payload = await origin_fetch(key)
        await self._store.upsert(kind, key, payload)

        provenance = Provenance.ORIGIN_NEW if record is None else Provenance.ORIGIN_UPDATED
        return payload, provenance
