"""
镜像存储
MongoDB 持久化（motor 异步驱动），不可用时降级为进程内存储
每个键最多一条记录；每次写入刷新 last_updated，且不会回退
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, ReturnDocument

logger = logging.getLogger(__name__)

StatementKey = Tuple[str, int]
RecordKey = Union[str, StatementKey]


class RecordKind(str, Enum):
    PROFILE = "profile"      # 企业基础信息，键为 CUI
    STATEMENT = "statement"  # 年度资产负债表，键为 (CUI, 年份)


class CacheRecord(BaseModel):
    kind: RecordKind
    key: Any
    payload: Dict[str, Any]
    last_updated: datetime
    created_at: Optional[datetime] = None


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MirrorStore(Protocol):
    async def get(self, kind: RecordKind, key: RecordKey) -> Optional[CacheRecord]: ...

    async def upsert(self, kind: RecordKind, key: RecordKey, payload: Dict[str, Any]) -> CacheRecord: ...

    async def patch(self, kind: RecordKind, key: RecordKey, fields: Dict[str, Any]) -> bool: ...

    async def list_statements(self, entity_id: str) -> List[CacheRecord]: ...

    async def count(self, kind: RecordKind) -> int: ...

    async def list_records(self, kind: RecordKind, skip: int = 0, take: int = 100) -> List[CacheRecord]: ...


# ── 进程内存储 ────────────────────────────────────────────

class InMemoryMirrorStore:
    """进程内存储，用于 MongoDB 不可用时的降级运行以及测试"""

    def __init__(self, now: Callable[[], datetime] = _utcnow):
        self._now = now
        self._records: Dict[RecordKind, Dict[Any, CacheRecord]] = {
            RecordKind.PROFILE: {},
            RecordKind.STATEMENT: {},
        }

    async def get(self, kind: RecordKind, key: RecordKey) -> Optional[CacheRecord]:
        record = self._records[kind].get(key)
        return record.model_copy(deep=True) if record else None

    async def upsert(self, kind: RecordKind, key: RecordKey, payload: Dict[str, Any]) -> CacheRecord:
        now = self._now()
        existing = self._records[kind].get(key)
        if existing is not None:
            last_updated = max(now, existing.last_updated)
            created_at = existing.created_at
        else:
            last_updated = created_at = now
        record = CacheRecord(
            kind=kind,
            key=key,
            payload=dict(payload),
            last_updated=last_updated,
            created_at=created_at,
        )
        self._records[kind][key] = record
        return record.model_copy(deep=True)

    async def patch(self, kind: RecordKind, key: RecordKey, fields: Dict[str, Any]) -> bool:
        record = self._records[kind].get(key)
        if record is None:
            return False
        record.payload.update(fields)
        return True

    async def list_statements(self, entity_id: str) -> List[CacheRecord]:
        records = [
            r.model_copy(deep=True)
            for (cui, _), r in self._records[RecordKind.STATEMENT].items()
            if cui == entity_id
        ]
        return sorted(records, key=lambda r: r.key[1], reverse=True)

    async def count(self, kind: RecordKind) -> int:
        return len(self._records[kind])

    async def list_records(self, kind: RecordKind, skip: int = 0, take: int = 100) -> List[CacheRecord]:
        records = sorted(
            self._records[kind].values(),
            key=lambda r: r.created_at or r.last_updated,
            reverse=True,
        )
        return [r.model_copy(deep=True) for r in records[skip:skip + take]]


# ── MongoDB 存储 ──────────────────────────────────────────

_COLLECTIONS = {
    RecordKind.PROFILE: "business_records",
    RecordKind.STATEMENT: "balance_sheets",
}


class MongoMirrorStore:
    """MongoDB 镜像存储"""

    def __init__(self, db: AsyncIOMotorDatabase, now: Callable[[], datetime] = _utcnow):
        self._db = db
        self._now = now

    def _collection(self, kind: RecordKind):
        return self._db[_COLLECTIONS[kind]]

    @staticmethod
    def _key_fields(kind: RecordKind, key: RecordKey) -> Dict[str, Any]:
        if kind is RecordKind.PROFILE:
            return {"_id": key}
        cui, year = key
        return {"_id": f"{cui}:{year}", "cui": cui, "an": int(year)}

    @staticmethod
    def _to_record(kind: RecordKind, doc: Dict[str, Any]) -> CacheRecord:
        key = doc["_id"] if kind is RecordKind.PROFILE else (doc["cui"], int(doc["an"]))
        return CacheRecord(
            kind=kind,
            key=key,
            payload=doc.get("payload") or {},
            last_updated=_aware(doc["last_updated"]),
            created_at=_aware(doc.get("created_at")),
        )

    async def ensure_indexes(self) -> None:
        await self._collection(RecordKind.STATEMENT).create_index(
            [("cui", ASCENDING), ("an", DESCENDING)], unique=True
        )
        await self._collection(RecordKind.PROFILE).create_index([("created_at", DESCENDING)])

    async def get(self, kind: RecordKind, key: RecordKey) -> Optional[CacheRecord]:
        doc = await self._collection(kind).find_one({"_id": self._key_fields(kind, key)["_id"]})
        return self._to_record(kind, doc) if doc else None

    async def upsert(self, kind: RecordKind, key: RecordKey, payload: Dict[str, Any]) -> CacheRecord:
        now = self._now()
        fields = self._key_fields(kind, key)
        doc = await self._collection(kind).find_one_and_update(
            {"_id": fields["_id"]},
            {
                "$set": {**{k: v for k, v in fields.items() if k != "_id"}, "payload": payload},
                "$max": {"last_updated": now},
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        logger.debug(f"镜像写入（MongoDB）: {kind.value} {fields['_id']}")
        return self._to_record(kind, doc)

    async def patch(self, kind: RecordKind, key: RecordKey, fields: Dict[str, Any]) -> bool:
        result = await self._collection(kind).update_one(
            {"_id": self._key_fields(kind, key)["_id"]},
            {"$set": {f"payload.{name}": value for name, value in fields.items()}},
        )
        return result.matched_count > 0

    async def list_statements(self, entity_id: str) -> List[CacheRecord]:
        cursor = self._collection(RecordKind.STATEMENT).find({"cui": entity_id}).sort("an", DESCENDING)
        return [self._to_record(RecordKind.STATEMENT, doc) async for doc in cursor]

    async def count(self, kind: RecordKind) -> int:
        return await self._collection(kind).count_documents({})

    async def list_records(self, kind: RecordKind, skip: int = 0, take: int = 100) -> List[CacheRecord]:
        cursor = (
            self._collection(kind)
            .find({})
            .sort("created_at", DESCENDING)
            .skip(skip)
            .limit(take)
        )
        return [self._to_record(kind, doc) async for doc in cursor]
