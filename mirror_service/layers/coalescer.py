"""
Layer 2 – 请求合并层
把并发的单个 CUI 查询合并为 ANAF 批量请求：
  - 首个请求到达后开启收集窗口，窗口结束或队列满时刷新
  - 刷新后的批次进入 FIFO 分发队列，由唯一的分发协程按固定间隔依次发送
  - 单个批次失败时，该批次内所有调用方收到同一个异常，不做重试
"""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union

from mirror_service.errors import (
    CoalescerClosedError,
    NotFoundError,
    ResponseMismatchError,
    UpstreamError,
    ValidationError,
)
from mirror_service.identifiers import canonical_entity_id
from mirror_service.layers.scheduling import Clock, TimerHandle, get_default_clock

logger = logging.getLogger(__name__)

BatchCall = Callable[[List[Dict[str, Any]]], Awaitable[Dict[str, Any]]]


class PendingRequest:
    """等待批量结果的调用方，只会被 resolve 一次"""

    __slots__ = ("entity_id", "params", "future")

    def __init__(self, entity_id: str, params: Dict[str, Any], future: asyncio.Future):
        self.entity_id = entity_id
        self.params = params
        self.future = future

    def succeed(self, value: Any) -> None:
        if not self.future.done():
            self.future.set_result(value)

    def fail(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class DispatchJob:
    __slots__ = ("batch",)

    def __init__(self, batch: List[PendingRequest]):
        self.batch = batch


def _general_info_record_id(record: Dict[str, Any]) -> Any:
    return record["date_generale"]["cui"]


class RequestCoalescer:
    """
    批量请求合并器

    Args:
        batch_call: 上游批量接口，接收 [{id_field: int, **params}]，
            返回 {"found": [...], "notFound": [...]}
        wait_ms: 收集窗口
        max_batch_size: 单批最大数量，达到即刻刷新
        dispatch_interval_ms: 相邻两次分发开始时间的最小间隔
        record_id: 从 found 记录中取出 CUI
    """

    def __init__(
        self,
        batch_call: BatchCall,
        *,
        wait_ms: int,
        max_batch_size: int,
        dispatch_interval_ms: int,
        clock: Optional[Clock] = None,
        record_id: Callable[[Dict[str, Any]], Any] = _general_info_record_id,
        id_field: str = "cui",
    ):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        self._batch_call = batch_call
        self._wait = wait_ms / 1000.0
        self._max_batch_size = max_batch_size
        self._interval = dispatch_interval_ms / 1000.0
        self._clock = clock or get_default_clock()
        self._record_id = record_id
        self._id_field = id_field

        self._queue: List[PendingRequest] = []
        self._timer: Optional[TimerHandle] = None
        self._jobs: Deque[DispatchJob] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._last_dispatch_at: Optional[float] = None
        self._closed = True

    # ── 生命周期 ──────────────────────────────────────────

    def start(self) -> None:
        self._closed = False

    async def stop(self) -> None:
        """停止接收新请求，刷新剩余队列并等待分发完成"""
        self._closed = True
        self.flush()
        if self._worker is not None:
            await self._worker

    # ── 状态 ──────────────────────────────────────────────

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def queued_jobs(self) -> int:
        return len(self._jobs)

    @property
    def is_dispatching(self) -> bool:
        return self._worker is not None

    # ── 入队 / 刷新 ───────────────────────────────────────

    async def enqueue(self, entity_id: Union[str, int], params: Optional[Dict[str, Any]] = None) -> Any:
        """加入批量队列并等待结果"""
        if self._closed:
            raise CoalescerClosedError("Request coalescer is not running")

        key = canonical_entity_id(entity_id)
        future = asyncio.get_running_loop().create_future()
        self._queue.append(PendingRequest(key, dict(params or {}), future))

        if self._timer is None and len(self._queue) == 1:
            self._timer = self._clock.call_later(self._wait, self.flush)

        if len(self._queue) >= self._max_batch_size:
            self.flush()

        return await future

    def flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._queue:
            return

        batch, self._queue = self._queue, []
        self._jobs.append(DispatchJob(batch))

        if self._worker is None:
            self._worker = asyncio.get_running_loop().create_task(self._run_dispatch())

    # ── 分发 ──────────────────────────────────────────────

    async def _run_dispatch(self) -> None:
        try:
            while self._jobs:
                job = self._jobs.popleft()
                if self._last_dispatch_at is not None:
                    elapsed = self._clock.now() - self._last_dispatch_at
                    if elapsed < self._interval:
                        await self._clock.sleep(self._interval - elapsed)
                self._last_dispatch_at = self._clock.now()
                await self._dispatch(job.batch)
        finally:
            self._worker = None

    async def _dispatch(self, batch: List[PendingRequest]) -> None:
        logger.info(f"发送 ANAF 批量请求，共 {len(batch)} 个 CUI")
        try:
            items = [
                {self._id_field: int(item.entity_id), **item.params}
                for item in batch
            ]
            response = await self._batch_call(items)
            if not isinstance(response, dict):
                raise UpstreamError(f"Unexpected batch response type: {type(response).__name__}")
        except Exception as exc:
            error = exc if isinstance(exc, UpstreamError) else UpstreamError(str(exc))
            logger.error(f"ANAF 批量请求失败: {exc}")
            for item in batch:
                item.fail(error)
            return

        found = self._index_found(response.get("found") or [])
        not_found = self._index_not_found(response.get("notFound") or [])

        for item in batch:
            if item.entity_id in found:
                item.succeed(found[item.entity_id])
            elif item.entity_id in not_found:
                logger.debug(f"CUI {item.entity_id} 在 ANAF 中不存在")
                item.fail(NotFoundError(f"CUI {item.entity_id} not found"))
            else:
                logger.error(
                    f"CUI {item.entity_id} 不在响应中，响应包含: {', '.join(found.keys())}"
                )
                item.fail(ResponseMismatchError(f"CUI {item.entity_id} not in response"))

        logger.info(f"批量请求处理完成: {len(found)} 个找到, {len(not_found)} 个不存在")

    def _index_found(self, records: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        found: Dict[str, Dict[str, Any]] = {}
        for record in records:
            try:
                found[canonical_entity_id(self._record_id(record))] = record
            except (KeyError, TypeError, ValidationError) as exc:
                logger.warning(f"忽略无法识别 CUI 的响应记录: {exc}")
        return found

    @staticmethod
    def _index_not_found(ids: List[Any]) -> set:
        not_found = set()
        for raw in ids:
            try:
                not_found.add(canonical_entity_id(raw))
            except ValidationError:
                logger.warning(f"忽略无法识别的 notFound CUI: {raw}")
        return not_found
