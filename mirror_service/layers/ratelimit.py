"""
限流层
按客户端（IP）固定窗口计数：
  - 窗口过期后整体替换为 {count: 1, window_end: now + window}
  - 计数超过上限即拒绝，并给出 Retry-After
窗口存储可选进程内（定期清理）或 Redis（多进程共享）
"""

import asyncio
import logging
import math
import time
from typing import Callable, Dict, Optional, Protocol

from pydantic import BaseModel
from redis.asyncio import Redis

from mirror_service.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


def _epoch_ms() -> float:
    return time.time() * 1000


class RateWindow(BaseModel):
    count: int
    window_end: float  # epoch 毫秒


class RateDecision(BaseModel):
    allowed: bool
    limit: int
    remaining: int
    reset_epoch_seconds: int
    retry_after_seconds: Optional[int] = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_epoch_seconds),
        }
        if self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


class WindowStore(Protocol):
    async def hit(self, key: str, now_ms: float, window_ms: int) -> RateWindow: ...

    def sweep(self, now_ms: float, window_ms: int) -> int: ...

    def __len__(self) -> int: ...


# ── 窗口存储 ──────────────────────────────────────────────

class MemoryWindowStore:
    """进程内窗口表；单线程事件循环下 hit 内部没有 await，无需加锁"""

    def __init__(self):
        self._windows: Dict[str, RateWindow] = {}

    async def hit(self, key: str, now_ms: float, window_ms: int) -> RateWindow:
        window = self._windows.get(key)
        if window is None or now_ms > window.window_end:
            window = RateWindow(count=1, window_end=now_ms + window_ms)
            self._windows[key] = window
        else:
            window.count += 1
        return window

    def sweep(self, now_ms: float, window_ms: int) -> int:
        expired = [k for k, w in self._windows.items() if now_ms > w.window_end + window_ms]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


class RedisWindowStore:
    """Redis 窗口：SET NX PX 建窗 + INCR 计数 + PTTL 取剩余时间，在同一事务中执行"""

    def __init__(self, redis: Redis, prefix: str = "ratelimit:"):
        self._redis = redis
        self._prefix = prefix

    async def hit(self, key: str, now_ms: float, window_ms: int) -> RateWindow:
        redis_key = f"{self._prefix}{key}"
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(redis_key, 0, px=window_ms, nx=True)
            pipe.incr(redis_key)
            pipe.pttl(redis_key)
            _, count, ttl_ms = await pipe.execute()
        if ttl_ms is None or ttl_ms < 0:
            ttl_ms = window_ms
        return RateWindow(count=int(count), window_end=now_ms + ttl_ms)

    def sweep(self, now_ms: float, window_ms: int) -> int:
        # 键随 PX 自动过期
        return 0

    def __len__(self) -> int:
        return 0


# ── 限流器 ────────────────────────────────────────────────

class RateLimiter:
    """固定窗口限流器"""

    def __init__(
        self,
        max_requests: int,
        window_ms: int,
        store: Optional[WindowStore] = None,
        now_ms: Callable[[], float] = _epoch_ms,
    ):
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._store = store if store is not None else MemoryWindowStore()
        self._now_ms = now_ms
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def tracked_clients(self) -> int:
        return len(self._store)

    @property
    def backend(self) -> str:
        return "redis" if isinstance(self._store, RedisWindowStore) else "memory"

    async def check(self, client_key: str) -> RateDecision:
        now = self._now_ms()
        window = await self._store.hit(client_key, now, self.window_ms)

        decision = RateDecision(
            allowed=window.count <= self.max_requests,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - window.count),
            reset_epoch_seconds=math.ceil(window.window_end / 1000),
        )
        if not decision.allowed:
            decision.retry_after_seconds = max(1, math.ceil((window.window_end - now) / 1000))
        return decision

    async def admit(self, client_key: str) -> RateDecision:
        """放行时返回限流信息，超限时抛出 RateLimitExceeded"""
        decision = await self.check(client_key)
        if not decision.allowed:
            raise RateLimitExceeded(decision)
        return decision

    def sweep(self) -> int:
        removed = self._store.sweep(self._now_ms(), self.window_ms)
        if removed:
            logger.debug(f"清理过期限流窗口 {removed} 个")
        return removed

    # ── 定期清理 ──────────────────────────────────────────

    def start_sweeper(self, interval_seconds: float) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop(interval_seconds))

    async def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()
