"""
调度时钟
合并器的收集窗口、分发间隔以及回填节流都通过 Clock 完成，测试时可替换为虚拟时钟
"""

import asyncio
import time
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock:
    """基于事件循环的真实时钟（单位：秒）"""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(max(0.0, delay), callback)


_default_clock = Clock()


def get_default_clock() -> Clock:
    return _default_clock
