"""滑动窗口限流。

admit() 只做判断不计数；调用方在放行后显式调用 record()，
这样被拒绝的请求不会占用窗口配额。实例按作用域创建，不在进程内共享。
"""

import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional


@dataclass(frozen=True)
class Admission:
    allowed: bool
    retry_after_seconds: Optional[int] = None


class SlidingWindowRateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._timestamps: Deque[float] = deque()

    def admit(self) -> Admission:
        now = self._clock()
        self._prune(now)
        if len(self._timestamps) >= self.max_requests:
            oldest = self._timestamps[0]
            wait = self.window_seconds - (now - oldest)
            return Admission(allowed=False, retry_after_seconds=max(1, math.ceil(wait)))
        return Admission(allowed=True)

    def record(self) -> None:
        self._timestamps.append(self._clock())

    def remaining(self) -> int:
        self._prune(self._clock())
        return max(0, self.max_requests - len(self._timestamps))

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()
