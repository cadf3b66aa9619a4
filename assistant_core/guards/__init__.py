"""回合准入控制：本地滑动窗口限流与后端套餐配额。"""

from assistant_core.guards.quota import QuotaGate, StaticUsageBackend, UsageBackend
from assistant_core.guards.rate_limiter import Admission, SlidingWindowRateLimiter

__all__ = ["Admission", "QuotaGate", "SlidingWindowRateLimiter", "StaticUsageBackend", "UsageBackend"]
