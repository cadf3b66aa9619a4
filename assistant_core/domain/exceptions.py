"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，便于在调用方统一捕获。
助手回合的终止类错误（限流、配额、审核、传输、迭代超限）再细分为
AssistantError 子类，每个子类带有一个 ErrorKind，Agent Loop 据此生成
唯一的一条用户可见 assistant 消息。

UnknownTool / ToolExecutionFailed 不会以异常形式进入循环，它们只作为
ToolOutcome 的 error_kind 出现，由模型在同一回合内自行处理。
"""

from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    """错误分类（与 assistant 消息 metadata["error"]["kind"] 一一对应）。"""

    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    QUOTA_EXCEEDED = "quota_exceeded"
    MODERATION_REJECTED = "moderation_rejected"
    UNKNOWN_TOOL = "unknown_tool"
    TOOL_EXECUTION_FAILED = "tool_execution_failed"
    TOO_MANY_ITERATIONS = "too_many_iterations"
    TRANSPORT = "transport"


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class AssistantError(BusinessError):
    """会终止当前回合的错误基类。"""

    kind: ErrorKind = ErrorKind.TRANSPORT

    def metadata(self) -> dict:
        """写入 assistant 消息 metadata 的结构化错误描述。"""

        return {"kind": self.kind.value, "code": self.code, **self.extra}


class RateLimitExceeded(AssistantError):
    """本地滑动窗口限流，请求不会到达模型。"""

    kind = ErrorKind.RATE_LIMIT_EXCEEDED

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            code="RATE_LIMIT_EXCEEDED",
            message=(
                f"Rate limit exceeded. Please wait {retry_after_seconds} seconds "
                "before sending another message."
            ),
            http_status=429,
            retry_after_seconds=retry_after_seconds,
        )


class QuotaExceeded(AssistantError):
    """套餐用量耗尽（由后端权威判定）。"""

    kind = ErrorKind.QUOTA_EXCEEDED

    def __init__(self, usage: int, limit: int, plan: str):
        self.usage = usage
        self.limit = limit
        self.plan = plan
        super().__init__(
            code="QUOTA_EXCEEDED",
            message=(
                f"AI usage limit reached. You've used {usage}/{limit} requests "
                f"on the {plan} plan."
            ),
            http_status=402,
            usage=usage,
            limit=limit,
            plan=plan,
        )


class ModerationRejected(AssistantError):
    """输入或输出被内容审核拦截。"""

    kind = ErrorKind.MODERATION_REJECTED

    def __init__(self, direction: str, categories: Optional[List[str]] = None):
        self.direction = direction
        self.categories = list(categories or [])
        if direction == "input":
            message = "Prompt blocked by safety filters."
        else:
            message = "AI response blocked by safety filters."
        super().__init__(
            code="MODERATION_REJECTED",
            message=message,
            http_status=400,
            direction=direction,
            categories=self.categories,
        )


class TooManyIterations(AssistantError):
    """工具调用往返次数超过上限。"""

    kind = ErrorKind.TOO_MANY_ITERATIONS

    def __init__(self, max_iterations: int):
        self.max_iterations = max_iterations
        super().__init__(
            code="TOO_MANY_ITERATIONS",
            message=f"Too many tool iterations (limit {max_iterations}); stopping this request.",
            http_status=500,
            max_iterations=max_iterations,
        )


class TransportError(AssistantError):
    """模型服务或网络故障。"""

    kind = ErrorKind.TRANSPORT


class NetworkError(TransportError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(TransportError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class ProviderRateLimitError(TransportError):
    """Provider 侧返回 429，与本地 RateLimitExceeded 区分。"""


class ConfigurationError(TransportError):
    """缺少 API Key 等配置导致无法发起请求。"""


def classify_error(exc: BaseException) -> ErrorKind:
    """把任意异常归类到终止错误类型，未知异常视为 transport。"""

    if isinstance(exc, AssistantError):
        return exc.kind
    return ErrorKind.TRANSPORT
