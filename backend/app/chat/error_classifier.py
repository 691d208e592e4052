"""
上游失败分类。

把异构的异常（UpstreamStreamError / 超时 / httpx 网络错误 / 其他）先投影成
ErrorView(status_code, message, name)，再按固定优先级的规则表归类。
多个启发式可能同时命中，规则顺序不可调整。

分类是纯函数：同一个异常分类两次得到相等的结果。
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import httpx

from app.services.credit_ledger import INSUFFICIENT_BALANCE_MARKER
from app.upstream import UpstreamStreamError

DEFAULT_STATUS_CODE = 500


class ErrorType(str, Enum):
    RATE_LIMIT = "RATE_LIMIT"
    CONTENT_POLICY = "CONTENT_POLICY"
    UNAVAILABLE = "UNAVAILABLE"
    MISCONFIGURED = "MISCONFIGURED"
    TIMEOUT = "TIMEOUT"
    NETWORK = "NETWORK"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    EXTERNAL_BILLING = "EXTERNAL_BILLING"
    UNKNOWN = "UNKNOWN"


USER_MESSAGES: dict[ErrorType, str] = {
    ErrorType.RATE_LIMIT: "该模型当前请求量过大被限流，正在自动尝试其他模型。",
    ErrorType.CONTENT_POLICY: "请求可能违反了模型的内容政策，请调整措辞或更换模型后重试。",
    ErrorType.UNAVAILABLE: "该模型暂时不可用，正在尝试为你切换到备用模型。",
    ErrorType.MISCONFIGURED: "服务端配置异常，请联系管理员检查上游 API Key 配置。",
    ErrorType.TIMEOUT: "请求超时，模型可能负载过高，将尝试其他模型。",
    ErrorType.NETWORK: "网络连接异常，请检查网络后重试。",
    ErrorType.INSUFFICIENT_BALANCE: "积分余额不足，无法完成本次请求。额度将在下个周期开始时重置。",
    ErrorType.EXTERNAL_BILLING: "上游 AI 服务账户计费异常，请联系管理员为服务账户充值。",
    ErrorType.UNKNOWN: "发生未知错误，正在尝试使用其他模型。",
}

FALLBACK_TYPES = frozenset(
    {ErrorType.RATE_LIMIT, ErrorType.UNAVAILABLE, ErrorType.TIMEOUT, ErrorType.UNKNOWN}
)
TERMINAL_TYPES = frozenset(
    {ErrorType.MISCONFIGURED, ErrorType.CONTENT_POLICY, ErrorType.INSUFFICIENT_BALANCE}
)

TIMEOUT_NAMES = frozenset({"AbortError", "TimeoutError"})
NETWORK_NAMES = frozenset({"NetworkError"})


@dataclass(frozen=True)
class ErrorView:
    status_code: int
    message: str
    name: str = ""

    @property
    def lowered(self) -> str:
        return self.message.lower()


@dataclass(frozen=True)
class ClassifiedError:
    type: ErrorType
    status_code: int
    original_message: str
    user_message: str
    retryable: bool
    technical_details: str | None = None


def error_view(exc: BaseException) -> ErrorView:
    """把任意异常投影成分类器使用的结构化视图。"""
    if isinstance(exc, UpstreamStreamError):
        status = exc.status_code if exc.status_code is not None else DEFAULT_STATUS_CODE
        return ErrorView(status, exc.text or str(exc), type(exc).__name__)
    if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
        return ErrorView(DEFAULT_STATUS_CODE, str(exc) or "request timeout", "TimeoutError")
    if isinstance(exc, httpx.TransportError):
        # 没有 HTTP 响应：状态码记为 0，交给网络规则处理
        return ErrorView(0, str(exc) or "network connection failed", "NetworkError")
    if isinstance(exc, httpx.HTTPStatusError):
        return ErrorView(exc.response.status_code, str(exc), type(exc).__name__)
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if not isinstance(status, int):
        status = DEFAULT_STATUS_CODE
    return ErrorView(status, str(exc) or type(exc).__name__, type(exc).__name__)


def _make(
    error_type: ErrorType,
    status_code: int,
    view: ErrorView,
    *,
    retryable: bool,
    technical_details: str,
) -> ClassifiedError:
    return ClassifiedError(
        type=error_type,
        status_code=status_code,
        original_message=view.message,
        user_message=USER_MESSAGES[error_type],
        retryable=retryable,
        technical_details=technical_details,
    )


def _rate_limit(view: ErrorView) -> ClassifiedError | None:
    if view.status_code == 429 or "rate limit" in view.lowered:
        return _make(
            ErrorType.RATE_LIMIT,
            429,
            view,
            retryable=True,
            technical_details="Upstream rate limit exceeded for this model",
        )
    return None


def _not_found(view: ErrorView) -> ClassifiedError | None:
    if view.status_code != 404:
        return None
    if any(term in view.lowered for term in ("policy", "content", "moderation")):
        return _make(
            ErrorType.CONTENT_POLICY,
            404,
            view,
            retryable=False,
            technical_details="Content may violate model provider policy",
        )
    return _make(
        ErrorType.UNAVAILABLE,
        404,
        view,
        retryable=True,
        technical_details="Model not found or temporarily disabled",
    )


def _auth(view: ErrorView) -> ClassifiedError | None:
    if view.status_code in (401, 403) or any(
        term in view.lowered for term in ("unauthorized", "forbidden", "api key")
    ):
        return _make(
            ErrorType.MISCONFIGURED,
            view.status_code,
            view,
            retryable=False,
            technical_details="Upstream authentication failed, check OPENROUTER_API_KEY",
        )
    return None


def _timeout(view: ErrorView) -> ClassifiedError | None:
    if view.status_code == 408 or view.name in TIMEOUT_NAMES or "timeout" in view.lowered:
        return _make(
            ErrorType.TIMEOUT,
            408,
            view,
            retryable=True,
            technical_details="Request exceeded the streaming time limit",
        )
    return None


def _payment_required(view: ErrorView) -> ClassifiedError | None:
    if view.status_code != 402:
        return None
    external = any(term in view.lowered for term in ("openrouter", "credit", "billing", "payment"))
    if external or INSUFFICIENT_BALANCE_MARKER not in view.message:
        return _make(
            ErrorType.EXTERNAL_BILLING,
            402,
            view,
            retryable=False,
            technical_details="Upstream account has insufficient credits",
        )
    return _make(
        ErrorType.INSUFFICIENT_BALANCE,
        402,
        view,
        retryable=False,
        technical_details="User credit balance too low",
    )


def _legacy_insufficient(view: ErrorView) -> ClassifiedError | None:
    if "insufficient tokens" in view.lowered:
        return _make(
            ErrorType.INSUFFICIENT_BALANCE,
            402,
            view,
            retryable=False,
            technical_details="User credit balance too low",
        )
    return None


def _server_error(view: ErrorView) -> ClassifiedError | None:
    if view.status_code >= 500 or "internal server" in view.lowered:
        return _make(
            ErrorType.UNAVAILABLE,
            view.status_code,
            view,
            retryable=True,
            technical_details="Model provider internal error",
        )
    return None


def _network(view: ErrorView) -> ClassifiedError | None:
    if view.name in NETWORK_NAMES or any(
        term in view.lowered for term in ("network", "connection", "econnrefused")
    ):
        return _make(
            ErrorType.NETWORK,
            0,
            view,
            retryable=True,
            technical_details="Network connectivity issue",
        )
    return None


Rule = Callable[[ErrorView], ClassifiedError | None]

CLASSIFICATION_RULES: tuple[Rule, ...] = (
    _rate_limit,
    _not_found,
    _auth,
    _timeout,
    _payment_required,
    _legacy_insufficient,
    _server_error,
    _network,
)


def classify_view(view: ErrorView) -> ClassifiedError:
    for rule in CLASSIFICATION_RULES:
        classified = rule(view)
        if classified is not None:
            return classified
    return _make(
        ErrorType.UNKNOWN,
        view.status_code,
        view,
        retryable=True,
        technical_details=view.message,
    )


def classify(exc: BaseException | ErrorView) -> ClassifiedError:
    view = exc if isinstance(exc, ErrorView) else error_view(exc)
    return classify_view(view)


def should_fallback(classified: ClassifiedError) -> bool:
    return classified.type in FALLBACK_TYPES and classified.retryable


def is_terminal(classified: ClassifiedError) -> bool:
    return classified.type in TERMINAL_TYPES


__all__ = [
    "CLASSIFICATION_RULES",
    "ClassifiedError",
    "ErrorType",
    "ErrorView",
    "USER_MESSAGES",
    "classify",
    "classify_view",
    "error_view",
    "is_terminal",
    "should_fallback",
]
