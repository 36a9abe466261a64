"""Result 型別與錯誤階層。

治理服務的公開操作一律回傳 ``Ok`` / ``Err``，而不是丟出例外：
- 業務拒絕（找不到、無權限、投票已截止）以 ``Err`` 回傳並記錄為 warning；
- 資料庫或其他非預期例外轉成基礎設施錯誤並記錄為 error，原例外保留於 cause。
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Mapping,
    ParamSpec,
    TypeVar,
    Union,
    cast,
)

import structlog

LOGGER = structlog.get_logger(__name__)

T = TypeVar("T")
E = TypeVar("E")
P = ParamSpec("P")

_REDACTED = "***redacted***"
_SENSITIVE_FRAGMENTS: tuple[str, ...] = (
    "password",
    "passwd",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "dsn",
)

_ERROR_COUNTERS: Counter[str] = Counter()


def _is_sensitive(key: object) -> bool:
    lowered = str(key).lower()
    return any(fragment in lowered for fragment in _SENSITIVE_FRAGMENTS)


def _mask(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            k: _REDACTED if _is_sensitive(k) else _mask(v)
            for k, v in cast(Mapping[str, Any], value).items()
        }
    return value


def _record_error(error: "Error") -> None:
    _ERROR_COUNTERS[type(error).__name__] += 1
    _ERROR_COUNTERS["__total__"] += 1


def get_error_metrics() -> dict[str, int]:
    """依錯誤型別名稱分組的錯誤統計，另含 ``__total__``。"""
    return dict(_ERROR_COUNTERS)


def reset_error_metrics() -> None:
    _ERROR_COUNTERS.clear()


class Error(Exception):
    """``Err`` 內攜帶的基礎錯誤：訊息、結構化 context 與可選的 cause。"""

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context or {})
        self.cause: BaseException | None = cause

    def __str__(self) -> str:  # pragma: no cover - 委派給 message
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "context": dict(self.context),
            "cause": repr(self.cause) if self.cause is not None else None,
        }

    def log_safe_context(self) -> dict[str, Any]:
        """回傳遮罩敏感 key（含巢狀 mapping）後可安全寫入日誌的 context。"""
        return cast(dict[str, Any], _mask(self.context))


class DatabaseError(Error):
    """治理資料庫的查詢、約束或驅動層錯誤。"""


class ValidationError(Error):
    """呼叫端輸入在進入資料庫前即被拒絕。"""


class PermissionDeniedError(Error):
    """操作者無權執行此操作。"""


class SystemError(Error):
    """系統層級錯誤（例如資料庫無法連線或連線池耗盡）。"""


_INFRASTRUCTURE_ERRORS: tuple[type[Error], ...] = (DatabaseError, SystemError)


@dataclass(slots=True)
class Ok(Generic[T, E]):
    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_err(self) -> E:
        raise RuntimeError("Called unwrap_err() on Ok value.")


@dataclass(slots=True)
class Err(Generic[T, E]):
    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        raise RuntimeError(f"Called unwrap() on Err value: {self.error!r}")

    def unwrap_err(self) -> E:
        return self.error


Result = Union[Ok[T, E], Err[T, E]]


def _select_error_type(
    exc: Exception,
    default_error_type: type[Error],
    exception_map: Mapping[type[Exception], type[Error]] | None,
) -> type[Error]:
    for exc_type, err_type in (exception_map or {}).items():
        if isinstance(exc, exc_type):
            return err_type
    return default_error_type


def _log_err(operation: str, error: Error) -> None:
    _record_error(error)
    fields: dict[str, Any] = {
        "operation": operation,
        "error_type": type(error).__name__,
        "error": error.message,
        "context": error.log_safe_context(),
    }
    code = getattr(error, "error_code", None)
    if code is not None:
        fields["error_code"] = getattr(code, "value", code)
    if isinstance(error, _INFRASTRUCTURE_ERRORS) or error.cause is not None:
        LOGGER.error("result.operation.failed", **fields)
    else:
        LOGGER.warning("result.operation.rejected", **fields)


def async_returns_result(
    error_type: type[Error] = Error,
    *,
    exception_map: Mapping[type[Exception], type[Error]] | None = None,
) -> Callable[[Callable[P, Awaitable[Any]]], Callable[P, Awaitable[Result[Any, Error]]]]:
    """把非同步操作包裝成一律回傳 Result。

    - 回傳一般值時包成 ``Ok``；已是 ``Ok`` / ``Err`` 時原樣透傳。
    - 丟出 ``Error`` 子類別時原樣放入 ``Err``。
    - 其他例外依 ``exception_map``（依序比對 isinstance）或 ``error_type`` 轉換，
      原例外保留於 cause。
    所有 ``Err`` 都會計入錯誤統計並寫入日誌。
    """

    def decorator(
        func: Callable[P, Awaitable[Any]],
    ) -> Callable[P, Awaitable[Result[Any, Error]]]:
        operation = getattr(func, "__qualname__", getattr(func, "__name__", "<unknown>"))

        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result[Any, Error]:
            try:
                value = await func(*args, **kwargs)
            except Error as exc:
                _log_err(operation, exc)
                return Err(exc)
            except Exception as exc:
                selected = _select_error_type(exc, error_type, exception_map)
                error_obj = selected(str(exc) or type(exc).__name__, cause=exc)
                _log_err(operation, error_obj)
                return Err(error_obj)

            if isinstance(value, Err):
                if isinstance(value.error, Error):
                    _log_err(operation, value.error)
                return value
            if isinstance(value, Ok):
                return value
            return Ok(value)

        wrapper.__name__ = getattr(func, "__name__", "wrapper")
        wrapper.__qualname__ = operation
        wrapper.__doc__ = func.__doc__
        return wrapper

    return decorator


__all__ = [
    "DatabaseError",
    "Err",
    "Error",
    "Ok",
    "PermissionDeniedError",
    "Result",
    "SystemError",
    "ValidationError",
    "async_returns_result",
    "get_error_metrics",
    "reset_error_metrics",
]
