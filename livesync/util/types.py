from dataclasses import dataclass
from typing import Generic, TypeVar, Optional, Dict, Any

T = TypeVar("T")

@dataclass
class ErrorInfo:
    code: str         # e.g., "connection.auth_failed", "replay.request_failed"
    message: str
    detail: Optional[Dict[str, Any]] = None

@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, code: str, message: str, **detail: Any) -> "Result[T]":
        return cls(ok=False, error=ErrorInfo(code, message, detail or None))
