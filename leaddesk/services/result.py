from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorCode(str, Enum):
    EMPTY_MESSAGE = "empty_message"
    BUSY = "busy"
    NO_CONVERSATION = "no_conversation"
    SEND_FAILED = "send_failed"
    AI_REPLY_FAILED = "ai_reply_failed"
    VOICE_FAILED = "voice_failed"
    UPLOAD_FAILED = "upload_failed"
    BOOKING_FAILED = "booking_failed"
    INVALID_INDEX = "invalid_index"


@dataclass
class Result(Generic[T]):
    """Outcome of a controller action; failures carry a domain error code."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T = None) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: Union[ErrorCode, str] = "unknown") -> "Result[T]":
        if isinstance(code, ErrorCode):
            code = code.value
        return Result(ok=False, error=error, error_code=code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
