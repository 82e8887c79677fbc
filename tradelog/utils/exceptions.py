from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    TRANSPORT = "transport"
    STORAGE = "storage"
    SYNC = "sync"
    SYSTEM = "system"


class TradeLogError(Exception):
    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message
        self.category = category
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.category.value}] {self.message}"]
        if self.status_code:
            parts.append(f"(HTTP {self.status_code})")
        if self.error_code:
            parts.append(f"Code: {self.error_code}")
        return " | ".join(parts)


class ValidationError(TradeLogError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.VALIDATION)


class TransportFailure(TradeLogError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message, ErrorCategory.TRANSPORT, status_code)


class MalformedPersistedData(TradeLogError):
    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorCategory.STORAGE)


class RemoteStoreError(TradeLogError):
    def __init__(self, message: str, status_code: Optional[int] = None, error_code: Optional[str] = None) -> None:
        super().__init__(message, ErrorCategory.SYNC, status_code, error_code)
