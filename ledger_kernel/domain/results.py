"""
OperationResult -- explicit success/failure values for the public API.

Kernel services raise typed ``LedgerError`` subclasses.  The facade catches
exactly those, rolls back, and returns ``OperationResult.failure(error)``;
callers branch on ``is_success`` / ``error_code`` instead of catching.
Infrastructure exceptions are not converted.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from ledger_kernel.exceptions import LedgerError

T = TypeVar("T")


class OperationStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    status: OperationStatus
    value: T | None = None
    error: LedgerError | None = None

    @property
    def is_success(self) -> bool:
        return self.status == OperationStatus.SUCCESS

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None

    @property
    def message(self) -> str | None:
        return str(self.error) if self.error is not None else None

    def unwrap(self) -> T:
        """Return the value, re-raising the captured error on failure."""
        if self.error is not None:
            raise self.error
        return self.value

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(status=OperationStatus.SUCCESS, value=value)

    @classmethod
    def failure(cls, error: LedgerError) -> "OperationResult[T]":
        return cls(status=OperationStatus.FAILED, error=error)
