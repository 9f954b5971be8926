"""Value-or-error container returned by the public stream and write contracts.

Streams never raise into their consumers: a failed fetch or write is delivered
as a failed result so the caller can decide how to present it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation: a value on success, an exception on failure."""

    value: T | None = None
    error: Exception | None = None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: Exception) -> Result[T]:
        return cls(error=error)

    @property
    def is_success(self) -> bool:
        return self.error is None

    def get_or_raise(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
