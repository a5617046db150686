"""Stage results for stages that recover from their own failures."""
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from threadreel.errors import ThreadReelError

T = TypeVar("T")


@dataclass(frozen=True)
class StageResult(Generic[T]):
    """The value a stage produced, plus the error it absorbed (if any).

    A stage that returns a ``StageResult`` always has a usable ``value``;
    ``error`` records why the value is a fallback.
    """

    value: T
    error: Optional[ThreadReelError] = None

    @property
    def degraded(self) -> bool:
        return self.error is not None

    @classmethod
    def ok(cls, value: T) -> "StageResult[T]":
        return cls(value=value)

    @classmethod
    def recovered(cls, value: T, error: ThreadReelError) -> "StageResult[T]":
        return cls(value=value, error=error)
