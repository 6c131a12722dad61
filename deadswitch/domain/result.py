"""
Result type for domain operations.

Expected business outcomes (a rejected transition, a version conflict, a
missing row) are returned as ``Err`` rather than raised, so callers branch on
them explicitly. Only unexpected infrastructure failures raise.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T = None  # type: ignore[assignment]

    @property
    def is_ok(self) -> bool:
        return True

    @property
    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def is_ok(self) -> bool:
        return False

    @property
    def is_err(self) -> bool:
        return True

    def unwrap(self):
        raise ValueError(f"Attempted to unwrap an Err: {self.error}")


Result = Ok[T] | Err[E]
