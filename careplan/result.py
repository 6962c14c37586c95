"""
Outcome of a storage write whose failure the caller may want to inspect
rather than catch.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

ValueT = TypeVar("ValueT")
ErrorT = TypeVar("ErrorT", bound=BaseException)


@dataclass(frozen=True)
class Result(Generic[ValueT, ErrorT]):
    """Either a value or the error that prevented it."""

    value: ValueT | None = None
    error: ErrorT | None = None

    @classmethod
    def ok(cls, value: ValueT | None = None) -> "Result[ValueT, ErrorT]":
        return cls(value=value)

    @classmethod
    def err(cls, error: ErrorT) -> "Result[ValueT, ErrorT]":
        return cls(error=error)

    def is_ok(self) -> bool:
        return self.error is None

    def is_err(self) -> bool:
        return self.error is not None

    def unwrap(self) -> ValueT | None:
        """Return the value, or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value
