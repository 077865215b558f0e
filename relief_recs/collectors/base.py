"""
Call result wrapper for batch provider calls.

Batch stages (candidate generation, enrichment) issue many directory calls at
once. Each call is captured into a CallResult so one failing call never
aborts the batch; callers then partition successes from failures explicitly.
"""

from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CallResult(Generic[T]):
    """Result of one provider call: Ok(value) or Err(error)."""

    success: bool
    value: Optional[T] = None
    error: Optional[Exception] = None
    label: str = ""  # Query that produced this result (e.g., "search:earthquake")

    @classmethod
    def ok(cls, value: T, label: str = "") -> "CallResult[T]":
        return cls(success=True, value=value, label=label)

    @classmethod
    def err(cls, error: Exception, label: str = "") -> "CallResult[T]":
        return cls(success=False, error=error, label=label)

    @classmethod
    def capture(cls, fn: Callable[..., T], *args, label: str = "", **kwargs) -> "CallResult[T]":
        """
        Run fn and capture its outcome instead of raising.

        Args:
            fn: Provider call (e.g., client.search)
            *args: Positional arguments for fn
            label: Query label carried into the result
            **kwargs: Keyword arguments for fn

        Returns:
            CallResult.ok with the return value, or CallResult.err with the exception
        """
        try:
            return cls.ok(fn(*args, **kwargs), label=label)
        except Exception as e:
            return cls.err(e, label=label)

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return f"{type(self.error).__name__}: {self.error}"

    def unwrap(self) -> T:
        """Value of an Ok result; re-raises the captured error of an Err."""
        if not self.success:
            raise self.error
        return self.value


def partition(results: list[CallResult]) -> tuple[list[CallResult], list[CallResult]]:
    """Split results into (successes, failures), each in input order."""
    successes = [r for r in results if r.success]
    failures = [r for r in results if not r.success]
    return successes, failures
