from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from repchat.logging_config import get_logger

T = TypeVar("T")

logger = get_logger("result")


@dataclass(frozen=True)
class BestEffort(Generic[T]):
    """Outcome of a side effect whose failure must not fail the primary operation.

    Primary failures raise ServiceError; this type has no unwrap and no raise,
    so a swallowed failure can be inspected and reported but never mistaken
    for the primary outcome nor re-raised by accident.
    """

    attempted: bool
    succeeded: bool
    value: Optional[T] = None
    error: Optional[str] = None

    @staticmethod
    def done(value: T) -> "BestEffort[T]":
        return BestEffort(attempted=True, succeeded=True, value=value)

    @staticmethod
    def failed(error: str) -> "BestEffort[T]":
        return BestEffort(attempted=True, succeeded=False, error=error)

    @staticmethod
    def skipped(value: Optional[T] = None) -> "BestEffort[T]":
        return BestEffort(attempted=False, succeeded=True, value=value)

    @staticmethod
    def run(label: str, fn: Callable[[], T], context: Optional[dict] = None) -> "BestEffort[T]":
        """Call fn, logging and swallowing any exception it raises."""
        try:
            return BestEffort.done(fn())
        except Exception as e:
            logger.warning(f"{label} failed: {e}", extra={"context": {**(context or {}), "error": str(e)}})
            return BestEffort.failed(str(e))
