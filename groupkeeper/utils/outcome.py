"""
Result values for best-effort side effects (persistence writes, notifications).

A best-effort call never raises; it returns an Outcome that the caller
acknowledges, which logs a failure and lets the flow continue.
"""

from dataclasses import dataclass

from groupkeeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Outcome:
    operation: str
    ok: bool
    error: str | None = None
    skipped: bool = False

    @classmethod
    def success(cls, operation: str) -> "Outcome":
        return cls(operation=operation, ok=True)

    @classmethod
    def skip(cls, operation: str, reason: str) -> "Outcome":
        """Nothing to do (e.g. notifications not configured)."""
        return cls(operation=operation, ok=True, error=reason, skipped=True)

    @classmethod
    def failure(cls, operation: str, error: BaseException | str) -> "Outcome":
        message = error if isinstance(error, str) else f"{type(error).__name__}: {error}"
        return cls(operation=operation, ok=False, error=message)

    def acknowledge(self, **context) -> bool:
        """Log a failed outcome and discard it. Returns `ok`."""
        if not self.ok:
            logger.warning(
                "Best-effort operation failed",
                operation=self.operation,
                error=self.error,
                **context,
            )
        return self.ok
