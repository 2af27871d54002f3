"""Per-request deadlines with cooperative cancellation."""

import threading
import time

from trustcore.errors import DeadlineExceeded

DEFAULT_DEADLINE_SECONDS = 60.0


class Deadline:
    """A monotonic point in time after which outbound work must stop.

    Long-running calls poll ``remaining()`` and ``cancelled``; another thread
    may call ``cancel()`` to stop the request early.
    """

    def __init__(self, seconds: float = DEFAULT_DEADLINE_SECONDS) -> None:
        self.seconds = seconds
        self._expires_at = time.monotonic() + seconds
        self._cancelled = threading.Event()

    @classmethod
    def coerce(cls, value: "Deadline | float | None", default: float) -> "Deadline":
        if isinstance(value, Deadline):
            return value
        return cls(default if value is None else value)

    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self._cancelled.is_set() or time.monotonic() >= self._expires_at

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def timeout(self, cap: float | None = None) -> float:
        """Seconds left, optionally capped, for handing to a blocking call."""
        left = self.remaining()
        return left if cap is None else min(left, cap)

    def check(self, error: type[DeadlineExceeded] = DeadlineExceeded, what: str = "request") -> None:
        if self._cancelled.is_set():
            raise error(f"{what} cancelled")
        if time.monotonic() >= self._expires_at:
            raise error(f"{what} exceeded its {self.seconds:g}s deadline")
