"""
Cooldown gate for rate-limited collaborators.

The shipping-quote service may be called at most once per cooldown window.
Calls made early are rejected locally with the remaining wait instead of
being forwarded.
"""

import threading
import time
from collections.abc import Callable
from typing import Any, TypeVar

from inventory_pipeline.core.exceptions import CooldownActiveError
from inventory_pipeline.observability.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_COOLDOWN_SECONDS = 300.0


def format_remaining(seconds: float) -> str:
    """
    Examples:
        >>> format_remaining(125)
        '2m 5s'
        >>> format_remaining(9.2)
        '10s'
    """
    total = max(0, int(-(-seconds // 1)))
    minutes, rest = divmod(total, 60)
    if minutes:
        return f"{minutes}m {rest}s"
    return f"{rest}s"


class CooldownGate:
    """
    One call per window; the window starts when a call succeeds.

    Thread-safe. A failed call does not start the window, so the caller can
    retry immediately.

    Args:
        cooldown_seconds: Window length (default five minutes)
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        name: str = "shipping_quote",
    ):
        if cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be non-negative")
        self.cooldown_seconds = cooldown_seconds
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._last_call: float | None = None
        self._in_flight = False

    def remaining_seconds(self) -> float:
        with self._lock:
            return self._remaining_locked()

    def _remaining_locked(self) -> float:
        if self._last_call is None:
            return 0.0
        elapsed = self._clock() - self._last_call
        return max(0.0, self.cooldown_seconds - elapsed)

    def is_allowed(self) -> bool:
        return self.remaining_seconds() == 0.0

    def check(self) -> None:
        """Raise CooldownActiveError when called inside the window."""
        remaining = self.remaining_seconds()
        if remaining > 0:
            raise CooldownActiveError(remaining)

    def mark_called(self) -> None:
        with self._lock:
            self._last_call = self._clock()

    def reset(self) -> None:
        with self._lock:
            self._last_call = None

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Forward a call when the window is open.

        Raises:
            CooldownActiveError: Inside the window, or while another call is in flight
        """
        with self._lock:
            remaining = self._remaining_locked()
            if remaining > 0 or self._in_flight:
                logger.info(
                    f"{self.name} request rejected, next allowed in {format_remaining(remaining)}",
                    extra={"gate": self.name, "remaining_seconds": round(remaining, 1)},
                )
                raise CooldownActiveError(remaining)
            self._in_flight = True

        try:
            result = func(*args, **kwargs)
        finally:
            with self._lock:
                self._in_flight = False

        self.mark_called()
        return result


class ShippingQuoteClient:
    """
    Wraps a carrier-rate lookup with the cooldown contract.

    The lookup itself is supplied by the caller; this class only decides
    whether a request may be forwarded.
    """

    def __init__(
        self,
        fetch_quote: Callable[..., Any],
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        gate: CooldownGate | None = None,
    ):
        self._fetch_quote = fetch_quote
        self.gate = gate or CooldownGate(cooldown_seconds, name="shipping_quote")

    def request_quote(self, *args: Any, **kwargs: Any) -> Any:
        return self.gate.call(self._fetch_quote, *args, **kwargs)

    def seconds_until_next_quote(self) -> float:
        return self.gate.remaining_seconds()
