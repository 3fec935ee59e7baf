"""Request coordination – decides whether a new fetch should be issued.

The coordinator is advisory: it never holds entity data.  It tracks a
process-wide pending-request counter, a per-key throttle window, a
one-shot "skip next" flag and a consecutive-error backoff, and exposes a
keyed debounce for collapsing bursts of triggers into one fetch.

The backoff engages from the second consecutive failed request: further
non-forced requests are refused for ``base * 2 ** (errors - 1)`` seconds,
capped at ``max``.  A successful request or an elapsed block clears it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from mnno_school.coordination.rate_limit import Debouncer, RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_THROTTLE_SECONDS = 10.0
DEFAULT_DEBOUNCE_MS = 300
DEFAULT_ERROR_BACKOFF_SECONDS = 10.0
DEFAULT_ERROR_BACKOFF_MAX_SECONDS = 300.0
_GLOBAL_KEY = "*"


class RequestCoordinator:
    """Throttle / debounce gate consulted before every fetch."""

    def __init__(
        self,
        throttle_window_seconds: float = DEFAULT_THROTTLE_SECONDS,
        debounce_delay_ms: int = DEFAULT_DEBOUNCE_MS,
        clock: Callable[[], float] = time.monotonic,
        error_backoff_base_seconds: float = DEFAULT_ERROR_BACKOFF_SECONDS,
        error_backoff_max_seconds: float = DEFAULT_ERROR_BACKOFF_MAX_SECONDS,
    ) -> None:
        self._clock = clock
        self._throttle = RateLimiter(throttle_window_seconds, clock=clock)
        self._debouncer = Debouncer(debounce_delay_ms / 1000)
        self._pending = 0
        self._skip_next = False
        self._backoff_base = error_backoff_base_seconds
        self._backoff_max = error_backoff_max_seconds
        self._error_count = 0
        self._block_seconds = 0.0
        self._block_started = 0.0

    @property
    def throttle_window_seconds(self) -> float:
        return self._throttle.window_seconds

    @property
    def pending_count(self) -> int:
        return self._pending

    @property
    def consecutive_errors(self) -> int:
        return self._error_count

    def error_block_remaining(self) -> float:
        """Seconds left in the current error backoff; 0 when requests may proceed."""
        if not self._block_seconds:
            return 0.0
        remaining = self._block_seconds - (self._clock() - self._block_started)
        if remaining > 0:
            return remaining
        logger.info("Error backoff of %.0fs elapsed, resuming requests", self._block_seconds)
        self._clear_errors()
        return 0.0

    def _clear_errors(self) -> None:
        self._error_count = 0
        self._block_seconds = 0.0
        self._block_started = 0.0

    def should_make_request(
        self,
        *,
        force_refresh: bool = False,
        has_cached_data: bool = False,
        key: str | None = None,
    ) -> bool:
        """Return whether a fetch should proceed now.

        A ``False`` answer is not an error: the caller keeps using the data
        it already has.
        """
        if force_refresh:
            logger.debug("Forced refresh for %s, allowing request", key)
            return True

        remaining = self.error_block_remaining()
        if remaining:
            logger.debug(
                "Request for %s blocked after %d consecutive error(s), %.1fs left",
                key,
                self._error_count,
                remaining,
            )
            return False

        if self._skip_next:
            self._skip_next = False
            logger.debug("Skipping request for %s (skip flag set)", key)
            return False

        if self._pending > 0:
            logger.debug(
                "Request for %s blocked: %d request(s) already pending", key, self._pending
            )
            return False

        throttle_key = key or _GLOBAL_KEY
        if has_cached_data and not self._throttle.allows(throttle_key):
            elapsed = self._throttle.elapsed(throttle_key) or 0.0
            logger.debug(
                "Request for %s throttled: last one %.1fs ago (window %.1fs)",
                key,
                elapsed,
                self._throttle.window_seconds,
            )
            return False

        return True

    def start_request(self, key: str | None = None) -> None:
        self._pending += 1
        self._throttle.record(key or _GLOBAL_KEY)
        logger.debug("Request started for %s, %d pending", key, self._pending)

    def complete_request(self, key: str | None = None, *, error: bool = False) -> None:
        """Release a pending slot; *error* feeds the consecutive-error backoff."""
        self._release(key)
        if not error:
            self._clear_errors()
            return
        self._error_count += 1
        if self._error_count > 1:
            self._block_seconds = min(
                self._backoff_max, self._backoff_base * 2 ** (self._error_count - 1)
            )
            self._block_started = self._clock()
            logger.warning(
                "%d consecutive request errors, blocking requests for %.0fs",
                self._error_count,
                self._block_seconds,
            )

    def _release(self, key: str | None) -> None:
        self._pending = max(0, self._pending - 1)
        # The throttle window runs from the end of the last request.
        self._throttle.record(key or _GLOBAL_KEY)
        logger.debug("Request completed for %s, %d pending", key, self._pending)

    @contextmanager
    def request(self, key: str | None = None) -> Iterator[None]:
        """Bracket a fetch so ``complete_request`` runs even on failure.

        An exception counts towards the error backoff; cancellation does not.
        """
        self.start_request(key)
        try:
            yield
        except Exception:
            self.complete_request(key, error=True)
            raise
        except BaseException:
            self._release(key)
            raise
        self.complete_request(key)

    def skip_next_request(self) -> None:
        """Suppress the next non-forced request after a manually coordinated one."""
        self._skip_next = True

    def debounce(
        self,
        fn: Callable[..., Any],
        delay_ms: int | None = None,
        key: str = "default",
    ) -> Callable[..., None]:
        """Return *fn* wrapped so rapid calls on *key* collapse into one."""
        delay = None if delay_ms is None else delay_ms / 1000
        return self._debouncer.wrap(fn, key=key, delay_seconds=delay)

    def reset(self) -> None:
        """Forget pending requests and errors, and cancel every debounce timer."""
        self._pending = 0
        self._skip_next = False
        self._clear_errors()
        self._debouncer.cancel()
        logger.debug("Request coordinator reset")

    def stats(self) -> dict[str, Any]:
        return {
            "pending": self._pending,
            "throttleWindowSeconds": self._throttle.window_seconds,
            "trackedKeys": len(self._throttle),
            "skipNext": self._skip_next,
            "consecutiveErrors": self._error_count,
            "errorBlockSeconds": self._block_seconds,
        }
