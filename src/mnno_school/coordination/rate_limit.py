"""Keyed rate limiting primitives – fixed-window throttle and trailing debounce.

Both primitives are parameterized by key so a single instance can gate any
number of logical request streams.  They run on the asyncio event loop and
are free of UI concerns, so they can be exercised in isolation.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window gate: a key is allowed once per *window_seconds*.

    The limiter only remembers the last recorded timestamp per key; it does
    not decide on its own when a request happened, callers ``record()`` it.
    """

    def __init__(self, window_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._last: dict[str, float] = {}

    def elapsed(self, key: str) -> float | None:
        """Seconds since *key* was last recorded, or ``None`` if never."""
        last = self._last.get(key)
        if last is None:
            return None
        return self._clock() - last

    def allows(self, key: str) -> bool:
        elapsed = self.elapsed(key)
        return elapsed is None or elapsed >= self.window_seconds

    def record(self, key: str) -> None:
        self._last[key] = self._clock()

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._last.clear()
        else:
            self._last.pop(key, None)

    def __len__(self) -> int:
        return len(self._last)


class Debouncer:
    """Collapse bursts of keyed calls into one trailing invocation.

    Each ``call()`` for a key re-arms that key's timer; the callable runs
    once, with the arguments of the last call, after *delay_seconds* of
    silence.  Coroutine functions are scheduled as tasks on the running loop.
    """

    def __init__(self, delay_seconds: float) -> None:
        self.delay_seconds = delay_seconds
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    def call(
        self,
        key: str,
        fn: Callable[..., Any],
        *args: Any,
        delay_seconds: float | None = None,
        **kwargs: Any,
    ) -> None:
        loop = asyncio.get_running_loop()
        previous = self._handles.pop(key, None)
        if previous is not None:
            previous.cancel()
        delay = self.delay_seconds if delay_seconds is None else delay_seconds
        self._handles[key] = loop.call_later(delay, self._fire, key, fn, args, kwargs)

    def wrap(
        self, fn: Callable[..., Any], key: str = "default", delay_seconds: float | None = None
    ) -> Callable[..., None]:
        """Return a debounced version of *fn* bound to *key*."""

        def debounced(*args: Any, **kwargs: Any) -> None:
            self.call(key, fn, *args, delay_seconds=delay_seconds, **kwargs)

        return debounced

    def pending(self, key: str) -> bool:
        return key in self._handles

    def cancel(self, key: str | None = None) -> None:
        """Cancel one keyed timer, or every timer when *key* is ``None``."""
        if key is None:
            for handle in self._handles.values():
                handle.cancel()
            self._handles.clear()
            return
        handle = self._handles.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _fire(
        self, key: str, fn: Callable[..., Any], args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> None:
        self._handles.pop(key, None)
        try:
            result = fn(*args, **kwargs)
        except Exception:
            logger.exception("Debounced call for %s failed", key)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(lambda t: self._on_task_done(key, t))

    def _on_task_done(self, key: str, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Debounced coroutine for %s failed: %s", key, exc)
