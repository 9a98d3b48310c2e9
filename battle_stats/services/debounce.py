"""Named debounced tasks on the asyncio event loop."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)


class DebounceScheduler:
    """Coalesces bursts of triggers into one delayed call per task id.

    Scheduling an id that is already pending restarts its timer; the earlier
    call is superseded. Coroutine functions are run as tasks when they fire.
    """

    def __init__(self, loop: Optional[Any] = None):
        # Anything with call_later(); the running loop if not given
        self._loop = loop
        self._timers: Dict[str, Any] = {}
        self._running: Set[asyncio.Future] = set()

    def _get_loop(self):
        if self._loop is not None:
            return self._loop
        return asyncio.get_running_loop()

    def schedule(self, task_id: str, delay: float, fn: Callable[[], Any]):
        existing = self._timers.pop(task_id, None)
        if existing is not None:
            existing.cancel()
        self._timers[task_id] = self._get_loop().call_later(delay, self._fire, task_id, fn)

    def pending(self, task_id: str) -> bool:
        return task_id in self._timers

    def reset(self):
        """Drop every pending timer without firing it."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _fire(self, task_id: str, fn: Callable[[], Any]):
        self._timers.pop(task_id, None)
        try:
            result = fn()
        except Exception:
            logger.exception(f"Debounced task {task_id} failed")
            return
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._running.add(future)
            future.add_done_callback(lambda f: self._finished(task_id, f))

    def _finished(self, task_id: str, future: asyncio.Future):
        self._running.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(f"Debounced task {task_id} failed: {exc!r}")

    async def aclose(self):
        """Cancel pending timers and any task still running."""
        self.reset()
        running = list(self._running)
        for future in running:
            future.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        self._running.clear()
