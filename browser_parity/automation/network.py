"""In-flight XHR/fetch tracking for network-idle waits."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from playwright.async_api import Page

from browser_parity.errors import WaitTimeout

logger = logging.getLogger(__name__)

TRACKED_RESOURCE_TYPES = frozenset({"xhr", "fetch"})


class NetworkTracker:
    """Counts outstanding XHR/fetch requests on one page."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, poll_interval: float = 0.05):
        self._clock = clock
        self._poll_interval = poll_interval
        self._inflight: dict[Any, str] = {}
        self._last_activity = clock()

    def attach(self, page: Page) -> None:
        page.on("request", self._on_request)
        page.on("requestfinished", self._on_done)
        page.on("requestfailed", self._on_done)

    def _on_request(self, request) -> None:
        if request.resource_type not in TRACKED_RESOURCE_TYPES:
            return
        self._inflight[request] = request.url
        self._last_activity = self._clock()

    def _on_done(self, request) -> None:
        if self._inflight.pop(request, None) is not None:
            self._last_activity = self._clock()

    def outstanding(self) -> list[str]:
        return list(self._inflight.values())

    def mark_navigation(self) -> None:
        """A new document starts its quiet window from now."""
        self._last_activity = self._clock()

    def is_idle(self, quiet_ms: int, since: float | None = None) -> bool:
        if self._inflight:
            return False
        start = self._last_activity if since is None else max(self._last_activity, since)
        return (self._clock() - start) * 1000 >= quiet_ms

    async def wait_for_idle(self, quiet_ms: int, timeout_ms: int) -> None:
        """Block until nothing has been outstanding for ``quiet_ms``; WaitTimeout after ``timeout_ms``.

        The quiet window never starts before the call, so activity that
        ended long ago does not satisfy it.
        """
        called_at = self._clock()
        deadline = called_at + timeout_ms / 1000
        while not self.is_idle(quiet_ms, since=called_at):
            remaining = deadline - self._clock()
            if remaining <= 0:
                pending = self.outstanding()
                raise WaitTimeout(
                    f"Network not idle for {quiet_ms}ms within {timeout_ms}ms "
                    f"({len(pending)} outstanding: {', '.join(pending[:5])})"
                )
            await asyncio.sleep(min(self._poll_interval, remaining))
        logger.debug("Network idle (quiet window %dms)", quiet_ms)
