"""Automation command interface — one sequential command channel per agent page.

Commands on a session never interleave: each one takes the session lock,
marks the owning agent busy, and is raced against the agent's loss event so
that tearing the agent down unblocks an in-flight command immediately with
SessionLost. Element references come from ``snapshot()`` and die on the next
snapshot, on navigation, or on a structural DOM change. Nothing here retries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, TypeVar

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from browser_parity.errors import SessionClosed, SessionLost, SetupError, StaleReference, WaitTimeout
from browser_parity.models.capture import CaptureResult, Viewport
from browser_parity.models.config import TimeoutConfig
from browser_parity.models.snapshot import PageSnapshot, SnapshotNode

from .network import NetworkTracker
from .references import ReferenceTable
from .snapshot_script import MUTATION_SEQ_SCRIPT, SETTLE_SCRIPT, SNAPSHOT_SCRIPT

if TYPE_CHECKING:
    from browser_parity.agents.manager import Agent

logger = logging.getLogger(__name__)

T = TypeVar("T")

WAIT_MODES = ("domReady", "networkIdle")
COLOR_SCHEMES = ("light", "dark", "no-preference")


class SessionState(str, Enum):
    OPEN = "open"
    READY = "ready"
    BUSY = "busy"
    CLOSED = "closed"
    LOST = "lost"


def _consume_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


class Session:
    """Live automation channel bound to one agent's browser page."""

    def __init__(self, agent: "Agent", page: Page, timeouts: TimeoutConfig | None = None):
        self.agent = agent
        self.page = page
        self.timeouts = timeouts or TimeoutConfig()
        self.state = SessionState.OPEN
        self.refs = ReferenceTable()
        self.network = NetworkTracker()
        self._lock = asyncio.Lock()
        self._viewport: Optional[Viewport] = None
        self._mutation_seq: Optional[int] = None

        self.network.attach(page)
        page.on("framenavigated", self._on_frame_navigated)
        self.state = SessionState.READY

    # ------------------------------------------------------------------
    # Command plumbing

    def _on_frame_navigated(self, frame) -> None:
        if frame == self.page.main_frame:
            self.refs.invalidate("navigation")
            self._mutation_seq = None
            self.network.mark_navigation()

    def _lost_error(self) -> SessionLost:
        reason = self.agent.lost_reason or "agent is gone"
        return SessionLost(f"Session on agent {self.agent.agent_id} lost: {reason}")

    def _check_usable(self) -> None:
        if self.state == SessionState.CLOSED:
            raise SessionClosed(f"Session on agent {self.agent.agent_id} is closed")
        if self.state == SessionState.LOST or self.agent.lost.is_set():
            self.state = SessionState.LOST
            raise self._lost_error()

    async def _race_lost(self, coro: Awaitable[T]) -> T:
        task = asyncio.ensure_future(coro)
        lost = asyncio.ensure_future(self.agent.lost.wait())
        try:
            done, _ = await asyncio.wait({task, lost}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            lost.cancel()
        if task in done:
            return task.result()
        task.cancel()
        task.add_done_callback(_consume_result)
        self.state = SessionState.LOST
        raise self._lost_error()

    async def _run(self, name: str, op: Callable[[], Awaitable[T]]) -> T:
        self._check_usable()
        async with self._lock:
            self._check_usable()
            self.state = SessionState.BUSY
            self.agent.command_started()
            logger.debug("[%s] %s", self.agent.agent_id, name)
            try:
                return await self._race_lost(op())
            except PlaywrightTimeoutError as e:
                raise WaitTimeout(f"{name} timed out: {e}") from e
            except asyncio.TimeoutError as e:
                raise WaitTimeout(f"{name} timed out") from e
            except PlaywrightError as e:
                if self.agent.lost.is_set():
                    self.state = SessionState.LOST
                    raise self._lost_error() from e
                raise
            finally:
                self.agent.command_finished()
                if self.state == SessionState.BUSY:
                    self.state = SessionState.READY

    async def _resolve(self, ref: str) -> Any:
        handle = self.refs.lookup(ref)
        seq = await self.page.evaluate(MUTATION_SEQ_SCRIPT)
        if seq is None or seq != self._mutation_seq:
            self.refs.invalidate("dom mutation")
            raise StaleReference(ref, "DOM structure changed since the last snapshot")
        return handle

    # ------------------------------------------------------------------
    # Commands

    async def open(self, url: str, timeout_ms: int | None = None) -> str:
        """Navigate and block until the load event. Clears the reference table."""
        if url.startswith("/"):
            url = self.agent.app_url(url)
        timeout = timeout_ms if timeout_ms is not None else self.timeouts.navigation_ms

        async def op() -> str:
            self.refs.invalidate("navigation")
            self._mutation_seq = None
            await self.page.goto(url, wait_until="load", timeout=timeout)
            self.refs.invalidate("navigation")
            self.network.mark_navigation()
            return self.page.url

        return await self._run(f"open {url}", op)

    async def wait_load(self, mode: str = "networkIdle", quiet_ms: int | None = None,
                        timeout_ms: int | None = None) -> None:
        if mode not in WAIT_MODES:
            raise SetupError(f"Unknown wait mode '{mode}', expected one of {', '.join(WAIT_MODES)}")
        quiet = quiet_ms if quiet_ms is not None else self.timeouts.network_idle_quiet_ms
        timeout = timeout_ms if timeout_ms is not None else self.timeouts.network_idle_timeout_ms

        async def op() -> None:
            if mode == "domReady":
                await self.page.wait_for_load_state("domcontentloaded", timeout=timeout)
            else:
                await self.network.wait_for_idle(quiet, timeout)

        await self._run(f"wait {mode}", op)

    async def snapshot(self, interactive_only: bool = True) -> PageSnapshot:
        """Walk the DOM and replace the reference table with fresh ids."""

        async def op() -> PageSnapshot:
            result = await self.page.evaluate_handle(SNAPSHOT_SCRIPT, interactive_only)
            try:
                info = await (await result.get_property("nodes")).json_value()
                seq = await (await result.get_property("mutationSeq")).json_value()
                properties = await (await result.get_property("elements")).get_properties()
                handles = []
                for key in sorted((k for k in properties if str(k).isdigit()), key=int):
                    element = properties[key].as_element()
                    if element is not None:
                        handles.append(element)
            finally:
                await result.dispose()

            refs = self.refs.replace(handles)
            self._mutation_seq = seq
            nodes = [
                SnapshotNode(
                    ref=ref,
                    tag=raw.get("tag", ""),
                    role=raw.get("role", ""),
                    name=raw.get("name", ""),
                    interactive=raw.get("interactive", True),
                )
                for ref, raw in zip(refs, info)
            ]
            logger.debug("Snapshot of %s: %d references", self.page.url, len(nodes))
            return PageSnapshot(url=self.page.url, nodes=nodes)

        return await self._run("snapshot", op)

    async def click(self, ref: str) -> None:
        async def op() -> None:
            element = await self._resolve(ref)
            await element.click(timeout=self.timeouts.command_ms)

        await self._run(f"click {ref}", op)

    async def fill(self, ref: str, text: str) -> None:
        async def op() -> None:
            element = await self._resolve(ref)
            await element.fill(text, timeout=self.timeouts.command_ms)

        await self._run(f"fill {ref}", op)

    async def select(self, ref: str, option: str) -> list[str]:
        async def op() -> list[str]:
            element = await self._resolve(ref)
            return await element.select_option(option, timeout=self.timeouts.command_ms)

        return await self._run(f"select {ref}", op)

    async def get_text(self, ref: str) -> str:
        async def op() -> str:
            element = await self._resolve(ref)
            return await element.inner_text()

        return await self._run(f"get_text {ref}", op)

    async def get_url(self) -> str:
        async def op() -> str:
            return self.page.url

        return await self._run("get_url", op)

    async def set_theme(self, theme: str) -> None:
        """Emulate ``prefers-color-scheme``; persists across navigations."""
        if theme not in COLOR_SCHEMES:
            raise SetupError(f"Unknown theme '{theme}', expected one of {', '.join(COLOR_SCHEMES)}")

        async def op() -> None:
            await self.page.emulate_media(color_scheme=theme)

        await self._run(f"theme {theme}", op)

    async def _apply_viewport(self, viewport: Viewport | None) -> None:
        if viewport is not None and not viewport.same_size(self._viewport):
            await self.page.set_viewport_size({"width": viewport.width, "height": viewport.height})
        if viewport is not None:
            self._viewport = viewport

    async def set_viewport(self, viewport: Viewport) -> None:
        await self._run(f"viewport {viewport.width}x{viewport.height}", lambda: self._apply_viewport(viewport))

    async def screenshot(self, viewport: Viewport | None = None, settle_ms: int | None = None) -> CaptureResult:
        """Capture the viewport.

        Outstanding XHR/fetch requests do not block the capture; they are
        listed on the result and ``incomplete`` is set.
        """
        settle = settle_ms if settle_ms is not None else self.timeouts.settle_ms

        async def op() -> CaptureResult:
            await self._apply_viewport(viewport)
            await asyncio.wait_for(self.page.evaluate(SETTLE_SCRIPT), timeout=self.timeouts.command_ms / 1000)
            if settle > 0:
                await asyncio.sleep(settle / 1000)
            outstanding = self.network.outstanding()
            image = await self.page.screenshot(
                type="png", full_page=False, animations="disabled", timeout=self.timeouts.command_ms,
            )
            if outstanding:
                logger.warning("Captured %s with %d outstanding requests", self.page.url, len(outstanding))
            return CaptureResult(
                image=image,
                viewport=self._current_viewport(),
                captured_at=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                url=self.page.url,
                outstanding_requests=outstanding,
                incomplete=bool(outstanding),
            )

        return await self._run("screenshot", op)

    def _current_viewport(self) -> Viewport:
        if self._viewport is not None:
            return self._viewport
        size = self.page.viewport_size
        if isinstance(size, dict):
            return Viewport(width=size["width"], height=size["height"], name="current")
        return Viewport(name="current")

    async def close(self) -> None:
        """Release the transport. Later commands raise SessionClosed."""
        if self.state == SessionState.CLOSED:
            return
        async with self._lock:
            was_lost = self.state == SessionState.LOST or self.agent.lost.is_set()
            self.state = SessionState.CLOSED
            self.refs.invalidate("close")
            self.agent.forget_session(self)
            if was_lost:
                return
            try:
                await self.page.close()
            except PlaywrightError as e:
                logger.debug("Page close on agent %s failed: %s", self.agent.agent_id, e)
        logger.debug("Session on agent %s closed", self.agent.agent_id)

    def mark_lost(self) -> None:
        """Called by the owning agent when it dies or is torn down."""
        if self.state != SessionState.CLOSED:
            self.state = SessionState.LOST
            self.refs.invalidate("session lost")
