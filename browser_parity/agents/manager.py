"""Agent session manager — lifecycle of isolated {workspace, dev server, browser} triples."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional

from playwright.async_api import Browser, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from browser_parity.automation.session import Session
from browser_parity.errors import HarnessError, ProvisionFailed, ResourceBusy, error_kind
from browser_parity.models.agent import AgentInfo, AgentState
from browser_parity.models.config import HarnessConfig, TimeoutConfig

from .allocator import APP_PORT, DEBUG_PORT, PROFILE, ResourceAllocator, ResourceHandle
from .health import wait_for_endpoints
from .launcher import BrowserLauncher, DevServerLauncher, ManagedProcess, tail_log

logger = logging.getLogger(__name__)


async def _start_playwright() -> Playwright:
    return await async_playwright().start()


class Agent:
    """One isolated unit: workspace checkout, dev server process, browser process.

    Owned exclusively by the manager that provisioned it. The ``lost`` event
    fires once the agent can no longer serve commands (stopped or failed);
    sessions race every command against it.
    """

    def __init__(self, agent_id: str, workspace: Path, handles: dict[str, ResourceHandle], host: str):
        self.agent_id = agent_id
        self.workspace = workspace
        self.handles = handles
        self.host = host
        self.state = AgentState.PROVISIONING
        self.failure: Optional[str] = None
        self.failure_cause: Optional[BaseException] = None

        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.dev_server: Optional[ManagedProcess] = None
        self.browser_process: Optional[ManagedProcess] = None

        self.lost = asyncio.Event()
        self.lost_reason = ""
        self._sessions: set[Session] = set()
        self._in_flight = 0
        self._watch_task: Optional[asyncio.Task] = None
        self._stopping = False

    def __repr__(self) -> str:
        return f"Agent({self.agent_id!r}, state={self.state.value}, debug={self.debug_port}, app={self.app_port})"

    @property
    def debug_port(self) -> int:
        return self.handles[DEBUG_PORT].port

    @property
    def app_port(self) -> int:
        return self.handles[APP_PORT].port

    @property
    def profile_dir(self) -> Path:
        return self.handles[PROFILE].path

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.app_port}"

    def app_url(self, path: str = "/") -> str:
        if not path.startswith("/"):
            path = "/" + path
        return self.base_url + path

    def info(self) -> AgentInfo:
        return AgentInfo(
            agent_id=self.agent_id,
            debug_port=self.debug_port,
            app_port=self.app_port,
            profile_dir=str(self.profile_dir),
            workspace=str(self.workspace),
            state=self.state,
            failure=self.failure,
        )

    async def open_session(self, timeouts: TimeoutConfig | None = None) -> Session:
        """Open a new page on this agent's browser and wrap it in a Session."""
        if not self.state.is_live or self.browser is None:
            raise ProvisionFailed(f"Agent {self.agent_id} is {self.state.value}, not ready")
        context = self.browser.contexts[0] if self.browser.contexts else await self.browser.new_context()
        page = await context.new_page()
        session = Session(self, page, timeouts)
        self._sessions.add(session)
        return session

    def command_started(self) -> None:
        self._in_flight += 1
        if self.state == AgentState.READY:
            self.state = AgentState.BUSY

    def command_finished(self) -> None:
        self._in_flight = max(0, self._in_flight - 1)
        if self._in_flight == 0 and self.state == AgentState.BUSY:
            self.state = AgentState.READY

    def forget_session(self, session: Session) -> None:
        self._sessions.discard(session)

    def mark_lost(self, reason: str) -> None:
        if self.lost.is_set():
            return
        self.lost_reason = reason
        self.lost.set()
        for session in list(self._sessions):
            session.mark_lost()


class AgentSessionManager:
    """Provisions, starts and stops agents. Never restarts one on its own."""

    def __init__(
        self,
        config: HarnessConfig,
        allocator: ResourceAllocator | None = None,
        dev_server: DevServerLauncher | None = None,
        browser: BrowserLauncher | None = None,
        playwright_factory: Callable[[], Awaitable[Playwright]] | None = None,
    ):
        self.config = config
        host = config.allocator.host
        self.allocator = allocator or ResourceAllocator(config.allocator)
        self.dev_server = dev_server or DevServerLauncher(config.dev_server, host)
        self.browser = browser or BrowserLauncher(config.browser, host)
        self._playwright_factory = playwright_factory or _start_playwright
        self.logs_dir = Path(config.allocator.profiles_dir).parent / "logs"
        self._agents: dict[str, Agent] = {}

    @property
    def agents(self) -> list[Agent]:
        return list(self._agents.values())

    async def provision(self, workspace: str | Path, port_budget: int | None = None,
                        agent_id: str | None = None) -> Agent:
        """Reserve ports and a profile for a new agent (state: provisioning)."""
        workspace = Path(workspace).resolve()
        if not workspace.is_dir():
            raise ProvisionFailed(f"Workspace {workspace} does not exist")
        agent_id = agent_id or uuid.uuid4().hex[:8]
        if agent_id in self._agents:
            raise ProvisionFailed(f"Agent {agent_id} already exists; provision a fresh id")

        handles: dict[str, ResourceHandle] = {}
        try:
            for kind in (DEBUG_PORT, APP_PORT, PROFILE):
                handles[kind] = await asyncio.to_thread(self.allocator.allocate, kind, agent_id, port_budget)
        except ResourceBusy:
            for handle in handles.values():
                try:
                    await asyncio.to_thread(self.allocator.release, handle)
                except ResourceBusy as e:
                    logger.warning("Rollback for agent %s could not release %s: %s", agent_id, handle.kind, e)
            raise

        agent = Agent(agent_id, workspace, handles, self.config.allocator.host)
        self._agents[agent_id] = agent
        logger.info("Provisioned agent %s (debug=%d, app=%d, profile=%s)",
                    agent_id, agent.debug_port, agent.app_port, agent.profile_dir)
        return agent

    async def start(self, agent: Agent) -> Agent:
        """Launch both processes and wait until both endpoints answer."""
        if agent.state != AgentState.PROVISIONING:
            raise ProvisionFailed(
                f"Agent {agent.agent_id} is {agent.state.value}; provision a fresh agent instead"
            )
        timeouts = self.config.timeouts
        dev_log = self.logs_dir / f"agent-{agent.agent_id}-dev-server.log"
        browser_log = self.logs_dir / f"agent-{agent.agent_id}-browser.log"
        try:
            agent.playwright = await self._playwright_factory()
            agent.dev_server = await self.dev_server.launch(agent.workspace, agent.app_port, dev_log)
            agent.browser_process = await self.browser.launch(
                agent.playwright, agent.debug_port, agent.profile_dir, browser_log,
            )
            startup_timeout = max(
                self.config.dev_server.startup_timeout_seconds,
                self.config.browser.startup_timeout_seconds,
            )
            await wait_for_endpoints(
                [self.browser.debug_url(agent.debug_port), self.dev_server.ready_url(agent.app_port)],
                [agent.dev_server, agent.browser_process],
                timeout=startup_timeout,
                poll_interval=timeouts.health_poll_interval_seconds,
            )
            agent.browser = await self.browser.connect(agent.playwright, agent.debug_port)
        except (HarnessError, PlaywrightError, OSError) as e:
            await self._fail(agent, e, dev_log, browser_log)
            if isinstance(e, ProvisionFailed):
                raise
            raise ProvisionFailed(f"Agent {agent.agent_id} failed to start: {agent.failure}") from e

        agent.state = AgentState.READY
        agent._watch_task = asyncio.create_task(self._watch_browser(agent))
        logger.info("Agent %s ready at %s", agent.agent_id, agent.base_url)
        return agent

    async def _fail(self, agent: Agent, cause: BaseException, *logs: Path) -> None:
        agent.state = AgentState.FAILED
        agent.failure_cause = cause
        agent.failure = f"{error_kind(cause)}: {cause}"
        for log in logs:
            tail = tail_log(log, lines=10)
            if tail:
                agent.failure += f"\n--- {log.name} ---\n{tail}"
        logger.error("Agent %s failed to start: %s", agent.agent_id, cause)
        agent.mark_lost(agent.failure)
        await self._terminate_processes(agent)

    async def _watch_browser(self, agent: Agent) -> None:
        code = await agent.browser_process.wait()
        if agent._stopping or not agent.state.is_live:
            return
        agent.state = AgentState.FAILED
        agent.failure = f"browser process exited unexpectedly with code {code}"
        logger.error("Agent %s: %s", agent.agent_id, agent.failure)
        agent.mark_lost(agent.failure)

    async def _terminate_processes(self, agent: Agent) -> None:
        grace = self.config.timeouts.stop_grace_seconds
        if agent.browser is not None:
            try:
                await asyncio.wait_for(agent.browser.close(), timeout=grace)
            except (PlaywrightError, asyncio.TimeoutError) as e:
                logger.debug("Disconnecting from agent %s browser failed: %s", agent.agent_id, e)
            agent.browser = None
        for proc in (agent.browser_process, agent.dev_server):
            if proc is not None:
                await proc.terminate(grace)
        if agent.playwright is not None:
            try:
                await agent.playwright.stop()
            except PlaywrightError as e:
                logger.debug("Stopping Playwright for agent %s failed: %s", agent.agent_id, e)
            agent.playwright = None

    async def stop(self, agent: Agent) -> None:
        """Tear the agent down. Always ends in ``stopped``.

        In-flight session commands fail with SessionLost. If a handle cannot
        be released the agent is still stopped and ResourceBusy is raised.
        """
        if agent.state == AgentState.STOPPED:
            return
        agent._stopping = True
        agent.mark_lost(f"agent {agent.agent_id} was stopped")
        if agent._watch_task is not None:
            agent._watch_task.cancel()

        release_errors: list[ResourceBusy] = []
        try:
            await self._terminate_processes(agent)
        finally:
            for handle in agent.handles.values():
                try:
                    await asyncio.to_thread(self.allocator.release, handle)
                except ResourceBusy as e:
                    release_errors.append(e)
            agent.state = AgentState.STOPPED
            self._agents.pop(agent.agent_id, None)
            logger.info("Agent %s stopped", agent.agent_id)
        if release_errors:
            raise release_errors[0]

    async def stop_all(self) -> None:
        results = await asyncio.gather(*(self.stop(a) for a in self.agents), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Teardown error: %s", result)

    @asynccontextmanager
    async def agent_scope(self, workspace: str | Path, port_budget: int | None = None,
                          agent_id: str | None = None) -> AsyncIterator[Agent]:
        """Provision + start an agent, and always stop it on exit."""
        agent = await self.provision(workspace, port_budget, agent_id)
        try:
            await self.start(agent)
            yield agent
        finally:
            await self.stop(agent)
