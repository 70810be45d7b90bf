"""Pipeline orchestrator: coordinates agents, scripts, parity runs and reports."""

from __future__ import annotations

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from browser_parity.agents.manager import Agent, AgentSessionManager
from browser_parity.automation.script_runner import run_script
from browser_parity.errors import SetupError
from browser_parity.models.agent import AgentInfo
from browser_parity.models.config import HarnessConfig
from browser_parity.models.parity import ParityReport
from browser_parity.models.script import ScriptResult
from browser_parity.reporter.aggregator import ParityRunner
from browser_parity.reporter.reporter import Reporter

logger = logging.getLogger(__name__)


def _agent_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:6]}"


class Orchestrator:
    """Synchronous entry points over the async agent/session layers."""

    def __init__(self, config: HarnessConfig, manager_factory: Callable[[HarnessConfig], AgentSessionManager] | None = None):
        self.config = config
        self.output_dir = Path(config.report_output_dir)
        self._manager_factory = manager_factory or AgentSessionManager

    async def _start_all(self, manager: AgentSessionManager, agents: Sequence[Agent]) -> None:
        """Start agents in parallel; re-raise the first failure once all have settled."""
        results = await asyncio.gather(*(manager.start(a) for a in agents), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

    # ------------------------------------------------------------------
    # Provision

    def provision_agents(
        self,
        workspaces: Sequence[str | Path],
        hold: Callable[[list[AgentInfo]], Awaitable[None]] | None = None,
    ) -> list[AgentInfo]:
        """Provision and start one agent per workspace, run ``hold``, then tear everything down."""
        return asyncio.run(self._provision_agents(workspaces, hold))

    async def _provision_agents(self, workspaces, hold) -> list[AgentInfo]:
        manager = self._manager_factory(self.config)
        try:
            agents = [await manager.provision(ws, agent_id=_agent_id(f"agent{i}"))
                      for i, ws in enumerate(workspaces)]
            await self._start_all(manager, agents)
            infos = [a.info() for a in agents]
            logger.info("%d agents ready", len(infos))
            if hold:
                await hold(infos)
            return [a.info() for a in agents]
        finally:
            await manager.stop_all()

    # ------------------------------------------------------------------
    # Scripts

    def run_script(self, name: str, workspace: str | Path) -> ScriptResult:
        """Run one named script against a fresh agent."""
        return asyncio.run(self._run_script(name, workspace))

    async def _run_script(self, name: str, workspace: str | Path) -> ScriptResult:
        steps = self.config.scripts.get(name)
        if not steps:
            raise SetupError(f"No script named '{name}' in config "
                             f"(available: {', '.join(sorted(self.config.scripts)) or 'none'})")
        manager = self._manager_factory(self.config)
        async with manager.agent_scope(workspace, agent_id=_agent_id("script")) as agent:
            session = await agent.open_session(self.config.timeouts)
            try:
                result = await run_script(session, name, steps, self.output_dir / "scripts" / name)
            finally:
                await session.close()
        logger.info("Script %s: %s", name, "passed" if result.passed else "failed")
        return result

    # ------------------------------------------------------------------
    # Parity

    def run_parity(self, reference: str | Path, candidate: str | Path) -> tuple[ParityReport, dict[str, str]]:
        """Run the configured case matrix and write reports."""
        report = asyncio.run(self._run_parity(reference, candidate))
        reports = Reporter(self.config).generate_reports(report, output_dir=self.output_dir)
        return report, reports

    async def _run_parity(self, reference: str | Path, candidate: str | Path) -> ParityReport:
        if not self.config.cases:
            raise SetupError("No parity cases configured")
        manager = self._manager_factory(self.config)
        try:
            ref_agent = await manager.provision(reference, agent_id=_agent_id("reference"))
            cand_agent = await manager.provision(candidate, agent_id=_agent_id("candidate"))
            await self._start_all(manager, [ref_agent, cand_agent])
            runner = ParityRunner(self.config, self.output_dir)
            return await runner.run(self.config.cases, ref_agent, cand_agent)
        finally:
            await manager.stop_all()
