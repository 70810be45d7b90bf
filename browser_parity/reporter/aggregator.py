"""Parity report aggregator — drives a case matrix through a reference and a candidate agent."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Sequence

from playwright.async_api import Error as PlaywrightError

from browser_parity.automation.session import Session
from browser_parity.comparison.engine import CompareOptions, compare, write_diff_image
from browser_parity.errors import HarnessError, ProvisionFailed, error_kind
from browser_parity.models.capture import CaptureResult
from browser_parity.models.config import HarnessConfig
from browser_parity.models.parity import DiffResult, ParityCase, ParityRecord, ParityReport

if TYPE_CHECKING:
    from browser_parity.agents.manager import Agent

logger = logging.getLogger(__name__)


class ParityRunner:
    """Runs parity cases one at a time; both sides of a case run in parallel."""

    def __init__(self, config: HarnessConfig, output_dir: Path):
        self.config = config
        self.output_dir = output_dir
        self.run_id = f"parity_{uuid.uuid4().hex[:8]}"
        self.run_dir = output_dir / self.run_id

    async def run(self, cases: Sequence[ParityCase], reference_agent: "Agent",
                  candidate_agent: "Agent") -> ParityReport:
        started_at = time.strftime("%Y-%m-%dT%H:%M:%SZ")
        start = time.time()
        logger.info("Starting parity run %s (%d cases): %s vs %s", self.run_id, len(cases),
                    reference_agent.base_url, candidate_agent.base_url)

        reference, candidate = await self._open_sessions(reference_agent, candidate_agent)
        records: list[ParityRecord] = []
        try:
            for index, case in enumerate(cases):
                logger.info("Case [%d/%d]: %s %s (%dx%d, %s)", index + 1, len(cases), case.name,
                            case.path, case.viewport.width, case.viewport.height, case.theme)
                result = await self.run_case(case, reference, candidate)
                records.append(ParityRecord(case=case, result=result))
                if result.passed:
                    logger.info("[PASS] %s: AE=%d", case.name, result.absolute_error_count)
                elif result.error_kind:
                    logger.error("[FAIL] %s: %s: %s", case.name, result.error_kind, result.error)
                else:
                    logger.error("[FAIL] %s: AE=%d (allowed %d)", case.name, result.absolute_error_count,
                                 self.config.comparison.max_allowed_diff_pixels)
        finally:
            await asyncio.gather(reference.close(), candidate.close(), return_exceptions=True)

        report = ParityReport(
            run_id=self.run_id,
            started_at=started_at,
            completed_at=time.strftime("%Y-%m-%dT%H:%M:%SZ"),
            reference_url=reference_agent.base_url,
            candidate_url=candidate_agent.base_url,
            records=records,
        )
        logger.info("Parity run complete: %d/%d passed (%.1fs)",
                    len(records) - report.failed_count, len(records), time.time() - start)
        return report

    async def _open_sessions(self, reference_agent: "Agent", candidate_agent: "Agent") -> tuple[Session, Session]:
        """Open one session per agent. If either fails, close the other and raise ProvisionFailed."""
        opened = await asyncio.gather(
            reference_agent.open_session(self.config.timeouts),
            candidate_agent.open_session(self.config.timeouts),
            return_exceptions=True,
        )
        errors = [o for o in opened if isinstance(o, BaseException)]
        if not errors:
            return opened[0], opened[1]

        for session in opened:
            if not isinstance(session, BaseException):
                await session.close()
        error = errors[0]
        if isinstance(error, ProvisionFailed) or not isinstance(error, (HarnessError, PlaywrightError, OSError)):
            raise error
        raise ProvisionFailed(f"Could not open a browser session: {error_kind(error)}: {error}") from error

    async def run_case(self, case: ParityCase, reference: Session, candidate: Session) -> DiffResult:
        """Capture both sides and compare. Failures become failed results, never exceptions."""
        case_dir = self.run_dir / case.slug
        try:
            # Join point: both captures must finish before comparison.
            captures = await asyncio.gather(
                self._capture(reference, case),
                self._capture(candidate, case),
                return_exceptions=True,
            )
            for outcome in captures:
                if isinstance(outcome, BaseException):
                    raise outcome
            ref_capture, cand_capture = captures
            case_dir.mkdir(parents=True, exist_ok=True)
            (case_dir / "reference.png").write_bytes(ref_capture.image)
            (case_dir / "candidate.png").write_bytes(cand_capture.image)

            options = CompareOptions(
                masked_regions=case.masked_regions,
                fuzz_percent=self.config.comparison.fuzz_percent,
                max_allowed_diff_pixels=self.config.comparison.max_allowed_diff_pixels,
            )
            result = await asyncio.to_thread(compare, ref_capture.image, cand_capture.image, options)
            return write_diff_image(result, case_dir / "diff.png")
        except (HarnessError, PlaywrightError, OSError) as e:
            return DiffResult.failure(error_kind(e), str(e), case.masked_regions)

    async def _capture(self, session: Session, case: ParityCase) -> CaptureResult:
        await session.set_viewport(case.viewport)
        await session.set_theme(case.theme)
        await session.open(case.path)
        await session.wait_load("networkIdle")
        return await session.screenshot(case.viewport)
