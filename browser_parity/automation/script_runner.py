"""Executes named automation scripts step by step against a session."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

from playwright.async_api import Error as PlaywrightError

from browser_parity.errors import HarnessError, SetupError, error_kind
from browser_parity.models.script import ScriptResult, ScriptStep, StepOutcome

from .session import Session

logger = logging.getLogger(__name__)


def _require(step: ScriptStep, field: str) -> Any:
    value = getattr(step, field)
    if value is None:
        raise SetupError(f"{step.command} step requires '{field}'")
    return value


async def run_step(session: Session, step: ScriptStep, output_dir: Path, index: int = 0) -> Any:
    """Execute one step; returns whatever the command produced."""
    logger.debug("Running step %d: %s %s", index, step.command, step.description or "")

    match step.command:
        case "open":
            return await session.open(_require(step, "url"), timeout_ms=step.timeout_ms)

        case "wait":
            await session.wait_load(step.mode, timeout_ms=step.timeout_ms)
            return None

        case "snapshot":
            snap = await session.snapshot(step.interactive_only)
            return snap.to_text()

        case "click":
            await session.click(_require(step, "ref"))
            return None

        case "fill":
            await session.fill(_require(step, "ref"), step.text or "")
            return None

        case "select":
            return await session.select(_require(step, "ref"), _require(step, "option"))

        case "get_text":
            return await session.get_text(_require(step, "ref"))

        case "get_url":
            return await session.get_url()

        case "theme":
            await session.set_theme(_require(step, "theme"))
            return None

        case "screenshot":
            capture = await session.screenshot(step.viewport)
            name = step.save_as or f"step_{index}.png"
            path = output_dir / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(capture.image)
            if capture.incomplete:
                logger.warning("Screenshot %s captured with outstanding requests: %s",
                               name, capture.outstanding_requests)
            return {"path": str(path), "incomplete": capture.incomplete, "url": capture.url}

        case _:
            raise SetupError(f"Unknown script command: {step.command}")


async def run_script(session: Session, name: str, steps: list[ScriptStep], output_dir: Path) -> ScriptResult:
    """Run every step in order. The first failure stops the script; later steps are skipped."""
    start = time.time()
    result = ScriptResult(name=name, agent_id=session.agent.agent_id)
    failed = False
    for index, step in enumerate(steps):
        if failed:
            result.steps.append(StepOutcome(
                step_index=index, command=step.command, description=step.description,
                status="skip", error_message="Skipped due to earlier failure",
            ))
            continue
        try:
            output = await run_step(session, step, output_dir, index)
            result.steps.append(StepOutcome(
                step_index=index, command=step.command, description=step.description,
                status="pass", output=output,
            ))
        except (HarnessError, PlaywrightError) as e:
            logger.warning("Step %d (%s) failed: %s", index, step.command, e)
            result.steps.append(StepOutcome(
                step_index=index, command=step.command, description=step.description,
                status="fail", error_kind=error_kind(e), error_message=str(e),
            ))
            failed = True
    result.duration_seconds = round(time.time() - start, 2)
    return result
