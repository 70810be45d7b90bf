"""Automation script data structures."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from .capture import Viewport


class ScriptStep(BaseModel):
    command: str  # open, wait, snapshot, click, fill, select, get_text, get_url, theme, screenshot
    url: Optional[str] = None
    ref: Optional[str] = None
    text: Optional[str] = None
    option: Optional[str] = None
    mode: str = "networkIdle"
    interactive_only: bool = True
    viewport: Optional[Viewport] = None
    theme: Optional[str] = None
    timeout_ms: Optional[int] = None
    save_as: Optional[str] = None  # screenshot file name
    description: str = ""


class StepOutcome(BaseModel):
    step_index: int
    command: str
    description: str = ""
    status: str = "pass"  # pass, fail, skip
    output: Optional[Any] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None


class ScriptResult(BaseModel):
    name: str
    agent_id: str = ""
    steps: list[StepOutcome] = Field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def passed(self) -> bool:
        return all(s.status == "pass" for s in self.steps)
