"""Agent lifecycle data structures."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class AgentState(str, Enum):
    PROVISIONING = "provisioning"
    READY = "ready"
    BUSY = "busy"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_live(self) -> bool:
        return self in (AgentState.READY, AgentState.BUSY)


class AgentInfo(BaseModel):
    agent_id: str
    debug_port: int
    app_port: int
    profile_dir: str
    workspace: str
    state: AgentState
    failure: Optional[str] = None
