"""Configuration models for the parity harness."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .parity import ParityCase
from .script import ScriptStep


class AllocatorConfig(BaseModel):
    host: str = "127.0.0.1"
    debug_port_base: int = 9300
    app_port_base: int = 5300
    port_range_size: int = Field(default=100, gt=0)
    profiles_dir: str = ".browser-parity/profiles"
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_seconds: float = 0.2


class DevServerConfig(BaseModel):
    # {port}, {host} and {path} are substituted at launch time
    command: list[str] = Field(
        default_factory=lambda: ["npm", "run", "dev", "--", "--port", "{port}", "--host", "{host}"]
    )
    env: dict[str, str] = Field(default_factory=dict)
    ready_path: str = "/"
    startup_timeout_seconds: float = 60.0

    @field_validator("command")
    @classmethod
    def command_not_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("dev server command must not be empty")
        return v


class BrowserConfig(BaseModel):
    headless: bool = True
    executable_path: Optional[str] = None  # defaults to Playwright's bundled Chromium
    extra_args: list[str] = Field(default_factory=list)
    startup_timeout_seconds: float = 30.0


class TimeoutConfig(BaseModel):
    command_ms: int = 10000
    navigation_ms: int = 30000
    network_idle_quiet_ms: int = 500
    network_idle_timeout_ms: int = 15000
    settle_ms: int = 100
    stop_grace_seconds: float = 5.0
    health_poll_interval_seconds: float = 0.25


class ComparisonConfig(BaseModel):
    fuzz_percent: float = Field(default=0.0, ge=0.0, le=100.0)
    max_allowed_diff_pixels: int = Field(default=0, ge=0)


class HarnessConfig(BaseModel):
    allocator: AllocatorConfig = Field(default_factory=AllocatorConfig)
    dev_server: DevServerConfig = Field(default_factory=DevServerConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    comparison: ComparisonConfig = Field(default_factory=ComparisonConfig)

    # Parity matrix
    cases: list[ParityCase] = Field(default_factory=list)

    # Named automation scripts
    scripts: dict[str, list[ScriptStep]] = Field(default_factory=dict)

    # Reporting
    report_formats: list[str] = Field(default_factory=lambda: ["json", "html"])
    report_output_dir: str = "./parity-reports"

    @classmethod
    def load(cls, path: str | Path) -> "HarnessConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
