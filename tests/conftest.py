"""Pytest configuration and shared fixtures."""

import asyncio
import io
from collections import defaultdict
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest
from PIL import Image

from browser_parity.automation.snapshot_script import MUTATION_SEQ_SCRIPT, SETTLE_SCRIPT
from browser_parity.models.capture import CaptureResult, Viewport
from browser_parity.models.config import (
    AllocatorConfig,
    ComparisonConfig,
    HarnessConfig,
    TimeoutConfig,
)
from browser_parity.models.parity import ParityCase


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def viewport() -> Viewport:
    """Create a test viewport."""
    return Viewport(width=1280, height=720, name="desktop")


@pytest.fixture
def fast_timeouts() -> TimeoutConfig:
    """Timeouts short enough that waiting tests finish quickly."""
    return TimeoutConfig(
        command_ms=1000,
        navigation_ms=1000,
        network_idle_quiet_ms=20,
        network_idle_timeout_ms=300,
        settle_ms=0,
        stop_grace_seconds=0.5,
        health_poll_interval_seconds=0.05,
    )


@pytest.fixture
def allocator_config(tmp_path: Path) -> AllocatorConfig:
    """Allocator config rooted in a temporary directory, with no retry delay."""
    return AllocatorConfig(
        debug_port_base=19300,
        app_port_base=15300,
        port_range_size=10,
        profiles_dir=str(tmp_path / "state" / "profiles"),
        retry_attempts=3,
        retry_delay_seconds=0,
    )


@pytest.fixture
def harness_config(allocator_config: AllocatorConfig, fast_timeouts: TimeoutConfig, tmp_path: Path) -> HarnessConfig:
    """Create a test harness configuration."""
    return HarnessConfig(
        allocator=allocator_config,
        timeouts=fast_timeouts,
        comparison=ComparisonConfig(fuzz_percent=0, max_allowed_diff_pixels=0),
        cases=[
            ParityCase(name="home", path="/", viewport=Viewport(width=200, height=100, name="small")),
        ],
        report_output_dir=str(tmp_path / "reports"),
    )


@pytest.fixture
def temp_config_file(harness_config: HarnessConfig, tmp_path: Path) -> Path:
    """Create a temporary config file."""
    config_file = tmp_path / "parity-config.json"
    harness_config.save(config_file)
    return config_file


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """An empty workspace checkout."""
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws


# ============================================================================
# Image Helpers
# ============================================================================


def solid_image(width: int = 200, height: int = 100, color=(0, 0, 255, 255)) -> Image.Image:
    """Create a single-colour RGBA image."""
    return Image.new("RGBA", (width, height), color)


def png_bytes(image: Image.Image) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def capture_of(image: Image.Image, url: str = "http://127.0.0.1:15300/") -> CaptureResult:
    return CaptureResult(
        image=png_bytes(image),
        viewport=Viewport(width=image.width, height=image.height, name="small"),
        captured_at="2025-01-01T00:00:00Z",
        url=url,
    )


# ============================================================================
# Fake Agent / Page
# ============================================================================


class FakeAgent:
    """Stands in for manager.Agent from a session's point of view."""

    def __init__(self, agent_id: str = "agent-test", base_url: str = "http://127.0.0.1:15300"):
        self.agent_id = agent_id
        self.base_url = base_url
        self.lost = asyncio.Event()
        self.lost_reason = ""
        self.in_flight = 0
        self.commands_started = 0
        self.forgotten: list[Any] = []

    def app_url(self, path: str = "/") -> str:
        return self.base_url + path

    def command_started(self) -> None:
        self.in_flight += 1
        self.commands_started += 1

    def command_finished(self) -> None:
        self.in_flight -= 1

    def forget_session(self, session) -> None:
        self.forgotten.append(session)

    def mark_lost(self, reason: str) -> None:
        self.lost_reason = reason
        self.lost.set()


def make_element(text: str = "") -> AsyncMock:
    """Create a mock ElementHandle."""
    element = AsyncMock()
    element.inner_text.return_value = text
    element.select_option.return_value = []
    return element


def make_snapshot_handle(elements: list, nodes: list[dict], seq: int) -> Mock:
    """Mimic the JSHandle returned by evaluate_handle(SNAPSHOT_SCRIPT)."""

    async def get_property(name: str):
        prop = Mock()
        if name == "nodes":
            prop.json_value = AsyncMock(return_value=nodes)
        elif name == "mutationSeq":
            prop.json_value = AsyncMock(return_value=seq)
        elif name == "elements":
            properties = {}
            for index, element in enumerate(elements):
                item = Mock()
                item.as_element.return_value = element
                properties[str(index)] = item
            properties["length"] = Mock(as_element=Mock(return_value=None))
            prop.get_properties = AsyncMock(return_value=properties)
        return prop

    handle = Mock()
    handle.get_property = AsyncMock(side_effect=get_property)
    handle.dispose = AsyncMock()
    return handle


class FakePage:
    """A Playwright page double with event emission and a scripted DOM."""

    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.main_frame = Mock(name="main_frame")
        self.handlers: dict[str, list] = defaultdict(list)
        self.viewport_size = {"width": 1280, "height": 720}
        self.mutation_seq = 0
        self.elements: list = []
        self.nodes: list[dict] = []
        self.goto = AsyncMock(side_effect=self._goto)
        self.screenshot = AsyncMock(return_value=png_bytes(solid_image(4, 4)))
        self.set_viewport_size = AsyncMock(side_effect=self._set_viewport_size)
        self.emulate_media = AsyncMock()
        self.wait_for_load_state = AsyncMock()
        self.close = AsyncMock()

    def on(self, event: str, handler) -> None:
        self.handlers[event].append(handler)

    def emit(self, event: str, arg: Any) -> None:
        for handler in self.handlers[event]:
            handler(arg)

    def set_dom(self, labels: list[tuple[str, str]]) -> list[AsyncMock]:
        """Replace the page's interactive elements with (role, name) pairs."""
        self.elements = [make_element(name) for _, name in labels]
        self.nodes = [{"tag": "button", "role": role, "name": name, "interactive": True}
                      for role, name in labels]
        return self.elements

    async def _goto(self, url: str, **kwargs) -> None:
        self.url = url
        self.emit("framenavigated", self.main_frame)

    async def _set_viewport_size(self, size: dict) -> None:
        self.viewport_size = dict(size)

    async def evaluate(self, script: str, *args) -> Any:
        if script == MUTATION_SEQ_SCRIPT:
            return self.mutation_seq
        if script == SETTLE_SCRIPT:
            return True
        return None

    async def evaluate_handle(self, script: str, *args) -> Mock:
        return make_snapshot_handle(self.elements, self.nodes, self.mutation_seq)


def make_request(url: str, resource_type: str = "fetch") -> Mock:
    """Create a mock Playwright Request."""
    request = Mock()
    request.url = url
    request.resource_type = resource_type
    return request


@pytest.fixture
def fake_agent() -> FakeAgent:
    return FakeAgent()


@pytest.fixture
def fake_page() -> FakePage:
    return FakePage()


# ============================================================================
# Fake Launchers
# ============================================================================


class FakeProcess:
    """ManagedProcess double whose exit the test controls."""

    def __init__(self, name: str):
        self.name = name
        self.returncode = None
        self.terminated = False
        self._exited = asyncio.Event()

    def exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    async def terminate(self, grace_seconds: float) -> None:
        self.terminated = True
        if self.returncode is None:
            self.exit(-15)


class FakeDevServerLauncher:
    def __init__(self):
        self.launched: list[tuple[Path, int]] = []
        self.processes: list[FakeProcess] = []

    def ready_url(self, port: int) -> str:
        return f"http://127.0.0.1:{port}/"

    async def launch(self, workspace: Path, port: int, log_path: Path | None = None) -> FakeProcess:
        if log_path:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_path.write_text("VITE ready\n")
        self.launched.append((workspace, port))
        proc = FakeProcess("dev server")
        self.processes.append(proc)
        return proc


class FakeBrowserLauncher:
    def __init__(self):
        self.processes: list[FakeProcess] = []
        self.pages: list[FakePage] = []
        self.browsers: list[Mock] = []

    def debug_url(self, port: int) -> str:
        return f"http://127.0.0.1:{port}/json/version"

    async def launch(self, playwright, port: int, profile_dir: Path, log_path: Path | None = None) -> FakeProcess:
        proc = FakeProcess("browser")
        self.processes.append(proc)
        return proc

    async def connect(self, playwright, port: int) -> Mock:
        page = FakePage()
        self.pages.append(page)
        context = Mock()
        context.new_page = AsyncMock(return_value=page)
        browser = Mock()
        browser.contexts = [context]
        browser.close = AsyncMock()
        self.browsers.append(browser)
        return browser


