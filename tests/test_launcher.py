"""Tests for process launchers and endpoint readiness polling."""

import asyncio
import socket
import sys
from pathlib import Path
from unittest.mock import Mock

import httpx
import pytest

from browser_parity.agents.health import wait_for_endpoints
from browser_parity.agents.launcher import BrowserLauncher, DevServerLauncher, _spawn, tail_log
from browser_parity.errors import ProvisionFailed, WaitTimeout
from browser_parity.models.config import BrowserConfig, DevServerConfig

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="process groups are POSIX-only")


def _closed_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestCommands:

    def test_dev_server_placeholders(self):
        launcher = DevServerLauncher(DevServerConfig(env={"VITE_PORT": "{port}"}))

        argv = launcher.build_command(Path("/ws"), 5301)
        env = launcher.build_env(Path("/ws"), 5301)

        assert argv == ["npm", "run", "dev", "--", "--port", "5301", "--host", "127.0.0.1"]
        assert env["PORT"] == "5301"
        assert env["VITE_PORT"] == "5301"

    def test_ready_url(self):
        launcher = DevServerLauncher(DevServerConfig(ready_path="health"))
        assert launcher.ready_url(5301) == "http://127.0.0.1:5301/health"

    def test_browser_command_isolates_profile_and_port(self):
        launcher = BrowserLauncher(BrowserConfig(headless=True, extra_args=["--lang=en-US"]))

        argv = launcher.build_command("/opt/chrome", 9301, Path("/profiles/agent-a"))

        assert argv[0] == "/opt/chrome"
        assert "--remote-debugging-port=9301" in argv
        assert "--user-data-dir=/profiles/agent-a" in argv
        assert "--headless=new" in argv
        assert "--lang=en-US" in argv
        assert launcher.debug_url(9301) == "http://127.0.0.1:9301/json/version"

    def test_tail_log(self, tmp_path):
        log = tmp_path / "dev.log"
        log.write_text("\n".join(f"line {i}" for i in range(30)))

        assert tail_log(log, lines=2) == "line 28\nline 29"
        assert tail_log(tmp_path / "missing.log") == ""


@posix_only
@pytest.mark.asyncio
class TestManagedProcess:

    async def test_terminate_stops_process(self, tmp_path):
        proc = await _spawn("sleeper", [sys.executable, "-c", "import time; time.sleep(30)"],
                            None, None, tmp_path / "sleeper.log")

        await proc.terminate(grace_seconds=5)

        assert proc.returncode is not None

    async def test_terminate_escalates_to_kill(self, tmp_path):
        code = ("import signal, sys, time\n"
                "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
                "print('ready', flush=True)\n"
                "time.sleep(30)\n")
        log = tmp_path / "stubborn.log"
        proc = await _spawn("stubborn", [sys.executable, "-c", code], None, None, log)
        for _ in range(100):
            if "ready" in tail_log(log):
                break
            await asyncio.sleep(0.05)

        await proc.terminate(grace_seconds=0.3)

        assert proc.returncode == -9


@pytest.mark.asyncio
class TestWaitForEndpoints:

    async def test_any_response_counts_as_ready(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        await wait_for_endpoints(["http://127.0.0.1:1/", "http://127.0.0.1:2/json/version"],
                                 timeout=1, poll_interval=0.05, transport=transport)

    async def test_exited_process_fails_fast(self):
        dead = Mock()
        dead.name = "dev server"
        dead.returncode = 1

        with pytest.raises(ProvisionFailed, match="dev server exited"):
            await wait_for_endpoints([f"http://127.0.0.1:{_closed_port()}/"], [dead], timeout=5)

    async def test_timeout_names_pending_endpoint(self):
        url = f"http://127.0.0.1:{_closed_port()}/"

        with pytest.raises(WaitTimeout) as exc:
            await wait_for_endpoints([url], timeout=0.2, poll_interval=0.05)

        assert url in str(exc.value)
