"""Process launchers for the two collaborators an agent owns: dev server and browser."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from contextlib import suppress
from pathlib import Path
from typing import Optional

from playwright.async_api import Browser, Playwright

from browser_parity.models.config import BrowserConfig, DevServerConfig

logger = logging.getLogger(__name__)


def _substitute(value: str, **fields: str) -> str:
    for key, replacement in fields.items():
        value = value.replace("{" + key + "}", replacement)
    return value


def tail_log(path: Path | None, lines: int = 20) -> str:
    """Last lines of a process log, for failure messages."""
    if not path or not path.exists():
        return ""
    try:
        content = path.read_text(errors="replace").splitlines()
    except OSError:
        return ""
    return "\n".join(content[-lines:])


class ManagedProcess:
    """An owned child process, started in its own process group."""

    def __init__(self, name: str, process: asyncio.subprocess.Process, log_path: Path | None = None):
        self.name = name
        self.process = process
        self.log_path = log_path

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    async def wait(self) -> int:
        return await self.process.wait()

    def _signal(self, sig: int) -> None:
        if hasattr(os, "killpg"):
            with suppress(ProcessLookupError, PermissionError):
                os.killpg(os.getpgid(self.process.pid), sig)
                return
        with suppress(ProcessLookupError):
            if sig == getattr(signal, "SIGKILL", None):
                self.process.kill()
            else:
                self.process.terminate()

    async def terminate(self, grace_seconds: float) -> None:
        """SIGTERM the process group, SIGKILL whatever survives the grace period."""
        if self.process.returncode is not None:
            return
        logger.debug("Terminating %s (pid %d)", self.name, self.pid)
        self._signal(signal.SIGTERM)
        try:
            await asyncio.wait_for(self.process.wait(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("%s (pid %d) still running after %.1fs, killing",
                           self.name, self.pid, grace_seconds)
            self._signal(getattr(signal, "SIGKILL", signal.SIGTERM))
            await self.process.wait()


async def _spawn(name: str, argv: list[str], cwd: Path | None, env: dict | None,
                 log_path: Path | None) -> ManagedProcess:
    logger.debug("Spawning %s: %s (cwd=%s)", name, " ".join(argv), cwd)
    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        out = open(log_path, "ab")
    else:
        out = asyncio.subprocess.DEVNULL
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd else None,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=out,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )
    finally:
        if log_path:
            out.close()
    return ManagedProcess(name, process, log_path)


class DevServerLauncher:
    """Starts the application dev server for a workspace on a given port."""

    def __init__(self, config: DevServerConfig, host: str = "127.0.0.1"):
        self.config = config
        self.host = host

    def build_command(self, workspace: Path, port: int) -> list[str]:
        fields = {"port": str(port), "host": self.host, "path": str(workspace)}
        return [_substitute(arg, **fields) for arg in self.config.command]

    def build_env(self, workspace: Path, port: int) -> dict[str, str]:
        fields = {"port": str(port), "host": self.host, "path": str(workspace)}
        env = os.environ.copy()
        env["PORT"] = str(port)
        env.update({k: _substitute(v, **fields) for k, v in self.config.env.items()})
        return env

    def ready_url(self, port: int) -> str:
        path = self.config.ready_path if self.config.ready_path.startswith("/") else "/" + self.config.ready_path
        return f"http://{self.host}:{port}{path}"

    async def launch(self, workspace: Path, port: int, log_path: Path | None = None) -> ManagedProcess:
        argv = self.build_command(workspace, port)
        return await _spawn("dev server", argv, workspace, self.build_env(workspace, port), log_path)


class BrowserLauncher:
    """Starts Chromium with a remote-debugging port and attaches Playwright over CDP."""

    def __init__(self, config: BrowserConfig, host: str = "127.0.0.1"):
        self.config = config
        self.host = host

    def build_command(self, executable: str, debug_port: int, profile_dir: Path) -> list[str]:
        argv = [
            executable,
            f"--remote-debugging-port={debug_port}",
            f"--remote-debugging-address={self.host}",
            f"--user-data-dir={profile_dir}",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-blink-features=AutomationControlled",
            "--hide-scrollbars",
            "--force-color-profile=srgb",
        ]
        if self.config.headless:
            argv.append("--headless=new")
        argv.extend(self.config.extra_args)
        argv.append("about:blank")
        return argv

    def debug_url(self, debug_port: int) -> str:
        return f"http://{self.host}:{debug_port}/json/version"

    async def launch(self, playwright: Playwright, debug_port: int, profile_dir: Path,
                     log_path: Path | None = None) -> ManagedProcess:
        executable = self.config.executable_path or playwright.chromium.executable_path
        argv = self.build_command(executable, debug_port, profile_dir)
        return await _spawn("browser", argv, None, None, log_path)

    async def connect(self, playwright: Playwright, debug_port: int) -> Browser:
        endpoint = f"http://{self.host}:{debug_port}"
        logger.debug("Connecting Playwright over CDP to %s", endpoint)
        return await playwright.chromium.connect_over_cdp(
            endpoint, timeout=self.config.startup_timeout_seconds * 1000,
        )
