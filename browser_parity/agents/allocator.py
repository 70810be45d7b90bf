"""Hands out non-colliding ports and browser profile directories to agents."""

from __future__ import annotations

import logging
import re
import shutil
import socket
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from browser_parity.errors import ResourceBusy
from browser_parity.models.config import AllocatorConfig

logger = logging.getLogger(__name__)

DEBUG_PORT = "debug_port"
APP_PORT = "app_port"
PROFILE = "profile"
KINDS = (DEBUG_PORT, APP_PORT, PROFILE)


@dataclass(frozen=True)
class ResourceHandle:
    kind: str
    agent_id: str
    port: Optional[int] = None
    path: Optional[Path] = None

    @property
    def value(self) -> int | Path:
        return self.port if self.port is not None else self.path


def port_is_free(host: str, port: int) -> bool:
    """True if nothing is currently bound to host:port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class ResourceAllocator:
    """Reservation table over a bounded port range plus per-agent profile dirs.

    All reads and writes of the table happen under one lock, so concurrent
    ``allocate`` calls never hand out the same handle. Transient contention is
    retried ``retry_attempts`` times; retries sleep outside the lock.
    """

    def __init__(
        self,
        config: AllocatorConfig,
        port_probe: Callable[[str, int], bool] | None = None,
        remove_tree: Callable[[Path], None] | None = None,
    ):
        self.config = config
        self.profiles_root = Path(config.profiles_dir)
        self._port_probe = port_probe or port_is_free
        self._remove_tree = remove_tree or shutil.rmtree
        self._lock = threading.Lock()
        self._ports: dict[int, ResourceHandle] = {}
        self._profiles: dict[Path, ResourceHandle] = {}

    def allocate(self, kind: str, agent_id: str, budget: int | None = None) -> ResourceHandle:
        """Reserve a resource of ``kind`` for ``agent_id``.

        ``budget`` caps how many port slots are scanned (ignored for profiles).
        """
        if kind not in KINDS:
            raise ValueError(f"Unknown resource kind: {kind}")
        return self._with_retries(
            f"allocate {kind} for agent {agent_id}",
            lambda: self._allocate_locked(kind, agent_id, budget),
        )

    def release(self, handle: ResourceHandle) -> None:
        """Return a resource. Raises ResourceBusy and keeps the reservation if it is still in use."""
        self._with_retries(f"release {handle.kind} {handle.value}", lambda: self._release_locked(handle))

    def reserved(self) -> list[ResourceHandle]:
        with self._lock:
            return list(self._ports.values()) + list(self._profiles.values())

    def profile_path(self, agent_id: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]+", "-", str(agent_id)).strip("-") or "agent"
        return self.profiles_root / f"agent-{safe}"

    def _with_retries(self, what: str, op: Callable[[], object]):
        attempts = self.config.retry_attempts
        last_error: ResourceBusy | None = None
        for attempt in range(1, attempts + 1):
            try:
                with self._lock:
                    return op()
            except ResourceBusy as e:
                last_error = e
                if attempt < attempts:
                    logger.debug("%s: %s (attempt %d/%d), retrying", what, e, attempt, attempts)
                    time.sleep(self.config.retry_delay_seconds)
        logger.warning("%s failed after %d attempts: %s", what, attempts, last_error)
        raise last_error

    def _allocate_locked(self, kind: str, agent_id: str, budget: int | None) -> ResourceHandle:
        if kind == PROFILE:
            return self._allocate_profile(agent_id)

        base = self.config.debug_port_base if kind == DEBUG_PORT else self.config.app_port_base
        limit = self.config.port_range_size
        if budget is not None:
            limit = max(0, min(budget, limit))
        for offset in range(limit):
            port = base + offset
            if port in self._ports:
                continue
            if not self._port_probe(self.config.host, port):
                logger.debug("Port %d is bound by another process, skipping", port)
                continue
            handle = ResourceHandle(kind=kind, agent_id=agent_id, port=port)
            self._ports[port] = handle
            logger.debug("Reserved %s %d for agent %s", kind, port, agent_id)
            return handle
        raise ResourceBusy(f"No free {kind} in [{base}, {base + limit}) for agent {agent_id}")

    def _allocate_profile(self, agent_id: str) -> ResourceHandle:
        path = self.profile_path(agent_id)
        if path in self._profiles:
            raise ResourceBusy(f"Profile {path} is held by a live agent")
        if path.exists():
            # Left behind by a crashed agent; never reuse its contents.
            logger.info("Removing stale profile directory %s", path)
            try:
                self._remove_tree(path)
            except OSError as e:
                raise ResourceBusy(f"Stale profile {path} could not be removed: {e}") from e
        path.mkdir(parents=True, exist_ok=True)
        handle = ResourceHandle(kind=PROFILE, agent_id=agent_id, path=path)
        self._profiles[path] = handle
        logger.debug("Reserved profile %s for agent %s", path, agent_id)
        return handle

    def _release_locked(self, handle: ResourceHandle) -> None:
        if handle.kind == PROFILE:
            if self._profiles.get(handle.path) != handle:
                logger.debug("Profile %s is not reserved, nothing to release", handle.path)
                return
            if handle.path.exists():
                try:
                    self._remove_tree(handle.path)
                except OSError as e:
                    raise ResourceBusy(f"Profile {handle.path} is busy: {e}") from e
            del self._profiles[handle.path]
            logger.debug("Released profile %s", handle.path)
            return

        if self._ports.get(handle.port) != handle:
            logger.debug("Port %s is not reserved, nothing to release", handle.port)
            return
        if not self._port_probe(self.config.host, handle.port):
            raise ResourceBusy(f"Port {handle.port} is still bound")
        del self._ports[handle.port]
        logger.debug("Released %s %d", handle.kind, handle.port)
