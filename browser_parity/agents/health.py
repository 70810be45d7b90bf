"""Readiness polling for agent endpoints."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Sequence

import httpx

from browser_parity.errors import ProvisionFailed, WaitTimeout

from .launcher import ManagedProcess

logger = logging.getLogger(__name__)


async def wait_for_endpoints(
    urls: Sequence[str],
    processes: Sequence[ManagedProcess] = (),
    *,
    timeout: float,
    poll_interval: float = 0.25,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Poll every URL until each has answered once.

    Any HTTP response counts as an answer (a dev server may legitimately
    return 404 on its root). Fails fast with ProvisionFailed if one of
    ``processes`` exits, and with WaitTimeout when ``timeout`` elapses.
    """
    pending = list(urls)
    deadline = time.monotonic() + max(timeout, 0.0)
    poll_interval = max(poll_interval, 0.05)
    last_error: dict[str, str] = {}
    async with httpx.AsyncClient(timeout=2.0, transport=transport, trust_env=False) as client:
        while pending:
            for proc in processes:
                if proc.returncode is not None:
                    raise ProvisionFailed(
                        f"{proc.name} exited with code {proc.returncode} before becoming ready"
                    )
            for url in list(pending):
                try:
                    response = await client.get(url)
                except httpx.HTTPError as exc:
                    last_error[url] = str(exc) or type(exc).__name__
                    logger.debug("Endpoint %s not ready: %s", url, exc)
                    continue
                logger.debug("Endpoint %s answered with %d", url, response.status_code)
                pending.remove(url)
            if not pending:
                return
            if time.monotonic() >= deadline:
                details = "; ".join(f"{u} ({last_error.get(u, 'no answer')})" for u in pending)
                raise WaitTimeout(f"Timed out after {timeout:.1f}s waiting for {details}")
            await asyncio.sleep(poll_interval)
