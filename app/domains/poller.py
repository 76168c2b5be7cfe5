"""
Periodic refresh of domains still pending at the provider.
"""

import asyncio
import logging
from typing import Optional

from .lifecycle import DomainLifecycle

logger = logging.getLogger("simplhost.domains.poller")


class DomainPoller:
    """Runs DomainLifecycle.refresh_all_pending on a fixed interval."""

    def __init__(self, lifecycle: DomainLifecycle, interval: float):
        self.lifecycle = lifecycle
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        try:
            return await self.lifecycle.refresh_all_pending()
        except Exception as e:
            # A failed sweep must not kill the loop; the next one retries
            logger.error(f"Pending domain sweep failed: {e}")
            return 0

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Domain poller started (every {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Domain poller stopped")
