"""
Periodic board refresh.
Keeps the projection within one poll interval of the server's truth.
"""
import asyncio
import logging
from typing import Optional

from .. import config
from .backend import BoardClientError, PipelineBackend
from .projection import BoardProjection

logger = logging.getLogger(__name__)


class BoardPoller:
    """
    Refreshes the board projection on a fixed interval and on demand.

    A failed poll is logged and left for the next tick; there is no
    immediate retry.
    """

    def __init__(
        self,
        backend: PipelineBackend,
        projection: BoardProjection,
        interval: float = config.POLL_INTERVAL_SECONDS,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.backend = backend
        self.projection = projection
        self.interval = interval
        self.consecutive_failures = 0
        self._task: Optional[asyncio.Task] = None
        self._refresh_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> bool:
        """Fetch the board and replace the projection. Returns False if the fetch failed."""
        async with self._refresh_lock:
            try:
                data = await self.backend.fetch_pipeline()
            except BoardClientError as e:
                self.consecutive_failures += 1
                logger.warning(
                    f"⚠️ Pipeline refresh failed ({self.consecutive_failures} in a row): {e}"
                )
                return False

            self.projection.replace(data)
            self.consecutive_failures = 0
            logger.debug(f"Pipeline refreshed: {data.totals.total} leads")
            return True

    async def _run(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        """Start polling in the background (first refresh happens immediately)."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"🔄 Pipeline polling every {self.interval:g}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("⏹️ Pipeline polling stopped")
