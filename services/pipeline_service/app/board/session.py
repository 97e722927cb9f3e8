"""
Board session: wires backend, projection, poller and coordinator together
for one operator console.
"""
from typing import Callable, Optional

from .. import config
from ..schemas import PipelineData
from .backend import PipelineBackend
from .coordinator import MoveResult, MutationCoordinator, Notification
from .http_backend import HttpPipelineBackend
from .poller import BoardPoller
from .projection import BoardProjection


class BoardSession:
    """
    One operator's view of the pipeline board.

    Usage:
        session = BoardSession()
        await session.start()
        result = await session.move(lead_id, "booked")
        board = session.board
        await session.close()
    """

    def __init__(
        self,
        backend: Optional[PipelineBackend] = None,
        notify: Optional[Callable[[Notification], None]] = None,
        poll_interval: float = config.POLL_INTERVAL_SECONDS,
        move_timeout: float = config.MOVE_TIMEOUT_SECONDS,
    ):
        self.backend = backend or HttpPipelineBackend()
        self.projection = BoardProjection()
        self.poller = BoardPoller(self.backend, self.projection, interval=poll_interval)
        self.coordinator = MutationCoordinator(
            self.backend,
            self.projection,
            notify=notify,
            refresh=self._refresh_after_rollback,
            move_timeout=move_timeout,
        )

    @property
    def board(self) -> Optional[PipelineData]:
        return self.projection.view()

    async def _refresh_after_rollback(self) -> None:
        await self.poller.refresh()

    async def start(self) -> None:
        self.poller.start()

    async def refresh(self) -> bool:
        return await self.poller.refresh()

    async def move(self, lead_id: str, stage, force: bool = False) -> MoveResult:
        return await self.coordinator.request_move(lead_id, stage, force=force)

    async def close(self) -> None:
        await self.poller.stop()
        await self.backend.aclose()
