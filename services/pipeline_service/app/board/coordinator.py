"""
Mutation coordinator for operator stage moves.

Each move goes through an explicit lifecycle:

    REQUESTED   optimistic update applied to the board projection
    COMMITTED   server accepted; the optimistic state stays until the next poll
    ROLLED_BACK server refused, failed or timed out; overlay discarded and the
                board refetched from the server

Moves on the same lead are serialized with a per-lead lock so two drags of
one card can never be applied out of order. Moves on different leads run
concurrently. A lead's lock is dropped once nobody holds or waits for it.
"""
import asyncio
import enum
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from .. import config
from ..schemas import StageChangeAck
from ..stages import Stage, parse_stage, stage_label
from .backend import BoardClientError, PipelineBackend
from .projection import BoardProjection

logger = logging.getLogger(__name__)


class MutationState(str, enum.Enum):
    REQUESTED = "requested"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    # Never sent to the server (no-op move or invalid target)
    SKIPPED = "skipped"


@dataclass(frozen=True)
class MutationError:
    reason: str
    message: str
    retryable: bool = False


@dataclass
class Mutation:
    """One move request and where it is in its lifecycle."""

    lead_id: str
    target: Stage
    force: bool
    state: MutationState = MutationState.REQUESTED
    requested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved_at: Optional[datetime] = None
    optimistic: bool = False
    error: Optional[MutationError] = None


@dataclass
class MoveResult:
    """Outcome of request_move. Exactly one of `ack` / `error` is set unless skipped."""

    lead_id: str
    stage: Optional[Stage]
    state: MutationState
    success: bool
    message: str
    ack: Optional[StageChangeAck] = None
    error: Optional[MutationError] = None


@dataclass(frozen=True)
class Notification:
    """Transient message for the operator (toast)."""

    title: str
    message: str
    level: str = "info"


def log_notification(notification: Notification) -> None:
    """Default notifier: write the toast to the log."""
    if notification.level == "error":
        logger.warning(f"🔔 {notification.title}: {notification.message}")
    else:
        logger.info(f"🔔 {notification.title}: {notification.message}")


class MutationCoordinator:
    """
    Applies operator moves optimistically and reconciles them with the server.

    Args:
        backend: Where stage changes are sent and the board is fetched from.
        projection: The board projection the UI renders.
        notify: Callback for operator notifications. Defaults to logging.
        refresh: Coroutine used to refetch after a rollback (usually the
            poller's refresh). Defaults to fetching from `backend` directly.
        move_timeout: Seconds before an unanswered move counts as failed.
        history_limit: How many resolved mutations to keep in `history`.
    """

    def __init__(
        self,
        backend: PipelineBackend,
        projection: BoardProjection,
        notify: Optional[Callable[[Notification], None]] = None,
        refresh: Optional[Callable[[], Awaitable[None]]] = None,
        move_timeout: float = config.MOVE_TIMEOUT_SECONDS,
        history_limit: int = config.MUTATION_HISTORY_LIMIT,
    ):
        self.backend = backend
        self.projection = projection
        self.notify = notify or log_notification
        self._refresh = refresh
        self.move_timeout = move_timeout
        self.history: deque[Mutation] = deque(maxlen=history_limit)
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _lead_lock(self, lead_id: str):
        lock = self._locks.get(lead_id)
        if lock is None:
            lock = self._locks[lead_id] = asyncio.Lock()
        self._lock_users[lead_id] = self._lock_users.get(lead_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[lead_id] -= 1
            if not self._lock_users[lead_id]:
                del self._lock_users[lead_id]
                del self._locks[lead_id]

    def is_pending(self, lead_id: str) -> bool:
        lock = self._locks.get(lead_id)
        return bool(lock and lock.locked())

    async def request_move(self, lead_id: str, target_stage, force: bool = False) -> MoveResult:
        """
        Move a lead to `target_stage`.

        Never raises for validation, network or timeout failures; they come
        back as a MoveResult with success=False after the board is rolled back.
        """
        stage = parse_stage(target_stage)
        if stage is None:
            error = MutationError("invalid_stage", f"Unknown stage '{target_stage}'")
            self.notify(Notification("Update Failed", error.message, "error"))
            return MoveResult(
                lead_id=lead_id,
                stage=None,
                state=MutationState.SKIPPED,
                success=False,
                message=error.message,
                error=error,
            )

        async with self._lead_lock(lead_id):
            already_there = self.projection.current_stage(lead_id) == stage
            if already_there and not force:
                return MoveResult(
                    lead_id=lead_id,
                    stage=stage,
                    state=MutationState.SKIPPED,
                    success=True,
                    message=f"Lead already in {stage_label(stage)}",
                )

            mutation = Mutation(lead_id=lead_id, target=stage, force=force)
            self.history.append(mutation)
            if already_there:
                # The server keeps stage_updated_at on a same-stage move, so the card stays as is
                logger.debug(f"Forced move of lead {lead_id} to its current stage, board left unchanged")
            else:
                mutation.optimistic = self.projection.apply_move(lead_id, stage)
                if not mutation.optimistic:
                    logger.debug(f"Lead {lead_id} not on the board, sending move without optimistic update")

            try:
                ack = await asyncio.wait_for(
                    self.backend.change_stage(lead_id, stage, force), self.move_timeout
                )
            except asyncio.TimeoutError:
                error = MutationError(
                    "timeout", f"No response after {self.move_timeout:g}s", retryable=True
                )
            except BoardClientError as e:
                error = MutationError(e.reason, e.message, e.retryable)
            except asyncio.CancelledError:
                self.projection.discard(lead_id)
                mutation.state = MutationState.ROLLED_BACK
                mutation.resolved_at = datetime.now(timezone.utc)
                raise
            else:
                return self._commit(mutation, ack)

            return await self._roll_back(mutation, error)

    def _commit(self, mutation: Mutation, ack: StageChangeAck) -> MoveResult:
        mutation.state = MutationState.COMMITTED
        mutation.resolved_at = datetime.now(timezone.utc)

        message = f"Lead moved to {stage_label(ack.new_stage)}"
        logger.info(f"✅ Move committed: lead {mutation.lead_id} -> {ack.new_stage.value}")
        self.notify(Notification("Stage Updated", message))

        return MoveResult(
            lead_id=mutation.lead_id,
            stage=ack.new_stage,
            state=mutation.state,
            success=True,
            message=message,
            ack=ack,
        )

    async def _roll_back(self, mutation: Mutation, error: MutationError) -> MoveResult:
        mutation.state = MutationState.ROLLED_BACK
        mutation.resolved_at = datetime.now(timezone.utc)
        mutation.error = error

        logger.warning(
            f"⚠️ Move rolled back: lead {mutation.lead_id} -> {mutation.target.value} ({error.reason})"
        )
        self.projection.discard(mutation.lead_id)
        await self._refetch()
        self.notify(Notification("Update Failed", error.message, "error"))

        return MoveResult(
            lead_id=mutation.lead_id,
            stage=mutation.target,
            state=mutation.state,
            success=False,
            message=error.message,
            error=error,
        )

    async def _refetch(self) -> None:
        """Snap the board back to the server's truth. A failure waits for the next poll."""
        if self._refresh is not None:
            await self._refresh()
            return

        try:
            data = await self.backend.fetch_pipeline()
        except BoardClientError as e:
            logger.warning(f"⚠️ Refetch after rollback failed, waiting for next poll: {e}")
            return
        self.projection.replace(data)
