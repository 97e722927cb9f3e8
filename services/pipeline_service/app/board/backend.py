"""
Abstract backend for the pipeline board client.
Anything that can serve the board and apply stage moves (the HTTP API, a
fake in tests) implements this interface, so the coordinator never depends
on a transport.
"""
from abc import ABC, abstractmethod
from typing import Optional

from ..schemas import PipelineData, StageChangeAck
from ..stages import Stage


class BoardClientError(Exception):
    """Base class for board client failures."""

    reason = "error"
    retryable = False

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason


class MoveRejected(BoardClientError):
    """The server refused a stage move (validation error, unknown lead, ...)."""

    def __init__(self, reason: str, message: str, status_code: int = 400):
        super().__init__(message, reason)
        self.status_code = status_code


class BackendUnavailable(BoardClientError):
    """Network failure or timeout talking to the server."""

    reason = "unavailable"
    retryable = True


class BackendError(BoardClientError):
    """Unexpected server response (5xx, malformed body)."""

    reason = "server_error"
    retryable = True


class PipelineBackend(ABC):
    """
    Pipeline backend interface.

    The server is the single source of truth; the client only reads the board
    and requests stage changes through these two calls.
    """

    @abstractmethod
    async def fetch_pipeline(self) -> PipelineData:
        """
        Fetch the authoritative board.

        Raises:
            BackendUnavailable, BackendError.
        """
        ...

    @abstractmethod
    async def change_stage(self, lead_id: str, stage: Stage, force: bool = False) -> StageChangeAck:
        """
        Ask the server to move a lead.

        Returns:
            The server's acknowledgement.

        Raises:
            MoveRejected when the server refuses the move,
            BackendUnavailable / BackendError otherwise.
        """
        ...

    async def aclose(self) -> None:
        """Release any underlying resources."""
        return None
