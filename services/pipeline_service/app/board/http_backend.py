"""
HTTP backend for the pipeline board client.
Talks to the Pipeline Service over httpx.
"""
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from .. import config
from ..schemas import PipelineData, StageChangeAck
from ..stages import Stage
from .backend import BackendError, BackendUnavailable, MoveRejected, PipelineBackend

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> tuple[str, str]:
    """Pull (reason, message) out of a FastAPI error body."""
    try:
        body = response.json()
    except ValueError:
        return "http_error", response.text[:200] or f"HTTP {response.status_code}"

    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        reason = str(detail.get("reason") or "http_error")
        return reason, str(detail.get("message") or reason)
    if isinstance(detail, str):
        return detail.lower().replace(" ", "_"), detail
    return "validation_error", f"HTTP {response.status_code}"


class HttpPipelineBackend(PipelineBackend):
    """
    Pipeline backend over HTTP.

    Uses PIPELINE_SERVICE_URL unless a base_url or a ready-made client is given.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or config.PIPELINE_SERVICE_URL).rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def fetch_pipeline(self) -> PipelineData:
        try:
            response = await self.client.get("/pipeline")
        except httpx.TimeoutException as e:
            raise BackendUnavailable(f"Timed out fetching pipeline: {e}", "timeout")
        except httpx.TransportError as e:
            raise BackendUnavailable(f"Failed to reach pipeline service: {e}")

        if response.status_code != 200:
            _, message = _error_detail(response)
            raise BackendError(f"Failed to fetch pipeline data: {message}")

        try:
            return PipelineData.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise BackendError(f"Malformed pipeline payload: {e}")

    async def change_stage(self, lead_id: str, stage: Stage, force: bool = False) -> StageChangeAck:
        payload = {"stage": Stage(stage).value, "force": force}
        try:
            response = await self.client.patch(f"/leads/{lead_id}/stage", json=payload)
        except httpx.TimeoutException as e:
            raise BackendUnavailable(f"Timed out moving lead {lead_id}: {e}", "timeout")
        except httpx.TransportError as e:
            raise BackendUnavailable(f"Failed to reach pipeline service: {e}")

        if 400 <= response.status_code < 500:
            reason, message = _error_detail(response)
            raise MoveRejected(reason, message, response.status_code)
        if response.status_code != 200:
            _, message = _error_detail(response)
            raise BackendError(f"Failed to update stage: {message}")

        try:
            return StageChangeAck.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise BackendError(f"Malformed stage change response: {e}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
