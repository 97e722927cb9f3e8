"""
Client-side projection of the pipeline board.

Holds the last authoritative PipelineData from the server plus an overlay of
optimistic moves that have not been reconciled yet. The overlay is replayed
on top of the snapshot to produce what the board shows; a fresh snapshot
replaces everything (never merged).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

from ..aggregator import build_swimlane, summarize_totals
from ..schemas import PipelineData, PipelineItem
from ..sla import SLAThresholds, classify_sla
from ..stages import Stage, next_action, stage_label

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimisticMove:
    lead_id: str
    target: Stage
    applied_at: datetime


def find_item(data: Optional[PipelineData], lead_id: str) -> Optional[PipelineItem]:
    if data is None:
        return None
    for lane in data.swimlanes:
        for cell in lane.stages:
            for item in cell.items:
                if item.id == lead_id:
                    return item
    return None


def move_item(
    data: PipelineData,
    lead_id: str,
    target: Stage,
    now: datetime,
    thresholds: Optional[Mapping[Stage, SLAThresholds]] = None,
) -> Optional[PipelineData]:
    """
    Return a copy of `data` with the lead moved to the top of `target` in its lane.
    Returns None when the lead is not on the board. `data` is left untouched.
    """
    moved = data.model_copy(deep=True)

    for index, lane in enumerate(moved.swimlanes):
        for cell in lane.stages:
            item = next((i for i in cell.items if i.id == lead_id), None)
            if item is None:
                continue

            cell.items.remove(item)
            cell.count = len(cell.items)

            item.stage = target
            item.stage_label = stage_label(target)
            item.next_action = next_action(target)
            item.stage_updated_at = now
            item.time_in_stage = "Just now"
            item.sla_status = classify_sla(target, timedelta(0), thresholds)

            target_cell = next(c for c in lane.stages if c.stage == target)
            target_cell.items.insert(0, item)
            target_cell.count = len(target_cell.items)

            moved.swimlanes[index] = build_swimlane(lane.lane, lane.stages)
            moved.totals = summarize_totals(moved.swimlanes)
            return moved

    return None


class BoardProjection:
    """What the board currently shows: authoritative snapshot + optimistic overlay."""

    def __init__(self, thresholds: Optional[Mapping[Stage, SLAThresholds]] = None):
        self.thresholds = thresholds
        self._snapshot: Optional[PipelineData] = None
        self._overlay: dict[str, OptimisticMove] = {}
        self._view: Optional[PipelineData] = None

    @property
    def snapshot(self) -> Optional[PipelineData]:
        """Last authoritative board from the server."""
        return self._snapshot

    @property
    def pending(self) -> dict[str, OptimisticMove]:
        return dict(self._overlay)

    def view(self) -> Optional[PipelineData]:
        return self._view

    def find(self, lead_id: str) -> Optional[PipelineItem]:
        return find_item(self._view, lead_id)

    def current_stage(self, lead_id: str) -> Optional[Stage]:
        item = self.find(lead_id)
        return item.stage if item else None

    def replace(self, data: PipelineData) -> None:
        """Install a fresh authoritative board and drop every optimistic move."""
        if self._overlay:
            logger.debug(f"Dropping {len(self._overlay)} optimistic move(s) on refresh")
        self._snapshot = data
        self._overlay = {}
        self._view = data

    def apply_move(self, lead_id: str, target: Stage, now: Optional[datetime] = None) -> bool:
        """Optimistically show `lead_id` in `target`. False if the lead is not on the board."""
        if self._view is None:
            return False

        now = now or datetime.now(timezone.utc)
        moved = move_item(self._view, lead_id, target, now, self.thresholds)
        if moved is None:
            return False

        self._overlay.pop(lead_id, None)
        self._overlay[lead_id] = OptimisticMove(lead_id=lead_id, target=target, applied_at=now)
        self._view = moved
        return True

    def discard(self, lead_id: str) -> None:
        """Drop one optimistic move and rebuild the view from the snapshot."""
        if self._overlay.pop(lead_id, None) is None:
            return

        view = self._snapshot
        for move in self._overlay.values():
            if view is None:
                break
            view = move_item(view, move.lead_id, move.target, move.applied_at, self.thresholds) or view
        self._view = view
