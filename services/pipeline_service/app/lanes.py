"""
Lane (quote path) classification.
Routes each lead into a swimlane by the kind of quote experience it was shown.
"""
import enum
import logging
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


class Lane(str, enum.Enum):
    """Routing lane of a lead on the pipeline board."""

    INSTANT = "instant"
    TIERED = "tiered"
    ASSESSMENT = "assessment"
    NO_QUOTE = "no_quote"


LANE_ORDER: list[Lane] = list(Lane)

LANE_TITLES: dict[Lane, str] = {
    Lane.INSTANT: "Instant Quote",
    Lane.TIERED: "Tiered Quote",
    Lane.ASSESSMENT: "Assessment",
    Lane.NO_QUOTE: "No Quote Yet",
}

# quote_mode values written by the quote builder
_QUOTE_MODE_LANES: dict[str, Lane] = {
    "simple": Lane.INSTANT,
    "instant": Lane.INSTANT,
    "hhh": Lane.TIERED,
    "pick_and_mix": Lane.TIERED,
    "tiered": Lane.TIERED,
    "consultation": Lane.ASSESSMENT,
    "assessment": Lane.ASSESSMENT,
}


def _quote_mode(quote: Any) -> Optional[str]:
    if isinstance(quote, Mapping):
        mode = quote.get("quote_mode")
    else:
        mode = getattr(quote, "quote_mode", None)
    return mode if isinstance(mode, str) else None


def classify_lane(quote: Any) -> Lane:
    """
    Pick the lane for a lead from its quote metadata.

    Accepts a QuoteInfo, a plain mapping or None. A missing quote and an
    unrecognised quote_mode both land in Lane.NO_QUOTE; this never raises.
    """
    if quote is None:
        return Lane.NO_QUOTE

    mode = _quote_mode(quote)
    if mode is None:
        return Lane.NO_QUOTE

    lane = _QUOTE_MODE_LANES.get(mode.strip().lower())
    if lane is None:
        logger.debug(f"Unrecognised quote_mode '{mode}', using {Lane.NO_QUOTE.value}")
        return Lane.NO_QUOTE
    return lane


def lane_title(lane: Lane) -> str:
    return LANE_TITLES[lane]
