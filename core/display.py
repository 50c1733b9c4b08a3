"""
core/display.py -- State presentation metadata (label, colour, icon).

Kept separate from cmdb/lifecycle.py: validation never looks at colours and
this table never decides which transitions are allowed.
"""

from dataclasses import dataclass
from typing import Optional

from core.models import AssetState, parse_state


@dataclass(frozen=True)
class StateDisplay:
    label: str
    color: str
    icon: Optional[str] = None


STATE_DISPLAY: dict[AssetState, StateDisplay] = {
    AssetState.ORDERED: StateDisplay("Ordered", "blue", "cart"),
    AssetState.RECEIVED: StateDisplay("Received", "purple", "inbox"),
    AssetState.IN_STAGING: StateDisplay("In Staging", "yellow", "tool"),
    AssetState.IN_SERVICE: StateDisplay("In Service", "green", "check-circle"),
    AssetState.IN_REPAIR: StateDisplay("In Repair", "orange", "wrench"),
    AssetState.IN_LOANER: StateDisplay("In Loaner", "cyan", "repeat"),
    AssetState.LOST: StateDisplay("Lost", "red", "alert-triangle"),
    AssetState.RETIRED: StateDisplay("Retired", "gray", "archive"),
    AssetState.DISPOSED: StateDisplay("Disposed", "black", "trash"),
}


def get_state_display(state) -> StateDisplay:
    """Return display metadata for a state. Unknown states render gray."""
    parsed = parse_state(state)
    if parsed is None:
        return StateDisplay(label=str(state), color="gray")
    return STATE_DISPLAY[parsed]
