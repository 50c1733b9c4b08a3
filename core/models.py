from dataclasses import dataclass
from enum import Enum
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Canonical global asset ID format (e.g. AS-2025-000123). A domain rule --
# not an API contract. All layers (api/, cmdb/, CLI) import it from here.
GLOBAL_ASSET_ID_PATTERN = r"^AS-\d{4}-\d{6}$"


class AssetState(str, Enum):
    """Lifecycle states. Values are the user-facing names."""

    ORDERED = "Ordered"
    RECEIVED = "Received"
    IN_STAGING = "In Staging"
    IN_SERVICE = "In Service"
    IN_REPAIR = "In Repair"
    IN_LOANER = "In Loaner"
    LOST = "Lost"
    RETIRED = "Retired"
    DISPOSED = "Disposed"


TERMINAL_STATES: frozenset[AssetState] = frozenset({AssetState.DISPOSED})

# States an asset may be registered in.
INITIAL_STATES: tuple[AssetState, ...] = (AssetState.ORDERED, AssetState.RECEIVED)


def parse_state(value) -> Optional[AssetState]:
    """Return the AssetState for a state name, or None if it is not one."""
    if isinstance(value, AssetState):
        return value
    try:
        return AssetState(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class TransitionCheck:
    valid: bool
    reason: Optional[str] = None


@dataclass
class TransitionRecord:
    """One committed state change. Inserted once, never updated or deleted."""

    asset_id: str
    from_state: str
    to_state: str
    timestamp: str  # ISO 8601 UTC
    performed_by: str
    reason: Optional[str] = None
    id: Optional[int] = None
