"""
cmdb/lifecycle.py -- Asset lifecycle state machine.

Pure functions over the transition rule table. No I/O, no module state that
changes after import, safe to call from any thread.

    Ordered -> Received -> In Staging -> In Service
    In Service <-> In Repair, In Service <-> In Loaner
    In Service -> Lost -> In Service (recovered) | Disposed (auto-escalation)
    In Service -> Retired -> Disposed
    In Service -> Disposed

Two layers:
  is_valid_transition() answers "is this edge allowed for this asset now?".
  Commit preconditions (the wipe certificate for disposal) are checked by
  CMDBStore.commit_transition() at write time. A disposal is therefore valid
  here even when no certificate is attached yet.
"""

from dataclasses import dataclass
from typing import Optional

from cmdb.models import Asset
from core.models import TERMINAL_STATES, AssetState, TransitionCheck, parse_state


@dataclass(frozen=True)
class TransitionRule:
    from_state: AssetState
    to_state: AssetState
    owner_required: bool = False
    # Enforced by the store at commit, never by is_valid_transition().
    wipe_cert_required: bool = False


@dataclass(frozen=True)
class ActionCheck:
    can: bool
    reason: Optional[str] = None


S = AssetState

# Order matters: get_valid_next_states() returns targets in table order.
TRANSITION_RULES: tuple[TransitionRule, ...] = (
    TransitionRule(S.ORDERED, S.RECEIVED),
    TransitionRule(S.RECEIVED, S.IN_STAGING),
    TransitionRule(S.IN_STAGING, S.IN_SERVICE, owner_required=True),
    TransitionRule(S.IN_SERVICE, S.IN_REPAIR),
    TransitionRule(S.IN_SERVICE, S.IN_LOANER),
    TransitionRule(S.IN_REPAIR, S.IN_SERVICE),
    TransitionRule(S.IN_LOANER, S.IN_SERVICE),
    TransitionRule(S.IN_SERVICE, S.LOST),
    TransitionRule(S.IN_SERVICE, S.RETIRED),
    TransitionRule(S.IN_SERVICE, S.DISPOSED, wipe_cert_required=True),
    TransitionRule(S.LOST, S.IN_SERVICE),
    # A lost device cannot be wiped; the sweep disposes it without a certificate.
    TransitionRule(S.LOST, S.DISPOSED),
    TransitionRule(S.RETIRED, S.DISPOSED, wipe_cert_required=True),
)

_RULES_BY_EDGE: dict[tuple[AssetState, AssetState], TransitionRule] = {
    (r.from_state, r.to_state): r for r in TRANSITION_RULES
}


def find_rule(from_state, to_state) -> Optional[TransitionRule]:
    """Return the rule for an edge, or None if the edge is not in the table."""
    src, dst = parse_state(from_state), parse_state(to_state)
    if src is None or dst is None:
        return None
    return _RULES_BY_EDGE.get((src, dst))


def is_valid_transition(from_state, to_state, asset: Optional[Asset] = None) -> TransitionCheck:
    """Check one candidate edge. Never raises.

    The reason string is shown verbatim to users, so its wording is part of
    the contract. asset is optional: without it only the graph is checked.
    """
    src = parse_state(from_state)
    if src is None:
        return TransitionCheck(False, f"Unknown state: {from_state}")
    dst = parse_state(to_state)
    if dst is None:
        return TransitionCheck(False, f"Unknown state: {to_state}")

    if src == dst:
        return TransitionCheck(False, f"Asset is already {src.value}")

    if src in TERMINAL_STATES:
        return TransitionCheck(False, f"{src.value} is a terminal state; no further transitions are allowed")

    rule = _RULES_BY_EDGE.get((src, dst))
    if rule is None:
        return TransitionCheck(False, f"Invalid transition from {src.value} to {dst.value}")

    if asset is not None and rule.owner_required and asset.owner is None:
        return TransitionCheck(False, "Owner is required for this transition")

    return TransitionCheck(True)


def get_valid_next_states(current_state, asset: Optional[Asset] = None) -> list[AssetState]:
    """Return every state reachable from current_state for this asset, in rule order."""
    src = parse_state(current_state)
    if src is None:
        return []
    return [
        rule.to_state
        for rule in TRANSITION_RULES
        if rule.from_state == src and is_valid_transition(src, rule.to_state, asset).valid
    ]


def lifecycle_graph() -> dict[AssetState, list[AssetState]]:
    """Return the adjacency list of the rule table, one entry per state."""
    graph: dict[AssetState, list[AssetState]] = {state: [] for state in AssetState}
    for rule in TRANSITION_RULES:
        graph[rule.from_state].append(rule.to_state)
    return graph


# ---------------------------------------------------------------------------
# Action checks -- what the UI may offer for an asset in its current state
# ---------------------------------------------------------------------------


def has_wipe_cert(asset: Asset) -> bool:
    return any(doc.doc_type == "WipeCert" for doc in asset.docs)


def can_dispose(asset: Asset) -> ActionCheck:
    if asset.owner is not None and asset.state != AssetState.RETIRED.value:
        return ActionCheck(False, "Asset must be unassigned before disposal")
    if not has_wipe_cert(asset):
        return ActionCheck(False, "Data wipe certificate is required")
    return ActionCheck(True)


def can_assign(asset: Asset) -> ActionCheck:
    if asset.state not in (AssetState.IN_SERVICE.value, AssetState.IN_LOANER.value):
        return ActionCheck(False, f"Asset must be in service to assign. Current state: {asset.state}")
    return ActionCheck(True)


def can_checkout_as_loaner(asset: Asset) -> ActionCheck:
    if asset.state != AssetState.IN_SERVICE.value:
        return ActionCheck(False, "Asset must be in service to checkout as loaner")
    if asset.owner is not None:
        return ActionCheck(False, "Asset must be unassigned to checkout as loaner")
    return ActionCheck(True)
