"""Unit tests for cmdb/lifecycle.py -- the asset lifecycle state machine.

Covers:
- No state may transition to itself
- Disposed is terminal: no next states from it
- Pairs outside the rule table are invalid with a non-empty reason
- get_valid_next_states() agrees with is_valid_transition() for every state
- In Staging -> In Service requires an owner
- In Service -> Disposed is valid in the engine even without a wipe certificate
- Action checks (dispose, assign, loaner checkout)
"""

import pytest

from cmdb.lifecycle import (
    TRANSITION_RULES,
    can_assign,
    can_checkout_as_loaner,
    can_dispose,
    find_rule,
    get_valid_next_states,
    is_valid_transition,
    lifecycle_graph,
)
from cmdb.models import Asset, AssetDocument, AssetOwner
from core.models import TERMINAL_STATES, AssetState

ALL_STATES = list(AssetState)
RULE_EDGES = {(r.from_state, r.to_state) for r in TRANSITION_RULES}


def _asset(state: AssetState, with_owner: bool = False, docs=None) -> Asset:
    return Asset(
        asset_class="Laptop",
        model="ThinkPad T14",
        state=state.value,
        owner=AssetOwner(user_id="u-7", upn="bob@example.com") if with_owner else None,
        docs=docs or [],
    )


# ---------------------------------------------------------------------------
# Graph properties
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("state", ALL_STATES)
def test_self_transition_is_invalid(state):
    check = is_valid_transition(state, state, _asset(state, with_owner=True))
    assert not check.valid
    assert check.reason == f"Asset is already {state.value}"


@pytest.mark.parametrize("state", sorted(TERMINAL_STATES, key=lambda s: s.value))
def test_terminal_states_have_no_next_states(state):
    assert get_valid_next_states(state, _asset(state, with_owner=True)) == []
    assert lifecycle_graph()[state] == []


def test_only_disposed_is_terminal():
    assert TERMINAL_STATES == frozenset({AssetState.DISPOSED})


@pytest.mark.parametrize("src", ALL_STATES)
@pytest.mark.parametrize("dst", ALL_STATES)
def test_pairs_outside_rule_table_are_invalid(src, dst):
    if (src, dst) in RULE_EDGES:
        return
    check = is_valid_transition(src, dst)
    assert not check.valid
    assert check.reason


@pytest.mark.parametrize("state", ALL_STATES)
@pytest.mark.parametrize("with_owner", [True, False])
def test_next_states_match_valid_transitions(state, with_owner):
    asset = _asset(state, with_owner=with_owner)
    expected = {dst for dst in ALL_STATES if is_valid_transition(state, dst, asset).valid}
    assert set(get_valid_next_states(state, asset)) == expected


def test_next_states_follow_rule_table_order():
    assert get_valid_next_states(AssetState.IN_SERVICE) == [
        AssetState.IN_REPAIR,
        AssetState.IN_LOANER,
        AssetState.LOST,
        AssetState.RETIRED,
        AssetState.DISPOSED,
    ]


def test_accepts_state_names_as_strings():
    assert is_valid_transition("Ordered", "Received").valid
    assert get_valid_next_states("Lost") == [AssetState.IN_SERVICE, AssetState.DISPOSED]


def test_unknown_state_is_rejected_with_reason():
    check = is_valid_transition("Ordered", "Shredded")
    assert not check.valid
    assert check.reason == "Unknown state: Shredded"
    assert get_valid_next_states("Shredded") == []
    assert find_rule("Shredded", "Ordered") is None


def test_invalid_edge_reason_names_both_states():
    check = is_valid_transition(AssetState.ORDERED, AssetState.IN_SERVICE)
    assert check.reason == "Invalid transition from Ordered to In Service"


def test_disposed_reason_mentions_terminal():
    check = is_valid_transition(AssetState.DISPOSED, AssetState.IN_SERVICE)
    assert not check.valid
    assert "terminal" in check.reason


# ---------------------------------------------------------------------------
# Context-dependent rules
# ---------------------------------------------------------------------------


def test_staging_to_service_requires_owner():
    check = is_valid_transition(AssetState.IN_STAGING, AssetState.IN_SERVICE, _asset(AssetState.IN_STAGING))
    assert not check.valid
    assert check.reason == "Owner is required for this transition"

    owned = _asset(AssetState.IN_STAGING, with_owner=True)
    assert is_valid_transition(AssetState.IN_STAGING, AssetState.IN_SERVICE, owned).valid


def test_staging_to_service_without_asset_checks_graph_only():
    assert is_valid_transition(AssetState.IN_STAGING, AssetState.IN_SERVICE).valid


def test_unowned_staging_asset_has_no_next_states():
    assert get_valid_next_states(AssetState.IN_STAGING, _asset(AssetState.IN_STAGING)) == []


def test_disposal_is_valid_in_engine_without_wipe_cert():
    asset = _asset(AssetState.IN_SERVICE)
    assert is_valid_transition(AssetState.IN_SERVICE, AssetState.DISPOSED, asset).valid
    assert find_rule(AssetState.IN_SERVICE, AssetState.DISPOSED).wipe_cert_required


def test_lost_to_disposed_needs_no_wipe_cert():
    rule = find_rule(AssetState.LOST, AssetState.DISPOSED)
    assert rule is not None
    assert not rule.wipe_cert_required


# ---------------------------------------------------------------------------
# Action checks
# ---------------------------------------------------------------------------


def test_can_dispose_requires_unassigned_and_wipe_cert():
    assigned = _asset(AssetState.IN_SERVICE, with_owner=True)
    assert can_dispose(assigned).reason == "Asset must be unassigned before disposal"

    no_cert = _asset(AssetState.IN_SERVICE)
    assert can_dispose(no_cert).reason == "Data wipe certificate is required"

    ready = _asset(AssetState.IN_SERVICE, docs=[AssetDocument(doc_type="WipeCert", url="https://x/wipe.pdf")])
    assert can_dispose(ready).can


def test_can_assign_only_in_service_or_loaner():
    assert can_assign(_asset(AssetState.IN_SERVICE)).can
    assert can_assign(_asset(AssetState.IN_LOANER)).can
    check = can_assign(_asset(AssetState.RETIRED))
    assert not check.can
    assert check.reason == "Asset must be in service to assign. Current state: Retired"


def test_can_checkout_as_loaner():
    assert can_checkout_as_loaner(_asset(AssetState.IN_SERVICE)).can
    assert not can_checkout_as_loaner(_asset(AssetState.IN_SERVICE, with_owner=True)).can
    assert not can_checkout_as_loaner(_asset(AssetState.IN_REPAIR)).can
