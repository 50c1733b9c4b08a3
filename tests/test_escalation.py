"""Unit tests for cmdb/escalation.py -- the Lost -> Disposed sweep.

Covers:
- Lost on day 0, sweep on day 31 with a 30-day threshold writes one record
- A second sweep on day 32 writes nothing (idempotent)
- Assets under the threshold are left alone
- A manual transition that lands first makes the sweep skip the asset
- So does a round trip back into Lost, which restarts the Lost clock
- dry_run reports without committing
"""

from datetime import datetime, timedelta, timezone

from cmdb.escalation import DEFAULT_ACTOR, escalate_lost_assets
from cmdb.models import RejectionKind
from cmdb.store import CMDBStore
from conftest import new_laptop, owner, walk

DAY_0 = datetime(2025, 1, 10, 8, 0, tzinfo=timezone.utc)


def _lost_asset(store: CMDBStore, when: datetime = DAY_0) -> str:
    asset_id = new_laptop(store, owner=owner())
    walk(store, asset_id, "Received", "In Staging", "In Service")
    store.commit_transition(asset_id, "In Service", "Lost", reason="Left on train", actor="alice", at=when)
    return asset_id


def test_sweep_disposes_after_threshold_exactly_once(store: CMDBStore):
    asset_id = _lost_asset(store)

    first = escalate_lost_assets(store, threshold_days=30, now=DAY_0 + timedelta(days=31))
    assert len(first) == 1
    record = first[0]
    assert record.asset_id == asset_id
    assert (record.from_state, record.to_state) == ("Lost", "Disposed")
    assert record.performed_by == DEFAULT_ACTOR
    assert record.reason == "Auto-disposed after 31 days in Lost (threshold 30 days)"
    assert store.load_asset(asset_id).state == "Disposed"

    second = escalate_lost_assets(store, threshold_days=30, now=DAY_0 + timedelta(days=32))
    assert second == []
    assert [r.to_state for r in store.get_transition_history(asset_id)].count("Disposed") == 1


def test_sweep_timestamps_record_at_run_time(store: CMDBStore):
    _lost_asset(store)
    now = DAY_0 + timedelta(days=31)
    (record,) = escalate_lost_assets(store, threshold_days=30, now=now)
    assert record.timestamp == now.isoformat()


def test_sweep_ignores_assets_under_threshold(store: CMDBStore):
    asset_id = _lost_asset(store)
    assert escalate_lost_assets(store, threshold_days=30, now=DAY_0 + timedelta(days=29)) == []
    assert store.load_asset(asset_id).state == "Lost"


def test_sweep_accepts_naive_now(store: CMDBStore):
    _lost_asset(store)
    naive = (DAY_0 + timedelta(days=31)).replace(tzinfo=None)
    assert len(escalate_lost_assets(store, threshold_days=30, now=naive)) == 1


def test_manual_recovery_wins_race(store: CMDBStore, monkeypatch):
    """The asset is found between the sweep's read and its commit."""
    asset_id = _lost_asset(store)
    real_escalations = store.get_lost_escalations

    def read_then_recover(*args, **kwargs):
        due = real_escalations(*args, **kwargs)
        store.commit_transition(asset_id, "Lost", "In Service", reason="Found", actor="bob")
        return due

    monkeypatch.setattr(store, "get_lost_escalations", read_then_recover)

    assert escalate_lost_assets(store, threshold_days=30, now=DAY_0 + timedelta(days=31)) == []
    assert store.load_asset(asset_id).state == "In Service"
    retry = store.commit_transition(asset_id, "Lost", "Disposed", actor=DEFAULT_ACTOR)
    assert retry.kind is RejectionKind.stale_state


def test_asset_lost_again_during_sweep_is_skipped(store: CMDBStore, monkeypatch):
    """Found and lost again between the read and the commit: the Lost clock restarted."""
    asset_id = _lost_asset(store)
    real_escalations = store.get_lost_escalations
    relost_at = DAY_0 + timedelta(days=31)

    def read_then_relose(*args, **kwargs):
        due = real_escalations(*args, **kwargs)
        store.commit_transition(asset_id, "Lost", "In Service", reason="Found", actor="bob", at=relost_at)
        store.commit_transition(asset_id, "In Service", "Lost", reason="Lost again", actor="bob", at=relost_at)
        return due

    monkeypatch.setattr(store, "get_lost_escalations", read_then_relose)

    assert escalate_lost_assets(store, threshold_days=30, now=relost_at) == []
    assert store.load_asset(asset_id).state == "Lost"
    assert "Disposed" not in [r.to_state for r in store.get_transition_history(asset_id)]


def test_dry_run_commits_nothing(store: CMDBStore):
    asset_id = _lost_asset(store)
    preview = escalate_lost_assets(store, threshold_days=30, now=DAY_0 + timedelta(days=45), dry_run=True)
    assert [(r.asset_id, r.id) for r in preview] == [(asset_id, None)]
    assert store.load_asset(asset_id).state == "Lost"


def test_custom_actor_is_recorded(store: CMDBStore):
    _lost_asset(store)
    (record,) = escalate_lost_assets(store, threshold_days=30, now=DAY_0 + timedelta(days=31), actor="ops-cron")
    assert record.performed_by == "ops-cron"
