"""
cmdb/escalation.py -- Lost -> Disposed auto-escalation sweep.

An asset left in Lost for threshold_days is written off as Disposed. The
sweep is a batch job run out-of-band (API background task or `main.py sweep`),
never part of transition validation.

Idempotent: an escalated asset is no longer Lost, so the next run skips it.
Race-safe: every commit goes through CMDBStore.commit_transition() with
from_state="Lost" and the asset version the due list was read at. If any
manual transition landed in between, even one that ends in Lost again, the
store rejects the commit and the sweep moves on.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from cmdb.models import Rejected
from cmdb.store import CMDBStore
from core.models import AssetState, TransitionRecord

logger = logging.getLogger("itam.escalation")

DEFAULT_ACTOR = "system:lost-escalation"


def escalate_lost_assets(
    store: CMDBStore,
    threshold_days: int = 30,
    now: Optional[datetime] = None,
    actor: str = DEFAULT_ACTOR,
    dry_run: bool = False,
) -> list[TransitionRecord]:
    """Dispose every asset that has been Lost for at least threshold_days.

    Returns the TransitionRecords written by this run. With dry_run=True
    nothing is committed and the records that would have been written are
    returned unsaved (id=None).
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    else:
        now = now.astimezone(timezone.utc)
    due = store.get_lost_escalations(threshold_days, approaching_days=0, now=now)["overdue"]
    if not due:
        logger.debug("Lost escalation sweep: nothing due")
        return []

    written: list[TransitionRecord] = []
    for item in due:
        reason = f"Auto-disposed after {item['days_lost']} days in Lost (threshold {threshold_days} days)"
        if dry_run:
            written.append(
                TransitionRecord(
                    asset_id=item["asset_id"],
                    from_state=AssetState.LOST.value,
                    to_state=AssetState.DISPOSED.value,
                    timestamp=now.isoformat(),
                    performed_by=actor,
                    reason=reason,
                )
            )
            continue

        result = store.commit_transition(
            item["asset_id"],
            AssetState.LOST,
            AssetState.DISPOSED,
            reason=reason,
            actor=actor,
            at=now,
            expected_version=item["version"],
        )
        if isinstance(result, Rejected):
            logger.info("Lost escalation skipped %s: %s", item["asset_id"], result.reason)
            continue
        logger.warning("Asset %s auto-disposed after %d days in Lost", item["asset_id"], item["days_lost"])
        written.append(result)

    logger.info("Lost escalation sweep: %d of %d due asset(s) disposed", len(written), len(due))
    return written
