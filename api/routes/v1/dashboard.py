"""
api/routes/v1/dashboard.py -- Aggregated lifecycle metrics for dashboard widgets.

Returns a single payload:
  - Total asset count and the distribution across lifecycle states
  - Lost assets already due for auto-disposal, and those approaching it
  - The ten most recent transitions

This is a read-only aggregate route -- no mutations here.
"""

from fastapi import APIRouter, Request

from api.limiter import limiter
from api.models import DashboardResponse, TransitionRecordOut
from cmdb.store import CMDBStore
from core.config import get_settings

router = APIRouter()


@router.get("/dashboard", response_model=DashboardResponse)
@limiter.limit("60/minute")
def get_dashboard(request: Request) -> DashboardResponse:
    """Return lifecycle metrics across all registered assets.

    Response:
      total_assets        -- number of registered assets
      state_counts        -- {"Ordered": N, ..., "Disposed": N}, every state present
      lost_overdue        -- Lost assets past LOST_ESCALATION_DAYS (the next sweep disposes them)
      lost_approaching    -- Lost assets within APPROACHING_DAYS of that threshold
      recent_transitions  -- ten newest audit records across all assets
    """
    cmdb: CMDBStore = request.app.state.cmdb
    settings = get_settings()

    state_counts = cmdb.get_state_counts()
    escalations = cmdb.get_lost_escalations(
        settings.lost_escalation_days,
        approaching_days=settings.approaching_days,
    )
    recent = cmdb.list_transitions(limit=10)

    return DashboardResponse(
        total_assets=sum(state_counts.values()),
        state_counts=state_counts,
        lost_overdue=escalations["overdue"],
        lost_approaching=escalations["approaching"],
        recent_transitions=[TransitionRecordOut.from_record(r) for r in recent],
    )
