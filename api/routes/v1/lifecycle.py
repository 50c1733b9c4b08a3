"""
api/routes/v1/lifecycle.py -- Lifecycle transition and audit trail routes.

Routes:
  GET    /lifecycle/states                   -- every state, its display and allowed next states
  GET    /assets/{asset_id}/next-states      -- states this asset can move to now
  POST   /assets/{asset_id}/transitions      -- commit a state change
  GET    /assets/{asset_id}/history          -- the asset's audit trail, newest first
  GET    /history                            -- recent transitions across all assets

Commit flow: the client sends the state it last saw (from_state) and the
target. CMDBStore.commit_transition() re-validates against the stored state
and answers with either a TransitionRecord or a Rejected value. Rejections
map to HTTP errors here:

  not_found           -> 404 asset_not_found
  stale_state         -> 409 stale_state          (re-fetch and retry)
  invalid_transition  -> 422 invalid_transition   (reason shown to the user)
  precondition_unmet  -> 422 precondition_unmet   (e.g. WipeCert missing)
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from api.limiter import limiter
from api.models import ErrorDetail, LifecycleStateRow, StateOption, TransitionRecordOut, TransitionRequest
from cmdb.lifecycle import get_valid_next_states, lifecycle_graph
from cmdb.models import Rejected, RejectionKind
from cmdb.store import CMDBStore
from core.config import get_settings
from core.models import TERMINAL_STATES, AssetState

router = APIRouter()

_REJECTION_STATUS: dict[RejectionKind, int] = {
    RejectionKind.not_found: 404,
    RejectionKind.stale_state: 409,
    RejectionKind.invalid_transition: 422,
    RejectionKind.precondition_unmet: 422,
}


def _asset_not_found(asset_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(
            code="asset_not_found",
            message=f"Asset {asset_id} not found.",
        ).model_dump(),
    )


def _rejection_error(rejected: Rejected) -> HTTPException:
    code = "asset_not_found" if rejected.kind is RejectionKind.not_found else rejected.kind.value
    return HTTPException(
        status_code=_REJECTION_STATUS[rejected.kind],
        detail=ErrorDetail(code=code, message=rejected.reason).model_dump(),
    )


# ---------------------------------------------------------------------------
# GET /lifecycle/states -- the state graph
# ---------------------------------------------------------------------------


@router.get("/lifecycle/states", response_model=list[LifecycleStateRow])
@limiter.limit("60/minute")
def list_states(request: Request) -> list[LifecycleStateRow]:
    """Return every lifecycle state with its display metadata and syntactic next states.

    Asset context (e.g. owner required) is not applied; use
    /assets/{asset_id}/next-states for a specific asset.
    """
    return [
        LifecycleStateRow(
            state=StateOption.from_state(state),
            terminal=state in TERMINAL_STATES,
            next_states=[StateOption.from_state(t) for t in targets],
        )
        for state, targets in lifecycle_graph().items()
    ]


# ---------------------------------------------------------------------------
# GET /assets/{asset_id}/next-states
# ---------------------------------------------------------------------------


@router.get("/assets/{asset_id}/next-states", response_model=list[StateOption])
@limiter.limit("60/minute")
def next_states(request: Request, asset_id: str) -> list[StateOption]:
    """Return the states this asset can move to, given its current context."""
    cmdb: CMDBStore = request.app.state.cmdb
    asset = cmdb.load_asset(asset_id.upper())
    if asset is None:
        raise _asset_not_found(asset_id)
    return [StateOption.from_state(s) for s in get_valid_next_states(asset.state, asset)]


# ---------------------------------------------------------------------------
# POST /assets/{asset_id}/transitions -- commit a state change
# ---------------------------------------------------------------------------


@router.post("/assets/{asset_id}/transitions", response_model=TransitionRecordOut, status_code=201)
@limiter.limit(lambda: get_settings().transition_rate_limit)
def commit_transition(request: Request, asset_id: str, body: TransitionRequest) -> TransitionRecordOut:
    """Move an asset to a new lifecycle state and append it to the audit trail.

    Nothing is written unless every check passes.
    """
    cmdb: CMDBStore = request.app.state.cmdb
    result = cmdb.commit_transition(
        asset_id.upper(),
        body.from_state,
        body.to_state,
        reason=body.reason,
        actor=body.performed_by,
    )
    if isinstance(result, Rejected):
        raise _rejection_error(result)
    return TransitionRecordOut.from_record(result)


# ---------------------------------------------------------------------------
# GET /assets/{asset_id}/history -- audit trail
# ---------------------------------------------------------------------------


@router.get("/assets/{asset_id}/history", response_model=list[TransitionRecordOut])
@limiter.limit("60/minute")
def asset_history(request: Request, asset_id: str) -> list[TransitionRecordOut]:
    """Return every committed transition for the asset, newest first."""
    cmdb: CMDBStore = request.app.state.cmdb
    asset_id = asset_id.upper()
    if cmdb.load_asset(asset_id) is None:
        raise _asset_not_found(asset_id)
    return [TransitionRecordOut.from_record(r) for r in cmdb.get_transition_history(asset_id)]


# ---------------------------------------------------------------------------
# GET /history -- recent activity across assets
# ---------------------------------------------------------------------------


@router.get("/history", response_model=list[TransitionRecordOut])
@limiter.limit("60/minute")
def recent_history(
    request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
    performed_by: Optional[str] = None,
    to_state: Optional[AssetState] = None,
) -> list[TransitionRecordOut]:
    """Return recent transitions across all assets, newest first."""
    cmdb: CMDBStore = request.app.state.cmdb
    records = cmdb.list_transitions(limit=limit, performed_by=performed_by, to_state=to_state)
    return [TransitionRecordOut.from_record(r) for r in records]
