"""
api/routes/v1/assets.py -- Asset register routes for the ITAM lifecycle REST API.

Routes:
  POST   /assets                         -- register an asset (Ordered or Received)
  GET    /assets                         -- list assets, optionally by state
  GET    /assets/{asset_id}              -- detail + documents + next states + action checks
  PATCH  /assets/{asset_id}              -- edit contextual fields (never state)
  POST   /assets/{asset_id}/documents    -- attach document metadata

State changes live in api/routes/v1/lifecycle.py.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    ActionCheckOut,
    AssetCreate,
    AssetResponse,
    AssetSummaryRow,
    AssetUpdate,
    DocumentCreate,
    DocumentOut,
    ErrorDetail,
    StateOption,
)
from cmdb.lifecycle import can_assign, can_checkout_as_loaner, can_dispose, get_valid_next_states
from cmdb.models import Asset, AssetDocument, AssetLocation, AssetOwner, SecurityInfo, WarrantyInfo
from cmdb.store import CMDBStore
from core.models import AssetState

router = APIRouter()

_CONTEXT_TYPES = {
    "owner": AssetOwner,
    "location": AssetLocation,
    "security": SecurityInfo,
    "warranty": WarrantyInfo,
}


def _asset_not_found(asset_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(
            code="asset_not_found",
            message=f"Asset {asset_id} not found.",
        ).model_dump(),
    )


def _context(field: str, value: Optional[dict]):
    """Map a nested request dict onto its cmdb dataclass (None stays None)."""
    return _CONTEXT_TYPES[field](**value) if value is not None else None


def build_asset_response(asset: Asset) -> AssetResponse:
    """Assemble the detail view: stored fields plus what the UI may do next."""
    return AssetResponse(
        global_asset_id=asset.global_asset_id,
        asset_class=asset.asset_class,
        model=asset.model,
        state=StateOption.from_state(asset.state),
        asset_tag=asset.asset_tag,
        serial_number=asset.serial_number,
        company=asset.company,
        condition=asset.condition,
        owner=vars(asset.owner) if asset.owner else None,
        location=vars(asset.location) if asset.location else None,
        security=vars(asset.security) if asset.security else None,
        warranty=vars(asset.warranty) if asset.warranty else None,
        docs=[DocumentOut.from_document(d) for d in asset.docs],
        next_states=[StateOption.from_state(s) for s in get_valid_next_states(asset.state, asset)],
        actions={
            "dispose": ActionCheckOut.from_check(can_dispose(asset)),
            "assign": ActionCheckOut.from_check(can_assign(asset)),
            "checkout_loaner": ActionCheckOut.from_check(can_checkout_as_loaner(asset)),
        },
        created_at=asset.created_at,
        created_by=asset.created_by,
        updated_at=asset.updated_at,
        updated_by=asset.updated_by,
        version=asset.version,
    )


# ---------------------------------------------------------------------------
# POST /assets -- register a new asset
# ---------------------------------------------------------------------------


@router.post("/assets", response_model=AssetResponse, status_code=201)
@limiter.limit("30/minute")
def create_asset(request: Request, body: AssetCreate) -> AssetResponse:
    """Register a new asset in its initial lifecycle state.

    global_asset_id is generated (AS-YYYY-NNNNNN) unless supplied.
    """
    cmdb: CMDBStore = request.app.state.cmdb
    payload = body.model_dump(mode="json")
    asset = Asset(
        global_asset_id=body.global_asset_id or "",
        asset_class=body.asset_class.value,
        model=body.model,
        state=body.state.value,
        asset_tag=body.asset_tag,
        serial_number=body.serial_number,
        company=body.company,
        condition=body.condition.value if body.condition else None,
        owner=_context("owner", payload["owner"]),
        location=_context("location", payload["location"]),
        security=_context("security", payload["security"]),
        warranty=_context("warranty", payload["warranty"]),
        created_by=body.created_by,
    )
    try:
        asset_id = cmdb.create_asset(asset)
    except IntegrityError:
        if not body.global_asset_id:
            raise
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(
                code="asset_exists",
                message=f"Asset {body.global_asset_id} already exists.",
            ).model_dump(),
        )
    return build_asset_response(cmdb.load_asset(asset_id))


# ---------------------------------------------------------------------------
# GET /assets -- list assets
# ---------------------------------------------------------------------------


@router.get("/assets", response_model=list[AssetSummaryRow])
@limiter.limit("60/minute")
def list_assets(request: Request, state: Optional[AssetState] = None) -> list[AssetSummaryRow]:
    """Return registered assets ordered by ID, optionally filtered by lifecycle state."""
    cmdb: CMDBStore = request.app.state.cmdb
    return [AssetSummaryRow.from_asset(a) for a in cmdb.list_assets(state=state)]


# ---------------------------------------------------------------------------
# GET /assets/{asset_id} -- asset detail
# ---------------------------------------------------------------------------


@router.get("/assets/{asset_id}", response_model=AssetResponse)
@limiter.limit("60/minute")
def get_asset(request: Request, asset_id: str) -> AssetResponse:
    """Return asset detail with documents, valid next states and action checks."""
    cmdb: CMDBStore = request.app.state.cmdb
    asset = cmdb.load_asset(asset_id.upper())
    if asset is None:
        raise _asset_not_found(asset_id)
    return build_asset_response(asset)


# ---------------------------------------------------------------------------
# PATCH /assets/{asset_id} -- edit contextual fields
# ---------------------------------------------------------------------------


@router.patch("/assets/{asset_id}", response_model=AssetResponse)
@limiter.limit("30/minute")
def update_asset(request: Request, asset_id: str, body: AssetUpdate) -> AssetResponse:
    """Change owner, location, security, warranty or identifiers.

    Only fields present in the body are written. Changing owner can change
    which transitions are valid (In Staging -> In Service needs one).
    """
    cmdb: CMDBStore = request.app.state.cmdb
    asset_id = asset_id.upper()
    fields = body.model_dump(exclude_unset=True, mode="json")
    for name in _CONTEXT_TYPES:
        if name in fields:
            fields[name] = _context(name, fields[name])
    if fields and not cmdb.update_asset(asset_id, **fields):
        raise _asset_not_found(asset_id)
    asset = cmdb.load_asset(asset_id)
    if asset is None:
        raise _asset_not_found(asset_id)
    return build_asset_response(asset)


# ---------------------------------------------------------------------------
# POST /assets/{asset_id}/documents -- attach document metadata
# ---------------------------------------------------------------------------


@router.post("/assets/{asset_id}/documents", response_model=DocumentOut, status_code=201)
@limiter.limit("30/minute")
def add_document(request: Request, asset_id: str, body: DocumentCreate) -> DocumentOut:
    """Record a document (e.g. the WipeCert disposal requires) against an asset."""
    cmdb: CMDBStore = request.app.state.cmdb
    asset_id = asset_id.upper()
    doc = AssetDocument(
        doc_type=body.doc_type.value,
        url=body.url,
        title=body.title,
        uploaded_by=body.uploaded_by,
    )
    doc_id = cmdb.add_document(asset_id, doc)
    if doc_id is None:
        raise _asset_not_found(asset_id)
    stored = next(d for d in cmdb.load_asset(asset_id).docs if d.id == doc_id)
    return DocumentOut.from_document(stored)
