"""
API request and response models for the ITAM lifecycle REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in cmdb/models.py and
core/models.py, which own the internal domain representation. Route handlers
map between the two.
"""

from dataclasses import asdict
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from cmdb.lifecycle import ActionCheck
from cmdb.models import Asset, AssetDocument
from core.display import get_state_display
from core.models import GLOBAL_ASSET_ID_PATTERN, AssetState, TransitionRecord

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class InitialStateEnum(str, Enum):
    Ordered = "Ordered"
    Received = "Received"


class AssetClassEnum(str, Enum):
    laptop = "Laptop"
    desktop = "Desktop"
    monitor = "Monitor"
    phone = "Phone"
    tablet = "Tablet"
    dock = "Dock"
    keyboard = "Keyboard"
    mouse = "Mouse"
    headset = "Headset"
    webcam = "Webcam"
    accessory = "Accessory"
    server = "Server"
    network_device = "Network Device"
    other = "Other"


class ConditionEnum(str, Enum):
    excellent = "Excellent"
    good = "Good"
    fair = "Fair"
    poor = "Poor"
    damaged = "Damaged"


class DocumentTypeEnum(str, Enum):
    handoff = "Handoff"
    warranty = "Warranty"
    invoice = "Invoice"
    po = "PO"
    wipe_cert = "WipeCert"
    disposal = "Disposal"
    other = "Other"


# ---------------------------------------------------------------------------
# Shared models
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class StateOption(BaseModel):
    """A lifecycle state with its display metadata."""

    model_config = ConfigDict(frozen=True)

    state: str
    label: str
    color: str
    icon: Optional[str] = None

    @classmethod
    def from_state(cls, state) -> "StateOption":
        value = state.value if isinstance(state, AssetState) else str(state)
        display = get_state_display(value)
        return cls(state=value, label=display.label, color=display.color, icon=display.icon)


class ActionCheckOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    can: bool
    reason: Optional[str] = None

    @classmethod
    def from_check(cls, check: ActionCheck) -> "ActionCheckOut":
        return cls(can=check.can, reason=check.reason)


# ---------------------------------------------------------------------------
# Asset context (nested objects)
# ---------------------------------------------------------------------------


class OwnerIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(min_length=1, max_length=255)
    upn: str = Field(min_length=3, max_length=255)
    display_name: Optional[str] = Field(default=None, max_length=255)
    department: Optional[str] = Field(default=None, max_length=255)
    cost_center: Optional[str] = Field(default=None, max_length=100)


class LocationIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    region: Optional[str] = Field(default=None, max_length=100)
    site: Optional[str] = Field(default=None, max_length=100)
    room: Optional[str] = Field(default=None, max_length=100)
    rack: Optional[str] = Field(default=None, max_length=100)
    bin: Optional[str] = Field(default=None, max_length=100)
    full_location: Optional[str] = Field(default=None, max_length=500)


class SecurityIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    edr: Optional[str] = Field(default=None, max_length=100)
    edr_status: Optional[str] = Field(default=None, pattern=r"^(Active|Inactive|Unknown)$")
    bitlocker: Optional[bool] = None
    filevault: Optional[bool] = None
    last_check_in_utc: Optional[str] = None
    compliance_status: Optional[str] = Field(default=None, pattern=r"^(Compliant|Non-Compliant|Unknown)$")


class WarrantyIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    provider: Optional[str] = Field(default=None, max_length=255)
    start: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    end: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    coverage_type: Optional[str] = Field(default=None, max_length=100)


# ---------------------------------------------------------------------------
# Asset request models
# ---------------------------------------------------------------------------


class AssetCreate(BaseModel):
    """Request body for POST /api/v1/assets."""

    model_config = ConfigDict(str_strip_whitespace=True)

    asset_class: AssetClassEnum
    model: str = Field(min_length=1, max_length=255)
    state: InitialStateEnum = InitialStateEnum.Ordered
    global_asset_id: Optional[str] = Field(default=None, pattern=GLOBAL_ASSET_ID_PATTERN)
    asset_tag: Optional[str] = Field(default=None, max_length=50)
    serial_number: Optional[str] = Field(default=None, max_length=50)
    company: Optional[str] = Field(default=None, max_length=255)
    condition: Optional[ConditionEnum] = None
    owner: Optional[OwnerIn] = None
    location: Optional[LocationIn] = None
    security: Optional[SecurityIn] = None
    warranty: Optional[WarrantyIn] = None
    created_by: Optional[str] = Field(default=None, max_length=255)


class AssetUpdate(BaseModel):
    """Request body for PATCH /api/v1/assets/{asset_id}.

    Only fields present in the request are changed; send null to clear one.
    state is not accepted here -- use POST .../transitions.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    asset_tag: Optional[str] = Field(default=None, max_length=50)
    serial_number: Optional[str] = Field(default=None, max_length=50)
    company: Optional[str] = Field(default=None, max_length=255)
    condition: Optional[ConditionEnum] = None
    owner: Optional[OwnerIn] = None
    location: Optional[LocationIn] = None
    security: Optional[SecurityIn] = None
    warranty: Optional[WarrantyIn] = None
    updated_by: Optional[str] = Field(default=None, max_length=255)


class DocumentCreate(BaseModel):
    """Request body for POST /api/v1/assets/{asset_id}/documents (metadata only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    doc_type: DocumentTypeEnum
    url: str = Field(min_length=1, max_length=2000)
    title: Optional[str] = Field(default=None, max_length=255)
    uploaded_by: Optional[str] = Field(default=None, max_length=255)


class TransitionRequest(BaseModel):
    """Request body for POST /api/v1/assets/{asset_id}/transitions.

    from_state is the state the client last saw. The server re-validates
    against its own copy and answers 409 stale_state if they differ.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    from_state: AssetState
    to_state: AssetState
    reason: Optional[str] = Field(default=None, max_length=1000)
    performed_by: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Asset response models
# ---------------------------------------------------------------------------


class DocumentOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int]
    doc_type: str
    url: str
    title: Optional[str]
    uploaded_at: str
    uploaded_by: Optional[str]

    @classmethod
    def from_document(cls, doc: AssetDocument) -> "DocumentOut":
        return cls(**asdict(doc))


class AssetSummaryRow(BaseModel):
    """One row in the GET /assets list -- no documents or action checks."""

    model_config = ConfigDict(frozen=True)

    global_asset_id: str
    asset_class: str
    model: str
    state: str
    asset_tag: Optional[str]
    owner_upn: Optional[str]
    updated_at: str

    @classmethod
    def from_asset(cls, asset: Asset) -> "AssetSummaryRow":
        return cls(
            global_asset_id=asset.global_asset_id,
            asset_class=asset.asset_class,
            model=asset.model,
            state=asset.state,
            asset_tag=asset.asset_tag,
            owner_upn=asset.owner.upn if asset.owner else None,
            updated_at=asset.updated_at,
        )


class AssetResponse(BaseModel):
    """Full asset detail: context, documents, reachable states and action checks."""

    model_config = ConfigDict(frozen=True)

    global_asset_id: str
    asset_class: str
    model: str
    state: StateOption
    asset_tag: Optional[str]
    serial_number: Optional[str]
    company: Optional[str]
    condition: Optional[str]
    owner: Optional[dict]
    location: Optional[dict]
    security: Optional[dict]
    warranty: Optional[dict]
    docs: list[DocumentOut] = Field(default_factory=list)
    next_states: list[StateOption] = Field(default_factory=list)
    actions: dict[str, ActionCheckOut] = Field(default_factory=dict)
    created_at: str
    created_by: Optional[str]
    updated_at: str
    updated_by: Optional[str]
    version: int


class TransitionRecordOut(BaseModel):
    """One audit trail entry."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int]
    asset_id: str
    from_state: str
    to_state: str
    timestamp: str
    performed_by: str
    reason: Optional[str]

    @classmethod
    def from_record(cls, record: TransitionRecord) -> "TransitionRecordOut":
        return cls(**asdict(record))


class LifecycleStateRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: StateOption
    terminal: bool
    next_states: list[StateOption]


class DashboardResponse(BaseModel):
    """Response for GET /api/v1/dashboard."""

    model_config = ConfigDict(frozen=True)

    total_assets: int
    state_counts: dict[str, int]
    lost_overdue: list[dict]
    lost_approaching: list[dict]
    recent_transitions: list[TransitionRecordOut]
