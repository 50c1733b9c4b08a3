"""
cmdb/models.py -- Domain dataclasses for the ITAM asset register.

These are pure data containers with zero logic. Transition rules live in
cmdb/lifecycle.py; commit preconditions and persistence live in cmdb/store.py.

TransitionRecord is defined in core/models.py because the CLI formatter and
the notifier consume it without touching the store.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


@dataclass
class AssetOwner:
    user_id: str
    upn: str  # User Principal Name, e.g. jdoe@example.com
    display_name: Optional[str] = None
    department: Optional[str] = None
    cost_center: Optional[str] = None


@dataclass
class AssetLocation:
    """Region -> Site -> Room -> Rack/Bin."""

    region: Optional[str] = None
    site: Optional[str] = None
    room: Optional[str] = None
    rack: Optional[str] = None
    bin: Optional[str] = None
    full_location: Optional[str] = None


@dataclass
class SecurityInfo:
    edr: Optional[str] = None  # "Defender" | "CrowdStrike" | ...
    edr_status: Optional[str] = None  # "Active" | "Inactive" | "Unknown"
    bitlocker: Optional[bool] = None
    filevault: Optional[bool] = None
    last_check_in_utc: Optional[str] = None
    compliance_status: Optional[str] = None  # "Compliant" | "Non-Compliant" | "Unknown"


@dataclass
class WarrantyInfo:
    provider: Optional[str] = None
    start: Optional[str] = None  # YYYY-MM-DD
    end: Optional[str] = None  # YYYY-MM-DD
    coverage_type: Optional[str] = None


@dataclass
class AssetDocument:
    """Metadata for a document attached to an asset. The file itself lives elsewhere."""

    doc_type: str  # "Handoff" | "Warranty" | "Invoice" | "PO" | "WipeCert" | "Disposal" | "Other"
    url: str
    title: Optional[str] = None
    uploaded_at: str = ""  # ISO 8601, set by store on insert
    uploaded_by: Optional[str] = None
    id: Optional[int] = None


@dataclass
class Asset:
    """An asset under lifecycle control.

    state changes only through CMDBStore.commit_transition(). version is the
    optimistic-concurrency token bumped on every committed transition.

    global_asset_id is "" before the record is written to the database; the
    store generates one in AS-YYYY-NNNNNN form.
    """

    asset_class: str
    model: str
    state: str = "Ordered"
    global_asset_id: str = ""
    asset_tag: Optional[str] = None
    serial_number: Optional[str] = None
    company: Optional[str] = None
    condition: Optional[str] = None  # "Excellent" | "Good" | "Fair" | "Poor" | "Damaged"
    owner: Optional[AssetOwner] = None
    location: Optional[AssetLocation] = None
    security: Optional[SecurityInfo] = None
    warranty: Optional[WarrantyInfo] = None
    docs: list[AssetDocument] = field(default_factory=list)
    created_at: str = ""
    created_by: Optional[str] = None
    updated_at: str = ""
    updated_by: Optional[str] = None
    version: int = 1


class RejectionKind(str, Enum):
    invalid_transition = "invalid_transition"
    precondition_unmet = "precondition_unmet"
    stale_state = "stale_state"
    not_found = "not_found"


@dataclass(frozen=True)
class Rejected:
    """A transition the store refused to commit. Nothing was written."""

    kind: RejectionKind
    reason: str
