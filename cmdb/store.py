"""
cmdb/store.py -- SQLAlchemy-backed persistence layer for the ITAM asset register.

Uses SQLAlchemy Core (not ORM) so the domain dataclasses in cmdb/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change, not a rewrite.

Pattern: Repository + Data Mapper. CMDBStore is the repository; the _row_to_*
functions are the mappers. Route handlers and the CLI never touch SQL.

Transition commits are check-then-commit inside one database transaction:
the authoritative row is re-read, the lifecycle engine is re-run against the
stored state, commit preconditions are checked, and the UPDATE is guarded by
the row's version so two concurrent requests validated against the same
state cannot both land. Refusals come back as Rejected values, not exceptions.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = CMDBStore()                               # SQLite default
    store = CMDBStore("postgresql://user:pw@host/db") # PostgreSQL
    asset_id = store.create_asset(Asset(asset_class="Laptop", model="XPS 13"))
    result = store.commit_transition(asset_id, "Ordered", "Received", actor="alice")
    history = store.get_transition_history(asset_id)
    store.close()
"""

import json
import logging
import re
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional, Union

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from cmdb.lifecycle import find_rule, has_wipe_cert, is_valid_transition
from cmdb.models import (
    Asset,
    AssetDocument,
    AssetLocation,
    AssetOwner,
    Rejected,
    RejectionKind,
    SecurityInfo,
    WarrantyInfo,
)
from core.models import GLOBAL_ASSET_ID_PATTERN, INITIAL_STATES, AssetState, TransitionRecord

logger = logging.getLogger("itam.cmdb")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'itam_lifecycle.db'}"

_GLOBAL_ID_RE = re.compile(GLOBAL_ASSET_ID_PATTERN)

# Generated IDs are MAX()+1, so concurrent creates can collide on insert.
_ID_ATTEMPTS = 10

# Fields update_asset() accepts. state is absent: it changes only via commit_transition().
_MUTABLE_FIELDS = {
    "asset_tag",
    "serial_number",
    "company",
    "condition",
    "owner",
    "location",
    "security",
    "warranty",
    "updated_by",
}

_JSON_FIELDS = {"owner", "location", "security", "warranty"}

TransitionSubscriber = Callable[[TransitionRecord], None]

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_assets = Table(
    "assets",
    metadata,
    Column("global_asset_id", String(20), primary_key=True),
    Column("asset_tag", String(50)),
    Column("serial_number", String(50)),
    Column("asset_class", String(50), nullable=False),
    Column("model", String(255), nullable=False),
    Column("company", String(255)),
    Column("state", String(30), nullable=False, server_default="Ordered"),
    Column("condition", String(20)),
    Column("owner", Text),  # JSON object serialized as text
    Column("location", Text),  # JSON object
    Column("security", Text),  # JSON object
    Column("warranty", Text),  # JSON object
    Column("created_at", String(32), nullable=False),
    Column("created_by", String(255)),
    Column("updated_at", String(32), nullable=False),
    Column("updated_by", String(255)),
    Column("version", Integer, nullable=False, server_default="1"),
)

_documents = Table(
    "asset_documents",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("asset_id", String(20), nullable=False),
    Column("doc_type", String(20), nullable=False),
    Column("url", Text, nullable=False),
    Column("title", String(255)),
    Column("uploaded_at", String(32), nullable=False),
    Column("uploaded_by", String(255)),
    Index("ix_asset_documents_asset_id", "asset_id"),
)

_transitions = Table(
    "transition_records",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("asset_id", String(20), nullable=False),
    Column("from_state", String(30), nullable=False),
    Column("to_state", String(30), nullable=False),
    Column("timestamp", String(32), nullable=False),
    Column("performed_by", String(255), nullable=False),
    Column("reason", Text),
    Index("ix_transition_records_asset_id", "asset_id"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_utc(dt: datetime) -> datetime:
    """Normalise to UTC. Naive datetimes are taken to be UTC already.

    Timestamps are stored as ISO text and compared as strings, so every
    stored value must carry the same +00:00 offset.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return _as_utc(datetime.fromisoformat(value))
    except ValueError:
        return None


def _state_value(state) -> str:
    return state.value if isinstance(state, AssetState) else str(state)


def _dump(obj) -> Optional[str]:
    return json.dumps(asdict(obj)) if obj is not None else None


def _load(cls, raw: Optional[str]):
    return cls(**json.loads(raw)) if raw else None


def _next_global_id(conn, year: int) -> str:
    """Return the next free AS-YYYY-NNNNNN identifier for this year.

    Sequence numbers are zero-padded to six digits, so the lexicographic
    MAX() is also the numeric maximum.
    """
    prefix = f"AS-{year}-"
    last = conn.execute(
        select(func.max(_assets.c.global_asset_id)).where(_assets.c.global_asset_id.like(f"{prefix}%"))
    ).scalar()
    seq = int(last[len(prefix) :]) + 1 if last else 1
    return f"{prefix}{seq:06d}"


def _rejected(asset_id: str, kind: RejectionKind, reason: str) -> Rejected:
    logger.info("Transition rejected for %s (%s): %s", asset_id, kind.value, reason)
    return Rejected(kind=kind, reason=reason)


def _unmet_precondition(asset: Asset, from_state: str, to_state: str) -> Optional[str]:
    """Return why a graph-valid transition cannot be committed yet, or None.

    Commit-time gate, separate from cmdb.lifecycle.is_valid_transition().
    """
    rule = find_rule(from_state, to_state)
    if rule is not None and rule.wipe_cert_required and not has_wipe_cert(asset):
        return "Data wipe certificate is required for disposal"
    return None


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CMDBStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # The ASGI server and the escalation task touch the same store
            # from different threads.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)
        self._subscribers: list[TransitionSubscriber] = []

    # ------------------------------------------------------------------
    # Notification collaborators
    # ------------------------------------------------------------------

    def subscribe(self, callback: TransitionSubscriber) -> None:
        """Register a callable that receives every committed TransitionRecord."""
        self._subscribers.append(callback)

    def _publish(self, record: TransitionRecord) -> None:
        for callback in self._subscribers:
            try:
                callback(record)
            except Exception:
                # The transition is already committed; a failing notifier must not mask that.
                logger.exception("Transition subscriber %r failed for record %s", callback, record.id)

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    def create_asset(self, asset: Asset) -> str:
        """Insert a new asset and return its global asset ID.

        Generates an AS-YYYY-NNNNNN identifier when asset.global_asset_id is
        empty, retrying when a concurrent insert claims the same sequence
        number. Raises ValueError if the supplied ID is malformed or the
        initial state is not Ordered/Received, and
        sqlalchemy.exc.IntegrityError if a supplied ID is already taken.
        """
        state = _state_value(asset.state)
        if state not in {s.value for s in INITIAL_STATES}:
            raise ValueError(f"Assets must be created as Ordered or Received, not {state!r}")
        if asset.global_asset_id and not _GLOBAL_ID_RE.match(asset.global_asset_id):
            raise ValueError(f"{asset.global_asset_id!r} does not match AS-YYYY-NNNNNN")
        now = _now_iso()
        for attempt in range(1, _ID_ATTEMPTS + 1):
            try:
                with self.engine.begin() as conn:
                    asset_id = asset.global_asset_id or _next_global_id(conn, datetime.now(timezone.utc).year)
                    conn.execute(
                        _assets.insert().values(
                            global_asset_id=asset_id,
                            asset_tag=asset.asset_tag,
                            serial_number=asset.serial_number,
                            asset_class=asset.asset_class,
                            model=asset.model,
                            company=asset.company,
                            state=state,
                            condition=asset.condition,
                            owner=_dump(asset.owner),
                            location=_dump(asset.location),
                            security=_dump(asset.security),
                            warranty=_dump(asset.warranty),
                            created_at=now,
                            created_by=asset.created_by,
                            updated_at=now,
                            updated_by=asset.created_by,
                            version=1,
                        )
                    )
                break
            except IntegrityError:
                if asset.global_asset_id or attempt == _ID_ATTEMPTS:
                    raise
                logger.info("Generated ID %s was taken concurrently; retrying", asset_id)
        logger.info("Asset %s created in state %s", asset_id, state)
        return asset_id

    def update_asset(self, asset_id: str, **fields) -> bool:
        """Update contextual fields on an existing asset.

        Accepts any subset of _MUTABLE_FIELDS. owner, location, security and
        warranty take their dataclass (or None to clear). Raises ValueError
        for anything else, including state.

        Returns True if a row was updated, False if asset_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update field(s) {sorted(unknown)}; state changes go through commit_transition()")
        values = {k: (_dump(v) if k in _JSON_FIELDS else v) for k, v in fields.items()}
        values["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_assets.update().where(_assets.c.global_asset_id == asset_id).values(**values))
        return result.rowcount > 0

    def load_asset(self, asset_id: str) -> Optional[Asset]:
        """Fetch a single asset with its documents. Returns None if not found."""
        with self.engine.connect() as conn:
            return self._load_asset(conn, asset_id)

    def _load_asset(self, conn, asset_id: str) -> Optional[Asset]:
        row = conn.execute(_assets.select().where(_assets.c.global_asset_id == asset_id)).first()
        if row is None:
            return None
        doc_rows = conn.execute(
            _documents.select().where(_documents.c.asset_id == asset_id).order_by(_documents.c.id)
        ).fetchall()
        return _row_to_asset(row, [_row_to_document(d) for d in doc_rows])

    def list_assets(self, state=None) -> list[Asset]:
        """Return assets ordered by ID, optionally only those in one state.

        Documents are not loaded; use load_asset() for the full record.
        """
        stmt = _assets.select().order_by(_assets.c.global_asset_id)
        if state is not None:
            stmt = stmt.where(_assets.c.state == _state_value(state))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_asset(r) for r in rows]

    def get_state_counts(self) -> dict[str, int]:
        """Return the number of assets per lifecycle state, zero-filled."""
        counts: dict[str, int] = {s.value: 0 for s in AssetState}
        stmt = select(_assets.c.state, func.count().label("n")).group_by(_assets.c.state)
        with self.engine.connect() as conn:
            for row in conn.execute(stmt):
                counts[row.state] = row.n
        return counts

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def add_document(self, asset_id: str, doc: AssetDocument) -> Optional[int]:
        """Attach document metadata to an asset. Returns None if the asset does not exist."""
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(_assets.c.global_asset_id).where(_assets.c.global_asset_id == asset_id)
            ).fetchone()
            if exists is None:
                return None
            result = conn.execute(
                _documents.insert().values(
                    asset_id=asset_id,
                    doc_type=doc.doc_type,
                    url=doc.url,
                    title=doc.title,
                    uploaded_at=doc.uploaded_at or _now_iso(),
                    uploaded_by=doc.uploaded_by,
                )
            )
        return result.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def commit_transition(
        self,
        asset_id: str,
        from_state,
        to_state,
        reason: Optional[str] = None,
        actor: str = "",
        at: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Union[TransitionRecord, Rejected]:
        """Validate and commit one state change, writing its audit record.

        from_state is what the caller believes the current state is. It is
        never written: the stored state is authoritative, and a mismatch is
        reported as stale_state so the caller re-fetches and retries.

        expected_version, when given, is the Asset.version the caller read.
        Any commit since then makes this one stale_state, even if the asset
        has come back to from_state (e.g. Lost -> In Service -> Lost).

        at overrides the record timestamp (used by tests and backfills).
        Returns the written TransitionRecord, or Rejected with nothing written.
        """
        expected = _state_value(from_state)
        target = _state_value(to_state)
        timestamp = _as_utc(at).isoformat() if at is not None else _now_iso()

        with self.engine.begin() as conn:
            asset = self._load_asset(conn, asset_id)
            if asset is None:
                return _rejected(asset_id, RejectionKind.not_found, f"Asset {asset_id} not found.")

            if asset.state != expected:
                return _rejected(
                    asset_id,
                    RejectionKind.stale_state,
                    f"Asset {asset_id} is {asset.state}, not {expected}. Reload and retry.",
                )

            if expected_version is not None and asset.version != expected_version:
                return _rejected(
                    asset_id,
                    RejectionKind.stale_state,
                    f"Asset {asset_id} changed since version {expected_version}. Reload and retry.",
                )

            check = is_valid_transition(asset.state, target, asset)
            if not check.valid:
                return _rejected(asset_id, RejectionKind.invalid_transition, check.reason or "Invalid transition")

            unmet = _unmet_precondition(asset, asset.state, target)
            if unmet:
                return _rejected(asset_id, RejectionKind.precondition_unmet, unmet)

            result = conn.execute(
                _assets.update()
                .where((_assets.c.global_asset_id == asset_id) & (_assets.c.version == asset.version))
                .values(
                    state=target,
                    version=asset.version + 1,
                    updated_at=timestamp,
                    updated_by=actor,
                )
            )
            if result.rowcount == 0:
                return _rejected(
                    asset_id,
                    RejectionKind.stale_state,
                    f"Asset {asset_id} was changed by another request. Reload and retry.",
                )

            inserted = conn.execute(
                _transitions.insert().values(
                    asset_id=asset_id,
                    from_state=asset.state,
                    to_state=target,
                    timestamp=timestamp,
                    performed_by=actor,
                    reason=reason,
                )
            )
            record = TransitionRecord(
                id=inserted.inserted_primary_key[0],
                asset_id=asset_id,
                from_state=asset.state,
                to_state=target,
                timestamp=timestamp,
                performed_by=actor,
                reason=reason,
            )

        logger.info("Asset %s: %s -> %s by %s", asset_id, record.from_state, record.to_state, actor)
        self._publish(record)
        return record

    def get_transition_history(self, asset_id: str) -> list[TransitionRecord]:
        """Return all transition records for an asset, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _transitions.select()
                .where(_transitions.c.asset_id == asset_id)
                .order_by(_transitions.c.timestamp.desc(), _transitions.c.id.desc())
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def list_transitions(
        self,
        limit: int = 100,
        performed_by: Optional[str] = None,
        to_state=None,
    ) -> list[TransitionRecord]:
        """Return recent transition records across all assets, newest first."""
        stmt = _transitions.select()
        if performed_by:
            stmt = stmt.where(_transitions.c.performed_by == performed_by)
        if to_state is not None:
            stmt = stmt.where(_transitions.c.to_state == _state_value(to_state))
        stmt = stmt.order_by(_transitions.c.timestamp.desc(), _transitions.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_record(r) for r in rows]

    # ------------------------------------------------------------------
    # Lost -> Disposed escalation
    # ------------------------------------------------------------------

    def get_lost_escalations(
        self,
        threshold_days: int,
        approaching_days: int = 7,
        now: Optional[datetime] = None,
    ) -> dict[str, list[dict]]:
        """Return Lost assets that are due, or nearly due, for auto-disposal.

        An asset's Lost clock starts at its most recent transition into Lost,
        falling back to updated_at for assets with no such record.

        Returns:
            {
              "overdue": [{"asset_id", "model", "lost_since", "days_lost",
                           "escalate_at", "version"}, ...],
              "approaching": [{"asset_id", "model", "lost_since",
                               "days_until_escalation", "escalate_at",
                               "version"}, ...]
            }
            overdue is sorted by days_lost descending (longest lost first).
            approaching is sorted by days_until_escalation ascending.
            version is the Asset.version the entry was computed from.
        """
        now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
        lost = AssetState.LOST.value
        entered_stmt = (
            select(_transitions.c.asset_id, func.max(_transitions.c.timestamp).label("lost_since"))
            .where(_transitions.c.to_state == lost)
            .group_by(_transitions.c.asset_id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(_assets.select().where(_assets.c.state == lost)).fetchall()
            entered = {r.asset_id: r.lost_since for r in conn.execute(entered_stmt)}

        overdue: list[dict] = []
        approaching: list[dict] = []
        window = timedelta(days=threshold_days)

        for row in rows:
            lost_since = entered.get(row.global_asset_id) or row.updated_at
            since = _parse_iso(lost_since)
            if since is None:
                logger.warning("Asset %s has unparseable Lost timestamp %r", row.global_asset_id, lost_since)
                continue
            escalate_at = since + window
            if now >= escalate_at:
                overdue.append(
                    {
                        "asset_id": row.global_asset_id,
                        "model": row.model,
                        "lost_since": lost_since,
                        "days_lost": int((now - since).total_seconds() / 86400),
                        "escalate_at": escalate_at.isoformat(),
                        "version": row.version,
                    }
                )
            elif (escalate_at - now) <= timedelta(days=approaching_days):
                approaching.append(
                    {
                        "asset_id": row.global_asset_id,
                        "model": row.model,
                        "lost_since": lost_since,
                        "days_until_escalation": int((escalate_at - now).total_seconds() / 86400),
                        "escalate_at": escalate_at.isoformat(),
                        "version": row.version,
                    }
                )

        overdue.sort(key=lambda x: x["days_lost"], reverse=True)
        approaching.sort(key=lambda x: x["days_until_escalation"])
        return {"overdue": overdue, "approaching": approaching}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_asset(row, docs: Optional[list[AssetDocument]] = None) -> Asset:
    return Asset(
        global_asset_id=row.global_asset_id,
        asset_tag=row.asset_tag,
        serial_number=row.serial_number,
        asset_class=row.asset_class,
        model=row.model,
        company=row.company,
        state=row.state,
        condition=row.condition,
        owner=_load(AssetOwner, row.owner),
        location=_load(AssetLocation, row.location),
        security=_load(SecurityInfo, row.security),
        warranty=_load(WarrantyInfo, row.warranty),
        docs=docs or [],
        created_at=row.created_at,
        created_by=row.created_by,
        updated_at=row.updated_at,
        updated_by=row.updated_by,
        version=row.version,
    )


def _row_to_document(row) -> AssetDocument:
    return AssetDocument(
        id=row.id,
        doc_type=row.doc_type,
        url=row.url,
        title=row.title,
        uploaded_at=row.uploaded_at,
        uploaded_by=row.uploaded_by,
    )


def _row_to_record(row) -> TransitionRecord:
    return TransitionRecord(
        id=row.id,
        asset_id=row.asset_id,
        from_state=row.from_state,
        to_state=row.to_state,
        timestamp=row.timestamp,
        performed_by=row.performed_by,
        reason=row.reason,
    )
