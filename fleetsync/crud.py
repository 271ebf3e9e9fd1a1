# fleetsync/crud.py
"""Persistence helpers for connections, canonical fleet rows and sync runs.

Canonical rows are only ever written through ``upsert_vehicles`` and
``upsert_locations``: one bulk ``INSERT ... ON CONFLICT DO UPDATE`` per call,
keyed by (tenant_id, provider, native_vehicle_id), replacing the whole row.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, case, or_, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import ConnectionLookupError, InvalidSyncRunTransition, PersistenceError
from .models import (
    CANONICAL_KEY, SYNC_STATUS_ERROR, SYNC_STATUS_RUNNING, SYNC_STATUS_SUCCESS,
    FleetConnection, FleetVehicle, FleetVehicleLocation, SyncRun,
)
from .utils import logger, utcnow

_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def resolve_connections(db: Session, tenant_id: Optional[str] = None, provider: Optional[str] = None) -> List[FleetConnection]:
    """Enabled connections in scope; ``tenant_id=None`` means every tenant."""
    try:
        q = db.query(FleetConnection).filter(FleetConnection.enabled.is_(True))
        if tenant_id:
            q = q.filter(FleetConnection.tenant_id == tenant_id)
        if provider:
            q = q.filter(FleetConnection.provider == provider)
        return q.order_by(FleetConnection.tenant_id, FleetConnection.provider).all()
    except SQLAlchemyError as e:
        db.rollback()
        raise ConnectionLookupError(f"Failed to load fleet connections: {e}") from e


def _bulk_upsert(db: Session, model, rows: Sequence[Dict[str, Any]]) -> int:
    if not rows:
        return 0
    # one statement cannot touch the same key twice; last occurrence wins
    deduped = {tuple(r[k] for k in CANONICAL_KEY): r for r in rows}
    values = list(deduped.values())

    table = model.__table__
    dialect = db.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise PersistenceError(f"Upsert not supported on dialect {dialect}")

    stmt = insert(table).values(values)
    replaced = {
        c.name: stmt.excluded[c.name]
        for c in table.columns
        if c.name != "id" and c.name not in CANONICAL_KEY
    }
    stmt = stmt.on_conflict_do_update(index_elements=list(CANONICAL_KEY), set_=replaced)
    try:
        db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Database upsert error on {table.name}: {getattr(e, 'orig', None) or e}") from e
    return len(values)


def upsert_vehicles(db: Session, rows: Sequence[Dict[str, Any]]) -> int:
    # a vehicle seen in the feed is never stale
    fresh = [{**r, "missed_cycles": 0, "stale": False} for r in rows]
    return _bulk_upsert(db, FleetVehicle, fresh)


def upsert_locations(db: Session, rows: Sequence[Dict[str, Any]]) -> int:
    return _bulk_upsert(db, FleetVehicleLocation, rows)


def mark_missing_vehicles(
    db: Session, tenant_id: str, provider: str, seen_ids: Iterable[str], stale_after: int,
) -> int:
    """Advance the missed-cycle counter of vehicles absent from this feed.

    Vehicles reach ``stale`` once they have been missing for ``stale_after``
    consecutive successful syncs. Rows are never deleted.
    """
    seen = list(seen_ids)
    next_missed = FleetVehicle.missed_cycles + 1
    stmt = (
        update(FleetVehicle)
        .where(
            FleetVehicle.tenant_id == tenant_id,
            FleetVehicle.provider == provider,
            FleetVehicle.native_vehicle_id.not_in(seen),
        )
        .values(
            missed_cycles=next_missed,
            stale=case((next_missed >= stale_after, True), else_=FleetVehicle.stale),
        )
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Failed to update missed vehicles: {e}") from e
    return result.rowcount or 0


def create_sync_run(db: Session, tenant_id: str, provider: str) -> SyncRun:
    run = SyncRun(tenant_id=tenant_id, provider=provider, status=SYNC_STATUS_RUNNING, started_at=utcnow())
    try:
        db.add(run)
        db.commit()
        db.refresh(run)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Could not create sync run record: {e}") from e
    return run


def finalize_sync_run(
    db: Session,
    run_id: int,
    status: str,
    *,
    total_count: Optional[int] = None,
    vehicles_count: Optional[int] = None,
    locations_count: Optional[int] = None,
    skipped_without_id: Optional[int] = None,
    skipped_without_lat_lon: Optional[int] = None,
    error_message: Optional[str] = None,
    pagination_param_used: Optional[str] = None,
) -> None:
    """Move a run from ``running`` to ``success`` or ``error``, exactly once."""
    if status not in (SYNC_STATUS_SUCCESS, SYNC_STATUS_ERROR):
        raise InvalidSyncRunTransition(f"SyncRun {run_id}: {status!r} is not a terminal status")
    stmt = (
        update(SyncRun)
        .where(SyncRun.id == run_id, SyncRun.status == SYNC_STATUS_RUNNING)
        .values(
            status=status,
            finished_at=utcnow(),
            total_count=total_count,
            vehicles_count=vehicles_count,
            locations_count=locations_count,
            skipped_without_id=skipped_without_id,
            skipped_without_lat_lon=skipped_without_lat_lon,
            error_message=error_message,
            pagination_param_used=pagination_param_used,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    if result.rowcount != 1:
        raise InvalidSyncRunTransition(f"SyncRun {run_id} is not running; refusing to finalize as {status}")


def reap_stale_sync_runs(db: Session, ttl_minutes: int, now: Optional[datetime] = None) -> int:
    """Fail runs left ``running`` longer than ``ttl_minutes`` (crashed or timed-out hosts)."""
    now = now or utcnow()
    cutoff = now - timedelta(minutes=ttl_minutes)
    stmt = (
        update(SyncRun)
        .where(SyncRun.status == SYNC_STATUS_RUNNING, SyncRun.started_at < cutoff)
        .values(
            status=SYNC_STATUS_ERROR,
            finished_at=now,
            error_message=f"Abandoned: still running after {ttl_minutes} minutes",
        )
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    reaped = result.rowcount or 0
    if reaped:
        logger.warning("Reaped %d abandoned sync run(s) older than %s", reaped, cutoff.isoformat())
    return reaped


def get_sync_run(db: Session, run_id: int) -> Optional[SyncRun]:
    return db.query(SyncRun).filter(SyncRun.id == run_id).first()


def list_sync_runs(db: Session, tenant_id: Optional[str] = None, status: Optional[str] = None, limit: int = 50) -> List[SyncRun]:
    q = db.query(SyncRun)
    if tenant_id:
        q = q.filter(SyncRun.tenant_id == tenant_id)
    if status:
        q = q.filter(SyncRun.status == status)
    return q.order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(limit).all()


def _like(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _vehicle_text_filter(query: str):
    pattern = _like(query)
    return or_(*[
        col.ilike(pattern, escape="\\")
        for col in (
            FleetVehicle.name, FleetVehicle.number, FleetVehicle.license_plate,
            FleetVehicle.vin, FleetVehicle.external_id, FleetVehicle.native_vehicle_id,
        )
    ])


def _same_vehicle():
    return and_(*[
        getattr(FleetVehicle, k) == getattr(FleetVehicleLocation, k) for k in CANONICAL_KEY
    ])


def search_vehicle_rows(db: Session, tenant_id: str, provider: str, query: str = "", limit: int = 20):
    """(vehicle, location-or-None) pairs for one provider, newest location first."""
    q = (
        db.query(FleetVehicle, FleetVehicleLocation)
        .outerjoin(FleetVehicleLocation, _same_vehicle())
        .filter(FleetVehicle.tenant_id == tenant_id, FleetVehicle.provider == provider)
    )
    if query:
        q = q.filter(_vehicle_text_filter(query))
    q = q.order_by(FleetVehicleLocation.located_at.is_(None), FleetVehicleLocation.located_at.desc())
    return q.limit(limit).all()


def search_location_rows(
    db: Session,
    tenant_id: str,
    provider: str,
    native_vehicle_id: Optional[str] = None,
    query: str = "",
    limit: int = 20,
):
    """(location, vehicle-or-None) pairs for one provider, newest first."""
    q = (
        db.query(FleetVehicleLocation, FleetVehicle)
        .outerjoin(FleetVehicle, _same_vehicle())
        .filter(FleetVehicleLocation.tenant_id == tenant_id, FleetVehicleLocation.provider == provider)
    )
    if native_vehicle_id:
        q = q.filter(FleetVehicleLocation.native_vehicle_id == native_vehicle_id)
    if query:
        pattern = _like(query)
        q = q.filter(or_(
            _vehicle_text_filter(query),
            FleetVehicleLocation.native_vehicle_id.ilike(pattern, escape="\\"),
            FleetVehicleLocation.description.ilike(pattern, escape="\\"),
        ))
    q = q.order_by(FleetVehicleLocation.located_at.is_(None), FleetVehicleLocation.located_at.desc())
    return q.limit(limit).all()
