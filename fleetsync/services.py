# fleetsync/services.py
"""Sync orchestration: resolve connections, then fetch, normalize, upsert and
audit each one in turn.

Connections are processed strictly one after another and every failure below
the connection lookup is confined to the connection that raised it.
"""
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .config import Settings, get_settings
from .exceptions import InvalidSyncRunTransition, NormalizationSkip, PersistenceError, ProviderError
from .models import SYNC_STATUS_ERROR, SYNC_STATUS_SUCCESS, FleetConnection
from .providers.registry import build_adapter
from .schemas import SyncSummary, TenantSyncResult
from .utils import logger, utcnow

ENTITIES = ("vehicles", "locations")
NO_CONNECTIONS_MESSAGE = "no enabled connections"


def normalize_records(
    records: Iterable[Any],
    normalizer: Callable[[Any, str, datetime], Any],
    tenant_id: str,
    now: datetime,
) -> Tuple[List[Dict[str, Any]], Counter]:
    """Apply ``normalizer`` to each record, counting skips by reason."""
    rows: List[Dict[str, Any]] = []
    skips: Counter = Counter()
    for record in records:
        try:
            canonical = normalizer(record, tenant_id, now)
        except NormalizationSkip as skip:
            skips[skip.reason] += 1
            continue
        rows.append(canonical.model_dump())
    return rows, skips


def _skip_note(result: TenantSyncResult) -> Optional[str]:
    if not result.skipped:
        return None
    return (
        f"Synced {result.synced} records. Skipped {result.skipped_without_id} without id "
        f"and {result.skipped_without_lat_lon} without lat/lon."
    )


def sync_connection(
    db: Session,
    conn: FleetConnection,
    settings: Settings,
    entities: Sequence[str] = ENTITIES,
    session: Optional[requests.Session] = None,
) -> TenantSyncResult:
    """Run one audited sync attempt for a single tenant connection."""
    result = TenantSyncResult(tenant_id=conn.tenant_id, provider=conn.provider)
    try:
        run = crud.create_sync_run(db, conn.tenant_id, conn.provider)
    except PersistenceError as e:
        logger.error("Sync run could not be created for %s/%s: %s", conn.tenant_id, conn.provider, e)
        result.error = str(e)
        return result
    result.sync_run_id = run.id
    logger.info("Sync run %s started for tenant %s (%s)", run.id, conn.tenant_id, conn.provider)

    adapter = None
    now = utcnow()
    try:
        adapter = build_adapter(conn.provider, settings, sandbox=bool(conn.use_sandbox), session=session)
        raw_vehicles = adapter.fetch_vehicles(conn.access_token) if "vehicles" in entities else []
        raw_locations = adapter.fetch_locations(conn.access_token) if "locations" in entities else []

        vehicle_rows, vehicle_skips = normalize_records(raw_vehicles, adapter.normalize_vehicle, conn.tenant_id, now)
        location_rows, location_skips = normalize_records(raw_locations, adapter.normalize_location, conn.tenant_id, now)
        skips = vehicle_skips + location_skips
        result.skipped_without_id = skips[NormalizationSkip.MISSING_ID]
        result.skipped_without_lat_lon = skips[NormalizationSkip.MISSING_LAT_LON]
        result.skipped = result.skipped_without_id + result.skipped_without_lat_lon
        logger.info(
            "Tenant %s (%s): %d vehicles -> %d rows, %d locations -> %d rows, skipped %d without id, %d without lat/lon",
            conn.tenant_id, conn.provider, len(raw_vehicles), len(vehicle_rows), len(raw_locations),
            len(location_rows), result.skipped_without_id, result.skipped_without_lat_lon,
        )

        if "vehicles" in entities:
            result.vehicles_synced = crud.upsert_vehicles(db, vehicle_rows)
            # no usable rows may mean an unrecognized envelope or a broken feed; don't age vehicles on it
            if vehicle_rows:
                crud.mark_missing_vehicles(
                    db, conn.tenant_id, conn.provider,
                    {r["native_vehicle_id"] for r in vehicle_rows},
                    settings.stale_after_missed_cycles,
                )
        if "locations" in entities:
            result.locations_synced = crud.upsert_locations(db, location_rows)
        result.synced = result.vehicles_synced + result.locations_synced
    except (ProviderError, PersistenceError) as e:
        logger.error("Sync run %s failed for tenant %s (%s): %s", run.id, conn.tenant_id, conn.provider, e)
        result.error = str(e)
    except Exception as e:
        logger.exception("Sync run %s hit an unexpected error for tenant %s: %s", run.id, conn.tenant_id, e)
        db.rollback()
        result.error = f"Unexpected error: {e}"

    _finalize(db, run.id, result, adapter.pagination_summary() if adapter else None)
    return result


def _finalize(db: Session, run_id: int, result: TenantSyncResult, pagination: Optional[str]) -> None:
    status = SYNC_STATUS_ERROR if result.error else SYNC_STATUS_SUCCESS
    try:
        crud.finalize_sync_run(
            db,
            run_id,
            status,
            total_count=result.synced,
            vehicles_count=result.vehicles_synced,
            locations_count=result.locations_synced,
            skipped_without_id=result.skipped_without_id,
            skipped_without_lat_lon=result.skipped_without_lat_lon,
            error_message=result.error or _skip_note(result),
            pagination_param_used=pagination,
        )
    except InvalidSyncRunTransition as e:
        # typically reaped as abandoned while this attempt was still working
        logger.warning("Sync run %s was already finalized: %s", run_id, e)
        if not result.error:
            result.error = f"Sync run {run_id} was closed before this attempt finished (likely reaped as abandoned)"
        return
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Could not finalize sync run %s: %s", run_id, e)
        if not result.error:
            result.error = f"Could not finalize sync run: {e}"
        return
    logger.info("Sync run %s finished: %s (synced=%d skipped=%d)", run_id, status, result.synced, result.skipped)


def run_sync(
    db: Session,
    tenant_id: Optional[str] = None,
    provider: Optional[str] = None,
    entities: Sequence[str] = ENTITIES,
    settings: Optional[Settings] = None,
    session: Optional[requests.Session] = None,
) -> SyncSummary:
    """Sync every enabled connection in scope, one at a time."""
    settings = settings or get_settings()
    try:
        crud.reap_stale_sync_runs(db, settings.sync_run_ttl_minutes)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Stale sync run reaper failed: %s", e)

    connections = crud.resolve_connections(db, tenant_id=tenant_id, provider=provider)
    if not connections:
        logger.info("No enabled connections (tenant=%s, provider=%s)", tenant_id, provider)
        return SyncSummary(
            ok=True, total_tenants=0, total_synced=0, total_skipped=0, results=[],
            message=NO_CONNECTIONS_MESSAGE,
        )

    http = session or requests.Session()
    try:
        results = [sync_connection(db, conn, settings, entities, http) for conn in connections]
    finally:
        if session is None:
            http.close()

    failed = [r for r in results if r.error]
    summary = SyncSummary(
        ok=not failed,
        total_tenants=len(results),
        total_synced=sum(r.synced for r in results),
        total_skipped=sum(r.skipped for r in results),
        results=results,
    )
    logger.info(
        "Sync finished: %d attempted, %d failed, %d synced, %d skipped",
        summary.total_tenants, len(failed), summary.total_synced, summary.total_skipped,
    )
    return summary


def summary_status_code(summary: SyncSummary) -> int:
    """502 only when every attempted connection failed."""
    if summary.results and all(r.error for r in summary.results):
        return 502
    return 200
