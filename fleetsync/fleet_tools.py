# fleetsync/fleet_tools.py
"""Unified, provider-agnostic fleet queries.

Tools exposed to dashboards and the assistant:

* ``search_fleet_vehicles`` - canonical vehicles with their current location.
* ``search_fleet_locations`` - current locations with their vehicle details.
* ``search_fleet_latest`` - newest locations, reverse geocoded to city/state.

Each one queries every selected provider's canonical rows, tags each result with a
``"<provider>:<native_id>"`` fleet vehicle id, merges, sorts newest location
first and truncates to ``limit``. The tenant always comes from the caller's
identity token.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .auth import resolve_tenant_id
from .config import Settings, get_settings
from .exceptions import UnknownToolError
from .geocode import ReverseGeocoder, enrich_with_geocoding
from .models import FleetVehicle, FleetVehicleLocation
from .providers.registry import ADAPTERS
from .schemas import SearchLatestArgs, SearchLocationsArgs, SearchVehiclesArgs
from .utils import logger

ToolResult = Dict[str, Any]


def fleet_vehicle_id(provider: str, native_vehicle_id: str) -> str:
    return f"{provider}:{native_vehicle_id}"


def parse_fleet_vehicle_id(value: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split ``"motive:123"`` into ``("motive", "123")``.

    Values without a known provider prefix come back as ``(None, None)``.
    """
    if not value:
        return None, None
    provider, sep, native = value.partition(":")
    if sep and native and provider in ADAPTERS:
        return provider, native
    return None, None


def _providers_for(provider_filter: str) -> List[str]:
    if provider_filter in ADAPTERS:
        return [provider_filter]
    return list(ADAPTERS)


def _as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    # SQLite hands back naive values; everything is stored as UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    dt = _as_utc(dt)
    return dt.isoformat() if dt else None


def _sort_key(located_at: Optional[datetime]) -> float:
    dt = _as_utc(located_at)
    return dt.timestamp() if dt else float("-inf")


def _display_name(vehicle: Optional[FleetVehicle], provider: str, native_id: str) -> str:
    if vehicle is not None:
        for candidate in (vehicle.name, vehicle.number, vehicle.license_plate):
            if candidate:
                return candidate
    return f"{ADAPTERS[provider].label} Vehicle {native_id}"


def _vehicle_fields(vehicle: Optional[FleetVehicle]) -> Dict[str, Any]:
    if vehicle is None:
        return {
            "license_plate": None, "license_plate_state": None, "vin": None, "make": None,
            "model": None, "year": None, "status": None, "availability_status": None, "stale": None,
        }
    return {
        "license_plate": vehicle.license_plate,
        "license_plate_state": vehicle.license_plate_state,
        "vin": vehicle.vin,
        "make": vehicle.make,
        "model": vehicle.model,
        "year": vehicle.year,
        "status": vehicle.status,
        "availability_status": vehicle.availability_status,
        "stale": bool(vehicle.stale),
    }


def _identity(provider: str, native_id: str, tenant_id: str) -> Dict[str, Any]:
    return {
        "provider": provider,
        "provider_label": ADAPTERS[provider].label,
        "provider_vehicle_id": native_id,
        "fleet_vehicle_id": fleet_vehicle_id(provider, native_id),
        "tenant_id": tenant_id,
    }


def format_vehicle(vehicle: FleetVehicle, location: Optional[FleetVehicleLocation]) -> Dict[str, Any]:
    result = _identity(vehicle.provider, vehicle.native_vehicle_id, vehicle.tenant_id)
    result["name"] = _display_name(vehicle, vehicle.provider, vehicle.native_vehicle_id)
    result["number"] = vehicle.number
    result.update(_vehicle_fields(vehicle))
    result["has_location"] = location is not None
    result.update({
        "latitude": location.latitude if location else None,
        "longitude": location.longitude if location else None,
        "speed_mph": location.speed_mph if location else None,
        "heading": location.heading if location else None,
        "located_at": _iso(location.located_at) if location else None,
        "last_synced_at": _iso(location.last_synced_at if location else vehicle.last_synced_at),
    })
    return result


def format_location(location: FleetVehicleLocation, vehicle: Optional[FleetVehicle]) -> Dict[str, Any]:
    result = _identity(location.provider, location.native_vehicle_id, location.tenant_id)
    result["name"] = _display_name(vehicle, location.provider, location.native_vehicle_id)
    result.update(_vehicle_fields(vehicle))
    result.update({
        "latitude": location.latitude,
        "longitude": location.longitude,
        "heading": location.heading,
        "speed_mph": location.speed_mph,
        "odometer_miles": location.odometer_miles,
        "engine_hours": location.engine_hours,
        "fuel_primary_pct": location.fuel_primary_pct,
        "fuel_secondary_pct": location.fuel_secondary_pct,
        "battery_voltage": location.battery_voltage,
        "ignition_on": location.ignition_on,
        "movement_state": location.movement_state,
        "description": location.description,
        "driver_name": location.driver_name,
        "located_at": _iso(location.located_at),
        "last_synced_at": _iso(location.last_synced_at),
    })
    return result


def _envelope(tenant_id: str, ranked: List[Tuple[float, Dict[str, Any]]], limit: int) -> ToolResult:
    ranked.sort(key=lambda pair: pair[0], reverse=True)
    results = [item for _, item in ranked[:limit]]
    return {"ok": True, "tenant_id": tenant_id, "count": len(results), "results": results}


def search_fleet_vehicles(
    db: Session,
    tenant_id: str,
    args: Dict[str, Any] | SearchVehiclesArgs | None = None,
    settings: Optional[Settings] = None,
) -> ToolResult:
    params = args if isinstance(args, SearchVehiclesArgs) else SearchVehiclesArgs.model_validate(args or {})
    ranked: List[Tuple[float, Dict[str, Any]]] = []
    for provider in _providers_for(params.provider):
        try:
            rows = crud.search_vehicle_rows(db, tenant_id, provider, params.query, params.limit)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("%s vehicles query failed for tenant %s: %s", provider, tenant_id, e)
            return {"error": f"Failed to load {ADAPTERS[provider].label} vehicles.", "details": str(e)}
        for vehicle, location in rows:
            ranked.append((_sort_key(location.located_at if location else None), format_vehicle(vehicle, location)))
    return _envelope(tenant_id, ranked, params.limit)


def search_fleet_locations(
    db: Session,
    tenant_id: str,
    args: Dict[str, Any] | SearchLocationsArgs | None = None,
    settings: Optional[Settings] = None,
) -> ToolResult:
    params = args if isinstance(args, SearchLocationsArgs) else SearchLocationsArgs.model_validate(args or {})

    scoped_provider, native_id = parse_fleet_vehicle_id(params.fleet_vehicle_id)
    if scoped_provider is None:
        # a bare id (not "<provider>:<id>") is matched against every selected provider
        native_id = params.provider_vehicle_id or params.fleet_vehicle_id
        providers = _providers_for(params.provider)
    else:
        providers = [scoped_provider]

    ranked: List[Tuple[float, Dict[str, Any]]] = []
    for provider in providers:
        try:
            rows = crud.search_location_rows(db, tenant_id, provider, native_id, params.query, params.limit)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("%s locations query failed for tenant %s: %s", provider, tenant_id, e)
            return {"error": f"Failed to load {ADAPTERS[provider].label} locations.", "details": str(e)}
        for location, vehicle in rows:
            ranked.append((_sort_key(location.located_at), format_location(location, vehicle)))
    return _envelope(tenant_id, ranked, params.limit)


def search_fleet_latest(
    db: Session,
    tenant_id: str,
    args: Dict[str, Any] | SearchLatestArgs | None = None,
    settings: Optional[Settings] = None,
    geocoder: Optional[ReverseGeocoder] = None,
) -> ToolResult:
    """Newest current locations across providers, with city/state where geocoding is configured.

    At most ``MAX_GEOCODE_PER_CALL`` results are reverse geocoded per call;
    geocoding failures leave ``city``, ``state`` and ``location_text`` as None.
    """
    params = args if isinstance(args, SearchLatestArgs) else SearchLatestArgs.model_validate(args or {})
    result = search_fleet_locations(
        db, tenant_id, SearchLocationsArgs(provider=params.provider, query=params.query, limit=params.limit),
    )
    if "error" in result:
        return result

    owned = geocoder is None
    geocoder = geocoder or ReverseGeocoder.from_settings(settings or get_settings())
    try:
        enrich_with_geocoding(result["results"], geocoder)
    finally:
        if owned:
            geocoder.session.close()
    return result


TOOLS: Dict[str, Callable[..., ToolResult]] = {
    "search_fleet_vehicles": search_fleet_vehicles,
    "search_fleet_locations": search_fleet_locations,
    "search_fleet_latest": search_fleet_latest,
}


def run_tool(
    db: Session,
    access_token: Optional[str],
    tool: str,
    args: Optional[Dict[str, Any]] = None,
    settings: Optional[Settings] = None,
) -> ToolResult:
    """Resolve the caller's tenant from ``access_token`` and run ``tool``.

    Raises IdentityResolutionError, UnknownToolError or ConfigurationError for
    request-level failures; query failures come back as ``{error, details}``.
    """
    handler = TOOLS.get(tool)
    if handler is None:
        raise UnknownToolError(f"Unknown tool: {tool}")
    tenant_id = resolve_tenant_id(access_token, settings)
    args = dict(args or {})
    # the tenant is never taken from arguments
    args.pop("tenant_id", None)
    args.pop("org_id", None)
    logger.info("Running %s for tenant %s", tool, tenant_id)
    return handler(db, tenant_id, args, settings=settings)
