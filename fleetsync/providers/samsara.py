# fleetsync/providers/samsara.py
"""Samsara adapter.

Vehicles come from ``/fleet/vehicles`` and GPS snapshots from
``/fleet/vehicles/stats?types=gps``. Both use cursor pagination:
``pagination: {endCursor, hasNextPage}`` answered with ``after=<endCursor>``.
Samsara ids are opaque numeric-looking strings and are kept verbatim.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from ..exceptions import NormalizationSkip
from ..normalize import extract_id, first_value, get_path, parse_timestamp, safe_bool, safe_float, safe_str
from ..schemas import CanonicalLocation, CanonicalVehicle
from .base import ProviderAdapter


class SamsaraAdapter(ProviderAdapter):
    name = "samsara"
    label = "Samsara"
    vehicles_path = "/fleet/vehicles"
    locations_path = "/fleet/vehicles/stats"
    vehicle_envelope = ("data", "vehicles", "vehicles.data", None)
    location_envelope = ("data", "vehicles", "vehicles.data", None)
    page_size = 512

    def fetch_vehicles(self, token: str) -> list[dict[str, Any]]:
        return self.fetch_all(token, self.vehicles_path, self.vehicle_envelope, {"limit": self.page_size})

    def fetch_locations(self, token: str) -> list[dict[str, Any]]:
        return self.fetch_all(
            token, self.locations_path, self.location_envelope, {"types": "gps", "limit": self.page_size},
        )

    def next_page_params(self, payload: Any, params: dict[str, Any], page_records: int) -> dict[str, Any] | None:
        pagination = get_path(payload, "pagination")
        if not isinstance(pagination, dict):
            return None
        cursor = safe_str(pagination.get("endCursor"))
        if pagination.get("hasNextPage") is not True or not cursor:
            return None
        return {**params, "after": cursor}

    def normalize_vehicle(self, raw: Any, tenant_id: str, now: datetime) -> CanonicalVehicle:
        if not isinstance(raw, dict):
            raise NormalizationSkip(NormalizationSkip.MISSING_ID)
        vehicle_id = extract_id(raw, ("id", "vehicleId"), numeric=False)
        if vehicle_id is None:
            raise NormalizationSkip(NormalizationSkip.MISSING_ID)

        is_active = safe_bool(raw.get("isActive"))
        availability = None if is_active is None else ("active" if is_active else "inactive")

        return CanonicalVehicle(
            tenant_id=tenant_id,
            provider=self.name,
            native_vehicle_id=vehicle_id,
            name=safe_str(raw.get("name")),
            license_plate=safe_str(raw.get("licensePlate")),
            license_plate_state=safe_str(raw.get("licensePlateState")),
            vin=safe_str(raw.get("vin")),
            make=safe_str(raw.get("make")),
            model=safe_str(raw.get("model")),
            year=first_value(raw, ("modelYear", "year")),
            status=safe_str(raw.get("status")),
            availability_status=availability,
            external_id=_first_external_id(raw.get("externalIds")),
            provider_updated_at=first_value(raw, ("updatedAt", "updatedAtTime"), parse_timestamp),
            last_synced_at=now,
            raw=raw,
        )

    def normalize_location(self, raw: Any, tenant_id: str, now: datetime) -> CanonicalLocation:
        if not isinstance(raw, dict):
            raise NormalizationSkip(NormalizationSkip.MISSING_ID)
        vehicle_id = extract_id(raw, ("vehicleId", "assetId", "vehicle.id", "id"), numeric=False)
        if vehicle_id is None:
            raise NormalizationSkip(NormalizationSkip.MISSING_ID)

        lat = first_value(raw, ("latitude", "gps.latitude", "location.latitude"), safe_float)
        lon = first_value(raw, ("longitude", "gps.longitude", "location.longitude"), safe_float)
        if lat is None or lon is None:
            raise NormalizationSkip(NormalizationSkip.MISSING_LAT_LON)

        located_at = first_value(
            raw, ("gps.time", "location.time", "time", "updatedAt", "createdAt"), parse_timestamp,
        ) or now

        return CanonicalLocation(
            tenant_id=tenant_id,
            provider=self.name,
            native_vehicle_id=vehicle_id,
            latitude=lat,
            longitude=lon,
            heading=first_value(raw, ("headingDegrees", "gps.headingDegrees", "location.heading"), safe_float),
            speed_mph=first_value(
                raw, ("speedMph", "speedMilesPerHour", "gps.speedMilesPerHour", "location.speed"), safe_float,
            ),
            odometer_miles=safe_float(raw.get("odometerMiles")),
            engine_hours=safe_float(raw.get("engineHours")),
            fuel_primary_pct=first_value(raw, ("fuelPercent", "fuelPercents.value"), safe_float),
            battery_voltage=safe_float(raw.get("batteryVoltage")),
            ignition_on=safe_bool(raw.get("ignitionOn")),
            movement_state=safe_str(raw.get("engineState")),
            description=first_value(
                raw, ("gps.reverseGeo.formattedLocation", "location.reverseGeo.formattedLocation"),
            ),
            driver_name=first_value(raw, ("driver.name", "currentDriver.name")),
            located_at=located_at,
            last_synced_at=now,
            raw=raw,
        )


def _first_external_id(external_ids: Any) -> str | None:
    if not isinstance(external_ids, dict):
        return None
    for value in external_ids.values():
        text = safe_str(value)
        if text:
            return text
    return None
