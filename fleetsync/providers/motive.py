# fleetsync/providers/motive.py
"""Motive (formerly KeepTruckin) adapter.

Vehicles come from ``/v1/vehicles`` and current positions from
``/v2/vehicle_locations``; both paginate by page number with a
``pagination: {per_page, page_no, total}`` block.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from ..exceptions import NormalizationSkip
from ..normalize import (
    extract_id, first_value, flatten_wrapper, parse_timestamp, safe_bool, safe_float, safe_int, safe_str,
)
from ..schemas import CanonicalLocation, CanonicalVehicle
from .base import ProviderAdapter

VEHICLE_ID_FIELDS = ("id", "vehicle_id", "vehicleId", "vehicleID")


class MotiveAdapter(ProviderAdapter):
    name = "motive"
    label = "Motive"
    vehicles_path = "/v1/vehicles"
    locations_path = "/v2/vehicle_locations"
    vehicle_envelope = ("vehicles", "vehicles.data", "data", None)
    location_envelope = ("vehicle_locations", "vehicle_locations.data", "vehicles", "vehicles.data", "data", None)
    page_size = 100

    def fetch_vehicles(self, token: str) -> list[dict[str, Any]]:
        return self.fetch_all(token, self.vehicles_path, self.vehicle_envelope, self._first_page())

    def fetch_locations(self, token: str) -> list[dict[str, Any]]:
        return self.fetch_all(token, self.locations_path, self.location_envelope, self._first_page())

    def _first_page(self) -> dict[str, Any]:
        return {"per_page": self.page_size, "page_no": 1}

    def next_page_params(self, payload: Any, params: dict[str, Any], page_records: int) -> dict[str, Any] | None:
        if not isinstance(payload, dict) or page_records == 0:
            return None
        pagination = payload.get("pagination")
        if not isinstance(pagination, dict):
            return None
        total = safe_int(pagination.get("total"))
        page_no = safe_int(pagination.get("page_no")) or params["page_no"]
        per_page = safe_int(pagination.get("per_page")) or params["per_page"]
        if total is None or page_no * per_page >= total:
            return None
        return {**params, "page_no": page_no + 1}

    def normalize_vehicle(self, raw: Any, tenant_id: str, now: datetime) -> CanonicalVehicle:
        flat = flatten_wrapper(raw, "vehicle")
        if not isinstance(flat, dict):
            raise NormalizationSkip(NormalizationSkip.MISSING_ID)
        vehicle_id = extract_id(flat, VEHICLE_ID_FIELDS)
        if vehicle_id is None:
            raise NormalizationSkip(NormalizationSkip.MISSING_ID)

        return CanonicalVehicle(
            tenant_id=tenant_id,
            provider=self.name,
            native_vehicle_id=vehicle_id,
            name=safe_str(flat.get("name")),
            number=safe_str(flat.get("number")),
            license_plate=first_value(flat, ("license_plate_number", "license_plate")),
            license_plate_state=safe_str(flat.get("license_plate_state")),
            vin=safe_str(flat.get("vin")),
            make=safe_str(flat.get("make")),
            model=safe_str(flat.get("model")),
            year=safe_str(flat.get("year")),
            status=safe_str(flat.get("status")),
            availability_status=first_value(
                flat, ("availability_details.availability_status", "availability_status"),
            ),
            external_id=safe_str(flat.get("company_id")),
            provider_updated_at=first_value(
                flat, ("availability_details.updated_at", "updated_at"), parse_timestamp,
            ),
            last_synced_at=now,
            raw=raw,
        )

    def normalize_location(self, raw: Any, tenant_id: str, now: datetime) -> CanonicalLocation:
        flat = flatten_wrapper(raw, "vehicle")
        if not isinstance(flat, dict):
            raise NormalizationSkip(NormalizationSkip.MISSING_ID)

        if "current_location" in flat:
            # vehicle-shaped record: {id, number, current_location: {...} | null, current_driver}
            vehicle_id = extract_id(flat, ("id", "vehicle_id"))
            loc = flat.get("current_location") or {}
        else:
            candidates = ["vehicle_id", "vehicleId"]
            if str(flat.get("locatable_type", "")).lower() == "vehicle":
                candidates.append("locatable_id")
            vehicle_id = extract_id(flat, candidates)
            loc = flat
        if vehicle_id is None:
            raise NormalizationSkip(NormalizationSkip.MISSING_ID)

        lat = first_value(loc, ("lat", "latitude"), safe_float)
        lon = first_value(loc, ("lon", "lng", "longitude"), safe_float)
        if lat is None or lon is None:
            raise NormalizationSkip(NormalizationSkip.MISSING_LAT_LON)

        located_at = first_value(
            loc, ("located_at", "recorded_at", "updated_at", "created_at"), parse_timestamp,
        ) or now

        return CanonicalLocation(
            tenant_id=tenant_id,
            provider=self.name,
            native_vehicle_id=vehicle_id,
            latitude=lat,
            longitude=lon,
            heading=first_value(loc, ("bearing", "heading"), safe_float),
            speed_mph=safe_float(loc.get("speed")),
            odometer_miles=first_value(loc, ("odometer", "true_odometer"), safe_float),
            engine_hours=first_value(loc, ("engine_hours", "true_engine_hours"), safe_float),
            fuel_primary_pct=first_value(loc, ("fuel_primary_remaining_percentage", "fuel"), safe_float),
            fuel_secondary_pct=safe_float(loc.get("fuel_secondary_remaining_percentage")),
            battery_voltage=safe_float(loc.get("battery_voltage")),
            ignition_on=first_value(loc, ("ignition_on", "ignition"), safe_bool),
            movement_state=first_value(loc, ("movement_type", "vehicle_state")),
            description=safe_str(loc.get("description")),
            driver_name=_driver_name(flat.get("current_driver") or loc.get("current_driver")),
            located_at=located_at,
            last_synced_at=now,
            raw=raw,
        )


def _driver_name(driver: Any) -> str | None:
    if not isinstance(driver, dict):
        return None
    name = safe_str(driver.get("name"))
    if name:
        return name
    parts = [safe_str(driver.get("first_name")), safe_str(driver.get("last_name"))]
    joined = " ".join(p for p in parts if p)
    return joined or None
