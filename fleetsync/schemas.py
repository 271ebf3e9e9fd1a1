# fleetsync/schemas.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

from .normalize import safe_int

PROVIDER_FILTERS = ("motive", "samsara")
DEFAULT_LIMIT = 20
MAX_LIMIT = 100


class CanonicalVehicle(BaseModel):
    tenant_id: str
    provider: str
    native_vehicle_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    number: Optional[str] = None
    license_plate: Optional[str] = None
    license_plate_state: Optional[str] = None
    vin: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[str] = None
    status: Optional[str] = None
    availability_status: Optional[str] = None
    external_id: Optional[str] = None
    provider_updated_at: Optional[datetime] = None
    last_synced_at: datetime
    raw: Dict[str, Any]


class CanonicalLocation(BaseModel):
    tenant_id: str
    provider: str
    native_vehicle_id: str = Field(..., min_length=1)
    latitude: float
    longitude: float
    heading: Optional[float] = None
    speed_mph: Optional[float] = None
    odometer_miles: Optional[float] = None
    engine_hours: Optional[float] = None
    fuel_primary_pct: Optional[float] = None
    fuel_secondary_pct: Optional[float] = None
    battery_voltage: Optional[float] = None
    ignition_on: Optional[bool] = None
    movement_state: Optional[str] = None
    description: Optional[str] = None
    driver_name: Optional[str] = None
    located_at: datetime
    last_synced_at: datetime
    raw: Dict[str, Any]


class SyncRequest(BaseModel):
    tenant_id: Optional[str] = None
    provider: Optional[Literal["motive", "samsara"]] = None
    entities: List[Literal["vehicles", "locations"]] = Field(default_factory=lambda: ["vehicles", "locations"])


class TenantSyncResult(BaseModel):
    tenant_id: str
    provider: str
    sync_run_id: Optional[int] = None
    synced: int = 0
    skipped: int = 0
    vehicles_synced: int = 0
    locations_synced: int = 0
    skipped_without_id: int = 0
    skipped_without_lat_lon: int = 0
    error: Optional[str] = None


class SyncSummary(BaseModel):
    ok: bool
    total_tenants: int
    total_synced: int
    total_skipped: int
    results: List[TenantSyncResult]
    message: Optional[str] = None


class SyncRunOut(BaseModel):
    id: int
    tenant_id: str
    provider: str
    status: str
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    total_count: Optional[int]
    vehicles_count: Optional[int]
    locations_count: Optional[int]
    skipped_without_id: Optional[int]
    skipped_without_lat_lon: Optional[int]
    error_message: Optional[str]
    pagination_param_used: Optional[str]
    model_config = ConfigDict(from_attributes=True)


class FleetToolRequest(BaseModel):
    tool: str
    args: Dict[str, Any] = Field(default_factory=dict)
    access_token: Optional[str] = None


class _SearchArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    provider: str = "all"
    query: str = ""
    limit: int = DEFAULT_LIMIT

    @field_validator("provider", mode="before")
    @classmethod
    def _resolve_provider(cls, value: Any) -> str:
        # anything other than a known provider means "all"
        if isinstance(value, str) and value.strip().lower() in PROVIDER_FILTERS:
            return value.strip().lower()
        return "all"

    @field_validator("query", mode="before")
    @classmethod
    def _strip_query(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp_limit(cls, value: Any) -> int:
        parsed = safe_int(value)
        if parsed is None:
            return DEFAULT_LIMIT
        return min(max(parsed, 1), MAX_LIMIT)


class SearchVehiclesArgs(_SearchArgs):
    pass


class SearchLocationsArgs(_SearchArgs):
    fleet_vehicle_id: Optional[str] = None
    provider_vehicle_id: Optional[str] = None

    @field_validator("fleet_vehicle_id", "provider_vehicle_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class SearchLatestArgs(_SearchArgs):
    pass
