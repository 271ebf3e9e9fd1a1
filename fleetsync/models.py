# fleetsync/models.py
"""SQLAlchemy ORM models for persisted entities.

``FleetConnection`` is written by the onboarding flow and only read here.
``FleetVehicle`` and ``FleetVehicleLocation`` hold one "current" row per
(tenant_id, provider, native_vehicle_id); ``SyncRun`` is the append-only audit
of sync attempts.
"""
from sqlalchemy import (
    JSON, Boolean, Column, Float, Index, Integer, Text, TIMESTAMP, UniqueConstraint, func,
)
from sqlalchemy.dialects.postgresql import JSONB
from .db import Base

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JsonType = JSON().with_variant(JSONB(), "postgresql")

SYNC_STATUS_RUNNING = "running"
SYNC_STATUS_SUCCESS = "success"
SYNC_STATUS_ERROR = "error"

CANONICAL_KEY = ("tenant_id", "provider", "native_vehicle_id")


class FleetConnection(Base):
    __tablename__ = "fleet_connections"
    id = Column(Integer, primary_key=True)
    tenant_id = Column(Text, nullable=False, index=True)
    provider = Column(Text, nullable=False)
    access_token = Column(Text, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    use_sandbox = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("tenant_id", "provider", name="uq_fleet_connections_tenant_provider"),)


class FleetVehicle(Base):
    __tablename__ = "fleet_vehicles"
    id = Column(Integer, primary_key=True)
    tenant_id = Column(Text, nullable=False)
    provider = Column(Text, nullable=False)
    native_vehicle_id = Column(Text, nullable=False)
    name = Column(Text)
    number = Column(Text)
    license_plate = Column(Text)
    license_plate_state = Column(Text)
    vin = Column(Text)
    make = Column(Text)
    model = Column(Text)
    year = Column(Text)
    status = Column(Text)
    availability_status = Column(Text)
    external_id = Column(Text)
    provider_updated_at = Column(TIMESTAMP(timezone=True))
    raw = Column(JsonType)
    last_synced_at = Column(TIMESTAMP(timezone=True))
    missed_cycles = Column(Integer, nullable=False, default=0, server_default="0")
    stale = Column(Boolean, nullable=False, default=False, server_default="0")

    __table_args__ = (UniqueConstraint(*CANONICAL_KEY, name="uq_fleet_vehicles_key"),)


class FleetVehicleLocation(Base):
    __tablename__ = "fleet_vehicle_locations_current"
    id = Column(Integer, primary_key=True)
    tenant_id = Column(Text, nullable=False)
    provider = Column(Text, nullable=False)
    native_vehicle_id = Column(Text, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    heading = Column(Float)
    speed_mph = Column(Float)
    odometer_miles = Column(Float)
    engine_hours = Column(Float)
    fuel_primary_pct = Column(Float)
    fuel_secondary_pct = Column(Float)
    battery_voltage = Column(Float)
    ignition_on = Column(Boolean)
    movement_state = Column(Text)
    description = Column(Text)
    driver_name = Column(Text)
    located_at = Column(TIMESTAMP(timezone=True))
    last_synced_at = Column(TIMESTAMP(timezone=True))
    raw = Column(JsonType)

    __table_args__ = (UniqueConstraint(*CANONICAL_KEY, name="uq_fleet_locations_key"),)


class SyncRun(Base):
    __tablename__ = "fleet_sync_runs"
    id = Column(Integer, primary_key=True)
    tenant_id = Column(Text, nullable=False)
    provider = Column(Text, nullable=False)
    started_at = Column(TIMESTAMP(timezone=True), nullable=False)
    finished_at = Column(TIMESTAMP(timezone=True))
    status = Column(Text, nullable=False, default=SYNC_STATUS_RUNNING)
    total_count = Column(Integer)
    vehicles_count = Column(Integer)
    locations_count = Column(Integer)
    skipped_without_id = Column(Integer)
    skipped_without_lat_lon = Column(Integer)
    error_message = Column(Text)
    pagination_param_used = Column(Text)

Index("idx_fleet_locations_located_at", FleetVehicleLocation.tenant_id, FleetVehicleLocation.located_at)
Index("idx_fleet_sync_runs_status", SyncRun.status, SyncRun.started_at)
