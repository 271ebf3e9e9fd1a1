# tests/test_providers.py
from datetime import datetime, timezone

import pytest
import requests

from fleetsync.exceptions import MalformedResponseError, NetworkError, NormalizationSkip, ProviderAPIError, ProviderError
from fleetsync.providers.motive import MotiveAdapter
from fleetsync.providers.registry import build_adapter, get_adapter_class
from fleetsync.providers.samsara import SamsaraAdapter
from fleetsync.services import normalize_records
from fakes import FakeResponse, FakeSession

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def motive(session, **kw):
    return MotiveAdapter("https://motive.test", session=session, **kw)


def samsara(session, **kw):
    return SamsaraAdapter("https://samsara.test", session=session, **kw)


# -- pagination -------------------------------------------------------------

def test_motive_paginates_until_total_reached():
    session = FakeSession({"/v1/vehicles": [
        FakeResponse(payload={"vehicles": [{"vehicle": {"id": 1}}, {"vehicle": {"id": 2}}],
                              "pagination": {"per_page": 2, "page_no": 1, "total": 3}}),
        FakeResponse(payload={"vehicles": [{"vehicle": {"id": 3}}],
                              "pagination": {"per_page": 2, "page_no": 2, "total": 3}}),
    ]})
    adapter = motive(session)
    records = adapter.fetch_vehicles("tok")

    assert [r["vehicle"]["id"] for r in records] == [1, 2, 3]
    pages = session.params_for("/v1/vehicles")
    assert [p["page_no"] for p in pages] == [1, 2]
    assert pages[0]["per_page"] == 100
    assert session.calls[0]["headers"]["Authorization"] == "Bearer tok"
    assert "page_no=2" in adapter.pagination_summary()


def test_motive_single_page_without_pagination_block():
    session = FakeSession({"/v2/vehicle_locations": [FakeResponse(payload={"vehicles": [{"id": 1}]})]})
    adapter = motive(session)
    assert len(adapter.fetch_locations("tok")) == 1
    assert len(session.calls) == 1
    assert adapter.pagination_summary() is None


def test_samsara_follows_cursor():
    session = FakeSession({"/fleet/vehicles/stats": [
        FakeResponse(payload={"data": [{"id": "a"}], "pagination": {"endCursor": "c1", "hasNextPage": True}}),
        FakeResponse(payload={"data": [{"id": "b"}], "pagination": {"endCursor": "", "hasNextPage": False}}),
    ]})
    adapter = samsara(session)
    records = adapter.fetch_locations("tok")

    assert [r["id"] for r in records] == ["a", "b"]
    pages = session.params_for("/fleet/vehicles/stats")
    assert pages[0] == {"types": "gps", "limit": 512}
    assert pages[1]["after"] == "c1"
    assert pages[1]["types"] == "gps"


def test_samsara_stops_when_cursor_missing():
    session = FakeSession({"/fleet/vehicles": [
        FakeResponse(payload={"data": [{"id": "a"}], "pagination": {"hasNextPage": True}}),
    ]})
    assert len(samsara(session).fetch_vehicles("tok")) == 1
    assert len(session.calls) == 1


def test_pagination_that_never_ends_is_malformed():
    session = FakeSession({"/fleet/vehicles": [
        FakeResponse(payload={"data": [{"id": "a"}], "pagination": {"endCursor": "same", "hasNextPage": True}}),
    ]})
    adapter = samsara(session)
    adapter.max_pages = 5
    with pytest.raises(MalformedResponseError, match="did not terminate"):
        adapter.fetch_vehicles("tok")
    assert len(session.calls) == 5


# -- envelopes and failures -------------------------------------------------

MOTIVE_VEHICLE = {"id": 7, "number": "T-7", "vin": "1FT7", "license_plate_number": "ABC7"}
SAMSARA_VEHICLE = {"id": "281", "name": "Van 3", "licensePlate": "XYZ9", "vin": "5N1"}


def canonical(records, normalizer):
    rows, skips = normalize_records(records, normalizer, "t1", NOW)
    assert not skips
    return [{k: v for k, v in row.items() if k != "raw"} for row in rows]


def test_motive_envelope_variants_yield_identical_records():
    wrapped = [{"vehicle": MOTIVE_VEHICLE}]
    payloads = [
        {"vehicles": wrapped},
        {"vehicles": {"data": wrapped}},
        {"data": wrapped},
        wrapped,
    ]
    results = []
    for payload in payloads:
        adapter = motive(FakeSession({"/v1/vehicles": [FakeResponse(payload=payload)]}))
        results.append(canonical(adapter.fetch_vehicles("tok"), adapter.normalize_vehicle))

    assert results[0][0]["native_vehicle_id"] == "7"
    assert all(r == results[0] for r in results)


def test_samsara_envelope_variants_yield_identical_records():
    payloads = [
        {"data": [SAMSARA_VEHICLE]},
        {"vehicles": [SAMSARA_VEHICLE]},
        {"vehicles": {"data": [SAMSARA_VEHICLE]}},
        [SAMSARA_VEHICLE],
    ]
    results = []
    for payload in payloads:
        adapter = samsara(FakeSession({"/fleet/vehicles": [FakeResponse(payload=payload)]}))
        results.append(canonical(adapter.fetch_vehicles("tok"), adapter.normalize_vehicle))

    assert results[0][0]["native_vehicle_id"] == "281"
    assert all(r == results[0] for r in results)


def test_unrecognized_envelope_yields_no_records(caplog):
    session = FakeSession({"/v1/vehicles": [FakeResponse(payload={"something_else": {"x": 1}})]})
    with caplog.at_level("WARNING"):
        assert motive(session).fetch_vehicles("tok") == []
    assert "no record array" in caplog.text


def test_empty_body_yields_no_records():
    session = FakeSession({"/fleet/vehicles": [FakeResponse(text="")]})
    assert samsara(session).fetch_vehicles("tok") == []


def test_http_error_carries_status_and_snippet():
    body = "x" * 2000
    session = FakeSession({"/v1/vehicles": [FakeResponse(500, text=body, reason="Internal Server Error")]})
    with pytest.raises(ProviderAPIError) as exc:
        motive(session).fetch_vehicles("tok")
    err = exc.value
    assert err.status_code == 500
    assert "500" in str(err)
    assert len(err.body_snippet) == 500
    assert err.provider == "motive"
    assert err.endpoint == "/v1/vehicles"


def test_http_error_is_not_retried():
    session = FakeSession({"/v1/vehicles": [FakeResponse(401, text="unauthorized", reason="Unauthorized")]})
    with pytest.raises(ProviderAPIError):
        motive(session, max_retries=3).fetch_vehicles("tok")
    assert len(session.calls) == 1


def test_malformed_json():
    session = FakeSession({"/fleet/vehicles": [FakeResponse(text="<html>oops</html>")]})
    with pytest.raises(MalformedResponseError, match="Failed to parse Samsara JSON"):
        samsara(session).fetch_vehicles("tok")


def test_network_error_is_retried_then_raised():
    session = FakeSession({"/fleet/vehicles": [requests.ConnectionError("boom")]})
    with pytest.raises(NetworkError):
        samsara(session, max_retries=3).fetch_vehicles("tok")
    assert len(session.calls) == 3


def test_network_error_recovers_on_retry():
    session = FakeSession({"/fleet/vehicles": [
        requests.Timeout("slow"),
        FakeResponse(payload={"data": [{"id": "a"}]}),
    ]})
    assert len(samsara(session, max_retries=2).fetch_vehicles("tok")) == 1


# -- normalization ----------------------------------------------------------

def test_motive_normalize_vehicle():
    raw = {"vehicle": {
        "id": 1001, "number": "T-12", "vin": "1FTXX", "make": "Ford", "model": "F-150", "year": 2021,
        "license_plate_number": "ABC123", "license_plate_state": "TX", "status": "active", "company_id": 55,
        "availability_details": {"availability_status": "in_service", "updated_at": "2024-04-30T10:00:00Z"},
    }}
    vehicle = MotiveAdapter("https://x").normalize_vehicle(raw, "t1", NOW)
    assert vehicle.native_vehicle_id == "1001"
    assert vehicle.provider == "motive"
    assert vehicle.number == "T-12"
    assert vehicle.year == "2021"
    assert vehicle.license_plate == "ABC123"
    assert vehicle.availability_status == "in_service"
    assert vehicle.external_id == "55"
    assert vehicle.provider_updated_at == datetime(2024, 4, 30, 10, tzinfo=timezone.utc)
    assert vehicle.last_synced_at == NOW
    assert vehicle.raw == raw


def test_motive_vehicle_without_numeric_id_is_skipped():
    with pytest.raises(NormalizationSkip) as exc:
        MotiveAdapter("https://x").normalize_vehicle({"vehicle": {"id": "n/a", "number": "T"}}, "t1", NOW)
    assert exc.value.reason == NormalizationSkip.MISSING_ID


def test_motive_location_vehicle_shaped():
    raw = {"vehicle": {
        "id": 1001, "number": "T-12",
        "current_location": {"lat": 32.7, "lon": -96.8, "bearing": 90, "speed": 55.5,
                             "located_at": "2024-05-01T11:59:00Z", "description": "Dallas, TX",
                             "fuel_primary_remaining_percentage": 80},
        "current_driver": {"first_name": "Ana", "last_name": "Diaz"},
    }}
    loc = MotiveAdapter("https://x").normalize_location(raw, "t1", NOW)
    assert loc.native_vehicle_id == "1001"
    assert (loc.latitude, loc.longitude) == (32.7, -96.8)
    assert loc.heading == 90.0
    assert loc.speed_mph == 55.5
    assert loc.fuel_primary_pct == 80.0
    assert loc.driver_name == "Ana Diaz"
    assert loc.located_at == datetime(2024, 5, 1, 11, 59, tzinfo=timezone.utc)


def test_motive_location_flat_record_and_missing_coords():
    adapter = MotiveAdapter("https://x")
    loc = adapter.normalize_location({"vehicle_id": "77", "latitude": "40.0", "longitude": "-75.0"}, "t1", NOW)
    assert loc.native_vehicle_id == "77"
    assert loc.located_at == NOW

    with pytest.raises(NormalizationSkip) as exc:
        adapter.normalize_location({"vehicle_id": 77, "lat": 40.0}, "t1", NOW)
    assert exc.value.reason == NormalizationSkip.MISSING_LAT_LON


def test_motive_vehicle_with_null_current_location_lacks_coordinates():
    adapter = MotiveAdapter("https://x")
    with pytest.raises(NormalizationSkip) as exc:
        adapter.normalize_location({"vehicle": {"id": 42, "current_location": None}}, "t1", NOW)
    assert exc.value.reason == NormalizationSkip.MISSING_LAT_LON

    rows, skips = normalize_records(
        [{"vehicle": {"id": 42, "number": "T-42", "current_location": None}}], adapter.normalize_location, "t1", NOW,
    )
    assert rows == []
    assert skips[NormalizationSkip.MISSING_LAT_LON] == 1
    assert skips[NormalizationSkip.MISSING_ID] == 0


def test_motive_large_ids_keep_full_precision():
    adapter = MotiveAdapter("https://x")
    a = adapter.normalize_vehicle({"vehicle": {"id": "9007199254740993"}}, "t1", NOW)
    b = adapter.normalize_vehicle({"vehicle": {"id": "9007199254740992"}}, "t1", NOW)
    assert a.native_vehicle_id == "9007199254740993"
    assert a.native_vehicle_id != b.native_vehicle_id


def test_motive_location_zero_speed_is_kept():
    loc = MotiveAdapter("https://x").normalize_location(
        {"vehicle_id": 1, "lat": 0.0, "lon": 0.0, "speed": 0}, "t1", NOW,
    )
    assert loc.speed_mph == 0.0
    assert (loc.latitude, loc.longitude) == (0.0, 0.0)


def test_samsara_normalize_vehicle():
    raw = {"id": "281474977075805", "name": "Van 3", "licensePlate": "XYZ9", "vin": "5N1",
           "modelYear": "2020", "isActive": False, "externalIds": {"maintenanceId": "M-3"}}
    vehicle = SamsaraAdapter("https://x").normalize_vehicle(raw, "t2", NOW)
    assert vehicle.native_vehicle_id == "281474977075805"
    assert vehicle.name == "Van 3"
    assert vehicle.year == "2020"
    assert vehicle.availability_status == "inactive"
    assert vehicle.external_id == "M-3"


def test_samsara_normalize_location_from_gps_block():
    raw = {"id": "v-1", "name": "Van 3", "gps": {
        "latitude": 37.77, "longitude": -122.41, "headingDegrees": 180, "speedMilesPerHour": 12,
        "time": "2024-05-01T11:58:00Z", "reverseGeo": {"formattedLocation": "San Francisco, CA"},
    }}
    loc = SamsaraAdapter("https://x").normalize_location(raw, "t2", NOW)
    assert loc.native_vehicle_id == "v-1"
    assert (loc.latitude, loc.longitude) == (37.77, -122.41)
    assert loc.heading == 180.0
    assert loc.speed_mph == 12.0
    assert loc.description == "San Francisco, CA"
    assert loc.located_at == datetime(2024, 5, 1, 11, 58, tzinfo=timezone.utc)


def test_samsara_location_without_gps_is_skipped():
    with pytest.raises(NormalizationSkip) as exc:
        SamsaraAdapter("https://x").normalize_location({"id": "v-1", "name": "Van"}, "t2", NOW)
    assert exc.value.reason == NormalizationSkip.MISSING_LAT_LON


# -- registry ---------------------------------------------------------------

def test_registry_builds_sandbox_adapter(settings):
    from dataclasses import replace
    sandboxed = replace(settings, motive_sandbox_api_base_url="https://sandbox.motive.test/")
    assert build_adapter("motive", sandboxed, sandbox=True).base_url == "https://sandbox.motive.test"
    assert build_adapter("motive", sandboxed).base_url == "https://motive.test"
    # no sandbox host configured -> production
    assert build_adapter("samsara", settings, sandbox=True).base_url == "https://samsara.test"


def test_registry_rejects_unknown_provider():
    with pytest.raises(ProviderError, match="Unsupported provider"):
        get_adapter_class("geotab")
