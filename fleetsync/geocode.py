# fleetsync/geocode.py
"""Reverse geocoding for fleet query results (Google Geocoding API).

Enrichment is best effort: a missing key, an HTTP failure or an empty answer
leaves the result with bare coordinates.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Optional

import requests

from .config import Settings
from .utils import logger

MAX_GEOCODE_PER_CALL = 10


class ReverseGeocoder:
    def __init__(
        self,
        api_key: Optional[str],
        api_url: str,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, session: requests.Session | None = None) -> ReverseGeocoder:
        return cls(
            settings.google_maps_api_key,
            settings.geocode_api_url,
            session=session,
            timeout=settings.provider_timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def reverse(self, lat: float, lon: float) -> Optional[Dict[str, Optional[str]]]:
        """``{city, state, location_text}`` for a coordinate, or None."""
        if not self.enabled:
            return None
        try:
            resp = self.session.get(
                self.api_url,
                params={"latlng": f"{lat},{lon}", "key": self.api_key},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Reverse geocode request failed for %s,%s: %s", lat, lon, e)
            return None
        if not 200 <= resp.status_code < 300:
            logger.warning("Reverse geocode HTTP %s: %s", resp.status_code, (resp.text or "")[:200])
            return None
        try:
            data = json.loads(resp.text or "")
        except ValueError as e:
            logger.warning("Reverse geocode returned invalid JSON: %s", e)
            return None
        return parse_geocode_response(data)


def parse_geocode_response(data: Any) -> Optional[Dict[str, Optional[str]]]:
    if not isinstance(data, dict):
        return None
    results = data.get("results")
    if not isinstance(results, list) or not results or not isinstance(results[0], dict):
        return None

    city = state = None
    for comp in results[0].get("address_components") or []:
        types = comp.get("types") or []
        if "locality" in types:
            city = comp.get("long_name")
        elif "administrative_area_level_1" in types:
            state = comp.get("short_name")

    if city and state:
        text = f"near {city}, {state}"
    elif city:
        text = f"near {city}"
    elif state:
        text = f"in {state}"
    else:
        text = None
    return {"city": city, "state": state, "location_text": text}


def enrich_with_geocoding(
    results: Iterable[Dict[str, Any]],
    geocoder: ReverseGeocoder,
    max_lookups: int = MAX_GEOCODE_PER_CALL,
) -> int:
    """Add ``city``/``state``/``location_text`` in place; returns lookups made."""
    lookups = 0
    for item in results:
        item.setdefault("city", None)
        item.setdefault("state", None)
        item.setdefault("location_text", None)
        if not geocoder.enabled or lookups >= max_lookups:
            continue
        if item.get("latitude") is None or item.get("longitude") is None:
            continue
        lookups += 1
        geo = geocoder.reverse(item["latitude"], item["longitude"])
        if geo:
            item.update(geo)
    return lookups
