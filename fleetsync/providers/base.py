# fleetsync/providers/base.py
"""Provider adapter interface and the shared HTTP/pagination machinery.

Each telemetry provider is one ``ProviderAdapter`` subclass exposing
``fetch_vehicles``, ``fetch_locations``, ``normalize_vehicle`` and
``normalize_location``. The orchestrator and the query layer only ever talk to
this interface.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, ClassVar, Sequence

import requests

from ..exceptions import MalformedResponseError, NetworkError, ProviderAPIError
from ..normalize import describe_shape, extract_records
from ..schemas import CanonicalLocation, CanonicalVehicle
from ..utils import logger, retry

BODY_SNIPPET_CHARS = 500


class ProviderAdapter:
    name: ClassVar[str] = ""
    label: ClassVar[str] = ""
    # candidate envelope paths, tried in order; None is a bare top-level array
    vehicle_envelope: ClassVar[Sequence[str | None]] = ()
    location_envelope: ClassVar[Sequence[str | None]] = ()
    page_size: ClassVar[int] = 100
    max_pages: ClassVar[int] = 1000

    def __init__(
        self,
        base_url: str,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        # endpoint -> last next-page parameter sent, for the sync audit row
        self.pagination_used: dict[str, str] = {}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} base_url={self.base_url}>"

    # -- contract -----------------------------------------------------------

    def fetch_vehicles(self, token: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def fetch_locations(self, token: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def normalize_vehicle(self, raw: Any, tenant_id: str, now: datetime) -> CanonicalVehicle:
        raise NotImplementedError

    def normalize_location(self, raw: Any, tenant_id: str, now: datetime) -> CanonicalLocation:
        raise NotImplementedError

    def next_page_params(self, payload: Any, params: dict[str, Any], page_records: int) -> dict[str, Any] | None:
        """Return the params for the following page, or None when drained."""
        raise NotImplementedError

    # -- HTTP ---------------------------------------------------------------

    def _request(self, token: str, path: str, params: dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("GET %s params=%s", url, params)
        try:
            resp = self.session.get(
                url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(
                f"Network error calling {self.label}: {e}",
                provider=self.name,
                endpoint=path,
            ) from e

        text = resp.text or ""
        if not 200 <= resp.status_code < 300:
            snippet = text[:BODY_SNIPPET_CHARS]
            raise ProviderAPIError(
                f"{self.label} API error: HTTP {resp.status_code} {resp.reason or ''} - {snippet}".rstrip(" -"),
                status_code=resp.status_code,
                body_snippet=snippet,
                provider=self.name,
                endpoint=path,
            )
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            raise MalformedResponseError(
                f"Failed to parse {self.label} JSON from {path}. Body snippet: {text[:BODY_SNIPPET_CHARS]}",
                provider=self.name,
                endpoint=path,
            ) from e

    def get_json(self, token: str, path: str, params: dict[str, Any]) -> Any:
        fetch = retry(NetworkError, tries=self.max_retries, delay=self.retry_delay, logger=logger)(self._request)
        return fetch(token, path, params)

    def fetch_all(
        self,
        token: str,
        path: str,
        envelope: Sequence[str | None],
        params: dict[str, Any] | None = None,
    ) -> list[Any]:
        """Drain every page of ``path``, one page at a time."""
        params = dict(params or {})
        records: list[Any] = []
        pages = 0
        while True:
            if pages >= self.max_pages:
                raise MalformedResponseError(
                    f"{self.label} pagination for {path} did not terminate after {self.max_pages} pages",
                    provider=self.name,
                    endpoint=path,
                )
            payload = self.get_json(token, path, params)
            pages += 1
            page_records, matched = extract_records(payload, envelope)
            if matched is None:
                logger.warning(
                    "%s %s: no record array found in response, shape=%s",
                    self.label, path, describe_shape(payload),
                )
            else:
                logger.debug("%s %s page %d: %d records via %s", self.label, path, pages, len(page_records), matched)
            records.extend(page_records)

            next_params = self.next_page_params(payload, params, len(page_records))
            if next_params is None:
                break
            params = next_params
            self.pagination_used[path] = self._describe_cursor(params)

        logger.info("%s %s: fetched %d records in %d page(s)", self.label, path, len(records), pages)
        return records

    def _describe_cursor(self, params: dict[str, Any]) -> str:
        return ", ".join(f"{k}={v}" for k, v in sorted(params.items()))

    def pagination_summary(self) -> str | None:
        if not self.pagination_used:
            return None
        return "; ".join(f"{path}: {cursor}" for path, cursor in self.pagination_used.items())
