# fleetsync/exceptions.py
"""Exception hierarchy for fleetsync.

Request-scoped errors (configuration, identity, connection lookup) abort a
request before any tenant is attempted. Provider and persistence errors are
scoped to a single tenant sync attempt and recorded on its SyncRun.
"""
from __future__ import annotations


class FleetSyncError(Exception):
    """Base exception for all fleetsync errors."""


class ConfigurationError(FleetSyncError):
    """Required server-side configuration is missing or invalid."""


class IdentityResolutionError(FleetSyncError):
    """The caller's tenant could not be resolved from its identity token."""

    def __init__(self, message: str, *, status_code: int = 401) -> None:
        self.status_code = status_code
        super().__init__(message)


class UnknownToolError(FleetSyncError):
    """A fleet tool name that is not registered."""


class ConnectionLookupError(FleetSyncError):
    """Tenant connection records could not be read."""


class ProviderError(FleetSyncError):
    """Base class for failures talking to a telemetry provider."""

    def __init__(self, message: str, *, provider: str = "", endpoint: str = "") -> None:
        self.provider = provider
        self.endpoint = endpoint
        super().__init__(message)


class NetworkError(ProviderError):
    """Provider host could not be reached or the request timed out."""


class ProviderAPIError(ProviderError):
    """Provider answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body_snippet: str = "",
        provider: str = "",
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.body_snippet = body_snippet
        super().__init__(message, provider=provider, endpoint=endpoint)


class MalformedResponseError(ProviderError):
    """Provider body could not be parsed as the expected format."""


class PersistenceError(FleetSyncError):
    """Bulk upsert into the canonical tables failed."""


class InvalidSyncRunTransition(FleetSyncError):
    """A SyncRun was finalized more than once or moved out of a terminal state."""


class NormalizationSkip(Exception):
    """A raw record lacks a required field and is skipped, not failed.

    ``reason`` is either ``missing_id`` or ``missing_lat_lon``.
    """

    MISSING_ID = "missing_id"
    MISSING_LAT_LON = "missing_lat_lon"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)
