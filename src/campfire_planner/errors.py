"""
Exception hierarchy.

Provider failures are raised by ``geocoding.providers`` and converted into
attempt records by the resolver; they never escape a ``resolve`` call.
``PipelineFailure`` is raised by the refresh coordinator only when a refresh
fails and there is no earlier snapshot to fall back on.
"""

from __future__ import annotations


class CampfirePlannerError(Exception):
    """Base class for all errors raised by this package."""


# =============================================================================
# Geocoding providers
# =============================================================================


class ProviderError(CampfirePlannerError):
    """A provider lookup failed in a way that should not be retried."""

    def __init__(self, message: str, *, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class TransientProviderError(ProviderError):
    """Rate limit, server error, timeout or network failure. Retryable."""


class ProviderConfigError(ProviderError):
    """Provider cannot be used as configured (e.g. missing API key)."""


class EmptyResultError(ProviderError):
    """Provider answered but had no usable coordinates."""

    def __init__(
        self,
        message: str,
        *,
        result_count: int | None = None,
        invalid_coordinates: bool = False,
    ) -> None:
        super().__init__(message)
        self.result_count = result_count
        self.invalid_coordinates = invalid_coordinates


# =============================================================================
# Snapshot cache / refresh
# =============================================================================


class CacheCorruptionError(CampfirePlannerError):
    """A persisted document exists but cannot be decoded."""


class SchemaIncompatibleSnapshot(CampfirePlannerError):
    """Persisted snapshot was written by a different schema version."""

    def __init__(self, found: int, expected: int) -> None:
        super().__init__(f"Snapshot schema version {found} does not match {expected}")
        self.found = found
        self.expected = expected


class PipelineFailure(CampfirePlannerError):
    """A refresh failed and no fallback snapshot was available."""


class ScrapeError(CampfirePlannerError):
    """Required extraction output is missing or malformed."""
