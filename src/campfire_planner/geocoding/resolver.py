"""
Geocode resolver.

Turns a free-text place query into coordinates, trying in order:

1. the persistent cache (alias key first, then query key),
2. the cheap provider (Nominatim),
3. the metered provider (Google Places), if the per-run budget allows.

Every step is recorded as a ``GeocodeAttempt``; nothing raises for a place
that cannot be found.

Results served from the cache or from the cheap provider are queued for a
background upgrade: a single worker task replays the query against the
metered provider and overwrites the cache entry with the better answer.
The current caller keeps the answer it already has. The worker waits while
any foreground lookup (or an explicit ``hold_upgrades``) is in progress, so
foreground lookups reach the metered budget first.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace
from functools import partial

from campfire_planner.errors import (
    EmptyResultError,
    ProviderConfigError,
    ProviderError,
    TransientProviderError,
)
from campfire_planner.geocoding.cache import GeocodeCache, alias_cache_key, query_cache_key
from campfire_planner.geocoding.models import (
    CACHE_PROVIDER,
    Coordinates,
    GeocodeAttempt,
    GeocodeOutcome,
    GeocodeResult,
)
from campfire_planner.geocoding.providers import GeocodeProvider
from campfire_planner.geocoding.queries import (
    area_alias,
    area_queries,
    forest_alias,
    forest_queries,
    is_blacklisted,
    is_plausible_forest,
)

logger = logging.getLogger(__name__)

Validator = Callable[[str], bool]


@dataclass(frozen=True)
class _Upgrade:
    query: str
    query_key: str
    alias_key: str | None
    validate: Validator | None = None


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


class GeocodeResolver:
    """Cache-first, budgeted, multi-provider geocoder.

    Args:
        cache: Persistent cache shared across runs.
        primary: Cheap provider, tried first.
        premium: Metered provider, tried only when the primary has no answer.
        region: Suffix appended to area and forest queries.
        max_premium_lookups_per_run: Metered lookups allowed between
            ``reset_budget()`` calls, background upgrades included.
        retry_attempts: Tries per provider call for transient failures.
        retry_base_delay: Seconds before the first retry; doubles each time.
    """

    def __init__(
        self,
        cache: GeocodeCache,
        primary: GeocodeProvider,
        premium: GeocodeProvider,
        *,
        region: str = "New South Wales, Australia",
        max_premium_lookups_per_run: int = 25,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.75,
    ) -> None:
        self.cache = cache
        self.primary = primary
        self.premium = premium
        self.region = region
        self.max_premium_lookups_per_run = max_premium_lookups_per_run
        self.retry_attempts = max(1, retry_attempts)
        self.retry_base_delay = retry_base_delay

        self._premium_used = 0
        self._queue: asyncio.Queue[_Upgrade] = asyncio.Queue()
        self._pending: set[str] = set()
        self._worker: asyncio.Task[None] | None = None
        self._holds = 0
        self._idle = asyncio.Event()
        self._idle.set()

    # =========================================================================
    # Budget
    # =========================================================================

    def reset_budget(self) -> None:
        """Start a new run's metered-lookup budget."""
        self._premium_used = 0

    @property
    def budget_remaining(self) -> int:
        return max(0, self.max_premium_lookups_per_run - self._premium_used)

    # =========================================================================
    # Resolution
    # =========================================================================

    async def resolve(
        self,
        query: str,
        alias_key: str | None = None,
        *,
        validate: Validator | None = None,
    ) -> GeocodeResult:
        """Resolve one query.

        Args:
            query: Free-text query.
            alias_key: Stable identity of the place, shared by every query
                phrasing for it.
            validate: Extra check on a result's display name; rejected
                results count as empty.

        Returns:
            The coordinates found (if any) and every attempt made.
        """
        with self.hold_upgrades():
            return await self._resolve(query, alias_key, validate)

    async def _resolve(
        self, query: str, alias_key: str | None, validate: Validator | None
    ) -> GeocodeResult:
        query_key = query_cache_key(query)
        alias = alias_cache_key(alias_key) if alias_key else None
        attempts: list[GeocodeAttempt] = []
        warnings: list[str] = []

        cached, cache_key = self._read_cache(query_key, alias)
        if cached is not None:
            if self._acceptable(cached, validate):
                attempts.append(
                    GeocodeAttempt(
                        provider=CACHE_PROVIDER,
                        query=query,
                        outcome=GeocodeOutcome.CACHE_HIT,
                        alias_key=alias,
                        cache_key=cache_key,
                        result_count=1,
                    )
                )
                if alias and cache_key == query_key:
                    self.cache.put(alias, cached)
                if cached.provider != self.premium.name:
                    self._enqueue_upgrade(_Upgrade(query, query_key, alias, validate))
                return GeocodeResult.from_coordinates(cached, attempts, warnings)
            logger.debug("Ignoring cached %r for %r", cached.display_name, query)

        found = await self._lookup(
            self.primary, query, query_key, alias, validate, attempts, warnings
        )
        if found is not None:
            self._store(query_key, alias, found)
            self._enqueue_upgrade(_Upgrade(query, query_key, alias, validate))
            return GeocodeResult.from_coordinates(found, attempts, _dedupe(warnings))

        if not self.premium.configured:
            attempts.append(
                GeocodeAttempt(
                    provider=self.premium.name,
                    query=query,
                    outcome=GeocodeOutcome.API_KEY_MISSING,
                    alias_key=alias,
                    cache_key=query_key,
                )
            )
        elif self.budget_remaining <= 0:
            attempts.append(
                GeocodeAttempt(
                    provider=self.premium.name,
                    query=query,
                    outcome=GeocodeOutcome.LIMIT_REACHED,
                    alias_key=alias,
                    cache_key=query_key,
                )
            )
        else:
            self._premium_used += 1
            found = await self._lookup(
                self.premium, query, query_key, alias, validate, attempts, warnings
            )
            if found is not None:
                self._store(query_key, alias, found)
                return GeocodeResult.from_coordinates(found, attempts, _dedupe(warnings))

        return GeocodeResult(attempts=attempts, warnings=_dedupe(warnings))

    async def resolve_candidates(
        self,
        queries: list[str],
        alias_key: str | None = None,
        *,
        validate: Validator | None = None,
    ) -> GeocodeResult:
        """Try each query in order; stop at the first that resolves.

        Attempts and warnings are accumulated across every query tried.
        """
        attempts: list[GeocodeAttempt] = []
        warnings: list[str] = []
        for query in queries:
            result = await self.resolve(query, alias_key, validate=validate)
            attempts.extend(result.attempts)
            warnings.extend(result.warnings)
            if result.resolved:
                return replace(result, attempts=attempts, warnings=_dedupe(warnings))
        return GeocodeResult(attempts=attempts, warnings=_dedupe(warnings))

    async def resolve_area(self, area_name: str, area_url: str = "") -> GeocodeResult:
        """Locate a fire-ban area (used as a fallback position for its forests)."""
        return await self.resolve_candidates(
            area_queries(area_name, area_url, self.region), area_alias(area_name, area_url)
        )

    async def resolve_forest(
        self, forest_name: str, directory_name: str | None = None
    ) -> GeocodeResult:
        """Locate a forest, rejecting results that name a different place.

        Args:
            forest_name: Name as listed on the fire-ban pages.
            directory_name: The facilities directory's spelling, if different.
        """
        validate = partial(
            _plausible, forest_name=forest_name, directory_name=directory_name
        )
        return await self.resolve_candidates(
            forest_queries(forest_name, self.region, directory_name),
            forest_alias(forest_name),
            validate=validate,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _read_cache(
        self, query_key: str, alias: str | None
    ) -> tuple[Coordinates | None, str | None]:
        if alias:
            hit = self.cache.get(alias)
            if hit is not None:
                return hit, alias
        hit = self.cache.get(query_key)
        if hit is not None:
            return hit, query_key
        return None, None

    def _store(self, query_key: str, alias: str | None, coordinates: Coordinates) -> None:
        self.cache.put(query_key, coordinates)
        if alias:
            self.cache.put(alias, coordinates)

    @staticmethod
    def _acceptable(coordinates: Coordinates, validate: Validator | None) -> bool:
        if is_blacklisted(coordinates.display_name):
            return False
        return validate is None or validate(coordinates.display_name)

    async def _lookup(
        self,
        provider: GeocodeProvider,
        query: str,
        query_key: str,
        alias: str | None,
        validate: Validator | None,
        attempts: list[GeocodeAttempt],
        warnings: list[str],
    ) -> Coordinates | None:
        """Call one provider with retries, appending exactly one attempt."""
        tries = 0
        while True:
            tries += 1
            try:
                found = await provider.lookup(query)
                break
            except TransientProviderError as e:
                if tries < self.retry_attempts:
                    delay = self.retry_base_delay * 2 ** (tries - 1)
                    logger.debug(
                        "%s failed for %r (%s); retrying in %.2fs", provider.name, query, e, delay
                    )
                    await asyncio.sleep(delay)
                    continue
                error: ProviderError = e
            except ProviderError as e:
                error = e
            result_count = error.result_count if isinstance(error, EmptyResultError) else None
            attempts.append(
                GeocodeAttempt(
                    provider=provider.name,
                    query=query,
                    outcome=_failure_outcome(error),
                    alias_key=alias,
                    cache_key=query_key,
                    http_status=error.http_status,
                    result_count=result_count,
                    error_message=str(error),
                    tries=tries,
                )
            )
            return None

        attempt = partial(
            GeocodeAttempt,
            provider=provider.name,
            query=query,
            alias_key=alias,
            cache_key=query_key,
            result_count=1,
            tries=tries,
        )
        if not self._acceptable(found, validate):
            message = f'Rejected geocoding result "{found.display_name}" for "{query}"'
            logger.warning(message)
            warnings.append(message)
            attempts.append(attempt(outcome=GeocodeOutcome.EMPTY_RESULT, error_message=message))
            return None

        attempts.append(attempt(outcome=GeocodeOutcome.LOOKUP_SUCCESS))
        return found

    # =========================================================================
    # Background enrichment
    # =========================================================================

    @property
    def pending_upgrades(self) -> int:
        return len(self._pending)

    @contextlib.contextmanager
    def hold_upgrades(self) -> Iterator[None]:
        """Keep the enrichment worker idle while foreground lookups run.

        Foreground lookups get the metered budget first; queued upgrades
        only spend what is left once every hold is released.
        """
        self._holds += 1
        self._idle.clear()
        try:
            yield
        finally:
            self._holds -= 1
            if not self._holds:
                self._idle.set()

    def _enqueue_upgrade(self, upgrade: _Upgrade) -> None:
        if upgrade.query_key in self._pending:
            return
        self._pending.add(upgrade.query_key)
        self._queue.put_nowait(upgrade)

    async def _upgrade(self, upgrade: _Upgrade) -> None:
        if not self.premium.configured or self.budget_remaining <= 0:
            return
        current, _ = self._read_cache(upgrade.query_key, upgrade.alias_key)
        if current is not None and current.provider == self.premium.name:
            return

        self._premium_used += 1
        found = await self.premium.lookup(upgrade.query)
        if not self._acceptable(found, upgrade.validate):
            return
        self._store(upgrade.query_key, upgrade.alias_key, found)
        logger.debug(
            "Upgraded %r to %s result %r", upgrade.query, found.provider, found.display_name
        )

    async def _run_worker(self) -> None:
        while True:
            upgrade = await self._queue.get()
            try:
                while self._holds:
                    await self._idle.wait()
                await self._upgrade(upgrade)
            except Exception as e:
                logger.debug("Dropped upgrade for %r: %r", upgrade.query, e)
            finally:
                self._pending.discard(upgrade.query_key)
                self._queue.task_done()

    def start(self) -> None:
        """Start the enrichment worker (needs a running event loop)."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run_worker(), name="geocode-enrichment")

    async def join(self) -> None:
        """Wait until every queued upgrade has been processed or dropped."""
        if self._worker is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Cancel the worker. Queued upgrades stay queued."""
        if self._worker is None:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    async def __aenter__(self) -> GeocodeResolver:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()


def _plausible(display_name: str, *, forest_name: str, directory_name: str | None) -> bool:
    return is_plausible_forest(display_name, forest_name, directory_name)


def _failure_outcome(error: ProviderError) -> GeocodeOutcome:
    if isinstance(error, EmptyResultError):
        if error.invalid_coordinates:
            return GeocodeOutcome.INVALID_COORDINATES
        return GeocodeOutcome.EMPTY_RESULT
    if isinstance(error, ProviderConfigError):
        return GeocodeOutcome.API_KEY_MISSING
    return GeocodeOutcome.HTTP_ERROR if error.http_status else GeocodeOutcome.REQUEST_FAILED
