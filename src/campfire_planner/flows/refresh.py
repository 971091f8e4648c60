"""
Prefect flow for rebuilding the forest snapshot.

Reads the extraction pipeline's JSON outputs, geocodes and reconciles them,
and persists the snapshot under the data directory.

Run locally:
    python -m campfire_planner.flows.refresh

Run with Prefect dashboard:
    prefect server start &
    python -m campfire_planner.flows.refresh
"""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Any

from prefect import flow, task

from campfire_planner.config import Settings, get_settings
from campfire_planner.refresh import build_service
from campfire_planner.schemas import RefreshProgress, Snapshot


def print_progress(progress: RefreshProgress) -> None:
    total = f"/{progress.total}" if progress.total is not None else ""
    print(f"[{progress.phase}] {progress.completed}{total} {progress.message}")


@task(name="refresh-snapshot")
async def refresh_snapshot(
    settings: Settings, force: bool = True, drain_enrichment: bool = False
) -> Snapshot:
    """Run one refresh, optionally waiting for background cache upgrades."""
    service = build_service(settings)
    try:
        async with service.resolver as resolver:
            snapshot = await service.get_data(force_refresh=force, on_progress=print_progress)
            if drain_enrichment and resolver.pending_upgrades:
                print(f"Waiting for {resolver.pending_upgrades} geocode upgrade(s)...")
                await resolver.join()
    finally:
        service.resolver.cache.close()
    return snapshot


@task(name="summarize-snapshot")
def summarize(snapshot: Snapshot) -> dict[str, Any]:
    """Counts worth printing at the end of a run."""
    bans = Counter(str(forest.ban_status) for forest in snapshot.forests)
    return {
        "fetched_at": snapshot.fetched_at.isoformat(),
        "stale": snapshot.stale,
        "forests": len(snapshot.forests),
        "mapped": sum(1 for forest in snapshot.forests if forest.has_coordinates),
        "bans": dict(sorted(bans.items())),
        "warnings": len(snapshot.warnings),
    }


@flow(name="refresh-forests", log_prints=True)
async def refresh_forests(force: bool = True, drain_enrichment: bool = False) -> dict[str, Any]:
    """
    Rebuild the forest snapshot.

    Args:
        force: Rebuild even if the persisted snapshot is still fresh.
        drain_enrichment: Wait for premium geocode upgrades to finish so
            the next run starts with a warmer cache.
    """
    settings = get_settings()
    snapshot = await refresh_snapshot(settings, force=force, drain_enrichment=drain_enrichment)
    for warning in snapshot.warnings:
        print(f"Warning: {warning}")
    return summarize(snapshot)


if __name__ == "__main__":
    result = asyncio.run(refresh_forests())
    print(f"Flow complete: {result}")
