"""
Command-line interface for the application.

This module provides the main entry point for the CLI.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from campfire_planner import __version__
from campfire_planner.config import get_settings
from campfire_planner.errors import CampfirePlannerError
from campfire_planner.flows.refresh import refresh_forests
from campfire_planner.refresh import build_service
from campfire_planner.schemas import ForestDataResponse, UserLocation
from campfire_planner.store import DataStore, SnapshotStore
from campfire_planner.travel import apply_travel_metrics


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="campfire-planner",
        description="Solid fuel fire bans, facilities and closures for NSW state forests",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("info", help="Show application info")

    # 'refresh' command - rebuild the snapshot
    refresh_parser = subparsers.add_parser("refresh", help="Rebuild the forest snapshot")
    refresh_parser.add_argument(
        "--if-stale",
        action="store_true",
        help="Skip the rebuild while the persisted snapshot is fresh",
    )
    refresh_parser.add_argument(
        "--drain",
        action="store_true",
        help="Wait for background geocode upgrades before exiting",
    )

    # 'show' command - summarize the persisted snapshot (no network)
    show_parser = subparsers.add_parser("show", help="Summarize the persisted snapshot")
    show_parser.add_argument(
        "--near",
        type=str,
        default=None,
        metavar="LAT,LON",
        help="Order forests by straight-line distance from this point",
    )
    show_parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Number of forests to list (default: 10)",
    )

    # 'geocode' command - resolve one query through the cache and providers
    geocode_parser = subparsers.add_parser("geocode", help="Resolve one place name")
    geocode_parser.add_argument("query", type=str, help="Free-text place name")

    return parser


def parse_location(value: str) -> UserLocation:
    lat, _, lon = value.partition(",")
    try:
        return UserLocation(latitude=float(lat), longitude=float(lon))
    except ValueError as e:
        msg = f"Expected LAT,LON, got {value!r}"
        raise argparse.ArgumentTypeError(msg) from e


def cmd_info(_args: argparse.Namespace) -> int:
    """Handle the 'info' command."""
    settings = get_settings()
    print(f"Application: {settings.app_name}")
    print(f"Version: {__version__}")
    print(f"Environment: {settings.app_env}")
    print(f"Debug: {settings.debug}")
    print(f"Data directory: {settings.data_dir}")
    print(f"Input directory: {settings.input_dir}")
    print(f"Google Places configured: {bool(settings.google_maps_api_key)}")
    return 0


def cmd_refresh(args: argparse.Namespace) -> int:
    """Handle the 'refresh' command: rebuild the snapshot."""
    try:
        result = asyncio.run(refresh_forests(force=not args.if_stale, drain_enrichment=args.drain))
    except CampfirePlannerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Done: {result}")
    return 0


def print_response(response: ForestDataResponse, limit: int) -> None:
    mapped = sum(1 for forest in response.forests if forest.has_coordinates)
    print(f"Fetched: {response.fetched_at.isoformat()}{' (stale)' if response.stale else ''}")
    print(f"Forests: {len(response.forests)} ({mapped} mapped)")
    for forest in response.forests[:limit]:
        distance = f"  {forest.distance_km:.1f} km" if forest.distance_km is not None else ""
        print(f"  {forest.forest_name}: {forest.ban_status_text or forest.ban_status}{distance}")
    if response.nearest_legal_spot is not None:
        spot = response.nearest_legal_spot
        print(
            f"Nearest legal campfire: {spot.forest_name} "
            f"({spot.area_name}, {spot.distance_km:.1f} km)"
        )
    for warning in response.warnings:
        print(f"Warning: {warning}")


def cmd_show(args: argparse.Namespace) -> int:
    """Handle the 'show' command: summarize the persisted snapshot."""
    settings = get_settings()
    snapshots = SnapshotStore(DataStore(settings.data_dir))
    try:
        location = parse_location(args.near) if args.near else None
        snapshot = snapshots.load()
    except (argparse.ArgumentTypeError, CampfirePlannerError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if snapshot is None:
        print("No snapshot found. Run 'campfire-planner refresh' first.", file=sys.stderr)
        return 1

    print_response(asyncio.run(apply_travel_metrics(snapshot, location)), args.limit)
    return 0


async def _geocode(query: str) -> int:
    resolver = build_service(get_settings()).resolver
    try:
        result = await resolver.resolve(query)
    finally:
        resolver.cache.close()
    for attempt in result.attempts:
        print(f"  {attempt.provider}: {attempt.outcome} (tries={attempt.tries})")
    if not result.resolved:
        print(f"No coordinates for {query!r}", file=sys.stderr)
        return 1
    print(f"{result.display_name}: {result.latitude}, {result.longitude} [{result.provider}]")
    return 0


def cmd_geocode(args: argparse.Namespace) -> int:
    """Handle the 'geocode' command."""
    return asyncio.run(_geocode(args.query))


def main() -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "info": cmd_info,
        "refresh": cmd_refresh,
        "show": cmd_show,
        "geocode": cmd_geocode,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
