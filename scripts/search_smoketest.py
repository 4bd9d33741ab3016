#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Search Smoketest - drive one FetchCoordinator against the live Overpass mirrors
- Sets a center/radius/category on a fresh PlacesStore
- With --submit, geocodes the text like the search box and selects the best hit
- Waits for the coordinator to settle and prints the first few places
- Returns appropriate exit codes for different failure modes
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from localfinder.core.logging import configure_logging
from localfinder.services.fetch_coordinator import CoordinatorConfig, FetchCoordinator, SearchServices
from localfinder.services.nominatim_service import NominatimService
from localfinder.services.overpass_service import OverpassPlacesService
from localfinder.services.places_store import PlacesStore, clamp_radius
from localfinder.services.search_controller import SearchController


async def main(args: argparse.Namespace) -> int:
    """Run the smoketest."""
    print(f"SMOKETEST START ({args.category} @ {args.lat},{args.lng}, r={args.radius}, q={args.query!r})")

    store = PlacesStore()
    async with OverpassPlacesService() as overpass, NominatimService() as geocoder:
        coordinator = FetchCoordinator(
            store,
            overpass,
            SearchServices.create(),
            CoordinatorConfig.from_settings(),
        )
        async with coordinator:
            store.update(
                center=(args.lat, args.lng),
                radius=clamp_radius(args.radius),
                category=args.category,
                query=args.query,
            )
            await coordinator.wait_settled()
            if args.submit:
                with SearchController(store, geocoder) as controller:
                    found = await controller.submit(args.submit)
                    print(f"geocoded: {found.name if found else 'not found'}")
                    await coordinator.wait_settled()
                    if controller.selected.is_set():
                        await coordinator.wait_settled()

    state = store.state
    if state.error:
        print(f"❌ Search failed: {state.error}")
        return 2

    print(f"results: {len(state.places)}")
    for i, place in enumerate(state.places[:5]):
        print(f"{i+1}. {place.id} | {place.name} | {place.address or 'N/A'}")
    if state.selected_place is not None:
        print(f"selected: {state.selected_place.id} | {state.selected_place.name}")

    if state.places:
        print("✅ Smoketest PASSED")
        return 0
    print("❌ Smoketest FAILED: No results returned")
    return 1


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Places search smoketest")
    parser.add_argument("--lat", type=float, default=-26.2041)
    parser.add_argument("--lng", type=float, default=28.0473)
    parser.add_argument("--radius", type=int, default=1200)
    parser.add_argument("--category", default="coffee")
    parser.add_argument("--query", default="")
    parser.add_argument("--submit", default="", help="search box text to geocode and select")
    parser.add_argument("--log-level", default="WARNING")
    return parser.parse_args()


if __name__ == "__main__":
    ns = parse_args()
    configure_logging(service_name="smoketest", level=ns.log_level)
    sys.exit(asyncio.run(main(ns)))
