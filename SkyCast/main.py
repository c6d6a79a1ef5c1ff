"""SkyCast command line weather client with offline caching."""
import argparse
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional

import requests
from dotenv import load_dotenv

from fetch_strategy import DEFAULT_VERSION, InstallError, OfflineCacheAdapter, build_manifest, start_adapter
from forecast_cache import ForecastCacheStore
from forecast_view import render_report
from geolocation import LocationError
from key_value_store import JsonFileStore
from open_meteo_provider import OpenMeteoProvider
from preferences import Preferences
from response_cache import CacheStorage
from weather_provider import WeatherProviderError
from weather_service import WeatherService

DEFAULT_DATA_DIR = os.path.join(os.path.expanduser("~"), ".skycast")


@dataclass
class Config:
    data_dir: str
    cache_version: str
    shell_base_url: Optional[str]
    language: str


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser("skycast", description="Weather lookup with offline caching")
    where = parser.add_mutually_exclusive_group()
    where.add_argument("--query", "-q", help="Place name to search for; the first match is loaded")
    where.add_argument("--here", action="store_true", help="Use the device's network location")
    where.add_argument("--coords", nargs=2, type=float, metavar=("LAT", "LON"))
    parser.add_argument("--name", help="Display name for --coords")
    parser.add_argument("--suggest", action="store_true", help="List matches for --query instead of loading one")
    parser.add_argument("--units", choices=["C", "F"], help="Temperature unit (remembered)")
    parser.add_argument("--pin", action="store_true", help="Pin the loaded place to the favorites")
    parser.add_argument("--unpin", nargs=2, type=float, metavar=("LAT", "LON"))
    parser.add_argument("--favorites", action="store_true", help="List pinned places")
    parser.add_argument("--data-dir", help="Directory for cached state (default: $SKYCAST_DATA_DIR or ~/.skycast)")
    parser.add_argument("--timeout", type=float, default=None, help="HTTP timeout in seconds (default: none)")
    parser.add_argument("--max-retries", type=int, default=3)
    parser.add_argument("--retry-delay", type=float, default=1.0)
    parser.add_argument("--log-file", default=None)
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def setup_logging(log_file: Optional[str], verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.WARNING
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers
    )


def load_config(data_dir: Optional[str] = None) -> Config:
    load_dotenv()
    config = Config(
        data_dir=data_dir or os.getenv("SKYCAST_DATA_DIR", DEFAULT_DATA_DIR),
        cache_version=os.getenv("SKYCAST_CACHE_VERSION", DEFAULT_VERSION),
        shell_base_url=os.getenv("SKYCAST_SHELL_BASE_URL") or None,
        language=os.getenv("SKYCAST_LANG", "en"),
    )
    if not config.cache_version.strip():
        raise SystemExit("SKYCAST_CACHE_VERSION must not be empty")
    logging.info("Configuration loaded: data_dir=%s version=%s", config.data_dir, config.cache_version)
    return config


def build_adapter(config: Config, timeout: Optional[float]) -> OfflineCacheAdapter:
    storage = CacheStorage(os.path.join(config.data_dir, "caches"))
    manifest = build_manifest(config.shell_base_url) if config.shell_base_url else []
    return start_adapter(storage, version=config.cache_version, manifest=manifest, timeout=timeout)


def build_weather_service(config: Config, session: requests.Session, args: argparse.Namespace) -> WeatherService:
    store = JsonFileStore(os.path.join(config.data_dir, "storage.json"))
    provider = OpenMeteoProvider(session=session, language=config.language, timeout=args.timeout)
    service = WeatherService(
        provider=provider,
        cache_store=ForecastCacheStore(store),
        preferences=Preferences(store),
        max_retries=args.max_retries,
        retry_delay_seconds=args.retry_delay,
    )
    logging.info("Weather service ready (retries=%s)", args.max_retries)
    return service


def print_lines(lines: List[str]) -> None:
    for line in lines:
        print(line)


def run(args: argparse.Namespace, service: WeatherService) -> int:
    preferences = service.preferences
    if args.units:
        preferences.set_unit(args.units)
    unit = preferences.get_unit()

    if args.unpin:
        lat, lon = args.unpin
        print("Removed." if service.unpin(lat, lon) else "Not pinned.")
        return 0

    if args.favorites:
        favorites = service.favorites()
        if not favorites:
            print("No pinned places yet.")
        for place in favorites:
            print(f"{place.name}  ({place.lat:.4f}, {place.lon:.4f})")
        return 0

    if args.query and args.suggest:
        matches = service.search(args.query)
        if not matches:
            print("No matches")
        for place in matches:
            print(f"{place.display_name}  ({place.lat:.2f}, {place.lon:.2f})")
        return 0

    try:
        if args.query:
            matches = service.search(args.query)
            if not matches:
                print(f"No matches for '{args.query}'")
                return 1
            place = matches[0]
            result = service.load_place(place.lat, place.lon, place.display_name)
        elif args.here:
            place = service.locate()
            result = service.load_place(place.lat, place.lon, place.name)
        elif args.coords:
            lat, lon = args.coords
            result = service.load_place(lat, lon, args.name or f"{lat:.2f}, {lon:.2f}")
        else:
            result = service.load_last_viewed()
    except ValueError as err:
        print(f"Invalid coordinates: {err}")
        return 2
    except LocationError as err:
        logging.error("Location lookup failed: %s", err)
        print("Unable to get your location.")
        return 1
    except WeatherProviderError as err:
        logging.error("Weather fetch failed: %s", err)
        print("Failed to load weather. Check connection and try again.")
        return 1

    print_lines(render_report(result, unit))

    if args.pin:
        try:
            pinned = service.pin_current()
        except LookupError as err:
            logging.warning("Pin skipped: %s", err)
            print("Open a place first, then pin it.")
            return 1
        print(f"Pinned {result.display_name}." if pinned else "Already pinned.")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_file, args.verbose)
    config = load_config(args.data_dir)

    try:
        adapter = build_adapter(config, args.timeout)
    except InstallError as err:
        logging.error("Offline cache unavailable: %s", err)
        adapter = None

    session = requests.Session()
    if adapter is not None:
        adapter.mount(session)
    try:
        service = build_weather_service(config, session, args)
        return run(args, service)
    finally:
        session.close()  # closes the mounted adapter, which waits for mirror writes


if __name__ == "__main__":
    sys.exit(main())
