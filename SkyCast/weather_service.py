"""Weather service - loads places with retries and falls back to the forecast cache."""
import logging
import time
from typing import Any, Dict, List, Optional

from forecast_cache import ForecastCacheStore
from forecast_data import ForecastResult, Place, make_coordinate_key
from geolocation import IpLocator
from preferences import Preferences
from weather_provider import ForecastProviderBase, WeatherProviderError

DEFAULT_PLACE = Place(name="Colombo", lat=6.9271, lon=79.8612, country_code="LK")


class WeatherService:
    """
    Service that wraps a forecast provider with retries and an offline fallback.

    Every successful load is written to the forecast cache store. When a load
    fails after all retries, the last payload stored for that location is
    returned instead, flagged as offline.
    """

    def __init__(
        self,
        provider: ForecastProviderBase,
        cache_store: ForecastCacheStore,
        preferences: Optional[Preferences] = None,
        locator: Optional[IpLocator] = None,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0
    ):
        """
        Initialize weather service.

        Args:
            provider: Forecast provider to use
            cache_store: Store holding the last payload per location
            preferences: Unit and favorites storage (needed for pinning)
            locator: Device location lookup (needed for locate())
            max_retries: Maximum number of attempts per load on transient errors
            retry_delay_seconds: Base delay between retries, grows linearly
        """
        self.provider = provider
        self.cache_store = cache_store
        self.preferences = preferences
        self.locator = locator or IpLocator()
        self.max_retries = max(1, max_retries)
        self.retry_delay_seconds = retry_delay_seconds

    def load_place(self, lat: float, lon: float, display_name: str) -> ForecastResult:
        """
        Load the forecast for a place, from the network or the cache.

        Returns:
            ForecastResult: Payload and whether it came from the offline cache

        Raises:
            WeatherProviderError: If every attempt fails and nothing is cached
        """
        key = make_coordinate_key(lat, lon)
        try:
            payload = self._fetch_with_retries(lat, lon)
        except WeatherProviderError as e:
            self.cache_store.remember_last_viewed(key, display_name)
            cached = self.cache_store.get(key)
            if cached is None:
                logging.error(f"Failed to load weather for {display_name} and nothing is cached")
                raise
            logging.warning(f"Showing last saved data for {display_name}: {e}")
            return ForecastResult(key=key, display_name=display_name, payload=cached, offline=True)

        self.cache_store.put(key, display_name, payload)
        return ForecastResult(key=key, display_name=display_name, payload=payload)

    def load_last_viewed(self, default: Place = DEFAULT_PLACE) -> ForecastResult:
        """Load the last viewed place, or the default place on first run."""
        last = self.cache_store.get_last_viewed()
        if last is None:
            logging.info(f"No last viewed place, starting with {default.display_name}")
            return self.load_place(default.lat, default.lon, default.display_name)
        return self.load_place(last.key.lat, last.key.lon, last.display_name)

    def search(self, query: str) -> List[Place]:
        """Geocoding suggestions for a query; empty on blank input or failure."""
        if not query or not query.strip():
            return []
        try:
            return self.provider.search(query.strip())
        except WeatherProviderError as e:
            logging.error(f"Place search for '{query}' failed: {e}")
            return []

    def locate(self) -> Place:
        """
        Resolve the device location to a named place.

        Raises:
            LocationError: If the device location cannot be determined
        """
        lat, lon = self.locator.locate()
        name = f"{lat:.2f}, {lon:.2f}"
        try:
            match = self.provider.reverse(lat, lon)
        except WeatherProviderError as e:
            logging.warning(f"Reverse geocoding failed, using coordinates as name: {e}")
            match = None
        if match is not None:
            name = match.display_name
        return Place(name=name, lat=lat, lon=lon)

    def pin_current(self) -> bool:
        """
        Add the last viewed place to the favorites.

        Returns:
            bool: False if it was already pinned

        Raises:
            LookupError: If no place has been opened yet
        """
        last = self.cache_store.get_last_viewed()
        if last is None:
            raise LookupError("Open a place first, then pin it")
        return self._preferences().pin(Place(name=last.display_name, lat=last.key.lat, lon=last.key.lon))

    def unpin(self, lat: float, lon: float) -> bool:
        key = make_coordinate_key(lat, lon)
        return self._preferences().unpin(key.lat, key.lon)

    def favorites(self) -> List[Place]:
        return self._preferences().favorites()

    def _preferences(self) -> Preferences:
        if self.preferences is None:
            raise RuntimeError("WeatherService was created without preferences")
        return self.preferences

    def _fetch_with_retries(self, lat: float, lon: float) -> Dict[str, Any]:
        logging.info(f"Fetching forecast for ({lat}, {lon})...")
        last_error = None
        for attempt in range(self.max_retries):
            try:
                logging.debug(f"Forecast fetch attempt {attempt + 1}/{self.max_retries}")
                return self.provider.get_forecast(lat, lon)
            except WeatherProviderError as e:
                last_error = e
                logging.warning(f"Forecast fetch attempt {attempt + 1} failed: {e}")
                # Don't retry on 4xx errors (bad request, etc.)
                if not e.retryable:
                    logging.error("Non-retryable error (4xx), stopping retries")
                    break
                if attempt < self.max_retries - 1:
                    retry_delay = self.retry_delay_seconds * (attempt + 1)
                    logging.info(f"Retrying in {retry_delay}s...")
                    time.sleep(retry_delay)
        raise last_error
