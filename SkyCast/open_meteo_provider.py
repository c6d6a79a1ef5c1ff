"""Open-Meteo forecast and geocoding provider implementation."""
import logging
from typing import Any, Dict, List, Optional

import requests

from fetch_strategy import OfflineCacheMiss
from forecast_data import Place
from weather_provider import ForecastProviderBase, OfflineError, WeatherProviderError

HOURLY_FIELDS = (
    "temperature_2m",
    "relative_humidity_2m",
    "apparent_temperature",
    "precipitation_probability",
    "weathercode",
    "wind_speed_10m",
    "uv_index",
)
DAILY_FIELDS = (
    "weather_code",
    "temperature_2m_max",
    "temperature_2m_min",
    "sunrise",
    "sunset",
    "uv_index_max",
    "precipitation_sum",
)
REQUIRED_SECTIONS = ("current_weather", "hourly", "daily")


class OpenMeteoProvider(ForecastProviderBase):
    """
    Provider using the free Open-Meteo APIs (no key required).

    Forecast: https://open-meteo.com/en/docs
    Geocoding: https://open-meteo.com/en/docs/geocoding-api

    All requests go through the given session, so an OfflineCacheAdapter
    mounted on it sees and caches every exchange.
    """

    FORECAST_URL = "https://api.open-meteo.com/v1/forecast"
    GEOCODE_URL = "https://geocoding-api.open-meteo.com/v1/search"
    REVERSE_URL = "https://geocoding-api.open-meteo.com/v1/reverse"

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        language: str = "en",
        result_count: int = 8,
        timeout: Optional[float] = None
    ):
        """
        Initialize Open-Meteo provider.

        Args:
            session: HTTP session to issue requests through
            language: Language code for place names (e.g., "en", "de")
            result_count: Maximum number of geocoding matches
            timeout: HTTP request timeout in seconds, None waits for the transport
        """
        self.session = session or requests.Session()
        self.language = language
        self.result_count = result_count
        self.timeout = timeout

    def get_forecast(self, lat: float, lon: float) -> Dict[str, Any]:
        params = {
            "latitude": lat,
            "longitude": lon,
            "current_weather": "true",
            "hourly": ",".join(HOURLY_FIELDS),
            "daily": ",".join(DAILY_FIELDS),
            "timezone": "auto",
        }
        data = self._get_json(self.FORECAST_URL, params)
        for section in REQUIRED_SECTIONS:
            if not isinstance(data.get(section), dict):
                logging.error(f"Forecast response missing '{section}' block")
                raise WeatherProviderError(f"Response missing '{section}' block")

        current = data["current_weather"]
        logging.info(f"Forecast received for ({lat}, {lon}): {current.get('temperature')}°C, code {current.get('weathercode')}")
        return data

    def search(self, query: str) -> List[Place]:
        params = {
            "name": query,
            "count": self.result_count,
            "language": self.language,
            "format": "json",
        }
        data = self._get_json(self.GEOCODE_URL, params)
        places = self._parse_places(data)
        logging.info(f"Geocoding '{query}' returned {len(places)} matches")
        return places

    def reverse(self, lat: float, lon: float) -> Optional[Place]:
        params = {
            "latitude": lat,
            "longitude": lon,
            "language": self.language,
            "format": "json",
        }
        places = self._parse_places(self._get_json(self.REVERSE_URL, params))
        return places[0] if places else None

    def _parse_places(self, data: Dict[str, Any]) -> List[Place]:
        places = []
        for result in data.get("results") or []:
            try:
                places.append(Place(
                    name=result["name"],
                    lat=float(result["latitude"]),
                    lon=float(result["longitude"]),
                    admin1=result.get("admin1"),
                    country_code=result.get("country_code"),
                ))
            except (KeyError, TypeError, ValueError) as e:
                logging.debug(f"Skipping malformed geocoding result {result!r}: {e}")
        return places

    def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            logging.debug(f"Open-Meteo request: {url} {params}")
            response = self.session.get(url, params=params, timeout=self.timeout)
        except OfflineCacheMiss as e:
            raise OfflineError(f"Offline and no cached response: {e}")
        except requests.exceptions.RequestException as e:
            logging.error(f"Network error during API request: {e}")
            raise WeatherProviderError(f"Network error: {str(e)}")

        if getattr(response, "from_cache", False):
            logging.info(f"Using cached response for {url}")
        logging.debug(f"API response status: {response.status_code}")

        if not response.ok:
            logging.error(f"API request failed with status {response.status_code}")
            self._handle_error_response(response)

        try:
            data = response.json()
        except ValueError as e:
            logging.error(f"Failed to parse API response: {e}")
            raise WeatherProviderError(f"Failed to parse response: {str(e)}")
        if not isinstance(data, dict):
            raise WeatherProviderError(f"Unexpected response type: {type(data).__name__}")
        return data

    def _handle_error_response(self, response: requests.Response) -> None:
        """Parse and raise error from an Open-Meteo error response."""
        try:
            error_data = response.json()
            reason = error_data.get("reason", "Unknown error")
            logging.error(f"Open-Meteo API error response: {error_data}")
        except ValueError:
            # Not JSON, use HTTP status
            logging.error(f"Non-JSON error response: HTTP {response.status_code}, body: {response.text[:500]}")
            raise WeatherProviderError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        raise WeatherProviderError(
            f"Open-Meteo API error {response.status_code}: {reason}",
            status_code=response.status_code,
        )
