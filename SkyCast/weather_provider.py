"""Forecast provider abstraction - allows swapping different weather APIs."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from forecast_data import Place


class ForecastProviderBase(ABC):
    """Abstract base class for forecast and geocoding providers."""

    @abstractmethod
    def get_forecast(self, lat: float, lon: float) -> Dict[str, Any]:
        """
        Fetch the full forecast for a location.

        Returns:
            dict: Payload with 'current_weather', 'hourly' and 'daily' sections

        Raises:
            WeatherProviderError: If the provider fails to fetch data
        """
        pass

    @abstractmethod
    def search(self, query: str) -> List[Place]:
        """
        Find places matching a name.

        Raises:
            WeatherProviderError: If the provider fails to fetch data
        """
        pass

    @abstractmethod
    def reverse(self, lat: float, lon: float) -> Optional[Place]:
        """
        Name the place at a location, or None if the provider knows none.

        Raises:
            WeatherProviderError: If the provider fails to fetch data
        """
        pass


class WeatherProviderError(Exception):
    """Exception raised when a weather provider fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Client errors (4xx) will fail the same way again."""
        return self.status_code is None or not 400 <= self.status_code < 500


class OfflineError(WeatherProviderError):
    """Raised when the network is unreachable and nothing is cached for the request."""
    pass
