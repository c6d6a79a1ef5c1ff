"""Approximate device location from the public IP address."""
import logging
from typing import Tuple

import requests

IP_GEOLOCATION_URL = "http://ip-api.com/json/"  # Free service, no API key needed
GEOLOCATION_TIMEOUT_SECONDS = 8.0


class LocationError(Exception):
    """Exception raised when the device location cannot be determined."""
    pass


class IpLocator:
    """
    One-shot location lookup with a fixed timeout.

    Uses plain requests rather than the client session so the answer is never
    served from a cache. A timeout or any other failure is final; there is no
    retry.
    """

    def __init__(self, url: str = IP_GEOLOCATION_URL, timeout: float = GEOLOCATION_TIMEOUT_SECONDS):
        self.url = url
        self.timeout = timeout

    def locate(self) -> Tuple[float, float]:
        """
        Returns:
            (lat, lon) of the current network location

        Raises:
            LocationError: If the lookup times out, fails or returns no position
        """
        try:
            response = requests.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout as e:
            logging.error(f"Location lookup timed out after {self.timeout}s")
            raise LocationError(f"Location lookup timed out after {self.timeout}s") from e
        except (requests.exceptions.RequestException, ValueError) as e:
            logging.error(f"Location lookup failed: {e}")
            raise LocationError(f"Unable to get your location: {e}") from e

        if data.get("status") != "success":
            raise LocationError(f"Unable to get your location: {data.get('message', 'Unknown error')}")
        try:
            lat, lon = float(data["lat"]), float(data["lon"])
        except (KeyError, TypeError, ValueError) as e:
            raise LocationError(f"Location response missing coordinates: {e}") from e

        logging.info(f"Located device near ({lat}, {lon}) via {data.get('query', 'ip')}")
        return lat, lon
