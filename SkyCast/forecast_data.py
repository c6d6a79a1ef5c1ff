"""Forecast domain model - coordinate keys, places and load results."""
from dataclasses import dataclass
from typing import Any, Dict, Optional

COORDINATE_PRECISION = 4
KEY_PREFIX = "wx_"


@dataclass(frozen=True)
class CoordinateKey:
    """Identity of a cached forecast: a (lat, lon) pair rounded to 4 decimals."""
    lat: float
    lon: float

    @property
    def storage_name(self) -> str:
        """Name of the key/value entry holding this location's payload."""
        return f"{KEY_PREFIX}{self.lat:.4f}_{self.lon:.4f}"

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}


def _round_coordinate(value: float) -> float:
    rounded = round(float(value), COORDINATE_PRECISION)
    # round() keeps the sign of negative zero, which would format as "-0.0000"
    return rounded + 0.0


def make_coordinate_key(lat: float, lon: float) -> CoordinateKey:
    """
    Build the cache key for a location.

    Both coordinates are rounded half-to-even to 4 decimal places (about 11 m),
    so values differing only beyond the 4th decimal share one entry.

    Args:
        lat: Latitude (-90 to 90)
        lon: Longitude (-180 to 180)

    Returns:
        CoordinateKey: Rounded key

    Raises:
        ValueError: If a coordinate is out of range or not a number
    """
    lat_val = float(lat)
    lon_val = float(lon)
    if not -90.0 <= lat_val <= 90.0:
        raise ValueError(f"Latitude out of range: {lat}")
    if not -180.0 <= lon_val <= 180.0:
        raise ValueError(f"Longitude out of range: {lon}")
    return CoordinateKey(_round_coordinate(lat_val), _round_coordinate(lon_val))


@dataclass(frozen=True)
class LastViewed:
    """Pointer to the most recently loaded place."""
    key: CoordinateKey
    display_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"lat": self.key.lat, "lon": self.key.lon, "name": self.display_name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LastViewed":
        return cls(make_coordinate_key(data["lat"], data["lon"]), str(data["name"]))


@dataclass(frozen=True)
class Place:
    """A geocoding match or a pinned favorite."""
    name: str
    lat: float
    lon: float
    admin1: Optional[str] = None
    country_code: Optional[str] = None

    @property
    def display_name(self) -> str:
        parts = [self.name, self.admin1, self.country_code]
        return ", ".join(part for part in parts if part)


@dataclass
class ForecastResult:
    """Outcome of loading a place: the payload plus where it came from."""
    key: CoordinateKey
    display_name: str
    payload: Dict[str, Any]
    offline: bool = False  # True when served from the forecast cache store
