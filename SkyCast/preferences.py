"""User preferences - temperature unit and pinned places."""
import json
import logging
from typing import List

from forecast_data import Place
from key_value_store import KeyValueStoreBase, StorageError

UNIT_ENTRY = "unit"
FAVORITES_ENTRY = "favorites"
UNITS = ("C", "F")
DEFAULT_UNIT = "C"


class Preferences:
    """Unit preference and favorites list, stored beside the forecast cache."""

    def __init__(self, store: KeyValueStoreBase):
        self.store = store

    def get_unit(self) -> str:
        try:
            unit = self.store.get_item(UNIT_ENTRY)
        except StorageError as e:
            logging.warning(f"Cannot read unit preference: {e}")
            return DEFAULT_UNIT
        return unit if unit in UNITS else DEFAULT_UNIT

    def set_unit(self, unit: str) -> None:
        if unit not in UNITS:
            raise ValueError(f"Unknown unit '{unit}', expected one of {', '.join(UNITS)}")
        try:
            self.store.set_item(UNIT_ENTRY, unit)
        except StorageError as e:
            logging.warning(f"Cannot save unit preference: {e}")

    def favorites(self) -> List[Place]:
        try:
            raw = self.store.get_item(FAVORITES_ENTRY)
            entries = json.loads(raw) if raw else []
        except (StorageError, ValueError) as e:
            logging.warning(f"Ignoring unreadable favorites: {e}")
            return []

        places = []
        for entry in entries if isinstance(entries, list) else []:
            try:
                places.append(Place(name=str(entry["name"]), lat=float(entry["lat"]), lon=float(entry["lon"])))
            except (KeyError, TypeError, ValueError):
                logging.debug(f"Skipping malformed favorite: {entry!r}")
        return places

    def pin(self, place: Place) -> bool:
        """
        Add a place to the favorites.

        Returns:
            bool: False if a favorite with the same coordinates already exists
        """
        favorites = self.favorites()
        if any(f.lat == place.lat and f.lon == place.lon for f in favorites):
            return False
        favorites.append(Place(name=place.display_name, lat=place.lat, lon=place.lon))
        self._save(favorites)
        return True

    def unpin(self, lat: float, lon: float) -> bool:
        """Remove the favorite at exactly these coordinates. Returns True if one was removed."""
        favorites = self.favorites()
        rest = [f for f in favorites if not (f.lat == lat and f.lon == lon)]
        if len(rest) == len(favorites):
            return False
        self._save(rest)
        return True

    def _save(self, favorites: List[Place]) -> None:
        document = json.dumps([{"lat": f.lat, "lon": f.lon, "name": f.name} for f in favorites])
        try:
            self.store.set_item(FAVORITES_ENTRY, document)
        except StorageError as e:
            logging.warning(f"Cannot save favorites: {e}")
