"""Forecast cache store - last known payload per location, for offline rendering."""
import json
import logging
from typing import Any, Dict, Optional

from forecast_data import CoordinateKey, LastViewed
from key_value_store import KeyValueStoreBase, StorageError

LAST_VIEWED_ENTRY = "lastPlace"
PAYLOAD_SECTIONS = ("current_weather", "hourly", "daily")


class ForecastCacheStore:
    """
    Durable, per-location memo of the latest forecast payload.

    Writes are best-effort: when the underlying storage is full or unavailable
    the write is skipped with a warning. Reads of missing or corrupt entries
    return None. Nothing here checks freshness; staleness is the caller's call.
    """

    def __init__(self, store: KeyValueStoreBase):
        self.store = store

    def put(self, key: CoordinateKey, display_name: str, payload: Dict[str, Any]) -> None:
        """
        Store a payload for a location and make it the last viewed place.

        Args:
            key: Rounded coordinate key
            display_name: Human readable place name
            payload: Full forecast response; replaces any previous one
        """
        try:
            serialized = json.dumps(payload)
        except (TypeError, ValueError) as e:
            logging.warning(f"Forecast for {key.storage_name} is not serializable, not cached: {e}")
        else:
            self._write(key.storage_name, serialized)
        self.remember_last_viewed(key, display_name)

    def get(self, key: CoordinateKey) -> Optional[Dict[str, Any]]:
        """Return the stored payload for a location, or None."""
        payload = self._read_json(key.storage_name)
        if payload is None:
            return None
        if not isinstance(payload, dict) or not all(isinstance(payload.get(s), dict) for s in PAYLOAD_SECTIONS):
            logging.warning(f"Malformed forecast in '{key.storage_name}', treating as miss")
            return None
        return payload

    def get_last_viewed(self) -> Optional[LastViewed]:
        """Return the last viewed place pointer, or None if never set."""
        data = self._read_json(LAST_VIEWED_ENTRY)
        if data is None:
            return None
        try:
            return LastViewed.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logging.warning(f"Ignoring malformed last viewed pointer: {e}")
            return None

    def remember_last_viewed(self, key: CoordinateKey, display_name: str) -> None:
        """Overwrite the last viewed pointer without touching any payload."""
        pointer = LastViewed(key, display_name)
        self._write(LAST_VIEWED_ENTRY, json.dumps(pointer.to_dict()))

    def _write(self, name: str, value: str) -> None:
        try:
            self.store.set_item(name, value)
            logging.debug(f"Cached '{name}' ({len(value)} chars)")
        except StorageError as e:
            logging.warning(f"Skipping cache write for '{name}': {e}")

    def _read_json(self, name: str) -> Optional[Any]:
        try:
            raw = self.store.get_item(name)
        except StorageError as e:
            logging.warning(f"Cache read for '{name}' failed, treating as miss: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logging.warning(f"Corrupt cache entry '{name}', treating as miss: {e}")
            return None
