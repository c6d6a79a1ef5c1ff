"""Durable string key/value storage - allows swapping the on-disk store with test backends."""
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional


class StorageError(Exception):
    """Exception raised when the key/value store cannot be read or written."""
    pass


class KeyValueStoreBase(ABC):
    """Abstract string-to-string store, modelled on browser local storage."""

    @abstractmethod
    def get_item(self, name: str) -> Optional[str]:
        """
        Read a value.

        Returns:
            The stored string, or None if the name is not present

        Raises:
            StorageError: If the backing storage cannot be read
        """
        pass

    @abstractmethod
    def set_item(self, name: str, value: str) -> None:
        """
        Write a value, replacing any previous one.

        Raises:
            StorageError: If the backing storage is full or unavailable
        """
        pass

    @abstractmethod
    def remove_item(self, name: str) -> None:
        """Delete a value; missing names are ignored."""
        pass


class MemoryStore(KeyValueStoreBase):
    """In-process store with an optional size quota."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._items: Dict[str, str] = {}

    def get_item(self, name: str) -> Optional[str]:
        return self._items.get(name)

    def set_item(self, name: str, value: str) -> None:
        if self.quota_bytes is not None:
            size = sum(len(k) + len(v) for k, v in self._items.items() if k != name)
            if size + len(name) + len(value) > self.quota_bytes:
                raise StorageError(f"Quota of {self.quota_bytes} bytes exceeded writing '{name}'")
        self._items[name] = value

    def remove_item(self, name: str) -> None:
        self._items.pop(name, None)


class JsonFileStore(KeyValueStoreBase):
    """
    Store persisted as a single JSON object on disk.

    The whole document is rewritten on every change through a temporary file
    and os.replace, so a crash never leaves a half-written file behind.
    """

    def __init__(self, path: str, quota_bytes: Optional[int] = None):
        """
        Args:
            path: Location of the JSON document (created on first write)
            quota_bytes: Maximum serialized size; writes beyond it fail
        """
        self.path = path
        self.quota_bytes = quota_bytes
        self._lock = threading.Lock()

    def _read_all(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Unexpected document type in {self.path}: {type(data).__name__}")
        return data

    def _write_all(self, items: Dict[str, str]) -> None:
        document = json.dumps(items, ensure_ascii=False)
        if self.quota_bytes is not None and len(document.encode("utf-8")) > self.quota_bytes:
            raise StorageError(f"Quota of {self.quota_bytes} bytes exceeded")

        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".skycast-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(document)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StorageError(f"Cannot write {self.path}: {e}") from e
        logging.debug(f"Wrote {len(items)} entries to {self.path}")

    def get_item(self, name: str) -> Optional[str]:
        with self._lock:
            value = self._read_all().get(name)
        if value is not None and not isinstance(value, str):
            raise StorageError(f"Entry '{name}' is not a string")
        return value

    def set_item(self, name: str, value: str) -> None:
        with self._lock:
            try:
                items = self._read_all()
            except StorageError as e:
                # An unreadable document is replaced rather than blocking every write
                logging.warning(f"Discarding unreadable store: {e}")
                items = {}
            items[name] = value
            self._write_all(items)

    def remove_item(self, name: str) -> None:
        with self._lock:
            items = self._read_all()
            if name in items:
                del items[name]
                self._write_all(items)
