"""Named, disk-backed HTTP response caches, modelled on the browser Cache Storage API."""
import logging
import os
import sqlite3
import threading
from typing import Dict, List, Optional

import requests
from requests_cache import CachedResponse
from requests_cache.backends import SQLiteCache

CACHE_SUFFIX = ".sqlite"


class CacheStorage:
    """
    Collection of named response caches under one root directory.

    Each name maps to its own requests-cache SQLite backend
    (``<root>/<name>.sqlite``), so a whole cache generation is dropped by
    deleting one file. Entries are keyed with the backend's own request key
    and never expire; callers decide when a cached copy is served.
    """

    def __init__(self, root: str):
        self.root = root
        self._backends: Dict[str, SQLiteCache] = {}
        self._lock = threading.RLock()

    def path_for(self, name: str) -> str:
        if not name or os.sep in name or name in (".", ".."):
            raise ValueError(f"Invalid cache name: {name!r}")
        return os.path.join(self.root, name + CACHE_SUFFIX)

    def open(self, name: str) -> SQLiteCache:
        """Return the backend for a cache, creating it on disk if needed."""
        path = self.path_for(name)
        with self._lock:
            backend = self._backends.get(name)
            if backend is None:
                os.makedirs(self.root, exist_ok=True)
                backend = SQLiteCache(path)
                self._backends[name] = backend
            return backend

    def has(self, name: str) -> bool:
        return os.path.exists(self.path_for(name))

    def keys(self) -> List[str]:
        """Names of every existing cache."""
        with self._lock:
            if not os.path.isdir(self.root):
                return []
            return sorted(
                entry[:-len(CACHE_SUFFIX)] for entry in os.listdir(self.root)
                if entry.endswith(CACHE_SUFFIX)
            )

    def delete(self, name: str) -> bool:
        path = self.path_for(name)
        with self._lock:
            backend = self._backends.pop(name, None)
            if backend is not None:
                backend.clear()
                backend.close()
            if not os.path.exists(path):
                return False
            os.remove(path)
        logging.info(f"Deleted cache '{name}'")
        return True

    def store(self, name: str, response: requests.Response) -> str:
        """
        Save a response under the key of the request that produced it.

        Returns:
            str: The cache key the response was stored under
        """
        with self._lock:
            backend = self.open(name)
            key = backend.create_key(response.request)
            backend.save_response(response, cache_key=key)
        logging.debug(f"Cache '{name}' stored {response.request.url} as {key}")
        return key

    def match(self, name: str, request: requests.PreparedRequest) -> Optional[CachedResponse]:
        """Look up the cached response for a request; an unreadable cache is a miss."""
        with self._lock:
            try:
                backend = self.open(name)
                return backend.get_response(backend.create_key(request))
            except (OSError, sqlite3.Error) as e:
                logging.warning(f"Cache '{name}' unreadable for {request.url}: {e}")
                return None

    def count(self, name: str) -> int:
        """Number of responses held by a cache."""
        with self._lock:
            return len(self.open(name).responses)

    def close(self) -> None:
        """Close every open backend; they are reopened on next use."""
        with self._lock:
            for backend in self._backends.values():
                backend.close()
            self._backends.clear()
