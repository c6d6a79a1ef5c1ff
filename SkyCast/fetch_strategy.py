"""Offline fetch strategy - a requests transport adapter that serves and refills versioned caches."""
import logging
import sqlite3
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Iterable, List, Optional, Set
from urllib.parse import urljoin, urlsplit

import requests
from requests.adapters import HTTPAdapter

from response_cache import CacheStorage

API_DOMAIN = "open-meteo.com"
DEFAULT_VERSION = "v1.0.0"
SHELL_CACHE_PREFIX = "skycast-shell-"
API_CACHE_PREFIX = "skycast-api-"
SHELL_MANIFEST = (
    "manifest.json",
    "icons/icon-192.png",
    "icons/icon-512.png",
)


class InstallError(Exception):
    """Exception raised when a cache generation cannot be installed or activated."""
    pass


class OfflineCacheMiss(requests.exceptions.ConnectionError):
    """The network failed and no cached response exists for the request."""
    pass


def build_manifest(base_url: str, paths: Iterable[str] = SHELL_MANIFEST) -> List[str]:
    """Resolve shell resource paths against the base URL they are served from."""
    if not base_url.endswith("/"):
        base_url += "/"
    return [urljoin(base_url, path) for path in paths]


def generation_label(cache_name: str) -> Optional[str]:
    """Version label of a cache created by this module, or None for foreign caches."""
    for prefix in (SHELL_CACHE_PREFIX, API_CACHE_PREFIX):
        if cache_name.startswith(prefix):
            return cache_name[len(prefix):]
    return None


class OfflineCacheAdapter(HTTPAdapter):
    """
    Transport adapter that decides, per GET request, between network and cache.

    Requests to the weather provider's domain are network-first: a live
    response is returned as-is and mirrored into the API cache on a background
    thread. If the network fails, the cached copy of the exact request is
    served instead, and OfflineCacheMiss is raised when there is none.

    Every other GET is cache-first against the shell cache, filled from the
    network on a miss. Non-GET requests, and all requests before activate(),
    go straight to the network.

    Mirror writes are not awaited, so a request racing one may still see a
    cache miss and fall through to the network. Call wait_for_mirrors() where
    that matters.
    """

    def __init__(
        self,
        storage: CacheStorage,
        version: str = DEFAULT_VERSION,
        manifest: Iterable[str] = (),
        api_domain: str = API_DOMAIN,
        mirror_workers: int = 2,
        **kwargs
    ):
        """
        Initialize the adapter.

        Args:
            storage: Cache storage holding every generation
            version: Label of the generation this adapter installs and serves
            manifest: Absolute URLs pre-fetched into the shell cache on install
            api_domain: Host (or parent domain) of network-first API traffic
            mirror_workers: Threads used for background mirror writes
            **kwargs: Passed through to requests' HTTPAdapter
        """
        super().__init__(**kwargs)
        self.storage = storage
        self.version = version
        self.manifest = list(manifest)
        self.api_domain = api_domain.lower()
        self.active = False

        self._executor = ThreadPoolExecutor(max_workers=mirror_workers, thread_name_prefix="skycast-mirror")
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()

    @property
    def shell_cache_name(self) -> str:
        return SHELL_CACHE_PREFIX + self.version

    @property
    def api_cache_name(self) -> str:
        return API_CACHE_PREFIX + self.version

    def is_api_request(self, url: str) -> bool:
        host = (urlsplit(url).hostname or "").lower()
        return host == self.api_domain or host.endswith("." + self.api_domain)

    def is_installed(self) -> bool:
        return self.storage.has(self.shell_cache_name)

    def mount(self, session: requests.Session) -> requests.Session:
        """Route every http(s) request of a session through this adapter."""
        session.mount("https://", self)
        session.mount("http://", self)
        return session

    # -------------------- lifecycle --------------------

    def install(self, timeout: Optional[float] = None) -> None:
        """
        Pre-populate this generation's shell cache with the manifest.

        All resources are fetched before anything is written, so a single
        failure leaves storage exactly as it was.

        Raises:
            InstallError: If any manifest resource cannot be fetched or stored
        """
        logging.info(f"Installing cache generation {self.version} ({len(self.manifest)} resources)")
        staged = []
        for url in self.manifest:
            request = requests.Request("GET", url).prepare()
            try:
                response = super().send(request, timeout=timeout)
            except requests.exceptions.RequestException as e:
                logging.error(f"Install of {self.version} failed fetching {url}: {e}")
                raise InstallError(f"Failed to fetch {url}: {e}") from e
            if not response.ok:
                logging.error(f"Install of {self.version} failed: {url} returned HTTP {response.status_code}")
                raise InstallError(f"Failed to fetch {url}: HTTP {response.status_code}")
            response.content  # body is read now, nothing is written until every fetch succeeded
            staged.append(response)

        existed = self.storage.has(self.shell_cache_name)
        try:
            self.storage.open(self.shell_cache_name)
            for response in staged:
                self.storage.store(self.shell_cache_name, response)
        except (OSError, sqlite3.Error) as e:
            if not existed:
                self.storage.delete(self.shell_cache_name)
            raise InstallError(f"Failed to store shell cache {self.shell_cache_name}: {e}") from e
        logging.info(f"Cache generation {self.version} installed")

    def activate(self) -> None:
        """
        Purge every other generation and start intercepting requests.

        Raises:
            InstallError: If this generation was never installed
        """
        if not self.is_installed():
            raise InstallError(f"Cannot activate generation {self.version} before it is installed")
        for name in self.storage.keys():
            label = generation_label(name)
            if label is not None and label != self.version:
                self.storage.delete(name)
                logging.info(f"Evicted cache '{name}' from generation {label}")
        self.active = True
        logging.info(f"Cache generation {self.version} active")

    # -------------------- request handling --------------------

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        if not self.active or request.method != "GET":
            return super().send(request, stream=stream, timeout=timeout, verify=verify, cert=cert, proxies=proxies)

        kwargs = dict(stream=stream, timeout=timeout, verify=verify, cert=cert, proxies=proxies)
        if self.is_api_request(request.url):
            return self._network_first(request, **kwargs)
        return self._cache_first(request, **kwargs)

    def _network_first(self, request, **kwargs) -> requests.Response:
        try:
            response = super().send(request, **kwargs)
        except requests.exceptions.RequestException as e:
            logging.warning(f"Network failed for {request.url}: {e}; trying API cache")
            cached = self.storage.match(self.api_cache_name, request)
            if cached is None:
                logging.error(f"Offline and no cache for {request.url}")
                raise OfflineCacheMiss(f"Offline and no cache for {request.url}", request=request) from e
            logging.info(f"Serving cached response for {request.url}")
            return cached

        if response.ok:
            self._mirror(response)
        return response

    def _cache_first(self, request, **kwargs) -> requests.Response:
        cached = self.storage.match(self.shell_cache_name, request)
        if cached is not None:
            logging.debug(f"Shell cache hit for {request.url}")
            return cached

        logging.debug(f"Shell cache miss for {request.url}, fetching")
        response = super().send(request, **kwargs)
        if response.ok:
            try:
                self.storage.store(self.shell_cache_name, response)
            except (OSError, sqlite3.Error) as e:
                logging.warning(f"Could not store {request.url} in shell cache: {e}")
        return response

    def _mirror(self, response: requests.Response) -> None:
        # The body is read here so the background write only ever sees bytes
        response.content
        future = self._executor.submit(self._store_mirror, self.api_cache_name, response)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._mirror_done)

    def _store_mirror(self, cache_name: str, response: requests.Response) -> None:
        try:
            self.storage.store(cache_name, response)
        except (OSError, sqlite3.Error) as e:
            logging.warning(f"Mirror write for {response.url} failed: {e}")

    def _mirror_done(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def wait_for_mirrors(self, timeout: Optional[float] = None) -> bool:
        """Block until outstanding mirror writes finish. Returns False on timeout."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self.storage.close()
        super().close()


def live_generations(storage: CacheStorage) -> List[str]:
    """Version labels that currently own at least one cache, sorted."""
    return sorted({label for label in map(generation_label, storage.keys()) if label is not None})


def start_adapter(
    storage: CacheStorage,
    version: str = DEFAULT_VERSION,
    manifest: Iterable[str] = (),
    timeout: Optional[float] = None,
) -> OfflineCacheAdapter:
    """
    Return an active adapter, installing the requested generation if needed.

    When installing the new generation fails, the highest-sorting generation
    that is already installed keeps serving; with none available the error is
    re-raised.
    """
    adapter = OfflineCacheAdapter(storage, version=version, manifest=manifest)
    if not adapter.is_installed():
        try:
            adapter.install(timeout=timeout)
        except InstallError as e:
            previous = [
                label for label in live_generations(storage)
                if storage.has(SHELL_CACHE_PREFIX + label)
            ]
            if not previous:
                adapter.close()
                raise
            logging.warning(f"Keeping generation {previous[-1]} after failed install of {version}: {e}")
            adapter.close()
            adapter = OfflineCacheAdapter(storage, version=previous[-1], manifest=manifest)
    adapter.activate()
    return adapter
