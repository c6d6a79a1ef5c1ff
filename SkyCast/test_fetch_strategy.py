"""Tests for the offline fetch strategy adapter."""
import io
import sqlite3
import pytest
import requests
from unittest.mock import patch
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from urllib3 import HTTPResponse
from fetch_strategy import (
    InstallError,
    OfflineCacheAdapter,
    OfflineCacheMiss,
    build_manifest,
    generation_label,
    live_generations,
    start_adapter,
)
from response_cache import CacheStorage

FORECAST_URL = "https://api.open-meteo.com/v1/forecast?lat=6.9271&lon=79.8612"
UNSEEN_URL = "https://api.open-meteo.com/v1/forecast?lat=51.5074&lon=-0.1278"
GEOCODE_URL = "https://geocoding-api.open-meteo.com/v1/search?name=Colombo"
SHELL_BASE = "https://skycast.example.com/app/"
MANIFEST = build_manifest(SHELL_BASE)


def make_response(request, body=b"{}", status=200):
    """Build a real requests.Response the way HTTPAdapter does, without touching the network."""
    headers = {"Content-Type": "application/json"}
    response = requests.Response()
    response.status_code = status
    response.reason = "OK" if status < 400 else "Error"
    response.url = request.url
    response.headers = CaseInsensitiveDict(headers)
    response.encoding = "utf-8"
    response.raw = HTTPResponse(body=io.BytesIO(body), headers=headers, status=status, preload_content=False)
    response._content = body
    response.request = request
    return response


def get_request(url):
    return requests.Request("GET", url).prepare()


class FakeNetwork:
    """Stands in for HTTPAdapter.send: serves bodies by URL, fails when offline."""

    def __init__(self):
        self.bodies = {}
        self.offline = False
        self.failing = set()
        self.calls = []

    def __call__(self, request, **kwargs):
        self.calls.append((request.method, request.url))
        if self.offline or request.url in self.failing:
            raise requests.exceptions.ConnectionError(f"Network unreachable: {request.url}")
        body = self.bodies.get(request.url)
        if body is None:
            return make_response(request, b"not found", status=404)
        return make_response(request, body)


@pytest.fixture
def network():
    fake = FakeNetwork()
    for url in MANIFEST:
        fake.bodies[url] = f"shell:{url}".encode()
    with patch.object(HTTPAdapter, "send", side_effect=fake):
        yield fake


@pytest.fixture
def storage(tmp_path):
    return CacheStorage(str(tmp_path / "caches"))


@pytest.fixture
def adapter(storage, network):
    adapter = OfflineCacheAdapter(storage, version="v1", manifest=MANIFEST)
    adapter.install()
    adapter.activate()
    yield adapter
    adapter.close()


@pytest.fixture
def session(adapter):
    session = requests.Session()
    adapter.mount(session)
    yield session


def test_classification(storage):
    adapter = OfflineCacheAdapter(storage)
    assert adapter.is_api_request(FORECAST_URL)
    assert adapter.is_api_request(GEOCODE_URL)
    assert adapter.is_api_request("https://open-meteo.com/en/docs")
    assert not adapter.is_api_request("https://notopen-meteo.com/v1/forecast")
    assert not adapter.is_api_request(SHELL_BASE + "manifest.json")
    adapter.close()


def test_generation_label():
    assert generation_label("skycast-shell-v1.0.0") == "v1.0.0"
    assert generation_label("skycast-api-v2") == "v2"
    assert generation_label("something-else") is None


def test_api_network_success_returns_live_and_mirrors(session, adapter, storage, network):
    """Test network-first returns live content even when a cache entry exists."""
    storage.store(adapter.api_cache_name, make_response(get_request(FORECAST_URL), b'{"stale": true}'))
    network.bodies[FORECAST_URL] = b'{"fresh": true}'

    response = session.get(FORECAST_URL)

    assert response.json() == {"fresh": True}
    assert not getattr(response, "from_cache", False)
    assert adapter.wait_for_mirrors(timeout=5)
    mirrored = storage.match(adapter.api_cache_name, get_request(FORECAST_URL))
    assert mirrored.content == b'{"fresh": true}'


def test_api_network_failure_serves_cached(session, adapter, network):
    """Test a failed fetch for a previously cached URL returns the cached body."""
    network.bodies[FORECAST_URL] = b'{"temperature": 31.4}'
    session.get(FORECAST_URL)
    adapter.wait_for_mirrors(timeout=5)

    network.offline = True
    response = session.get(FORECAST_URL)

    assert response.status_code == 200
    assert response.content == b'{"temperature": 31.4}'
    assert response.from_cache is True


def test_api_network_failure_without_cache_is_tagged(session, network):
    """Test a never-seen URL fails with a distinguishable error, not an empty success."""
    network.offline = True
    with pytest.raises(OfflineCacheMiss) as exc_info:
        session.get(UNSEEN_URL)
    assert "Offline and no cache" in str(exc_info.value)
    assert isinstance(exc_info.value, requests.exceptions.ConnectionError)


def test_api_error_status_is_not_mirrored(session, adapter, storage, network):
    response = session.get(UNSEEN_URL)
    assert response.status_code == 404
    adapter.wait_for_mirrors(timeout=5)
    assert storage.match(adapter.api_cache_name, get_request(UNSEEN_URL)) is None


def test_asset_cache_first(session, network):
    """Test installed shell resources are served without the network."""
    network.calls.clear()
    response = session.get(MANIFEST[0])
    assert response.content == f"shell:{MANIFEST[0]}".encode()
    assert network.calls == []


def test_asset_miss_fetches_and_stores(session, network):
    url = SHELL_BASE + "extra.css"
    network.bodies[url] = b"body{}"
    network.calls.clear()

    assert session.get(url).content == b"body{}"
    assert session.get(url).content == b"body{}"
    assert network.calls == [("GET", url)]


def test_asset_miss_offline_propagates(session, network):
    network.offline = True
    with pytest.raises(requests.exceptions.ConnectionError) as exc_info:
        session.get(SHELL_BASE + "never-cached.js")
    assert not isinstance(exc_info.value, OfflineCacheMiss)


def test_non_get_bypasses_both_policies(session, adapter, storage, network):
    """Test mutating requests reach the network and are never cached."""
    network.bodies[FORECAST_URL] = b"{}"
    session.post(FORECAST_URL, data=b"x")
    adapter.wait_for_mirrors(timeout=5)
    assert storage.count(adapter.api_cache_name) == 0

    network.offline = True
    with pytest.raises(requests.exceptions.ConnectionError) as exc_info:
        session.post(FORECAST_URL, data=b"x")
    assert not isinstance(exc_info.value, OfflineCacheMiss)


def test_inactive_adapter_passes_through(storage, network):
    adapter = OfflineCacheAdapter(storage, version="v1", manifest=MANIFEST)
    session = adapter.mount(requests.Session())
    network.bodies[FORECAST_URL] = b"{}"
    session.get(FORECAST_URL)
    adapter.wait_for_mirrors(timeout=5)
    assert storage.keys() == []
    adapter.close()


def test_activation_purges_previous_generation(storage, network):
    """Test activating v2 after v1 leaves only v2 caches, with the v2 manifest present."""
    v1 = OfflineCacheAdapter(storage, version="v1", manifest=MANIFEST)
    v1.install()
    v1.activate()
    network.bodies[FORECAST_URL] = b"{}"
    v1.mount(requests.Session()).get(FORECAST_URL)
    v1.wait_for_mirrors(timeout=5)
    assert storage.keys() == ["skycast-api-v1", "skycast-shell-v1"]

    v2 = OfflineCacheAdapter(storage, version="v2", manifest=MANIFEST)
    v2.install()
    assert live_generations(storage) == ["v1", "v2"]
    v2.activate()

    assert storage.keys() == ["skycast-shell-v2"]
    for url in MANIFEST:
        assert storage.match("skycast-shell-v2", get_request(url)).content == f"shell:{url}".encode()
    v1.close()
    v2.close()


def test_activation_keeps_foreign_caches(storage, network):
    storage.open("unrelated-cache")
    adapter = OfflineCacheAdapter(storage, version="v1", manifest=MANIFEST)
    adapter.install()
    adapter.activate()
    assert "unrelated-cache" in storage.keys()
    adapter.close()


def test_install_is_atomic(storage, network):
    """Test one failing manifest fetch stores nothing and keeps the old generation."""
    v1 = OfflineCacheAdapter(storage, version="v1", manifest=MANIFEST)
    v1.install()
    v1.activate()

    network.failing.add(MANIFEST[-1])
    v2 = OfflineCacheAdapter(storage, version="v2", manifest=MANIFEST)
    with pytest.raises(InstallError):
        v2.install()

    assert storage.keys() == ["skycast-shell-v1"]
    with pytest.raises(InstallError):
        v2.activate()
    v1.close()
    v2.close()


def test_install_stores_every_manifest_entry(storage, network):
    adapter = OfflineCacheAdapter(storage, version="v1", manifest=MANIFEST)
    adapter.install()
    assert storage.count(adapter.shell_cache_name) == len(MANIFEST)
    adapter.close()


def test_install_write_failure_leaves_no_generation(storage, network):
    """Test a storage error part way through install removes the half-written cache."""
    adapter = OfflineCacheAdapter(storage, version="v1", manifest=MANIFEST)
    with patch.object(storage, "store", side_effect=sqlite3.OperationalError("disk I/O error")):
        with pytest.raises(InstallError):
            adapter.install()
    assert storage.keys() == []
    adapter.close()


def test_install_rejects_http_errors(storage, network):
    manifest = MANIFEST + [SHELL_BASE + "missing.png"]
    adapter = OfflineCacheAdapter(storage, version="v1", manifest=manifest)
    with pytest.raises(InstallError):
        adapter.install()
    assert storage.keys() == []
    adapter.close()


def test_start_adapter_installs_and_activates(storage, network):
    adapter = start_adapter(storage, version="v1", manifest=MANIFEST)
    assert adapter.active
    assert adapter.version == "v1"
    adapter.close()


def test_start_adapter_keeps_previous_generation_on_failed_install(storage, network):
    start_adapter(storage, version="v1", manifest=MANIFEST).close()

    network.offline = True
    adapter = start_adapter(storage, version="v2", manifest=MANIFEST)

    assert adapter.version == "v1"
    assert adapter.active
    assert live_generations(storage) == ["v1"]
    adapter.close()


def test_start_adapter_without_any_generation_raises(storage, network):
    network.offline = True
    with pytest.raises(InstallError):
        start_adapter(storage, version="v1", manifest=MANIFEST)


def test_empty_manifest_installs(storage, network):
    adapter = start_adapter(storage, version="v1")
    assert storage.keys() == ["skycast-shell-v1"]
    adapter.close()


def test_build_manifest():
    assert build_manifest("https://x.example/app", ["a.json", "icons/b.png"]) == [
        "https://x.example/app/a.json",
        "https://x.example/app/icons/b.png",
    ]
