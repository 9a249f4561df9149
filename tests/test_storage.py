"""
Tests for export blob stores.
"""

import asyncio

import httpx
import pytest

from app.core import storage
from app.core.config import Settings
from app.core.exceptions import InvalidIdentifierError
from app.core.storage import HttpBlobStore, LocalBlobStore, build_blob_store


@pytest.mark.asyncio
async def test_local_store_writes_file(tmp_path):
    """Test the local store writes under its root and returns the public URL."""
    store = LocalBlobStore(str(tmp_path), "/exports/")

    url = await store.put("reports/t1/e1.csv", b"a,b\n", "text/csv")

    assert url == "/exports/reports/t1/e1.csv"
    assert (tmp_path / "reports" / "t1" / "e1.csv").read_bytes() == b"a,b\n"

    await store.delete("reports/t1/e1.csv")
    assert not (tmp_path / "reports" / "t1" / "e1.csv").exists()
    await store.delete("reports/t1/e1.csv")


@pytest.mark.asyncio
async def test_local_store_does_file_io_off_the_event_loop(tmp_path, monkeypatch):
    """Test local writes and deletes run in a worker thread."""
    offloaded = []
    to_thread = asyncio.to_thread

    async def recording_to_thread(func, *args, **kwargs):
        offloaded.append(func)
        return await to_thread(func, *args, **kwargs)

    monkeypatch.setattr(storage.asyncio, "to_thread", recording_to_thread)
    store = LocalBlobStore(str(tmp_path))

    await store.put("reports/t1/e2.csv", b"x", "text/csv")
    await store.delete("reports/t1/e2.csv")

    assert len(offloaded) == 2
    assert not (tmp_path / "reports" / "t1" / "e2.csv").exists()


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["../etc/passwd", "/abs/path", "reports//x", "reports/./x", ""])
async def test_local_store_rejects_unsafe_keys(tmp_path, key):
    """Test keys cannot escape the storage root."""
    store = LocalBlobStore(str(tmp_path))

    with pytest.raises(InvalidIdentifierError):
        await store.put(key, b"x", "text/plain")


@pytest.mark.asyncio
async def test_http_store_puts_and_deletes():
    """Test the HTTP store PUTs content and tolerates deleting missing objects."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "DELETE":
            return httpx.Response(404)
        return httpx.Response(200)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    store = HttpBlobStore("https://storage.example.com/bucket/", client=client)

    url = await store.put("reports/t1/e1.json", b"[]", "application/json")
    await store.delete("reports/t1/e1.json")
    await store.aclose()

    assert url == "https://storage.example.com/bucket/reports/t1/e1.json"
    assert requests[0].method == "PUT"
    assert requests[0].headers["content-type"] == "application/json"
    assert requests[0].content == b"[]"
    assert requests[1].method == "DELETE"


@pytest.mark.asyncio
async def test_http_store_raises_on_upload_failure():
    """Test upload errors propagate."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    store = HttpBlobStore("https://storage.example.com/bucket", client=client)

    with pytest.raises(httpx.HTTPStatusError):
        await store.put("reports/x.csv", b"", "text/csv")
    await store.aclose()


def test_build_blob_store_selects_backend(tmp_path):
    """Test configuration picks the storage backend."""
    local = build_blob_store(Settings(storage_backend="local", storage_local_path=str(tmp_path)))
    remote = build_blob_store(
        Settings(storage_backend="http", storage_http_endpoint="https://storage.example.com/bucket")
    )

    assert isinstance(local, LocalBlobStore)
    assert isinstance(remote, HttpBlobStore)


def test_http_backend_requires_endpoint():
    """Test the http backend cannot be built without an endpoint."""
    with pytest.raises(ValueError):
        build_blob_store(Settings(storage_backend="http"))
