"""Tests for the local image cache."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from fieldbook.assets import AssetCache, AssetState, HttpDownloader, derive_key, parse_key
from fieldbook.errors import NetworkError, ParseError, StorageError

PROFILE_URL = (
    "https://storage.example.com/v0/b/fieldbook/o/uid-42/profile/avatar.jpg?alt=media&token=abc"
)


class _FakeDownloader:
    def __init__(
        self,
        *,
        body: bytes = b"\xff\xd8jpeg",
        status: int = 200,
        error: Exception | None = None,
        gated: bool = False,
    ) -> None:
        self.body = body
        self.status = status
        self.error = error
        self.gated = gated
        self.calls: list[tuple[str, Path]] = []
        self.gate: asyncio.Event | None = None

    async def download(self, url: str, destination: Path) -> int:
        self.calls.append((url, destination))
        if self.gated:
            if self.gate is None:
                self.gate = asyncio.Event()
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if 200 <= self.status < 300:
            destination.write_bytes(self.body)
        return self.status


def _cache(tmp_path: Path, downloader) -> AssetCache:
    return AssetCache(tmp_path / "images", downloader)


def test_derive_key_uses_owner_and_filename() -> None:
    assert derive_key(PROFILE_URL) == "uid-42_avatar.jpg"


def test_derive_key_is_deterministic_and_ignores_query() -> None:
    rotated = PROFILE_URL.replace("token=abc", "token=xyz")
    other_host = "https://cdn.example.org/uid-42/profile/avatar.jpg"

    assert derive_key(PROFILE_URL) == derive_key(PROFILE_URL)
    assert derive_key(rotated) == derive_key(PROFILE_URL)
    assert derive_key(other_host) == derive_key(PROFILE_URL)


def test_derive_key_decodes_encoded_object_paths() -> None:
    url = "https://firebasestorage.example.com/v0/b/app/o/uid-7%2Fprofile%2Fme.png?alt=media"

    assert derive_key(url) == "uid-7_me.png"


def test_derive_key_accepts_custom_markers() -> None:
    url = "https://storage.example.com/lead-9/leads/house.jpg"

    assert derive_key(url) is None
    assert derive_key(url, owner_markers=("profile", "leads")) == "lead-9_house.jpg"


@pytest.mark.parametrize(
    "url",
    [
        "https://storage.example.com/uid-42/avatar.jpg",
        "https://storage.example.com/uid-42/profile/",
        "https://storage.example.com/profile/avatar.jpg",
        "https://storage.example.com/../profile/avatar.jpg",
        "not a url",
        "",
        "http://[bad/uid-1/profile/a.jpg",
    ],
)
def test_unparsable_urls_have_no_key(url: str) -> None:
    assert derive_key(url) is None
    with pytest.raises(ParseError):
        parse_key(url)


def test_resolve_without_key_returns_url_unchanged(tmp_path: Path) -> None:
    downloader = _FakeDownloader()
    cache = _cache(tmp_path, downloader)
    url = "https://example.com/logo.png"

    assert asyncio.run(cache.resolve(url)) == url
    assert downloader.calls == []


def test_resolve_malformed_url_returns_it_unchanged(tmp_path: Path) -> None:
    downloader = _FakeDownloader()
    cache = _cache(tmp_path, downloader)
    url = "http://[bad/uid-1/profile/a.jpg"

    assert asyncio.run(cache.resolve(url)) == url
    assert cache.state(url) is AssetState.UNRESOLVED
    assert downloader.calls == []


def test_resolve_downloads_once_then_serves_local_copy(tmp_path: Path) -> None:
    downloader = _FakeDownloader()
    cache = _cache(tmp_path, downloader)
    expected_path = tmp_path / "images" / "uid-42_avatar.jpg"

    first = asyncio.run(cache.resolve(PROFILE_URL))
    second = asyncio.run(cache.resolve(PROFILE_URL.replace("token=abc", "token=new")))

    assert first == f"file://{expected_path}"
    assert second == first
    assert expected_path.read_bytes() == b"\xff\xd8jpeg"
    assert len(downloader.calls) == 1
    assert cache.state(PROFILE_URL) is AssetState.CACHED
    assert cache.lookup(PROFILE_URL) == first


@pytest.mark.parametrize(
    "downloader",
    [
        _FakeDownloader(status=404),
        _FakeDownloader(error=NetworkError("reset by peer")),
        _FakeDownloader(error=StorageError("disk full")),
    ],
)
def test_failed_download_falls_back_to_remote(tmp_path: Path, downloader) -> None:
    cache = _cache(tmp_path, downloader)

    assert asyncio.run(cache.resolve(PROFILE_URL)) == PROFILE_URL
    assert list((tmp_path / "images").iterdir()) == []
    assert cache.state(PROFILE_URL) is AssetState.UNRESOLVED
    assert cache.lookup(PROFILE_URL) is None


def test_failed_download_is_retried_on_next_resolve(tmp_path: Path) -> None:
    downloader = _FakeDownloader(status=503)
    cache = _cache(tmp_path, downloader)
    asyncio.run(cache.resolve(PROFILE_URL))

    downloader.status = 200
    resolved = asyncio.run(cache.resolve(PROFILE_URL))

    assert resolved.startswith("file://")
    assert len(downloader.calls) == 2


def test_state_reports_download_in_progress(tmp_path: Path) -> None:
    downloader = _FakeDownloader(gated=True)
    cache = _cache(tmp_path, downloader)

    async def scenario():
        before = cache.state(PROFILE_URL)
        task = asyncio.create_task(cache.resolve(PROFILE_URL))
        await asyncio.sleep(0)
        during = cache.state(PROFILE_URL)
        downloader.gate.set()
        await task
        return before, during, cache.state(PROFILE_URL)

    assert asyncio.run(scenario()) == (
        AssetState.UNRESOLVED,
        AssetState.DOWNLOADING,
        AssetState.CACHED,
    )


def test_concurrent_resolves_both_download(tmp_path: Path) -> None:
    downloader = _FakeDownloader(gated=True)
    cache = _cache(tmp_path, downloader)

    async def scenario():
        tasks = [asyncio.create_task(cache.resolve(PROFILE_URL)) for _ in range(2)]
        await asyncio.sleep(0)
        downloader.gate.set()
        return await asyncio.gather(*tasks)

    first, second = asyncio.run(scenario())

    assert first == second
    assert len(downloader.calls) == 2
    assert downloader.calls[0][1] != downloader.calls[1][1]
    assert [path.name for path in (tmp_path / "images").iterdir()] == ["uid-42_avatar.jpg"]


def test_discard_and_clear(tmp_path: Path) -> None:
    cache = _cache(tmp_path, _FakeDownloader())
    other = PROFILE_URL.replace("uid-42", "uid-43")
    asyncio.run(cache.resolve(PROFILE_URL))
    asyncio.run(cache.resolve(other))

    assert cache.discard(PROFILE_URL) is True
    assert cache.discard(PROFILE_URL) is False
    assert cache.discard("https://example.com/logo.png") is False
    assert cache.clear() == 1
    assert cache.lookup(other) is None


def test_clear_on_missing_directory(tmp_path: Path) -> None:
    assert _cache(tmp_path, _FakeDownloader()).clear() == 0


def test_http_downloader_streams_into_cache(tmp_path: Path) -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        if "missing" in request.url.path:
            return httpx.Response(404)
        return httpx.Response(200, content=b"png-bytes")

    async def scenario():
        downloader = HttpDownloader(transport=httpx.MockTransport(handler))
        cache = _cache(tmp_path, downloader)
        try:
            found = await cache.resolve(PROFILE_URL)
            missing_url = "https://storage.example.com/uid-1/profile/missing.png"
            missing = await cache.resolve(missing_url)
        finally:
            await downloader.aclose()
        return found, missing, missing_url

    found, missing, missing_url = asyncio.run(scenario())

    assert found == f"file://{tmp_path / 'images' / 'uid-42_avatar.jpg'}"
    assert (tmp_path / "images" / "uid-42_avatar.jpg").read_bytes() == b"png-bytes"
    assert missing == missing_url
    assert not (tmp_path / "images" / "uid-1_missing.png").exists()
    assert requested[0] == PROFILE_URL


def test_http_downloader_wraps_transport_errors(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    async def scenario() -> None:
        downloader = HttpDownloader(transport=httpx.MockTransport(handler))
        try:
            await downloader.download(PROFILE_URL, tmp_path / "out.jpg")
        finally:
            await downloader.aclose()

    with pytest.raises(NetworkError):
        asyncio.run(scenario())


@pytest.mark.parametrize(
    "error",
    [httpx.InvalidURL("Invalid port: 'abc'"), httpx.StreamClosed()],
    ids=["invalid-url", "stream-closed"],
)
def test_http_downloader_failures_fall_back_to_remote(tmp_path: Path, error: Exception) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    async def scenario():
        downloader = HttpDownloader(transport=httpx.MockTransport(handler))
        cache = _cache(tmp_path, downloader)
        try:
            with pytest.raises(NetworkError):
                await downloader.download(PROFILE_URL, tmp_path / "out.jpg")
            return await cache.resolve(PROFILE_URL)
        finally:
            await downloader.aclose()

    assert asyncio.run(scenario()) == PROFILE_URL
    assert not (tmp_path / "out.jpg").exists()
    assert list((tmp_path / "images").iterdir()) == []
