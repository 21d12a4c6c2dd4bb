"""Content-addressed local cache for remote profile and lead images."""

from __future__ import annotations

import enum
import logging
import os
import uuid
from collections import Counter
from pathlib import Path
from typing import Iterable, Protocol
from urllib.parse import unquote, urlsplit

import httpx

from fieldbook.errors import NetworkError, ParseError, StorageError

LOGGER = logging.getLogger(__name__)

DEFAULT_OWNER_MARKERS: tuple[str, ...] = ("profile",)
_PART_SUFFIX = ".part"


def parse_key(url: str, owner_markers: Iterable[str] = DEFAULT_OWNER_MARKERS) -> str:
    """Return ``"{owner}_{filename}"`` for an image URL.

    The path is percent-decoded first, so storage URLs that encode the object
    path (``o/uid%2Fprofile%2Fa.jpg``) parse like plain ones. The owner is the
    segment right before a marker segment; the filename is the last segment.
    The query string never takes part, so signed URLs with rotating tokens
    share one key.

    Raises:
        ParseError: If either part is missing or the key is not a safe filename.
    """
    markers = set(owner_markers)
    try:
        path = unquote(urlsplit(url).path)
    except ValueError as exc:
        raise ParseError(f"Malformed image URL {url!r}: {exc}") from exc
    segments = [segment for segment in path.split("/") if segment]

    owner = None
    for position in range(1, len(segments) - 1):
        if segments[position] in markers:
            owner = segments[position - 1]
            break
    if owner is None:
        raise ParseError(f"No owner segment before {sorted(markers)} in {url!r}")

    filename = segments[-1]
    key = f"{owner}_{filename}"
    if filename in markers or key.startswith(".") or "\\" in key or "\x00" in key:
        raise ParseError(f"Unusable cache key {key!r} for {url!r}")
    return key


def derive_key(url: str, owner_markers: Iterable[str] = DEFAULT_OWNER_MARKERS) -> str | None:
    """Return the cache key for ``url``, or None when it cannot be cached."""
    try:
        return parse_key(url, owner_markers)
    except ParseError as exc:
        LOGGER.debug("%s", exc)
        return None


class Downloader(Protocol):
    """Copies a remote resource to a local file."""

    async def download(self, url: str, destination: Path) -> int:
        """Write ``url`` to ``destination`` and return the HTTP status code.

        Nothing is written for a non-2xx status.
        """
        ...


class HttpDownloader:
    """Stream downloads through ``httpx``."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._owns_client = client is None
        self._client = client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def download(self, url: str, destination: Path) -> int:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True, transport=self._transport)
        try:
            async with self._client.stream("GET", url, timeout=self._timeout) as response:
                if not response.is_success:
                    return response.status_code
                with destination.open("wb") as handle:
                    async for chunk in response.aiter_bytes():
                        handle.write(chunk)
                return response.status_code
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as exc:
            raise NetworkError(f"Download of {url} failed: {exc}") from exc
        except OSError as exc:
            raise StorageError(f"Could not write {destination}: {exc}") from exc


class AssetState(str, enum.Enum):
    UNRESOLVED = "unresolved"
    DOWNLOADING = "downloading"
    CACHED = "cached"


class AssetCache:
    """Resolve remote image URLs to local ``file://`` URIs, downloading once.

    The cache only grows: files are never expired, verified or re-fetched.
    Two concurrent resolves of the same new URL both download and the last
    rename wins; the bytes are identical, so no lock is taken.
    """

    def __init__(
        self,
        directory: Path,
        downloader: Downloader,
        *,
        owner_markers: Iterable[str] = DEFAULT_OWNER_MARKERS,
    ) -> None:
        self.directory = directory.expanduser()
        self.downloader = downloader
        self.owner_markers = tuple(owner_markers)
        self._in_flight: Counter[str] = Counter()

    def key_for(self, url: str) -> str | None:
        return derive_key(url, self.owner_markers)

    def path_for(self, url: str) -> Path | None:
        key = self.key_for(url)
        return self.directory / key if key else None

    def state(self, url: str) -> AssetState:
        """Return where ``url`` is in its download lifecycle."""
        key = self.key_for(url)
        if key is None:
            return AssetState.UNRESOLVED
        if self._in_flight[key]:
            return AssetState.DOWNLOADING
        if (self.directory / key).exists():
            return AssetState.CACHED
        return AssetState.UNRESOLVED

    def lookup(self, url: str) -> str | None:
        """Return the cached URI for ``url`` without downloading."""
        path = self.path_for(url)
        if path is not None and path.exists():
            return _file_uri(path)
        return None

    async def resolve(self, url: str) -> str:
        """Return a renderable URI for ``url``.

        Falls back to ``url`` itself when it yields no key or when the
        download fails; a failed download leaves nothing at the cache path.
        """
        key = self.key_for(url)
        if key is None:
            return url

        path = self.directory / key
        if path.exists():
            return _file_uri(path)

        self._in_flight[key] += 1
        try:
            await self._download(url, path)
        except (NetworkError, StorageError) as exc:
            LOGGER.warning("Could not cache %s, rendering remote: %s", url, exc)
            return url
        finally:
            self._in_flight[key] -= 1
            if not self._in_flight[key]:
                del self._in_flight[key]
        return _file_uri(path)

    def discard(self, url: str) -> bool:
        """Delete the cached copy of ``url``; return whether one existed."""
        path = self.path_for(url)
        if path is None or not path.exists():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise StorageError(f"Could not remove {path}: {exc}") from exc
        return True

    def clear(self) -> int:
        """Delete every cached file and return how many were removed."""
        if not self.directory.exists():
            return 0
        removed = 0
        for path in self.directory.iterdir():
            if not path.is_file():
                continue
            try:
                path.unlink()
            except OSError as exc:
                raise StorageError(f"Could not remove {path}: {exc}") from exc
            if not path.name.endswith(_PART_SUFFIX):
                removed += 1
        return removed

    async def _download(self, url: str, path: Path) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not create {self.directory}: {exc}") from exc

        partial = path.with_name(f".{path.name}.{uuid.uuid4().hex}{_PART_SUFFIX}")
        try:
            status = await self.downloader.download(url, partial)
            if not 200 <= status < 300:
                raise NetworkError(f"Download of {url} returned {status}", status_code=status)
            try:
                os.replace(partial, path)
            except OSError as exc:
                raise StorageError(f"Could not move download into {path}: {exc}") from exc
        finally:
            partial.unlink(missing_ok=True)


def _file_uri(path: Path) -> str:
    return f"file://{path}"


__all__ = [
    "AssetCache",
    "AssetState",
    "DEFAULT_OWNER_MARKERS",
    "Downloader",
    "HttpDownloader",
    "derive_key",
    "parse_key",
]
