"""Local image cache."""

from .cache import (
    DEFAULT_OWNER_MARKERS,
    AssetCache,
    AssetState,
    Downloader,
    HttpDownloader,
    derive_key,
    parse_key,
)

__all__ = [
    "AssetCache",
    "AssetState",
    "DEFAULT_OWNER_MARKERS",
    "Downloader",
    "HttpDownloader",
    "derive_key",
    "parse_key",
]
