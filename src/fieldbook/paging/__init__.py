"""Paginated collection helpers."""

from .merger import (
    CollectionStore,
    Fetcher,
    MergeOutcome,
    MergeStatus,
    PageFetcher,
    page_from_response,
)
from .models import DEFAULT_ID_FIELDS, Collection, FetchResult, Item, Page, PageQuery, id_of
from .reducer import FetchFailed, FiltersChanged, PageReceived, merge, reduce

__all__ = [
    "Collection",
    "CollectionStore",
    "DEFAULT_ID_FIELDS",
    "FetchFailed",
    "FetchResult",
    "Fetcher",
    "FiltersChanged",
    "Item",
    "MergeOutcome",
    "MergeStatus",
    "Page",
    "PageFetcher",
    "PageQuery",
    "PageReceived",
    "id_of",
    "merge",
    "page_from_response",
    "reduce",
]
