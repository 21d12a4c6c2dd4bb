"""Fetch pages from the back office and fold them into a screen's collection."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from pydantic import ValidationError

from fieldbook.api import RpcClient, RpcResponse
from fieldbook.errors import ConcurrencyGuardViolation, FieldbookError, NetworkError, PayloadError

from .models import DEFAULT_ID_FIELDS, Collection, FetchResult, Page, PageQuery
from .reducer import FetchFailed, FiltersChanged, PageReceived, reduce

LOGGER = logging.getLogger(__name__)


class Fetcher(Protocol):
    """Anything that can produce one page for a page number and filter set."""

    async def fetch(self, page: int, filters: Mapping[str, Any]) -> FetchResult: ...


def page_from_response(
    response: RpcResponse,
    *,
    number: int,
    limit: int,
    items_key: str | None = None,
) -> Page:
    """Build a :class:`Page` from a response envelope.

    ``data`` is either the item list itself or an object holding the list
    under ``items_key`` next to an optional ``totalPages``. A top-level
    ``pagination.totalPages`` is honored as well.

    Raises:
        PayloadError: If the server reported an error or the payload has no item list.
    """
    if not response.ok:
        raise PayloadError(response.message or f"Server reported status {response.status!r}")

    data = response.data
    total_pages = None
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict) and items_key:
        items = data.get(items_key)
        total_pages = data.get("totalPages")
    else:
        raise PayloadError(f"Expected a list of records, got {type(data).__name__}")

    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise PayloadError(f"Field {items_key or 'data'!r} is not a list of records")
    if response.pagination and response.pagination.get("totalPages") is not None:
        total_pages = response.pagination["totalPages"]

    try:
        return Page(
            items=items,
            number=number,
            limit=limit,
            has_more=response.has_more,
            total_pages=total_pages,
        )
    except ValidationError as exc:
        raise PayloadError(f"Invalid pagination data: {exc}") from exc


class PageFetcher:
    """Fetch pages of one query through the RPC client."""

    def __init__(self, client: RpcClient, query: PageQuery) -> None:
        self.client = client
        self.query = query

    async def fetch(self, page: int, filters: Mapping[str, Any]) -> FetchResult:
        """Request ``page``; failures are returned in the result, never raised."""
        params = {**self.query.filters, **filters, "page": page, "limit": self.query.limit}
        try:
            response = await self.client.call(self.query.endpoint, "GET", query=params)
            return FetchResult(
                page=page_from_response(
                    response,
                    number=page,
                    limit=self.query.limit,
                    items_key=self.query.items_key,
                )
            )
        except NetworkError as exc:
            LOGGER.info("Fetching page %d of %s failed: %s", page, self.query.endpoint, exc)
            return FetchResult(error=exc)


class MergeStatus(str, enum.Enum):
    MERGED = "merged"
    FAILED = "failed"
    DROPPED = "dropped"
    EXHAUSTED = "exhausted"
    STALE = "stale"


@dataclass(frozen=True, slots=True)
class MergeOutcome:
    """What one ``merge_from_server`` call did.

    Attributes:
        status: Result category.
        collection: Collection after the call.
        added: Number of new items appended.
        error: Failure or guard marker, when relevant.
        page: Page number that was requested, if a fetch was issued.
    """

    status: MergeStatus
    collection: Collection
    added: int = 0
    error: FieldbookError | None = None
    page: int | None = None

    @property
    def terminal(self) -> bool:
        """True when the first page failed and nothing can be shown."""
        return self.status is MergeStatus.FAILED and self.page == 1 and self.collection.is_empty


class CollectionStore:
    """Own the collection behind one list screen.

    Loads are single-slot: while one ``merge_from_server`` is awaiting its
    fetch, further calls return immediately as ``DROPPED``. ``reset`` and
    ``close`` bump the generation so a response that arrives afterwards is
    discarded instead of applied.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        filters: Mapping[str, Any] | None = None,
        id_fields: Sequence[str] = DEFAULT_ID_FIELDS,
    ) -> None:
        self._fetcher = fetcher
        self._filters = dict(filters or {})
        self._id_fields = tuple(id_fields)
        self._generation = 0
        self._collection = Collection.empty(self._generation)
        self._busy = False
        self._closed = False

    @property
    def collection(self) -> Collection:
        return self._collection

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def filters(self) -> dict[str, Any]:
        return dict(self._filters)

    @property
    def generation(self) -> int:
        return self._generation

    async def merge_from_server(self) -> MergeOutcome:
        """Fetch the next page and merge it into the collection."""
        if self._busy:
            LOGGER.debug("Load already in flight; dropping request")
            return MergeOutcome(
                MergeStatus.DROPPED,
                self._collection,
                error=ConcurrencyGuardViolation("a load is already in flight"),
            )
        if self._closed:
            return MergeOutcome(MergeStatus.STALE, self._collection)
        if not self._collection.has_more:
            return MergeOutcome(MergeStatus.EXHAUSTED, self._collection)

        # No await between the check above and this assignment.
        self._busy = True
        generation = self._generation
        page_number = self._collection.next_page
        try:
            result = await self._fetcher.fetch(page_number, dict(self._filters))
        finally:
            if generation == self._generation:
                self._busy = False

        if generation != self._generation:
            LOGGER.debug("Discarding page %d from generation %d", page_number, generation)
            return MergeOutcome(MergeStatus.STALE, self._collection, page=page_number)

        if not result.ok:
            error = result.error or NetworkError("fetch returned no page")
            self._collection = reduce(
                self._collection, FetchFailed(generation, error), id_fields=self._id_fields
            )
            return MergeOutcome(
                MergeStatus.FAILED, self._collection, error=error, page=page_number
            )

        before = len(self._collection)
        self._collection = reduce(
            self._collection, PageReceived(generation, result.page), id_fields=self._id_fields
        )
        return MergeOutcome(
            MergeStatus.MERGED,
            self._collection,
            added=len(self._collection) - before,
            page=page_number,
        )

    def reset(self, filters: Mapping[str, Any] | None = None) -> Collection:
        """Start over from the first page, optionally with new filters."""
        if filters is not None:
            self._filters = dict(filters)
        self._generation += 1
        self._collection = reduce(self._collection, FiltersChanged(self._generation))
        self._busy = False
        self._closed = False
        return self._collection

    def close(self) -> None:
        """Discard any in-flight result; the screen is going away."""
        self._generation += 1
        self._busy = False
        self._closed = True


__all__ = [
    "Fetcher",
    "PageFetcher",
    "page_from_response",
    "MergeStatus",
    "MergeOutcome",
    "CollectionStore",
]
