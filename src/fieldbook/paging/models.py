"""Value types for paginated collections."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Hashable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from fieldbook.errors import NetworkError

Item = Mapping[str, Any]

DEFAULT_ID_FIELDS: tuple[str, ...] = ("_id", "id")


def id_of(item: Item, id_fields: Sequence[str] = DEFAULT_ID_FIELDS) -> Hashable | None:
    """Return the first present identifier of ``item``, or None."""
    for name in id_fields:
        value = item.get(name)
        if value is not None:
            return value
    return None


class PageQuery(BaseModel):
    """Describes how one list screen asks the server for pages.

    Attributes:
        endpoint: RPC endpoint path.
        limit: Requested page size.
        items_key: Key holding the item list when ``data`` is an object.
        filters: Query parameters sent with every page.
    """

    model_config = ConfigDict(frozen=True)

    endpoint: str
    limit: int = Field(default=10, ge=1)
    items_key: Optional[str] = None
    filters: Dict[str, Any] = Field(default_factory=dict)


class Page(BaseModel):
    """One fully received page of results.

    Attributes:
        items: Records in server order.
        number: Page number that was requested (first page is 1).
        limit: Page size that was requested.
        has_more: Explicit server flag, when provided.
        total_pages: Server-reported page count, when provided.
    """

    model_config = ConfigDict(frozen=True)

    items: List[Dict[str, Any]] = Field(default_factory=list)
    number: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1)
    has_more: Optional[bool] = None
    total_pages: Optional[int] = None

    def more_available(self) -> bool:
        """Return whether another page should be requested after this one."""
        if self.has_more is not None:
            return self.has_more
        if self.total_pages is not None:
            return self.number < self.total_pages
        return len(self.items) == self.limit


@dataclass(frozen=True, slots=True)
class Collection:
    """Ordered, deduplicated items assembled from one or more pages.

    Attributes:
        items: Items in first-seen order.
        has_more: Whether another page may exist.
        next_page: Page number the next fetch requests.
        generation: Filter generation this collection belongs to.
    """

    items: tuple[Item, ...] = ()
    has_more: bool = True
    next_page: int = 1
    generation: int = 0

    @classmethod
    def empty(cls, generation: int = 0) -> "Collection":
        """Return the collection a screen starts from."""
        return cls(generation=generation)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def ids(self, id_fields: Sequence[str] = DEFAULT_ID_FIELDS) -> list[Hashable | None]:
        """Return item identifiers in collection order."""
        return [id_of(item, id_fields) for item in self.items]

    def id_set(self, id_fields: Sequence[str] = DEFAULT_ID_FIELDS) -> frozenset[Hashable]:
        """Return the identifiers present in the collection, ignoring id-less items."""
        found = (id_of(item, id_fields) for item in self.items)
        return frozenset(item_id for item_id in found if item_id is not None)


@dataclass(frozen=True, slots=True)
class FetchResult:
    """Outcome of one fetch: a page or the error that prevented it."""

    page: Page | None = None
    error: NetworkError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.page is not None


__all__ = [
    "Item",
    "DEFAULT_ID_FIELDS",
    "id_of",
    "PageQuery",
    "Page",
    "Collection",
    "FetchResult",
]
