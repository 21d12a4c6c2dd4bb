"""Pure transitions for paginated collections.

``merge`` folds a page into a collection; ``reduce`` maps store events onto
collections so a screen's list state is always ``reduce(previous, event)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Sequence, Union

from fieldbook.errors import NetworkError

from .models import DEFAULT_ID_FIELDS, Collection, Page, id_of

LOGGER = logging.getLogger(__name__)


def merge(
    collection: Collection,
    page: Page,
    *,
    id_fields: Sequence[str] = DEFAULT_ID_FIELDS,
) -> Collection:
    """Append the items of ``page`` whose ids are not yet in ``collection``.

    Args:
        collection: Collection to grow.
        page: Fully received page.
        id_fields: Candidate identifier fields, checked in order.

    Returns:
        Collection: New collection; ``collection`` itself is left untouched.
    """
    seen = set(collection.id_set(id_fields))
    fresh = []
    for item in page.items:
        item_id = id_of(item, id_fields)
        if item_id is None:
            LOGGER.warning(
                "Skipping record without any of %s on page %d", list(id_fields), page.number
            )
            continue
        if item_id in seen:
            continue
        seen.add(item_id)
        fresh.append(item)

    return replace(
        collection,
        items=collection.items + tuple(fresh),
        has_more=page.more_available(),
        next_page=max(collection.next_page, page.number + 1),
    )


@dataclass(frozen=True, slots=True)
class PageReceived:
    generation: int
    page: Page


@dataclass(frozen=True, slots=True)
class FetchFailed:
    generation: int
    error: NetworkError


@dataclass(frozen=True, slots=True)
class FiltersChanged:
    generation: int


Event = Union[PageReceived, FetchFailed, FiltersChanged]


def reduce(
    collection: Collection,
    event: Event,
    *,
    id_fields: Sequence[str] = DEFAULT_ID_FIELDS,
) -> Collection:
    """Return the collection that follows ``event``.

    Page and failure events tagged with another generation are stale and
    leave the collection unchanged. A failure never changes the collection.
    """
    if isinstance(event, FiltersChanged):
        return Collection.empty(event.generation)
    if event.generation != collection.generation:
        LOGGER.debug(
            "Discarding %s for generation %d (current %d)",
            type(event).__name__,
            event.generation,
            collection.generation,
        )
        return collection
    if isinstance(event, PageReceived):
        return merge(collection, event.page, id_fields=id_fields)
    return collection


__all__ = [
    "merge",
    "reduce",
    "Event",
    "PageReceived",
    "FetchFailed",
    "FiltersChanged",
]
