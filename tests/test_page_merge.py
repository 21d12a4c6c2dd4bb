"""Tests for the pure page merge and collection reducer."""

from __future__ import annotations

from fieldbook.errors import NetworkError
from fieldbook.paging import (
    Collection,
    FetchFailed,
    FiltersChanged,
    Page,
    PageReceived,
    merge,
    reduce,
)


def _page(ids: list[int], *, number: int = 1, limit: int = 10, **extra) -> Page:
    return Page(items=[{"id": value} for value in ids], number=number, limit=limit, **extra)


def _collection(ids: list[int]) -> Collection:
    return merge(Collection.empty(), _page(ids, limit=len(ids) or 1))


def test_merge_drops_ids_already_present() -> None:
    collection = _collection([1, 2])

    merged = merge(collection, _page([2, 3], number=2))

    assert merged.ids() == [1, 2, 3]
    assert merged.id_set() == frozenset({1, 2, 3})


def test_merge_dedups_against_a_directly_built_collection() -> None:
    collection = Collection(items=({"id": 1}, {"id": 2}))

    merged = merge(collection, _page([2, 3], number=2))

    assert merged.ids() == [1, 2, 3]
    assert merge(merged, _page([2, 3], number=2)) == merged


def test_merge_with_custom_id_fields() -> None:
    collection = Collection(items=({"loanId": "L-1", "id": 9}, {"loanId": "L-2", "id": 9}))
    page = Page(items=[{"loanId": "L-2"}, {"loanId": "L-3", "id": 9}], number=2, limit=10)

    merged = merge(collection, page, id_fields=("loanId",))

    assert merged.ids(("loanId",)) == ["L-1", "L-2", "L-3"]
    assert merged.id_set(("loanId",)) == frozenset({"L-1", "L-2", "L-3"})


def test_merge_is_idempotent() -> None:
    collection = _collection([1, 2])
    page = _page([2, 3], number=2)

    once = merge(collection, page)
    twice = merge(once, page)

    assert twice == once


def test_merge_preserves_existing_order_and_page_order() -> None:
    collection = _collection([5, 1, 9])

    merged = merge(collection, _page([7, 1, 3, 5, 2], number=2))

    assert merged.ids() == [5, 1, 9, 7, 3, 2]


def test_merge_leaves_input_collection_untouched() -> None:
    collection = _collection([1])

    merge(collection, _page([2], number=2))

    assert collection.ids() == [1]
    assert collection.next_page == 2


def test_merge_drops_duplicates_within_one_page() -> None:
    merged = merge(Collection.empty(), _page([4, 4, 5]))

    assert merged.ids() == [4, 5]


def test_merge_reads_mongo_style_ids() -> None:
    page = Page(items=[{"_id": "a"}, {"id": "b"}, {"_id": "a", "name": "dup"}], limit=3)

    merged = merge(Collection.empty(), page)

    assert merged.ids() == ["a", "b"]
    assert merged.items[0] == {"_id": "a"}


def test_merge_skips_records_without_identifier() -> None:
    page = Page(items=[{"id": 1}, {"name": "orphan"}, {"id": 2}], limit=3)

    merged = merge(Collection.empty(), page)

    assert merged.ids() == [1, 2]


def test_merge_passes_other_fields_through() -> None:
    page = Page(items=[{"id": 1, "status": "Paid", "amount": 250.5, "meta": {"x": [1]}}])

    merged = merge(Collection.empty(), page)

    assert merged.items[0] == {"id": 1, "status": "Paid", "amount": 250.5, "meta": {"x": [1]}}


def test_has_more_follows_raw_page_length() -> None:
    full = merge(Collection.empty(), _page(list(range(10))))
    # Every record is a duplicate, but the page was still full.
    repeated = merge(full, _page(list(range(10)), number=2))
    short = merge(full, _page([10, 11], number=2))

    assert full.has_more is True
    assert repeated.has_more is True
    assert short.has_more is False


def test_explicit_has_more_wins_over_length() -> None:
    merged = merge(Collection.empty(), _page([1, 2], limit=10, has_more=True))
    stopped = merge(Collection.empty(), _page(list(range(10)), has_more=False))

    assert merged.has_more is True
    assert stopped.has_more is False


def test_total_pages_drives_has_more_when_present() -> None:
    first = merge(Collection.empty(), _page([1], number=1, total_pages=2))
    last = merge(first, _page([2], number=2, total_pages=2))

    assert first.has_more is True
    assert last.has_more is False


def test_cursor_advances_past_merged_page_only_forward() -> None:
    collection = merge(Collection.empty(), _page([1], number=1))
    collection = merge(collection, _page([2], number=2))
    replayed = merge(collection, _page([1], number=1))

    assert collection.next_page == 3
    assert replayed.next_page == 3


def test_reduce_applies_pages_of_current_generation() -> None:
    collection = Collection.empty(generation=3)

    updated = reduce(collection, PageReceived(3, _page([1, 2])))

    assert updated.ids() == [1, 2]
    assert updated.generation == 3


def test_reduce_ignores_stale_pages() -> None:
    collection = Collection.empty(generation=2)

    updated = reduce(collection, PageReceived(1, _page([1, 2])))

    assert updated is collection


def test_reduce_failure_keeps_collection() -> None:
    collection = _collection([1, 2])

    updated = reduce(collection, FetchFailed(0, NetworkError("offline")))

    assert updated is collection


def test_reduce_filters_changed_starts_over() -> None:
    collection = _collection([1, 2])

    updated = reduce(collection, FiltersChanged(4))

    assert updated.is_empty
    assert updated.has_more is True
    assert updated.next_page == 1
    assert updated.generation == 4
