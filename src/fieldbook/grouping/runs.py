"""Compaction of ordered records into runs of equal key.

Used for repayment schedules, where long stretches of ``Paid`` or
``Pending`` installments collapse into one expandable row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence


_MISSING = object()


def key_by(field_name: str) -> Callable[[Mapping[str, Any]], Any]:
    """Return a key function reading ``field_name`` (None when absent)."""

    def _key(item: Mapping[str, Any]) -> Any:
        return item.get(field_name)

    return _key


status_of = key_by("status")


@dataclass(frozen=True, slots=True)
class Group:
    """A maximal run of adjacent items sharing one key.

    Attributes:
        key: Shared key of the run (the status, by default).
        start_item: First item of the run.
        end_item: Last item of the run.
        count: Number of items in the run.
        indices: Positions of the run's items in the source sequence.
    """

    key: Any
    start_item: Any
    end_item: Any
    count: int
    indices: tuple[int, ...]

    @property
    def status(self) -> Any:
        return self.key

    @property
    def spans_range(self) -> bool:
        """True when the run covers more than one item."""
        return self.count > 1


def group_runs(
    items: Iterable[Any],
    key_of: Callable[[Any], Any] = status_of,
) -> list[Group]:
    """Partition ``items`` into maximal runs of equal ``key_of`` value.

    A single left-to-right pass; input order is the grouping order, nothing
    is sorted. Concatenating every group's ``indices`` yields
    ``range(len(items))``.
    """
    groups: list[Group] = []
    current_key: Any = _MISSING
    start: Any = None
    last: Any = None
    indices: list[int] = []

    for index, item in enumerate(items):
        key = key_of(item)
        if current_key is _MISSING or key != current_key:
            if indices:
                groups.append(Group(current_key, start, last, len(indices), tuple(indices)))
            current_key = key
            start = item
            indices = []
        last = item
        indices.append(index)

    if indices:
        groups.append(Group(current_key, start, last, len(indices), tuple(indices)))
    return groups


@dataclass(slots=True)
class GroupExpansion:
    """Collapsed/expanded state of the groups shown on one screen.

    State is keyed by group position, so call :meth:`reset` whenever the
    groups are recomputed from a different collection.

    Attributes:
        expand_singletons: Treat one-item groups as always expanded.
    """

    expand_singletons: bool = True
    _expanded: set[int] = field(default_factory=set, init=False, repr=False)

    def toggle(self, index: int) -> bool:
        """Flip the state of group ``index`` and return the new state."""
        if index in self._expanded:
            self._expanded.discard(index)
            return False
        self._expanded.add(index)
        return True

    def is_expanded(self, index: int, group: Group | None = None) -> bool:
        if self.expand_singletons and group is not None and not group.spans_range:
            return True
        return index in self._expanded

    def visible_indices(self, groups: Sequence[Group]) -> list[int]:
        """Return item positions that are shown given the current state.

        Collapsed groups contribute their first item only, as the header row.
        """
        visible: list[int] = []
        for position, group in enumerate(groups):
            if self.is_expanded(position, group):
                visible.extend(group.indices)
            else:
                visible.append(group.indices[0])
        return visible

    def reset(self) -> None:
        self._expanded.clear()


__all__ = ["Group", "GroupExpansion", "group_runs", "key_by", "status_of"]
