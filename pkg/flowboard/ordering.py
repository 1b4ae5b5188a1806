"""
Explicit display order for columns and tasks.

A stored order list can drift from the real set of ids (a task moved away
from a column, a column created by an older client). Every read reconciles
the stored list against the ids that actually exist:

  - ids in the list that no longer exist are dropped
  - ids that exist but are missing from the list are appended, in the order
    they were discovered

Reconciliation is pure and idempotent. It never writes back; a repaired
order is only persisted by the next explicit mutation.
"""
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

from .errors import NotFoundError

T = TypeVar("T")


def reconcile_order(stored: Sequence[str], existing: Iterable[str]) -> List[str]:
    """Repair a stored order list against the set of ids that exist."""
    existing_list = list(dict.fromkeys(existing))
    present = set(existing_list)
    seen = set()
    ordered: List[str] = []
    for item_id in stored:
        if item_id in present and item_id not in seen:
            ordered.append(item_id)
            seen.add(item_id)
    for item_id in existing_list:
        if item_id not in seen:
            ordered.append(item_id)
            seen.add(item_id)
    return ordered


def arrange(items: Iterable[T], order: Sequence[str], key: Callable[[T], str]) -> List[T]:
    """Return items sorted by the reconciled order of their keys."""
    by_id = {}
    for item in items:
        by_id.setdefault(key(item), item)
    return [by_id[item_id] for item_id in reconcile_order(order, by_id.keys())]


def clamp_index(index: Optional[int], length: int) -> int:
    """Clamp an insertion index into [0, length]; None means append."""
    if index is None:
        return length
    if index < 0:
        return 0
    return min(index, length)


def remove_item(order: Sequence[str], item_id: str) -> List[str]:
    return [i for i in order if i != item_id]


def insert_item(order: Sequence[str], item_id: str, index: Optional[int] = None) -> List[str]:
    """Insert item_id at index (default: append). Any earlier copy is removed first."""
    result = remove_item(order, item_id)
    result.insert(clamp_index(index, len(result)), item_id)
    return result


def move_item(order: Sequence[str], item_id: str, target_index: int) -> List[str]:
    """Move an existing id to target_index (clamped to the valid range)."""
    if item_id not in order:
        raise NotFoundError("item", item_id)
    return insert_item(order, item_id, target_index)


def is_permutation(order: Sequence[str], ids: Iterable[str]) -> bool:
    """True if order lists every id exactly once and nothing else."""
    ids = list(ids)
    return len(order) == len(ids) and set(order) == set(ids) and len(set(order)) == len(order)
