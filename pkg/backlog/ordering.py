"""
Column ordering rules shared by every storage backend.

- New items (and items moved by a single update) append to the end of their
  column: position = max(position in project+status) + 1, or 1 if empty.
- A bulk reorder rewrites status and position for every listed id, using
  the list index + 1. Unlisted items keep what they had.
"""
from typing import Any, Dict, Iterable, Iterator, List, Tuple

from .schema import BacklogItem, ItemStatus, ValidationError

ReorderPlan = Iterator[Tuple[str, ItemStatus, int]]


def next_position(items: Iterable[BacklogItem], project_id: str, status: ItemStatus) -> int:
    """Position that appends to the end of a project's column."""
    positions = [
        item.position
        for item in items
        if item.project_id == project_id and item.status == status
    ]
    if not positions:
        return 1
    return max(positions) + 1


def normalize_columns(columns: Any) -> Dict[ItemStatus, List[str]]:
    """
    Validate a reorder payload and return it keyed by ItemStatus.

    Every status is present in the result (missing ones are empty). Unknown
    status keys, non-list values, non-string ids and an id listed more than
    once all raise ValidationError.
    """
    if columns is None:
        columns = {}
    if not isinstance(columns, dict):
        raise ValidationError("columns must be an object keyed by status.")

    normalized: Dict[ItemStatus, List[str]] = {status: [] for status in ItemStatus}
    seen = set()
    for key, ids in columns.items():
        try:
            status = ItemStatus(key)
        except ValueError:
            raise ValidationError(f"Invalid status: {key}")
        if ids is None:
            continue
        if not isinstance(ids, list):
            raise ValidationError(f"columns.{key} must be a list of item ids.")
        for item_id in ids:
            if not isinstance(item_id, str) or not item_id:
                raise ValidationError(f"columns.{key} contains an invalid item id.")
            if item_id in seen:
                raise ValidationError(f"Item {item_id} is listed more than once.")
            seen.add(item_id)
        normalized[status] = list(ids)
    return normalized


def plan_reorder(columns: Dict[ItemStatus, List[str]]) -> ReorderPlan:
    """Yield (item_id, status, position) in fixed column order."""
    for status in ItemStatus.ordered():
        for index, item_id in enumerate(columns.get(status, [])):
            yield item_id, status, index + 1
