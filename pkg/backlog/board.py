"""
Client-side column state with optimistic moves.

A drag-and-drop move is three explicit phases:

    snapshot = board.snapshot()           # deep copy, kept for rollback
    speculative = board.apply_move(...)   # new deep copy with the move applied
    board.commit(server_columns)          # on success: server is authoritative
    board.revert(snapshot)                # on failure: back to the pre-drag state

Snapshots and speculative states never share item dicts with the live state,
so mutating one cannot leak into another.
"""
import copy
from typing import Any, Dict, List, Optional

from .schema import STATUS_ORDER

Columns = Dict[str, List[Dict[str, Any]]]


def empty_columns() -> Columns:
    return {status: [] for status in STATUS_ORDER}


def ensure_columns(columns: Optional[Columns]) -> Columns:
    """Deep copy with every status key present."""
    result = empty_columns()
    for status, items in (columns or {}).items():
        result[status] = copy.deepcopy(list(items or []))
    return result


class BoardState:
    """The four columns as the client currently shows them."""

    def __init__(self, columns: Optional[Columns] = None):
        self.columns = ensure_columns(columns)

    def snapshot(self) -> Columns:
        return copy.deepcopy(self.columns)

    def apply_move(
        self,
        source_status: str,
        source_index: int,
        dest_status: str,
        dest_index: int,
        item_id: Optional[str] = None,
    ) -> Optional[Columns]:
        """
        Apply a drag-and-drop move to the live state.

        Returns the new columns, or None without touching anything when the
        drop is onto the same slot, or the item at source_index is gone (or is
        not item_id) because another operation got there first.
        """
        if source_status == dest_status and source_index == dest_index:
            return None
        if dest_status not in self.columns:
            return None

        speculative = copy.deepcopy(self.columns)
        source_items = speculative.get(source_status)
        if source_items is None or not 0 <= source_index < len(source_items):
            return None
        if item_id is not None and source_items[source_index].get("id") != item_id:
            return None

        moved = source_items.pop(source_index)
        moved["status"] = dest_status
        dest_items = speculative[dest_status]
        dest_items.insert(min(max(dest_index, 0), len(dest_items)), moved)

        self.columns = speculative
        return self.snapshot()

    def commit(self, columns: Columns) -> None:
        """Replace local state with the server's grouping."""
        self.columns = ensure_columns(columns)

    def revert(self, snapshot: Columns) -> None:
        self.columns = copy.deepcopy(snapshot)

    def column_ids(self) -> Dict[str, List[str]]:
        """Reorder payload: every status mapped to its ordered item ids."""
        return {
            status: [item["id"] for item in self.columns.get(status, [])]
            for status in STATUS_ORDER
        }

    # ── Confirmed single-item changes ──

    def add_item(self, item: Dict[str, Any]) -> None:
        self.columns.setdefault(item["status"], []).append(copy.deepcopy(item))

    def replace_item(self, item: Dict[str, Any]) -> None:
        """Swap in the server's copy of an item, moving columns if its status changed."""
        self.remove_item(item["id"])
        self.add_item(item)
        self.columns[item["status"]].sort(key=lambda i: i.get("position", 0))

    def remove_item(self, item_id: str) -> None:
        for status in self.columns:
            self.columns[status] = [i for i in self.columns[status] if i["id"] != item_id]

    def find(self, item_id: str) -> Optional[Dict[str, Any]]:
        for items in self.columns.values():
            for item in items:
                if item["id"] == item_id:
                    return item
        return None

    def counts(self) -> Dict[str, int]:
        return {status: len(self.columns.get(status, [])) for status in STATUS_ORDER}
