"""
Flat JSON document backend.

The whole document ({"projects": [...], "items": [...]}) is read on every
call and rewritten on every mutation. Writes are atomic (temp file +
os.replace) and serialized within the process; separate processes writing
the same file can still overwrite each other's changes.
"""
import copy
import json
import logging
import os
import shutil
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .ordering import next_position, normalize_columns, plan_reorder
from .schema import (
    BacklogError,
    BacklogItem,
    NotFoundError,
    Project,
    StorageError,
    ValidationError,
    group_by_status,
    utc_now,
)
from .store import (
    DUPLICATE_SECRET,
    BacklogStore,
    apply_item_updates,
    validate_new_item,
    validate_project_fields,
)

logger = logging.getLogger(__name__)

DEFAULT_DATA = {"projects": [], "items": []}


class JsonFileStore(BacklogStore):
    """Single-document store for small deployments and tests."""

    backend = "file"

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._ensure_file()
        logger.warning(
            f"Using JSON file store at {self.path}: concurrent writers from other "
            "processes are not coordinated (last write wins)"
        )

    # ── Document I/O ──

    def _ensure_file(self) -> None:
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._write(copy.deepcopy(DEFAULT_DATA))

    def _read(self) -> Dict[str, Any]:
        """Load the document, recovering from a corrupt file."""
        with self._lock:
            self._ensure_file()
            try:
                data = json.loads(self.path.read_bytes().decode("utf-8"))
                if not isinstance(data, dict):
                    raise ValueError("top-level value is not an object")
                data.setdefault("projects", [])
                data.setdefault("items", [])
                self._check_shape(data)
                return data
            except (ValueError, KeyError, TypeError, BacklogError) as e:
                backup = self._backup_corrupt()
                logger.error(
                    f"Data file {self.path} is unreadable ({e}); copied to {backup} "
                    "and reset to an empty store"
                )
                data = copy.deepcopy(DEFAULT_DATA)
                self._write(data)
                return data

    @staticmethod
    def _check_shape(data: Dict[str, Any]) -> None:
        """Every record must deserialize; anything else counts as corruption."""
        for key, record_type in (("projects", Project), ("items", BacklogItem)):
            records = data[key]
            if not isinstance(records, list):
                raise TypeError(f"\"{key}\" is not a list")
            for raw in records:
                if not isinstance(raw, dict) or not raw.get("id"):
                    raise TypeError(f"\"{key}\" holds a record without an id")
                record_type.from_dict(raw)

    def _backup_corrupt(self) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        backup = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        shutil.copy2(self.path, backup)
        return backup

    def _write(self, data: Dict[str, Any]) -> None:
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            Path(tmp_path).unlink(missing_ok=True)
            logger.error(f"Failed to write {self.path}: {e}")
            raise StorageError(f"Failed to write data file: {e}") from e

    @staticmethod
    def _items(data: Dict[str, Any]) -> List[BacklogItem]:
        return [BacklogItem.from_dict(i) for i in data["items"]]

    @staticmethod
    def _find_item_index(data: Dict[str, Any], project_id: str, item_id: str) -> int:
        for index, raw in enumerate(data["items"]):
            if raw.get("id") == item_id and raw.get("projectId") == project_id:
                return index
        raise NotFoundError("Item not found.")

    # ── Projects ──

    def list_projects(self) -> List[Project]:
        return [Project.from_dict(p) for p in self._read()["projects"]]

    def get_project(self, project_id: str) -> Optional[Project]:
        for raw in self._read()["projects"]:
            if raw.get("id") == project_id:
                return Project.from_dict(raw)
        return None

    def get_project_by_secret(self, secret_key: str) -> Optional[Project]:
        secret_key = (secret_key or "").strip()
        if not secret_key:
            return None
        for raw in self._read()["projects"]:
            if raw.get("secretKey") == secret_key:
                return Project.from_dict(raw)
        return None

    def create_project(self, name: str, secret_key: str) -> Project:
        name, secret_key = validate_project_fields(name, secret_key)
        with self._lock:
            data = self._read()
            if any(p.get("secretKey") == secret_key for p in data["projects"]):
                raise ValidationError(DUPLICATE_SECRET)
            project = Project(name=name, secret_key=secret_key)
            data["projects"].append(project.to_dict(include_secret=True))
            self._write(data)
        logger.info(f"Created project {project.id} ({project.name})")
        return project

    def delete_project(self, project_id: str) -> bool:
        with self._lock:
            data = self._read()
            remaining = [p for p in data["projects"] if p.get("id") != project_id]
            if len(remaining) == len(data["projects"]):
                return False
            data["projects"] = remaining
            data["items"] = [i for i in data["items"] if i.get("projectId") != project_id]
            self._write(data)
        logger.info(f"Deleted project {project_id}")
        return True

    # ── Items ──

    def list_items(self, project_id: str) -> List[BacklogItem]:
        data = self._read()
        return [i for i in self._items(data) if i.project_id == project_id]

    def create_item(
        self,
        project_id: str,
        title: str,
        description: str = "",
        status: Optional[str] = None,
    ) -> BacklogItem:
        title, description, status = validate_new_item(title, description, status)
        with self._lock:
            data = self._read()
            if not any(p.get("id") == project_id for p in data["projects"]):
                raise NotFoundError("Project not found.")
            item = BacklogItem(
                project_id=project_id,
                title=title,
                description=description,
                status=status,
                position=next_position(self._items(data), project_id, status),
            )
            data["items"].append(item.to_dict())
            self._write(data)
        return item

    def update_item(self, project_id: str, item_id: str, updates: Dict[str, Any]) -> BacklogItem:
        with self._lock:
            data = self._read()
            index = self._find_item_index(data, project_id, item_id)
            siblings = self._items(data)
            item = apply_item_updates(
                BacklogItem.from_dict(data["items"][index]),
                updates,
                lambda status: next_position(siblings, project_id, status),
            )
            data["items"][index] = item.to_dict()
            self._write(data)
        return item

    def delete_item(self, project_id: str, item_id: str) -> BacklogItem:
        with self._lock:
            data = self._read()
            index = self._find_item_index(data, project_id, item_id)
            removed = BacklogItem.from_dict(data["items"].pop(index))
            self._write(data)
        return removed

    def reorder_items(self, project_id: str, columns: Any) -> Dict[str, List[Dict[str, Any]]]:
        normalized = normalize_columns(columns)
        with self._lock:
            data = self._read()
            if not any(p.get("id") == project_id for p in data["projects"]):
                raise NotFoundError("Project not found.")
            # Work on a copy; nothing reaches disk unless every move applies
            staged = copy.deepcopy(data)
            by_id = {
                raw["id"]: raw
                for raw in staged["items"]
                if raw.get("projectId") == project_id
            }
            now = utc_now()
            for item_id, status, position in plan_reorder(normalized):
                raw = by_id.get(item_id)
                if raw is None:
                    continue
                raw["status"] = status.value
                raw["position"] = position
                raw["updatedAt"] = now
            self._write(staged)
        items = [i for i in self._items(staged) if i.project_id == project_id]
        return group_by_status(items)
