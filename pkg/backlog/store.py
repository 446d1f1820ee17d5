"""
Backlog storage contract and the SQLite backend.

Both backends (this one and file_store.JsonFileStore) implement BacklogStore
and raise the schema.BacklogError hierarchy instead of returning sentinels.
"""
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from .ordering import normalize_columns, plan_reorder
from .schema import (
    BacklogItem,
    ItemStatus,
    NotFoundError,
    Project,
    StorageError,
    ValidationError,
    group_by_status,
    normalize_text,
    parse_status,
    utc_now,
)

logger = logging.getLogger(__name__)

DUPLICATE_SECRET = "Secret key already exists. Choose a different one."


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Shared validation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def validate_project_fields(name: Any, secret_key: Any) -> tuple:
    """Trim and check a new project's name and secret."""
    name = normalize_text(name, "name")
    secret_key = normalize_text(secret_key, "secretKey")
    if not name:
        raise ValidationError("Project name is required.")
    if not secret_key:
        raise ValidationError("Secret key is required.")
    return name, secret_key


def validate_new_item(title: Any, description: Any, status: Any) -> tuple:
    title = normalize_text(title, "title")
    if not title:
        raise ValidationError("Item title is required.")
    description = normalize_text(description, "description")
    status = ItemStatus.default() if status is None else parse_status(status)
    return title, description, status


def apply_item_updates(
    item: BacklogItem,
    updates: Dict[str, Any],
    position_for: Callable[[ItemStatus], int],
) -> BacklogItem:
    """
    Apply a partial update in place.

    A changed status appends the item to the destination column via
    position_for(status); the gap left in the source column stays.
    """
    if not isinstance(updates, dict):
        raise ValidationError("Request body must be a JSON object.")

    if "title" in updates:
        title = normalize_text(updates["title"], "title")
        if not title:
            raise ValidationError("Item title cannot be empty.")
        item.title = title

    if "description" in updates:
        item.description = normalize_text(updates["description"], "description")

    if "status" in updates:
        status = parse_status(updates["status"])
        if status != item.status:
            item.position = position_for(status)
            item.status = status

    item.updated_at = utc_now()
    return item


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Contract
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class BacklogStore(ABC):
    """Storage interface shared by the SQLite and JSON file backends."""

    backend = "abstract"

    @abstractmethod
    def list_projects(self) -> List[Project]:
        ...

    @abstractmethod
    def get_project(self, project_id: str) -> Optional[Project]:
        ...

    @abstractmethod
    def get_project_by_secret(self, secret_key: str) -> Optional[Project]:
        ...

    @abstractmethod
    def create_project(self, name: str, secret_key: str) -> Project:
        ...

    @abstractmethod
    def delete_project(self, project_id: str) -> bool:
        """Delete a project and all of its items. False if it did not exist."""

    @abstractmethod
    def list_items(self, project_id: str) -> List[BacklogItem]:
        ...

    @abstractmethod
    def create_item(
        self,
        project_id: str,
        title: str,
        description: str = "",
        status: Optional[str] = None,
    ) -> BacklogItem:
        ...

    @abstractmethod
    def update_item(self, project_id: str, item_id: str, updates: Dict[str, Any]) -> BacklogItem:
        ...

    @abstractmethod
    def delete_item(self, project_id: str, item_id: str) -> BacklogItem:
        ...

    @abstractmethod
    def reorder_items(self, project_id: str, columns: Any) -> Dict[str, List[Dict[str, Any]]]:
        """Atomically rewrite status/position for every listed item; return the board."""

    def get_board(self, project_id: str) -> Dict[str, List[Dict[str, Any]]]:
        return group_by_status(self.list_items(project_id))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SQLite backend
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode (autocommit; transactions are explicit)."""
    conn = sqlite3.connect(db_path, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class SQLiteBacklogStore(BacklogStore):
    """Relational store; one connection per operation."""

    backend = "sqlite"

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "backlog-board" / "backlog.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        statuses = ", ".join(f"'{s.value}'" for s in ItemStatus)
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    secret_key TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS items (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL CHECK (status IN ({statuses})),
                    position INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_items_board ON items(project_id, status, position)"
            )

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """BEGIN IMMEDIATE … COMMIT, rolling back on any exception."""
        conn = _connect(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            logger.error(f"SQLite error on {self.db_path}: {e}")
            raise StorageError(f"Database error: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        conn = _connect(self.db_path)
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"SQLite error on {self.db_path}: {e}")
            raise StorageError(f"Database error: {e}") from e
        finally:
            conn.close()

    # ── Projects ──

    def list_projects(self) -> List[Project]:
        with self._reader() as conn:
            rows = conn.execute(
                "SELECT * FROM projects ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
        return [self._row_to_project(r) for r in rows]

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._reader() as conn:
            row = conn.execute(
                "SELECT * FROM projects WHERE id = ?", (project_id,)
            ).fetchone()
        return self._row_to_project(row) if row else None

    def get_project_by_secret(self, secret_key: str) -> Optional[Project]:
        secret_key = (secret_key or "").strip()
        if not secret_key:
            return None
        with self._reader() as conn:
            row = conn.execute(
                "SELECT * FROM projects WHERE secret_key = ?", (secret_key,)
            ).fetchone()
        return self._row_to_project(row) if row else None

    def create_project(self, name: str, secret_key: str) -> Project:
        name, secret_key = validate_project_fields(name, secret_key)
        project = Project(name=name, secret_key=secret_key)
        try:
            with self._transaction() as conn:
                existing = conn.execute(
                    "SELECT 1 FROM projects WHERE secret_key = ?", (secret_key,)
                ).fetchone()
                if existing:
                    raise ValidationError(DUPLICATE_SECRET)
                conn.execute(
                    "INSERT INTO projects (id, name, secret_key, created_at) VALUES (?, ?, ?, ?)",
                    (project.id, project.name, project.secret_key, project.created_at),
                )
        except sqlite3.IntegrityError:
            # Lost the race to another writer using the same secret
            raise ValidationError(DUPLICATE_SECRET)
        logger.info(f"Created project {project.id} ({project.name})")
        return project

    def delete_project(self, project_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            deleted = cur.rowcount > 0
        if deleted:
            logger.info(f"Deleted project {project_id}")
        return deleted

    # ── Items ──

    def list_items(self, project_id: str) -> List[BacklogItem]:
        with self._reader() as conn:
            return self._fetch_items(conn, project_id)

    def create_item(
        self,
        project_id: str,
        title: str,
        description: str = "",
        status: Optional[str] = None,
    ) -> BacklogItem:
        title, description, status = validate_new_item(title, description, status)
        with self._transaction() as conn:
            self._require_project(conn, project_id)
            item = BacklogItem(
                project_id=project_id,
                title=title,
                description=description,
                status=status,
                position=self._next_position(conn, project_id, status),
            )
            conn.execute(
                """
                INSERT INTO items
                (id, project_id, title, description, status, position, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (item.id, item.project_id, item.title, item.description,
                 item.status.value, item.position, item.created_at, item.updated_at),
            )
        return item

    def update_item(self, project_id: str, item_id: str, updates: Dict[str, Any]) -> BacklogItem:
        with self._transaction() as conn:
            item = self._require_item(conn, project_id, item_id)
            apply_item_updates(
                item, updates,
                lambda status: self._next_position(conn, project_id, status),
            )
            conn.execute(
                """
                UPDATE items SET title = ?, description = ?, status = ?, position = ?, updated_at = ?
                WHERE id = ? AND project_id = ?
                """,
                (item.title, item.description, item.status.value, item.position,
                 item.updated_at, item.id, project_id),
            )
        return item

    def delete_item(self, project_id: str, item_id: str) -> BacklogItem:
        with self._transaction() as conn:
            item = self._require_item(conn, project_id, item_id)
            conn.execute(
                "DELETE FROM items WHERE id = ? AND project_id = ?", (item_id, project_id)
            )
        return item

    def reorder_items(self, project_id: str, columns: Any) -> Dict[str, List[Dict[str, Any]]]:
        normalized = normalize_columns(columns)
        with self._transaction() as conn:
            self._require_project(conn, project_id)
            now = utc_now()
            for item_id, status, position in plan_reorder(normalized):
                # Ids from other projects or already deleted are skipped
                conn.execute(
                    """
                    UPDATE items SET status = ?, position = ?, updated_at = ?
                    WHERE id = ? AND project_id = ?
                    """,
                    (status.value, position, now, item_id, project_id),
                )
            items = self._fetch_items(conn, project_id)
        return group_by_status(items)

    # ── Helpers ──

    def _fetch_items(self, conn: sqlite3.Connection, project_id: str) -> List[BacklogItem]:
        rows = conn.execute(
            "SELECT * FROM items WHERE project_id = ? ORDER BY position ASC, created_at ASC",
            (project_id,),
        ).fetchall()
        return [self._row_to_item(r) for r in rows]

    def _next_position(self, conn: sqlite3.Connection, project_id: str, status: ItemStatus) -> int:
        row = conn.execute(
            "SELECT MAX(position) FROM items WHERE project_id = ? AND status = ?",
            (project_id, status.value),
        ).fetchone()
        return 1 if row[0] is None else row[0] + 1

    def _require_project(self, conn: sqlite3.Connection, project_id: str) -> None:
        row = conn.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,)).fetchone()
        if not row:
            raise NotFoundError("Project not found.")

    def _require_item(self, conn: sqlite3.Connection, project_id: str, item_id: str) -> BacklogItem:
        row = conn.execute(
            "SELECT * FROM items WHERE id = ? AND project_id = ?", (item_id, project_id)
        ).fetchone()
        if not row:
            raise NotFoundError("Item not found.")
        return self._row_to_item(row)

    @staticmethod
    def _row_to_project(row: sqlite3.Row) -> Project:
        return Project(
            id=row["id"],
            name=row["name"],
            secret_key=row["secret_key"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> BacklogItem:
        return BacklogItem(
            id=row["id"],
            project_id=row["project_id"],
            title=row["title"],
            description=row["description"] or "",
            status=ItemStatus(row["status"]),
            position=row["position"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
