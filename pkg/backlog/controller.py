"""
Board controller: the client-side workflow around one open project.

Holds the open project, its secret and the BoardState, and wraps every
mutation in snapshot → call → apply-or-restore. Mutations are refused while
another request is in flight (the busy flag), which keeps two overlapping
optimistic moves from corrupting the same snapshot.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .board import BoardState, empty_columns
from .client import ApiError, BacklogClient
from .session import Session, SessionStore

logger = logging.getLogger(__name__)


class BusyError(Exception):
    """Raised when a mutation is attempted while a request is in flight."""
    pass


class NoProjectError(Exception):
    """Raised when a board action is attempted with no project open."""
    pass


class BoardController:
    """Drives one board through a BacklogClient."""

    def __init__(self, client: BacklogClient, session_store: SessionStore):
        self.client = client
        self.session_store = session_store
        self.project: Optional[Dict[str, Any]] = None
        self.secret_key: str = ""
        self.board = BoardState()
        self.busy = False
        self.error = ""
        self.info = ""

    @property
    def columns(self):
        return self.board.columns

    @contextmanager
    def _busy(self):
        if self.busy:
            raise BusyError("Another request is still in progress.")
        self.busy = True
        try:
            yield
        finally:
            self.busy = False

    def _require_project(self) -> None:
        if not self.project or not self.secret_key:
            raise NoProjectError("No project is open.")

    # ── Loading ──

    def _fetch_board(self, project_id: str, secret_key: str) -> tuple:
        project = self.client.fetch_project(project_id, secret_key)["project"]
        columns = self.client.fetch_columns(project_id, secret_key)["columns"]
        return project, columns

    def _apply_board(self, project: Dict[str, Any], columns, secret_key: str) -> None:
        self.project = project
        self.secret_key = secret_key
        self.board.commit(columns)
        self.session_store.save(Session(project_id=project["id"], secret_key=secret_key))

    def restore(self) -> bool:
        """Reopen the project remembered by the session store, if any."""
        session = self.session_store.load()
        if session is None:
            return False
        with self._busy():
            try:
                project, columns = self._fetch_board(session.project_id, session.secret_key)
            except ApiError as e:
                logger.warning(f"Could not restore project {session.project_id}: {e.message}")
                self.error = e.message
                self._clear()
                return False
            self._apply_board(project, columns, session.secret_key)
        self.info = f"Welcome back to “{project['name']}”."
        return True

    def open_project(self, secret_key: str, project_hint: Optional[str] = None) -> Dict[str, Any]:
        """Open a board by secret, or by invite-link project id plus secret."""
        self.error = ""
        self.info = ""
        with self._busy():
            try:
                project_id = project_hint
                if not project_id:
                    project_id = self.client.access_project(secret_key)["project"]["id"]
                project, columns = self._fetch_board(project_id, secret_key)
            except ApiError as e:
                self.error = e.message
                raise
            self._apply_board(project, columns, secret_key)
        self.info = f"Loaded project “{project['name']}”."
        return project

    def create_project(self, name: str, secret_key: str) -> Dict[str, Any]:
        self.error = ""
        self.info = ""
        with self._busy():
            try:
                project = self.client.create_project(name, secret_key)["project"]
            except ApiError as e:
                self.error = e.message
                raise
            self._apply_board(project, empty_columns(), secret_key)
        self.info = f"Created project “{project['name']}”. Share the secret to collaborate."
        return project

    def refresh(self) -> None:
        """Re-fetch the open board from the server."""
        if not self.project or not self.secret_key:
            return
        with self._busy():
            self._refresh()

    def _refresh(self) -> None:
        try:
            project, columns = self._fetch_board(self.project["id"], self.secret_key)
        except ApiError as e:
            self.error = e.message
            return
        self._apply_board(project, columns, self.secret_key)

    def close(self) -> None:
        """Forget the open project (and the remembered session)."""
        self._clear()

    def _clear(self) -> None:
        self.project = None
        self.secret_key = ""
        self.board = BoardState()
        self.session_store.clear()

    def delete_project(self) -> None:
        self._require_project()
        self.error = ""
        with self._busy():
            try:
                self.client.delete_project(self.project["id"], self.secret_key)
            except ApiError as e:
                self.error = e.message
                raise
        self._clear()

    # ── Single-item mutations ──

    def add_item(self, status: str, title: str, description: str = "") -> Dict[str, Any]:
        self._require_project()
        self.error = ""
        previous = self.board.snapshot()
        with self._busy():
            try:
                created = self.client.create_item(
                    self.project["id"],
                    self.secret_key,
                    {"title": title, "description": description, "status": status},
                )["item"]
            except ApiError as e:
                self.board.revert(previous)
                self.error = e.message
                raise
            self.board.add_item(created)
        return created

    def update_item(self, item_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        self._require_project()
        self.error = ""
        previous = self.board.snapshot()
        with self._busy():
            try:
                updated = self.client.update_item(
                    self.project["id"], self.secret_key, item_id, updates
                )["item"]
            except ApiError as e:
                self.board.revert(previous)
                self.error = e.message
                raise
            self.board.replace_item(updated)
        return updated

    def delete_item(self, item_id: str) -> None:
        self._require_project()
        self.error = ""
        previous = self.board.snapshot()
        with self._busy():
            try:
                self.client.delete_item(self.project["id"], self.secret_key, item_id)
            except ApiError as e:
                self.board.revert(previous)
                self.error = e.message
                raise
            self.board.remove_item(item_id)

    # ── Drag and drop ──

    def move_item(
        self,
        source_status: str,
        source_index: int,
        dest_status: str,
        dest_index: int,
        item_id: Optional[str] = None,
    ) -> bool:
        """
        Optimistically move a card, then confirm with a bulk reorder.

        Returns True when the server accepted the new order. No-op drops and
        cards that vanished from the source slot return False without a
        request. A rejected reorder restores the pre-drag columns, records the
        error and re-fetches the board; the error is not re-raised. Any other
        failure gets the same rollback and re-fetch, then propagates.
        """
        self._require_project()
        with self._busy():
            previous = self.board.snapshot()
            if self.board.apply_move(source_status, source_index, dest_status, dest_index, item_id) is None:
                return False
            self.error = ""
            try:
                response = self.client.reorder_items(
                    self.project["id"], self.secret_key, self.board.column_ids()
                )
                self.board.commit(response["columns"])
            except ApiError as e:
                logger.warning(f"Reorder failed: {e.message}")
                self.board.revert(previous)
                self.error = e.message or "Failed to update order."
                self._refresh()
                return False
            except Exception:
                logger.exception("Reorder failed unexpectedly")
                self.board.revert(previous)
                self.error = "Failed to update order."
                self._refresh()
                raise
        return True

    # ── Invite links ──

    def invite_link(self, base_url: str) -> str:
        """base_url with ?project=<id> set; other query parameters are kept."""
        self._require_project()
        parts = urlsplit(base_url)
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "project"]
        query.append(("project", self.project["id"]))
        return urlunsplit(parts._replace(query=urlencode(query)))
