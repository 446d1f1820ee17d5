"""
Session stores: remember the last opened project and its secret.

The controller is handed one of these; it never reaches for global state.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class Session:
    project_id: str
    secret_key: str


class SessionStore(ABC):

    @abstractmethod
    def load(self) -> Optional[Session]:
        ...

    @abstractmethod
    def save(self, session: Session) -> None:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class MemorySessionStore(SessionStore):
    """Keeps the session for the life of the process only."""

    def __init__(self, session: Optional[Session] = None):
        self._session = session

    def load(self) -> Optional[Session]:
        return self._session

    def save(self, session: Session) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None


class JsonFileSessionStore(SessionStore):
    """Persists the session as a small JSON file (e.g. ~/.config/backlog/session.json)."""

    def __init__(self, path: str):
        self.path = Path(path).expanduser()

    def load(self) -> Optional[Session]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            session = Session(project_id=data["projectId"], secret_key=data["secretKey"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable session file {self.path}: {e}")
            self.clear()
            return None
        if not session.project_id or not session.secret_key:
            self.clear()
            return None
        return session

    def save(self, session: Session) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = asdict(session)
        self.path.write_text(
            json.dumps({"projectId": data["project_id"], "secretKey": data["secret_key"]}),
            encoding="utf-8",
        )

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
