# state.py
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, Field

STARTING  = "Starting"
COMPLETED = "Completed"
CANCELLED = "Cancelled"
FAILED    = "Failed"

TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED, FAILED})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(BaseModel):
    id: str
    operation: str
    status: str = STARTING
    progress: int = 0
    startTime: datetime = Field(default_factory=utcnow)
    settings: Dict[str, Any] = Field(default_factory=dict)
    results: Dict[str, Any] = Field(default_factory=dict)
    success: bool = False
    error: Optional[str] = None   # only set with FAILED

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def elapsed_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        return (now - self.startTime).total_seconds()


class SessionStore:
    """In-memory sessions keyed by id, shared by the router, the workers and the reaper."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def create(self, operation: str, settings: Optional[Dict[str, Any]] = None) -> Session:
        session_id = str(uuid.uuid4())
        while session_id in self._sessions:
            session_id = str(uuid.uuid4())
        session = Session(id=session_id, operation=operation, settings=settings or {})
        self._sessions[session_id] = session
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def set(self, session_id: str, session: Session) -> None:
        self._sessions[session_id] = session

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def expired(self, max_age: timedelta, now: Optional[datetime] = None) -> List[str]:
        now = now or utcnow()
        return [sid for sid, s in self._sessions.items() if now - s.startTime > max_age]

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))
