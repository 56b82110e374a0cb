import os
import random
import re
import threading
from pathlib import Path
from typing import Callable, Dict, Optional

from pair_app.config import settings
from pair_app.core.exceptions import AllocationError, SessionNotFound
from pair_app.core.log import log
from pair_app.models.session import Session

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def generate_random_id() -> str:
    """8-digit numeric suffix"""
    return str(random.randint(10_000_000, 99_999_999))


def sanitize_phone(phone_number: str) -> str:
    return re.sub(r"[^\d]", "", phone_number or "")


class SessionRegistry:
    """Maps session ids to their directory and archive paths"""

    def __init__(self, base_dir: Optional[Path] = None, id_factory: Callable[[], str] = generate_random_id):
        self.base_dir = Path(base_dir or settings.sessions_dir)
        self.id_factory = id_factory
        self.sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def directory_for(self, session_id: str) -> Path:
        return self.base_dir / session_id

    def archive_for(self, session_id: str) -> Path:
        return self.base_dir / f"{session_id}.zip"

    def _build(self, session_id: str, phone_number: Optional[str] = None) -> Session:
        return Session(
            session_id=session_id,
            directory_path=self.directory_for(session_id),
            archive_path=self.archive_for(session_id),
            phone_number=phone_number
        )

    def _taken(self, session_id: str) -> bool:
        return session_id in self.sessions or self.directory_for(session_id).exists()

    def allocate(self, phone_number: str) -> Session:
        """Reserve a fresh session id for a pairing request and create its directory"""
        digits = sanitize_phone(phone_number)

        with self._lock:
            session_id = f"session-{digits}-{self.id_factory()}"
            while self._taken(session_id):
                log("REGISTRY", f"Session id {session_id} already in use, re-rolling")
                session_id = f"session-{digits}-{self.id_factory()}"

            session = self._build(session_id, phone_number=digits)
            # Reserve before touching the disk so concurrent callers skip this id
            self.sessions[session_id] = session

        try:
            os.makedirs(session.directory_path, exist_ok=True)
        except OSError as e:
            with self._lock:
                self.sessions.pop(session_id, None)
            raise AllocationError(session_id, e) from e

        log("REGISTRY", f"Created session directory: {session_id}")
        return session

    def ensure(self, session_id: str, phone_number: Optional[str] = None) -> Session:
        """Fixed-id allocation, used for the standing default session"""
        if not SESSION_ID_PATTERN.match(session_id):
            raise AllocationError(session_id, ValueError("invalid session id"))

        with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                session = self._build(session_id, phone_number=phone_number)
                self.sessions[session_id] = session

        if not session.directory_path.exists():
            try:
                os.makedirs(session.directory_path, exist_ok=True)
            except OSError as e:
                raise AllocationError(session_id, e) from e
            log("REGISTRY", f"Created session directory: {session_id}")

        return session

    def resolve(self, session_id: str) -> Session:
        if not SESSION_ID_PATTERN.match(session_id or ""):
            raise SessionNotFound(session_id)

        session = self.sessions.get(session_id)
        if session is not None:
            return session

        session = self._build(session_id)
        if session.directory_path.is_dir() or session.archive_path.is_file():
            return session

        raise SessionNotFound(session_id)

    def release(self, session_id: str):
        """Forget the in-memory record; directory and archive stay on disk"""
        with self._lock:
            self.sessions.pop(session_id, None)
