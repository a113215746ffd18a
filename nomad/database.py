"""
Session storage for chat conversations.

Two backends with the same get / put / delete interface:
  • InMemorySessionStore: dict + idle TTL (default, single process)
  • SqlSessionStore: SQLite (or any SQLAlchemy URL), state kept as JSON
"""
import logging
import threading
import time
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import Column, DateTime, Float, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from nomad import config
from nomad.agents.ConversationAgent import ConversationState

logger = logging.getLogger(__name__)

Base = declarative_base()


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id = Column(String, primary_key=True)
    state_json = Column(Text, nullable=False)
    last_activity = Column(Float, nullable=False)  # epoch seconds
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SessionStore(Protocol):
    def get(self, session_id: str) -> Optional[ConversationState]: ...

    def put(self, state: ConversationState) -> None: ...

    def delete(self, session_id: str) -> bool: ...


class InMemorySessionStore:
    def __init__(self, ttl_seconds: int = config.SESSION_TTL_SECONDS, clock=time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, ConversationState] = {}
        self._lock = threading.Lock()

    def _expired(self, state: ConversationState) -> bool:
        return self._clock() - state.metadata.last_activity > self.ttl_seconds

    def get(self, session_id: str) -> Optional[ConversationState]:
        with self._lock:
            state = self._sessions.get(session_id)
            if state is not None and self._expired(state):
                logger.info("Session %s expired", session_id)
                del self._sessions[session_id]
                return None
            return state

    def put(self, state: ConversationState) -> None:
        with self._lock:
            self._sessions[state.session_id] = state

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None


class SqlSessionStore:
    def __init__(self, url: str = config.SESSION_DB_URL,
                 ttl_seconds: int = config.SESSION_TTL_SECONDS, clock=time.time):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, connect_args=connect_args)
        Base.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(bind=self.engine)
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def get(self, session_id: str) -> Optional[ConversationState]:
        db = self.Session()
        try:
            row = db.get(ChatSession, session_id)
            if row is None:
                return None
            if self._clock() - row.last_activity > self.ttl_seconds:
                logger.info("Session %s expired", session_id)
                db.delete(row)
                db.commit()
                return None
            return ConversationState.from_json(row.state_json)
        finally:
            db.close()

    def put(self, state: ConversationState) -> None:
        db = self.Session()
        try:
            row = db.get(ChatSession, state.session_id)
            if row is None:
                row = ChatSession(id=state.session_id)
                db.add(row)
            row.state_json = state.to_json()
            row.last_activity = state.metadata.last_activity
            db.commit()
        finally:
            db.close()

    def delete(self, session_id: str) -> bool:
        db = self.Session()
        try:
            row = db.get(ChatSession, session_id)
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True
        finally:
            db.close()


def build_session_store(backend: str = config.SESSION_BACKEND) -> SessionStore:
    if backend == "sql":
        return SqlSessionStore()
    return InMemorySessionStore()
