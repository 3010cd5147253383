from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

from core.state import SessionMode, SessionState
from live_interview.schemas import Question
from live_interview.transcript.buffer import TranscriptBuffer

logger = logging.getLogger("live_interview.session.registry")


@dataclass
class Session:
    session_id: str
    client_conn: Any
    mode: SessionMode = SessionMode.LIVE
    asr_conn: Any = None
    buffer: TranscriptBuffer = field(default_factory=TranscriptBuffer)
    questions: list[Question] = field(default_factory=list)
    heartbeat_task: asyncio.Task | None = None
    state: SessionState = SessionState.INIT
    created_at: float = field(default_factory=time.time)

    def find_question(self, question_id: str) -> Question | None:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None


class SessionRegistry:
    def __init__(self):
        self._lock = Lock()
        self._sessions: dict[str, Session] = {}

    def create(self, client_conn, mode: SessionMode = SessionMode.LIVE) -> Session:
        session = Session(session_id=str(uuid.uuid4()), client_conn=client_conn, mode=mode)
        with self._lock:
            self._sessions[session.session_id] = session
        logger.info("Session created | session_id=%s mode=%s", session.session_id, mode.value)
        return session

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def destroy(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        if session.heartbeat_task and not session.heartbeat_task.done():
            session.heartbeat_task.cancel()
        session.heartbeat_task = None

        if session.asr_conn is not None:
            try:
                session.asr_conn.stop()
            except Exception as exc:
                logger.warning("ASR stop failed during destroy | session_id=%s err=%s", session_id, exc)
            session.asr_conn = None

        session.buffer.clear()
        session.questions = []
        session.state = SessionState.CLOSED
        logger.info("Session destroyed | session_id=%s", session_id)
        return True

    def active_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions.keys())

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


session_registry = SessionRegistry()
