"""
Session store for the progress-polling API.

One background worker writes progress / the final result for its session;
request handlers read it. All access goes through one lock. Entries leave the
store when the result is fetched, or when sweep() finds them older than the
TTL (abandoned sessions).
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

log = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class Session:
    created_at: float
    progress: float = 0.0
    message: str = "Queued"
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    done: bool = False


class SessionStore:
    def __init__(self, ttl_seconds: float = 900.0, clock: Clock = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        self._sweeper: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    # -- writer side --------------------------------------------------------

    def create(self) -> str:
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions[session_id] = Session(created_at=self._clock())
        return session_id

    def update_progress(self, session_id: str, progress: float, message: str) -> None:
        """Progress only moves forward; a stale lower value keeps the old one."""
        progress = max(0.0, min(1.0, float(progress)))
        with self._lock:
            s = self._sessions.get(session_id)
            if s is None or s.done:
                return
            if progress >= s.progress:
                s.progress = progress
                s.message = message

    def complete(self, session_id: str, result: Dict[str, Any]) -> None:
        with self._lock:
            s = self._sessions.get(session_id)
            if s is None:
                return
            s.result = result
            s.progress = 1.0
            s.message = "Complete"
            s.done = True

    def fail(self, session_id: str, error: str) -> None:
        with self._lock:
            s = self._sessions.get(session_id)
            if s is None:
                return
            s.error = error
            s.progress = 1.0
            s.message = f"Error: {error}"
            s.done = True

    # -- reader side --------------------------------------------------------

    def get_progress(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            s = self._sessions.get(session_id)
            if s is None:
                return None
            return {"progress": s.progress, "message": s.message}

    def get_error(self, session_id: str) -> Optional[str]:
        with self._lock:
            s = self._sessions.get(session_id)
            return s.error if s is not None else None

    def pop_result(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Result once; the session is removed when it is handed out."""
        with self._lock:
            s = self._sessions.get(session_id)
            if s is None or s.result is None:
                return None
            del self._sessions[session_id]
            return s.result

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    # -- expiry -------------------------------------------------------------

    def sweep(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        with self._lock:
            expired = [sid for sid, s in self._sessions.items()
                       if now - s.created_at > self.ttl_seconds]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            log.info("Swept %d expired sessions", len(expired))
        return len(expired)

    def start_sweeper(self, interval: float = 60.0) -> threading.Thread:
        if self._sweeper is not None and self._sweeper.is_alive():
            return self._sweeper

        def _loop() -> None:
            while not self._stop.wait(interval):
                self.sweep()

        self._stop.clear()
        self._sweeper = threading.Thread(target=_loop, name="session-sweeper", daemon=True)
        self._sweeper.start()
        return self._sweeper

    def stop_sweeper(self) -> None:
        self._stop.set()


__all__ = ["Session", "SessionStore"]
