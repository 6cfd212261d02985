import threading
from typing import Any, Dict, List, Optional, Tuple

SessionKey = Tuple[str, str, str]

class SessionRegistry:
    """Live tail sessions keyed by (client_id, host_id, file_path).

    Every mutation holds one lock; sessions are closed after it is released.
    Sessions are closed by whoever removes them, except discard(), which a
    session uses to unregister itself.
    """

    def __init__(self):
        self.sessions: Dict[SessionKey, Any] = {}
        self.lock = threading.Lock()
        self.closed = False

    def replace(self, key: SessionKey, session: Any) -> bool:
        """Install session under key and close any previous one.

        Returns True if a previous session was replaced.
        """
        with self.lock:
            if self.closed:
                rejected = True
            else:
                rejected = False
                previous = self.sessions.pop(key, None)
                self.sessions[key] = session
        if rejected:
            session.close("registry closed")
            return False
        # callers start the new session only after this returns
        if previous is not None:
            previous.close("replaced")
        return previous is not None

    def remove(self, key: SessionKey, reason: str = "unsubscribed") -> bool:
        with self.lock:
            session = self.sessions.pop(key, None)
        if session is None:
            return False
        session.close(reason)
        return True

    def discard(self, key: SessionKey, session: Any) -> bool:
        with self.lock:
            if self.sessions.get(key) is not session:
                return False
            del self.sessions[key]
            return True

    def remove_client(self, client_id: str) -> int:
        with self.lock:
            owned = [key for key in self.sessions if key[0] == client_id]
            removed = [self.sessions.pop(key) for key in owned]
        for session in removed:
            session.close("client disconnected")
        return len(removed)

    def get(self, key: SessionKey) -> Optional[Any]:
        with self.lock:
            return self.sessions.get(key)

    def keys(self) -> List[SessionKey]:
        with self.lock:
            return list(self.sessions.keys())

    def count(self) -> int:
        with self.lock:
            return len(self.sessions)

    def close_all(self) -> int:
        with self.lock:
            self.closed = True
            sessions = list(self.sessions.values())
            self.sessions.clear()
        for session in sessions:
            session.close("shutdown")
        return len(sessions)
