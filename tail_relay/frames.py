import json
import threading
from typing import Any, Dict, Optional
from websockets.exceptions import ConnectionClosed

from tail_relay.utils import log_error, now_ms

def log_frame(host_id: str, file_path: str, data: str) -> Dict[str, Any]:
    return {"type": "log", "hostId": host_id, "file": file_path, "data": data, "t": now_ms()}

def eof_frame(host_id: str, file_path: str) -> Dict[str, Any]:
    return {"type": "eof", "hostId": host_id, "file": file_path}

def error_frame(message: str) -> Dict[str, Any]:
    return {"type": "error", "error": message}

def pong_frame(t: Optional[int] = None) -> Dict[str, Any]:
    return {"type": "pong", "t": now_ms() if t is None else t}

class ClientChannel:
    """Outbound side of one client connection.

    Session worker threads and the connection thread share it, so sends are
    serialized. Frames sent after the peer went away are dropped.
    """

    def __init__(self, client_id: str, connection: Any):
        self.client_id = client_id
        self.connection = connection
        self.lock = threading.Lock()
        self.closed = False
        self.frames_sent = 0

    def send(self, frame: Dict[str, Any]) -> bool:
        text = json.dumps(frame, ensure_ascii=False)
        with self.lock:
            if self.closed:
                return False
            try:
                self.connection.send(text)
            except ConnectionClosed:
                self.closed = True
                return False
            except Exception as exc:
                log_error(f"send to {self.client_id} failed: {exc}")
                self.closed = True
                return False
            self.frames_sent += 1
            return True

    def mark_closed(self) -> None:
        with self.lock:
            self.closed = True
