import json
from typing import Any, Callable, Dict, Optional

from tail_relay.config import DEFAULT_INITIAL_LINES, MAX_INITIAL_LINES
from tail_relay.connector import open_tail
from tail_relay.frames import ClientChannel, error_frame, pong_frame
from tail_relay.hosts import HostStore
from tail_relay.registry import SessionRegistry
from tail_relay.session import TailSession
from tail_relay.utils import log_error, log_info, clamp_initial_lines, now_ms

def parse_message(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return {"success": False, "error": "Invalid message"}
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        return {"success": False, "error": "Invalid message"}
    if not isinstance(message, dict):
        return {"success": False, "error": "Invalid message"}
    return {"success": True, "message": message}

def normalize_host_id(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value
    return None

def normalize_file(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None

class SubscriptionHandler:
    def __init__(
        self,
        registry: SessionRegistry,
        hosts: HostStore,
        opener: Callable[..., Dict[str, Any]] = open_tail,
        verify_host_key: bool = True,
        log_dir: Optional[str] = None,
    ):
        self.registry = registry
        self.hosts = hosts
        self.opener = opener
        self.verify_host_key = verify_host_key
        self.log_dir = log_dir

    def subscribe(self, client: ClientChannel, host_id: str, file_path: str, initial_lines: Any = None) -> Dict[str, Any]:
        lines = clamp_initial_lines(initial_lines, DEFAULT_INITIAL_LINES, MAX_INITIAL_LINES)
        credential = self.hosts.lookup(host_id)
        if credential is None:
            return {"success": False, "error": "Host not found"}

        session = TailSession(
            client,
            host_id,
            file_path,
            lines,
            credential,
            self.registry,
            opener=self.opener,
            verify_host_key=self.verify_host_key,
            log_dir=self.log_dir,
        )
        replaced = self.registry.replace(session.key, session)
        session.start()
        log_info(
            f"subscribe {client.client_id} {host_id}:{file_path} lines={lines}"
            + (" (replaced)" if replaced else "")
        )
        return {"success": True, "session": session, "replaced": replaced, "initial_lines": lines}

    def unsubscribe(self, client: ClientChannel, host_id: str, file_path: str) -> Dict[str, Any]:
        removed = self.registry.remove((client.client_id, host_id, file_path))
        if removed:
            log_info(f"unsubscribe {client.client_id} {host_id}:{file_path}")
        return {"success": True, "removed": removed}

    def ping(self) -> Dict[str, Any]:
        return {"success": True, "t": now_ms()}

    def handle_message(self, client: ClientChannel, raw: Any) -> Optional[Dict[str, Any]]:
        """Apply one control message; returns the frame to send back, if any."""
        parsed = parse_message(raw)
        if not parsed["success"]:
            log_error(f"invalid message from {client.client_id}")
            return error_frame(parsed["error"])

        message = parsed["message"]
        kind = message.get("type")

        if kind == "ping":
            return pong_frame(self.ping()["t"])

        if kind in ("subscribe", "unsubscribe"):
            host_id = normalize_host_id(message.get("hostId"))
            file_path = normalize_file(message.get("file"))
            if host_id is None or file_path is None:
                return error_frame(f"Invalid {kind}: hostId and file are required")

            if kind == "unsubscribe":
                self.unsubscribe(client, host_id, file_path)
                return None

            try:
                result = self.subscribe(client, host_id, file_path, message.get("initialLines"))
            except Exception as exc:
                log_error(f"subscribe error ({host_id}:{file_path}): {exc}")
                return error_frame(f"Subscribe failed: {exc}")
            if not result["success"]:
                return error_frame(result["error"])
            return None

        return error_frame(f"Unknown message type: {kind}")
