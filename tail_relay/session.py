import os
import codecs
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from tail_relay.config import BUFFER_SIZE
from tail_relay.connector import open_tail
from tail_relay.frames import ClientChannel, log_frame, eof_frame, error_frame
from tail_relay.hosts import HostCredential
from tail_relay.registry import SessionKey
from tail_relay.utils import log_error, log_info, iso_now, json_line, safe_name

PENDING = "pending"
CONNECTING = "connecting"
STREAMING = "streaming"
CLOSED = "closed"

class TailSession:
    """One remote tail streaming to one client.

    A worker thread drives CONNECTING -> STREAMING -> CLOSED. close() may be
    called from any thread and never waits on a send; once it returns
    no new frame is started for this session.
    """

    def __init__(
        self,
        client: ClientChannel,
        host_id: str,
        file_path: str,
        initial_lines: int,
        credential: HostCredential,
        registry: Any,
        opener: Callable[..., Dict[str, Any]] = open_tail,
        verify_host_key: bool = True,
        log_dir: Optional[str] = None,
    ):
        self.client = client
        self.host_id = host_id
        self.file_path = file_path
        self.initial_lines = initial_lines
        self.credential = credential
        self.registry = registry
        self.opener = opener
        self.verify_host_key = verify_host_key

        self.key: SessionKey = (client.client_id, host_id, file_path)
        self.created_at = datetime.now()
        self.state = PENDING
        self.close_reason = ""
        self.process = None
        self.thread: Optional[threading.Thread] = None

        self.lock = threading.Lock()
        self.cancelled = False
        self.decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        self.log_path = self._build_log_path(log_dir)
        self._journal("session_created", initial_lines=initial_lines)

    def _build_log_path(self, log_dir: Optional[str]) -> Optional[str]:
        if not log_dir:
            return None
        stamp = self.created_at.strftime("%Y%m%d_%H%M%S")
        filename = (
            f"{safe_name(self.client.client_id)}__{safe_name(self.host_id)}__"
            f"{safe_name(self.file_path)}__{stamp}.log"
        )
        return os.path.join(log_dir, filename)

    def _journal(self, event: str, **fields: Any) -> None:
        if not self.log_path:
            return
        data = {
            "ts": iso_now(),
            "event": event,
            "client_id": self.client.client_id,
            "host_id": self.host_id,
            "file": self.file_path,
        }
        data.update(fields)
        json_line(self.log_path, data)

    def start(self) -> None:
        with self.lock:
            if self.cancelled or self.thread is not None:
                return
            self.state = CONNECTING
            self.thread = threading.Thread(
                target=self._run, name=f"tail-{self.host_id}", daemon=True
            )
        self.thread.start()

    def close(self, reason: str = "closed") -> None:
        with self.lock:
            if self.cancelled:
                return
            self.cancelled = True
            self.state = CLOSED
            self.close_reason = reason
            process = self.process
        if process is not None:
            process.close()
        self._journal("closed", reason=reason)

    def _emit(self, frame: Dict[str, Any]) -> bool:
        # frames come only from the worker thread; the send runs unlocked
        with self.lock:
            if self.cancelled:
                return False
        return self.client.send(frame)

    def _finish(self, reason: str, frame: Dict[str, Any], **fields: Any) -> None:
        with self.lock:
            if self.cancelled:
                return
            self.cancelled = True
            self.state = CLOSED
            self.close_reason = reason
            process = self.process
        self.registry.discard(self.key, self)
        if process is not None:
            process.close()
        self._journal(reason, **fields)
        self.client.send(frame)

    def _run(self) -> None:
        try:
            result = self.opener(
                self.credential,
                self.file_path,
                self.initial_lines,
                verify_host_key=self.verify_host_key,
            )
            if not result.get("success"):
                error = result.get("error", "unknown")
                if result.get("stage") == "exec":
                    self._finish("exec_failed", error_frame("Failed to start tail"), error=error)
                else:
                    self._finish("connect_failed", error_frame(f"SSH error: {error}"), error=error)
                return

            process = result["process"]
            with self.lock:
                late = self.cancelled
                if not late:
                    self.process = process
                    self.state = STREAMING
            if late:
                process.close()
                return

            self._journal("connected", command=result.get("command"))
            self._stream(process)
        except Exception as exc:
            log_error(f"tail {self.host_id}:{self.file_path} failed: {exc}")
            self._finish("stream_error", error_frame(f"SSH error: {exc}"), error=str(exc))

    def _stream(self, process: Any) -> None:
        while not self.cancelled:
            chunk = process.read(BUFFER_SIZE)
            if chunk is None:
                continue
            if not chunk:
                break
            text = self.decoder.decode(chunk)
            if text:
                self._emit(log_frame(self.host_id, self.file_path, text))

        if self.cancelled:
            return
        tail = self.decoder.decode(b"", final=True)
        if tail:
            self._emit(log_frame(self.host_id, self.file_path, tail))
        log_info(f"tail ended: {self.client.client_id} {self.host_id}:{self.file_path}")
        self._finish("eof", eof_frame(self.host_id, self.file_path))
