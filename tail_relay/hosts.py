import os
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from tail_relay.config import CONNECT_TIMEOUT, DEFAULT_SSH_PORT
from tail_relay.utils import log_error, clamp_int

@dataclass(frozen=True)
class HostCredential:
    host: str
    port: int
    username: str
    password: Optional[str] = None
    private_key: Optional[str] = None
    key_path: Optional[str] = None
    passphrase: Optional[str] = None
    timeout: float = float(CONNECT_TIMEOUT)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Optional["HostCredential"]:
        host = record.get("host") or record.get("ip")
        username = record.get("username")
        if not host or not username:
            return None
        timeout = record.get("timeout", CONNECT_TIMEOUT)
        try:
            timeout = float(timeout) if timeout else float(CONNECT_TIMEOUT)
        except (TypeError, ValueError):
            timeout = float(CONNECT_TIMEOUT)
        return cls(
            host=str(host),
            port=clamp_int(record.get("port") or DEFAULT_SSH_PORT, DEFAULT_SSH_PORT, 1, 65535),
            username=str(username),
            password=record.get("password") or None,
            private_key=record.get("private_key") or None,
            key_path=record.get("key_path") or None,
            passphrase=record.get("passphrase") or None,
            timeout=timeout,
        )

class HostStore:
    """Host credentials backed by a JSON file keyed by host id.

    The file is re-read on every lookup so edits take effect for the next
    subscribe without a restart.
    """

    def __init__(self, path: Optional[str]):
        self.path = path

    def _load(self) -> Dict[str, Any]:
        if not self.path or not os.path.isfile(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except Exception as exc:
            log_error(f"hosts file read failed ({self.path}): {exc}")
            return {}
        if not isinstance(data, dict):
            log_error(f"hosts file must contain an object keyed by host id: {self.path}")
            return {}
        return data

    def lookup(self, host_id: str) -> Optional[HostCredential]:
        record = self._load().get(str(host_id))
        if not isinstance(record, dict):
            return None
        credential = HostCredential.from_record(record)
        if credential is None:
            log_error(f"host {host_id}: record is missing host or username")
        return credential
