import io
import socket
import threading
from typing import Any, Callable, Dict, Optional
import paramiko

from tail_relay.config import KEEPALIVE_INTERVAL, READ_POLL_INTERVAL, BUFFER_SIZE
from tail_relay.hosts import HostCredential
from tail_relay.utils import log_error, build_tail_command

_KEY_CLASSES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)

def discard_stderr(chunk: bytes) -> None:
    """Diagnostic output of the remote command is not forwarded."""
    return None

def load_private_key(text: str, passphrase: Optional[str]) -> paramiko.PKey:
    last_error: Optional[Exception] = None
    for key_cls in _KEY_CLASSES:
        try:
            return key_cls.from_private_key(io.StringIO(text.replace("\\n", "\n")), password=passphrase)
        except paramiko.SSHException as exc:
            last_error = exc
    raise paramiko.SSHException(f"unsupported private key: {last_error}")

class TailProcess:
    """A running remote tail: the SSH client (transport) and its exec channel.

    Both handles are released together by close(), channel first.
    """

    def __init__(
        self,
        client: paramiko.SSHClient,
        channel: paramiko.Channel,
        on_stderr: Callable[[bytes], None] = discard_stderr,
    ):
        self.client = client
        self.channel = channel
        self.on_stderr = on_stderr
        self.lock = threading.Lock()
        self.released = False

    def read(self, size: int = BUFFER_SIZE) -> Optional[bytes]:
        """Next chunk of stdout, b"" at EOF, None when nothing arrived in time."""
        channel = self.channel
        while channel.recv_stderr_ready():
            self.on_stderr(channel.recv_stderr(size))
        try:
            return channel.recv(size)
        except socket.timeout:
            return None

    def close(self) -> None:
        with self.lock:
            if self.released:
                return
            self.released = True

        try:
            self.channel.close()
        except Exception as exc:
            log_error(f"channel close failed: {exc}")

        try:
            self.client.close()
        except Exception as exc:
            log_error(f"transport close failed: {exc}")

def _connect(credential: HostCredential, verify_host_key: bool) -> paramiko.SSHClient:
    client = paramiko.SSHClient()
    if verify_host_key:
        client.load_system_host_keys()
    else:
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    has_secret = bool(credential.password or credential.private_key or credential.key_path)
    connect_kwargs: Dict[str, Any] = {
        "hostname": credential.host,
        "port": credential.port,
        "username": credential.username,
        "timeout": credential.timeout,
        "banner_timeout": credential.timeout,
        "auth_timeout": credential.timeout,
        "allow_agent": not has_secret,
        "look_for_keys": not has_secret,
    }
    if credential.password:
        connect_kwargs["password"] = credential.password
    if credential.private_key:
        connect_kwargs["pkey"] = load_private_key(credential.private_key, credential.passphrase)
    elif credential.key_path:
        connect_kwargs["key_filename"] = credential.key_path
        if credential.passphrase:
            connect_kwargs["passphrase"] = credential.passphrase

    try:
        client.connect(**connect_kwargs)
    except Exception:
        client.close()
        raise

    transport = client.get_transport()
    if transport:
        transport.set_keepalive(KEEPALIVE_INTERVAL)
    return client

def open_tail(
    credential: HostCredential,
    file_path: str,
    initial_lines: int,
    verify_host_key: bool = True,
    on_stderr: Callable[[bytes], None] = discard_stderr,
) -> Dict[str, Any]:
    try:
        client = _connect(credential, verify_host_key)
    except Exception as exc:
        return {"success": False, "stage": "connect", "error": str(exc) or exc.__class__.__name__}

    command = build_tail_command(file_path, initial_lines)
    try:
        _stdin, stdout, _stderr = client.exec_command(command, get_pty=False)
        channel = stdout.channel
        channel.settimeout(READ_POLL_INTERVAL)
    except Exception as exc:
        try:
            client.close()
        except Exception as close_exc:
            log_error(f"transport close failed: {close_exc}")
        return {"success": False, "stage": "exec", "error": str(exc) or exc.__class__.__name__}

    return {"success": True, "process": TailProcess(client, channel, on_stderr=on_stderr), "command": command}
