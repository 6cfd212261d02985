import os
from typing import Optional

# ========= Static config =========
CONNECT_TIMEOUT = 30
KEEPALIVE_INTERVAL = 30
BUFFER_SIZE = 4096
READ_POLL_INTERVAL = 0.5

DEFAULT_INITIAL_LINES = 200
MAX_INITIAL_LINES = 2000

DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_LISTEN_PORT = 8087
DEFAULT_SSH_PORT = 22

STATUS_PATH = "/status"

# ========= Runtime Configuration =========
class ServerConfig:
    def __init__(self):
        self.LISTEN_HOST: str = DEFAULT_LISTEN_HOST
        self.LISTEN_PORT: int = DEFAULT_LISTEN_PORT
        self.HOSTS_FILE: Optional[str] = None
        self.LOG_DIR: Optional[str] = None
        self.SSH_VERIFY_HOST_KEY: bool = True

    def load_from_env(self):
        self.LISTEN_HOST = os.environ.get("TAIL_RELAY_HOST", self.LISTEN_HOST)
        self.LISTEN_PORT = int(os.environ.get("TAIL_RELAY_PORT", self.LISTEN_PORT))
        self.HOSTS_FILE = os.environ.get("TAIL_RELAY_HOSTS_FILE", self.HOSTS_FILE)
        self.LOG_DIR = os.environ.get("TAIL_RELAY_LOG_DIR", self.LOG_DIR)

        verify_host_env = os.environ.get("SSH_VERIFY_HOST_KEY")
        if verify_host_env is not None:
            self.SSH_VERIFY_HOST_KEY = verify_host_env.lower() in ("true", "1", "yes")

# Global instance
config = ServerConfig()
