from __future__ import annotations

import json
import queue
import threading
import time
from typing import Any, Callable

import pytest

from tail_relay.frames import ClientChannel
from tail_relay.hosts import HostCredential
from tail_relay.protocol import SubscriptionHandler
from tail_relay.registry import SessionRegistry
from tail_relay.utils import build_tail_command


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeProcess:
    """Stands in for a remote tail: the test feeds chunks, the session reads them."""

    def __init__(self) -> None:
        self.chunks: queue.Queue = queue.Queue()
        self.close_calls = 0
        self.lock = threading.Lock()

    def feed(self, chunk: bytes) -> None:
        self.chunks.put(chunk)

    def finish(self) -> None:
        self.chunks.put(b"")

    def fail(self, exc: Exception) -> None:
        self.chunks.put(exc)

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    def read(self, size: int = 4096) -> bytes | None:
        if self.closed:
            return b""
        try:
            item = self.chunks.get(timeout=0.02)
        except queue.Empty:
            return None
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        with self.lock:
            self.close_calls += 1


class FakeOpener:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.processes: list[FakeProcess] = []
        self.failure: dict[str, Any] | None = None
        self.gate: threading.Event | None = None

    def __call__(self, credential: HostCredential, file_path: str, initial_lines: int, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(
            {"credential": credential, "file": file_path, "initial_lines": initial_lines, **kwargs}
        )
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.failure is not None:
            return dict(self.failure)
        process = FakeProcess()
        self.processes.append(process)
        return {"success": True, "process": process, "command": build_tail_command(file_path, initial_lines)}


class FakeHostStore:
    def __init__(self, known: dict[str, HostCredential]) -> None:
        self.known = known
        self.lookups: list[str] = []

    def lookup(self, host_id: str) -> HostCredential | None:
        self.lookups.append(host_id)
        return self.known.get(host_id)


class FakeConnection:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.lock = threading.Lock()

    def send(self, text: str) -> None:
        with self.lock:
            self.sent.append(json.loads(text))

    def frames(self, kind: str | None = None) -> list[dict[str, Any]]:
        with self.lock:
            return [f for f in self.sent if kind is None or f.get("type") == kind]


@pytest.fixture
def credential() -> HostCredential:
    return HostCredential(host="10.0.0.3", port=22, username="ops", password="secret")


@pytest.fixture
def hosts(credential: HostCredential) -> FakeHostStore:
    return FakeHostStore({"3": credential})


@pytest.fixture
def opener() -> FakeOpener:
    return FakeOpener()


@pytest.fixture
def registry() -> SessionRegistry:
    reg = SessionRegistry()
    yield reg
    reg.close_all()


@pytest.fixture
def handler(registry: SessionRegistry, hosts: FakeHostStore, opener: FakeOpener) -> SubscriptionHandler:
    return SubscriptionHandler(registry, hosts, opener=opener, verify_host_key=False)


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def client(connection: FakeConnection) -> ClientChannel:
    return ClientChannel("c_test", connection)


class StalledConnection(FakeConnection):
    """A peer that stops reading: send() blocks until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def send(self, text: str) -> None:
        self.entered.set()
        self.release.wait(timeout=5)
        super().send(text)
