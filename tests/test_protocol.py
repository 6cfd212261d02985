from __future__ import annotations

import json

import pytest
from conftest import wait_for

from tail_relay.protocol import normalize_host_id, parse_message
from tail_relay.session import STREAMING

KEY = ("c_test", "3", "/var/log/app.log")


def _msg(**fields) -> str:
    return json.dumps(fields)


def test_ping_returns_pong(handler, client, registry) -> None:
    frame = handler.handle_message(client, _msg(type="ping"))

    assert frame["type"] == "pong"
    assert isinstance(frame["t"], int)
    assert registry.count() == 0


@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        "[1, 2, 3]",
        '"subscribe"',
        b"\xff\xfe",
        _msg(type="subscribe", hostId="3"),
        _msg(type="subscribe", file="/var/log/app.log"),
        _msg(type="subscribe", hostId="", file="/var/log/app.log"),
        _msg(type="subscribe", hostId=True, file="/var/log/app.log"),
        _msg(type="subscribe", hostId="3", file=42),
        _msg(type="unsubscribe", hostId=["3"], file="/x"),
        _msg(type="tail"),
        _msg(hostId="3", file="/x"),
    ],
)
def test_malformed_message_gives_one_error(handler, client, connection, registry, opener, raw) -> None:
    assert handler.handle_message(client, _msg(type="subscribe", hostId="3", file="/var/log/app.log")) is None
    assert wait_for(lambda: opener.processes)

    frame = handler.handle_message(client, raw)

    assert frame["type"] == "error"
    assert frame["error"]
    assert registry.keys() == [KEY]
    assert not opener.processes[0].closed
    assert len(opener.calls) == 1


def test_subscribe_registers_and_streams(handler, client, connection, registry, opener) -> None:
    frame = handler.handle_message(
        client, _msg(type="subscribe", hostId=3, file="/var/log/app.log", initialLines=50)
    )

    assert frame is None
    assert registry.keys() == [KEY]
    assert wait_for(lambda: opener.processes and registry.get(KEY).state == STREAMING)
    assert opener.calls[0]["initial_lines"] == 50
    assert opener.calls[0]["credential"].host == "10.0.0.3"
    assert opener.calls[0]["verify_host_key"] is False

    opener.processes[0].feed(b"hello\n")
    assert wait_for(lambda: connection.frames("log"))
    log = connection.frames("log")[0]
    assert (log["hostId"], log["file"], log["data"]) == ("3", "/var/log/app.log", "hello\n")


@pytest.mark.parametrize(
    ("initial_lines", "expected"),
    [(5000, 2000), (-5, 200), ("abc", 200), (None, 200), (0, 0)],
)
def test_subscribe_clamps_initial_lines(handler, client, opener, initial_lines, expected) -> None:
    message = {"type": "subscribe", "hostId": "3", "file": "/var/log/app.log"}
    if initial_lines is not None:
        message["initialLines"] = initial_lines

    assert handler.handle_message(client, json.dumps(message)) is None
    assert wait_for(lambda: opener.calls)
    assert opener.calls[0]["initial_lines"] == expected


def test_unknown_host(handler, client, hosts, registry, opener) -> None:
    frame = handler.handle_message(client, _msg(type="subscribe", hostId="999", file="/x"))

    assert frame == {"type": "error", "error": "Host not found"}
    assert hosts.lookups == ["999"]
    assert registry.count() == 0
    assert opener.calls == []


def test_credentials_looked_up_per_subscribe(handler, client, hosts) -> None:
    handler.handle_message(client, _msg(type="subscribe", hostId="3", file="/a.log"))
    handler.handle_message(client, _msg(type="subscribe", hostId="3", file="/b.log"))

    assert hosts.lookups == ["3", "3"]


def test_duplicate_subscribe_replaces_session(handler, client, registry, opener) -> None:
    handler.handle_message(client, _msg(type="subscribe", hostId="3", file="/var/log/app.log"))
    assert wait_for(lambda: len(opener.processes) == 1)
    first = registry.get(KEY)

    handler.handle_message(client, _msg(type="subscribe", hostId="3", file="/var/log/app.log"))
    assert wait_for(lambda: len(opener.processes) == 2)

    assert registry.count() == 1
    assert registry.get(KEY) is not first
    assert wait_for(lambda: opener.processes[0].closed)
    assert opener.processes[0].close_calls == 1
    assert not opener.processes[1].closed


def test_unsubscribe_unknown_key_is_silent(handler, client, registry, opener) -> None:
    handler.handle_message(client, _msg(type="subscribe", hostId="3", file="/var/log/app.log"))

    frame = handler.handle_message(client, _msg(type="unsubscribe", hostId="3", file="/other.log"))

    assert frame is None
    assert registry.keys() == [KEY]


def test_unsubscribe_removes_session(handler, client, registry, opener) -> None:
    handler.handle_message(client, _msg(type="subscribe", hostId="3", file="/var/log/app.log"))
    assert wait_for(lambda: opener.processes and registry.get(KEY).state == STREAMING)

    assert handler.handle_message(client, _msg(type="unsubscribe", hostId="3", file="/var/log/app.log")) is None

    assert registry.count() == 0
    assert opener.processes[0].close_calls == 1


def test_parse_message_accepts_bytes() -> None:
    parsed = parse_message(b'{"type": "ping"}')
    assert parsed == {"success": True, "message": {"type": "ping"}}


def test_normalize_host_id() -> None:
    assert normalize_host_id(3) == "3"
    assert normalize_host_id("db-1") == "db-1"
    assert normalize_host_id("  ") is None
    assert normalize_host_id(False) is None
    assert normalize_host_id(None) is None
