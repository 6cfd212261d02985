import json
import secrets
import threading
from http import HTTPStatus
from typing import Any, Dict, Optional
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response
from websockets.sync.server import Server, ServerConnection, serve

from tail_relay.config import STATUS_PATH
from tail_relay.frames import ClientChannel
from tail_relay.protocol import SubscriptionHandler
from tail_relay.registry import SessionRegistry
from tail_relay.utils import log_error, log_info, now_ms

def new_client_id() -> str:
    return f"c_{now_ms()}_{secrets.token_hex(3)[:5]}"

def status_payload(registry: SessionRegistry) -> Dict[str, Any]:
    return {"sessions": registry.count(), "t": now_ms()}

class RelayServer:
    """WebSocket endpoint for tail subscriptions plus a GET /status probe.

    Each client connection runs in its own thread; when it ends, every
    session the client owns is torn down.
    """

    def __init__(self, handler: SubscriptionHandler, host: str, port: int):
        self.handler = handler
        self.registry = handler.registry
        self.host = host
        self.port = port
        self.server: Optional[Server] = None
        self.thread: Optional[threading.Thread] = None

    def process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        path = request.path.split("?", 1)[0]
        if path != STATUS_PATH:
            return None
        body = json.dumps(status_payload(self.registry))
        response = connection.respond(HTTPStatus.OK, body)
        del response.headers["Content-Type"]
        response.headers["Content-Type"] = "application/json"
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response

    def handle_connection(self, connection: ServerConnection) -> None:
        client = ClientChannel(new_client_id(), connection)
        log_info(f"client connected: {client.client_id}")
        try:
            for raw in connection:
                frame = self.handler.handle_message(client, raw)
                if frame is not None:
                    client.send(frame)
        except ConnectionClosed:
            pass
        except Exception as exc:
            log_error(f"connection error ({client.client_id}): {exc}")
        finally:
            client.mark_closed()
            removed = self.registry.remove_client(client.client_id)
            log_info(f"client disconnected: {client.client_id} (closed {removed} sessions, sent {client.frames_sent} frames)")

    def bind(self) -> Server:
        self.server = serve(
            self.handle_connection,
            self.host,
            self.port,
            process_request=self.process_request,
        )
        self.port = self.server.socket.getsockname()[1]
        return self.server

    def serve_forever(self) -> None:
        if self.server is None:
            self.bind()
        log_info(f"tail relay listening on ws://{self.host}:{self.port} (status at {STATUS_PATH})")
        self.server.serve_forever()

    def start(self) -> None:
        if self.server is None:
            self.bind()
        self.thread = threading.Thread(target=self.server.serve_forever, name="relay-server", daemon=True)
        self.thread.start()

    def shutdown(self) -> None:
        if self.server is not None:
            self.server.shutdown()
        closed = self.registry.close_all()
        if self.thread is not None:
            self.thread.join(timeout=5)
        log_info(f"shut down, closed {closed} sessions")
