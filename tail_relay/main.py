import signal
import argparse
from tail_relay.config import config
from tail_relay.hosts import HostStore
from tail_relay.protocol import SubscriptionHandler
from tail_relay.registry import SessionRegistry
from tail_relay.server import RelayServer
from tail_relay.utils import log_error, log_info, make_log_dir


def build_server() -> RelayServer:
    registry = SessionRegistry()
    handler = SubscriptionHandler(
        registry,
        HostStore(config.HOSTS_FILE),
        verify_host_key=config.SSH_VERIFY_HOST_KEY,
        log_dir=make_log_dir(config.LOG_DIR),
    )
    return RelayServer(handler, config.LISTEN_HOST, config.LISTEN_PORT)


def main() -> None:
    # Pre-load from environment
    config.load_from_env()

    parser = argparse.ArgumentParser(
        description="Relay the live tail of remote log files to browser clients over WebSocket"
    )
    parser.add_argument("--listen", help="Bind address (overrides TAIL_RELAY_HOST env)")
    parser.add_argument("--port", type=int, help="Listen port (overrides TAIL_RELAY_PORT env)")
    parser.add_argument("--hosts-file", help="JSON file with SSH host credentials keyed by host id (overrides TAIL_RELAY_HOSTS_FILE env)")
    parser.add_argument("--log-dir", help="Directory for per-session JSONL journals (overrides TAIL_RELAY_LOG_DIR env)")
    parser.add_argument("--verify-host", action="store_true", help="Verify SSH host keys against known_hosts (default)")
    parser.add_argument("--no-verify-host", action="store_true", help="Accept unknown SSH host keys")

    args = parser.parse_args()

    # Apply args over env vars
    if args.listen: config.LISTEN_HOST = args.listen
    if args.port: config.LISTEN_PORT = args.port
    if args.hosts_file: config.HOSTS_FILE = args.hosts_file
    if args.log_dir: config.LOG_DIR = args.log_dir

    if args.no_verify_host:
        config.SSH_VERIFY_HOST_KEY = False
    elif args.verify_host:
        config.SSH_VERIFY_HOST_KEY = True

    if not config.HOSTS_FILE:
        parser.error("hosts file is required (via --hosts-file or TAIL_RELAY_HOSTS_FILE env)")

    server = build_server()
    server.bind()
    log_info(
        f"tail relay started. hosts_file={config.HOSTS_FILE} "
        f"log_dir={config.LOG_DIR or '-'} verify_host={config.SSH_VERIFY_HOST_KEY}"
    )

    def _terminate(signum, frame):
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, _terminate)

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        log_info("shutting down...")
    except Exception as exc:
        log_error(f"server error: {exc}")
        raise
    finally:
        server.shutdown()

if __name__ == "__main__":
    main()
