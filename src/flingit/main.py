"""
FlingIt - Zero-click file relay

Devices that connect to the same relay from the same network address are
paired automatically; files sent by one arrive at the other.

Commands:
    flingit serve               Run the relay server
    flingit send FILE...        Send files to the paired device
    flingit receive             Wait for files and save them
    flingit config              Show/edit configuration
"""
import sys
import signal
import logging
import argparse
import threading
from pathlib import Path

from flingit import config
from flingit.agent import FlingAgent
from flingit.server.server import RelayServer
from flingit.common.discovery import parse_server_address
from flingit.common.errors import ErrorCode, get_error, get_error_by_name, get_error_from_exception, format_error
from flingit.common.user_config import get_config, get_config_manager, print_config
from flingit.common.chunked_transfer import ProgressTracker, format_bytes

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    handlers = [logging.StreamHandler(sys.stdout)]
    try:
        config.get_data_dir()
        handlers.append(logging.FileHandler(config.LOG_FILE))
    except OSError as e:
        print(f"[WARNING] Cannot write log file {config.LOG_FILE}: {e}")

    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def _server_address(args):
    """--server argument, if given, as (host, port)"""
    if not args.server:
        return None
    try:
        return parse_server_address(args.server)
    except ValueError as e:
        print(f"[ERROR] Invalid --server value: {e}")
        sys.exit(2)


def _connect(agent: FlingAgent, timeout: float) -> bool:
    if not agent.connect():
        print(f"\n{get_error(ErrorCode.SERVER_NOT_FOUND)}")
        return False

    print(f"Connected to relay {agent.server[0]}:{agent.server[1]}")
    print("Waiting for another device on this network...")
    if not agent.wait_for_pairing(timeout=timeout):
        if agent.last_error:
            print(f"\n{get_error_by_name(agent.last_error.get('code', ''))}")
        else:
            print(f"\n{get_error(ErrorCode.PAIRING_UNAVAILABLE)}")
        return False

    print("[OK] Paired with a device")
    return True


def cmd_serve(args):
    """Run the relay server in the foreground"""
    user_cfg = get_config()

    server = RelayServer(
        host=args.host,
        port=args.port,
        max_room_size=user_cfg.max_room_size,
        read_timeout=user_cfg.read_timeout,
        advertise=user_cfg.advertise and not args.no_advertise
    )

    try:
        server.start()
    except OSError as e:
        print(f"\n{get_error_from_exception(e)}")
        sys.exit(1)

    stop_event = threading.Event()

    # Handle signals
    def signal_handler(sig, frame):
        print("\nShutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    print(f"\nFlingIt relay listening on {args.host}:{server.port}")
    print("Press Ctrl+C to stop.\n")

    try:
        while not stop_event.wait(timeout=1.0):
            pass
    finally:
        server.stop()


def cmd_send(args):
    """Send files to the paired device"""
    paths = [Path(p) for p in args.files]
    missing = [p for p in paths if not p.is_file()]
    if missing:
        for p in missing:
            print(format_error(ErrorCode.FILE_NOT_FOUND, str(p)))
        sys.exit(1)

    user_cfg = get_config()

    agent = FlingAgent(
        server=_server_address(args),
        chunk_size=user_cfg.chunk_size,
        file_pause=user_cfg.file_pause,
        auto_discovery=user_cfg.auto_discovery
    )

    total = sum(p.stat().st_size for p in paths)
    tracker = ProgressTracker(total, total_files=len(paths))
    sent = {}

    def on_progress(name: str, done: int, size: int):
        tracker.update(done - sent.get(name, 0))
        sent[name] = done
        print(f"\r  {tracker.get_progress_string()}", end="", flush=True)

    agent.session.on_progress = on_progress

    try:
        if not _connect(agent, timeout=args.timeout):
            sys.exit(1)

        print(f"Sending {len(paths)} file(s), {format_bytes(total)}")
        tracker.start(paths[0].name)
        if not agent.send_files(paths):
            sys.exit(1)

        if agent.wait_for_send():
            tracker.finish()
            print(f"\n[OK] Sent {len(paths)} file(s)")
        else:
            print(f"\n{get_error(ErrorCode.TRANSFER_ABANDONED)}")
            sys.exit(1)
    finally:
        agent.disconnect()


def cmd_receive(args):
    """Wait for a batch from the paired device and save it"""
    user_cfg = get_config()
    dest = Path(args.dest) if args.dest else Path(user_cfg.download_dir)

    agent = FlingAgent(
        server=_server_address(args),
        download_dir=dest,
        auto_discovery=user_cfg.auto_discovery
    )
    agent.on_file_saved = lambda path: print(f"  Saved {path}")
    agent.session.on_transfer_abandoned = lambda reason: print(f"\n  Transfer abandoned ({reason})")
    agent.session.on_offer_rejected = lambda reason: print(f"\n  Rejected file offer: {reason}")

    def signal_handler(sig, frame):
        print("\nShutting down...")
        agent.disconnect()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)

    try:
        if not _connect(agent, timeout=args.timeout):
            sys.exit(1)

        print(f"Saving received files to {dest}")
        while True:
            files = agent.wait_for_batch()
            if files is None:
                print(f"\n{get_error(ErrorCode.CONNECTION_LOST)}")
                sys.exit(1)
            print(f"[OK] Received {len(files)} file(s)")
            if not args.keep_open:
                break
    finally:
        agent.disconnect()


def cmd_config(args):
    """Show or modify configuration"""
    config_mgr = get_config_manager()
    user_cfg = config_mgr.get()

    if args.reset:
        config_mgr.reset()
        print("[OK] Configuration reset to defaults.")
        print_config()
        return

    if args.set:
        key, value = args.set
        if config_mgr.set(key, value):
            print(f"[OK] Set {key} = {getattr(config_mgr.get(), key)}")
        else:
            print(f"\n{get_error(ErrorCode.INVALID_CONFIG)}")
            print("\nAvailable keys:")
            for k in user_cfg.to_dict():
                print(f"  - {k}")
            sys.exit(1)
        return

    # Default: show config
    print_config()


def main():
    parser = argparse.ArgumentParser(
        description='FlingIt - zero-click file relay',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  serve       Run the relay server
  send        Send files to the paired device
  receive     Wait for files and save them
  config      Show/edit configuration

Examples:
  flingit serve                                Start a relay on port 3000
  flingit send photo.jpg notes.pdf             Send two files
  flingit receive --dest ~/Inbox               Save incoming files to ~/Inbox
  flingit send --server 10.0.0.5:3000 a.zip    Use a specific relay
  flingit config --set max_room_size 0         Allow more than two devices
"""
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Serve command
    serve_parser = subparsers.add_parser('serve', help='Run the relay server')
    serve_parser.add_argument('--host', type=str, default=config.HOST, help=f'Bind address (default: {config.HOST})')
    serve_parser.add_argument('--port', type=int, default=config.PORT, help=f'Port (default: {config.PORT})')
    serve_parser.add_argument('--no-advertise', action='store_true', help='Do not announce the relay over mDNS')
    serve_parser.add_argument('-v', '--verbose', action='store_true', help='Verbose logging')

    # Send command
    send_parser = subparsers.add_parser('send', help='Send files to the paired device')
    send_parser.add_argument('files', nargs='+', help='Files to send')
    send_parser.add_argument('--server', type=str, help='Relay address HOST[:PORT]')
    send_parser.add_argument('--timeout', type=float, default=120, help='Seconds to wait for pairing (default: 120)')
    send_parser.add_argument('-v', '--verbose', action='store_true', help='Verbose logging')

    # Receive command
    receive_parser = subparsers.add_parser('receive', help='Wait for files and save them')
    receive_parser.add_argument('--server', type=str, help='Relay address HOST[:PORT]')
    receive_parser.add_argument('--dest', type=str, help='Directory to save files to')
    receive_parser.add_argument('--keep-open', action='store_true', help='Keep receiving batches until interrupted')
    receive_parser.add_argument('--timeout', type=float, default=None, help='Seconds to wait for pairing (default: forever)')
    receive_parser.add_argument('-v', '--verbose', action='store_true', help='Verbose logging')

    # Config command
    config_parser = subparsers.add_parser('config', help='Show/edit configuration')
    config_parser.add_argument('--show', action='store_true', help='Show current configuration')
    config_parser.add_argument('--reset', action='store_true', help='Reset to default configuration')
    config_parser.add_argument('--set', nargs=2, metavar=('KEY', 'VALUE'), help='Set a configuration value')

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    setup_logging(getattr(args, 'verbose', False))

    # Route to command handler
    if args.command == 'serve':
        cmd_serve(args)
    elif args.command == 'send':
        cmd_send(args)
    elif args.command == 'receive':
        cmd_receive(args)
    elif args.command == 'config':
        cmd_config(args)
    else:
        parser.print_help()


if __name__ == '__main__':
    main()
