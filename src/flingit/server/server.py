"""
FlingIt relay server.

Accepts TCP connections, places each one in its pairing room and relays
transfer signaling between room members. One daemon thread per connection
reads and handles that connection's frames in receipt order.
"""
import uuid
import socket
import logging
import threading
from typing import Optional, Dict

from flingit import config
from flingit.common.errors import ProtocolError, ErrorCode
from flingit.common.protocol import MessageParser, MessageBuilder, MessageType, event_name
from flingit.common.discovery import RelayAdvertiser
from flingit.server.rooms import RoomRegistry, RoomFullError
from flingit.server.relay import SignalingRelay

logger = logging.getLogger(__name__)


class Connection:
    """One client socket; writes are serialized so frames never interleave"""

    def __init__(self, sock: socket.socket, address: Optional[str], conn_id: str = None):
        self.id = conn_id or uuid.uuid4().hex[:12]
        self.sock = sock
        self.address = address
        self._send_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, frame: bytes) -> bool:
        """Write one complete frame. Returns False if the socket is gone."""
        with self._send_lock:
            if self._closed:
                return False
            try:
                self.sock.sendall(frame)
                return True
            except OSError as e:
                logger.debug(f"Send to {self.id} failed: {e}")
                return False

    def send_error(self, code: ErrorCode, message: str = "") -> bool:
        return self.send(MessageBuilder.build_error(code.value, message))

    def close(self):
        with self._send_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already disconnected
        self.sock.close()


class RelayServer:
    """
    Relay server owning the room table and every client connection.

    Usage:
        server = RelayServer(port=3000)
        server.start()
        ...
        server.stop()
    """

    def __init__(self,
                 host: str = config.HOST,
                 port: int = config.PORT,
                 max_room_size: int = config.MAX_ROOM_SIZE,
                 read_timeout: Optional[float] = config.READ_TIMEOUT,
                 advertise: bool = False):
        self.host = host
        self.port = port
        self.read_timeout = read_timeout or None
        self.rooms = RoomRegistry(max_room_size=max_room_size)
        self.relay = SignalingRelay(self.rooms)

        self._running = False
        self._server_socket: Optional[socket.socket] = None
        self._server_thread: Optional[threading.Thread] = None
        self._connections: Dict[str, Connection] = {}
        self._lock = threading.Lock()

        self._advertiser = RelayAdvertiser() if advertise else None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def start(self):
        """
        Bind and start accepting connections.

        Raises:
            OSError: the address could not be bound
        """
        if self._running:
            return

        self._start_server()
        self._running = True
        self._server_thread = threading.Thread(target=self._server_loop, daemon=True)
        self._server_thread.start()

        if self._advertiser:
            self._advertiser.port = self.port
            self._advertiser.start()

        logger.info(f"FlingIt relay server running on port {self.port}")

    def stop(self):
        """Stop accepting and disconnect every client"""
        if not self._running:
            return
        self._running = False

        if self._advertiser:
            self._advertiser.stop()

        if self._server_socket:
            self._server_socket.close()

        with self._lock:
            connections = list(self._connections.values())
        for conn in connections:
            conn.close()

        if self._server_thread:
            self._server_thread.join(timeout=2)

        logger.info("Relay server stopped")

    def _start_server(self):
        family = socket.AF_INET6 if ':' in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
            sock.listen(16)
        except OSError:
            sock.close()
            raise
        sock.settimeout(1.0)  # For clean shutdown

        # Port 0 binds an ephemeral port
        self.port = sock.getsockname()[1]
        self._server_socket = sock

    def _server_loop(self):
        """Main server loop accepting connections"""
        while self._running:
            try:
                client_socket, addr = self._server_socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Server error: {e}")
                continue

            handler = threading.Thread(
                target=self._handle_client,
                args=(client_socket, addr),
                daemon=True
            )
            handler.start()

    def _handle_client(self, client_socket: socket.socket, addr: tuple):
        """Serve one connection until it disconnects"""
        client_socket.settimeout(self.read_timeout)
        conn = Connection(client_socket, addr[0] if addr else None)
        logger.info(f"[CONN] Socket: {conn.id} | IP: {conn.address}")

        try:
            self.rooms.join(conn)
        except RoomFullError as e:
            logger.warning(f"[ROOM] Rejecting {conn.id}: {e}")
            conn.send_error(ErrorCode.ROOM_FULL, str(e))
            conn.close()
            return

        with self._lock:
            self._connections[conn.id] = conn

        parser = MessageParser()

        try:
            while self._running:
                data = client_socket.recv(config.BUFFER_SIZE)
                if not data:
                    break

                if not parser.feed(data):
                    conn.send_error(ErrorCode.BUFFER_OVERFLOW, "Too much pending data")
                    break

                while True:
                    result = parser.parse_one()
                    if result is None:
                        break
                    msg_type, payload = result
                    self._handle_message(conn, msg_type, payload)

        except ProtocolError as e:
            logger.warning(f"Dropping {conn.id}: {e}")
            conn.send_error(ErrorCode.PROTOCOL_ERROR, str(e))
        except socket.timeout:
            logger.warning(f"Connection timeout from {conn.id}")
        except OSError as e:
            if not conn.closed:
                logger.error(f"Error handling client {conn.id}: {e}")
        finally:
            logger.info(f"[DISC] Socket: {conn.id}")
            with self._lock:
                self._connections.pop(conn.id, None)
            self.rooms.leave(conn)
            conn.close()

    def _handle_message(self, conn: Connection, msg_type: int, payload: bytes):
        if msg_type == MessageType.PING:
            conn.send(MessageBuilder.build_pong())

        elif self.relay.is_relayable(msg_type):
            self.relay.relay(conn, msg_type, payload)

        else:
            logger.warning(f"Unexpected {event_name(msg_type)} from {conn.id}")
            conn.send_error(ErrorCode.PROTOCOL_ERROR, f"{event_name(msg_type)} is not accepted from clients")
