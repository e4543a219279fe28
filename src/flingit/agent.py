"""
FlingIt client agent

Connects to the relay, waits to be paired with another device on the same
network, and sends or receives batches of files through a TransferSession.

- One reader thread dispatches inbound frames to the session in order
- Sending runs in a worker thread driving session.outgoing_frames()
- Completed batches are written by a DownloadStore when a download dir is set
"""
import time
import socket
import logging
import threading
from pathlib import Path
from typing import Optional, Callable, List, Tuple

from flingit import config
from flingit.common.errors import ProtocolError, get_error, ErrorCode
from flingit.common.protocol import MessageType, MessageBuilder, MessageParser, event_name
from flingit.common.chunked_transfer import StagedFile, ReceivedFile
from flingit.common.session import TransferSession, SessionState
from flingit.common.downloads import DownloadStore
from flingit.common.discovery import RelayLocator

logger = logging.getLogger(__name__)


class FlingAgent:
    """
    Client side of the relay.

    Usage:
        agent = FlingAgent(server=('192.168.1.10', 3000))
        if agent.connect() and agent.wait_for_pairing(timeout=60):
            agent.send_files([Path('photo.jpg')])
            agent.wait_for_send()
        agent.disconnect()
    """

    def __init__(self,
                 server: Optional[Tuple[str, int]] = None,
                 chunk_size: int = config.CHUNK_SIZE,
                 file_pause: float = config.FILE_PAUSE_SECONDS,
                 download_dir: Optional[Path] = None,
                 auto_discovery: bool = True,
                 discovery_timeout: float = 5.0):
        self.server = server
        self.chunk_size = chunk_size
        self.file_pause = file_pause
        self.auto_discovery = auto_discovery
        self.discovery_timeout = discovery_timeout
        self.store = DownloadStore(download_dir) if download_dir else None

        self.session = TransferSession()
        self.session.on_pairing_changed = self._on_pairing_changed
        self.session.on_batch_completed = self._on_batch_completed

        self._sock: Optional[socket.socket] = None
        self._send_lock = threading.Lock()
        self._reader_thread: Optional[threading.Thread] = None
        self._send_thread: Optional[threading.Thread] = None

        self._connected = threading.Event()
        self._paired = threading.Event()
        self._batch_done = threading.Event()
        self._pong = threading.Event()

        self.last_error: Optional[dict] = None
        self.saved_paths: List[Path] = []
        self._last_batch: List[ReceivedFile] = []

        # Callbacks
        self.on_pairing_changed: Optional[Callable[[bool], None]] = None
        self.on_file_saved: Optional[Callable[[Path], None]] = None
        self.on_batch_completed: Optional[Callable[[List[ReceivedFile]], None]] = None
        self.on_error: Optional[Callable[[dict], None]] = None
        self.on_disconnected: Optional[Callable[[], None]] = None

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    @property
    def paired(self) -> bool:
        return self.session.paired

    # ========== Connection ==========

    def resolve_server(self) -> Optional[Tuple[str, int]]:
        """Explicit server, else FLINGIT_SERVER, else mDNS"""
        if self.server:
            return self.server
        timeout = self.discovery_timeout if self.auto_discovery else 0
        return RelayLocator().find_server(timeout=timeout)

    def connect(self) -> bool:
        """Open the relay connection and start the reader thread"""
        if self.connected:
            return True

        address = self.resolve_server()
        if address is None:
            logger.error(str(get_error(ErrorCode.SERVER_NOT_FOUND)))
            return False

        host, port = address
        try:
            sock = socket.create_connection((host, port), timeout=config.CONNECT_TIMEOUT)
        except socket.timeout:
            logger.error(f"Timeout connecting to relay {host}:{port}")
            return False
        except ConnectionRefusedError:
            logger.error(f"Connection refused by {host}:{port}")
            return False
        except OSError as e:
            logger.error(f"Could not connect to relay {host}:{port}: {e}")
            return False

        sock.settimeout(None)
        self._sock = sock
        self.server = address
        self.last_error = None
        self._connected.set()

        self._reader_thread = threading.Thread(target=self._reader_loop, daemon=True)
        self._reader_thread.start()

        logger.info(f"Connected to relay {host}:{port}")
        return True

    def disconnect(self):
        """Close the connection; any transfer in flight is abandoned"""
        sock = self._sock
        if sock is None:
            return
        self._connected.clear()
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # peer already gone
        sock.close()

        if self._reader_thread and self._reader_thread is not threading.current_thread():
            self._reader_thread.join(timeout=2)
        if self._send_thread and self._send_thread is not threading.current_thread():
            self._send_thread.join(timeout=2)
        self._sock = None
        logger.info("Disconnected from relay")

    def _send_frame(self, frame: bytes) -> bool:
        sock = self._sock
        if sock is None or not self.connected:
            return False
        with self._send_lock:
            try:
                sock.sendall(frame)
                return True
            except OSError as e:
                logger.error(f"Send failed: {e}")
                return False

    def _reader_loop(self):
        sock = self._sock
        parser = MessageParser()
        try:
            while self.connected:
                data = sock.recv(config.BUFFER_SIZE)
                if not data:
                    break
                if not parser.feed(data):
                    logger.error("Inbound buffer overflow, closing connection")
                    break
                while True:
                    result = parser.parse_one()
                    if result is None:
                        break
                    self._dispatch(*result)
        except ProtocolError as e:
            logger.error(f"Protocol error from relay: {e}")
        except OSError as e:
            if self.connected:
                logger.error(f"Connection lost: {e}")
        finally:
            self._connected.clear()
            self.session.handle_pairing_lost()
            logger.info("Relay connection closed")
            if self.on_disconnected:
                self.on_disconnected()

    def _dispatch(self, msg_type: int, body: bytes):
        if msg_type == MessageType.ERROR:
            error = MessageParser.parse_error(body)
            self.last_error = error
            logger.error(f"Relay error [{error.get('code')}]: {error.get('message', '')}")
            if self.on_error:
                self.on_error(error)
        elif msg_type == MessageType.PONG:
            self._pong.set()
        elif msg_type == MessageType.PING:
            self._send_frame(MessageBuilder.build_pong())
        else:
            logger.debug(f"Received {event_name(msg_type)} ({len(body)} bytes)")
            self.session.handle_message(msg_type, body)

    def ping(self, timeout: float = 5.0) -> bool:
        """Round-trip a ping through the relay"""
        self._pong.clear()
        if not self._send_frame(MessageBuilder.build_ping()):
            return False
        return self._pong.wait(timeout=timeout)

    # ========== Pairing ==========

    def _on_pairing_changed(self, paired: bool):
        if paired:
            self._paired.set()
        else:
            self._paired.clear()
        if self.on_pairing_changed:
            self.on_pairing_changed(paired)

    def wait_for_pairing(self, timeout: Optional[float] = None) -> bool:
        """Block until another device shares our room"""
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._paired.is_set():
            if not self.connected:
                return False
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            self._paired.wait(timeout=0.5 if remaining is None else min(remaining, 0.5))
        return True

    # ========== Sending ==========

    def send_files(self, file_paths: List[Path]) -> bool:
        """
        Stage files and start sending them as one batch.

        Returns:
            False if unpaired, nothing to send, or a file can't be read
        """
        try:
            staged = [StagedFile.from_path(Path(p)) for p in file_paths]
        except FileNotFoundError as e:
            logger.error(f"{get_error(ErrorCode.FILE_NOT_FOUND).message}: {e.filename}")
            return False
        except PermissionError as e:
            logger.error(f"{get_error(ErrorCode.PERMISSION_DENIED).message}: {e.filename}")
            return False
        return self.send_staged(staged)

    def send_staged(self, files: List[StagedFile]) -> bool:
        if not self.paired:
            logger.warning("Cannot send files - no paired device on this network")
            return False
        if self._send_thread and self._send_thread.is_alive():
            logger.warning("A send is already in progress")
            return False
        if not self.session.stage(files):
            return False

        self._send_thread = threading.Thread(target=self._send_loop, daemon=True)
        self._send_thread.start()
        return True

    def _send_loop(self):
        """Write the session's outgoing frames, pausing between files"""
        first_offer = True
        for msg_type, item in self.session.outgoing_frames(self.chunk_size):
            if msg_type == MessageType.BATCH_ANNOUNCE:
                frame = MessageBuilder.build_batch_announce(item.count)
            elif msg_type == MessageType.FILE_OFFER:
                if not first_offer and self.file_pause > 0:
                    time.sleep(self.file_pause)
                first_offer = False
                frame = MessageBuilder.build_file_offer(item)
            else:
                frame = MessageBuilder.build_file_chunk(item)

            if not self._send_frame(frame):
                self.session.reset("connection lost")
                return

            if msg_type == MessageType.FILE_CHUNK:
                time.sleep(0)  # let the reader thread run

    def wait_for_send(self, timeout: Optional[float] = None) -> bool:
        """Wait for the send worker; True if the batch went out completely"""
        if self._send_thread:
            self._send_thread.join(timeout=timeout)
            if self._send_thread.is_alive():
                return False
        return self.session.state == SessionState.COMPLETE

    def reset(self):
        """Abandon the current transfer here and on the peer"""
        self.session.reset("local reset")
        self._send_frame(MessageBuilder.build_session_reset())

    # ========== Receiving ==========

    def _save_batch(self, files: List[ReceivedFile]):
        # Only whole batches reach the disk
        try:
            paths = self.store.save_all(files)
        except OSError as e:
            logger.error(f"Failed to save received batch: {e}")
            return
        self.saved_paths.extend(paths)
        if self.on_file_saved:
            for path in paths:
                self.on_file_saved(path)

    def _on_batch_completed(self, files: List[ReceivedFile]):
        if self.store is not None:
            self._save_batch(files)
        self._last_batch = files
        self._batch_done.set()
        if self.on_batch_completed:
            self.on_batch_completed(files)

    def wait_for_batch(self, timeout: Optional[float] = None) -> Optional[List[ReceivedFile]]:
        """Block until a whole batch has been received; None on timeout or disconnect"""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self._batch_done.is_set():
                self._batch_done.clear()
                return list(self._last_batch)
            if not self.connected:
                return None
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return None
            self._batch_done.wait(timeout=0.5 if remaining is None else min(remaining, 0.5))
