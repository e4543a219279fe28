"""
Transfer Session - per-connection state machine for sending and receiving batches.

States:
    idle -> staged -> sending -> complete      (sender)
    idle -> receiving -> complete              (receiver)
    any  -> idle                               (reset, pairing lost)

The session never touches the network. Outgoing messages are produced by
outgoing_frames(), a pull-based iterator the caller drives and writes to the
transport. Incoming messages are fed through handle_message() in receipt
order. Observers subscribe through the on_* callbacks; callbacks are invoked
after the session lock is released.
"""
import logging
import threading
from enum import Enum
from typing import Optional, Callable, List, Iterator, Tuple, Union

from flingit.common.errors import MalformedOfferError
from flingit.common.protocol import (
    MessageType,
    MessageParser,
    BatchAnnouncement,
    FileOffer,
    event_name
)
from flingit.common.chunked_transfer import (
    StagedFile,
    ReceivedFile,
    FileAssembly,
    DEFAULT_CHUNK_SIZE
)

logger = logging.getLogger(__name__)

OutgoingItem = Tuple[int, Union[BatchAnnouncement, FileOffer, bytes]]


class SessionState(Enum):
    """Transfer phase of one connection"""
    IDLE = "idle"
    STAGED = "staged"
    SENDING = "sending"
    RECEIVING = "receiving"
    COMPLETE = "complete"


class TransferSession:
    """
    Tracks one connection's transfer state, in both roles.

    Sender side: staged files, index and byte offset of the file being sent.
    Receiver side: expected batch count, the reassembly context of the file in
    flight, and the files completed so far in this batch.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._paired = False

        # Sender side
        self._staged: List[StagedFile] = []
        self._send_index = 0
        self._send_offset = 0
        self._abort = threading.Event()

        # Receiver side
        self._expected_count: Optional[int] = None
        self._completed: List[ReceivedFile] = []
        self._current: Optional[FileAssembly] = None
        self._batch_done = False

        # Callbacks
        self.on_state_changed: Optional[Callable[[SessionState, SessionState], None]] = None
        self.on_pairing_changed: Optional[Callable[[bool], None]] = None
        self.on_progress: Optional[Callable[[str, int, int], None]] = None
        self.on_file_completed: Optional[Callable[[ReceivedFile], None]] = None
        self.on_batch_completed: Optional[Callable[[List[ReceivedFile]], None]] = None
        self.on_offer_rejected: Optional[Callable[[str], None]] = None
        self.on_transfer_abandoned: Optional[Callable[[str], None]] = None

    # ========== Snapshots ==========

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def paired(self) -> bool:
        with self._lock:
            return self._paired

    @property
    def expected_count(self) -> Optional[int]:
        with self._lock:
            return self._expected_count

    @property
    def completed_files(self) -> List[ReceivedFile]:
        with self._lock:
            return list(self._completed)

    @property
    def current_offer(self) -> Optional[FileOffer]:
        with self._lock:
            return self._current.offer if self._current else None

    @property
    def bytes_received(self) -> int:
        with self._lock:
            return self._current.bytes_received if self._current else 0

    @property
    def staged_files(self) -> List[StagedFile]:
        with self._lock:
            return list(self._staged)

    @property
    def send_position(self) -> Tuple[int, int]:
        """(file index, byte offset) of the outgoing stream"""
        with self._lock:
            return (self._send_index, self._send_offset)

    @property
    def is_aborted(self) -> bool:
        return self._abort.is_set()

    # ========== Internals ==========

    def _set_state(self, new_state: SessionState, events: list):
        """Change phase; caller holds the lock"""
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        logger.debug(f"Session state: {old_state.value} -> {new_state.value}")
        events.append((self.on_state_changed, (old_state, new_state)))

    def _clear(self):
        """Drop all transfer state; caller holds the lock"""
        self._staged = []
        self._send_index = 0
        self._send_offset = 0
        self._expected_count = None
        self._completed = []
        self._current = None
        self._batch_done = False

    def _in_flight(self) -> bool:
        return self._state in (SessionState.SENDING, SessionState.RECEIVING) or self._current is not None

    def _emit(self, events: list):
        for callback, args in events:
            if callback is None:
                continue
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Session callback error: {e}")

    # ========== Pairing ==========

    def handle_pairing_found(self):
        """Peer present; re-announcements are harmless"""
        events = []
        with self._lock:
            self._paired = True
            events.append((self.on_pairing_changed, (True,)))
        logger.info("Paired with a peer")
        self._emit(events)

    def handle_pairing_lost(self):
        """Peer gone: abandon everything, staged files included"""
        events = []
        with self._lock:
            was_in_flight = self._in_flight()
            self._paired = False
            self._abort.set()
            self._clear()
            self._set_state(SessionState.IDLE, events)
            events.append((self.on_pairing_changed, (False,)))
            if was_in_flight:
                events.append((self.on_transfer_abandoned, ("pairing lost",)))
        if was_in_flight:
            logger.warning("Pairing lost mid-transfer, transfer abandoned")
        else:
            logger.info("Pairing lost")
        self._emit(events)

    # ========== Reset ==========

    def reset(self, reason: str = "reset"):
        """Return to idle, discarding staged, outgoing and incoming state"""
        events = []
        with self._lock:
            was_in_flight = self._in_flight()
            self._abort.set()
            self._clear()
            self._set_state(SessionState.IDLE, events)
            if was_in_flight:
                events.append((self.on_transfer_abandoned, (reason,)))
        logger.info(f"Session reset ({reason})")
        self._emit(events)

    # ========== Sender side ==========

    def stage(self, files: List[StagedFile]) -> bool:
        """
        Select files for the next batch. No network effect.

        Returns:
            False if nothing was given or a transfer is in progress
        """
        if not files:
            logger.warning("Nothing to stage")
            return False

        events = []
        with self._lock:
            if self._state in (SessionState.SENDING, SessionState.RECEIVING):
                logger.warning(f"Cannot stage files while {self._state.value}")
                return False
            self._staged = list(files)
            self._send_index = 0
            self._send_offset = 0
            self._set_state(SessionState.STAGED, events)
        logger.info(f"Staged {len(files)} file(s)")
        self._emit(events)
        return True

    def begin_send(self) -> bool:
        """staged -> sending. Returns False if not staged."""
        events = []
        with self._lock:
            if self._state != SessionState.STAGED:
                logger.warning(f"Cannot send from state {self._state.value}")
                return False
            self._abort.clear()
            self._send_index = 0
            self._send_offset = 0
            self._set_state(SessionState.SENDING, events)
        self._emit(events)
        return True

    def outgoing_frames(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[OutgoingItem]:
        """
        Produce the batch as (message_type, item) pairs.

        Order: BATCH_ANNOUNCE, then FILE_OFFER followed by that file's
        FILE_CHUNKs, for each staged file. Stops early if the session is
        reset or pairing is lost. The phase becomes complete after the last
        chunk has been pulled.
        """
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        if not self.begin_send():
            return

        files = self.staged_files
        if not files:
            # reset landed between begin_send and here
            return
        yield (MessageType.BATCH_ANNOUNCE, BatchAnnouncement(count=len(files)))

        for index, staged in enumerate(files):
            if self._abort.is_set():
                return
            with self._lock:
                self._send_index = index
                self._send_offset = 0
            logger.info(f"[OFFER] {staged.name} ({staged.size} bytes, {index + 1}/{len(files)})")
            yield (MessageType.FILE_OFFER, staged.to_offer())

            for data in staged.iter_chunks(chunk_size):
                if self._abort.is_set():
                    logger.info(f"Send of {staged.name} aborted")
                    return
                with self._lock:
                    self._send_offset += len(data)
                    offset = self._send_offset
                yield (MessageType.FILE_CHUNK, data)
                self._emit([(self.on_progress, (staged.name, offset, staged.size))])

        events = []
        with self._lock:
            if self._abort.is_set() or self._state != SessionState.SENDING:
                return
            self._set_state(SessionState.COMPLETE, events)
        logger.info(f"Sent batch of {len(files)} file(s)")
        self._emit(events)

    # ========== Receiver side ==========

    def handle_message(self, msg_type: int, body: bytes):
        """Dispatch one relayed message, in receipt order"""
        if msg_type == MessageType.PAIRING_FOUND:
            self.handle_pairing_found()
        elif msg_type == MessageType.PAIRING_LOST:
            self.handle_pairing_lost()
        elif msg_type == MessageType.SESSION_RESET:
            self.reset(reason="peer reset")
        elif msg_type == MessageType.BATCH_ANNOUNCE:
            try:
                announcement = MessageParser.parse_batch_announce(body)
            except ValueError as e:
                logger.warning(f"Ignoring malformed batch announcement: {e}")
                return
            self.handle_batch_announce(announcement.count)
        elif msg_type == MessageType.FILE_OFFER:
            try:
                offer = MessageParser.parse_file_offer(body)
            except MalformedOfferError as e:
                self.reject_offer(str(e))
                return
            self.handle_file_offer(offer)
        elif msg_type == MessageType.FILE_CHUNK:
            self.handle_chunk(body)
        else:
            logger.debug(f"Session ignoring {event_name(msg_type)}")

    def handle_batch_announce(self, count: int):
        """Record expected file count; phase changes on the first offer"""
        with self._lock:
            if self._state == SessionState.SENDING:
                logger.warning("Batch announced by peer while sending")
            self._expected_count = count
            self._completed = []
            self._current = None
            self._batch_done = False
        logger.info(f"Peer announced a batch of {count} file(s)")

    def handle_file_offer(self, offer: FileOffer):
        """Open a fresh reassembly context for the offered file"""
        events = []
        with self._lock:
            if self._expected_count is None or self._batch_done:
                # offer without announcement: a batch of one
                self._expected_count = 1
                self._completed = []
                self._batch_done = False

            if self._current is not None and not self._current.is_complete:
                logger.info(
                    f"Abandoning incomplete {self._current.offer.name} "
                    f"({self._current.bytes_received}/{self._current.offer.size} bytes)"
                )

            ordinal = len(self._completed) + 1
            self._current = FileAssembly(offer, ordinal)
            if self._state != SessionState.SENDING:
                self._set_state(SessionState.RECEIVING, events)

            logger.info(f"[OFFER] Receiving {offer.name} ({offer.size} bytes, "
                        f"{ordinal}/{self._expected_count})")

            if self._current.is_complete:
                self._complete_current(events)
        self._emit(events)

    def reject_offer(self, reason: str):
        """Discard the pending reassembly context for a malformed offer"""
        events = []
        with self._lock:
            self._current = None
            events.append((self.on_offer_rejected, (reason,)))
        logger.warning(f"Rejected malformed file offer: {reason}")
        self._emit(events)

    def handle_chunk(self, data: bytes):
        """Append a chunk to the file in flight"""
        events = []
        with self._lock:
            current = self._current
            if current is None:
                logger.debug(f"Ignoring {len(data)} byte chunk with no open offer")
                return
            current.add_chunk(data)
            events.append((self.on_progress, (
                current.offer.name,
                min(current.bytes_received, current.offer.size),
                current.offer.size
            )))
            if current.is_complete:
                self._complete_current(events)
        self._emit(events)

    def _complete_current(self, events: list):
        """Materialize the file in flight; caller holds the lock"""
        received = self._current.materialize()
        self._current = None
        self._completed.append(received)
        events.append((self.on_file_completed, (received,)))
        logger.info(f"Received {received.name} ({received.size} bytes, "
                    f"{len(self._completed)}/{self._expected_count})")

        if not self._batch_done and len(self._completed) >= (self._expected_count or 1):
            self._batch_done = True
            if self._state != SessionState.SENDING:
                self._set_state(SessionState.COMPLETE, events)
            events.append((self.on_batch_completed, (list(self._completed),)))
            logger.info(f"Batch complete: {len(self._completed)} file(s)")
