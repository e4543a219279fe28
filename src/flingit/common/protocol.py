"""
Wire protocol for the FlingIt relay

Frame Format:
┌──────────────┬──────────────┬──────────────────────────────┐
│ Header (4B)  │ Type (1B)    │ Body                         │
│ Length       │ EVENT_TYPE   │ JSON (signals) / raw (chunk) │
└──────────────┴──────────────┴──────────────────────────────┘

Length covers the type byte plus the body. The relay only ever looks at the
type byte; bodies are forwarded verbatim between room members.
"""
import json
import struct
import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Any, List

from flingit.common.errors import MalformedOfferError, ProtocolError

logger = logging.getLogger(__name__)

# Security limits
MAX_MESSAGE_SIZE = 1024 * 1024  # 1MB per frame (chunks are 16KB)
MAX_BUFFER_SIZE = 4 * 1024 * 1024  # 4MB pending bytes per connection

HEADER_SIZE = 4
DEFAULT_MIME_TYPE = "application/octet-stream"


class MessageType:
    """Event types carried in the frame type byte"""
    PING = 0x01
    PONG = 0x02

    # Server notifications
    PAIRING_FOUND = 0x10
    PAIRING_LOST = 0x11

    # Relayed signaling
    SESSION_RESET = 0x20
    BATCH_ANNOUNCE = 0x21
    FILE_OFFER = 0x22
    FILE_CHUNK = 0x23

    ERROR = 0xFF


RELAYED_TYPES = frozenset({
    MessageType.SESSION_RESET,
    MessageType.BATCH_ANNOUNCE,
    MessageType.FILE_OFFER,
    MessageType.FILE_CHUNK,
})

EVENT_NAMES = {
    MessageType.PING: "ping",
    MessageType.PONG: "pong",
    MessageType.PAIRING_FOUND: "pairing-found",
    MessageType.PAIRING_LOST: "pairing-lost",
    MessageType.SESSION_RESET: "session-reset",
    MessageType.BATCH_ANNOUNCE: "batch-announce",
    MessageType.FILE_OFFER: "file-offer",
    MessageType.FILE_CHUNK: "file-chunk",
    MessageType.ERROR: "error",
}


def event_name(msg_type: int) -> str:
    return EVENT_NAMES.get(msg_type, f"unknown(0x{msg_type:02x})")


@dataclass
class BatchAnnouncement:
    """Declares how many file offers follow"""
    count: int

    def to_dict(self) -> dict:
        return {'count': self.count}

    @classmethod
    def from_dict(cls, data: dict) -> 'BatchAnnouncement':
        count = data.get('count')
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValueError(f"Invalid batch count: {count!r}")
        return cls(count=count)


@dataclass
class FileOffer:
    """Metadata for exactly one upcoming chunk stream"""
    name: str
    size: int
    mime_type: str = DEFAULT_MIME_TYPE

    def to_dict(self) -> dict:
        # camelCase on the wire to match the browser client
        return {'name': self.name, 'size': self.size, 'mimeType': self.mime_type}

    @classmethod
    def from_dict(cls, data: dict) -> 'FileOffer':
        """
        Build an offer from its wire form.

        Raises:
            MalformedOfferError: missing name, or size that is not a
                non-negative integer
        """
        if not isinstance(data, dict):
            raise MalformedOfferError("Offer must be a JSON object")

        name = data.get('name')
        size = data.get('size')
        mime_type = data.get('mimeType') or data.get('type') or DEFAULT_MIME_TYPE

        if not isinstance(name, str) or not name:
            raise MalformedOfferError(f"Invalid file name: {name!r}")
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise MalformedOfferError(f"Invalid file size: {size!r}")
        if not isinstance(mime_type, str):
            raise MalformedOfferError(f"Invalid mime type: {mime_type!r}")

        return cls(name=name, size=size, mime_type=mime_type)


def _safe_json_parse(data: bytes, expected_keys: Optional[List[str]] = None) -> Tuple[bool, Any]:
    """
    Parse a JSON body without raising.

    Returns:
        (True, parsed) on success, (False, error_message) on failure
    """
    try:
        parsed = json.loads(data.decode('utf-8'))
    except UnicodeDecodeError as e:
        return False, f"Invalid UTF-8: {e}"
    except json.JSONDecodeError as e:
        return False, f"Invalid JSON: {e}"

    if expected_keys:
        if not isinstance(parsed, dict):
            return False, "Expected a JSON object"
        missing = [k for k in expected_keys if k not in parsed]
        if missing:
            return False, f"Missing keys: {', '.join(missing)}"

    return True, parsed


class MessageBuilder:
    """Build protocol frames"""

    @staticmethod
    def build(msg_type: int, body: bytes = b"") -> bytes:
        """Frame an arbitrary body under the given type"""
        return struct.pack('>IB', len(body) + 1, msg_type) + body

    @staticmethod
    def _build_json(msg_type: int, data: dict) -> bytes:
        return MessageBuilder.build(msg_type, json.dumps(data).encode('utf-8'))

    @staticmethod
    def build_ping() -> bytes:
        return MessageBuilder.build(MessageType.PING)

    @staticmethod
    def build_pong() -> bytes:
        return MessageBuilder.build(MessageType.PONG)

    @staticmethod
    def build_pairing_found() -> bytes:
        return MessageBuilder.build(MessageType.PAIRING_FOUND)

    @staticmethod
    def build_pairing_lost() -> bytes:
        return MessageBuilder.build(MessageType.PAIRING_LOST)

    @staticmethod
    def build_session_reset() -> bytes:
        return MessageBuilder.build(MessageType.SESSION_RESET)

    @staticmethod
    def build_batch_announce(count: int) -> bytes:
        return MessageBuilder._build_json(MessageType.BATCH_ANNOUNCE, BatchAnnouncement(count).to_dict())

    @staticmethod
    def build_file_offer(offer: FileOffer) -> bytes:
        return MessageBuilder._build_json(MessageType.FILE_OFFER, offer.to_dict())

    @staticmethod
    def build_file_chunk(data: bytes) -> bytes:
        """Chunk bodies are raw bytes, no metadata"""
        return MessageBuilder.build(MessageType.FILE_CHUNK, bytes(data))

    @staticmethod
    def build_error(code: str, message: str = "") -> bytes:
        return MessageBuilder._build_json(MessageType.ERROR, {'code': code, 'message': message})


class MessageParser:
    """Incremental frame parser fed from a stream socket"""

    def __init__(self):
        self.buffer = bytearray()

    def feed(self, data: bytes) -> bool:
        """
        Feed data into the parser buffer.

        Returns:
            False if the data would overflow MAX_BUFFER_SIZE (data is dropped)
        """
        if len(self.buffer) + len(data) > MAX_BUFFER_SIZE:
            logger.error(f"Parser buffer overflow ({len(self.buffer) + len(data)} bytes pending)")
            return False
        self.buffer.extend(data)
        return True

    def parse_one(self) -> Optional[Tuple[int, bytes]]:
        """
        Try to parse one complete frame from the buffer.

        Returns: (message_type, body) or None if incomplete.

        Raises:
            ProtocolError: oversized or empty frame. The buffer is cleared
                since the stream cannot be resynchronized.
        """
        if len(self.buffer) < HEADER_SIZE:
            return None

        msg_len = struct.unpack('>I', self.buffer[:HEADER_SIZE])[0]

        if msg_len == 0 or msg_len > MAX_MESSAGE_SIZE:
            logger.error(f"Rejecting frame with length {msg_len}")
            self.buffer.clear()
            raise ProtocolError(f"Invalid frame length {msg_len}")

        total_needed = HEADER_SIZE + msg_len
        if len(self.buffer) < total_needed:
            return None

        msg_type = self.buffer[HEADER_SIZE]
        body = bytes(self.buffer[HEADER_SIZE + 1:total_needed])
        del self.buffer[:total_needed]

        return (msg_type, body)

    def parse_all(self) -> List[Tuple[int, bytes]]:
        """Drain every complete frame currently buffered"""
        frames = []
        while True:
            result = self.parse_one()
            if result is None:
                break
            frames.append(result)
        return frames

    @staticmethod
    def parse_batch_announce(body: bytes) -> BatchAnnouncement:
        """Raises ValueError on a malformed announcement"""
        ok, data = _safe_json_parse(body, expected_keys=['count'])
        if not ok:
            raise ValueError(data)
        return BatchAnnouncement.from_dict(data)

    @staticmethod
    def parse_file_offer(body: bytes) -> FileOffer:
        """Raises MalformedOfferError on bad JSON or metadata"""
        ok, data = _safe_json_parse(body)
        if not ok:
            raise MalformedOfferError(data)
        return FileOffer.from_dict(data)

    @staticmethod
    def parse_error(body: bytes) -> dict:
        ok, data = _safe_json_parse(body)
        if ok and isinstance(data, dict):
            return data
        return {'code': 'unknown', 'message': body.decode('utf-8', errors='replace')}
