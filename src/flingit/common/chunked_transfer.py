"""
Chunked file transfer utilities.

Provides:
- split / reassemble: fixed-size splitting and arrival-order reassembly
- StagedFile / ChunkedFileReader: lazy byte sources for outgoing files
- FileAssembly: per-file reassembly context on the receiving side
- ProgressTracker: Track transfer progress with speed and ETA calculation
"""
import io
import time
import logging
import mimetypes
import threading
from pathlib import Path
from typing import Iterator, Iterable, Callable, Optional, Union, BinaryIO
from dataclasses import dataclass, field

from flingit.common.protocol import FileOffer, DEFAULT_MIME_TYPE

logger = logging.getLogger(__name__)

# Default chunk size: 16KB
DEFAULT_CHUNK_SIZE = 16 * 1024

ByteSource = Union[bytes, bytearray, memoryview, BinaryIO]


def split(source: ByteSource, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """
    Lazily yield consecutive, non-overlapping byte ranges of source.

    The last range may be shorter than chunk_size; an empty source yields
    nothing. A file object source is consumed, so the sequence is a single
    pass and cannot be restarted.
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")

    if isinstance(source, (bytes, bytearray, memoryview)):
        view = memoryview(source)
        for offset in range(0, len(view), chunk_size):
            yield bytes(view[offset:offset + chunk_size])
        return

    while True:
        data = source.read(chunk_size)
        if not data:
            break
        yield data


def reassemble(chunks: Iterable[bytes]) -> bytes:
    """Concatenate chunks strictly in arrival order"""
    return b"".join(chunks)


class ChunkedFileReader:
    """
    Read a file in chunks for memory-efficient streaming.

    Usage:
        reader = ChunkedFileReader(filepath, chunk_size=16*1024)
        for data in reader.read_chunks():
            send_chunk(data)
    """

    def __init__(self, filepath: Path, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.filepath = Path(filepath)
        self.chunk_size = chunk_size
        self.file_size = self.filepath.stat().st_size
        self.total_chunks = (self.file_size + chunk_size - 1) // chunk_size

    def open(self) -> BinaryIO:
        return open(self.filepath, 'rb')

    def read_chunks(self) -> Iterator[bytes]:
        with self.open() as f:
            yield from split(f, self.chunk_size)


@dataclass
class StagedFile:
    """
    A file selected for sending: metadata plus a way to open its bytes.

    The opener is called once per transfer pass and must return a binary
    file object positioned at the start.
    """
    name: str
    size: int
    mime_type: str
    opener: Callable[[], BinaryIO]

    def to_offer(self) -> FileOffer:
        return FileOffer(name=self.name, size=self.size, mime_type=self.mime_type)

    def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        """Yield chunks, stopping once the declared size has been read"""
        remaining = self.size
        with self.opener() as f:
            for data in split(f, chunk_size):
                if len(data) > remaining:
                    data = data[:remaining]
                if data:
                    yield data
                remaining -= len(data)
                if remaining <= 0:
                    break
        if remaining > 0:
            logger.warning(f"{self.name} ended {remaining} byte(s) short of its declared size")

    @classmethod
    def from_path(cls, filepath: Path) -> 'StagedFile':
        reader = ChunkedFileReader(filepath)
        mime_type, _ = mimetypes.guess_type(reader.filepath.name)
        return cls(
            name=reader.filepath.name,
            size=reader.file_size,
            mime_type=mime_type or DEFAULT_MIME_TYPE,
            opener=reader.open
        )

    @classmethod
    def from_bytes(cls, name: str, data: bytes, mime_type: Optional[str] = None) -> 'StagedFile':
        if mime_type is None:
            mime_type = mimetypes.guess_type(name)[0] or DEFAULT_MIME_TYPE
        return cls(name=name, size=len(data), mime_type=mime_type, opener=lambda: io.BytesIO(data))


@dataclass
class ReceivedFile:
    """A fully reassembled file handed to the download collaborator"""
    name: str
    size: int
    mime_type: str
    data: bytes
    ordinal: int  # 1-based position within the batch


class FileAssembly:
    """
    Reassembly context for the file currently in flight.

    Chunks are buffered in arrival order. The file is complete once the
    received byte count reaches the declared size; bytes past the declared
    size are trimmed from the materialized payload.
    """

    def __init__(self, offer: FileOffer, ordinal: int):
        self.offer = offer
        self.ordinal = ordinal
        self.chunks = []
        self.bytes_received = 0

    @property
    def is_complete(self) -> bool:
        return self.bytes_received >= self.offer.size

    @property
    def overshoot(self) -> int:
        return max(0, self.bytes_received - self.offer.size)

    def add_chunk(self, data: bytes) -> bool:
        """Append a chunk; returns True if the file is now complete"""
        self.chunks.append(bytes(data))
        self.bytes_received += len(data)
        return self.is_complete

    def materialize(self) -> ReceivedFile:
        payload = reassemble(self.chunks)
        if self.overshoot:
            logger.warning(
                f"Trimming {self.overshoot} byte(s) past declared size of {self.offer.name}"
            )
            payload = payload[:self.offer.size]
        return ReceivedFile(
            name=self.offer.name,
            size=len(payload),
            mime_type=self.offer.mime_type,
            data=payload,
            ordinal=self.ordinal
        )

    def get_progress(self) -> float:
        """Get completion percentage"""
        if self.offer.size == 0:
            return 100.0
        return min(self.bytes_received / self.offer.size * 100, 100.0)


@dataclass
class TransferStats:
    """Statistics for a transfer in progress"""
    bytes_transferred: int = 0
    bytes_total: int = 0
    start_time: float = 0.0
    last_update_time: float = 0.0
    last_bytes: int = 0
    speed_bps: float = 0.0  # Bytes per second
    eta_seconds: float = 0.0

    def update(self, bytes_transferred: int):
        """Update stats with new byte count"""
        now = time.time()
        self.bytes_transferred = bytes_transferred

        # Smoothed over the last interval
        if self.last_update_time > 0:
            time_delta = now - self.last_update_time
            if time_delta > 0.1:
                bytes_delta = bytes_transferred - self.last_bytes
                self.speed_bps = bytes_delta / time_delta
                self.last_update_time = now
                self.last_bytes = bytes_transferred

                remaining = self.bytes_total - bytes_transferred
                if self.speed_bps > 0:
                    self.eta_seconds = remaining / self.speed_bps
                else:
                    self.eta_seconds = 0
        else:
            self.last_update_time = now
            self.last_bytes = bytes_transferred

    @property
    def percent(self) -> float:
        """Get completion percentage"""
        if self.bytes_total == 0:
            return 0.0
        return min((self.bytes_transferred / self.bytes_total) * 100, 100.0)


class ProgressTracker:
    """
    Track and display transfer progress.

    Usage:
        tracker = ProgressTracker(total_size, callback=update_ui)
        tracker.start()
        for chunk in chunks:
            tracker.update(len(chunk))
        tracker.finish()
    """

    def __init__(
        self,
        total_bytes: int,
        total_files: int = 1,
        callback: Optional[Callable[[TransferStats], None]] = None,
        update_interval: float = 0.1
    ):
        self.total_bytes = total_bytes
        self.total_files = total_files
        self.callback = callback
        self.update_interval = update_interval

        self.stats = TransferStats(bytes_total=total_bytes)
        self.current_file_name = ""
        self.files_completed = 0

        self._lock = threading.Lock()
        self._last_callback_time = 0.0

    def start(self, file_name: str = ""):
        with self._lock:
            self.stats.start_time = time.time()
            self.stats.last_update_time = 0
            self.current_file_name = file_name
            self._invoke_callback()

    def update(self, bytes_added: int):
        """Update progress with bytes transferred"""
        with self._lock:
            self.stats.update(self.stats.bytes_transferred + bytes_added)

            # Rate-limit callbacks
            now = time.time()
            if now - self._last_callback_time >= self.update_interval:
                self._invoke_callback()
                self._last_callback_time = now

    def next_file(self, file_name: str):
        """Move to next file in multi-file transfer"""
        with self._lock:
            self.files_completed += 1
            self.current_file_name = file_name
            self._invoke_callback()

    def finish(self):
        """Mark transfer as complete"""
        with self._lock:
            self.stats.bytes_transferred = self.stats.bytes_total
            self.files_completed = self.total_files
            self._invoke_callback()

    def _invoke_callback(self):
        if self.callback:
            try:
                self.callback(self.stats)
            except Exception as e:
                logger.error(f"Progress callback error: {e}")

    def get_progress_string(self) -> str:
        """Get a formatted progress string"""
        percent = self.stats.percent
        transferred = format_bytes(self.stats.bytes_transferred)
        total = format_bytes(self.stats.bytes_total)
        speed = format_bytes(self.stats.speed_bps) + "/s"
        eta = format_time(self.stats.eta_seconds)

        bar_width = 20
        filled = int(bar_width * percent / 100)
        bar = '█' * filled + '░' * (bar_width - filled)

        return f"[{bar}] {percent:.1f}% ({transferred}/{total}) - {speed} - ETA: {eta}"


def format_bytes(size: float) -> str:
    """Format byte size as human-readable string"""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if abs(size) < 1024.0:
            return f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} PB"


def format_time(seconds: float) -> str:
    """Format seconds as human-readable time"""
    if seconds <= 0:
        return "calculating..."
    if seconds < 60:
        return f"{int(seconds)}s"
    elif seconds < 3600:
        mins = int(seconds / 60)
        secs = int(seconds % 60)
        return f"{mins}m {secs}s"
    else:
        hours = int(seconds / 3600)
        mins = int((seconds % 3600) / 60)
        return f"{hours}h {mins}m"
