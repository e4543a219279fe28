"""
Global test fixtures for FlingIt tests
"""
import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Generator

from flingit.common.session import TransferSession
from tests.fixtures.mock_transport import RecordingConnection, SessionRecorder


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files"""
    path = Path(tempfile.mkdtemp(prefix="flingit_test_"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def sample_file(temp_dir: Path) -> Path:
    """Create a sample text file for testing"""
    file_path = temp_dir / "sample.txt"
    file_path.write_text("Hello, World! This is a test file.")
    return file_path


@pytest.fixture
def chunk_boundary_file(temp_dir: Path) -> Path:
    """A file one byte longer than a default chunk"""
    file_path = temp_dir / "boundary.bin"
    file_path.write_bytes(bytes(range(256)) * 64 + b"!")
    return file_path


@pytest.fixture
def session() -> TransferSession:
    return TransferSession()


@pytest.fixture
def recorder(session: TransferSession) -> SessionRecorder:
    """Session with every notification captured"""
    return SessionRecorder(session)


@pytest.fixture
def make_connection():
    """Factory for recording connections: make_connection('10.0.0.2')"""
    counter = iter(range(1, 1000))

    def factory(address="192.168.1.20", conn_id=None):
        return RecordingConnection(address, conn_id or f"c{next(counter)}")

    return factory
