"""
Download store - writes completed files into the download directory.

Each file is written to a hidden temp file next to its destination and then
moved into place, so a partially written file is never visible.
"""
import shutil
import logging
from pathlib import Path, PurePath
from typing import List

from flingit.common.chunked_transfer import ReceivedFile

logger = logging.getLogger(__name__)


def safe_filename(name: str) -> str:
    """Reduce a peer-supplied name to a bare file name"""
    # Handle both separators regardless of platform
    base = PurePath(name.replace('\\', '/')).name
    base = base.strip().lstrip('.')
    return base or "received.bin"


class DownloadStore:
    """Persists received files under a destination directory"""

    def __init__(self, dest_dir: Path):
        self.dest_dir = Path(dest_dir)

    def save(self, received: ReceivedFile) -> Path:
        """
        Write one received file.

        Returns:
            Final path (collision-free)
        """
        self.dest_dir.mkdir(parents=True, exist_ok=True)

        name = safe_filename(received.name)
        final_path = self._get_unique_path(self.dest_dir / name)
        temp_path = self.dest_dir / f".{final_path.name}.tmp"

        try:
            with open(temp_path, 'wb') as f:
                f.write(received.data)
            shutil.move(str(temp_path), str(final_path))
        except OSError:
            self.cleanup(temp_path)
            raise

        logger.info(f"File written successfully: {final_path}")
        return final_path

    def save_all(self, files: List[ReceivedFile]) -> List[Path]:
        return [self.save(f) for f in files]

    def _get_unique_path(self, path: Path) -> Path:
        """Get a unique path if file already exists"""
        if not path.exists():
            return path

        stem = path.stem
        suffix = path.suffix
        counter = 1

        while path.exists():
            path = path.parent / f"{stem}_{counter}{suffix}"
            counter += 1

        return path

    @staticmethod
    def cleanup(temp_path: Path):
        """Clean up temp file on error"""
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError as e:
                logger.error(f"Failed to cleanup temp file: {e}")
