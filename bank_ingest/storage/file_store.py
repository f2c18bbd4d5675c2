"""
File store for uploaded statements.
Local filesystem (volume mount); absolute paths recorded on older jobs are read as-is.
"""

from pathlib import Path
from typing import Optional

import structlog

from bank_ingest.config import settings
from bank_ingest.storage.paths import ensure_parent_dirs

logger = structlog.get_logger(__name__)


class FileStore:
    """
    Save and load statement files.
    Relative paths resolve against the storage root.
    """

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.STORAGE_ROOT)

    def full_path(self, path: str) -> Path:
        """Get the absolute filesystem path for a stored file."""
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return self.root / candidate

    def save_bytes(self, relative_path: str, data: bytes) -> str:
        """Save raw bytes. Returns the relative path."""
        full_path = ensure_parent_dirs(str(self.root), relative_path)
        full_path.write_bytes(data)
        logger.info("file_saved", path=relative_path, size_bytes=len(data))
        return relative_path

    def load_bytes(self, path: str) -> bytes:
        full_path = self.full_path(path)
        if not full_path.exists():
            raise FileNotFoundError(f"Statement file not found: {path}")
        return full_path.read_bytes()

    def exists(self, path: str) -> bool:
        return self.full_path(path).exists()

    def delete(self, path: str) -> bool:
        """Delete a stored file. Returns True if it existed."""
        full_path = self.full_path(path)
        if full_path.exists():
            full_path.unlink()
            logger.info("file_deleted", path=path)
            return True
        return False
