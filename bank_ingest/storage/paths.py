"""
Path generation for uploaded statement files.
All paths are relative to STORAGE_ROOT.
"""

import hashlib
import re
from pathlib import Path

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def file_checksum(file_bytes: bytes) -> str:
    """SHA-256 hash of file content."""
    return hashlib.sha256(file_bytes).hexdigest()


def safe_file_name(file_name: str) -> str:
    name = Path(file_name or "statement").name
    cleaned = _UNSAFE_CHARS.sub("_", name).strip("._")
    return cleaned or "statement"


def upload_path(company_id: str, job_id: str, file_name: str) -> str:
    """Path for an uploaded statement file."""
    return f"{safe_file_name(company_id)}/{job_id}/{safe_file_name(file_name)}"


def file_extension(file_name: str) -> str:
    return Path(file_name or "").suffix.lower()


def ensure_parent_dirs(storage_root: str, relative_path: str) -> Path:
    """Create parent directories and return the full absolute path."""
    full_path = Path(storage_root) / relative_path
    full_path.parent.mkdir(parents=True, exist_ok=True)
    return full_path
