"""Checksum helpers for run outputs."""

import hashlib
import logging
from pathlib import Path


log = logging.getLogger(__name__)


def compute_sha256(file_path: str | Path, chunk_size: int = 1024 * 1024) -> str:
    """Compute the SHA256 digest for a file."""
    path = Path(file_path)
    assert path.exists(), f"file does not exist: {path}"
    assert path.is_file(), f"path is not a file: {path}"
    log.debug(f"computing sha256 for\n    {path}")

    # Stream file bytes; merged feeds and tile stores can be large.
    hasher = hashlib.sha256()
    with path.open("rb") as stream:
        chunk = stream.read(chunk_size)
        while chunk:
            hasher.update(chunk)
            chunk = stream.read(chunk_size)
    return hasher.hexdigest()


def same_content(left: str | Path, right: str | Path) -> bool:
    """Return True when both files exist and carry the same SHA256 digest."""
    left_path, right_path = Path(left), Path(right)
    if not (left_path.is_file() and right_path.is_file()):
        return False
    if left_path.stat().st_size != right_path.stat().st_size:
        return False
    is_match = compute_sha256(left_path) == compute_sha256(right_path)
    log.debug(f"content comparison for\n    {left_path}\n    {right_path}\n    match={is_match}")
    return is_match
